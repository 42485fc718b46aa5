"""Render an Agreement into the unsigned PDF.

The section order is fixed: title block, parties, project details, scope
of work, payment terms, optional special notes, then a bordered
signature placeholder. Every section goes through ``PageLayout`` and may
flow across pages.

Business rules are not checked here. Callers run
:func:`signflow.validation.validate_agreement` first.
"""

import logging
from datetime import date, datetime
from typing import Optional

from .layout import (
    BRAND_BLUE,
    LIGHT_GREY,
    MID_GREY,
    PageLayout,
)
from .models import Agreement, utcnow

logger = logging.getLogger("signflow.assembler")

SIGNATURE_BOX_HEIGHT = 100.0
SIGNATURE_LINE = "X ________________________________________________"
SIGNATURE_HEADING = "AUTHORIZED SIGNATURE"


def _fmt_date(value: Optional[date]) -> str:
    return value.isoformat() if value else "-"


def _join(*parts: str, sep: str = ", ") -> str:
    return sep.join(p.strip() for p in parts if p and p.strip())


class DocumentAssembler:
    """Turns agreements into paginated PDFs.

    Args:
        page_size: Page size in points (A4 by default).
        margin: Page margin in points.
    """

    def __init__(self, page_size: tuple[float, float] = (595.0, 842.0), margin: float = 50.0) -> None:
        self.page_size = page_size
        self.margin = margin

    def assemble(self, agreement: Agreement, now: Optional[datetime] = None) -> bytes:
        """Render ``agreement`` and return the PDF bytes.

        Args:
            agreement: Validated agreement.
            now: Timestamp printed in the title block (defaults to now).

        Returns:
            PDF bytes of the unsigned agreement.
        """
        layout = self.assemble_layout(agreement, now=now)
        pdf = layout.finish()
        logger.info(
            "Assembled '%s' for %s: %d page(s), %d bytes",
            agreement.title,
            agreement.client_name,
            layout.page_count,
            len(pdf),
        )
        return pdf

    def assemble_layout(self, agreement: Agreement, now: Optional[datetime] = None) -> PageLayout:
        """Render ``agreement`` and return the finished layout.

        The layout still holds the per-page draw log, which ``assemble``
        throws away.
        """
        layout = PageLayout(
            page_size=self.page_size,
            margin=self.margin,
            title=agreement.title,
            author=agreement.agency_name or None,
        )
        stamp = (now or utcnow()).date()

        self._title_block(layout, agreement, stamp)
        self._parties(layout, agreement)
        self._project_details(layout, agreement)

        layout.draw_block("3. SCOPE OF WORK", agreement.scope_of_work)
        layout.draw_block("4. PAYMENT TERMS", agreement.payment_terms)
        if agreement.special_notes.strip():
            layout.draw_block("5. SPECIAL NOTES / CLAUSES", agreement.special_notes)

        self._signature_box(layout, agreement)
        layout.finish()
        return layout

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    @staticmethod
    def _title_block(layout: PageLayout, agreement: Agreement, stamp: date) -> None:
        layout.draw_line("AGREEMENT DOCUMENT", 20, bold=True, color=BRAND_BLUE)
        layout.draw_line(agreement.title.upper(), 14, bold=True)
        layout.skip(10)
        layout.draw_line(f"Date: {stamp.isoformat()}", 10)
        layout.skip(20)

    @staticmethod
    def _parties(layout: PageLayout, a: Agreement) -> None:
        layout.draw_section_header("1. PARTIES")

        layout.draw_line("SERVICE PROVIDER (AGENCY):", 10, bold=True)
        layout.draw_line(a.agency_name or "-")
        layout.draw_line(f"Attn: {a.agent_name or '-'}")
        layout.draw_line(f"Email: {a.agency_email or '-'}")
        layout.draw_line(f"Phone: {a.agency_phone or '-'}")
        layout.skip(10)

        layout.draw_line("CLIENT:", 10, bold=True)
        name = f"{a.client_name} ({a.client_company})" if a.client_company else a.client_name
        layout.draw_line(name)
        address = _join(a.client_address, a.client_city_state_zip, a.client_country)
        layout.draw_line(f"Address: {address or '-'}")
        layout.draw_line(f"Email: {a.client_email}")
        layout.draw_line(f"Phone: {a.client_phone or '-'}")
        layout.skip(20)

    @staticmethod
    def _project_details(layout: PageLayout, a: Agreement) -> None:
        layout.draw_section_header("2. PROJECT DETAILS")
        layout.draw_field("Project Name:", a.project_name)
        layout.draw_field("Start Date:", _fmt_date(a.start_date))
        layout.draw_field("End Date:", _fmt_date(a.end_date))
        layout.skip(10)

    @staticmethod
    def _signature_box(layout: PageLayout, a: Agreement) -> None:
        layout.skip(30)
        layout.ensure_space(SIGNATURE_BOX_HEIGHT)

        x = layout.margin
        top = layout.y
        layout.draw_rect(
            x,
            top - SIGNATURE_BOX_HEIGHT,
            layout.content_width,
            SIGNATURE_BOX_HEIGHT,
            stroke=LIGHT_GREY,
        )
        layout.draw_text_at(x + 10, top - 20, SIGNATURE_HEADING, 10, bold=True, color=MID_GREY)
        layout.draw_text_at(x + 20, top - 70, SIGNATURE_LINE, 12)
        layout.draw_text_at(x + 20, top - 90, f"Signed by: {a.client_name}", 10)
        layout.y = top - SIGNATURE_BOX_HEIGHT
