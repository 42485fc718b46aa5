"""Core data models for SignFlow.

An ``Agreement`` is what the agency fills in. It is rendered once into a
PDF and stored as a ``DocumentRecord`` together with the signing token.
The record moves through exactly one transition, ``pending`` to
``signed``, and the store enforces that with a compare-and-swap.

PDF bytes travel as base64 whenever a model is dumped to JSON.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class DocumentStatus(str, Enum):
    """Lifecycle states for a document. ``signed`` is terminal."""

    PENDING = "pending"
    SIGNED = "signed"


# ---------------------------------------------------------------------------
# Agreement (assembler input)
# ---------------------------------------------------------------------------

class Agreement(BaseModel):
    """Structured agreement between an agency and a counterparty.

    Everything is plain text except the project dates. Required fields
    are checked by :func:`signflow.validation.validate_agreement`, not
    here, so a partially filled form still parses.

    Attributes:
        title: Document type, e.g. "Service Agreement" or "NDA".
        agency_name: Name of the service provider.
        agency_email: Agency contact email.
        agency_phone: Agency contact phone.
        agent_name: Person at the agency preparing the document.
        client_name: Counterparty's legal name. Printed under the
            signature line.
        client_company: Counterparty's company.
        client_email: Address the identity gate compares against.
        client_phone: Counterparty phone.
        client_address: Street address.
        client_city_state_zip: City, state and postal code.
        client_country: Country.
        project_name: Project name.
        start_date: Project start.
        end_date: Project end.
        scope_of_work: Free text, may contain line breaks.
        payment_terms: Free text, may contain line breaks.
        special_notes: Free text; the section is omitted when empty.
    """

    title: str = ""

    agency_name: str = ""
    agency_email: str = ""
    agency_phone: str = ""
    agent_name: str = ""

    client_name: str = ""
    client_company: str = ""
    client_email: str = ""
    client_phone: str = ""
    client_address: str = ""
    client_city_state_zip: str = ""
    client_country: str = ""

    project_name: str = ""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    scope_of_work: str = ""
    payment_terms: str = ""
    special_notes: str = ""


# ---------------------------------------------------------------------------
# Document record (the stored entity)
# ---------------------------------------------------------------------------

class DocumentRecord(BaseModel):
    """A stored document and its signing state.

    Attributes:
        document_id: Opaque unique identifier.
        title: Agreement title, for display.
        status: Current lifecycle status.
        pdf: Current PDF bytes. The assembler output while pending, the
            embedder output once signed.
        client_name: Invited counterparty's name.
        client_email: Invited counterparty's email (identity gate target).
        token: Current signing token. Only honoured for writes while
            pending; after signing it opens the read-only signed view.
        created_at: Creation timestamp.
        signed_at: When the signature was embedded.
        signer_email: Claimed email that passed the identity gate.
        signer_ip: Client address recorded by the transport, if known.
    """

    document_id: str = Field(default_factory=lambda: str(uuid4()))
    title: str = ""
    status: DocumentStatus = DocumentStatus.PENDING
    pdf: bytes = b""
    client_name: str = ""
    client_email: str
    token: str
    created_at: datetime = Field(default_factory=utcnow)
    signed_at: Optional[datetime] = None
    signer_email: Optional[str] = None
    signer_ip: Optional[str] = None

    model_config = {"ser_json_bytes": "base64", "val_json_bytes": "base64"}

    @property
    def is_signed(self) -> bool:
        return self.status == DocumentStatus.SIGNED


# ---------------------------------------------------------------------------
# Results and views
# ---------------------------------------------------------------------------

class DocumentView(BaseModel):
    """What a token holder may see of a document."""

    document_id: str
    title: str = ""
    client_name: str = ""
    status: DocumentStatus
    signed_at: Optional[datetime] = None
    pdf: bytes

    model_config = {"ser_json_bytes": "base64", "val_json_bytes": "base64"}

    @classmethod
    def from_record(cls, record: DocumentRecord) -> "DocumentView":
        return cls(
            document_id=record.document_id,
            title=record.title,
            client_name=record.client_name,
            status=record.status,
            signed_at=record.signed_at,
            pdf=record.pdf,
        )


class CreateResult(BaseModel):
    """Outcome of creating a document."""

    document_id: str
    token: str
    pdf: bytes
    signing_url: Optional[str] = None

    model_config = {"ser_json_bytes": "base64", "val_json_bytes": "base64"}


class SignatureArtifact(BaseModel):
    """Normalized signature raster captured from the counterparty.

    Only ever lives inside the signed PDF; it is not stored on its own.

    Attributes:
        image: PNG bytes.
        captured_at: When the signature was submitted.
    """

    image: bytes
    captured_at: datetime = Field(default_factory=utcnow)
