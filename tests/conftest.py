"""Shared fixtures for SignFlow tests."""

from datetime import date
from io import BytesIO

import pytest
from PIL import Image, ImageDraw

from signflow.access import AccessController
from signflow.config import SignFlowConfig
from signflow.models import Agreement
from signflow.store import FileRecordStore, MemoryRecordStore


def make_signature_png(size: tuple[int, int] = (300, 150), transparent: bool = True) -> bytes:
    """Draw a squiggle and return it as PNG bytes."""
    background = (0, 0, 0, 0) if transparent else (255, 255, 255, 255)
    img = Image.new("RGBA", size, background)
    draw = ImageDraw.Draw(img)
    w, h = size
    draw.line(
        [(w * 0.1, h * 0.7), (w * 0.3, h * 0.3), (w * 0.5, h * 0.6), (w * 0.9, h * 0.2)],
        fill=(0, 0, 0, 255),
        width=3,
    )
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def signature_png() -> bytes:
    return make_signature_png()


@pytest.fixture
def agreement() -> Agreement:
    """A fully filled-in agreement."""
    return Agreement(
        title="Service Agreement",
        agency_name="Northwind Creative",
        agency_email="hello@northwind.example",
        agency_phone="+1 555 0100",
        agent_name="John Agent",
        client_name="Jane Client",
        client_company="Acme Corp",
        client_email="client@gmail.com",
        client_phone="+1 555 0199",
        client_address="1 Main Street",
        client_city_state_zip="Springfield, IL 62701",
        client_country="USA",
        project_name="Website Redesign",
        start_date=date(2026, 11, 1),
        end_date=date(2027, 2, 28),
        scope_of_work="Design and build a marketing site.\n\nIncludes three revisions.",
        payment_terms="50% upfront, 50% on delivery. Net 15.",
        special_notes="Client supplies all copy.",
    )


@pytest.fixture
def long_agreement(agreement) -> Agreement:
    """Agreement whose free text runs over several pages."""
    scope = "\n".join(
        f"Deliverable {i}: produce, review and hand over the artefacts agreed "
        f"for milestone {i}, including documentation and source files."
        for i in range(1, 121)
    )
    return agreement.model_copy(update={"scope_of_work": scope})


@pytest.fixture
def memory_store():
    return MemoryRecordStore()


@pytest.fixture
def tmp_store(tmp_path):
    """Create a temporary FileRecordStore."""
    return FileRecordStore(base_dir=tmp_path)


@pytest.fixture
def controller(memory_store) -> AccessController:
    return AccessController(memory_store, config=SignFlowConfig(data_dir="/nonexistent"))
