"""Embed a captured signature into an existing PDF.

The layout of the original document is not persisted, so the position of
the signature placeholder cannot be recovered from the bytes alone.
Instead of stamping over it, the embedder copies every existing page
untouched and appends one certificate page with the signature image and
the signing metadata. Existing content is never rewritten.

Signature input is decoded with Pillow. Uploads of any size or format are
normalized onto a fixed white canvas before embedding.
"""

import base64
import binascii
import logging
import re
from datetime import datetime, timezone
from io import BytesIO
from typing import Optional, Union

from PIL import Image
from pypdf import PdfReader, PdfWriter

from .errors import DocumentDecodeError, ImageDecodeError
from .layout import MID_GREY, PageLayout
from .models import utcnow

logger = logging.getLogger("signflow.embedder")

CERTIFICATE_PAGE_SIZE = (595.0, 400.0)
CERTIFICATE_HEADING = "DIGITAL SIGNATURE CERTIFICATE"
CERTIFICATE_FOOTER = "This document has been digitally signed and secured via SignFlow."

# Native pixels are scaled by this factor, then fitted into the box.
SIGNATURE_SCALE = 0.5
SIGNATURE_MAX_SIZE = (200.0, 80.0)
DEFAULT_CANVAS = (600, 200)

_DATA_URL = re.compile(r"^data:.*?;base64,(.*)$", re.IGNORECASE | re.DOTALL)


# ---------------------------------------------------------------------------
# Signature image handling
# ---------------------------------------------------------------------------

def decode_signature_payload(data: Union[bytes, str]) -> bytes:
    """Turn a submitted signature into raw image bytes.

    Args:
        data: Raw image bytes, a base64 string, or a ``data:`` URL.

    Returns:
        Raw image bytes (not yet checked to be an image).

    Raises:
        ImageDecodeError: If a string payload is not valid base64.
    """
    if isinstance(data, bytes):
        return data

    b64_data = data.strip()
    if b64_data.lower().startswith("data:"):
        match = _DATA_URL.match(b64_data)
        if not match:
            raise ImageDecodeError("Signature data URL is not base64-encoded")
        b64_data = match.group(1).strip()

    b64_clean = re.sub(r"[^A-Za-z0-9+/=]", "", b64_data)
    missing_padding = len(b64_clean) % 4
    if missing_padding:
        b64_clean += "=" * (4 - missing_padding)

    try:
        raw = base64.b64decode(b64_clean, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ImageDecodeError("Unable to decode signature image") from exc
    if not raw:
        raise ImageDecodeError("Signature image is empty")
    return raw


def open_image(image_bytes: bytes) -> Image.Image:
    """Decode and fully load an image.

    Raises:
        ImageDecodeError: If Pillow cannot read the data.
    """
    try:
        probe = Image.open(BytesIO(image_bytes))
        probe.verify()
        image = Image.open(BytesIO(image_bytes))
        image.load()
    except Exception as exc:
        raise ImageDecodeError("Invalid signature image format or corrupt data.") from exc
    return image


def normalize_signature(
    image_bytes: bytes,
    canvas: tuple[int, int] = DEFAULT_CANVAS,
) -> bytes:
    """Centre a signature on a white canvas.

    The image is scaled down to fit (never up) with its aspect ratio
    kept. Transparent pixels become white.

    Args:
        image_bytes: Any image Pillow can read.
        canvas: (width, height) of the output in pixels.

    Returns:
        PNG bytes of size ``canvas``.
    """
    image = open_image(image_bytes).convert("RGBA")
    max_w, max_h = canvas
    ratio = min(max_w / image.width, max_h / image.height, 1.0)
    w = max(1, round(image.width * ratio))
    h = max(1, round(image.height * ratio))
    if (w, h) != image.size:
        image = image.resize((w, h), Image.Resampling.LANCZOS)

    background = Image.new("RGB", (max_w, max_h), "white")
    background.paste(image, ((max_w - w) // 2, (max_h - h) // 2), image)

    out = BytesIO()
    background.save(out, format="PNG")
    return out.getvalue()


def load_signature(
    data: Union[bytes, str],
    canvas: tuple[int, int] = DEFAULT_CANVAS,
) -> bytes:
    """Decode a submitted signature and normalize it when needed.

    An opaque PNG that already has the canvas size is used as is;
    anything else goes through :func:`normalize_signature`.
    """
    raw = decode_signature_payload(data)
    image = open_image(raw)
    if image.format == "PNG" and image.size == tuple(canvas) and image.mode == "RGB":
        return raw
    return normalize_signature(raw, canvas)


# ---------------------------------------------------------------------------
# PDF handling
# ---------------------------------------------------------------------------

def read_pdf(pdf: bytes) -> PdfReader:
    """Parse PDF bytes strictly.

    Raises:
        DocumentDecodeError: If the bytes are not a PDF with pages.
    """
    try:
        reader = PdfReader(BytesIO(pdf), strict=True)
        page_count = len(reader.pages)
    except Exception as exc:
        raise DocumentDecodeError(f"Stored document is not a readable PDF: {exc}") from exc
    if page_count == 0:
        raise DocumentDecodeError("Stored document has no pages")
    return reader


def count_pages(pdf: bytes) -> int:
    return len(read_pdf(pdf).pages)


def _fit(width: float, height: float) -> tuple[float, float]:
    max_w, max_h = SIGNATURE_MAX_SIZE
    scale = min(SIGNATURE_SCALE, max_w / width, max_h / height)
    return width * scale, height * scale


def _fmt_timestamp(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%d %H:%M:%S UTC")


class SignatureEmbedder:
    """Appends a signing certificate page to a PDF."""

    def embed(
        self,
        pdf: bytes,
        signature: bytes,
        identity: str,
        signed_at: Optional[datetime] = None,
    ) -> bytes:
        """Return a copy of ``pdf`` with a certificate page appended.

        Args:
            pdf: Existing PDF bytes. Left unmodified.
            signature: Raster signature image bytes.
            identity: Authenticated identity printed on the certificate.
            signed_at: Signing time (defaults to now).

        Returns:
            New PDF bytes with one more page than ``pdf``.

        Raises:
            DocumentDecodeError: If ``pdf`` cannot be parsed.
            ImageDecodeError: If ``signature`` cannot be decoded.
        """
        reader = read_pdf(pdf)
        image = open_image(signature).convert("RGBA")
        signed_at = signed_at or utcnow()

        writer = PdfWriter()
        for page in reader.pages:
            writer.add_page(page)
        if reader.metadata:
            writer.add_metadata(dict(reader.metadata))

        certificate = self.render_certificate(image, identity, signed_at)
        writer.add_page(PdfReader(BytesIO(certificate)).pages[0])

        out = BytesIO()
        writer.write(out)
        result = out.getvalue()
        logger.info(
            "Embedded signature: %d -> %d page(s)", len(reader.pages), len(writer.pages)
        )
        return result

    @staticmethod
    def render_certificate(image: Image.Image, identity: str, signed_at: datetime) -> bytes:
        """Render the certificate as a single-page PDF."""
        layout = PageLayout(page_size=CERTIFICATE_PAGE_SIZE, margin=50.0)
        x = layout.margin
        layout.draw_text_at(x, 350, CERTIFICATE_HEADING, 16, bold=True)
        layout.draw_text_at(x, 320, f"Signed by Identity: {identity}", 12)
        layout.draw_text_at(x, 300, f"Date Signed: {_fmt_timestamp(signed_at)}", 12)

        width, height = _fit(image.width, image.height)
        layout.draw_image(image, x, 200, width, height)

        layout.draw_text_at(x, 50, CERTIFICATE_FOOTER, 10, color=MID_GREY)
        return layout.finish()
