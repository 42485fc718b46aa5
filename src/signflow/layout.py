"""Page layout primitives on top of a reportlab canvas.

``PageLayout`` keeps a cursor that walks down the page. Every drawing
call checks the cursor first and starts a fresh page of the same size
when it has dropped below the bottom margin, so a long field or text
block simply continues on the next page.

Coordinates follow PDF conventions: the origin is the bottom-left corner
and ``y`` grows upwards.

Besides writing to the canvas, the layout records what it drew on each
page (``pages``). reportlab offers no way to read a canvas back, and the
log is handy for checking pagination without re-parsing the PDF.
"""

import logging
from dataclasses import dataclass, field
from io import BytesIO
from typing import Optional, Union

from PIL import Image
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

logger = logging.getLogger("signflow.layout")

A4 = (595.0, 842.0)

FONT = "Helvetica"
BOLD_FONT = "Helvetica-Bold"

LEADING = 6.0
LINE_HEIGHT = 14.0
VALUE_COLUMN = 120.0

RGB = tuple[float, float, float]

BLACK: RGB = (0.0, 0.0, 0.0)
DARK_GREY: RGB = (0.3, 0.3, 0.3)
MID_GREY: RGB = (0.5, 0.5, 0.5)
LIGHT_GREY: RGB = (0.8, 0.8, 0.8)
SHADE: RGB = (0.9, 0.9, 0.9)
BRAND_BLUE: RGB = (0.0, 0.3, 0.6)


# ---------------------------------------------------------------------------
# Draw operation log
# ---------------------------------------------------------------------------

@dataclass
class TextRun:
    text: str
    x: float
    y: float
    size: float
    bold: bool = False
    color: RGB = BLACK


@dataclass
class Rect:
    x: float
    y: float
    width: float
    height: float
    fill: Optional[RGB] = None
    stroke: Optional[RGB] = None


@dataclass
class ImageRun:
    x: float
    y: float
    width: float
    height: float


DrawOp = Union[TextRun, Rect, ImageRun]


@dataclass
class Page:
    """One page of the layout and the operations drawn on it."""

    width: float
    height: float
    ops: list[DrawOp] = field(default_factory=list)

    def texts(self) -> list[str]:
        return [op.text for op in self.ops if isinstance(op, TextRun)]


# ---------------------------------------------------------------------------
# Text measurement
# ---------------------------------------------------------------------------

def text_width(text: str, size: float, bold: bool = False) -> float:
    """Rendered width of ``text`` in points."""
    return stringWidth(text, BOLD_FONT if bold else FONT, size)


def wrap_text(text: str, max_width: float, size: float = 10, bold: bool = False) -> list[str]:
    """Greedy word wrap.

    Words are added to the current line while ``line + " " + word`` stays
    narrower than ``max_width``. A word that is wider than ``max_width``
    on its own gets a line to itself and overflows; it is never split.

    Args:
        text: Text without line breaks.
        max_width: Available width in points.
        size: Font size.
        bold: Measure with the bold face.

    Returns:
        Wrapped lines. Empty when ``text`` has no words.
    """
    words = text.split()
    if not words:
        return []

    lines: list[str] = []
    current = words[0]
    for word in words[1:]:
        candidate = f"{current} {word}"
        if text_width(candidate, size, bold) < max_width:
            current = candidate
        else:
            lines.append(current)
            current = word
    lines.append(current)
    return lines


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------

class PageLayout:
    """Cursor-driven writer for fixed-size pages.

    Args:
        page_size: (width, height) in points, shared by every page.
        margin: Margin on all four sides, in points.
        title: PDF title metadata.
        author: PDF author metadata.
    """

    def __init__(
        self,
        page_size: tuple[float, float] = A4,
        margin: float = 50.0,
        title: Optional[str] = None,
        author: Optional[str] = None,
    ) -> None:
        self.width, self.height = page_size
        self.margin = margin
        self._buffer = BytesIO()
        self._canvas = canvas.Canvas(self._buffer, pagesize=page_size, invariant=1)
        if title:
            self._canvas.setTitle(title)
        if author:
            self._canvas.setAuthor(author)
        self._pdf: Optional[bytes] = None

        self.pages: list[Page] = [Page(self.width, self.height)]
        self.y = self.top

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    @property
    def top(self) -> float:
        return self.height - self.margin

    @property
    def content_width(self) -> float:
        return self.width - 2 * self.margin

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def current_page(self) -> Page:
        return self.pages[-1]

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    def new_page(self) -> None:
        """Close the current page and continue at the top of a new one."""
        self._canvas.showPage()
        self.pages.append(Page(self.width, self.height))
        self.y = self.top
        logger.debug("Started page %d", self.page_count)

    def _check_page(self, reserve: float = 0.0) -> None:
        if self.y < self.margin + reserve:
            self.new_page()

    def ensure_space(self, points: float) -> None:
        """Start a new page unless ``points`` fit above the bottom margin."""
        if self.y - points < self.margin:
            self.new_page()

    def skip(self, points: float) -> None:
        self.y -= points

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    def draw_text_at(
        self,
        x: float,
        y: float,
        text: str,
        size: float = 10,
        bold: bool = False,
        color: RGB = BLACK,
    ) -> None:
        """Draw a text run at an absolute position. The cursor is untouched."""
        self._canvas.setFillColorRGB(*color)
        self._canvas.setFont(BOLD_FONT if bold else FONT, size)
        self._canvas.drawString(x, y, text)
        self.current_page.ops.append(TextRun(text, x, y, size, bold, color))

    def draw_rect(
        self,
        x: float,
        y: float,
        width: float,
        height: float,
        fill: Optional[RGB] = None,
        stroke: Optional[RGB] = None,
        line_width: float = 1.0,
    ) -> None:
        if fill is not None:
            self._canvas.setFillColorRGB(*fill)
        if stroke is not None:
            self._canvas.setStrokeColorRGB(*stroke)
            self._canvas.setLineWidth(line_width)
        self._canvas.rect(
            x, y, width, height,
            stroke=int(stroke is not None),
            fill=int(fill is not None),
        )
        self.current_page.ops.append(Rect(x, y, width, height, fill, stroke))

    def draw_image(self, image: Image.Image, x: float, y: float, width: float, height: float) -> None:
        self._canvas.drawImage(ImageReader(image), x, y, width=width, height=height, mask="auto")
        self.current_page.ops.append(ImageRun(x, y, width, height))

    # ------------------------------------------------------------------
    # Flowing content
    # ------------------------------------------------------------------

    def draw_line(self, text: str, size: float = 10, bold: bool = False, color: RGB = BLACK) -> None:
        """Draw one line at the left margin and move down ``size + LEADING``."""
        self._check_page()
        self.draw_text_at(self.margin, self.y, text, size, bold, color)
        self.y -= size + LEADING

    def draw_field(self, label: str, value: str) -> None:
        """Bold label in the left column, wrapped value in the second column."""
        self._check_page(reserve=20)
        self.draw_text_at(self.margin, self.y, label, 10, bold=True, color=DARK_GREY)

        value_x = self.margin + VALUE_COLUMN
        lines = wrap_text(value, self.content_width - VALUE_COLUMN) or ["-"]
        for i, line in enumerate(lines):
            if i:
                self._check_page()
            self.draw_text_at(value_x, self.y, line, 10)
            self.y -= LINE_HEIGHT
        self.y -= LEADING

    def draw_section_header(self, title: str) -> None:
        """Shaded band with a bold title."""
        self.y -= 10
        self._check_page(reserve=20)
        self.draw_rect(self.margin, self.y - 5, self.content_width, 20, fill=SHADE)
        self.draw_text_at(self.margin + 5, self.y, title, 12, bold=True)
        self.y -= 30

    def draw_paragraphs(self, text: str) -> None:
        """Split on explicit line breaks and wrap each line to the content width."""
        for paragraph in text.replace("\r\n", "\n").split("\n"):
            lines = wrap_text(paragraph, self.content_width)
            if not lines:
                self.y -= 10
                continue
            for line in lines:
                self._check_page()
                self.draw_text_at(self.margin, self.y, line, 10)
                self.y -= LINE_HEIGHT

    def draw_block(self, title: str, text: str) -> None:
        """Section header followed by free text."""
        self.draw_section_header(title)
        self.draw_paragraphs(text)
        self.y -= 10

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def finish(self) -> bytes:
        """Close the canvas and return the PDF bytes."""
        if self._pdf is None:
            self._canvas.save()
            self._pdf = self._buffer.getvalue()
        return self._pdf
