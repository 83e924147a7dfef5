import enum
import io
from html.parser import HTMLParser
from typing import List, Optional, Union

from pydantic import BaseModel
from pypdf import PdfReader
from reportlab.lib.pagesizes import letter
from reportlab.lib.utils import ImageReader

from .. import config


class FailureReason(str, enum.Enum):
    INVALID_FORMAT = "invalid_format"
    CORRUPT_DATA = "corrupt_data"
    UNSUPPORTED_TYPE = "unsupported_type"


class RenderedPage(BaseModel):
    number: int
    width: float
    height: float
    rotation: int = 0
    text: Optional[str] = None


class Rendered(BaseModel):
    renderer: str
    pages: List[RenderedPage]

    @property
    def total_pages(self) -> int:
        return len(self.pages)


class RenderFailure(BaseModel):
    renderer: str
    reason: FailureReason
    detail: str


RenderResult = Union[Rendered, RenderFailure]


def render_pdf(content: bytes) -> RenderResult:
    if not content.lstrip().startswith(b"%PDF"):
        return RenderFailure(renderer="pdf", reason=FailureReason.INVALID_FORMAT, detail="missing %PDF header")
    try:
        reader = PdfReader(io.BytesIO(content))
        pages = [
            RenderedPage(
                number=i + 1,
                width=float(page.mediabox.width),
                height=float(page.mediabox.height),
                rotation=(page.rotation or 0) % 360,
            )
            for i, page in enumerate(reader.pages)
        ]
    except Exception as exc:
        # pypdf raises a wide range of errors on damaged files
        return RenderFailure(renderer="pdf", reason=FailureReason.CORRUPT_DATA, detail=str(exc))
    if not pages:
        return RenderFailure(renderer="pdf", reason=FailureReason.CORRUPT_DATA, detail="document has no pages")
    return Rendered(renderer="pdf", pages=pages)


class _TextExtractor(HTMLParser):
    def __init__(self):
        super().__init__()
        self.chunks: List[str] = []
        self._skip = 0

    def handle_starttag(self, tag, attrs):
        if tag in ("script", "style"):
            self._skip += 1

    def handle_endtag(self, tag):
        if tag in ("script", "style") and self._skip:
            self._skip -= 1

    def handle_data(self, data):
        if not self._skip and data.strip():
            self.chunks.append(data.strip())


def _decode_text(content: bytes) -> Optional[str]:
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        return None


def render_html(content: bytes) -> RenderResult:
    text = _decode_text(content)
    if text is None:
        return RenderFailure(renderer="html", reason=FailureReason.INVALID_FORMAT, detail="not UTF-8 text")
    lowered = text.lstrip().lower()
    if not (lowered.startswith("<!doctype html") or "<html" in lowered or "<body" in lowered):
        return RenderFailure(renderer="html", reason=FailureReason.INVALID_FORMAT, detail="no html markup")
    parser = _TextExtractor()
    parser.feed(text)
    parser.close()
    width, height = letter
    return Rendered(
        renderer="html",
        pages=[RenderedPage(number=1, width=width, height=height, text="\n".join(parser.chunks))],
    )


def render_image(content: bytes) -> RenderResult:
    try:
        width, height = ImageReader(io.BytesIO(content)).getSize()
    except Exception as exc:
        # ImageReader surfaces whatever the imaging backend raises
        return RenderFailure(renderer="image", reason=FailureReason.INVALID_FORMAT, detail=str(exc) or type(exc).__name__)
    return Rendered(renderer="image", pages=[RenderedPage(number=1, width=float(width), height=float(height))])


def render_text(content: bytes) -> RenderResult:
    text = _decode_text(content)
    if text is None:
        return RenderFailure(renderer="text", reason=FailureReason.UNSUPPORTED_TYPE, detail="not UTF-8 text")
    if any(ch == "\x00" or (ord(ch) < 32 and ch not in "\t\n\r\f") for ch in text):
        return RenderFailure(renderer="text", reason=FailureReason.UNSUPPORTED_TYPE, detail="binary content")
    if not text.strip():
        return RenderFailure(renderer="text", reason=FailureReason.INVALID_FORMAT, detail="empty document")

    lines = text.splitlines()
    per_page = max(config.TEXT_LINES_PER_PAGE, 1)
    width, height = letter
    pages = [
        RenderedPage(number=n + 1, width=width, height=height, text="\n".join(lines[start:start + per_page]))
        for n, start in enumerate(range(0, len(lines), per_page))
    ]
    return Rendered(renderer="text", pages=pages)


# Attempted in this order; the first success wins.
RENDERERS = (render_pdf, render_html, render_image, render_text)
