"""Field overlay geometry and document loading for the viewer.

Field geometry is stored as percentages of the unrotated page. The helpers
here translate between that and the pixels of a rendered surface at a given
zoom and clockwise rotation.
"""
import asyncio
import base64
import binascii
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple, TypeVar, Union

from pydantic import BaseModel

from ..errors import StateConflictError, ValidationError
from ..models import DocumentField
from .renderers import RENDERERS, Rendered, RenderedPage, RenderFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

ROTATIONS = (0, 90, 180, 270)


class PixelRect(BaseModel):
    left: float
    top: float
    width: float
    height: float


def hit_test(fields: Iterable[DocumentField], page: int, x: float, y: float) -> Optional[DocumentField]:
    """Return the field under a point given in page percentages.

    Overlapping fields resolve to the first one in list order, which is also
    insertion order.
    """
    for field in fields:
        if field.contains(page, x, y):
            return field
    return None


def clamp_drag(field: DocumentField, x: float, y: float) -> Tuple[float, float]:
    return (
        min(max(x, 0.0), 100.0 - field.width),
        min(max(y, 0.0), 100.0 - field.height),
    )


def _surface(page_width: float, page_height: float, zoom: float, rotation: int) -> Tuple[float, float]:
    if zoom <= 0:
        raise ValidationError("Zoom must be positive")
    if rotation not in ROTATIONS:
        raise ValidationError(f"Rotation must be one of {ROTATIONS}")
    if page_width <= 0 or page_height <= 0:
        raise ValidationError("Page dimensions must be positive")
    return page_width * zoom, page_height * zoom


def to_pixels(field: DocumentField, page_width: float, page_height: float,
              zoom: float = 1.0, rotation: int = 0) -> PixelRect:
    w, h = _surface(page_width, page_height, zoom, rotation)
    left = field.x / 100.0 * w
    top = field.y / 100.0 * h
    width = field.width / 100.0 * w
    height = field.height / 100.0 * h

    if rotation == 90:
        return PixelRect(left=h - (top + height), top=left, width=height, height=width)
    if rotation == 180:
        return PixelRect(left=w - (left + width), top=h - (top + height), width=width, height=height)
    if rotation == 270:
        return PixelRect(left=top, top=w - (left + width), width=height, height=width)
    return PixelRect(left=left, top=top, width=width, height=height)


def to_percent(px: float, py: float, page_width: float, page_height: float,
               zoom: float = 1.0, rotation: int = 0) -> Tuple[float, float]:
    """Map a pointer position on the rendered surface back to page percentages."""
    w, h = _surface(page_width, page_height, zoom, rotation)
    if rotation == 90:
        px, py = py, h - px
    elif rotation == 180:
        px, py = w - px, h - py
    elif rotation == 270:
        px, py = w - py, px
    return px / w * 100.0, py / h * 100.0


# Loading


class DocumentView(BaseModel):
    renderer: str
    total_pages: int
    pages: List[RenderedPage]
    file_name: Optional[str] = None
    mime_type: Optional[str] = None


class DiagnosticView(BaseModel):
    message: str
    failures: List[RenderFailure]
    file_name: Optional[str] = None
    mime_type: Optional[str] = None


ViewResult = Union[DocumentView, DiagnosticView]


def _unwrap(content: bytes) -> bytes:
    if content.startswith(b"data:") and b"base64," in content[:200]:
        try:
            return base64.b64decode(content.split(b"base64,", 1)[1], validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Content looked like a data URL but did not decode")
    return content


def load_view(content: bytes, mime_type: Optional[str] = None, file_name: Optional[str] = None) -> ViewResult:
    """Try each renderer in turn and return the first that succeeds.

    Never raises: when every renderer fails the caller gets a diagnostic
    view listing why each one gave up.
    """
    content = _unwrap(content or b"")
    failures: List[RenderFailure] = []
    for render in RENDERERS:
        result = render(content)
        if isinstance(result, Rendered):
            if failures:
                logger.info("Loaded %s with the %s renderer after %d fallback(s)",
                            file_name or "document", result.renderer, len(failures))
            return DocumentView(
                renderer=result.renderer,
                total_pages=result.total_pages,
                pages=result.pages,
                file_name=file_name,
                mime_type=mime_type,
            )
        failures.append(result)

    logger.warning("No renderer could display %s (%s)", file_name or "document", mime_type or "unknown type")
    return DiagnosticView(
        message="This document could not be displayed",
        failures=failures,
        file_name=file_name,
        mime_type=mime_type,
    )


class RenderScheduler:
    """At most one in-flight render per output surface.

    Starting a render on a surface cancels whatever was still running there;
    the superseded caller gets a StateConflictError instead of a result.
    """

    def __init__(self):
        self._active: Dict[str, asyncio.Task] = {}
        self._superseded: Set[asyncio.Task] = set()

    def is_busy(self, surface: str) -> bool:
        task = self._active.get(surface)
        return task is not None and not task.done()

    async def render(self, surface: str, job: Callable[[], Awaitable[T]]) -> T:
        previous = self._active.get(surface)
        if previous is not None and not previous.done():
            logger.debug("Superseding render on %s", surface)
            self._superseded.add(previous)
            previous.cancel()
        task = asyncio.ensure_future(job())
        self._active[surface] = task
        try:
            return await task
        except asyncio.CancelledError:
            if task not in self._superseded:
                raise
            raise StateConflictError(f"Render on {surface} was superseded by a newer request") from None
        finally:
            self._superseded.discard(task)
            if self._active.get(surface) is task:
                del self._active[surface]

    async def load(self, surface: str, content: bytes, mime_type: Optional[str] = None,
                   file_name: Optional[str] = None) -> ViewResult:
        return await self.render(surface, lambda: asyncio.to_thread(load_view, content, mime_type, file_name))
