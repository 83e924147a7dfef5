import io
import logging
from typing import Dict, List

from pypdf import PdfReader, PdfWriter
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from ..errors import ValidationError
from ..models import CheckedValue, Document, DocumentField, SignatureValue, display_text, is_filled

logger = logging.getLogger(__name__)

FONT = "Helvetica"
MAX_FONT_SIZE = 12
MIN_FONT_SIZE = 6


def _field_box(field: DocumentField, width: float, height: float):
    """Percentages from the top-left corner to PDF points from the bottom-left."""
    x = field.x / 100.0 * width
    w = field.width / 100.0 * width
    h = field.height / 100.0 * height
    y = height - (field.y / 100.0 * height) - h
    return x, y, w, h


def _draw_field(c: canvas.Canvas, field: DocumentField, width: float, height: float) -> None:
    x, y, w, h = _field_box(field, width, height)
    value = field.value

    if isinstance(value, SignatureValue):
        try:
            c.drawImage(ImageReader(io.BytesIO(value.data)), x, y, width=w, height=h,
                        mask="auto", preserveAspectRatio=True, anchor="sw")
        except Exception:
            # Signature payloads are opaque; one bad image should not sink the export
            logger.exception("Could not draw signature for field %s", field.id)
        return

    text = display_text(value)
    if isinstance(value, CheckedValue):
        size = max(min(h * 0.8, MAX_FONT_SIZE * 1.5), MIN_FONT_SIZE)
        c.setFont(FONT, size)
        c.drawCentredString(x + w / 2, y + (h - size) / 2 + size * 0.15, text)
        return

    size = max(min(h * 0.7, MAX_FONT_SIZE), MIN_FONT_SIZE)
    c.setFont(FONT, size)
    c.drawString(x + 2, y + (h - size) / 2 + size * 0.2, text)


def burn_fields(document: Document) -> bytes:
    """Return a copy of the document's PDF with every filled field drawn in."""
    if not document.content.lstrip().startswith(b"%PDF"):
        raise ValidationError(f"Document {document.id} is not a PDF and cannot be exported")

    try:
        reader = PdfReader(io.BytesIO(document.content))
        pages = list(reader.pages)
    except Exception as exc:
        raise ValidationError(f"Document {document.id} could not be read as a PDF: {exc}") from exc
    writer = PdfWriter()

    # Group fields by page
    fields_by_page: Dict[int, List[DocumentField]] = {}
    for field in document.fields:
        if is_filled(field.value):
            fields_by_page.setdefault(field.page, []).append(field)

    for i, page in enumerate(pages):
        page_num = i + 1

        if page_num in fields_by_page:
            packet = io.BytesIO()
            width = float(page.mediabox.width)
            height = float(page.mediabox.height)

            c = canvas.Canvas(packet, pagesize=(width, height))
            for field in fields_by_page[page_num]:
                _draw_field(c, field, width, height)
            c.save()
            packet.seek(0)

            overlay = PdfReader(packet)
            page.merge_page(overlay.pages[0])

        writer.add_page(page)

    missing = sorted(p for p in fields_by_page if p > len(pages))
    if missing:
        logger.warning("Document %s has filled fields on pages %s beyond its %d page(s)",
                       document.id, missing, len(pages))

    output_buffer = io.BytesIO()
    writer.write(output_buffer)
    return output_buffer.getvalue()
