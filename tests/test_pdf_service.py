import io

import pytest
from pypdf import PdfReader

from signflow.errors import ValidationError
from signflow.models import CheckedValue, Document, DocumentField, SignatureValue, TextValue
from signflow.services.pdf_service import burn_fields

from conftest import make_pdf


def test_burn_draws_filled_fields_on_their_pages():
    document = Document(
        title="Lease",
        content=make_pdf(pages=2),
        fields=[
            DocumentField(page=2, x=10, y=80, width=40, height=5, value=TextValue(text="Ada Lovelace")),
            DocumentField(page=1, type="checkbox", x=5, y=5, width=3, height=3, value=CheckedValue(checked=True)),
            DocumentField(page=1, x=50, y=50, width=20, height=5),
        ],
    )

    reader = PdfReader(io.BytesIO(burn_fields(document)))

    assert len(reader.pages) == 2
    assert "Ada Lovelace" in reader.pages[1].extract_text()
    assert "Ada Lovelace" not in reader.pages[0].extract_text()
    assert "X" in reader.pages[0].extract_text()


def test_bad_signature_image_is_skipped():
    document = Document(
        title="Lease",
        content=make_pdf(),
        fields=[
            DocumentField(type="signature", x=10, y=10, width=30, height=8, value=SignatureValue(data=b"not an image")),
            DocumentField(x=10, y=30, width=30, height=5, value=TextValue(text="Still here")),
        ],
    )

    reader = PdfReader(io.BytesIO(burn_fields(document)))

    assert "Still here" in reader.pages[0].extract_text()


def test_non_pdf_cannot_be_burned():
    with pytest.raises(ValidationError):
        burn_fields(Document(title="Notes", content=b"plain text"))
