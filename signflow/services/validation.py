import re
from datetime import datetime
from typing import List

from pydantic import BaseModel, computed_field

from ..errors import ValidationError
from ..models import (
    EMAIL_PATTERN,
    VALUE_KIND_BY_FIELD_TYPE,
    ChoiceValue,
    Document,
    DocumentField,
    FieldType,
    FieldValue,
    TextValue,
    ValidationKind,
)

LONG_TITLE = 100

# Accepted shapes for a date typed into a text field
_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%d.%m.%Y")


class ValidationReport(BaseModel):
    errors: List[str] = []
    warnings: List[str] = []

    @computed_field
    @property
    def is_valid(self) -> bool:
        return not self.errors


def _looks_like_date(text: str) -> bool:
    for fmt in _DATE_FORMATS:
        try:
            datetime.strptime(text, fmt)
            return True
        except ValueError:
            continue
    return False


def validate_value(field: DocumentField, value: FieldValue) -> None:
    """Reject a value that does not fit the field.

    Raises ValidationError when the value kind does not match the field type,
    a choice is outside the declared options, or a text value fails the
    field's validation descriptor.
    """
    expected = VALUE_KIND_BY_FIELD_TYPE[field.type]
    if not isinstance(value, expected):
        raise ValidationError(
            f"{field.display_name} expects a {expected.model_fields['kind'].default} value, got {value.kind}"
        )

    if isinstance(value, ChoiceValue) and field.options and value.choice not in field.options:
        raise ValidationError(f"{value.choice!r} is not an option for {field.display_name}")

    if field.validation is None or not isinstance(value, TextValue):
        return

    rule = field.validation
    text = value.text
    message = rule.message or f"{field.display_name} is not valid"
    if rule.kind == ValidationKind.EMAIL:
        ok = bool(EMAIL_PATTERN.match(text))
    elif rule.kind == ValidationKind.DATE and not rule.pattern:
        ok = _looks_like_date(text)
    elif rule.pattern:
        try:
            ok = re.search(rule.pattern, text) is not None
        except re.error as exc:
            raise ValidationError(f"{field.display_name} has a broken pattern: {exc}") from exc
    else:
        ok = True
    if not ok:
        raise ValidationError(message)


def _overlaps(a: DocumentField, b: DocumentField) -> bool:
    return (
        a.page == b.page
        and a.x < b.x + b.width
        and a.x + a.width > b.x
        and a.y < b.y + b.height
        and a.y + a.height > b.y
    )


def validate_document(document: Document) -> ValidationReport:
    """Pre-send checklist for authors. Does not mutate anything."""
    report = ValidationReport()

    if len(document.title) > LONG_TITLE:
        report.warnings.append(f"Document title is very long (over {LONG_TITLE} characters)")
    if not document.signers:
        report.errors.append("Document has no signers")

    signer_ids = {s.id for s in document.signers}
    orders = [s.order for s in document.signers]
    if len(orders) != len(set(orders)):
        report.errors.append("Signers share the same signing order")

    for index, field in enumerate(document.fields, start=1):
        if field.signer_id and field.signer_id not in signer_ids:
            report.errors.append(f"Field {index}: assigned to non-existent signer")
        if field.type in (FieldType.DROPDOWN, FieldType.RADIO) and not field.options:
            report.errors.append(f"Field {index}: {field.type.value} needs at least one option")
        if field.required and field.signer_id is None:
            report.warnings.append(f"Field {index}: required but not assigned to a signer")

    for index, signer in enumerate(document.signers, start=1):
        if not document.fields_for_signer(signer.id):
            report.warnings.append(f"Signer {index}: {signer.name} has no fields to complete")

    fields = document.fields
    for i, first in enumerate(fields):
        for second in fields[i + 1:]:
            if _overlaps(first, second):
                report.warnings.append(f"Fields overlap: {first.display_name} and {second.display_name}")

    return report
