import base64
import binascii
import enum
import re
import uuid
from datetime import date, datetime, timezone
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, Field, PlainSerializer, field_validator, model_validator

from .errors import NotFoundError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _decode_payload(value):
    # Strings are base64, optionally wrapped in a data URL.
    if isinstance(value, str):
        if value.startswith("data:") and "," in value:
            value = value.split(",", 1)[1]
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("payload must be base64 encoded") from exc
    return value


Payload = Annotated[
    bytes,
    BeforeValidator(_decode_payload),
    PlainSerializer(lambda v: base64.b64encode(v).decode("ascii"), return_type=str, when_used="json"),
]


class FieldType(str, enum.Enum):
    TEXT = "text"
    SIGNATURE = "signature"
    DATE = "date"
    CHECKBOX = "checkbox"
    DROPDOWN = "dropdown"
    RADIO = "radio"


class SignerStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    SIGNED = "signed"
    DECLINED = "declined"
    BOUNCED = "bounced"


class DocumentStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    DECLINED = "declined"
    EXPIRED = "expired"
    VOIDED = "voided"


TERMINAL_STATUSES = frozenset(
    {DocumentStatus.COMPLETED, DocumentStatus.DECLINED, DocumentStatus.EXPIRED, DocumentStatus.VOIDED}
)
ACTIVE_STATUSES = frozenset({DocumentStatus.SENT, DocumentStatus.IN_PROGRESS})


class SigningOrder(str, enum.Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class ValidationKind(str, enum.Enum):
    REGEX = "regex"
    DATE = "date"
    EMAIL = "email"
    CUSTOM = "custom"


class AuthRequirement(str, enum.Enum):
    NONE = "none"
    EMAIL = "email"
    SMS = "sms"
    KNOWLEDGE = "knowledge"


# Field values


class TextValue(BaseModel):
    kind: Literal["text"] = "text"
    text: str


class SignatureValue(BaseModel):
    kind: Literal["signature"] = "signature"
    data: Payload


class CheckedValue(BaseModel):
    kind: Literal["checked"] = "checked"
    checked: bool


class DateValue(BaseModel):
    kind: Literal["date"] = "date"
    date: date


class ChoiceValue(BaseModel):
    kind: Literal["choice"] = "choice"
    choice: str


FieldValue = Annotated[
    Union[TextValue, SignatureValue, CheckedValue, DateValue, ChoiceValue],
    Field(discriminator="kind"),
]

VALUE_KIND_BY_FIELD_TYPE = {
    FieldType.TEXT: TextValue,
    FieldType.SIGNATURE: SignatureValue,
    FieldType.DATE: DateValue,
    FieldType.CHECKBOX: CheckedValue,
    FieldType.DROPDOWN: ChoiceValue,
    FieldType.RADIO: ChoiceValue,
}


def is_filled(value: Optional[FieldValue]) -> bool:
    """Whether a value counts as completing a required field.

    An unchecked checkbox is treated as empty: a required checkbox is an
    acknowledgement that has to be ticked.
    """
    if value is None:
        return False
    if isinstance(value, TextValue):
        return bool(value.text.strip())
    if isinstance(value, SignatureValue):
        return len(value.data) > 0
    if isinstance(value, CheckedValue):
        return value.checked
    if isinstance(value, DateValue):
        return True
    if isinstance(value, ChoiceValue):
        return bool(value.choice.strip())
    raise TypeError(f"unknown field value {value!r}")


def display_text(value: Optional[FieldValue]) -> str:
    if value is None:
        return ""
    if isinstance(value, TextValue):
        return value.text
    if isinstance(value, SignatureValue):
        return "[signature]"
    if isinstance(value, CheckedValue):
        return "X" if value.checked else ""
    if isinstance(value, DateValue):
        return value.date.isoformat()
    if isinstance(value, ChoiceValue):
        return value.choice
    raise TypeError(f"unknown field value {value!r}")


# Aggregate


class FieldValidation(BaseModel):
    kind: ValidationKind
    pattern: Optional[str] = None
    message: Optional[str] = None


class DocumentField(BaseModel):
    id: str = Field(default_factory=lambda: new_id("field"))
    type: FieldType = FieldType.TEXT
    page: int = Field(default=1, ge=1)
    x: float = Field(ge=0, le=100)
    y: float = Field(ge=0, le=100)
    width: float = Field(gt=0, le=100)
    height: float = Field(gt=0, le=100)
    signer_id: Optional[str] = None
    required: bool = True
    value: Optional[FieldValue] = None
    label: Optional[str] = None
    tooltip: Optional[str] = None
    validation: Optional[FieldValidation] = None
    options: List[str] = []

    @model_validator(mode="after")
    def check_bounds(self):
        if self.x + self.width > 100 or self.y + self.height > 100:
            raise ValueError("field must lie within the page (x + width and y + height at most 100%)")
        return self

    @property
    def display_name(self) -> str:
        return self.label or f"{self.type.value} field"

    def contains(self, page: int, x: float, y: float) -> bool:
        return (
            self.page == page
            and self.x <= x <= self.x + self.width
            and self.y <= y <= self.y + self.height
        )


class Signer(BaseModel):
    id: str = Field(default_factory=lambda: new_id("signer"))
    name: str
    email: str
    role: str = "signer"
    status: SignerStatus = SignerStatus.PENDING
    order: int = Field(default=1, ge=1)
    signed_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    decline_reason: Optional[str] = None
    reminder_count: int = 0
    last_reminder_at: Optional[datetime] = None
    require_auth: AuthRequirement = AuthRequirement.NONE
    can_delegate: bool = False

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("signer name is required")
        return v

    @field_validator("email")
    @classmethod
    def email_shape(cls, v: str) -> str:
        v = v.strip()
        if not EMAIL_PATTERN.match(v):
            raise ValueError(f"invalid email address: {v!r}")
        return v


class ReminderSchedule(BaseModel):
    enabled: bool = False
    frequency: Literal["daily", "weekly", "custom"] = "weekly"
    custom_message: Optional[str] = None


class SecuritySettings(BaseModel):
    require_auth: bool = False
    allow_printing: bool = True
    allow_download: bool = True
    watermark: bool = False
    ip_restriction: bool = False


class Branding(BaseModel):
    company_name: Optional[str] = None
    primary_color: Optional[str] = None
    logo: Optional[Payload] = None


class NotificationSettings(BaseModel):
    send_copy_to_sender: bool = True
    cc_emails: List[str] = []


class Document(BaseModel):
    id: str = Field(default_factory=lambda: new_id("doc"))
    title: str
    content: Payload = b""
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    status: DocumentStatus = DocumentStatus.DRAFT
    fields: List[DocumentField] = []
    signers: List[Signer] = []
    signing_order: SigningOrder = SigningOrder.SEQUENTIAL
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    folder: Optional[str] = None
    tags: List[str] = []
    reminder_schedule: ReminderSchedule = Field(default_factory=ReminderSchedule)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    branding: Branding = Field(default_factory=Branding)
    notification_settings: NotificationSettings = Field(default_factory=NotificationSettings)
    version: int = 0

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("document title is required")
        return v

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def find_field(self, field_id: str) -> Optional[DocumentField]:
        return next((f for f in self.fields if f.id == field_id), None)

    def find_signer(self, signer_id: str) -> Optional[Signer]:
        return next((s for s in self.signers if s.id == signer_id), None)

    def get_field(self, field_id: str) -> DocumentField:
        field = self.find_field(field_id)
        if field is None:
            raise NotFoundError(f"Field {field_id} not found in document {self.id}")
        return field

    def get_signer(self, signer_id: str) -> Signer:
        signer = self.find_signer(signer_id)
        if signer is None:
            raise NotFoundError(f"Signer {signer_id} not found in document {self.id}")
        return signer

    def fields_for_signer(self, signer_id: str) -> List[DocumentField]:
        return [f for f in self.fields if f.signer_id == signer_id]

    def required_fields(self, signer_id: Optional[str] = None) -> List[DocumentField]:
        if signer_id is None:
            return [f for f in self.fields if f.required]
        return [f for f in self.fields if f.required and f.signer_id == signer_id]

    def signers_in_order(self) -> List[Signer]:
        # Duplicate orders are a data error; the id keeps the ordering total.
        return sorted(self.signers, key=lambda s: (s.order, s.id))

    def is_complete(self) -> bool:
        if not self.signers:
            return False
        if any(s.status != SignerStatus.SIGNED for s in self.signers):
            return False
        declined = {s.id for s in self.signers if s.status == SignerStatus.DECLINED}
        return all(
            is_filled(f.value)
            for f in self.fields
            if f.required and f.signer_id is not None and f.signer_id not in declined
        )


class DocumentTemplate(BaseModel):
    """Reusable layout: content, fields and signer roles without any workflow state."""

    id: str = Field(default_factory=lambda: new_id("tmpl"))
    name: str
    description: str = ""
    category: Optional[str] = None
    content: Payload = b""
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    fields: List[DocumentField] = []
    signers: List[Signer] = []
    signing_order: SigningOrder = SigningOrder.SEQUENTIAL
    tags: List[str] = []
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("template name is required")
        return v

    def matches(self, text: str) -> bool:
        needle = text.strip().lower()
        return any(needle in (item or "").lower() for item in (self.name, self.description, self.category))
