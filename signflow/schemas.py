from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from .models import (
    AuthRequirement,
    Branding,
    Document,
    DocumentTemplate,
    DocumentField,
    DocumentStatus,
    FieldType,
    FieldValidation,
    FieldValue,
    NotificationSettings,
    Payload,
    ReminderSchedule,
    SecuritySettings,
    Signer,
    SigningOrder,
)
from .services.workflow import Progress


class DocumentCreate(BaseModel):
    title: str
    content: Payload = b""
    file_name: Optional[str] = None
    mime_type: Optional[str] = None


class DocumentUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[Payload] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    signing_order: Optional[SigningOrder] = None
    expires_at: Optional[datetime] = None
    folder: Optional[str] = None
    tags: Optional[List[str]] = None
    reminder_schedule: Optional[ReminderSchedule] = None
    security: Optional[SecuritySettings] = None
    branding: Optional[Branding] = None
    notification_settings: Optional[NotificationSettings] = None


class DocumentSummary(BaseModel):
    id: str
    title: str
    status: DocumentStatus
    signing_order: SigningOrder
    file_name: Optional[str] = None
    folder: Optional[str] = None
    tags: List[str] = []
    signer_count: int
    field_count: int
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def of(cls, document: Document) -> "DocumentSummary":
        return cls(
            id=document.id,
            title=document.title,
            status=document.status,
            signing_order=document.signing_order,
            file_name=document.file_name,
            folder=document.folder,
            tags=document.tags,
            signer_count=len(document.signers),
            field_count=len(document.fields),
            created_at=document.created_at,
            updated_at=document.updated_at,
            completed_at=document.completed_at,
        )


class FieldCreate(BaseModel):
    type: FieldType = FieldType.SIGNATURE
    page: int = 1
    x: float
    y: float
    width: float = 20
    height: float = 6
    signer_id: Optional[str] = None
    required: bool = True
    label: Optional[str] = None
    tooltip: Optional[str] = None
    validation: Optional[FieldValidation] = None
    options: List[str] = []


class FieldUpdate(BaseModel):
    type: Optional[FieldType] = None
    page: Optional[int] = None
    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    signer_id: Optional[str] = None
    required: Optional[bool] = None
    label: Optional[str] = None
    tooltip: Optional[str] = None
    validation: Optional[FieldValidation] = None
    options: Optional[List[str]] = None


class SignerCreate(BaseModel):
    name: str
    email: str
    role: str = "signer"
    require_auth: AuthRequirement = AuthRequirement.NONE
    can_delegate: bool = False


class SignerUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    require_auth: Optional[AuthRequirement] = None
    can_delegate: Optional[bool] = None


class SigningLink(BaseModel):
    email: str
    link: str


class SendResult(BaseModel):
    message: str
    status: DocumentStatus
    links: List[SigningLink]


class FillFieldRequest(BaseModel):
    signer_id: str
    value: FieldValue


class FillFieldResult(BaseModel):
    field: DocumentField
    progress: Progress


class DeclineRequest(BaseModel):
    reason: str


class StatusChangeRequest(BaseModel):
    status: DocumentStatus
    reason: str


class SigningView(BaseModel):
    document_id: str
    title: str
    status: DocumentStatus
    signer: Signer
    fields: List[DocumentField]
    progress: Progress


class HitTestRequest(BaseModel):
    page: int
    x: float
    y: float
    # When the surface is given, x and y are pixels on it rather than percentages
    page_width: Optional[float] = None
    page_height: Optional[float] = None
    zoom: float = 1.0
    rotation: int = 0


class DragRequest(BaseModel):
    x: float
    y: float


class ImportResult(BaseModel):
    imported: int


class TemplateCreate(BaseModel):
    name: Optional[str] = None
    description: str = ""
    category: Optional[str] = None


class TemplateUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None


class TemplateSummary(BaseModel):
    id: str
    name: str
    description: str
    category: Optional[str] = None
    signer_count: int
    field_count: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def of(cls, template: DocumentTemplate) -> "TemplateSummary":
        return cls(
            id=template.id,
            name=template.name,
            description=template.description,
            category=template.category,
            signer_count=len(template.signers),
            field_count=len(template.fields),
            created_at=template.created_at,
            updated_at=template.updated_at,
        )


class DocumentFromTemplate(BaseModel):
    title: Optional[str] = None
