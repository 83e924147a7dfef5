import logging
from datetime import datetime
from typing import Callable, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from .models import DocumentStatus, FieldType, utcnow

logger = logging.getLogger(__name__)


class Recipient(BaseModel):
    signer_id: str
    name: str
    email: str


class WorkflowEvent(BaseModel):
    document_id: str
    document_title: str
    at: datetime = Field(default_factory=utcnow)


class DocumentSent(WorkflowEvent):
    kind: Literal["document_sent"] = "document_sent"
    recipients: List[Recipient]


class FieldFilled(WorkflowEvent):
    kind: Literal["field_filled"] = "field_filled"
    field_id: str
    field_type: FieldType
    label: Optional[str] = None
    signer_id: str
    remaining_required: int


class SignerCompleted(WorkflowEvent):
    kind: Literal["signer_completed"] = "signer_completed"
    signer_id: str
    signer_name: str


class SignerAdvanced(WorkflowEvent):
    kind: Literal["signer_advanced"] = "signer_advanced"
    recipient: Recipient


class DocumentCompleted(WorkflowEvent):
    kind: Literal["document_completed"] = "document_completed"


class SignerDeclined(WorkflowEvent):
    kind: Literal["signer_declined"] = "signer_declined"
    signer_id: str
    signer_name: str
    reason: str


class ReminderSent(WorkflowEvent):
    kind: Literal["reminder_sent"] = "reminder_sent"
    recipient: Recipient
    reminder_count: int


class StatusChanged(WorkflowEvent):
    kind: Literal["status_changed"] = "status_changed"
    previous: DocumentStatus
    status: DocumentStatus
    reason: str


Event = Union[
    DocumentSent,
    FieldFilled,
    SignerCompleted,
    SignerAdvanced,
    DocumentCompleted,
    SignerDeclined,
    ReminderSent,
    StatusChanged,
]

Handler = Callable[[Event], None]


class EventBus:
    """Fan-out of workflow events to side-channel subscribers.

    Subscribers are best effort: a failing handler is logged and the
    remaining handlers still run. Publishing never raises.
    """

    def __init__(self):
        self._handlers: List[Handler] = []

    def subscribe(self, handler: Handler) -> None:
        self._handlers.append(handler)

    def unsubscribe(self, handler: Handler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def publish(self, event: Event) -> None:
        logger.debug("Publishing %s for document %s", event.kind, event.document_id)
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler %r failed on %s", handler, event.kind)
