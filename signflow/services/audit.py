import threading
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel

from ..events import (
    DocumentSent,
    Event,
    FieldFilled,
    ReminderSent,
    SignerAdvanced,
    SignerCompleted,
    SignerDeclined,
    StatusChanged,
)


class AuditEntry(BaseModel):
    document_id: str
    action: str
    timestamp: datetime
    signer_id: Optional[str] = None
    detail: Optional[str] = None


def _entry(event: Event) -> AuditEntry:
    signer_id = None
    detail = None
    if isinstance(event, DocumentSent):
        detail = ", ".join(r.email for r in event.recipients)
    elif isinstance(event, FieldFilled):
        signer_id = event.signer_id
        detail = event.field_id
    elif isinstance(event, (SignerCompleted, SignerDeclined)):
        signer_id = event.signer_id
        if isinstance(event, SignerDeclined):
            detail = event.reason
    elif isinstance(event, (SignerAdvanced, ReminderSent)):
        signer_id = event.recipient.signer_id
    elif isinstance(event, StatusChanged):
        detail = f"{event.previous.value} -> {event.status.value}: {event.reason}"
    return AuditEntry(
        document_id=event.document_id,
        action=event.kind.upper(),
        timestamp=event.at,
        signer_id=signer_id,
        detail=detail,
    )


class AuditTrail:
    """Append-only record of what happened to each document."""

    def __init__(self):
        self._entries: Dict[str, List[AuditEntry]] = {}
        self._lock = threading.Lock()

    def __call__(self, event: Event) -> None:
        entry = _entry(event)
        with self._lock:
            self._entries.setdefault(entry.document_id, []).append(entry)

    def for_document(self, document_id: str) -> List[AuditEntry]:
        with self._lock:
            return list(self._entries.get(document_id, []))
