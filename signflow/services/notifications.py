import logging
import threading
from datetime import datetime
from typing import Callable, List, Optional

import requests
from pydantic import BaseModel, Field

from .. import config
from ..events import DocumentSent, Event, Recipient, ReminderSent, SignerAdvanced
from ..models import utcnow

logger = logging.getLogger(__name__)


class Notification(BaseModel):
    signer_id: str
    document_id: str
    event_kind: str
    email: str
    name: str
    link: str
    sent_at: datetime = Field(default_factory=utcnow)


def signing_link(document_id: str, signer_id: str) -> str:
    return f"{config.BASE_URL}/?document={document_id}&signer={signer_id}"


def webhook_transport(url: str, timeout: float = config.NOTIFY_WEBHOOK_TIMEOUT) -> Callable[[Notification], None]:
    """Transport that POSTs each notification as JSON to an external mailer."""

    def send(notification: Notification) -> None:
        response = requests.post(
            url,
            data=notification.model_dump_json(),
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )
        response.raise_for_status()

    return send


class Notifier:
    """Outgoing signer notifications.

    Delivery is best effort. A failing transport is logged and the
    notification is still kept in the outbox; nothing is reported back into
    document state.
    """

    def __init__(self, transport: Optional[Callable[[Notification], None]] = None):
        self.transport = transport
        self._outbox: List[Notification] = []
        self._lock = threading.Lock()

    def outbox(self, document_id: Optional[str] = None) -> List[Notification]:
        with self._lock:
            return [n for n in self._outbox if document_id is None or n.document_id == document_id]

    def notify(self, recipient: Recipient, document_id: str, event_kind: str) -> Notification:
        notification = Notification(
            signer_id=recipient.signer_id,
            document_id=document_id,
            event_kind=event_kind,
            email=recipient.email,
            name=recipient.name,
            link=signing_link(document_id, recipient.signer_id),
        )
        with self._lock:
            self._outbox.append(notification)
        logger.info("Sending %s email to %s: %s", event_kind, recipient.email, notification.link)
        if self.transport is not None:
            try:
                self.transport(notification)
            except Exception:
                logger.exception("Delivering %s notification to %s failed", event_kind, recipient.email)
        return notification

    def __call__(self, event: Event) -> None:
        if isinstance(event, DocumentSent):
            for recipient in event.recipients:
                self.notify(recipient, event.document_id, "signature_requested")
        elif isinstance(event, SignerAdvanced):
            self.notify(event.recipient, event.document_id, "your_turn")
        elif isinstance(event, ReminderSent):
            self.notify(event.recipient, event.document_id, "reminder")
