"""Signing workflow transitions.

Every operation takes a Document and returns a Transition: the next Document
plus the events describing what changed. The input is left untouched and
nothing is published yet. `WorkflowEngine.commit` stores the result and
only then publishes the events, so a transition the store rejects (for
example because the document moved on in the meantime) has no side effects
at all.
"""
import logging
from datetime import datetime, timezone
from typing import List, NamedTuple, Optional

from pydantic import BaseModel, computed_field

from ..errors import AuthorizationError, StateConflictError, ValidationError
from ..events import (
    DocumentCompleted,
    DocumentSent,
    Event,
    EventBus,
    FieldFilled,
    Recipient,
    ReminderSent,
    SignerAdvanced,
    SignerCompleted,
    SignerDeclined,
    StatusChanged,
)
from ..models import (
    Document,
    DocumentStatus,
    FieldValue,
    Signer,
    SignerStatus,
    SigningOrder,
    is_filled,
    utcnow,
)
from .store import DocumentStore
from .validation import validate_value

logger = logging.getLogger(__name__)

# Transitions an author may request by hand. Completion and decline only
# happen through their own operations, and nothing leaves a terminal status.
MANUAL_TRANSITIONS = {
    DocumentStatus.DRAFT: frozenset({DocumentStatus.VOIDED}),
    DocumentStatus.SENT: frozenset({DocumentStatus.IN_PROGRESS, DocumentStatus.EXPIRED, DocumentStatus.VOIDED}),
    DocumentStatus.IN_PROGRESS: frozenset({DocumentStatus.EXPIRED, DocumentStatus.VOIDED}),
}


class Transition(NamedTuple):
    document: Document
    events: List[Event]

    @property
    def changed(self) -> bool:
        # Every real change is described by at least one event
        return bool(self.events)


class Progress(BaseModel):
    completed: int
    required: int

    @computed_field
    @property
    def percent(self) -> float:
        return 100.0 * self.completed / max(self.required, 1)


def _recipient(signer: Signer) -> Recipient:
    return Recipient(signer_id=signer.id, name=signer.name, email=signer.email)


def _as_utc(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def progress(document: Document, signer_id: Optional[str] = None) -> Progress:
    """Filled vs. total required fields, for the whole document or one signer."""
    if signer_id is not None:
        document.get_signer(signer_id)
    required = document.required_fields(signer_id)
    return Progress(completed=sum(1 for f in required if is_filled(f.value)), required=len(required))


class WorkflowEngine:
    def __init__(self, events: Optional[EventBus] = None):
        self.events = events or EventBus()

    def commit(self, store: DocumentStore, transition: Transition) -> Document:
        """Store a transition's document, then publish its events.

        A transition without events changed nothing and is not written, so
        repeating an operation does not touch updated_at.
        """
        if not transition.changed:
            return transition.document
        saved = store.commit(transition.document)
        for event in transition.events:
            self.events.publish(event)
        return saved

    @staticmethod
    def _require_active(document: Document) -> None:
        if not document.is_active:
            raise StateConflictError(f"Document {document.id} is {document.status.value}, not out for signature")

    @staticmethod
    def _require_turn(document: Document, signer: Signer) -> None:
        if signer.status == SignerStatus.PENDING:
            raise AuthorizationError(f"It is not {signer.name}'s turn to sign {document.title}")
        if signer.status != SignerStatus.SENT:
            raise StateConflictError(f"{signer.name} has already {signer.status.value}")

    def send(self, document: Document) -> Transition:
        if document.status != DocumentStatus.DRAFT:
            raise StateConflictError(f"Document {document.id} was already sent")
        if not document.signers:
            raise ValidationError("Add at least one signer before sending")

        result = document.model_copy(deep=True)
        pending = [s for s in result.signers_in_order() if s.status == SignerStatus.PENDING]
        if result.signing_order == SigningOrder.SEQUENTIAL:
            pending = pending[:1]
        for signer in pending:
            signer.status = SignerStatus.SENT
        result.status = DocumentStatus.SENT

        logger.info("Sending document %s to %d signer(s)", result.id, len(pending))
        return Transition(result, [
            DocumentSent(
                document_id=result.id,
                document_title=result.title,
                recipients=[_recipient(s) for s in pending],
            )
        ])

    def fill_field(self, document: Document, field_id: str, value: FieldValue, signer_id: str) -> Transition:
        signer = document.get_signer(signer_id)
        field = document.get_field(field_id)
        self._require_active(document)
        if field.signer_id is not None and field.signer_id != signer_id:
            raise AuthorizationError(f"{field.display_name} is assigned to another signer")
        self._require_turn(document, signer)
        validate_value(field, value)

        if field.value == value:
            return Transition(document.model_copy(deep=True), [])

        result = document.model_copy(deep=True)
        result.get_field(field_id).value = value
        remaining = sum(1 for f in result.required_fields(signer_id) if not is_filled(f.value))
        return Transition(result, [
            FieldFilled(
                document_id=result.id,
                document_title=result.title,
                field_id=field.id,
                field_type=field.type,
                label=field.label,
                signer_id=signer_id,
                remaining_required=remaining,
            )
        ])

    def record_signer_completion(self, document: Document, signer_id: str) -> Transition:
        signer = document.get_signer(signer_id)
        self._require_active(document)
        self._require_turn(document, signer)
        missing = [f.display_name for f in document.required_fields(signer_id) if not is_filled(f.value)]
        if missing:
            raise ValidationError(f"{signer.name} still has required fields to complete: {', '.join(missing)}")

        now = utcnow()
        result = document.model_copy(deep=True)
        finished = result.get_signer(signer_id)
        finished.status = SignerStatus.SIGNED
        finished.signed_at = now
        events: List[Event] = [
            SignerCompleted(
                document_id=result.id,
                document_title=result.title,
                signer_id=finished.id,
                signer_name=finished.name,
            )
        ]

        if result.signing_order == SigningOrder.SEQUENTIAL:
            following = next((s for s in result.signers_in_order() if s.status == SignerStatus.PENDING), None)
            if following is not None:
                following.status = SignerStatus.SENT
                logger.info("Document %s moving on to signer %s", result.id, following.id)
                events.append(SignerAdvanced(
                    document_id=result.id,
                    document_title=result.title,
                    recipient=_recipient(following),
                ))

        if result.is_complete():
            result.status = DocumentStatus.COMPLETED
            result.completed_at = now
            logger.info("Document %s complete", result.id)
            events.append(DocumentCompleted(document_id=result.id, document_title=result.title))

        return Transition(result, events)

    def decline(self, document: Document, signer_id: str, reason: str) -> Transition:
        signer = document.get_signer(signer_id)
        self._require_active(document)
        self._require_turn(document, signer)
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to decline")

        result = document.model_copy(deep=True)
        declined = result.get_signer(signer_id)
        declined.status = SignerStatus.DECLINED
        declined.declined_at = utcnow()
        declined.decline_reason = reason.strip()
        previous = result.status
        result.status = DocumentStatus.DECLINED

        logger.info("Signer %s declining document %s", signer_id, result.id)
        return Transition(result, [
            SignerDeclined(
                document_id=result.id,
                document_title=result.title,
                signer_id=declined.id,
                signer_name=declined.name,
                reason=declined.decline_reason,
            ),
            StatusChanged(
                document_id=result.id,
                document_title=result.title,
                previous=previous,
                status=result.status,
                reason=declined.decline_reason,
            ),
        ])

    def send_reminder(self, document: Document, signer_id: str) -> Transition:
        signer = document.get_signer(signer_id)
        self._require_active(document)
        if signer.status != SignerStatus.SENT:
            raise StateConflictError(f"{signer.name} is {signer.status.value}; only signers awaiting signature get reminders")

        result = document.model_copy(deep=True)
        reminded = result.get_signer(signer_id)
        reminded.reminder_count += 1
        reminded.last_reminder_at = utcnow()
        return Transition(result, [
            ReminderSent(
                document_id=result.id,
                document_title=result.title,
                recipient=_recipient(reminded),
                reminder_count=reminded.reminder_count,
            )
        ])

    def change_status(self, document: Document, status: DocumentStatus, reason: str) -> Transition:
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to change the document status")
        if document.is_terminal:
            raise StateConflictError(f"Document {document.id} is {document.status.value} and can no longer change")
        if status not in MANUAL_TRANSITIONS.get(document.status, frozenset()):
            raise StateConflictError(f"Cannot move document from {document.status.value} to {status.value}")

        result = document.model_copy(deep=True)
        result.status = status
        logger.info("Moving document %s from %s to %s", result.id, document.status.value, status.value)
        return Transition(result, [
            StatusChanged(
                document_id=result.id,
                document_title=result.title,
                previous=document.status,
                status=status,
                reason=reason.strip(),
            )
        ])

    def expire_if_due(self, document: Document, now: Optional[datetime] = None) -> Transition:
        """Expire an active document whose deadline has passed; otherwise a no-op."""
        now = _as_utc(now or utcnow())
        if not document.is_active or document.expires_at is None or _as_utc(document.expires_at) > now:
            return Transition(document.model_copy(deep=True), [])
        return self.change_status(document, DocumentStatus.EXPIRED, "Signing deadline passed")
