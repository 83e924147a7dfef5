"""Spoken guidance.

Announcements are queued by priority, not arrival: a higher tier always
plays first. A high-priority or interrupting announcement stops whatever is
playing and flushes the queue before it is enqueued. Nothing in the signing
workflow waits on narration; speech failures are logged and dropped.
"""
import enum
import heapq
import itertools
import logging
import threading
from typing import Callable, List, Optional

from pydantic import BaseModel

from ..events import (
    DocumentCompleted,
    DocumentSent,
    Event,
    FieldFilled,
    ReminderSent,
    SignerAdvanced,
    SignerCompleted,
    SignerDeclined,
    StatusChanged,
)

logger = logging.getLogger(__name__)


class Priority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


_RANK = {Priority.HIGH: 0, Priority.NORMAL: 1, Priority.LOW: 2}


class Announcement(BaseModel):
    text: str
    priority: Priority = Priority.NORMAL


class Narrator:
    def __init__(self, speak: Optional[Callable[[str], None]] = None,
                 stop: Optional[Callable[[], None]] = None, enabled: bool = True):
        self.enabled = enabled
        self._speak = speak
        self._stop = stop
        self._queue: List[tuple] = []
        self._counter = itertools.count()
        self._lock = threading.Lock()
        self.last_spoken: Optional[str] = None

    def announce(self, text: str, priority: Priority = Priority.NORMAL, interrupt: bool = False) -> None:
        if not self.enabled or not text.strip():
            return
        priority = Priority(priority)
        with self._lock:
            if interrupt or priority == Priority.HIGH:
                self._queue.clear()
                self._halt()
            heapq.heappush(self._queue, (_RANK[priority], next(self._counter), Announcement(text=text, priority=priority)))

    def _halt(self) -> None:
        if self._stop is None:
            return
        try:
            self._stop()
        except Exception:
            logger.exception("Stopping narration failed")

    def pending(self) -> List[Announcement]:
        with self._lock:
            return [item[2] for item in sorted(self._queue)]

    def clear(self) -> None:
        with self._lock:
            self._queue.clear()
            self._halt()

    def drain(self) -> List[Announcement]:
        """Pop everything queued, highest priority first, speaking each one."""
        with self._lock:
            ordered = [heapq.heappop(self._queue)[2] for _ in range(len(self._queue))]
        for announcement in ordered:
            self.last_spoken = announcement.text
            if self._speak is None:
                continue
            try:
                self._speak(announcement.text)
            except Exception:
                logger.exception("Speech output failed for %r", announcement.text)
        return ordered

    def repeat_last(self) -> None:
        if self.last_spoken:
            self.announce(self.last_spoken, Priority.HIGH)


def _label(event: FieldFilled) -> str:
    return event.label or f"{event.field_type.value} field"


class NarrationSubscriber:
    """Turns workflow events into announcements."""

    def __init__(self, narrator: Narrator):
        self.narrator = narrator

    def __call__(self, event: Event) -> None:
        say = self.narrator.announce
        if isinstance(event, DocumentSent):
            names = ", ".join(r.name for r in event.recipients)
            say(f"{event.document_title} has been sent for signature to {names}.", Priority.NORMAL)
        elif isinstance(event, FieldFilled):
            if event.remaining_required:
                say(f"{_label(event)} completed. {event.remaining_required} required field"
                    f"{'s' if event.remaining_required != 1 else ''} remaining.", Priority.LOW)
            else:
                say(f"{_label(event)} completed. All required fields are done; you can finish signing.",
                    Priority.NORMAL)
        elif isinstance(event, SignerCompleted):
            say(f"{event.signer_name} has signed {event.document_title}.", Priority.NORMAL)
        elif isinstance(event, SignerAdvanced):
            say(f"Signing has moved to {event.recipient.name}.", Priority.NORMAL)
        elif isinstance(event, DocumentCompleted):
            say(f"{event.document_title} is complete. Every signer has signed.", Priority.HIGH, interrupt=True)
        elif isinstance(event, SignerDeclined):
            say(f"{event.signer_name} declined to sign {event.document_title}.", Priority.HIGH, interrupt=True)
        elif isinstance(event, ReminderSent):
            say(f"Reminder sent to {event.recipient.name}.", Priority.LOW)
        elif isinstance(event, StatusChanged):
            say(f"{event.document_title} is now {event.status.value}.", Priority.NORMAL)
