from fastapi import Depends, Request

from . import config
from .events import EventBus
from .services.audit import AuditTrail
from .services.narration import NarrationSubscriber, Narrator
from .services.notifications import Notifier, webhook_transport
from .services.store import DocumentStore
from .services.viewer import RenderScheduler
from .services.workflow import WorkflowEngine


class Services:
    """Everything one application session shares, wired once at startup."""

    def __init__(self, narration_enabled: bool = config.NARRATION_ENABLED):
        self.events = EventBus()
        self.store = DocumentStore()
        self.engine = WorkflowEngine(self.events)
        self.narrator = Narrator(enabled=narration_enabled)
        transport = webhook_transport(config.NOTIFY_WEBHOOK_URL) if config.NOTIFY_WEBHOOK_URL else None
        self.notifier = Notifier(transport)
        self.audit = AuditTrail()
        self.scheduler = RenderScheduler()

        self.events.subscribe(NarrationSubscriber(self.narrator))
        self.events.subscribe(self.notifier)
        self.events.subscribe(self.audit)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_store(services: Services = Depends(get_services)) -> DocumentStore:
    return services.store


def get_engine(services: Services = Depends(get_services)) -> WorkflowEngine:
    return services.engine
