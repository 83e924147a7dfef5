import io

import pytest
from fastapi.testclient import TestClient
from reportlab.pdfgen import canvas

from signflow.events import EventBus
from signflow.main import app
from signflow.models import SigningOrder
from signflow.services.store import DocumentStore
from signflow.services.workflow import WorkflowEngine


def make_pdf(pages: int = 1, text: str = "Hello World - Contract") -> bytes:
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer)
    for _ in range(pages):
        c.drawString(100, 750, text)
        c.showPage()
    c.save()
    return buffer.getvalue()


@pytest.fixture
def pdf_bytes():
    return make_pdf()


@pytest.fixture
def store():
    return DocumentStore()


@pytest.fixture
def published():
    return []


@pytest.fixture
def engine(published):
    bus = EventBus()
    bus.subscribe(published.append)
    return WorkflowEngine(bus)


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def build(store):
    """Draft document with signers, each owning one required text field."""

    def _build(signers=2, order=SigningOrder.SEQUENTIAL, title="Employment Agreement"):
        document = store.create(title, b"%PDF-1.4 placeholder")
        store.update(document.id, {"signing_order": order})
        for n in range(signers):
            signer = store.add_signer(document.id, {"name": f"Signer {n + 1}", "email": f"signer{n + 1}@example.com"})
            store.add_field(document.id, {
                "type": "text",
                "x": 10,
                "y": 10 + n * 10,
                "width": 20,
                "height": 5,
                "signer_id": signer.id,
                "label": f"Full name {n + 1}",
            })
        return store.get(document.id)

    return _build


@pytest.fixture
def run(store, engine):
    """Commit a transition the way the signing routes do."""

    def _run(transition):
        return engine.commit(store, transition)

    return _run
