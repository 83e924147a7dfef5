"""Signing intents.

Routes never touch document state themselves: they load the current
document, hand it to the workflow engine and commit whatever comes back.
"""
from typing import Optional

from fastapi import APIRouter, Depends

from .. import schemas
from ..dependencies import get_engine, get_store
from ..models import Document, DocumentField, SignerStatus
from ..services import viewer
from ..services.notifications import signing_link
from ..services.store import DocumentStore
from ..services.workflow import Progress, WorkflowEngine, progress

router = APIRouter()

DETAIL = {"response_model": Document, "response_model_exclude": {"content"}}


@router.post("/{document_id}/send", response_model=schemas.SendResult)
def send_document(
    document_id: str,
    store: DocumentStore = Depends(get_store),
    engine: WorkflowEngine = Depends(get_engine),
):
    document = engine.commit(store, engine.send(store.get(document_id)))
    links = [
        schemas.SigningLink(email=s.email, link=signing_link(document.id, s.id))
        for s in document.signers
        if s.status == SignerStatus.SENT
    ]
    return schemas.SendResult(message="Document sent", status=document.status, links=links)


@router.get("/{document_id}/signers/{signer_id}", response_model=schemas.SigningView)
def view_document_for_signing(document_id: str, signer_id: str, store: DocumentStore = Depends(get_store)):
    document = store.get(document_id)
    signer = document.get_signer(signer_id)
    fields = [f for f in document.fields if f.signer_id in (None, signer_id)]
    return schemas.SigningView(
        document_id=document.id,
        title=document.title,
        status=document.status,
        signer=signer,
        fields=fields,
        progress=progress(document, signer_id),
    )


@router.post("/{document_id}/fields/{field_id}/fill", response_model=schemas.FillFieldResult)
def fill_field(
    document_id: str,
    field_id: str,
    payload: schemas.FillFieldRequest,
    store: DocumentStore = Depends(get_store),
    engine: WorkflowEngine = Depends(get_engine),
):
    transition = engine.fill_field(store.get(document_id), field_id, payload.value, payload.signer_id)
    result = engine.commit(store, transition)
    return schemas.FillFieldResult(field=result.get_field(field_id), progress=progress(result, payload.signer_id))


@router.post("/{document_id}/signers/{signer_id}/complete", **DETAIL)
def complete_signing(
    document_id: str,
    signer_id: str,
    store: DocumentStore = Depends(get_store),
    engine: WorkflowEngine = Depends(get_engine),
):
    return engine.commit(store, engine.record_signer_completion(store.get(document_id), signer_id))


@router.post("/{document_id}/signers/{signer_id}/decline", **DETAIL)
def decline_signing(
    document_id: str,
    signer_id: str,
    payload: schemas.DeclineRequest,
    store: DocumentStore = Depends(get_store),
    engine: WorkflowEngine = Depends(get_engine),
):
    return engine.commit(store, engine.decline(store.get(document_id), signer_id, payload.reason))


@router.post("/{document_id}/signers/{signer_id}/remind", **DETAIL)
def remind_signer(
    document_id: str,
    signer_id: str,
    store: DocumentStore = Depends(get_store),
    engine: WorkflowEngine = Depends(get_engine),
):
    return engine.commit(store, engine.send_reminder(store.get(document_id), signer_id))


@router.post("/{document_id}/status", **DETAIL)
def change_status(
    document_id: str,
    payload: schemas.StatusChangeRequest,
    store: DocumentStore = Depends(get_store),
    engine: WorkflowEngine = Depends(get_engine),
):
    return engine.commit(store, engine.change_status(store.get(document_id), payload.status, payload.reason))


@router.post("/{document_id}/expire", **DETAIL)
def expire_document(
    document_id: str,
    store: DocumentStore = Depends(get_store),
    engine: WorkflowEngine = Depends(get_engine),
):
    return engine.commit(store, engine.expire_if_due(store.get(document_id)))


@router.get("/{document_id}/progress", response_model=Progress)
def signing_progress(document_id: str, signer_id: Optional[str] = None, store: DocumentStore = Depends(get_store)):
    return progress(store.get(document_id), signer_id)


@router.post("/{document_id}/hit-test", response_model=Optional[DocumentField])
def hit_test(document_id: str, payload: schemas.HitTestRequest, store: DocumentStore = Depends(get_store)):
    document = store.get(document_id)
    x, y = payload.x, payload.y
    if payload.page_width is not None and payload.page_height is not None:
        x, y = viewer.to_percent(x, y, payload.page_width, payload.page_height, payload.zoom, payload.rotation)
    return viewer.hit_test(document.fields, payload.page, x, y)


@router.post("/{document_id}/fields/{field_id}/drag", response_model=DocumentField)
def drag_field(
    document_id: str,
    field_id: str,
    payload: schemas.DragRequest,
    store: DocumentStore = Depends(get_store),
):
    field = store.get(document_id).get_field(field_id)
    x, y = viewer.clamp_drag(field, payload.x, payload.y)
    return store.update_field(document_id, field_id, {"x": x, "y": y})


@router.get("/{document_id}/fields/{field_id}/pixels", response_model=viewer.PixelRect)
def field_pixels(
    document_id: str,
    field_id: str,
    page_width: float,
    page_height: float,
    zoom: float = 1.0,
    rotation: int = 0,
    store: DocumentStore = Depends(get_store),
):
    field = store.get(document_id).get_field(field_id)
    return viewer.to_pixels(field, page_width, page_height, zoom, rotation)
