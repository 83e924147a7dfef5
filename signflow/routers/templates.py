from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from .. import schemas
from ..dependencies import get_store
from ..models import DocumentTemplate
from ..services.store import DocumentStore

router = APIRouter()

DETAIL = {"response_model": DocumentTemplate, "response_model_exclude": {"content"}}


@router.post("/from-document/{document_id}", **DETAIL)
def save_as_template(
    document_id: str,
    payload: Optional[schemas.TemplateCreate] = None,
    store: DocumentStore = Depends(get_store),
):
    payload = payload or schemas.TemplateCreate()
    return store.save_as_template(document_id, payload.name, payload.description, payload.category)


@router.get("/", response_model=List[schemas.TemplateSummary])
def list_templates(q: str = "", store: DocumentStore = Depends(get_store)):
    return [schemas.TemplateSummary.of(t) for t in store.list_templates(q)]


@router.get("/{template_id}", **DETAIL)
def get_template(template_id: str, store: DocumentStore = Depends(get_store)):
    return store.get_template(template_id)


@router.patch("/{template_id}", **DETAIL)
def update_template(template_id: str, changes: schemas.TemplateUpdate, store: DocumentStore = Depends(get_store)):
    return store.update_template(template_id, changes.model_dump(exclude_unset=True))


@router.delete("/{template_id}", status_code=204)
def delete_template(template_id: str, store: DocumentStore = Depends(get_store)):
    store.delete_template(template_id)
    return Response(status_code=204)


@router.post("/{template_id}/documents", response_model=schemas.DocumentSummary)
def create_document_from_template(
    template_id: str,
    payload: Optional[schemas.DocumentFromTemplate] = None,
    store: DocumentStore = Depends(get_store),
):
    title = payload.title if payload else None
    return schemas.DocumentSummary.of(store.create_from_template(template_id, title))
