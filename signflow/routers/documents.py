import logging
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import Response

from .. import config, schemas
from ..dependencies import Services, get_services, get_store
from ..models import Document, DocumentField, DocumentStatus, Signer
from ..services import pdf_service
from ..services.audit import AuditEntry
from ..services.notifications import Notification
from ..services.store import DocumentStore
from ..services.validation import ValidationReport, validate_document
from ..services.viewer import DiagnosticView, DocumentView

logger = logging.getLogger(__name__)

router = APIRouter()

DETAIL = {"response_model": Document, "response_model_exclude": {"content"}}


@router.post("/upload", response_model=schemas.DocumentSummary)
async def upload_document(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    store: DocumentStore = Depends(get_store),
):
    content = await file.read()
    if len(content) > config.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large")
    document = store.create(title or file.filename or "Untitled document", content, file.filename, file.content_type)
    logger.info("Uploaded %s (%d bytes) as %s", file.filename, len(content), document.id)
    return schemas.DocumentSummary.of(document)


@router.post("/", response_model=schemas.DocumentSummary)
def create_document(payload: schemas.DocumentCreate, store: DocumentStore = Depends(get_store)):
    document = store.create(payload.title, payload.content, payload.file_name, payload.mime_type)
    return schemas.DocumentSummary.of(document)


@router.get("/", response_model=List[schemas.DocumentSummary])
def list_documents(
    q: Optional[str] = None,
    folder: Optional[str] = None,
    tag: Optional[str] = None,
    status: Optional[DocumentStatus] = None,
    store: DocumentStore = Depends(get_store),
):
    documents = store.search(q) if q else store.list()
    for selected in (
        store.by_folder(folder) if folder is not None else None,
        store.by_tag(tag) if tag is not None else None,
        store.by_status(status) if status is not None else None,
    ):
        if selected is not None:
            keep = {d.id for d in selected}
            documents = [d for d in documents if d.id in keep]
    documents.sort(key=lambda d: d.updated_at, reverse=True)
    return [schemas.DocumentSummary.of(d) for d in documents]


@router.get("/export")
def export_documents(store: DocumentStore = Depends(get_store)):
    return Response(content=store.export_json(), media_type="application/json")


@router.post("/import", response_model=schemas.ImportResult)
async def import_documents(request: Request, store: DocumentStore = Depends(get_store)):
    return schemas.ImportResult(imported=store.import_json(await request.body()))


@router.patch("/signers/{signer_id}", response_model=Signer)
def update_signer(signer_id: str, changes: schemas.SignerUpdate, store: DocumentStore = Depends(get_store)):
    return store.update_signer(signer_id, changes.model_dump(exclude_unset=True))


@router.get("/{document_id}", **DETAIL)
def get_document(document_id: str, store: DocumentStore = Depends(get_store)):
    return store.get(document_id)


@router.patch("/{document_id}", **DETAIL)
def update_document(document_id: str, changes: schemas.DocumentUpdate, store: DocumentStore = Depends(get_store)):
    return store.update(document_id, changes.model_dump(exclude_unset=True))


@router.delete("/{document_id}", status_code=204)
def delete_document(document_id: str, store: DocumentStore = Depends(get_store)):
    store.delete(document_id)
    return Response(status_code=204)


@router.post("/{document_id}/duplicate", response_model=schemas.DocumentSummary)
def duplicate_document(document_id: str, store: DocumentStore = Depends(get_store)):
    return schemas.DocumentSummary.of(store.duplicate(document_id))


@router.post("/{document_id}/fields", response_model=DocumentField)
def add_field(document_id: str, field: schemas.FieldCreate, store: DocumentStore = Depends(get_store)):
    return store.add_field(document_id, field.model_dump())


@router.patch("/{document_id}/fields/{field_id}", response_model=DocumentField)
def update_field(document_id: str, field_id: str, changes: schemas.FieldUpdate,
                 store: DocumentStore = Depends(get_store)):
    return store.update_field(document_id, field_id, changes.model_dump(exclude_unset=True))


@router.delete("/{document_id}/fields/{field_id}", status_code=204)
def delete_field(document_id: str, field_id: str, store: DocumentStore = Depends(get_store)):
    store.delete_field(document_id, field_id)
    return Response(status_code=204)


@router.post("/{document_id}/signers", response_model=Signer)
def add_signer(document_id: str, signer: schemas.SignerCreate, store: DocumentStore = Depends(get_store)):
    return store.add_signer(document_id, signer.model_dump())


@router.delete("/{document_id}/signers/{signer_id}", status_code=204)
def remove_signer(document_id: str, signer_id: str, store: DocumentStore = Depends(get_store)):
    store.remove_signer(document_id, signer_id)
    return Response(status_code=204)


@router.get("/{document_id}/view", response_model=Union[DocumentView, DiagnosticView])
async def view_document(document_id: str, services: Services = Depends(get_services)):
    document = services.store.get(document_id)
    return await services.scheduler.load(document_id, document.content, document.mime_type, document.file_name)


@router.get("/{document_id}/download")
def download_document(document_id: str, store: DocumentStore = Depends(get_store)):
    document = store.get(document_id)
    content = pdf_service.burn_fields(document)
    filename = document.file_name or f"{document.id}.pdf"
    if document.status == DocumentStatus.COMPLETED:
        filename = f"signed_{filename}"
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get("/{document_id}/validation", response_model=ValidationReport)
def check_document(document_id: str, store: DocumentStore = Depends(get_store)):
    return validate_document(store.get(document_id))


@router.get("/{document_id}/audit", response_model=List[AuditEntry])
def document_audit(document_id: str, services: Services = Depends(get_services)):
    services.store.get(document_id)
    return services.audit.for_document(document_id)


@router.get("/{document_id}/notifications", response_model=List[Notification])
def document_notifications(document_id: str, services: Services = Depends(get_services)):
    services.store.get(document_id)
    return services.notifier.outbox(document_id)
