import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..errors import NotFoundError, StateConflictError, ValidationError
from ..models import (
    Document,
    DocumentField,
    DocumentTemplate,
    DocumentStatus,
    Signer,
    SignerStatus,
    new_id,
    utcnow,
)

logger = logging.getLogger(__name__)

DOCUMENT_EDITABLE = frozenset({
    "title", "content", "file_name", "mime_type", "signing_order", "expires_at",
    "folder", "tags", "reminder_schedule", "security", "branding", "notification_settings",
})
FIELD_EDITABLE = frozenset({
    "type", "page", "x", "y", "width", "height", "signer_id", "required",
    "label", "tooltip", "validation", "options",
})
SIGNER_EDITABLE = frozenset({"name", "email", "role", "require_auth", "can_delegate"})
TEMPLATE_EDITABLE = frozenset({"name", "description", "category", "tags"})
# The agreement itself and who signs in what order are settled once it is sent
DRAFT_ONLY = frozenset({"content", "file_name", "mime_type", "signing_order"})

_documents_adapter = TypeAdapter(List[Document])


def _check_keys(changes: Dict[str, Any], allowed: Iterable[str], what: str) -> None:
    unknown = sorted(set(changes) - set(allowed))
    if unknown:
        raise ValidationError(f"Cannot change {', '.join(unknown)} on a {what}")


def _build(model, data: Dict[str, Any]):
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        problems = "; ".join(err["msg"] for err in exc.errors())
        raise ValidationError(f"Invalid {model.__name__}: {problems}") from exc


def _fresh_layout(signers: List[Signer], fields: List[DocumentField]):
    """Copy signers and fields under new ids, with all signing progress cleared."""
    signer_ids = {s.id: new_id("signer") for s in signers}
    fresh_signers = [
        s.model_copy(update={
            "id": signer_ids[s.id],
            "status": SignerStatus.PENDING,
            "signed_at": None,
            "declined_at": None,
            "decline_reason": None,
            "reminder_count": 0,
            "last_reminder_at": None,
        }, deep=True)
        for s in signers
    ]
    fresh_fields = [
        f.model_copy(update={
            "id": new_id("field"),
            "value": None,
            "signer_id": signer_ids.get(f.signer_id) if f.signer_id else None,
        }, deep=True)
        for f in fields
    ]
    return fresh_signers, fresh_fields


class DocumentStore:
    """In-memory owner of every Document.

    All writes go through here so that updated_at and version stay honest.
    Callers only ever receive copies; a failed operation leaves the stored
    document untouched.
    """

    def __init__(self):
        self._documents: Dict[str, Document] = {}
        self._templates: Dict[str, DocumentTemplate] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._documents)

    # Internal helpers

    def _require(self, document_id: str) -> Document:
        document = self._documents.get(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        return document

    def _save(self, document: Document) -> Document:
        # Revalidate the whole aggregate before it replaces the stored one
        document = _build(Document, document.model_dump())
        document.updated_at = utcnow()
        document.version += 1
        self._documents[document.id] = document
        return document.model_copy(deep=True)

    def _edit(self, document_id: str, mutate: Callable[[Document], Any], require_draft: bool = False):
        with self._lock:
            working = self._require(document_id).model_copy(deep=True)
            if require_draft and working.status != DocumentStatus.DRAFT:
                raise StateConflictError(
                    f"Document {document_id} is {working.status.value}; only drafts can be edited"
                )
            result = mutate(working)
            saved = self._save(working)
            return saved, result

    # Documents

    def create(self, title: str, content: bytes = b"", file_name: Optional[str] = None,
               mime_type: Optional[str] = None) -> Document:
        document = _build(Document, {
            "title": title,
            "content": content,
            "file_name": file_name,
            "mime_type": mime_type,
        })
        with self._lock:
            self._documents[document.id] = document
        logger.info("Created document %s (%s)", document.id, document.title)
        return document.model_copy(deep=True)

    def get(self, document_id: str) -> Document:
        with self._lock:
            return self._require(document_id).model_copy(deep=True)

    def list(self) -> List[Document]:
        with self._lock:
            return [d.model_copy(deep=True) for d in self._documents.values()]

    def update(self, document_id: str, changes: Dict[str, Any]) -> Document:
        _check_keys(changes, DOCUMENT_EDITABLE, "document")

        def apply(document: Document):
            if document.is_terminal:
                raise StateConflictError(f"Document {document.id} is {document.status.value} and can no longer change")
            frozen = sorted(DRAFT_ONLY.intersection(changes))
            if frozen and document.status != DocumentStatus.DRAFT:
                raise StateConflictError(f"{', '.join(frozen)} can only change while the document is a draft")
            merged = _build(Document, {**document.model_dump(), **changes})
            for key in changes:
                setattr(document, key, getattr(merged, key))

        saved, _ = self._edit(document_id, apply)
        return saved

    def delete(self, document_id: str) -> None:
        with self._lock:
            if self._documents.pop(document_id, None) is not None:
                logger.info("Deleted document %s", document_id)

    def duplicate(self, document_id: str) -> Document:
        with self._lock:
            source = self._require(document_id)
            signers, fields = _fresh_layout(source.signers, source.fields)
            now = utcnow()
            copy = source.model_copy(update={
                "id": new_id("doc"),
                "title": f"{source.title} (Copy)",
                "status": DocumentStatus.DRAFT,
                "fields": fields,
                "signers": signers,
                "created_at": now,
                "updated_at": now,
                "completed_at": None,
                "version": 0,
            }, deep=True)
            copy = _build(Document, copy.model_dump())
            self._documents[copy.id] = copy
        logger.info("Duplicated document %s into %s", document_id, copy.id)
        return copy.model_copy(deep=True)

    def commit(self, document: Document) -> Document:
        """Replace a stored document with a workflow result.

        The result must have been computed from the current version; a
        document that changed in the meantime rejects the stale write.
        """
        with self._lock:
            current = self._require(document.id)
            if document.version != current.version:
                raise StateConflictError(
                    f"Document {document.id} changed since it was read (version {document.version}, "
                    f"now {current.version})"
                )
            if current.is_terminal and document.status != current.status:
                raise StateConflictError(f"Document {document.id} is {current.status.value} and can no longer change")
            return self._save(document.model_copy(deep=True))

    # Templates

    def _require_template(self, template_id: str) -> DocumentTemplate:
        template = self._templates.get(template_id)
        if template is None:
            raise NotFoundError(f"Template {template_id} not found")
        return template

    def save_as_template(self, document_id: str, name: Optional[str] = None, description: str = "",
                         category: Optional[str] = None) -> DocumentTemplate:
        with self._lock:
            source = self._require(document_id)
            signers, fields = _fresh_layout(source.signers, source.fields)
            template = _build(DocumentTemplate, {
                "name": name if name is not None else source.title,
                "description": description,
                "category": category,
                "content": source.content,
                "file_name": source.file_name,
                "mime_type": source.mime_type,
                "fields": [f.model_dump() for f in fields],
                "signers": [s.model_dump() for s in signers],
                "signing_order": source.signing_order,
                "tags": list(source.tags),
            })
            self._templates[template.id] = template
        logger.info("Saved document %s as template %s (%s)", document_id, template.id, template.name)
        return template.model_copy(deep=True)

    def get_template(self, template_id: str) -> DocumentTemplate:
        with self._lock:
            return self._require_template(template_id).model_copy(deep=True)

    def list_templates(self, search: str = "") -> List[DocumentTemplate]:
        with self._lock:
            templates = list(self._templates.values())
        if search.strip():
            templates = [t for t in templates if t.matches(search)]
        return [t.model_copy(deep=True) for t in templates]

    def update_template(self, template_id: str, changes: Dict[str, Any]) -> DocumentTemplate:
        _check_keys(changes, TEMPLATE_EDITABLE, "template")
        with self._lock:
            current = self._require_template(template_id)
            updated = _build(DocumentTemplate, {**current.model_dump(), **changes})
            updated.updated_at = utcnow()
            self._templates[template_id] = updated
            return updated.model_copy(deep=True)

    def delete_template(self, template_id: str) -> None:
        with self._lock:
            if self._templates.pop(template_id, None) is not None:
                logger.info("Deleted template %s", template_id)

    def create_from_template(self, template_id: str, title: Optional[str] = None) -> Document:
        """Start a new draft from a template; every signer and field gets a new id."""
        with self._lock:
            template = self._require_template(template_id)
            signers, fields = _fresh_layout(template.signers, template.fields)
            document = _build(Document, {
                "title": title if title is not None else template.name,
                "content": template.content,
                "file_name": template.file_name,
                "mime_type": template.mime_type,
                "fields": [f.model_dump() for f in fields],
                "signers": [s.model_dump() for s in signers],
                "signing_order": template.signing_order,
                "tags": list(template.tags),
            })
            self._documents[document.id] = document
        logger.info("Created document %s from template %s", document.id, template_id)
        return document.model_copy(deep=True)

    # Fields

    def add_field(self, document_id: str, data: Dict[str, Any]) -> DocumentField:
        data = {k: v for k, v in data.items() if k != "id"}
        _check_keys(data, FIELD_EDITABLE, "new field")

        def apply(document: Document) -> DocumentField:
            field = _build(DocumentField, data)
            if field.signer_id is not None:
                document.get_signer(field.signer_id)
            document.fields.append(field)
            return field

        _, field = self._edit(document_id, apply, require_draft=True)
        return field.model_copy(deep=True)

    def update_field(self, document_id: str, field_id: str, changes: Dict[str, Any]) -> DocumentField:
        _check_keys(changes, FIELD_EDITABLE, "field")

        def apply(document: Document) -> DocumentField:
            current = document.get_field(field_id)
            updated = _build(DocumentField, {**current.model_dump(), **changes})
            if updated.signer_id is not None:
                document.get_signer(updated.signer_id)
            if updated.type != current.type:
                updated.value = None
            document.fields = [updated if f.id == field_id else f for f in document.fields]
            return updated

        _, field = self._edit(document_id, apply, require_draft=True)
        return field.model_copy(deep=True)

    def delete_field(self, document_id: str, field_id: str) -> None:
        def apply(document: Document):
            document.get_field(field_id)
            document.fields = [f for f in document.fields if f.id != field_id]

        self._edit(document_id, apply, require_draft=True)

    # Signers

    def add_signer(self, document_id: str, data: Dict[str, Any]) -> Signer:
        data = {k: v for k, v in data.items() if k not in ("id", "order", "status")}
        _check_keys(data, SIGNER_EDITABLE, "new signer")

        def apply(document: Document) -> Signer:
            signer = _build(Signer, {**data, "order": len(document.signers) + 1})
            document.signers.append(signer)
            return signer

        _, signer = self._edit(document_id, apply, require_draft=True)
        return signer.model_copy(deep=True)

    def find_signer_document(self, signer_id: str) -> Document:
        with self._lock:
            for document in self._documents.values():
                if document.find_signer(signer_id) is not None:
                    return document.model_copy(deep=True)
        raise NotFoundError(f"Signer {signer_id} not found")

    def update_signer(self, signer_id: str, changes: Dict[str, Any]) -> Signer:
        _check_keys(changes, SIGNER_EDITABLE, "signer")
        document_id = self.find_signer_document(signer_id).id

        def apply(document: Document) -> Signer:
            if document.is_terminal:
                raise StateConflictError(f"Document {document.id} is {document.status.value} and can no longer change")
            current = document.get_signer(signer_id)
            updated = _build(Signer, {**current.model_dump(), **changes})
            document.signers = [updated if s.id == signer_id else s for s in document.signers]
            return updated

        _, signer = self._edit(document_id, apply)
        return signer.model_copy(deep=True)

    def remove_signer(self, document_id: str, signer_id: str) -> None:
        def apply(document: Document):
            document.get_signer(signer_id)
            document.fields = [f for f in document.fields if f.signer_id != signer_id]
            remaining = [s for s in document.signers_in_order() if s.id != signer_id]
            for position, signer in enumerate(remaining, start=1):
                signer.order = position
            document.signers = remaining

        self._edit(document_id, apply, require_draft=True)

    # Queries

    def _select(self, predicate: Callable[[Document], bool]) -> List[Document]:
        with self._lock:
            return [d.model_copy(deep=True) for d in self._documents.values() if predicate(d)]

    def by_folder(self, folder: str) -> List[Document]:
        return self._select(lambda d: d.folder == folder)

    def by_tag(self, tag: str) -> List[Document]:
        wanted = tag.lower()
        return self._select(lambda d: any(t.lower() == wanted for t in d.tags))

    def by_status(self, status: DocumentStatus) -> List[Document]:
        return self._select(lambda d: d.status == status)

    def search(self, text: str) -> List[Document]:
        needle = text.strip().lower()
        if not needle:
            return self.list()

        def matches(document: Document) -> bool:
            haystack = [document.title, *document.tags]
            for signer in document.signers:
                haystack.extend((signer.name, signer.email))
            return any(needle in item.lower() for item in haystack)

        return self._select(matches)

    # Snapshots

    def export_json(self) -> str:
        with self._lock:
            return _documents_adapter.dump_json(list(self._documents.values())).decode("utf-8")

    def import_json(self, payload: str) -> int:
        try:
            documents = _documents_adapter.validate_json(payload)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid snapshot: {exc.error_count()} problem(s)") from exc
        with self._lock:
            for document in documents:
                self._documents[document.id] = document
        logger.info("Imported %d document(s) from snapshot", len(documents))
        return len(documents)
