import json
from datetime import timedelta

import pytest

from signflow.errors import NotFoundError, StateConflictError, ValidationError
from signflow.models import DocumentStatus, SignerStatus, SigningOrder, TextValue


def test_create_and_get_returns_copies(store):
    document = store.create("Lease", b"%PDF-1.4", file_name="lease.pdf", mime_type="application/pdf")

    fetched = store.get(document.id)
    fetched.title = "Changed locally"

    assert store.get(document.id).title == "Lease"
    assert document.status == DocumentStatus.DRAFT
    assert document.signers == [] and document.fields == []
    assert len(store) == 1


def test_create_requires_title(store):
    with pytest.raises(ValidationError):
        store.create("   ")


def test_get_unknown_document(store):
    with pytest.raises(NotFoundError):
        store.get("doc_missing")


def test_update_bumps_version_and_timestamp(store):
    document = store.create("NDA")

    updated = store.update(document.id, {"title": "Mutual NDA", "tags": ["legal"], "folder": "Contracts"})

    assert updated.title == "Mutual NDA"
    assert updated.tags == ["legal"]
    assert updated.version == document.version + 1
    assert updated.updated_at >= document.updated_at


def test_update_rejects_unknown_keys(store):
    document = store.create("NDA")
    with pytest.raises(ValidationError):
        store.update(document.id, {"status": "completed"})
    assert store.get(document.id).status == DocumentStatus.DRAFT


def test_update_rejects_invalid_value_without_changing_anything(store):
    document = store.create("NDA")
    with pytest.raises(ValidationError):
        store.update(document.id, {"title": ""})
    assert store.get(document.id).title == "NDA"


def test_signing_order_is_frozen_after_send(build, store, engine, run):
    document = run(engine.send(build(signers=1)))

    with pytest.raises(StateConflictError):
        store.update(document.id, {"signing_order": SigningOrder.PARALLEL})
    # cosmetic edits are still allowed on an active document
    assert store.update(document.id, {"tags": ["urgent"]}).tags == ["urgent"]


@pytest.mark.parametrize("changes", [
    {"content": b"%PDF-1.4 swapped"},
    {"file_name": "other.pdf"},
    {"mime_type": "image/png"},
])
def test_agreement_content_is_frozen_after_send(build, store, engine, run, changes):
    document = run(engine.send(build(signers=1)))

    with pytest.raises(StateConflictError):
        store.update(document.id, changes)

    after = store.get(document.id)
    assert after.content == document.content
    assert (after.file_name, after.mime_type) == (document.file_name, document.mime_type)
    assert after.version == document.version


def test_delete_is_idempotent(store):
    document = store.create("Scratch")
    store.delete(document.id)
    store.delete(document.id)
    with pytest.raises(NotFoundError):
        store.get(document.id)


def test_duplicate_resets_workflow_state(build, store, engine, run):
    document = build(signers=2)
    signer = document.signers_in_order()[0]
    sent = run(engine.send(document))
    run(engine.fill_field(sent, sent.fields_for_signer(signer.id)[0].id, TextValue(text="Ada"), signer.id))

    copy = store.duplicate(document.id)

    assert copy.id != document.id
    assert copy.title == "Employment Agreement (Copy)"
    assert copy.status == DocumentStatus.DRAFT
    assert {s.id for s in copy.signers}.isdisjoint({s.id for s in document.signers})
    assert {f.id for f in copy.fields}.isdisjoint({f.id for f in document.fields})
    assert all(s.status == SignerStatus.PENDING for s in copy.signers)
    assert all(f.value is None for f in copy.fields)
    # assignments follow the copied signers
    for field in copy.fields:
        assert copy.find_signer(field.signer_id) is not None
    assert store.get(document.id).status == DocumentStatus.SENT


def test_add_field_validates_geometry(store):
    document = store.create("Form")
    with pytest.raises(ValidationError):
        store.add_field(document.id, {"x": 90, "y": 10, "width": 20, "height": 5})
    with pytest.raises(ValidationError):
        store.add_field(document.id, {"x": 10, "y": 10, "width": 0, "height": 5})
    with pytest.raises(ValidationError):
        store.add_field(document.id, {"x": 10, "y": 10, "width": 5, "height": 5, "page": 0})
    assert store.get(document.id).fields == []


def test_add_field_to_unknown_signer(store):
    document = store.create("Form")
    with pytest.raises(NotFoundError):
        store.add_field(document.id, {"x": 10, "y": 10, "width": 5, "height": 5, "signer_id": "signer_ghost"})


def test_update_field_changing_type_clears_value(store):
    document = store.create("Form")
    field = store.add_field(document.id, {"type": "text", "x": 10, "y": 10, "width": 5, "height": 5})

    updated = store.update_field(document.id, field.id, {"type": "checkbox", "label": "Agree"})

    assert updated.type.value == "checkbox"
    assert updated.label == "Agree"
    assert updated.value is None
    assert updated.x == 10


def test_update_field_stamps_the_document(store, monkeypatch):
    from signflow.services import store as store_module

    document = store.create("Form")
    field = store.add_field(document.id, {"type": "text", "x": 10, "y": 10, "width": 5, "height": 5})
    before = store.get(document.id)
    later = before.updated_at + timedelta(minutes=5)
    monkeypatch.setattr(store_module, "utcnow", lambda: later)

    store.update_field(document.id, field.id, {"label": "Company"})

    after = store.get(document.id)
    assert after.updated_at == later
    assert after.version == before.version + 1
    assert after.created_at == before.created_at


def test_delete_field(store):
    document = store.create("Form")
    field = store.add_field(document.id, {"x": 10, "y": 10, "width": 5, "height": 5})

    store.delete_field(document.id, field.id)

    assert store.get(document.id).fields == []
    with pytest.raises(NotFoundError):
        store.delete_field(document.id, field.id)


def test_structure_is_frozen_after_send(build, store, engine, run):
    document = run(engine.send(build(signers=1)))

    with pytest.raises(StateConflictError):
        store.add_field(document.id, {"x": 1, "y": 1, "width": 5, "height": 5})
    with pytest.raises(StateConflictError):
        store.add_signer(document.id, {"name": "Late", "email": "late@example.com"})
    with pytest.raises(StateConflictError):
        store.remove_signer(document.id, document.signers[0].id)


def test_add_signer_assigns_next_order(store):
    document = store.create("Board resolution")
    first = store.add_signer(document.id, {"name": "Ann", "email": "ann@example.com"})
    second = store.add_signer(document.id, {"name": "Bob", "email": "bob@example.com", "order": 9})

    assert (first.order, second.order) == (1, 2)
    assert first.status == SignerStatus.PENDING


@pytest.mark.parametrize("email", ["not-an-email", "a@b", "two words@example.com", ""])
def test_add_signer_rejects_bad_email(store, email):
    document = store.create("Board resolution")
    with pytest.raises(ValidationError):
        store.add_signer(document.id, {"name": "Ann", "email": email})


def test_update_signer_is_found_across_documents(store):
    store.create("Other")
    document = store.create("Board resolution")
    signer = store.add_signer(document.id, {"name": "Ann", "email": "ann@example.com"})

    updated = store.update_signer(signer.id, {"name": "Ann Smith", "role": "approver"})

    assert updated.name == "Ann Smith"
    assert store.get(document.id).get_signer(signer.id).role == "approver"
    with pytest.raises(NotFoundError):
        store.update_signer("signer_ghost", {"name": "Nobody"})


def test_remove_signer_cascades_and_renumbers(build, store):
    document = build(signers=3)
    first, second, third = document.signers_in_order()

    store.remove_signer(document.id, second.id)

    after = store.get(document.id)
    assert [s.id for s in after.signers_in_order()] == [first.id, third.id]
    assert [s.order for s in after.signers_in_order()] == [1, 2]
    assert all(f.signer_id != second.id for f in after.fields)
    assert len(after.fields) == 2


def test_queries(store):
    lease = store.create("Office Lease")
    store.update(lease.id, {"folder": "Real estate", "tags": ["Lease", "2024"]})
    nda = store.create("NDA")
    store.add_signer(nda.id, {"name": "Grace Hopper", "email": "grace@navy.example.com"})

    assert [d.id for d in store.by_folder("Real estate")] == [lease.id]
    assert [d.id for d in store.by_tag("lease")] == [lease.id]
    assert {d.id for d in store.by_status(DocumentStatus.DRAFT)} == {lease.id, nda.id}
    assert [d.id for d in store.search("hopper")] == [nda.id]
    assert [d.id for d in store.search("NAVY.example")] == [nda.id]
    assert [d.id for d in store.search("office")] == [lease.id]
    assert len(store.search("  ")) == 2


def test_commit_rejects_stale_version(build, store, engine):
    document = build(signers=1)
    stale = engine.send(document).document
    store.update(document.id, {"tags": ["bumped"]})

    with pytest.raises(StateConflictError):
        store.commit(stale)
    assert store.get(document.id).status == DocumentStatus.DRAFT


def test_export_import_snapshot(build, store, pdf_bytes):
    from signflow.services.store import DocumentStore

    document = build(signers=2)
    store.update(document.id, {"content": pdf_bytes})

    snapshot = store.export_json()
    assert json.loads(snapshot)[0]["id"] == document.id

    restored = DocumentStore()
    assert restored.import_json(snapshot) == 1
    copy = restored.get(document.id)
    assert copy.content == pdf_bytes
    assert copy.signers == store.get(document.id).signers


def test_import_rejects_garbage(store):
    with pytest.raises(ValidationError):
        store.import_json('[{"title": 3}]')
    assert len(store) == 0
