import base64

import pytest

from signflow.errors import NotFoundError, ValidationError
from signflow.models import DocumentStatus, SignerStatus, SigningOrder, TextValue

from conftest import make_pdf


def test_save_as_template_keeps_layout_without_progress(build, store, engine, run):
    document = build(signers=2, order=SigningOrder.PARALLEL)
    store.update(document.id, {"tags": ["HR"]})
    sent = run(engine.send(store.get(document.id)))
    signer = sent.signers_in_order()[0]
    run(engine.fill_field(sent, sent.fields_for_signer(signer.id)[0].id, TextValue(text="Ada"), signer.id))

    template = store.save_as_template(document.id, description="Standard offer", category="HR & Employment")

    assert template.id.startswith("tmpl_")
    assert template.name == "Employment Agreement"
    assert template.category == "HR & Employment"
    assert template.signing_order == SigningOrder.PARALLEL
    assert template.tags == ["HR"]
    assert [f.label for f in template.fields] == ["Full name 1", "Full name 2"]
    assert all(f.value is None for f in template.fields)
    assert all(s.status == SignerStatus.PENDING for s in template.signers)
    assert {s.id for s in template.signers}.isdisjoint({s.id for s in sent.signers})
    assert {f.signer_id for f in template.fields} == {s.id for s in template.signers}


def test_create_from_template_gives_fresh_draft(build, store):
    template = store.save_as_template(build(signers=2).id, name="Offer letter")

    first = store.create_from_template(template.id, "Offer for Ann")
    second = store.create_from_template(template.id)

    assert first.status == DocumentStatus.DRAFT
    assert first.title == "Offer for Ann"
    assert second.title == "Offer letter"
    assert first.content == template.content
    assert [s.name for s in first.signers_in_order()] == ["Signer 1", "Signer 2"]
    for document in (first, second):
        assert {s.id for s in document.signers}.isdisjoint({s.id for s in template.signers})
        assert {f.id for f in document.fields}.isdisjoint({f.id for f in template.fields})
        assert {f.signer_id for f in document.fields} == {s.id for s in document.signers}
    assert {s.id for s in first.signers}.isdisjoint({s.id for s in second.signers})
    # the template itself is not consumed
    assert store.get_template(template.id) == template


def test_template_search_update_and_delete(build, store):
    offer = store.save_as_template(build(signers=1).id, name="Offer letter", category="HR & Employment")
    nda = store.save_as_template(build(signers=1).id, name="Mutual NDA", description="Confidentiality")

    assert {t.id for t in store.list_templates()} == {offer.id, nda.id}
    assert [t.id for t in store.list_templates("employment")] == [offer.id]
    assert [t.id for t in store.list_templates("CONFIDENTIAL")] == [nda.id]

    renamed = store.update_template(nda.id, {"name": "One-way NDA"})
    assert renamed.name == "One-way NDA"
    assert renamed.updated_at >= nda.updated_at
    with pytest.raises(ValidationError):
        store.update_template(nda.id, {"name": "  "})
    with pytest.raises(ValidationError):
        store.update_template(nda.id, {"fields": []})

    store.delete_template(nda.id)
    store.delete_template(nda.id)
    with pytest.raises(NotFoundError):
        store.get_template(nda.id)
    with pytest.raises(NotFoundError):
        store.create_from_template(nda.id)


def test_template_routes(client):
    pdf = base64.b64encode(make_pdf()).decode("ascii")
    source = client.post("/documents/", json={"title": "Lease", "content": pdf, "file_name": "lease.pdf"}).json()
    signer = client.post(f"/documents/{source['id']}/signers",
                         json={"name": "Tenant", "email": "tenant@example.com"}).json()
    client.post(f"/documents/{source['id']}/fields",
                json={"type": "signature", "x": 10, "y": 80, "width": 20, "height": 8, "signer_id": signer["id"]})

    resp = client.post(f"/templates/from-document/{source['id']}", json={"category": "Real estate"})
    assert resp.status_code == 200, resp.text
    template = resp.json()
    assert template["name"] == "Lease"
    assert "content" not in template

    listed = client.get("/templates/", params={"q": "real"}).json()
    assert [(t["id"], t["signer_count"], t["field_count"]) for t in listed] == [(template["id"], 1, 1)]

    resp = client.post(f"/templates/{template['id']}/documents", json={"title": "Lease - Unit 4"})
    assert resp.status_code == 200, resp.text
    created = resp.json()
    assert created["title"] == "Lease - Unit 4"
    assert created["status"] == "draft"
    assert (created["signer_count"], created["field_count"]) == (1, 1)
    assert client.get(f"/documents/{created['id']}/view").json()["total_pages"] == 1

    assert client.delete(f"/templates/{template['id']}").status_code == 204
    assert client.get(f"/templates/{template['id']}").status_code == 404
    assert client.post(f"/templates/{template['id']}/documents").status_code == 404
