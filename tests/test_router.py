import pytest
from fastapi.testclient import TestClient

from app.database import get_db
from app.domain.portal.router import (
    get_enqueuer,
    get_pdf_renderer,
    get_pdf_store,
    get_portal_backend,
)
from app.domain.portal.storage import DocumentPDFStore
from app.main import app

HEADERS = {"X-Sync-Key": "test-sync-key"}


class FakeR2:
    def __init__(self):
        self.objects = {}

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[(Bucket, Key)] = Body


@pytest.fixture
def r2():
    return FakeR2()


@pytest.fixture
def queued():
    return []


@pytest.fixture
def api(db, backend, renderer, r2, queued):
    async def fake_enqueue(kind, document_id):
        queued.append((kind, document_id))
        return f"job-{len(queued)}"

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_portal_backend] = lambda: backend
    app.dependency_overrides[get_pdf_renderer] = lambda: renderer
    app.dependency_overrides[get_pdf_store] = lambda: DocumentPDFStore(db, renderer, r2_client=r2, bucket="docs")
    app.dependency_overrides[get_enqueuer] = lambda: fake_enqueue
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health_needs_no_key(api):
    response = api.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.parametrize("headers", [{}, {"X-Sync-Key": "wrong"}])
def test_sync_routes_require_key(api, headers, make_invoice, client_record):
    invoice = make_invoice(client=client_record)
    response = api.get(f"/portal-sync/invoice/{invoice.id}", headers=headers)
    assert response.status_code == 401


def test_get_state_for_new_invoice(api, make_invoice, client_record):
    invoice = make_invoice(client=client_record)

    response = api.get(f"/portal-sync/invoice/{invoice.id}", headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["publicId"] == invoice.public_id
    assert body["label"] == "pending"
    assert body["needsUpload"] is False
    assert body["lastUploadedHash"] is None


def test_unknown_document_is_404(api):
    assert api.get("/portal-sync/invoice/4040", headers=HEADERS).status_code == 404


def test_kind_mismatch_is_404(api, make_invoice, client_record):
    invoice = make_invoice(client=client_record)
    assert api.get(f"/portal-sync/estimate/{invoice.id}", headers=HEADERS).status_code == 404


def test_unknown_kind_is_rejected(api):
    assert api.get("/portal-sync/receipt/1", headers=HEADERS).status_code == 422


def test_touch_then_reconcile_then_state(api, backend, make_invoice, client_record):
    invoice = make_invoice(client=client_record)

    touched = api.post(f"/portal-sync/invoice/{invoice.id}/touch", headers=HEADERS)
    assert touched.status_code == 200
    assert touched.json() == {"kind": "invoice", "id": invoice.id, "needsUpload": True}

    reconciled = api.post(f"/portal-sync/invoice/{invoice.id}/reconcile", headers=HEADERS)
    assert reconciled.status_code == 200
    assert reconciled.json() == {"status": "uploaded", "message": None}
    assert backend.upload_count == 1

    state = api.get(f"/portal-sync/invoice/{invoice.id}", headers=HEADERS).json()
    assert state["label"] == "up_to_date"
    assert state["needsUpload"] is False
    assert state["lastUploadedBlobUrl"].startswith("https://blob.test/")

    again = api.post(f"/portal-sync/invoice/{invoice.id}/reconcile", headers=HEADERS)
    assert again.json()["status"] == "skipped_unchanged"


def test_reconcile_failure_is_reported_in_body(api, backend, make_contract, client_record):
    from app.domain.portal.errors import PortalHTTPError

    contract = make_contract(client=client_record)
    backend.upload_error = PortalHTTPError(500, "server exploded")

    response = api.post(f"/portal-sync/contract/{contract.id}/reconcile", headers=HEADERS)

    assert response.status_code == 200
    assert response.json() == {
        "status": "failed",
        "message": "Portal backend HTTP 500. server exploded",
    }
    state = api.get(f"/portal-sync/contract/{contract.id}", headers=HEADERS).json()
    assert state["label"] == "failed"
    assert state["lastUploadError"] == "Portal backend HTTP 500. server exploded"


def test_touch_ineligible_document(api, make_invoice, make_client):
    invoice = make_invoice(client=make_client(portal_enabled=False))

    response = api.post(f"/portal-sync/invoice/{invoice.id}/touch", headers=HEADERS)

    assert response.json()["needsUpload"] is False
    state = api.get(f"/portal-sync/invoice/{invoice.id}", headers=HEADERS).json()
    assert state["label"] == "not_shared"


def test_enqueue_queues_job(api, queued, make_invoice, client_record):
    estimate = make_invoice(client=client_record, document_type="estimate")

    response = api.post(f"/portal-sync/estimate/{estimate.id}/enqueue", headers=HEADERS)

    assert response.status_code == 200
    assert response.json() == {"jobId": "job-1", "status": "queued"}
    assert queued == [("estimate", estimate.id)]


def test_enqueue_reports_unavailable_queue(api):
    async def broken(kind, document_id):
        raise ConnectionError("redis down")

    app.dependency_overrides[get_enqueuer] = lambda: broken

    response = api.post("/portal-sync/invoice/1/enqueue", headers=HEADERS)

    assert response.status_code == 503


def test_store_pdf_sets_key_and_flags_upload(api, db, r2, backend, make_invoice, client_record, business):
    invoice = make_invoice(client=client_record)
    api.post(f"/portal-sync/invoice/{invoice.id}/reconcile", headers=HEADERS)

    response = api.post(f"/portal-sync/invoice/{invoice.id}/store-pdf", headers=HEADERS)

    assert response.status_code == 200
    expected_key = f"invoices/{business.public_id}/{invoice.public_id}.pdf"
    assert response.json() == {"pdfKey": expected_key, "needsUpload": True}
    assert ("docs", expected_key) in r2.objects
    db.refresh(invoice)
    assert invoice.pdf_key == expected_key


def test_estimate_status_sync_route(api, backend, make_invoice, client_record):
    from app.domain.portal.backend import EstimateStatus

    estimate = make_invoice(client=client_record, document_type="estimate", estimate_status="sent")
    backend.estimate_statuses[estimate.public_id] = EstimateStatus("declined", None)

    response = api.post("/portal-sync/estimates/sync-status?max_count=5", headers=HEADERS)

    assert response.status_code == 200
    assert response.json() == {"checked": 1, "updated": 1, "failed": 0}


def test_portal_sync_routes_are_mounted():
    paths = {route.path for route in app.routes}
    assert "/portal-sync/{kind}/{document_id}" in paths
    assert "/portal-sync/estimates/sync-status" in paths
