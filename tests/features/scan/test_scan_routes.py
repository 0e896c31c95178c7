import pytest

from safescan.features.scan.routes.scan import get_result_access_policy, get_scan_service
from safescan.features.scan.services.scan.scan import ResultAccessPolicy, ScanService
from tests.fakes import FakeQueue


@pytest.fixture
def queue():
    return FakeQueue()


@pytest.fixture
def scan_client(client, test_app, ledger, job_store, result_store, queue):
    """Client whose scan service runs against the per-test database."""
    service = ScanService(
        ledger=ledger,
        job_store=job_store,
        result_store=result_store,
        queue=queue,
        credit_cost=1,
    )
    test_app.dependency_overrides[get_scan_service] = lambda: service

    yield client

    test_app.dependency_overrides.pop(get_scan_service, None)
    test_app.dependency_overrides.pop(get_result_access_policy, None)


def test_create_scan(scan_client, ledger, queue):
    ledger.add_credits("u1", 5)

    response = scan_client.post("/api/v1/scans", json={"url": "https://example.com"}, headers={"X-User-Id": "u1"})

    assert response.status_code == 202
    payload = response.json()
    assert payload["status"] == "success"
    assert payload["data"]["state"] == "QUEUED"
    assert len(queue.messages) == 1


def test_create_scan_without_credits(scan_client):
    response = scan_client.post("/api/v1/scans", json={"url": "https://example.com"}, headers={"X-User-Id": "u1"})

    assert response.status_code == 402
    payload = response.json()
    assert payload["status"] == "error"
    assert payload["data"]["error"] == {
        "code": "insufficient_credits",
        "message": "Insufficient credits. Required: 1, Available: 0",
    }


def test_create_scan_with_private_url(scan_client, ledger):
    ledger.add_credits("u1", 1)

    response = scan_client.post("/api/v1/scans", json={"url": "http://192.168.1.1"}, headers={"X-User-Id": "u1"})

    assert response.status_code == 422
    assert response.json()["data"]["error"]["code"] == "validation_error"


def test_queue_outage_is_reported(scan_client, ledger, queue):
    ledger.add_credits("u1", 1)
    queue.fail = True

    response = scan_client.post("/api/v1/scans", json={"url": "https://example.com"}, headers={"X-User-Id": "u1"})

    assert response.status_code == 503
    assert response.json()["data"]["error"] == {"code": "queue_error", "message": "Failed to enqueue scan job"}


def test_missing_identity_is_rejected(scan_client):
    response = scan_client.post("/api/v1/scans", json={"url": "https://example.com"})
    assert response.status_code == 401


def test_get_scan_for_owner_and_stranger(scan_client, funded_job):
    own = scan_client.get(f"/api/v1/scans/{funded_job.id}", headers={"X-User-Id": "u1"})
    other = scan_client.get(f"/api/v1/scans/{funded_job.id}", headers={"X-User-Id": "u2"})

    assert own.status_code == 200
    assert own.json()["data"]["id"] == funded_job.id
    assert own.json()["data"]["result"] is None
    assert other.status_code == 403


def test_get_scan_with_open_access(scan_client, test_app, funded_job):
    test_app.dependency_overrides[get_result_access_policy] = lambda: ResultAccessPolicy.ANY_USER

    response = scan_client.get(f"/api/v1/scans/{funded_job.id}", headers={"X-User-Id": "u2"})

    assert response.status_code == 200


def test_get_unknown_scan(scan_client):
    response = scan_client.get("/api/v1/scans/missing", headers={"X-User-Id": "u1"})
    assert response.status_code == 404


def test_list_scans(scan_client, funded_job):
    response = scan_client.get("/api/v1/scans", headers={"X-User-Id": "u1"})

    assert response.status_code == 200
    assert [scan["id"] for scan in response.json()["data"]["scans"]] == [funded_job.id]


def test_credit_balance(scan_client, ledger):
    ledger.add_credits("u1", 3)

    response = scan_client.get("/api/v1/credits", headers={"X-User-Id": "u1"})

    assert response.status_code == 200
    assert response.json()["data"]["balance"] == 3


def test_malformed_body_uses_the_envelope(scan_client):
    response = scan_client.post("/api/v1/scans", json={}, headers={"X-User-Id": "u1"})

    assert response.status_code == 422
    payload = response.json()
    assert payload["message"] == "Validation failed"
    assert payload["data"]["error"]["code"] == "validation_error"
