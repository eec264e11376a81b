from batchtrack.main import app
from conftest import auth_headers


def test_routes_registered():
    paths = set(app.openapi()["paths"])
    assert "/pre-processing/{batch_id}/status" in paths
    assert "/production-logs/recent" in paths
    assert "/health" in paths


def test_list_batches_ok(client):
    r = client.get("/pre-processing", headers=auth_headers())
    assert r.status_code == 200
    assert r.json() == {"success": True, "data": [], "pagination": {"current": 1, "pages": 0, "total": 0}}
