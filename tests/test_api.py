from datetime import datetime, timedelta, timezone

import pytest

from batchtrack.core.config import get_settings

from conftest import COMPANY, OTHER_COMPANY, auth_headers

NEW_BATCH = {
    "processType": "scouring",
    "processName": "Caustic scour",
    "inputMaterials": [{"fabricType": "cotton", "quantity": 250, "unit": "meters"}],
    "machineAssignment": {"machineName": "Kier 1", "efficiency": 75},
    "costs": {"chemicalCost": 40, "laborCost": 20},
}


def _create(client, headers=None):
    r = client.post("/pre-processing", json=NEW_BATCH, headers=headers or auth_headers())
    assert r.status_code == 201, r.text
    return r.json()["data"]


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "healthy"
    assert body["database"] == "connected"


def test_metrics_exposed(client):
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "batch_status_transitions_total" in r.text


def test_requires_bearer_token(client):
    r = client.get("/pre-processing")
    assert r.status_code == 401
    assert r.json() == {"success": False, "message": "Missing bearer token"}


def test_requires_company_context(client):
    r = client.get("/pre-processing", headers=auth_headers(company_id=None))
    assert r.status_code == 400
    assert r.json()["message"] == "Company context required"


def test_header_supplies_company_when_token_has_none(client):
    _create(client)
    r = client.get("/pre-processing", headers=auth_headers(company_id=None, **{"X-Company-Id": COMPANY}))
    assert r.status_code == 200
    assert r.json()["pagination"]["total"] == 1


def test_company_mismatch_is_forbidden(client):
    r = client.get("/pre-processing", headers=auth_headers(**{"X-Company-Id": OTHER_COMPANY}))
    assert r.status_code == 403
    r = client.get("/pre-processing", headers=auth_headers(role="super_admin", **{"X-Company-Id": OTHER_COMPANY}))
    assert r.status_code == 200


def test_create_and_fetch_envelope(client):
    batch = _create(client)
    assert batch["status"] == "pending"
    assert batch["progress"] == 0
    assert batch["batchNumber"].startswith("PRE-")
    assert batch["costs"]["total_cost"] == 60

    r = client.get(f"/pre-processing/{batch['id']}", headers=auth_headers(role="viewer"))
    body = r.json()
    assert r.status_code == 200
    assert body["success"] is True
    assert body["data"]["processName"] == "Caustic scour"


def test_create_validation_errors_are_field_level(client):
    r = client.post("/pre-processing", json={"processType": "weaving", "processName": ""}, headers=auth_headers())
    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    fields = {e["field"] for e in body["errors"]}
    assert "processType" in fields
    assert "processName" in fields


def test_viewer_cannot_create(client):
    r = client.post("/pre-processing", json=NEW_BATCH, headers=auth_headers(role="viewer"))
    assert r.status_code == 403


def test_malformed_id_is_bad_request(client):
    r = client.get("/pre-processing/not-a-number", headers=auth_headers())
    assert r.status_code == 400
    assert r.json()["errors"][0]["field"] == "batch_id"


def test_other_tenant_gets_not_found(client):
    batch = _create(client)
    other = auth_headers(company_id=OTHER_COMPANY)
    assert client.get(f"/pre-processing/{batch['id']}", headers=other).status_code == 404
    r = client.patch(f"/pre-processing/{batch['id']}/status",
                     json={"status": "in_progress", "changeReason": "start"}, headers=other)
    assert r.status_code == 404


def test_status_flow_over_http(client):
    batch = _create(client)
    r = client.patch(f"/pre-processing/{batch['id']}/status",
                     json={"status": "in_progress", "changeReason": "start run", "notes": "loaded"},
                     headers=auth_headers(**{"X-Request-Id": "req-42"}))
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["message"] == "Status updated from pending to in_progress successfully"
    assert body["data"]["actualStartTime"] is not None

    r = client.patch(f"/pre-processing/{batch['id']}/status",
                     json={"status": "completed", "changeReason": "done"}, headers=auth_headers())
    assert r.json()["data"]["progress"] == 100
    assert r.json()["data"]["actualEndTime"] is not None

    r = client.get(f"/pre-processing/{batch['id']}/logs", headers=auth_headers())
    history = r.json()["data"]
    assert [h["statusChange"]["from_status"] for h in history] == ["in_progress", "pending"]
    assert history[1]["requestInfo"]["request_id"] == "req-42"


def test_bad_status_value_is_rejected(client):
    batch = _create(client)
    r = client.patch(f"/pre-processing/{batch['id']}/status",
                     json={"status": "not_a_status", "changeReason": "x"}, headers=auth_headers())
    assert r.status_code == 400
    assert r.json()["errors"][0]["field"] == "status"
    assert client.get(f"/pre-processing/{batch['id']}", headers=auth_headers()).json()["data"]["status"] == "pending"


def test_missing_change_reason_is_rejected(client):
    batch = _create(client)
    r = client.patch(f"/pre-processing/{batch['id']}/status", json={"status": "in_progress"}, headers=auth_headers())
    assert r.status_code == 400


def test_stale_expected_version_conflicts(client):
    batch = _create(client)
    r = client.patch(f"/pre-processing/{batch['id']}/status",
                     json={"status": "in_progress", "changeReason": "start", "expectedVersion": 99},
                     headers=auth_headers())
    assert r.status_code == 409
    assert r.json()["success"] is False


def test_put_cannot_change_status(client):
    batch = _create(client)
    r = client.put(f"/pre-processing/{batch['id']}", json={"status": "completed"}, headers=auth_headers())
    assert r.status_code == 400
    r = client.put(f"/pre-processing/{batch['id']}", json={"processName": "Mild scour"}, headers=auth_headers())
    assert r.status_code == 200
    assert r.json()["data"]["processName"] == "Mild scour"


def test_progress_endpoint_clamps(client):
    batch = _create(client)
    r = client.patch(f"/pre-processing/{batch['id']}/progress", json={"progress": 130}, headers=auth_headers())
    assert r.status_code == 200
    assert r.json()["data"]["progress"] == 100


def test_list_pagination_and_status_filter(client):
    for _ in range(3):
        _create(client)
    r = client.get("/pre-processing", params={"page": 1, "limit": 2}, headers=auth_headers())
    body = r.json()
    assert len(body["data"]) == 2
    assert body["pagination"] == {"current": 1, "pages": 2, "total": 3}

    r = client.get("/pre-processing", params={"status": "completed"}, headers=auth_headers())
    assert r.json()["data"] == []
    r = client.get("/pre-processing", params={"status": "finished"}, headers=auth_headers())
    assert r.status_code == 400
    r = client.get("/pre-processing", params={"limit": 1000}, headers=auth_headers())
    assert r.status_code == 400


def test_analytics_endpoint(client):
    _create(client)
    r = client.get("/pre-processing/analytics", headers=auth_headers())
    data = r.json()["data"]
    assert data["total_batches"] == 1
    assert data["status_breakdown"][0]["status"] == "pending"


def test_delete_is_admin_only(client):
    batch = _create(client)
    assert client.delete(f"/pre-processing/{batch['id']}", headers=auth_headers()).status_code == 403
    r = client.delete(f"/pre-processing/{batch['id']}", headers=auth_headers(role="admin"))
    assert r.status_code == 200
    assert client.get(f"/pre-processing/{batch['id']}", headers=auth_headers()).status_code == 404


def test_production_log_views(client):
    batch = _create(client)
    client.patch(f"/pre-processing/{batch['id']}/status",
                 json={"status": "on_hold", "changeReason": "chemical shortage"}, headers=auth_headers())

    r = client.get(f"/production-logs/batch/{batch['batchNumber']}", headers=auth_headers())
    actions = [row["action"] for row in r.json()["data"]]
    assert actions == ["status_changed", "batch_created"]

    r = client.get("/production-logs/stage/pre_processing", params={"logType": "status_change"},
                   headers=auth_headers())
    assert len(r.json()["data"]) == 1
    assert client.get("/production-logs/stage/weaving", headers=auth_headers()).status_code == 400

    recent = client.get("/production-logs/recent", headers=auth_headers()).json()["data"]
    ids = [row["id"] for row in recent]
    r = client.post("/production-logs/read", json={"ids": ids}, headers=auth_headers())
    assert r.json()["data"] == {"updated": 2}

    assert client.get("/production-logs/statistics", headers=auth_headers()).status_code == 403
    r = client.get("/production-logs/statistics", headers=auth_headers(role="supervisor"))
    assert {b["log_type"] for b in r.json()["data"]} == {"stage_change", "status_change"}


def test_purge_requires_super_admin(client):
    assert client.post("/production-logs/purge", headers=auth_headers(role="admin")).status_code == 403
    r = client.post("/production-logs/purge", headers=auth_headers(role="super_admin"))
    assert r.status_code == 200
    assert r.json()["data"] == {"deleted": 0}


@pytest.fixture
def dev_login(monkeypatch):
    monkeypatch.setitem(get_settings(), "DEV_LOGIN_ENABLED", True)


def test_login_is_off_by_default(client):
    r = client.post("/auth/login", json={"username": "asha", "role": "supervisor", "companyId": COMPANY})
    assert r.status_code == 404


def test_dev_login_issues_tenant_tokens(client, dev_login):
    r = client.post("/auth/login", json={"username": "asha", "role": "supervisor", "companyId": COMPANY})
    assert r.status_code == 200
    token = r.json()["access_token"]
    r = client.get("/pre-processing", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200


def test_dev_login_never_grants_super_admin(client, dev_login):
    r = client.post("/auth/login", json={"username": "mallory", "role": "super_admin", "companyId": OTHER_COMPANY})
    assert r.status_code == 400
    assert "access_token" not in r.json()


def test_offset_dates_are_compared_in_utc(client):
    _create(client)
    r = client.get("/pre-processing", params={"startDate": "2020-01-01T00:00:00Z", "endDate": "2030-01-01T00:00:00"},
                   headers=auth_headers())
    assert r.status_code == 200
    assert r.json()["pagination"]["total"] == 1

    # an hour ago in UTC, written with a +05:30 offset
    start = (datetime.now(timezone.utc) - timedelta(hours=1)).astimezone(timezone(timedelta(hours=5, minutes=30)))
    r = client.get("/pre-processing", params={"startDate": start.isoformat()}, headers=auth_headers())
    assert r.json()["pagination"]["total"] == 1

    r = client.get("/production-logs/stage/pre_processing",
                   params={"startDate": start.isoformat(), "endDate": "2030-01-01T00:00:00Z"}, headers=auth_headers())
    assert r.status_code == 200
    assert len(r.json()["data"]) == 1
