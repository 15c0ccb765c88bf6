import uuid
from datetime import timedelta

import pytest
from conftest import T0, USER_IDS, user_headers


@pytest.fixture
def session_id(client, admin_headers):
    body = {
        "session_name": "Batch A",
        "session_code": "batch-a",
        "start_time": "2025-03-03T09:00:00Z",
        "end_time": "2025-03-03T11:00:00Z",
        "modules": [{"test_id": 2}, {"test_id": 3}],
    }
    res = client.post("/api/sessions", json=body, headers=admin_headers)
    assert res.status_code == 201, res.text
    return res.json()["id"]


@pytest.fixture
def invited(client, admin_headers, session_id):
    res = client.post(
        f"/api/sessions/{session_id}/participants",
        json={"user_id": str(USER_IDS[0])},
        headers=admin_headers,
    )
    assert res.status_code == 201, res.text
    return res.json()


def test_health(client):
    assert client.get("/").json() == {"ok": True}


def test_me_requires_token_and_creates_profile(client):
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer junk"}).status_code == 401

    newcomer = uuid.uuid4()
    res = client.get("/api/auth/me", headers=user_headers(newcomer))
    assert res.status_code == 200
    assert res.json()["id"] == str(newcomer)
    assert res.json()["role"] == "participant"
    assert res.json()["status"] == "active"


def test_admin_routes_reject_participants(client):
    res = client.post("/api/admin/status/sweep", headers=user_headers(USER_IDS[0]))
    assert res.status_code == 403


def test_create_and_read_session(client, admin_headers, session_id):
    res = client.get(f"/api/sessions/{session_id}", headers=admin_headers)
    body = res.json()

    assert body["session_code"] == "BATCH-A"
    assert body["status"] == "draft"
    assert body["effective_status"] == "active"
    assert [(m["test_id"], m["sequence"]) for m in body["modules"]] == [(2, 1), (3, 2)]

    by_code = client.get("/api/sessions/code/Batch-A", headers=user_headers(USER_IDS[0]))
    assert by_code.json()["id"] == session_id


def test_domain_errors_use_detail_shape(client, admin_headers, session_id):
    res = client.get("/api/sessions/9999", headers=admin_headers)
    assert res.status_code == 404
    assert res.json()["detail"]["message"] == "session_not_found"

    res = client.post(f"/api/sessions/{session_id}/expire", headers=admin_headers)
    assert res.status_code == 409
    assert res.json()["detail"]["message"] == "invalid_state_transition"

    bad = {
        "session_name": "Backwards",
        "start_time": "2025-03-03T11:00:00Z",
        "end_time": "2025-03-03T09:00:00Z",
    }
    res = client.post("/api/sessions", json=bad, headers=admin_headers)
    assert res.status_code == 400
    assert res.json()["detail"]["message"] == "invalid_session_schedule"


def test_invite_and_duplicate(client, admin_headers, session_id, invited):
    assert invited["participant"]["status"] == "invited"
    assert "/psikotes/BATCH-A?token=" in invited["access_url"]

    res = client.post(
        f"/api/sessions/{session_id}/participants",
        json={"user_id": str(USER_IDS[0])},
        headers=admin_headers,
    )
    assert res.status_code == 409
    assert res.json()["detail"]["message"] == "duplicate_participant"


def test_bulk_invite_reports_skips(client, admin_headers, session_id, invited):
    res = client.post(
        f"/api/sessions/{session_id}/participants/bulk",
        json={"user_ids": [str(u) for u in USER_IDS[:3]]},
        headers=admin_headers,
    )

    assert res.status_code == 201
    body = res.json()
    assert body["total_added"] == 2
    assert body["skipped_participants"] == [{"user_id": str(USER_IDS[0]), "reason": "already_enrolled"}]


def test_participant_flow(client, admin_headers, session_id, invited, clock):
    pid = invited["participant"]["id"]
    token = invited["access_url"].split("token=")[1]
    me = user_headers(USER_IDS[0])
    base = f"/api/sessions/{session_id}/participants/{pid}"

    res = client.post(f"/api/participant-links/{token}", headers=me)
    assert res.status_code == 200
    assert res.json()["participant"]["status"] == "registered"

    # 다른 사용자는 접근 불가
    assert client.post(f"{base}/tests/2/start", headers=user_headers(USER_IDS[1])).status_code == 403

    res = client.post(f"{base}/tests/2/start", headers=me)
    assert res.status_code == 200
    assert res.json()["status"] == "in_progress"
    assert res.json()["time_remaining"] == 1200

    assert client.post(f"{base}/tests/2/start", headers=me).json()["detail"]["message"] == "already_started"

    clock.advance(minutes=5)
    res = client.patch(f"{base}/tests/2/progress", json={"answered_questions": 10, "time_spent_delta": 300}, headers=me)
    assert res.json()["progress_percentage"] == 100
    assert res.json()["time_spent"] == 300

    res = client.post(f"{base}/tests/2/complete", headers=me)
    body = res.json()
    assert body["changed"] is True
    assert body["progress"]["status"] == "completed"
    assert body["next_step"] == {"session_complete": False, "test_id": 3, "sequence": 2}

    assert client.get(f"{base}/next", headers=me).json()["test_id"] == 3
    overview = client.get(f"{base}/progress", headers=me).json()
    assert [m["status"] for m in overview["modules"]] == ["completed", "not_started"]

    stats = client.get(f"/api/sessions/{session_id}/stats", headers=admin_headers).json()
    assert stats["participants_by_status"]["started"] == 1


def test_activity_after_deadline_is_rejected(client, admin_headers, session_id, invited, clock):
    pid = invited["participant"]["id"]
    me = user_headers(USER_IDS[0])
    base = f"/api/sessions/{session_id}/participants/{pid}/tests/3"

    client.post(f"{base}/start", headers=me)
    clock.advance(minutes=15)

    res = client.patch(f"{base}/progress", json={"answered_questions": 1}, headers=me)
    assert res.status_code == 409
    assert res.json()["detail"]["message"] == "attempt_not_active"
    assert client.get(f"{base}/progress", headers=me).json()["status"] == "auto_completed"


def test_manual_sweep(client, admin_headers, session_id, invited):
    pid = invited["participant"]["id"]
    client.post(f"/api/sessions/{session_id}/participants/{pid}/tests/2/start", headers=user_headers(USER_IDS[0]))

    now = (T0 + timedelta(hours=2, minutes=1)).strftime("%Y-%m-%dT%H:%M:%SZ")
    res = client.post("/api/admin/status/sweep", params={"now": now}, headers=admin_headers)

    assert res.status_code == 200
    body = res.json()
    assert body["auto_completed"] == 1
    assert body["expired"] == 1
    assert body["failures"] == 0
    assert client.get(f"/api/sessions/{session_id}", headers=admin_headers).json()["status"] == "expired"


def test_module_management_endpoints(client, admin_headers, session_id):
    res = client.post(f"/api/sessions/{session_id}/modules", json={"test_id": 1, "sequence": 1}, headers=admin_headers)
    assert res.status_code == 201
    assert [m["test_id"] for m in res.json()["modules"]] == [1, 2, 3]

    res = client.delete(f"/api/sessions/{session_id}/modules/2", headers=admin_headers)
    assert [(m["test_id"], m["sequence"]) for m in res.json()["modules"]] == [(1, 1), (3, 2)]


def test_participant_status_and_removal(client, admin_headers, session_id, invited):
    pid = invited["participant"]["id"]
    base = f"/api/sessions/{session_id}/participants/{pid}"

    res = client.patch(f"{base}/status", json={"status": "completed"}, headers=admin_headers)
    assert res.status_code == 409
    assert res.json()["detail"]["message"] == "invalid_status_transition"

    assert client.patch(f"{base}/status", json={"status": "registered"}, headers=admin_headers).json()["status"] == "registered"
    assert client.delete(base, headers=admin_headers).status_code == 204
    assert client.delete(base, headers=admin_headers).status_code == 404
