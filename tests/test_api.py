from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from safetrip.Controller.deps import get_DB
from safetrip.main import app
from safetrip.Services.alert_manager import alert_manager
from safetrip.Services.anomaly_detector import anomaly_detector
from safetrip.Services.ingestion import ingestion_pipeline
from safetrip.Services.notifier import notifier
from safetrip.Services.position_cache import position_cache
from safetrip.Services.session_manager import session_manager

TOURIST = {"X-User-Id": "tourist-1", "X-User-Role": "tourist"}
OTHER_TOURIST = {"X-User-Id": "tourist-2", "X-User-Role": "tourist"}
POLICE = {"X-User-Id": "officer-1", "X-User-Role": "police"}


@pytest.fixture
def client(session_factory, clock, monkeypatch):
    for service in (session_manager, alert_manager, anomaly_detector, ingestion_pipeline, notifier):
        monkeypatch.setattr(service, "clock", clock)

    def override_get_DB():
        DB = session_factory()
        try:
            yield DB
        finally:
            DB.close()

    app.dependency_overrides[get_DB] = override_get_DB
    position_cache.clear()

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    position_cache.clear()


def create_session(client, clock, headers=TOURIST, start_offset=timedelta(0)):
    start = clock() + start_offset
    response = client.post("/sessions/", headers=headers, json={
        "destination": "Madrid",
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(days=3)).isoformat(),
        "emergency_contacts": [{"name": "Ana", "phone": "+34600111222"}],
    })
    assert response.status_code == 201, response.text
    return response.json()


def active_session(client, clock):
    session = create_session(client, clock)
    response = client.post(
        f"/sessions/{session['session_id']}/activate", headers=TOURIST, json={"consent_given": True}
    )
    assert response.status_code == 200, response.text
    return response.json()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "database": "ok", "scheduler": False}


# ==========================================================
# SESSIONS
# ==========================================================

def test_create_and_activate_session(client, clock):
    session = create_session(client, clock)
    assert session["status"] == "pending"
    assert session["consent_given"] is False

    activated = client.post(
        f"/sessions/{session['session_id']}/activate", headers=TOURIST, json={"consent_given": True}
    ).json()
    assert activated["status"] == "active"
    assert activated["consent_given"] is True

    response = client.get("/sessions/active", headers=TOURIST)
    assert response.json()["session_id"] == session["session_id"]


def test_activate_before_start_is_conflict(client, clock):
    session = create_session(client, clock, start_offset=timedelta(hours=1))

    response = client.post(
        f"/sessions/{session['session_id']}/activate", headers=TOURIST, json={"consent_given": True}
    )

    assert response.status_code == 409
    assert response.json()["kind"] == "precondition_failed"


def test_activate_without_consent_is_conflict(client, clock):
    session = create_session(client, clock)

    response = client.post(f"/sessions/{session['session_id']}/activate", headers=TOURIST)

    assert response.status_code == 409


def test_second_open_session_is_conflict(client, clock):
    create_session(client, clock)
    response = client.post("/sessions/", headers=TOURIST, json={
        "destination": "Sevilla",
        "start_date": clock().isoformat(),
        "end_date": (clock() + timedelta(days=1)).isoformat(),
    })

    assert response.status_code == 409
    assert response.json()["kind"] == "invalid_state"


def test_past_start_is_validation_error(client, clock):
    response = client.post("/sessions/", headers=TOURIST, json={
        "destination": "Madrid",
        "start_date": (clock() - timedelta(hours=1)).isoformat(),
        "end_date": (clock() + timedelta(days=1)).isoformat(),
    })

    assert response.status_code == 422
    assert response.json()["kind"] == "validation_error"


def test_duplicate_fence_names_are_rejected(client, clock):
    fence = {"name": "Zone", "type": "restricted_area",
             "geometry": {"type": "Point", "coordinates": [-3.70, 40.42]}, "radius": 200}
    response = client.post("/sessions/", headers=TOURIST, json={
        "destination": "Madrid",
        "start_date": clock().isoformat(),
        "end_date": (clock() + timedelta(days=1)).isoformat(),
        "geofences": [fence, {**fence, "radius": 800}],
    })

    assert response.status_code == 422
    assert "Duplicate geofence name" in response.text


def test_role_checks(client, clock):
    # Police cannot create sessions
    response = client.post("/sessions/", headers=POLICE, json={
        "destination": "Madrid",
        "start_date": clock().isoformat(),
        "end_date": (clock() + timedelta(days=1)).isoformat(),
    })
    assert response.status_code == 403
    assert response.json()["context"] == {"role": "police", "action": "session:create"}

    assert client.get("/alerts/unacknowledged", headers=TOURIST).status_code == 403
    assert client.get("/sessions/all/active", headers={"X-User-Id": "x", "X-User-Role": "pirate"}).status_code == 403


def test_missing_identity_headers(client):
    assert client.get("/sessions/active").status_code == 422


def test_other_tourist_cannot_read_session(client, clock):
    session = create_session(client, clock)

    assert client.get(f"/sessions/{session['session_id']}", headers=OTHER_TOURIST).status_code == 403
    assert client.get(f"/sessions/{session['session_id']}", headers=POLICE).status_code == 200
    assert client.get("/sessions/SESSION-missing", headers=POLICE).status_code == 404


def test_verify_session(client, clock):
    session = create_session(client, clock)

    response = client.get(f"/sessions/{session['session_id']}/verify", headers=TOURIST)

    assert response.json()["valid"] is True


def test_complete_session(client, clock):
    session = active_session(client, clock)

    response = client.post(f"/sessions/{session['session_id']}/complete", headers=TOURIST)

    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    assert client.get("/sessions/active", headers=TOURIST).status_code == 404


def test_check_in(client, clock):
    session = active_session(client, clock)

    response = client.post(
        f"/sessions/{session['session_id']}/check-in",
        headers=TOURIST,
        json={"latitude": 40.42, "longitude": -3.70, "message": "All good"},
    )

    assert response.status_code == 201
    assert response.json()["event_type"] == "check_in"


# ==========================================================
# LOCATIONS
# ==========================================================

def test_batch_ingestion_and_current_position(client, clock):
    session = active_session(client, clock)
    clock.advance(minutes=10)

    response = client.post("/locations/batch", headers=TOURIST, json={
        "session_id": session["session_id"],
        "locations": [
            {"latitude": 40.4170, "longitude": -3.7040,
             "recorded_at": (clock() - timedelta(minutes=5)).isoformat(), "battery_level": 80},
            {"latitude": 40.4168, "longitude": -3.7038,
             "recorded_at": (clock() - timedelta(minutes=1)).isoformat(), "battery_level": 79},
            {"latitude": 95.0, "longitude": -3.7038,
             "recorded_at": clock().isoformat()},
        ],
    })

    assert response.status_code == 200, response.text
    body = response.json()
    assert len(body["succeeded"]) == 2
    assert len(body["failed"]) == 1
    assert body["anomalies"] == []

    position = client.get("/locations/current/tourist-1", headers=TOURIST).json()
    assert position["latitude"] == pytest.approx(40.4168)

    assert client.get("/locations/current/tourist-1", headers=OTHER_TOURIST).status_code == 403
    assert client.get("/locations/current/tourist-1", headers=POLICE).status_code == 200

    timeline = client.get(f"/locations/session/{session['session_id']}", headers=POLICE).json()
    assert [sample["latitude"] for sample in timeline] == [pytest.approx(40.4168), pytest.approx(40.4170)]


def test_batch_into_pending_session_is_rejected(client, clock):
    session = create_session(client, clock)

    response = client.post("/locations/batch", headers=TOURIST, json={
        "session_id": session["session_id"],
        "locations": [{"latitude": 40.4, "longitude": -3.7, "recorded_at": clock().isoformat()}],
    })

    assert response.status_code == 409


def test_batch_into_someone_elses_session(client, clock):
    session = active_session(client, clock)

    response = client.post("/locations/batch", headers=OTHER_TOURIST, json={
        "session_id": session["session_id"],
        "locations": [{"latitude": 40.4, "longitude": -3.7, "recorded_at": clock().isoformat()}],
    })

    assert response.status_code == 403


# ==========================================================
# ALERTS
# ==========================================================

def test_panic_assign_resolve(client, clock):
    session = active_session(client, clock)

    response = client.post("/alerts/panic", headers=TOURIST, json={
        "session_id": session["session_id"],
        "message": "Lost my group",
        "location": {"latitude": 40.42, "longitude": -3.70},
        "battery": 35,
    })
    assert response.status_code == 201, response.text
    alert = response.json()
    assert alert["severity"] == "critical"
    assert alert["alert_type"] == "panic"

    assert [a["alert_id"] for a in client.get("/alerts/", headers=TOURIST).json()] == [alert["alert_id"]]
    assert client.get("/alerts/", headers=OTHER_TOURIST).json() == []
    assert len(client.get("/alerts/unacknowledged", headers=POLICE).json()) == 1

    clock.advance(minutes=2)
    assigned = client.post(f"/alerts/{alert['alert_id']}/assign", headers=POLICE).json()
    assert assigned["status"] == "acknowledged"
    assert assigned["assigned_officer"] == "officer-1"
    assert assigned["response_time_minutes"] == pytest.approx(2)

    resolved = client.post(f"/alerts/{alert['alert_id']}/resolve", headers=POLICE,
                           json={"outcome": "assisted", "notes": "Reunited"}).json()
    assert resolved["status"] == "resolved"
    assert resolved["resolution_outcome"] == "assisted"

    response = client.patch(f"/alerts/{alert['alert_id']}/status", headers=POLICE,
                            json={"status": "investigating"})
    assert response.status_code == 409
    assert response.json() == {
        "kind": "invalid_transition",
        "message": "Transition 'resolved' -> 'investigating' is not allowed",
        "context": {"source": "resolved", "target": "investigating"},
    }

    stats = client.get("/alerts/statistics", headers=POLICE).json()
    assert stats["total"] == 1
    assert stats["by_type"] == {"panic": 1}


def test_tourist_cannot_assign(client, clock):
    session = active_session(client, clock)
    alert = client.post("/alerts/panic", headers=TOURIST, json={"session_id": session["session_id"]}).json()

    assert client.post(f"/alerts/{alert['alert_id']}/assign", headers=TOURIST).status_code == 403


def test_escalation_must_go_up(client, clock):
    session = active_session(client, clock)
    alert = client.post("/alerts/panic", headers=TOURIST, json={"session_id": session["session_id"]}).json()

    response = client.post(f"/alerts/{alert['alert_id']}/escalate", headers=POLICE,
                           json={"severity": "high", "reason": "Calm now"})

    assert response.status_code == 409
    assert response.json()["kind"] == "invalid_escalation"


def test_unknown_alert(client):
    assert client.get("/alerts/ALERT-missing", headers=POLICE).status_code == 404
