import threading
import time
from datetime import timedelta

import pytest

from safetrip.Models.alert import Alert
from safetrip.Models.tourist_session import TouristSession
from safetrip.Services.scheduler import Scheduler

from conftest import make_active_session


@pytest.fixture
def scheduler(session_factory, services):
    return Scheduler(
        session_factory,
        services.sessions,
        services.detector,
        services.alerts,
        clock=services.clock,
    )


def reload_alert(db, alert_id):
    db.expire_all()
    return db.get(Alert, alert_id)


# ==========================================================
# ESCALATION SWEEP
# ==========================================================

def test_unhandled_alert_escalates_once(scheduler, services, db):
    session = make_active_session(services, db)
    alert = services.detector.low_battery(db, session, 15)
    assert alert.severity == "medium"

    services.clock.advance(minutes=31)
    assert scheduler.run_job("escalation") == {"escalated": 1, "skipped": 0}

    escalated = reload_alert(db, alert.alert_id)
    assert escalated.severity == "high"
    assert escalated.has_escalated is True
    assert escalated.escalation_history[-1]["by"] == "system"

    # Second sweep finds nothing left to do
    services.clock.advance(minutes=31)
    assert scheduler.run_job("escalation") == {"escalated": 0, "skipped": 0}
    assert reload_alert(db, alert.alert_id).severity == "high"


def test_acknowledged_alert_still_escalates(scheduler, services, db):
    session = make_active_session(services, db)
    alert = services.detector.low_battery(db, session, 15)
    services.alerts.assign(db, alert, "officer-1")

    services.clock.advance(minutes=31)
    assert scheduler.run_job("escalation")["escalated"] == 1


def test_investigating_alert_is_left_alone(scheduler, services, db):
    session = make_active_session(services, db)
    alert = services.detector.low_battery(db, session, 15)
    services.alerts.update_status(db, alert, "investigating", "officer-1")

    services.clock.advance(minutes=31)
    assert scheduler.run_job("escalation")["escalated"] == 0


def test_young_alert_is_not_escalated(scheduler, services, db):
    session = make_active_session(services, db)
    alert = services.detector.low_battery(db, session, 15)

    services.clock.advance(minutes=30)
    assert scheduler.run_job("escalation") == {"escalated": 0, "skipped": 0}
    assert reload_alert(db, alert.alert_id).severity == "medium"


def test_disabled_auto_escalation(scheduler, services, db):
    session = make_active_session(services, db)
    alert = services.detector.low_battery(db, session, 15)
    alert.auto_escalate_enabled = False
    db.commit()

    services.clock.advance(hours=2)
    assert scheduler.run_job("escalation")["escalated"] == 0


def test_critical_alert_is_a_noop(scheduler, services, db):
    session = make_active_session(services, db)
    panic = services.alerts.create_from_panic(db, session, "tourist-1")

    services.clock.advance(minutes=31)
    assert scheduler.run_job("escalation") == {"escalated": 0, "skipped": 1}

    alert = reload_alert(db, panic.alert_id)
    assert alert.severity == "critical"
    assert alert.has_escalated is False
    assert alert.escalation_history == []


# ==========================================================
# EXPIRY SWEEP
# ==========================================================

def test_expiry_sweep_is_idempotent(scheduler, services, db):
    session = make_active_session(services, db)
    services.cache.compare_and_set("tourist-1", {
        "session_id": session.session_id, "latitude": 40.42, "longitude": -3.70,
        "recorded_at": services.clock(),
    })

    services.clock.advance(days=3)
    assert scheduler.run_job("expiry") == 0

    services.clock.advance(seconds=1)
    assert scheduler.run_job("expiry") == 1
    assert scheduler.run_job("expiry") == 0

    db.expire_all()
    expired = db.get(TouristSession, session.session_id)
    assert expired.status == "expired"
    assert expired.expired_at == services.clock()
    assert services.cache.get("tourist-1") is None


# ==========================================================
# ANOMALY SWEEP
# ==========================================================

def test_anomaly_job_runs_detector_sweep(scheduler, services, db):
    make_active_session(services, db)
    services.clock.advance(minutes=121)

    result = scheduler.run_job("anomaly")

    assert result["sessions"] == 1
    assert result["inactivity"] == 1
    assert db.query(Alert).filter(Alert.alert_type == "inactivity").count() == 1


# ==========================================================
# EXECUTION
# ==========================================================

def test_failing_run_is_logged_and_swallowed(services):
    def broken_factory():
        raise RuntimeError("database unavailable")

    scheduler = Scheduler(broken_factory, services.sessions, services.detector, services.alerts,
                          clock=services.clock)

    assert scheduler.run_job("expiry") is None
    assert not scheduler.jobs["expiry"].lock.locked()


def test_overlapping_tick_is_skipped(scheduler):
    job = scheduler.jobs["escalation"]
    job.lock.acquire()
    try:
        assert scheduler.run_job("escalation") is None
    finally:
        job.lock.release()


def test_start_and_stop(session_factory, services):
    scheduler = Scheduler(
        session_factory, services.sessions, services.detector, services.alerts,
        clock=services.clock,
        intervals={"expiry": 0.01, "anomaly": 0.01, "escalation": 0.01},
    )
    ran = {name: threading.Event() for name in scheduler.jobs}
    for name, job in scheduler.jobs.items():
        job.run = lambda DB, name=name: ran[name].set()

    threads = scheduler.start()
    assert scheduler.running
    assert sorted(t.name for t in threads) == [
        "Scheduler-anomaly", "Scheduler-escalation", "Scheduler-expiry"
    ]
    assert scheduler.start() == threads

    for event in ran.values():
        assert event.wait(timeout=2)

    scheduler.stop(timeout=2)
    assert not scheduler.running
    assert all(job.thread is None for job in scheduler.jobs.values())


def test_stop_before_first_tick(session_factory, services):
    scheduler = Scheduler(
        session_factory, services.sessions, services.detector, services.alerts,
        clock=services.clock,
        intervals={"expiry": 60, "anomaly": 60, "escalation": 60},
    )
    scheduler.start()
    started = time.monotonic()
    scheduler.stop(timeout=2)

    assert time.monotonic() - started < 2
    assert not scheduler.running
