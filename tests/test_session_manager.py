from datetime import timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from safetrip.Core.errors import (
    Forbidden, InvalidState, NotFound, PreconditionFailed, ValidationError
)
from safetrip.Models.activity_event import ActivityEvent
from safetrip.Models.tourist_session import TouristSession
from safetrip.Repositories import tourist_session as session_repo
from safetrip.Schemas.tourist_session import CheckIn_create

from conftest import MADRID_SQUARE, make_active_session, session_payload


def test_create_starts_pending_without_consent(services, db):
    session = services.sessions.create(db, "tourist-1", session_payload(services.clock))

    assert session.status == "pending"
    assert session.consent_given is False
    assert session.session_id.startswith("SESSION-")
    assert session.check_in_interval == 60
    assert session.inactivity_threshold == 120
    assert len(session.session_hash) == 64
    assert services.sessions.verify_integrity(session)


def test_create_rejects_start_in_the_past(services, db):
    payload = session_payload(services.clock, start_date=services.clock() - timedelta(minutes=1))
    with pytest.raises(ValidationError):
        services.sessions.create(db, "tourist-1", payload)


@pytest.mark.parametrize("end_offset", [timedelta(0), timedelta(hours=-1)])
def test_create_rejects_end_not_after_start(services, db, end_offset):
    start = services.clock() + timedelta(hours=1)
    payload = session_payload(services.clock, start_date=start, end_date=start + end_offset)
    with pytest.raises(ValidationError):
        services.sessions.create(db, "tourist-1", payload)


def test_create_rejects_duplicate_fence_names(services):
    fences = [
        {"name": "Zone", "type": "restricted_area", "geometry": MADRID_SQUARE},
        {"name": "Zone", "type": "restricted_area",
         "geometry": {"type": "Point", "coordinates": [2.1686, 41.3874]}, "radius": 1000},
    ]
    with pytest.raises(PydanticValidationError, match="Duplicate geofence name 'Zone'"):
        session_payload(services.clock, geofences=fences)


def test_only_one_open_session_per_tourist(services, db):
    services.sessions.create(db, "tourist-1", session_payload(services.clock))

    with pytest.raises(InvalidState):
        services.sessions.create(db, "tourist-1", session_payload(services.clock))

    # Another tourist is unaffected
    other = services.sessions.create(db, "tourist-2", session_payload(services.clock))
    assert other.status == "pending"


def test_new_session_allowed_after_previous_is_terminal(services, db):
    first = services.sessions.create(db, "tourist-1", session_payload(services.clock))
    services.sessions.terminate(db, first, "tourist-1")

    second = services.sessions.create(db, "tourist-1", session_payload(services.clock))
    assert second.status == "pending"


def test_open_session_index_blocks_concurrent_create(services, db, monkeypatch):
    services.sessions.create(db, "tourist-1", session_payload(services.clock))

    # A writer whose pre-check ran before the first insert committed
    monkeypatch.setattr(session_repo, "get_open_session_by_tourist", lambda DB, tourist_id: None)

    with pytest.raises(InvalidState):
        services.sessions.create(db, "tourist-1", session_payload(services.clock))


def test_grant_consent_keeps_status(services, db):
    session = services.sessions.create(db, "tourist-1", session_payload(services.clock))
    services.sessions.grant_consent(db, session, "10.0.0.7")

    assert session.status == "pending"
    assert session.consent_given is True
    assert session.consent_timestamp == services.clock()
    assert session.consent_source_address == "10.0.0.7"


def test_activate_requires_consent(services, db):
    session = services.sessions.create(db, "tourist-1", session_payload(services.clock))
    with pytest.raises(PreconditionFailed):
        services.sessions.activate(db, session)
    assert session.status == "pending"


def test_activate_before_start_date_fails(services, db):
    payload = session_payload(
        services.clock,
        start_date=services.clock() + timedelta(hours=1),
        end_date=services.clock() + timedelta(days=2),
    )
    session = services.sessions.create(db, "tourist-1", payload)
    services.sessions.grant_consent(db, session)

    with pytest.raises(InvalidState):
        services.sessions.activate(db, session)


def test_activate_after_end_date_fails(services, db):
    session = services.sessions.create(db, "tourist-1", session_payload(
        services.clock, end_date=services.clock() + timedelta(hours=2)
    ))
    services.sessions.grant_consent(db, session)
    services.clock.advance(hours=3)

    with pytest.raises(PreconditionFailed):
        services.sessions.activate(db, session)


def test_activate_stamps_activity(services, db):
    session = make_active_session(services, db)

    assert session.status == "active"
    assert session.activated_at == services.clock()
    assert session.last_activity_at == services.clock()


def test_activate_twice_fails(services, db):
    session = make_active_session(services, db)
    with pytest.raises(PreconditionFailed):
        services.sessions.activate(db, session)


def test_complete_only_from_active(services, db):
    pending = services.sessions.create(db, "tourist-1", session_payload(services.clock))
    with pytest.raises(InvalidState):
        services.sessions.complete(db, pending, "tourist-1")

    services.sessions.terminate(db, pending, "tourist-1")
    active = make_active_session(services, db)
    services.clock.advance(hours=5)
    services.sessions.complete(db, active, "tourist-1")

    assert active.status == "completed"
    assert active.completed_at == services.clock()


def test_terminal_sessions_are_immutable(services, db):
    session = make_active_session(services, db)
    services.sessions.complete(db, session, "tourist-1")

    with pytest.raises(InvalidState):
        services.sessions.terminate(db, session, "tourist-1")
    with pytest.raises(InvalidState):
        services.sessions.complete(db, session, "tourist-1")
    with pytest.raises(InvalidState):
        services.sessions.grant_consent(db, session)
    with pytest.raises(PreconditionFailed):
        services.sessions.activate(db, session)


def test_terminate_from_pending_and_active(services, db):
    pending = services.sessions.create(db, "tourist-1", session_payload(services.clock))
    services.sessions.terminate(db, pending, "tourist-1", reason="Trip cancelled")
    assert pending.status == "terminated"
    assert pending.termination_reason == "Trip cancelled"

    active = make_active_session(services, db)
    services.sessions.terminate(db, active, "tourist-1")
    assert active.status == "terminated"
    assert active.terminated_at == services.clock()


def test_terminate_by_other_tourist_is_forbidden(services, db):
    session = make_active_session(services, db)
    with pytest.raises(Forbidden):
        services.sessions.terminate(db, session, "tourist-2")
    assert session.status == "active"


def test_admin_can_terminate_any_session(services, db):
    session = make_active_session(services, db)
    services.sessions.terminate(db, session, "admin-1", "admin", reason="Reported stolen device")

    assert session.status == "terminated"
    assert "admin-1" in session.admin_notes


def test_expire_only_after_end_date(services, db):
    session = make_active_session(services, db, end_date=services.clock() + timedelta(hours=4))

    with pytest.raises(InvalidState):
        services.sessions.expire(db, session)

    services.clock.advance(hours=4, seconds=1)
    services.sessions.expire(db, session)
    assert session.status == "expired"
    assert session.expired_at == services.clock()


def test_expire_rejects_non_active(services, db):
    session = services.sessions.create(db, "tourist-1", session_payload(
        services.clock, end_date=services.clock() + timedelta(hours=1)
    ))
    services.clock.advance(hours=2)
    with pytest.raises(InvalidState):
        services.sessions.expire(db, session)


def test_record_activity_and_location_are_idempotent(services, db):
    session = make_active_session(services, db)
    services.clock.advance(minutes=10)

    services.sessions.record_activity(db, session)
    services.sessions.record_activity(db, session)
    services.sessions.record_location(db, session)

    db.expire_all()
    reloaded = services.sessions.get_session(db, session.session_id)
    assert reloaded.status == "active"
    assert reloaded.last_activity_at == services.clock()
    assert reloaded.last_location_at == services.clock()


def test_stamps_skip_a_session_ended_concurrently(services, db):
    session = make_active_session(services, db)
    activated_at = session.activated_at

    # Another request terminates the session behind this one's back
    db.query(TouristSession).filter(TouristSession.session_id == session.session_id).update(
        {"status": "terminated"}, synchronize_session=False
    )
    db.commit()

    services.clock.advance(minutes=10)
    services.sessions.record_activity(db, session)
    services.sessions.record_location(db, session)

    db.expire_all()
    reloaded = services.sessions.get_session(db, session.session_id)
    assert reloaded.status == "terminated"
    assert reloaded.last_activity_at == activated_at
    assert reloaded.last_location_at is None


@pytest.mark.parametrize("end", ["complete", "terminate", "expire"])
def test_ending_a_session_drops_cached_position(services, db, end):
    session = make_active_session(services, db, end_date=services.clock() + timedelta(hours=1))
    services.cache.compare_and_set("tourist-1", {
        "session_id": session.session_id, "latitude": 40.42, "longitude": -3.70,
        "recorded_at": services.clock(),
    })

    if end == "complete":
        services.sessions.complete(db, session, "tourist-1")
    elif end == "terminate":
        services.sessions.terminate(db, session, "tourist-1")
    else:
        services.clock.advance(hours=2)
        services.sessions.expire(db, session)

    assert services.cache.get("tourist-1") is None


def test_check_in_records_event_and_activity(services, db):
    session = make_active_session(services, db)
    services.clock.advance(minutes=30)

    event = services.sessions.record_check_in(
        db, session, "tourist-1", CheckIn_create(latitude=40.4, longitude=-3.7, message="All good")
    )

    assert event.event_type == "check_in"
    assert db.query(ActivityEvent).count() == 1
    assert session.last_activity_at == services.clock()


def test_check_in_requires_active_session(services, db):
    session = services.sessions.create(db, "tourist-1", session_payload(services.clock))
    with pytest.raises(InvalidState):
        services.sessions.record_check_in(db, session, "tourist-1", CheckIn_create())


def test_verify_integrity_detects_tampering(services, db):
    session = services.sessions.create(db, "tourist-1", session_payload(services.clock))
    session.destination = "Somewhere else"
    assert services.sessions.verify_integrity(session) is False


def test_get_session_unknown(services, db):
    with pytest.raises(NotFound):
        services.sessions.get_session(db, "SESSION-missing")


def test_get_session_for_actor(services, db):
    session = make_active_session(services, db)

    assert services.sessions.get_session_for_actor(db, session.session_id, "tourist-1", "tourist") is session
    assert services.sessions.get_session_for_actor(db, session.session_id, "officer-1", "police") is session
    with pytest.raises(Forbidden):
        services.sessions.get_session_for_actor(db, session.session_id, "tourist-2", "tourist")


def test_queries(services, db):
    old = services.sessions.create(db, "tourist-1", session_payload(services.clock))
    services.sessions.terminate(db, old, "tourist-1")
    active = make_active_session(services, db)
    make_active_session(services, db, tourist_id="tourist-2")

    assert services.sessions.get_active_session(db, "tourist-1").session_id == active.session_id
    assert len(services.sessions.get_history(db, "tourist-1")) == 2
    assert len(services.sessions.get_history(db, "tourist-1", status="terminated")) == 1
    assert len(services.sessions.list_active(db)) == 2


def test_session_derived_values(services, db):
    session = make_active_session(services, db, end_date=services.clock() + timedelta(days=2, hours=1))

    assert session.duration_days == 3
    assert session.is_within_date_range(services.clock())
    assert not session.should_expire(services.clock())
    assert session.should_expire(services.clock() + timedelta(days=3))
