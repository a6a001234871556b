# safetrip/Services/session_manager.py
"""
Session lifecycle manager.

Owns the trip state machine and the consent gate:

    pending --activate--> active --complete--> completed
       |                    |----expire----> expired   (scheduler only)
       |                    '---terminate--> terminated
       '------terminate------------------->  terminated

Terminal sessions (completed, expired, terminated) are immutable. Every
transition is committed with the session's optimistic version counter, so
two concurrent requests cannot both move the same session.
"""

import hashlib
import json
import secrets
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from safetrip.Core.clock import Clock, as_utc, utc_now
from safetrip.Core.errors import (
    Forbidden, InvalidState, NotFound, PreconditionFailed, ValidationError
)
from safetrip.Core.log_ws import log_from_thread
from safetrip.DB.database import commit_or_conflict
from safetrip.Models.activity_event import ActivityEvent
from safetrip.Models.tourist_session import TouristSession
from safetrip.Repositories import activity_event as activity_repo
from safetrip.Repositories import tourist_session as session_repo
from safetrip.Schemas.tourist_session import CheckIn_create, Session_create
from safetrip.Services.position_cache import PositionCache, position_cache


def generate_session_id(now) -> str:
    return f"SESSION-{int(now.timestamp() * 1000)}-{secrets.token_hex(4)}"


def compute_session_hash(session: TouristSession) -> str:
    """SHA-256 over the fields that never change after creation."""
    payload = {
        "touristId": session.tourist_id,
        "destination": session.destination,
        "startDate": as_utc(session.start_date).isoformat(),
        "endDate": as_utc(session.end_date).isoformat(),
        "timestamp": int(as_utc(session.created_at).timestamp() * 1000),
    }
    return hashlib.sha256(
        json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()
    ).hexdigest()


class SessionManager:
    """
    Stateless service over TouristSession rows.

    Args:
        clock: returns the current aware UTC instant (injectable for tests)
        cache: live-position cache, cleared for a tourist when their session ends
    """

    def __init__(self, clock: Clock = utc_now, cache: Optional[PositionCache] = None):
        self.clock = clock
        self.cache = cache

    # ==========================================================
    # LOOKUPS
    # ==========================================================

    def get_session(self, DB: Session, session_id: str) -> TouristSession:
        session = session_repo.get_session_by_id(DB, session_id)
        if session is None:
            raise NotFound(f"Session '{session_id}' not found", {"session_id": session_id})
        return session

    def get_session_for_actor(
        self,
        DB: Session,
        session_id: str,
        actor_id: str,
        actor_role: str
    ) -> TouristSession:
        """Load a session, enforcing that tourists only see their own."""
        session = self.get_session(DB, session_id)
        self.ensure_owner(session, actor_id, actor_role)
        return session

    @staticmethod
    def ensure_owner(session: TouristSession, actor_id: str, actor_role: str = "tourist") -> None:
        if actor_role == "tourist" and session.tourist_id != actor_id:
            raise Forbidden(
                "Session belongs to another tourist",
                {"session_id": session.session_id, "actor_id": actor_id},
            )

    def get_active_session(self, DB: Session, tourist_id: str) -> Optional[TouristSession]:
        return session_repo.get_active_session_by_tourist(DB, tourist_id)

    def get_history(
        self,
        DB: Session,
        tourist_id: str,
        status: Optional[str] = None,
        limit: int = 50
    ) -> list[TouristSession]:
        return session_repo.get_sessions_by_tourist(DB, tourist_id, status=status, limit=limit)

    def list_active(self, DB: Session) -> list[TouristSession]:
        return session_repo.get_all_active_sessions(DB)

    # ==========================================================
    # CREATE
    # ==========================================================

    def create(self, DB: Session, tourist_id: str, data: Session_create) -> TouristSession:
        """
        Create a pending, unconsented session for `tourist_id`.

        Raises:
            ValidationError: start date in the past or end date not after start
            InvalidState: the tourist already owns a pending/active session
        """
        now = self.clock()
        start = as_utc(data.start_date)
        end = as_utc(data.end_date)

        if start < now:
            raise ValidationError(
                "Start date cannot be in the past",
                {"start_date": start.isoformat(), "now": now.isoformat()},
            )
        if end <= start:
            raise ValidationError(
                "End date must be after start date",
                {"start_date": start.isoformat(), "end_date": end.isoformat()},
            )

        existing = session_repo.get_open_session_by_tourist(DB, tourist_id)
        if existing is not None:
            raise InvalidState(
                "Tourist already has an open session; complete or terminate it first",
                {"session_id": existing.session_id, "status": existing.status},
            )

        session = TouristSession(
            session_id=generate_session_id(now),
            tourist_id=tourist_id,
            destination=data.destination,
            description=data.description,
            start_date=start,
            end_date=end,
            status="pending",
            consent_given=False,
            geofences=[fence.model_dump() for fence in data.geofences],
            emergency_contacts=[contact.model_dump() for contact in data.emergency_contacts],
            check_in_interval=data.check_in_interval,
            inactivity_threshold=data.inactivity_threshold,
            device_info=data.device_info,
            alert_count=0,
            created_at=now,
        )
        session.session_hash = compute_session_hash(session)

        try:
            session = session_repo.create_session(DB, session)
        except IntegrityError:
            # Lost the race against a concurrent create for the same tourist
            DB.rollback()
            raise InvalidState(
                "Tourist already has an open session; complete or terminate it first",
                {"tourist_id": tourist_id},
            )

        print(f"[SESSION] Created {session.session_id} for {tourist_id} -> {session.destination}")
        return session

    # ==========================================================
    # TRANSITIONS
    # ==========================================================

    def grant_consent(
        self,
        DB: Session,
        session: TouristSession,
        source_address: Optional[str] = None
    ) -> TouristSession:
        """Record consent. Does not change status."""
        if session.is_terminal:
            raise InvalidState(
                f"Cannot record consent on a {session.status} session",
                {"session_id": session.session_id, "status": session.status},
            )

        now = self.clock()
        session.consent_given = True
        session.consent_timestamp = now
        session.consent_source_address = source_address
        session.updated_at = now
        commit_or_conflict(DB, "session", session.session_id)

        print(f"[SESSION] Consent recorded for {session.session_id} from {source_address}")
        return session

    def activate(self, DB: Session, session: TouristSession) -> TouristSession:
        """
        pending -> active.

        Raises:
            PreconditionFailed: not pending, no consent, or now outside
                [start_date, end_date]
        """
        now = self.clock()
        context = {"session_id": session.session_id, "status": session.status}

        if session.status != "pending":
            raise PreconditionFailed(f"Only pending sessions can be activated (is {session.status})", context)
        if not session.consent_given:
            raise PreconditionFailed("Consent is required before activation", context)
        if not session.is_within_date_range(now):
            raise PreconditionFailed(
                "Session can only be activated between its start and end dates",
                {
                    **context,
                    "now": now.isoformat(),
                    "start_date": as_utc(session.start_date).isoformat(),
                    "end_date": as_utc(session.end_date).isoformat(),
                },
            )

        session.status = "active"
        session.activated_at = now
        session.last_activity_at = now
        session.updated_at = now
        commit_or_conflict(DB, "session", session.session_id)

        print(f"[SESSION] Activated {session.session_id}")
        return session

    def complete(self, DB: Session, session: TouristSession, actor_id: str) -> TouristSession:
        """active -> completed, by the owning tourist."""
        self.ensure_owner(session, actor_id)
        if session.status != "active":
            raise InvalidState(
                f"Only active sessions can be completed (is {session.status})",
                {"session_id": session.session_id, "status": session.status},
            )

        now = self.clock()
        session.status = "completed"
        session.completed_at = now
        session.updated_at = now
        commit_or_conflict(DB, "session", session.session_id)
        self._forget_position(session)

        print(f"[SESSION] Completed {session.session_id}")
        return session

    def terminate(
        self,
        DB: Session,
        session: TouristSession,
        actor_id: str,
        actor_role: str = "tourist",
        reason: Optional[str] = None
    ) -> TouristSession:
        """
        pending|active -> terminated.

        The owning tourist may terminate their own session; an admin may
        terminate any session.
        """
        self.ensure_owner(session, actor_id, actor_role)
        if not session.is_open:
            raise InvalidState(
                f"Only pending or active sessions can be terminated (is {session.status})",
                {"session_id": session.session_id, "status": session.status},
            )

        now = self.clock()
        session.status = "terminated"
        session.terminated_at = now
        session.termination_reason = reason
        session.updated_at = now
        if actor_role == "admin" and session.tourist_id != actor_id:
            session.admin_notes = f"Terminated by admin {actor_id}" + (f": {reason}" if reason else "")
        commit_or_conflict(DB, "session", session.session_id)
        self._forget_position(session)

        log_from_thread(f"[SESSION] Terminated {session.session_id} by {actor_role} {actor_id}")
        return session

    def expire(self, DB: Session, session: TouristSession) -> TouristSession:
        """
        active -> expired. Scheduler only.

        Raises:
            InvalidState: not active, or the end date has not passed yet
        """
        now = self.clock()
        if not session.should_expire(now):
            raise InvalidState(
                "Only active sessions past their end date can expire",
                {"session_id": session.session_id, "status": session.status},
            )

        session.status = "expired"
        session.expired_at = now
        session.updated_at = now
        commit_or_conflict(DB, "session", session.session_id)
        self._forget_position(session)

        log_from_thread(f"[SESSION] Expired {session.session_id} (ended {session.end_date})")
        return session

    # ==========================================================
    # ACTIVITY
    # ==========================================================

    def record_activity(self, DB: Session, session: TouristSession) -> TouristSession:
        """Stamp last_activity_at. No status change; safe to repeat."""
        return self._touch(DB, session, "last_activity_at")

    def record_location(self, DB: Session, session: TouristSession) -> TouristSession:
        """Stamp last_location_at. No status change; safe to repeat."""
        return self._touch(DB, session, "last_location_at")

    def record_check_in(
        self,
        DB: Session,
        session: TouristSession,
        actor_id: str,
        data: CheckIn_create
    ) -> ActivityEvent:
        """Persist a check_in activity event and count it as activity."""
        self.ensure_owner(session, actor_id)
        if session.status != "active":
            raise InvalidState(
                "Check-ins are only accepted on active sessions",
                {"session_id": session.session_id, "status": session.status},
            )

        event = activity_repo.create_activity_event(DB, ActivityEvent(
            session_id=session.session_id,
            tourist_id=session.tourist_id,
            event_type="check_in",
            timestamp=self.clock(),
            latitude=data.latitude,
            longitude=data.longitude,
            message=data.message,
        ))
        self.record_activity(DB, session)

        print(f"[SESSION] Check-in on {session.session_id}")
        return event

    def _forget_position(self, session: TouristSession) -> None:
        if self.cache is not None:
            self.cache.invalidate(session.tourist_id)

    def _touch(self, DB: Session, session: TouristSession, field: str) -> TouristSession:
        # Plain UPDATE: timestamps never bump the version counter, and a
        # session that just reached a terminal state is left untouched
        now = self.clock()
        updated = (
            DB.query(TouristSession)
            .filter(
                TouristSession.session_id == session.session_id,
                TouristSession.status == "active"
            )
            .update({field: now, "updated_at": now}, synchronize_session="fetch")
        )
        DB.commit()
        if not updated:
            print(f"[SESSION] {session.session_id} is no longer active, {field} not stamped")
        return session

    # ==========================================================
    # INTEGRITY
    # ==========================================================

    def verify_integrity(self, session: TouristSession) -> bool:
        """True if the stored hash still matches the creation fields."""
        return secrets.compare_digest(session.session_hash, compute_session_hash(session))


# Global instance (singleton)
session_manager = SessionManager(cache=position_cache)
