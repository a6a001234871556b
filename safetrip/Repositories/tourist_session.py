# safetrip/Repositories/tourist_session.py
"""
Session Repository - Database operations for tourist sessions.

Responsibilities:
- Insert and look up sessions
- Selection queries used by the session manager and the sweeps

Every selection query used by a sweep filters on the state the sweep
moves the row out of, so re-running it after a partial run only returns
the rows that still need work.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from safetrip.Models.tourist_session import TouristSession, OPEN_SESSION_STATUSES


# ==========================================================
# CREATE OPERATIONS
# ==========================================================

def create_session(DB: Session, session: TouristSession) -> TouristSession:
    """
    Insert a new session and commit.

    Raises:
        IntegrityError: the tourist already owns a pending/active session
            (partial unique index uq_sessions_tourist_open)
    """
    DB.add(session)
    DB.commit()
    DB.refresh(session)

    print(f"[REPO] Session created: {session.session_id} (tourist: {session.tourist_id})")

    return session


# ==========================================================
# READ OPERATIONS - SINGLE SESSION
# ==========================================================

def get_session_by_id(DB: Session, session_id: str) -> Optional[TouristSession]:
    return DB.query(TouristSession).filter(TouristSession.session_id == session_id).first()


def get_open_session_by_tourist(DB: Session, tourist_id: str) -> Optional[TouristSession]:
    """Pending or active session of a tourist (there is at most one)."""
    return (
        DB.query(TouristSession)
        .filter(
            TouristSession.tourist_id == tourist_id,
            TouristSession.status.in_(OPEN_SESSION_STATUSES)
        )
        .first()
    )


def get_active_session_by_tourist(DB: Session, tourist_id: str) -> Optional[TouristSession]:
    return (
        DB.query(TouristSession)
        .filter(
            TouristSession.tourist_id == tourist_id,
            TouristSession.status == 'active'
        )
        .first()
    )


# ==========================================================
# READ OPERATIONS - MULTIPLE SESSIONS
# ==========================================================

def get_sessions_by_tourist(
    DB: Session,
    tourist_id: str,
    status: Optional[str] = None,
    limit: int = 50
) -> list[TouristSession]:
    """Session history of a tourist, most recent first."""
    query = DB.query(TouristSession).filter(TouristSession.tourist_id == tourist_id)

    if status:
        query = query.filter(TouristSession.status == status)

    return query.order_by(TouristSession.start_date.desc()).limit(limit).all()


def get_all_active_sessions(DB: Session) -> list[TouristSession]:
    """
    Every session currently being tracked.

    Use cases:
        - Anomaly sweep
        - Police dashboard
    """
    return (
        DB.query(TouristSession)
        .filter(TouristSession.status == 'active')
        .order_by(TouristSession.start_date.asc())
        .all()
    )


def get_sessions_to_expire(DB: Session, now: datetime) -> list[TouristSession]:
    """Active sessions whose end date has passed (expiry sweep selection)."""
    return (
        DB.query(TouristSession)
        .filter(
            TouristSession.status == 'active',
            TouristSession.end_date < now
        )
        .order_by(TouristSession.end_date.asc())
        .all()
    )
