# safetrip/Repositories/location_sample.py
"""
Location Sample Repository - Database operations for position readings.

Samples are insert-only. Ordering queries use recorded_at (device clock);
offline detection uses uploaded_at (server receipt).
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from safetrip.Models.location_sample import LocationSample


# ==========================================================
# CREATE OPERATIONS
# ==========================================================

def create_location_sample(DB: Session, sample: LocationSample) -> LocationSample:
    """
    Insert one sample and commit.

    Raises:
        IntegrityError: a sample with the same (session_id, recorded_at)
            already exists (unique_session_recorded_at)
    """
    DB.add(sample)
    DB.commit()
    DB.refresh(sample)
    return sample


# ==========================================================
# READ OPERATIONS
# ==========================================================

def get_sample_by_recorded_at(
    DB: Session,
    session_id: str,
    recorded_at: datetime
) -> Optional[LocationSample]:
    return (
        DB.query(LocationSample)
        .filter(
            LocationSample.session_id == session_id,
            LocationSample.recorded_at == recorded_at
        )
        .first()
    )


def get_previous_sample(
    DB: Session,
    session_id: str,
    recorded_at: datetime
) -> Optional[LocationSample]:
    """Latest stored sample of the session recorded strictly before `recorded_at`."""
    return (
        DB.query(LocationSample)
        .filter(
            LocationSample.session_id == session_id,
            LocationSample.recorded_at < recorded_at
        )
        .order_by(LocationSample.recorded_at.desc())
        .first()
    )


def get_last_sample_by_session(DB: Session, session_id: str) -> Optional[LocationSample]:
    """Most recently recorded sample of a session (last known location)."""
    return (
        DB.query(LocationSample)
        .filter(LocationSample.session_id == session_id)
        .order_by(LocationSample.recorded_at.desc())
        .first()
    )


def get_last_uploaded_sample_by_session(DB: Session, session_id: str) -> Optional[LocationSample]:
    """Most recently received sample of a session (device-offline rule)."""
    return (
        DB.query(LocationSample)
        .filter(LocationSample.session_id == session_id)
        .order_by(LocationSample.uploaded_at.desc())
        .first()
    )


def get_last_sample_by_tourist(DB: Session, tourist_id: str) -> Optional[LocationSample]:
    return (
        DB.query(LocationSample)
        .filter(LocationSample.tourist_id == tourist_id)
        .order_by(LocationSample.recorded_at.desc())
        .first()
    )


def get_session_timeline(
    DB: Session,
    session_id: str,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    limit: int = 100
) -> list[LocationSample]:
    """
    Samples of a session, most recent first, optionally bounded in time.

    Example:
        >>> samples = get_session_timeline(db, "SESSION-1700000000000-ab12cd34", limit=20)
    """
    query = DB.query(LocationSample).filter(LocationSample.session_id == session_id)

    if start_time:
        query = query.filter(LocationSample.recorded_at >= start_time)

    if end_time:
        query = query.filter(LocationSample.recorded_at <= end_time)

    return query.order_by(LocationSample.recorded_at.desc()).limit(limit).all()
