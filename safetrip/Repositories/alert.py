# safetrip/Repositories/alert.py
"""
Alert Repository - Database operations for alerts.

Responsibilities:
- Atomic dedup-aware insert
- Open/unacknowledged listings ordered for triage
- Escalation sweep selection
- Period statistics
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from safetrip.Core.clock import as_utc
from safetrip.Models.alert import Alert, OPEN_ALERT_STATUSES

_SEVERITY_RANK = case(
    {"critical": 4, "high": 3, "medium": 2, "low": 1},
    value=Alert.severity,
    else_=0,
)


# ==========================================================
# CREATE OPERATIONS
# ==========================================================

def find_open_alert(DB: Session, session_id: str, dedup_key: str) -> Optional[Alert]:
    return (
        DB.query(Alert)
        .filter(
            Alert.session_id == session_id,
            Alert.dedup_key == dedup_key,
            Alert.status.in_(OPEN_ALERT_STATUSES)
        )
        .first()
    )


def insert_alert_if_absent(DB: Session, alert: Alert) -> Optional[Alert]:
    """
    Insert an alert unless an open alert with the same dedup key exists.

    The pre-check avoids a round trip in the common case; the partial unique
    index uq_alerts_open_dedup makes the check and the insert atomic when
    two detections race.

    Returns:
        The inserted Alert, or None if it was a duplicate.
    """
    if alert.dedup_key is not None and find_open_alert(DB, alert.session_id, alert.dedup_key):
        return None

    DB.add(alert)
    try:
        DB.commit()
    except IntegrityError as ie:
        DB.rollback()
        # PostgreSQL names the index, SQLite names its columns
        error_str = str(ie.orig).lower()
        if "uq_alerts_open_dedup" in error_str or "alerts.dedup_key" in error_str:
            print(f"[REPO] Duplicate open alert ({alert.session_id}, {alert.dedup_key}) - skipped")
            return None
        raise

    DB.refresh(alert)
    return alert


# ==========================================================
# READ OPERATIONS
# ==========================================================

def get_alert_by_id(DB: Session, alert_id: str) -> Optional[Alert]:
    return DB.query(Alert).filter(Alert.alert_id == alert_id).first()


def get_open_alerts(
    DB: Session,
    officer_id: Optional[str] = None,
    tourist_id: Optional[str] = None,
    limit: int = 200
) -> list[Alert]:
    """Unresolved alerts, critical first, oldest first within a severity."""
    query = DB.query(Alert).filter(Alert.status.in_(OPEN_ALERT_STATUSES))

    if officer_id:
        query = query.filter(Alert.assigned_officer == officer_id)

    if tourist_id:
        query = query.filter(Alert.tourist_id == tourist_id)

    return query.order_by(_SEVERITY_RANK.desc(), Alert.detected_at.asc()).limit(limit).all()


def get_unacknowledged_alerts(DB: Session) -> list[Alert]:
    return (
        DB.query(Alert)
        .filter(Alert.status == 'created')
        .order_by(_SEVERITY_RANK.desc(), Alert.detected_at.asc())
        .all()
    )


def get_alerts_needing_escalation(DB: Session, now: datetime) -> list[Alert]:
    """
    Alerts the escalation sweep must look at.

    Matches open alerts still in 'created' or 'acknowledged' with
    auto-escalation enabled and not yet escalated, whose own delay
    (escalate_after_minutes) has elapsed. Once escalated, has_escalated
    takes the row out of the selection.
    """
    candidates = (
        DB.query(Alert)
        .filter(
            Alert.status.in_(('created', 'acknowledged')),
            Alert.auto_escalate_enabled.is_(True),
            Alert.has_escalated.is_(False),
            Alert.detected_at < now
        )
        .order_by(Alert.detected_at.asc())
        .all()
    )

    return [
        alert for alert in candidates
        if as_utc(alert.detected_at) < now - timedelta(minutes=alert.escalate_after_minutes)
    ]


def get_alert_statistics(DB: Session, start: datetime, end: datetime) -> dict:
    """
    Counts per type/severity/status and mean handling times for alerts
    detected within [start, end].
    """
    alerts = (
        DB.query(Alert)
        .filter(Alert.detected_at >= start, Alert.detected_at <= end)
        .all()
    )

    by_type: dict[str, int] = {}
    by_severity: dict[str, int] = {}
    by_status: dict[str, int] = {}
    response_times = []
    resolution_times = []

    for alert in alerts:
        by_type[alert.alert_type] = by_type.get(alert.alert_type, 0) + 1
        by_severity[alert.severity] = by_severity.get(alert.severity, 0) + 1
        by_status[alert.status] = by_status.get(alert.status, 0) + 1

        if alert.response_time_minutes is not None:
            response_times.append(alert.response_time_minutes)
        if alert.resolution_time_minutes is not None:
            resolution_times.append(alert.resolution_time_minutes)

    return {
        "total": len(alerts),
        "by_type": by_type,
        "by_severity": by_severity,
        "by_status": by_status,
        "avg_response_minutes": (
            sum(response_times) / len(response_times) if response_times else None
        ),
        "avg_resolution_minutes": (
            sum(resolution_times) / len(resolution_times) if resolution_times else None
        ),
    }
