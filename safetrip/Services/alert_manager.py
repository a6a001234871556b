# safetrip/Services/alert_manager.py
"""
Alert lifecycle manager.

Status machine (source -> allowed targets):

    created       -> acknowledged, investigating
    acknowledged  -> investigating, resolved, false_alarm
    investigating -> resolved, false_alarm

resolved and false_alarm are terminal. Severity only moves up the ladder
low < medium < high < critical.

Every mutation appends to the alert's ordered history and is committed with
the alert's optimistic version counter.
"""

import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from safetrip.Core.clock import Clock, utc_now
from safetrip.Core.config import settings
from safetrip.Core.errors import (
    Forbidden, InvalidEscalation, InvalidState, InvalidTransition, NotFound
)
from safetrip.Core.log_ws import log_from_thread
from safetrip.DB.database import commit_or_conflict
from safetrip.Models.activity_event import ActivityEvent
from safetrip.Models.alert import Alert, SEVERITIES, TERMINAL_ALERT_STATUSES
from safetrip.Models.tourist_session import TouristSession
from safetrip.Repositories import activity_event as activity_repo
from safetrip.Repositories import alert as alert_repo
from safetrip.Services.notifier import Notifier, notifier as default_notifier

ALERT_TRANSITIONS: Dict[str, tuple] = {
    "created": ("acknowledged", "investigating"),
    "acknowledged": ("investigating", "resolved", "false_alarm"),
    "investigating": ("resolved", "false_alarm"),
    "resolved": (),
    "false_alarm": (),
}

SYSTEM_ACTOR = "system"


def severity_rank(severity: str) -> int:
    return SEVERITIES.index(severity)


def next_severity(severity: str) -> Optional[str]:
    """One step up the ladder, or None at 'critical'."""
    rank = severity_rank(severity)
    if rank + 1 >= len(SEVERITIES):
        return None
    return SEVERITIES[rank + 1]


def dedup_key_for(alert_type: str, fence_name: Optional[str] = None) -> Optional[str]:
    """
    Key identifying "the same ongoing problem" within a session.

    Panic alerts are never deduplicated; breaches are keyed per fence.
    """
    if alert_type == "panic":
        return None
    if alert_type == "geo_fence_breach":
        return f"geo_fence_breach:{fence_name}"
    return alert_type


def generate_alert_id(now) -> str:
    return f"ALERT-{int(now.timestamp() * 1000)}-{secrets.token_hex(4).upper()}"


def build_alert(
    session: TouristSession,
    alert_type: str,
    severity: str,
    description: str,
    now,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    context: Optional[Dict[str, Any]] = None,
) -> Alert:
    """Unsaved Alert in 'created' state with the default auto-escalation config."""
    context = context or {}
    return Alert(
        alert_id=generate_alert_id(now),
        session_id=session.session_id,
        tourist_id=session.tourist_id,
        alert_type=alert_type,
        severity=severity,
        status="created",
        dedup_key=dedup_key_for(alert_type, context.get("fenceName")),
        description=description,
        latitude=latitude,
        longitude=longitude,
        context=context,
        detected_at=now,
        escalation_history=[],
        status_history=[{"from": None, "to": "created", "by": SYSTEM_ACTOR, "at": now.isoformat()}],
        auto_escalate_enabled=True,
        escalate_after_minutes=settings.ALERT_ESCALATE_AFTER_MIN,
        has_escalated=False,
        notifications=[],
        created_at=now,
    )


class AlertLifecycleManager:
    """
    Args:
        clock: returns the current aware UTC instant
        notifier: records notification intents and dispatches alert events
    """

    def __init__(self, clock: Clock = utc_now, notifier: Optional[Notifier] = None):
        self.clock = clock
        self.notifier = notifier or default_notifier

    # ==========================================================
    # LOOKUPS
    # ==========================================================

    def get_alert(self, DB: Session, alert_id: str) -> Alert:
        alert = alert_repo.get_alert_by_id(DB, alert_id)
        if alert is None:
            raise NotFound(f"Alert '{alert_id}' not found", {"alert_id": alert_id})
        return alert

    def get_alert_for_actor(self, DB: Session, alert_id: str, actor_id: str, actor_role: str) -> Alert:
        alert = self.get_alert(DB, alert_id)
        if actor_role == "tourist" and alert.tourist_id != actor_id:
            raise Forbidden("Alert belongs to another tourist", {"alert_id": alert_id})
        return alert

    # ==========================================================
    # CREATION
    # ==========================================================

    def create_alert(self, DB: Session, alert: Alert) -> Optional[Alert]:
        """
        Insert a detected alert unless an open one with the same dedup key
        exists, then notify.

        Returns:
            The created Alert, or None if it was a duplicate.
        """
        created = alert_repo.insert_alert_if_absent(DB, alert)
        if created is None:
            return None

        log_from_thread(
            f"[ALERT] {created.alert_type} ({created.severity}) created: "
            f"{created.alert_id} on {created.session_id}"
        )
        self.notifier.notify(DB, created, "alert_created")
        return created

    def create_from_panic(
        self,
        DB: Session,
        session: TouristSession,
        actor_id: str,
        message: Optional[str] = None,
        location: Optional[Dict[str, float]] = None,
        device_state: Optional[Dict[str, Any]] = None
    ) -> Alert:
        """
        Manual panic: always a new critical alert (never deduplicated).

        Persists a panic_button activity event, links it to the alert and
        increments the session's alert counter.

        Raises:
            Forbidden: session owned by someone else
            InvalidState: session is not active
        """
        if session.tourist_id != actor_id:
            raise Forbidden("Session does not belong to you", {"session_id": session.session_id})
        if session.status != "active":
            raise InvalidState(
                "Session is not active",
                {"session_id": session.session_id, "status": session.status},
            )

        now = self.clock()
        device_state = device_state or {}
        latitude = location.get("latitude") if location else None
        longitude = location.get("longitude") if location else None

        event = activity_repo.create_activity_event(DB, ActivityEvent(
            session_id=session.session_id,
            tourist_id=session.tourist_id,
            event_type="panic_button",
            timestamp=now,
            latitude=latitude,
            longitude=longitude,
            message=message or "Emergency - Help needed!",
            device_state=device_state,
            extra_metadata={"isPanic": True, "severity": "critical"},
        ), commit=False)

        alert = build_alert(
            session,
            "panic",
            "critical",
            message or "Tourist triggered panic button",
            now,
            latitude=latitude,
            longitude=longitude,
            context={
                "lastKnownLocation": (
                    {"coordinates": [longitude, latitude], "timestamp": now.isoformat()}
                    if location else None
                ),
                "battery": device_state.get("battery"),
                "networkStatus": device_state.get("networkType"),
            },
        )
        alert.activity_event_id = event.id
        DB.add(alert)

        updated = (
            DB.query(TouristSession)
            .filter(
                TouristSession.session_id == session.session_id,
                TouristSession.status == "active"
            )
            .update(
                {
                    "alert_count": TouristSession.alert_count + 1,
                    "last_activity_at": now,
                    "updated_at": now,
                },
                synchronize_session=False
            )
        )
        if not updated:
            # Session ended between the status check and this write
            DB.rollback()
            DB.refresh(session)
            raise InvalidState(
                "Session is not active",
                {"session_id": session.session_id, "status": session.status},
            )
        DB.commit()
        DB.refresh(alert)
        DB.refresh(session)

        log_from_thread(f"[ALERT] 🚨 PANIC {alert.alert_id} on {session.session_id}", "warning")
        self.notifier.notify(DB, alert, "alert_created", contacts=session.emergency_contacts)
        return alert

    # ==========================================================
    # STATUS TRANSITIONS
    # ==========================================================

    def assign(self, DB: Session, alert: Alert, officer_id: str, actor_id: Optional[str] = None) -> Alert:
        """created -> acknowledged, with an assigned officer."""
        if alert.status != "created":
            raise InvalidTransition(alert.status, "acknowledged")

        now = self.clock()
        alert.assigned_officer = officer_id
        alert.assigned_at = now
        self._apply_status(alert, "acknowledged", actor_id or officer_id, now, notes=f"Assigned to {officer_id}")
        commit_or_conflict(DB, "alert", alert.alert_id)

        print(f"[ALERT] {alert.alert_id} assigned to {officer_id}")
        return alert

    def update_status(
        self,
        DB: Session,
        alert: Alert,
        new_status: str,
        actor_id: str,
        notes: Optional[str] = None
    ) -> Alert:
        """
        Raises:
            InvalidTransition: (status, new_status) is not in the table
        """
        if new_status not in ALERT_TRANSITIONS.get(alert.status, ()):
            raise InvalidTransition(alert.status, new_status)

        now = self.clock()
        self._apply_status(alert, new_status, actor_id, now, notes=notes)
        if new_status in TERMINAL_ALERT_STATUSES:
            alert.resolved_by = actor_id
        commit_or_conflict(DB, "alert", alert.alert_id)

        print(f"[ALERT] {alert.alert_id} -> {new_status} by {actor_id}")
        return alert

    def resolve(
        self,
        DB: Session,
        alert: Alert,
        outcome: str,
        actor_id: str,
        notes: Optional[str] = None
    ) -> Alert:
        """
        Force 'resolved' from any open status and record the resolution.

        Raises:
            InvalidTransition: the alert is already resolved or a false alarm
        """
        if alert.status in TERMINAL_ALERT_STATUSES:
            raise InvalidTransition(alert.status, "resolved")

        now = self.clock()
        self._apply_status(alert, "resolved", actor_id, now, notes=notes)
        alert.resolution_outcome = outcome
        alert.resolution_notes = notes
        alert.resolved_by = actor_id
        commit_or_conflict(DB, "alert", alert.alert_id)

        log_from_thread(f"[ALERT] {alert.alert_id} resolved ({outcome}) by {actor_id}")
        return alert

    # ==========================================================
    # ESCALATION
    # ==========================================================

    def escalate(
        self,
        DB: Session,
        alert: Alert,
        new_severity: str,
        reason: str,
        actor_id: str,
        automatic: bool = False
    ) -> Alert:
        """
        Raise severity strictly up the ladder.

        Raises:
            InvalidState: the alert is resolved or a false alarm
            InvalidEscalation: new_severity is not strictly higher
        """
        if alert.status in TERMINAL_ALERT_STATUSES:
            raise InvalidState(
                f"Cannot escalate a {alert.status} alert",
                {"alert_id": alert.alert_id, "status": alert.status},
            )
        if new_severity not in SEVERITIES or severity_rank(new_severity) <= severity_rank(alert.severity):
            raise InvalidEscalation(alert.severity, new_severity)

        now = self.clock()
        alert.escalation_history = list(alert.escalation_history or []) + [{
            "from": alert.severity,
            "to": new_severity,
            "reason": reason,
            "by": actor_id,
            "at": now.isoformat(),
        }]
        alert.severity = new_severity
        alert.updated_at = now
        if automatic:
            alert.has_escalated = True
        commit_or_conflict(DB, "alert", alert.alert_id)

        log_from_thread(
            f"[ALERT] {alert.alert_id} escalated to {new_severity} by {actor_id}: {reason}", "warning"
        )
        self.notifier.notify(DB, alert, "alert_escalated")
        return alert

    def auto_escalate(self, DB: Session, alert: Alert) -> bool:
        """
        Scheduler step: move one step up the ladder and mark as escalated.

        Returns:
            False when the alert is already critical (logged no-op).
        """
        target = next_severity(alert.severity)
        if target is None:
            print(f"[ALERT] {alert.alert_id} already critical, no further escalation")
            return False

        self.escalate(
            DB,
            alert,
            target,
            f"Not handled within {alert.escalate_after_minutes} minutes",
            SYSTEM_ACTOR,
            automatic=True,
        )
        return True

    # ==========================================================
    # QUERIES
    # ==========================================================

    def list_open(self, DB: Session, officer_id: Optional[str] = None, tourist_id: Optional[str] = None) -> list[Alert]:
        return alert_repo.get_open_alerts(DB, officer_id=officer_id, tourist_id=tourist_id)

    def list_unacknowledged(self, DB: Session) -> list[Alert]:
        return alert_repo.get_unacknowledged_alerts(DB)

    def list_overdue(self, DB: Session) -> list[Alert]:
        now = self.clock()
        return [
            alert for alert in alert_repo.get_unacknowledged_alerts(DB)
            if alert.is_overdue(now, settings.ALERT_OVERDUE_MIN)
        ]

    def statistics(self, DB: Session, start=None, end=None) -> dict:
        end = end or self.clock()
        start = start or end - timedelta(days=30)
        return alert_repo.get_alert_statistics(DB, start, end)

    # ==========================================================
    # INTERNALS
    # ==========================================================

    @staticmethod
    def _apply_status(alert: Alert, new_status: str, actor_id: str, now, notes: Optional[str] = None) -> None:
        alert.status_history = list(alert.status_history or []) + [{
            "from": alert.status,
            "to": new_status,
            "by": actor_id,
            "at": now.isoformat(),
            "notes": notes,
        }]
        alert.status = new_status
        alert.updated_at = now

        if new_status == "acknowledged" and alert.acknowledged_at is None:
            alert.acknowledged_at = now
        if new_status in TERMINAL_ALERT_STATUSES:
            alert.resolved_at = now


# Global instance (singleton)
alert_manager = AlertLifecycleManager()
