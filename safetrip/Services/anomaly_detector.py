# safetrip/Services/anomaly_detector.py
"""
Rule-based anomaly detector.

Deterministic thresholds, no learned models:

| Rule            | Trigger                                   | Severity                      |
|-----------------|-------------------------------------------|-------------------------------|
| inactivity      | no activity/location for > threshold      | high if > 180 min else medium |
| geo_fence_breach| a session fence is violated               | high (restricted) / medium    |
| low_battery     | level <= 20                               | high if <= 10 else medium     |
| device_offline  | no upload for > 60 min                    | high if > 120 min else medium |

Every rule is deduplicated against the open alerts of the session (see
AlertLifecycleManager.create_alert); a rule that matches an ongoing problem
is a no-op. Created alerts carry lastKnownLocation and battery snapshots in
their context.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from safetrip.Core.clock import Clock, as_utc, minutes_between, utc_now
from safetrip.Core.config import settings
from safetrip.Core.log_ws import log_from_thread
from safetrip.Models.alert import Alert
from safetrip.Models.tourist_session import TouristSession
from safetrip.Repositories import location_sample as sample_repo
from safetrip.Repositories import tourist_session as session_repo
from safetrip.Schemas.geofence import GeofenceResult
from safetrip.Services.alert_manager import AlertLifecycleManager, alert_manager, build_alert
from safetrip.Services.geofence_evaluator import GeofenceEvaluator, geofence_evaluator


class AnomalyDetector:
    """
    Args:
        clock: returns the current aware UTC instant
        alert_manager: used for dedup-aware alert creation
        evaluator: geofence evaluator
    """

    def __init__(
        self,
        alert_manager: AlertLifecycleManager,
        evaluator: GeofenceEvaluator,
        clock: Clock = utc_now
    ):
        self.alert_manager = alert_manager
        self.evaluator = evaluator
        self.clock = clock

    # ==========================================================
    # RULES
    # ==========================================================

    def inactivity(self, DB: Session, session: TouristSession) -> Optional[Alert]:
        """
        Alert when nothing was heard from the tourist for longer than the
        session's inactivity threshold.

        The reference instant is the latest of last activity, last location
        and activation.
        """
        if session.status != "active":
            return None

        now = self.clock()
        candidates = [
            as_utc(value)
            for value in (session.last_activity_at, session.last_location_at, session.activated_at)
            if value is not None
        ]
        if not candidates:
            return None

        last_seen = max(candidates)
        inactive_minutes = minutes_between(last_seen, now)
        threshold = session.inactivity_threshold or settings.DEFAULT_INACTIVITY_THRESHOLD_MIN

        if inactive_minutes <= threshold:
            return None

        severity = "high" if inactive_minutes > settings.INACTIVITY_HIGH_SEVERITY_MIN else "medium"
        context = self._snapshot(DB, session)
        context["lastSeenAt"] = last_seen.isoformat()
        context["inactiveMinutes"] = int(inactive_minutes)

        return self._create(
            DB, session, "inactivity", severity,
            f"No activity detected for {int(inactive_minutes)} minutes",
            context,
        )

    def geofence_breach(
        self,
        DB: Session,
        session: TouristSession,
        latitude: float,
        longitude: float,
        violations: Optional[List[GeofenceResult]] = None
    ) -> List[Alert]:
        """
        One alert per violated fence, keyed by fence name.

        Args:
            violations: precomputed check_all result (evaluated here if None)
        """
        if session.status != "active":
            return []

        if violations is None:
            violations = self.evaluator.check_all(latitude, longitude, session.geofences)

        created = []
        for violation in violations:
            restricted = violation.kind == "restricted_area"
            violation_type = "restricted_area_entry" if restricted else "safe_zone_exit"

            context = self._snapshot(DB, session)
            context.update({
                "fenceName": violation.fence_name,
                "fenceType": violation.kind,
                "violationType": violation_type,
                "lastKnownLocation": {
                    "coordinates": [longitude, latitude],
                    "timestamp": self.clock().isoformat(),
                },
            })

            alert = self._create(
                DB, session, "geo_fence_breach",
                "high" if restricted else "medium",
                f"Geo-fence breach: {violation_type} - {violation.fence_name}",
                context,
                latitude=latitude,
                longitude=longitude,
            )
            if alert is not None:
                created.append(alert)

        return created

    def low_battery(self, DB: Session, session: TouristSession, level: Optional[float]) -> Optional[Alert]:
        """No-op above LOW_BATTERY_LEVEL."""
        if level is None or level > settings.LOW_BATTERY_LEVEL:
            return None
        if session.status != "active":
            return None

        severity = "high" if level <= settings.CRITICAL_BATTERY_LEVEL else "medium"
        context = self._snapshot(DB, session)
        context["battery"] = level

        return self._create(
            DB, session, "low_battery", severity,
            f"Device battery critically low: {level:g}%",
            context,
        )

    def device_offline(self, DB: Session, session: TouristSession) -> Optional[Alert]:
        """
        Alert when the newest upload (server receipt time) is older than
        DEVICE_OFFLINE_THRESHOLD_MIN. Sessions that never uploaded are skipped.
        """
        if session.status != "active":
            return None

        last_upload = sample_repo.get_last_uploaded_sample_by_session(DB, session.session_id)
        if last_upload is None:
            return None

        offline_minutes = minutes_between(last_upload.uploaded_at, self.clock())
        if offline_minutes <= settings.DEVICE_OFFLINE_THRESHOLD_MIN:
            return None

        severity = "high" if offline_minutes > settings.DEVICE_OFFLINE_HIGH_SEVERITY_MIN else "medium"
        context = self._snapshot(DB, session)
        context["lastUploadAt"] = as_utc(last_upload.uploaded_at).isoformat()
        context["offlineMinutes"] = int(offline_minutes)

        return self._create(
            DB, session, "device_offline", severity,
            f"Device offline for {int(offline_minutes)} minutes",
            context,
            latitude=last_upload.latitude,
            longitude=last_upload.longitude,
        )

    # ==========================================================
    # SWEEP
    # ==========================================================

    def run_sweep(self, DB: Session) -> Dict[str, int]:
        """
        Evaluate inactivity and device-offline over every active session.

        A failure on one session is logged and the sweep moves on; the next
        run picks it up again.

        Returns:
            {"sessions": n, "inactivity": created, "device_offline": created, "errors": n}
        """
        counts = {"sessions": 0, "inactivity": 0, "device_offline": 0, "errors": 0}

        for session in session_repo.get_all_active_sessions(DB):
            counts["sessions"] += 1
            try:
                if self.inactivity(DB, session) is not None:
                    counts["inactivity"] += 1
                if self.device_offline(DB, session) is not None:
                    counts["device_offline"] += 1
            except Exception as e:
                DB.rollback()
                counts["errors"] += 1
                log_from_thread(f"[ANOMALY] Sweep failed for {session.session_id}: {e}", "error")

        print(f"[ANOMALY] Sweep done: {counts}")
        return counts

    # ==========================================================
    # INTERNALS
    # ==========================================================

    def _snapshot(self, DB: Session, session: TouristSession) -> Dict[str, Any]:
        """lastKnownLocation + battery taken from the newest stored sample."""
        last = sample_repo.get_last_sample_by_session(DB, session.session_id)
        if last is None:
            return {"lastKnownLocation": None, "battery": None}
        return {
            "lastKnownLocation": {
                "coordinates": [last.longitude, last.latitude],
                "timestamp": as_utc(last.recorded_at).isoformat(),
            },
            "battery": last.battery_level,
        }

    def _create(
        self,
        DB: Session,
        session: TouristSession,
        alert_type: str,
        severity: str,
        description: str,
        context: Dict[str, Any],
        latitude: Optional[float] = None,
        longitude: Optional[float] = None
    ) -> Optional[Alert]:
        if latitude is None and context.get("lastKnownLocation"):
            longitude, latitude = context["lastKnownLocation"]["coordinates"]

        alert = build_alert(
            session, alert_type, severity, description, self.clock(),
            latitude=latitude, longitude=longitude, context=context,
        )
        return self.alert_manager.create_alert(DB, alert)


# Global instance (singleton)
anomaly_detector = AnomalyDetector(alert_manager, geofence_evaluator)
