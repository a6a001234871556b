# safetrip/Services/ingestion.py
"""
Location ingestion pipeline.

Flow per batch:
1. Batch-level checks (fatal): ownership, session active, consent given
2. Stable sort by recorded_at (device clock); items without one fail alone
3. Per item: validate -> skip if already stored -> flag -> persist
4. Last-known-position cache: compare-and-set on recorded_at
5. Inline detection: low battery + geofence breach
6. Stamp the session's last_location_at

Partial success is the normal case: a bad item is reported in `failed` and
the rest of the batch continues.
"""

import secrets
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from safetrip.Core.clock import Clock, as_utc, minutes_between, utc_now
from safetrip.Core.config import settings
from safetrip.Core.errors import ConsentRequired, InvalidState, ValidationError
from safetrip.Models.location_sample import LocationSample
from safetrip.Models.tourist_session import TouristSession
from safetrip.Repositories import location_sample as sample_repo
from safetrip.Schemas.geofence import GeofenceResult
from safetrip.Schemas.location_sample import LocationSample_in
from safetrip.Services.anomaly_detector import AnomalyDetector, anomaly_detector
from safetrip.Services.geofence_evaluator import (
    GeofenceEvaluator, calculate_haversine_distance, geofence_evaluator
)
from safetrip.Services.position_cache import PositionCache, position_cache
from safetrip.Services.session_manager import SessionManager, session_manager


def validate_sample(item: LocationSample_in) -> None:
    """
    Raises:
        ValidationError: missing/out-of-range coordinate, missing recorded_at,
            battery outside [0, 100]
    """
    if item.latitude is None or item.longitude is None:
        raise ValidationError("latitude and longitude are required", {"field": "coordinates"})
    if not (-90 <= item.latitude <= 90):
        raise ValidationError(
            f"Latitude out of range: {item.latitude}",
            {"field": "latitude", "value": item.latitude},
        )
    if not (-180 <= item.longitude <= 180):
        raise ValidationError(
            f"Longitude out of range: {item.longitude}",
            {"field": "longitude", "value": item.longitude},
        )
    if item.recorded_at is None:
        raise ValidationError("recorded_at is required", {"field": "recorded_at"})
    if item.battery_level is not None and not (0 <= item.battery_level <= 100):
        raise ValidationError(
            f"Battery level out of range: {item.battery_level}",
            {"field": "battery_level", "value": item.battery_level},
        )
    if item.accuracy is not None and item.accuracy < 0:
        raise ValidationError("Accuracy cannot be negative", {"field": "accuracy", "value": item.accuracy})


def generate_batch_id(now) -> str:
    return f"BATCH-{int(now.timestamp() * 1000)}-{secrets.token_hex(4)}"


class LocationIngestionPipeline:

    def __init__(
        self,
        sessions: SessionManager,
        detector: AnomalyDetector,
        evaluator: GeofenceEvaluator,
        cache: PositionCache,
        clock: Clock = utc_now
    ):
        self.sessions = sessions
        self.detector = detector
        self.evaluator = evaluator
        self.cache = cache
        self.clock = clock

    def ingest_batch(
        self,
        DB: Session,
        session_id: str,
        actor_id: str,
        items: List[LocationSample_in]
    ) -> Dict[str, Any]:
        """
        Ingest one upload.

        Raises:
            NotFound: unknown session
            Forbidden: session owned by another tourist
            InvalidState: session is not active
            ConsentRequired: consent was never given

        Returns:
            {
                "batch_id": "BATCH-...",
                "succeeded": [sample ids, in recorded_at order],
                "failed": [{"sample": {...}, "reason": "..."}],
                "anomalies": [{"type", "alert_id", "severity", "alert"}],
                "message": "..."
            }
        """
        session = self.sessions.get_session(DB, session_id)
        self._check_batch(session, actor_id)

        now = self.clock()
        batch_id = generate_batch_id(now)
        is_offline_sync = len(items) > 1

        succeeded: List[int] = []
        failed: List[Dict[str, Any]] = []
        anomalies: List[Dict[str, Any]] = []

        timed = []
        for item in items:
            if item.recorded_at is None:
                failed.append(self._failure(item, "recorded_at is required"))
            else:
                timed.append(item)

        # sorted() is stable: equal recorded_at values keep their upload order
        timed = sorted(timed, key=lambda item: as_utc(item.recorded_at))

        for item in timed:
            try:
                validate_sample(item)
            except ValidationError as e:
                failed.append(self._failure(item, e.message))
                continue

            recorded_at = as_utc(item.recorded_at)
            existing = sample_repo.get_sample_by_recorded_at(DB, session.session_id, recorded_at)
            if existing is not None:
                print(f"[INGEST] {session.session_id}@{recorded_at.isoformat()} already stored (id={existing.id})")
                succeeded.append(existing.id)
                continue

            violations = self.evaluator.check_all(item.latitude, item.longitude, session.geofences)
            sample = self._build_sample(DB, session, item, recorded_at, now, batch_id, is_offline_sync, violations)

            try:
                sample = sample_repo.create_location_sample(DB, sample)
            except IntegrityError:
                # A concurrent upload stored the same reading first
                DB.rollback()
                existing = sample_repo.get_sample_by_recorded_at(DB, session.session_id, recorded_at)
                if existing is None:
                    raise
                succeeded.append(existing.id)
                continue

            succeeded.append(sample.id)

            self.cache.compare_and_set(session.tourist_id, {
                "session_id": session.session_id,
                "latitude": sample.latitude,
                "longitude": sample.longitude,
                "speed": sample.speed,
                "heading": sample.heading,
                "battery_level": sample.battery_level,
                "recorded_at": sample.recorded_at,
                "updated_at": now,
            })

            battery_alert = self.detector.low_battery(DB, session, sample.battery_level)
            if battery_alert is not None:
                anomalies.append(self._anomaly(battery_alert))

            for breach in self.detector.geofence_breach(
                DB, session, sample.latitude, sample.longitude, violations=violations
            ):
                anomalies.append(self._anomaly(breach))

        if succeeded:
            self.sessions.record_location(DB, session)

        message = f"{len(succeeded)} stored, {len(failed)} failed, {len(anomalies)} anomalies"
        print(f"[INGEST] {batch_id} on {session.session_id}: {message}")

        return {
            "batch_id": batch_id,
            "succeeded": succeeded,
            "failed": failed,
            "anomalies": anomalies,
            "message": message,
        }

    def current_position(self, DB: Session, tourist_id: str) -> Optional[Dict[str, Any]]:
        """Cached live position, falling back to the newest stored sample."""
        cached = self.cache.get(tourist_id)
        if cached is not None:
            return {"tourist_id": tourist_id, **cached}

        last = sample_repo.get_last_sample_by_tourist(DB, tourist_id)
        if last is None:
            return None
        return {
            "tourist_id": tourist_id,
            "session_id": last.session_id,
            "latitude": last.latitude,
            "longitude": last.longitude,
            "speed": last.speed,
            "heading": last.heading,
            "battery_level": last.battery_level,
            "recorded_at": last.recorded_at,
            "updated_at": last.uploaded_at,
        }

    # ==========================================================
    # INTERNALS
    # ==========================================================

    def _check_batch(self, session: TouristSession, actor_id: str) -> None:
        self.sessions.ensure_owner(session, actor_id)
        if session.status != "active":
            raise InvalidState(
                f"Locations can only be ingested into active sessions (is {session.status})",
                {"session_id": session.session_id, "status": session.status},
            )
        if not session.consent_given:
            raise ConsentRequired(
                "Location tracking requires consent",
                {"session_id": session.session_id},
            )

    def _build_sample(
        self,
        DB: Session,
        session: TouristSession,
        item: LocationSample_in,
        recorded_at,
        now,
        batch_id: str,
        is_offline_sync: bool,
        violations: List[GeofenceResult]
    ) -> LocationSample:
        rapid_movement = False
        suspicious_gap = False

        previous = sample_repo.get_previous_sample(DB, session.session_id, recorded_at)
        if previous is not None:
            gap_minutes = minutes_between(previous.recorded_at, recorded_at)
            suspicious_gap = gap_minutes > settings.SUSPICIOUS_GAP_MIN

            hours = gap_minutes / 60.0
            if hours > 0:
                km = calculate_haversine_distance(
                    previous.latitude, previous.longitude, item.latitude, item.longitude
                ) / 1000.0
                rapid_movement = km / hours > settings.RAPID_MOVEMENT_KMH

        return LocationSample(
            session_id=session.session_id,
            tourist_id=session.tourist_id,
            latitude=item.latitude,
            longitude=item.longitude,
            accuracy=item.accuracy,
            altitude=item.altitude,
            speed=item.speed,
            heading=item.heading,
            recorded_at=recorded_at,
            uploaded_at=now,
            battery_level=item.battery_level,
            battery_is_charging=item.is_charging,
            network_type=item.network_type,
            network_strength=item.network_strength,
            platform=item.platform,
            os_version=item.os_version,
            batch_id=batch_id,
            is_offline_sync=is_offline_sync,
            flag_out_of_bounds=bool(violations),
            flag_rapid_movement=rapid_movement,
            flag_suspicious_gap=suspicious_gap,
        )

    @staticmethod
    def _failure(item: LocationSample_in, reason: str) -> Dict[str, Any]:
        return {"sample": item.model_dump(mode="json"), "reason": reason}

    @staticmethod
    def _anomaly(alert) -> Dict[str, Any]:
        return {
            "type": alert.alert_type,
            "alert_id": alert.alert_id,
            "severity": alert.severity,
            "alert": alert,
        }


# Global instance (singleton)
ingestion_pipeline = LocationIngestionPipeline(
    session_manager, anomaly_detector, geofence_evaluator, position_cache
)
