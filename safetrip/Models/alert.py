# safetrip/Models/alert.py
from sqlalchemy import (
    Column, String, Text, Integer, Boolean, Float,
    CheckConstraint, ForeignKey, Index, text
)
from sqlalchemy.orm import declared_attr

from safetrip.DB.base_class import Base
from safetrip.DB.types import JSONType, UTCDateTime

ALERT_TYPES = (
    "inactivity",
    "geo_fence_breach",
    "panic",
    "device_offline",
    "low_battery",
    "rapid_movement",
    "suspicious_location",
    "missed_checkin",
)
ALERT_STATUSES = ("created", "acknowledged", "investigating", "resolved", "false_alarm")
OPEN_ALERT_STATUSES = ("created", "acknowledged", "investigating")
TERMINAL_ALERT_STATUSES = ("resolved", "false_alarm")
SEVERITIES = ("low", "medium", "high", "critical")
RESOLUTION_OUTCOMES = ("safe", "assisted", "false_alarm", "escalated_to_authorities", "other")

_OPEN_STATUS_SQL = "status IN ('created', 'acknowledged', 'investigating')"


class Alert(Base):
    """
    SQLAlchemy model for one detected or reported safety event.

    Responsibilities:
    - Stores classification (type, severity) and lifecycle status
    - Keeps ordered status and escalation histories as JSON lists
    - Records the notification intents handed to the delivery channel

    Deduplication:
        dedup_key identifies "the same ongoing problem" within a session:
        the alert type, or 'geo_fence_breach:<fence name>' for breaches.
        Panic alerts have no key and are never deduplicated. A partial
        unique index makes the existence check and the insert atomic.
    """

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return "alerts"

    # ========================================
    # PRIMARY KEY
    # ========================================
    alert_id = Column(String(100), primary_key=True, doc="Format: ALERT-<epoch_ms>-<HEX>")

    # ========================================
    # REFERENCES
    # ========================================
    session_id = Column(
        String(100),
        ForeignKey('sessions.session_id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )
    tourist_id = Column(String(100), nullable=False, index=True)

    # ========================================
    # CLASSIFICATION
    # ========================================
    alert_type = Column(String(30), nullable=False, index=True)
    severity = Column(String(10), nullable=False, default="medium")
    status = Column(String(20), nullable=False, default="created")
    dedup_key = Column(String(300), nullable=True)

    description = Column(Text, nullable=False)

    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    context = Column(JSONType, nullable=False, default=dict)

    # ========================================
    # TIMESTAMPS
    # ========================================
    detected_at = Column(UTCDateTime, nullable=False, index=True)
    acknowledged_at = Column(UTCDateTime, nullable=True)
    resolved_at = Column(UTCDateTime, nullable=True)

    # ========================================
    # ASSIGNMENT
    # ========================================
    assigned_officer = Column(String(100), nullable=True, index=True)
    assigned_at = Column(UTCDateTime, nullable=True)

    # ========================================
    # HISTORY (ordered, append-only)
    # ========================================
    escalation_history = Column(JSONType, nullable=False, default=list)
    status_history = Column(JSONType, nullable=False, default=list)

    # ========================================
    # RESOLUTION
    # ========================================
    resolution_outcome = Column(String(40), nullable=True)
    resolution_notes = Column(Text, nullable=True)
    resolved_by = Column(String(100), nullable=True)

    # ========================================
    # AUTO-ESCALATION
    # ========================================
    auto_escalate_enabled = Column(Boolean, nullable=False, default=True)
    escalate_after_minutes = Column(Integer, nullable=False, default=30)
    has_escalated = Column(Boolean, nullable=False, default=False)

    # ========================================
    # NOTIFICATIONS & LINKS
    # ========================================
    notifications = Column(JSONType, nullable=False, default=list)
    activity_event_id = Column(Integer, nullable=True)

    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=True)

    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index('idx_alerts_status_severity_detected', 'status', 'severity', 'detected_at'),
        Index('idx_alerts_officer_status', 'assigned_officer', 'status'),
        Index('idx_alerts_session_type_status', 'session_id', 'alert_type', 'status'),

        # One open alert per (session, dedup key)
        Index(
            'uq_alerts_open_dedup',
            'session_id',
            'dedup_key',
            unique=True,
            postgresql_where=text(f"dedup_key IS NOT NULL AND {_OPEN_STATUS_SQL}"),
            sqlite_where=text(f"dedup_key IS NOT NULL AND {_OPEN_STATUS_SQL}"),
        ),

        CheckConstraint(
            "alert_type IN ('inactivity', 'geo_fence_breach', 'panic', 'device_offline', "
            "'low_battery', 'rapid_movement', 'suspicious_location', 'missed_checkin')",
            name='check_alert_type'
        ),
        CheckConstraint(
            "severity IN ('low', 'medium', 'high', 'critical')",
            name='check_alert_severity'
        ),
        CheckConstraint(
            "status IN ('created', 'acknowledged', 'investigating', 'resolved', 'false_alarm')",
            name='check_alert_status'
        ),
    )

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_ALERT_STATUSES

    @property
    def fence_name(self):
        return (self.context or {}).get("fenceName")

    @property
    def response_time_minutes(self):
        if self.acknowledged_at is None:
            return None
        return (self.acknowledged_at - self.detected_at).total_seconds() / 60.0

    @property
    def resolution_time_minutes(self):
        if self.resolved_at is None:
            return None
        return (self.resolved_at - self.detected_at).total_seconds() / 60.0

    def is_overdue(self, now, overdue_minutes: int = 15) -> bool:
        if self.status != "created":
            return False
        return (now - self.detected_at).total_seconds() / 60.0 > overdue_minutes

    def __repr__(self) -> str:
        return (
            f"<Alert(alert_id={self.alert_id!r}, type={self.alert_type!r}, "
            f"severity={self.severity!r}, status={self.status!r})>"
        )
