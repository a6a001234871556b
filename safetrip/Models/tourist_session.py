# safetrip/Models/tourist_session.py
from sqlalchemy import (
    Column, String, Text, Integer, Boolean,
    CheckConstraint, Index, text
)
from sqlalchemy.orm import declared_attr

from safetrip.DB.base_class import Base
from safetrip.DB.types import JSONType, UTCDateTime

SESSION_STATUSES = ("pending", "active", "completed", "expired", "terminated")
OPEN_SESSION_STATUSES = ("pending", "active")
TERMINAL_SESSION_STATUSES = ("completed", "expired", "terminated")


class TouristSession(Base):
    """
    SQLAlchemy model for one bounded trip (a "session").

    Responsibilities:
    - Stores the trip window, the consent record and the per-trip geofences
    - Holds the activity timestamps consulted by the anomaly detector
    - Carries an integrity hash of the immutable creation fields

    Lifecycle (enforced by SessionManager, not here):
        pending -> active -> completed | expired | terminated
        pending -> terminated

    Related models:
    - LocationSample (1:N)
    - Alert (1:N)
    - ActivityEvent (1:N)
    """

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return "sessions"

    # ========================================
    # PRIMARY KEY
    # ========================================
    session_id = Column(
        String(100),
        primary_key=True,
        doc="Unique session identifier (format: SESSION-<epoch_ms>-<hex>)"
    )

    # ========================================
    # OWNERSHIP & TRIP DETAILS
    # ========================================
    tourist_id = Column(String(100), nullable=False, index=True)
    destination = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    start_date = Column(UTCDateTime, nullable=False)
    end_date = Column(UTCDateTime, nullable=False, index=True)

    status = Column(String(20), nullable=False, default="pending", index=True)

    # ========================================
    # CONSENT (required before tracking starts)
    # ========================================
    consent_given = Column(Boolean, nullable=False, default=False)
    consent_timestamp = Column(UTCDateTime, nullable=True)
    consent_source_address = Column(String(100), nullable=True)

    # ========================================
    # SAFETY CONFIGURATION
    # ========================================
    geofences = Column(
        JSONType,
        nullable=False,
        default=list,
        doc="List of {name, type, geometry, radius} fence definitions"
    )
    emergency_contacts = Column(JSONType, nullable=False, default=list)
    check_in_interval = Column(Integer, nullable=False, default=60, doc="Minutes")
    inactivity_threshold = Column(Integer, nullable=False, default=120, doc="Minutes")

    # ========================================
    # ACTIVITY TRACKING
    # ========================================
    last_activity_at = Column(UTCDateTime, nullable=True)
    last_location_at = Column(UTCDateTime, nullable=True)

    # ========================================
    # LIFECYCLE TIMESTAMPS
    # ========================================
    activated_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    terminated_at = Column(UTCDateTime, nullable=True)
    expired_at = Column(UTCDateTime, nullable=True)
    termination_reason = Column(String(500), nullable=True)

    # ========================================
    # METADATA
    # ========================================
    session_hash = Column(String(64), nullable=False, doc="SHA-256 of creation fields")
    alert_count = Column(Integer, nullable=False, default=0)
    admin_notes = Column(Text, nullable=True)
    device_info = Column(JSONType, nullable=True)

    # ========================================
    # AUDIT FIELDS
    # ========================================
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=True)

    # Optimistic lock: concurrent transitions on the same row cannot both win
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index('idx_sessions_tourist_status', 'tourist_id', 'status'),
        Index('idx_sessions_status_end_date', 'status', 'end_date'),

        # At most one pending/active session per tourist
        Index(
            'uq_sessions_tourist_open',
            'tourist_id',
            unique=True,
            postgresql_where=text("status IN ('pending', 'active')"),
            sqlite_where=text("status IN ('pending', 'active')"),
        ),

        CheckConstraint(
            "status IN ('pending', 'active', 'completed', 'expired', 'terminated')",
            name='check_session_status'
        ),
        CheckConstraint("end_date > start_date", name='check_session_date_order'),
        CheckConstraint(
            "status <> 'active' OR consent_given",
            name='check_active_requires_consent'
        ),
    )

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_SESSION_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SESSION_STATUSES

    @property
    def duration_days(self) -> int:
        seconds = (self.end_date - self.start_date).total_seconds()
        return int(-(-seconds // 86400))

    def is_within_date_range(self, now) -> bool:
        return self.start_date <= now <= self.end_date

    def should_expire(self, now) -> bool:
        return self.status == "active" and now > self.end_date

    def __repr__(self) -> str:
        return (
            f"<TouristSession(session_id={self.session_id!r}, "
            f"tourist_id={self.tourist_id!r}, status={self.status!r})>"
        )
