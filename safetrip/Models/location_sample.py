# safetrip/Models/location_sample.py
from sqlalchemy.orm import declared_attr
from sqlalchemy import (
    Column, String, Float, Boolean, Integer,
    CheckConstraint, ForeignKey, Index
)

from safetrip.DB.base_class import Base
from safetrip.DB.types import IdInteger, UTCDateTime


class LocationSample(Base):
    """
    SQLAlchemy model for one position reading uploaded by a tourist device.

    Rows are written only by the ingestion pipeline and never updated.
    Two clocks are kept on purpose: recorded_at is the device clock (the
    canonical ordering), uploaded_at is the server receipt time (used for
    offline detection). Skew between them is tolerated.
    """

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return "location_samples"

    id = Column(IdInteger, primary_key=True, autoincrement=True)

    session_id = Column(
        String(100),
        ForeignKey('sessions.session_id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )
    tourist_id = Column(String(100), nullable=False, index=True)

    # GPS fields
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    accuracy = Column(Float, nullable=True, doc="Meters")
    altitude = Column(Float, nullable=True, doc="Meters above sea level")
    speed = Column(Float, nullable=True, doc="Meters per second")
    heading = Column(Float, nullable=True, doc="Degrees from north")

    # Timestamps
    recorded_at = Column(UTCDateTime, nullable=False)
    uploaded_at = Column(UTCDateTime, nullable=False)

    # Device state
    battery_level = Column(Float, nullable=True)
    battery_is_charging = Column(Boolean, nullable=False, default=False)
    network_type = Column(String(20), nullable=True)
    network_strength = Column(Float, nullable=True)
    platform = Column(String(20), nullable=True)
    os_version = Column(String(50), nullable=True)

    # Offline sync
    batch_id = Column(String(100), nullable=True, index=True)
    is_offline_sync = Column(Boolean, nullable=False, default=False)

    # Anomaly flags (set by the ingestion pipeline)
    flag_out_of_bounds = Column(Boolean, nullable=False, default=False)
    flag_rapid_movement = Column(Boolean, nullable=False, default=False)
    flag_suspicious_gap = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index('idx_samples_session_recorded', 'session_id', 'recorded_at'),
        Index('idx_samples_session_uploaded', 'session_id', 'uploaded_at'),
        Index('idx_samples_tourist_recorded', 'tourist_id', 'recorded_at'),

        # Re-uploading a batch must not duplicate rows
        Index('unique_session_recorded_at', 'session_id', 'recorded_at', unique=True),

        CheckConstraint("latitude >= -90 AND latitude <= 90", name='check_sample_lat_range'),
        CheckConstraint("longitude >= -180 AND longitude <= 180", name='check_sample_lon_range'),
        CheckConstraint(
            "battery_level IS NULL OR (battery_level >= 0 AND battery_level <= 100)",
            name='check_sample_battery_range'
        ),
    )

    @property
    def upload_delay_seconds(self) -> float:
        return (self.uploaded_at - self.recorded_at).total_seconds()

    def __repr__(self) -> str:
        return (
            f"<LocationSample(id={self.id}, session_id={self.session_id!r}, "
            f"Lat={self.latitude:.4f}, Lon={self.longitude:.4f})>"
        )
