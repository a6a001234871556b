# safetrip/Models/activity_event.py
from sqlalchemy import Column, String, Float, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import declared_attr

from safetrip.DB.base_class import Base
from safetrip.DB.types import IdInteger, JSONType, UTCDateTime

ACTIVITY_EVENT_TYPES = (
    "check_in",
    "panic_button",
    "sos",
    "device_shake",
    "app_opened",
    "location_shared",
    "boundary_acknowledged",
    "low_battery_warning",
)


class ActivityEvent(Base):
    """
    Explicit user activity during a session (check-ins, panic presses, ...).

    Any activity event refreshes the session's last_activity_at, which the
    inactivity rule compares against.
    """

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return "activity_events"

    id = Column(IdInteger, primary_key=True, autoincrement=True)

    session_id = Column(
        String(100),
        ForeignKey('sessions.session_id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )
    tourist_id = Column(String(100), nullable=False, index=True)

    event_type = Column(String(30), nullable=False)
    timestamp = Column(UTCDateTime, nullable=False)

    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    message = Column(String(1000), nullable=True)
    device_state = Column(JSONType, nullable=True)
    extra_metadata = Column('metadata', JSONType, nullable=True)

    __table_args__ = (
        Index('idx_activity_session_timestamp', 'session_id', 'timestamp'),
        CheckConstraint(
            "event_type IN ('check_in', 'panic_button', 'sos', 'device_shake', "
            "'app_opened', 'location_shared', 'boundary_acknowledged', 'low_battery_warning')",
            name='check_activity_event_type'
        ),
    )

    def __repr__(self) -> str:
        return f"<ActivityEvent(id={self.id}, session_id={self.session_id!r}, type={self.event_type!r})>"
