"""create_monitoring_schema

Revision ID: 3f1c9a2b7d10
Revises:
Create Date: 2025-06-02 09:14:51

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3f1c9a2b7d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
BIGID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
TS = sa.DateTime(timezone=True)

OPEN_SESSION_SQL = "status IN ('pending', 'active')"
OPEN_ALERT_SQL = "dedup_key IS NOT NULL AND status IN ('created', 'acknowledged', 'investigating')"


def upgrade() -> None:
    """
    Create sessions, location_samples, activity_events and alerts.

    Guards enforced by the database:
    - uq_sessions_tourist_open: one pending/active session per tourist
    - unique_session_recorded_at: one sample per (session, recorded_at)
    - uq_alerts_open_dedup: one open alert per (session, dedup_key)
    """
    print("[MIGRATION] Creating monitoring schema...")

    op.create_table(
        'sessions',
        sa.Column('session_id', sa.String(100), primary_key=True),
        sa.Column('tourist_id', sa.String(100), nullable=False),
        sa.Column('destination', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('start_date', TS, nullable=False),
        sa.Column('end_date', TS, nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('consent_given', sa.Boolean(), nullable=False),
        sa.Column('consent_timestamp', TS, nullable=True),
        sa.Column('consent_source_address', sa.String(100), nullable=True),
        sa.Column('geofences', JSON, nullable=False),
        sa.Column('emergency_contacts', JSON, nullable=False),
        sa.Column('check_in_interval', sa.Integer(), nullable=False),
        sa.Column('inactivity_threshold', sa.Integer(), nullable=False),
        sa.Column('last_activity_at', TS, nullable=True),
        sa.Column('last_location_at', TS, nullable=True),
        sa.Column('activated_at', TS, nullable=True),
        sa.Column('completed_at', TS, nullable=True),
        sa.Column('terminated_at', TS, nullable=True),
        sa.Column('expired_at', TS, nullable=True),
        sa.Column('termination_reason', sa.String(500), nullable=True),
        sa.Column('session_hash', sa.String(64), nullable=False),
        sa.Column('alert_count', sa.Integer(), nullable=False),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('device_info', JSON, nullable=True),
        sa.Column('created_at', TS, nullable=False),
        sa.Column('updated_at', TS, nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending', 'active', 'completed', 'expired', 'terminated')",
            name='check_session_status'
        ),
        sa.CheckConstraint("end_date > start_date", name='check_session_date_order'),
        sa.CheckConstraint("status <> 'active' OR consent_given", name='check_active_requires_consent'),
    )
    op.create_index('ix_sessions_tourist_id', 'sessions', ['tourist_id'])
    op.create_index('ix_sessions_end_date', 'sessions', ['end_date'])
    op.create_index('ix_sessions_status', 'sessions', ['status'])
    op.create_index('idx_sessions_tourist_status', 'sessions', ['tourist_id', 'status'])
    op.create_index('idx_sessions_status_end_date', 'sessions', ['status', 'end_date'])
    op.create_index(
        'uq_sessions_tourist_open', 'sessions', ['tourist_id'],
        unique=True,
        postgresql_where=sa.text(OPEN_SESSION_SQL),
        sqlite_where=sa.text(OPEN_SESSION_SQL),
    )

    op.create_table(
        'location_samples',
        sa.Column('id', BIGID, primary_key=True, autoincrement=True),
        sa.Column('session_id', sa.String(100),
                  sa.ForeignKey('sessions.session_id', ondelete='CASCADE'), nullable=False),
        sa.Column('tourist_id', sa.String(100), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('accuracy', sa.Float(), nullable=True),
        sa.Column('altitude', sa.Float(), nullable=True),
        sa.Column('speed', sa.Float(), nullable=True),
        sa.Column('heading', sa.Float(), nullable=True),
        sa.Column('recorded_at', TS, nullable=False),
        sa.Column('uploaded_at', TS, nullable=False),
        sa.Column('battery_level', sa.Float(), nullable=True),
        sa.Column('battery_is_charging', sa.Boolean(), nullable=False),
        sa.Column('network_type', sa.String(20), nullable=True),
        sa.Column('network_strength', sa.Float(), nullable=True),
        sa.Column('platform', sa.String(20), nullable=True),
        sa.Column('os_version', sa.String(50), nullable=True),
        sa.Column('batch_id', sa.String(100), nullable=True),
        sa.Column('is_offline_sync', sa.Boolean(), nullable=False),
        sa.Column('flag_out_of_bounds', sa.Boolean(), nullable=False),
        sa.Column('flag_rapid_movement', sa.Boolean(), nullable=False),
        sa.Column('flag_suspicious_gap', sa.Boolean(), nullable=False),
        sa.CheckConstraint("latitude >= -90 AND latitude <= 90", name='check_sample_lat_range'),
        sa.CheckConstraint("longitude >= -180 AND longitude <= 180", name='check_sample_lon_range'),
        sa.CheckConstraint(
            "battery_level IS NULL OR (battery_level >= 0 AND battery_level <= 100)",
            name='check_sample_battery_range'
        ),
    )
    op.create_index('ix_location_samples_session_id', 'location_samples', ['session_id'])
    op.create_index('ix_location_samples_tourist_id', 'location_samples', ['tourist_id'])
    op.create_index('ix_location_samples_batch_id', 'location_samples', ['batch_id'])
    op.create_index('idx_samples_session_recorded', 'location_samples', ['session_id', 'recorded_at'])
    op.create_index('idx_samples_session_uploaded', 'location_samples', ['session_id', 'uploaded_at'])
    op.create_index('idx_samples_tourist_recorded', 'location_samples', ['tourist_id', 'recorded_at'])
    op.create_index(
        'unique_session_recorded_at', 'location_samples', ['session_id', 'recorded_at'], unique=True
    )

    op.create_table(
        'activity_events',
        sa.Column('id', BIGID, primary_key=True, autoincrement=True),
        sa.Column('session_id', sa.String(100),
                  sa.ForeignKey('sessions.session_id', ondelete='CASCADE'), nullable=False),
        sa.Column('tourist_id', sa.String(100), nullable=False),
        sa.Column('event_type', sa.String(30), nullable=False),
        sa.Column('timestamp', TS, nullable=False),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('message', sa.String(1000), nullable=True),
        sa.Column('device_state', JSON, nullable=True),
        sa.Column('metadata', JSON, nullable=True),
        sa.CheckConstraint(
            "event_type IN ('check_in', 'panic_button', 'sos', 'device_shake', "
            "'app_opened', 'location_shared', 'boundary_acknowledged', 'low_battery_warning')",
            name='check_activity_event_type'
        ),
    )
    op.create_index('ix_activity_events_session_id', 'activity_events', ['session_id'])
    op.create_index('ix_activity_events_tourist_id', 'activity_events', ['tourist_id'])
    op.create_index('idx_activity_session_timestamp', 'activity_events', ['session_id', 'timestamp'])

    op.create_table(
        'alerts',
        sa.Column('alert_id', sa.String(100), primary_key=True),
        sa.Column('session_id', sa.String(100),
                  sa.ForeignKey('sessions.session_id', ondelete='CASCADE'), nullable=False),
        sa.Column('tourist_id', sa.String(100), nullable=False),
        sa.Column('alert_type', sa.String(30), nullable=False),
        sa.Column('severity', sa.String(10), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('dedup_key', sa.String(300), nullable=True),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('context', JSON, nullable=False),
        sa.Column('detected_at', TS, nullable=False),
        sa.Column('acknowledged_at', TS, nullable=True),
        sa.Column('resolved_at', TS, nullable=True),
        sa.Column('assigned_officer', sa.String(100), nullable=True),
        sa.Column('assigned_at', TS, nullable=True),
        sa.Column('escalation_history', JSON, nullable=False),
        sa.Column('status_history', JSON, nullable=False),
        sa.Column('resolution_outcome', sa.String(40), nullable=True),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        sa.Column('resolved_by', sa.String(100), nullable=True),
        sa.Column('auto_escalate_enabled', sa.Boolean(), nullable=False),
        sa.Column('escalate_after_minutes', sa.Integer(), nullable=False),
        sa.Column('has_escalated', sa.Boolean(), nullable=False),
        sa.Column('notifications', JSON, nullable=False),
        sa.Column('activity_event_id', sa.Integer(), nullable=True),
        sa.Column('created_at', TS, nullable=False),
        sa.Column('updated_at', TS, nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.CheckConstraint(
            "alert_type IN ('inactivity', 'geo_fence_breach', 'panic', 'device_offline', "
            "'low_battery', 'rapid_movement', 'suspicious_location', 'missed_checkin')",
            name='check_alert_type'
        ),
        sa.CheckConstraint("severity IN ('low', 'medium', 'high', 'critical')", name='check_alert_severity'),
        sa.CheckConstraint(
            "status IN ('created', 'acknowledged', 'investigating', 'resolved', 'false_alarm')",
            name='check_alert_status'
        ),
    )
    op.create_index('ix_alerts_session_id', 'alerts', ['session_id'])
    op.create_index('ix_alerts_tourist_id', 'alerts', ['tourist_id'])
    op.create_index('ix_alerts_alert_type', 'alerts', ['alert_type'])
    op.create_index('ix_alerts_detected_at', 'alerts', ['detected_at'])
    op.create_index('ix_alerts_assigned_officer', 'alerts', ['assigned_officer'])
    op.create_index('idx_alerts_status_severity_detected', 'alerts', ['status', 'severity', 'detected_at'])
    op.create_index('idx_alerts_officer_status', 'alerts', ['assigned_officer', 'status'])
    op.create_index('idx_alerts_session_type_status', 'alerts', ['session_id', 'alert_type', 'status'])
    op.create_index(
        'uq_alerts_open_dedup', 'alerts', ['session_id', 'dedup_key'],
        unique=True,
        postgresql_where=sa.text(OPEN_ALERT_SQL),
        sqlite_where=sa.text(OPEN_ALERT_SQL),
    )

    print("[MIGRATION] ✅ Monitoring schema created")


def downgrade() -> None:
    print("[MIGRATION] Dropping monitoring schema...")

    op.drop_table('alerts')
    op.drop_table('activity_events')
    op.drop_table('location_samples')
    op.drop_table('sessions')

    print("[MIGRATION] ❌ Monitoring schema dropped")
