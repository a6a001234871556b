# tests/conftest.py
import os

# Settings are validated at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["SCHEDULER_ENABLED"] = "false"

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from safetrip.DB.base import Base
from safetrip.Schemas.tourist_session import Session_create
from safetrip.Services.alert_manager import AlertLifecycleManager
from safetrip.Services.anomaly_detector import AnomalyDetector
from safetrip.Services.geofence_evaluator import GeofenceEvaluator
from safetrip.Services.ingestion import LocationIngestionPipeline
from safetrip.Services.notifier import Notifier
from safetrip.Services.position_cache import PositionCache
from safetrip.Services.session_manager import SessionManager

T0 = datetime(2025, 6, 1, 8, 0, tzinfo=timezone.utc)


class FakeClock:
    """Mutable clock shared by every service under test."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def db(session_factory):
    DB = session_factory()
    yield DB
    DB.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def dispatched():
    """Payloads handed to the notification dispatcher."""
    return []


@pytest.fixture
def services(clock, dispatched):
    def dispatcher(payload):
        dispatched.append(payload)
        return True

    notifier = Notifier(clock=clock, dispatcher=dispatcher)
    cache = PositionCache(max_size=100)
    sessions = SessionManager(clock=clock, cache=cache)
    alerts = AlertLifecycleManager(clock=clock, notifier=notifier)
    evaluator = GeofenceEvaluator()
    detector = AnomalyDetector(alerts, evaluator, clock=clock)
    pipeline = LocationIngestionPipeline(sessions, detector, evaluator, cache, clock=clock)

    return SimpleNamespace(
        clock=clock,
        notifier=notifier,
        sessions=sessions,
        alerts=alerts,
        evaluator=evaluator,
        detector=detector,
        cache=cache,
        pipeline=pipeline,
    )


def session_payload(clock, **overrides) -> Session_create:
    data = {
        "destination": "Madrid",
        "start_date": clock(),
        "end_date": clock() + timedelta(days=3),
    }
    data.update(overrides)
    return Session_create(**data)


def make_active_session(services, db, tourist_id="tourist-1", **overrides):
    """Create, consent and activate a session starting now."""
    session = services.sessions.create(db, tourist_id, session_payload(services.clock, **overrides))
    services.sessions.grant_consent(db, session, "127.0.0.1")
    return services.sessions.activate(db, session)


# Square around Madrid's center, roughly 2.2 km per side
MADRID_SQUARE = {
    "type": "Polygon",
    "coordinates": [[
        [-3.72, 40.41], [-3.69, 40.41], [-3.69, 40.43], [-3.72, 40.43], [-3.72, 40.41]
    ]],
}
