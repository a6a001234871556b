"""
safetrip/DB/session.py
======================================
Database Session Configuration Module
======================================

Engine and session factory shared by the HTTP layer and the scheduler.

Usage Example:
-------------
    from safetrip.DB.session import SessionLocal

    with SessionLocal() as db:
        sessions = list_active_sessions(db)

Session Configuration:
---------------------
- autocommit=False: Transactions must be explicitly committed
- autoflush=False: Changes are flushed only on commit or explicit flush
- expire_on_commit=False: Entities returned by services stay readable after
  the service committed
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from safetrip.Core.config import settings


def _engine_kwargs(url: str) -> dict:
    # SQLite connections are shared between the request threads and the
    # scheduler threads.
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


# ============================================================
# DATABASE ENGINE CONFIGURATION
# ============================================================
engine = create_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))


# ============================================================
# SESSION FACTORY CONFIGURATION
# ============================================================
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)
