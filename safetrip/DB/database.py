# safetrip/DB/database.py
"""
Database Helpers Module

Connection check for the health endpoint and the commit helper used by the
services. Request handlers get their session from Controller/deps.get_DB;
schemas are managed with Alembic (alembic upgrade head).
"""

from sqlalchemy import text
from sqlalchemy.orm import Session

from safetrip.DB.session import engine


def test_db_connection() -> bool:
    """Run SELECT 1; used by the health endpoint."""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except Exception as e:
        print(f"[DB] ❌ Connection test failed: {e}")
        return False


def commit_or_conflict(db: Session, entity: str, entity_id: str) -> None:
    """
    Commit the current unit of work, turning an optimistic-lock conflict
    into a domain error.

    Raises:
        ConcurrentModification: another writer updated the same row first
    """
    from sqlalchemy.orm.exc import StaleDataError
    from safetrip.Core.errors import ConcurrentModification

    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise ConcurrentModification(
            f"{entity} '{entity_id}' was modified concurrently, retry the operation",
            {"entity": entity, "id": entity_id},
        )
