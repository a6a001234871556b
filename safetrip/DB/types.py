# safetrip/DB/types.py
"""
Portable column types.

- UTCDateTime: timezone-aware UTC on the way in and out, including on SQLite
  which otherwise hands back naive datetimes.
- JSONType: JSONB on PostgreSQL, plain JSON elsewhere.
- IdInteger: BIGINT on PostgreSQL, INTEGER on SQLite (only INTEGER PRIMARY
  KEY autoincrements there).
"""

from sqlalchemy import JSON, BigInteger, DateTime, Integer
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator

from safetrip.Core.clock import as_utc


class UTCDateTime(TypeDecorator):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return as_utc(value)

    def process_result_value(self, value, dialect):
        return as_utc(value)


JSONType = JSON().with_variant(JSONB(), "postgresql")

IdInteger = BigInteger().with_variant(Integer(), "sqlite")
