"""
safetrip/DB/base.py
==========================
SQLAlchemy Model Registry
==========================

Imports every model so that Base.metadata is complete before create_all()
or Alembic autogeneration runs.

Important:
    Any new model class MUST be imported here.
"""

from safetrip.DB.base_class import Base

# ============================================================
# MODEL IMPORTS - DO NOT REMOVE
# ============================================================
from safetrip.Models.tourist_session import TouristSession
from safetrip.Models.location_sample import LocationSample
from safetrip.Models.alert import Alert
from safetrip.Models.activity_event import ActivityEvent

__all__ = ["Base", "TouristSession", "LocationSample", "Alert", "ActivityEvent"]
