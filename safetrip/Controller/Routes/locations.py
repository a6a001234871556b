# safetrip/Controller/Routes/locations.py

"""
Location REST API

Endpoints:
- POST /locations/batch                 Upload one or more samples (tourist)
- GET  /locations/current/{tourist_id}  Live position (cache, then storage)
- GET  /locations/session/{session_id}  Session timeline, newest first

A batch is accepted or rejected as a whole only on the batch-level checks
(ownership, active session, consent). Individual bad samples come back in
`failed` with the reason; the rest is stored.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from safetrip.Controller.deps import Actor, get_DB, require
from safetrip.Core.errors import Forbidden, NotFound
from safetrip.Core.permissions import is_allowed
from safetrip.Repositories import location_sample as sample_repo
from safetrip.Schemas import location_sample as location_schema
from safetrip.Services.ingestion import ingestion_pipeline
from safetrip.Services.session_manager import session_manager

router = APIRouter()


@router.post("/batch", response_model=location_schema.BatchIngest_response)
def ingest_batch(
    payload: location_schema.LocationBatch_in,
    actor: Actor = Depends(require("location:ingest")),
    db: Session = Depends(get_DB)
):
    """
    Ingest a batch of location samples.

    Example body:
        {
            "session_id": "SESSION-1700000000000-ab12cd34",
            "locations": [
                {"latitude": 40.4168, "longitude": -3.7038,
                 "recorded_at": "2025-06-01T10:00:00Z", "battery_level": 54}
            ]
        }
    """
    return ingestion_pipeline.ingest_batch(db, payload.session_id, actor.user_id, payload.locations)


@router.get("/current/{tourist_id}", response_model=location_schema.CurrentPosition_get)
def get_current_position(
    tourist_id: str,
    actor: Actor = Depends(require("location:read")),
    db: Session = Depends(get_DB)
):
    if tourist_id != actor.user_id and not is_allowed(actor.role, "location:read_all"):
        raise Forbidden("Cannot read another tourist's position", {"tourist_id": tourist_id})

    position = ingestion_pipeline.current_position(db, tourist_id)
    if position is None:
        raise NotFound("No known position", {"tourist_id": tourist_id})
    return position


@router.get("/session/{session_id}", response_model=List[location_schema.LocationSample_get])
def get_session_timeline(
    session_id: str,
    start_time: Optional[datetime] = Query(None),
    end_time: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    actor: Actor = Depends(require("location:read")),
    db: Session = Depends(get_DB)
):
    session_manager.get_session_for_actor(db, session_id, actor.user_id, actor.role)
    return sample_repo.get_session_timeline(db, session_id, start_time, end_time, limit)
