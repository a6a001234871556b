# safetrip/Controller/Routes/alerts.py

"""
Alert REST API

Endpoints:
- POST  /alerts/panic                   Panic button (tourist)
- GET   /alerts/                        Open alerts (own for tourists)
- GET   /alerts/unacknowledged          Alerts nobody picked up yet
- GET   /alerts/statistics              Period statistics
- GET   /alerts/{id}                    Alert details
- POST  /alerts/{id}/assign             Assign + acknowledge
- PATCH /alerts/{id}/status             Status transition
- POST  /alerts/{id}/resolve            Resolve with outcome
- POST  /alerts/{id}/escalate           Raise severity
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from safetrip.Controller.deps import Actor, get_DB, require
from safetrip.Schemas import alert as alert_schema
from safetrip.Services.alert_manager import alert_manager
from safetrip.Services.session_manager import session_manager

router = APIRouter()


@router.post("/panic", response_model=alert_schema.Alert_get, status_code=201)
def panic(
    payload: alert_schema.PanicAlert_create,
    actor: Actor = Depends(require("alert:panic")),
    db: Session = Depends(get_DB)
):
    """Always creates a new critical alert; never deduplicated."""
    session = session_manager.get_session(db, payload.session_id)
    return alert_manager.create_from_panic(
        db,
        session,
        actor.user_id,
        message=payload.message,
        location=payload.location.model_dump() if payload.location else None,
        device_state={"battery": payload.battery, "networkType": payload.network_type},
    )


@router.get("/", response_model=List[alert_schema.Alert_get])
def list_open_alerts(
    officer_id: Optional[str] = Query(None, description="Only alerts assigned to this officer"),
    actor: Actor = Depends(require("alert:read")),
    db: Session = Depends(get_DB)
):
    """Open alerts, critical first then oldest first."""
    if actor.role == "tourist":
        return alert_manager.list_open(db, tourist_id=actor.user_id)
    return alert_manager.list_open(db, officer_id=officer_id)


@router.get("/unacknowledged", response_model=List[alert_schema.Alert_get])
def list_unacknowledged(
    actor: Actor = Depends(require("alert:read_all")),
    db: Session = Depends(get_DB)
):
    return alert_manager.list_unacknowledged(db)


@router.get("/statistics", response_model=alert_schema.AlertStatistics_get)
def alert_statistics(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    actor: Actor = Depends(require("alert:statistics")),
    db: Session = Depends(get_DB)
):
    """Defaults to the last 30 days."""
    return alert_manager.statistics(db, start, end)


@router.get("/{alert_id}", response_model=alert_schema.Alert_get)
def get_alert(
    alert_id: str,
    actor: Actor = Depends(require("alert:read")),
    db: Session = Depends(get_DB)
):
    return alert_manager.get_alert_for_actor(db, alert_id, actor.user_id, actor.role)


@router.post("/{alert_id}/assign", response_model=alert_schema.Alert_get)
def assign_alert(
    alert_id: str,
    payload: Optional[alert_schema.AlertAssign] = None,
    actor: Actor = Depends(require("alert:assign")),
    db: Session = Depends(get_DB)
):
    alert = alert_manager.get_alert(db, alert_id)
    officer_id = (payload.officer_id if payload else None) or actor.user_id
    return alert_manager.assign(db, alert, officer_id, actor.user_id)


@router.patch("/{alert_id}/status", response_model=alert_schema.Alert_get)
def update_alert_status(
    alert_id: str,
    payload: alert_schema.AlertStatus_update,
    actor: Actor = Depends(require("alert:update_status")),
    db: Session = Depends(get_DB)
):
    alert = alert_manager.get_alert(db, alert_id)
    return alert_manager.update_status(db, alert, payload.status, actor.user_id, payload.notes)


@router.post("/{alert_id}/resolve", response_model=alert_schema.Alert_get)
def resolve_alert(
    alert_id: str,
    payload: alert_schema.AlertResolve,
    actor: Actor = Depends(require("alert:resolve")),
    db: Session = Depends(get_DB)
):
    alert = alert_manager.get_alert(db, alert_id)
    return alert_manager.resolve(db, alert, payload.outcome, actor.user_id, payload.notes)


@router.post("/{alert_id}/escalate", response_model=alert_schema.Alert_get)
def escalate_alert(
    alert_id: str,
    payload: alert_schema.AlertEscalate,
    actor: Actor = Depends(require("alert:escalate")),
    db: Session = Depends(get_DB)
):
    alert = alert_manager.get_alert(db, alert_id)
    return alert_manager.escalate(db, alert, payload.severity, payload.reason, actor.user_id)
