# safetrip/Controller/Routes/sessions.py

"""
Session REST API

Endpoints:
- POST /sessions/                       Create a pending session (tourist)
- POST /sessions/{id}/consent           Record tracking consent
- POST /sessions/{id}/activate          Activate (optionally recording consent first)
- POST /sessions/{id}/complete          Complete an active session
- POST /sessions/{id}/terminate         Terminate (owner or admin)
- POST /sessions/{id}/check-in          Manual check-in
- GET  /sessions/active                 Caller's active session
- GET  /sessions/history                Caller's sessions
- GET  /sessions/all/active             Every active session (police/admin)
- GET  /sessions/{id}                   Session details
- GET  /sessions/{id}/verify            Integrity hash check

Identity arrives in the X-User-Id / X-User-Role headers; every endpoint
consults the authorization table before reaching SessionManager.

Usage:
    from safetrip.Controller.Routes import sessions
    app.include_router(sessions.router, prefix="/sessions", tags=["sessions"])
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from safetrip.Controller.deps import Actor, get_DB, require
from safetrip.Core.errors import NotFound, ValidationError
from safetrip.Schemas import tourist_session as session_schema
from safetrip.Services.session_manager import session_manager

router = APIRouter()


# ==========================================================
# 📌 Create
# ==========================================================

@router.post("/", response_model=session_schema.Session_get, status_code=201)
def create_session(
    payload: session_schema.Session_create,
    actor: Actor = Depends(require("session:create")),
    db: Session = Depends(get_DB)
):
    """
    Create a new trip for the calling tourist.

    The session starts 'pending' without consent. Fails with 422 if the
    start date is in the past or the end date is not after it, and with 409
    if the tourist already has a pending or active session.
    """
    return session_manager.create(db, actor.user_id, payload)


# ==========================================================
# 📌 Queries (static paths before /{session_id})
# ==========================================================

@router.get("/active", response_model=session_schema.Session_get)
def get_my_active_session(
    actor: Actor = Depends(require("session:read")),
    db: Session = Depends(get_DB)
):
    session = session_manager.get_active_session(db, actor.user_id)
    if session is None:
        raise NotFound("No active session", {"tourist_id": actor.user_id})
    return session


@router.get("/history", response_model=List[session_schema.Session_summary])
def get_my_history(
    status: Optional[str] = Query(None, pattern='^(pending|active|completed|expired|terminated)$'),
    limit: int = Query(50, ge=1, le=500),
    actor: Actor = Depends(require("session:read")),
    db: Session = Depends(get_DB)
):
    return session_manager.get_history(db, actor.user_id, status=status, limit=limit)


@router.get("/all/active", response_model=List[session_schema.Session_summary])
def list_active_sessions(
    actor: Actor = Depends(require("session:read_all")),
    db: Session = Depends(get_DB)
):
    """Every session currently being tracked (police dashboard)."""
    return session_manager.list_active(db)


@router.get("/{session_id}", response_model=session_schema.Session_get)
def get_session(
    session_id: str,
    actor: Actor = Depends(require("session:read")),
    db: Session = Depends(get_DB)
):
    return session_manager.get_session_for_actor(db, session_id, actor.user_id, actor.role)


@router.get("/{session_id}/verify")
def verify_session(
    session_id: str,
    actor: Actor = Depends(require("session:read")),
    db: Session = Depends(get_DB)
):
    session = session_manager.get_session_for_actor(db, session_id, actor.user_id, actor.role)
    return {
        "session_id": session.session_id,
        "session_hash": session.session_hash,
        "valid": session_manager.verify_integrity(session),
    }


# ==========================================================
# 📌 Lifecycle
# ==========================================================

@router.post("/{session_id}/consent", response_model=session_schema.Session_get)
def give_consent(
    session_id: str,
    payload: session_schema.Session_activate,
    request: Request,
    actor: Actor = Depends(require("session:activate")),
    db: Session = Depends(get_DB)
):
    if not payload.consent_given:
        raise ValidationError("consent_given must be true", {"field": "consent_given"})

    session = session_manager.get_session_for_actor(db, session_id, actor.user_id, actor.role)
    source = request.client.host if request.client else None
    return session_manager.grant_consent(db, session, source)


@router.post("/{session_id}/activate", response_model=session_schema.Session_get)
def activate_session(
    session_id: str,
    request: Request,
    payload: Optional[session_schema.Session_activate] = None,
    actor: Actor = Depends(require("session:activate")),
    db: Session = Depends(get_DB)
):
    """
    Activate a pending session.

    When the body carries consent_given=true and consent was not recorded
    yet, consent is recorded first (the mobile client does both in one
    call). Fails with 409 outside the trip window or without consent.
    """
    session = session_manager.get_session_for_actor(db, session_id, actor.user_id, actor.role)

    if payload is not None and payload.consent_given and not session.consent_given:
        source = request.client.host if request.client else None
        session = session_manager.grant_consent(db, session, source)

    return session_manager.activate(db, session)


@router.post("/{session_id}/complete", response_model=session_schema.Session_get)
def complete_session(
    session_id: str,
    actor: Actor = Depends(require("session:complete")),
    db: Session = Depends(get_DB)
):
    session = session_manager.get_session(db, session_id)
    return session_manager.complete(db, session, actor.user_id)


@router.post("/{session_id}/terminate", response_model=session_schema.Session_get)
def terminate_session(
    session_id: str,
    payload: Optional[session_schema.Session_terminate] = None,
    actor: Actor = Depends(require("session:terminate")),
    db: Session = Depends(get_DB)
):
    session = session_manager.get_session(db, session_id)
    reason = payload.reason if payload else None
    return session_manager.terminate(db, session, actor.user_id, actor.role, reason)


@router.post("/{session_id}/check-in", status_code=201)
def check_in(
    session_id: str,
    payload: session_schema.CheckIn_create,
    actor: Actor = Depends(require("session:check_in")),
    db: Session = Depends(get_DB)
):
    session = session_manager.get_session(db, session_id)
    event = session_manager.record_check_in(db, session, actor.user_id, payload)
    return {
        "event_id": event.id,
        "session_id": event.session_id,
        "event_type": event.event_type,
        "timestamp": event.timestamp,
    }
