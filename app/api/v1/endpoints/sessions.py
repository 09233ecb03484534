# app/api/v1/endpoints/sessions.py
# Tutoring session endpoints
#
#   GET  /sessions/me                         → my sessions (?status= filters on effective status)
#   GET  /sessions/{id}
#   POST /sessions/{id}/cancel                → either party, SCHEDULED / STARTING_SOON only
#   POST /sessions/{id}/reschedule            → either party, >= 10 min before start
#   POST /sessions/{id}/reschedule/respond    → the other party approves or rejects
#
# Manual completion and no-show are admin overrides (admin.py); the tutor's
# own path to COMPLETED is submitting feedback once the session is over.
#
# Time-driven transitions (STARTING_SOON, IN_PROGRESS, EXPIRED) are written
# by the status sweep (app/jobs/run_sweeps.py), never by these endpoints.

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

import app.db.base  # noqa: F401
from app.core.dependencies import require_login
from app.db.session import get_db
from app.models.user import User
from app.schemas.session import (
    CancelSessionRequest,
    RescheduleDecision,
    RescheduleRequest,
    SessionResponse,
)
from app.services import session_service
from app.services.events import EventPublisher, get_event_publisher
from app.services.lifecycle import resolve_now

router = APIRouter()


@router.get("/me", response_model=List[SessionResponse], summary="My sessions")
def my_sessions(
    status: Optional[str] = Query(None, description="Filter by effective status"),
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
):
    now = resolve_now()
    sessions = session_service.list_sessions(db, current_user, status=status, now=now)
    return [SessionResponse.from_session(s, now) for s in sessions]


@router.get("/{session_id}", response_model=SessionResponse, summary="Get a session")
def get_session(
    session_id: UUID,
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
):
    return SessionResponse.from_session(session_service.get_session_for_user(db, session_id, current_user))


@router.post("/{session_id}/cancel", response_model=SessionResponse, summary="Cancel a session")
def cancel_session(
    session_id: UUID,
    payload: CancelSessionRequest,
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    session = session_service.cancel_session(db, session_id, current_user, payload.reason, publisher=publisher)
    return SessionResponse.from_session(session)


@router.post("/{session_id}/reschedule", response_model=SessionResponse, summary="Request a reschedule")
def request_reschedule(
    session_id: UUID,
    payload: RescheduleRequest,
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    session = session_service.request_reschedule(
        db, session_id, current_user, payload.new_start_time, payload.reason, publisher=publisher
    )
    return SessionResponse.from_session(session)


@router.post(
    "/{session_id}/reschedule/respond",
    response_model=SessionResponse,
    summary="Approve or reject a reschedule request",
)
def respond_reschedule(
    session_id: UUID,
    payload: RescheduleDecision,
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    session = session_service.respond_reschedule(
        db, session_id, current_user, payload.approve, publisher=publisher
    )
    return SessionResponse.from_session(session)
