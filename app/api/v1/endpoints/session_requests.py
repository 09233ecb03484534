# app/api/v1/endpoints/session_requests.py
# Session request endpoints (students who already completed a trial)
#
#   POST /session-requests/              → student creates (trial required)
#   GET  /session-requests/me            → own session requests
#   GET  /session-requests/{id}
#   POST /session-requests/{id}/accept   → verified tutor
#   POST /session-requests/{id}/cancel   → owner
#   POST /session-requests/{id}/extend   → owner, once

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import app.db.base  # noqa: F401
from app.core.dependencies import require_login, require_student, require_tutor
from app.core.exceptions import ForbiddenError
from app.db.session import get_db
from app.models.user import User
from app.schemas.trial_request import (
    AcceptRequest,
    CancelRequest,
    RequestResponse,
    SessionRequestCreate,
)
from app.services import request_service, session_request_service
from app.services.events import EventPublisher, get_event_publisher

router = APIRouter()

KIND = request_service.SESSION


@router.post("/", response_model=RequestResponse, status_code=201, summary="Create a session request")
def create_session_request(
    payload: SessionRequestCreate,
    current_user: User = Depends(require_student),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    request = session_request_service.create_session_request(db, current_user, payload, publisher=publisher)
    return RequestResponse.from_request(request)


@router.get("/me", response_model=List[RequestResponse], summary="My session requests")
def my_session_requests(
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
):
    rows = request_service.list_student_requests(db, KIND, current_user)
    return [RequestResponse.from_request(r) for r in rows]


@router.get("/{request_id}", response_model=RequestResponse, summary="Get a session request")
def get_session_request(
    request_id: UUID,
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
):
    request = request_service.get_request(db, KIND, request_id)
    if not request_service.can_view(request, current_user):
        raise ForbiddenError("You do not have access to this session request")
    return RequestResponse.from_request(request)


@router.post("/{request_id}/accept", response_model=RequestResponse, summary="Tutor accepts a session request")
def accept_session_request(
    request_id: UUID,
    payload: Optional[AcceptRequest] = None,
    current_user: User = Depends(require_tutor),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    request = request_service.accept_request(
        db, KIND, request_id, current_user,
        intro_message=payload.intro_message if payload else None,
        publisher=publisher,
    )
    return RequestResponse.from_request(request)


@router.post("/{request_id}/cancel", response_model=RequestResponse, summary="Cancel a pending session request")
def cancel_session_request(
    request_id: UUID,
    payload: CancelRequest,
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
):
    request = request_service.cancel_request(
        db, KIND, request_id, payload.cancellation_reason, actor=current_user
    )
    return RequestResponse.from_request(request)


@router.post("/{request_id}/extend", response_model=RequestResponse, summary="Extend a pending session request once")
def extend_session_request(
    request_id: UUID,
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
):
    request = request_service.extend_request(db, KIND, request_id, actor=current_user)
    return RequestResponse.from_request(request)
