# app/api/v1/endpoints/trial_requests.py
# Trial request endpoints
#
# Student / guest flow:
#   POST /trial-requests/              → create (guest gets an account + tokens)
#   GET  /trial-requests/me            → own trial requests
#   POST /trial-requests/{id}/cancel   → cancel while PENDING (login or contact email)
#   POST /trial-requests/{id}/extend   → one-time 7 day extension
#
# Tutor flow:
#   POST /trial-requests/{id}/accept   → first verified tutor wins, chat is created
#
# Open requests for a tutor's subjects are listed by GET /matching (matching.py).

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import app.db.base  # noqa: F401
from app.core.dependencies import get_optional_user, require_login, require_tutor
from app.core.exceptions import ForbiddenError, UnauthorizedError
from app.db.session import get_db
from app.models.user import User
from app.schemas.trial_request import (
    AcceptRequest,
    CancelRequest,
    ExtendRequest,
    RequestResponse,
    TrialRequestCreate,
    TrialRequestCreated,
)
from app.services import request_service, trial_request_service
from app.services.events import EventPublisher, get_event_publisher

router = APIRouter()

KIND = request_service.TRIAL


def _require_identity(actor: Optional[User], email: Optional[str]) -> None:
    if actor is None and not email:
        raise UnauthorizedError("Log in or provide the email used for the request")


@router.post(
    "/",
    response_model=TrialRequestCreated,
    status_code=201,
    summary="Create a trial request (member or guest)",
)
def create_trial_request(
    payload: TrialRequestCreate,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """
    Logged-in students create a request for themselves.
    Anonymous callers get a student account (the guardian's for under-18s)
    created in the same transaction, and receive tokens in the response.
    """
    request, tokens = trial_request_service.create_trial_request(
        db, payload, actor=current_user, publisher=publisher
    )
    return TrialRequestCreated(request=RequestResponse.from_request(request), tokens=tokens)


@router.get("/me", response_model=List[RequestResponse], summary="My trial requests")
def my_trial_requests(
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
):
    rows = request_service.list_student_requests(db, KIND, current_user)
    return [RequestResponse.from_request(r) for r in rows]


@router.get("/{request_id}", response_model=RequestResponse, summary="Get a trial request")
def get_trial_request(
    request_id: UUID,
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
):
    request = request_service.get_request(db, KIND, request_id)
    if not request_service.can_view(request, current_user):
        raise ForbiddenError("You do not have access to this trial request")
    return RequestResponse.from_request(request)


@router.post("/{request_id}/accept", response_model=RequestResponse, summary="Tutor accepts a trial request")
def accept_trial_request(
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


@router.post("/{request_id}/cancel", response_model=RequestResponse, summary="Cancel a pending trial request")
def cancel_trial_request(
    request_id: UUID,
    payload: CancelRequest,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    _require_identity(current_user, payload.email)
    request = request_service.cancel_request(
        db, KIND, request_id, payload.cancellation_reason,
        actor=current_user, email=payload.email,
    )
    return RequestResponse.from_request(request)


@router.post("/{request_id}/extend", response_model=RequestResponse, summary="Extend a pending trial request once")
def extend_trial_request(
    request_id: UUID,
    payload: Optional[ExtendRequest] = None,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    email = payload.email if payload else None
    _require_identity(current_user, email)
    request = request_service.extend_request(db, KIND, request_id, actor=current_user, email=email)
    return RequestResponse.from_request(request)
