# app/api/v1/endpoints/feedback.py
# Tutor session feedback
#
#   POST /feedback/                      → tutor submits (hard deadline: 3rd of next month)
#   GET  /feedback/pending               → tutor's outstanding feedback
#   GET  /feedback/submitted             → tutor's submitted feedback
#   GET  /feedback/received              → student's received feedback
#   GET  /feedback/session/{session_id}  → either party of the session

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import app.db.base  # noqa: F401
from app.core.dependencies import require_login, require_student, require_tutor
from app.db.session import get_db
from app.models.feedback import FeedbackStatus
from app.models.user import User
from app.schemas.feedback import FeedbackResponse, SubmitFeedbackRequest
from app.services import feedback_service
from app.services.events import EventPublisher, get_event_publisher
from app.services.lifecycle import resolve_now

router = APIRouter()


@router.post("/", response_model=FeedbackResponse, status_code=201, summary="Submit session feedback")
def submit_feedback(
    payload: SubmitFeedbackRequest,
    current_user: User = Depends(require_tutor),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """
    A session whose end time has passed but was never marked completed is
    completed here first, then the feedback is recorded.
    """
    feedback = feedback_service.submit_feedback(
        db, current_user, payload.session_id,
        rating=payload.rating,
        feedback_type=payload.feedback_type,
        text=payload.feedback_text,
        audio_url=payload.feedback_audio_url,
        audio_duration=payload.audio_duration,
        publisher=publisher,
    )
    return FeedbackResponse.from_feedback(feedback)


@router.get("/pending", response_model=List[FeedbackResponse], summary="My pending feedback")
def pending_feedback(
    current_user: User = Depends(require_tutor),
    db: Session = Depends(get_db),
):
    now = resolve_now()
    rows = feedback_service.list_tutor_feedback(db, current_user, FeedbackStatus.PENDING)
    return [FeedbackResponse.from_feedback(f, now) for f in rows]


@router.get("/submitted", response_model=List[FeedbackResponse], summary="My submitted feedback")
def submitted_feedback(
    current_user: User = Depends(require_tutor),
    db: Session = Depends(get_db),
):
    rows = feedback_service.list_tutor_feedback(db, current_user, FeedbackStatus.SUBMITTED)
    return [FeedbackResponse.from_feedback(f) for f in rows]


@router.get("/received", response_model=List[FeedbackResponse], summary="Feedback I received")
def received_feedback(
    current_user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    return [FeedbackResponse.from_feedback(f) for f in feedback_service.list_received_feedback(db, current_user)]


@router.get("/session/{session_id}", response_model=FeedbackResponse, summary="Feedback for a session")
def session_feedback(
    session_id: UUID,
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
):
    return FeedbackResponse.from_feedback(feedback_service.get_feedback_for_session(db, session_id, current_user))
