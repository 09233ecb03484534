# app/services/session_request_service.py
# Session requests: returning students (trial done) looking for a new match.

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import ForbiddenError, InvalidStateError, NotFoundError
from app.models.session_request import SessionRequest
from app.models.subject import Subject
from app.models.trial_request import RequestStatus
from app.models.user import User, UserRole
from app.schemas.trial_request import SessionRequestCreate
from app.services import request_service
from app.services.events import EventPublisher
from app.services.lifecycle import resolve_now

logger = logging.getLogger("lernhub.session_requests")


def create_session_request(
    db: Session,
    student: User,
    payload: SessionRequestCreate,
    publisher: Optional[EventPublisher] = None,
    now: Optional[datetime] = None,
) -> SessionRequest:
    now = resolve_now(now)
    if student.role != UserRole.STUDENT:
        raise ForbiddenError("Only students can create session requests")

    subject = db.query(Subject).filter(
        Subject.id == payload.subject_id, Subject.is_active == True  # noqa: E712
    ).first()
    if not subject:
        raise NotFoundError("Subject not found")

    if not student.has_completed_trial:
        raise InvalidStateError(
            "You must complete a trial session before requesting more sessions"
        )
    request_service.ensure_no_pending_request(db, student.id)

    request = SessionRequest(
        student_id=student.id,
        subject_id=subject.id,
        grade_level=payload.grade_level,
        school_type=payload.school_type,
        description=payload.description,
        learning_goals=payload.learning_goals,
        documents=payload.documents,
        status=RequestStatus.PENDING,
        expires_at=now + timedelta(days=settings.session_request_ttl_days),
        created_at=now,
    )
    db.add(request)
    student.session_requests_count = (student.session_requests_count or 0) + 1
    db.commit()
    db.refresh(request)
    logger.info("Session request %s created by %s", request.id, student.id)

    request_service.notify_new_request(db, request, publisher)
    return request
