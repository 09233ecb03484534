# app/services/trial_request_service.py
# Trial request creation for members and guests.
# Accept / cancel / extend / sweeps are shared with session requests
# (app/services/request_service.py).

import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationFailureError,
)
from app.models.subject import Subject
from app.models.trial_request import RequestStatus, TrialRequest
from app.models.user import User, UserRole
from app.schemas.auth import TokenResponse
from app.schemas.trial_request import TrialRequestCreate
from app.services import auth_service, request_service
from app.services.events import EventPublisher
from app.services.lifecycle import resolve_now

logger = logging.getLogger("lernhub.trial_requests")


def validate_student_info(payload: TrialRequestCreate) -> None:
    """Age-conditional contact rules. Raises before anything is written."""
    info = payload.student_info
    if info.is_under_18:
        guardian = info.guardian_info
        if not guardian or not guardian.name or not guardian.email or not guardian.password:
            raise ValidationFailureError("Guardian information is required for students under 18")
        return
    if not info.email:
        raise ValidationFailureError("Email is required for students 18 and above")
    if not info.password:
        raise ValidationFailureError("Password is required for students 18 and above")


def account_email(payload: TrialRequestCreate) -> str:
    info = payload.student_info
    email = info.guardian_info.email if info.is_under_18 else info.email
    return email.strip().lower()


def _check_member_eligibility(db: Session, student: User) -> None:
    if student.role != UserRole.STUDENT:
        raise ForbiddenError("Only students can create trial requests")
    if student.has_completed_trial:
        raise InvalidStateError(
            "You have already completed a trial session. "
            "Please use the session request feature for additional tutoring sessions."
        )
    request_service.ensure_no_pending_request(db, student.id)


def _check_guest_eligibility(db: Session, email: str) -> None:
    if auth_service.email_taken(db, email):
        raise InvalidStateError(
            "An account with this email already exists. Please log in to create a trial request."
        )

    by_email = or_(TrialRequest.student_email == email, TrialRequest.guardian_email == email)
    accepted = db.query(TrialRequest.id).filter(
        by_email, TrialRequest.status == RequestStatus.ACCEPTED
    ).first()
    if accepted:
        raise InvalidStateError(
            "You have already completed a trial with this email. Please log in to request more sessions."
        )
    pending = db.query(TrialRequest.id).filter(
        by_email, TrialRequest.status == RequestStatus.PENDING
    ).first()
    if pending:
        raise InvalidStateError(
            "A pending trial request already exists for this email. "
            "Please wait for a tutor to accept or cancel it."
        )


def _provision_guest(db: Session, payload: TrialRequestCreate) -> User:
    """Guardian is the account holder for minors, the student otherwise."""
    info = payload.student_info
    if info.is_under_18:
        guardian = info.guardian_info
        return auth_service.create_user(
            db,
            email=guardian.email,
            password=guardian.password,
            full_name=guardian.name or info.name,
            phone=guardian.phone,
            is_guest_signup=True,
        )
    return auth_service.create_user(
        db,
        email=info.email,
        password=info.password,
        full_name=info.name,
        date_of_birth=info.date_of_birth,
        is_guest_signup=True,
    )


def create_trial_request(
    db: Session,
    payload: TrialRequestCreate,
    actor: Optional[User] = None,
    publisher: Optional[EventPublisher] = None,
    now: Optional[datetime] = None,
) -> Tuple[TrialRequest, Optional[TokenResponse]]:
    """
    Member (actor set) or guest (actor None) trial request.
    Guests get a student account and a token pair in the same commit.
    """
    now = resolve_now(now)

    subject = db.query(Subject).filter(
        Subject.id == payload.subject_id, Subject.is_active == True  # noqa: E712
    ).first()
    if not subject:
        raise NotFoundError("Subject not found")

    validate_student_info(payload)

    tokens = None
    if actor is not None:
        _check_member_eligibility(db, actor)
        student = actor
    else:
        email = account_email(payload)
        _check_guest_eligibility(db, email)
        student = _provision_guest(db, payload)

    info = payload.student_info
    guardian = info.guardian_info if info.is_under_18 else None
    request = TrialRequest(
        student_id=student.id,
        student_name=info.name,
        student_email=info.email.lower() if info.email else None,
        student_is_under_18=info.is_under_18,
        student_date_of_birth=info.date_of_birth,
        guardian_name=guardian.name if guardian else None,
        guardian_email=guardian.email.lower() if guardian and guardian.email else None,
        guardian_phone=guardian.phone if guardian else None,
        subject_id=subject.id,
        grade_level=payload.grade_level,
        school_type=payload.school_type,
        description=payload.description,
        learning_goals=payload.learning_goals,
        preferred_language=payload.preferred_language,
        preferred_date_time=payload.preferred_date_time,
        documents=payload.documents,
        status=RequestStatus.PENDING,
        expires_at=now + timedelta(hours=settings.trial_request_ttl_hours),
        created_at=now,
    )
    db.add(request)
    student.trial_requests_count = (student.trial_requests_count or 0) + 1

    if actor is None:
        tokens = auth_service.issue_tokens(db, student)

    db.commit()
    db.refresh(request)
    logger.info(
        "Trial request %s created for %s (%s)",
        request.id, student.id, "member" if actor else "guest",
    )

    request_service.notify_new_request(db, request, publisher)
    return request, tokens
