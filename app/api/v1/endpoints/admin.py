# app/api/v1/endpoints/admin.py
# Admin portal endpoints -- all require role=admin
#
#   GET  /admin/tutors/pending                 → applicants / unverified tutors
#   POST /admin/tutors/{user_id}/verify        → verify (promotes applicants to tutor)
#   PUT  /admin/tutors/{user_id}/subjects      → set taught subjects
#   POST /admin/subjects                       → add a subject
#   POST /admin/sessions/{id}/complete         → completion override
#   POST /admin/sessions/{id}/no-show          → student never joined
#   POST /admin/sweeps/{name}                  → run a sweep now (external HTTP scheduler)

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import app.db.base  # noqa: F401
from app.core.dependencies import require_admin
from app.core.exceptions import InvalidStateError
from app.db.session import get_db
from app.models.subject import Subject
from app.models.tutor import TutorProfile
from app.models.user import User, UserRole
from app.schemas.admin import (
    PendingTutorItem,
    SubjectCreate,
    SubjectResponse,
    SweepRequest,
    SweepResponse,
    TutorSubjectsUpdate,
)
from app.schemas.session import SessionResponse
from app.schemas.user import TutorProfileResponse
from app.services import session_service, sweeps, tutor_service
from app.services.events import EventPublisher, get_event_publisher
from app.services.lifecycle import resolve_now
from app.services.notification_service import notify_after_commit

router = APIRouter()


# ── Tutor Verification ────────────────────────────────────────────────────────

@router.get(
    "/tutors/pending",
    response_model=List[PendingTutorItem],
    summary="Tutors awaiting verification",
)
def pending_tutors(
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    rows = (
        db.query(User, TutorProfile)
        .join(TutorProfile, TutorProfile.user_id == User.id)
        .filter(
            User.role.in_([UserRole.TUTOR, UserRole.APPLICANT]),
            TutorProfile.is_verified == False,  # noqa: E712
        )
        .order_by(User.created_at)
        .all()
    )
    return [
        PendingTutorItem(
            user_id=user.id,
            full_name=user.full_name,
            email=user.email,
            role=user.role,
            subjects=[s.name for s in profile.subjects],
            created_at=user.created_at,
        )
        for user, profile in rows
    ]


@router.post(
    "/tutors/{user_id}/verify",
    response_model=TutorProfileResponse,
    summary="Verify a tutor",
)
def verify_tutor(
    user_id: UUID,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    profile = tutor_service.verify_tutor(db, user_id)
    notify_after_commit(
        db, [user_id], "verification_approved",
        title="You are now a verified tutor",
        body="You can now accept trial and session requests for your subjects.",
        action_url="/matching",
    )
    return profile


@router.put(
    "/tutors/{user_id}/subjects",
    response_model=TutorProfileResponse,
    summary="Set the subjects a tutor teaches",
)
def set_tutor_subjects(
    user_id: UUID,
    payload: TutorSubjectsUpdate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return tutor_service.set_tutor_subjects(db, user_id, payload.subject_ids)


# ── Subjects ──────────────────────────────────────────────────────────────────

@router.post(
    "/subjects",
    response_model=SubjectResponse,
    status_code=201,
    summary="Add a subject",
)
def create_subject(
    payload: SubjectCreate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    name = payload.name.strip()
    if db.query(Subject.id).filter(Subject.name == name).first():
        raise InvalidStateError("A subject with this name already exists")
    subject = Subject(name=name, is_active=True)
    db.add(subject)
    db.commit()
    db.refresh(subject)
    return subject


# ── Session Overrides ─────────────────────────────────────────────────────────

@router.post(
    "/sessions/{session_id}/complete",
    response_model=SessionResponse,
    summary="Mark a session completed",
)
def complete_session(
    session_id: UUID,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    session = session_service.complete_session(db, session_id, current_user, publisher=publisher)
    return SessionResponse.from_session(session)


@router.post(
    "/sessions/{session_id}/no-show",
    response_model=SessionResponse,
    summary="Mark a session as a no-show",
)
def mark_no_show(
    session_id: UUID,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    session = session_service.mark_no_show(db, session_id, current_user, publisher=publisher)
    return SessionResponse.from_session(session)


# ── Sweeps ────────────────────────────────────────────────────────────────────

@router.post(
    "/sweeps/{name}",
    response_model=SweepResponse,
    summary="Run a periodic sweep now",
)
def run_sweep(
    name: str,
    payload: Optional[SweepRequest] = None,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """
    Same code path as `python -m app.jobs.run_sweeps <name>`.
    Names: sessions, requests, feedback-forfeit, feedback-reminders,
    session-reminders, subscriptions.
    """
    now = resolve_now(payload.now if payload else None)
    counts = sweeps.run_sweep(db, name, now=now, mode=payload.mode if payload else None, publisher=publisher)
    return SweepResponse(sweep=name, ran_at=now, counts=counts)
