# app/services/tutor_service.py
# Tutor directory: verification, taught subjects, eligibility, rating and level.
#
# Counters on TutorProfile are changed with single UPDATE statements so two
# concurrent completions or submissions never lose an increment.

import logging
from datetime import datetime
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.exceptions import ForbiddenError, NotFoundError, ValidationFailureError
from app.models.feedback import FeedbackStatus, TutorSessionFeedback
from app.models.subject import Subject
from app.models.tutor import TutorLevel, TutorProfile, tutor_subjects
from app.models.user import User, UserRole
from app.services.lifecycle import resolve_now

logger = logging.getLogger("lernhub.tutors")

INTERMEDIATE_MIN_SESSIONS = 21
EXPERT_MIN_SESSIONS = 51


def calculate_tutor_level(completed_sessions: int) -> str:
    if completed_sessions >= EXPERT_MIN_SESSIONS:
        return TutorLevel.EXPERT
    if completed_sessions >= INTERMEDIATE_MIN_SESSIONS:
        return TutorLevel.INTERMEDIATE
    return TutorLevel.STARTER


def get_profile(db: Session, user_id: UUID) -> Optional[TutorProfile]:
    return db.query(TutorProfile).filter(TutorProfile.user_id == user_id).first()


def require_verified_tutor(db: Session, user: User, action: str = "perform this action") -> TutorProfile:
    """Tutor role plus admin verification, else ForbiddenError."""
    if user.role != UserRole.TUTOR:
        raise ForbiddenError(f"Only tutors can {action}")
    profile = get_profile(db, user.id)
    if not profile or not profile.is_verified:
        raise ForbiddenError(f"Only verified tutors can {action}")
    return profile


def eligible_tutor_ids(
    db: Session,
    subject_id: UUID,
    exclude: Sequence[UUID] = (),
) -> List[UUID]:
    """Active, verified tutors teaching the subject."""
    query = (
        db.query(TutorProfile.user_id)
        .join(User, User.id == TutorProfile.user_id)
        .join(tutor_subjects, tutor_subjects.c.tutor_profile_id == TutorProfile.id)
        .filter(
            tutor_subjects.c.subject_id == subject_id,
            TutorProfile.is_verified == True,  # noqa: E712
            User.is_active == True,  # noqa: E712
            User.role == UserRole.TUTOR,
        )
    )
    excluded = set(exclude)
    return [row.user_id for row in query.all() if row.user_id not in excluded]


# ── Admin Operations ──────────────────────────────────────────────────────────

def verify_tutor(db: Session, user_id: UUID, now: Optional[datetime] = None) -> TutorProfile:
    now = resolve_now(now)
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    if user.role not in (UserRole.TUTOR, UserRole.APPLICANT):
        raise ForbiddenError("Only tutors and applicants can be verified")

    profile = get_profile(db, user_id)
    if profile is None:
        profile = TutorProfile(user_id=user_id)
        db.add(profile)

    user.role = UserRole.TUTOR
    profile.is_verified = True
    profile.verified_at = now
    db.commit()
    db.refresh(profile)
    logger.info("Tutor %s verified", user_id)
    return profile


def set_tutor_subjects(db: Session, user_id: UUID, subject_ids: Sequence[UUID]) -> TutorProfile:
    profile = get_profile(db, user_id)
    if profile is None:
        raise NotFoundError("Tutor profile not found")

    unique_ids = list(dict.fromkeys(subject_ids))
    subjects = db.query(Subject).filter(Subject.id.in_(unique_ids)).all() if unique_ids else []
    if len(subjects) != len(unique_ids):
        raise ValidationFailureError("One or more subjects do not exist")

    profile.subjects = subjects
    db.commit()
    db.refresh(profile)
    return profile


# ── Counters ──────────────────────────────────────────────────────────────────

def record_completed_session(db: Session, tutor_id: UUID, now: Optional[datetime] = None) -> Optional[str]:
    """
    Count one more completed session and recompute the level.
    Returns the level, or None if the user has no tutor profile. Flushes only.
    """
    now = resolve_now(now)
    db.query(TutorProfile).filter(TutorProfile.user_id == tutor_id).update(
        {TutorProfile.completed_sessions: TutorProfile.completed_sessions + 1},
        synchronize_session=False,
    )
    profile = get_profile(db, tutor_id)
    if profile is None:
        return None
    db.refresh(profile)

    level = calculate_tutor_level(profile.completed_sessions)
    if level != profile.level:
        logger.info("Tutor %s level %s -> %s", tutor_id, profile.level, level)
        profile.level = level
        profile.level_updated_at = now
    db.flush()
    return level


def increment_pending_feedback(db: Session, tutor_id: UUID) -> None:
    db.query(TutorProfile).filter(TutorProfile.user_id == tutor_id).update(
        {TutorProfile.pending_feedback_count: TutorProfile.pending_feedback_count + 1},
        synchronize_session=False,
    )


def decrement_pending_feedback(db: Session, tutor_id: UUID) -> None:
    # Never below zero
    db.query(TutorProfile).filter(
        TutorProfile.user_id == tutor_id,
        TutorProfile.pending_feedback_count > 0,
    ).update(
        {TutorProfile.pending_feedback_count: TutorProfile.pending_feedback_count - 1},
        synchronize_session=False,
    )


def recompute_rating(db: Session, tutor_id: UUID) -> Optional[float]:
    """Running average = mean of every SUBMITTED rating, one decimal place."""
    avg, count = (
        db.query(func.avg(TutorSessionFeedback.rating), func.count(TutorSessionFeedback.id))
        .filter(
            TutorSessionFeedback.tutor_id == tutor_id,
            TutorSessionFeedback.status == FeedbackStatus.SUBMITTED,
            TutorSessionFeedback.rating.isnot(None),
        )
        .one()
    )
    average = round(float(avg), 1) if avg is not None else None
    db.query(TutorProfile).filter(TutorProfile.user_id == tutor_id).update(
        {
            TutorProfile.average_rating: average,
            TutorProfile.ratings_count: count,
        },
        synchronize_session=False,
    )
    return average
