# app/services/feedback_service.py
# Tutor session feedback: hard monthly deadline, forfeiture, reminders.
#
# A PENDING feedback row is created when a session completes
# (app/services/completion_service.py). From there:
#   submit_feedback           PENDING → SUBMITTED   (tutor, now <= due_date)
#   forfeit_overdue_feedback  PENDING → forfeited   (sweep, now > due_date)
# Submission after the due date is rejected, never accepted as "late".

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.exceptions import (
    DeadlineExceededError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationFailureError,
)
from app.models.feedback import FeedbackStatus, FeedbackType, TutorSessionFeedback
from app.models.tutoring_session import TeacherCompletionStatus, TutoringSession
from app.models.user import User, UserRole
from app.services import completion_service, tutor_service
from app.services.events import EventPublisher, chat_topic, emit, user_topic
from app.services.lifecycle import (
    FEEDBACK_TRANSITIONS,
    SESSION_LIVE,
    as_utc,
    check_transition,
    resolve_now,
    session_is_over,
)
from app.services.notification_service import notify, notify_after_commit

logger = logging.getLogger("lernhub.feedback")

MIN_TEXT_LENGTH = 10
MAX_TEXT_LENGTH = 2000
MAX_AUDIO_SECONDS = 60


def validate_content(
    rating: int,
    feedback_type: str,
    text: Optional[str],
    audio_url: Optional[str],
    audio_duration: Optional[int],
) -> None:
    if rating is None or not 1 <= rating <= 5:
        raise ValidationFailureError("Rating must be between 1 and 5")

    if feedback_type == FeedbackType.TEXT:
        if audio_url:
            raise ValidationFailureError("Text feedback cannot include an audio recording")
        length = len(text.strip()) if text else 0
        if length < MIN_TEXT_LENGTH:
            raise ValidationFailureError(
                f"Feedback text must be at least {MIN_TEXT_LENGTH} characters"
            )
        if length > MAX_TEXT_LENGTH:
            raise ValidationFailureError(
                f"Feedback text cannot exceed {MAX_TEXT_LENGTH} characters"
            )
    elif feedback_type == FeedbackType.AUDIO:
        if text and text.strip():
            raise ValidationFailureError("Audio feedback cannot include text")
        if not audio_url:
            raise ValidationFailureError("Audio URL is required for audio feedback")
        if audio_duration is None or audio_duration <= 0:
            raise ValidationFailureError("Audio duration is required for audio feedback")
        if audio_duration > MAX_AUDIO_SECONDS:
            raise ValidationFailureError(
                f"Audio feedback cannot be longer than {MAX_AUDIO_SECONDS} seconds"
            )
    else:
        raise ValidationFailureError("Feedback type must be TEXT or AUDIO")


def _get_feedback_for_session(db: Session, session_id: UUID) -> Optional[TutorSessionFeedback]:
    return db.query(TutorSessionFeedback).filter(
        TutorSessionFeedback.session_id == session_id
    ).first()


def submit_feedback(
    db: Session,
    tutor: User,
    session_id: UUID,
    rating: int,
    feedback_type: str,
    text: Optional[str] = None,
    audio_url: Optional[str] = None,
    audio_duration: Optional[int] = None,
    publisher: Optional[EventPublisher] = None,
    now: Optional[datetime] = None,
) -> TutorSessionFeedback:
    now = resolve_now(now)
    session = db.query(TutoringSession).filter(TutoringSession.id == session_id).first()
    if not session:
        raise NotFoundError("Session not found")
    if session.tutor_id != tutor.id:
        raise ForbiddenError("You can only submit feedback for your own sessions")
    # Content is checked before lazy completion or feedback creation can write anything
    validate_content(rating, feedback_type, text, audio_url, audio_duration)

    # A live session whose window has ended completes on first feedback attempt
    if session.status in SESSION_LIVE and session_is_over(session, now):
        completion_service.finish_session(db, session, publisher=publisher, now=now)
        db.refresh(session)

    if session.status not in completion_service.FEEDBACK_STATUSES:
        raise InvalidStateError(
            "Feedback can only be submitted for completed sessions",
            details={"status": session.status},
        )

    feedback = _get_feedback_for_session(db, session.id)
    if feedback is None:
        feedback = completion_service.create_pending_feedback(db, session, now)
        db.commit()

    if feedback.status == FeedbackStatus.SUBMITTED:
        raise InvalidStateError("Feedback already submitted")
    if feedback.payment_forfeited:
        raise DeadlineExceededError("Feedback deadline has passed and payment was forfeited")
    if now > as_utc(feedback.due_date):
        raise DeadlineExceededError(
            "Feedback deadline has passed",
            details={"due_date": as_utc(feedback.due_date).isoformat()},
        )

    check_transition(FEEDBACK_TRANSITIONS, feedback.status, FeedbackStatus.SUBMITTED,
                     "Feedback already submitted")

    updated = db.query(TutorSessionFeedback).filter(
        TutorSessionFeedback.id == feedback.id,
        TutorSessionFeedback.status == FeedbackStatus.PENDING,
        TutorSessionFeedback.payment_forfeited == False,  # noqa: E712
    ).update({
        TutorSessionFeedback.status: FeedbackStatus.SUBMITTED,
        TutorSessionFeedback.rating: rating,
        TutorSessionFeedback.feedback_type: feedback_type,
        TutorSessionFeedback.feedback_text: text.strip() if feedback_type == FeedbackType.TEXT else None,
        TutorSessionFeedback.feedback_audio_url: audio_url if feedback_type == FeedbackType.AUDIO else None,
        TutorSessionFeedback.audio_duration: audio_duration if feedback_type == FeedbackType.AUDIO else None,
        TutorSessionFeedback.submitted_at: now,
        TutorSessionFeedback.is_late: False,
    }, synchronize_session=False)
    if updated != 1:
        db.rollback()
        raise InvalidStateError("Feedback already submitted")

    db.query(TutoringSession).filter(TutoringSession.id == session.id).update({
        TutoringSession.tutor_feedback_id: feedback.id,
        TutoringSession.teacher_completion_status: TeacherCompletionStatus.COMPLETED,
        TutoringSession.teacher_completed_at: now,
    }, synchronize_session=False)
    tutor_service.decrement_pending_feedback(db, tutor.id)
    average = tutor_service.recompute_rating(db, tutor.id)
    db.commit()
    db.refresh(feedback)
    logger.info("Feedback %s submitted for session %s (rating %s)", feedback.id, session.id, rating)

    notify_after_commit(
        db, [session.student_id], "feedback_submitted",
        title="New feedback from your tutor",
        body=f"{tutor.full_name} left feedback on your {session.subject} session.",
        extra_data={"session_id": str(session.id), "feedback_id": str(feedback.id)},
        action_url=f"/sessions/{session.id}",
    )
    topics = [user_topic(session.student_id), user_topic(session.tutor_id)]
    if session.chat_id:
        topics.insert(0, chat_topic(session.chat_id))
    emit(publisher, topics, "feedback_submitted", {
        "session_id": str(session.id),
        "feedback_id": str(feedback.id),
        "rating": rating,
        "average_rating": average,
    })
    return feedback


# ── Sweeps ────────────────────────────────────────────────────────────────────

def forfeit_overdue_feedback(db: Session, now: Optional[datetime] = None) -> int:
    """
    Forfeit payment for every PENDING feedback past its due date.
    Guarded by payment_forfeited == False, so re-running is a no-op.
    """
    now = resolve_now(now)
    overdue = db.query(TutorSessionFeedback).filter(
        TutorSessionFeedback.status == FeedbackStatus.PENDING,
        TutorSessionFeedback.payment_forfeited == False,  # noqa: E712
        TutorSessionFeedback.due_date < now,
    ).all()

    forfeited: List[TutorSessionFeedback] = []
    for feedback in overdue:
        session = feedback.session
        amount = session.total_price if session else 0.0
        updated = db.query(TutorSessionFeedback).filter(
            TutorSessionFeedback.id == feedback.id,
            TutorSessionFeedback.status == FeedbackStatus.PENDING,
            TutorSessionFeedback.payment_forfeited == False,  # noqa: E712
        ).update({
            TutorSessionFeedback.payment_forfeited: True,
            TutorSessionFeedback.forfeited_amount: amount,
            TutorSessionFeedback.forfeited_at: now,
        }, synchronize_session=False)
        if not updated:
            continue
        db.query(TutoringSession).filter(TutoringSession.id == feedback.session_id).update(
            {TutoringSession.teacher_completion_status: TeacherCompletionStatus.NOT_APPLICABLE},
            synchronize_session=False,
        )
        tutor_service.decrement_pending_feedback(db, feedback.tutor_id)
        forfeited.append(feedback)
    db.commit()

    for feedback in forfeited:
        db.refresh(feedback)
        notify_after_commit(
            db, [feedback.tutor_id], "feedback_forfeited",
            title="Session payment forfeited",
            body=(
                f"Feedback for your session was not submitted by "
                f"{as_utc(feedback.due_date):%Y-%m-%d}. "
                f"The payment of {feedback.forfeited_amount:.2f} EUR has been forfeited."
            ),
            extra_data={"session_id": str(feedback.session_id), "feedback_id": str(feedback.id)},
        )
    logger.info("Forfeited %d overdue feedback(s) at %s", len(forfeited), now.isoformat())
    return len(forfeited)


def feedbacks_due_within(db: Session, days: int, now: Optional[datetime] = None) -> List[TutorSessionFeedback]:
    """PENDING, not forfeited, due between now and now + days. Read-only."""
    now = resolve_now(now)
    return db.query(TutorSessionFeedback).filter(
        TutorSessionFeedback.status == FeedbackStatus.PENDING,
        TutorSessionFeedback.payment_forfeited == False,  # noqa: E712
        TutorSessionFeedback.due_date >= now,
        TutorSessionFeedback.due_date <= now + timedelta(days=days),
    ).order_by(TutorSessionFeedback.due_date).all()


def send_feedback_reminders(
    db: Session, horizons: List[int], now: Optional[datetime] = None
) -> Dict[int, int]:
    """
    Remind tutors of feedback due within each horizon (days), narrowest
    first, so each feedback is reminded once by the tightest horizon it fits.
    Never changes feedback state.
    """
    now = resolve_now(now)
    sent: Dict[int, int] = {}
    reminded = set()
    for days in sorted(horizons):
        sent[days] = 0
        for feedback in feedbacks_due_within(db, days, now):
            if feedback.id in reminded:
                continue
            reminded.add(feedback.id)
            try:
                notify(
                    db, feedback.tutor_id, "feedback_due",
                    title=f"Feedback due within {days} day{'s' if days != 1 else ''}",
                    body=(
                        f"Submit your session feedback by "
                        f"{as_utc(feedback.due_date):%Y-%m-%d %H:%M} UTC "
                        f"or the session payment will be forfeited."
                    ),
                    extra_data={"session_id": str(feedback.session_id), "feedback_id": str(feedback.id)},
                    action_url=f"/sessions/{feedback.session_id}",
                )
                db.commit()
                sent[days] += 1
            except Exception:
                db.rollback()
                logger.exception("Feedback reminder failed for %s", feedback.id)
    logger.info("Feedback reminders sent: %s", sent)
    return sent


# ── Listings ──────────────────────────────────────────────────────────────────

def list_tutor_feedback(db: Session, tutor: User, status: str) -> List[TutorSessionFeedback]:
    query = db.query(TutorSessionFeedback).filter(
        TutorSessionFeedback.tutor_id == tutor.id,
        TutorSessionFeedback.status == status,
    )
    if status == FeedbackStatus.PENDING:
        return query.order_by(TutorSessionFeedback.due_date).all()
    return query.order_by(TutorSessionFeedback.submitted_at.desc()).all()


def list_received_feedback(db: Session, student: User) -> List[TutorSessionFeedback]:
    return db.query(TutorSessionFeedback).filter(
        TutorSessionFeedback.student_id == student.id,
        TutorSessionFeedback.status == FeedbackStatus.SUBMITTED,
    ).order_by(TutorSessionFeedback.submitted_at.desc()).all()


def get_feedback_for_session(db: Session, session_id: UUID, user: User) -> TutorSessionFeedback:
    feedback = _get_feedback_for_session(db, session_id)
    if not feedback:
        raise NotFoundError("Feedback not found")
    if user.role != UserRole.ADMIN and user.id not in (feedback.tutor_id, feedback.student_id):
        raise ForbiddenError("You can only view feedback for your own sessions")
    return feedback
