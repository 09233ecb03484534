# app/services/completion_service.py
# Session completion and its follow-up work.
#
# The COMPLETED transition commits on its own. Feedback creation, tutor level
# and subscription hours then run one by one, each in its own transaction:
# a failure there is logged and rolled back, never undoing the completion.

import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from app.models.feedback import FeedbackStatus, TutorSessionFeedback
from app.models.tutoring_session import (
    SessionStatus,
    TeacherCompletionStatus,
    TutoringSession,
)
from app.services import subscription_service, tutor_service
from app.services.events import EventPublisher, chat_topic, emit, session_topic, user_topic
from app.services.lifecycle import (
    SESSION_TRANSITIONS,
    feedback_due_date,
    resolve_now,
    sources_for,
)
from app.services.notification_service import notify_after_commit

logger = logging.getLogger("lernhub.sessions")

FEEDBACK_STATUSES = (SessionStatus.COMPLETED, SessionStatus.NO_SHOW)


def create_pending_feedback(
    db: Session, session: TutoringSession, now: Optional[datetime] = None
) -> TutorSessionFeedback:
    """One PENDING feedback per session; returns the existing row on repeat calls."""
    now = resolve_now(now)
    existing = db.query(TutorSessionFeedback).filter(
        TutorSessionFeedback.session_id == session.id
    ).first()
    if existing:
        return existing

    feedback = TutorSessionFeedback(
        session_id=session.id,
        tutor_id=session.tutor_id,
        student_id=session.student_id,
        due_date=feedback_due_date(session.completed_at or now),
        status=FeedbackStatus.PENDING,
        created_at=now,
    )
    db.add(feedback)
    db.query(TutoringSession).filter(TutoringSession.id == session.id).update(
        {TutoringSession.teacher_completion_status: TeacherCompletionStatus.PENDING},
        synchronize_session=False,
    )
    tutor_service.increment_pending_feedback(db, session.tutor_id)
    db.flush()
    return feedback


def _best_effort(db: Session, label: str, session_id, fn) -> None:
    try:
        fn()
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Completion side effect '%s' failed for session %s", label, session_id)


def run_side_effects(db: Session, session: TutoringSession, now: Optional[datetime] = None) -> None:
    now = resolve_now(now)
    hours = (session.duration or 0) / 60

    _best_effort(db, "feedback", session.id, lambda: create_pending_feedback(db, session, now))
    if session.status == SessionStatus.COMPLETED:
        _best_effort(db, "tutor_level", session.id,
                     lambda: tutor_service.record_completed_session(db, session.tutor_id, now))
        _best_effort(db, "subscription_hours", session.id,
                     lambda: subscription_service.increment_hours_taken(db, session.student_id, hours, now))


def finish_session(
    db: Session,
    session: TutoringSession,
    target: str = SessionStatus.COMPLETED,
    allowed_from: Optional[Iterable[str]] = None,
    publisher: Optional[EventPublisher] = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Atomic move to COMPLETED (or NO_SHOW) from any allowed status.
    Returns False when another writer got there first (e.g. the sweep
    already persisted EXPIRED); the caller decides whether that is an error.
    """
    now = resolve_now(now)
    sources = set(allowed_from) if allowed_from is not None else set(sources_for(SESSION_TRANSITIONS, target))
    updated = db.query(TutoringSession).filter(
        TutoringSession.id == session.id,
        TutoringSession.status.in_(sources),
    ).update({
        TutoringSession.status: target,
        TutoringSession.completed_at: now,
    }, synchronize_session=False)
    if updated != 1:
        db.rollback()
        return False

    db.commit()
    db.refresh(session)
    logger.info("Session %s -> %s", session.id, target)

    run_side_effects(db, session, now)
    db.refresh(session)

    notify_after_commit(
        db, [session.student_id, session.tutor_id], "session_completed",
        title="Session completed",
        body=f"Your {session.subject} session has been marked {target.replace('_', ' ').lower()}.",
        extra_data={"session_id": str(session.id)},
        action_url=f"/sessions/{session.id}",
    )
    topics = [session_topic(session.id), user_topic(session.student_id), user_topic(session.tutor_id)]
    if session.chat_id:
        topics.append(chat_topic(session.chat_id))
    emit(publisher, topics, "session_status_changed", {
        "session_id": str(session.id),
        "status": target,
    })
    return True
