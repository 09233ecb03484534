from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import (
    DeadlineExceededError,
    ForbiddenError,
    InvalidStateError,
    ValidationFailureError,
)
from app.models.feedback import FeedbackStatus, FeedbackType, TutorSessionFeedback
from app.models.tutor import TutorProfile
from app.models.tutoring_session import SessionStatus, TeacherCompletionStatus, TutoringSession
from app.models.user import UserRole
from app.services import feedback_service, session_service
from app.services.lifecycle import effective_status, feedback_due_date
from conftest import auth_header, make_session, make_tutor, make_user

JAN_15 = datetime(2025, 1, 15, 16, 0, tzinfo=timezone.utc)
FEB_DUE = datetime(2025, 2, 3, 23, 59, 59, 999000, tzinfo=timezone.utc)

GOOD_TEXT = "Worked through linear equations, solid progress."


@pytest.fixture
def completed(db):
    """A 60 minute session on 15 Jan 2025, closed by an admin."""
    student = make_user(db, "student@example.com")
    tutor = make_tutor(db, "tutor@example.com")
    admin = make_user(db, "admin@example.com", role=UserRole.ADMIN)
    session = make_session(db, student, tutor, JAN_15, price_per_hour=28.0)
    session_service.complete_session(db, session.id, admin, now=datetime(2025, 1, 15, 17, 5, tzinfo=timezone.utc))
    return student, tutor, session


def pending_feedback(db, session):
    return db.query(TutorSessionFeedback).filter(TutorSessionFeedback.session_id == session.id).one()


def submit(db, tutor, session, now, **overrides):
    fields = {"rating": 5, "feedback_type": FeedbackType.TEXT, "text": GOOD_TEXT}
    fields.update(overrides)
    return feedback_service.submit_feedback(db, tutor, session.id, now=now, **fields)


# ── Due date ──────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("completed_at, due", [
    (datetime(2025, 1, 1, 0, 0, tzinfo=timezone.utc), FEB_DUE),
    (datetime(2025, 1, 31, 23, 59, tzinfo=timezone.utc), FEB_DUE),
    (datetime(2025, 12, 20, 9, 0, tzinfo=timezone.utc),
     datetime(2026, 1, 3, 23, 59, 59, 999000, tzinfo=timezone.utc)),
])
def test_due_date_is_third_of_next_month(completed_at, due):
    assert feedback_due_date(completed_at) == due


# ── Submission ────────────────────────────────────────────────────────────────

def test_submit_before_due_date(db, completed):
    student, tutor, session = completed
    assert pending_feedback(db, session).due_date == FEB_DUE

    feedback = submit(db, tutor, session, now=datetime(2025, 2, 2, 10, 0, tzinfo=timezone.utc), rating=4)

    assert feedback.status == FeedbackStatus.SUBMITTED
    assert feedback.rating == 4
    assert feedback.is_late is False
    db.refresh(session)
    assert session.teacher_completion_status == TeacherCompletionStatus.COMPLETED
    assert session.tutor_feedback_id == feedback.id
    profile = db.query(TutorProfile).filter(TutorProfile.user_id == tutor.id).one()
    assert profile.average_rating == 4.0


def test_submit_on_the_last_millisecond(db, completed):
    _, tutor, session = completed
    feedback = submit(db, tutor, session, now=FEB_DUE)
    assert feedback.status == FeedbackStatus.SUBMITTED


def test_late_submission_is_rejected_and_forfeited(db, completed):
    _, tutor, session = completed
    late = datetime(2025, 2, 4, 0, 0, tzinfo=timezone.utc)

    with pytest.raises(DeadlineExceededError):
        submit(db, tutor, session, now=late)
    db.expire_all()
    feedback = pending_feedback(db, session)
    assert feedback.status == FeedbackStatus.PENDING
    assert effective_status(feedback, late) == "OVERDUE"

    assert feedback_service.forfeit_overdue_feedback(db, now=late) == 1
    db.refresh(feedback)
    assert feedback.payment_forfeited is True
    assert feedback.forfeited_amount == pytest.approx(28.0)
    assert feedback.forfeited_at == late
    assert effective_status(feedback, late) == "FORFEITED"

    with pytest.raises(DeadlineExceededError, match="forfeited"):
        submit(db, tutor, session, now=late)


def test_forfeiture_is_idempotent(db, completed):
    late = datetime(2025, 2, 10, tzinfo=timezone.utc)
    assert feedback_service.forfeit_overdue_feedback(db, now=late) == 1
    assert feedback_service.forfeit_overdue_feedback(db, now=late) == 0


def test_forfeiture_skips_feedback_not_yet_due(db, completed):
    assert feedback_service.forfeit_overdue_feedback(db, now=FEB_DUE) == 0


def test_submitted_feedback_is_never_forfeited(db, completed):
    _, tutor, session = completed
    submit(db, tutor, session, now=datetime(2025, 1, 20, tzinfo=timezone.utc))
    assert feedback_service.forfeit_overdue_feedback(db, now=datetime(2025, 3, 1, tzinfo=timezone.utc)) == 0


def test_second_submission_is_rejected(db, completed):
    _, tutor, session = completed
    now = datetime(2025, 1, 20, tzinfo=timezone.utc)
    submit(db, tutor, session, now=now)
    with pytest.raises(InvalidStateError, match="already submitted"):
        submit(db, tutor, session, now=now)


def test_only_the_sessions_tutor_submits(db, completed):
    _, _, session = completed
    other = make_tutor(db, "other@example.com")
    with pytest.raises(ForbiddenError):
        submit(db, other, session, now=datetime(2025, 1, 20, tzinfo=timezone.utc))


def test_live_session_completes_on_first_feedback(db):
    student = make_user(db, "student@example.com")
    tutor = make_tutor(db, "tutor@example.com")
    session = make_session(db, student, tutor, JAN_15)
    now = datetime(2025, 1, 15, 18, 0, tzinfo=timezone.utc)

    feedback = submit(db, tutor, session, now=now)

    db.refresh(session)
    assert session.status == SessionStatus.COMPLETED
    assert session.completed_at == now
    assert feedback.due_date == FEB_DUE


def test_invalid_feedback_leaves_a_live_session_untouched(db):
    student = make_user(db, "student@example.com")
    tutor = make_tutor(db, "tutor@example.com")
    session = make_session(db, student, tutor, JAN_15, status=SessionStatus.IN_PROGRESS)

    with pytest.raises(ValidationFailureError):
        submit(db, tutor, session, now=datetime(2025, 1, 15, 17, 30, tzinfo=timezone.utc), rating=0)

    db.expire_all()
    assert db.get(TutoringSession, session.id).status == SessionStatus.IN_PROGRESS
    assert db.query(TutorSessionFeedback).filter(TutorSessionFeedback.session_id == session.id).count() == 0
    profile = db.query(TutorProfile).filter(TutorProfile.user_id == tutor.id).one()
    assert profile.completed_sessions == 0


def test_feedback_needs_a_finished_session(db):
    student = make_user(db, "student@example.com")
    tutor = make_tutor(db, "tutor@example.com")
    session = make_session(db, student, tutor, JAN_15)
    with pytest.raises(InvalidStateError):
        submit(db, tutor, session, now=datetime(2025, 1, 15, 16, 30, tzinfo=timezone.utc))


# ── Content rules ─────────────────────────────────────────────────────────────

@pytest.mark.parametrize("overrides", [
    {"rating": 0},
    {"rating": 6},
    {"text": "too short"},
    {"text": GOOD_TEXT, "audio_url": "https://cdn.example.com/a.webm"},
    {"feedback_type": FeedbackType.AUDIO, "text": None, "audio_url": None, "audio_duration": 30},
    {"feedback_type": FeedbackType.AUDIO, "text": None,
     "audio_url": "https://cdn.example.com/a.webm", "audio_duration": 61},
])
def test_invalid_content_is_rejected(db, completed, overrides):
    _, tutor, session = completed
    with pytest.raises(ValidationFailureError):
        submit(db, tutor, session, now=datetime(2025, 1, 20, tzinfo=timezone.utc), **overrides)
    assert pending_feedback(db, session).status == FeedbackStatus.PENDING


def test_audio_feedback(db, completed):
    _, tutor, session = completed
    feedback = submit(
        db, tutor, session, now=datetime(2025, 1, 20, tzinfo=timezone.utc),
        feedback_type=FeedbackType.AUDIO, text=None,
        audio_url="https://cdn.example.com/a.webm", audio_duration=45,
    )
    assert feedback.feedback_audio_url == "https://cdn.example.com/a.webm"
    assert feedback.feedback_text is None


# ── Reminders ─────────────────────────────────────────────────────────────────

def test_reminders_use_the_tightest_horizon(db, completed):
    sent = feedback_service.send_feedback_reminders(db, [3, 1], now=datetime(2025, 2, 1, 12, 0, tzinfo=timezone.utc))
    assert sent == {1: 0, 3: 1}

    sent = feedback_service.send_feedback_reminders(db, [3, 1], now=datetime(2025, 2, 3, 12, 0, tzinfo=timezone.utc))
    assert sent == {1: 1, 3: 0}


def test_reminders_never_change_feedback_state(db, completed):
    _, _, session = completed
    feedback_service.send_feedback_reminders(db, [3, 1], now=datetime(2025, 2, 3, 12, 0, tzinfo=timezone.utc))
    feedback = pending_feedback(db, session)
    assert feedback.status == FeedbackStatus.PENDING
    assert feedback.payment_forfeited is False


# ── API ───────────────────────────────────────────────────────────────────────

def test_submit_via_api_and_student_reads_it(client, db, now):
    student = make_user(db, "student@example.com")
    tutor = make_tutor(db, "tutor@example.com")
    # Ended an hour ago, so the submission completes it
    session = make_session(db, student, tutor, now - timedelta(hours=2))

    resp = client.post(
        "/api/v1/feedback/",
        json={"session_id": str(session.id), "rating": 5, "feedback_type": "TEXT", "feedback_text": GOOD_TEXT},
        headers=auth_header(tutor),
    )
    assert resp.status_code == 201
    assert resp.json()["rating"] == 5

    resp = client.get("/api/v1/feedback/received", headers=auth_header(student))
    assert resp.status_code == 200
    assert [f["session_id"] for f in resp.json()] == [str(session.id)]