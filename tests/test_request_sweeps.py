from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import NotFoundError, ValidationFailureError
from app.jobs import run_sweeps
from app.models.notification import Notification
from app.models.session_request import SessionRequest
from app.models.trial_request import RequestStatus, TrialRequest
from app.models.user import UserRole
from app.schemas.trial_request import SessionRequestCreate, TrialRequestCreate
from app.services import request_service, session_request_service, sweeps, trial_request_service
from conftest import auth_header, make_subject, make_user

CREATED = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def hours(n):
    return CREATED + timedelta(hours=n)


@pytest.fixture
def trial(db):
    subject = make_subject(db)
    student = make_user(db, "student@example.com")
    payload = TrialRequestCreate(
        subject_id=subject.id,
        description="Needs help with fractions and percentages.",
        student_info={"name": "Lena", "is_under_18": False},
    )
    request, _ = trial_request_service.create_trial_request(db, payload, actor=student, now=CREATED)
    return student, request


def test_fresh_request_is_left_alone(db, trial):
    counts = request_service.run_request_sweep(db, now=hours(23), mode="delete")
    assert counts["trial_request_reminded"] == 0
    assert counts["trial_request_deleted"] == 0


def test_reminder_then_delete_after_grace(db, trial):
    student, request = trial

    counts = request_service.run_request_sweep(db, now=hours(25), mode="delete")
    assert counts["trial_request_reminded"] == 1
    assert counts["trial_request_deleted"] == 0
    db.refresh(request)
    assert request.reminder_sent_at == hours(25)
    assert request.final_expires_at == hours(25) + timedelta(days=3)
    assert db.query(Notification).filter(
        Notification.user_id == student.id, Notification.notification_type == "request_expiring"
    ).count() == 1

    # No second reminder inside the grace window
    counts = request_service.run_request_sweep(db, now=hours(48), mode="delete")
    assert counts == {
        "trial_request_reminded": 0,
        "trial_request_deleted": 0,
        "session_request_reminded": 0,
        "session_request_deleted": 0,
    }

    counts = request_service.run_request_sweep(db, now=hours(25 + 72 + 1), mode="delete")
    assert counts["trial_request_deleted"] == 1
    db.expire_all()
    assert db.get(TrialRequest, request.id) is None


def test_expire_mode_keeps_the_row(db, trial):
    _, request = trial
    request_service.run_request_sweep(db, now=hours(25), mode="expire")
    counts = request_service.run_request_sweep(db, now=hours(25 + 73), mode="expire")

    assert counts["trial_request_expired"] == 1
    db.refresh(request)
    assert request.status == RequestStatus.EXPIRED


def test_never_removed_without_a_reminder(db, trial):
    _, request = trial
    # A single late pass only reminds, even when the grace period would already be over
    counts = request_service.run_request_sweep(db, now=hours(24 * 30), mode="delete")
    assert counts["trial_request_reminded"] == 1
    assert counts["trial_request_deleted"] == 0
    db.expire_all()
    assert db.get(TrialRequest, request.id) is not None


def test_extension_restarts_the_reminder_cycle(db, trial):
    student, request = trial
    request_service.run_request_sweep(db, now=hours(25), mode="delete")

    extended = request_service.extend_request(db, request_service.TRIAL, request.id, actor=student, now=hours(26))
    assert extended.reminder_sent_at is None
    assert extended.final_expires_at is None

    counts = request_service.run_request_sweep(db, now=hours(26 + 72 + 1), mode="delete")
    assert counts["trial_request_deleted"] == 0
    assert counts["trial_request_reminded"] == 0


def test_session_requests_are_swept_too(db):
    subject = make_subject(db)
    student = make_user(db, "student@example.com", has_completed_trial=True)
    request = session_request_service.create_session_request(
        db, student,
        SessionRequestCreate(subject_id=subject.id, description="Weekly chemistry revision."),
        now=CREATED,
    )
    counts = request_service.run_request_sweep(db, now=CREATED + timedelta(days=7, minutes=1), mode="expire")
    assert counts["session_request_reminded"] == 1
    db.refresh(request)
    assert request.status == RequestStatus.PENDING
    assert isinstance(request, SessionRequest)


def test_unknown_mode_is_rejected(db):
    with pytest.raises(ValidationFailureError):
        request_service.run_request_sweep(db, now=CREATED, mode="archive")


# ── Registry / CLI / admin trigger ────────────────────────────────────────────

def test_registry_rejects_unknown_sweep(db):
    with pytest.raises(NotFoundError):
        sweeps.run_sweep(db, "nightly", now=CREATED)


def test_run_all_uses_one_clock(db, trial):
    results = sweeps.run_all(db, now=hours(25), mode="expire")
    assert set(results) == set(sweeps.SWEEPS)
    assert results["requests"]["trial_request_reminded"] == 1
    assert results["feedback-forfeit"] == {"forfeited": 0}


def test_cli_runs_a_named_sweep(db, trial):
    _, request = trial
    assert run_sweeps.main(["requests", "--mode", "expire", "--now", "2025-03-02T10:00:00Z"]) == 0
    db.refresh(request)
    assert request.reminder_sent_at == datetime(2025, 3, 2, 10, 0, tzinfo=timezone.utc)


def test_admin_sweep_endpoint(client, db, trial):
    admin = make_user(db, "admin@example.com", role=UserRole.ADMIN)

    resp = client.post(
        "/api/v1/admin/sweeps/requests",
        json={"now": "2025-03-02T10:00:00Z", "mode": "expire"},
        headers=auth_header(admin),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["sweep"] == "requests"
    assert body["counts"]["trial_request_reminded"] == 1

    resp = client.post("/api/v1/admin/sweeps/nightly", headers=auth_header(admin))
    assert resp.status_code == 404
    assert resp.json()["error_kind"] == "NotFound"


def test_sweep_endpoint_is_admin_only(client, db):
    student = make_user(db, "student@example.com")
    resp = client.post("/api/v1/admin/sweeps/requests", headers=auth_header(student))
    assert resp.status_code == 403
