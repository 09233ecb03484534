from datetime import timedelta

import pytest

from app.core.exceptions import (
    DeadlineExceededError,
    ForbiddenError,
    InvalidStateError,
    ValidationFailureError,
)
from app.models.chat import Message, MessageType, ProposalStatus, SessionProposal
from app.models.subscription import SubscriptionTier
from app.models.tutoring_session import SessionStatus, TutoringSession
from app.services import session_service, subscription_service
from conftest import auth_header, make_chat, make_tutor, make_user


@pytest.fixture
def parties(db):
    student = make_user(db, "student@example.com", has_completed_trial=True)
    tutor = make_tutor(db, "tutor@example.com")
    chat = make_chat(db, student, tutor)
    return student, tutor, chat


def propose(db, tutor, chat, now, start_in=timedelta(days=2), minutes=60):
    start = now + start_in
    return session_service.propose_session(
        db, tutor, chat.id, "Mathematics", start, start + timedelta(minutes=minutes), now=now,
    )


# ── Pricing ───────────────────────────────────────────────────────────────────

def test_flexible_price_without_subscription(db, now, parties):
    _, tutor, chat = parties
    proposal = propose(db, tutor, chat, now, minutes=45)

    assert proposal.price_per_hour == 30.0
    assert proposal.total_price == pytest.approx(22.5)
    assert proposal.duration == 45
    assert proposal.status == ProposalStatus.PROPOSED
    message = db.get(Message, proposal.message_id)
    assert message.message_type == MessageType.SESSION_PROPOSAL


def test_active_subscription_sets_price(db, now, parties):
    student, tutor, chat = parties
    subscription, intent = subscription_service.subscribe(db, student, SubscriptionTier.LONG_TERM, now=now)
    subscription_service.confirm_payment(db, subscription.id, intent["id"], student, now=now)

    proposal = propose(db, tutor, chat, now, minutes=90)
    assert proposal.price_per_hour == 25.0
    assert proposal.total_price == pytest.approx(37.5)


def test_price_terms_are_copied_to_the_session(db, now, parties):
    student, tutor, chat = parties
    proposal = propose(db, tutor, chat, now, minutes=30)

    session = session_service.accept_proposal(db, proposal.message_id, student, now=now)

    assert session.status == SessionStatus.SCHEDULED
    assert session.price_per_hour == proposal.price_per_hour
    assert session.total_price == pytest.approx(15.0)
    assert session.duration == 30
    assert session.chat_id == chat.id
    assert session.student_id == student.id
    assert session.tutor_id == tutor.id
    db.refresh(proposal)
    assert proposal.status == ProposalStatus.ACCEPTED
    assert proposal.session_id == session.id


# ── Validation ────────────────────────────────────────────────────────────────

def test_end_must_follow_start(db, now, parties):
    _, tutor, chat = parties
    start = now + timedelta(days=1)
    with pytest.raises(ValidationFailureError):
        session_service.propose_session(db, tutor, chat.id, "Mathematics", start, start, now=now)


def test_start_must_be_in_the_future(db, now, parties):
    _, tutor, chat = parties
    with pytest.raises(ValidationFailureError):
        propose(db, tutor, chat, now, start_in=timedelta(minutes=-5))


def test_outsider_cannot_propose(db, now, parties):
    _, _, chat = parties
    outsider = make_tutor(db, "outsider@example.com")
    with pytest.raises(ForbiddenError):
        propose(db, outsider, chat, now)


def test_one_open_proposal_per_chat(db, now, parties):
    _, tutor, chat = parties
    propose(db, tutor, chat, now)
    with pytest.raises(InvalidStateError, match="open session proposal"):
        propose(db, tutor, chat, now, start_in=timedelta(days=3))


# ── Responding ────────────────────────────────────────────────────────────────

def test_sender_cannot_accept_own_proposal(db, now, parties):
    _, tutor, chat = parties
    proposal = propose(db, tutor, chat, now)
    with pytest.raises(ForbiddenError, match="your own proposal"):
        session_service.accept_proposal(db, proposal.message_id, tutor, now=now)
    assert db.query(TutoringSession).count() == 0


def test_second_accept_is_rejected(db, now, parties):
    student, tutor, chat = parties
    proposal = propose(db, tutor, chat, now)
    session_service.accept_proposal(db, proposal.message_id, student, now=now)

    with pytest.raises(InvalidStateError):
        session_service.accept_proposal(db, proposal.message_id, student, now=now)
    assert db.query(TutoringSession).count() == 1


def test_proposal_expires_at_its_start_time(db, now, parties):
    student, tutor, chat = parties
    proposal = propose(db, tutor, chat, now, start_in=timedelta(hours=1))

    with pytest.raises(DeadlineExceededError):
        session_service.accept_proposal(db, proposal.message_id, student, now=now + timedelta(hours=2))

    db.expire_all()
    assert db.get(SessionProposal, proposal.id).status == ProposalStatus.EXPIRED
    assert db.query(TutoringSession).count() == 0


def test_reject_keeps_reason(db, now, parties):
    student, tutor, chat = parties
    proposal = propose(db, tutor, chat, now)

    rejected = session_service.reject_proposal(db, proposal.message_id, student, "Too early for me", now=now)
    assert rejected.status == ProposalStatus.REJECTED
    assert rejected.rejection_reason == "Too early for me"


def test_counter_proposal_flow(db, now, parties):
    student, tutor, chat = parties
    original = propose(db, tutor, chat, now)
    new_start = now + timedelta(days=4)

    counter = session_service.counter_propose(
        db, original.message_id, student, new_start, new_start + timedelta(minutes=60), now=now,
    )
    db.refresh(original)
    assert original.status == ProposalStatus.COUNTER_PROPOSED
    assert counter.original_proposal_id == original.id
    assert counter.status == ProposalStatus.PROPOSED

    # The student posted the counter, so the tutor is the responder now
    with pytest.raises(ForbiddenError):
        session_service.accept_proposal(db, counter.message_id, student, now=now)
    session = session_service.accept_proposal(db, counter.message_id, tutor, now=now)
    assert session.start_time == new_start


def test_accept_via_api_books_and_notifies(client, db, publisher, now, parties):
    student, tutor, chat = parties
    start = now + timedelta(days=1)
    resp = client.post(
        "/api/v1/chats/proposals",
        json={
            "chat_id": str(chat.id),
            "subject": "Mathematics",
            "start_time": start.isoformat(),
            "end_time": (start + timedelta(minutes=60)).isoformat(),
        },
        headers=auth_header(tutor),
    )
    assert resp.status_code == 201
    message_id = resp.json()["message_id"]

    resp = client.post(f"/api/v1/chats/proposals/{message_id}/accept", headers=auth_header(student))
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "SCHEDULED"
    assert body["total_price"] == 30.0
    assert "proposal_accepted" in publisher.event_names(f"chat:{chat.id}")
