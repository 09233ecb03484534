# app/services/session_service.py
# Proposal → booking, the session state machine, and the reschedule sub-workflow.
#
# Time-driven transitions (run_status_sweep, one `now` per pass):
#   1. SCHEDULED → STARTING_SOON            start - 10 min <= now < start
#   2. SCHEDULED | STARTING_SOON → IN_PROGRESS   start <= now < end   (stamps started_at = now)
#   3. live → EXPIRED                       end <= now
# The sweep only persists what lifecycle.effective_session_status reports.
#
# User-driven transitions:
#   cancel_session        SCHEDULED | STARTING_SOON → CANCELLED (either party)
#   request_reschedule    SCHEDULED | STARTING_SOON → RESCHEDULE_REQUESTED
#   respond_reschedule    RESCHEDULE_REQUESTED → SCHEDULED (approve or reject, counterparty only)
#   complete_session      any non-terminal → COMPLETED (tutor or admin)

import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    DeadlineExceededError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationFailureError,
)
from app.models.chat import Chat, Message, MessageType, ProposalStatus, SessionProposal
from app.models.notification import Notification
from app.models.tutoring_session import (
    PaymentStatus,
    RescheduleStatus,
    SessionStatus,
    TeacherCompletionStatus,
    TutoringSession,
)
from app.models.user import User, UserRole
from app.services import chat_service, completion_service, subscription_service, tutor_service
from app.services.events import EventPublisher, chat_topic, emit, session_topic, user_topic
from app.services.lifecycle import (
    SESSION_LIVE,
    SESSION_TRANSITIONS,
    as_utc,
    check_transition,
    effective_session_status,
    resolve_now,
    session_is_over,
    sources_for,
)
from app.services.notification_service import notify, notify_after_commit

logger = logging.getLogger("lernhub.sessions")

ACTIVE_SESSION_STATUSES = (
    SessionStatus.SCHEDULED,
    SessionStatus.STARTING_SOON,
    SessionStatus.IN_PROGRESS,
    SessionStatus.RESCHEDULE_REQUESTED,
)
CANCELLABLE = (SessionStatus.SCHEDULED, SessionStatus.STARTING_SOON)
RESCHEDULABLE = (SessionStatus.SCHEDULED, SessionStatus.STARTING_SOON)

# (horizon, notification title) for upcoming-session reminders
REMINDER_HORIZONS = (
    (timedelta(hours=24), "Session in 24 hours"),
    (timedelta(hours=1), "Session in 1 hour"),
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _session_topics(session: TutoringSession) -> List[str]:
    topics = [session_topic(session.id), user_topic(session.student_id), user_topic(session.tutor_id)]
    if session.chat_id:
        topics.append(chat_topic(session.chat_id))
    return topics


def _counterparty(session: TutoringSession, user_id: UUID) -> UUID:
    return session.tutor_id if user_id == session.student_id else session.student_id


def get_session(db: Session, session_id: UUID) -> TutoringSession:
    session = db.query(TutoringSession).filter(TutoringSession.id == session_id).first()
    if not session:
        raise NotFoundError("Session not found")
    return session


def get_session_for_user(db: Session, session_id: UUID, user: User) -> TutoringSession:
    session = get_session(db, session_id)
    if user.role != UserRole.ADMIN and not session.is_party(user.id):
        raise ForbiddenError("You are not a participant of this session")
    return session


def _require_party(db: Session, session_id: UUID, user: User) -> TutoringSession:
    session = get_session(db, session_id)
    if not session.is_party(user.id):
        raise ForbiddenError("Only the student or tutor of this session can do this")
    return session


def _set_status(
    db: Session,
    session: TutoringSession,
    allowed_from,
    target: str,
    values: Dict,
    message: str,
) -> None:
    """UPDATE ... WHERE status IN allowed_from; flushes, caller commits."""
    check_transition(SESSION_TRANSITIONS, session.status, target, message)
    updated = db.query(TutoringSession).filter(
        TutoringSession.id == session.id,
        TutoringSession.status.in_(list(allowed_from)),
    ).update({TutoringSession.status: target, **values}, synchronize_session=False)
    if updated != 1:
        db.rollback()
        raise InvalidStateError(message)


def _chat_parties(chat: Chat) -> Tuple[Optional[UUID], Optional[UUID]]:
    """(student_id, tutor_id) of a request-born chat."""
    student_id = tutor_id = None
    for participant in chat.participants:
        if participant.role == UserRole.TUTOR:
            tutor_id = participant.id
        else:
            student_id = participant.id
    return student_id, tutor_id


def _validate_window(start_time: datetime, end_time: datetime, now: datetime) -> Tuple[datetime, datetime, int]:
    start_time, end_time = as_utc(start_time), as_utc(end_time)
    if end_time <= start_time:
        raise ValidationFailureError("End time must be after start time")
    if start_time <= now:
        raise ValidationFailureError("Start time must be in the future")
    duration = int((end_time - start_time).total_seconds() // 60)
    if duration < 1:
        raise ValidationFailureError("Session must last at least one minute")
    return start_time, end_time, duration


# ── Proposals ─────────────────────────────────────────────────────────────────

def _post_proposal(
    db: Session,
    chat: Chat,
    sender_id: UUID,
    student_id: UUID,
    subject: str,
    start_time: datetime,
    end_time: datetime,
    duration: int,
    description: Optional[str],
    now: datetime,
    original_proposal_id: Optional[UUID] = None,
) -> SessionProposal:
    price_per_hour = subscription_service.price_for_student(db, student_id, now)
    message = chat_service.add_message(
        db, chat, sender_id, description or subject,
        message_type=MessageType.SESSION_PROPOSAL, now=now,
    )
    proposal = SessionProposal(
        message_id=message.id,
        subject=subject,
        description=description,
        start_time=start_time,
        end_time=end_time,
        duration=duration,
        price_per_hour=price_per_hour,
        total_price=price_per_hour * duration / 60,
        status=ProposalStatus.PROPOSED,
        expires_at=start_time,
        original_proposal_id=original_proposal_id,
    )
    db.add(proposal)
    db.flush()
    return proposal


def propose_session(
    db: Session,
    tutor: User,
    chat_id: UUID,
    subject: str,
    start_time: datetime,
    end_time: datetime,
    description: Optional[str] = None,
    publisher: Optional[EventPublisher] = None,
    now: Optional[datetime] = None,
) -> SessionProposal:
    """Posts a SESSION_PROPOSAL message. No session exists until the student accepts."""
    now = resolve_now(now)
    tutor_service.require_verified_tutor(db, tutor, "propose sessions")
    chat = chat_service.get_chat_for_user(db, chat_id, tutor)
    if not chat.has_participant(tutor.id):
        raise ForbiddenError("You are not a participant of this chat")

    student_id = chat_service.other_participant_id(chat, tutor.id)
    if student_id is None:
        raise InvalidStateError("This chat has no student to propose to")

    if not subject or not subject.strip():
        raise ValidationFailureError("Subject is required")
    start_time, end_time, duration = _validate_window(start_time, end_time, now)

    open_proposal = (
        db.query(SessionProposal.id)
        .join(Message, Message.id == SessionProposal.message_id)
        .filter(Message.chat_id == chat.id, SessionProposal.status == ProposalStatus.PROPOSED)
        .first()
    )
    if open_proposal:
        raise InvalidStateError("This chat already has an open session proposal")

    active_session = db.query(TutoringSession.id).filter(
        TutoringSession.chat_id == chat.id,
        TutoringSession.status.in_(ACTIVE_SESSION_STATUSES),
    ).first()
    if active_session:
        raise InvalidStateError("This chat already has an upcoming session")

    proposal = _post_proposal(
        db, chat, tutor.id, student_id, subject.strip(),
        start_time, end_time, duration, description, now,
    )
    db.commit()
    db.refresh(proposal)
    logger.info("Proposal %s posted in chat %s", proposal.id, chat.id)

    notify_after_commit(
        db, [student_id], "session_proposed",
        title="New session proposal",
        body=f"{tutor.full_name} proposed a {subject} session on {start_time:%Y-%m-%d %H:%M} UTC.",
        extra_data={"chat_id": str(chat.id), "message_id": str(proposal.message_id)},
        action_url=f"/chats/{chat.id}",
    )
    emit(publisher, [chat_topic(chat.id), user_topic(student_id)], "session_proposed", {
        "chat_id": str(chat.id),
        "message_id": str(proposal.message_id),
        "proposal_id": str(proposal.id),
    })
    return proposal


def _get_proposal_for_responder(db: Session, message_id: UUID, actor: User) -> Tuple[SessionProposal, Message, Chat]:
    proposal = db.query(SessionProposal).filter(SessionProposal.message_id == message_id).first()
    if not proposal:
        raise NotFoundError("Session proposal not found")
    message = proposal.message
    chat = message.chat
    if not chat.has_participant(actor.id):
        raise ForbiddenError("You are not a participant of this chat")
    if message.sender_id == actor.id:
        raise ForbiddenError("You cannot respond to your own proposal")
    return proposal, message, chat


def _set_proposal_status(
    db: Session,
    proposal: SessionProposal,
    target: str,
    values: Dict,
    message: str = "This proposal is no longer available",
) -> None:
    updated = db.query(SessionProposal).filter(
        SessionProposal.id == proposal.id,
        SessionProposal.status == ProposalStatus.PROPOSED,
    ).update({SessionProposal.status: target, **values}, synchronize_session=False)
    if updated != 1:
        db.rollback()
        raise InvalidStateError(message)


def _ensure_open(db: Session, proposal: SessionProposal, now: datetime) -> None:
    if proposal.status != ProposalStatus.PROPOSED:
        raise InvalidStateError(
            "This proposal is no longer available", details={"status": proposal.status}
        )
    if now >= as_utc(proposal.expires_at):
        _set_proposal_status(db, proposal, ProposalStatus.EXPIRED, {})
        db.commit()
        raise DeadlineExceededError("This proposal has expired")


def accept_proposal(
    db: Session,
    message_id: UUID,
    actor: User,
    publisher: Optional[EventPublisher] = None,
    now: Optional[datetime] = None,
) -> TutoringSession:
    """
    Creates the session and marks the proposal ACCEPTED in one commit.
    The responder is whichever participant did not post the proposal
    (the student for tutor proposals, the tutor for counter-proposals).
    Price terms are copied from the proposal and never recomputed.
    """
    now = resolve_now(now)
    proposal, message, chat = _get_proposal_for_responder(db, message_id, actor)
    _ensure_open(db, proposal, now)

    student_id, tutor_id = _chat_parties(chat)
    if student_id is None or tutor_id is None:
        raise InvalidStateError("This chat needs a student and a tutor to book a session")

    session = TutoringSession(
        student_id=student_id,
        tutor_id=tutor_id,
        subject=proposal.subject,
        description=proposal.description,
        start_time=proposal.start_time,
        end_time=proposal.end_time,
        duration=proposal.duration,
        price_per_hour=proposal.price_per_hour,
        total_price=proposal.total_price,
        payment_status=PaymentStatus.PENDING,
        status=SessionStatus.SCHEDULED,
        chat_id=chat.id,
        message_id=message.id,
        is_trial=chat.trial_request_id is not None,
        trial_request_id=chat.trial_request_id,
        teacher_completion_status=TeacherCompletionStatus.NOT_APPLICABLE,
        created_at=now,
    )
    db.add(session)
    db.flush()

    _set_proposal_status(db, proposal, ProposalStatus.ACCEPTED, {
        SessionProposal.session_id: session.id,
        SessionProposal.responded_at: now,
    })
    db.commit()
    db.refresh(session)
    logger.info("Proposal %s accepted, session %s booked", proposal.id, session.id)

    notify_after_commit(
        db, [student_id, tutor_id], "session_booked",
        title="Session booked",
        body=f"{session.subject} on {as_utc(session.start_time):%Y-%m-%d %H:%M} UTC is confirmed.",
        extra_data={"session_id": str(session.id), "chat_id": str(chat.id)},
        action_url=f"/sessions/{session.id}",
    )
    emit(publisher, _session_topics(session), "proposal_accepted", {
        "chat_id": str(chat.id),
        "message_id": str(message.id),
        "session_id": str(session.id),
        "status": ProposalStatus.ACCEPTED,
    })
    return session


def reject_proposal(
    db: Session,
    message_id: UUID,
    actor: User,
    reason: Optional[str] = None,
    publisher: Optional[EventPublisher] = None,
    now: Optional[datetime] = None,
) -> SessionProposal:
    now = resolve_now(now)
    proposal, message, chat = _get_proposal_for_responder(db, message_id, actor)
    if proposal.status != ProposalStatus.PROPOSED:
        raise InvalidStateError(
            "This proposal is no longer available", details={"status": proposal.status}
        )

    _set_proposal_status(db, proposal, ProposalStatus.REJECTED, {
        SessionProposal.rejection_reason: reason,
        SessionProposal.responded_at: now,
    })
    db.commit()
    db.refresh(proposal)

    notify_after_commit(
        db, [message.sender_id], "proposal_rejected",
        title="Session proposal declined",
        body=reason or "Your session proposal was declined.",
        extra_data={"chat_id": str(chat.id), "message_id": str(message.id)},
    )
    emit(publisher, [chat_topic(chat.id), user_topic(message.sender_id)], "proposal_rejected", {
        "chat_id": str(chat.id),
        "message_id": str(message.id),
        "status": ProposalStatus.REJECTED,
    })
    return proposal


def counter_propose(
    db: Session,
    message_id: UUID,
    actor: User,
    start_time: datetime,
    end_time: datetime,
    description: Optional[str] = None,
    publisher: Optional[EventPublisher] = None,
    now: Optional[datetime] = None,
) -> SessionProposal:
    """Original becomes COUNTER_PROPOSED; a new PROPOSED proposal references it."""
    now = resolve_now(now)
    original, message, chat = _get_proposal_for_responder(db, message_id, actor)
    _ensure_open(db, original, now)
    start_time, end_time, duration = _validate_window(start_time, end_time, now)

    student_id, _ = _chat_parties(chat)
    _set_proposal_status(db, original, ProposalStatus.COUNTER_PROPOSED, {
        SessionProposal.responded_at: now,
    })
    counter = _post_proposal(
        db, chat, actor.id, student_id, original.subject,
        start_time, end_time, duration,
        description if description is not None else original.description,
        now, original_proposal_id=original.id,
    )
    db.commit()
    db.refresh(counter)

    emit(publisher, [chat_topic(chat.id), user_topic(message.sender_id)], "proposal_countered", {
        "chat_id": str(chat.id),
        "original_message_id": str(message.id),
        "message_id": str(counter.message_id),
    })
    return counter


# ── Cancel / Complete ─────────────────────────────────────────────────────────

def cancel_session(
    db: Session,
    session_id: UUID,
    actor: User,
    reason: str,
    publisher: Optional[EventPublisher] = None,
    now: Optional[datetime] = None,
) -> TutoringSession:
    now = resolve_now(now)
    session = _require_party(db, session_id, actor)
    if not reason or not reason.strip():
        raise ValidationFailureError("Cancellation reason is required")

    message = "Only scheduled sessions can be cancelled"
    if effective_session_status(session, now) not in CANCELLABLE:
        raise InvalidStateError(message, details={"status": effective_session_status(session, now)})

    _set_status(db, session, CANCELLABLE, SessionStatus.CANCELLED, {
        TutoringSession.cancelled_at: now,
        TutoringSession.cancelled_by: actor.id,
        TutoringSession.cancellation_reason: reason.strip(),
    }, message)
    if session.message_id:
        db.query(SessionProposal).filter(SessionProposal.message_id == session.message_id).update(
            {SessionProposal.status: ProposalStatus.CANCELLED}, synchronize_session=False
        )
    db.commit()
    db.refresh(session)
    logger.info("Session %s cancelled by %s", session.id, actor.id)

    notify_after_commit(
        db, [_counterparty(session, actor.id)], "session_cancelled",
        title="Session cancelled",
        body=f"{actor.full_name} cancelled the {session.subject} session: {reason.strip()}",
        extra_data={"session_id": str(session.id)},
        action_url=f"/sessions/{session.id}",
    )
    emit(publisher, _session_topics(session), "session_status_changed", {
        "session_id": str(session.id),
        "status": SessionStatus.CANCELLED,
    })
    return session


def complete_session(
    db: Session,
    session_id: UUID,
    actor: User,
    publisher: Optional[EventPublisher] = None,
    now: Optional[datetime] = None,
) -> TutoringSession:
    """
    Admin override to COMPLETED from any non-terminal status.
    Tutors reach COMPLETED through feedback submission once the session is over.
    """
    now = resolve_now(now)
    session = get_session(db, session_id)
    if actor.role != UserRole.ADMIN:
        raise ForbiddenError("Only admins can mark a session as completed")
    if session.status == SessionStatus.COMPLETED:
        raise InvalidStateError("Session is already completed")

    check_transition(SESSION_TRANSITIONS, session.status, SessionStatus.COMPLETED,
                     "Session can no longer be completed")
    if not completion_service.finish_session(db, session, publisher=publisher, now=now):
        raise InvalidStateError("Session can no longer be completed")
    return session


def mark_no_show(
    db: Session,
    session_id: UUID,
    actor: User,
    publisher: Optional[EventPublisher] = None,
    now: Optional[datetime] = None,
) -> TutoringSession:
    """Admin override for a started session where the student never joined."""
    now = resolve_now(now)
    session = get_session(db, session_id)
    if actor.role != UserRole.ADMIN:
        raise ForbiddenError("Only admins can mark a no-show")
    if as_utc(session.start_time) > now:
        raise InvalidStateError("A session cannot be a no-show before it starts")

    check_transition(SESSION_TRANSITIONS, session.status, SessionStatus.NO_SHOW,
                     "Session can no longer be marked as a no-show")
    allowed = sources_for(SESSION_TRANSITIONS, SessionStatus.NO_SHOW)
    if not completion_service.finish_session(
        db, session, target=SessionStatus.NO_SHOW, allowed_from=allowed,
        publisher=publisher, now=now,
    ):
        raise InvalidStateError("Session can no longer be marked as a no-show")
    return session


# ── Reschedule ────────────────────────────────────────────────────────────────

def request_reschedule(
    db: Session,
    session_id: UUID,
    actor: User,
    new_start_time: datetime,
    reason: Optional[str] = None,
    publisher: Optional[EventPublisher] = None,
    now: Optional[datetime] = None,
) -> TutoringSession:
    now = resolve_now(now)
    session = _require_party(db, session_id, actor)

    pending = session.reschedule_request or {}
    if session.status == SessionStatus.RESCHEDULE_REQUESTED or pending.get("status") == RescheduleStatus.PENDING:
        raise InvalidStateError("A reschedule request is already pending for this session")
    if session.status not in RESCHEDULABLE:
        raise InvalidStateError(
            "Only scheduled sessions can be rescheduled", details={"status": session.status}
        )

    start = as_utc(session.start_time)
    if now >= start - timedelta(minutes=settings.reschedule_cutoff_minutes):
        raise DeadlineExceededError(
            f"Cannot reschedule within {settings.reschedule_cutoff_minutes} minutes of session start"
        )

    new_start = as_utc(new_start_time)
    if new_start <= now:
        raise ValidationFailureError("New start time must be in the future")
    new_end = new_start + (as_utc(session.end_time) - start)

    request_record = {
        "requested_by": str(actor.id),
        "requested_at": now.isoformat(),
        "new_start_time": new_start.isoformat(),
        "new_end_time": new_end.isoformat(),
        "reason": reason,
        "status": RescheduleStatus.PENDING,
        "responded_at": None,
        "responded_by": None,
    }
    _set_status(db, session, RESCHEDULABLE, SessionStatus.RESCHEDULE_REQUESTED, {
        TutoringSession.reschedule_request: request_record,
        TutoringSession.previous_start_time: session.start_time,
        TutoringSession.previous_end_time: session.end_time,
    }, "Only scheduled sessions can be rescheduled")
    db.commit()
    db.refresh(session)
    logger.info("Reschedule requested for session %s by %s", session.id, actor.id)

    notify_after_commit(
        db, [_counterparty(session, actor.id)], "reschedule_requested",
        title="Reschedule requested",
        body=f"{actor.full_name} asked to move the session to {new_start:%Y-%m-%d %H:%M} UTC.",
        extra_data={"session_id": str(session.id)},
        action_url=f"/sessions/{session.id}",
    )
    emit(publisher, _session_topics(session), "reschedule_requested", {
        "session_id": str(session.id),
        "new_start_time": new_start.isoformat(),
        "new_end_time": new_end.isoformat(),
    })
    return session


def respond_reschedule(
    db: Session,
    session_id: UUID,
    actor: User,
    approve: bool,
    publisher: Optional[EventPublisher] = None,
    now: Optional[datetime] = None,
) -> TutoringSession:
    """Counterparty only. Either outcome returns the session to SCHEDULED."""
    now = resolve_now(now)
    session = _require_party(db, session_id, actor)
    record = dict(session.reschedule_request or {})

    if session.status != SessionStatus.RESCHEDULE_REQUESTED or record.get("status") != RescheduleStatus.PENDING:
        raise InvalidStateError("There is no pending reschedule request for this session")

    if record.get("requested_by") == str(actor.id):
        verb = "approve" if approve else "reject"
        raise ForbiddenError(f"You cannot {verb} your own reschedule request")

    new_start = as_utc(datetime.fromisoformat(record["new_start_time"]))
    cutoff = timedelta(minutes=settings.reschedule_cutoff_minutes)
    lapsed = approve and now >= new_start - cutoff
    if lapsed:
        outcome = RescheduleStatus.EXPIRED
    else:
        outcome = RescheduleStatus.APPROVED if approve else RescheduleStatus.REJECTED

    record.update({
        "status": outcome,
        "responded_at": now.isoformat(),
        "responded_by": str(actor.id),
    })
    values = {TutoringSession.reschedule_request: record}
    if outcome == RescheduleStatus.APPROVED:
        values[TutoringSession.start_time] = new_start
        values[TutoringSession.end_time] = datetime.fromisoformat(record["new_end_time"])

    # Every outcome, including a lapsed approval, returns the session to SCHEDULED
    _set_status(db, session, (SessionStatus.RESCHEDULE_REQUESTED,), SessionStatus.SCHEDULED,
                values, "There is no pending reschedule request for this session")
    db.commit()
    db.refresh(session)
    logger.info("Reschedule for session %s %s", session.id, outcome.lower())

    requester = UUID(record["requested_by"])
    approved = outcome == RescheduleStatus.APPROVED
    notify_after_commit(
        db, [requester], "reschedule_approved" if approved else "reschedule_rejected",
        title="Reschedule approved" if approved else "Reschedule declined",
        body=(
            f"The session now starts {as_utc(session.start_time):%Y-%m-%d %H:%M} UTC."
            if approved else "The session keeps its original time."
        ),
        extra_data={"session_id": str(session.id)},
        action_url=f"/sessions/{session.id}",
    )
    emit(publisher, _session_topics(session), "reschedule_resolved", {
        "session_id": str(session.id),
        "status": record["status"],
        "start_time": as_utc(session.start_time).isoformat(),
        "end_time": as_utc(session.end_time).isoformat(),
    })
    if lapsed:
        raise DeadlineExceededError(
            "The requested time is no longer available; the session keeps its original time",
            details={"new_start_time": new_start.isoformat()},
        )
    return session


# ── Sweeps ────────────────────────────────────────────────────────────────────

def run_status_sweep(
    db: Session,
    now: Optional[datetime] = None,
    publisher: Optional[EventPublisher] = None,
) -> Dict[str, int]:
    """
    Persist the time-driven status of every live session with one `now`,
    in ascending state order (STARTING_SOON, then IN_PROGRESS, then EXPIRED).
    Each write is conditional on the status read, so a concurrent cancel or
    completion always wins over the sweep.
    """
    now = resolve_now(now)
    horizon = now + timedelta(minutes=settings.starting_soon_minutes)
    candidates = db.query(TutoringSession).filter(
        TutoringSession.status.in_(list(SESSION_LIVE)),
        TutoringSession.start_time <= horizon,
    ).all()

    plan: "OrderedDict[str, List[TutoringSession]]" = OrderedDict(
        (s, []) for s in (SessionStatus.STARTING_SOON, SessionStatus.IN_PROGRESS, SessionStatus.EXPIRED)
    )
    for session in candidates:
        target = effective_session_status(session, now)
        if target != session.status and target in plan:
            plan[target].append(session)

    changed: List[Tuple[TutoringSession, str]] = []
    for target, sessions in plan.items():
        for session in sessions:
            values = {TutoringSession.status: target}
            if target == SessionStatus.IN_PROGRESS:
                values[TutoringSession.started_at] = now
            elif target == SessionStatus.EXPIRED:
                values[TutoringSession.expired_at] = now
            updated = db.query(TutoringSession).filter(
                TutoringSession.id == session.id,
                TutoringSession.status == session.status,
            ).update(values, synchronize_session=False)
            if updated:
                changed.append((session, target))
    db.commit()

    for session, target in changed:
        emit(publisher, _session_topics(session), "session_status_changed", {
            "session_id": str(session.id),
            "status": target,
        })
    starting = [s for s, t in changed if t == SessionStatus.STARTING_SOON]
    for session in starting:
        notify_after_commit(
            db, [session.student_id, session.tutor_id], "session_starting_soon",
            title="Your session starts soon",
            body=f"{session.subject} starts at {as_utc(session.start_time):%H:%M} UTC.",
            extra_data={"session_id": str(session.id)},
            action_url=f"/sessions/{session.id}",
        )

    counts = {
        "starting_soon": len(starting),
        "in_progress": sum(1 for _, t in changed if t == SessionStatus.IN_PROGRESS),
        "expired": sum(1 for _, t in changed if t == SessionStatus.EXPIRED),
    }
    logger.info("Session sweep at %s: %s", now.isoformat(), counts)
    return counts


def upcoming_sessions(db: Session, now: datetime, within: timedelta) -> List[TutoringSession]:
    return db.query(TutoringSession).filter(
        TutoringSession.status.in_(RESCHEDULABLE),
        TutoringSession.start_time > now,
        TutoringSession.start_time <= now + within,
    ).order_by(TutoringSession.start_time).all()


def send_session_reminders(db: Session, now: Optional[datetime] = None) -> int:
    """
    Remind both parties of sessions starting within 24h and within 1h.
    A reminder is sent once per session, user and horizon.
    """
    now = resolve_now(now)
    sent = 0
    for within, title in REMINDER_HORIZONS:
        for session in upcoming_sessions(db, now, within):
            action_url = f"/sessions/{session.id}"
            for user_id in (session.student_id, session.tutor_id):
                already = db.query(Notification.id).filter(
                    Notification.user_id == user_id,
                    Notification.notification_type == "session_reminder",
                    Notification.action_url == action_url,
                    Notification.title == title,
                ).first()
                if already:
                    continue
                try:
                    notify(
                        db, user_id, "session_reminder", title,
                        f"{session.subject} starts at {as_utc(session.start_time):%Y-%m-%d %H:%M} UTC.",
                        extra_data={"session_id": str(session.id)},
                        action_url=action_url,
                    )
                    db.commit()
                    sent += 1
                except Exception:
                    db.rollback()
                    logger.exception("Session reminder failed for %s", session.id)
    logger.info("Session reminders sent: %d", sent)
    return sent


# ── Listings ──────────────────────────────────────────────────────────────────

def list_sessions(
    db: Session,
    user: User,
    status: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[TutoringSession]:
    """Sessions where the user is a party; `status` filters on the effective status."""
    now = resolve_now(now)
    query = db.query(TutoringSession)
    if user.role == UserRole.TUTOR:
        query = query.filter(TutoringSession.tutor_id == user.id)
    elif user.role != UserRole.ADMIN:
        query = query.filter(TutoringSession.student_id == user.id)
    sessions = query.order_by(TutoringSession.start_time.desc()).all()
    if status:
        sessions = [s for s in sessions if effective_session_status(s, now) == status]
    return sessions


def session_is_live_and_over(session: TutoringSession, now: datetime) -> bool:
    return session.status in SESSION_LIVE and session_is_over(session, now)
