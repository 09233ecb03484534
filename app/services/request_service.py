# app/services/request_service.py
# Lifecycle shared by trial requests and session requests.
#
#   PENDING → ACCEPTED   accept_request()   tutor; creates the chat in the same commit
#   PENDING → CANCELLED  cancel_request()   owner (user id or contact email)
#   PENDING → EXPIRED    accept on a lapsed request, or run_request_sweep(mode="expire")
#   PENDING → deleted    run_request_sweep(mode="delete"), after reminder + grace window
#
# Every transition is an UPDATE ... WHERE status = 'PENDING'; whoever lands
# first wins and the loser sees InvalidStateError (or a skipped row in sweeps).

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Type, Union
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    DeadlineExceededError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationFailureError,
)
from app.models.session_request import SessionRequest
from app.models.trial_request import RequestStatus, TrialRequest
from app.models.user import User
from app.services import chat_service, tutor_service
from app.services.events import EventPublisher, emit, user_topic
from app.services.lifecycle import (
    REQUEST_TRANSITIONS,
    check_transition,
    effective_request_status,
    request_is_lapsed,
    resolve_now,
)
from app.services.notification_service import notify_after_commit

logger = logging.getLogger("lernhub.requests")

AnyRequest = Union[TrialRequest, SessionRequest]


@dataclass(frozen=True)
class RequestKind:
    model: Type
    label: str                  # human name used in messages
    request_type: str           # TRIAL | SESSION
    chat_field: str             # Chat back-reference column
    event_prefix: str           # notification / event name prefix


TRIAL = RequestKind(TrialRequest, "trial request", "TRIAL", "trial_request_id", "trial_request")
SESSION = RequestKind(SessionRequest, "session request", "SESSION", "session_request_id", "session_request")

KINDS = (TRIAL, SESSION)


def kind_of(request: AnyRequest) -> RequestKind:
    return TRIAL if isinstance(request, TrialRequest) else SESSION


# ── Lookups ───────────────────────────────────────────────────────────────────

def get_request(db: Session, kind: RequestKind, request_id: UUID) -> AnyRequest:
    request = db.query(kind.model).filter(kind.model.id == request_id).first()
    if not request:
        raise NotFoundError(f"{kind.label.capitalize()} not found")
    return request


def has_pending_request(db: Session, student_id: UUID) -> Optional[RequestKind]:
    """
    Which kind of PENDING request the student already holds, if any.
    At most one PENDING request per student across both tables.
    """
    for kind in KINDS:
        exists = db.query(kind.model.id).filter(
            kind.model.student_id == student_id,
            kind.model.status == RequestStatus.PENDING,
        ).first()
        if exists:
            return kind
    return None


def ensure_no_pending_request(db: Session, student_id: UUID) -> None:
    pending = has_pending_request(db, student_id)
    if pending is TRIAL:
        raise InvalidStateError(
            "You already have a pending trial request. "
            "Please wait for a tutor to accept or cancel it."
        )
    if pending is SESSION:
        raise InvalidStateError(
            "You have a pending session request. "
            "Please wait for it to be accepted or cancel it first."
        )


def owner_emails(request: AnyRequest) -> List[str]:
    if isinstance(request, TrialRequest):
        return [e.lower() for e in (request.student_email, request.guardian_email) if e]
    if request.student is not None and request.student.email:
        return [request.student.email.lower()]
    return []


def is_owner(request: AnyRequest, actor: Optional[User], email: Optional[str]) -> bool:
    if actor is not None and request.student_id is not None and request.student_id == actor.id:
        return True
    if email and email.strip().lower() in owner_emails(request):
        return True
    return False


def can_view(request: AnyRequest, actor: User) -> bool:
    return (
        actor.role == "admin"
        or request.student_id == actor.id
        or request.accepted_tutor_id == actor.id
    )


def _transition(
    db: Session,
    request: AnyRequest,
    target: str,
    values: Dict,
    conflict_message: str,
) -> None:
    """Atomic PENDING → target. Flushes; caller commits."""
    check_transition(REQUEST_TRANSITIONS, request.status, target, conflict_message)
    model = type(request)
    updated = db.query(model).filter(
        model.id == request.id,
        model.status == RequestStatus.PENDING,
    ).update({model.status: target, **values}, synchronize_session=False)
    if updated != 1:
        db.rollback()
        raise InvalidStateError(conflict_message)


# ── Accept ────────────────────────────────────────────────────────────────────

def accept_request(
    db: Session,
    kind: RequestKind,
    request_id: UUID,
    tutor: User,
    intro_message: Optional[str] = None,
    publisher: Optional[EventPublisher] = None,
    now: Optional[datetime] = None,
) -> AnyRequest:
    """
    First verified tutor of the subject wins.
    Chat, request status and (for trials) the student's has_completed_trial
    flag are committed together.
    """
    now = resolve_now(now)
    request = get_request(db, kind, request_id)
    unavailable = f"This {kind.label} is no longer available"

    if request.status != RequestStatus.PENDING:
        raise InvalidStateError(unavailable, details={"status": request.status})

    if request_is_lapsed(request, now):
        _transition(db, request, RequestStatus.EXPIRED, {}, unavailable)
        db.commit()
        logger.info("%s %s expired on accept", kind.label, request.id)
        raise DeadlineExceededError(f"This {kind.label} has expired")

    tutor_service.require_verified_tutor(db, tutor, "accept requests")
    profile = tutor_service.get_profile(db, tutor.id)
    if not profile.teaches(request.subject_id):
        raise ForbiddenError("You do not teach this subject")
    if request.student_id is None:
        raise InvalidStateError("This request has no student account attached")

    chat = chat_service.create_chat(
        db,
        [request.student_id, tutor.id],
        intro_text=intro_message,
        intro_sender_id=tutor.id,
        now=now,
        **{kind.chat_field: request.id},
    )

    _transition(db, request, RequestStatus.ACCEPTED, {
        kind.model.accepted_tutor_id: tutor.id,
        kind.model.chat_id: chat.id,
        kind.model.accepted_at: now,
    }, unavailable)

    if kind is TRIAL:
        db.query(User).filter(User.id == request.student_id).update(
            {User.has_completed_trial: True}, synchronize_session=False
        )

    db.commit()
    db.refresh(request)
    logger.info("%s %s accepted by tutor %s (chat %s)", kind.label, request.id, tutor.id, chat.id)

    # ── Side effects (after commit, best-effort) ──────────────────────────────
    notify_after_commit(
        db, [request.student_id], f"{kind.event_prefix}_accepted",
        title=f"Your {kind.label} was accepted",
        body=f"{tutor.full_name} accepted your {kind.label}. Say hello in the chat!",
        extra_data={"request_id": str(request.id), "chat_id": str(chat.id)},
        action_url=f"/chats/{chat.id}",
    )
    others = tutor_service.eligible_tutor_ids(db, request.subject_id, exclude=[tutor.id])
    notify_after_commit(
        db, others, f"{kind.event_prefix}_taken",
        title=f"A {kind.label} is no longer available",
        body=f"Another tutor accepted this {kind.label}.",
        extra_data={"request_id": str(request.id)},
    )
    emit(publisher, user_topic(request.student_id), f"{kind.event_prefix}_accepted", {
        "request_id": str(request.id),
        "chat_id": str(chat.id),
        "tutor_id": str(tutor.id),
    })
    emit(publisher, [user_topic(t) for t in others], f"{kind.event_prefix}_taken", {
        "request_id": str(request.id),
    })
    return request


# ── Owner Actions ─────────────────────────────────────────────────────────────

def cancel_request(
    db: Session,
    kind: RequestKind,
    request_id: UUID,
    reason: str,
    actor: Optional[User] = None,
    email: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AnyRequest:
    now = resolve_now(now)
    if not reason or not reason.strip():
        raise ValidationFailureError("Cancellation reason is required")

    request = get_request(db, kind, request_id)
    if not is_owner(request, actor, email):
        raise ForbiddenError(f"You can only cancel your own {kind.label}s")

    message = f"Only pending {kind.label}s can be cancelled"
    if request.status != RequestStatus.PENDING:
        raise InvalidStateError(message, details={"status": request.status})

    _transition(db, request, RequestStatus.CANCELLED, {
        kind.model.cancellation_reason: reason.strip(),
        kind.model.cancelled_at: now,
    }, message)
    db.commit()
    db.refresh(request)
    logger.info("%s %s cancelled", kind.label, request.id)
    return request


def extend_request(
    db: Session,
    kind: RequestKind,
    request_id: UUID,
    actor: Optional[User] = None,
    email: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AnyRequest:
    """
    One extension per request: expires_at = now + 7 days.
    Clears reminder state so the reminder/grace cycle starts over.
    """
    now = resolve_now(now)
    request = get_request(db, kind, request_id)
    if not is_owner(request, actor, email):
        raise ForbiddenError(f"You can only extend your own {kind.label}s")
    if request.status != RequestStatus.PENDING:
        raise InvalidStateError(
            f"Only pending {kind.label}s can be extended",
            details={"status": request.status},
        )
    if (request.extension_count or 0) >= settings.request_max_extensions:
        raise InvalidStateError(f"{kind.label.capitalize()} can only be extended once")

    model = kind.model
    updated = db.query(model).filter(
        model.id == request.id,
        model.status == RequestStatus.PENDING,
        model.extension_count < settings.request_max_extensions,
    ).update({
        model.expires_at: now + timedelta(days=settings.request_extension_days),
        model.is_extended: True,
        model.extension_count: model.extension_count + 1,
        model.reminder_sent_at: None,
        model.final_expires_at: None,
    }, synchronize_session=False)
    if updated != 1:
        db.rollback()
        raise InvalidStateError(f"{kind.label.capitalize()} can only be extended once")

    db.commit()
    db.refresh(request)
    logger.info("%s %s extended to %s", kind.label, request.id, request.expires_at)
    return request


def notify_new_request(db: Session, request: AnyRequest, publisher: Optional[EventPublisher] = None) -> int:
    """Tell every eligible tutor about a new request. Best-effort."""
    kind = kind_of(request)
    tutor_ids = tutor_service.eligible_tutor_ids(db, request.subject_id)
    subject_name = request.subject.name if request.subject else "a subject"
    notify_after_commit(
        db, tutor_ids, f"{kind.event_prefix}_new",
        title=f"New {kind.label} for {subject_name}",
        body=(request.description or "")[:200],
        extra_data={"request_id": str(request.id), "request_type": kind.request_type},
        action_url="/matching",
    )
    emit(publisher, [user_topic(t) for t in tutor_ids], f"{kind.event_prefix}_created", {
        "request_id": str(request.id),
        "subject_id": str(request.subject_id),
    })
    return len(tutor_ids)


# ── Sweeps ────────────────────────────────────────────────────────────────────

def send_expiration_reminders(db: Session, kind: RequestKind, now: Optional[datetime] = None) -> int:
    """
    Lapsed PENDING requests with no reminder yet get reminder_sent_at = now
    and a grace deadline final_expires_at = now + 3 days.
    """
    now = resolve_now(now)
    model = kind.model
    final_deadline = now + timedelta(days=settings.request_reminder_grace_days)

    candidates = db.query(model.id, model.student_id).filter(
        model.status == RequestStatus.PENDING,
        model.expires_at < now,
        model.reminder_sent_at.is_(None),
    ).all()

    reminded = []
    for row in candidates:
        updated = db.query(model).filter(
            model.id == row.id,
            model.status == RequestStatus.PENDING,
            model.reminder_sent_at.is_(None),
        ).update({
            model.reminder_sent_at: now,
            model.final_expires_at: final_deadline,
        }, synchronize_session=False)
        if updated:
            reminded.append(row)
    db.commit()

    for row in reminded:
        notify_after_commit(
            db, [row.student_id], "request_expiring",
            title=f"Your {kind.label} is about to expire",
            body=(
                f"No tutor has accepted your {kind.label} yet. Extend it before "
                f"{final_deadline:%Y-%m-%d %H:%M} UTC or it will be removed."
            ),
            extra_data={"request_id": str(row.id), "final_expires_at": final_deadline.isoformat()},
        )
    return len(reminded)


def auto_delete_expired_requests(db: Session, kind: RequestKind, now: Optional[datetime] = None) -> int:
    now = resolve_now(now)
    model = kind.model
    deleted = db.query(model).filter(
        model.status == RequestStatus.PENDING,
        model.final_expires_at.isnot(None),
        model.final_expires_at < now,
    ).delete(synchronize_session=False)
    db.commit()
    return deleted


def expire_old_requests(db: Session, kind: RequestKind, now: Optional[datetime] = None) -> int:
    """Same selection as the delete sweep, but keeps the row as EXPIRED."""
    now = resolve_now(now)
    model = kind.model
    expired = db.query(model).filter(
        model.status == RequestStatus.PENDING,
        model.final_expires_at.isnot(None),
        model.final_expires_at < now,
    ).update({model.status: RequestStatus.EXPIRED}, synchronize_session=False)
    db.commit()
    return expired


def run_request_sweep(
    db: Session,
    now: Optional[datetime] = None,
    mode: Optional[str] = None,
) -> Dict[str, int]:
    """
    Reminder first, then delete (or expire). A request is never removed
    without having been reminded, because only reminders set final_expires_at.
    """
    now = resolve_now(now)
    mode = mode or settings.request_expiry_mode
    if mode not in ("delete", "expire"):
        raise ValidationFailureError(f"Unknown request expiry mode: {mode}")

    counts: Dict[str, int] = {}
    for kind in KINDS:
        counts[f"{kind.event_prefix}_reminded"] = send_expiration_reminders(db, kind, now)
        if mode == "delete":
            counts[f"{kind.event_prefix}_deleted"] = auto_delete_expired_requests(db, kind, now)
        else:
            counts[f"{kind.event_prefix}_expired"] = expire_old_requests(db, kind, now)
    logger.info("Request sweep (%s): %s", mode, counts)
    return counts


# ── Matching View ─────────────────────────────────────────────────────────────

def matching_requests(
    db: Session,
    tutor: User,
    page: int = 1,
    limit: int = 20,
    now: Optional[datetime] = None,
) -> Dict:
    """
    Open trial + session requests for the subjects the tutor teaches,
    newest first. Lapsed requests are hidden even before a sweep touches them.
    """
    now = resolve_now(now)
    profile = tutor_service.require_verified_tutor(db, tutor, "view matching requests")
    subject_ids = [s.id for s in profile.subjects]
    if not subject_ids:
        return {"items": [], "total": 0, "page": page, "limit": limit}

    items = []
    for kind in KINDS:
        model = kind.model
        rows = db.query(model).filter(
            model.status == RequestStatus.PENDING,
            model.subject_id.in_(subject_ids),
            model.expires_at >= now,
        ).all()
        items.extend((kind, row) for row in rows if effective_request_status(row, now) == RequestStatus.PENDING)

    items.sort(key=lambda pair: pair[1].created_at, reverse=True)
    total = len(items)
    start = (page - 1) * limit
    return {
        "items": items[start:start + limit],
        "total": total,
        "page": page,
        "limit": limit,
    }


def list_student_requests(db: Session, kind: RequestKind, student: User) -> List[AnyRequest]:
    model = kind.model
    query = db.query(model)
    if kind is TRIAL and student.email:
        query = query.filter(or_(
            model.student_id == student.id,
            model.guardian_email == student.email,
        ))
    else:
        query = query.filter(model.student_id == student.id)
    return query.order_by(model.created_at.desc()).all()
