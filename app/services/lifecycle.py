# app/services/lifecycle.py
# Centralised state rules for every lifecycle entity.
#
# effective_status(entity, now) is the single answer to "what state is this
# in right now". Stored status columns are a cache of it: sweeps persist what
# effective_status already reports, and user actions check it before acting.
#
# Allowed transitions are declared once per entity (TRANSITIONS) and every
# service goes through check_transition() before writing a new status.

import calendar
from datetime import datetime, timedelta, timezone
from typing import Dict, FrozenSet, Optional, Union

from app.core.config import settings
from app.core.exceptions import InvalidStateError
from app.models.feedback import FeedbackStatus, TutorSessionFeedback
from app.models.session_request import SessionRequest
from app.models.subscription import (
    StudentSubscription,
    SubscriptionStatus,
    SubscriptionTier,
)
from app.models.trial_request import RequestStatus, TrialRequest
from app.models.tutoring_session import SessionStatus, TutoringSession

AnyRequest = Union[TrialRequest, SessionRequest]


# ── Time helpers ──────────────────────────────────────────────────────────────

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_now(now: Optional[datetime] = None) -> datetime:
    return as_utc(now) if now is not None else datetime.now(timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping the day (Jan 31 + 1 → Feb 28/29)."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


# ── Transition tables ─────────────────────────────────────────────────────────

REQUEST_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    RequestStatus.PENDING: frozenset({
        RequestStatus.ACCEPTED,
        RequestStatus.CANCELLED,
        RequestStatus.EXPIRED,
    }),
    RequestStatus.ACCEPTED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
    RequestStatus.EXPIRED: frozenset(),
}

SESSION_LIVE: FrozenSet[str] = frozenset({
    SessionStatus.SCHEDULED,
    SessionStatus.STARTING_SOON,
    SessionStatus.IN_PROGRESS,
})

SESSION_TERMINAL: FrozenSet[str] = frozenset({
    SessionStatus.COMPLETED,
    SessionStatus.CANCELLED,
    SessionStatus.NO_SHOW,
    SessionStatus.EXPIRED,
})

SESSION_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    SessionStatus.SCHEDULED: frozenset({
        SessionStatus.STARTING_SOON,
        SessionStatus.IN_PROGRESS,
        SessionStatus.EXPIRED,
        SessionStatus.CANCELLED,
        SessionStatus.RESCHEDULE_REQUESTED,
        SessionStatus.COMPLETED,
        SessionStatus.NO_SHOW,
    }),
    SessionStatus.STARTING_SOON: frozenset({
        SessionStatus.IN_PROGRESS,
        SessionStatus.EXPIRED,
        SessionStatus.CANCELLED,
        SessionStatus.RESCHEDULE_REQUESTED,
        SessionStatus.COMPLETED,
        SessionStatus.NO_SHOW,
    }),
    SessionStatus.IN_PROGRESS: frozenset({
        SessionStatus.EXPIRED,
        SessionStatus.COMPLETED,
        SessionStatus.NO_SHOW,
    }),
    SessionStatus.RESCHEDULE_REQUESTED: frozenset({
        SessionStatus.SCHEDULED,
        SessionStatus.COMPLETED,
    }),
    SessionStatus.AWAITING_RESPONSE: frozenset({
        SessionStatus.SCHEDULED,
        SessionStatus.COMPLETED,
    }),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.CANCELLED: frozenset(),
    SessionStatus.NO_SHOW: frozenset(),
    SessionStatus.EXPIRED: frozenset(),
}

SUBSCRIPTION_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    SubscriptionStatus.PENDING: frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED}),
    SubscriptionStatus.ACTIVE: frozenset({SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED}),
    SubscriptionStatus.CANCELLED: frozenset(),
    SubscriptionStatus.EXPIRED: frozenset(),
}

FEEDBACK_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    FeedbackStatus.PENDING: frozenset({FeedbackStatus.SUBMITTED}),
    FeedbackStatus.SUBMITTED: frozenset(),
}


def sources_for(table: Dict[str, FrozenSet[str]], target: str) -> FrozenSet[str]:
    """Every status from which `target` is reachable in one step."""
    return frozenset(s for s, targets in table.items() if target in targets)


def check_transition(
    table: Dict[str, FrozenSet[str]],
    current: str,
    target: str,
    message: Optional[str] = None,
) -> None:
    if target not in table.get(current, frozenset()):
        raise InvalidStateError(
            message or f"Cannot move from {current} to {target}.",
            details={"current_status": current, "target_status": target},
        )


# ── Requests ──────────────────────────────────────────────────────────────────

def request_is_lapsed(request: AnyRequest, now: datetime) -> bool:
    return now > as_utc(request.expires_at)


def effective_request_status(request: AnyRequest, now: datetime) -> str:
    if request.status != RequestStatus.PENDING:
        return request.status
    if request_is_lapsed(request, now):
        return RequestStatus.EXPIRED
    return RequestStatus.PENDING


# ── Sessions ──────────────────────────────────────────────────────────────────

def session_is_over(session: TutoringSession, now: datetime) -> bool:
    """The one rule for "this session's time window has ended"."""
    return as_utc(session.end_time) <= now


def effective_session_status(session: TutoringSession, now: datetime) -> str:
    """
    Time-driven view of a session.
    Only live statuses move with the clock; reschedule and terminal states
    change through explicit actions alone.
    """
    status = session.status
    if status not in SESSION_LIVE:
        return status

    start = as_utc(session.start_time)
    if session_is_over(session, now):
        return SessionStatus.EXPIRED
    if start <= now:
        return SessionStatus.IN_PROGRESS
    if status == SessionStatus.IN_PROGRESS:
        return status
    if start <= now + timedelta(minutes=settings.starting_soon_minutes):
        return SessionStatus.STARTING_SOON
    return status


# ── Feedback ──────────────────────────────────────────────────────────────────

def feedback_due_date(completed_at: datetime) -> datetime:
    """3rd (feedback_due_day) of the month after completion, end of day UTC."""
    completed_at = as_utc(completed_at)
    next_month = add_months(completed_at.replace(day=1), 1)
    return next_month.replace(
        day=settings.feedback_due_day,
        hour=23, minute=59, second=59, microsecond=999000,
    )


def effective_feedback_status(feedback: TutorSessionFeedback, now: datetime) -> str:
    if feedback.status == FeedbackStatus.SUBMITTED:
        return FeedbackStatus.SUBMITTED
    if feedback.payment_forfeited:
        return "FORFEITED"
    if now > as_utc(feedback.due_date):
        return "OVERDUE"
    return FeedbackStatus.PENDING


# ── Subscriptions ─────────────────────────────────────────────────────────────

def subscription_end_date(tier: str, start: datetime, commitment_months: int) -> datetime:
    if tier == SubscriptionTier.FLEXIBLE or commitment_months <= 0:
        return add_months(start, 12 * 100)
    return add_months(start, commitment_months)


def effective_subscription_status(subscription: StudentSubscription, now: datetime) -> str:
    if subscription.status == SubscriptionStatus.ACTIVE and as_utc(subscription.end_date) < now:
        return SubscriptionStatus.EXPIRED
    return subscription.status


# ── Dispatcher ────────────────────────────────────────────────────────────────

def effective_status(entity, now: Optional[datetime] = None) -> str:
    """Derived status of any lifecycle entity at `now` (defaults to the clock)."""
    now = resolve_now(now)
    if isinstance(entity, (TrialRequest, SessionRequest)):
        return effective_request_status(entity, now)
    if isinstance(entity, TutoringSession):
        return effective_session_status(entity, now)
    if isinstance(entity, TutorSessionFeedback):
        return effective_feedback_status(entity, now)
    if isinstance(entity, StudentSubscription):
        return effective_subscription_status(entity, now)
    raise TypeError(f"No lifecycle rules for {type(entity).__name__}")
