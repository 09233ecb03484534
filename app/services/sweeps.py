# app/services/sweeps.py
# Registry of the periodic sweeps, shared by the cron CLI (app/jobs/run_sweeps.py)
# and the admin trigger endpoint (POST /admin/sweeps/{name}).
#
# Every sweep takes an explicit `now` and only writes through conditional
# updates, so running one twice or alongside user actions is safe.

import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.services import (
    feedback_service,
    request_service,
    session_service,
    subscription_service,
)
from app.services.events import EventPublisher
from app.services.lifecycle import resolve_now

logger = logging.getLogger("lernhub.sweeps")

SweepFn = Callable[[Session, datetime, Optional[str], Optional[EventPublisher]], Dict[str, int]]


def _sessions(db, now, mode, publisher):
    return session_service.run_status_sweep(db, now, publisher)


def _requests(db, now, mode, publisher):
    return request_service.run_request_sweep(db, now, mode)


def _feedback_forfeit(db, now, mode, publisher):
    return {"forfeited": feedback_service.forfeit_overdue_feedback(db, now)}


def _feedback_reminders(db, now, mode, publisher):
    sent = feedback_service.send_feedback_reminders(db, settings.feedback_reminder_horizons, now)
    return {f"due_within_{days}d": count for days, count in sent.items()}


def _session_reminders(db, now, mode, publisher):
    return {"reminded": session_service.send_session_reminders(db, now)}


def _subscriptions(db, now, mode, publisher):
    return {"expired": subscription_service.expire_old_subscriptions(db, now)}


# "all" runs these in insertion order; forfeiture precedes feedback reminders.
SWEEPS: Dict[str, SweepFn] = {
    "sessions": _sessions,
    "requests": _requests,
    "feedback-forfeit": _feedback_forfeit,
    "feedback-reminders": _feedback_reminders,
    "session-reminders": _session_reminders,
    "subscriptions": _subscriptions,
}


def run_sweep(
    db: Session,
    name: str,
    now: Optional[datetime] = None,
    mode: Optional[str] = None,
    publisher: Optional[EventPublisher] = None,
) -> Dict[str, int]:
    if name not in SWEEPS:
        raise NotFoundError(f"Unknown sweep: {name}", details={"available": sorted(SWEEPS)})
    now = resolve_now(now)
    logger.info("Running sweep '%s' at %s", name, now.isoformat())
    return SWEEPS[name](db, now, mode, publisher)


def run_all(
    db: Session,
    now: Optional[datetime] = None,
    mode: Optional[str] = None,
    publisher: Optional[EventPublisher] = None,
) -> Dict[str, Dict[str, int]]:
    """One `now` for the whole pass."""
    now = resolve_now(now)
    return {name: run_sweep(db, name, now, mode, publisher) for name in SWEEPS}
