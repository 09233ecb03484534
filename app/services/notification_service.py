# app/services/notification_service.py
# Creates in-app notifications and sends emails via SendGrid
#
# Usage (after the business transaction committed):
#   from app.services.notification_service import notify_after_commit
#   notify_after_commit(db, [student_id], "trial_request_accepted",
#                       title="Your trial request was accepted", body="...")
#
# Notification failures never undo lifecycle state: they run in their own
# transaction and are logged when they fail.

import html
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.db.types import utcnow
from app.models.notification import Notification
from app.models.user import User
from app.services.lifecycle import resolve_now

logger = logging.getLogger("lernhub.notifications")


# ── Notification Types ────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {
    "trial_request_new",            # New trial request for a subject you teach
    "trial_request_accepted",       # A tutor accepted your trial request
    "trial_request_taken",          # Another tutor accepted a request you saw
    "session_request_new",
    "session_request_accepted",
    "session_request_taken",
    "request_expiring",             # Request lapsed, extend within the grace window
    "request_expired",
    "session_proposed",             # Tutor proposed a session in chat
    "proposal_accepted",
    "proposal_rejected",
    "session_booked",
    "session_starting_soon",
    "session_reminder",             # Upcoming session tomorrow
    "session_cancelled",
    "session_completed",
    "reschedule_requested",
    "reschedule_approved",
    "reschedule_rejected",
    "feedback_due",
    "feedback_submitted",
    "feedback_forfeited",
    "review_received",              # A student reviewed one of your sessions
    "subscription_active",
    "subscription_cancelled",
    "subscription_expired",
    "verification_approved",
}

# Which types also send an email
EMAIL_TYPES = {
    "trial_request_accepted",
    "session_request_accepted",
    "request_expiring",
    "session_booked",
    "session_cancelled",
    "feedback_due",
    "feedback_forfeited",
    "subscription_active",
    "subscription_expired",
    "verification_approved",
}


def notify(
    db: Session,
    user_id: UUID,
    notification_type: str,
    title: str,
    body: str,
    extra_data: Optional[Dict[str, Any]] = None,
    action_url: Optional[str] = None,
    send_email: bool = True,
) -> Notification:
    """
    Create an in-app notification and optionally send an email.
    Flushes but does not commit.

    Args:
        db: Database session
        user_id: Recipient user ID
        notification_type: One of NOTIFICATION_TYPES
        title: Short notification title
        body: Full notification body
        extra_data: Optional dict stored as JSON (e.g. session_id, chat_id)
        action_url: Frontend route the notification links to
        send_email: Override email sending (default: based on type)
    """
    if notification_type not in NOTIFICATION_TYPES:
        raise ValueError(f"Unknown notification type: {notification_type}")

    notification = Notification(
        user_id=user_id,
        notification_type=notification_type,
        title=title,
        body=body,
        action_url=action_url,
        extra_data=extra_data or {},
        is_read=False,
    )
    db.add(notification)
    db.flush()

    if send_email and notification_type in EMAIL_TYPES:
        try:
            sent = _send_email_notification(user_id, title, body, db)
            if sent:
                notification.email_sent = True
                notification.email_sent_at = utcnow()
        except Exception as e:
            notification.email_error = str(e)[:500]
            logger.warning("Email notification failed for user %s: %s", user_id, e)

    return notification


def notify_after_commit(
    db: Session,
    user_ids: Iterable[UUID],
    notification_type: str,
    title: str,
    body: str,
    extra_data: Optional[Dict[str, Any]] = None,
    action_url: Optional[str] = None,
) -> int:
    """
    Notify several users in a transaction of its own.
    Returns the number of notifications written (0 on failure).
    """
    recipients = list(dict.fromkeys(u for u in user_ids if u is not None))
    if not recipients:
        return 0
    try:
        for user_id in recipients:
            notify(db, user_id, notification_type, title, body,
                   extra_data=extra_data, action_url=action_url)
        db.commit()
        return len(recipients)
    except Exception as e:
        db.rollback()
        logger.error("Failed to write %s notifications: %s", notification_type, e)
        return 0


# ── Inbox ─────────────────────────────────────────────────────────────────────

def _inbox(db: Session, user_id: UUID, unread_only: bool = False):
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query


def list_notifications(
    db: Session,
    user_id: UUID,
    unread_only: bool = False,
    notification_type: Optional[str] = None,
    skip: int = 0,
    limit: int = 20,
) -> Tuple[List[Notification], int, int]:
    """Newest first. Returns (page, total matching, unread overall)."""
    query = _inbox(db, user_id, unread_only)
    if notification_type:
        query = query.filter(Notification.notification_type == notification_type)
    total = query.count()
    page = query.order_by(Notification.created_at.desc()).offset(skip).limit(limit).all()
    return page, total, unread_count(db, user_id)


def unread_count(db: Session, user_id: UUID) -> int:
    return _inbox(db, user_id, unread_only=True).count()


def _owned(db: Session, user_id: UUID, notification_id: UUID) -> Notification:
    notification = _inbox(db, user_id).filter(Notification.id == notification_id).first()
    if notification is None:
        raise NotFoundError("Notification not found")
    return notification


def mark_read(db: Session, user_id: UUID, notification_id: UUID,
              now: Optional[datetime] = None) -> Notification:
    notification = _owned(db, user_id, notification_id)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = resolve_now(now)
        db.commit()
    return notification


def mark_all_read(db: Session, user_id: UUID, now: Optional[datetime] = None) -> int:
    marked = _inbox(db, user_id, unread_only=True).update(
        {Notification.is_read: True, Notification.read_at: resolve_now(now)},
        synchronize_session=False,
    )
    db.commit()
    return marked


def delete_notification(db: Session, user_id: UUID, notification_id: UUID) -> None:
    db.delete(_owned(db, user_id, notification_id))
    db.commit()


def _send_email_notification(
    user_id: UUID,
    subject: str,
    body: str,
    db: Session,
) -> bool:
    """
    Send email via SendGrid.
    No-op in dev mode if SENDGRID_API_KEY is not configured.
    """
    if not settings.sendgrid_api_key:
        logger.debug("Email skipped (no SendGrid key): %s", subject)
        return False

    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.email:
        return False

    import sendgrid
    from sendgrid.helpers.mail import Mail

    sg = sendgrid.SendGridAPIClient(api_key=settings.sendgrid_api_key)
    message = Mail(
        from_email=(settings.email_from, settings.email_from_name),
        to_emails=user.email,
        subject=f"LernHub: {subject}",
        plain_text_content=body,
        html_content=_build_email_html(user.full_name, subject, body),
    )
    sg.send(message)
    logger.info("Email sent to %s: %s", user.email, subject)
    return True


def _build_email_html(full_name: str, subject: str, body: str) -> str:
    # Names and bodies carry user text (chat titles, reasons)
    full_name, subject, body = (html.escape(part or "") for part in (full_name, subject, body))
    return f"""
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; max-width: 600px; margin: auto; padding: 20px;">
    <div style="background: #2563eb; padding: 20px; border-radius: 8px 8px 0 0;">
        <h1 style="color: white; margin: 0;">LernHub</h1>
    </div>
    <div style="background: #fff; padding: 24px; border: 1px solid #e5e7eb; border-radius: 0 0 8px 8px;">
        <p>Hallo {full_name},</p>
        <h2 style="color: #1f2937;">{subject}</h2>
        <p style="color: #4b5563; line-height: 1.6;">{body}</p>
        <hr style="border: none; border-top: 1px solid #e5e7eb; margin: 24px 0;">
        <p style="color: #9ca3af; font-size: 12px;">
            You received this email from LernHub. Manage notifications in your account settings.
        </p>
    </div>
</body>
</html>
"""
