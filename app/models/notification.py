# app/models/notification.py
# In-app notification queue for lifecycle events

import uuid

from sqlalchemy import Boolean, Column, ForeignKey, JSON, String, Text, Uuid
from sqlalchemy.orm import relationship

from app.db.base_class import Base
from app.db.types import TZDateTime, utcnow


class Notification(Base):
    """
    In-app notification for a user.
    Created by notification_service.py after the triggering write commits.
    Delivered via GET /api/v1/notifications; realtime push goes through
    the event publisher.
    """
    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # One of notification_service.NOTIFICATION_TYPES
    notification_type = Column(String(50), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=True)
    action_url = Column(String(512), nullable=True)

    # Named extra_data (not metadata -- reserved by SQLAlchemy)
    #   trial_request_accepted: {"trial_request_id": "...", "chat_id": "..."}
    #   feedback_due:           {"feedback_id": "...", "due_date": "..."}
    extra_data = Column(JSON, nullable=True)

    is_read = Column(Boolean, nullable=False, default=False, index=True)
    read_at = Column(TZDateTime, nullable=True)

    email_sent = Column(Boolean, nullable=False, default=False)
    email_sent_at = Column(TZDateTime, nullable=True)
    email_error = Column(Text, nullable=True)

    created_at = Column(TZDateTime, nullable=False, default=utcnow, index=True)

    user = relationship("User", back_populates="notifications")

    def __repr__(self) -> str:
        return (
            f"<Notification user={self.user_id} "
            f"type={self.notification_type} read={self.is_read}>"
        )
