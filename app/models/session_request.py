# app/models/session_request.py
# Session request: a returning (post-trial) student asks for a new tutor match.
# Same lifecycle as TrialRequest (PENDING → ACCEPTED | CANCELLED | EXPIRED),
# members only, default lifetime 7 days.

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.db.base_class import Base
from app.db.types import TZDateTime, utcnow
from app.models.trial_request import RequestStatus


class SessionRequest(Base):
    __tablename__ = "session_requests"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    student_id = Column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # ── Request Details ───────────────────────────────────────────────────────
    subject_id = Column(Uuid, ForeignKey("subjects.id"), nullable=False, index=True)
    grade_level = Column(String(50), nullable=True)
    school_type = Column(String(50), nullable=True)
    description = Column(Text, nullable=False)
    learning_goals = Column(Text, nullable=True)
    documents = Column(JSON, nullable=True)

    # ── Status ────────────────────────────────────────────────────────────────
    status = Column(
        Enum("PENDING", "ACCEPTED", "EXPIRED", "CANCELLED", name="session_request_status_enum"),
        nullable=False,
        default=RequestStatus.PENDING,
        index=True,
    )

    # ── Expiry / Extension ────────────────────────────────────────────────────
    expires_at = Column(TZDateTime, nullable=False, index=True)
    reminder_sent_at = Column(TZDateTime, nullable=True)
    final_expires_at = Column(TZDateTime, nullable=True, index=True)
    is_extended = Column(Boolean, nullable=False, default=False)
    extension_count = Column(Integer, nullable=False, default=0)

    # ── Resolution ────────────────────────────────────────────────────────────
    accepted_tutor_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    chat_id = Column(Uuid, nullable=True)
    accepted_at = Column(TZDateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(TZDateTime, nullable=True)

    created_at = Column(TZDateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(TZDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    subject = relationship("Subject")
    student = relationship("User", foreign_keys=[student_id])
    accepted_tutor = relationship("User", foreign_keys=[accepted_tutor_id])

    def __repr__(self) -> str:
        return f"<SessionRequest id={self.id} student={self.student_id} status={self.status}>"
