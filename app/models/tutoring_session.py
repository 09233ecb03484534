# app/models/tutoring_session.py
# A booked tutoring appointment, created when a student accepts a proposal.
#
# Status lifecycle (sweep-driven unless noted):
#   SCHEDULED → STARTING_SOON (T-10min) → IN_PROGRESS (start) → EXPIRED (end passed)
#   SCHEDULED | STARTING_SOON → CANCELLED              (either party)
#   SCHEDULED | STARTING_SOON → RESCHEDULE_REQUESTED → SCHEDULED (approve/reject)
#   any non-terminal → COMPLETED                       (admin override, or tutor feedback submit)
#
# Transition rules live in app/services/lifecycle.py.

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Enum,
    Float,
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


class SessionStatus:
    SCHEDULED = "SCHEDULED"
    STARTING_SOON = "STARTING_SOON"
    IN_PROGRESS = "IN_PROGRESS"
    AWAITING_RESPONSE = "AWAITING_RESPONSE"
    RESCHEDULE_REQUESTED = "RESCHEDULE_REQUESTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    EXPIRED = "EXPIRED"


class RescheduleStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"       # approved too late, the new window had already closed


class PaymentStatus:
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class TeacherCompletionStatus:
    NOT_APPLICABLE = "NOT_APPLICABLE"
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class TutoringSession(Base):
    __tablename__ = "tutoring_sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # ── Parties ───────────────────────────────────────────────────────────────
    student_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    tutor_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # ── Terms ─────────────────────────────────────────────────────────────────
    subject = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    start_time = Column(TZDateTime, nullable=False, index=True)
    end_time = Column(TZDateTime, nullable=False, index=True)
    duration = Column(Integer, nullable=False)              # minutes

    # ── Pricing (fixed at booking, never recomputed) ──────────────────────────
    price_per_hour = Column(Float, nullable=False)
    total_price = Column(Float, nullable=False)             # price_per_hour * duration / 60
    payment_status = Column(
        Enum("PENDING", "PAID", "FAILED", "REFUNDED", name="session_payment_status_enum"),
        nullable=False,
        default=PaymentStatus.PENDING,
    )

    # ── Status ────────────────────────────────────────────────────────────────
    status = Column(
        Enum(
            "SCHEDULED", "STARTING_SOON", "IN_PROGRESS", "AWAITING_RESPONSE",
            "RESCHEDULE_REQUESTED", "COMPLETED", "CANCELLED", "NO_SHOW", "EXPIRED",
            name="session_status_enum",
        ),
        nullable=False,
        default=SessionStatus.SCHEDULED,
        index=True,
    )

    # ── Origin ────────────────────────────────────────────────────────────────
    chat_id = Column(Uuid, ForeignKey("chats.id", ondelete="SET NULL"), nullable=True, index=True)
    message_id = Column(Uuid, nullable=True)
    is_trial = Column(Boolean, nullable=False, default=False)
    trial_request_id = Column(Uuid, nullable=True)

    # ── Reschedule ────────────────────────────────────────────────────────────
    # {requested_by, requested_at, new_start_time, new_end_time, reason,
    #  status: PENDING|APPROVED|REJECTED, responded_at, responded_by}
    reschedule_request = Column(JSON, nullable=True)
    previous_start_time = Column(TZDateTime, nullable=True)
    previous_end_time = Column(TZDateTime, nullable=True)

    # ── Lifecycle Stamps ──────────────────────────────────────────────────────
    started_at = Column(TZDateTime, nullable=True)
    completed_at = Column(TZDateTime, nullable=True)
    expired_at = Column(TZDateTime, nullable=True)
    cancelled_at = Column(TZDateTime, nullable=True)
    cancelled_by = Column(Uuid, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # ── Tutor Feedback Obligation ─────────────────────────────────────────────
    teacher_completion_status = Column(
        Enum("NOT_APPLICABLE", "PENDING", "COMPLETED", name="teacher_completion_status_enum"),
        nullable=False,
        default=TeacherCompletionStatus.NOT_APPLICABLE,
    )
    teacher_completed_at = Column(TZDateTime, nullable=True)
    tutor_feedback_id = Column(Uuid, nullable=True)

    created_at = Column(TZDateTime, nullable=False, default=utcnow)
    updated_at = Column(TZDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    student = relationship("User", foreign_keys=[student_id])
    tutor = relationship("User", foreign_keys=[tutor_id])

    def is_party(self, user_id) -> bool:
        return user_id in (self.student_id, self.tutor_id)

    def __repr__(self) -> str:
        return f"<TutoringSession id={self.id} status={self.status} start={self.start_time}>"
