# app/models/trial_request.py
# Trial request flow: first-time student → any verified tutor of the subject
#
# Flow:
#   1. Student (member) or guest creates a request → POST /trial-requests/
#      Guests get an account provisioned from student/guardian contact data
#   2. Verified tutors teaching the subject see it → GET /matching/requests
#   3. First tutor to accept wins → Chat created, student.has_completed_trial = True
#   4. Unanswered requests get a reminder after expires_at, then a 3-day grace
#      window (final_expires_at), then are deleted or marked EXPIRED by the sweep
#
# Status lifecycle: PENDING → ACCEPTED | CANCELLED | EXPIRED

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
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


class RequestStatus:
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class TrialRequest(Base):
    __tablename__ = "trial_requests"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # ── Requester ─────────────────────────────────────────────────────────────
    # Set for members and for guests once their account is provisioned
    student_id = Column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # ── Student Info (guest onboarding) ───────────────────────────────────────
    student_name = Column(String(255), nullable=False)
    student_email = Column(String(255), nullable=True, index=True)
    student_is_under_18 = Column(Boolean, nullable=False, default=False)
    student_date_of_birth = Column(Date, nullable=True)
    guardian_name = Column(String(255), nullable=True)
    guardian_email = Column(String(255), nullable=True, index=True)
    guardian_phone = Column(String(30), nullable=True)

    # ── Request Details ───────────────────────────────────────────────────────
    subject_id = Column(Uuid, ForeignKey("subjects.id"), nullable=False, index=True)
    grade_level = Column(String(50), nullable=True)
    school_type = Column(String(50), nullable=True)
    description = Column(Text, nullable=False)
    learning_goals = Column(Text, nullable=True)
    preferred_language = Column(
        Enum("ENGLISH", "GERMAN", name="preferred_language_enum"),
        nullable=False,
        default="GERMAN",
    )
    preferred_date_time = Column(TZDateTime, nullable=True)
    documents = Column(JSON, nullable=True)                 # ["https://.../report.pdf"]

    # ── Status ────────────────────────────────────────────────────────────────
    status = Column(
        Enum("PENDING", "ACCEPTED", "EXPIRED", "CANCELLED", name="trial_request_status_enum"),
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

    # ── Timestamps ────────────────────────────────────────────────────────────
    created_at = Column(TZDateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(TZDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # ── Relationships ─────────────────────────────────────────────────────────
    subject = relationship("Subject")
    student = relationship("User", foreign_keys=[student_id])
    accepted_tutor = relationship("User", foreign_keys=[accepted_tutor_id])

    def __repr__(self) -> str:
        return f"<TrialRequest id={self.id} subject={self.subject_id} status={self.status}>"
