# app/models/chat.py
# Chat between a student and a tutor, created when a request is accepted.
#
# Flow:
#   1. Tutor accepts a trial/session request → Chat created, intro message optional
#   2. Tutor posts a SESSION_PROPOSAL message (SessionProposal row, status PROPOSED)
#   3. Student accepts → TutoringSession created, proposal ACCEPTED
#      or rejects / counter-proposes

import uuid

from sqlalchemy import (
    Column,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.db.base_class import Base
from app.db.types import TZDateTime, utcnow


class MessageType:
    TEXT = "TEXT"
    SESSION_PROPOSAL = "SESSION_PROPOSAL"


class ProposalStatus:
    PROPOSED = "PROPOSED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    COUNTER_PROPOSED = "COUNTER_PROPOSED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


chat_participants = Table(
    "chat_participants",
    Base.metadata,
    Column("chat_id", Uuid, ForeignKey("chats.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Chat(Base):
    __tablename__ = "chats"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # ── Origin (exactly one is set for request-born chats) ────────────────────
    trial_request_id = Column(Uuid, ForeignKey("trial_requests.id", ondelete="SET NULL"), nullable=True)
    session_request_id = Column(Uuid, ForeignKey("session_requests.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(TZDateTime, nullable=False, default=utcnow)
    last_message_at = Column(TZDateTime, nullable=True)

    participants = relationship("User", secondary=chat_participants, lazy="selectin")
    messages = relationship(
        "Message", back_populates="chat", cascade="all, delete-orphan",
        order_by="Message.created_at",
    )

    def has_participant(self, user_id) -> bool:
        return any(p.id == user_id for p in self.participants)

    def __repr__(self) -> str:
        return f"<Chat id={self.id}>"


class Message(Base):
    __tablename__ = "messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    chat_id = Column(Uuid, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    message_type = Column(
        Enum("TEXT", "SESSION_PROPOSAL", name="message_type_enum"),
        nullable=False,
        default=MessageType.TEXT,
    )
    text = Column(Text, nullable=True)

    created_at = Column(TZDateTime, nullable=False, default=utcnow, index=True)

    chat = relationship("Chat", back_populates="messages")
    sender = relationship("User")
    proposal = relationship(
        "SessionProposal", back_populates="message", uselist=False,
        cascade="all, delete-orphan",
    )


class SessionProposal(Base):
    """
    Session terms embedded in a SESSION_PROPOSAL message.
    Not a booking: a TutoringSession only exists once the student accepts.
    """
    __tablename__ = "session_proposals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    message_id = Column(
        Uuid, ForeignKey("messages.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    # ── Terms ─────────────────────────────────────────────────────────────────
    subject = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    start_time = Column(TZDateTime, nullable=False)
    end_time = Column(TZDateTime, nullable=False)
    duration = Column(Integer, nullable=False)              # minutes
    price_per_hour = Column(Float, nullable=False)          # EUR
    total_price = Column(Float, nullable=False)

    # ── Status ────────────────────────────────────────────────────────────────
    status = Column(
        Enum(
            "PROPOSED", "ACCEPTED", "REJECTED", "COUNTER_PROPOSED", "EXPIRED", "CANCELLED",
            name="proposal_status_enum",
        ),
        nullable=False,
        default=ProposalStatus.PROPOSED,
        index=True,
    )
    expires_at = Column(TZDateTime, nullable=False)          # = start_time
    rejection_reason = Column(Text, nullable=True)
    responded_at = Column(TZDateTime, nullable=True)

    session_id = Column(Uuid, ForeignKey("tutoring_sessions.id", ondelete="SET NULL"), nullable=True)
    original_proposal_id = Column(Uuid, ForeignKey("session_proposals.id"), nullable=True)

    message = relationship("Message", back_populates="proposal")

    def __repr__(self) -> str:
        return f"<SessionProposal message={self.message_id} status={self.status}>"
