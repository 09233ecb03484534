# app/services/chat_service.py
# Chats between a student and a tutor.
# Created as part of request acceptance (same transaction), then used for
# free text and session proposals.

from datetime import datetime
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.exceptions import ForbiddenError, NotFoundError, ValidationFailureError
from app.models.chat import Chat, Message, MessageType, chat_participants
from app.models.user import User, UserRole
from app.services.events import EventPublisher, chat_topic, emit
from app.services.lifecycle import resolve_now

MAX_MESSAGE_LENGTH = 4000


def create_chat(
    db: Session,
    participant_ids: Sequence[UUID],
    trial_request_id: Optional[UUID] = None,
    session_request_id: Optional[UUID] = None,
    intro_text: Optional[str] = None,
    intro_sender_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> Chat:
    """Adds the chat (and optional intro message) to the session. Flushes only."""
    now = resolve_now(now)
    participants = db.query(User).filter(User.id.in_(list(participant_ids))).all()
    if len(participants) != len(set(participant_ids)):
        raise NotFoundError("Chat participant not found")

    chat = Chat(
        trial_request_id=trial_request_id,
        session_request_id=session_request_id,
        created_at=now,
        participants=participants,
    )
    db.add(chat)
    db.flush()

    if intro_text and intro_text.strip():
        add_message(db, chat, intro_sender_id, intro_text.strip(), now=now)
    return chat


def add_message(
    db: Session,
    chat: Chat,
    sender_id: UUID,
    text: Optional[str],
    message_type: str = MessageType.TEXT,
    now: Optional[datetime] = None,
) -> Message:
    now = resolve_now(now)
    message = Message(
        chat_id=chat.id,
        sender_id=sender_id,
        message_type=message_type,
        text=text,
        created_at=now,
    )
    db.add(message)
    chat.last_message_at = now
    db.flush()
    return message


def get_chat_for_user(db: Session, chat_id: UUID, user: User) -> Chat:
    chat = db.query(Chat).filter(Chat.id == chat_id).first()
    if not chat:
        raise NotFoundError("Chat not found")
    if user.role != UserRole.ADMIN and not chat.has_participant(user.id):
        raise ForbiddenError("You are not a participant of this chat")
    return chat


def other_participant_id(chat: Chat, user_id: UUID) -> Optional[UUID]:
    for participant in chat.participants:
        if participant.id != user_id:
            return participant.id
    return None


def list_chats(db: Session, user: User) -> List[Chat]:
    return (
        db.query(Chat)
        .join(chat_participants, chat_participants.c.chat_id == Chat.id)
        .filter(chat_participants.c.user_id == user.id)
        .order_by(Chat.last_message_at.desc().nullslast(), Chat.created_at.desc())
        .all()
    )


def list_messages(db: Session, chat: Chat, limit: int = 50, offset: int = 0) -> List[Message]:
    return (
        db.query(Message)
        .filter(Message.chat_id == chat.id)
        .order_by(Message.created_at.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def send_text_message(
    db: Session,
    chat_id: UUID,
    sender: User,
    text: str,
    publisher: Optional[EventPublisher] = None,
    now: Optional[datetime] = None,
) -> Message:
    text = (text or "").strip()
    if not text:
        raise ValidationFailureError("Message text is required")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValidationFailureError(f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters")

    chat = get_chat_for_user(db, chat_id, sender)
    if not chat.has_participant(sender.id):
        raise ForbiddenError("Only chat participants can send messages")

    message = add_message(db, chat, sender.id, text, now=now)
    db.commit()

    emit(publisher, chat_topic(chat.id), "message_created", {
        "chat_id": str(chat.id),
        "message_id": str(message.id),
        "sender_id": str(sender.id),
        "text": text,
    })
    return message
