# app/api/v1/endpoints/chats.py
# Chat endpoints (chats are created when a tutor accepts a request)
#
#   GET  /chats/me                                 → my chats
#   GET  /chats/{chat_id}/messages                 → messages incl. embedded proposals
#   POST /chats/{chat_id}/messages                 → free text
#   POST /chats/proposals                          → tutor proposes a session
#   POST /chats/proposals/{message_id}/accept      → student books it
#   POST /chats/proposals/{message_id}/reject
#   POST /chats/proposals/{message_id}/counter     → new times, original becomes COUNTER_PROPOSED

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

import app.db.base  # noqa: F401
from app.core.dependencies import require_login, require_tutor
from app.db.session import get_db
from app.models.user import User
from app.schemas.session import (
    ChatResponse,
    CounterProposalRequest,
    MessageOut,
    ProposalResponse,
    ProposeSessionRequest,
    RejectProposalRequest,
    SendMessageRequest,
    SessionResponse,
)
from app.services import chat_service, session_service
from app.services.events import EventPublisher, get_event_publisher

router = APIRouter()


# ── Chats ─────────────────────────────────────────────────────────────────────

@router.get("/me", response_model=List[ChatResponse], summary="My chats")
def my_chats(
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
):
    return chat_service.list_chats(db, current_user)


@router.get("/{chat_id}/messages", response_model=List[MessageOut], summary="Chat messages")
def chat_messages(
    chat_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
):
    chat = chat_service.get_chat_for_user(db, chat_id, current_user)
    return chat_service.list_messages(db, chat, limit=limit, offset=offset)


@router.post("/{chat_id}/messages", response_model=MessageOut, status_code=201, summary="Send a message")
def send_message(
    chat_id: UUID,
    payload: SendMessageRequest,
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    return chat_service.send_text_message(db, chat_id, current_user, payload.text, publisher=publisher)


# ── Proposals ─────────────────────────────────────────────────────────────────

@router.post("/proposals", response_model=ProposalResponse, status_code=201, summary="Tutor proposes a session")
def propose_session(
    payload: ProposeSessionRequest,
    current_user: User = Depends(require_tutor),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """Price per hour comes from the student's active tier (FLEXIBLE when none)."""
    return session_service.propose_session(
        db, current_user, payload.chat_id, payload.subject,
        payload.start_time, payload.end_time, payload.description,
        publisher=publisher,
    )


@router.post(
    "/proposals/{message_id}/accept",
    response_model=SessionResponse,
    status_code=201,
    summary="Student accepts a proposal and books the session",
)
def accept_proposal(
    message_id: UUID,
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    session = session_service.accept_proposal(db, message_id, current_user, publisher=publisher)
    return SessionResponse.from_session(session)


@router.post("/proposals/{message_id}/reject", response_model=ProposalResponse, summary="Reject a proposal")
def reject_proposal(
    message_id: UUID,
    payload: RejectProposalRequest,
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    return session_service.reject_proposal(db, message_id, current_user, payload.reason, publisher=publisher)


@router.post(
    "/proposals/{message_id}/counter",
    response_model=ProposalResponse,
    status_code=201,
    summary="Counter-propose new times",
)
def counter_proposal(
    message_id: UUID,
    payload: CounterProposalRequest,
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    return session_service.counter_propose(
        db, message_id, current_user,
        payload.start_time, payload.end_time, payload.description,
        publisher=publisher,
    )
