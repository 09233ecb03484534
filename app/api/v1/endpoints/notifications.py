# app/api/v1/endpoints/notifications.py
# Inbox for notifications written by the lifecycle services
#
#   GET    /notifications/                   → page + unread count
#   GET    /notifications/unread-count
#   PATCH  /notifications/read-all
#   PATCH  /notifications/{id}/read
#   DELETE /notifications/{id}

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.dependencies import require_login
from app.db.session import get_db
from app.models.user import User
from app.schemas.auth import MessageResponse
from app.schemas.notification import (
    NotificationListResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from app.services import notification_service

router = APIRouter()


@router.get("/", response_model=NotificationListResponse, summary="List own notifications")
def list_notifications(
    unread_only: bool = Query(False),
    notification_type: Optional[str] = Query(None, alias="type"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
):
    page, total, unread = notification_service.list_notifications(
        db, current_user.id,
        unread_only=unread_only, notification_type=notification_type,
        skip=skip, limit=limit,
    )
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in page],
        unread_count=unread,
        total=total,
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
def get_unread_count(
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
):
    return UnreadCountResponse(count=notification_service.unread_count(db, current_user.id))


@router.patch("/read-all", response_model=MessageResponse)
def mark_all_read(
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
):
    marked = notification_service.mark_all_read(db, current_user.id)
    return MessageResponse(message=f"{marked} notification(s) marked as read.")


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
def mark_read(
    notification_id: UUID,
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
):
    return notification_service.mark_read(db, current_user.id, notification_id)


@router.delete("/{notification_id}", response_model=MessageResponse)
def delete_notification(
    notification_id: UUID,
    current_user: User = Depends(require_login),
    db: Session = Depends(get_db),
):
    notification_service.delete_notification(db, current_user.id, notification_id)
    return MessageResponse(message="Notification deleted.")
