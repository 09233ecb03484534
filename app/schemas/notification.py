# app/schemas/notification.py

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    # Stored as Notification.notification_type, exposed as "type"
    type: str = Field(validation_alias="notification_type")
    title: str
    body: Optional[str] = None
    action_url: Optional[str] = None
    extra_data: Optional[Dict[str, Any]] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    unread_count: int
    total: int


class UnreadCountResponse(BaseModel):
    count: int
