# app/schemas/subscription.py
# Pydantic request/response models for subscription and payment endpoints

from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.services.lifecycle import effective_status

Tier = Literal["FLEXIBLE", "REGULAR", "LONG_TERM"]


# ── Plans ─────────────────────────────────────────────────────────────────────

class PlanResponse(BaseModel):
    tier: str
    name: str
    price_per_hour: float             # EUR
    commitment_months: int            # 0 = no commitment
    minimum_hours: int                # per month, 0 = none
    description: Optional[str] = None
    inclusions: Optional[List[str]] = None


# ── Subscription ──────────────────────────────────────────────────────────────

class SubscribeRequest(BaseModel):
    tier: Tier


class PaymentIntentResponse(BaseModel):
    """What the frontend needs to open the provider checkout."""
    id: str
    kind: str                         # payment | setup
    status: str
    amount: int = 0                   # cents
    currency: str
    key_id: Optional[str] = None


class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    student_id: UUID
    tier: str
    price_per_hour: float
    commitment_months: int
    minimum_hours: int
    start_date: datetime
    end_date: datetime
    status: str
    effective_status: Optional[str] = None
    total_hours_taken: float
    hours_remaining: Optional[float] = None
    upfront_amount: float
    paid_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_subscription(cls, subscription, now: Optional[datetime] = None) -> "SubscriptionResponse":
        out = cls.model_validate(subscription)
        out.effective_status = effective_status(subscription, now)
        return out


class SubscribeResponse(BaseModel):
    subscription: SubscriptionResponse
    payment: PaymentIntentResponse


class ConfirmPaymentRequest(BaseModel):
    payment_intent_id: str = Field(min_length=1, max_length=255)


class CancelSubscriptionRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class WebhookResponse(BaseModel):
    received: bool = True
