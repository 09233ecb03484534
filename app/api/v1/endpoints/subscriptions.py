# app/api/v1/endpoints/subscriptions.py
# Subscription and payment endpoints
#
# Flow:
#   1. Student picks a tier -> POST /subscriptions/ -> PENDING + payment intent
#   2. Frontend completes the Razorpay checkout for that intent
#   3. POST /subscriptions/{id}/confirm (or the webhook) -> ACTIVE once the
#      provider reports the intent as succeeded
#   4. Proposal pricing follows the active tier from then on

import json
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.orm import Session

import app.db.base  # noqa: F401
from app.core.config import settings
from app.core.dependencies import require_admin, require_student
from app.core.exceptions import UnauthorizedError, ValidationFailureError
from app.db.session import get_db
from app.models.user import User
from app.schemas.subscription import (
    CancelSubscriptionRequest,
    ConfirmPaymentRequest,
    PaymentIntentResponse,
    PlanResponse,
    SubscribeRequest,
    SubscribeResponse,
    SubscriptionResponse,
    WebhookResponse,
)
from app.services import razorpay_service, subscription_service

router = APIRouter()


# ── Plans ─────────────────────────────────────────────────────────────────────

@router.get("/plans", response_model=List[PlanResponse], summary="List subscription tiers")
def list_plans(db: Session = Depends(get_db)):
    """Public. FLEXIBLE 30 EUR/h, REGULAR 28 EUR/h, LONG_TERM 25 EUR/h unless configured otherwise."""
    return subscription_service.list_plans(db)


# ── Student ───────────────────────────────────────────────────────────────────

@router.get("/me", response_model=Optional[SubscriptionResponse], summary="My current subscription")
def my_subscription(
    current_user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    subscription = subscription_service.get_my_subscription(db, current_user)
    return SubscriptionResponse.from_subscription(subscription) if subscription else None


@router.post("/", response_model=SubscribeResponse, status_code=201, summary="Subscribe to a tier")
def subscribe(
    payload: SubscribeRequest,
    current_user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    subscription, intent = subscription_service.subscribe(db, current_user, payload.tier)
    return SubscribeResponse(
        subscription=SubscriptionResponse.from_subscription(subscription),
        payment=PaymentIntentResponse(
            id=intent["id"],
            kind=subscription.payment_intent_kind,
            status=intent["status"],
            amount=intent.get("amount") or 0,
            currency=settings.payment_currency,
            key_id=settings.razorpay_key_id or None,
        ),
    )


@router.post("/{subscription_id}/confirm", response_model=SubscriptionResponse, summary="Confirm payment")
def confirm_payment(
    subscription_id: UUID,
    payload: ConfirmPaymentRequest,
    current_user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    subscription = subscription_service.confirm_payment(
        db, subscription_id, payload.payment_intent_id, current_user
    )
    return SubscriptionResponse.from_subscription(subscription)


@router.post("/{subscription_id}/cancel", response_model=SubscriptionResponse, summary="Cancel subscription")
def cancel_subscription(
    subscription_id: UUID,
    payload: CancelSubscriptionRequest,
    current_user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    subscription = subscription_service.cancel_subscription(
        db, subscription_id, current_user, payload.reason
    )
    return SubscriptionResponse.from_subscription(subscription)


# ── Admin ─────────────────────────────────────────────────────────────────────

@router.get("/", response_model=List[SubscriptionResponse], summary="All subscriptions (admin)")
def list_subscriptions(
    status: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    rows = subscription_service.list_subscriptions(db, status=status, skip=skip, limit=limit)
    return [SubscriptionResponse.from_subscription(s) for s in rows]


# ── Webhook ───────────────────────────────────────────────────────────────────

@router.post(
    "/webhook",
    response_model=WebhookResponse,
    summary="Razorpay webhook handler",
    include_in_schema=False,  # Hide from public docs -- internal endpoint
)
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: str = Header(None),
    db: Session = Depends(get_db),
):
    """
    Activates a PENDING subscription when Razorpay reports its order as paid.
    Register in the Razorpay dashboard with events order.paid, payment.captured.
    """
    payload_body = await request.body()
    if not razorpay_service.verify_webhook_signature(payload_body, x_razorpay_signature):
        raise UnauthorizedError("Invalid webhook signature")

    try:
        event = json.loads(payload_body)
    except json.JSONDecodeError:
        raise ValidationFailureError("Invalid JSON payload")

    event_type = event.get("event")
    if event_type not in razorpay_service.HANDLED_EVENTS:
        return WebhookResponse(received=True)

    payload = event.get("payload", {})
    if event_type == "order.paid":
        order_id = payload.get("order", {}).get("entity", {}).get("id")
    else:
        order_id = payload.get("payment", {}).get("entity", {}).get("order_id")
    if order_id:
        subscription_service.confirm_from_webhook(db, order_id)
    return WebhookResponse(received=True)
