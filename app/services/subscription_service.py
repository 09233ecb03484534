# app/services/subscription_service.py
# Student subscription tiers and their payment flow.
#
#   subscribe()         → PENDING + payment intent (REGULAR/LONG_TERM) or setup intent (FLEXIBLE)
#   confirm_payment()   PENDING → ACTIVE when the provider reports "succeeded"
#   cancel_subscription ACTIVE → CANCELLED
#   expire sweep        ACTIVE → EXPIRED once end_date has passed
#
# Tier terms come from the pricing_plans table; the hardcoded fallback below
# keeps pricing available when a tier has no active row.

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationFailureError,
)
from app.models.subscription import (
    Payment,
    PricingPlan,
    StudentSubscription,
    SubscriptionStatus,
    SubscriptionTier,
)
from app.models.user import User, UserRole
from app.services import razorpay_service
from app.services.lifecycle import (
    SUBSCRIPTION_TRANSITIONS,
    as_utc,
    check_transition,
    resolve_now,
    subscription_end_date,
)
from app.services.notification_service import notify_after_commit

logger = logging.getLogger("lernhub.subscriptions")

TIERS = (SubscriptionTier.FLEXIBLE, SubscriptionTier.REGULAR, SubscriptionTier.LONG_TERM)
DEFAULT_TIER = SubscriptionTier.FLEXIBLE


def fallback_plans() -> Dict[str, Dict[str, Any]]:
    return {
        SubscriptionTier.FLEXIBLE: {
            "tier": SubscriptionTier.FLEXIBLE,
            "name": "Flexible",
            "price_per_hour": settings.price_flexible,
            "commitment_months": 0,
            "minimum_hours": 0,
            "description": "Pay per session, no commitment.",
        },
        SubscriptionTier.REGULAR: {
            "tier": SubscriptionTier.REGULAR,
            "name": "Regular",
            "price_per_hour": settings.price_regular,
            "commitment_months": 1,
            "minimum_hours": 4,
            "description": "One month, at least 4 hours.",
        },
        SubscriptionTier.LONG_TERM: {
            "tier": SubscriptionTier.LONG_TERM,
            "name": "Longterm",
            "price_per_hour": settings.price_long_term,
            "commitment_months": 3,
            "minimum_hours": 4,
            "description": "Three months, at least 4 hours per month.",
        },
    }


def _plan_to_terms(plan: PricingPlan) -> Dict[str, Any]:
    return {
        "tier": plan.tier,
        "name": plan.name,
        "price_per_hour": plan.price_per_hour,
        "commitment_months": plan.commitment_months,
        "minimum_hours": plan.minimum_hours,
        "description": plan.description,
    }


def get_plan_terms(db: Session, tier: str) -> Dict[str, Any]:
    if tier not in TIERS:
        raise ValidationFailureError(f"Unknown subscription tier: {tier}")
    plan = db.query(PricingPlan).filter(
        PricingPlan.tier == tier, PricingPlan.is_active == True  # noqa: E712
    ).first()
    return _plan_to_terms(plan) if plan else fallback_plans()[tier]


def list_plans(db: Session) -> List[Dict[str, Any]]:
    plans = db.query(PricingPlan).filter(
        PricingPlan.is_active == True  # noqa: E712
    ).order_by(PricingPlan.sort_order).all()
    by_tier = {p.tier: _plan_to_terms(p) for p in plans}
    fallback = fallback_plans()
    return [by_tier.get(tier, fallback[tier]) for tier in TIERS]


def get_active_subscription(
    db: Session, student_id: UUID, now: Optional[datetime] = None
) -> Optional[StudentSubscription]:
    now = resolve_now(now)
    subscription = db.query(StudentSubscription).filter(
        StudentSubscription.student_id == student_id,
        StudentSubscription.status == SubscriptionStatus.ACTIVE,
    ).order_by(StudentSubscription.created_at.desc()).first()
    if subscription and as_utc(subscription.end_date) < now:
        return None
    return subscription


def price_for_student(db: Session, student_id: UUID, now: Optional[datetime] = None) -> float:
    """Hourly rate of the student's current plan, FLEXIBLE when none."""
    active = get_active_subscription(db, student_id, now)
    if active:
        return active.price_per_hour
    return get_plan_terms(db, DEFAULT_TIER)["price_per_hour"]


def _get_owned(db: Session, subscription_id: UUID, student: User) -> StudentSubscription:
    subscription = db.query(StudentSubscription).filter(
        StudentSubscription.id == subscription_id
    ).first()
    if not subscription:
        raise NotFoundError("Subscription not found")
    if subscription.student_id != student.id and student.role != UserRole.ADMIN:
        raise ForbiddenError("You can only manage your own subscription")
    return subscription


def _set_status(
    db: Session,
    subscription: StudentSubscription,
    target: str,
    values: Dict,
    message: str,
) -> None:
    check_transition(SUBSCRIPTION_TRANSITIONS, subscription.status, target, message)
    updated = db.query(StudentSubscription).filter(
        StudentSubscription.id == subscription.id,
        StudentSubscription.status == subscription.status,
    ).update({StudentSubscription.status: target, **values}, synchronize_session=False)
    if updated != 1:
        db.rollback()
        raise InvalidStateError(message)


# ── Subscribe ─────────────────────────────────────────────────────────────────

def subscribe(
    db: Session,
    student: User,
    tier: str,
    now: Optional[datetime] = None,
) -> Tuple[StudentSubscription, Dict[str, Any]]:
    """Returns the PENDING subscription and the provider intent to complete."""
    now = resolve_now(now)
    if student.role != UserRole.STUDENT:
        raise ForbiddenError("Only students can subscribe")
    if get_active_subscription(db, student.id, now):
        raise InvalidStateError("You already have an active subscription")

    terms = get_plan_terms(db, tier)

    if not student.payment_customer_id:
        student.payment_customer_id = razorpay_service.create_customer(student.email, student.full_name)

    upfront = 0.0
    metadata = {"student_id": str(student.id), "tier": tier}
    if tier == SubscriptionTier.FLEXIBLE:
        intent = razorpay_service.create_setup_intent(student.payment_customer_id, metadata)
        intent_kind = "setup"
    else:
        upfront = terms["price_per_hour"] * terms["minimum_hours"]
        intent = razorpay_service.create_payment_intent(
            int(round(upfront * 100)), student.payment_customer_id, metadata
        )
        intent_kind = "payment"

    # Unpaid attempts are superseded by the new one
    db.query(StudentSubscription).filter(
        StudentSubscription.student_id == student.id,
        StudentSubscription.status == SubscriptionStatus.PENDING,
    ).update({
        StudentSubscription.status: SubscriptionStatus.CANCELLED,
        StudentSubscription.cancellation_reason: "Superseded by a new subscription",
        StudentSubscription.cancelled_at: now,
    }, synchronize_session=False)

    subscription = StudentSubscription(
        student_id=student.id,
        tier=tier,
        price_per_hour=terms["price_per_hour"],
        commitment_months=terms["commitment_months"],
        minimum_hours=terms["minimum_hours"],
        start_date=now,
        end_date=subscription_end_date(tier, now, terms["commitment_months"]),
        status=SubscriptionStatus.PENDING,
        payment_customer_id=student.payment_customer_id,
        payment_intent_id=intent["id"],
        payment_intent_kind=intent_kind,
        upfront_amount=upfront,
        created_at=now,
    )
    db.add(subscription)
    db.commit()
    db.refresh(subscription)
    logger.info("Subscription %s (%s) created for %s", subscription.id, tier, student.id)
    return subscription, intent


def confirm_payment(
    db: Session,
    subscription_id: UUID,
    payment_intent_id: str,
    student: User,
    now: Optional[datetime] = None,
) -> StudentSubscription:
    """The provider's intent status is the only signal that activates a subscription."""
    now = resolve_now(now)
    subscription = _get_owned(db, subscription_id, student)

    if subscription.status != SubscriptionStatus.PENDING:
        raise InvalidStateError(
            "Subscription is not awaiting payment", details={"status": subscription.status}
        )
    if subscription.payment_intent_id != payment_intent_id:
        raise ValidationFailureError("Payment does not match this subscription")

    intent = razorpay_service.retrieve_intent(payment_intent_id)
    if intent["status"] != "succeeded":
        raise InvalidStateError(
            "Payment has not succeeded", details={"payment_status": intent["status"]}
        )
    return _activate(db, subscription, intent, now)


def confirm_from_webhook(
    db: Session, payment_intent_id: str, now: Optional[datetime] = None
) -> Optional[StudentSubscription]:
    """
    Provider callback path. Unknown or already-handled intents are ignored,
    so redelivered webhooks are harmless.
    """
    now = resolve_now(now)
    subscription = db.query(StudentSubscription).filter(
        StudentSubscription.payment_intent_id == payment_intent_id,
        StudentSubscription.status == SubscriptionStatus.PENDING,
    ).first()
    if not subscription:
        logger.info("Webhook for unknown or settled intent %s ignored", payment_intent_id)
        return None

    intent = razorpay_service.retrieve_intent(payment_intent_id)
    if intent["status"] != "succeeded":
        return None
    return _activate(db, subscription, intent, now)


def _activate(
    db: Session,
    subscription: StudentSubscription,
    intent: Dict[str, Any],
    now: datetime,
) -> StudentSubscription:
    if get_active_subscription(db, subscription.student_id, now):
        raise InvalidStateError("You already have an active subscription")

    _set_status(db, subscription, SubscriptionStatus.ACTIVE, {
        StudentSubscription.paid_at: now,
        StudentSubscription.start_date: now,
        StudentSubscription.end_date: subscription_end_date(
            subscription.tier, now, subscription.commitment_months
        ),
    }, "Subscription is not awaiting payment")

    owner = db.query(User).filter(User.id == subscription.student_id).first()
    owner.subscription_tier = subscription.tier
    if intent.get("payment_method_id"):
        owner.default_payment_method_id = intent["payment_method_id"]
        if owner.payment_customer_id:
            razorpay_service.update_default_payment_method(
                owner.payment_customer_id, intent["payment_method_id"]
            )

    db.add(Payment(
        subscription_id=subscription.id,
        user_id=owner.id,
        amount_cents=int(round((subscription.upfront_amount or 0.0) * 100)),
        currency=settings.payment_currency,
        status="captured" if subscription.payment_intent_kind == "payment" else "setup",
        provider_order_id=intent["id"],
        provider_payment_id=intent.get("payment_id"),
        payment_method_id=intent.get("payment_method_id"),
        raw_payload=intent.get("raw"),
        created_at=now,
    ))
    db.commit()
    db.refresh(subscription)
    logger.info("Subscription %s activated", subscription.id)

    notify_after_commit(
        db, [owner.id], "subscription_active",
        title="Your subscription is active",
        body=f"Your {subscription.tier.replace('_', ' ').title()} plan is now active.",
        extra_data={"subscription_id": str(subscription.id)},
    )
    return subscription


def cancel_subscription(
    db: Session,
    subscription_id: UUID,
    student: User,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> StudentSubscription:
    now = resolve_now(now)
    subscription = _get_owned(db, subscription_id, student)
    message = "Only active subscriptions can be cancelled"
    if subscription.status != SubscriptionStatus.ACTIVE:
        raise InvalidStateError(message, details={"status": subscription.status})

    _set_status(db, subscription, SubscriptionStatus.CANCELLED, {
        StudentSubscription.cancellation_reason: reason,
        StudentSubscription.cancelled_at: now,
    }, message)
    db.query(User).filter(User.id == subscription.student_id).update(
        {User.subscription_tier: None}, synchronize_session=False
    )
    db.commit()
    db.refresh(subscription)
    logger.info("Subscription %s cancelled", subscription.id)
    return subscription


# ── Sweep & Usage ─────────────────────────────────────────────────────────────

def expire_old_subscriptions(db: Session, now: Optional[datetime] = None) -> int:
    now = resolve_now(now)
    candidates = db.query(StudentSubscription.id, StudentSubscription.student_id).filter(
        StudentSubscription.status == SubscriptionStatus.ACTIVE,
        StudentSubscription.end_date < now,
    ).all()

    expired = []
    for row in candidates:
        updated = db.query(StudentSubscription).filter(
            StudentSubscription.id == row.id,
            StudentSubscription.status == SubscriptionStatus.ACTIVE,
            StudentSubscription.end_date < now,
        ).update({StudentSubscription.status: SubscriptionStatus.EXPIRED}, synchronize_session=False)
        if updated:
            db.query(User).filter(User.id == row.student_id).update(
                {User.subscription_tier: None}, synchronize_session=False
            )
            expired.append(row)
    db.commit()

    for row in expired:
        notify_after_commit(
            db, [row.student_id], "subscription_expired",
            title="Your subscription has expired",
            body="Choose a plan to keep booking sessions at your preferred rate.",
            extra_data={"subscription_id": str(row.id)},
        )
    logger.info("Subscription sweep: %d expired", len(expired))
    return len(expired)


def increment_hours_taken(
    db: Session, student_id: UUID, hours: float, now: Optional[datetime] = None
) -> bool:
    """Adds usage to the active subscription. Flushes only; False when none is active."""
    active = get_active_subscription(db, student_id, now)
    if not active:
        return False
    db.query(StudentSubscription).filter(StudentSubscription.id == active.id).update(
        {StudentSubscription.total_hours_taken: StudentSubscription.total_hours_taken + hours},
        synchronize_session=False,
    )
    db.flush()
    return True


def get_my_subscription(db: Session, student: User) -> Optional[StudentSubscription]:
    active = get_active_subscription(db, student.id)
    if active:
        return active
    return db.query(StudentSubscription).filter(
        StudentSubscription.student_id == student.id
    ).order_by(StudentSubscription.created_at.desc()).first()


def list_subscriptions(
    db: Session, status: Optional[str] = None, skip: int = 0, limit: int = 50
) -> List[StudentSubscription]:
    query = db.query(StudentSubscription)
    if status:
        query = query.filter(StudentSubscription.status == status)
    return query.order_by(StudentSubscription.created_at.desc()).offset(skip).limit(limit).all()
