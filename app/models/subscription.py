# app/models/subscription.py
# Pricing plans, student subscriptions, and payment audit trail
# Razorpay processes the charges; we store the order/payment references

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


class SubscriptionTier:
    FLEXIBLE = "FLEXIBLE"       # pay per session, no commitment
    REGULAR = "REGULAR"         # 1 month, min 4 hours upfront
    LONG_TERM = "LONG_TERM"     # 3 months, min 4 hours upfront


class SubscriptionStatus:
    PENDING = "PENDING"         # payment not yet confirmed
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class PricingPlan(Base):
    """
    Tier pricing catalogue.
    Seeded via init_db.py, editable by admins. When a tier has no active row,
    subscription_service falls back to the configured defaults.
    """
    __tablename__ = "pricing_plans"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    tier = Column(
        Enum("FLEXIBLE", "REGULAR", "LONG_TERM", name="subscription_tier_enum"),
        unique=True,
        nullable=False,
    )
    name = Column(String(50), nullable=False)                # Flexible | Regular | Longterm
    price_per_hour = Column(Float, nullable=False)           # EUR
    commitment_months = Column(Integer, nullable=False, default=0)
    minimum_hours = Column(Integer, nullable=False, default=0)
    description = Column(Text, nullable=True)
    inclusions = Column(JSON, nullable=True)                 # ["Homework support", ...]

    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(TZDateTime, nullable=False, default=utcnow)
    updated_at = Column(TZDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<PricingPlan tier={self.tier} €{self.price_per_hour}/h>"


class StudentSubscription(Base):
    """
    At most one ACTIVE subscription per student.
    PENDING until the payment intent succeeds, then ACTIVE.
    """
    __tablename__ = "student_subscriptions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # ── Tier Terms (copied from the pricing plan at subscribe time) ───────────
    tier = Column(
        Enum("FLEXIBLE", "REGULAR", "LONG_TERM", name="subscription_tier_enum"),
        nullable=False,
    )
    price_per_hour = Column(Float, nullable=False)
    commitment_months = Column(Integer, nullable=False, default=0)
    minimum_hours = Column(Integer, nullable=False, default=0)

    # ── Validity ──────────────────────────────────────────────────────────────
    start_date = Column(TZDateTime, nullable=False, default=utcnow)
    end_date = Column(TZDateTime, nullable=False, index=True)
    status = Column(
        Enum("PENDING", "ACTIVE", "EXPIRED", "CANCELLED", name="student_subscription_status_enum"),
        nullable=False,
        default=SubscriptionStatus.PENDING,
        index=True,
    )

    # ── Usage ─────────────────────────────────────────────────────────────────
    total_hours_taken = Column(Float, nullable=False, default=0.0)

    # ── Billing (Razorpay references) ─────────────────────────────────────────
    payment_customer_id = Column(String(255), nullable=True)
    payment_intent_id = Column(String(255), nullable=True, index=True)
    payment_intent_kind = Column(
        Enum("payment", "setup", name="payment_intent_kind_enum"), nullable=True
    )
    upfront_amount = Column(Float, nullable=False, default=0.0)  # EUR
    paid_at = Column(TZDateTime, nullable=True)

    # ── Cancellation ──────────────────────────────────────────────────────────
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(TZDateTime, nullable=True)

    created_at = Column(TZDateTime, nullable=False, default=utcnow)
    updated_at = Column(TZDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    student = relationship("User")
    payments = relationship("Payment", back_populates="subscription")

    @property
    def hours_remaining(self):
        if not self.minimum_hours:
            return None
        return max(0.0, self.minimum_hours - (self.total_hours_taken or 0.0))

    def __repr__(self) -> str:
        return f"<StudentSubscription student={self.student_id} tier={self.tier} status={self.status}>"


class Payment(Base):
    """
    Immutable audit trail for every confirmed payment.
    Written by subscription_service.confirm_payment -- never modified after creation.
    """
    __tablename__ = "payments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    subscription_id = Column(
        Uuid,
        ForeignKey("student_subscriptions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    user_id = Column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )

    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="EUR")
    status = Column(
        Enum("captured", "setup", "failed", "refunded", name="payment_status_enum"),
        nullable=False,
    )

    provider_order_id = Column(String(255), nullable=True, index=True)
    provider_payment_id = Column(String(255), unique=True, nullable=True)
    payment_method_id = Column(String(255), nullable=True)
    raw_payload = Column(JSON, nullable=True)

    created_at = Column(TZDateTime, nullable=False, default=utcnow)

    subscription = relationship("StudentSubscription", back_populates="payments")

    def __repr__(self) -> str:
        return f"<Payment id={self.id} amount={self.amount_cents} status={self.status}>"
