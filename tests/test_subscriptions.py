from datetime import datetime, timedelta, timezone

import pytest

from app.core.config import settings
from app.core.exceptions import ForbiddenError, InvalidStateError, ValidationFailureError
from app.models.subscription import Payment, SubscriptionStatus, SubscriptionTier
from app.services import subscription_service
from app.services.lifecycle import add_months, effective_status
from conftest import auth_header, make_tutor, make_user


def activate(db, student, tier, now):
    subscription, intent = subscription_service.subscribe(db, student, tier, now=now)
    return subscription_service.confirm_payment(db, subscription.id, intent["id"], student, now=now)


def test_plans_fall_back_to_configured_prices(client):
    resp = client.get("/api/v1/subscriptions/plans")
    assert resp.status_code == 200
    prices = {p["tier"]: p["price_per_hour"] for p in resp.json()}
    assert prices == {"FLEXIBLE": 30.0, "REGULAR": 28.0, "LONG_TERM": 25.0}


def test_regular_tier_charges_minimum_hours_upfront(db, now):
    student = make_user(db, "student@example.com")
    subscription, intent = subscription_service.subscribe(db, student, SubscriptionTier.REGULAR, now=now)

    assert subscription.status == SubscriptionStatus.PENDING
    assert subscription.payment_intent_kind == "payment"
    assert subscription.upfront_amount == pytest.approx(112.0)
    assert intent["amount"] == 11200
    assert subscription.end_date == add_months(now, 1)


def test_flexible_tier_uses_a_setup_intent(db, now):
    student = make_user(db, "student@example.com")
    subscription, intent = subscription_service.subscribe(db, student, SubscriptionTier.FLEXIBLE, now=now)
    assert subscription.payment_intent_kind == "setup"
    assert subscription.upfront_amount == 0.0
    assert intent["amount"] == 0


def test_confirm_activates_and_records_payment(db, now):
    student = make_user(db, "student@example.com")
    active = activate(db, student, SubscriptionTier.LONG_TERM, now)

    assert active.status == SubscriptionStatus.ACTIVE
    assert active.paid_at == now
    assert active.end_date == add_months(now, 3)
    db.refresh(student)
    assert student.subscription_tier == SubscriptionTier.LONG_TERM
    payment = db.query(Payment).filter(Payment.subscription_id == active.id).one()
    assert payment.amount_cents == 10000
    assert subscription_service.price_for_student(db, student.id, now) == 25.0


def test_confirm_rejects_foreign_intent(db, now):
    student = make_user(db, "student@example.com")
    subscription, _ = subscription_service.subscribe(db, student, SubscriptionTier.REGULAR, now=now)
    with pytest.raises(ValidationFailureError):
        subscription_service.confirm_payment(db, subscription.id, "order_someone_else", student, now=now)


def test_confirm_twice_is_rejected(db, now):
    student = make_user(db, "student@example.com")
    subscription, intent = subscription_service.subscribe(db, student, SubscriptionTier.REGULAR, now=now)
    subscription_service.confirm_payment(db, subscription.id, intent["id"], student, now=now)
    with pytest.raises(InvalidStateError):
        subscription_service.confirm_payment(db, subscription.id, intent["id"], student, now=now)


def test_one_active_subscription_per_student(db, now):
    student = make_user(db, "student@example.com")
    activate(db, student, SubscriptionTier.REGULAR, now)
    with pytest.raises(InvalidStateError, match="already have an active subscription"):
        subscription_service.subscribe(db, student, SubscriptionTier.LONG_TERM, now=now)


def test_new_attempt_supersedes_unpaid_one(db, now):
    student = make_user(db, "student@example.com")
    first, _ = subscription_service.subscribe(db, student, SubscriptionTier.REGULAR, now=now)
    subscription_service.subscribe(db, student, SubscriptionTier.LONG_TERM, now=now)
    db.refresh(first)
    assert first.status == SubscriptionStatus.CANCELLED


def test_tutors_cannot_subscribe(db, now):
    tutor = make_tutor(db, "tutor@example.com")
    with pytest.raises(ForbiddenError):
        subscription_service.subscribe(db, tutor, SubscriptionTier.REGULAR, now=now)


def test_cancel_returns_student_to_flexible_pricing(db, now):
    student = make_user(db, "student@example.com")
    active = activate(db, student, SubscriptionTier.REGULAR, now)

    cancelled = subscription_service.cancel_subscription(db, active.id, student, "Moving away", now=now)
    assert cancelled.status == SubscriptionStatus.CANCELLED
    assert cancelled.cancellation_reason == "Moving away"
    assert subscription_service.price_for_student(db, student.id, now) == 30.0

    with pytest.raises(InvalidStateError):
        subscription_service.cancel_subscription(db, active.id, student, now=now)


def test_expiry_sweep(db):
    start = datetime(2025, 1, 31, 9, 0, tzinfo=timezone.utc)
    student = make_user(db, "student@example.com")
    active = activate(db, student, SubscriptionTier.REGULAR, start)
    assert active.end_date == datetime(2025, 2, 28, 9, 0, tzinfo=timezone.utc)

    after = active.end_date + timedelta(minutes=1)
    assert effective_status(active, after) == SubscriptionStatus.EXPIRED
    assert subscription_service.expire_old_subscriptions(db, now=active.end_date) == 0
    assert subscription_service.expire_old_subscriptions(db, now=after) == 1
    assert subscription_service.expire_old_subscriptions(db, now=after) == 0

    db.refresh(active)
    db.refresh(student)
    assert active.status == SubscriptionStatus.EXPIRED
    assert student.subscription_tier is None


def test_subscribe_and_confirm_via_api(client, db):
    student = make_user(db, "student@example.com")
    resp = client.post("/api/v1/subscriptions/", json={"tier": "REGULAR"}, headers=auth_header(student))
    assert resp.status_code == 201
    body = resp.json()
    assert body["payment"]["kind"] == "payment"
    assert body["payment"]["amount"] == 11200

    sub_id = body["subscription"]["id"]
    resp = client.post(
        f"/api/v1/subscriptions/{sub_id}/confirm",
        json={"payment_intent_id": body["payment"]["id"]},
        headers=auth_header(student),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "ACTIVE"

    resp = client.get("/api/v1/subscriptions/me", headers=auth_header(student))
    assert resp.json()["tier"] == "REGULAR"


def test_unknown_tier_is_a_validation_failure(client, db):
    student = make_user(db, "student@example.com")
    resp = client.post("/api/v1/subscriptions/", json={"tier": "PLATINUM"}, headers=auth_header(student))
    assert resp.status_code == 422
    assert resp.json()["error_kind"] == "ValidationFailure"


# ── Webhook ───────────────────────────────────────────────────────────────────

def order_paid(order_id):
    return {"event": "order.paid", "payload": {"order": {"entity": {"id": order_id}}}}


def test_webhook_activates_pending_subscription(client, db, now):
    student = make_user(db, "student@example.com")
    subscription, intent = subscription_service.subscribe(db, student, SubscriptionTier.REGULAR, now=now)

    resp = client.post("/api/v1/subscriptions/webhook", json=order_paid(intent["id"]))
    assert resp.status_code == 200
    assert resp.json() == {"received": True}
    db.refresh(subscription)
    assert subscription.status == SubscriptionStatus.ACTIVE

    # Redelivery is ignored
    resp = client.post("/api/v1/subscriptions/webhook", json=order_paid(intent["id"]))
    assert resp.status_code == 200
    assert db.query(Payment).filter(Payment.subscription_id == subscription.id).count() == 1


def test_webhook_ignores_other_events(client):
    resp = client.post("/api/v1/subscriptions/webhook", json={"event": "refund.created", "payload": {}})
    assert resp.status_code == 200


def test_webhook_rejects_bad_signature(client, monkeypatch):
    monkeypatch.setattr(settings, "razorpay_webhook_secret", "whsec")
    resp = client.post(
        "/api/v1/subscriptions/webhook",
        json=order_paid("order_x"),
        headers={"X-Razorpay-Signature": "forged"},
    )
    assert resp.status_code == 401
    assert resp.json()["error_kind"] == "Unauthorized"
