# app/services/razorpay_service.py
# Payment provider port backed by Razorpay
#
# Subscription payment flow:
#   1. subscribe() asks for a payment intent (Razorpay order) for upfront tiers,
#      or a setup intent (zero-amount order for card mandate) for FLEXIBLE
#   2. Frontend opens checkout with the returned intent id
#   3. confirm_payment() retrieves the intent; only "succeeded" activates
#
# With no RAZORPAY_KEY_ID configured the port runs in mock mode: intents get
# "order_mock_..." ids and always report "succeeded". Used in dev and tests.

import hashlib
import hmac
import logging
import uuid
from typing import Any, Dict, Optional

import razorpay

from app.core.config import settings

logger = logging.getLogger("lernhub.payments")


class PaymentProviderError(Exception):
    pass


def is_mock_mode() -> bool:
    return not (settings.razorpay_key_id and settings.razorpay_key_secret)


def get_razorpay_client() -> razorpay.Client:
    """Return authenticated Razorpay client."""
    return razorpay.Client(
        auth=(settings.razorpay_key_id, settings.razorpay_key_secret)
    )


def _mock_id(prefix: str) -> str:
    return f"{prefix}_mock_{uuid.uuid4().hex[:14]}"


# ── Customers ─────────────────────────────────────────────────────────────────

def create_customer(email: str, name: str) -> str:
    """Create (or reuse, fail_existing=0) a Razorpay customer. Returns its id."""
    if is_mock_mode():
        return _mock_id("cust")
    try:
        customer = get_razorpay_client().customer.create({
            "email": email,
            "name": name,
            "fail_existing": "0",
        })
    except Exception as e:
        raise PaymentProviderError(f"Customer creation failed: {e}")
    return customer["id"]


# ── Intents ───────────────────────────────────────────────────────────────────

def create_payment_intent(
    amount_cents: int,
    customer_id: Optional[str],
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Upfront charge for committed tiers. Returns {"id", "status", "amount"}."""
    if is_mock_mode():
        return {"id": _mock_id("order"), "status": "requires_payment", "amount": amount_cents}
    try:
        order = get_razorpay_client().order.create({
            "amount": amount_cents,
            "currency": settings.payment_currency,
            "payment_capture": 1,
            "notes": {"customer_id": customer_id or "", **(metadata or {})},
        })
    except Exception as e:
        raise PaymentProviderError(f"Payment intent creation failed: {e}")
    return {"id": order["id"], "status": map_status(order.get("status")), "amount": order["amount"]}


def create_setup_intent(
    customer_id: Optional[str],
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Card mandate for pay-per-session tiers; nothing is charged now."""
    if is_mock_mode():
        return {"id": _mock_id("order"), "status": "requires_payment", "amount": 0}
    try:
        order = get_razorpay_client().order.create({
            "amount": 0,
            "currency": settings.payment_currency,
            "method": "card",
            "customer_id": customer_id,
            "token": {"max_amount": 1000000, "frequency": "as_presented"},
            "notes": metadata or {},
        })
    except Exception as e:
        raise PaymentProviderError(f"Setup intent creation failed: {e}")
    return {"id": order["id"], "status": map_status(order.get("status")), "amount": 0}


def retrieve_intent(intent_id: str) -> Dict[str, Any]:
    """
    Fetch an intent and its latest payment.
    Returns {"id", "status", "amount", "payment_id", "payment_method_id", "raw"}.
    """
    if is_mock_mode():
        return {
            "id": intent_id,
            "status": "succeeded",
            "amount": None,
            "payment_id": _mock_id("pay"),
            "payment_method_id": _mock_id("token"),
            "raw": {"mock": True},
        }
    try:
        client = get_razorpay_client()
        order = client.order.fetch(intent_id)
        payments = client.order.payments(intent_id).get("items", [])
    except Exception as e:
        raise PaymentProviderError(f"Intent lookup failed: {e}")

    latest = payments[0] if payments else {}
    return {
        "id": order["id"],
        "status": map_status(order.get("status")),
        "amount": order.get("amount"),
        "payment_id": latest.get("id"),
        "payment_method_id": latest.get("token_id") or latest.get("method"),
        "raw": order,
    }


def update_default_payment_method(customer_id: str, payment_method_id: str) -> None:
    """Razorpay has no customer-level default; tokens are kept on our side."""
    logger.info("Default payment method for %s set to %s", customer_id, payment_method_id)


def verify_webhook_signature(
    payload_body: bytes,
    razorpay_signature: str,
) -> bool:
    """
    Verify Razorpay webhook signature using HMAC-SHA256.
    Must be called before processing any webhook event.
    """
    if not settings.razorpay_webhook_secret:
        # In development without webhook secret, skip verification
        return True

    expected = hmac.new(
        settings.razorpay_webhook_secret.encode("utf-8"),
        payload_body,
        hashlib.sha256,
    ).hexdigest()

    return hmac.compare_digest(expected, razorpay_signature or "")


# Webhook events that can settle a pending intent
HANDLED_EVENTS = ("order.paid", "payment.captured")


# ── Razorpay Order Status -> Intent Status ───────────────────────────────────
#   created   -> requires_payment
#   attempted -> processing  (payment tried, not captured)
#   paid      -> succeeded

RAZORPAY_TO_INTENT_STATUS = {
    "created": "requires_payment",
    "attempted": "processing",
    "paid": "succeeded",
}


def map_status(razorpay_status: Optional[str]) -> str:
    return RAZORPAY_TO_INTENT_STATUS.get(razorpay_status or "", "requires_payment")
