# red2blue/billing.py
from __future__ import annotations

from typing import Optional

import stripe
from fastapi import HTTPException
from loguru import logger

from red2blue import config
from red2blue.tiers import TIER_LABELS, TIER_PRICES_CENTS, normalize_tier


# -----------------------------
# Billing feature flag
# -----------------------------
def require_billing_enabled() -> None:
    if not config.billing_enabled():
        raise HTTPException(
            status_code=503,
            detail={"code": "BILLING_DISABLED", "message": "Billing disabled"},
        )


# -----------------------------
# Stripe config helpers
# -----------------------------
def init_stripe() -> None:
    require_billing_enabled()
    key = config.env_str("STRIPE_SECRET_KEY")
    if not key:
        raise HTTPException(status_code=500, detail="Stripe not configured (missing STRIPE_SECRET_KEY)")
    stripe.api_key = key


def webhook_secret() -> str:
    wh = config.env_str("STRIPE_WEBHOOK_SECRET")
    if not wh:
        raise HTTPException(status_code=500, detail="Missing STRIPE_WEBHOOK_SECRET")
    return wh


def _provider_error(e: Exception) -> HTTPException:
    logger.error(f"Stripe error: {e}")
    return HTTPException(
        status_code=502,
        detail={
            "code": "PAYMENT_PROVIDER_ERROR",
            "message": "The payment provider is unavailable. Please try again in a moment.",
        },
    )


def stripe_field(obj, name: str, default=None):
    """Reads a field from a Stripe object or a plain dict."""
    if obj is None:
        return default
    try:
        value = obj[name]
    except (KeyError, TypeError, AttributeError):
        value = getattr(obj, name, default)
    return default if value is None else value


# -----------------------------
# Checkout
# -----------------------------
def create_checkout_session(
    *,
    tier: str,
    checkout_id: int,
    customer_email: Optional[str] = None,
    user_id: Optional[int] = None,
) -> dict:
    """One-time payment for a lifetime tier. Returns {"id", "url"}."""
    init_stripe()

    t = normalize_tier(tier)
    base = config.app_base_url()
    # {CHECKOUT_SESSION_ID} is filled in by Stripe on redirect
    success_url = f"{base}/payment-success?tier={t}&session_id={{CHECKOUT_SESSION_ID}}"
    cancel_url = f"{base}/upgrade?tier={t}&payment=cancelled"

    metadata = {"checkout_id": str(checkout_id), "tier": t}
    if user_id is not None:
        metadata["user_id"] = str(user_id)

    params = dict(
        mode="payment",
        line_items=[
            {
                "price_data": {
                    "currency": config.PAYMENT_CURRENCY,
                    "unit_amount": TIER_PRICES_CENTS[t],
                    "product_data": {"name": f"Red2Blue {TIER_LABELS[t]} (lifetime)"},
                },
                "quantity": 1,
            }
        ],
        success_url=success_url,
        cancel_url=cancel_url,
        client_reference_id=str(checkout_id),
        metadata=metadata,
    )
    if customer_email:
        params["customer_email"] = customer_email

    try:
        session = stripe.checkout.Session.create(**params)
    except stripe.StripeError as e:
        raise _provider_error(e)

    return {"id": stripe_field(session, "id"), "url": stripe_field(session, "url")}


def retrieve_paid_session(session_id: str) -> Optional[dict]:
    """
    Looks the session up at Stripe. Returns the session when it is paid,
    None when unpaid or when Stripe can't be reached (the webhook catches up).
    """
    init_stripe()
    try:
        session = stripe.checkout.Session.retrieve(session_id)
    except stripe.StripeError as e:
        logger.warning(f"Stripe session lookup failed for {session_id}: {e}")
        return None

    if str(stripe_field(session, "payment_status", "")).lower() != "paid":
        return None
    return session


def construct_event(payload: bytes, sig: Optional[str]):
    init_stripe()
    wh_secret = webhook_secret()

    if not sig:
        raise HTTPException(status_code=400, detail="Missing Stripe signature header")

    try:
        return stripe.Webhook.construct_event(payload=payload, sig_header=sig, secret=wh_secret)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid Stripe webhook signature")
