"""
Stripe calls used by subscription billing.

The SDK is synchronous, so every call runs in a worker thread.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
from typing import Any, Dict, Optional, Tuple

import stripe

from config import settings, stripe_configured


class StripeGatewayError(Exception):
    """Stripe is not configured or an API call failed."""


class WebhookVerificationError(Exception):
    """Webhook payload or signature could not be verified."""


@dataclass
class PaymentEvent:
    event_id: str
    event_type: str
    payload: Dict[str, Any] = field(default_factory=dict)


def _configure() -> None:
    if not stripe_configured():
        raise StripeGatewayError("Stripe is not configured")
    stripe.api_key = settings.STRIPE_SECRET_KEY


def verify_webhook_event(body: bytes, signature: Optional[str]) -> PaymentEvent:
    """Check the Stripe-Signature header and return the event's object payload."""
    webhook_secret = (settings.STRIPE_WEBHOOK_SECRET or "").strip()
    if not webhook_secret:
        raise StripeGatewayError("Webhook secret not configured")
    if not signature:
        raise WebhookVerificationError("Missing signature")

    try:
        stripe.Webhook.construct_event(body, signature, webhook_secret)
    except ValueError as exc:
        raise WebhookVerificationError(f"Invalid payload: {exc}") from exc
    except stripe.SignatureVerificationError as exc:
        raise WebhookVerificationError("Invalid signature") from exc

    # body is verified at this point; read it as plain JSON
    event = json.loads(body)
    return PaymentEvent(
        event_id=str(event.get("id") or ""),
        event_type=str(event.get("type") or ""),
        payload=(event.get("data") or {}).get("object") or {},
    )


def _period_end_from_subscription(subscription: Any) -> Optional[datetime]:
    timestamp = None
    try:
        timestamp = subscription["current_period_end"]
    except (KeyError, TypeError):
        try:
            timestamp = subscription["items"]["data"][0]["current_period_end"]
        except (KeyError, IndexError, TypeError):
            timestamp = None
    if not timestamp:
        return None
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)


async def retrieve_subscription_period_end(subscription_id: str) -> Optional[datetime]:
    _configure()
    try:
        subscription = await asyncio.to_thread(stripe.Subscription.retrieve, subscription_id)
    except stripe.StripeError as exc:
        raise StripeGatewayError(f"Stripe subscription lookup failed: {exc}") from exc
    return _period_end_from_subscription(subscription)


async def ensure_customer(user_id: str, email: str, existing_customer_id: Optional[str] = None) -> str:
    if existing_customer_id:
        return existing_customer_id
    _configure()
    try:
        customer = await asyncio.to_thread(
            stripe.Customer.create,
            email=email,
            metadata={"user_id": user_id},
        )
    except stripe.StripeError as exc:
        raise StripeGatewayError(f"Stripe customer creation failed: {exc}") from exc
    return customer["id"]


async def create_checkout_session(
    *,
    customer_id: str,
    price_id: str,
    user_id: str,
    plan: str,
    coin_discount: int,
) -> Tuple[str, Optional[str]]:
    """Create a subscription Checkout session, discounted by coin_discount cents."""
    _configure()
    try:
        params: Dict[str, Any] = {
            "customer": customer_id,
            "mode": "subscription",
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": f"{settings.APP_URL}/dashboard/billing?success=true",
            "cancel_url": f"{settings.APP_URL}/dashboard/billing?canceled=true",
            "metadata": {
                "user_id": user_id,
                "plan": plan,
                "coin_discount": str(coin_discount),
            },
        }
        if coin_discount > 0:
            coupon = await asyncio.to_thread(
                stripe.Coupon.create,
                amount_off=int(coin_discount),
                currency="usd",
                duration="once",
                name=f"Coin Discount ({coin_discount} cents)",
            )
            params["discounts"] = [{"coupon": coupon["id"]}]

        session = await asyncio.to_thread(stripe.checkout.Session.create, **params)
    except stripe.StripeError as exc:
        raise StripeGatewayError(f"Stripe checkout session creation failed: {exc}") from exc
    return session["id"], session["url"]
