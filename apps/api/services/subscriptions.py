"""Subscription plans, coin-paid expiry and payment webhook state transitions."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
import logging
from typing import Any, Awaitable, Callable, Dict, Optional
import uuid

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings, stripe_configured
from models.subscription import Subscription
from models.user import User
from services import stripe_gateway
from services.coins import add_coins
from services.notifications import NotificationType, create_notification
from services.tiers import Tier, parse_tier
from services.webhook_events import WebhookEventCache, get_webhook_event_cache

logger = logging.getLogger(__name__)


class Plan(str, Enum):
    PRO = "PRO"
    ELITE = "ELITE"
    LEGEND = "LEGEND"


# Prices in cents; one coin is worth one cent.
PLAN_PRICES: Dict[Plan, int] = {
    Plan.PRO: 999,
    Plan.ELITE: 1999,
    Plan.LEGEND: 4999,
}

STATUS_ACTIVE = "active"
STATUS_EXPIRED = "expired"
STATUS_CANCELED = "canceled"

_STRIPE_STATUSES = {
    "active",
    "past_due",
    "canceled",
    "unpaid",
    "incomplete",
    "incomplete_expired",
    "trialing",
    "paused",
}


def parse_plan(value: Any) -> Optional[Plan]:
    try:
        return Plan(str(value or "").upper())
    except ValueError:
        return None


def price_id_for(plan: Plan) -> Optional[str]:
    price_ids = {
        Plan.PRO: settings.STRIPE_PRICE_PRO,
        Plan.ELITE: settings.STRIPE_PRICE_ELITE,
        Plan.LEGEND: settings.STRIPE_PRICE_LEGEND,
    }
    return (price_ids.get(plan) or "").strip() or None


def map_stripe_status(status: Any) -> str:
    value = str(status or "")
    return value if value in _STRIPE_STATUSES else "unknown"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _serialize(subscription: Optional[Subscription]) -> Optional[Dict[str, Any]]:
    if subscription is None:
        return None
    period_end = _as_utc(subscription.current_period_end)
    return {
        "id": subscription.id,
        "plan": subscription.plan,
        "status": subscription.status,
        "current_period_end": period_end.isoformat() if period_end else None,
        "coin_paid": not subscription.stripe_subscription_id,
    }


async def _get_user_subscription(user_id: str, db: AsyncSession) -> Optional[Subscription]:
    result = await db.execute(select(Subscription).where(Subscription.user_id == user_id))
    return result.scalar_one_or_none()


async def reconcile_user_subscription(
    user_id: str,
    db: AsyncSession,
    now: Optional[datetime] = None,
) -> bool:
    """
    Expire a lapsed coin-paid subscription and drop the account to FREE.

    Stripe-backed subscriptions are owned by webhooks and never touched here.
    Returns True when the subscription was expired.
    """
    subscription = await _get_user_subscription(user_id, db)
    if subscription is None:
        return False
    if subscription.status != STATUS_ACTIVE:
        return False
    period_end = _as_utc(subscription.current_period_end)
    if period_end is None:
        return False
    if subscription.stripe_subscription_id:
        return False

    current = now or datetime.now(timezone.utc)
    if period_end > current:
        return False

    user_result = await db.execute(select(User).where(User.id == user_id))
    user = user_result.scalar_one_or_none()
    subscription.status = STATUS_EXPIRED
    if user is not None:
        user.tier = Tier.FREE.value
    await db.commit()

    await create_notification(
        user_id=user_id,
        title="Subscription Expired",
        message=(
            f"Your {subscription.plan} plan expired on {period_end.strftime('%Y-%m-%d')}. "
            "You've been moved to the FREE plan."
        ),
        type=NotificationType.WARNING,
    )
    logger.info("Expired coin-paid %s subscription for %s", subscription.plan, user_id)
    return True


async def get_subscription_summary(user: User, db: AsyncSession) -> Dict[str, Any]:
    await reconcile_user_subscription(user.id, db)
    subscription = await _get_user_subscription(user.id, db)
    return {
        "subscription": _serialize(subscription),
        "coins": int(user.coins or 0),
        "tier": parse_tier(user.tier).value,
    }


async def _upsert_subscription(
    user_id: str,
    db: AsyncSession,
    *,
    plan: Plan,
    status: str,
    current_period_end: Optional[datetime],
    stripe_customer_id: Optional[str],
    stripe_subscription_id: Optional[str],
) -> Subscription:
    subscription = await _get_user_subscription(user_id, db)
    if subscription is None:
        subscription = Subscription(id=str(uuid.uuid4()), user_id=user_id)
        db.add(subscription)
    subscription.plan = plan.value
    subscription.status = status
    subscription.current_period_end = current_period_end
    subscription.stripe_customer_id = stripe_customer_id
    subscription.stripe_subscription_id = stripe_subscription_id
    return subscription


async def create_subscription(user: User, plan_value: Any, db: AsyncSession) -> Dict[str, Any]:
    """
    Start a plan, paying with coins first.

    Balances that cover the price pay fully in coins and get a coin-paid
    subscription; otherwise the balance becomes a Stripe Checkout discount.
    """
    plan = parse_plan(plan_value)
    if plan is None:
        raise HTTPException(status_code=400, detail="Invalid plan. Must be PRO, ELITE, or LEGEND.")

    existing = await _get_user_subscription(user.id, db)
    if existing is not None and existing.plan == plan.value and existing.status == STATUS_ACTIVE:
        raise HTTPException(status_code=400, detail="You already have this plan")

    plan_price = PLAN_PRICES[plan]
    coins = int(user.coins or 0)
    coin_discount = min(coins, plan_price)
    amount_after_discount = plan_price - coin_discount

    if amount_after_discount <= 0:
        coin_result = await add_coins(
            user.id,
            -plan_price,
            f"Subscription to {plan.value} plan (full coin payment)",
            f"subscription-{user.id}-{plan.value}-{uuid.uuid4()}",
            db,
        )
        if not coin_result.success:
            raise HTTPException(status_code=500, detail="Failed to process coin payment")

        period_days = max(int(settings.COIN_SUBSCRIPTION_PERIOD_DAYS), 1)
        subscription = await _upsert_subscription(
            user.id,
            db,
            plan=plan,
            status=STATUS_ACTIVE,
            current_period_end=datetime.now(timezone.utc) + timedelta(days=period_days),
            stripe_customer_id=existing.stripe_customer_id if existing else None,
            stripe_subscription_id=None,
        )
        user.tier = plan.value
        await db.commit()
        await db.refresh(subscription)

        await create_notification(
            user_id=user.id,
            title="Subscription Activated",
            message=f"Your {plan.value} plan is active for {period_days} days, paid with {plan_price} coins.",
            type=NotificationType.SUCCESS,
        )
        return {
            "success": True,
            "message": "Subscription activated with coin payment",
            "subscription": _serialize(subscription),
            "coins_used": plan_price,
            "amount_charged": 0,
        }

    if not stripe_configured():
        raise HTTPException(status_code=503, detail="Stripe is not configured")
    price_id = price_id_for(plan)
    if not price_id:
        raise HTTPException(status_code=500, detail=f"Price ID not configured for {plan.value} plan")

    try:
        customer_id = await stripe_gateway.ensure_customer(
            user.id,
            user.email,
            existing.stripe_customer_id if existing else None,
        )
        session_id, session_url = await stripe_gateway.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            user_id=user.id,
            plan=plan.value,
            coin_discount=coin_discount,
        )
    except stripe_gateway.StripeGatewayError as exc:
        logger.error("Checkout for %s failed: %s", user.id, exc)
        raise HTTPException(status_code=502, detail="Failed to create subscription") from exc

    if coin_discount > 0:
        discount_result = await add_coins(
            user.id,
            -coin_discount,
            f"Subscription discount for {plan.value} plan",
            f"subscription-discount-{session_id}",
            db,
        )
        if not discount_result.success:
            logger.warning("Coin discount debit for session %s not applied: %s", session_id, discount_result.error)

    return {
        "session_id": session_id,
        "url": session_url,
        "coin_discount": coin_discount,
        "amount_after_discount": amount_after_discount,
    }


def _id_of(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("id")
    return str(value) if value else None


def _timestamp_to_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


async def _set_user_tier(user_id: str, tier: str, db: AsyncSession) -> None:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is not None:
        user.tier = tier


async def _handle_checkout_completed(payload: Dict[str, Any], db: AsyncSession) -> None:
    metadata = payload.get("metadata") or {}
    user_id = metadata.get("user_id")
    plan = parse_plan(metadata.get("plan"))
    if not user_id or plan is None:
        logger.error("Missing metadata in checkout session %s", payload.get("id"))
        return

    stripe_subscription_id = _id_of(payload.get("subscription"))
    if not stripe_subscription_id:
        logger.error("Missing subscription ID in checkout session %s", payload.get("id"))
        return

    period_end = await stripe_gateway.retrieve_subscription_period_end(stripe_subscription_id)
    await _upsert_subscription(
        user_id,
        db,
        plan=plan,
        status=STATUS_ACTIVE,
        current_period_end=period_end or datetime.now(timezone.utc),
        stripe_customer_id=_id_of(payload.get("customer")),
        stripe_subscription_id=stripe_subscription_id,
    )
    await _set_user_tier(user_id, plan.value, db)
    await db.commit()


async def _find_by_stripe_id(stripe_subscription_id: Optional[str], db: AsyncSession) -> Optional[Subscription]:
    if not stripe_subscription_id:
        return None
    result = await db.execute(
        select(Subscription).where(Subscription.stripe_subscription_id == stripe_subscription_id)
    )
    return result.scalars().first()


async def _handle_subscription_updated(payload: Dict[str, Any], db: AsyncSession) -> None:
    subscription = await _find_by_stripe_id(_id_of(payload.get("id")), db)
    if subscription is None:
        logger.info("Subscription not found for update: %s", payload.get("id"))
        return

    status = map_stripe_status(payload.get("status"))
    subscription.status = status
    subscription.current_period_end = (
        _timestamp_to_datetime(payload.get("current_period_end")) or datetime.now(timezone.utc)
    )
    if status != STATUS_ACTIVE:
        await _set_user_tier(subscription.user_id, Tier.FREE.value, db)
    await db.commit()


async def _handle_subscription_deleted(payload: Dict[str, Any], db: AsyncSession) -> None:
    subscription = await _find_by_stripe_id(_id_of(payload.get("id")), db)
    if subscription is None:
        logger.info("Subscription not found for deletion: %s", payload.get("id"))
        return

    subscription.status = STATUS_CANCELED
    await _set_user_tier(subscription.user_id, Tier.FREE.value, db)
    await db.commit()


_EVENT_HANDLERS: Dict[str, Callable[[Dict[str, Any], AsyncSession], Awaitable[None]]] = {
    "checkout.session.completed": _handle_checkout_completed,
    "customer.subscription.updated": _handle_subscription_updated,
    "customer.subscription.deleted": _handle_subscription_deleted,
}


async def process_payment_event(
    event: stripe_gateway.PaymentEvent,
    db: AsyncSession,
    cache: Optional[WebhookEventCache] = None,
) -> Dict[str, Any]:
    """
    Apply a verified payment event once per event id.

    Replays inside the dedup window are acknowledged without side effects.
    The event is marked only after its handler succeeds so provider retries
    of a failed delivery are processed again.
    """
    event_cache = cache or get_webhook_event_cache()
    if event.event_id and await event_cache.seen(event.event_id):
        logger.info("Skipping duplicate webhook event %s", event.event_id)
        return {"received": True, "duplicate": True}

    handler = _EVENT_HANDLERS.get(event.event_type)
    if handler is None:
        logger.info("Unhandled event type: %s", event.event_type)
    else:
        await handler(event.payload, db)

    if event.event_id:
        await event_cache.mark(event.event_id)
    return {"received": True}
