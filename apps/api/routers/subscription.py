"""Subscription plans, coin payments and the Stripe webhook."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from routers.auth_scope import get_current_user
from routers.rate_limit import preset
from services import stripe_gateway
from services.subscriptions import create_subscription, get_subscription_summary, process_payment_event

router = APIRouter()
logger = logging.getLogger(__name__)


class CreateSubscriptionRequest(BaseModel):
    plan: str


@router.get("")
async def subscription_summary(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await get_subscription_summary(user, db)


@router.post("/create")
async def create_subscription_endpoint(
    request: CreateSubscriptionRequest,
    _rate_limit: None = Depends(preset("subscription_create", "SUBSCRIPTION")),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await create_subscription(user, request.plan, db)


@router.post("/webhook")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    body = await request.body()
    try:
        event = stripe_gateway.verify_webhook_event(body, request.headers.get("stripe-signature"))
    except stripe_gateway.WebhookVerificationError as exc:
        logger.warning("Rejected webhook: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except stripe_gateway.StripeGatewayError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    try:
        return await process_payment_event(event, db)
    except stripe_gateway.StripeGatewayError as exc:
        logger.error("Webhook %s (%s) failed: %s", event.event_id, event.event_type, exc)
        raise HTTPException(status_code=500, detail="Webhook handler failed") from exc
