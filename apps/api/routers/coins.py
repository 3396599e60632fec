"""Coin balance, tier progress and ledger history."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from routers.auth_scope import get_current_user
from services.coins import get_coin_history, get_coin_stats
from services.subscriptions import reconcile_user_subscription

router = APIRouter()


@router.get("/stats")
async def coin_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await reconcile_user_subscription(user.id, db)
    return get_coin_stats(user)


@router.get("/history")
async def coin_history(
    limit: int = Query(default=100, ge=1, le=500),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"transactions": await get_coin_history(user.id, db, limit=limit)}
