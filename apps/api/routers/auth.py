"""
Current-account endpoint. Login and session issuance live upstream.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from routers.auth_scope import get_current_user
from routers.rate_limit import preset
from services.subscriptions import reconcile_user_subscription
from services.tiers import parse_tier

router = APIRouter()


class CurrentUserResponse(BaseModel):
    user_id: str
    email: str
    name: Optional[str] = None
    avatar: Optional[str] = None
    role: str = "USER"
    coins: int = 0
    tier: str = "FREE"


@router.get("/me", response_model=CurrentUserResponse)
async def get_me(
    _rate_limit: None = Depends(preset("auth_me", "AUTH")),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Return the signed-in account, expiring a lapsed coin-paid plan first."""
    await reconcile_user_subscription(user.id, db)
    return CurrentUserResponse(
        user_id=user.id,
        email=user.email,
        name=user.name,
        avatar=user.avatar,
        role=user.role or "USER",
        coins=int(user.coins or 0),
        tier=parse_tier(user.tier).value,
    )
