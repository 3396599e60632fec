"""Workspace AI assistant billed per prompt in coins."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Any, Dict, List, Optional
import uuid

from fastapi import HTTPException
from openai import AsyncOpenAI, OpenAIError
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.ai_message import AIMessage
from models.user import User
from services.coins import DUPLICATE_REFERENCE, CoinResult, add_coins
from services.tiers import Tier, parse_tier
from services.workspace_access import ensure_member

logger = logging.getLogger(__name__)

# None means unlimited.
TIER_DAILY_LIMITS: Dict[Tier, Optional[int]] = {
    Tier.FREE: 5,
    Tier.PRO: 50,
    Tier.ELITE: 200,
    Tier.LEGEND: None,
}

ROLE_USER = "USER"
ROLE_ASSISTANT = "ASSISTANT"


class AIProviderError(Exception):
    """The model endpoint is not configured or returned no usable text."""


class AIChargeState(str, Enum):
    PENDING = "PENDING"
    DEBITED = "DEBITED"
    EXTERNAL_CALL_PENDING = "EXTERNAL_CALL_PENDING"
    COMPLETED = "COMPLETED"
    COMPENSATED = "COMPENSATED"
    COMPENSATION_FAILED = "COMPENSATION_FAILED"


@dataclass
class AICharge:
    """
    Debit-then-call-then-refund flow for one prompt.

    PENDING -> DEBITED -> EXTERNAL_CALL_PENDING -> COMPLETED | COMPENSATED.
    A refund that cannot be written ends in COMPENSATION_FAILED, and the
    debit stays in place until someone retries compensate().
    The refund reference is derived from the debit reference, so compensating
    twice credits the coins once. A process that dies while the charge is
    DEBITED or EXTERNAL_CALL_PENDING leaves the debit in place; nothing
    recovers it automatically.
    """

    user_id: str
    cost: int
    reference_id: str = ""
    state: AIChargeState = AIChargeState.PENDING
    history: List[AIChargeState] = field(default_factory=list)

    def __post_init__(self):
        if not self.reference_id:
            self.reference_id = f"ai-{self.user_id}-{uuid.uuid4()}"
        self.history.append(self.state)

    @property
    def refund_reference(self) -> str:
        return f"ai-refund-{self.reference_id}"

    def _move(self, expected: AIChargeState, target: AIChargeState) -> None:
        if self.state != expected:
            raise RuntimeError(f"AI charge cannot move from {self.state.value} to {target.value}")
        self.state = target
        self.history.append(target)

    async def debit(self, db: AsyncSession) -> CoinResult:
        result = await add_coins(self.user_id, -self.cost, "AI prompt", self.reference_id, db)
        if result.success:
            self._move(AIChargeState.PENDING, AIChargeState.DEBITED)
        return result

    def begin_external_call(self) -> None:
        self._move(AIChargeState.DEBITED, AIChargeState.EXTERNAL_CALL_PENDING)

    def complete(self) -> None:
        self._move(AIChargeState.EXTERNAL_CALL_PENDING, AIChargeState.COMPLETED)

    @property
    def refunded(self) -> bool:
        return self.state == AIChargeState.COMPENSATED

    async def compensate(self, db: AsyncSession) -> CoinResult:
        refundable = (
            AIChargeState.DEBITED,
            AIChargeState.EXTERNAL_CALL_PENDING,
            AIChargeState.COMPENSATION_FAILED,
        )
        if self.state not in refundable:
            raise RuntimeError(f"AI charge in state {self.state.value} cannot be refunded")
        result = await add_coins(
            self.user_id,
            self.cost,
            "AI prompt refund (error)",
            self.refund_reference,
            db,
        )
        # a duplicate refund reference means an earlier attempt already credited the coins
        if result.success or result.error == DUPLICATE_REFERENCE:
            self._move(self.state, AIChargeState.COMPENSATED)
        else:
            logger.error("AI refund %s for %s failed: %s", self.refund_reference, self.user_id, result.error)
            self._move(self.state, AIChargeState.COMPENSATION_FAILED)
        return result


def _ai_configured() -> bool:
    key = (settings.AI_API_KEY or "").strip()
    return bool(key) and "your_" not in key and key != "test-key"


async def generate_reply(prompt: str) -> str:
    if not _ai_configured():
        raise AIProviderError("AI_API_KEY is not configured")

    client = AsyncOpenAI(api_key=settings.AI_API_KEY, base_url=settings.AI_BASE_URL)
    try:
        response = await client.chat.completions.create(
            model=settings.AI_MODEL,
            messages=[{"role": "user", "content": prompt}],
            temperature=settings.AI_TEMPERATURE,
            max_tokens=settings.AI_MAX_OUTPUT_TOKENS,
        )
    except OpenAIError as exc:
        raise AIProviderError(f"AI request failed: {exc}") from exc

    text = response.choices[0].message.content if response.choices else None
    if not text:
        raise AIProviderError("No response from AI")
    return text


def _start_of_day(now: Optional[datetime] = None) -> datetime:
    current = now or datetime.now(timezone.utc)
    return current.replace(hour=0, minute=0, second=0, microsecond=0)


async def count_prompts_today(user_id: str, db: AsyncSession, now: Optional[datetime] = None) -> int:
    result = await db.execute(
        select(func.count(AIMessage.id)).where(
            AIMessage.user_id == user_id,
            AIMessage.role == ROLE_USER,
            AIMessage.created_at >= _start_of_day(now),
        )
    )
    return int(result.scalar() or 0)


def _remaining(limit: Optional[int], used: int) -> Optional[int]:
    if limit is None:
        return None
    return max(0, limit - used)


def _serialize(message: AIMessage) -> Dict[str, Any]:
    return {
        "id": message.id,
        "role": message.role,
        "content": message.content,
        "created_at": message.created_at.isoformat() if message.created_at else None,
    }


async def _load_user(user_id: str, db: AsyncSession) -> User:
    result = await db.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


async def send_ai_message(user_id: str, workspace_id: str, message: str, db: AsyncSession) -> Dict[str, Any]:
    prompt = (message or "").strip()
    if not prompt:
        raise HTTPException(status_code=400, detail="Message is required")
    await ensure_member(workspace_id, user_id, db)

    user = await _load_user(user_id, db)
    tier = parse_tier(user.tier)
    daily_limit = TIER_DAILY_LIMITS[tier]
    used_today = await count_prompts_today(user_id, db)
    if daily_limit is not None and used_today >= daily_limit:
        raise HTTPException(
            status_code=429,
            detail={
                "error": f"Daily limit reached. {tier.value} tier allows {daily_limit} AI prompts per day.",
                "limit_reached": True,
            },
        )

    cost = max(int(settings.AI_PROMPT_COST), 0)
    balance = int(user.coins or 0)
    if balance < cost:
        raise HTTPException(
            status_code=402,
            detail={
                "error": f"Insufficient coins. AI prompts cost {cost} coins. You have {balance} coins.",
                "insufficient_coins": True,
            },
        )

    charge = AICharge(user_id=user_id, cost=cost)
    coin_result = await charge.debit(db)
    if not coin_result.success:
        raise HTTPException(status_code=500, detail="Failed to process payment")

    charge.begin_external_call()
    try:
        reply = await generate_reply(prompt)
    except Exception as exc:
        logger.exception("AI call for %s failed: %s", user_id, exc)
        await charge.compensate(db)
        if not charge.refunded:
            raise HTTPException(
                status_code=500,
                detail="Failed to get AI response. The refund could not be applied yet.",
            ) from exc
        raise HTTPException(status_code=500, detail="Failed to get AI response. Coins refunded.") from exc
    charge.complete()

    now = datetime.now(timezone.utc)
    user_message = AIMessage(
        id=str(uuid.uuid4()),
        user_id=user_id,
        workspace_id=workspace_id,
        role=ROLE_USER,
        content=prompt,
        created_at=now,
    )
    assistant_message = AIMessage(
        id=str(uuid.uuid4()),
        user_id=user_id,
        workspace_id=workspace_id,
        role=ROLE_ASSISTANT,
        content=reply,
        created_at=now,
    )
    db.add_all([user_message, assistant_message])
    await db.commit()

    return {
        "user_message": _serialize(user_message),
        "assistant_message": _serialize(assistant_message),
        "coins_spent": cost,
        "new_balance": coin_result.new_balance,
        "remaining_today": _remaining(daily_limit, used_today + 1),
    }


async def get_ai_history(user_id: str, workspace_id: str, db: AsyncSession) -> Dict[str, Any]:
    await ensure_member(workspace_id, user_id, db)
    result = await db.execute(
        select(AIMessage)
        .where(AIMessage.user_id == user_id, AIMessage.workspace_id == workspace_id)
        .order_by(AIMessage.created_at.asc(), AIMessage.role.desc())
    )
    messages = [_serialize(row) for row in result.scalars().all()]

    user = await _load_user(user_id, db)
    tier = parse_tier(user.tier)
    daily_limit = TIER_DAILY_LIMITS[tier]
    used_today = await count_prompts_today(user_id, db)
    return {
        "messages": messages,
        "coins": int(user.coins or 0),
        "tier": tier.value,
        "daily_limit": daily_limit,
        "used_today": used_today,
        "remaining_today": _remaining(daily_limit, used_today),
    }
