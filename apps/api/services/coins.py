"""Coin ledger: balance mutations, the transaction log and tier recalculation."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Dict, List, Optional, Tuple
import uuid

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.coin_transaction import CoinTransaction
from models.user import User
from services.tiers import Tier, classify, parse_tier, progress_info

logger = logging.getLogger(__name__)

DUPLICATE_REFERENCE = "duplicate reference"
ACCOUNT_NOT_FOUND = "account not found"
OPERATION_FAILED = "operation failed"


@dataclass
class CoinResult:
    success: bool
    new_balance: int
    new_tier: Tier
    transaction: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "new_balance": self.new_balance,
            "new_tier": self.new_tier.value,
        }
        if self.transaction is not None:
            payload["transaction"] = self.transaction
        if self.error:
            payload["error"] = self.error
        return payload


def random_reference(prefix: str) -> str:
    """
    Fresh reference id for callers that do not need duplicate protection.

    Every call returns a new id, so two calls are never deduplicated.
    """
    return f"{prefix}-{uuid.uuid4()}"


async def _current_standing(user_id: str, db: AsyncSession) -> Tuple[int, Tier]:
    result = await db.execute(select(User.coins, User.tier).where(User.id == user_id))
    row = result.first()
    if row is None:
        return 0, Tier.FREE
    return int(row.coins or 0), parse_tier(row.tier)


async def add_coins(
    user_id: str,
    amount: int,
    reason: str,
    reference_id: str,
    db: AsyncSession,
) -> CoinResult:
    """
    Apply a signed coin delta and log it, at most once per reference_id.

    The balance is floored at zero, so debits never fail for lack of funds;
    callers that need "insufficient coins" semantics check the balance first.
    Balance, tier and the log entry are committed as one unit.
    """
    reference = str(reference_id or "").strip()
    if not reference:
        raise ValueError("reference_id is required; use random_reference() to opt out of dedup")

    try:
        existing = await db.execute(
            select(CoinTransaction.id).where(CoinTransaction.reference_id == reference)
        )
        if existing.scalar_one_or_none():
            balance, tier = await _current_standing(user_id, db)
            return CoinResult(False, balance, tier, error=DUPLICATE_REFERENCE)

        result = await db.execute(
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        user = result.scalar_one_or_none()
        if user is None:
            return CoinResult(False, 0, Tier.FREE, error=ACCOUNT_NOT_FOUND)

        new_balance = max(0, int(user.coins or 0) + int(amount))
        new_tier = classify(new_balance)
        user.coins = new_balance
        user.tier = new_tier.value

        entry = CoinTransaction(
            id=str(uuid.uuid4()),
            user_id=user_id,
            amount=int(amount),
            reason=reason,
            reference_id=reference,
        )
        db.add(entry)
        await db.commit()
    except IntegrityError:
        # A concurrent writer inserted the same reference first.
        await db.rollback()
        balance, tier = await _current_standing(user_id, db)
        return CoinResult(False, balance, tier, error=DUPLICATE_REFERENCE)
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("add_coins failed for user %s (%s): %s", user_id, reference, exc)
        return CoinResult(False, 0, Tier.FREE, error=OPERATION_FAILED)

    return CoinResult(
        True,
        new_balance,
        new_tier,
        transaction={"id": entry.id, "amount": entry.amount, "reason": entry.reason},
    )


async def get_coin_history(user_id: str, db: AsyncSession, limit: int = 100) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(CoinTransaction)
        .where(CoinTransaction.user_id == user_id)
        .order_by(CoinTransaction.created_at.desc())
        .limit(max(1, min(int(limit), 500)))
    )
    return [
        {
            "id": entry.id,
            "amount": entry.amount,
            "reason": entry.reason,
            "reference_id": entry.reference_id,
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }
        for entry in result.scalars().all()
    ]


def get_coin_stats(user: User) -> Dict[str, Any]:
    coins = int(user.coins or 0)
    info = progress_info(coins)
    next_tier = info["next_tier"]
    return {
        "coins": coins,
        "tier": parse_tier(user.tier).value,
        "next_tier": next_tier.value if next_tier else None,
        "coins_to_next": info["coins_to_next"],
        "progress_to_next_tier": info["progress_percent"],
    }
