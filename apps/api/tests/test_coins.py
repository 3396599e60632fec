from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from models.coin_transaction import CoinTransaction
from models.user import User
from services.coins import (
    ACCOUNT_NOT_FOUND,
    DUPLICATE_REFERENCE,
    OPERATION_FAILED,
    add_coins,
    get_coin_history,
    get_coin_stats,
    random_reference,
)
from services.tiers import Tier


async def _transaction_count(session_maker, user_id):
    async with session_maker() as session:
        result = await session.execute(
            select(func.count(CoinTransaction.id)).where(CoinTransaction.user_id == user_id)
        )
        return int(result.scalar() or 0)


@pytest.mark.asyncio
async def test_duplicate_reference_is_applied_once(session_maker, make_user):
    user_id = await make_user("ada", coins=100)

    async with session_maker() as session:
        first = await add_coins(user_id, 10, "Task completed", "task-done-t1", session)
        second = await add_coins(user_id, 10, "Task completed", "task-done-t1", session)

    assert first.success is True
    assert first.new_balance == 110
    assert second.success is False
    assert second.error == DUPLICATE_REFERENCE
    assert second.new_balance == 110
    assert await _transaction_count(session_maker, user_id) == 1


@pytest.mark.asyncio
async def test_duplicate_reference_from_another_session_is_rejected(session_maker, make_user):
    user_id = await make_user("bea", coins=0)

    async with session_maker() as session:
        await add_coins(user_id, 15, "Automation created", "automation-created-a1", session)
    async with session_maker() as other:
        replay = await add_coins(user_id, 15, "Automation created", "automation-created-a1", other)

    assert replay.success is False
    assert replay.new_balance == 15
    assert replay.new_tier == Tier.FREE


@pytest.mark.asyncio
async def test_debit_is_floored_at_zero(session_maker, make_user):
    user_id = await make_user("cy", coins=5)

    async with session_maker() as session:
        result = await add_coins(user_id, -20, "AI prompt", random_reference("ai"), session)

    assert result.success is True
    assert result.new_balance == 0
    assert result.transaction["amount"] == -20
    async with session_maker() as session:
        user = (await session.execute(select(User).where(User.id == user_id))).scalar_one()
        assert user.coins == 0


@pytest.mark.asyncio
async def test_crossing_threshold_updates_cached_tier(session_maker, make_user):
    user_id = await make_user("dee", coins=495)

    async with session_maker() as session:
        result = await add_coins(user_id, 10, "Task completed", "task-done-t2", session)

    assert result.new_tier == Tier.PRO
    async with session_maker() as session:
        user = (await session.execute(select(User).where(User.id == user_id))).scalar_one()
        assert user.tier == "PRO"
        assert user.coins == 505


@pytest.mark.asyncio
async def test_debit_can_drop_tier(session_maker, make_user):
    user_id = await make_user("eve", coins=1500)

    async with session_maker() as session:
        result = await add_coins(user_id, -999, "Subscription", random_reference("subscription"), session)

    assert result.new_balance == 501
    assert result.new_tier == Tier.PRO


@pytest.mark.asyncio
async def test_missing_account_reports_failure_without_writing(session_maker):
    async with session_maker() as session:
        result = await add_coins("nobody", 10, "Task completed", "task-done-ghost", session)

    assert result.success is False
    assert result.error == ACCOUNT_NOT_FOUND
    assert result.new_balance == 0
    assert result.new_tier == Tier.FREE
    assert await _transaction_count(session_maker, "nobody") == 0


@pytest.mark.asyncio
async def test_blank_reference_is_rejected(session_maker, make_user):
    user_id = await make_user("fay")

    async with session_maker() as session:
        with pytest.raises(ValueError):
            await add_coins(user_id, 10, "Task completed", "  ", session)


def test_random_reference_never_repeats():
    references = {random_reference("manual") for _ in range(50)}
    assert len(references) == 50
    assert all(reference.startswith("manual-") for reference in references)


@pytest.mark.asyncio
async def test_history_and_balance_stay_consistent(session_maker, make_user):
    user_id = await make_user("gus", coins=0)

    async with session_maker() as session:
        await add_coins(user_id, 10, "Task completed", "task-done-a", session)
        await add_coins(user_id, 15, "Automation created", "automation-created-b", session)
        await add_coins(user_id, -2, "AI prompt", "ai-gus-1", session)
        await add_coins(user_id, 10, "Task completed", "task-done-a", session)

        history = await get_coin_history(user_id, session)
        user = (await session.execute(select(User).where(User.id == user_id))).scalar_one()

    assert len(history) == 3
    assert sum(entry["amount"] for entry in history) == user.coins == 23
    assert {entry["reference_id"] for entry in history} == {"task-done-a", "automation-created-b", "ai-gus-1"}


def test_coin_stats_reports_progress():
    user = User(id="stats-user", email="stats@example.com", coins=1000, tier="PRO")
    stats = get_coin_stats(user)
    assert stats == {
        "coins": 1000,
        "tier": "PRO",
        "next_tier": "ELITE",
        "coins_to_next": 500,
        "progress_to_next_tier": 50,
    }


@pytest.mark.asyncio
async def test_storage_failure_leaves_no_partial_state(session_maker, make_user):
    user_id = await make_user("hal", coins=495)
    failing_commit = AsyncMock(side_effect=OperationalError("COMMIT", {}, Exception("disk I/O error")))

    async with session_maker() as session:
        with patch.object(session, "commit", failing_commit):
            result = await add_coins(user_id, 10, "Task completed", "task-done-io", session)

    assert result.success is False
    assert result.error == OPERATION_FAILED
    failing_commit.assert_awaited_once()

    async with session_maker() as session:
        user = (await session.execute(select(User).where(User.id == user_id))).scalar_one()
        entries = (
            await session.execute(select(CoinTransaction).where(CoinTransaction.reference_id == "task-done-io"))
        ).scalars().all()
    assert user.coins == 495
    assert user.tier == "FREE"
    assert entries == []

    async with session_maker() as session:
        retried = await add_coins(user_id, 10, "Task completed", "task-done-io", session)
    assert retried.success is True
    assert retried.new_tier == Tier.PRO
