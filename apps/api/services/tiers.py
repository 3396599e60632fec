"""Coin balance to tier classification."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class Tier(str, Enum):
    FREE = "FREE"
    PRO = "PRO"
    ELITE = "ELITE"
    LEGEND = "LEGEND"


TIER_ORDER = (Tier.FREE, Tier.PRO, Tier.ELITE, Tier.LEGEND)

# Lower bound of each tier; a tier spans up to the next tier's minimum - 1.
TIER_MINIMUMS: Dict[Tier, int] = {
    Tier.FREE: 0,
    Tier.PRO: 500,
    Tier.ELITE: 1500,
    Tier.LEGEND: 3000,
}


def tier_rank(tier: Tier) -> int:
    """Position of a tier in FREE < PRO < ELITE < LEGEND."""
    return TIER_ORDER.index(Tier(tier))


def parse_tier(value: Any) -> Tier:
    """Read a cached tier column, treating unknown values as FREE."""
    try:
        return Tier(str(value or "").upper())
    except ValueError:
        return Tier.FREE


def classify(coins: int) -> Tier:
    """Return the tier for a non-negative coin balance."""
    balance = max(int(coins), 0)
    for tier in reversed(TIER_ORDER):
        if balance >= TIER_MINIMUMS[tier]:
            return tier
    return Tier.FREE


def next_tier(tier: Tier) -> Optional[Tier]:
    index = tier_rank(tier)
    if index + 1 >= len(TIER_ORDER):
        return None
    return TIER_ORDER[index + 1]


def progress_info(coins: int) -> Dict[str, Any]:
    """
    Progress toward the next tier.

    progress_percent is measured inside the current tier's own span and
    rounded half-up; the terminal tier always reports 100.
    """
    balance = max(int(coins), 0)
    current = classify(balance)
    upcoming = next_tier(current)
    if upcoming is None:
        return {
            "current_tier": current,
            "next_tier": None,
            "coins_to_next": 0,
            "progress_percent": 100,
        }

    current_min = TIER_MINIMUMS[current]
    next_min = TIER_MINIMUMS[upcoming]
    coins_in_tier = balance - current_min
    span = next_min - current_min
    # round half up: floor(ratio * 100 + 0.5) in integers
    percent = (coins_in_tier * 200 + span) // (2 * span)

    return {
        "current_tier": current,
        "next_tier": upcoming,
        "coins_to_next": next_min - balance,
        "progress_percent": min(100, percent),
    }
