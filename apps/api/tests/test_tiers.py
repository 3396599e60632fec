import pytest

from services.tiers import Tier, TIER_ORDER, classify, next_tier, parse_tier, progress_info, tier_rank


@pytest.mark.parametrize(
    "coins,expected",
    [
        (0, Tier.FREE),
        (499, Tier.FREE),
        (500, Tier.PRO),
        (1499, Tier.PRO),
        (1500, Tier.ELITE),
        (2999, Tier.ELITE),
        (3000, Tier.LEGEND),
        (250000, Tier.LEGEND),
    ],
)
def test_classify_thresholds(coins, expected):
    assert classify(coins) == expected


def test_classify_is_monotonic():
    previous_rank = 0
    for coins in range(0, 3200, 7):
        rank = tier_rank(classify(coins))
        assert rank >= previous_rank
        previous_rank = rank


def test_parse_tier_defaults_unknown_to_free():
    assert parse_tier("elite") == Tier.ELITE
    assert parse_tier(None) == Tier.FREE
    assert parse_tier("PLATINUM") == Tier.FREE


def test_next_tier_ends_at_legend():
    assert [next_tier(tier) for tier in TIER_ORDER] == [Tier.PRO, Tier.ELITE, Tier.LEGEND, None]


def test_progress_is_measured_inside_current_tier():
    info = progress_info(1000)
    assert info["current_tier"] == Tier.PRO
    assert info["next_tier"] == Tier.ELITE
    assert info["coins_to_next"] == 500
    assert info["progress_percent"] == 50


def test_progress_rounds_half_up():
    assert progress_info(0)["progress_percent"] == 0
    assert progress_info(3)["progress_percent"] == 1
    assert progress_info(2)["progress_percent"] == 0
    assert progress_info(250)["progress_percent"] == 50
    assert progress_info(499)["progress_percent"] == 100
    assert progress_info(499)["coins_to_next"] == 1


def test_progress_at_boundary_restarts_from_zero():
    info = progress_info(1500)
    assert info["current_tier"] == Tier.ELITE
    assert info["progress_percent"] == 0
    assert info["coins_to_next"] == 1500


def test_legend_reports_full_progress():
    info = progress_info(3000)
    assert info == {
        "current_tier": Tier.LEGEND,
        "next_tier": None,
        "coins_to_next": 0,
        "progress_percent": 100,
    }
