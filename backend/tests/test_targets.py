from __future__ import annotations

import pytest

from app.core.config import Settings
from app.services import targets
from app.services.errors import IneligibleCandidate

LADDER = (250_000, 500_000, 750_000, 1_000_000, 2_000_000, 3_000_000, 5_000_000, 10_000_000, 20_000_000, 50_000_000, 100_000_000)


@pytest.fixture
def ladders() -> targets.TargetLadders:
    return targets.TargetLadders.from_settings(Settings())


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (0, 250_000),
        (250_000, 250_000),
        (250_001, 500_000),
        (1_999_999, 2_000_000),
        (100_000_000, 100_000_000),
        (250_000_000, 100_000_000),
    ],
)
def test_round_up_to_milestone(value, expected):
    assert targets.round_up_to_milestone(value, LADDER) == expected


def test_round_up_to_milestone_returns_minimal_ladder_element():
    for value in range(0, 120_000_000, 1_234_567):
        result = targets.round_up_to_milestone(value, LADDER)
        assert result in LADDER
        if value <= LADDER[-1]:
            assert result >= value
            assert all(milestone < value for milestone in LADDER if milestone < result)
        else:
            assert result == LADDER[-1]


def test_round_up_to_milestone_rejects_empty_ladder():
    with pytest.raises(ValueError):
        targets.round_up_to_milestone(1, [])


def test_market_cap_and_volume_targets_double_and_round_up(ladders):
    assert targets.market_cap_target(200_000, ladders) == 500_000
    assert targets.market_cap_target(400_000, ladders) == 1_000_000
    assert targets.volume_target(120_000, ladders) == 250_000


def test_market_cap_target_beyond_ladder_is_ineligible(ladders):
    with pytest.raises(IneligibleCandidate):
        targets.market_cap_target(60_000_000, ladders)
    with pytest.raises(IneligibleCandidate):
        targets.volume_target(50_000_001, ladders)


def test_holder_target(ladders):
    assert targets.holder_target(300, ladders) == 1_000
    assert targets.holder_target(100, ladders) == 500
    with pytest.raises(IneligibleCandidate):
        targets.holder_target(99, ladders)


def test_holder_target_bumps_degenerate_doubling_and_clamps():
    ladders = targets.TargetLadders(
        market_cap=LADDER,
        volume=LADDER,
        holders=(500, 1_000, 2_000),
    )
    # doubling 1 500 clamps to 2 000, which still moves the target
    assert targets.holder_target(1_500, ladders) == 2_000
    # doubling 2 500 clamps to 2 000 <= current; the bump re-rounds and clamps again
    assert targets.holder_target(2_500, ladders) == 2_000


def test_battle_race_target_uses_lower_market_cap(ladders):
    assert targets.battle_race_target(300_000, 350_000, ladders) == 750_000
    assert targets.battle_race_target(900_000, 450_000, ladders) == 1_000_000


def test_battle_dump_target_rounds_to_nearest_step_with_floor(ladders):
    assert targets.battle_dump_target(900_000, 1_100_000, ladders) == 500_000
    assert targets.battle_dump_target(1_300_000, 1_400_000, ladders) == 700_000
    assert targets.battle_dump_target(150_000, 180_000, ladders) == 100_000
    assert targets.battle_dump_target(50_000, 60_000, ladders) == 100_000


def test_display_formatting():
    assert targets.format_usd(1_000_000) == "$1.0M"
    assert targets.format_usd(2_500_000) == "$2.5M"
    assert targets.format_usd(500_000) == "$500K"
    assert targets.format_count(1_500) == "1.5K"
    assert targets.format_count(500) == "500"
