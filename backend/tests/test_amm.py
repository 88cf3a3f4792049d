from __future__ import annotations

from decimal import Decimal

import pytest

from app.services import amm
from app.services.amm import StakeView


def _stakes(*entries: tuple[str, str]) -> list[StakeView]:
    return [
        StakeView(bet_id=index, user_id=index, position=position, amount=Decimal(amount))
        for index, (position, amount) in enumerate(entries, start=1)
    ]


def test_probability_examples():
    assert amm.probability(30, 70) == 30
    assert amm.probability(0, 0) == 50
    assert amm.probability(1, 2) == 33
    assert amm.probability(2, 1) == 67
    assert amm.probability(10, 0) == 100
    assert amm.probability(0, 10) == 0


def test_probability_stays_in_range():
    for yes in (0, 1, 3, 17, 250, 10_000):
        for no in (0, 2, 9, 333, 7_777):
            assert 0 <= amm.probability(yes, no) <= 100


def test_potential_payout_includes_own_stake():
    result = amm.potential_payout(5, "yes", 10, 10)
    assert abs(result - Decimal(25) / Decimal(3)) < Decimal("1e-20")


def test_potential_payout_undefined_for_empty_side():
    assert amm.potential_payout(0, "no", 10, 0) is None


def test_settlement_share():
    assert amm.settlement_share(10, 30, 60) == Decimal(20)
    assert amm.settlement_share(10, 0, 60) == Decimal(0)


def test_settle_proportional_conserves_pool():
    stakes = _stakes(("yes", "10"), ("yes", "20"), ("no", "30"))
    amounts = amm.settle_stakes(stakes, "yes")
    assert amounts == {1: Decimal("20"), 2: Decimal("40"), 3: Decimal("0")}
    assert sum(amounts.values()) == Decimal("60")


def test_settle_rounding_never_exceeds_pool():
    stakes = _stakes(("yes", "1"), ("yes", "1"), ("yes", "1"), ("no", "1"))
    amounts = amm.settle_stakes(stakes, "yes")
    total = sum(amounts.values())
    assert total <= Decimal("4")
    assert Decimal("4") - total < Decimal("1e-8")
    assert amounts[4] == 0


def test_settle_refund_returns_every_stake():
    stakes = _stakes(("yes", "12.5"), ("no", "7"), ("no", "0.3"))
    assert amm.settle_stakes(stakes, "refunded") == {1: Decimal("12.5"), 2: Decimal("7"), 3: Decimal("0.3")}


def test_settle_winner_takes_all_splits_pool_equally():
    stakes = _stakes(("yes", "5"), ("yes", "15"), ("no", "20"))
    amounts = amm.settle_stakes(stakes, "yes", payout_type="winner-takes-all")
    assert amounts == {1: Decimal("20"), 2: Decimal("20"), 3: Decimal("0")}


def test_settle_without_winning_stake_pays_nothing():
    stakes = _stakes(("no", "5"), ("no", "15"))
    assert set(amm.settle_stakes(stakes, "yes").values()) == {Decimal("0")}


def test_pools_from_stakes():
    yes, no = amm.pools_from_stakes(_stakes(("yes", "1.5"), ("no", "2"), ("yes", "3")))
    assert (yes, no) == (Decimal("4.5"), Decimal("2"))


@pytest.mark.parametrize("outcome", ["maybe", "YES"])
def test_settle_rejects_unknown_outcome(outcome):
    with pytest.raises(ValueError):
        amm.settle_stakes([], outcome)
