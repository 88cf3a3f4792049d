"""Pool math for binary yes/no markets.

Stakes on each side are pooled; winners split the whole pool pro rata to their
stake. All amounts are handled as ``Decimal`` so settlement never creates or
destroys value beyond the final quantization step.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence

from app.models import Outcome, PayoutType, Position

ZERO = Decimal("0")
AMOUNT_QUANTUM = Decimal("0.000000001")

Number = Decimal | int | float | str


def to_decimal(value: Number | None) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def probability(yes_pool: Number, no_pool: Number) -> int:
    """Implied probability (0-100) of the yes side; 50 for an empty market."""
    yes = to_decimal(yes_pool)
    no = to_decimal(no_pool)
    total = yes + no
    if total <= 0:
        return 50
    value = int((yes / total * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return max(0, min(100, value))


def potential_payout(
    bet_amount: Number,
    position: Position | str,
    yes_pool: Number,
    no_pool: Number,
) -> Decimal | None:
    """What a new bet would return if its side won, including its own stake in the pool."""
    amount = to_decimal(bet_amount)
    yes = to_decimal(yes_pool)
    no = to_decimal(no_pool)
    side = Position(position)

    new_position_pool = (yes if side is Position.YES else no) + amount
    if new_position_pool == 0:
        return None
    new_total = yes + no + amount
    return amount / new_position_pool * new_total


def settlement_share(
    bet_amount: Number,
    winner_side_pool: Number,
    total_pool: Number,
) -> Decimal:
    winner_pool = to_decimal(winner_side_pool)
    if winner_pool <= 0:
        return ZERO
    # multiply before dividing
    return to_decimal(bet_amount) * to_decimal(total_pool) / winner_pool


@dataclass(slots=True, frozen=True)
class StakeView:
    """Minimal view of a bet needed for settlement."""

    bet_id: int
    user_id: int
    position: str
    amount: Decimal


def quantize_amount(value: Decimal) -> Decimal:
    return value.quantize(AMOUNT_QUANTUM, rounding=ROUND_DOWN)


def settle_stakes(
    stakes: Sequence[StakeView],
    outcome: Outcome | str,
    *,
    payout_type: PayoutType | str = PayoutType.PROPORTIONAL,
) -> dict[int, Decimal]:
    """Map each bet id to its settlement amount.

    Refunds return every stake unchanged. Otherwise losing bets settle to zero and
    winning bets share the total pool, either pro rata (proportional) or in equal
    parts (winner-takes-all). Amounts are rounded down to the ledger precision, so
    the sum of winner amounts never exceeds the pool.
    """
    resolved = Outcome(outcome)
    if resolved is Outcome.REFUNDED:
        return {stake.bet_id: to_decimal(stake.amount) for stake in stakes}

    total_pool = sum((to_decimal(stake.amount) for stake in stakes), ZERO)
    winners = [stake for stake in stakes if stake.position == resolved.value]
    winner_pool = sum((to_decimal(stake.amount) for stake in winners), ZERO)

    amounts = {stake.bet_id: ZERO for stake in stakes}
    if not winners or winner_pool <= 0:
        return amounts

    if PayoutType(payout_type) is PayoutType.WINNER_TAKES_ALL:
        equal_share = quantize_amount(total_pool / len(winners))
        for stake in winners:
            amounts[stake.bet_id] = equal_share
        return amounts

    for stake in winners:
        amounts[stake.bet_id] = quantize_amount(
            settlement_share(stake.amount, winner_pool, total_pool)
        )
    return amounts


def pools_from_stakes(stakes: Iterable[StakeView]) -> tuple[Decimal, Decimal]:
    yes = ZERO
    no = ZERO
    for stake in stakes:
        if stake.position == Position.YES.value:
            yes += to_decimal(stake.amount)
        else:
            no += to_decimal(stake.amount)
    return yes, no
