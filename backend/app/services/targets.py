"""Resolution target math.

Every function here is pure: the caller supplies the current metrics and the
milestone ladders (from settings), and receives a numeric target. Display
strings are derived from the numeric target, which stays the value stored in
resolution tracking.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from app.core.config import Settings, get_settings

from .errors import IneligibleCandidate


@dataclass(slots=True, frozen=True)
class TargetLadders:
    market_cap: tuple[float, ...]
    volume: tuple[float, ...]
    holders: tuple[float, ...]
    holder_min_count: int = 100
    holder_bump_factor: float = 1.1
    dump_rounding: float = 100_000
    dump_floor: float = 100_000

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "TargetLadders":
        settings = settings or get_settings()
        return cls(
            market_cap=tuple(settings.market_cap_milestones),
            volume=tuple(settings.volume_milestones),
            holders=tuple(settings.holder_milestones),
            holder_min_count=settings.holder_min_count,
            holder_bump_factor=settings.holder_bump_factor,
            dump_rounding=settings.battle_dump_rounding,
            dump_floor=settings.battle_dump_floor,
        )


def round_up_to_milestone(value: float, milestones: Sequence[float]) -> float:
    """Return the first milestone >= value, or the largest milestone when value exceeds all."""
    if not milestones:
        raise ValueError("milestone ladder must not be empty")
    for milestone in milestones:
        if milestone >= value:
            return milestone
    return milestones[-1]


def round_to_nearest(value: float, step: float) -> float:
    # half-up
    return math.floor(value / step + 0.5) * step


def _doubled_milestone(current: float, ladder: Sequence[float], label: str) -> float:
    doubled = current * 2
    if doubled > ladder[-1]:
        raise IneligibleCandidate(
            f"{label} {current:,.0f} doubled exceeds the top milestone {ladder[-1]:,.0f}"
        )
    return round_up_to_milestone(doubled, ladder)


def market_cap_target(current_market_cap: float, ladders: TargetLadders) -> float:
    return _doubled_milestone(current_market_cap, ladders.market_cap, "market cap")


def volume_target(current_volume: float, ladders: TargetLadders) -> float:
    return _doubled_milestone(current_volume, ladders.volume, "24h volume")


def holder_target(current_holders: int, ladders: TargetLadders) -> float:
    if current_holders < ladders.holder_min_count:
        raise IneligibleCandidate(
            f"too few holders ({current_holders} < {ladders.holder_min_count})"
        )
    target = round_up_to_milestone(current_holders * 2, ladders.holders)
    if target <= current_holders:
        bumped = math.ceil(current_holders * ladders.holder_bump_factor)
        target = round_up_to_milestone(bumped, ladders.holders)
    return target


def battle_race_target(market_cap_a: float, market_cap_b: float, ladders: TargetLadders) -> float:
    return round_up_to_milestone(2 * min(market_cap_a, market_cap_b), ladders.market_cap)


def battle_dump_target(market_cap_a: float, market_cap_b: float, ladders: TargetLadders) -> float:
    lower = min(market_cap_a * 0.5, market_cap_b * 0.5)
    return max(round_to_nearest(lower, ladders.dump_rounding), ladders.dump_floor)


def format_usd(value: float) -> str:
    if value >= 1_000_000:
        return f"${value / 1_000_000:.1f}M"
    return f"${value / 1_000:.0f}K"


def format_count(value: float) -> str:
    if value >= 1_000:
        return f"{value / 1_000:.1f}K"
    return f"{int(value)}"
