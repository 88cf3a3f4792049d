"""Typed domain representations exchanged between feeds, the engine, and persistence."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any


@dataclass(slots=True)
class TokenCandidate:
    """Normalized token snapshot returned by the feed's candidate listing."""

    mint: str | None
    name: str | None
    symbol: str | None
    image: str | None
    market_cap: float
    volume_24h: float
    holders: int
    created_time: datetime | None
    raw_data: dict[str, Any] | None = None

    @property
    def display_name(self) -> str | None:
        return self.name or self.symbol

    @property
    def has_metadata(self) -> bool:
        return bool(self.mint) and bool(self.display_name)

    def age_hours(self, now: datetime) -> float:
        if self.created_time is None:
            return 0.0
        return max((now - self.created_time).total_seconds() / 3600.0, 0.0)


@dataclass(slots=True)
class TokenMetrics:
    """Live single-token metrics used to settle single-token markets."""

    mint: str
    market_cap: float
    volume_24h: float
    holders: int


@dataclass(slots=True, frozen=True)
class Candle:
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.time, tz=timezone.utc)


@dataclass(slots=True)
class CandleSeries:
    token_address: str
    granularity: str
    candles: list[Candle] = field(default_factory=list)


@dataclass(slots=True)
class CommitmentArtifact:
    """Published hash plus the revealed secret for one settlement."""

    market_id: int
    outcome: str
    secret: str
    commitment_hash: str
    verified: bool


@dataclass(slots=True)
class PayoutInstruction:
    """Amount owed to one recipient for one settlement."""

    user_id: int
    recipient: str | None
    amount: Decimal
    bet_ids: tuple[int, ...] = ()


@dataclass(slots=True)
class PayoutResult:
    """Outcome of delivering one payout instruction."""

    user_id: int
    recipient: str
    amount: Decimal
    channel: str
    tx_signature: str | None = None
    error: str | None = None
    reason: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "recipient": self.recipient,
            "amount": str(self.amount),
            "txSignature": self.tx_signature,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload
