"""Shared repository result types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from app.models import MarketType, ResolutionTracking


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@dataclass(slots=True, frozen=True)
class PendingResolution:
    """Detached snapshot of a pending tracking row and the market it settles."""

    market_id: int
    market_type: MarketType
    target_value: Decimal
    token_address: str
    token_address2: str | None
    market_status: str
    created_at: datetime
    expires_at: datetime | None

    @classmethod
    def from_tracking(cls, tracking: ResolutionTracking) -> "PendingResolution":
        market = tracking.market
        return cls(
            market_id=tracking.market_id,
            market_type=MarketType(tracking.market_type),
            target_value=Decimal(tracking.target_value),
            token_address=tracking.token_address,
            token_address2=tracking.token_address2,
            market_status=market.status,
            created_at=as_utc(market.created_at) or as_utc(tracking.created_at),
            expires_at=as_utc(market.expires_at),
        )


__all__ = ["PendingResolution", "as_utc"]
