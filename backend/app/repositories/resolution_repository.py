"""Resolution tracking persistence helpers."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from app.models import MarketType, ResolutionTracking, TrackingStatus


class ResolutionRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_tracking(
        self,
        *,
        market_id: int,
        market_type: MarketType,
        target_value: Decimal,
        token_address: str,
        token_address2: str | None = None,
    ) -> ResolutionTracking:
        tracking = ResolutionTracking(
            market_id=market_id,
            market_type=market_type.value,
            target_value=target_value,
            token_address=token_address,
            token_address2=token_address2,
            status=TrackingStatus.PENDING.value,
        )
        self._session.add(tracking)
        self._session.flush()
        return tracking

    def get(self, market_id: int) -> ResolutionTracking | None:
        return self._session.get(ResolutionTracking, market_id)

    def list_pending_ids(self) -> list[int]:
        query = (
            select(ResolutionTracking.market_id)
            .where(ResolutionTracking.status == TrackingStatus.PENDING.value)
            .order_by(ResolutionTracking.market_id)
        )
        return list(self._session.execute(query).scalars().all())

    def get_pending(self, market_id: int) -> ResolutionTracking | None:
        query = (
            select(ResolutionTracking)
            .options(selectinload(ResolutionTracking.market))
            .where(
                ResolutionTracking.market_id == market_id,
                ResolutionTracking.status == TrackingStatus.PENDING.value,
            )
        )
        return self._session.execute(query).scalars().first()

    def mark_checked(self, market_id: int, *, checked_at: datetime) -> None:
        self._session.execute(
            update(ResolutionTracking)
            .where(ResolutionTracking.market_id == market_id)
            .values(last_checked=checked_at)
            .execution_options(synchronize_session="fetch")
        )

    def finish(self, market_id: int, *, status: TrackingStatus, checked_at: datetime) -> bool:
        """Leave ``pending`` exactly once; returns False if already terminal."""
        result = self._session.execute(
            update(ResolutionTracking)
            .where(
                ResolutionTracking.market_id == market_id,
                ResolutionTracking.status == TrackingStatus.PENDING.value,
            )
            .values(status=status.value, last_checked=checked_at)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1
