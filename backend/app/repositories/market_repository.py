"""Market, bet, and token-reservation data access helpers."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.models import Bet, Market, MarketStatus, Position, TokenReservation, User
from app.services.amm import probability
from app.services.errors import StateConflict


class MarketRepository:
    """Encapsulate market persistence concerns."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def create_market(self, **fields: Any) -> Market:
        market = Market(**fields)
        market.probability = probability(market.yes_pool or 0, market.no_pool or 0)
        self._session.add(market)
        self._session.flush()
        return market

    def add_bet(self, market: Market, *, user_id: int, position: Position | str, amount: Decimal) -> Bet:
        if market.status != MarketStatus.ACTIVE.value:
            raise StateConflict(f"market {market.id} is {market.status}; bets are closed")
        if amount <= 0:
            raise ValueError("bet amount must be positive")
        side = Position(position)

        bet = Bet(
            market_id=market.id,
            user_id=user_id,
            position=side.value,
            amount=amount,
            probability=market.probability,
        )
        if side is Position.YES:
            market.yes_pool = (market.yes_pool or Decimal("0")) + amount
        else:
            market.no_pool = (market.no_pool or Decimal("0")) + amount
        market.probability = probability(market.yes_pool, market.no_pool)
        self._session.add(bet)
        self._session.flush()
        return bet

    def transition_status(
        self,
        market_id: int,
        *,
        status: MarketStatus,
        outcome: str,
        commitment_hash: str,
        commitment_secret: str,
        resolved_at: datetime,
        cached_probability: int | None = None,
    ) -> None:
        """Move an active market to a terminal status, or raise ``StateConflict``.

        The status check and the write are one statement, so two concurrent
        settlements of the same market cannot both succeed.
        """
        values: dict[str, Any] = {
            "status": status.value,
            "resolved_outcome": outcome,
            "commitment_hash": commitment_hash,
            "commitment_secret": commitment_secret,
            "resolved_at": resolved_at,
        }
        if cached_probability is not None:
            values["probability"] = cached_probability

        result = self._session.execute(
            update(Market)
            .where(Market.id == market_id, Market.status == MarketStatus.ACTIVE.value)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            raise StateConflict(f"market {market_id} is no longer active")

    # ------------------------------------------------------------------
    # Token reservations

    def reserve_tokens(
        self,
        market: Market,
        token_addresses: Iterable[str],
        *,
        now: datetime,
    ) -> None:
        """Bind each token to ``market`` until it settles or expires.

        Raises ``StateConflict`` if another live market already holds one of them.
        """
        tokens = [token for token in token_addresses if token]
        self.purge_stale_reservations(now=now, token_addresses=tokens)
        for token in tokens:
            self._session.add(
                TokenReservation(
                    token_address=token,
                    market_id=market.id,
                    expires_at=market.expires_at,
                )
            )
        try:
            self._session.flush()
        except IntegrityError as exc:
            raise StateConflict(f"token already reserved: {', '.join(tokens)}") from exc

    def release_tokens(self, market_id: int) -> int:
        result = self._session.execute(
            delete(TokenReservation).where(TokenReservation.market_id == market_id)
        )
        return result.rowcount or 0

    def purge_stale_reservations(
        self,
        *,
        now: datetime,
        token_addresses: Iterable[str] | None = None,
    ) -> int:
        inactive_markets = select(Market.id).where(Market.status != MarketStatus.ACTIVE.value)
        stale = or_(
            TokenReservation.expires_at <= now,
            TokenReservation.market_id.in_(inactive_markets),
        )
        statement = delete(TokenReservation).where(stale)
        if token_addresses is not None:
            statement = statement.where(TokenReservation.token_address.in_(list(token_addresses)))
        result = self._session.execute(statement.execution_options(synchronize_session=False))
        return result.rowcount or 0

    # ------------------------------------------------------------------
    # Queries

    def get_market(self, market_id: int) -> Market | None:
        return self._session.get(Market, market_id)

    def list_bets(self, market_id: int) -> list[Bet]:
        query = (
            select(Bet)
            .options(selectinload(Bet.user))
            .where(Bet.market_id == market_id)
            .order_by(Bet.id)
        )
        return list(self._session.execute(query).scalars().all())

    def get_users(self, user_ids: Iterable[int]) -> dict[int, User]:
        ids = set(user_ids)
        if not ids:
            return {}
        rows = self._session.execute(select(User).where(User.id.in_(ids))).scalars().all()
        return {user.id: user for user in rows}

    def is_token_in_use(self, token_address: str, *, now: datetime) -> bool:
        """True when a live automated market still references ``token_address``."""
        reservation = select(TokenReservation.token_address).join(
            Market, Market.id == TokenReservation.market_id
        ).where(
            TokenReservation.token_address == token_address,
            Market.status == MarketStatus.ACTIVE.value,
            or_(TokenReservation.expires_at.is_(None), TokenReservation.expires_at > now),
        )
        return self._session.execute(reservation.limit(1)).first() is not None

    def list_markets(
        self,
        *,
        status: str | None = None,
        is_automated: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Market]:
        filters: list[Any] = []
        if status:
            filters.append(Market.status == status)
        if is_automated is not None:
            filters.append(Market.is_automated.is_(is_automated))
        query = select(Market).where(*filters).order_by(Market.id.desc()).limit(limit).offset(offset)
        return list(self._session.execute(query).scalars().all())
