from __future__ import annotations

from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.repositories import AutomationRepository, MarketRepository, PayoutRepository, ResolutionRepository
from app.services.amm import to_decimal
from app.services.events import MARKET_UPDATED, EventPublisher, publish_safely

from .models import AutomatedMarketLog, AutomationConfig, Bet, Market, PayoutRecord, Position, User


def create_user(session: Session, *, username: str, wallet_address: str | None = None) -> User:
    user = User(username=username, wallet_address=wallet_address, balance=Decimal("0"))
    session.add(user)
    session.flush()
    return user


def get_user_by_username(session: Session, username: str) -> User | None:
    return session.execute(select(User).where(User.username == username)).scalars().first()


def create_market(session: Session, **fields: Any) -> Market:
    return MarketRepository(session).create_market(**fields)


def get_market(session: Session, market_id: int) -> Market | None:
    return MarketRepository(session).get_market(market_id)


def list_markets(
    session: Session,
    *,
    status: str | None = None,
    is_automated: bool | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Market]:
    return MarketRepository(session).list_markets(
        status=status,
        is_automated=is_automated,
        limit=limit,
        offset=offset,
    )


def record_bet(
    session: Session,
    *,
    market_id: int,
    user_id: int,
    position: Position | str,
    amount: Decimal | int | float | str,
    publisher: EventPublisher | None = None,
) -> Bet:
    repo = MarketRepository(session)
    market = repo.get_market(market_id)
    if market is None:
        raise LookupError(f"market {market_id} not found")
    bet = repo.add_bet(market, user_id=user_id, position=position, amount=to_decimal(amount))
    publish_safely(
        publisher,
        MARKET_UPDATED,
        marketId=market.id,
        probability=market.probability,
        yesPool=str(market.yes_pool),
        noPool=str(market.no_pool),
    )
    return bet


def list_bets(session: Session, market_id: int) -> list[Bet]:
    return MarketRepository(session).list_bets(market_id)


def get_tracking(session: Session, market_id: int):
    return ResolutionRepository(session).get(market_id)


def get_automation_config(session: Session) -> AutomationConfig:
    return AutomationRepository(session).get_config()


def set_automation_enabled(session: Session, enabled: bool) -> AutomationConfig:
    return AutomationRepository(session).set_enabled(enabled)


def recent_automation_logs(session: Session, limit: int = 10) -> list[AutomatedMarketLog]:
    return AutomationRepository(session).recent_logs(limit)


def list_payouts(session: Session, market_id: int) -> list[PayoutRecord]:
    return PayoutRepository(session).list_for_market(market_id)


def list_failed_payouts(session: Session, market_id: int | None = None) -> list[PayoutRecord]:
    return PayoutRepository(session).list_failed(market_id)
