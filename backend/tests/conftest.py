from __future__ import annotations

import sys
import threading
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from app import crud
from app.core.config import Settings
from app.db import create_db_engine, create_session_factory, init_db, session_scope
from app.domain import Candle, CandleSeries, TokenCandidate, TokenMetrics
from app.models import MarketType, PayoutType
from app.repositories import MarketRepository, ResolutionRepository
from app.services.errors import ExternalFetchError
from app.services.events import InMemoryEventBus

T0 = 1_700_000_000
CREATED_AT = datetime.fromtimestamp(T0, tz=timezone.utc)


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        database_url=f"sqlite:///{tmp_path/'market_engine.db'}",
        feed_api_key="test-key",
        resolution_max_workers=1,
        payout_max_workers=2,
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings


@pytest.fixture
def session_factory(test_settings):
    engine = create_db_engine(test_settings.resolved_database_url)
    init_db(bind=engine)
    factory = create_session_factory(engine)
    yield factory
    engine.dispose()


@pytest.fixture
def event_bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def enable_automation(session_factory):
    def _enable(enabled: bool = True) -> None:
        with session_scope(session_factory) as session:
            crud.set_automation_enabled(session, enabled)

    return _enable


def make_candidate(
    mint: str | None,
    name: str | None = None,
    *,
    market_cap: float = 200_000,
    volume_24h: float = 50_000,
    holders: int = 300,
    age_hours: float = 10,
    image: str | None = "https://img.example/token.png",
    now: datetime = CREATED_AT,
) -> TokenCandidate:
    return TokenCandidate(
        mint=mint,
        name=name,
        symbol=name.upper()[:4] if name else None,
        image=image,
        market_cap=market_cap,
        volume_24h=volume_24h,
        holders=holders,
        created_time=now - timedelta(hours=age_hours),
    )


def candle(time: int, *, high: float = 0.0, low: float = 1e12) -> Candle:
    return Candle(time=time, open=low, high=high, low=low, close=low)


class StubFeed:
    def __init__(
        self,
        candidates: Iterable[TokenCandidate] = (),
        *,
        metrics: dict[str, TokenMetrics] | None = None,
        candles: dict[tuple[str, str], list[Candle]] | None = None,
        broken: Iterable[str] = (),
    ) -> None:
        self.candidates = list(candidates)
        self.metrics = dict(metrics or {})
        self.candles = dict(candles or {})
        self.broken = set(broken)
        self.candle_calls: list[tuple[str, str]] = []
        self.closed = False

    def list_candidates(self) -> list[TokenCandidate]:
        return list(self.candidates)

    def fetch_metrics(self, token_address: str) -> TokenMetrics:
        if token_address in self.broken:
            raise ExternalFetchError(f"feed unavailable for {token_address}", source="feed")
        return self.metrics[token_address]

    def fetch_candles(self, token_address: str, *, granularity: str, start=None, end=None, limit=None) -> CandleSeries:
        if token_address in self.broken:
            raise ExternalFetchError(f"feed unavailable for {token_address}", source="feed")
        self.candle_calls.append((token_address, granularity))
        return CandleSeries(
            token_address=token_address,
            granularity=granularity,
            candles=list(self.candles.get((token_address, granularity), [])),
        )

    def close(self) -> None:
        self.closed = True


class StubCompositor:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def combine(self, image_a: str, image_b: str) -> str:
        self.calls.append((image_a, image_b))
        return f"composite://{len(self.calls)}"


class StubSigner:
    def __init__(
        self,
        *,
        balance: int = 100 * 1_000_000_000,
        reserve: int = 995_880,
        reject: Iterable[str] = (),
        delay: float = 0.0,
    ) -> None:
        self.public_key = "TREASURY"
        self._balance = balance
        self._reserve = reserve
        self.reject = set(reject)
        self.delay = delay
        self.sent: list[tuple[str, int]] = []
        self._in_flight = 0
        self.max_in_flight = 0
        self._guard = threading.Lock()

    def balance(self) -> int:
        return self._balance

    def required_reserve(self) -> int:
        return self._reserve

    def transfer(self, recipient: str, lamports: int) -> str:
        with self._guard:
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            if self.delay:
                threading.Event().wait(self.delay)
            if recipient in self.reject:
                raise ExternalFetchError(f"rpc sendTransaction rejected: {recipient}", source="chain")
            self._balance -= lamports
            self.sent.append((recipient, lamports))
            return f"sig-{recipient}"
        finally:
            with self._guard:
                self._in_flight -= 1


@pytest.fixture
def market_factory(session_factory):
    def _create(
        *,
        market_type: MarketType = MarketType.MARKET_CAP,
        target: float = 500_000,
        token: str = "TOKEN_A",
        token2: str | None = None,
        created_at: datetime = CREATED_AT,
        expires_at: datetime | None = None,
        payout_type: PayoutType = PayoutType.PROPORTIONAL,
        bets: Iterable[tuple[str, str, str]] = (),
        wallets: dict[str, str] | None = None,
    ) -> int:
        wallets = wallets or {}
        expires_at = expires_at or created_at + timedelta(minutes=120)
        with session_scope(session_factory) as session:
            repo = MarketRepository(session)
            market = repo.create_market(
                question="test market",
                category="memecoins",
                is_automated=True,
                token_address=token,
                token_address2=token2,
                created_at=created_at,
                expires_at=expires_at,
                payout_type=payout_type.value,
            )
            ResolutionRepository(session).create_tracking(
                market_id=market.id,
                market_type=market_type,
                target_value=Decimal(str(target)),
                token_address=token,
                token_address2=token2,
            )
            repo.reserve_tokens(market, [token, token2], now=created_at)
            for username, position, amount in bets:
                user = crud.get_user_by_username(session, username)
                if user is None:
                    user = crud.create_user(session, username=username, wallet_address=wallets.get(username))
                repo.add_bet(market, user_id=user.id, position=position, amount=Decimal(amount))
            return market.id

    return _create


def user_balances(session_factory) -> dict[str, Decimal]:
    from sqlalchemy import select

    from app.models import User

    with session_scope(session_factory) as session:
        return {user.username: user.balance for user in session.execute(select(User)).scalars()}


def load(session_factory, model, key) -> Any:
    """Fetch a row and detach a plain snapshot of its columns."""
    with session_scope(session_factory) as session:
        row = session.get(model, key)
        if row is None:
            return None
        return {column.key: getattr(row, column.key) for column in model.__table__.columns}
