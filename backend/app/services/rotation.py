"""Automated market creation: type rotation, candidate selection, and persistence."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Protocol, TypeVar

from loguru import logger

from app.core.config import Settings, get_settings
from app.db import SessionFactory, session_scope
from app.domain import TokenCandidate
from app.models import MarketType, PayoutType, utcnow
from app.repositories import AutomationRepository, MarketRepository, ResolutionRepository

from . import targets
from .errors import ExternalFetchError, IneligibleCandidate, RunFailure, StateConflict
from .events import MARKET_CREATED, EventPublisher, LoggingEventPublisher, publish_safely

MARKET_ROTATION: tuple[MarketType, ...] = (
    MarketType.MARKET_CAP,
    MarketType.VOLUME,
    MarketType.HOLDERS,
    MarketType.BATTLE_RACE,
    MarketType.BATTLE_DUMP,
)

DISABLED_LOG_TYPE = "disabled"

T = TypeVar("T")


class CandidateSource(Protocol):
    def list_candidates(self) -> list[TokenCandidate]:
        ...


class ImageCompositor(Protocol):
    def combine(self, image_a: str, image_b: str) -> str:
        """Return a reference to one image built from both inputs, or raise."""
        ...


def next_market_type(last_type: MarketType | str | None) -> MarketType:
    if last_type is None:
        return MARKET_ROTATION[0]
    try:
        index = MARKET_ROTATION.index(MarketType(last_type))
    except ValueError:
        return MARKET_ROTATION[0]
    return MARKET_ROTATION[(index + 1) % len(MARKET_ROTATION)]


def iter_eligible(
    candidates: Iterable[TokenCandidate],
    evaluate: Callable[[TokenCandidate], T],
    *,
    max_attempts: int | None = None,
) -> Iterator[tuple[TokenCandidate, T]]:
    """Lazily yield ``(candidate, evaluate(candidate))`` for candidates that pass.

    ``evaluate`` rejects a candidate by raising ``IneligibleCandidate``; at most
    ``max_attempts`` candidates are examined.
    """
    for attempt, candidate in enumerate(candidates, start=1):
        if max_attempts is not None and attempt > max_attempts:
            return
        try:
            value = evaluate(candidate)
        except IneligibleCandidate as exc:
            logger.info("Skipping token {}: {}", candidate.symbol or candidate.mint, exc)
            continue
        yield candidate, value


def _relative_difference(a: float, b: float) -> float:
    average = (a + b) / 2
    if average <= 0:
        return 0.0
    return abs(a - b) / average


def tokens_match_for_battle(
    first: TokenCandidate,
    second: TokenCandidate,
    *,
    now: datetime,
    tolerance: float = 0.30,
) -> bool:
    cap_difference = _relative_difference(first.market_cap, second.market_cap)
    age_difference = _relative_difference(first.age_hours(now), second.age_hours(now))
    return cap_difference <= tolerance and age_difference <= tolerance


def window_label(minutes: int) -> str:
    if minutes % 1440 == 0:
        days = minutes // 1440
        return "1 day" if days == 1 else f"{days} days"
    return "1 minute" if minutes == 1 else f"{minutes} minutes"


def build_question(
    market_type: MarketType,
    target: float,
    names: tuple[str, ...],
    *,
    window_minutes: int,
) -> str:
    if market_type is MarketType.MARKET_CAP:
        return (
            f"Will {names[0]} current market cap be above {targets.format_usd(target)} "
            f"after {window_label(window_minutes)}?"
        )
    if market_type is MarketType.VOLUME:
        return (
            f"Will {names[0]} current 24h volume be above {targets.format_usd(target)} "
            f"after {window_label(window_minutes)}?"
        )
    if market_type is MarketType.HOLDERS:
        return (
            f"Will {names[0]} have more than {targets.format_count(target)} holders "
            f"after {window_label(window_minutes)}?"
        )
    if market_type is MarketType.BATTLE_RACE:
        return (
            f"Which token will reach {targets.format_usd(target)} market cap first: "
            f"{names[0]} or {names[1]}?"
        )
    return (
        f"Which token will dump 50% first (to {targets.format_usd(target)} market cap): "
        f"{names[0]} or {names[1]}?"
    )


@dataclass(slots=True)
class MarketPlan:
    market_type: MarketType
    tokens: tuple[TokenCandidate, ...]
    target: float
    question: str
    expires_at: datetime
    image: str | None = None

    @property
    def token_addresses(self) -> tuple[str, ...]:
        return tuple(token.mint for token in self.tokens if token.mint)


@dataclass(slots=True)
class CreationOutcome:
    success: bool
    market_type: str | None = None
    market_id: int | None = None
    token_address: str | None = None
    token_address2: str | None = None
    error: str | None = None
    disabled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "market_type": self.market_type,
            "market_id": self.market_id,
            "token_address": self.token_address,
            "token_address2": self.token_address2,
            "error": self.error,
            "disabled": self.disabled,
        }


class RotationScheduler:
    """Create the next automated market in the fixed type rotation."""

    def __init__(
        self,
        feed: CandidateSource,
        *,
        session_factory: SessionFactory | None = None,
        compositor: ImageCompositor | None = None,
        publisher: EventPublisher | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.feed = feed
        self.session_factory = session_factory
        self.compositor = compositor
        self.publisher = publisher if publisher is not None else LoggingEventPublisher()
        self.settings = settings or get_settings()
        self.ladders = targets.TargetLadders.from_settings(self.settings)

    def window_minutes(self, market_type: MarketType, *, test_mode: bool = False) -> int:
        if test_mode:
            return self.settings.test_mode_window_minutes
        return {
            MarketType.MARKET_CAP: self.settings.market_cap_window_minutes,
            MarketType.VOLUME: self.settings.volume_window_minutes,
            MarketType.HOLDERS: self.settings.holders_window_minutes,
            MarketType.BATTLE_RACE: self.settings.battle_window_minutes,
            MarketType.BATTLE_DUMP: self.settings.battle_window_minutes,
        }[market_type]

    def run(
        self,
        *,
        forced_type: MarketType | str | None = None,
        test_mode: bool = False,
        now: datetime | None = None,
    ) -> CreationOutcome:
        now = now or utcnow()

        with session_scope(self.session_factory) as session:
            automation = AutomationRepository(session)
            config = automation.get_config()
            if not config.enabled:
                automation.record_log(question_type=DISABLED_LOG_TYPE, success=True, execution_time=now)
                logger.info("Automated market creation is disabled; skipping run")
                return CreationOutcome(success=True, disabled=True)
            expected_epoch = config.rotation_epoch
            last_type = config.last_market_type

        market_type = MarketType(forced_type) if forced_type else next_market_type(last_type)
        logger.info(
            "Creating automated {} market (last={}, epoch={}, test_mode={})",
            market_type.value,
            last_type,
            expected_epoch,
            test_mode,
        )

        try:
            candidates = self.feed.list_candidates()
            logger.info("Feed returned {} candidate tokens", len(candidates))
            with session_scope(self.session_factory) as session:
                plan = self._plan(session, market_type, candidates, now=now, test_mode=test_mode)
                outcome = self._persist(session, plan, expected_epoch=expected_epoch, now=now)
        except (RunFailure, IneligibleCandidate, ExternalFetchError, StateConflict) as exc:
            logger.warning("Automated {} market creation failed: {}", market_type.value, exc)
            with session_scope(self.session_factory) as session:
                automation = AutomationRepository(session)
                automation.record_log(
                    question_type=market_type.value,
                    success=False,
                    error_message=str(exc),
                    execution_time=now,
                )
                automation.touch_last_run(now)
            return CreationOutcome(success=False, market_type=market_type.value, error=str(exc))

        logger.info("Created automated market {} ({})", outcome.market_id, market_type.value)
        publish_safely(
            self.publisher,
            MARKET_CREATED,
            marketId=outcome.market_id,
            marketType=market_type.value,
            question=plan.question,
            tokenAddress=outcome.token_address,
            tokenAddress2=outcome.token_address2,
        )
        return outcome

    # ------------------------------------------------------------------
    # Planning

    def _plan(
        self,
        session,
        market_type: MarketType,
        candidates: list[TokenCandidate],
        *,
        now: datetime,
        test_mode: bool,
    ) -> MarketPlan:
        markets = MarketRepository(session)
        window = self.window_minutes(market_type, test_mode=test_mode)
        expires_at = now + timedelta(minutes=window)

        if market_type.is_battle:
            first, second = self._find_battle_pair(markets, candidates, now=now)
            if market_type is MarketType.BATTLE_RACE:
                target = targets.battle_race_target(first.market_cap, second.market_cap, self.ladders)
            else:
                target = targets.battle_dump_target(first.market_cap, second.market_cap, self.ladders)
            image = self._battle_image(first, second)
            question = build_question(
                market_type,
                target,
                (first.display_name, second.display_name),
                window_minutes=window,
            )
            return MarketPlan(market_type, (first, second), target, question, expires_at, image)

        def evaluate(candidate: TokenCandidate) -> float:
            self._check_available(markets, candidate, now=now)
            return self._single_target(market_type, candidate)

        attempts = self.settings.creation_max_attempts
        for candidate, target in iter_eligible(candidates, evaluate, max_attempts=attempts):
            question = build_question(
                market_type, target, (candidate.display_name,), window_minutes=window
            )
            return MarketPlan(market_type, (candidate,), target, question, expires_at, candidate.image)

        raise RunFailure(
            f"Could not create {market_type.value} market after trying "
            f"{min(len(candidates), attempts)} tokens"
        )

    def _check_available(self, markets: MarketRepository, candidate: TokenCandidate, *, now: datetime) -> None:
        if not candidate.has_metadata:
            raise IneligibleCandidate("missing mint address or name/symbol")
        if markets.is_token_in_use(candidate.mint, now=now):
            raise IneligibleCandidate("already referenced by an active automated market")

    def _single_target(self, market_type: MarketType, candidate: TokenCandidate) -> float:
        if market_type is MarketType.MARKET_CAP:
            return targets.market_cap_target(candidate.market_cap, self.ladders)
        if market_type is MarketType.VOLUME:
            return targets.volume_target(candidate.volume_24h, self.ladders)
        return targets.holder_target(candidate.holders, self.ladders)

    def _find_battle_pair(
        self,
        markets: MarketRepository,
        candidates: list[TokenCandidate],
        *,
        now: datetime,
    ) -> tuple[TokenCandidate, TokenCandidate]:
        def evaluate(candidate: TokenCandidate) -> TokenCandidate:
            self._check_available(markets, candidate, now=now)
            return candidate

        eligible = [candidate for candidate, _ in iter_eligible(candidates, evaluate)]
        tolerance = self.settings.battle_match_tolerance
        for index, first in enumerate(eligible):
            for second in eligible[index + 1 :]:
                if first.mint == second.mint:
                    continue
                if tokens_match_for_battle(first, second, now=now, tolerance=tolerance):
                    return first, second
        raise RunFailure(f"Could not find matching tokens for battle market among {len(eligible)} candidates")

    def _battle_image(self, first: TokenCandidate, second: TokenCandidate) -> str:
        if not first.image or not second.image:
            raise RunFailure(
                f"Battle market missing images: token1={bool(first.image)}, token2={bool(second.image)}"
            )
        if self.compositor is None:
            raise RunFailure("No image compositor configured for battle markets")
        try:
            return self.compositor.combine(first.image, second.image)
        except Exception as exc:  # noqa: BLE001
            raise RunFailure(f"Failed to combine battle images: {exc}") from exc

    # ------------------------------------------------------------------
    # Persistence

    def _persist(self, session, plan: MarketPlan, *, expected_epoch: int, now: datetime) -> CreationOutcome:
        """Market, tracking, token reservations and rotation advance commit together."""
        markets = MarketRepository(session)
        addresses = plan.token_addresses
        market = markets.create_market(
            question=plan.question,
            category=self.settings.automated_market_category,
            expires_at=plan.expires_at,
            is_private=False,
            payout_type=PayoutType.PROPORTIONAL.value,
            is_automated=True,
            token_address=addresses[0],
            token_address2=addresses[1] if len(addresses) > 1 else None,
            image=plan.image,
            created_at=now,
            yes_pool=Decimal("0"),
            no_pool=Decimal("0"),
        )
        ResolutionRepository(session).create_tracking(
            market_id=market.id,
            market_type=plan.market_type,
            target_value=Decimal(str(plan.target)),
            token_address=addresses[0],
            token_address2=market.token_address2,
        )
        markets.reserve_tokens(market, addresses, now=now)

        automation = AutomationRepository(session)
        automation.advance_rotation(expected_epoch=expected_epoch, market_type=plan.market_type, ran_at=now)
        automation.record_log(
            question_type=plan.market_type.value,
            success=True,
            market_id=market.id,
            token_address=market.token_address,
            token_address2=market.token_address2,
            execution_time=now,
        )
        return CreationOutcome(
            success=True,
            market_type=plan.market_type.value,
            market_id=market.id,
            token_address=market.token_address,
            token_address2=market.token_address2,
        )
