"""Resolution monitor: drives pending tracking rows to ``resolved`` or ``expired``."""

from __future__ import annotations

import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, Sequence

from loguru import logger

from app.core.config import Settings, get_settings
from app.db import SessionFactory, session_scope
from app.domain import Candle, CandleSeries, TokenMetrics
from app.models import MarketStatus, MarketType, Outcome, TrackingStatus, utcnow
from app.repositories import PendingResolution, ResolutionRepository

from .errors import AmbiguousResolution, ExternalFetchError, StateConflict
from .settlement import SettlementService

_GRANULARITY = re.compile(r"^(\d+)([smhdw])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}


class MetricsSource(Protocol):
    def fetch_metrics(self, token_address: str) -> TokenMetrics:
        ...

    def fetch_candles(
        self,
        token_address: str,
        *,
        granularity: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> CandleSeries:
        ...


def granularity_seconds(granularity: str) -> int:
    match = _GRANULARITY.match(granularity.strip().lower())
    if not match:
        raise ValueError(f"unsupported candle granularity: {granularity!r}")
    return int(match.group(1)) * _UNIT_SECONDS[match.group(2)]


def first_hit(
    candles: Sequence[Candle],
    target: float,
    *,
    race: bool,
    start: int | None = None,
    until: int | None = None,
) -> int | None:
    """Time of the earliest candle that reaches ``target`` (high for races, low for dumps)."""
    for candle in sorted(candles, key=lambda item: item.time):
        if start is not None and candle.time < start:
            continue
        if until is not None and candle.time > until:
            break
        if (race and candle.high >= target) or (not race and candle.low <= target):
            return candle.time
    return None


def compare_hits(first: int | None, second: int | None) -> Outcome | None:
    """Winner from two hit times; ``None`` when neither hit.

    Raises ``AmbiguousResolution`` when both hit at the same time.
    """
    if first is None and second is None:
        return None
    if second is None:
        return Outcome.YES
    if first is None:
        return Outcome.NO
    if first < second:
        return Outcome.YES
    if second < first:
        return Outcome.NO
    raise AmbiguousResolution(f"both tokens hit the target at {first}")


@dataclass(slots=True)
class MarketEvaluation:
    market_id: int
    action: str
    outcome: str | None = None
    detail: str | None = None


@dataclass(slots=True)
class ResolutionSummary:
    checked_markets: int = 0
    resolved: int = 0
    refunded: int = 0
    waiting: int = 0
    conflicts: int = 0
    evaluations: list[MarketEvaluation] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)

    def add(self, evaluation: MarketEvaluation) -> None:
        self.checked_markets += 1
        self.evaluations.append(evaluation)
        if evaluation.action == "resolved":
            self.resolved += 1
        elif evaluation.action == "refunded":
            self.refunded += 1
        elif evaluation.action == "conflict":
            self.conflicts += 1
        elif evaluation.action == "error":
            self.failures.append({"market_id": evaluation.market_id, "reason": evaluation.detail})
        else:
            self.waiting += 1

    @property
    def success(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked_markets": self.checked_markets,
            "resolved": self.resolved,
            "refunded": self.refunded,
            "waiting": self.waiting,
            "conflicts": self.conflicts,
            "failures": self.failures,
        }


class ResolutionMonitor:
    """Evaluate every pending market once per tick, isolating per-market errors."""

    def __init__(
        self,
        feed: MetricsSource,
        *,
        settlement: SettlementService | None = None,
        session_factory: SessionFactory | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.feed = feed
        self.session_factory = session_factory
        self.settlement = settlement or SettlementService(session_factory=session_factory)
        self.settings = settings or get_settings()

    def tick(self, now: datetime | None = None) -> ResolutionSummary:
        now = now or utcnow()
        summary = ResolutionSummary()

        with session_scope(self.session_factory) as session:
            pending_ids = ResolutionRepository(session).list_pending_ids()
        if not pending_ids:
            logger.info("No markets awaiting resolution")
            return summary

        logger.info("Checking {} markets awaiting resolution", len(pending_ids))
        workers = max(1, min(self.settings.resolution_max_workers, len(pending_ids)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="resolution") as executor:
            for evaluation in executor.map(lambda market_id: self._evaluate_safely(market_id, now), pending_ids):
                summary.add(evaluation)

        logger.info(
            "Resolution tick finished: checked={}, resolved={}, refunded={}, waiting={}, errors={}",
            summary.checked_markets,
            summary.resolved,
            summary.refunded,
            summary.waiting,
            len(summary.failures),
        )
        return summary

    def _evaluate_safely(self, market_id: int, now: datetime) -> MarketEvaluation:
        try:
            return self.evaluate(market_id, now=now)
        except StateConflict as exc:
            logger.info("Market {} changed state during evaluation: {}", market_id, exc)
            return MarketEvaluation(market_id, "conflict", detail=str(exc))
        except ExternalFetchError as exc:
            logger.warning("Market {}: feed unavailable, retrying next tick: {}", market_id, exc)
            return MarketEvaluation(market_id, "error", detail=str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Error checking market {}", market_id)
            return MarketEvaluation(market_id, "error", detail=str(exc))

    def evaluate(self, market_id: int, *, now: datetime) -> MarketEvaluation:
        with session_scope(self.session_factory) as session:
            repo = ResolutionRepository(session)
            tracking = repo.get_pending(market_id)
            if tracking is None:
                return MarketEvaluation(market_id, "skipped", detail="no pending tracking")
            pending = PendingResolution.from_tracking(tracking)
            if pending.market_status != MarketStatus.ACTIVE.value:
                status = (
                    TrackingStatus.RESOLVED
                    if pending.market_status == MarketStatus.RESOLVED.value
                    else TrackingStatus.EXPIRED
                )
                repo.finish(market_id, status=status, checked_at=now)
                return MarketEvaluation(market_id, "skipped", detail=f"market already {pending.market_status}")

        if pending.market_type.is_battle:
            return self._evaluate_battle(pending, now)
        return self._evaluate_single(pending, now)

    # ------------------------------------------------------------------
    # Single-token markets

    def _evaluate_single(self, pending: PendingResolution, now: datetime) -> MarketEvaluation:
        if pending.expires_at is None:
            self._mark_checked(pending.market_id, now)
            return MarketEvaluation(pending.market_id, "waiting", detail="no expiry")

        seconds_past = (now - pending.expires_at).total_seconds()
        if seconds_past > self.settings.resolution_grace_seconds:
            return self._refund(pending, now, "missed the resolution window")
        if seconds_past < -self.settings.resolution_live_tolerance_seconds:
            self._mark_checked(pending.market_id, now)
            return MarketEvaluation(pending.market_id, "waiting")

        metrics = self.feed.fetch_metrics(pending.token_address)
        current = self._metric_value(pending.market_type, metrics)
        target = float(pending.target_value)
        outcome = Outcome.YES if current >= target else Outcome.NO
        logger.info(
            "Market {}: current={}, target={}, outcome={}", pending.market_id, current, target, outcome.value
        )
        self.settlement.resolve(pending.market_id, outcome, now=now)
        return MarketEvaluation(pending.market_id, "resolved", outcome=outcome.value)

    @staticmethod
    def _metric_value(market_type: MarketType, metrics: TokenMetrics) -> float:
        if market_type is MarketType.MARKET_CAP:
            return metrics.market_cap
        if market_type is MarketType.VOLUME:
            return metrics.volume_24h
        if market_type is MarketType.HOLDERS:
            return float(metrics.holders)
        raise ValueError(f"{market_type.value} is not a single-token market type")

    # ------------------------------------------------------------------
    # Battle markets

    def _evaluate_battle(self, pending: PendingResolution, now: datetime) -> MarketEvaluation:
        if not pending.token_address2:
            return self._refund(pending, now, "battle market missing second token address")

        expired = pending.expires_at is not None and now >= pending.expires_at
        end = pending.expires_at if expired else now

        try:
            winner = self.battle_winner(pending, end=end)
        except AmbiguousResolution as exc:
            return self._refund(pending, now, f"tie could not be broken ({exc})")

        if winner is not None:
            logger.info("Market {}: battle won by {} side", pending.market_id, winner.value)
            self.settlement.resolve(pending.market_id, winner, now=now)
            return MarketEvaluation(pending.market_id, "resolved", outcome=winner.value)
        if expired:
            return self._refund(pending, now, "expired without a winner")

        logger.info("Market {}: neither token hit the target yet", pending.market_id)
        self._mark_checked(pending.market_id, now)
        return MarketEvaluation(pending.market_id, "waiting")

    def battle_winner(self, pending: PendingResolution, *, end: datetime) -> Outcome | None:
        race = pending.market_type is MarketType.BATTLE_RACE
        target = float(pending.target_value)
        start_ts = int(pending.created_at.timestamp())
        end_ts = int(end.timestamp())
        coarse = self.settings.battle_candle_granularity

        hits = self._coarse_hits(pending, coarse, start_ts, end_ts, race=race, target=target)
        try:
            return compare_hits(*hits)
        except AmbiguousResolution:
            tied_at = hits[0]
            logger.info(
                "Market {}: both tokens hit at {} on {} candles; re-checking at {}",
                pending.market_id,
                tied_at,
                coarse,
                self.settings.battle_tiebreak_granularity,
            )

        window_end = min(tied_at + granularity_seconds(coarse), end_ts)
        fine = self._hits(
            pending,
            self.settings.battle_tiebreak_granularity,
            tied_at,
            window_end,
            race=race,
            target=target,
        )
        if fine[0] is None or fine[1] is None:
            raise AmbiguousResolution("finer candles show no distinguishable order")
        return compare_hits(*fine)

    def _coarse_hits(
        self,
        pending: PendingResolution,
        granularity: str,
        start_ts: int,
        end_ts: int,
        *,
        race: bool,
        target: float,
    ) -> tuple[int | None, int | None]:
        """First hits on coarse candles, counting the bucket that was open when the market was created.

        A hit in that bucket is pinned down with fine candles; only the part at or after
        creation counts.
        """
        step = granularity_seconds(granularity)
        tz = pending.created_at.tzinfo
        times: list[int | None] = []
        for token in (pending.token_address, pending.token_address2):
            series = self.feed.fetch_candles(
                token,
                granularity=granularity,
                start=datetime.fromtimestamp(start_ts - step, tz=tz),
                end=datetime.fromtimestamp(end_ts, tz=tz),
                limit=self.settings.battle_candle_limit,
            )
            hit = first_hit(series.candles, target, race=race, start=start_ts - step + 1, until=end_ts)
            if hit is not None and hit < start_ts:
                bucket_end = min(hit + step - 1, end_ts)
                fine = self.feed.fetch_candles(
                    token,
                    granularity=self.settings.battle_tiebreak_granularity,
                    start=datetime.fromtimestamp(start_ts, tz=tz),
                    end=datetime.fromtimestamp(bucket_end, tz=tz),
                    limit=self.settings.battle_candle_limit,
                )
                straddling = hit
                hit = first_hit(fine.candles, target, race=race, start=start_ts, until=bucket_end)
                if hit is None:
                    hit = first_hit(series.candles, target, race=race, start=straddling + step, until=end_ts)
                logger.debug(
                    "Market {}: {} bucket at {} straddles creation; counted hit {}",
                    pending.market_id,
                    token,
                    straddling,
                    hit,
                )
            times.append(hit)
        return times[0], times[1]

    def _hits(
        self,
        pending: PendingResolution,
        granularity: str,
        start_ts: int,
        end_ts: int,
        *,
        race: bool,
        target: float,
    ) -> tuple[int | None, int | None]:
        start = datetime.fromtimestamp(start_ts, tz=pending.created_at.tzinfo)
        end = datetime.fromtimestamp(end_ts, tz=pending.created_at.tzinfo)
        times: list[int | None] = []
        for token in (pending.token_address, pending.token_address2):
            series = self.feed.fetch_candles(
                token,
                granularity=granularity,
                start=start,
                end=end,
                limit=self.settings.battle_candle_limit,
            )
            times.append(first_hit(series.candles, target, race=race, start=start_ts, until=end_ts))
        return times[0], times[1]

    # ------------------------------------------------------------------

    def _refund(self, pending: PendingResolution, now: datetime, reason: str) -> MarketEvaluation:
        self.settlement.refund(pending.market_id, now=now, reason=reason)
        return MarketEvaluation(pending.market_id, "refunded", outcome=Outcome.REFUNDED.value, detail=reason)

    def _mark_checked(self, market_id: int, now: datetime) -> None:
        with session_scope(self.session_factory) as session:
            ResolutionRepository(session).mark_checked(market_id, checked_at=now)
