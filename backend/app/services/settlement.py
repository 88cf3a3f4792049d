"""Resolve or refund one market: status transition, commitment, and payouts."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from loguru import logger

from app.db import SessionFactory, session_scope
from app.domain import CommitmentArtifact
from app.models import MarketStatus, Outcome, PayoutType, TrackingStatus, utcnow
from app.repositories import MarketRepository, PayoutRepository, ResolutionRepository

from .events import MARKET_RESOLVED, EventPublisher, LoggingEventPublisher, publish_safely
from .payouts import PayoutDistributor, PayoutReport
from .provably_fair import create_commitment

RESOLVED_PROBABILITY = {Outcome.YES: 100, Outcome.NO: 0}


@dataclass(slots=True)
class SettlementResult:
    market_id: int
    outcome: str
    commitment: CommitmentArtifact
    payouts: PayoutReport
    tracking_status: str | None = None


class SettlementService:
    def __init__(
        self,
        *,
        session_factory: SessionFactory | None = None,
        distributor: PayoutDistributor | None = None,
        publisher: EventPublisher | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.distributor = distributor or PayoutDistributor()
        self.publisher = publisher if publisher is not None else LoggingEventPublisher()

    def resolve(self, market_id: int, outcome: Outcome | str, *, now: datetime | None = None) -> SettlementResult:
        resolved = Outcome(outcome)
        if resolved is Outcome.REFUNDED:
            return self.refund(market_id, now=now)
        return self._settle(market_id, resolved, TrackingStatus.RESOLVED, now or utcnow())

    def refund(self, market_id: int, *, now: datetime | None = None, reason: str | None = None) -> SettlementResult:
        if reason:
            logger.info("Refunding market {}: {}", market_id, reason)
        return self._settle(market_id, Outcome.REFUNDED, TrackingStatus.EXPIRED, now or utcnow())

    def _settle(
        self,
        market_id: int,
        outcome: Outcome,
        tracking_status: TrackingStatus,
        now: datetime,
    ) -> SettlementResult:
        """Raises ``StateConflict`` (nothing written) if the market already left ``active``."""
        refund = outcome is Outcome.REFUNDED
        commitment = create_commitment(market_id, outcome)
        report = PayoutReport(market_id=market_id, outcome=outcome.value)

        with session_scope(self.session_factory) as session:
            markets = MarketRepository(session)
            market = markets.get_market(market_id)
            if market is None:
                raise LookupError(f"market {market_id} not found")
            payout_type = market.payout_type or PayoutType.PROPORTIONAL.value

            markets.transition_status(
                market_id,
                status=MarketStatus.REFUNDED if refund else MarketStatus.RESOLVED,
                outcome=outcome.value,
                commitment_hash=commitment.commitment_hash,
                commitment_secret=commitment.secret,
                resolved_at=now,
                cached_probability=RESOLVED_PROBABILITY.get(outcome),
            )
            finished = ResolutionRepository(session).finish(
                market_id, status=tracking_status, checked_at=now
            )
            markets.release_tokens(market_id)

            bets = markets.list_bets(market_id)
            instructions = self.distributor.plan(bets, outcome, payout_type=payout_type)
            ledger, onchain = self.distributor.split(instructions, refund=refund)
            ledger_results = self.distributor.credit_ledger(session, ledger)
            payouts = PayoutRepository(session)
            payouts.record_results(market_id, ledger_results)
            report.results.extend(ledger_results)
            pending_ids = payouts.record_pending(market_id, onchain)

        # Transfers run after the status change and the pending records are durable.
        onchain_results = self.distributor.transfer_onchain(onchain)
        if onchain_results:
            with session_scope(self.session_factory) as session:
                PayoutRepository(session).complete_pending(pending_ids, onchain_results)
            report.results.extend(onchain_results)

        logger.info(
            "Market {} settled as {}: {} payouts succeeded, {} failed",
            market_id,
            outcome.value,
            report.succeeded,
            report.failed,
        )
        publish_safely(
            self.publisher,
            MARKET_RESOLVED,
            marketId=market_id,
            outcome=outcome.value,
            commitmentHash=commitment.commitment_hash,
        )
        return SettlementResult(
            market_id=market_id,
            outcome=outcome.value,
            commitment=commitment,
            payouts=report,
            tracking_status=tracking_status.value if finished else None,
        )
