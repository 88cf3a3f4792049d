"""Payout planning and delivery.

A settlement produces one ``PayoutInstruction`` per recipient. Instructions are
delivered either as ledger credits (inside the settlement transaction) or as
on-chain transfers from the treasury signer (after the settlement commits).
Every instruction yields exactly one ``PayoutResult``; a failed delivery never
blocks or rolls back the others.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal
from typing import Any, Protocol

from loguru import logger
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.domain import PayoutInstruction, PayoutResult
from app.models import Bet, Outcome, PayoutChannel, PayoutType
from app.repositories import PayoutRepository

from .amm import ZERO, StakeView, settle_stakes
from .errors import ExternalFetchError, PayoutFailure, PayoutFailureReason

LAMPORTS_PER_SOL = Decimal(1_000_000_000)


class TreasurySigner(Protocol):
    public_key: str

    def balance(self) -> int:
        ...

    def required_reserve(self) -> int:
        ...

    def transfer(self, recipient: str, lamports: int) -> str:
        ...


def to_lamports(amount: Decimal) -> int:
    return int((amount * LAMPORTS_PER_SOL).to_integral_value(rounding=ROUND_DOWN))


class SerializedTransferQueue:
    """One in-flight signed transaction per signer, with a bounded backlog."""

    def __init__(self, max_pending: int) -> None:
        self._slots = threading.BoundedSemaphore(max_pending)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, signer: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(signer)
            if lock is None:
                lock = self._locks[signer] = threading.Lock()
            return lock

    def submit(self, signer: TreasurySigner, recipient: str, lamports: int, *, min_transfer: int) -> str:
        if not self._slots.acquire(blocking=False):
            raise PayoutFailure(PayoutFailureReason.QUEUE_FULL, "transfer queue is full")
        try:
            with self._lock_for(signer.public_key):
                reserve = signer.required_reserve()
                balance = signer.balance()
                available = max(balance - reserve, 0)
                if lamports < min_transfer:
                    raise PayoutFailure(
                        PayoutFailureReason.BELOW_MINIMUM_TRANSFER,
                        f"{lamports} lamports is below the minimum transfer of {min_transfer}",
                    )
                if lamports > available:
                    raise PayoutFailure(
                        PayoutFailureReason.INSUFFICIENT_RESERVE,
                        f"treasury has {balance} lamports; {lamports} payout + {reserve} reserve required "
                        f"(maximum payout available: {available})",
                    )
                return signer.transfer(recipient, lamports)
        finally:
            self._slots.release()


@dataclass(slots=True)
class PayoutReport:
    market_id: int
    outcome: str
    results: list[PayoutResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.succeeded)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if not result.succeeded)

    @property
    def failure_reasons(self) -> list[str]:
        return [result.reason or result.error or "unknown" for result in self.results if not result.succeeded]

    def to_dict(self) -> dict[str, Any]:
        return {
            "market_id": self.market_id,
            "outcome": self.outcome,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failure_reasons": self.failure_reasons,
            "results": [result.to_dict() for result in self.results],
        }


class PayoutDistributor:
    """Turn settled stakes into per-recipient payouts and deliver them."""

    def __init__(
        self,
        *,
        signer: TreasurySigner | None = None,
        transfer_queue: SerializedTransferQueue | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.signer = signer
        self.transfer_queue = transfer_queue or SerializedTransferQueue(
            self.settings.payout_max_pending_transfers
        )
        self.min_transfer_lamports = self.settings.payout_min_transfer_lamports
        self.max_workers = self.settings.payout_max_workers

    @property
    def onchain_enabled(self) -> bool:
        return self.signer is not None

    # ------------------------------------------------------------------
    # Planning

    def plan(
        self,
        bets: Sequence[Bet],
        outcome: Outcome | str,
        *,
        payout_type: PayoutType | str = PayoutType.PROPORTIONAL,
    ) -> list[PayoutInstruction]:
        """Aggregate per-bet settlement amounts into one instruction per user."""
        stakes = [
            StakeView(bet_id=bet.id, user_id=bet.user_id, position=bet.position, amount=bet.amount)
            for bet in bets
        ]
        amounts = settle_stakes(stakes, outcome, payout_type=payout_type)

        by_user: dict[int, PayoutInstruction] = {}
        for bet in bets:
            amount = amounts.get(bet.id, ZERO)
            if amount <= 0:
                continue
            wallet = bet.user.wallet_address if bet.user is not None else None
            instruction = by_user.get(bet.user_id)
            if instruction is None:
                by_user[bet.user_id] = PayoutInstruction(
                    user_id=bet.user_id,
                    recipient=wallet,
                    amount=amount,
                    bet_ids=(bet.id,),
                )
            else:
                instruction.amount += amount
                instruction.bet_ids = instruction.bet_ids + (bet.id,)

        if stakes and not by_user and Outcome(outcome) is not Outcome.REFUNDED:
            logger.warning("No stake on the winning side ({}); nothing to pay out", Outcome(outcome).value)
        return list(by_user.values())

    def split(
        self, instructions: Iterable[PayoutInstruction], *, refund: bool
    ) -> tuple[list[PayoutInstruction], list[PayoutInstruction]]:
        """Partition into (ledger, onchain). Refunds always go back to the ledger."""
        ledger: list[PayoutInstruction] = []
        onchain: list[PayoutInstruction] = []
        for instruction in instructions:
            if not refund and self.onchain_enabled and instruction.recipient:
                onchain.append(instruction)
            else:
                ledger.append(instruction)
        return ledger, onchain

    # ------------------------------------------------------------------
    # Delivery

    def credit_ledger(self, session: Session, instructions: Iterable[PayoutInstruction]) -> list[PayoutResult]:
        repo = PayoutRepository(session)
        results: list[PayoutResult] = []
        for instruction in instructions:
            recipient = instruction.recipient or f"user:{instruction.user_id}"
            try:
                repo.credit_balance(instruction.user_id, instruction.amount)
            except LookupError as exc:
                logger.error("Ledger credit for user {} failed: {}", instruction.user_id, exc)
                results.append(
                    PayoutResult(
                        user_id=instruction.user_id,
                        recipient=recipient,
                        amount=instruction.amount,
                        channel=PayoutChannel.LEDGER.value,
                        error=str(exc),
                        reason=PayoutFailureReason.UNKNOWN_USER.value,
                    )
                )
                continue
            results.append(
                PayoutResult(
                    user_id=instruction.user_id,
                    recipient=recipient,
                    amount=instruction.amount,
                    channel=PayoutChannel.LEDGER.value,
                )
            )
        return results

    def transfer_onchain(self, instructions: Sequence[PayoutInstruction]) -> list[PayoutResult]:
        if not instructions:
            return []
        workers = max(1, min(self.max_workers, len(instructions)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="payout") as executor:
            return list(executor.map(self._deliver, instructions))

    def _deliver(self, instruction: PayoutInstruction) -> PayoutResult:
        result = PayoutResult(
            user_id=instruction.user_id,
            recipient=instruction.recipient or "",
            amount=instruction.amount,
            channel=PayoutChannel.ONCHAIN.value,
        )
        try:
            if self.signer is None:
                raise PayoutFailure(PayoutFailureReason.SIGNER_UNAVAILABLE, "no treasury signer configured")
            if not instruction.recipient:
                raise PayoutFailure(PayoutFailureReason.MISSING_WALLET, "recipient has no wallet address")
            result.tx_signature = self.transfer_queue.submit(
                self.signer,
                instruction.recipient,
                to_lamports(instruction.amount),
                min_transfer=self.min_transfer_lamports,
            )
            logger.info(
                "Sent {} to {} ({})", instruction.amount, instruction.recipient, result.tx_signature
            )
        except PayoutFailure as exc:
            logger.warning("Payout to {} failed ({}): {}", instruction.recipient, exc.reason.value, exc)
            result.error = str(exc)
            result.reason = exc.reason.value
        except ExternalFetchError as exc:
            logger.warning("Payout to {} rejected by RPC: {}", instruction.recipient, exc)
            result.error = str(exc)
            result.reason = PayoutFailureReason.RPC_REJECTED.value
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected payout failure for {}", instruction.recipient)
            result.error = str(exc)
            result.reason = PayoutFailureReason.RPC_REJECTED.value
        return result
