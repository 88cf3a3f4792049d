"""Payout result and ledger balance persistence."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from app.domain import PayoutInstruction, PayoutResult
from app.models import PayoutChannel, PayoutRecord, PayoutStatus, User


def _status_for(result: PayoutResult) -> str:
    return PayoutStatus.SUCCEEDED.value if result.succeeded else PayoutStatus.FAILED.value


class PayoutRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def credit_balance(self, user_id: int, amount: Decimal) -> None:
        """Additive credit evaluated by the database, so concurrent credits never overwrite each other."""
        result = self._session.execute(
            update(User)
            .where(User.id == user_id)
            .values(balance=User.balance + amount)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            raise LookupError(f"user {user_id} not found")

    def record_results(self, market_id: int, results: Iterable[PayoutResult]) -> list[PayoutRecord]:
        records: list[PayoutRecord] = []
        for result in results:
            record = PayoutRecord(
                market_id=market_id,
                user_id=result.user_id,
                recipient=result.recipient,
                amount=result.amount,
                channel=result.channel,
                status=_status_for(result),
                tx_signature=result.tx_signature,
                error=result.error,
            )
            self._session.add(record)
            records.append(record)
        self._session.flush()
        return records

    def record_pending(self, market_id: int, instructions: Iterable[PayoutInstruction]) -> list[int]:
        """Insert one ``pending`` on-chain record per instruction; returns ids in instruction order."""
        records = [
            PayoutRecord(
                market_id=market_id,
                user_id=instruction.user_id,
                recipient=instruction.recipient or "",
                amount=instruction.amount,
                channel=PayoutChannel.ONCHAIN.value,
                status=PayoutStatus.PENDING.value,
            )
            for instruction in instructions
        ]
        self._session.add_all(records)
        self._session.flush()
        return [record.id for record in records]

    def complete_pending(self, record_ids: Sequence[int], results: Sequence[PayoutResult]) -> None:
        if len(record_ids) != len(results):
            raise ValueError("every pending payout record needs exactly one result")
        for record_id, result in zip(record_ids, results):
            self._session.execute(
                update(PayoutRecord)
                .where(
                    PayoutRecord.id == record_id,
                    PayoutRecord.status == PayoutStatus.PENDING.value,
                )
                .values(
                    status=_status_for(result),
                    tx_signature=result.tx_signature,
                    error=result.error,
                )
                .execution_options(synchronize_session="fetch")
            )

    def list_for_market(self, market_id: int) -> list[PayoutRecord]:
        query = select(PayoutRecord).where(PayoutRecord.market_id == market_id).order_by(PayoutRecord.id)
        return list(self._session.execute(query).scalars().all())

    def list_failed(self, market_id: int | None = None) -> list[PayoutRecord]:
        """Records needing reconciliation: failed, or still pending after an interrupted settlement."""
        query = select(PayoutRecord).where(
            or_(
                PayoutRecord.status == PayoutStatus.FAILED.value,
                PayoutRecord.status == PayoutStatus.PENDING.value,
            )
        )
        if market_id is not None:
            query = query.where(PayoutRecord.market_id == market_id)
        return list(self._session.execute(query.order_by(PayoutRecord.id)).scalars().all())
