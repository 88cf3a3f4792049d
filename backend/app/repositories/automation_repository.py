"""Automation switch, rotation state, and execution log persistence."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.models import AutomatedMarketLog, AutomationConfig, MarketType
from app.services.errors import StateConflict

CONFIG_ID = 1


class AutomationRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Config

    def get_config(self) -> AutomationConfig:
        config = self._session.get(AutomationConfig, CONFIG_ID)
        if config is None:
            config = AutomationConfig(id=CONFIG_ID, enabled=False, rotation_epoch=0)
            self._session.add(config)
            self._session.flush()
        return config

    def set_enabled(self, enabled: bool) -> AutomationConfig:
        config = self.get_config()
        config.enabled = enabled
        self._session.flush()
        return config

    def advance_rotation(
        self,
        *,
        expected_epoch: int,
        market_type: MarketType,
        ran_at: datetime,
    ) -> int:
        """Record ``market_type`` as the last created type, guarded by the epoch read earlier.

        A concurrent run that already advanced the epoch makes this raise
        ``StateConflict``, which rolls back the surrounding market creation.
        """
        result = self._session.execute(
            update(AutomationConfig)
            .where(
                AutomationConfig.id == CONFIG_ID,
                AutomationConfig.rotation_epoch == expected_epoch,
            )
            .values(
                last_market_type=market_type.value,
                last_run_at=ran_at,
                rotation_epoch=expected_epoch + 1,
            )
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            raise StateConflict(
                f"rotation epoch {expected_epoch} was already consumed by another run"
            )
        return expected_epoch + 1

    def touch_last_run(self, ran_at: datetime) -> None:
        config = self.get_config()
        config.last_run_at = ran_at

    # ------------------------------------------------------------------
    # Logs

    def record_log(
        self,
        *,
        question_type: str,
        success: bool,
        market_id: int | None = None,
        token_address: str | None = None,
        token_address2: str | None = None,
        error_message: str | None = None,
        execution_time: datetime | None = None,
    ) -> AutomatedMarketLog:
        entry = AutomatedMarketLog(
            question_type=question_type,
            success=success,
            market_id=market_id,
            token_address=token_address,
            token_address2=token_address2,
            error_message=error_message,
        )
        if execution_time is not None:
            entry.execution_time = execution_time
        self._session.add(entry)
        self._session.flush()
        return entry

    def recent_logs(self, limit: int = 10) -> list[AutomatedMarketLog]:
        query = (
            select(AutomatedMarketLog)
            .order_by(AutomatedMarketLog.execution_time.desc(), AutomatedMarketLog.id.desc())
            .limit(limit)
        )
        return list(self._session.execute(query).scalars().all())
