"""Standalone job that creates the next automated market in the rotation."""

from __future__ import annotations

import argparse
import json
from datetime import datetime
from pathlib import Path
from typing import Callable

from loguru import logger

from app.core.config import Settings, get_settings
from app.db import SessionFactory, init_db
from app.models import MarketType
from app.services.rotation import CreationOutcome, RotationScheduler

from .context import EngineContext


def run_creation(
    args: argparse.Namespace,
    settings: Settings,
    *,
    now: datetime | None = None,
    context_factory: Callable[[Settings], EngineContext] = EngineContext.from_settings,
    session_factory: SessionFactory | None = None,
    init_db_fn: Callable[[], None] = init_db,
) -> CreationOutcome:
    if session_factory is None:
        init_db_fn()

    context = context_factory(settings)
    try:
        scheduler = RotationScheduler(
            context.feed,
            session_factory=session_factory,
            compositor=context.build_compositor(),
            publisher=context.publisher,
            settings=settings,
        )
        outcome = scheduler.run(
            forced_type=args.market_type,
            test_mode=args.test_mode,
            now=now,
        )
    finally:
        context.close()

    if args.summary_path:
        _write_summary(outcome, args.summary_path)
    return outcome


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create the next automated prediction market")
    parser.add_argument(
        "--market-type",
        choices=[market_type.value for market_type in MarketType],
        default=None,
        help="Force a market type instead of following the rotation",
    )
    parser.add_argument(
        "--test-mode",
        action="store_true",
        help="Use the short test-mode expiration window for every market type",
    )
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Optional path where a JSON summary report will be written",
    )
    return parser.parse_args(argv)


def _write_summary(outcome: CreationOutcome, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(outcome.to_dict(), default=str, indent=2))
    logger.info("Creation summary written to {}", path)


def main(argv: list[str] | None = None) -> CreationOutcome:
    args = _parse_args(argv)
    return run_creation(args, get_settings())


if __name__ == "__main__":
    main()
