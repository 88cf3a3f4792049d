"""Standalone job that runs one resolution monitor tick."""

from __future__ import annotations

import argparse
import json
from datetime import datetime
from pathlib import Path
from typing import Callable

from loguru import logger

from app.core.config import Settings, get_settings
from app.db import SessionFactory, init_db
from app.services.resolution import ResolutionMonitor, ResolutionSummary
from app.services.settlement import SettlementService

from .context import EngineContext


def run_resolution(
    args: argparse.Namespace,
    settings: Settings,
    *,
    now: datetime | None = None,
    context_factory: Callable[[Settings], EngineContext] = EngineContext.from_settings,
    session_factory: SessionFactory | None = None,
    init_db_fn: Callable[[], None] = init_db,
) -> ResolutionSummary:
    if session_factory is None:
        init_db_fn()

    context = context_factory(settings)
    try:
        settlement = SettlementService(
            session_factory=session_factory,
            distributor=context.build_distributor(),
            publisher=context.publisher,
        )
        monitor = ResolutionMonitor(
            context.feed,
            settlement=settlement,
            session_factory=session_factory,
            settings=settings,
        )
        summary = monitor.tick(now)
    finally:
        context.close()

    if args.summary_path:
        _write_summary(summary, args.summary_path)
    return summary


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Check pending automated markets and settle the ones that are ready",
    )
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Optional path where a JSON summary report will be written",
    )
    return parser.parse_args(argv)


def _write_summary(summary: ResolutionSummary, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(summary.to_dict(), default=str, indent=2))
    logger.info("Resolution summary written to {}", path)


def main(argv: list[str] | None = None) -> ResolutionSummary:
    args = _parse_args(argv)
    return run_resolution(args, get_settings())


if __name__ == "__main__":
    main()
