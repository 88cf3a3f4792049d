"""Background scheduler running the creation job and the resolution monitor."""

from __future__ import annotations

import argparse
import threading
from collections.abc import Callable

from loguru import logger

from app.core.config import Settings, get_settings
from app.db import init_db

from .market_creation_run import run_creation
from .resolution_run import run_resolution


class PeriodicScheduler:
    """Run named jobs on fixed intervals, one daemon thread per job.

    A job that raises is logged and the loop continues with the next interval.
    """

    def __init__(self) -> None:
        self._stop_event = threading.Event()
        self._threads: dict[str, threading.Thread] = {}

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads.values())

    def schedule_periodic(
        self,
        name: str,
        job: Callable[[], object],
        interval_seconds: float,
        *,
        run_immediately: bool = False,
    ) -> None:
        if name in self._threads:
            raise ValueError(f"job {name!r} is already scheduled")

        def loop() -> None:
            if not run_immediately and self._stop_event.wait(interval_seconds):
                return
            while not self._stop_event.is_set():
                try:
                    job()
                except Exception:  # noqa: BLE001
                    logger.exception("Error in scheduled job '{}'", name)
                if self._stop_event.wait(interval_seconds):
                    return

        thread = threading.Thread(target=loop, name=f"scheduler-{name}", daemon=True)
        self._threads[name] = thread
        thread.start()
        logger.info("Scheduled job '{}' to run every {}s", name, interval_seconds)

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        for thread in self._threads.values():
            thread.join(timeout)
        self._threads.clear()
        logger.info("Background scheduler stopped")

    def wait(self) -> None:
        self._stop_event.wait()


def build_scheduler(settings: Settings, *, test_mode: bool = False) -> PeriodicScheduler:
    creation_args = argparse.Namespace(market_type=None, test_mode=test_mode, summary_path=None)
    resolution_args = argparse.Namespace(summary_path=None)

    scheduler = PeriodicScheduler()
    scheduler.schedule_periodic(
        "market-creation",
        lambda: run_creation(creation_args, settings, init_db_fn=lambda: None),
        settings.creation_interval_seconds,
        run_immediately=True,
    )
    scheduler.schedule_periodic(
        "resolution-monitor",
        lambda: run_resolution(resolution_args, settings, init_db_fn=lambda: None),
        settings.resolution_interval_seconds,
        run_immediately=True,
    )
    return scheduler


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run market creation and resolution on their intervals")
    parser.add_argument(
        "--test-mode",
        action="store_true",
        help="Create markets with the short test-mode expiration window",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    settings = get_settings()
    init_db()
    scheduler = build_scheduler(settings, test_mode=args.test_mode)
    try:
        scheduler.wait()
    except KeyboardInterrupt:
        logger.info("Interrupted; stopping scheduler")
    finally:
        scheduler.stop(timeout=30)


if __name__ == "__main__":
    main()
