import argparse

from loguru import logger

from app import crud
from app.db import init_db, session_scope


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inspect or toggle automated market creation")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("enable", help="Turn automated market creation on")
    subparsers.add_parser("disable", help="Turn automated market creation off")
    subparsers.add_parser("status", help="Show the automation switch and rotation state")
    logs = subparsers.add_parser("logs", help="List recent creation runs")
    logs.add_argument("--limit", type=int, default=10, help="Number of entries to show")
    failed = subparsers.add_parser("failed-payouts", help="List payouts that need manual reconciliation")
    failed.add_argument("--market-id", type=int, default=None, help="Restrict to one market")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    init_db()

    with session_scope() as session:
        if args.command in ("enable", "disable"):
            config = crud.set_automation_enabled(session, args.command == "enable")
            logger.info("Automated market creation {}", "enabled" if config.enabled else "disabled")
        elif args.command == "status":
            config = crud.get_automation_config(session)
            logger.info(
                "enabled={} last_run_at={} last_market_type={} rotation_epoch={}",
                config.enabled,
                config.last_run_at,
                config.last_market_type,
                config.rotation_epoch,
            )
        elif args.command == "logs":
            for entry in crud.recent_automation_logs(session, args.limit):
                logger.info(
                    "{} type={} success={} market={} tokens={}/{} error={}",
                    entry.execution_time,
                    entry.question_type,
                    entry.success,
                    entry.market_id,
                    entry.token_address,
                    entry.token_address2,
                    entry.error_message,
                )
        elif args.command == "failed-payouts":
            for record in crud.list_failed_payouts(session, args.market_id):
                logger.info(
                    "market={} user={} recipient={} amount={} status={} error={}",
                    record.market_id,
                    record.user_id,
                    record.recipient,
                    record.amount,
                    record.status,
                    record.error,
                )


if __name__ == "__main__":
    main()
