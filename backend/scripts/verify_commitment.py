import argparse
import sys

from loguru import logger

from app.db import init_db, session_scope
from app.repositories import MarketRepository
from app.services.provably_fair import verify


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Recompute and check a settled market's commitment hash")
    parser.add_argument("--market-id", type=int, required=True, help="Market whose commitment is checked")
    parser.add_argument("--hash", dest="hash_value", default=None, help="Published commitment hash")
    parser.add_argument("--outcome", default=None, help="Revealed outcome (yes, no or refunded)")
    parser.add_argument("--secret", default=None, help="Revealed secret")
    parser.add_argument(
        "--from-db",
        action="store_true",
        help="Read any missing hash, outcome or secret from the stored market",
    )
    return parser.parse_args(argv)


def check_commitment(args: argparse.Namespace) -> bool:
    hash_value, outcome, secret = args.hash_value, args.outcome, args.secret
    if args.from_db:
        init_db()
        with session_scope() as session:
            market = MarketRepository(session).get_market(args.market_id)
            if market is None:
                logger.error("Market {} not found", args.market_id)
                return False
            hash_value = hash_value or market.commitment_hash
            outcome = outcome or market.resolved_outcome
            secret = secret or market.commitment_secret

    if not (hash_value and outcome and secret):
        logger.error("Market {} has no published commitment to check", args.market_id)
        return False

    valid = verify(hash_value, outcome, secret, args.market_id)
    if valid:
        logger.info("Commitment for market {} verifies (outcome={})", args.market_id, outcome)
    else:
        logger.error("Commitment for market {} does NOT verify", args.market_id)
    return valid


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    sys.exit(0 if check_commitment(args) else 1)


if __name__ == "__main__":
    main()
