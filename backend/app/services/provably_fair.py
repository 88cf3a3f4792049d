"""Commit/reveal artifact published with every settlement.

``commitment_hash = sha256(f"{outcome}:{secret}:{market_id}")``. The secret is
generated when the market settles and stored next to the hash, so any auditor
can recompute the hash once both are published.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

from loguru import logger

from app.domain import CommitmentArtifact
from app.models import Outcome

SECRET_BYTES = 32


def generate_secret() -> str:
    return secrets.token_hex(SECRET_BYTES)


def commitment_hash(outcome: Outcome | str, secret: str, market_id: int) -> str:
    resolved = Outcome(outcome).value
    message = f"{resolved}:{secret}:{market_id}"
    return hashlib.sha256(message.encode("utf-8")).hexdigest()


def verify(hash_value: str, outcome: Outcome | str, secret: str, market_id: int) -> bool:
    try:
        expected = commitment_hash(outcome, secret, market_id)
    except ValueError:
        return False
    # compare_digest rejects non-ASCII str operands
    return hmac.compare_digest(expected.encode("utf-8"), str(hash_value).encode("utf-8"))


def create_commitment(market_id: int, outcome: Outcome | str) -> CommitmentArtifact:
    """Generate a fresh secret and hash, self-verifying before returning.

    A failed self-check is logged but never blocks the settlement.
    """
    resolved = Outcome(outcome)
    secret = generate_secret()
    digest = commitment_hash(resolved, secret, market_id)
    verified = verify(digest, resolved, secret, market_id)
    if not verified:
        logger.error(
            "Generated commitment for market {} failed self-verification", market_id
        )
    return CommitmentArtifact(
        market_id=market_id,
        outcome=resolved.value,
        secret=secret,
        commitment_hash=digest,
        verified=verified,
    )
