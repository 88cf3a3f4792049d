"""Error kinds raised by the market lifecycle engine."""

from __future__ import annotations

from enum import Enum


class MarketEngineError(Exception):
    """Base class for every engine error."""


class ExternalFetchError(MarketEngineError):
    """Raised when the token feed or chain RPC is unreachable, times out, or rejects a call."""

    def __init__(self, message: str, *, source: str | None = None) -> None:
        super().__init__(message)
        self.source = source


class IneligibleCandidate(MarketEngineError):
    """Raised when a token cannot back the requested market type."""


class StateConflict(MarketEngineError):
    """Raised when a market left the state a transition expected."""


class AmbiguousResolution(MarketEngineError):
    """Raised when a battle tie survives the finest-granularity re-check."""


class RunFailure(MarketEngineError):
    """Raised when a creation run finds no eligible path."""


class PayoutFailureReason(str, Enum):
    INSUFFICIENT_RESERVE = "insufficient_reserve"
    BELOW_MINIMUM_TRANSFER = "below_minimum_transfer"
    RPC_REJECTED = "rpc_rejected"
    MISSING_WALLET = "missing_wallet"
    SIGNER_UNAVAILABLE = "signer_unavailable"
    UNKNOWN_USER = "unknown_user"
    QUEUE_FULL = "queue_full"


class PayoutFailure(MarketEngineError):
    """Raised when one transfer cannot be delivered."""

    def __init__(self, reason: PayoutFailureReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason
