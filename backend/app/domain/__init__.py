"""Domain models shared by the market lifecycle engine."""

from .models import (
    Candle,
    CandleSeries,
    CommitmentArtifact,
    PayoutInstruction,
    PayoutResult,
    TokenCandidate,
    TokenMetrics,
)

__all__ = [
    "Candle",
    "CandleSeries",
    "CommitmentArtifact",
    "PayoutInstruction",
    "PayoutResult",
    "TokenCandidate",
    "TokenMetrics",
]
