"""Repository abstractions for database interactions."""

from .automation_repository import AutomationRepository
from .market_repository import MarketRepository
from .payout_repository import PayoutRepository
from .resolution_repository import ResolutionRepository
from .types import PendingResolution

__all__ = [
    "AutomationRepository",
    "MarketRepository",
    "PayoutRepository",
    "ResolutionRepository",
    "PendingResolution",
]
