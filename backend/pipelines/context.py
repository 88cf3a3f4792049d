"""Wiring of production collaborators shared by the scheduled jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from importlib import import_module
from typing import Any

from loguru import logger

from app.core.config import Settings
from app.services.events import EventPublisher, LoggingEventPublisher
from app.services.payouts import PayoutDistributor
from app.services.rotation import ImageCompositor
from feeds import SolanaRpcClient, TokenFeedClient, TreasuryWallet


def import_symbol(path: str) -> Any:
    module_path, _, attr_name = path.partition(":")
    if not module_path or not attr_name:
        raise ValueError(f"Import path must be in 'module:Attribute' format (got {path!r})")
    module = import_module(module_path)
    try:
        return getattr(module, attr_name)
    except AttributeError as exc:  # noqa: B904
        raise AttributeError(f"{attr_name!r} not found in module {module_path!r}") from exc


@dataclass(slots=True)
class EngineContext:
    """Collaborators for one job invocation; ``close()`` releases HTTP clients."""

    settings: Settings
    feed: TokenFeedClient
    rpc: SolanaRpcClient | None = None
    publisher: EventPublisher = field(default_factory=LoggingEventPublisher)

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineContext":
        rpc = SolanaRpcClient(settings=settings) if settings.treasury_public_key else None
        return cls(settings=settings, feed=TokenFeedClient(settings=settings), rpc=rpc)

    def build_distributor(self) -> PayoutDistributor:
        signer = None
        if self.rpc is not None and self.settings.treasury_public_key:
            if self.settings.treasury_transaction_builder:
                builder = import_symbol(self.settings.treasury_transaction_builder)
                signer = TreasuryWallet(
                    self.rpc,
                    self.settings.treasury_public_key,
                    builder,
                    settings=self.settings,
                )
            else:
                logger.warning("Treasury key configured without a transaction builder; payouts stay on the ledger")
        return PayoutDistributor(signer=signer, settings=self.settings)

    def build_compositor(self) -> ImageCompositor | None:
        if not self.settings.image_compositor:
            return None
        factory = import_symbol(self.settings.image_compositor)
        return factory()

    def close(self) -> None:
        self.feed.close()
        if self.rpc is not None:
            self.rpc.close()
