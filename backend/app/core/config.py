from functools import lru_cache
from typing import Any

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_VALUE_MILESTONES = [
    250_000,
    500_000,
    750_000,
    1_000_000,
    2_000_000,
    3_000_000,
    5_000_000,
    10_000_000,
    20_000_000,
    50_000_000,
    100_000_000,
]
DEFAULT_HOLDER_MILESTONES = [500, 1_000, 2_000, 3_000, 5_000, 7_500, 10_000, 15_000, 20_000, 30_000, 50_000]

MILESTONE_FIELDS = ("market_cap_milestones", "volume_milestones", "holder_milestones")


def _normalize_postgres_scheme(value: str) -> str:
    if value.startswith("postgres://"):
        return "postgresql+psycopg://" + value[len("postgres://") :]
    if value.startswith("postgresql://"):
        return "postgresql+psycopg://" + value[len("postgresql://") :]
    return value


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Echo SQL statements")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    database_url: AnyUrl | str = Field(
        default="sqlite:///./data/market_engine.db",
        description="SQLAlchemy compatible database URL",
    )

    feed_base_url: AnyUrl = Field(
        default="https://data.solanatracker.io",
        description="Base URL for the token/price data feed",
    )
    feed_api_key: str | None = Field(
        default=None,
        description="API key sent as x-api-key to the token feed",
    )
    feed_graduating_path: str = Field(
        default="/tokens/multi/graduating",
        description="Relative path listing candidate (graduating) tokens",
    )
    feed_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout applied to every token feed request",
        gt=0,
    )

    chain_rpc_url: AnyUrl = Field(
        default="https://api.mainnet-beta.solana.com",
        description="JSON-RPC endpoint used for balance queries and transaction submission",
    )
    chain_timeout_seconds: float = Field(
        default=15.0,
        description="Timeout applied to every chain RPC call",
        gt=0,
    )
    treasury_public_key: str | None = Field(
        default=None,
        description="Treasury signer address; on-chain payouts are disabled when unset",
    )
    treasury_transaction_builder: str | None = Field(
        default=None,
        description="Import path ('module:callable') of the transaction builder that signs treasury transfers",
    )
    image_compositor: str | None = Field(
        default=None,
        description="Import path ('module:Attribute') of the battle image compositor factory",
    )
    payout_base_fee_lamports: int = Field(
        default=5_000,
        description="Base fee charged per transaction signature",
        ge=0,
    )
    payout_fee_buffer_lamports: int = Field(
        default=100_000,
        description="Safety buffer kept in the treasury on top of rent and fees",
        ge=0,
    )
    payout_rent_fallback_lamports: int = Field(
        default=890_880,
        description="Rent-exempt minimum assumed when the RPC cannot report one",
        ge=0,
    )
    payout_min_transfer_lamports: int = Field(
        default=5_000,
        description="Smallest transfer worth submitting on-chain",
        ge=1,
    )
    payout_max_pending_transfers: int = Field(
        default=64,
        description="Upper bound of transfers queued behind the treasury signer",
        ge=1,
    )
    payout_max_workers: int = Field(
        default=4,
        description="Threads used to dispatch transfers for one settlement",
        ge=1,
    )

    market_cap_milestones: list[float] | str = Field(
        default_factory=lambda: list(DEFAULT_VALUE_MILESTONES),
        description="Ascending market-cap milestone ladder (USD)",
    )
    volume_milestones: list[float] | str = Field(
        default_factory=lambda: list(DEFAULT_VALUE_MILESTONES),
        description="Ascending 24h volume milestone ladder (USD)",
    )
    holder_milestones: list[float] | str = Field(
        default_factory=lambda: list(DEFAULT_HOLDER_MILESTONES),
        description="Ascending holder-count milestone ladder",
    )
    holder_min_count: int = Field(
        default=100,
        description="Tokens with fewer holders are not eligible for holder markets",
        ge=0,
    )
    holder_bump_factor: float = Field(
        default=1.1,
        description="Multiplier applied when doubling the holder count does not move the target",
        gt=1,
    )
    battle_dump_rounding: float = Field(
        default=100_000,
        description="Dump battle targets are rounded to the nearest multiple of this value",
        gt=0,
    )
    battle_dump_floor: float = Field(
        default=100_000,
        description="Lowest dump battle target",
        ge=0,
    )
    battle_match_tolerance: float = Field(
        default=0.30,
        description="Maximum relative market-cap and age difference for a battle pair",
        ge=0,
    )

    market_cap_window_minutes: int = Field(default=120, ge=1)
    volume_window_minutes: int = Field(default=1_440, ge=1)
    holders_window_minutes: int = Field(default=1_440, ge=1)
    battle_window_minutes: int = Field(default=2_880, ge=1)
    test_mode_window_minutes: int = Field(
        default=5,
        description="Expiration window applied to every market type in test mode",
        ge=1,
    )

    creation_max_attempts: int = Field(
        default=20,
        description="Candidates examined before a single-token creation run gives up",
        ge=1,
    )
    automated_market_category: str = Field(
        default="memecoins",
        description="Category assigned to automatically created markets",
    )

    resolution_live_tolerance_seconds: int = Field(
        default=60,
        description="Single-token markets are evaluated within this distance of their expiry",
        ge=0,
    )
    resolution_grace_seconds: int = Field(
        default=300,
        description="Late single-token markets are still evaluated up to this long after expiry",
        ge=0,
    )
    battle_candle_granularity: str = Field(
        default="5m",
        description="Candle granularity used for the regular battle check",
    )
    battle_tiebreak_granularity: str = Field(
        default="1s",
        description="Finest candle granularity used to break same-candle ties",
    )
    battle_candle_limit: int = Field(
        default=1_000,
        description="Maximum candles requested per token and check",
        ge=1,
    )
    resolution_max_workers: int = Field(
        default=4,
        description="Markets evaluated concurrently during one monitor tick",
        ge=1,
    )

    creation_interval_seconds: int = Field(
        default=6 * 60 * 60,
        description="Seconds between automated market creation runs",
        ge=1,
    )
    resolution_interval_seconds: int = Field(
        default=30 * 60,
        description="Seconds between resolution monitor ticks",
        ge=1,
    )

    @field_validator(*MILESTONE_FIELDS, mode="before")
    @classmethod
    def _parse_milestones(cls, value: Any) -> list[float]:
        if isinstance(value, str):
            tokens = [token.strip() for token in value.split(",") if token.strip()]
            if not tokens:
                raise ValueError("milestone ladders must contain at least one value")
            value = tokens
        if not isinstance(value, (list, tuple)) or not value:
            raise ValueError(
                "milestone ladders must be provided as a comma-separated string or list of numbers"
            )
        ladder: list[float] = []
        for item in value:
            try:
                milestone = float(item)
            except (TypeError, ValueError) as exc:
                raise ValueError("milestone entries must be numeric") from exc
            if milestone <= 0:
                raise ValueError("milestone entries must be positive")
            ladder.append(milestone)
        if ladder != sorted(ladder):
            raise ValueError("milestone ladders must be sorted ascending")
        return ladder

    @field_validator("database_url", mode="before")
    @classmethod
    def _normalize_database_url(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _normalize_postgres_scheme(value)
        return value

    @property
    def resolved_database_url(self) -> str:
        return _normalize_postgres_scheme(str(self.database_url))


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
