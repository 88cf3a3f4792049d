from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


AMOUNT = Numeric(28, 9)


class MarketStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    REFUNDED = "refunded"


class Position(str, Enum):
    YES = "yes"
    NO = "no"


class Outcome(str, Enum):
    YES = "yes"
    NO = "no"
    REFUNDED = "refunded"


class PayoutType(str, Enum):
    PROPORTIONAL = "proportional"
    WINNER_TAKES_ALL = "winner-takes-all"


class MarketType(str, Enum):
    MARKET_CAP = "market_cap"
    VOLUME = "volume"
    HOLDERS = "holders"
    BATTLE_RACE = "battle_race"
    BATTLE_DUMP = "battle_dump"

    @property
    def is_battle(self) -> bool:
        return self in (MarketType.BATTLE_RACE, MarketType.BATTLE_DUMP)


class TrackingStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    EXPIRED = "expired"


class PayoutChannel(str, Enum):
    LEDGER = "ledger"
    ONCHAIN = "onchain"


class PayoutStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    wallet_address: Mapped[str | None] = mapped_column(String, nullable=True)
    balance: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    bets: Mapped[list["Bet"]] = relationship("Bet", back_populates="user")


class Market(Base):
    __tablename__ = "markets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default=MarketStatus.ACTIVE.value, index=True)
    yes_pool: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal("0"))
    no_pool: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal("0"))
    probability: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_private: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payout_type: Mapped[str] = mapped_column(String, nullable=False, default=PayoutType.PROPORTIONAL.value)
    is_automated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    token_address: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    token_address2: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    image: Mapped[str | None] = mapped_column(String, nullable=True)
    resolved_outcome: Mapped[str | None] = mapped_column(String, nullable=True)
    commitment_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    commitment_secret: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    bets: Mapped[list["Bet"]] = relationship(
        "Bet", back_populates="market", cascade="all, delete-orphan"
    )
    resolution: Mapped["ResolutionTracking | None"] = relationship(
        "ResolutionTracking", back_populates="market", uselist=False, cascade="all, delete-orphan"
    )

    @property
    def total_pool(self) -> Decimal:
        return (self.yes_pool or Decimal("0")) + (self.no_pool or Decimal("0"))


class Bet(Base):
    __tablename__ = "bets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    market_id: Mapped[int] = mapped_column(Integer, ForeignKey("markets.id"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    position: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    probability: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    market: Mapped[Market] = relationship("Market", back_populates="bets")
    user: Mapped[User] = relationship("User", back_populates="bets")


class ResolutionTracking(Base):
    __tablename__ = "market_resolution_tracking"

    market_id: Mapped[int] = mapped_column(Integer, ForeignKey("markets.id"), primary_key=True)
    market_type: Mapped[str] = mapped_column(String, nullable=False)
    target_value: Mapped[Decimal] = mapped_column(Numeric(28, 4), nullable=False)
    token_address: Mapped[str] = mapped_column(String, nullable=False)
    token_address2: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default=TrackingStatus.PENDING.value, index=True)
    last_checked: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    market: Mapped[Market] = relationship("Market", back_populates="resolution")


class AutomatedMarketLog(Base):
    __tablename__ = "automated_market_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    execution_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    market_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("markets.id"), nullable=True)
    question_type: Mapped[str] = mapped_column(String, nullable=False)
    token_address: Mapped[str | None] = mapped_column(String, nullable=True)
    token_address2: Mapped[str | None] = mapped_column(String, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)


class AutomationConfig(Base):
    __tablename__ = "automation_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_market_type: Mapped[str | None] = mapped_column(String, nullable=True)
    rotation_epoch: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class TokenReservation(Base):
    __tablename__ = "token_reservations"

    token_address: Mapped[str] = mapped_column(String, primary_key=True)
    market_id: Mapped[int] = mapped_column(Integer, ForeignKey("markets.id"), nullable=False, index=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class PayoutRecord(Base):
    __tablename__ = "payout_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    market_id: Mapped[int] = mapped_column(Integer, ForeignKey("markets.id"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    recipient: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    channel: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=PayoutStatus.SUCCEEDED.value, index=True
    )
    tx_signature: Mapped[str | None] = mapped_column(String, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
