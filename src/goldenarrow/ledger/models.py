"""SQLAlchemy models for wallets and the deposit ledger."""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class TransactionType(str, Enum):
    """Kind of ledger movement."""

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    INCOME = "income"
    INVESTMENT = "investment"
    REFUND = "refund"


class WalletType(str, Enum):
    """Which balance a ledger movement applies to."""

    DEPOSIT = "deposit"
    INCOME = "income"


def _new_user_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Platform user. Only existence matters to the wallet core."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_user_id)
    username: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relationships
    wallet: Mapped[Optional["UserWallet"]] = relationship(back_populates="user", lazy="selectin")


class UserWallet(Base):
    """Deposit address assigned to a user (one per user, never rewritten).

    The address is a pure function of (xpub, derivation_index).
    """

    __tablename__ = "user_wallets"
    __table_args__ = (
        UniqueConstraint(
            "key_fingerprint", "derivation_index", name="uq_user_wallets_key_index"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id"), unique=True, nullable=False, index=True
    )
    key_fingerprint: Mapped[str] = mapped_column(String(16), nullable=False)
    derivation_index: Mapped[int] = mapped_column(BigInteger, nullable=False)
    derivation_path: Mapped[str] = mapped_column(String(100), nullable=False)
    deposit_address: Mapped[str] = mapped_column(
        String(42), unique=True, nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="wallet")


class DerivationCounter(Base):
    """Last reserved child index for each issuing xpub.

    Incremented atomically so concurrent allocations never share an index.
    """

    __tablename__ = "derivation_counters"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    key_fingerprint: Mapped[str] = mapped_column(
        String(16), unique=True, nullable=False, index=True
    )
    last_index: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class WalletBalance(Base):
    """Ledger balances for a user. Only changed by process_wallet_transaction."""

    __tablename__ = "wallet_balances"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id"), unique=True, nullable=False, index=True
    )
    deposit_balance: Mapped[Decimal] = mapped_column(Numeric(36, 18), default=Decimal("0"))
    income_balance: Mapped[Decimal] = mapped_column(Numeric(36, 18), default=Decimal("0"))
    total_deposited: Mapped[Decimal] = mapped_column(Numeric(36, 18), default=Decimal("0"))
    total_withdrawn: Mapped[Decimal] = mapped_column(Numeric(36, 18), default=Decimal("0"))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class WalletTransaction(Base):
    """Ledger journal entry.

    (transaction_hash, log_index) is unique so each on-chain transfer is
    credited once, including several transfers inside one transaction.
    """

    __tablename__ = "wallet_transactions"
    __table_args__ = (
        UniqueConstraint(
            "transaction_hash", "log_index", name="uq_wallet_transactions_hash_log"
        ),
        Index("ix_wallet_transactions_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    wallet_type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    transaction_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    block_number: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class WalletSyncState(Base):
    """Last block scanned for a user's deposit address."""

    __tablename__ = "wallet_sync_state"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id"), unique=True, nullable=False, index=True
    )
    last_synced_block: Mapped[int] = mapped_column(BigInteger, default=0)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
