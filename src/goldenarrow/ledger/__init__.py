"""Ledger module for deposit wallets, balances and the transaction journal."""

from goldenarrow.ledger.database import get_db, init_db
from goldenarrow.ledger.models import (
    DerivationCounter,
    TransactionType,
    User,
    UserWallet,
    WalletBalance,
    WalletSyncState,
    WalletTransaction,
    WalletType,
)
from goldenarrow.ledger.repository import LedgerRepository

__all__ = [
    # Models
    "User",
    "UserWallet",
    "DerivationCounter",
    "WalletBalance",
    "WalletTransaction",
    "WalletSyncState",
    # Enums
    "TransactionType",
    "WalletType",
    # Database
    "get_db",
    "init_db",
    "LedgerRepository",
]
