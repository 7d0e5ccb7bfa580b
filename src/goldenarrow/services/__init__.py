"""Wallet provisioning and deposit reconciliation services."""

from goldenarrow.services.provisioning import (
    BalanceSnapshot,
    DerivationRecord,
    WalletProvisioningService,
)
from goldenarrow.services.reconciliation import (
    DepositReconciler,
    ObservedTransfer,
    SyncResult,
)

__all__ = [
    "BalanceSnapshot",
    "DerivationRecord",
    "WalletProvisioningService",
    "DepositReconciler",
    "ObservedTransfer",
    "SyncResult",
]
