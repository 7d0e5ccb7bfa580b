"""Deposit wallet endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from goldenarrow.api.dependencies import (
    get_provisioning_service,
    get_reconciler,
    require_admin_token,
    require_gateway_token,
)
from goldenarrow.hdwallet.base import HARDENED_OFFSET
from goldenarrow.services import (
    BalanceSnapshot,
    DepositReconciler,
    DerivationRecord,
    WalletProvisioningService,
)

router = APIRouter(prefix="/api/wallet")


# Request/Response models
class WalletRequest(BaseModel):
    """Request identifying a user."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)


class WalletInfo(BaseModel):
    """A user's deposit wallet."""
    deposit_address: str
    derivation_index: int
    derivation_path: str
    balance: str


class WalletResponse(BaseModel):
    success: bool = True
    wallet: WalletInfo


class SyncResponse(BaseModel):
    success: bool = True
    message: str
    synced_count: int
    total_amount: str
    last_synced_block: int


def _record_dict(record: DerivationRecord) -> dict:
    return {
        "user_id": record.user_id,
        "deposit_address": record.address,
        "derivation_index": record.derivation_index,
        "derivation_path": record.derivation_path,
        "key_fingerprint": record.key_fingerprint,
    }


def _balance_dict(balance: BalanceSnapshot) -> dict:
    return {
        "deposit_balance": str(balance.deposit_balance),
        "income_balance": str(balance.income_balance),
        "total_deposited": str(balance.total_deposited),
        "total_withdrawn": str(balance.total_withdrawn),
    }


@router.post("/get-or-create", response_model=WalletResponse)
async def get_or_create_wallet(
    request: WalletRequest,
    service: WalletProvisioningService = Depends(get_provisioning_service),
    _: bool = Depends(require_gateway_token),
) -> WalletResponse:
    """Get the user's deposit wallet, creating it on first call."""
    record = await service.get_or_create_wallet(request.user_id)
    balance = await service.get_balance(request.user_id)

    return WalletResponse(
        wallet=WalletInfo(
            deposit_address=record.address,
            derivation_index=record.derivation_index,
            derivation_path=record.derivation_path,
            balance=str(balance.deposit_balance),
        )
    )


@router.get("/balance")
async def get_balance(
    user_id: str = Query(..., min_length=1),
    service: WalletProvisioningService = Depends(get_provisioning_service),
    _: bool = Depends(require_gateway_token),
) -> dict:
    """Get the user's ledger balances.

    user_id is taken on trust; the gateway in front of this service
    authenticates the caller.
    """
    balance = await service.get_balance(user_id)
    return {"success": True, "data": _balance_dict(balance)}


@router.post("/sync-deposit", response_model=SyncResponse)
async def sync_deposit(
    request: WalletRequest,
    reconciler: DepositReconciler = Depends(get_reconciler),
    _: bool = Depends(require_gateway_token),
) -> SyncResponse:
    """Credit confirmed USDT deposits that arrived since the last sync."""
    result = await reconciler.sync_deposits(request.user_id)

    if result.synced_count:
        message = f"Synced {result.synced_count} new deposit(s)"
    else:
        message = "No new deposits"

    return SyncResponse(
        message=message,
        synced_count=result.synced_count,
        total_amount=str(result.total_amount),
        last_synced_block=result.last_synced_block,
    )


@router.get("/owner/{address}")
async def get_address_owner(
    address: str,
    service: WalletProvisioningService = Depends(get_provisioning_service),
    _: bool = Depends(require_admin_token),
) -> dict:
    """Resolve a deposit address to its owner (admin)."""
    record = await service.find_owner(address)
    return {"success": True, "data": _record_dict(record)}


@router.get("/reconcile/{address}")
async def reconcile_address(
    address: str,
    reconciler: DepositReconciler = Depends(get_reconciler),
    _: bool = Depends(require_admin_token),
) -> dict:
    """List confirmed deposits to an address not yet credited (admin).

    Read-only: nothing is written to the ledger.
    """
    transfers = await reconciler.reconcile_deposits(address)
    return {
        "success": True,
        "data": [
            {
                "user_id": t.user_id,
                "tx_hash": t.tx_hash,
                "log_index": t.log_index,
                "amount": str(t.amount),
                "block_number": t.block_number,
                "from_address": t.from_address,
            }
            for t in transfers
        ],
    }


@router.get("/derive")
async def derive_address_at_index(
    index: int = Query(..., ge=0, lt=HARDENED_OFFSET),
    service: WalletProvisioningService = Depends(get_provisioning_service),
    _: bool = Depends(require_admin_token),
) -> dict:
    """Derive the address at a specific index (admin/debug).

    Does NOT store the address - just returns the derivation result.
    """
    info = service.derive_preview(index)
    return {
        "success": True,
        "data": {
            "address": info.address,
            "derivation_path": info.derivation_path,
            "index": info.index,
            "asset": info.asset,
        },
    }


@router.get("/info")
async def get_wallet_info(
    service: WalletProvisioningService = Depends(get_provisioning_service),
    _: bool = Depends(require_admin_token),
) -> dict:
    """HD wallet configuration and allocation state (admin)."""
    master_key = service.master_key
    last_index: Optional[int] = None
    if master_key is not None:
        last_index = await service.last_allocated_index()

    return {
        "success": True,
        "data": {
            "configured": master_key is not None,
            "key_fingerprint": master_key.fingerprint if master_key else None,
            "depth": master_key.depth if master_key else None,
            "testnet": master_key.testnet if master_key else None,
            "last_index": last_index,
        },
    }
