"""Deposit reconciliation between the chain and the ledger.

reconcile_deposits() is read-only: it resolves an address to its owner,
scans confirmed USDT transfers since the last synced block and returns
those not yet in the ledger journal. sync_deposits() credits them through
the ledger and advances the sync marker.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from goldenarrow.errors import AddressNotFound, PersistenceFailure, WalletNotFound
from goldenarrow.ledger.models import TransactionType, WalletType
from goldenarrow.scanner.base import TransferInfo, TransferScanner
from goldenarrow.services.provisioning import DerivationRecord, repository_scope
from goldenarrow.utils.locks import KeyedLock, LockTimeoutError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ObservedTransfer:
    """A confirmed incoming transfer not yet credited."""

    user_id: str
    address: str
    tx_hash: str
    amount: Decimal
    raw_value: int
    block_number: int
    from_address: Optional[str] = None
    log_index: int = 0


@dataclass(frozen=True)
class ScanWindow:
    """Outcome of scanning one address."""

    record: DerivationRecord
    from_block: int
    to_block: int
    transfers: list[ObservedTransfer]


@dataclass(frozen=True)
class SyncResult:
    """Outcome of crediting a user's new deposits."""

    user_id: str
    address: str
    credited: list[ObservedTransfer]
    last_synced_block: int

    @property
    def synced_count(self) -> int:
        return len(self.credited)

    @property
    def total_amount(self) -> Decimal:
        return sum((t.amount for t in self.credited), Decimal("0"))


class DepositReconciler:
    """Matches on-chain USDT transfers to users' deposit addresses."""

    def __init__(
        self,
        scanner: TransferScanner,
        token_contract: str,
        token_decimals: int = 18,
        min_confirmations: int = 1,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        token_symbol: str = "USDT",
    ):
        """Initialize the reconciler.

        Args:
            scanner: Chain transfer source
            token_contract: Token contract whose transfers count as deposits
            token_decimals: Decimals of that token
            min_confirmations: Blocks required before a transfer counts
            session_factory: Session factory (defaults to the global one)
            token_symbol: Symbol used in ledger descriptions
        """
        if min_confirmations < 1:
            raise ValueError("min_confirmations must be at least 1")
        self.scanner = scanner
        self.token_contract = token_contract
        self.token_decimals = token_decimals
        self.min_confirmations = min_confirmations
        self.token_symbol = token_symbol
        self._session_factory = session_factory

    async def reconcile_deposits(self, address: str) -> list[ObservedTransfer]:
        """Return newly observed confirmed transfers to a deposit address.

        Raises:
            AddressNotFound: The address belongs to no user.
            ScannerError: The chain could not be queried.
        """
        window = await self._scan(address)
        return window.transfers

    async def sync_deposits(self, user_id: str) -> SyncResult:
        """Credit a user's new confirmed deposits and advance the sync marker.

        Raises:
            WalletNotFound: The user has no deposit wallet yet.
            ScannerError: The chain could not be queried.
        """
        async with repository_scope(self._session_factory) as repo:
            wallet = await repo.get_wallet_by_user_id(user_id)
            if wallet is None:
                raise WalletNotFound()
            address = wallet.deposit_address

        try:
            async with KeyedLock(f"sync:{user_id}", operation="deposit sync"):
                return await self._credit(user_id, address)
        except LockTimeoutError as e:
            raise PersistenceFailure(str(e)) from e

    async def _credit(self, user_id: str, address: str) -> SyncResult:
        window = await self._scan(address)

        credited: list[ObservedTransfer] = []
        async with repository_scope(self._session_factory) as repo:
            for transfer in window.transfers:
                entry = await repo.process_wallet_transaction(
                    user_id=user_id,
                    transaction_type=TransactionType.DEPOSIT,
                    amount=transfer.amount,
                    wallet_type=WalletType.DEPOSIT,
                    transaction_hash=transfer.tx_hash,
                    description=f"{self.token_symbol} deposit of {transfer.amount}",
                    block_number=transfer.block_number,
                    log_index=transfer.log_index,
                )
                if entry is not None:
                    credited.append(transfer)

            state = await repo.update_sync_state(user_id, window.to_block)
            last_synced_block = state.last_synced_block

        if credited:
            logger.info(
                f"Credited {len(credited)} deposit(s) to {user_id} "
                f"up to block {last_synced_block}"
            )
        return SyncResult(
            user_id=user_id,
            address=address,
            credited=credited,
            last_synced_block=last_synced_block,
        )

    async def _scan(self, address: str) -> ScanWindow:
        async with repository_scope(self._session_factory) as repo:
            wallet = await repo.get_wallet_by_address(address)
            if wallet is None:
                raise AddressNotFound(f"Unknown deposit address: {address}")
            record = DerivationRecord.from_model(wallet)
            state = await repo.get_sync_state(record.user_id)
            last_synced = state.last_synced_block if state else 0

        current_block = await self.scanner.get_current_block_height()
        to_block = current_block - (self.min_confirmations - 1)
        from_block = last_synced + 1

        if to_block < from_block:
            logger.debug(f"No confirmed blocks to scan for {record.address}")
            return ScanWindow(record, from_block, max(to_block, last_synced), [])

        raw_transfers = await self.scanner.get_incoming_transfers(
            record.address, self.token_contract, from_block, to_block
        )

        # One entry per (tx hash, log index); a transaction may carry several transfers
        candidates: dict[tuple[str, int], TransferInfo] = {}
        for transfer in raw_transfers:
            if not self._is_deposit(transfer, record.address, from_block, to_block):
                continue
            candidates.setdefault((transfer.tx_hash, transfer.log_index or 0), transfer)

        async with repository_scope(self._session_factory) as repo:
            processed = await repo.get_processed_transfers(candidates.keys())

        transfers = [
            ObservedTransfer(
                user_id=record.user_id,
                address=record.address,
                tx_hash=t.tx_hash,
                amount=t.amount(self.token_decimals),
                raw_value=t.raw_value,
                block_number=t.block_number,
                from_address=t.from_address,
                log_index=key[1],
            )
            for key, t in candidates.items()
            if key not in processed
        ]
        logger.debug(
            f"Scanned {record.address} blocks {from_block}-{to_block}: "
            f"{len(raw_transfers)} transfer(s), {len(transfers)} new"
        )
        return ScanWindow(record, from_block, to_block, transfers)

    def _is_deposit(
        self, transfer: TransferInfo, address: str, from_block: int, to_block: int
    ) -> bool:
        """Only confirmed, non-zero token transfers to this exact address count."""
        return (
            transfer.to_address.lower() == address.lower()
            and transfer.contract_address.lower() == self.token_contract.lower()
            and transfer.raw_value > 0
            and from_block <= transfer.block_number <= to_block
        )
