"""Repository for wallet and ledger operations."""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from goldenarrow.errors import PersistenceConflict
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

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class LedgerRepository:
    """Repository for all wallet-related database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # User operations
    async def user_exists(self, user_id: str) -> bool:
        stmt = select(func.count()).select_from(User).where(User.id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one() > 0

    async def create_user(
        self,
        user_id: Optional[str] = None,
        username: Optional[str] = None,
        email: Optional[str] = None,
    ) -> User:
        """Create a user row (tests and ops tooling; signup lives elsewhere)."""
        user = User(username=username, email=email)
        if user_id:
            user.id = user_id
        self.session.add(user)
        await self.session.flush()
        return user

    # Deposit wallet operations
    async def get_wallet_by_user_id(self, user_id: str) -> Optional[UserWallet]:
        """Get the deposit wallet record for a user."""
        stmt = select(UserWallet).where(UserWallet.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_wallet_by_address(self, address: str) -> Optional[UserWallet]:
        """Find the wallet record owning a deposit address (case-insensitive)."""
        stmt = select(UserWallet).where(
            func.lower(UserWallet.deposit_address) == address.lower()
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_all_wallets(self, limit: Optional[int] = None) -> list[UserWallet]:
        """Get all provisioned wallets, oldest index first."""
        stmt = select(UserWallet).order_by(UserWallet.derivation_index)
        if limit:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def insert_wallet_if_absent(
        self,
        user_id: str,
        key_fingerprint: str,
        derivation_index: int,
        derivation_path: str,
        deposit_address: str,
    ) -> tuple[UserWallet, bool]:
        """Insert a wallet record unless the user already has one.

        Returns:
            (record, created). When the user already owns a wallet the
            stored record is returned untouched.

        Raises:
            PersistenceConflict: A concurrent writer claimed the user,
                the index or the address first.
        """
        existing = await self.get_wallet_by_user_id(user_id)
        if existing is not None:
            return existing, False

        wallet = UserWallet(
            user_id=user_id,
            key_fingerprint=key_fingerprint,
            derivation_index=derivation_index,
            derivation_path=derivation_path,
            deposit_address=deposit_address,
        )
        self.session.add(wallet)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise PersistenceConflict(
                f"Wallet for user {user_id} at index {derivation_index} conflicts "
                f"with an existing record"
            ) from e
        return wallet, True

    # Derivation index operations
    async def get_derivation_counter(self, key_fingerprint: str) -> Optional[DerivationCounter]:
        """Get the index counter for an xpub."""
        stmt = select(DerivationCounter).where(
            DerivationCounter.key_fingerprint == key_fingerprint
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_max_derivation_index(self, key_fingerprint: str) -> Optional[int]:
        """Highest index already stored for an xpub, or None."""
        stmt = select(func.max(UserWallet.derivation_index)).where(
            UserWallet.key_fingerprint == key_fingerprint
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def reserve_next_index(self, key_fingerprint: str, start_index: int = 0) -> int:
        """Reserve the next child index for an xpub.

        The increment is a single UPDATE so two transactions can never read
        the same value. The first reservation seeds the counter above any
        index already stored, so a lost counter row cannot reissue indexes.

        Raises:
            PersistenceConflict: Another writer seeded the counter first.
        """
        stmt = (
            update(DerivationCounter)
            .where(DerivationCounter.key_fingerprint == key_fingerprint)
            .values(last_index=DerivationCounter.last_index + 1)
        )
        result = await self.session.execute(stmt)

        if result.rowcount == 0:
            highest = await self.get_max_derivation_index(key_fingerprint)
            first = start_index if highest is None else max(start_index, highest + 1)
            self.session.add(DerivationCounter(key_fingerprint=key_fingerprint, last_index=first))
            try:
                await self.session.flush()
            except IntegrityError as e:
                raise PersistenceConflict(
                    f"Derivation counter for {key_fingerprint} was created concurrently"
                ) from e
            logger.info(f"Initialized derivation counter for {key_fingerprint} at {first}")
            return first

        stmt = select(DerivationCounter.last_index).where(
            DerivationCounter.key_fingerprint == key_fingerprint
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    # Balance operations
    async def get_balance(self, user_id: str) -> Optional[WalletBalance]:
        stmt = select(WalletBalance).where(WalletBalance.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create_balance(self, user_id: str) -> WalletBalance:
        """Get or create the zeroed balance row for a user."""
        balance = await self.get_balance(user_id)
        if balance is None:
            balance = WalletBalance(
                user_id=user_id,
                deposit_balance=ZERO,
                income_balance=ZERO,
                total_deposited=ZERO,
                total_withdrawn=ZERO,
            )
            self.session.add(balance)
            await self.session.flush()
        return balance

    async def process_wallet_transaction(
        self,
        user_id: str,
        transaction_type: TransactionType,
        amount: Decimal,
        wallet_type: WalletType = WalletType.DEPOSIT,
        transaction_hash: Optional[str] = None,
        description: Optional[str] = None,
        block_number: Optional[int] = None,
        log_index: int = 0,
    ) -> Optional[WalletTransaction]:
        """Apply one ledger movement and journal it.

        This is the only code path that changes WalletBalance.

        Returns:
            The journal entry, or None if (transaction_hash, log_index) was
            already processed.

        Raises:
            ValueError: On a non-positive amount or insufficient balance.
        """
        transaction_type = TransactionType(transaction_type)
        wallet_type = WalletType(wallet_type)
        amount = Decimal(amount)
        if amount <= ZERO:
            raise ValueError(f"Amount must be positive, got {amount}")

        if transaction_hash and await self.transaction_exists(transaction_hash, log_index):
            logger.info(f"Transfer {transaction_hash}:{log_index} already processed, skipping")
            return None

        balance = await self.get_or_create_balance(user_id)
        field = "deposit_balance" if wallet_type == WalletType.DEPOSIT else "income_balance"
        current = getattr(balance, field) or ZERO

        if transaction_type in (TransactionType.WITHDRAWAL, TransactionType.INVESTMENT):
            if current < amount:
                raise ValueError(
                    f"Insufficient balance: have {current} in {wallet_type.value}, need {amount}"
                )
            setattr(balance, field, current - amount)
            if transaction_type == TransactionType.WITHDRAWAL:
                balance.total_withdrawn = (balance.total_withdrawn or ZERO) + amount
        else:
            setattr(balance, field, current + amount)
            if transaction_type == TransactionType.DEPOSIT:
                balance.total_deposited = (balance.total_deposited or ZERO) + amount

        entry = WalletTransaction(
            user_id=user_id,
            transaction_type=transaction_type.value,
            wallet_type=wallet_type.value,
            amount=amount,
            transaction_hash=transaction_hash,
            log_index=log_index,
            block_number=block_number,
            description=description,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def transaction_exists(self, transaction_hash: str, log_index: int = 0) -> bool:
        stmt = select(func.count()).select_from(WalletTransaction).where(
            WalletTransaction.transaction_hash == transaction_hash,
            WalletTransaction.log_index == log_index,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one() > 0

    async def get_processed_transfers(
        self, transfer_keys: Iterable[tuple[str, int]]
    ) -> set[tuple[str, int]]:
        """Return the subset of (transaction_hash, log_index) keys already journaled."""
        keys = set(transfer_keys)
        if not keys:
            return set()
        stmt = select(WalletTransaction.transaction_hash, WalletTransaction.log_index).where(
            WalletTransaction.transaction_hash.in_({tx_hash for tx_hash, _ in keys})
        )
        result = await self.session.execute(stmt)
        return {(row.transaction_hash, row.log_index) for row in result} & keys

    async def get_user_transactions(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> list[WalletTransaction]:
        """Get ledger history for a user, newest first."""
        stmt = (
            select(WalletTransaction)
            .where(WalletTransaction.user_id == user_id)
            .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # Sync state operations
    async def get_sync_state(self, user_id: str) -> Optional[WalletSyncState]:
        stmt = select(WalletSyncState).where(WalletSyncState.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create_sync_state(self, user_id: str) -> WalletSyncState:
        state = await self.get_sync_state(user_id)
        if state is None:
            state = WalletSyncState(user_id=user_id, last_synced_block=0)
            self.session.add(state)
            await self.session.flush()
        return state

    async def update_sync_state(self, user_id: str, last_synced_block: int) -> WalletSyncState:
        """Advance the scanned block marker. Never moves it backwards."""
        state = await self.get_or_create_sync_state(user_id)
        state.last_synced_block = max(state.last_synced_block or 0, last_synced_block)
        state.last_synced_at = datetime.now(timezone.utc)
        await self.session.flush()
        return state
