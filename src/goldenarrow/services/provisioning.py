"""Deposit wallet provisioning.

Each user receives exactly one deposit address over the platform's
lifetime. The address is derived from the platform xpub at a child index
reserved for that user, and the (user, index, address) triple is written
once and never changed.

Allocation is serialized per xpub inside the process by a named lock and
across processes by unique constraints on the user, the (xpub, index)
pair and the address. A constraint violation is retried once: the retry
either finds the winner's record for the same user or reserves a fresh
index.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import AsyncGenerator, Optional

from eth_utils import is_address
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from goldenarrow.errors import (
    AddressNotFound,
    MasterKeyUnavailable,
    PersistenceConflict,
    PersistenceFailure,
    UserNotFound,
    WalletError,
    WalletNotFound,
)
from goldenarrow.hdwallet import AddressInfo, EVMHDWallet, MasterKeyMaterial
from goldenarrow.ledger.database import get_db
from goldenarrow.ledger.models import UserWallet, WalletBalance
from goldenarrow.ledger.repository import LedgerRepository
from goldenarrow.utils.locks import KeyedLock, LockTimeoutError

logger = logging.getLogger(__name__)

ALLOCATION_ATTEMPTS = 2


@dataclass(frozen=True)
class DerivationRecord:
    """A user's deposit address and where it came from."""

    user_id: str
    derivation_index: int
    derivation_path: str
    address: str
    key_fingerprint: str

    @classmethod
    def from_model(cls, wallet: UserWallet) -> "DerivationRecord":
        return cls(
            user_id=wallet.user_id,
            derivation_index=wallet.derivation_index,
            derivation_path=wallet.derivation_path,
            address=wallet.deposit_address,
            key_fingerprint=wallet.key_fingerprint,
        )


@dataclass(frozen=True)
class BalanceSnapshot:
    """Read-only view of a user's ledger balances."""

    deposit_balance: Decimal
    income_balance: Decimal
    total_deposited: Decimal
    total_withdrawn: Decimal

    @classmethod
    def from_model(cls, balance: WalletBalance) -> "BalanceSnapshot":
        zero = Decimal("0")
        return cls(
            deposit_balance=balance.deposit_balance or zero,
            income_balance=balance.income_balance or zero,
            total_deposited=balance.total_deposited or zero,
            total_withdrawn=balance.total_withdrawn or zero,
        )


@asynccontextmanager
async def repository_scope(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[LedgerRepository, None]:
    """Open a transactional repository and translate database errors."""
    try:
        async with get_db(session_factory) as session:
            yield LedgerRepository(session)
    except WalletError:
        raise
    except IntegrityError as e:
        raise PersistenceConflict(f"Unique constraint violated: {e.orig}") from e
    except SQLAlchemyError as e:
        logger.error(f"Database error: {e}")
        raise PersistenceFailure(f"Database error: {e.__class__.__name__}") from e


class WalletProvisioningService:
    """Get-or-create deposit wallets for users.

    Example:
        service = WalletProvisioningService(MasterKeyMaterial.from_xpub(xpub))
        record = await service.get_or_create_wallet(user_id)
    """

    def __init__(
        self,
        master_key: Optional[MasterKeyMaterial],
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        start_index: int = 0,
        lock_timeout: float = 30.0,
        chain: str = "BSC",
    ):
        """Initialize the service.

        Args:
            master_key: Parsed platform xpub, or None when not configured
            session_factory: Session factory (defaults to the global one)
            start_index: First index handed out for a fresh xpub
            lock_timeout: Seconds to wait for the allocation lock
            chain: Chain label attached to derived addresses
        """
        self._master_key = master_key
        self._wallet = EVMHDWallet(master_key, chain=chain) if master_key else None
        self._session_factory = session_factory
        self._start_index = start_index
        self._lock_timeout = lock_timeout

    @property
    def is_configured(self) -> bool:
        return self._master_key is not None

    @property
    def master_key(self) -> Optional[MasterKeyMaterial]:
        return self._master_key

    def _require_wallet(self) -> EVMHDWallet:
        if self._wallet is None:
            raise MasterKeyUnavailable()
        return self._wallet

    async def get_or_create_wallet(self, user_id: str) -> DerivationRecord:
        """Return the user's deposit wallet, creating it on first request.

        Raises:
            UserNotFound: The user does not exist.
            MasterKeyUnavailable: No xpub is configured.
            DerivationError: The reserved index could not be derived.
            PersistenceFailure: The record could not be stored.
        """
        async with repository_scope(self._session_factory) as repo:
            if not await repo.user_exists(user_id):
                raise UserNotFound(f"User {user_id} not found")

            wallet = self._require_wallet()

            existing = await repo.get_wallet_by_user_id(user_id)
            if existing is not None and existing.deposit_address:
                return DerivationRecord.from_model(existing)

        fingerprint = wallet.master_key.fingerprint
        try:
            async with KeyedLock(
                f"derivation:{fingerprint}",
                timeout=self._lock_timeout,
                operation=f"allocate wallet for {user_id}",
            ):
                return await self._allocate_with_retry(user_id, wallet)
        except LockTimeoutError as e:
            raise PersistenceFailure(str(e)) from e

    async def _allocate_with_retry(self, user_id: str, wallet: EVMHDWallet) -> DerivationRecord:
        for attempt in range(1, ALLOCATION_ATTEMPTS + 1):
            try:
                return await self._allocate(user_id, wallet)
            except PersistenceConflict as e:
                if attempt == ALLOCATION_ATTEMPTS:
                    logger.error(f"Wallet allocation for {user_id} still conflicting: {e.message}")
                    raise PersistenceFailure(
                        f"Could not store wallet for user {user_id}: {e.message}"
                    ) from e
                logger.warning(f"Wallet allocation conflict for {user_id}, retrying: {e.message}")

    async def _allocate(self, user_id: str, wallet: EVMHDWallet) -> DerivationRecord:
        """Reserve an index, derive and store the wallet in one transaction."""
        fingerprint = wallet.master_key.fingerprint

        async with repository_scope(self._session_factory) as repo:
            existing = await repo.get_wallet_by_user_id(user_id)
            if existing is not None:
                logger.info(f"Wallet for {user_id} was created concurrently, reusing it")
                return DerivationRecord.from_model(existing)

            index = await repo.reserve_next_index(fingerprint, self._start_index)
            info = wallet.derive_receiving_address(index)

            record, created = await repo.insert_wallet_if_absent(
                user_id=user_id,
                key_fingerprint=fingerprint,
                derivation_index=info.index,
                derivation_path=info.derivation_path,
                deposit_address=info.address,
            )
            await repo.get_or_create_balance(user_id)

        if created:
            logger.info(
                f"Created deposit wallet for {user_id}: {record.deposit_address} "
                f"(index {record.derivation_index})"
            )
        return DerivationRecord.from_model(record)

    async def get_wallet(self, user_id: str) -> DerivationRecord:
        """Return an existing wallet without creating one."""
        async with repository_scope(self._session_factory) as repo:
            existing = await repo.get_wallet_by_user_id(user_id)
            if existing is None:
                raise WalletNotFound()
            return DerivationRecord.from_model(existing)

    async def find_owner(self, address: str) -> DerivationRecord:
        """Resolve a deposit address to its wallet record."""
        if not is_address(address):
            raise AddressNotFound(f"Invalid deposit address: {address}")

        async with repository_scope(self._session_factory) as repo:
            existing = await repo.get_wallet_by_address(address)
            if existing is None:
                raise AddressNotFound(f"Unknown deposit address: {address}")
            return DerivationRecord.from_model(existing)

    async def get_balance(self, user_id: str) -> BalanceSnapshot:
        """Return the user's ledger balances (zeroed row created on first read)."""
        async with repository_scope(self._session_factory) as repo:
            if not await repo.user_exists(user_id):
                raise UserNotFound(f"User {user_id} not found")
            balance = await repo.get_or_create_balance(user_id)
            return BalanceSnapshot.from_model(balance)

    async def list_wallets(self, limit: Optional[int] = None) -> list[DerivationRecord]:
        async with repository_scope(self._session_factory) as repo:
            wallets = await repo.get_all_wallets(limit=limit)
            return [DerivationRecord.from_model(w) for w in wallets]

    def derive_preview(self, index: int) -> AddressInfo:
        """Derive the address at ``index`` without storing anything."""
        return self._require_wallet().derive_receiving_address(index)

    async def last_allocated_index(self) -> Optional[int]:
        """Highest index reserved for the configured xpub, None before the first."""
        wallet = self._require_wallet()
        async with repository_scope(self._session_factory) as repo:
            counter = await repo.get_derivation_counter(wallet.master_key.fingerprint)
            return counter.last_index if counter else None
