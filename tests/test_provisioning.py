"""Tests for deposit wallet provisioning."""

import asyncio
from decimal import Decimal

import pytest
from bip_utils import Bip39SeedGenerator, Bip44, Bip44Coins

from goldenarrow.errors import (
    AddressNotFound,
    DerivationError,
    MasterKeyUnavailable,
    PersistenceConflict,
    PersistenceFailure,
    UserNotFound,
    WalletNotFound,
)
from goldenarrow.hdwallet import EVMHDWallet, MasterKeyMaterial, derive_address
from goldenarrow.ledger.repository import LedgerRepository
from goldenarrow.services import WalletProvisioningService
from goldenarrow.utils.locks import KeyedLock

GOLDEN_INDEX_0 = "0x9858EfFD232B4033E47d90003D41EC34EcaEda94"


@pytest.fixture
def service(master_key, session_factory) -> WalletProvisioningService:
    return WalletProvisioningService(master_key, session_factory=session_factory)


async def stored_wallets(session_factory):
    async with session_factory() as session:
        return await LedgerRepository(session).get_all_wallets()


class TestGetOrCreateWallet:
    """Tests for get_or_create_wallet."""

    @pytest.mark.asyncio
    async def test_first_wallet(self, service, users):
        record = await service.get_or_create_wallet(users[0])

        assert record.user_id == users[0]
        assert record.derivation_index == 0
        assert record.derivation_path == "m/0/0"
        assert record.address == GOLDEN_INDEX_0
        assert record.key_fingerprint == service.master_key.fingerprint

    @pytest.mark.asyncio
    async def test_idempotent(self, service, users, session_factory):
        first = await service.get_or_create_wallet(users[0])
        second = await service.get_or_create_wallet(users[0])

        assert first == second
        assert len(await stored_wallets(session_factory)) == 1

    @pytest.mark.asyncio
    async def test_distinct_users_distinct_indexes(self, service, users):
        records = [await service.get_or_create_wallet(u) for u in users]

        assert [r.derivation_index for r in records] == list(range(len(users)))
        assert len({r.address for r in records}) == len(users)

    @pytest.mark.asyncio
    async def test_address_matches_index(self, service, users, master_key):
        """The stored address is the pure function of (xpub, index)."""
        for user_id in users:
            record = await service.get_or_create_wallet(user_id)
            assert record.address == derive_address(master_key, record.derivation_index).address

    @pytest.mark.asyncio
    async def test_start_index(self, master_key, session_factory, users):
        service = WalletProvisioningService(
            master_key, session_factory=session_factory, start_index=100
        )

        first = await service.get_or_create_wallet(users[0])
        second = await service.get_or_create_wallet(users[1])

        assert first.derivation_index == 100
        assert second.derivation_index == 101
        assert await service.last_allocated_index() == 101

    @pytest.mark.asyncio
    async def test_concurrent_same_user(self, service, users, session_factory):
        """N concurrent callers for one user produce exactly one record."""
        results = await asyncio.gather(
            *(service.get_or_create_wallet(users[0]) for _ in range(10))
        )

        assert len(set(results)) == 1
        wallets = await stored_wallets(session_factory)
        assert len(wallets) == 1
        assert wallets[0].deposit_address == results[0].address

    @pytest.mark.asyncio
    async def test_concurrent_distinct_users(self, service, users):
        results = await asyncio.gather(*(service.get_or_create_wallet(u) for u in users))

        assert sorted(r.derivation_index for r in results) == list(range(len(users)))
        assert len({r.address for r in results}) == len(users)

    @pytest.mark.asyncio
    async def test_unknown_user(self, service, users, session_factory):
        with pytest.raises(UserNotFound):
            await service.get_or_create_wallet("nobody")

        assert await stored_wallets(session_factory) == []

    @pytest.mark.asyncio
    async def test_missing_master_key(self, session_factory, users):
        service = WalletProvisioningService(None, session_factory=session_factory)

        assert service.is_configured is False
        with pytest.raises(MasterKeyUnavailable):
            await service.get_or_create_wallet(users[0])

        assert await stored_wallets(session_factory) == []

    @pytest.mark.asyncio
    async def test_unknown_user_reported_before_missing_key(self, session_factory, users):
        service = WalletProvisioningService(None, session_factory=session_factory)

        with pytest.raises(UserNotFound):
            await service.get_or_create_wallet("nobody")

    @pytest.mark.asyncio
    async def test_existing_wallet_survives_key_change(self, service, users, session_factory):
        """A stored record is returned as-is even under a different xpub."""
        first = await service.get_or_create_wallet(users[0])

        seed = Bip39SeedGenerator(
            "legal winner thank year wave sausage worth useful legal winner thank yellow"
        ).Generate()
        other_xpub = (
            Bip44.FromSeed(seed, Bip44Coins.ETHEREUM).Purpose().Coin().Account(0)
            .PublicKey().ToExtended()
        )
        other = WalletProvisioningService(
            MasterKeyMaterial.from_xpub(other_xpub), session_factory=session_factory
        )

        assert await other.get_or_create_wallet(users[0]) == first


class TestAllocationFailures:
    """Tests for conflict retry and failure atomicity."""

    @pytest.mark.asyncio
    async def test_conflict_is_retried_once(self, service, users, monkeypatch):
        real_insert = LedgerRepository.insert_wallet_if_absent
        calls = []

        async def flaky_insert(self, *args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise PersistenceConflict("simulated concurrent writer")
            return await real_insert(self, *args, **kwargs)

        monkeypatch.setattr(LedgerRepository, "insert_wallet_if_absent", flaky_insert)

        record = await service.get_or_create_wallet(users[0])

        assert len(calls) == 2
        # The failed attempt rolled back its index reservation
        assert record.derivation_index == 0

    @pytest.mark.asyncio
    async def test_persistent_conflict_fails(self, service, users, session_factory, monkeypatch):
        async def always_conflict(self, *args, **kwargs):
            raise PersistenceConflict("simulated concurrent writer")

        monkeypatch.setattr(LedgerRepository, "insert_wallet_if_absent", always_conflict)

        with pytest.raises(PersistenceFailure):
            await service.get_or_create_wallet(users[0])

        assert await stored_wallets(session_factory) == []

    @pytest.mark.asyncio
    async def test_derivation_failure_stores_nothing(
        self, service, users, session_factory, monkeypatch
    ):
        def broken_derive(self, index):
            raise DerivationError(f"cannot derive {index}")

        monkeypatch.setattr(EVMHDWallet, "derive_receiving_address", broken_derive)

        with pytest.raises(DerivationError):
            await service.get_or_create_wallet(users[0])

        assert await stored_wallets(session_factory) == []

    @pytest.mark.asyncio
    async def test_lock_timeout(self, master_key, session_factory, users):
        service = WalletProvisioningService(
            master_key, session_factory=session_factory, lock_timeout=0.05
        )

        async with KeyedLock(f"derivation:{master_key.fingerprint}"):
            with pytest.raises(PersistenceFailure):
                await service.get_or_create_wallet(users[0])


class TestWalletQueries:
    """Tests for read-only service operations."""

    @pytest.mark.asyncio
    async def test_get_wallet(self, service, users):
        created = await service.get_or_create_wallet(users[0])

        assert await service.get_wallet(users[0]) == created
        with pytest.raises(WalletNotFound):
            await service.get_wallet(users[1])

    @pytest.mark.asyncio
    async def test_find_owner(self, service, users):
        created = await service.get_or_create_wallet(users[0])

        assert await service.find_owner(created.address) == created
        assert await service.find_owner(created.address.lower()) == created

    @pytest.mark.asyncio
    @pytest.mark.parametrize("address", ["0x1234", "not-an-address", "0x" + "00" * 20])
    async def test_find_owner_unknown(self, service, users, address):
        with pytest.raises(AddressNotFound):
            await service.find_owner(address)

    @pytest.mark.asyncio
    async def test_balance_starts_at_zero(self, service, users):
        await service.get_or_create_wallet(users[0])
        balance = await service.get_balance(users[0])

        assert balance.deposit_balance == Decimal("0")
        assert balance.total_deposited == Decimal("0")

    @pytest.mark.asyncio
    async def test_balance_unknown_user(self, service, users):
        with pytest.raises(UserNotFound):
            await service.get_balance("nobody")

    @pytest.mark.asyncio
    async def test_list_wallets(self, service, users):
        for user_id in users[:3]:
            await service.get_or_create_wallet(user_id)

        wallets = await service.list_wallets()

        assert [w.derivation_index for w in wallets] == [0, 1, 2]
        assert len(await service.list_wallets(limit=2)) == 2

    @pytest.mark.asyncio
    async def test_derive_preview_stores_nothing(self, service, users, session_factory):
        info = service.derive_preview(0)

        assert info.address == GOLDEN_INDEX_0
        assert await stored_wallets(session_factory) == []
        assert await service.last_allocated_index() is None

    def test_derive_preview_without_key(self, session_factory):
        service = WalletProvisioningService(None, session_factory=session_factory)

        with pytest.raises(MasterKeyUnavailable):
            service.derive_preview(0)
