"""Pytest configuration and fixtures."""

import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from bip_utils import Bip39SeedGenerator, Bip44, Bip44Coins
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["XPUB_KEY"] = ""
os.environ["XPUB_ENCRYPTION_KEY"] = ""
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ["DEBUG"] = "true"

from goldenarrow.hdwallet import MasterKeyMaterial
from goldenarrow.ledger.database import build_engine, build_session_factory
from goldenarrow.ledger.models import Base
from goldenarrow.ledger.repository import LedgerRepository
from goldenarrow.utils.locks import clear_locks

# Standard BIP39 test vector mnemonic
TEST_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)

USER_IDS = ["user-1", "user-2", "user-3", "user-4", "user-5"]


@pytest.fixture(scope="session")
def bip44_account():
    """m/44'/60'/0' context for the test mnemonic (holds private keys)."""
    seed = Bip39SeedGenerator(TEST_MNEMONIC).Generate()
    return Bip44.FromSeed(seed, Bip44Coins.ETHEREUM).Purpose().Coin().Account(0)


@pytest.fixture(scope="session")
def account_xpub(bip44_account) -> str:
    """Account-level xpub of the test mnemonic."""
    return bip44_account.PublicKey().ToExtended()


@pytest.fixture
def master_key(account_xpub) -> MasterKeyMaterial:
    return MasterKeyMaterial.from_xpub(account_xpub)


@pytest.fixture(autouse=True)
def reset_locks():
    """Locks are bound to the loop that created them."""
    clear_locks()
    yield
    clear_locks()


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Create a file-backed SQLite engine so sessions get separate connections."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def ledger_repo(db_session: AsyncSession) -> LedgerRepository:
    """Create ledger repository for testing."""
    return LedgerRepository(db_session)


@pytest_asyncio.fixture
async def users(session_factory) -> list[str]:
    """Committed users the wallet core can provision for."""
    async with session_factory() as session:
        repo = LedgerRepository(session)
        for user_id in USER_IDS:
            await repo.create_user(user_id=user_id, username=user_id)
        await session.commit()
    return list(USER_IDS)
