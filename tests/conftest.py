"""Pytest configuration and fixtures."""

import os
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

TEST_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "false"
os.environ["TRON_MNEMONIC"] = TEST_MNEMONIC
os.environ["CHAIN_PROVIDER"] = "simulated"
os.environ["ADMIN_TOKEN"] = ""

from trondeposit.hdwallet import TronHDWallet, reset_wallet_cache
from trondeposit.ledger.checkpoint import ScanCheckpoint
from trondeposit.ledger.database import SessionFactory, create_session_factory, get_db
from trondeposit.ledger.models import Base, User
from trondeposit.ledger.repository import LedgerRepository
from trondeposit.services.address_registry import AddressRegistry
from trondeposit.services.reconciler import DepositReconciler
from trondeposit.utils.locks import clear_locks


@pytest.fixture(autouse=True)
def reset_global_state():
    """Drop cached wallet and locks bound to a previous event loop."""
    reset_wallet_cache()
    clear_locks()
    yield
    reset_wallet_cache()
    clear_locks()


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Create a file-backed database engine for testing.

    A file rather than ``:memory:`` so that separate sessions see each
    other's commits.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> SessionFactory:
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def ledger_repo(db_session: AsyncSession) -> LedgerRepository:
    """Create ledger repository for testing."""
    return LedgerRepository(db_session)


@pytest.fixture(scope="session")
def wallet() -> TronHDWallet:
    return TronHDWallet(TEST_MNEMONIC)


@pytest.fixture
def registry(wallet, session_factory) -> AddressRegistry:
    return AddressRegistry(wallet=wallet, session_factory=session_factory, max_attempts=5)


@pytest.fixture
def reconciler(session_factory) -> DepositReconciler:
    return DepositReconciler(session_factory=session_factory, amount_tolerance=Decimal("0.000001"))


@pytest.fixture
def checkpoint(session_factory) -> ScanCheckpoint:
    return ScanCheckpoint(session_factory=session_factory, start_height=0, lock_ttl_seconds=600)


@pytest.fixture
def create_user(session_factory):
    """Factory fixture: create a committed user and return its id."""

    async def _create(telegram_id: int, username: str = None) -> int:
        async with get_db(session_factory) as session:
            user = await LedgerRepository(session).get_or_create_user(telegram_id, username)
            return user.id

    return _create


@pytest.fixture
def get_user(session_factory):
    """Factory fixture: load a user in a fresh session."""

    async def _get(user_id: int) -> User:
        async with get_db(session_factory) as session:
            return await LedgerRepository(session).get_user(user_id)

    return _get
