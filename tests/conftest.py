"""Pytest configuration and fixtures."""

import json
import os
from decimal import Decimal
from typing import Callable, Iterable

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "true"
os.environ["KDF_ITERATIONS"] = "1000"
os.environ["SECRET_LOCK_TIMEOUT"] = "5"

from vaultwallet.adapters import get_chain_adapter, reset_adapter_cache
from vaultwallet.chains import Chain
from vaultwallet.config import get_settings
from vaultwallet.hdwallet.factory import reset_deriver_cache
from vaultwallet.quotes.base import PriceProvider, TokenPrice
from vaultwallet.services.wallet_state import BalanceStatus, WalletState
from vaultwallet.storage.base import MemoryKeyValueStore
from vaultwallet.storage.models import Base
from vaultwallet.utils.locks import clear_secret_locks
from vaultwallet.vault import WalletVault

get_settings.cache_clear()

# BIP-39 test vector (all-zero 128-bit entropy)
ABANDON_MNEMONIC = "abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon about"

# Known addresses for ABANDON_MNEMONIC at index 0
ABANDON_ETH_ADDRESS = "0x9858EfFD232B4033E47d90003D41EC34EcaEda94"
ABANDON_BTC_ADDRESS = "bc1qcr8te4kr609gcawutmrza0j4xv80jy8z306fyu"

CREDENTIAL = "correct horse battery staple"


@pytest.fixture(autouse=True)
def reset_globals():
    """Clear process-wide registries between tests."""
    clear_secret_locks()
    reset_adapter_cache()
    reset_deriver_cache()
    yield
    clear_secret_locks()


def rpc_client(handlers: dict, calls: list = None) -> httpx.AsyncClient:
    """Build a client whose JSON-RPC methods are answered by handlers.

    Each handler value is either a result, or a callable taking the params
    (and returning a result) or raising an httpx exception.
    """

    def handle(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        method = payload["method"]
        if calls is not None:
            calls.append(method)
        if method not in handlers:
            return httpx.Response(
                200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "Method not found"}}
            )
        handler = handlers[method]
        result = handler(payload["params"], request) if callable(handler) else handler
        if isinstance(result, httpx.Response):
            return result
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": result})

    return httpx.AsyncClient(transport=httpx.MockTransport(handle))


def rest_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def adapter_factory(client: httpx.AsyncClient):
    """Adapter factory routing every chain through one mocked client."""
    return lambda chain: get_chain_adapter(chain, client=client)


class StaticPriceProvider(PriceProvider):
    """Fixed prices, for tests."""

    def __init__(self, prices: dict):
        self.prices = {s.upper(): Decimal(str(p)) for s, p in prices.items()}
        self.requests = 0

    async def get_prices(self, symbols: Iterable[str]) -> dict[str, TokenPrice]:
        self.requests += 1
        return {
            s.upper(): TokenPrice(symbol=s.upper(), price_usd=self.prices[s.upper()])
            for s in symbols
            if s.upper() in self.prices
        }


@pytest.fixture
def memory_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def vault(memory_store) -> WalletVault:
    return WalletVault(memory_store)


@pytest_asyncio.fixture
async def session(vault):
    """Unlocked session over a vault holding ABANDON_MNEMONIC."""
    await vault.import_mnemonic(ABANDON_MNEMONIC, CREDENTIAL)
    return await vault.unlock(CREDENTIAL, user_verified=True)


@pytest.fixture
def state() -> WalletState:
    return WalletState()


@pytest_asyncio.fixture
async def funded_eth_account(state, session):
    """Derived Ethereum account at index 0 holding 1 ETH."""
    account = await state.create_account(session, Chain.ETHEREUM)
    account.balance = Decimal("1")
    account.balance_status = BalanceStatus.LIVE
    return account


@pytest_asyncio.fixture
async def db_engine():
    """Create in-memory database engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def db_session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)
