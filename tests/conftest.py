"""
Pytest fixtures for the claimsettle tests.
"""
import base64
import time

import pytest

from claimsettle._rate_limited_log import reset_rate_limits
from claimsettle.app import build_application
from claimsettle.companion.secrets import MASTER_KEY_ENV, reset_master_key_cache
from claimsettle.config import Settings
from claimsettle.lock import MemoryKeyValueStore
from claimsettle.store import MemoryStore

from test_helpers.fakes import (
    FakeBalanceReader, FakeLedger, FakeQuoteProvider, FakeStatusProvider, FakeSwapExecutor
)

TEST_MASTER_KEY = base64.b64encode(b"\x07" * 32).decode("ascii")


# Make time.sleep instantaneous so retries don't slow the suite down
@pytest.fixture(autouse=True)
def _fast_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda *_a, **_kw: None)


@pytest.fixture(autouse=True)
def _master_key(monkeypatch):
    """Seal companion keys with a fixed test key instead of the OS keyring"""
    monkeypatch.setenv(MASTER_KEY_ENV, TEST_MASTER_KEY)
    reset_master_key_cache()
    yield
    reset_master_key_cache()


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    reset_rate_limits()
    yield
    reset_rate_limits()


class FakeClock:
    """Monotonic clock the tests move by hand"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def kv_store(clock):
    return MemoryKeyValueStore(timer=clock)


@pytest.fixture
def quotes():
    return FakeQuoteProvider()


@pytest.fixture
def status_provider():
    return FakeStatusProvider()


@pytest.fixture
def balances():
    return FakeBalanceReader()


@pytest.fixture
def executor():
    return FakeSwapExecutor()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def application(settings, store, kv_store, status_provider, quotes, balances, executor, ledger):
    """Fully wired application over in-memory stores and fake providers"""
    app = build_application(
        settings,
        store=store,
        kv_store=kv_store,
        status_provider=status_provider,
        quotes=quotes,
        balances=balances,
        executor=executor,
        ledger=ledger,
    )
    yield app
    app.close()
