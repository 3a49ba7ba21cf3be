"""
Shared pytest fixtures for the PfP Session test suite.

Key derivation uses a tiny scrypt cost so the suite stays fast, and
autolock is disabled by default; autolock tests enable it through the
preferences explicitly.
"""
import pytest
import pytest_asyncio

from pfp_session.vault import (
    Crypto,
    MasterPasswordManager,
    MemoryBackend,
    SessionConfig,
)

DUMMY_MASTER = "foobar"


@pytest.fixture
def config():
    """Low-cost configuration without autolock."""
    return SessionConfig(scrypt_n=16, scrypt_r=8, scrypt_p=1, autolock=False)


@pytest.fixture
def backend():
    """Fresh in-memory persistence medium."""
    return MemoryBackend()


@pytest.fixture
def crypto(config):
    return Crypto(config)


@pytest_asyncio.fixture
async def manager(backend, config, crypto):
    """Locked manager over an empty store."""
    mgr = MasterPasswordManager.create(backend, config=config, crypto=crypto)
    yield mgr
    await mgr.close()


@pytest.fixture
def passwords(manager):
    return manager.credentials


async def add_data(passwords):
    """Entries used by the namespace and rekey tests."""
    await passwords.add_generated({
        "site": "example.com",
        "name": "foo",
        "length": 8,
        "lower": True,
        "upper": False,
        "number": True,
        "symbol": False,
        "legacy": True,
    })
    await passwords.add_stored({
        "site": "example.info",
        "name": "bar",
        "password": "foo",
    })
    await passwords.add_alias("sub.example.info", "example.com")
