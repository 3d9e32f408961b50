import pytest
import pytest_asyncio

from navigator_vault.config import VaultConfig
from navigator_vault.keystore import MemorySecretStore
from navigator_vault.master_key import MasterKeyProvider
from navigator_vault.registry import AgentKeyRegistry
from navigator_vault.service import VaultService


class FailingSecretStore:
    """Secret store that has nothing and cannot persist anything."""

    def __init__(self):
        self.set_calls = 0

    def get(self, service, account):
        return None

    def set(self, service, account, secret):
        self.set_calls += 1
        return False


class BrokenReadSecretStore(MemorySecretStore):
    """Secret store whose reads blow up but whose writes succeed."""

    def get(self, service, account):
        raise OSError("keychain locked")


@pytest.fixture
def config(tmp_path):
    """Vault config rooted in a temp dir with a cheap KDF."""
    return VaultConfig(root=tmp_path / "vault", kdf_iterations=1000)


@pytest.fixture
def secret_store():
    return MemorySecretStore()


@pytest_asyncio.fixture
async def master(secret_store, config):
    provider = MasterKeyProvider(
        secret_store, config.keychain_service, config.keychain_account,
    )
    await provider.initialize()
    yield provider
    provider.close()


@pytest_asyncio.fixture
async def registry(config, master):
    return AgentKeyRegistry(config, master)


@pytest_asyncio.fixture
async def service(config, secret_store):
    """A started VaultService."""
    vault = VaultService(config, store=secret_store)
    await vault.start()
    yield vault
    await vault.stop()


@pytest.fixture
def failing_store():
    return FailingSecretStore()


@pytest.fixture
def broken_read_store():
    return BrokenReadSecretStore()
