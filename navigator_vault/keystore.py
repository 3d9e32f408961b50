"""
Secret Store backends — where the master key lives outside the vault files.

The vault only needs two calls from a backend:

- ``get(service, account) -> str | None``
- ``set(service, account, secret) -> bool``

Backends:
- ``KeychainSecretStore``: macOS keychain through the ``security`` CLI.
- ``EnvSecretStore``: read-only, VAULT_MASTER_KEY=<base64 32-byte key>.
- ``MemorySecretStore``: process-local, for tests and ephemeral vaults.

Security Note:
    Never log secret values. Only log service/account names.
"""
import os
import re
import logging
import subprocess
from typing import Optional, Protocol, runtime_checkable

logger = logging.getLogger("navigator.vault")

_ENV_SAFE = re.compile(r"[^A-Z0-9]+")


@runtime_checkable
class SecretStore(Protocol):
    """Interface the vault needs from a secret storage backend."""

    def get(self, service: str, account: str) -> Optional[str]:
        ...

    def set(self, service: str, account: str, secret: str) -> bool:
        ...


class MemorySecretStore:
    """Secret store held in a dict. Survives vault restarts, not process exit."""

    def __init__(self, secrets: Optional[dict[tuple[str, str], str]] = None):
        self._secrets: dict[tuple[str, str], str] = dict(secrets or {})

    def get(self, service: str, account: str) -> Optional[str]:
        return self._secrets.get((service, account))

    def set(self, service: str, account: str, secret: str) -> bool:
        self._secrets[(service, account)] = secret
        return True

    def __len__(self) -> int:
        return len(self._secrets)


class EnvSecretStore:
    """Read-only secret store backed by environment variables.

    Looks up ``VAULT_MASTER_KEY_<SERVICE>_<ACCOUNT>`` first, then
    ``VAULT_MASTER_KEY``. ``set`` always fails: a generated key cannot be
    persisted to the environment of future processes.
    """

    prefix = "VAULT_MASTER_KEY"

    def _names(self, service: str, account: str) -> list[str]:
        scoped = _ENV_SAFE.sub("_", f"{service}_{account}".upper()).strip("_")
        return [f"{self.prefix}_{scoped}", self.prefix]

    def get(self, service: str, account: str) -> Optional[str]:
        for name in self._names(service, account):
            value = os.environ.get(name)
            if value:
                logger.debug("Master key found in env var %s", name)
                return value.strip()
        return None

    def set(self, service: str, account: str, secret: str) -> bool:
        logger.error(
            "Cannot persist a master key for service=%s account=%s: "
            "environment secret store is read-only",
            service, account,
        )
        return False


class KeychainSecretStore:
    """macOS keychain backend using the ``security`` command line tool.

    Arguments are passed as an argv list, never through a shell.
    """

    def __init__(self, binary: str = "security", timeout: float = 10.0):
        self._binary = binary
        self._timeout = timeout

    def get(self, service: str, account: str) -> Optional[str]:
        try:
            result = subprocess.run(
                [self._binary, "find-generic-password", "-w",
                 "-s", service, "-a", account],
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=True,
            )
        except FileNotFoundError:
            logger.warning("Keychain tool %r is not available", self._binary)
            return None
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired):
            logger.debug(
                "No keychain entry for service=%s account=%s", service, account,
            )
            return None
        value = result.stdout.strip()
        return value or None

    def set(self, service: str, account: str, secret: str) -> bool:
        try:
            subprocess.run(
                [self._binary, "add-generic-password", "-U",
                 "-s", service, "-a", account, "-w", secret],
                capture_output=True,
                timeout=self._timeout,
                check=True,
            )
        except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as err:
            logger.error(
                "Failed to store master key in keychain service=%s account=%s: %s",
                service, account, type(err).__name__,
            )
            return False
        return True


def secret_store_for(backend: str) -> SecretStore:
    """Return the secret store backend named by ``VaultConfig.secret_backend``."""
    if backend == "keychain":
        return KeychainSecretStore()
    if backend == "env":
        return EnvSecretStore()
    if backend == "memory":
        return MemorySecretStore()
    raise ValueError(f"Unsupported secret backend: {backend}")
