"""Vault exception hierarchy."""


class VaultError(Exception):
    """Base class for every error raised by the vault."""


class KeyStoreError(VaultError):
    """The external secret store could not persist (or serve) the master key."""


class IntegrityError(VaultError):
    """An envelope failed authentication or could not be parsed."""


class NotStartedError(VaultError):
    """An operation was invoked before ``start()`` or after ``stop()``."""


class MissingKeyError(VaultError):
    """A principal key is required but none exists."""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"No encryption key found for agent {agent_id}")


class CorruptCollectionError(VaultError):
    """A persisted collection file is not valid JSON (strict mode only)."""
