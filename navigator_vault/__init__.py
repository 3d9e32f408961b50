"""Navigator Vault — per-agent envelope encryption at rest.

Security Note (Threat Model):
    The master key lives in an external secret store and, while the vault
    is started, in process memory. The vault directory alone reveals
    nothing. A memory dump of a running process can expose the master key
    and any decrypted agent keys; mitigating that needs HSM/secure enclave
    integration, which is out of scope.
"""
from .version import __version__
from .config import VaultConfig
from .crypto import decrypt, encrypt
from .exceptions import (
    CorruptCollectionError,
    IntegrityError,
    KeyStoreError,
    MissingKeyError,
    NotStartedError,
    VaultError,
)
from .gateway import VaultGateway
from .keystore import (
    EnvSecretStore,
    KeychainSecretStore,
    MemorySecretStore,
    SecretStore,
)
from .models import AgentKeyRecord, Envelope, FileRecord, VaultMetadata
from .service import VaultService

__all__ = [
    "__version__",
    "VaultService",
    "VaultGateway",
    "VaultConfig",
    "encrypt",
    "decrypt",
    "Envelope",
    "AgentKeyRecord",
    "FileRecord",
    "VaultMetadata",
    "SecretStore",
    "MemorySecretStore",
    "EnvSecretStore",
    "KeychainSecretStore",
    "VaultError",
    "KeyStoreError",
    "IntegrityError",
    "NotStartedError",
    "MissingKeyError",
    "CorruptCollectionError",
]
