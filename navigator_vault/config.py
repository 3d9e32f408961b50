"""
Vault Configuration — Validated settings for a vault instance.

Reads settings from environment variables:
    VAULT_DB_PATH = <directory holding metadata.json, keys.json, agent-*/>
    VAULT_KEYCHAIN_SERVICE = <secret store service name>
    VAULT_KEYCHAIN_ACCOUNT = <secret store account name>
    VAULT_KEY_ROTATION_DAYS = <integer, optional>
    VAULT_KDF_ITERATIONS = <integer>
    VAULT_STRICT_COLLECTIONS = <true|false>
    VAULT_SECRET_BACKEND = <keychain|env|memory>

or from the plugin-style mapping (``dbPath``, ``keychainService``, ...).

Security Note:
    The master key is never part of this configuration.
"""
import os
import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("navigator.vault")

DEFAULT_ROOT = Path.home() / ".openclaw" / "vault"
DEFAULT_SERVICE = "openclaw-vault"
DEFAULT_ACCOUNT = "openclaw"
DEFAULT_KDF_ITERATIONS = 10_000

_TRUE_VALUES = ("1", "true", "yes", "on")

# plugin config key -> VaultConfig field
_MAPPING_KEYS = {
    "dbPath": "root",
    "keychainService": "keychain_service",
    "keychainAccount": "keychain_account",
    "keyRotationDays": "key_rotation_days",
    "kdfIterations": "kdf_iterations",
    "strictCollections": "strict_collections",
    "secretBackend": "secret_backend",
    "autoMigrate": "auto_migrate",
}


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    root: Path = Field(default=DEFAULT_ROOT)
    keychain_service: str = Field(default=DEFAULT_SERVICE, min_length=1)
    keychain_account: str = Field(default=DEFAULT_ACCOUNT, min_length=1)
    key_rotation_days: Optional[int] = Field(default=None, ge=1)
    kdf_iterations: int = Field(default=DEFAULT_KDF_ITERATIONS, ge=1000)
    strict_collections: bool = False
    secret_backend: str = Field(default="keychain")
    auto_migrate: bool = False

    @field_validator("root", mode="before")
    @classmethod
    def expand_root(cls, v: Any) -> Path:
        """Expand ``~`` in the vault directory."""
        return Path(v).expanduser()

    @field_validator("secret_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate secret store backend is supported."""
        v = v.strip().lower()
        if v not in ("keychain", "env", "memory"):
            raise ValueError(f"Unsupported secret backend: {v}")
        return v

    @property
    def keys_file(self) -> Path:
        return self.root / "keys.json"

    @property
    def metadata_file(self) -> Path:
        return self.root / "metadata.json"

    def agent_dir(self, agent_id: str) -> Path:
        return self.root / f"agent-{agent_id}"

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        values: dict[str, Any] = {
            "strict_collections": _env_bool("VAULT_STRICT_COLLECTIONS"),
            "auto_migrate": _env_bool("VAULT_AUTO_MIGRATE"),
        }
        env_map = {
            "VAULT_DB_PATH": "root",
            "VAULT_KEYCHAIN_SERVICE": "keychain_service",
            "VAULT_KEYCHAIN_ACCOUNT": "keychain_account",
            "VAULT_KEY_ROTATION_DAYS": "key_rotation_days",
            "VAULT_KDF_ITERATIONS": "kdf_iterations",
            "VAULT_SECRET_BACKEND": "secret_backend",
        }
        for name, field in env_map.items():
            raw = os.environ.get(name)
            if raw:
                values[field] = raw
        config = cls(**values)
        logger.debug(
            "Vault config loaded from env: root=%s backend=%s",
            config.root, config.secret_backend,
        )
        return config

    @classmethod
    def from_mapping(cls, mapping: Optional[dict]) -> "VaultConfig":
        """Create VaultConfig from a plugin-style camelCase mapping.

        Unknown keys are ignored; snake_case field names are accepted too.
        """
        values: dict[str, Any] = {}
        for key, value in (mapping or {}).items():
            field = _MAPPING_KEYS.get(key, key)
            if field in cls.model_fields and value is not None:
                values[field] = value
        return cls(**values)
