"""Tests for VaultConfig and the operator CLI."""
from pathlib import Path

import pytest
from pydantic import ValidationError

from navigator_vault.__main__ import main
from navigator_vault.config import VaultConfig

ENV_VARS = (
    "VAULT_DB_PATH",
    "VAULT_KEYCHAIN_SERVICE",
    "VAULT_KEYCHAIN_ACCOUNT",
    "VAULT_KEY_ROTATION_DAYS",
    "VAULT_KDF_ITERATIONS",
    "VAULT_STRICT_COLLECTIONS",
    "VAULT_SECRET_BACKEND",
    "VAULT_AUTO_MIGRATE",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestVaultConfig:

    def test_defaults(self):
        config = VaultConfig()
        assert config.root == Path.home() / ".openclaw" / "vault"
        assert config.keychain_service == "openclaw-vault"
        assert config.keychain_account == "openclaw"
        assert config.kdf_iterations == 10_000
        assert config.key_rotation_days is None
        assert config.secret_backend == "keychain"

    def test_layout(self, tmp_path):
        config = VaultConfig(root=tmp_path)
        assert config.keys_file == tmp_path / "keys.json"
        assert config.metadata_file == tmp_path / "metadata.json"
        assert config.agent_dir("agentA") == tmp_path / "agent-agentA"

    def test_expands_home(self):
        assert VaultConfig(root="~/vault").root == Path.home() / "vault"

    def test_invalid_backend(self):
        with pytest.raises(ValidationError):
            VaultConfig(secret_backend="floppy")

    def test_backend_normalized(self):
        assert VaultConfig(secret_backend=" Memory ").secret_backend == "memory"

    def test_low_iterations_rejected(self):
        with pytest.raises(ValidationError):
            VaultConfig(kdf_iterations=10)

    def test_from_mapping(self, tmp_path):
        """Test plugin-style camelCase keys; unknown keys are ignored."""
        config = VaultConfig.from_mapping({
            "dbPath": str(tmp_path),
            "keychainService": "svc",
            "keyRotationDays": 90,
            "autoMigrate": True,
            "somethingElse": 1,
        })
        assert config.root == tmp_path
        assert config.keychain_service == "svc"
        assert config.key_rotation_days == 90
        assert config.auto_migrate is True

    def test_from_mapping_none(self):
        assert VaultConfig.from_mapping(None) == VaultConfig()

    def test_from_env(self, clean_env, tmp_path):
        clean_env.setenv("VAULT_DB_PATH", str(tmp_path))
        clean_env.setenv("VAULT_KEY_ROTATION_DAYS", "30")
        clean_env.setenv("VAULT_STRICT_COLLECTIONS", "yes")
        clean_env.setenv("VAULT_SECRET_BACKEND", "env")
        config = VaultConfig.from_env()
        assert config.root == tmp_path
        assert config.key_rotation_days == 30
        assert config.strict_collections is True
        assert config.secret_backend == "env"


class TestCli:

    def test_init_then_status(self, clean_env, tmp_path, capsys):
        root = str(tmp_path / "vault")
        assert main(["--root", root, "--backend", "memory", "init"]) == 0
        assert "Vault initialized successfully" in capsys.readouterr().out
        assert main(["--root", root, "--backend", "memory", "status"]) == 0
        out = capsys.readouterr().out
        assert "Initialized: yes" in out
        assert "Agent Keys: 0" in out

    def test_rotate_nothing_due(self, clean_env, tmp_path, capsys):
        assert main(["--root", str(tmp_path), "--backend", "memory", "rotate"]) == 0
        assert "No agent keys due for rotation" in capsys.readouterr().out

    def test_rotate_unknown_agent_fails(self, clean_env, tmp_path, capsys):
        assert main(["--root", str(tmp_path), "--backend", "memory", "rotate", "ghost"]) == 1
        assert "Vault operation failed" in capsys.readouterr().err
