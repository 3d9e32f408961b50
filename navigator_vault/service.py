"""
VaultService — lifecycle and routing facade for the vault.

Provides the host-facing API:
- ``start()`` / ``stop()`` — acquire and discard the master key
- ``encrypt_and_store(agent_id, path, content)``
- ``decrypt_and_read(agent_id, path)`` — None when absent
- ``wrap_message(message, agent_id)`` / ``unwrap_message(...)`` / ``rewrap_message(...)``
- ``rotate_agent_key(agent_id)`` / ``rotate_due_keys()`` / ``purge_retired_keys(agent_id)``
- ``status()``

Security Note:
    Never log plaintext or ciphertext values. Only log agent ids, paths
    and operations.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Union

from .agent_store import AgentFileStore, validate_agent_id
from .config import VaultConfig
from .exceptions import IntegrityError, MissingKeyError, NotStartedError
from .keystore import SecretStore, secret_store_for
from .master_key import KeyState, MasterKeyProvider
from .models import VaultMetadata, now_ms
from .registry import AgentKeyRegistry
from .storage import dir_size, read_json, write_json
from .transcript import (
    DEFAULT_SENSITIVE_FIELDS,
    VAULT_MARKER,
    is_wrapped,
    unwrap_message,
    wrap_message,
)

logger = logging.getLogger("navigator.vault")

DEFAULT_AGENT = "default"


class VaultService:
    """Encrypted per-agent storage under a single master key.

    Agent stores are created lazily and cached on the instance for the
    lifetime of a start/stop cycle.
    """

    def __init__(
        self,
        config: Optional[VaultConfig] = None,
        store: Optional[SecretStore] = None,
    ):
        self.config = config or VaultConfig()
        # an empty MemorySecretStore is falsy
        if store is None:
            store = secret_store_for(self.config.secret_backend)
        self._secret_store = store
        self._open_provider()
        self._stores: dict[str, AgentFileStore] = {}
        self._started = False
        self._inflight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    def __repr__(self) -> str:
        return f"<VaultService root={self.config.root} started={self._started}>"

    @property
    def started(self) -> bool:
        return self._started

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _open_provider(self) -> None:
        # a closed provider is terminal; each start/stop cycle gets its own
        self.master = MasterKeyProvider(
            self._secret_store,
            self.config.keychain_service,
            self.config.keychain_account,
        )
        self.registry = AgentKeyRegistry(self.config, self.master)

    def _write_metadata(self) -> None:
        path = self.config.metadata_file
        if path.exists():
            return
        write_json(path, VaultMetadata(initialized_at=now_ms()).to_dict())
        logger.info("Vault initialized at %s", self.config.root)

    async def start(self) -> None:
        """Load (or create) the master key and mark the vault operational.

        Raises:
            KeyStoreError: If a new master key cannot be persisted.
        """
        if self._started:
            return
        logger.info("Starting Vault service...")
        if self.master.state is KeyState.CLOSED:
            self._open_provider()
        await self.master.initialize()
        await asyncio.to_thread(self._write_metadata)
        self._started = True
        logger.info("Vault service started successfully")

    async def stop(self) -> None:
        """Drain in-flight operations, then drop cached stores and the master key."""
        if not self._started:
            return
        logger.info("Stopping Vault service...")
        self._started = False
        await self._idle.wait()
        self._stores.clear()
        self.master.close()
        logger.info("Vault service stopped")

    async def __aenter__(self) -> "VaultService":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    @asynccontextmanager
    async def _operation(self) -> AsyncIterator[None]:
        if not self._started:
            raise NotStartedError("Vault service not started")
        self._inflight += 1
        self._idle.clear()
        try:
            yield
        finally:
            self._inflight -= 1
            if self._inflight == 0:
                self._idle.set()

    # ------------------------------------------------------------------
    # Agent stores
    # ------------------------------------------------------------------

    async def _get_store(self, agent_id: str, create: bool = True) -> Optional[AgentFileStore]:
        store = self._stores.get(agent_id)
        if store is not None:
            return store
        try:
            validate_agent_id(agent_id)
        except ValueError:
            if create:
                raise
            # an id that cannot name a directory was never stored
            return None
        if create:
            await self.registry.generate_agent_key(agent_id)
        elif agent_id not in await self.registry.list_agents():
            return None
        # another task may have created the handle while we awaited
        store = self._stores.get(agent_id)
        if store is None:
            store = AgentFileStore(agent_id, self.config, self.registry)
            self._stores[agent_id] = store
            logger.debug("Opened agent store for agent=%s", agent_id)
        return store

    async def encrypt_and_store(
        self, agent_id: str, file_path: str, content: Union[str, bytes],
    ) -> None:
        """Encrypt ``content`` for ``agent_id``, creating its key if needed."""
        if isinstance(content, str):
            content = content.encode("utf-8")
        async with self._operation():
            store = await self._get_store(agent_id)
            await store.store_file(file_path, content)

    async def decrypt_and_read(self, agent_id: str, file_path: str) -> Optional[bytes]:
        """Return decrypted content, or None for an unknown agent or path.

        Reading never creates a key for an unknown agent.
        """
        async with self._operation():
            store = await self._get_store(agent_id, create=False)
            if store is None:
                return None
            return await store.read_file(file_path)

    async def list_files(self, agent_id: str) -> list[str]:
        async with self._operation():
            store = await self._get_store(agent_id, create=False)
            if store is None:
                return []
            return await store.list_files()

    async def delete_file(self, agent_id: str, file_path: str) -> bool:
        async with self._operation():
            store = await self._get_store(agent_id, create=False)
            if store is None:
                return False
            return await store.delete_file(file_path)

    # ------------------------------------------------------------------
    # Transcript wrapping
    # ------------------------------------------------------------------

    async def wrap_message(
        self,
        message: dict,
        agent_id: Optional[str] = None,
        fields=DEFAULT_SENSITIVE_FIELDS,
    ) -> dict:
        """Encrypt the sensitive fields of ``message`` under the agent key."""
        if is_wrapped(message):
            return message
        async with self._operation():
            key = await self.registry.generate_agent_key(agent_id or DEFAULT_AGENT)
            return wrap_message(message, key, fields, self.config.kdf_iterations)

    async def unwrap_message(self, message: dict, agent_id: Optional[str] = None) -> dict:
        """Decrypt a message produced by :meth:`wrap_message`.

        Raises:
            MissingKeyError: If the agent has no key.
            IntegrityError: If no agent key authenticates the payload.
        """
        if not is_wrapped(message):
            return message
        agent_id = agent_id or DEFAULT_AGENT
        async with self._operation():
            keys = await self.registry.get_candidate_keys(agent_id)
            if not keys:
                raise MissingKeyError(agent_id)
            error: Optional[IntegrityError] = None
            for key in keys:
                try:
                    return unwrap_message(message, key)
                except IntegrityError as err:
                    error = err
            raise error

    async def rewrap_message(self, message: dict, agent_id: Optional[str] = None) -> dict:
        """Re-encrypt a wrapped message under the agent's current key.

        Lets the host migrate stored transcripts before retired keys are purged.
        """
        if not is_wrapped(message):
            return message
        fields = message[VAULT_MARKER].get("fields") or DEFAULT_SENSITIVE_FIELDS
        plain = await self.unwrap_message(message, agent_id)
        return await self.wrap_message(plain, agent_id, fields)

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    async def rotate_agent_key(self, agent_id: str) -> dict:
        """Replace the agent key, re-encrypting its files before the old key goes.

        Returns:
            Stats dict with keys: total, rotated, errors, skipped.

        Raises:
            MissingKeyError: If the agent has no key.
        """
        async with self._operation():
            store = await self._get_store(agent_id, create=False)
            if store is None:
                raise MissingKeyError(agent_id)
            _, new_key = await self.registry.begin_rotation(agent_id)
            old_keys = [
                k for k in await self.registry.get_candidate_keys(agent_id)
                if k != new_key
            ]
            stats = await store.reencrypt(old_keys, new_key)
            if stats["errors"]:
                logger.warning(
                    "Key rotation for agent=%s left %d unreadable record(s)",
                    agent_id, stats["errors"],
                )
            await self.registry.commit_rotation(agent_id)
        logger.info("Key rotation complete for agent=%s: %s", agent_id, stats)
        return stats

    async def purge_retired_keys(self, agent_id: str) -> int:
        """Forget keys replaced by earlier rotations of ``agent_id``."""
        async with self._operation():
            return await self.registry.purge_retired_keys(agent_id)

    async def rotate_due_keys(self) -> dict[str, dict]:
        """Rotate every agent key older than ``key_rotation_days``."""
        if not self._started:
            raise NotStartedError("Vault service not started")
        results: dict[str, dict] = {}
        for agent_id in await self.registry.due_for_rotation():
            results[agent_id] = await self.rotate_agent_key(agent_id)
        return results

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def status(self) -> dict[str, Any]:
        """Aggregate vault state. Works whether or not the vault is started."""
        initialized = await asyncio.to_thread(self.config.metadata_file.exists)
        key_count = await self.registry.key_count()
        size = await asyncio.to_thread(dir_size, self.config.root)
        return {
            "initialized": initialized,
            "keyCount": key_count,
            "approxSizeBytes": size,
            "masterKeyPresent": self.master.has_key(),
            "activeStoreCount": len(self._stores),
        }

    async def metadata(self) -> Optional[VaultMetadata]:
        raw = await asyncio.to_thread(read_json, self.config.metadata_file)
        if raw is None:
            return None
        return VaultMetadata.model_validate(raw)
