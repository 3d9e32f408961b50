"""
Agent Key Registry — per-agent keys wrapped under the master key.

All records live in ``keys.json``. Each agent key is 32 random bytes,
stored only as an Envelope (of its base64 text) under the master key.

Rotation is a two-step primitive so no key is dropped while ciphertext
still depends on it:

1. ``begin_rotation`` parks a new key in ``pendingKey``;
2. the caller re-encrypts the agent's data;
3. ``commit_rotation`` promotes the pending key, stamps ``lastRotated``
   and moves the old key to ``retiredKeys``.

Retired keys stay readable for data the vault cannot migrate itself
(wrapped transcripts held by the host) until ``purge_retired_keys``.

Security Note:
    Never log key material. Only log agent ids.
"""
import base64
import binascii
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from .config import VaultConfig
from .crypto import KEY_LENGTH, decrypt_text, encrypt_text, envelope_from_dict, generate_key
from .exceptions import IntegrityError, VaultError
from .master_key import MasterKeyProvider
from .models import AgentKeyRecord, Envelope, now_ms
from .storage import JsonCollection

logger = logging.getLogger("navigator.vault")


def _find(records: list[dict], agent_id: str) -> int:
    for idx, record in enumerate(records):
        if record.get("agentId") == agent_id:
            return idx
    return -1


class AgentKeyRegistry:
    """Maps agent ids to their symmetric keys."""

    def __init__(self, config: VaultConfig, master: MasterKeyProvider):
        self._config = config
        self._master = master
        self._iterations = config.kdf_iterations
        self.collection = JsonCollection(
            config.keys_file, strict=config.strict_collections,
        )

    # ------------------------------------------------------------------
    # Wrapping helpers
    # ------------------------------------------------------------------

    def _wrap(self, key: bytes) -> Envelope:
        encoded = base64.b64encode(key).decode("ascii")
        return encrypt_text(encoded, self._master.key, self._iterations)

    def _unwrap(self, envelope: Envelope) -> bytes:
        encoded = decrypt_text(envelope, self._master.key)
        try:
            key = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as err:
            raise IntegrityError("wrapped agent key is not valid base64") from err
        if len(key) != KEY_LENGTH:
            raise IntegrityError(
                f"wrapped agent key has {len(key)} bytes, expected {KEY_LENGTH}"
            )
        return key

    def _parse(self, raw: dict) -> AgentKeyRecord:
        try:
            return AgentKeyRecord.model_validate(raw)
        except ValueError as err:
            raise IntegrityError(f"malformed agent key record: {err}") from err

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_agent_key(self, agent_id: str) -> Optional[bytes]:
        """Return the decrypted key for ``agent_id`` or None.

        A missing record and an undecryptable record both return None.
        """
        records = await self.collection.load()
        idx = _find(records, agent_id)
        if idx == -1:
            return None
        try:
            return self._unwrap(self._parse(records[idx]).encrypted_key)
        except IntegrityError as err:
            logger.warning("Agent key for agent=%s is unavailable: %s", agent_id, err)
            return None

    async def get_candidate_keys(self, agent_id: str) -> list[bytes]:
        """Return every usable key of ``agent_id``, newest first.

        Order: pending (during a rotation), current, retired. The first
        entry is the key new data must be written with.
        """
        records = await self.collection.load()
        idx = _find(records, agent_id)
        if idx == -1:
            return []
        keys: list[bytes] = []
        try:
            record = self._parse(records[idx])
        except IntegrityError as err:
            logger.warning("Agent key record for agent=%s is malformed: %s", agent_id, err)
            return keys
        for envelope in (record.pending_key, record.encrypted_key, *record.retired_keys):
            if envelope is None:
                continue
            try:
                keys.append(self._unwrap(envelope))
            except IntegrityError as err:
                logger.warning("Agent key for agent=%s is unavailable: %s", agent_id, err)
        return keys

    async def key_count(self) -> int:
        return len(await self.collection.load())

    async def list_agents(self) -> list[str]:
        records = await self.collection.load()
        return [r["agentId"] for r in records if isinstance(r.get("agentId"), str)]

    async def due_for_rotation(self, now: Optional[datetime] = None) -> list[str]:
        """Agent ids whose key is older than ``key_rotation_days``."""
        days = self._config.key_rotation_days
        if not days:
            return []
        now = now or datetime.now(timezone.utc)
        cutoff = int((now - timedelta(days=days)).timestamp() * 1000)
        due = []
        for raw in await self.collection.load():
            last = raw.get("lastRotated")
            if isinstance(last, int) and last <= cutoff:
                due.append(raw.get("agentId"))
        return due

    # ------------------------------------------------------------------
    # Mutations (serialized by the collection lock)
    # ------------------------------------------------------------------

    async def generate_agent_key(self, agent_id: str) -> bytes:
        """Return the agent's key, creating and persisting it if absent.

        Raises:
            IntegrityError: If a record exists but cannot be decrypted;
                it is never silently replaced.
        """
        async with self.collection.lock:
            records = await self.collection.load()
            idx = _find(records, agent_id)
            if idx != -1:
                return self._unwrap(self._parse(records[idx]).encrypted_key)
            key = generate_key()
            now = now_ms()
            record = AgentKeyRecord(
                agent_id=agent_id,
                encrypted_key=self._wrap(key),
                created_at=now,
                last_rotated=now,
            )
            data = record.to_dict()
            # keep the original record shape until a rotation happens
            data.pop("pendingKey", None)
            data.pop("retiredKeys", None)
            records.append(data)
            await self.collection.save(records)
        logger.info("Generated agent key for agent=%s", agent_id)
        return key

    async def begin_rotation(self, agent_id: str) -> tuple[bytes, bytes]:
        """Park a new key for ``agent_id``; the current key stays authoritative.

        Resuming an interrupted rotation returns the already pending key.

        Returns:
            (current_key, new_key)

        Raises:
            VaultError: If the agent has no key.
            IntegrityError: If the current key cannot be decrypted.
        """
        async with self.collection.lock:
            records = await self.collection.load()
            idx = _find(records, agent_id)
            if idx == -1:
                raise VaultError(f"No encryption key found for agent {agent_id}")
            record = self._parse(records[idx])
            current = self._unwrap(record.encrypted_key)
            if record.pending_key is not None:
                return current, self._unwrap(record.pending_key)
            new_key = generate_key()
            records[idx]["pendingKey"] = self._wrap(new_key).to_dict()
            await self.collection.save(records)
        logger.info("Key rotation started for agent=%s", agent_id)
        return current, new_key

    async def commit_rotation(self, agent_id: str) -> None:
        """Promote the pending key of ``agent_id`` to current."""
        async with self.collection.lock:
            records = await self.collection.load()
            idx = _find(records, agent_id)
            if idx == -1:
                raise VaultError(f"No encryption key found for agent {agent_id}")
            pending = records[idx].get("pendingKey")
            if not pending:
                raise VaultError(f"No key rotation in progress for agent {agent_id}")
            # validates before promoting
            self._unwrap(envelope_from_dict(pending))
            retired = records[idx].get("retiredKeys") or []
            retired.insert(0, records[idx]["encryptedKey"])
            records[idx]["retiredKeys"] = retired
            records[idx]["encryptedKey"] = pending
            records[idx]["lastRotated"] = now_ms()
            records[idx].pop("pendingKey", None)
            await self.collection.save(records)
        logger.info("Key rotation committed for agent=%s", agent_id)

    async def purge_retired_keys(self, agent_id: str) -> int:
        """Drop the retired keys of ``agent_id``. Returns how many were dropped.

        Anything still encrypted under them becomes unreadable.
        """
        async with self.collection.lock:
            records = await self.collection.load()
            idx = _find(records, agent_id)
            if idx == -1:
                return 0
            retired = records[idx].pop("retiredKeys", None) or []
            if retired:
                await self.collection.save(records)
        if retired:
            logger.info("Purged %d retired key(s) for agent=%s", len(retired), agent_id)
        return len(retired)
