"""
Agent File Store — one agent's encrypted file table.

Records live in ``<root>/agent-<agentId>/files.json``, each payload an
Envelope under the agent key. Paths are matched exactly (case-sensitive).
"""
import logging
from typing import Optional

from .config import VaultConfig
from .crypto import decrypt, encrypt
from .exceptions import IntegrityError, MissingKeyError
from .models import FileRecord, now_ms
from .registry import AgentKeyRegistry
from .storage import JsonCollection

logger = logging.getLogger("navigator.vault")


def validate_agent_id(agent_id: str) -> None:
    """Reject agent ids that cannot safely name a directory.

    Raises:
        ValueError: If the id is empty, too long or contains path parts.
    """
    if not agent_id or not isinstance(agent_id, str):
        raise ValueError("Agent id cannot be empty")
    if len(agent_id) > 128:
        raise ValueError("Agent id cannot exceed 128 characters")
    if "/" in agent_id or "\\" in agent_id or "\x00" in agent_id:
        raise ValueError("Agent id cannot contain path separators")
    if agent_id in (".", ".."):
        raise ValueError("Agent id cannot be a relative path component")


def _find(records: list[dict], file_path: str) -> int:
    for idx, record in enumerate(records):
        if record.get("filePath") == file_path:
            return idx
    return -1


class AgentFileStore:
    """Encrypted named payloads for a single agent."""

    def __init__(self, agent_id: str, config: VaultConfig, registry: AgentKeyRegistry):
        validate_agent_id(agent_id)
        self.agent_id = agent_id
        self._registry = registry
        self._iterations = config.kdf_iterations
        # created with the first write
        self.agent_dir = config.agent_dir(agent_id)
        self.collection = JsonCollection(
            self.agent_dir / "files.json", strict=config.strict_collections,
        )

    def __repr__(self) -> str:
        return f"<AgentFileStore agent={self.agent_id}>"

    def _parse(self, raw: dict) -> Optional[FileRecord]:
        try:
            return FileRecord.model_validate(raw)
        except ValueError as err:
            logger.warning(
                "Malformed file record for agent=%s: %s", self.agent_id, err,
            )
            return None

    async def store_file(self, file_path: str, content: bytes) -> None:
        """Encrypt ``content`` and upsert it under ``file_path``.

        Raises:
            MissingKeyError: If the agent has no key.
        """
        if not file_path:
            raise ValueError("File path cannot be empty")
        async with self.collection.lock:
            # newest key first, so writes during a rotation land on the pending key
            keys = await self._registry.get_candidate_keys(self.agent_id)
            if not keys:
                raise MissingKeyError(self.agent_id)
            envelope = encrypt(content, keys[0], self._iterations)
            records = await self.collection.load()
            now = now_ms()
            idx = _find(records, file_path)
            created = now
            if idx != -1:
                existing = records[idx].get("createdAt")
                if isinstance(existing, int):
                    created = existing
            record = FileRecord(
                file_path=file_path,
                encrypted_data=envelope,
                original_path=file_path,
                created_at=created,
                updated_at=now,
            ).to_dict()
            if idx == -1:
                records.append(record)
            else:
                records[idx] = record
            await self.collection.save(records)
        logger.debug("Vault store: agent=%s path=%s", self.agent_id, file_path)

    async def read_file(self, file_path: str) -> Optional[bytes]:
        """Return decrypted content for ``file_path``, or None.

        None covers an unknown path, a missing key and ciphertext that does
        not authenticate under any of the agent's keys.
        """
        keys = await self._registry.get_candidate_keys(self.agent_id)
        if not keys:
            return None
        records = await self.collection.load()
        idx = _find(records, file_path)
        if idx == -1:
            return None
        record = self._parse(records[idx])
        if record is None:
            return None
        for key in keys:
            try:
                return decrypt(record.encrypted_data, key)
            except IntegrityError:
                continue
        logger.warning(
            "Vault read failed integrity check: agent=%s path=%s",
            self.agent_id, file_path,
        )
        return None

    async def list_files(self) -> list[str]:
        records = await self.collection.load()
        return [r["filePath"] for r in records if isinstance(r.get("filePath"), str)]

    async def delete_file(self, file_path: str) -> bool:
        """Remove the record for ``file_path``. Returns False if absent."""
        async with self.collection.lock:
            records = await self.collection.load()
            idx = _find(records, file_path)
            if idx == -1:
                return False
            del records[idx]
            await self.collection.save(records)
        logger.debug("Vault delete: agent=%s path=%s", self.agent_id, file_path)
        return True

    async def reencrypt(self, old_keys: list[bytes], new_key: bytes) -> dict:
        """Re-encrypt every record from any of ``old_keys`` to ``new_key``.

        Records already readable under ``new_key`` are skipped, so an
        interrupted run can be repeated.

        Returns:
            Stats dict with keys: total, rotated, errors, skipped.
        """
        stats = {"total": 0, "rotated": 0, "errors": 0, "skipped": 0}
        async with self.collection.lock:
            records = await self.collection.load()
            for idx, raw in enumerate(records):
                stats["total"] += 1
                record = self._parse(raw)
                if record is None:
                    stats["errors"] += 1
                    continue
                try:
                    decrypt(record.encrypted_data, new_key)
                    stats["skipped"] += 1
                    continue
                except IntegrityError:
                    pass
                plaintext = None
                for key in old_keys:
                    try:
                        plaintext = decrypt(record.encrypted_data, key)
                        break
                    except IntegrityError:
                        continue
                if plaintext is None:
                    logger.error(
                        "Error rotating file agent=%s path=%s: no key authenticates it",
                        self.agent_id, record.file_path,
                    )
                    stats["errors"] += 1
                    continue
                raw["encryptedData"] = encrypt(
                    plaintext, new_key, self._iterations,
                ).to_dict()
                records[idx] = raw
                stats["rotated"] += 1
            if stats["rotated"]:
                await self.collection.save(records)
        return stats
