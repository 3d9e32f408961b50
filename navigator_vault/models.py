"""
Vault records — the structures persisted to the vault directory.

On disk every record uses the plugin's camelCase field names and every
byte field is stored as base64 text, e.g. an envelope::

    {"data": "...", "iv": "...", "salt": "...", "tag": "..."}

An envelope derived with a non-default PBKDF2 work factor also carries
``iterations``; envelopes without it were derived with 10000.
"""
import base64
import binascii
import time
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

VAULT_FORMAT_VERSION = "1.0.0"


def now_ms() -> int:
    """Current time as integer milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


class Envelope(BaseModel):
    """Self-contained AEAD output: ciphertext, nonce, salt and GCM tag."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    ciphertext: bytes = Field(alias="data")
    nonce: bytes = Field(alias="iv")
    salt: bytes
    tag: bytes
    iterations: Optional[int] = Field(default=None, ge=1)

    @field_validator("ciphertext", "nonce", "salt", "tag", mode="before")
    @classmethod
    def decode_b64(cls, v: Any) -> Any:
        """Accept base64 text as persisted on disk."""
        if isinstance(v, str):
            try:
                return base64.b64decode(v.encode("ascii"), validate=True)
            except (binascii.Error, UnicodeEncodeError) as err:
                raise ValueError(f"invalid base64 field: {err}") from err
        return v

    @field_serializer("ciphertext", "nonce", "salt", "tag")
    def encode_b64(self, v: bytes) -> str:
        return base64.b64encode(v).decode("ascii")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class AgentKeyRecord(_Record):
    """A principal key, wrapped under the master key."""

    agent_id: str = Field(alias="agentId")
    encrypted_key: Envelope = Field(alias="encryptedKey")
    created_at: int = Field(alias="createdAt")
    last_rotated: int = Field(alias="lastRotated")
    # only set while a rotation is in progress
    pending_key: Optional[Envelope] = Field(default=None, alias="pendingKey")
    # keys replaced by rotation, newest first; wrapped transcripts may still need them
    retired_keys: list[Envelope] = Field(default_factory=list, alias="retiredKeys")


class FileRecord(_Record):
    """One named payload inside a principal's store."""

    file_path: str = Field(alias="filePath")
    encrypted_data: Envelope = Field(alias="encryptedData")
    original_path: str = Field(alias="originalPath")
    created_at: int = Field(alias="createdAt")
    updated_at: int = Field(alias="updatedAt")


class VaultMetadata(_Record):
    """Initialization marker, written once."""

    initialized_at: int = Field(alias="initializedAt")
    version: str = VAULT_FORMAT_VERSION
