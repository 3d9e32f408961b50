"""
Master Key Provider — the single root key of a vault instance.

The key is read from (or generated into) a SecretStore and then held only
in process memory until ``close()``.

Security Note:
    The key is kept in a bytearray and overwritten on close. Python may
    still hold transient copies (e.g. derived ``bytes`` passed to the
    cipher); this narrows the exposure window, it does not eliminate it.
"""
import base64
import binascii
import asyncio
import secrets
import logging
from enum import Enum
from typing import Optional

from .crypto import KEY_LENGTH
from .exceptions import KeyStoreError, NotStartedError, VaultError
from .keystore import SecretStore

logger = logging.getLogger("navigator.vault")


class KeyState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADED = "loaded"
    GENERATED = "generated"
    CLOSED = "closed"


class MasterKey:
    """32-byte key material that can be scrubbed."""

    __slots__ = ("_buf",)

    def __init__(self, raw: bytes):
        if len(raw) != KEY_LENGTH:
            raise ValueError(f"Master key must be {KEY_LENGTH} bytes")
        self._buf = bytearray(raw)

    def __bytes__(self) -> bytes:
        if not self._buf:
            raise VaultError("Master key has been wiped")
        return bytes(self._buf)

    def __repr__(self) -> str:
        # never expose key bytes
        return f"<MasterKey wiped={not self._buf}>"

    def wipe(self) -> None:
        for i in range(len(self._buf)):
            self._buf[i] = 0
        self._buf = bytearray()


class MasterKeyProvider:
    """Acquire, hold and discard the vault's master key."""

    def __init__(self, store: SecretStore, service: str, account: str):
        self._store = store
        self._service = service
        self._account = account
        self._key: Optional[MasterKey] = None
        self._state = KeyState.UNINITIALIZED
        self._lock = asyncio.Lock()

    @property
    def state(self) -> KeyState:
        return self._state

    def has_key(self) -> bool:
        return self._key is not None

    @property
    def key(self) -> bytes:
        """Raw key bytes for the cipher.

        Raises:
            NotStartedError: If the provider is not active.
        """
        if self._key is None:
            raise NotStartedError("Master key not available")
        return bytes(self._key)

    def _load(self) -> Optional[bytes]:
        try:
            stored = self._store.get(self._service, self._account)
        except Exception as err:  # backend failures read as "no key"
            logger.warning(
                "Secret store read failed for service=%s: %s",
                self._service, err,
            )
            return None
        if not stored:
            return None
        try:
            raw = base64.b64decode(stored, validate=True)
        except (binascii.Error, ValueError):
            logger.warning(
                "Stored master key for service=%s is not valid base64; ignoring",
                self._service,
            )
            return None
        if len(raw) != KEY_LENGTH:
            logger.warning(
                "Stored master key for service=%s has %d bytes, expected %d; ignoring",
                self._service, len(raw), KEY_LENGTH,
            )
            return None
        return raw

    def _generate(self) -> bytes:
        raw = secrets.token_bytes(KEY_LENGTH)
        encoded = base64.b64encode(raw).decode("ascii")
        try:
            stored = self._store.set(self._service, self._account, encoded)
        except Exception as err:
            raise KeyStoreError(
                f"Failed to store master key in secret store: {err}"
            ) from err
        if not stored:
            raise KeyStoreError(
                f"Failed to store master key in secret store "
                f"(service={self._service}, account={self._account})"
            )
        return raw

    async def initialize(self) -> None:
        """Load the master key, generating and persisting one if absent.

        Idempotent while active.

        Raises:
            KeyStoreError: If a new key cannot be persisted.
            VaultError: If the provider was already closed.
        """
        async with self._lock:
            if self._state is KeyState.CLOSED:
                raise VaultError("Master key provider is closed")
            if self._key is not None:
                return
            raw = await asyncio.to_thread(self._load)
            if raw is not None:
                self._key = MasterKey(raw)
                self._state = KeyState.LOADED
                logger.info("Master key loaded from secret store service=%s", self._service)
                return
            raw = await asyncio.to_thread(self._generate)
            self._key = MasterKey(raw)
            self._state = KeyState.GENERATED
            logger.info("Generated new master key for service=%s", self._service)

    def close(self) -> None:
        """Discard the in-memory key. The persisted secret is left untouched."""
        if self._key is not None:
            self._key.wipe()
            self._key = None
        self._state = KeyState.CLOSED
