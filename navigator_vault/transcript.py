"""
Transcript wrapping — transparent encryption of persisted messages.

A wrapped message keeps every non-sensitive key as-is, replaces each
sensitive field with ``__VAULT_ENCRYPTED__`` and carries the envelope in
``_vault``::

    {"role": "user", "content": "__VAULT_ENCRYPTED__",
     "_vault": {"v": 1, "fields": ["content"], "data": ..., "iv": ...,
                "salt": ..., "tag": ...}}

Wrapping an already wrapped message returns it unchanged.
"""
import base64
import binascii
import logging
from typing import Any, Iterable

import orjson

from .crypto import (
    DEFAULT_ITERATIONS,
    decrypt,
    decrypt_unsalted,
    encrypt,
    envelope_from_dict,
)
from .exceptions import IntegrityError

logger = logging.getLogger("navigator.vault")

VAULT_MARKER = "_vault"
ENCRYPTED_PLACEHOLDER = "__VAULT_ENCRYPTED__"
WRAP_VERSION = 1
DEFAULT_SENSITIVE_FIELDS = ("content",)


def is_wrapped(message: Any) -> bool:
    return isinstance(message, dict) and isinstance(message.get(VAULT_MARKER), dict)


def wrap_message(
    message: dict,
    key: bytes,
    fields: Iterable[str] = DEFAULT_SENSITIVE_FIELDS,
    iterations: int = DEFAULT_ITERATIONS,
) -> dict:
    """Return a copy of ``message`` with its sensitive fields encrypted.

    Args:
        message: Message mapping as handed over by the host.
        key: 32-byte agent key.
        fields: Names of the sensitive fields.
        iterations: PBKDF2 work factor.

    Returns:
        The wrapped message; ``message`` itself when already wrapped.
    """
    if is_wrapped(message):
        return message
    present = [f for f in fields if f in message]
    payload = {f: message[f] for f in present}
    envelope = encrypt(orjson.dumps(payload), key, iterations)
    wrapped = dict(message)
    for f in present:
        wrapped[f] = ENCRYPTED_PLACEHOLDER
    wrapped[VAULT_MARKER] = {
        "v": WRAP_VERSION,
        "fields": present,
        **envelope.to_dict(),
    }
    return wrapped


def _open_legacy(meta: dict, key: bytes) -> bytes:
    try:
        ciphertext, nonce, tag = (
            base64.b64decode(meta[k], validate=True) for k in ("data", "iv", "tag")
        )
    except (KeyError, TypeError, binascii.Error, ValueError) as err:
        raise IntegrityError(f"malformed unsalted envelope: {err}") from err
    return decrypt_unsalted(ciphertext, nonce, tag, key)


def unwrap_message(
    message: dict,
    key: bytes,
    iterations: int = DEFAULT_ITERATIONS,
) -> dict:
    """Reverse :func:`wrap_message`.

    Messages from the first plugin release carry no ``salt`` and no
    ``fields``: the whole message was sealed directly under the agent key,
    so the decrypted payload replaces the message entirely.

    Raises:
        IntegrityError: If the envelope does not authenticate or is malformed.
    """
    if not is_wrapped(message):
        return message
    meta = message[VAULT_MARKER]
    if meta.get("v") != WRAP_VERSION:
        raise IntegrityError(f"Unsupported vault wrap version: {meta.get('v')!r}")
    legacy = "salt" not in meta and "fields" not in meta
    if legacy:
        plaintext = _open_legacy(meta, key)
    else:
        envelope = envelope_from_dict(
            {k: meta[k] for k in ("data", "iv", "salt", "tag", "iterations") if k in meta}
        )
        plaintext = decrypt(envelope, key, iterations)
    try:
        payload = orjson.loads(plaintext)
    except orjson.JSONDecodeError as err:
        raise IntegrityError("wrapped payload is not valid JSON") from err
    if not isinstance(payload, dict):
        raise IntegrityError("wrapped payload must be an object")
    if legacy:
        return payload
    restored = {k: v for k, v in message.items() if k != VAULT_MARKER}
    restored.update(payload)
    return restored
