"""
Vault Crypto Core — Envelope encryption of arbitrary payloads.

Every call derives a fresh sub-key:
    PBKDF2-HMAC-SHA256(key, salt 16B, iterations) → AES-256-GCM(nonce 12B)

and returns an ``Envelope`` carrying ciphertext, nonce, salt and tag. A
non-default work factor is recorded in the envelope, so decryption never
depends on the current configuration.

Security Note:
    Never log plaintext, ciphertext or key material.
    Salt and nonce are random per call; collision probability negligible.
"""
import os
import logging

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .exceptions import IntegrityError
from .models import Envelope

logger = logging.getLogger("navigator.vault")

KEY_LENGTH = 32  # AES-256
SALT_SIZE = 16
NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # GCM tag
DEFAULT_ITERATIONS = 10_000


def _check_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
        raise ValueError(f"Vault keys must be exactly {KEY_LENGTH} bytes")


def derive_key(key: bytes, salt: bytes, iterations: int = DEFAULT_ITERATIONS) -> bytes:
    """Derive the per-envelope AES key from a principal/master key and salt.

    Args:
        key: 32-byte input key.
        salt: Random salt stored alongside the envelope.
        iterations: PBKDF2 work factor.

    Returns:
        32-byte derived key.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(bytes(key))


def generate_key() -> bytes:
    """Return 32 cryptographically secure random bytes."""
    return os.urandom(KEY_LENGTH)


def encrypt(plaintext: bytes, key: bytes, iterations: int = DEFAULT_ITERATIONS) -> Envelope:
    """Encrypt ``plaintext`` under ``key``.

    Args:
        plaintext: Data to encrypt.
        key: 32-byte key.
        iterations: PBKDF2 work factor used for the sub-key.

    Returns:
        A fresh Envelope.
    """
    _check_key(key)
    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    derived = derive_key(key, salt, iterations)
    ct = AESGCM(derived).encrypt(nonce, plaintext, None)
    return Envelope(
        ciphertext=ct[:-TAG_SIZE],
        nonce=nonce,
        salt=salt,
        tag=ct[-TAG_SIZE:],
        iterations=None if iterations == DEFAULT_ITERATIONS else iterations,
    )


def decrypt(envelope: Envelope, key: bytes, iterations: int = DEFAULT_ITERATIONS) -> bytes:
    """Decrypt an envelope produced by :func:`encrypt`.

    Args:
        envelope: Envelope to open.
        key: 32-byte key used at encryption time.
        iterations: PBKDF2 work factor for envelopes that do not record one.

    Returns:
        Decrypted plaintext bytes.

    Raises:
        IntegrityError: If the tag does not verify or the envelope is malformed.
    """
    _check_key(key)
    if len(envelope.nonce) != NONCE_SIZE:
        raise IntegrityError(
            f"envelope nonce must be {NONCE_SIZE} bytes, got {len(envelope.nonce)}"
        )
    if len(envelope.tag) != TAG_SIZE:
        raise IntegrityError(
            f"envelope tag must be {TAG_SIZE} bytes, got {len(envelope.tag)}"
        )
    if not envelope.salt:
        raise IntegrityError("envelope salt is empty")
    derived = derive_key(key, envelope.salt, envelope.iterations or iterations)
    try:
        return AESGCM(derived).decrypt(
            envelope.nonce, envelope.ciphertext + envelope.tag, None,
        )
    except InvalidTag as err:
        raise IntegrityError("envelope authentication failed") from err


def decrypt_unsalted(ciphertext: bytes, nonce: bytes, tag: bytes, key: bytes) -> bytes:
    """Open AES-256-GCM output sealed directly under ``key``, with no KDF.

    Transcripts written by the first plugin release use this shape.

    Raises:
        IntegrityError: If the tag does not verify.
    """
    _check_key(key)
    if len(nonce) != NONCE_SIZE or len(tag) != TAG_SIZE:
        raise IntegrityError("unsalted envelope has a malformed nonce or tag")
    try:
        return AESGCM(bytes(key)).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag as err:
        raise IntegrityError("envelope authentication failed") from err


def encrypt_text(text: str, key: bytes, iterations: int = DEFAULT_ITERATIONS) -> Envelope:
    """UTF-8 encode ``text`` and encrypt it."""
    return encrypt(text.encode("utf-8"), key, iterations)


def decrypt_text(envelope: Envelope, key: bytes, iterations: int = DEFAULT_ITERATIONS) -> str:
    """Decrypt an envelope holding UTF-8 text."""
    plaintext = decrypt(envelope, key, iterations)
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as err:
        raise IntegrityError("envelope payload is not valid UTF-8") from err


def envelope_from_dict(data: dict) -> Envelope:
    """Parse a persisted envelope mapping.

    Raises:
        IntegrityError: If fields are missing or not valid base64.
    """
    try:
        return Envelope.model_validate(data)
    except ValueError as err:
        # pydantic.ValidationError is a ValueError
        raise IntegrityError(f"malformed envelope: {err}") from err
