"""Tests for transparent message wrapping."""
import base64
import os

import orjson
import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from navigator_vault.crypto import generate_key
from navigator_vault.exceptions import IntegrityError, MissingKeyError
from navigator_vault.transcript import (
    ENCRYPTED_PLACEHOLDER,
    VAULT_MARKER,
    is_wrapped,
    unwrap_message,
    wrap_message,
)

ITER = 1000


@pytest.fixture
def message():
    return {
        "role": "assistant",
        "content": [{"type": "text", "text": "the launch code is 0000"}],
        "timestamp": 1700000000000,
    }


class TestWrapMessage:

    def test_wrap_hides_content_keeps_metadata(self, message):
        key = generate_key()
        wrapped = wrap_message(message, key, iterations=ITER)
        assert wrapped["content"] == ENCRYPTED_PLACEHOLDER
        assert wrapped["role"] == "assistant"
        assert wrapped["timestamp"] == 1700000000000
        meta = wrapped[VAULT_MARKER]
        assert meta["v"] == 1
        assert meta["fields"] == ["content"]
        assert {"data", "iv", "salt", "tag"} <= set(meta)
        assert "launch code" not in str(wrapped)

    def test_wrap_does_not_mutate_input(self, message):
        snapshot = dict(message)
        wrap_message(message, generate_key(), iterations=ITER)
        assert message == snapshot

    def test_wrap_is_idempotent(self, message):
        """Test an already wrapped message passes through unchanged."""
        key = generate_key()
        wrapped = wrap_message(message, key, iterations=ITER)
        assert wrap_message(wrapped, key, iterations=ITER) is wrapped
        assert wrap_message(wrapped, generate_key(), iterations=ITER) is wrapped

    def test_unwrap_restores(self, message):
        key = generate_key()
        wrapped = wrap_message(message, key, iterations=ITER)
        assert unwrap_message(wrapped, key, iterations=ITER) == message

    def test_unwrap_plain_message_passthrough(self, message):
        assert unwrap_message(message, generate_key(), iterations=ITER) is message

    def test_custom_fields(self, message):
        key = generate_key()
        message["tool_input"] = {"password": "hunter2"}
        wrapped = wrap_message(message, key, fields=("content", "tool_input"), iterations=ITER)
        assert wrapped["tool_input"] == ENCRYPTED_PLACEHOLDER
        assert unwrap_message(wrapped, key, iterations=ITER) == message

    def test_absent_fields_are_not_invented(self):
        key = generate_key()
        wrapped = wrap_message({"role": "system"}, key, iterations=ITER)
        assert "content" not in wrapped
        assert is_wrapped(wrapped)
        assert unwrap_message(wrapped, key, iterations=ITER) == {"role": "system"}

    def test_tampered_envelope(self, message):
        key = generate_key()
        wrapped = wrap_message(message, key, iterations=ITER)
        wrapped[VAULT_MARKER] = {**wrapped[VAULT_MARKER], "tag": "AAAAAAAAAAAAAAAAAAAAAA=="}
        with pytest.raises(IntegrityError):
            unwrap_message(wrapped, key, iterations=ITER)

    def test_wrong_key(self, message):
        wrapped = wrap_message(message, generate_key(), iterations=ITER)
        with pytest.raises(IntegrityError):
            unwrap_message(wrapped, generate_key(), iterations=ITER)

    def test_unknown_version(self, message):
        key = generate_key()
        wrapped = wrap_message(message, key, iterations=ITER)
        wrapped[VAULT_MARKER] = {**wrapped[VAULT_MARKER], "v": 2}
        with pytest.raises(IntegrityError):
            unwrap_message(wrapped, key, iterations=ITER)


def _unsalted(message, key):
    """Seal the whole message directly under the agent key, no salt or field list."""
    nonce = os.urandom(12)
    sealed = AESGCM(key).encrypt(nonce, orjson.dumps(message), None)
    return {
        **message,
        "content": ENCRYPTED_PLACEHOLDER,
        VAULT_MARKER: {
            "v": 1,
            "data": base64.b64encode(sealed[:-16]).decode(),
            "iv": base64.b64encode(nonce).decode(),
            "tag": base64.b64encode(sealed[-16:]).decode(),
        },
    }


class TestUnsaltedMessages:

    def test_unwrap_unsalted(self, message):
        key = generate_key()
        assert unwrap_message(_unsalted(message, key), key) == message

    def test_unsalted_wrong_key(self, message):
        with pytest.raises(IntegrityError):
            unwrap_message(_unsalted(message, generate_key()), generate_key())

    def test_unsalted_missing_tag(self, message):
        key = generate_key()
        wrapped = _unsalted(message, key)
        del wrapped[VAULT_MARKER]["tag"]
        with pytest.raises(IntegrityError):
            unwrap_message(wrapped, key)

    @pytest.mark.asyncio
    async def test_service_rewraps_unsalted(self, service, message):
        """Test an unsalted transcript migrates to the salted form."""
        key = await service.registry.generate_agent_key("agentA")
        legacy = _unsalted(message, key)
        assert await service.unwrap_message(legacy, "agentA") == message
        rewrapped = await service.rewrap_message(legacy, "agentA")
        assert rewrapped[VAULT_MARKER]["fields"] == ["content"]
        assert "salt" in rewrapped[VAULT_MARKER]
        assert await service.unwrap_message(rewrapped, "agentA") == message

class TestServiceWrapping:

    @pytest.mark.asyncio
    async def test_service_round_trip(self, service, message):
        wrapped = await service.wrap_message(message, "agentA")
        assert await service.wrap_message(wrapped, "agentA") is wrapped
        assert await service.unwrap_message(wrapped, "agentA") == message

    @pytest.mark.asyncio
    async def test_default_agent(self, service, message):
        """Test events without an agent id use the default agent key."""
        wrapped = await service.wrap_message(message)
        assert "default" in await service.registry.list_agents()
        assert await service.unwrap_message(wrapped) == message

    @pytest.mark.asyncio
    async def test_other_agent_cannot_unwrap(self, service, message):
        wrapped = await service.wrap_message(message, "agentA")
        await service.registry.generate_agent_key("agentB")
        with pytest.raises(IntegrityError):
            await service.unwrap_message(wrapped, "agentB")

    @pytest.mark.asyncio
    async def test_unwrap_unknown_agent(self, service, message):
        wrapped = await service.wrap_message(message, "agentA")
        with pytest.raises(MissingKeyError):
            await service.unwrap_message(wrapped, "ghost")

    @pytest.mark.asyncio
    async def test_unwrap_after_rotation(self, service, message):
        """Test messages wrapped before a rotation stay readable via retired keys."""
        wrapped = await service.wrap_message(message, "agentA")
        await service.rotate_agent_key("agentA")
        assert await service.unwrap_message(wrapped, "agentA") == message

    @pytest.mark.asyncio
    async def test_rewrap_then_purge(self, service, message):
        """Test a rewrapped message survives purging retired keys; the old one does not."""
        wrapped = await service.wrap_message(message, "agentA")
        await service.rotate_agent_key("agentA")
        rewrapped = await service.rewrap_message(wrapped, "agentA")
        assert rewrapped[VAULT_MARKER]["tag"] != wrapped[VAULT_MARKER]["tag"]
        assert await service.purge_retired_keys("agentA") == 1
        assert await service.unwrap_message(rewrapped, "agentA") == message
        with pytest.raises(IntegrityError):
            await service.unwrap_message(wrapped, "agentA")

    @pytest.mark.asyncio
    async def test_rewrap_plain_passthrough(self, service, message):
        assert await service.rewrap_message(message, "agentA") is message
