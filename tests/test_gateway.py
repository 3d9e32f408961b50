"""
Tests for VaultGateway.

Tests cover:
- Not-started responses
- Parameter validation
- Write/read through the RPC methods and the tools
"""
import pytest

from navigator_vault.gateway import NOT_FOUND, NOT_STARTED, TOOL_SCHEMAS, VaultGateway
from navigator_vault.service import VaultService


@pytest.fixture
def gateway(service):
    return VaultGateway(service)


class TestNotStarted:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["vault.status", "vault.readFile", "vault.writeFile"])
    async def test_without_service(self, method):
        ok, payload = await VaultGateway(None).call(method, {})
        assert ok is False
        assert payload == NOT_STARTED

    @pytest.mark.asyncio
    async def test_service_not_started(self, config, secret_store):
        gateway = VaultGateway(VaultService(config, store=secret_store))
        ok, payload = await gateway.call(
            "vault.readFile", {"agentId": "agentA", "filePath": "a.txt"},
        )
        assert ok is False
        assert payload == NOT_STARTED


class TestMethods:

    @pytest.mark.asyncio
    async def test_methods(self, gateway):
        assert gateway.methods == ["vault.status", "vault.readFile", "vault.writeFile"]

    @pytest.mark.asyncio
    async def test_unknown_method(self, gateway):
        ok, payload = await gateway.call("vault.explode", {})
        assert ok is False
        assert payload == {"error": "Unknown method: vault.explode"}

    @pytest.mark.asyncio
    async def test_missing_read_params(self, gateway):
        ok, payload = await gateway.call("vault.readFile", {"agentId": "agentA"})
        assert ok is False
        assert payload == {"error": "Missing required parameters: agentId, filePath"}

    @pytest.mark.asyncio
    async def test_missing_write_params(self, gateway):
        """Test an empty content string counts as missing."""
        ok, payload = await gateway.call(
            "vault.writeFile", {"agentId": "agentA", "filePath": "a.txt", "content": ""},
        )
        assert ok is False
        assert payload == {"error": "Missing required parameters: agentId, filePath, content"}

    @pytest.mark.asyncio
    async def test_write_then_read(self, gateway):
        ok, payload = await gateway.call(
            "vault.writeFile",
            {"agentId": "agentA", "filePath": "notes.md", "content": "secret notes"},
        )
        assert ok is True
        assert payload == {"success": True, "message": "File encrypted and stored: notes.md"}
        ok, payload = await gateway.call(
            "vault.readFile", {"agentId": "agentA", "filePath": "notes.md"},
        )
        assert ok is True
        assert payload == {"content": "secret notes"}

    @pytest.mark.asyncio
    async def test_read_not_found(self, gateway):
        ok, payload = await gateway.call(
            "vault.readFile", {"agentId": "agentA", "filePath": "nope.md"},
        )
        assert ok is False
        assert payload == NOT_FOUND

    @pytest.mark.asyncio
    async def test_invalid_agent_id(self, gateway):
        ok, payload = await gateway.call(
            "vault.writeFile", {"agentId": "../etc", "filePath": "a", "content": "x"},
        )
        assert ok is False
        assert "path separators" in payload["error"]

    @pytest.mark.asyncio
    async def test_status(self, gateway):
        await gateway.call(
            "vault.writeFile", {"agentId": "agentA", "filePath": "a", "content": "x"},
        )
        ok, payload = await gateway.call("vault.status")
        assert ok is True
        assert payload["initialized"] is True
        assert payload["keyCount"] == 1
        assert payload["masterKeyPresent"] is True
        assert payload["activeStoreCount"] == 1
        assert payload["approxSizeBytes"] > 0


class TestTools:

    @pytest.mark.asyncio
    async def test_tools_default_agent(self, gateway, service):
        """Test tools without an agent id use the default agent."""
        result = await gateway.vault_write("todo.txt", "buy milk")
        assert result["success"] is True
        assert await gateway.vault_read("todo.txt") == {"content": "buy milk"}
        assert await service.decrypt_and_read("default", "todo.txt") == b"buy milk"

    @pytest.mark.asyncio
    async def test_tool_agents_are_isolated(self, gateway):
        await gateway.vault_write("todo.txt", "buy milk", agent_id="agentA")
        assert await gateway.vault_read("todo.txt", agent_id="agentB") == NOT_FOUND

    def test_tool_schemas(self):
        assert TOOL_SCHEMAS["vault_read"]["inputSchema"]["required"] == ["file_path"]
        assert TOOL_SCHEMAS["vault_write"]["inputSchema"]["required"] == ["file_path", "content"]
