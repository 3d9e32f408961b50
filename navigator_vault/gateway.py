"""
Vault Gateway — host-facing method and tool handlers.

Transport-agnostic: the host RPC layer calls ``call(method, params)`` and
relays the ``(ok, payload)`` pair; tool runtimes call ``vault_read`` and
``vault_write`` and relay the returned dict.
"""
import logging
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ValidationError

from .exceptions import NotStartedError, VaultError
from .service import DEFAULT_AGENT, VaultService

logger = logging.getLogger("navigator.vault")

Response = tuple[bool, dict]

NOT_STARTED = {"error": "Vault service not started"}
NOT_FOUND = {"error": "File not found in vault"}


class ReadFileParams(BaseModel):
    agentId: str
    filePath: str


class WriteFileParams(BaseModel):
    agentId: str
    filePath: str
    content: str


def _missing(model: type[BaseModel]) -> dict:
    names = ", ".join(model.model_fields)
    return {"error": f"Missing required parameters: {names}"}


def _parse(model: type[BaseModel], params: Optional[dict]) -> Optional[BaseModel]:
    """Validate params; empty strings count as missing."""
    params = params or {}
    if any(not params.get(name) for name in model.model_fields):
        return None
    try:
        return model.model_validate(params)
    except ValidationError:
        return None


class VaultGateway:
    """Dispatches host requests to a VaultService."""

    def __init__(self, service: Optional[VaultService]):
        self.service = service
        self._methods: dict[str, Callable[[dict], Awaitable[Response]]] = {
            "vault.status": self._status,
            "vault.readFile": self._read_file,
            "vault.writeFile": self._write_file,
        }

    @property
    def methods(self) -> list[str]:
        return list(self._methods)

    async def call(self, method: str, params: Optional[dict] = None) -> Response:
        handler = self._methods.get(method)
        if handler is None:
            return False, {"error": f"Unknown method: {method}"}
        try:
            return await handler(params or {})
        except NotStartedError:
            return False, NOT_STARTED
        except (VaultError, ValueError) as err:
            logger.error("Gateway method %s failed: %s", method, err)
            return False, {"error": str(err)}

    async def _status(self, params: dict) -> Response:
        if self.service is None:
            return False, NOT_STARTED
        return True, await self.service.status()

    async def _read_file(self, params: dict) -> Response:
        if self.service is None:
            return False, NOT_STARTED
        args = _parse(ReadFileParams, params)
        if args is None:
            return False, _missing(ReadFileParams)
        content = await self.service.decrypt_and_read(args.agentId, args.filePath)
        if content is None:
            return False, NOT_FOUND
        return True, {"content": content.decode("utf-8", errors="replace")}

    async def _write_file(self, params: dict) -> Response:
        if self.service is None:
            return False, NOT_STARTED
        args = _parse(WriteFileParams, params)
        if args is None:
            return False, _missing(WriteFileParams)
        await self.service.encrypt_and_store(args.agentId, args.filePath, args.content)
        return True, {
            "success": True,
            "message": f"File encrypted and stored: {args.filePath}",
        }

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def vault_read(self, file_path: str, agent_id: Optional[str] = None) -> dict[str, Any]:
        """Tool: read an encrypted file from the vault."""
        _, payload = await self.call(
            "vault.readFile",
            {"agentId": agent_id or DEFAULT_AGENT, "filePath": file_path},
        )
        return payload

    async def vault_write(
        self, file_path: str, content: str, agent_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Tool: encrypt and store a file in the vault."""
        _, payload = await self.call(
            "vault.writeFile",
            {
                "agentId": agent_id or DEFAULT_AGENT,
                "filePath": file_path,
                "content": content,
            },
        )
        return payload


TOOL_SCHEMAS = {
    "vault_read": {
        "description": "Read encrypted file from vault",
        "inputSchema": {
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "Path of the file to read from vault"},
                "agent_id": {"type": "string", "description": "Agent ID (defaults to current agent)"},
            },
            "required": ["file_path"],
        },
    },
    "vault_write": {
        "description": "Write encrypted file to vault",
        "inputSchema": {
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "Path of the file to store in vault"},
                "content": {"type": "string", "description": "Content to encrypt and store"},
                "agent_id": {"type": "string", "description": "Agent ID (defaults to current agent)"},
            },
            "required": ["file_path", "content"],
        },
    },
}
