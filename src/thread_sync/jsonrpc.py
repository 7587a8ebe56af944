"""Minimal JSON-RPC 2.0 transport for MCP tools."""

from __future__ import annotations

import json
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import anyio
import structlog
from pydantic import ValidationError

from . import __version__
from .errors import NotFoundError, ThreadSyncError

logger = structlog.get_logger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]

PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
# Application error codes, within the range JSON-RPC reserves for servers.
NOT_FOUND = -32004
OPERATION_FAILED = -32000


def _error_code(exc: Exception) -> int:
    if isinstance(exc, (ValidationError, ValueError)) and not isinstance(exc, ThreadSyncError):
        return INVALID_PARAMS
    if isinstance(exc, NotFoundError):
        return NOT_FOUND
    if isinstance(exc, ThreadSyncError):
        return OPERATION_FAILED
    return INTERNAL_ERROR


class MethodNotFound(Exception):
    pass


@dataclass(slots=True)
class JSONRPCServer:
    handlers: dict[str, Handler]
    schemas: dict[str, dict[str, Any]] | None = None
    descriptions: dict[str, str] = field(default_factory=dict)

    async def handle(self, message: dict[str, Any]) -> dict[str, Any]:
        """Dispatch one request; failures become JSON-RPC error responses."""
        msg_id = message.get("id")
        try:
            result = await self._dispatch(message)
        except MethodNotFound as e:
            return self._error(msg_id, METHOD_NOT_FOUND, str(e))
        except Exception as e:
            code = _error_code(e)
            if code == INTERNAL_ERROR:
                logger.exception("jsonrpc_handler_failed", method=message.get("method"))
            else:
                logger.warning("jsonrpc_request_failed", method=message.get("method"), error=str(e))
            return self._error(msg_id, code, str(e))
        return {"jsonrpc": "2.0", "id": msg_id, "result": result}

    async def _dispatch(self, message: dict[str, Any]) -> dict[str, Any]:
        if "method" not in message:
            raise ValueError("Invalid JSON-RPC request")
        method = message["method"]

        match method:
            case "initialize":
                return {
                    "protocolVersion": "2024-11-05",
                    "capabilities": {"tools": {}},
                    "serverInfo": {"name": "thread-sync", "version": __version__},
                }
            case "tools/list":
                return {"tools": self._tools()}
            case "tools/call":
                params = message.get("params", {})
                tool_name = params.get("name")
                if tool_name not in self.handlers:
                    raise MethodNotFound(f"Unknown tool: {tool_name}")
                result = await self.handlers[tool_name](params.get("arguments", {}))
                return {"content": [{"type": "text", "text": json.dumps(result, default=str)}]}

        handler = self.handlers.get(method)
        if handler is None:
            raise MethodNotFound(f"Unknown method: {method}")
        return await handler(message.get("params", {}))

    def _tools(self) -> list[dict[str, Any]]:
        tools = []
        for name in self.handlers:
            tool: dict[str, Any] = {
                "name": name,
                "description": self.descriptions.get(name, f"MCP tool: {name}"),
            }
            if self.schemas and name in self.schemas:
                tool["inputSchema"] = self.schemas[name]
            else:
                tool["inputSchema"] = {"type": "object", "properties": {}}
            tools.append(tool)
        return tools

    @staticmethod
    def _error(msg_id: Any, code: int, message: str) -> dict[str, Any]:
        return {"jsonrpc": "2.0", "id": msg_id, "error": {"code": code, "message": message}}

    def _write(self, response: dict[str, Any]) -> None:
        sys.stdout.write(json.dumps(response, default=str) + "\n")
        sys.stdout.flush()

    async def serve_stdio(self) -> None:
        while True:
            try:
                line = await anyio.to_thread.run_sync(sys.stdin.readline)
            except (EOFError, KeyboardInterrupt):
                break
            if not line:
                break
            line = line.strip()
            if not line:
                continue
            try:
                message = json.loads(line)
            except json.JSONDecodeError as e:
                self._write(self._error(None, PARSE_ERROR, f"Parse error: {e}"))
                continue
            if not isinstance(message, dict):
                self._write(self._error(None, INVALID_PARAMS, "Invalid JSON-RPC request"))
                continue
            response = await self.handle(message)
            if "id" in message:
                self._write(response)


__all__ = ["JSONRPCServer"]
