"""MCP server speaking newline-delimited JSON-RPC over a pair of streams."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from mcp.types import (
    CallToolRequestParams,
    Implementation,
    InitializeRequestParams,
    InitializeResult,
    ListToolsResult,
    ServerCapabilities,
    ToolsCapability,
)
from pydantic import ValidationError

from netdiag_mcp import __version__
from netdiag_mcp.config import Config
from netdiag_mcp.process_manager.supervisor import CaptureSupervisor
from netdiag_mcp.tools import ToolSpec, call_tool, default_tools
from netdiag_mcp.wire import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    UNKNOWN_TOOL,
    RpcError,
    RpcRequest,
    decode_request,
    encode_response,
    error_response,
    result_response,
)

log = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "netdiag-mcp"


class McpServer:
    """Sequential request loop: one line in, one response out."""

    def __init__(
        self,
        supervisor: CaptureSupervisor,
        tools: dict[str, ToolSpec],
        *,
        max_line_bytes: int = 1024 * 1024,
    ) -> None:
        self.supervisor = supervisor
        self.tools = tools
        self.max_line_bytes = max_line_bytes
        self._methods: dict[str, Callable[[RpcRequest], Any]] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._tools_list,
            "tools/call": self._tools_call,
        }

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def serve(
        self,
        reader: asyncio.StreamReader,
        write: Callable[[str], None],
    ) -> None:
        """Answer requests until ``reader`` hits EOF.

        ``write`` receives each encoded response as one line including the
        trailing newline.
        """
        while True:
            raw = await self._read_line(reader)
            if raw is None:
                log.warning("Discarded request line longer than %d bytes", self.max_line_bytes)
                write(encode_response(error_response(None, PARSE_ERROR, "Parse error")) + "\n")
                continue
            if not raw:
                log.info("Input closed")
                return

            response = await self.handle_line(raw.decode("utf-8", errors="replace"))
            if response is not None:
                write(encode_response(response) + "\n")

    async def _read_line(self, reader: asyncio.StreamReader) -> bytes | None:
        """Read one line. Returns b"" at EOF, None for a line over the limit.

        An over-long line is discarded up to and including its newline, even
        when it arrives in several chunks.
        """
        try:
            return await reader.readuntil(b"\n")
        except asyncio.IncompleteReadError as exc:
            return exc.partial
        except asyncio.LimitOverrunError as exc:
            consumed = exc.consumed
        while True:
            await reader.readexactly(consumed)
            try:
                await reader.readuntil(b"\n")
                return None
            except asyncio.IncompleteReadError:
                return None
            except asyncio.LimitOverrunError as exc:
                consumed = exc.consumed

    async def handle_line(self, line: str) -> dict[str, Any] | None:
        """Handle one input line. Returns None only for blank lines."""
        if not line.strip():
            return None
        if len(line.encode("utf-8")) > self.max_line_bytes:
            log.warning("Discarded request line longer than %d bytes", self.max_line_bytes)
            return error_response(None, PARSE_ERROR, "Parse error")

        try:
            request = decode_request(line)
        except RpcError as exc:
            log.warning("Unparsable request: %.200s", line.strip())
            return error_response(None, exc.code, exc.message)
        return await self.handle_request(request)

    async def handle_request(self, request: RpcRequest) -> dict[str, Any]:
        handler = self._methods.get(request.method)
        if handler is None:
            return error_response(request.id, METHOD_NOT_FOUND, "Method not found")

        try:
            result = await handler(request)
        except RpcError as exc:
            return error_response(request.id, exc.code, exc.message)
        except Exception:
            log.exception("Unhandled error in %s (id=%s)", request.method, request.id)
            return error_response(request.id, INTERNAL_ERROR, "Internal error")
        return result_response(request.id, result)

    # ------------------------------------------------------------------
    # Methods
    # ------------------------------------------------------------------

    async def _initialize(self, request: RpcRequest) -> InitializeResult:
        try:
            params = InitializeRequestParams.model_validate(request.params)
        except ValidationError:
            raise RpcError(INVALID_PARAMS, "Invalid params") from None

        log.info(
            "Initialize from %s %s (protocol %s)",
            params.clientInfo.name, params.clientInfo.version, params.protocolVersion,
        )
        return InitializeResult(
            protocolVersion=PROTOCOL_VERSION,
            capabilities=ServerCapabilities(tools=ToolsCapability(listChanged=True)),
            serverInfo=Implementation(name=SERVER_NAME, version=__version__),
        )

    async def _ping(self, request: RpcRequest) -> dict[str, Any]:
        return {}

    async def _tools_list(self, request: RpcRequest) -> ListToolsResult:
        return ListToolsResult(tools=[spec.to_tool() for spec in self.tools.values()])

    async def _tools_call(self, request: RpcRequest) -> Any:
        try:
            params = CallToolRequestParams.model_validate(request.params)
        except ValidationError:
            raise RpcError(INVALID_PARAMS, "Invalid params") from None

        spec = self.tools.get(params.name)
        if spec is None:
            raise RpcError(UNKNOWN_TOOL, f"Unknown tool: {params.name}")

        log.info("Calling tool %s (id=%s)", spec.name, request.id)
        return await call_tool(spec, request.id, params.arguments, self.supervisor)


def create_server(
    config: Config | None = None,
    supervisor: CaptureSupervisor | None = None,
    tools: dict[str, ToolSpec] | None = None,
) -> McpServer:
    """Create and configure the diagnostics MCP server."""
    cfg = config or Config()
    sv = supervisor or CaptureSupervisor.from_config(cfg)
    return McpServer(
        supervisor=sv,
        tools=tools if tools is not None else default_tools(cfg),
        max_line_bytes=cfg.max_line_bytes,
    )
