# potion/session.py
"""MCP session handshake and tool invocation on top of MCPTransport."""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import InitializationError, ToolInvocationError
from .transport import MCPTransport
from .version import __version__

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2025-03-26"
CLIENT_INFO = {"name": "potion", "version": __version__}


class ToolContent(BaseModel):
    """One content block of a tool result."""

    type: str
    text: Optional[str] = None

    model_config = {"extra": "allow"}


class ToolResult(BaseModel):
    """Decoded ``tools/call`` result."""

    content: List[ToolContent] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    model_config = {"extra": "allow", "populate_by_name": True}

    def first_text(self) -> Optional[str]:
        """Return the text of the first text block, if any."""
        for block in self.content:
            if block.type == "text" and block.text is not None:
                return block.text
        return None


class MCPSession:
    """
    Lazily initialized MCP session.

    ``initialize`` and ``notifications/initialized`` are sent exactly once per
    instance, before the first tool call. A session-ID change reported by the
    server later on does not trigger a new handshake.
    """

    def __init__(self, transport: MCPTransport):
        self.transport = transport
        self.server_info: Optional[Dict[str, Any]] = None
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def ensure_initialized(self) -> None:
        """
        Perform the initialize handshake if it has not happened yet.

        Raises:
            InitializationError: If the server answers initialize with an error
            TransportError: If either message cannot be delivered
        """
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            params = {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": CLIENT_INFO,
            }
            response = await self.transport.send("initialize", params)
            error = response.get_error()
            if error is not None:
                raise InitializationError(f"MCP initialize error: {error.message}")

            if isinstance(response.result, dict):
                self.server_info = response.result.get("serverInfo")

            await self.transport.notify("notifications/initialized")
            self._initialized = True
            logger.info("MCP session initialized")

    async def call_tool(
        self, name: str, arguments: Optional[Dict[str, Any]] = None
    ) -> ToolResult:
        """
        Invoke a tool, initializing the session first if needed.

        Args:
            name: Tool name
            arguments: Tool arguments (defaults to empty dict)

        Returns:
            The decoded tool result

        Raises:
            ToolInvocationError: On an RPC error, an undecodable result, or a
                result flagged with isError
        """
        await self.ensure_initialized()

        response = await self.transport.send(
            "tools/call", {"name": name, "arguments": arguments or {}}
        )

        error = response.get_error()
        if error is not None:
            raise ToolInvocationError(f"MCP tool error: {error.message}")

        try:
            result = ToolResult.model_validate(response.result or {})
        except ValidationError as e:
            raise ToolInvocationError(f"Failed to decode result of {name}: {e}") from e

        if result.is_error:
            if result.content and result.content[0].text:
                raise ToolInvocationError(f"MCP error: {result.content[0].text}")
            raise ToolInvocationError("MCP error: unknown error")

        return result
