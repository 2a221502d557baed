# potion/notion_mcp.py
"""Workspace access through the hosted MCP server's tools."""

import json
import logging
from typing import Optional, Tuple

import httpx

from .models import PageResult, SearchOptions, SearchResult
from .session import MCPSession, ToolResult
from .transport import DEFAULT_MCP_ENDPOINT, MCPTransport

logger = logging.getLogger(__name__)

FETCH_TOOL = "notion-fetch"
SEARCH_TOOL = "notion-search"


def extract_page_content(result: ToolResult) -> Tuple[str, str, str]:
    """
    Split the first text block of a tool result into (title, url, text).

    The server usually answers with a JSON document ``{"title", "url",
    "text"}`` inside the text block; anything else is returned verbatim as
    the text.
    """
    text = result.first_text()
    if text is None:
        return "", "", ""

    try:
        data = json.loads(text)
    except ValueError:
        return "", "", text

    if not isinstance(data, dict):
        return "", "", text
    return (
        str(data.get("title") or ""),
        str(data.get("url") or ""),
        str(data.get("text") or ""),
    )


class NotionMCPClient:
    """Read pages and search the workspace via ``notion-fetch`` / ``notion-search``."""

    def __init__(
        self,
        access_token: str,
        endpoint: str = DEFAULT_MCP_ENDPOINT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.transport = MCPTransport(access_token, endpoint=endpoint, http_client=http_client)
        self.session = MCPSession(self.transport)

    async def aclose(self) -> None:
        await self.transport.aclose()

    async def __aenter__(self) -> "NotionMCPClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def get_page(self, page_id: str, options=None) -> PageResult:
        """
        Fetch a page as markdown.

        Property filtering is not available through the MCP tools, so
        ``options`` is accepted and ignored.

        Raises:
            ToolInvocationError: If the tool call fails
        """
        result = await self.session.call_tool(FETCH_TOOL, {"id": page_id})
        title, url, content = extract_page_content(result)
        return PageResult(id=page_id, title=title, url=url, content=content, source="mcp")

    async def search(
        self, query: str, options: Optional[SearchOptions] = None
    ) -> SearchResult:
        """Search the workspace; the server returns pre-rendered markdown."""
        arguments = {"query": query}
        if options and options.page_size > 0:
            arguments["page_size"] = options.page_size

        result = await self.session.call_tool(SEARCH_TOOL, arguments)
        _, _, content = extract_page_content(result)
        logger.debug(f"{SEARCH_TOOL} returned {len(content)} characters")
        return SearchResult(content=content, source="mcp")
