# potion/client.py
"""Backend selection."""

from typing import Optional, Union

import httpx

from .config import Settings
from .errors import ConfigError
from .notion_api import NotionAPIClient
from .notion_mcp import NotionMCPClient

NotionClient = Union[NotionAPIClient, NotionMCPClient]


def create_client(
    settings: Settings, http_client: Optional[httpx.AsyncClient] = None
) -> NotionClient:
    """
    Create the client for the configured backend.

    Raises:
        ConfigError: If no token is available or the backend is unknown
    """
    settings.validate_token()

    if settings.backend == "mcp":
        return NotionMCPClient(
            settings.token, endpoint=settings.mcp_endpoint, http_client=http_client
        )
    if settings.backend == "api":
        return NotionAPIClient(
            settings.token, base_url=settings.api_base_url, http_client=http_client
        )
    raise ConfigError(f"unknown backend: {settings.backend}")
