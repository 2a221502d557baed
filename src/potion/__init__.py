"""potion - a command-line client for Notion.

Two backends are supported:
- the REST API, with an integration token or conventional OAuth
- the hosted MCP server, authenticated with MCP OAuth:
  - Protected Resource and Authorization Server Metadata discovery
  - Dynamic Client Registration (RFC 7591)
  - Authorization Code Flow with PKCE and a loopback redirect
  - JSON-RPC over HTTP with SSE responses and session IDs
"""

from .oauth_config import OAuthConfig, OAuthTokens, TokenRecord
from .oauth_flow import OAuthFlow
from .mcp_oauth import (
    MCPOAuthClient,
    MCPAuthorizationMetadata,
    DynamicClientRegistration,
)
from .oauth_handler import OAuthHandler
from .token_manager import TokenManager
from .callback_server import CallbackServer
from .pkce import PKCEPair, generate_pkce_pair, generate_state
from .transport import MCPTransport
from .session import MCPSession, ToolResult
from .sse import SSEDecoder
from .config import Settings, load_settings
from .client import create_client
from .notion_api import NotionAPIClient
from .notion_mcp import NotionMCPClient
from .version import __version__

__all__ = [
    "OAuthConfig",
    "OAuthTokens",
    "TokenRecord",
    "OAuthFlow",
    "MCPOAuthClient",
    "MCPAuthorizationMetadata",
    "DynamicClientRegistration",
    "OAuthHandler",
    "TokenManager",
    "CallbackServer",
    "PKCEPair",
    "generate_pkce_pair",
    "generate_state",
    "MCPTransport",
    "MCPSession",
    "ToolResult",
    "SSEDecoder",
    "Settings",
    "load_settings",
    "create_client",
    "NotionAPIClient",
    "NotionMCPClient",
    "__version__",
]
