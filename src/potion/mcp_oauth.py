# potion/mcp_oauth.py
"""MCP OAuth client: discovery, dynamic client registration and token grants.

Implements:
- OAuth Protected Resource Metadata discovery (RFC 9728)
- OAuth Authorization Server Metadata discovery (RFC 8414)
- Dynamic Client Registration (RFC 7591)
- Authorization Code Flow with PKCE (RFC 7636)
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, Field, ValidationError

from .errors import (
    DiscoveryError,
    RefreshError,
    RegistrationError,
    TokenExchangeError,
)
from .oauth_config import OAuthTokens, TokenRecord
from .pkce import PKCEPair

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "https://mcp.notion.com"
DEFAULT_CALLBACK_URL = "http://127.0.0.1:9998/callback"
CLIENT_NAME = "potion"

PROTECTED_RESOURCE_PATH = "/.well-known/oauth-protected-resource"
AUTHORIZATION_SERVER_PATH = "/.well-known/oauth-authorization-server"


class ProtectedResourceMetadata(BaseModel):
    """RFC 9728 protected resource metadata."""

    resource: Optional[str] = None
    authorization_servers: List[str] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class MCPAuthorizationMetadata(BaseModel):
    """Endpoints resolved by discovery. Immutable once fetched."""

    authorization_servers: List[str]
    issuer: Optional[str] = None
    authorization_endpoint: str
    token_endpoint: str
    registration_endpoint: Optional[str] = None
    revocation_endpoint: Optional[str] = None
    response_types_supported: List[str] = Field(default_factory=list)
    grant_types_supported: List[str] = Field(default_factory=list)
    code_challenge_methods_supported: List[str] = Field(default_factory=list)
    token_endpoint_auth_methods_supported: List[str] = Field(default_factory=list)

    model_config = {"frozen": True, "extra": "ignore"}


class DynamicClientRegistration(BaseModel):
    """RFC 7591 client registration response."""

    client_id: str
    client_secret: Optional[str] = None
    client_id_issued_at: Optional[int] = None
    client_secret_expires_at: Optional[int] = None
    redirect_uris: List[str] = Field(default_factory=list)
    token_endpoint_auth_method: Optional[str] = None
    grant_types: List[str] = Field(default_factory=list)
    response_types: List[str] = Field(default_factory=list)
    client_name: Optional[str] = None

    model_config = {"extra": "ignore"}


class MCPOAuthClient:
    """OAuth client for an MCP server that advertises its authorization server."""

    def __init__(
        self,
        server_url: str = DEFAULT_SERVER_URL,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        client_name: str = CLIENT_NAME,
    ):
        """
        Initialize MCP OAuth client.

        Args:
            server_url: Base URL of the MCP server (e.g., https://mcp.notion.com)
            http_client: Optional shared HTTP client (closed by the caller)
            timeout: HTTP request timeout in seconds
            client_name: Name declared during dynamic registration
        """
        self.server_url = server_url.rstrip("/")
        self.client_name = client_name
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "MCPOAuthClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def _get_metadata(self, url: str, what: str) -> Dict[str, Any]:
        try:
            response = await self._http.get(url, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            raise DiscoveryError(f"Failed to fetch {what} from {url}: {e}") from e

        if response.status_code != 200:
            raise DiscoveryError(
                f"Failed to fetch {what} from {url}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise DiscoveryError(f"Invalid JSON in {what}: {e}") from e
        if not isinstance(data, dict):
            raise DiscoveryError(f"Invalid {what}: expected a JSON object")
        return data

    async def discover_authorization_server(self) -> MCPAuthorizationMetadata:
        """
        Discover OAuth endpoints for the MCP server.

        Two unauthenticated GETs: protected resource metadata, then the
        metadata of the first advertised authorization server.

        Returns:
            Resolved endpoint metadata

        Raises:
            DiscoveryError: On non-200 status, bad JSON, no authorization
                servers, or missing authorization/token endpoints
        """
        pr_data = await self._get_metadata(
            self.server_url + PROTECTED_RESOURCE_PATH, "protected resource metadata"
        )
        try:
            resource = ProtectedResourceMetadata.model_validate(pr_data)
        except ValidationError as e:
            raise DiscoveryError(f"Invalid protected resource metadata: {e}") from e

        if not resource.authorization_servers:
            raise DiscoveryError(
                "No authorization servers found in protected resource metadata"
            )

        # Only the first advertised server is used
        auth_server = resource.authorization_servers[0].rstrip("/")
        as_data = await self._get_metadata(
            auth_server + AUTHORIZATION_SERVER_PATH, "authorization server metadata"
        )

        if not as_data.get("authorization_endpoint") or not as_data.get(
            "token_endpoint"
        ):
            raise DiscoveryError(
                "Missing required endpoints in authorization server metadata"
            )

        try:
            metadata = MCPAuthorizationMetadata.model_validate(
                {**as_data, "authorization_servers": resource.authorization_servers}
            )
        except ValidationError as e:
            raise DiscoveryError(f"Invalid authorization server metadata: {e}") from e

        logger.info(f"Discovered authorization server {auth_server}")
        return metadata

    async def register_client(
        self, metadata: MCPAuthorizationMetadata, redirect_uri: str
    ) -> DynamicClientRegistration:
        """
        Register a public OAuth client (RFC 7591).

        A new client is registered on every call; registrations are not reused.

        Args:
            metadata: Discovered endpoints
            redirect_uri: Loopback callback URL

        Returns:
            Client registration with the issued client_id

        Raises:
            RegistrationError: If the server has no registration endpoint,
                rejects the request, or returns no client_id
        """
        if not metadata.registration_endpoint:
            raise RegistrationError(
                "Authorization server does not support dynamic client registration"
            )

        request_body = {
            "redirect_uris": [redirect_uri],
            "token_endpoint_auth_method": "none",
            "grant_types": ["authorization_code", "refresh_token"],
            "response_types": ["code"],
            "client_name": self.client_name,
        }

        try:
            response = await self._http.post(
                metadata.registration_endpoint, json=request_body
            )
        except httpx.HTTPError as e:
            raise RegistrationError(f"Failed to register client: {e}") from e

        if response.status_code not in (200, 201):
            raise RegistrationError(
                "Failed to register client",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RegistrationError(f"Invalid registration response: {e}") from e

        if not isinstance(data, dict) or not data.get("client_id"):
            raise RegistrationError("No client_id in registration response")

        try:
            registration = DynamicClientRegistration.model_validate(data)
        except ValidationError as e:
            raise RegistrationError(f"Invalid registration response: {e}") from e

        logger.info(f"Registered dynamic client {registration.client_id}")
        return registration

    @staticmethod
    def get_authorization_url(
        metadata: MCPAuthorizationMetadata,
        registration: DynamicClientRegistration,
        pkce: PKCEPair,
        redirect_uri: str,
        state: str = "",
    ) -> str:
        """
        Build the authorization URL the user opens in a browser.

        Args:
            metadata: Discovered endpoints
            registration: Registered client
            pkce: PKCE pair for this attempt
            redirect_uri: Loopback callback URL
            state: CSRF state (omitted when empty)

        Returns:
            Complete authorization URL
        """
        params = {
            "client_id": registration.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "code_challenge": pkce.code_challenge,
            "code_challenge_method": "S256",
        }
        if state:
            params["state"] = state

        separator = "&" if "?" in metadata.authorization_endpoint else "?"
        return f"{metadata.authorization_endpoint}{separator}{urlencode(params)}"

    async def _post_token(self, token_endpoint: str, data: Dict[str, str]) -> httpx.Response:
        return await self._http.post(
            token_endpoint,
            data=data,
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "Accept": "application/json",
            },
        )

    async def exchange_code(
        self,
        metadata: MCPAuthorizationMetadata,
        registration: DynamicClientRegistration,
        pkce: PKCEPair,
        code: str,
        redirect_uri: str,
    ) -> TokenRecord:
        """
        Exchange an authorization code (with PKCE verifier) for tokens.

        Returns:
            A new MCP token record carrying the registered client_id

        Raises:
            TokenExchangeError: On non-200 status or missing access_token
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": registration.client_id,
            "code_verifier": pkce.code_verifier,
        }

        try:
            response = await self._post_token(metadata.token_endpoint, data)
        except httpx.HTTPError as e:
            raise TokenExchangeError(f"Failed to exchange code: {e}") from e

        if response.status_code != 200:
            raise TokenExchangeError(
                "Failed to exchange code",
                status_code=response.status_code,
                body=response.text,
            )

        tokens = _parse_tokens(response, TokenExchangeError)
        return TokenRecord.from_token_response(
            tokens, backend="mcp", client_id=registration.client_id
        )

    async def refresh_token(self, client_id: str, refresh_token: str) -> TokenRecord:
        """
        Exchange a refresh token for a new access token.

        Discovery is performed again on every call; no metadata is cached
        from the original grant.

        Returns:
            A token record for the refreshed grant. ``refresh_token`` is None
            when the server did not rotate it.

        Raises:
            RefreshError: On discovery failure, non-200 status or missing
                access_token
        """
        try:
            metadata = await self.discover_authorization_server()
        except DiscoveryError as e:
            raise RefreshError(f"Failed to discover endpoints: {e}") from e

        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": client_id,
        }

        try:
            response = await self._post_token(metadata.token_endpoint, data)
        except httpx.HTTPError as e:
            raise RefreshError(f"Failed to refresh token: {e}") from e

        if response.status_code != 200:
            raise RefreshError(
                "Failed to refresh token",
                status_code=response.status_code,
                body=response.text,
            )

        tokens = _parse_tokens(response, RefreshError)
        logger.info("Refreshed access token")
        return TokenRecord.from_token_response(tokens, backend="mcp", client_id=client_id)


def _parse_tokens(response: httpx.Response, error_cls) -> OAuthTokens:
    try:
        tokens = OAuthTokens.model_validate(response.json())
    except (ValueError, ValidationError) as e:
        raise error_cls(f"Failed to decode token response: {e}") from e

    if not tokens.access_token:
        raise error_cls("No access_token in token response")
    return tokens
