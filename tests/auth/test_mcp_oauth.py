"""Tests for MCP OAuth discovery, registration and token grants."""

import json
import time
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from potion.errors import DiscoveryError, RefreshError, RegistrationError, TokenExchangeError
from potion.mcp_oauth import (
    DynamicClientRegistration,
    MCPAuthorizationMetadata,
    MCPOAuthClient,
)
from potion.oauth_config import TokenRecord
from potion.pkce import generate_pkce_pair

SERVER = "https://mcp.example.com"
AUTH = "https://auth.example.com"
REDIRECT = "http://127.0.0.1:9998/callback"

PROTECTED_RESOURCE = {"resource": SERVER, "authorization_servers": [AUTH]}
AS_METADATA = {
    "issuer": AUTH,
    "authorization_endpoint": f"{AUTH}/authorize",
    "token_endpoint": f"{AUTH}/token",
    "registration_endpoint": f"{AUTH}/register",
    "code_challenge_methods_supported": ["S256"],
}


class FakeAuthServer:
    """Routes requests by path and records them."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, str(request.url).split("?")[0])
        if key not in self.routes:
            return httpx.Response(404, text="not found")
        return self.routes[key]

    def paths(self):
        return [r.url.path for r in self.requests]


def discovery_routes(as_metadata=None, protected_resource=None):
    return {
        ("GET", f"{SERVER}/.well-known/oauth-protected-resource"): httpx.Response(
            200, json=protected_resource if protected_resource is not None else PROTECTED_RESOURCE
        ),
        ("GET", f"{AUTH}/.well-known/oauth-authorization-server"): httpx.Response(
            200, json=as_metadata if as_metadata is not None else AS_METADATA
        ),
    }


def make_client(routes):
    fake = FakeAuthServer(routes)
    http = httpx.AsyncClient(transport=httpx.MockTransport(fake))
    return MCPOAuthClient(SERVER, http_client=http), fake


@pytest.fixture
def metadata():
    return MCPAuthorizationMetadata(authorization_servers=[AUTH], **AS_METADATA)


@pytest.fixture
def registration():
    return DynamicClientRegistration(client_id="client-123")


class TestDiscovery:
    """Test endpoint discovery."""

    @pytest.mark.asyncio
    async def test_discovers_endpoints(self):
        """Test both metadata documents are fetched in order."""
        client, fake = make_client(discovery_routes())

        metadata = await client.discover_authorization_server()

        assert metadata.authorization_endpoint == f"{AUTH}/authorize"
        assert metadata.token_endpoint == f"{AUTH}/token"
        assert metadata.registration_endpoint == f"{AUTH}/register"
        assert metadata.authorization_servers == [AUTH]
        assert fake.paths() == [
            "/.well-known/oauth-protected-resource",
            "/.well-known/oauth-authorization-server",
        ]

    @pytest.mark.asyncio
    async def test_only_first_server_used(self):
        """Test additional authorization servers are ignored."""
        resource = {"authorization_servers": [AUTH, "https://backup.example.com"]}
        client, fake = make_client(discovery_routes(protected_resource=resource))

        await client.discover_authorization_server()

        assert all(r.url.host != "backup.example.com" for r in fake.requests)

    @pytest.mark.asyncio
    async def test_missing_token_endpoint_skips_registration(self):
        """Test missing token_endpoint fails discovery before any registration."""
        as_metadata = {k: v for k, v in AS_METADATA.items() if k != "token_endpoint"}
        routes = discovery_routes(as_metadata=as_metadata)
        routes[("POST", f"{AUTH}/register")] = httpx.Response(201, json={"client_id": "x"})
        client, fake = make_client(routes)

        with pytest.raises(DiscoveryError, match="Missing required endpoints"):
            await client.discover_authorization_server()

        assert "/register" not in fake.paths()

    @pytest.mark.asyncio
    async def test_empty_authorization_servers(self):
        """Test an empty server list fails discovery."""
        client, _ = make_client(
            discovery_routes(protected_resource={"authorization_servers": []})
        )

        with pytest.raises(DiscoveryError, match="No authorization servers"):
            await client.discover_authorization_server()

    @pytest.mark.asyncio
    async def test_non_200_status(self):
        """Test a non-200 metadata response fails with the status attached."""
        routes = discovery_routes()
        routes[("GET", f"{SERVER}/.well-known/oauth-protected-resource")] = httpx.Response(
            503, text="maintenance"
        )
        client, _ = make_client(routes)

        with pytest.raises(DiscoveryError) as exc_info:
            await client.discover_authorization_server()

        assert exc_info.value.status_code == 503
        assert "maintenance" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        """Test an undecodable metadata body fails discovery."""
        routes = discovery_routes()
        routes[("GET", f"{AUTH}/.well-known/oauth-authorization-server")] = httpx.Response(
            200, text="<html>"
        )
        client, _ = make_client(routes)

        with pytest.raises(DiscoveryError):
            await client.discover_authorization_server()

    @pytest.mark.asyncio
    async def test_network_error(self):
        """Test connection failures are wrapped in DiscoveryError."""

        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = MCPOAuthClient(SERVER, http_client=http)

        with pytest.raises(DiscoveryError, match="unreachable"):
            await client.discover_authorization_server()


class TestRegistration:
    """Test dynamic client registration."""

    @pytest.mark.asyncio
    async def test_register_201(self, metadata):
        """Test a 201 registration returns the client_id and sends public-client metadata."""
        client, fake = make_client(
            {("POST", f"{AUTH}/register"): httpx.Response(201, json={"client_id": "abc"})}
        )

        registration = await client.register_client(metadata, REDIRECT)

        assert registration.client_id == "abc"
        body = json.loads(fake.requests[0].content)
        assert body["redirect_uris"] == [REDIRECT]
        assert body["token_endpoint_auth_method"] == "none"
        assert body["grant_types"] == ["authorization_code", "refresh_token"]
        assert body["response_types"] == ["code"]
        assert body["client_name"] == "potion"

    @pytest.mark.asyncio
    async def test_register_200(self, metadata):
        """Test a 200 registration is also accepted."""
        client, _ = make_client(
            {("POST", f"{AUTH}/register"): httpx.Response(200, json={"client_id": "abc"})}
        )

        assert (await client.register_client(metadata, REDIRECT)).client_id == "abc"

    @pytest.mark.asyncio
    async def test_register_rejected(self, metadata):
        """Test a 400 registration fails with the body attached."""
        client, _ = make_client(
            {
                ("POST", f"{AUTH}/register"): httpx.Response(
                    400, json={"error": "invalid_redirect_uri"}
                )
            }
        )

        with pytest.raises(RegistrationError) as exc_info:
            await client.register_client(metadata, REDIRECT)

        assert exc_info.value.status_code == 400
        assert "invalid_redirect_uri" in exc_info.value.body

    @pytest.mark.asyncio
    async def test_register_without_client_id(self, metadata):
        """Test a response lacking client_id fails registration."""
        client, _ = make_client(
            {("POST", f"{AUTH}/register"): httpx.Response(201, json={"client_name": "x"})}
        )

        with pytest.raises(RegistrationError, match="No client_id"):
            await client.register_client(metadata, REDIRECT)

    @pytest.mark.asyncio
    async def test_no_registration_endpoint(self, metadata):
        """Test servers without a registration endpoint are rejected."""
        client, fake = make_client({})
        metadata = metadata.model_copy(update={"registration_endpoint": None})

        with pytest.raises(RegistrationError):
            await client.register_client(metadata, REDIRECT)
        assert fake.requests == []


class TestAuthorizationURL:
    """Test authorization URL construction."""

    def test_parameters(self, metadata, registration):
        """Test all PKCE and client parameters are present."""
        pkce = generate_pkce_pair()
        url = MCPOAuthClient.get_authorization_url(
            metadata, registration, pkce, REDIRECT, state="abc123"
        )

        parsed = urlparse(url)
        params = parse_qs(parsed.query)
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == f"{AUTH}/authorize"
        assert params["client_id"] == ["client-123"]
        assert params["redirect_uri"] == [REDIRECT]
        assert params["response_type"] == ["code"]
        assert params["code_challenge"] == [pkce.code_challenge]
        assert params["code_challenge_method"] == ["S256"]
        assert params["state"] == ["abc123"]

    def test_state_omitted_when_empty(self, metadata, registration):
        """Test an empty state is not sent."""
        url = MCPOAuthClient.get_authorization_url(
            metadata, registration, generate_pkce_pair(), REDIRECT
        )
        assert "state" not in parse_qs(urlparse(url).query)


class TestExchangeCode:
    """Test authorization code exchange."""

    @pytest.mark.asyncio
    async def test_exchange(self, metadata, registration):
        """Test the form body and the resulting record."""
        client, fake = make_client(
            {
                ("POST", f"{AUTH}/token"): httpx.Response(
                    200,
                    json={
                        "access_token": "at",
                        "token_type": "bearer",
                        "refresh_token": "rt",
                        "expires_in": 3600,
                    },
                )
            }
        )
        pkce = generate_pkce_pair()
        before = time.time()

        record = await client.exchange_code(metadata, registration, pkce, "the-code", REDIRECT)

        request = fake.requests[0]
        assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"
        form = parse_qs(request.content.decode())
        assert form == {
            "grant_type": ["authorization_code"],
            "code": ["the-code"],
            "redirect_uri": [REDIRECT],
            "client_id": ["client-123"],
            "code_verifier": [pkce.code_verifier],
        }
        assert record.backend == "mcp"
        assert record.access_token == "at"
        assert record.refresh_token == "rt"
        assert record.client_id == "client-123"
        assert int(before) + 3600 <= record.expires_at <= int(time.time()) + 3600

    @pytest.mark.asyncio
    async def test_exchange_without_expiry(self, metadata, registration):
        """Test a response without expires_in leaves expires_at unset."""
        client, _ = make_client(
            {("POST", f"{AUTH}/token"): httpx.Response(200, json={"access_token": "at"})}
        )

        record = await client.exchange_code(
            metadata, registration, generate_pkce_pair(), "c", REDIRECT
        )

        assert record.expires_at is None
        assert record.refresh_token is None

    @pytest.mark.asyncio
    async def test_exchange_rejected(self, metadata, registration):
        """Test a non-200 token response fails."""
        client, _ = make_client(
            {("POST", f"{AUTH}/token"): httpx.Response(400, json={"error": "invalid_grant"})}
        )

        with pytest.raises(TokenExchangeError, match="invalid_grant"):
            await client.exchange_code(metadata, registration, generate_pkce_pair(), "c", REDIRECT)

    @pytest.mark.asyncio
    async def test_exchange_missing_access_token(self, metadata, registration):
        """Test a 200 response without access_token fails."""
        client, _ = make_client(
            {("POST", f"{AUTH}/token"): httpx.Response(200, json={"token_type": "bearer"})}
        )

        with pytest.raises(TokenExchangeError, match="No access_token"):
            await client.exchange_code(metadata, registration, generate_pkce_pair(), "c", REDIRECT)


class TestRefreshToken:
    """Test the refresh grant."""

    @pytest.mark.asyncio
    async def test_refresh_rediscovers_and_keeps_refresh_token(self):
        """Test refresh runs discovery and the old refresh token survives when not rotated."""
        routes = discovery_routes()
        routes[("POST", f"{AUTH}/token")] = httpx.Response(
            200, json={"access_token": "new", "expires_in": 3600}
        )
        client, fake = make_client(routes)
        stored = TokenRecord(
            backend="mcp", access_token="old", refresh_token="r1", client_id="client-123"
        )

        refreshed = await client.refresh_token("client-123", "r1")
        stored.apply_refresh(refreshed)

        assert fake.paths() == [
            "/.well-known/oauth-protected-resource",
            "/.well-known/oauth-authorization-server",
            "/token",
        ]
        form = parse_qs(fake.requests[-1].content.decode())
        assert form == {
            "grant_type": ["refresh_token"],
            "refresh_token": ["r1"],
            "client_id": ["client-123"],
        }
        assert stored.access_token == "new"
        assert stored.refresh_token == "r1"
        assert abs(stored.expires_at - (time.time() + 3600)) <= 5

    @pytest.mark.asyncio
    async def test_refresh_rotates_refresh_token(self):
        """Test a returned refresh token replaces the old one."""
        routes = discovery_routes()
        routes[("POST", f"{AUTH}/token")] = httpx.Response(
            200, json={"access_token": "new", "refresh_token": "r2"}
        )
        client, _ = make_client(routes)
        stored = TokenRecord(backend="mcp", access_token="old", refresh_token="r1")

        stored.apply_refresh(await client.refresh_token("client-123", "r1"))

        assert stored.refresh_token == "r2"

    @pytest.mark.asyncio
    async def test_refresh_discovery_failure(self):
        """Test a discovery failure during refresh is reported as RefreshError."""
        client, _ = make_client({})

        with pytest.raises(RefreshError):
            await client.refresh_token("client-123", "r1")

    @pytest.mark.asyncio
    async def test_refresh_rejected(self):
        """Test a non-200 refresh response fails."""
        routes = discovery_routes()
        routes[("POST", f"{AUTH}/token")] = httpx.Response(400, json={"error": "invalid_grant"})
        client, _ = make_client(routes)

        with pytest.raises(RefreshError) as exc_info:
            await client.refresh_token("client-123", "r1")

        assert exc_info.value.status_code == 400
