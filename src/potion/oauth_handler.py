# potion/oauth_handler.py
"""OAuth orchestration: interactive login, pre-command refresh and logout."""

import logging
import webbrowser
from typing import Callable, Optional

import httpx

from .callback_server import CALLBACK_PATH, CallbackServer
from .config import Settings, load_settings
from .errors import PotionError
from .mcp_oauth import MCPOAuthClient
from .oauth_config import TokenRecord
from .oauth_flow import OAuthFlow
from .pkce import generate_pkce_pair, generate_state
from .token_manager import TokenManager

logger = logging.getLogger(__name__)

DEFAULT_MCP_CALLBACK_PORT = 9998
DEFAULT_CALLBACK_PORT = 8080
CALLBACK_TIMEOUT = 300.0


class OAuthHandler:
    """Handles OAuth authentication against the workspace."""

    def __init__(
        self,
        token_manager: Optional[TokenManager] = None,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        echo: Callable[[str], None] = print,
    ):
        """
        Initialize OAuth handler.

        Args:
            token_manager: Token manager instance (creates default if not provided)
            settings: Effective settings (loaded lazily if not provided)
            http_client: Optional shared HTTP client for OAuth requests
            echo: Where user-facing progress messages go
        """
        self.token_manager = token_manager or TokenManager()
        self._settings = settings
        self._http = http_client
        self.echo = echo

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = load_settings(self.token_manager)
        return self._settings

    def _show_authorization_url(self, url: str, open_browser: bool) -> None:
        self.echo("Opening browser for Notion authorization...")
        self.echo(f"If the browser doesn't open, visit this URL:\n{url}\n")
        if open_browser:
            try:
                webbrowser.open(url)
            except webbrowser.Error as e:
                self.echo(f"Failed to open browser: {e}")
        self.echo("Waiting for authorization...")

    async def authenticate_mcp(
        self,
        port: int = DEFAULT_MCP_CALLBACK_PORT,
        timeout: float = CALLBACK_TIMEOUT,
        open_browser: bool = True,
    ) -> TokenRecord:
        """
        Authenticate against the hosted MCP server.

        This uses:
        - OAuth Protected Resource and Authorization Server Metadata discovery
        - Dynamic Client Registration (a new client on every run)
        - Authorization Code Flow with PKCE and a loopback redirect

        Args:
            port: Loopback callback port
            timeout: Seconds to wait for the browser redirect
            open_browser: Whether to launch the system browser

        Returns:
            The persisted token record

        Raises:
            PotionError: If any step of the flow fails
            TimeoutError: If the redirect did not arrive in time
        """
        self.echo("Using MCP OAuth (Dynamic Client Registration)...")

        async with MCPOAuthClient(
            self.settings.mcp_server_url, http_client=self._http
        ) as client:
            self.echo("Discovering OAuth endpoints...")
            metadata = await client.discover_authorization_server()

            state = generate_state()
            server = CallbackServer(port=port, expected_state=state)
            await server.open()
            try:
                redirect_uri = server.redirect_uri

                self.echo("Registering dynamic client...")
                registration = await client.register_client(metadata, redirect_uri)
                self.echo(f"Client registered: {registration.client_id}")

                pkce = generate_pkce_pair()
                url = client.get_authorization_url(
                    metadata, registration, pkce, redirect_uri, state=state
                )
                self._show_authorization_url(url, open_browser)

                code = await server.wait_for_callback(state, timeout=timeout)
            finally:
                await server.close()

            self.echo("Authorization received, exchanging code for token...")
            record = await client.exchange_code(
                metadata, registration, pkce, code, redirect_uri
            )

        self.token_manager.save_token(record)
        logger.info("Completed MCP OAuth flow")
        return record

    async def authenticate(
        self,
        port: int = DEFAULT_CALLBACK_PORT,
        timeout: float = CALLBACK_TIMEOUT,
        open_browser: bool = True,
    ) -> TokenRecord:
        """
        Authenticate with pre-issued integration credentials.

        Raises:
            ConfigError: If client_id or client_secret is not configured
            PotionError: If the flow fails
            TimeoutError: If the redirect did not arrive in time
        """
        self.settings.validate_oauth()

        state = generate_state()
        server = CallbackServer(port=port, expected_state=state)
        await server.open()
        try:
            # The integration's registered redirect uses localhost
            redirect_uri = f"http://localhost:{server.port}{CALLBACK_PATH}"
            config = self.settings.oauth_config(redirect_uri)

            async with OAuthFlow(config, http_client=self._http) as flow:
                self._show_authorization_url(
                    flow.get_authorization_url(state), open_browser
                )
                code = await server.wait_for_callback(state, timeout=timeout)

                self.echo("Authorization received, exchanging code for token...")
                record = await flow.exchange_code(code)
        finally:
            await server.close()

        self.token_manager.save_token(record)
        logger.info("Completed OAuth flow")
        return record

    async def refresh_if_needed(self) -> Optional[TokenRecord]:
        """
        Refresh the stored MCP token when it is close to expiry.

        Failures are logged and swallowed; the command that follows runs with
        whatever token is stored.

        Returns:
            The refreshed record, or None if nothing was refreshed
        """
        record = self.token_manager.load_token()
        if record is None or record.backend != "mcp" or not record.needs_refresh():
            return None
        if not record.client_id:
            logger.warning("Stored MCP token has no client_id; cannot refresh")
            return None

        try:
            server_url = self.settings.mcp_server_url
            async with MCPOAuthClient(server_url, http_client=self._http) as client:
                refreshed = await client.refresh_token(
                    record.client_id, record.refresh_token
                )
        except PotionError as e:
            logger.warning(f"Token refresh failed: {e}")
            return None

        record.apply_refresh(refreshed)
        try:
            self.token_manager.save_token(record)
        except OSError as e:
            logger.warning(f"Failed to save refreshed token: {e}")
            return None

        logger.info("Refreshed access token")
        return record

    def logout(self) -> bool:
        """Delete the stored token. Returns whether one existed."""
        deleted = self.token_manager.delete_token()
        if deleted:
            logger.info("Removed stored token")
        return deleted
