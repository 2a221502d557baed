# potion/oauth_flow.py
"""Conventional OAuth 2.0 authorization code flow with pre-issued credentials."""

import logging
from typing import Optional
from urllib.parse import urlencode

import httpx

from .errors import APIError, TokenExchangeError
from .oauth_config import OAuthConfig, OAuthTokens, TokenRecord

logger = logging.getLogger(__name__)


class OAuthFlow:
    """
    Authorization code flow for a client registered ahead of time.

    No discovery, no dynamic registration and no PKCE: the client secret is
    presented with HTTP Basic authentication at the token endpoint.
    """

    def __init__(
        self,
        config: OAuthConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.config = config
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "OAuthFlow":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def get_authorization_url(self, state: str = "") -> str:
        """Build the authorization URL; ``owner=user`` asks for a user-level grant."""
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "response_type": "code",
            "owner": "user",
        }
        if state:
            params["state"] = state
        return f"{self.config.authorization_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenRecord:
        """
        Exchange an authorization code for an access token.

        Raises:
            APIError: If the token endpoint returns a structured error
            TokenExchangeError: On any other failure
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.config.redirect_uri,
        }

        try:
            response = await self._http.post(
                self.config.token_url,
                data=data,
                auth=httpx.BasicAuth(self.config.client_id, self.config.client_secret),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            raise TokenExchangeError(f"Failed to exchange code: {e}") from e

        if response.status_code != 200:
            try:
                error = response.json()
            except ValueError:
                error = None
            if isinstance(error, dict) and error.get("message"):
                raise APIError(
                    error["message"],
                    status_code=response.status_code,
                    code=error.get("code"),
                )
            raise TokenExchangeError(
                "OAuth error",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            tokens = OAuthTokens.model_validate(response.json())
        except ValueError as e:
            raise TokenExchangeError(f"Failed to decode token response: {e}") from e

        if not tokens.access_token:
            raise TokenExchangeError("No access_token in token response")

        logger.info(f"Obtained token for workspace {tokens.workspace_name or '?'}")
        return TokenRecord.from_token_response(tokens, backend="api")
