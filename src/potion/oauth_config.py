# potion/oauth_config.py
"""OAuth configuration and token models."""

import time
from typing import Literal, Optional

from pydantic import BaseModel

Backend = Literal["api", "mcp"]

# Refresh this many seconds before the recorded expiry
REFRESH_MARGIN = 300


class OAuthConfig(BaseModel):
    """Conventional OAuth 2.0 configuration with pre-issued client credentials."""

    authorization_url: str = "https://api.notion.com/v1/oauth/authorize"
    token_url: str = "https://api.notion.com/v1/oauth/token"

    client_id: str
    client_secret: str

    redirect_uri: str = "http://localhost:8080/callback"

    model_config = {"frozen": False}


class OAuthTokens(BaseModel):
    """Token endpoint response (RFC 6749 section 5.1)."""

    access_token: str = ""
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None

    # Returned by the REST API's conventional grant
    bot_id: Optional[str] = None
    workspace_id: Optional[str] = None
    workspace_name: Optional[str] = None

    model_config = {"extra": "ignore"}


class TokenRecord(BaseModel):
    """The persisted credential."""

    backend: Backend = "api"
    access_token: str
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    client_id: Optional[str] = None
    expires_at: Optional[int] = None  # Unix timestamp

    bot_id: Optional[str] = None
    workspace_id: Optional[str] = None
    workspace_name: Optional[str] = None

    model_config = {"frozen": False}

    @classmethod
    def from_token_response(
        cls,
        tokens: OAuthTokens,
        backend: Backend,
        client_id: Optional[str] = None,
        now: Optional[float] = None,
    ) -> "TokenRecord":
        """Build a record, turning a relative expires_in into an absolute expires_at."""
        expires_at = None
        if tokens.expires_in and tokens.expires_in > 0:
            issued = time.time() if now is None else now
            expires_at = int(issued) + tokens.expires_in

        return cls(
            backend=backend,
            access_token=tokens.access_token,
            token_type=tokens.token_type or "Bearer",
            refresh_token=tokens.refresh_token or None,
            client_id=client_id,
            expires_at=expires_at,
            bot_id=tokens.bot_id,
            workspace_id=tokens.workspace_id,
            workspace_name=tokens.workspace_name,
        )

    def is_expired(self, margin: int = 0) -> bool:
        """Check if the access token is expired, or will be within ``margin`` seconds."""
        if not self.expires_at:
            return False
        return time.time() + margin >= self.expires_at

    def needs_refresh(self, margin: int = REFRESH_MARGIN) -> bool:
        """Whether a refresh should be attempted before using this token."""
        if not self.refresh_token:
            return False
        return self.is_expired(margin)

    def apply_refresh(self, refreshed: "TokenRecord") -> None:
        """Update this record in place from a refresh-grant result."""
        self.access_token = refreshed.access_token
        self.token_type = refreshed.token_type
        self.expires_at = refreshed.expires_at
        # Servers may omit a rotated refresh token; keep the one we have
        if refreshed.refresh_token:
            self.refresh_token = refreshed.refresh_token

    def get_authorization_header(self) -> str:
        """Get the Authorization header value."""
        # Ensure Bearer is capitalized per RFC 6750
        token_type = (
            self.token_type.capitalize()
            if self.token_type.lower() == "bearer"
            else self.token_type
        )
        return f"{token_type} {self.access_token}"
