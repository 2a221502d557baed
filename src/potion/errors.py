# potion/errors.py
"""Exception types raised by potion.

Every failure in the OAuth bootstrap and the MCP transport is reported with
one of these classes so that the CLI can turn it into a readable message.
"""

from typing import Any, Optional


class PotionError(Exception):
    """Base class for all potion errors."""


class HTTPFailure(PotionError):
    """An error derived from an unexpected HTTP response."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        if status_code is not None:
            message = f"{message}: HTTP {status_code}"
            if body:
                message = f"{message}: {truncate_body(body)}"
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class DiscoveryError(HTTPFailure):
    """Protected-resource or authorization-server metadata could not be resolved."""


class RegistrationError(HTTPFailure):
    """Dynamic client registration was rejected or returned no client_id."""


class PKCEGenerationError(PotionError):
    """The secure random source was unavailable."""


class AuthorizationDeniedError(PotionError):
    """The authorization server redirected back with an error parameter."""


class StateMismatchError(PotionError):
    """The callback state did not match the state sent with the authorization URL."""


class MissingCodeError(PotionError):
    """The callback carried no authorization code."""


class TokenExchangeError(HTTPFailure):
    """The authorization code could not be exchanged for tokens."""


class RefreshError(HTTPFailure):
    """A refresh-token grant failed."""


class InitializationError(PotionError):
    """The MCP initialize handshake was rejected."""


class ToolInvocationError(PotionError):
    """A tools/call request failed or returned isError."""


class NoResponseError(PotionError):
    """An SSE stream ended without an envelope matching the request ID."""


class TransportError(HTTPFailure):
    """Network or protocol failure while talking to the RPC endpoint."""


class APIError(PotionError):
    """Error object returned by the REST API."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class ConfigError(PotionError):
    """Configuration is missing or invalid."""


class RPCError(PotionError):
    """Structured JSON-RPC error returned by the server."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"JSON-RPC error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


def truncate_body(body: str, limit: int = 500) -> str:
    """Shorten a response body for inclusion in an error message."""
    body = body.strip()
    if len(body) <= limit:
        return body
    return body[:limit] + "..."
