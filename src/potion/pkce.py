# potion/pkce.py
"""PKCE (Proof Key for Code Exchange) generator for OAuth 2.1 (RFC 7636)."""

import base64
import hashlib
import secrets

from pydantic import BaseModel

from .errors import PKCEGenerationError

VERIFIER_BYTES = 32
STATE_BYTES = 16


class PKCEPair(BaseModel):
    """Single-use code verifier and its S256 challenge."""

    code_verifier: str
    code_challenge: str
    code_challenge_method: str = "S256"

    model_config = {"frozen": True}


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def code_challenge_s256(code_verifier: str) -> str:
    """Compute BASE64URL(SHA256(code_verifier)) without padding."""
    return _b64url(hashlib.sha256(code_verifier.encode("ascii")).digest())


def generate_pkce_pair() -> PKCEPair:
    """
    Generate a fresh PKCE pair.

    The verifier is 32 bytes from the OS CSPRNG, base64url-encoded without
    padding (43 characters).

    Raises:
        PKCEGenerationError: If the secure random source is unavailable
    """
    try:
        raw = secrets.token_bytes(VERIFIER_BYTES)
    except NotImplementedError as e:
        raise PKCEGenerationError(f"Secure random source unavailable: {e}") from e

    code_verifier = _b64url(raw)
    return PKCEPair(
        code_verifier=code_verifier,
        code_challenge=code_challenge_s256(code_verifier),
    )


def generate_state() -> str:
    """Generate an opaque CSRF state token (16 random bytes, hex)."""
    return secrets.token_hex(STATE_BYTES)
