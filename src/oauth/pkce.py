"""
PKCE (Proof Key for Code Exchange) helpers, RFC 7636.

The verifier is 32 cryptographically random bytes (256 bits) encoded as
unpadded base64url, which always yields 43 characters. The challenge is the
unpadded base64url SHA-256 digest of the ASCII verifier (S256 method).
"""

import base64
import hashlib
import re
import secrets

from .exceptions import PKCEFormatError

CODE_CHALLENGE_METHOD = "S256"

_VERIFIER_PATTERN = re.compile(r"[A-Za-z0-9_-]+")


def _to_base64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_code_verifier() -> str:
    """
    Generate a PKCE code verifier.

    Returns:
        43-character string over [A-Za-z0-9_-]
    """
    return _to_base64url(secrets.token_bytes(32))


def generate_code_challenge(verifier: str) -> str:
    """
    Derive the S256 code challenge for a verifier.

    Args:
        verifier: Code verifier (base64url alphabet only)

    Returns:
        43-character base64url SHA-256 digest

    Raises:
        PKCEFormatError: If the verifier is empty or has characters outside [A-Za-z0-9_-]
    """
    if not isinstance(verifier, str) or not verifier:
        raise PKCEFormatError(
            "Code verifier must be a non-empty string",
            operation="generate_code_challenge",
        )
    if not _VERIFIER_PATTERN.fullmatch(verifier):
        raise PKCEFormatError(
            "Code verifier contains invalid characters. "
            "Must use base64url encoding: [A-Za-z0-9_-]",
            operation="generate_code_challenge",
            context={"length": len(verifier)},
        )
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return _to_base64url(digest)


def generate_state() -> str:
    """Generate an unguessable CSRF state value (64 hex characters)."""
    return secrets.token_hex(32)
