"""
OAuth exception classes for the token lifecycle manager.

This module defines the exception hierarchy for all OAuth-related errors.
Each concrete class corresponds to exactly one failure kind, so callers can
tell "the user said no" apart from "the network failed" apart from "the
callback looked forged" without inspecting messages.

Every exception carries:
    code: Stable machine-readable identifier
    operation: Name of the operation that failed
    context: Diagnostic identifiers (client id, port, state, ...)

Context is sanitized at construction: entries whose key names a token,
secret, authorization code or PKCE verifier are dropped.
"""

from typing import Any, Dict, Optional

_SENSITIVE_KEY_PARTS = ("token", "secret", "verifier", "password")
_SENSITIVE_KEYS = {"code", "authorization_code", "auth_code"}


def _sanitize_context(context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop context entries that could carry credentials."""
    if not context:
        return {}
    return {
        key: value
        for key, value in context.items()
        if key.lower() not in _SENSITIVE_KEYS
        and not any(part in key.lower() for part in _SENSITIVE_KEY_PARTS)
    }


class OAuthError(Exception):
    """Base exception for all OAuth errors."""

    default_code = "OAUTH2_ERROR"

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize OAuth error.

        Args:
            message: Human-readable error message
            operation: Operation that failed (e.g., "refresh_token")
            context: Diagnostic identifiers; credential-bearing keys are dropped
        """
        super().__init__(message)
        self.message = message
        self.code = self.default_code
        self.operation = operation
        self.context = _sanitize_context(context)

    def to_dict(self) -> Dict[str, Any]:
        """Structured representation for logging."""
        return {
            "code": self.code,
            "message": self.message,
            "operation": self.operation,
            "context": dict(self.context),
        }


class ConfigurationError(OAuthError):
    """OAuth configuration error (missing or invalid configuration)."""

    default_code = "OAUTH2_CONFIGURATION_ERROR"


class InvalidArgumentError(OAuthError, ValueError):
    """An argument is outside the accepted domain (e.g., negative threshold)."""

    default_code = "INVALID_ARGUMENT"


class PKCEFormatError(OAuthError, ValueError):
    """PKCE code verifier contains characters outside [A-Za-z0-9_-]."""

    default_code = "OAUTH2_PKCE_INVALID_VERIFIER_FORMAT"


class ClientNotInitializedError(OAuthError):
    """Provider used before initialize() completed."""

    default_code = "OAUTH2_CLIENT_NOT_INITIALIZED"

    def __init__(self, operation: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"OAuth2 client not initialized (operation: {operation})",
            operation=operation,
            context=context,
        )


class RefreshTokenExpiredError(OAuthError):
    """No refresh token is available, or the authorization server rejected it."""

    default_code = "OAUTH2_REFRESH_TOKEN_EXPIRED"


class TokenNotAvailableError(OAuthError):
    """No access token available (need to authorize first)."""

    default_code = "OAUTH2_AUTHORIZATION_REQUIRED"


class AuthorizationError(OAuthError):
    """Interactive authorization flow failed."""

    default_code = "OAUTH2_AUTHORIZATION_ERROR"


class UserDeniedError(AuthorizationError):
    """User declined consent on the authorization page."""

    default_code = "OAUTH2_USER_DENIED"

    def __init__(self, operation: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            "User denied the authorization request",
            operation=operation,
            context=context,
        )


class StateMismatchError(AuthorizationError):
    """Callback state differs from the one sent: possible CSRF attack."""

    default_code = "OAUTH2_STATE_MISMATCH"

    def __init__(self, operation: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            "State parameter mismatch - possible CSRF attack",
            operation=operation,
            context=context,
        )


class CallbackTimeoutError(AuthorizationError):
    """No authorization callback arrived before the deadline."""

    default_code = "OAUTH2_CALLBACK_TIMEOUT"

    def __init__(
        self,
        timeout_seconds: float,
        operation: str = "wait_for_callback",
        context: Optional[Dict[str, Any]] = None,
    ):
        merged = {"timeout_seconds": timeout_seconds}
        merged.update(context or {})
        super().__init__(
            f"No authorization callback received within {timeout_seconds} seconds. "
            f"Please ensure you completed the authorization in your browser.",
            operation=operation,
            context=merged,
        )
        self.timeout_seconds = timeout_seconds


class OAuthNetworkError(OAuthError):
    """Transport failure, server error, or error value returned in the callback."""

    default_code = "OAUTH2_NETWORK_ERROR"


class TokenExchangeError(OAuthError):
    """Authorization server rejected the authorization code."""

    default_code = "OAUTH2_TOKEN_EXCHANGE_ERROR"


class TokenStorageError(OAuthError):
    """Token storage operation failed (file I/O or encryption error)."""

    default_code = "OAUTH2_TOKEN_STORAGE_ERROR"

    def __init__(
        self,
        action: str,
        message: str,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            f"Failed to {action} tokens: {message}",
            operation=operation,
            context=context,
        )
        self.action = action
