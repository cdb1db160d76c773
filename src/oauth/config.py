"""
OAuth client configuration for the token lifecycle manager.

This module provides configuration management for OAuth 2.0 authentication
against a third-party authorization server. Configuration can be loaded from
environment variables or provided programmatically. It is immutable after
construction; runtime tuning goes through ``OAuth2AuthProvider.update_config``.
"""

import dataclasses
import math
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence, Tuple
from urllib.parse import urlparse

from .exceptions import ConfigurationError

DEFAULT_REDIRECT_URI = "http://localhost:3000/oauth2callback"
DEFAULT_PORT = 3000

DEFAULT_REFRESH_THRESHOLD_MS = 5 * 60 * 1000
DEFAULT_REFRESH_JITTER_MS = 30 * 1000
DEFAULT_MIN_REFRESH_INTERVAL_MS = 30 * 1000
DEFAULT_CALLBACK_TIMEOUT_SECONDS = 300.0

DEFAULT_AUTHORIZATION_URL = "https://accounts.google.com/o/oauth2/v2/auth"
DEFAULT_TOKEN_URL = "https://oauth2.googleapis.com/token"
DEFAULT_TOKEN_FILE = str(Path.home() / ".config" / "oauth2-lifecycle" / "tokens.json")

# Tunables that may change after construction via update_config()
DYNAMIC_FIELDS = frozenset(
    {
        "proactive_refresh_enabled",
        "refresh_threshold_ms",
        "refresh_jitter_ms",
        "min_refresh_interval_ms",
        "callback_timeout_seconds",
    }
)

_FALSE_VALUES = {"false", "0", "off", "no"}


@dataclass(frozen=True)
class OAuthClientConfig:
    """
    Configuration for an OAuth 2.0 client.

    Attributes:
        client_id: OAuth client ID issued by the authorization server
        client_secret: OAuth client secret
        scopes: Scopes to request (at least one)
        redirect_uri: Local redirect URI registered with the authorization server
        port: Port for the local callback listener (defaults to redirect URI port)
        proactive_refresh_enabled: Refresh before expiry instead of only after it
        refresh_threshold_ms: Refresh when the token expires within this window
        refresh_jitter_ms: Random spread applied to the threshold
        min_refresh_interval_ms: Minimum spacing between proactive refresh attempts
        callback_timeout_seconds: How long to wait for the authorization callback
        authorization_url: Authorization endpoint
        token_url: Token endpoint
        token_file: Path of the default token storage file
    """

    # Required
    client_id: str
    client_secret: str
    scopes: Tuple[str, ...]

    # Callback configuration
    redirect_uri: str = DEFAULT_REDIRECT_URI
    port: Optional[int] = None

    # Proactive refresh
    proactive_refresh_enabled: bool = True
    refresh_threshold_ms: int = DEFAULT_REFRESH_THRESHOLD_MS
    refresh_jitter_ms: int = DEFAULT_REFRESH_JITTER_MS
    min_refresh_interval_ms: int = DEFAULT_MIN_REFRESH_INTERVAL_MS

    callback_timeout_seconds: float = DEFAULT_CALLBACK_TIMEOUT_SECONDS

    # Authorization server endpoints
    authorization_url: str = DEFAULT_AUTHORIZATION_URL
    token_url: str = DEFAULT_TOKEN_URL

    token_file: str = field(default=DEFAULT_TOKEN_FILE)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not self.client_id or not isinstance(self.client_id, str):
            raise ConfigurationError("client_id cannot be empty")

        if not self.client_secret or not isinstance(self.client_secret, str):
            raise ConfigurationError("client_secret cannot be empty")

        if isinstance(self.scopes, str) or not self.scopes:
            raise ConfigurationError("scopes must be a non-empty list of scope strings")
        object.__setattr__(self, "scopes", tuple(self.scopes))
        if not all(isinstance(scope, str) and scope for scope in self.scopes):
            raise ConfigurationError("scopes must be a non-empty list of scope strings")

        parsed = urlparse(self.redirect_uri or "")
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ConfigurationError(
                f"redirect_uri must be a valid http(s) URL, got {self.redirect_uri!r}"
            )

        if self.port is None:
            object.__setattr__(self, "port", parsed.port or DEFAULT_PORT)

        if not isinstance(self.port, int) or not (1 <= self.port <= 65535):
            raise ConfigurationError(
                f"port must be between 1 and 65535, got {self.port}"
            )

        for name in (
            "refresh_threshold_ms",
            "refresh_jitter_ms",
            "min_refresh_interval_ms",
            "callback_timeout_seconds",
        ):
            value = getattr(self, name)
            if (
                isinstance(value, bool)
                or not isinstance(value, (int, float))
                or not math.isfinite(value)
            ):
                raise ConfigurationError(f"{name} must be a finite number, got {value!r}")

        for name in ("refresh_threshold_ms", "refresh_jitter_ms", "min_refresh_interval_ms"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} cannot be negative")

        if self.callback_timeout_seconds <= 0:
            raise ConfigurationError("callback_timeout_seconds must be positive")

    @property
    def callback_path(self) -> str:
        """URL path the authorization server redirects to."""
        return urlparse(self.redirect_uri).path or "/"

    @property
    def callback_host(self) -> str:
        """
        Interface the callback listener binds to.

        ``localhost`` is pinned to the IPv4 loopback so the listener and the
        browser agree on the address family.
        """
        host = urlparse(self.redirect_uri).hostname or "localhost"
        return "127.0.0.1" if host == "localhost" else host

    def with_updates(self, **changes) -> "OAuthClientConfig":
        """
        Return a copy with dynamic tunables changed.

        Raises:
            ConfigurationError: If a non-tunable field is named or a value is invalid
        """
        unknown = set(changes) - DYNAMIC_FIELDS
        if unknown:
            raise ConfigurationError(
                f"Cannot change {', '.join(sorted(unknown))} after construction; "
                f"only {', '.join(sorted(DYNAMIC_FIELDS))} are adjustable"
            )
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_env(cls) -> "OAuthClientConfig":
        """
        Load configuration from environment variables.

        Required environment variables:
            OAUTH_CLIENT_ID: OAuth client ID
            OAUTH_CLIENT_SECRET: OAuth client secret

        Optional environment variables:
            OAUTH_SCOPES: Comma or whitespace separated scopes
            OAUTH_REDIRECT_URI: Redirect URI (default: http://localhost:3000/oauth2callback)
            OAUTH_PORT: Callback listener port (default: redirect URI port)
            OAUTH_PROACTIVE_REFRESH: "false" disables proactive refresh
            OAUTH_REFRESH_THRESHOLD_MS: Refresh threshold (default: 300000)
            OAUTH_REFRESH_JITTER_MS: Refresh jitter (default: 30000)
            OAUTH_MIN_REFRESH_INTERVAL_MS: Minimum refresh spacing (default: 30000)
            OAUTH_CALLBACK_TIMEOUT_SECONDS: Callback wait (default: 300)
            OAUTH_TOKEN_FILE: Token file path
            OAUTH_AUTHORIZATION_URL / OAUTH_TOKEN_URL: Endpoint overrides

        Returns:
            OAuthClientConfig instance

        Raises:
            ConfigurationError: If required variables are missing or malformed
        """
        client_id = os.environ.get("OAUTH_CLIENT_ID")
        client_secret = os.environ.get("OAUTH_CLIENT_SECRET")

        if not client_id or not client_secret:
            raise ConfigurationError(
                "Missing OAuth client credentials. Set environment variables:\n"
                "  OAUTH_CLIENT_ID=your_client_id\n"
                "  OAUTH_CLIENT_SECRET=your_client_secret\n"
                "\n"
                "Create credentials in your authorization server's developer console."
            )

        scopes = _split_scopes(os.environ.get("OAUTH_SCOPES", ""))
        if not scopes:
            raise ConfigurationError(
                "Missing OAuth scopes. Set OAUTH_SCOPES to a comma separated list."
            )

        port = os.environ.get("OAUTH_PORT")
        proactive = os.environ.get("OAUTH_PROACTIVE_REFRESH", "true")

        return cls(
            client_id=client_id,
            client_secret=client_secret,
            scopes=scopes,
            redirect_uri=os.environ.get("OAUTH_REDIRECT_URI", DEFAULT_REDIRECT_URI),
            port=_parse_int("OAUTH_PORT", port) if port else None,
            proactive_refresh_enabled=proactive.strip().lower() not in _FALSE_VALUES,
            refresh_threshold_ms=_env_int(
                "OAUTH_REFRESH_THRESHOLD_MS", DEFAULT_REFRESH_THRESHOLD_MS
            ),
            refresh_jitter_ms=_env_int("OAUTH_REFRESH_JITTER_MS", DEFAULT_REFRESH_JITTER_MS),
            min_refresh_interval_ms=_env_int(
                "OAUTH_MIN_REFRESH_INTERVAL_MS", DEFAULT_MIN_REFRESH_INTERVAL_MS
            ),
            callback_timeout_seconds=float(
                _env_int("OAUTH_CALLBACK_TIMEOUT_SECONDS", int(DEFAULT_CALLBACK_TIMEOUT_SECONDS))
            ),
            authorization_url=os.environ.get("OAUTH_AUTHORIZATION_URL", DEFAULT_AUTHORIZATION_URL),
            token_url=os.environ.get("OAUTH_TOKEN_URL", DEFAULT_TOKEN_URL),
            token_file=os.environ.get("OAUTH_TOKEN_FILE", DEFAULT_TOKEN_FILE),
        )


def _split_scopes(raw: str) -> Sequence[str]:
    return tuple(scope for scope in re.split(r"[,\s]+", raw) if scope)


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return _parse_int(name, raw.strip())
