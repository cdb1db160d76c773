"""
OAuth 2.0 token lifecycle manager.

This module obtains, caches, proactively refreshes and hands out OAuth 2.0
access tokens for a long-running process calling a third-party API. It
implements the Authorization Code flow with PKCE and a local callback
server for interactive login.

Public API:
    OAuthClientConfig: OAuth configuration management
    OAuth2AuthProvider: Token lifecycle façade
    AuthorizedClient: httpx authentication bound to a provider
    AuthInfo: Authentication status snapshot
    Credential / StoredCredential: Token data structures
    FileTokenStorage / EncryptedFileTokenStorage / InMemoryTokenStorage: Token persistence
    calculate_refresh_window / is_expiring_soon: Proactive refresh scheduling
    generate_code_verifier / generate_code_challenge: PKCE helpers

Exceptions:
    OAuthError: Base exception
    ConfigurationError: Configuration error
    ClientNotInitializedError: Provider used before initialize()
    RefreshTokenExpiredError: Refresh token missing or rejected
    UserDeniedError / StateMismatchError / CallbackTimeoutError: Authorization flow failures
    OAuthNetworkError: Transport failure
    TokenExchangeError: Authorization code rejected
    TokenStorageError: Storage operation failed
"""

from .authorization_flow import AuthFlowState, AuthorizationFlow
from .browser import BrowserLauncher, LoggingBrowserLauncher, WebBrowserLauncher
from .callback_server import CallbackResult, OAuthCallbackServer
from .config import OAuthClientConfig
from .exceptions import (
    AuthorizationError,
    CallbackTimeoutError,
    ClientNotInitializedError,
    ConfigurationError,
    InvalidArgumentError,
    OAuthError,
    OAuthNetworkError,
    PKCEFormatError,
    RefreshTokenExpiredError,
    StateMismatchError,
    TokenExchangeError,
    TokenNotAvailableError,
    TokenStorageError,
    UserDeniedError,
)
from .metrics import AuthMetrics
from .pkce import generate_code_challenge, generate_code_verifier, generate_state
from .provider import AuthInfo, AuthorizedClient, OAuth2AuthProvider
from .refresh_window import RefreshWindow, calculate_refresh_window, is_expiring_soon
from .single_flight import SingleFlight
from .token_client import TokenEndpointClient
from .token_storage import (
    Credential,
    CredentialStore,
    EncryptedFileTokenStorage,
    FileTokenStorage,
    InMemoryTokenStorage,
    StoredCredential,
)

__all__ = [
    # Configuration
    "OAuthClientConfig",
    # Provider
    "OAuth2AuthProvider",
    "AuthorizedClient",
    "AuthInfo",
    # Token Storage
    "Credential",
    "StoredCredential",
    "CredentialStore",
    "FileTokenStorage",
    "EncryptedFileTokenStorage",
    "InMemoryTokenStorage",
    # Refresh scheduling
    "RefreshWindow",
    "calculate_refresh_window",
    "is_expiring_soon",
    "SingleFlight",
    # PKCE
    "generate_code_verifier",
    "generate_code_challenge",
    "generate_state",
    # Token endpoint
    "TokenEndpointClient",
    # Authorization flow
    "AuthorizationFlow",
    "AuthFlowState",
    "OAuthCallbackServer",
    "CallbackResult",
    "BrowserLauncher",
    "WebBrowserLauncher",
    "LoggingBrowserLauncher",
    # Metrics
    "AuthMetrics",
    # Exceptions
    "OAuthError",
    "ConfigurationError",
    "InvalidArgumentError",
    "PKCEFormatError",
    "ClientNotInitializedError",
    "RefreshTokenExpiredError",
    "TokenNotAvailableError",
    "AuthorizationError",
    "UserDeniedError",
    "StateMismatchError",
    "CallbackTimeoutError",
    "OAuthNetworkError",
    "TokenExchangeError",
    "TokenStorageError",
]
