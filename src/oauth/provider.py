"""
OAuth2 authentication provider.

This module provides the main interface for OAuth in the application. The
provider owns the in-memory credential and keeps it fresh:

- validate_auth() refreshes proactively shortly before expiry (with jitter
  and a minimum retry interval) and absorbs refresh failures into False
- refresh_token() forces a refresh and surfaces typed errors
- get_auth_client() runs the interactive authorization flow when there is
  no usable credential

All refreshes for one provider go through a single-flight coordinator, so
concurrent callers never trigger more than one token endpoint request.

Example:
    provider = OAuth2AuthProvider(OAuthClientConfig.from_env())
    await provider.initialize()
    auth = await provider.get_auth_client()
    async with httpx.AsyncClient(auth=auth) as client:
        response = await client.get(url)
"""

import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Generator, List, Optional

import httpx

from .authorization_flow import AuthorizationFlow
from .browser import BrowserLauncher
from .config import OAuthClientConfig
from .exceptions import (
    ClientNotInitializedError,
    OAuthError,
    RefreshTokenExpiredError,
    TokenNotAvailableError,
    TokenStorageError,
)
from .metrics import AuthMetrics, auth_metrics
from .refresh_window import RefreshWindow, calculate_refresh_window, now_ms
from .single_flight import SingleFlight
from .token_client import TokenEndpointClient
from .token_storage import Credential, CredentialStore, FileTokenStorage, StoredCredential

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthInfo:
    """
    Authentication status snapshot.

    Attributes:
        is_authenticated: Whether a usable credential is held
        scopes: Granted scopes (configured scopes when the server did not report any)
        expires_at: Access token expiry, if known
        client_id: Configured client identity
    """

    is_authenticated: bool
    scopes: List[str]
    expires_at: Optional[datetime]
    client_id: str


class AuthorizedClient(httpx.Auth):
    """
    httpx authentication that stamps the provider's current access token.

    The token is read on every request, so a client built once keeps working
    across refreshes.

    Example:
        auth = await provider.get_auth_client()
        async with httpx.AsyncClient(auth=auth) as client:
            ...
    """

    def __init__(self, provider: "OAuth2AuthProvider"):
        self._provider = provider

    @property
    def access_token(self) -> str:
        """
        Current access token.

        Raises:
            TokenNotAvailableError: If the provider holds no credential
        """
        credential = self._provider.credential
        if credential is None or not credential.access_token:
            raise TokenNotAvailableError(
                "No access token available. Run the authorization flow first.",
                operation="authorization_header",
            )
        return credential.access_token

    def authorization_header(self) -> Dict[str, str]:
        """
        Authorization header ready to merge into request headers.

        Returns:
            {"Authorization": "Bearer <token>"}
        """
        return {"Authorization": f"Bearer {self.access_token}"}

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self.access_token}"
        yield request


class OAuth2AuthProvider:
    """
    Token lifecycle manager for one OAuth client.

    Callers share one provider per client identity; the provider is not
    safe to use from multiple event loops.
    """

    def __init__(
        self,
        config: Optional[OAuthClientConfig] = None,
        store: Optional[CredentialStore] = None,
        token_client: Optional[TokenEndpointClient] = None,
        browser_launcher: Optional[BrowserLauncher] = None,
        authorization_flow: Optional[AuthorizationFlow] = None,
        metrics: Optional[AuthMetrics] = None,
        clock: Callable[[], int] = now_ms,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize OAuth provider.

        Args:
            config: OAuth configuration (loads from environment if not provided)
            store: Credential store (default: FileTokenStorage at config.token_file)
            token_client: Token endpoint client
            browser_launcher: Browser handoff for the authorization flow
            authorization_flow: Pre-built authorization flow (overrides browser_launcher)
            metrics: Metrics emitter
            clock: Epoch-ms clock
            rng: Random source for refresh jitter

        Raises:
            ConfigurationError: If configuration is missing or invalid
        """
        self.config = config or OAuthClientConfig.from_env()
        self.metrics = metrics or auth_metrics
        self.store = store or FileTokenStorage(self.config.token_file, metrics=self.metrics)
        self.token_client = token_client or TokenEndpointClient(self.config, clock=clock)
        self.authorization_flow = authorization_flow or AuthorizationFlow(
            self.config, self.token_client, browser_launcher
        )
        self._clock = clock
        self._rng = rng

        self._credential: Optional[Credential] = None
        self._initialized = False
        self._last_refresh_attempt_ms: Optional[int] = None

        self._initialize_flight: SingleFlight[None] = SingleFlight("initialize")
        self._refresh_flight: SingleFlight[None] = SingleFlight("refresh")
        self._authorization_flight: SingleFlight[None] = SingleFlight("authorization")

    @property
    def credential(self) -> Optional[Credential]:
        """Credential currently held in memory."""
        return self._credential

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def refresh_in_progress(self) -> bool:
        return self._refresh_flight.in_flight

    async def initialize(self) -> None:
        """
        Load stored credentials. Safe to call repeatedly and concurrently.

        Stored credentials issued to a different client_id are ignored.
        Unreadable storage is logged and treated as "no tokens".
        """
        if self._initialized:
            return
        await self._initialize_flight.run(self._load_stored_credential)

    async def _load_stored_credential(self) -> None:
        if self._initialized:
            return

        try:
            stored = await self.store.get_tokens()
        except (TokenStorageError, OSError) as e:
            logger.warning(f"Could not load stored tokens, continuing without: {e}")
            self.metrics.emit_cache_corrupted("token_store", type(e).__name__)
            stored = None

        if stored is not None:
            if stored.client_id != self.config.client_id:
                logger.warning(
                    f"Stored tokens belong to client {stored.client_id}, "
                    f"not {self.config.client_id}; ignoring them"
                )
            else:
                self._credential = stored.credential
                logger.info("Loaded stored OAuth credentials")
        else:
            logger.info("No stored OAuth credentials; authorization will be required")

        self._initialized = True
        logger.info(f"OAuth2 provider initialized for client {self.config.client_id}")

    async def get_auth_client(self, timeout: Optional[float] = None) -> AuthorizedClient:
        """
        Return an authenticated client, authorizing interactively if needed.

        Args:
            timeout: Callback wait for the authorization flow
                (default: config.callback_timeout_seconds)

        Returns:
            AuthorizedClient bound to this provider

        Raises:
            UserDeniedError: User declined consent
            StateMismatchError: Callback state mismatch (possible CSRF)
            CallbackTimeoutError: No callback before the deadline
            OAuthNetworkError: Transport failure or callback error
            TokenExchangeError: Authorization code rejected
            TokenStorageError: Tokens obtained but could not be persisted
        """
        await self.initialize()

        if await self.validate_auth():
            return AuthorizedClient(self)

        logger.info("No valid credentials, starting authorization flow")
        await self._authorization_flight.run(lambda: self._run_authorization(timeout))
        return AuthorizedClient(self)

    async def _run_authorization(self, timeout: Optional[float]) -> None:
        credential = await self.authorization_flow.run(timeout)
        self._credential = credential
        self._last_refresh_attempt_ms = None
        await self._persist(credential)
        logger.info("Authorization complete, tokens saved")

    async def validate_auth(self) -> bool:
        """
        Check that a usable credential is held, refreshing when due.

        Refresh failures are logged and reported as False rather than
        raised. The fast path (token far from expiry) does not suspend.

        Returns:
            True if authenticated
        """
        if not self._initialized:
            logger.debug("validate_auth called before initialize")
            return False

        credential = self._credential
        if credential is None or not credential.access_token:
            return False

        now = self._clock()
        if (
            self.config.proactive_refresh_enabled
            and credential.expiry_ms is not None
            and credential.refresh_token
        ):
            window = calculate_refresh_window(
                credential.expiry_ms,
                self.config.refresh_threshold_ms,
                self.config.refresh_jitter_ms,
                current_ms=now,
                rng=self._rng,
            )
            if window.should_refresh:
                return await self._refresh_when_due(credential, window, now)

        if credential.expiry_ms is not None and credential.expiry_ms <= now:
            if not credential.refresh_token:
                logger.info("Access token expired and no refresh token is available")
                return False
            logger.info("Access token expired, refreshing")
            return await self._refresh_absorbing_errors("expired")

        return True

    async def _refresh_when_due(
        self, credential: Credential, window: RefreshWindow, now: int
    ) -> bool:
        expired = credential.expiry_ms <= now

        if self._refresh_flight.in_flight:
            return await self._refresh_absorbing_errors("proactive")

        last_attempt = self._last_refresh_attempt_ms
        if (
            not expired
            and last_attempt is not None
            and now - last_attempt < self.config.min_refresh_interval_ms
        ):
            logger.debug(
                f"Skipping proactive refresh, last attempt {now - last_attempt}ms ago "
                f"(minimum interval {self.config.min_refresh_interval_ms}ms)"
            )
            return True

        time_until_expiry = credential.expiry_ms - now
        if expired:
            logger.info("Access token expired, refreshing")
        else:
            logger.debug(
                f"Token expires in {time_until_expiry}ms "
                f"(threshold {window.threshold_ms}ms, jitter {window.jitter_ms}ms), "
                f"refreshing proactively"
            )
            self.metrics.emit_refresh_proactive(time_until_expiry, window.threshold_ms)

        self._last_refresh_attempt_ms = now
        return await self._refresh_absorbing_errors("expired" if expired else "proactive")

    async def _refresh_absorbing_errors(self, refresh_type: str) -> bool:
        try:
            await self._shared_refresh(refresh_type)
        except OAuthError as e:
            logger.warning(f"Token refresh failed during validation: [{e.code}] {e.message}")
            # Allow an immediate retry on the next call
            self._last_refresh_attempt_ms = None
            return False
        return True

    async def refresh_token(self) -> None:
        """
        Force a token refresh.

        Joins a refresh already in flight instead of starting another.

        Raises:
            ClientNotInitializedError: If initialize() has not completed
            RefreshTokenExpiredError: No refresh token, or it was rejected
            OAuthNetworkError: Token endpoint unreachable
            TokenStorageError: Refreshed tokens could not be persisted
        """
        if not self._initialized:
            raise ClientNotInitializedError("refresh_token")

        credential = self._credential
        if credential is None or not credential.refresh_token:
            raise RefreshTokenExpiredError(
                "No refresh token available. Run the authorization flow again.",
                operation="refresh_token",
                context={"client_id": self.config.client_id},
            )

        self._last_refresh_attempt_ms = self._clock()
        await self._shared_refresh("manual")

    async def _shared_refresh(self, refresh_type: str) -> None:
        await self._refresh_flight.run(lambda: self._execute_refresh(refresh_type))

    async def _execute_refresh(self, refresh_type: str) -> None:
        credential = self._credential
        if credential is None or not credential.refresh_token:
            raise RefreshTokenExpiredError(
                "No refresh token available. Run the authorization flow again.",
                operation="refresh_token",
                context={"client_id": self.config.client_id},
            )

        start = time.monotonic()
        try:
            new_credential = await self.token_client.refresh(credential)
            self._credential = new_credential
            await self._persist(new_credential)
        except OAuthError as e:
            duration_ms = int((time.monotonic() - start) * 1000)
            self.metrics.emit_refresh_failure(e.code, duration_ms, refresh_type)
            raise

        duration_ms = int((time.monotonic() - start) * 1000)
        time_until_expiry = None
        if new_credential.expiry_ms is not None:
            time_until_expiry = new_credential.expiry_ms - self._clock()
        self.metrics.emit_refresh_success(duration_ms, refresh_type, time_until_expiry)
        logger.info(f"Access token refreshed ({refresh_type}) in {duration_ms}ms")

    async def _persist(self, credential: Credential) -> None:
        stored = StoredCredential(
            credential=credential,
            client_id=self.config.client_id,
            scopes=list(self.config.scopes),
            stored_at_ms=self._clock(),
        )
        try:
            await self.store.save_tokens(stored)
        except OAuthError:
            raise
        except Exception as e:
            # Stores outside this package may raise anything
            raise TokenStorageError(
                "save",
                f"{type(e).__name__}: {e}",
                operation="save_tokens",
                context={"store": type(self.store).__name__, "client_id": self.config.client_id},
            ) from e

    async def get_auth_info(self) -> AuthInfo:
        """
        Get authentication status for diagnostics.

        Raises:
            ClientNotInitializedError: If initialize() has not completed
        """
        if not self._initialized:
            raise ClientNotInitializedError("get_auth_info")

        is_authenticated = await self.validate_auth()
        credential = self._credential
        scopes = list(credential.scope) if credential and credential.scope else list(self.config.scopes)
        return AuthInfo(
            is_authenticated=is_authenticated,
            scopes=scopes,
            expires_at=credential.expires_at if credential else None,
            client_id=self.config.client_id,
        )

    def refresh_window(self) -> Optional[RefreshWindow]:
        """Refresh window for the held credential, or None without expiry info."""
        credential = self._credential
        if credential is None or credential.expiry_ms is None:
            return None
        return calculate_refresh_window(
            credential.expiry_ms,
            self.config.refresh_threshold_ms,
            self.config.refresh_jitter_ms,
            current_ms=self._clock(),
            rng=self._rng,
        )

    async def health_check(self) -> bool:
        """
        Check that the provider is initialized and its store is reachable.

        Returns:
            True if healthy
        """
        if not self._initialized:
            return False
        try:
            await self.store.has_tokens()
        except (TokenStorageError, OSError) as e:
            logger.warning(f"Health check failed, token store unreachable: {e}")
            return False
        return True

    def update_config(self, **changes) -> OAuthClientConfig:
        """
        Change runtime tunables (proactive refresh flag, threshold, jitter,
        minimum refresh interval, callback timeout).

        Raises:
            ConfigurationError: If an identity field is named or a value is invalid
        """
        self.config = self.config.with_updates(**changes)
        self.authorization_flow.config = self.config
        logger.info(f"OAuth configuration updated: {', '.join(sorted(changes))}")
        return self.config

    async def revoke(self) -> None:
        """
        Delete stored tokens and forget the in-memory credential.

        This is a local revocation; tokens are not revoked on the
        authorization server. The authorization flow must be run again.

        Raises:
            TokenStorageError: If the stored tokens could not be deleted
        """
        await self.store.delete_tokens()
        self._credential = None
        self._last_refresh_attempt_ms = None
        logger.info("Tokens revoked (local)")
