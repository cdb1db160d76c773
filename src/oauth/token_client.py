"""
Token endpoint client.

This module talks to the authorization server's token endpoint:
- Authorization code exchange (code + PKCE verifier → access/refresh tokens)
- Token refresh (refresh token → new access token)

Transient failures (network errors, 5xx responses) are retried with
exponential backoff. Client errors (4xx) are never retried.
"""

import asyncio
import logging
from base64 import b64encode
from typing import Any, Callable, Dict, Optional

import httpx

from .config import OAuthClientConfig
from .exceptions import OAuthNetworkError, RefreshTokenExpiredError, TokenExchangeError
from .refresh_window import now_ms
from .token_storage import Credential

logger = logging.getLogger(__name__)


class TokenEndpointClient:
    """
    Async client for the OAuth token endpoint.

    The client holds no token state; callers pass the credential to refresh
    and receive a new Credential back.
    """

    def __init__(
        self,
        config: OAuthClientConfig,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_base_seconds: float = 1.0,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initialize token endpoint client.

        Args:
            config: OAuth configuration (client credentials and token URL)
            timeout: Per-request timeout in seconds
            max_retries: Retries after the first attempt for transient failures
            backoff_base_seconds: Delay before the first retry; doubles each retry
            clock: Epoch-ms clock used to compute expiry
        """
        self.config = config
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base_seconds = backoff_base_seconds
        self._clock = clock

    def _headers(self) -> Dict[str, str]:
        credentials = f"{self.config.client_id}:{self.config.client_secret}"
        auth_header = b64encode(credentials.encode()).decode()
        return {
            "Authorization": f"Basic {auth_header}",
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }

    async def exchange_code(
        self, code: str, code_verifier: str, redirect_uri: Optional[str] = None
    ) -> Credential:
        """
        Exchange an authorization code for tokens.

        Args:
            code: Authorization code from the callback
            code_verifier: PKCE verifier the challenge was derived from
            redirect_uri: Redirect URI used in the authorization request

        Returns:
            Credential with access token, refresh token and expiry

        Raises:
            TokenExchangeError: If the authorization server rejects the code
            OAuthNetworkError: On transport failure or malformed response
        """
        logger.info("Exchanging authorization code for tokens")
        response = await self._post(
            {
                "grant_type": "authorization_code",
                "code": code,
                "code_verifier": code_verifier,
                "redirect_uri": redirect_uri or self.config.redirect_uri,
            },
            operation="exchange_code",
        )

        if response.status_code != 200:
            error = _error_code(response)
            logger.error(f"Token exchange failed: {response.status_code} ({error or 'no error code'})")
            raise TokenExchangeError(
                f"Token exchange failed with status {response.status_code}"
                + (f" ({error})" if error else "")
                + ". Check that your client_id and client_secret are correct.",
                operation="exchange_code",
                context={"status_code": response.status_code, "error": error},
            )

        credential = self._parse_token_response(response, "exchange_code")
        logger.info("Successfully obtained tokens")
        return credential

    async def refresh(self, credential: Credential) -> Credential:
        """
        Refresh an access token.

        Args:
            credential: Current credential; its refresh token is used

        Returns:
            New Credential. The refresh token and scope carry over when the
            server does not rotate them.

        Raises:
            RefreshTokenExpiredError: No refresh token, or the server rejected it
            OAuthNetworkError: On transport failure after all retries
        """
        if not credential.refresh_token:
            raise RefreshTokenExpiredError(
                "No refresh token available. Run the authorization flow again.",
                operation="refresh",
            )

        logger.info("Refreshing access token")
        response = await self._post(
            {"grant_type": "refresh_token", "refresh_token": credential.refresh_token},
            operation="refresh",
        )

        if response.status_code != 200:
            error = _error_code(response)
            logger.error(f"Token refresh failed: {response.status_code} ({error or 'no error code'})")
            detail = f" ({error})" if error else ""
            raise RefreshTokenExpiredError(
                f"Token refresh failed with status {response.status_code}{detail}. "
                f"Your refresh token may have expired or been revoked. "
                f"Please run the authorization flow again.",
                operation="refresh",
                context={"status_code": response.status_code, "error": error},
            )

        new_credential = self._parse_token_response(response, "refresh", previous=credential)
        logger.info("Successfully refreshed tokens")
        return new_credential

    async def _post(self, data: Dict[str, str], operation: str) -> httpx.Response:
        """
        POST to the token endpoint, retrying transient failures.

        Returns the first non-5xx response. 4xx responses are returned to the
        caller for classification.
        """
        attempts = self.max_retries + 1
        last_error: Optional[str] = None

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(attempts):
                try:
                    response = await client.post(
                        self.config.token_url, headers=self._headers(), data=data
                    )
                except httpx.TransportError as e:
                    last_error = f"{type(e).__name__}: {e}"
                    logger.warning(
                        f"Network error during {operation} "
                        f"(attempt {attempt + 1}/{attempts}): {last_error}"
                    )
                else:
                    if response.status_code < 500:
                        return response
                    last_error = f"server error {response.status_code}"
                    logger.warning(
                        f"Token endpoint returned {response.status_code} during {operation} "
                        f"(attempt {attempt + 1}/{attempts})"
                    )

                if attempt < self.max_retries:
                    delay = self.backoff_base_seconds * 2**attempt
                    logger.warning(f"Retrying after {delay}s")
                    await asyncio.sleep(delay)

        logger.error(f"{operation} failed after {attempts} attempts")
        raise OAuthNetworkError(
            f"Token endpoint unreachable after {attempts} attempts: {last_error}",
            operation=operation,
            context={"endpoint": self.config.token_url, "attempts": attempts},
        )

    def _parse_token_response(
        self,
        response: httpx.Response,
        operation: str,
        previous: Optional[Credential] = None,
    ) -> Credential:
        try:
            data: Any = response.json()
        except ValueError as e:
            raise OAuthNetworkError(
                "Invalid response from token endpoint: body is not JSON",
                operation=operation,
            ) from e

        if not isinstance(data, dict) or not data.get("access_token"):
            raise OAuthNetworkError(
                "Invalid response from token endpoint: missing access_token",
                operation=operation,
            )

        expiry_ms = None
        expires_in = data.get("expires_in")
        if expires_in is not None:
            try:
                expiry_ms = self._clock() + int(float(expires_in) * 1000)
            except (TypeError, ValueError) as e:
                raise OAuthNetworkError(
                    f"Invalid expires_in in token response: {expires_in!r}",
                    operation=operation,
                ) from e

        scope = data.get("scope")
        if scope:
            scopes = scope.split() if isinstance(scope, str) else list(scope)
        elif previous is not None:
            scopes = list(previous.scope)
        else:
            scopes = []

        return Credential(
            access_token=data["access_token"],
            # Refresh token may or may not be rotated; keep existing if not
            refresh_token=data.get("refresh_token")
            or (previous.refresh_token if previous else None),
            expiry_ms=expiry_ms,
            scope=scopes,
            token_type=data.get("token_type") or "Bearer",
            id_token=data.get("id_token") or (previous.id_token if previous else None),
        )


def _error_code(response: httpx.Response) -> Optional[str]:
    """Extract the OAuth ``error`` field from an error response, if any."""
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        return data["error"]
    return None
