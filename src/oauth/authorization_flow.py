"""
Interactive OAuth authorization code flow with PKCE.

This module orchestrates one interactive login:
1. Generate a CSRF state and a PKCE verifier/challenge pair
2. Build the authorization URL
3. Start the local callback server
4. Hand the URL to the user (browser or printed URL)
5. Wait for the callback (bounded by a timeout)
6. Verify the state and exchange the code for tokens
7. Stop the callback server on every exit path
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional
from urllib.parse import urlencode

from .browser import BrowserLauncher, WebBrowserLauncher
from .callback_server import CallbackResult, OAuthCallbackServer
from .config import OAuthClientConfig
from .exceptions import OAuthNetworkError, StateMismatchError, UserDeniedError
from .pkce import (
    CODE_CHALLENGE_METHOD,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
)
from .token_client import TokenEndpointClient
from .token_storage import Credential

logger = logging.getLogger(__name__)


@dataclass
class AuthFlowState:
    """
    Per-attempt secrets. Created at the start of an attempt and discarded
    when it ends.

    Attributes:
        state: CSRF token round-tripped through the redirect
        code_verifier: PKCE verifier sent with the code exchange
        redirect_uri: Redirect URI used for this attempt
        scopes: Scopes requested
    """

    state: str
    code_verifier: str = field(repr=False)
    redirect_uri: str
    scopes: List[str]


class AuthorizationFlow:
    """Runs the interactive authorization code flow."""

    def __init__(
        self,
        config: OAuthClientConfig,
        token_client: TokenEndpointClient,
        browser_launcher: Optional[BrowserLauncher] = None,
        server_factory: Callable[[OAuthClientConfig], OAuthCallbackServer] = OAuthCallbackServer,
        state_factory: Callable[[], str] = generate_state,
    ):
        """
        Initialize authorization flow.

        Args:
            config: OAuth configuration
            token_client: Client used to exchange the authorization code
            browser_launcher: How to show the URL (default: system browser)
            server_factory: Builds the callback server for an attempt
            state_factory: Produces CSRF state values
        """
        self.config = config
        self.token_client = token_client
        self.browser_launcher = browser_launcher or WebBrowserLauncher()
        self.server_factory = server_factory
        self.state_factory = state_factory
        self._flow_state: Optional[AuthFlowState] = None

    @property
    def in_progress(self) -> bool:
        return self._flow_state is not None

    def build_authorization_url(self, flow_state: AuthFlowState, code_challenge: str) -> str:
        """
        Build the authorization URL.

        ``access_type=offline`` and ``prompt=consent`` make the server issue a
        refresh token even when the user has authorized before.
        """
        params = {
            "response_type": "code",
            "client_id": self.config.client_id,
            "redirect_uri": flow_state.redirect_uri,
            "scope": " ".join(flow_state.scopes),
            "access_type": "offline",
            "prompt": "consent",
            "state": flow_state.state,
            "code_challenge": code_challenge,
            "code_challenge_method": CODE_CHALLENGE_METHOD,
        }
        separator = "&" if "?" in self.config.authorization_url else "?"
        return f"{self.config.authorization_url}{separator}{urlencode(params)}"

    async def run(self, timeout: Optional[float] = None) -> Credential:
        """
        Run one authorization attempt.

        Args:
            timeout: Seconds to wait for the callback
                (default: config.callback_timeout_seconds)

        Returns:
            Credential obtained from the code exchange (not yet persisted)

        Raises:
            UserDeniedError: User declined consent
            StateMismatchError: Callback state did not match (possible CSRF)
            CallbackTimeoutError: No callback before the deadline
            OAuthNetworkError: Callback carried another error, or transport failure
            TokenExchangeError: Authorization server rejected the code
        """
        flow_state = AuthFlowState(
            state=self.state_factory(),
            code_verifier=generate_code_verifier(),
            redirect_uri=self.config.redirect_uri,
            scopes=list(self.config.scopes),
        )
        code_challenge = generate_code_challenge(flow_state.code_verifier)
        self._flow_state = flow_state
        server = self.server_factory(self.config)

        logger.info("Starting OAuth authorization flow")
        try:
            await server.start()

            auth_url = self.build_authorization_url(flow_state, code_challenge)
            try:
                self.browser_launcher.open(auth_url)
            except Exception as e:
                # Handing off the URL is best effort; the user can still open it
                logger.warning(f"Browser launcher failed: {e}")
                print(f"Please open this URL in your browser:\n\n  {auth_url}\n")

            result = await server.wait_for_callback(timeout)
            code = self._verify_callback(result, flow_state)

            credential = await self.token_client.exchange_code(
                code, flow_state.code_verifier, flow_state.redirect_uri
            )
            logger.info("Authorization flow completed successfully")
            return credential
        finally:
            await server.stop()
            self._flow_state = None

    def _verify_callback(self, result: CallbackResult, flow_state: AuthFlowState) -> str:
        """Classify the callback result and return the authorization code."""
        if result.error:
            if result.error == "access_denied":
                logger.warning("User denied the authorization request")
                raise UserDeniedError(
                    operation="authorization_flow",
                    context={"error_description": result.error_description},
                )
            logger.error(f"Authorization failed: {result.error} - {result.error_description}")
            raise OAuthNetworkError(
                f"Authorization error: {result.error}",
                operation="authorization_flow",
                context={
                    "error": result.error,
                    "error_description": result.error_description,
                },
            )

        if result.state != flow_state.state:
            logger.error("State parameter mismatch in callback - possible CSRF attack")
            raise StateMismatchError(
                operation="authorization_flow",
                context={"state_present": result.state is not None},
            )

        return result.code
