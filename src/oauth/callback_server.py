"""
Local OAuth callback listener.

This module provides the short-lived HTTP endpoint that receives the
authorization server's redirect during interactive login. It runs a Flask
application on a werkzeug server in a background thread and hands the
captured result to the event loop through a one-shot future, so waiting for
the callback is a single await rather than a poll.

IMPORTANT: This server is designed for single-user, personal use. It runs
only for the duration of one authorization attempt.
"""

import asyncio
import logging
import socket
import threading
from dataclasses import dataclass
from typing import Optional

from flask import Flask, Response, request
from markupsafe import escape
from werkzeug.serving import BaseWSGIServer, make_server

from .config import OAuthClientConfig
from .exceptions import CallbackTimeoutError, OAuthNetworkError

logger = logging.getLogger(__name__)

_PAGE_STYLE = "font-family: Arial, sans-serif; max-width: 600px; margin: 50px auto; padding: 20px;"


@dataclass(frozen=True)
class CallbackResult:
    """
    Query parameters captured from the authorization redirect.

    Attributes:
        code: Authorization code (on success)
        error: Error code from the authorization server (on failure)
        error_description: Human-readable error description
        state: CSRF state echoed back by the authorization server
    """

    code: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None
    state: Optional[str] = None


def _page(title: str, heading: str, color: str, body: str) -> str:
    return f"""<html>
    <head><title>{title}</title></head>
    <body style="{_PAGE_STYLE}">
        <h1 style="color: {color};">{heading}</h1>
        {body}
        <p style="margin-top: 30px; color: #666;">You can close this window.</p>
    </body>
    </html>"""


class OAuthCallbackServer:
    """
    Local HTTP server that handles the OAuth redirect.

    Lifecycle: ``start()`` → ``wait_for_callback()`` → ``stop()``. Only the
    first callback carrying a code or an error is kept; later requests get
    a page but do not change the result.

    Security:
    - Binds to the redirect URI host (``localhost`` → 127.0.0.1)
    - Single-use (stopped after one authorization attempt)
    - Authorization codes are never logged
    """

    def __init__(self, config: OAuthClientConfig):
        """
        Initialize callback server.

        Args:
            config: OAuth configuration (redirect URI, port, callback timeout)
        """
        self.config = config
        self.app = Flask(__name__)
        self.app.logger.setLevel(logging.WARNING)
        logging.getLogger("werkzeug").setLevel(logging.ERROR)

        self.result: Optional[CallbackResult] = None
        self._result_lock = threading.Lock()
        self._server: Optional[BaseWSGIServer] = None
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._future: Optional["asyncio.Future[CallbackResult]"] = None

        self.app.add_url_rule(
            self.config.callback_path,
            "oauth_callback",
            self._handle_callback,
            methods=["GET"],
        )

    @property
    def is_running(self) -> bool:
        return self._server is not None

    def _handle_callback(self) -> Response:
        """Handle the authorization server redirect."""
        logger.info("Received OAuth callback")
        error = request.args.get("error")
        code = request.args.get("code")
        state = request.args.get("state")

        if error:
            error_desc = request.args.get("error_description", "Unknown error")
            logger.error(f"OAuth error in callback: {error} - {error_desc}")
            self._publish(
                CallbackResult(error=error, error_description=error_desc, state=state)
            )
            return Response(
                _page(
                    "Authorization Failed",
                    "❌ Authorization Failed",
                    "#d32f2f",
                    f"<p><strong>Error:</strong> {escape(error)}</p>"
                    f"<p><strong>Description:</strong> {escape(error_desc)}</p>",
                ),
                status=400,
                content_type="text/html",
            )

        if not code:
            logger.warning("Callback request without code or error ignored")
            return Response(
                _page(
                    "Authorization Failed",
                    "❌ Authorization Failed",
                    "#d32f2f",
                    "<p>No authorization code received.</p>",
                ),
                status=400,
                content_type="text/html",
            )

        logger.info("Authorization code received")
        self._publish(CallbackResult(code=code, state=state))
        return Response(
            _page(
                "Authorization Successful",
                "✅ Authorization Successful!",
                "#4caf50",
                "<p>The application has been authorized. "
                "Return to the terminal to continue.</p>",
            ),
            status=200,
            content_type="text/html",
        )

    def _publish(self, result: CallbackResult) -> None:
        """Record the first result and wake the waiting coroutine (handler thread)."""
        with self._result_lock:
            if self.result is not None:
                logger.debug("Duplicate callback ignored")
                return
            self.result = result

        loop = self._loop
        if loop is None:
            return
        try:
            loop.call_soon_threadsafe(self._resolve, result)
        except RuntimeError:
            logger.debug("Event loop closed before callback could be delivered")

    def _resolve(self, result: CallbackResult) -> None:
        if self._future is not None and not self._future.done():
            self._future.set_result(result)

    def _bind_socket(self) -> socket.socket:
        host = self.config.callback_host
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, self.config.port))
            sock.listen(16)
        except OSError:
            sock.close()
            raise
        return sock

    async def start(self) -> None:
        """
        Start the callback server in a background thread.

        Raises:
            OAuthNetworkError: If the port cannot be bound
        """
        if self._server is not None:
            return

        self._loop = asyncio.get_running_loop()
        self._future = self._loop.create_future()
        self.result = None

        host, port = self.config.callback_host, self.config.port
        logger.info(f"Starting OAuth callback server on {host}:{port}")
        try:
            sock = self._bind_socket()
        except OSError as e:
            logger.error(f"Could not bind callback server to {host}:{port}: {e}")
            raise OAuthNetworkError(
                f"Could not start callback server on port {port}: {e.strerror or e}",
                operation="start_callback_server",
                context={"host": host, "port": port},
            ) from e

        try:
            # The server takes a duplicate of the bound socket
            self._server = make_server(host, port, self.app, threaded=True, fd=sock.fileno())
        finally:
            sock.close()

        self._thread = threading.Thread(
            target=self._server.serve_forever, name="oauth-callback-server", daemon=True
        )
        self._thread.start()
        logger.info("OAuth callback server started")

    async def wait_for_callback(self, timeout: Optional[float] = None) -> CallbackResult:
        """
        Wait for the authorization redirect.

        Args:
            timeout: Maximum seconds to wait (default: config.callback_timeout_seconds)

        Returns:
            CallbackResult with code or error

        Raises:
            CallbackTimeoutError: If nothing arrives in time
        """
        if self._future is None:
            raise RuntimeError("Callback server has not been started")

        timeout = timeout if timeout is not None else self.config.callback_timeout_seconds
        logger.info(f"Waiting for OAuth callback (timeout: {timeout}s)")
        try:
            return await asyncio.wait_for(asyncio.shield(self._future), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Timeout waiting for callback after {timeout}s")
            raise CallbackTimeoutError(
                timeout, context={"port": self.config.port}
            ) from None

    async def stop(self) -> None:
        """Shut the server down and release the port."""
        server, thread = self._server, self._thread
        self._server = None
        self._thread = None
        if server is None:
            return

        logger.info("OAuth callback server shutting down")
        await asyncio.to_thread(server.shutdown)
        server.server_close()
        if thread is not None:
            await asyncio.to_thread(thread.join, 5)

        if self._future is not None and not self._future.done():
            self._future.cancel()
        self._loop = None
