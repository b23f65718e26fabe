"""Ephemeral localhost HTTP server for OAuth2 redirect capture.

Binds the first free port of a small range, serves exactly one
redirect on the expected callback path, answers it with a success or
error page and shuts itself down after a grace delay.

Uses only stdlib (http.server, threading, urllib.parse).
"""

# pylint: disable=logging-too-many-args,C0103,W0212

from __future__ import annotations

import logging
import threading

from collections.abc import Iterable
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import parse_qs, urlparse

from ..exceptions import (
    AuthenticationError,
    AuthFlowTimeout,
    CallbackServerError,
    CallbackValidationError,
    ProviderAuthError,
)
from .templates import render_error_page, render_success_page
from .types import CallbackResult


logger = logging.getLogger("taskman.auth")

DEFAULT_PORTS = range(8080, 8090)

VALIDATION_ERROR_TITLE = "Authentication Failed"
VALIDATION_ERROR_DESCRIPTION = (
    "Invalid request parameters. This may be due to a security issue or session timeout."
)


def parse_callback_query(query: str) -> CallbackResult:
    """Parse the query string of an OAuth redirect.

    Parameters
    ----------
    query : str
        Raw query string (without ``?``).

    Returns
    -------
    CallbackResult
    """
    params = parse_qs(query, keep_blank_values=True)
    first = {key: values[0] for key, values in params.items() if values}
    return CallbackResult(
        code=first.pop("code", None) or None,
        state=first.pop("state", None),
        error=first.pop("error", None) or None,
        error_description=first.pop("error_description", None) or None,
        extra=first,
    )


class OAuthCallbackServer:
    """Ephemeral localhost HTTP server for capturing OAuth2 redirects.

    Parameters
    ----------
    expected_state : str
        CSRF state sent in the authorization request.
    callback_path : str
        Path the provider redirects to (default ``"/callback"``).
    host : str
        Bind address (default ``"localhost"``).
    ports : iterable of int
        Candidate ports, probed in order (default 8080-8089).
    success_delay : float
        Seconds to keep serving after a successful redirect.
    error_delay : float
        Seconds to keep serving after a failed redirect, so the user
        can read the error page.
    """

    def __init__(
        self,
        expected_state: str,
        callback_path: str = "/callback",
        host: str = "localhost",
        ports: Iterable[int] = DEFAULT_PORTS,
        success_delay: float = 2.0,
        error_delay: float = 10.0,
    ) -> None:
        """Initialize the callback server."""
        self._expected_state = expected_state
        self._callback_path = callback_path
        self._host = host
        self._ports = list(ports)
        self._success_delay = success_delay
        self._error_delay = error_delay

        self._server: HTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._actual_port: int = 0

        # First callback decides these; later hits replay the page.
        self._page: tuple[int, str] | None = None
        self._code: str | None = None
        self._failure: AuthenticationError | None = None

    @property
    def port(self) -> int:
        """The bound port (``0`` before :meth:`start`)."""
        return self._actual_port

    @property
    def callback_path(self) -> str:
        """Path the listener answers on."""
        return self._callback_path

    @property
    def is_running(self) -> bool:
        """Whether the listener is currently bound."""
        return self._server is not None

    def redirect_uri(self, base: str = "http://localhost") -> str:
        """Get the redirect URI for this callback server.

        Parameters
        ----------
        base : str
            Scheme and host registered with the provider.

        Returns
        -------
        str
            The full redirect URI (e.g. ``http://localhost:8080/callback``).
        """
        return f"{base.rstrip('/')}:{self._actual_port}{self._callback_path}"

    def _handle_callback(self, query: str) -> tuple[int, str]:
        """Decide the outcome of the first callback and return the page to send."""
        with self._lock:
            if self._page is not None:
                return self._page

            result = parse_callback_query(query)
            if result.error:
                description = result.error_description or result.error
                logger.warning("OAuth provider returned error: %s", result.error)
                self._failure = ProviderAuthError(
                    f"OAuth provider returned error: {description}",
                    code=result.error,
                    description=description,
                )
                self._page = (400, render_error_page(result.error, result.error_description))
                delay = self._error_delay
            elif not result.code or result.state != self._expected_state:
                reason = "missing authorization code" if not result.code else "state mismatch"
                logger.warning("Rejected OAuth callback: %s", reason)
                self._failure = CallbackValidationError(
                    f"Invalid OAuth callback: {reason}",
                )
                self._page = (
                    400,
                    render_error_page(VALIDATION_ERROR_TITLE, VALIDATION_ERROR_DESCRIPTION),
                )
                delay = self._error_delay
            else:
                self._code = result.code
                self._page = (200, render_success_page())
                delay = self._success_delay

            # The response is written by the caller before the timer can fire.
            self._timer = threading.Timer(delay, self._finish)
            self._timer.daemon = True
            self._timer.start()
            return self._page

    def _finish(self) -> None:
        """Shut down after the grace delay and release waiters."""
        self._shutdown()
        self._done.set()

    def _shutdown(self) -> None:
        with self._lock:
            server, thread = self._server, self._thread
            self._server = None
            self._thread = None
        if server is not None:
            server.shutdown()
            server.server_close()
        if thread is not None and thread is not threading.current_thread() and thread.is_alive():
            thread.join(timeout=5)

    def _bind(self, handler: type[BaseHTTPRequestHandler]) -> HTTPServer:
        for port in self._ports:
            try:
                server = HTTPServer((self._host, port), handler)
            except OSError as exc:
                logger.debug("Port %s unavailable for OAuth callback: %s", port, exc)
                continue
            return server
        msg = f"No free port for the OAuth callback listener in {self._ports!r}"
        raise CallbackServerError(msg)

    def start(self) -> int:
        """Start the callback server on a daemon thread.

        Returns
        -------
        int
            The bound port.

        Raises
        ------
        CallbackServerError
            If every candidate port is taken.
        """
        server_ref = self

        class _CallbackHandler(BaseHTTPRequestHandler):
            """HTTP request handler for OAuth2 callbacks."""

            def do_GET(self) -> None:
                """Handle GET requests."""
                parsed = urlparse(self.path)
                if parsed.path != server_ref._callback_path:
                    self.send_error(404)
                    return
                status, page = server_ref._handle_callback(parsed.query)
                self._send_html(status, page)

            def _send_html(self, status: int, html_content: str) -> None:
                """Send an HTML response with security headers."""
                encoded = html_content.encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(encoded)))
                self.send_header("Cache-Control", "no-store")
                self.send_header(
                    "Content-Security-Policy",
                    "default-src 'none'; style-src 'unsafe-inline'; script-src 'unsafe-inline'",
                )
                self.send_header("X-Content-Type-Options", "nosniff")
                self.end_headers()
                self.wfile.write(encoded)

            def log_message(self, *args: Any) -> None:
                """Redirect HTTP server logging to the taskman logger."""
                if args:
                    logger.debug("OAuth callback server: %s", args[0] % args[1:])

        server = self._bind(_CallbackHandler)
        self._actual_port = server.server_address[1]
        self._server = server

        self._thread = threading.Thread(target=server.serve_forever, daemon=True)
        self._thread.start()

        logger.debug(
            "OAuth callback server listening on %s:%s%s",
            self._host,
            self._actual_port,
            self._callback_path,
        )
        return self._actual_port

    def wait_for_code(self, timeout: float = 300.0) -> str:
        """Block until the redirect has been handled and the grace delay elapsed.

        Parameters
        ----------
        timeout : float
            Maximum seconds to wait (default 300).

        Returns
        -------
        str
            The authorization code.

        Raises
        ------
        ProviderAuthError
            The provider redirected with an ``error`` parameter.
        CallbackValidationError
            The code was missing or the state did not match.
        AuthFlowTimeout
            Nobody completed the redirect in time.
        """
        if not self._done.wait(timeout=timeout):
            self.stop()
            msg = f"Timed out after {timeout:.0f}s waiting for the browser login"
            raise AuthFlowTimeout(msg, timeout=timeout)
        if self._failure is not None:
            raise self._failure
        if self._code is None:
            msg = "OAuth callback listener stopped before a redirect arrived"
            raise CallbackValidationError(msg)
        return self._code

    def stop(self) -> None:
        """Force-shutdown the callback server. Safe to call repeatedly."""
        timer = self._timer
        if timer is not None:
            timer.cancel()
        self._shutdown()
        self._done.set()

    def __enter__(self) -> OAuthCallbackServer:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
