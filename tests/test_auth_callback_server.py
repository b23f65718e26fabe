"""Unit tests for the OAuth2 ephemeral callback server."""

# pylint: disable=consider-using-with

from __future__ import annotations

import socket
import threading
import time
import urllib.error

from urllib.parse import urlencode
from urllib.request import urlopen

import pytest

from taskman.auth.callback_server import OAuthCallbackServer, parse_callback_query
from taskman.exceptions import (
    AuthFlowTimeout,
    CallbackServerError,
    CallbackValidationError,
    ProviderAuthError,
)


STATE = "expected-state"


def _server(**kwargs: object) -> OAuthCallbackServer:
    options: dict[str, object] = {
        "expected_state": STATE,
        "host": "127.0.0.1",
        "ports": [0],
        "success_delay": 0.05,
        "error_delay": 0.05,
    }
    options.update(kwargs)
    return OAuthCallbackServer(**options)  # type: ignore[arg-type]


def _get(url: str) -> tuple[int, str, dict[str, str]]:
    """GET ``url`` and return status, body and headers (4xx included)."""
    try:
        resp = urlopen(url, timeout=5)  # noqa: S310
    except urllib.error.HTTPError as exc:
        return exc.code, exc.read().decode("utf-8"), dict(exc.headers)
    return resp.status, resp.read().decode("utf-8"), dict(resp.headers)


def _callback_url(server: OAuthCallbackServer, **params: str) -> str:
    return f"http://127.0.0.1:{server.port}{server.callback_path}?{urlencode(params)}"


class TestParseCallbackQuery:
    """Tests for parse_callback_query()."""

    def test_code_and_state(self) -> None:
        """Code and state are extracted."""
        result = parse_callback_query("code=abc&state=s1&scope=email")
        assert result.code == "abc"
        assert result.state == "s1"
        assert result.error is None
        assert result.extra == {"scope": "email"}

    def test_empty_code_is_missing(self) -> None:
        """An empty code parameter counts as absent."""
        assert parse_callback_query("code=&state=s").code is None


class TestOAuthCallbackServerLifecycle:
    """Tests for binding and shutdown."""

    def test_start_and_stop(self) -> None:
        """Server binds a port and stops cleanly, twice."""
        server = _server()
        port = server.start()
        assert port > 0
        assert server.is_running
        server.stop()
        server.stop()
        assert not server.is_running

    def test_redirect_uri(self) -> None:
        """Redirect URI combines base, bound port and callback path."""
        with _server(callback_path="/auth/github/callback") as server:
            assert server.redirect_uri("http://localhost") == (
                f"http://localhost:{server.port}/auth/github/callback"
            )

    def test_skips_busy_port(self) -> None:
        """An occupied port is skipped in favour of the next candidate."""
        busy = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        busy.bind(("127.0.0.1", 0))
        busy.listen(1)
        busy_port = busy.getsockname()[1]
        try:
            with _server(ports=[busy_port, 0]) as server:
                assert server.port not in (0, busy_port)
        finally:
            busy.close()

    def test_exhausted_range_fails_fast(self) -> None:
        """All candidate ports taken raises CallbackServerError."""
        busy = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        busy.bind(("127.0.0.1", 0))
        busy.listen(1)
        try:
            server = _server(ports=[busy.getsockname()[1]])
            with pytest.raises(CallbackServerError):
                server.start()
        finally:
            busy.close()

    def test_wait_timeout(self) -> None:
        """No redirect within the timeout raises AuthFlowTimeout and closes the port."""
        server = _server()
        server.start()
        with pytest.raises(AuthFlowTimeout):
            server.wait_for_code(timeout=0.2)
        assert not server.is_running


class TestOAuthCallbackServerRequests:
    """Tests for redirect handling."""

    def test_valid_code(self) -> None:
        """Matching state yields the code and a success page."""
        with _server() as server:
            status, body, headers = _get(_callback_url(server, code="abc123", state=STATE))
            assert status == 200
            assert "Authentication Successful" in body
            assert headers["Cache-Control"] == "no-store"
            assert server.wait_for_code(timeout=5) == "abc123"

    def test_state_mismatch(self) -> None:
        """Wrong state is a validation failure with a 400 error page."""
        with _server() as server:
            status, body, _ = _get(_callback_url(server, code="abc123", state="WRONG"))
            assert status == 400
            assert "Invalid request parameters" in body
            with pytest.raises(CallbackValidationError) as exc_info:
                server.wait_for_code(timeout=5)
            assert exc_info.value.code == "validation_failed"

    def test_missing_code(self) -> None:
        """Missing code is a validation failure."""
        with _server() as server:
            _get(_callback_url(server, state=STATE))
            with pytest.raises(CallbackValidationError):
                server.wait_for_code(timeout=5)

    def test_provider_error(self) -> None:
        """An error parameter surfaces as ProviderAuthError with the provider's code."""
        with _server() as server:
            status, body, _ = _get(
                _callback_url(server, error="access_denied", error_description="User said no")
            )
            assert status == 400
            assert "access_denied" in body
            assert "User said no" in body
            with pytest.raises(ProviderAuthError) as exc_info:
                server.wait_for_code(timeout=5)
            assert exc_info.value.code == "access_denied"
            assert exc_info.value.description == "User said no"

    def test_error_description_escaped(self) -> None:
        """Provider text is HTML-escaped on the error page."""
        with _server() as server:
            _, body, _ = _get(_callback_url(server, error="x", error_description="<script>x</script>"))
            assert "<script>x</script>" not in body
            assert "&lt;script&gt;x&lt;&#x2F;script&gt;" in body

    def test_other_path_is_404(self) -> None:
        """Unrelated paths get 404 and do not settle the flow."""
        with _server() as server:
            status, _, _ = _get(f"http://127.0.0.1:{server.port}/favicon.ico")
            assert status == 404
            _get(_callback_url(server, code="later", state=STATE))
            assert server.wait_for_code(timeout=5) == "later"

    def test_first_callback_wins(self) -> None:
        """A second hit replays the first page and cannot change the outcome."""
        with _server(success_delay=0.5) as server:
            _get(_callback_url(server, code="first", state=STATE))
            status, body, _ = _get(_callback_url(server, code="second", state="WRONG"))
            assert status == 200
            assert "Authentication Successful" in body
            assert server.wait_for_code(timeout=5) == "first"

    def test_outcome_waits_for_delay(self) -> None:
        """The outcome is released only after the shutdown delay."""
        with _server(error_delay=0.4) as server:
            _get(_callback_url(server, state="WRONG", code="c"))
            started = time.monotonic()
            with pytest.raises(CallbackValidationError):
                server.wait_for_code(timeout=5)
            assert time.monotonic() - started >= 0.3

    def test_shut_down_after_delay(self) -> None:
        """The listener closes itself once the outcome is released."""
        with _server() as server:
            port = server.port
            _get(_callback_url(server, code="abc", state=STATE))
            server.wait_for_code(timeout=5)
            assert not server.is_running
            with pytest.raises(OSError):
                urlopen(f"http://127.0.0.1:{port}/callback", timeout=1)  # noqa: S310

    def test_callback_from_background_thread(self) -> None:
        """wait_for_code blocks until a concurrent redirect arrives."""
        with _server() as server:
            url = _callback_url(server, code="bg", state=STATE)
            thread = threading.Thread(target=lambda: (time.sleep(0.1), _get(url)), daemon=True)
            thread.start()
            assert server.wait_for_code(timeout=5) == "bg"
