"""Tests for the RPC backend client."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from helpers import BACKEND_URL, FakeServices

from taskman.auth.types import AuthProvider
from taskman.backend import BackendClient
from taskman.exceptions import NetworkError


def _run(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def _client(services: FakeServices, **kwargs: object) -> BackendClient:
    return BackendClient(BACKEND_URL, http_client=services.client(), **kwargs)  # type: ignore[arg-type]


class TestBackendQueries:
    """Tests for query/mutate wire format."""

    def test_query_sends_json_input(self, services: FakeServices) -> None:
        """Queries are GETs with a JSON-encoded input parameter."""
        services.rpc("GET", "tasks.list", [1, 2])
        result = _run(_client(services).query("tasks.list", {"limit": 2}))
        assert result == [1, 2]
        request = services.requests[-1]
        assert request.method == "GET"
        assert json.loads(request.url.params["input"]) == {"limit": 2}

    def test_mutation_posts_json_body(self, services: FakeServices) -> None:
        """Mutations are POSTs with a JSON body."""
        services.rpc("POST", "auth.internal.exchange", {"internalToken": "jwt", "expiresIn": 600})
        result = _run(_client(services).internal_exchange("GT", AuthProvider.GITHUB.value))
        assert result.internal_token == "jwt"
        assert result.expires_in == 600
        body = services.json_body(f"{BACKEND_URL}/auth.internal.exchange")
        assert body == {"providerToken": "GT", "provider": "github"}

    def test_client_config(self, services: FakeServices) -> None:
        """config.clientConfig is parsed into ClientConfig."""
        config = _run(_client(services).client_config())
        assert config.auth.google is not None
        assert config.auth.google.client_id == "google-client"
        assert config.auth.github is not None
        assert config.auth.github.scopes == ["user:email", "read:user"]

    def test_google_exchange_payload(self, services: FakeServices) -> None:
        """Code exchange sends code, verifier and redirect URI in camelCase."""
        services.rpc(
            "POST",
            "auth.google.exchangeToken",
            {"accessToken": "AT", "refreshToken": "RT", "idToken": "IT", "expiresIn": 3600},
        )
        tokens = _run(
            _client(services).google_exchange_token("c", "v", "http://localhost:8080/callback")
        )
        assert (tokens.access_token, tokens.refresh_token, tokens.id_token) == ("AT", "RT", "IT")
        body = services.json_body(f"{BACKEND_URL}/auth.google.exchangeToken")
        assert body == {
            "code": "c",
            "codeVerifier": "v",
            "redirectUri": "http://localhost:8080/callback",
        }


class TestBackendErrors:
    """Tests for failure mapping."""

    def test_trpc_error_message(self, services: FakeServices) -> None:
        """Non-2xx responses carry the tRPC error message and status."""
        services.add(
            "POST",
            f"{BACKEND_URL}/auth.github.exchangeToken",
            httpx.Response(401, json={"error": {"message": "bad code"}}),
        )
        with pytest.raises(NetworkError) as exc_info:
            _run(_client(services).github_exchange_token("c", "v", "r"))
        assert exc_info.value.status_code == 401
        assert "bad code" in str(exc_info.value)

    def test_transport_error(self) -> None:
        """Transport failures become NetworkError with the underlying message."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = BackendClient(
            BACKEND_URL,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        with pytest.raises(NetworkError) as exc_info:
            _run(client.client_config())
        assert "connection refused" in str(exc_info.value)
        assert exc_info.value.status_code is None

    def test_invalid_payload(self, services: FakeServices) -> None:
        """A payload that does not match the schema is a NetworkError."""
        services.rpc("POST", "auth.internal.exchange", {"token": "x"})
        with pytest.raises(NetworkError, match="invalid payload"):
            _run(_client(services).internal_exchange("t", "google"))

    def test_missing_result_envelope(self, services: FakeServices) -> None:
        """A 2xx body without result.data is a NetworkError."""
        services.add("GET", f"{BACKEND_URL}/config.clientConfig", httpx.Response(200, json={}))
        with pytest.raises(NetworkError, match="unexpected response"):
            _run(_client(services).client_config())


class TestBackendAuthorization:
    """Tests for bearer token injection."""

    def test_bearer_from_token_getter(self, services: FakeServices) -> None:
        """The token getter's value is sent as Authorization header."""

        async def getter() -> str | None:
            return "internal-jwt"

        services.rpc("GET", "tasks.list", [])
        _run(_client(services, token_getter=getter).query("tasks.list"))
        assert services.requests[-1].headers["Authorization"] == "Bearer internal-jwt"

    def test_no_header_without_token(self, services: FakeServices) -> None:
        """No Authorization header when the getter returns None."""

        async def getter() -> str | None:
            return None

        services.rpc("GET", "tasks.list", [])
        _run(_client(services, token_getter=getter).query("tasks.list"))
        assert "Authorization" not in services.requests[-1].headers
