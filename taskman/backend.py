"""HTTP client for the taskman RPC backend.

Speaks tRPC's plain HTTP convention: queries are ``GET {base}/{path}``
with a JSON-encoded ``input`` query parameter, mutations are
``POST {base}/{path}`` with a JSON body, and the payload is returned
under ``result.data``.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import json
import logging

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx

from pydantic import BaseModel, ValidationError

from .auth.types import ClientConfig, ProviderTokenSet, TokenExchangeResult
from .exceptions import NetworkError
from .log import redact_sensitive_data


logger = logging.getLogger("taskman.backend")

TokenGetter = Callable[[], Awaitable[str | None]]


class BackendClient:
    """Client for the taskman RPC backend.

    Parameters
    ----------
    base_url : str
        Root URL of the RPC router (e.g. ``https://taskman.bbenetti.ca``).
    timeout : float
        Per-request timeout in seconds.
    token_getter : callable, optional
        Coroutine returning the bearer token to send, or ``None`` for
        unauthenticated calls.
    http_client : httpx.AsyncClient, optional
        Pre-configured client (tests pass one with a mock transport).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        token_getter: TokenGetter | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the backend client."""
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._token_getter = token_getter
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    async def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token_getter is not None:
            token = await self._token_getter()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        return headers

    async def query(self, path: str, payload: dict[str, Any] | None = None) -> Any:
        """Call a tRPC query procedure.

        Parameters
        ----------
        path : str
            Dotted procedure path (e.g. ``"config.clientConfig"``).
        payload : dict, optional
            Procedure input.

        Returns
        -------
        Any
            The procedure's ``result.data``.

        Raises
        ------
        NetworkError
            On transport failure, non-2xx status or a malformed body.
        """
        params = {"input": json.dumps(payload)} if payload is not None else None
        return await self._call("GET", path, params=params)

    async def mutate(self, path: str, payload: dict[str, Any] | None = None) -> Any:
        """Call a tRPC mutation procedure.

        Parameters
        ----------
        path : str
            Dotted procedure path (e.g. ``"auth.internal.exchange"``).
        payload : dict, optional
            Procedure input.

        Returns
        -------
        Any
            The procedure's ``result.data``.

        Raises
        ------
        NetworkError
            On transport failure, non-2xx status or a malformed body.
        """
        return await self._call("POST", path, json_body=payload or {})

    async def _call(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self.base_url}/{path}"
        logger.debug(
            "RPC %s %s input=%s",
            method,
            path,
            redact_sensitive_data(json_body if json_body is not None else params),
        )
        try:
            client = await self._get_client()
            resp = await client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=await self._headers(),
            )
        except httpx.HTTPError as exc:
            msg = f"Request to {path} failed: {exc}"
            raise NetworkError(msg, body=str(exc), path=path) from exc

        if not resp.is_success:
            detail = _error_message(resp)
            msg = f"{path} returned HTTP {resp.status_code}: {detail}"
            raise NetworkError(msg, status_code=resp.status_code, body=resp.text, path=path)

        try:
            return resp.json()["result"]["data"]
        except (ValueError, KeyError, TypeError) as exc:
            msg = f"{path} returned an unexpected response body"
            raise NetworkError(
                msg, status_code=resp.status_code, body=resp.text, path=path
            ) from exc

    async def client_config(self) -> ClientConfig:
        """Fetch the public OAuth client configuration."""
        path = "config.clientConfig"
        return _parse(ClientConfig, await self.query(path), path)

    async def google_exchange_token(
        self, code: str, code_verifier: str, redirect_uri: str
    ) -> ProviderTokenSet:
        """Exchange a Google authorization code through the backend."""
        path = "auth.google.exchangeToken"
        data = await self.mutate(
            path,
            {"code": code, "codeVerifier": code_verifier, "redirectUri": redirect_uri},
        )
        return _parse(ProviderTokenSet, data, path)

    async def google_refresh_token(self, refresh_token: str) -> ProviderTokenSet:
        """Refresh a Google access token through the backend."""
        path = "auth.google.refreshToken"
        data = await self.mutate(path, {"refreshToken": refresh_token})
        return _parse(ProviderTokenSet, data, path)

    async def github_exchange_token(
        self, code: str, code_verifier: str, redirect_uri: str
    ) -> ProviderTokenSet:
        """Exchange a GitHub authorization code through the backend."""
        path = "auth.github.exchangeToken"
        data = await self.mutate(
            path,
            {"code": code, "codeVerifier": code_verifier, "redirectUri": redirect_uri},
        )
        return _parse(ProviderTokenSet, data, path)

    async def internal_exchange(self, provider_token: str, provider: str) -> TokenExchangeResult:
        """Trade a provider token for an internal JWT."""
        path = "auth.internal.exchange"
        data = await self.mutate(path, {"providerToken": provider_token, "provider": provider})
        return _parse(TokenExchangeResult, data, path)


_ModelT = TypeVar("_ModelT", bound=BaseModel)


def _parse(model: type[_ModelT], data: Any, path: str) -> _ModelT:
    """Validate an RPC payload, reporting schema drift as a network failure."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        msg = f"{path} returned an invalid payload: {exc.error_count()} validation error(s)"
        raise NetworkError(msg, body=str(data), path=path) from exc


def _error_message(resp: httpx.Response) -> str:
    """Extract tRPC's ``error.message`` from a failed response, if present."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return resp.text or resp.reason_phrase
