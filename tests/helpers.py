"""Shared test doubles: a scripted HTTP world and a scripted browser."""

from __future__ import annotations

import json
import threading
import urllib.error
import urllib.request

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse

import httpx


GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
GITHUB_USER_URL = "https://api.github.com/user"
GITHUB_EMAILS_URL = "https://api.github.com/user/emails"
GITHUB_REVOKE_URL = "https://api.github.com/applications/github-client/token"
BACKEND_URL = "http://backend.test"

CLIENT_CONFIG: dict[str, Any] = {
    "auth": {
        "google": {
            "clientId": "google-client",
            "redirectUriBase": "http://127.0.0.1",
            "scopes": ["openid", "profile", "email"],
        },
        "github": {
            "clientId": "github-client",
            "redirectUriBase": "http://127.0.0.1",
            "scopes": ["user:email", "read:user"],
        },
    }
}


def rpc_result(data: Any, status_code: int = 200) -> httpx.Response:
    """Wrap ``data`` the way the tRPC backend does."""
    return httpx.Response(status_code, json={"result": {"data": data}})


def _bare_url(url: httpx.URL | str) -> str:
    return str(url).split("?", 1)[0]


@dataclass
class FakeServices:
    """Scripted backend and provider APIs behind one httpx.MockTransport.

    ``routes`` maps ``(method, url-without-query)`` to a response factory.
    Every request is recorded in ``requests``.
    """

    routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = field(
        default_factory=dict
    )
    requests: list[httpx.Request] = field(default_factory=list)

    def add(self, method: str, url: str, response: Any) -> None:
        """Register a route returning a fixed response or calling a handler."""
        if callable(response):
            self.routes[(method, url)] = response
        else:
            self.routes[(method, url)] = lambda _request: response

    def rpc(self, method: str, path: str, data: Any) -> None:
        """Register a backend procedure returning ``data``."""
        self.add(method, f"{BACKEND_URL}/{path}", rpc_result(data))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = _bare_url(request.url)
        route = self.routes.get((request.method, url))
        if route is None:
            return httpx.Response(404, json={"error": {"message": f"no route for {url}"}})
        return route(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def calls(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if _bare_url(r.url) == url]

    def json_body(self, url: str, index: int = -1) -> Any:
        return json.loads(self.calls(url)[index].content)


def redirect_browser(
    code: str = "abc123",
    state: str | None = None,
    query: dict[str, str] | None = None,
) -> Callable[[str], bool]:
    """Browser stand-in that follows the authorization URL straight to the redirect.

    Parameters
    ----------
    code : str
        Authorization code to deliver.
    state : str, optional
        Overrides the state echoed back (defaults to the requested one).
    query : dict, optional
        Replaces the whole redirect query (e.g. an ``error`` redirect).
    """
    opened: list[str] = []

    def _open(auth_url: str) -> bool:
        opened.append(auth_url)
        params = {k: v[0] for k, v in parse_qs(urlparse(auth_url).query).items()}
        redirect_query = query if query is not None else {
            "code": code,
            "state": state if state is not None else params["state"],
        }
        target = f"{params['redirect_uri']}?{urlencode(redirect_query)}"

        def _hit() -> None:
            try:
                urllib.request.urlopen(target, timeout=5).read()  # noqa: S310
            except urllib.error.HTTPError:
                pass

        threading.Thread(target=_hit, daemon=True).start()
        return True

    _open.opened = opened  # type: ignore[attr-defined]
    return _open
