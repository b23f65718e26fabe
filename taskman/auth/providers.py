"""OAuth2 provider abstractions.

Defines the OAuthProvider ABC and the Google and GitHub variants.
Token exchanges and refreshes go through the taskman backend so the
OAuth client secrets never reach this machine; user info and token
revocation are called on the provider's own API.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import time

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx

from ..exceptions import (
    ConfigurationError,
    IdentityError,
    NetworkError,
    TaskmanException,
    TokenRefreshError,
    UnsupportedProviderError,
)
from .types import (
    AuthProvider,
    AuthSession,
    ClientConfig,
    ProviderClientConfig,
    ProviderTokenSet,
    to_auth_provider,
)


if TYPE_CHECKING:
    from ..backend import BackendClient
    from .pkce import PKCEChallenge

logger = logging.getLogger("taskman.auth")


class OAuthProvider(ABC):
    """Abstract base class for OAuth2 providers.

    Parameters
    ----------
    config : ProviderClientConfig
        Public client settings published by the backend.
    backend : BackendClient
        RPC client used for the mediated token operations.
    http_client : httpx.AsyncClient, optional
        Client for provider API calls; created lazily when omitted.
    timeout : float
        Timeout for provider API calls in seconds.
    """

    provider: AuthProvider
    authorize_url: str = ""
    userinfo_url: str = ""
    callback_path: str = "/callback"
    default_scopes: tuple[str, ...] = ()

    def __init__(
        self,
        config: ProviderClientConfig,
        backend: BackendClient,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize OAuth provider."""
        self.client_id = config.client_id
        self.redirect_uri_base = config.redirect_uri_base
        self.scopes = list(config.scopes) or list(self.default_scopes)
        self.backend = backend
        self.timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client if this provider created it."""
        if self._owns_client and self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a provider API request, mapping failures to NetworkError."""
        try:
            client = await self._get_client()
            resp = await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            msg = f"{self.provider.value} request to {url} failed: {exc}"
            raise NetworkError(msg, body=str(exc), provider=self.provider.value) from exc
        if not resp.is_success:
            msg = f"{self.provider.value} request to {url} returned HTTP {resp.status_code}: {resp.text}"
            raise NetworkError(
                msg,
                status_code=resp.status_code,
                body=resp.text,
                provider=self.provider.value,
            )
        return resp

    async def _request_json(
        self, method: str, url: str, expected: type = dict, **kwargs: Any
    ) -> Any:
        """Send a provider API request and decode a JSON body of type ``expected``."""
        resp = await self._request(method, url, **kwargs)
        try:
            data = resp.json()
        except ValueError as exc:
            msg = f"{self.provider.value} request to {url} returned a non-JSON body"
            raise NetworkError(
                msg,
                status_code=resp.status_code,
                body=resp.text,
                provider=self.provider.value,
            ) from exc
        if not isinstance(data, expected):
            msg = f"{self.provider.value} request to {url} returned an unexpected response body"
            raise NetworkError(
                msg,
                status_code=resp.status_code,
                body=resp.text,
                provider=self.provider.value,
            )
        return data

    def redirect_uri(self, port: int) -> str:
        """Redirect URI for a listener bound to ``port``."""
        return f"{self.redirect_uri_base.rstrip('/')}:{port}{self.callback_path}"

    def _extra_authorize_params(self) -> dict[str, str]:
        return {}

    def build_authorize_url(
        self,
        redirect_uri: str,
        state: str,
        pkce: PKCEChallenge,
        extra_params: dict[str, str] | None = None,
    ) -> str:
        """Build the full authorization URL.

        Parameters
        ----------
        redirect_uri : str
            The callback URL to redirect to after authorization.
        state : str
            CSRF protection nonce.
        pkce : PKCEChallenge
            PKCE pair; only the challenge is sent.
        extra_params : dict, optional
            Additional query parameters.

        Returns
        -------
        str
            The full authorization URL.
        """
        params: dict[str, str] = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "code_challenge": pkce.challenge,
            "code_challenge_method": pkce.method,
            "state": state,
        }
        params.update(self._extra_authorize_params())
        if extra_params:
            params.update(extra_params)
        return f"{self.authorize_url}?{urlencode(params)}"

    @abstractmethod
    async def exchange_code(
        self,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> ProviderTokenSet:
        """Exchange an authorization code for provider tokens via the backend.

        Parameters
        ----------
        code : str
            The authorization code from the callback.
        code_verifier : str
            The PKCE code verifier of this flow.
        redirect_uri : str
            The redirect URI used in the authorization request.

        Returns
        -------
        ProviderTokenSet

        Raises
        ------
        NetworkError
            If the backend call fails.
        """

    @abstractmethod
    async def fetch_userinfo(self, access_token: str) -> dict[str, Any]:
        """Fetch the user profile from the provider.

        Raises
        ------
        NetworkError
            If the provider API call fails.
        IdentityError
            If no usable email can be resolved.
        """

    @abstractmethod
    def build_session(
        self,
        tokens: ProviderTokenSet,
        userinfo: dict[str, Any],
        previous: AuthSession | None = None,
    ) -> AuthSession:
        """Assemble an AuthSession from provider tokens and user info."""

    @abstractmethod
    async def refresh(self, session: AuthSession | None) -> AuthSession:
        """Renew the provider-level credentials of ``session``.

        Raises
        ------
        TokenRefreshError
            If the session cannot be refreshed.
        """

    @abstractmethod
    async def revoke_token(self, token: str) -> bool:
        """Revoke ``token`` at the provider. Never raises.

        Returns
        -------
        bool
            True if the provider accepted the revocation.
        """

    @abstractmethod
    def get_provider_backend_token(self, session: AuthSession) -> str | None:
        """Token offered to ``auth.internal.exchange`` for this provider."""

    async def complete_login(
        self,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> AuthSession:
        """Exchange the code, resolve the user and build a new session."""
        tokens = await self.exchange_code(code, code_verifier, redirect_uri)
        userinfo = await self.fetch_userinfo(tokens.access_token)
        return self.build_session(tokens, userinfo)

    def _require(self, userinfo: dict[str, Any], field: str) -> str:
        value = userinfo.get(field)
        if value is None or value == "":
            msg = f"{self.provider.value} user info is missing '{field}'"
            raise IdentityError(msg, provider=self.provider.value)
        return str(value)


class GoogleProvider(OAuthProvider):
    """Google OAuth2 provider.

    Requests offline access so the backend receives a refresh token, and
    uses the OIDC ID token as the backend-facing credential.
    """

    provider = AuthProvider.GOOGLE
    authorize_url = "https://accounts.google.com/o/oauth2/v2/auth"
    userinfo_url = "https://openidconnect.googleapis.com/v1/userinfo"
    revocation_url = "https://oauth2.googleapis.com/revoke"
    callback_path = "/callback"
    default_scopes = ("openid", "profile", "email")

    def _extra_authorize_params(self) -> dict[str, str]:
        return {"access_type": "offline", "prompt": "consent"}

    async def exchange_code(
        self,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> ProviderTokenSet:
        """Exchange authorization code through ``auth.google.exchangeToken``."""
        return await self.backend.google_exchange_token(code, code_verifier, redirect_uri)

    async def fetch_userinfo(self, access_token: str) -> dict[str, Any]:
        """Fetch the OIDC userinfo document.

        The ID token is not verified on this machine, so its claims are
        not trusted and the userinfo endpoint is always called.
        """
        return await self._request_json(
            "GET",
            self.userinfo_url,
            headers={"Authorization": f"Bearer {access_token}"},
        )

    def build_session(
        self,
        tokens: ProviderTokenSet,
        userinfo: dict[str, Any],
        previous: AuthSession | None = None,
    ) -> AuthSession:
        """Build a Google session; keeps the previous refresh token if none was issued."""
        refresh_token = tokens.refresh_token
        if refresh_token is None and previous is not None:
            refresh_token = previous.refresh_token
        expires_at = int(time.time()) + tokens.expires_in if tokens.expires_in else None
        return AuthSession(
            access_token=tokens.access_token,
            refresh_token=refresh_token,
            id_token=tokens.id_token,
            expires_at=expires_at,
            provider=self.provider,
            provider_user_id=self._require(userinfo, "sub"),
            email=self._require(userinfo, "email"),
            name=userinfo.get("name") or None,
            picture=userinfo.get("picture") or None,
        )

    async def refresh(self, session: AuthSession | None) -> AuthSession:
        """Refresh through ``auth.google.refreshToken`` and re-fetch user info."""
        if session is None or not session.refresh_token:
            msg = "No Google refresh token available"
            raise TokenRefreshError(msg, provider=self.provider.value)
        try:
            tokens = await self.backend.google_refresh_token(session.refresh_token)
            userinfo = await self.fetch_userinfo(tokens.access_token)
            return self.build_session(tokens, userinfo, previous=session)
        except TaskmanException as exc:
            msg = f"Google token refresh failed: {exc.message}"
            raise TokenRefreshError(msg, provider=self.provider.value) from exc

    async def revoke_token(self, token: str) -> bool:
        """Revoke a Google token via ``POST /revoke``."""
        try:
            client = await self._get_client()
            resp = await client.post(
                self.revocation_url,
                params={"token": token},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as exc:
            logger.debug("Google token revocation failed: %s", exc)
            return False
        return resp.is_success

    def get_provider_backend_token(self, session: AuthSession) -> str | None:
        """Google sessions are exchanged with their ID token."""
        return session.id_token


class GitHubProvider(OAuthProvider):
    """GitHub OAuth2 provider.

    GitHub has no OIDC, no refresh grant and non-expiring access tokens.
    The access token itself is the identity proof offered to the backend.
    """

    provider = AuthProvider.GITHUB
    authorize_url = "https://github.com/login/oauth/authorize"
    userinfo_url = "https://api.github.com/user"
    emails_url = "https://api.github.com/user/emails"
    api_url = "https://api.github.com"
    callback_path = "/auth/github/callback"
    default_scopes = ("user:email", "read:user")

    def _api_headers(self, access_token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/vnd.github.v3+json",
        }

    async def exchange_code(
        self,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> ProviderTokenSet:
        """Exchange authorization code through ``auth.github.exchangeToken``."""
        return await self.backend.github_exchange_token(code, code_verifier, redirect_uri)

    async def fetch_userinfo(self, access_token: str) -> dict[str, Any]:
        """Fetch ``/user``, resolving a private email through ``/user/emails``."""
        headers = self._api_headers(access_token)
        user = await self._request_json("GET", self.userinfo_url, headers=headers)
        if not user.get("email"):
            emails = await self._request_json("GET", self.emails_url, list, headers=headers)
            primary = next(
                (entry for entry in emails if isinstance(entry, dict) and entry.get("primary")),
                None,
            )
            if primary is None or not primary.get("email"):
                msg = "GitHub account has no primary email address"
                raise IdentityError(msg, provider=self.provider.value)
            user = {**user, "email": primary["email"]}
        return user  # type: ignore[no-any-return]

    def build_session(
        self,
        tokens: ProviderTokenSet,
        userinfo: dict[str, Any],
        previous: AuthSession | None = None,
    ) -> AuthSession:
        """Build a GitHub session; the token never expires."""
        login = userinfo.get("login")
        return AuthSession(
            access_token=tokens.access_token,
            provider=self.provider,
            provider_user_id=self._require(userinfo, "id"),
            email=self._require(userinfo, "email"),
            name=userinfo.get("name") or login or None,
            picture=userinfo.get("avatar_url") or None,
            metadata={"login": login} if login else None,
        )

    async def refresh(self, session: AuthSession | None) -> AuthSession:
        """GitHub tokens do not expire; the session is returned unchanged."""
        if session is None:
            msg = "No GitHub session to refresh"
            raise TokenRefreshError(msg, provider=self.provider.value)
        return session

    async def revoke_token(self, token: str) -> bool:
        """Revoke a GitHub token via ``DELETE /applications/{client_id}/token``."""
        url = f"{self.api_url}/applications/{self.client_id}/token"
        try:
            client = await self._get_client()
            resp = await client.request(
                "DELETE",
                url,
                headers=self._api_headers(token),
                json={"access_token": token},
            )
        except httpx.HTTPError as exc:
            logger.debug("GitHub token revocation failed: %s", exc)
            return False
        # GitHub returns 204 No Content on success
        return resp.status_code == 204

    def get_provider_backend_token(self, session: AuthSession) -> str | None:
        """GitHub sessions are exchanged with their access token."""
        return session.access_token


_PROVIDERS: dict[AuthProvider, type[OAuthProvider]] = {
    AuthProvider.GOOGLE: GoogleProvider,
    AuthProvider.GITHUB: GitHubProvider,
}


def create_provider(
    provider: str | AuthProvider,
    client_config: ClientConfig,
    backend: BackendClient,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
) -> OAuthProvider:
    """Create the OAuthProvider for ``provider``.

    Parameters
    ----------
    provider : str or AuthProvider
        Provider discriminant.
    client_config : ClientConfig
        Response of ``config.clientConfig``.
    backend : BackendClient
        RPC client for mediated token operations.
    http_client : httpx.AsyncClient, optional
        Shared client for provider API calls.
    timeout : float
        Provider API timeout in seconds.

    Returns
    -------
    OAuthProvider

    Raises
    ------
    UnsupportedProviderError
        If the provider has no client implementation.
    ConfigurationError
        If the backend published no settings for the provider.
    """
    kind = to_auth_provider(provider)
    provider_cls = _PROVIDERS.get(kind)
    if provider_cls is None:
        msg = f"Authentication provider '{kind.value}' is not supported yet"
        raise UnsupportedProviderError(msg, provider=kind.value)
    settings = client_config.auth.for_provider(kind)
    if settings is None:
        msg = f"Backend client config has no '{kind.value}' section"
        raise ConfigurationError(msg, provider=kind.value)
    return provider_cls(settings, backend, http_client=http_client, timeout=timeout)
