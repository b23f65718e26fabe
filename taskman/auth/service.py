"""Authentication service for one identity provider.

AuthService composes the provider strategy, the login flow, the session
manager and the internal token exchanger behind a single object.
"""

from __future__ import annotations

import logging

from collections.abc import Callable
from typing import TYPE_CHECKING

import httpx

from ..config import AuthSettings
from ..exceptions import ConfigurationError
from .flow import AuthFlowManager
from .internal_token import InternalTokenExchanger
from .providers import create_provider
from .session import SessionManager
from .types import AuthProvider, to_auth_provider


if TYPE_CHECKING:
    from ..backend import BackendClient
    from .providers import OAuthProvider
    from .session_store import SessionStore
    from .types import AuthSession, ClientConfig, StatusCallback


logger = logging.getLogger("taskman.auth")


class AuthService:
    """Login, refresh and logout for one provider.

    Parameters
    ----------
    provider : str or AuthProvider
        Which identity provider this service signs in with.
    backend : BackendClient
        RPC client for client config and mediated token operations.
    store : SessionStore
        Persistence for the session record.
    settings : AuthSettings, optional
        Login flow settings.
    http_client : httpx.AsyncClient, optional
        Client for provider API calls.
    browser_opener : callable, optional
        Replacement for the system browser launcher.
    """

    def __init__(
        self,
        provider: str | AuthProvider,
        backend: BackendClient,
        store: SessionStore,
        settings: AuthSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
        browser_opener: Callable[[str], bool] | None = None,
    ) -> None:
        self.provider_kind = to_auth_provider(provider)
        self.backend = backend
        self.store = store
        self.settings = settings or AuthSettings()
        self._http_client = http_client
        self._browser_opener = browser_opener

        self._provider: OAuthProvider | None = None
        self._exchanger: InternalTokenExchanger | None = None
        self._sessions: SessionManager | None = None
        self._flow: AuthFlowManager | None = None

    @property
    def is_initialized(self) -> bool:
        """Whether the client configuration has been loaded."""
        return self._provider is not None

    @property
    def provider(self) -> OAuthProvider:
        """The provider strategy.

        Raises
        ------
        ConfigurationError
            If :meth:`initialize` has not completed yet.
        """
        if self._provider is None:
            raise self._not_initialized()
        return self._provider

    @property
    def sessions(self) -> SessionManager:
        """The session manager (requires :meth:`initialize`)."""
        if self._sessions is None:
            raise self._not_initialized()
        return self._sessions

    @property
    def flow(self) -> AuthFlowManager:
        """The login flow manager (requires :meth:`initialize`)."""
        if self._flow is None:
            raise self._not_initialized()
        return self._flow

    def _not_initialized(self) -> ConfigurationError:
        msg = "Authentication service used before its client config was loaded"
        return ConfigurationError(msg, provider=self.provider_kind.value)

    async def initialize(self, client_config: ClientConfig | None = None) -> None:
        """Load the public client configuration once and wire the components.

        Parameters
        ----------
        client_config : ClientConfig, optional
            Already fetched configuration; ``config.clientConfig`` is called
            when omitted.
        """
        if self._provider is not None:
            return
        if client_config is None:
            client_config = await self.backend.client_config()
        provider = create_provider(
            self.provider_kind,
            client_config,
            self.backend,
            http_client=self._http_client,
            timeout=self.settings.http_timeout,
        )
        self._exchanger = InternalTokenExchanger(
            self.backend,
            provider,
            buffer_seconds=self.settings.internal_token_buffer_seconds,
        )
        self._sessions = SessionManager(provider, self.store, self._exchanger)
        self._flow = AuthFlowManager(
            provider,
            self._exchanger,
            self._sessions,
            settings=self.settings,
            browser_opener=self._browser_opener,
        )
        self._provider = provider
        logger.debug("%s authentication service initialized", self.provider_kind.value)

    async def login(self, status_callback: StatusCallback | None = None) -> AuthSession:
        """Run the browser login flow.

        Parameters
        ----------
        status_callback : callable, optional
            Receives every AuthFlowStatus transition.

        Returns
        -------
        AuthSession
        """
        await self.initialize()
        return await self.flow.run(status_callback)

    async def logout(self) -> None:
        """Revoke and forget the current session."""
        await self.initialize()
        await self.sessions.logout()

    async def get_current_session(self) -> AuthSession | None:
        """Return the current session with fresh tokens, or None."""
        await self.initialize()
        return await self.sessions.get_current_session()

    async def is_authenticated(self) -> bool:
        """Whether a non-expired session exists."""
        await self.initialize()
        return await self.sessions.is_authenticated()

    async def refresh_current_session(self) -> AuthSession | None:
        """Force a refresh of the current session."""
        await self.initialize()
        return await self.sessions.refresh_current_session()

    def get_backend_token(self, session: AuthSession) -> str | None:
        """Bearer token for API calls: the session's internal token."""
        return session.internal_token

    def get_provider_backend_token(self, session: AuthSession) -> str | None:
        """Provider token offered to the internal exchange."""
        return self.provider.get_provider_backend_token(session)

    async def close(self) -> None:
        """Release the provider's HTTP client."""
        if self._provider is not None:
            await self._provider.close()
