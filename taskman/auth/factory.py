"""Factory owning the process's authentication state.

One AuthServiceFactory is built at process start and handed to whatever
needs a session. It decides which provider service is active from the
provider recorded in the stored session.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging

from collections.abc import Callable
from typing import TYPE_CHECKING

import httpx

from ..backend import BackendClient
from ..config import TaskmanSettings, get_settings
from ..exceptions import UnsupportedProviderError
from .service import AuthService
from .session_store import FileSessionStore, SessionStore
from .types import AuthProvider, to_auth_provider


if TYPE_CHECKING:
    from .types import AuthSession, ClientConfig, StatusCallback


logger = logging.getLogger("taskman.auth")

SUPPORTED_PROVIDERS = (AuthProvider.GOOGLE, AuthProvider.GITHUB)


class AuthServiceFactory:
    """Creates and tracks the active AuthService.

    Parameters
    ----------
    settings : TaskmanSettings, optional
        Configuration; defaults to :func:`get_settings`.
    backend : BackendClient, optional
        Unauthenticated RPC client for auth endpoints.
    store : SessionStore, optional
        Session persistence; defaults to the configured session file.
    http_client : httpx.AsyncClient, optional
        Client shared by provider API calls.
    browser_opener : callable, optional
        Replacement for the system browser launcher.
    """

    def __init__(
        self,
        settings: TaskmanSettings | None = None,
        backend: BackendClient | None = None,
        store: SessionStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        browser_opener: Callable[[str], bool] | None = None,
    ) -> None:
        """Initialize the factory."""
        self.settings = settings or get_settings()
        self.backend = backend or BackendClient(
            self.settings.backend.url,
            timeout=self.settings.backend.timeout,
        )
        self.store = store or FileSessionStore(self.settings.session.file_path)
        self._http_client = http_client
        self._browser_opener = browser_opener

        self._client_config: ClientConfig | None = None
        self._services: dict[AuthProvider, AuthService] = {}
        self._current: AuthService | None = None
        self._lock = asyncio.Lock()

    @property
    def current_provider(self) -> AuthProvider | None:
        """Provider of the active service, if one was resolved."""
        return self._current.provider_kind if self._current is not None else None

    async def client_config(self) -> ClientConfig:
        """Fetch ``config.clientConfig`` once per factory."""
        if self._client_config is None:
            self._client_config = await self.backend.client_config()
        return self._client_config

    async def create_service(self, provider: str | AuthProvider) -> AuthService:
        """Create (or reuse) the service for ``provider`` and make it active.

        Raises
        ------
        UnsupportedProviderError
            If ``provider`` has no client implementation (e.g. ``apple``).
        """
        async with self._lock:
            return await self._create_service_locked(provider)

    async def _create_service_locked(self, provider: str | AuthProvider) -> AuthService:
        kind = to_auth_provider(provider)
        if kind not in SUPPORTED_PROVIDERS:
            msg = f"Authentication provider '{kind.value}' is not supported yet"
            raise UnsupportedProviderError(msg, provider=kind.value)

        service = self._services.get(kind)
        if service is None:
            service = AuthService(
                kind,
                self.backend,
                self.store,
                settings=self.settings.auth,
                http_client=self._http_client,
                browser_opener=self._browser_opener,
            )
            await service.initialize(await self.client_config())
            self._services[kind] = service
        self._current = service
        return service

    async def get_current_service(self) -> AuthService | None:
        """Resolve the active service from the stored session, if any.

        Concurrent first callers share one resolution.
        """
        async with self._lock:
            if self._current is not None:
                return self._current
            session = await self.store.load()
            if session is None:
                return None
            try:
                return await self._create_service_locked(session.provider)
            except UnsupportedProviderError as exc:
                logger.warning("Ignoring stored session: %s", exc)
                return None

    async def login(
        self,
        provider: str | AuthProvider,
        status_callback: StatusCallback | None = None,
    ) -> AuthSession:
        """Sign in with ``provider``, making its service the active one."""
        service = await self.create_service(provider)
        return await service.login(status_callback)

    async def get_current_session(self) -> AuthSession | None:
        """Current session of the active service, or None when signed out."""
        service = await self.get_current_service()
        if service is None:
            return None
        return await service.get_current_session()

    async def is_authenticated(self) -> bool:
        """Whether the active service holds a non-expired session."""
        service = await self.get_current_service()
        return service is not None and await service.is_authenticated()

    async def get_backend_token(self) -> str | None:
        """Bearer token for API calls, refreshing the session if needed."""
        service = await self.get_current_service()
        if service is None:
            return None
        session = await service.get_current_session()
        return service.get_backend_token(session) if session is not None else None

    async def logout(self) -> None:
        """Sign out of the active service and forget which one it was."""
        service = await self.get_current_service()
        if service is not None:
            await service.logout()
        else:
            await self.store.clear()
        self._current = None

    def create_backend_client(self) -> BackendClient:
        """RPC client that sends the internal token as its bearer."""
        return BackendClient(
            self.settings.backend.url,
            timeout=self.settings.backend.timeout,
            token_getter=self.get_backend_token,
        )

    async def close(self) -> None:
        """Close every service and the RPC client."""
        for service in self._services.values():
            await service.close()
        await self.backend.close()
