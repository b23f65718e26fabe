"""Session manager with transparent token refresh.

Holds the in-memory AuthSession of one provider, loads it lazily from
the session store and keeps both token layers fresh. Every read that may
refresh runs under one asyncio.Lock so concurrent callers never fire
duplicate refresh or exchange requests.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging

from typing import TYPE_CHECKING

from ..exceptions import TaskmanException


if TYPE_CHECKING:
    from .internal_token import InternalTokenExchanger
    from .providers import OAuthProvider
    from .session_store import SessionStore
    from .types import AuthSession


logger = logging.getLogger("taskman.auth")


class SessionManager:
    """Manages the AuthSession lifecycle for one provider.

    Parameters
    ----------
    provider : OAuthProvider
        Provider used for refresh and revocation.
    store : SessionStore
        Persistence for the session record.
    exchanger : InternalTokenExchanger
        Keeps the internal token current.
    """

    def __init__(
        self,
        provider: OAuthProvider,
        store: SessionStore,
        exchanger: InternalTokenExchanger,
    ) -> None:
        """Initialize the session manager."""
        self.provider = provider
        self.store = store
        self.exchanger = exchanger
        self._session: AuthSession | None = None
        self._lock = asyncio.Lock()

    @property
    def cached_session(self) -> AuthSession | None:
        """The in-memory session, without loading or refreshing."""
        return self._session

    async def save(self, session: AuthSession) -> bool:
        """Adopt ``session`` and persist it.

        Returns
        -------
        bool
            False if it could only be kept in memory.
        """
        async with self._lock:
            self._session = session
            return await self.store.persist(session)

    async def _load_locked(self) -> AuthSession | None:
        session = self._session
        if session is None:
            session = await self.store.load()
        if session is not None and session.provider != self.provider.provider:
            logger.debug(
                "Stored session belongs to %s, not %s",
                session.provider.value,
                self.provider.provider.value,
            )
            return None
        return session

    async def _clear_locked(self) -> None:
        self._session = None
        await self.store.clear()

    async def get_current_session(self) -> AuthSession | None:
        """Return a fresh session, refreshing either token layer if needed.

        Returns
        -------
        AuthSession or None
            None when signed out, or when a refresh failed (the stored
            session is then cleared).
        """
        async with self._lock:
            session = await self._load_locked()
            if session is None:
                return None
            original = session
            try:
                if session.is_expired():
                    logger.info("%s token expired, refreshing", session.provider.value)
                    session = await self.provider.refresh(session)
                session = await self.exchanger.refresh_if_needed(session)
            except TaskmanException as exc:
                logger.warning("Session refresh failed, signing out: %s", exc)
                await self._clear_locked()
                return None

            self._session = session
            if session != original:
                await self.store.persist(session)
            return session

    async def refresh_current_session(self) -> AuthSession | None:
        """Force a refresh of both token layers.

        Returns
        -------
        AuthSession or None
            The refreshed session, or None if there was nothing to refresh
            or the refresh failed (the session is then cleared).
        """
        async with self._lock:
            session = await self._load_locked()
            if session is None:
                return None
            try:
                session = await self.provider.refresh(session)
                session = await self.exchanger.exchange(session)
            except TaskmanException as exc:
                logger.warning("Session refresh failed, signing out: %s", exc)
                await self._clear_locked()
                return None
            self._session = session
            await self.store.persist(session)
            return session

    async def is_authenticated(self) -> bool:
        """Whether a session exists and its provider token is not expired."""
        session = await self.get_current_session()
        return session is not None and not session.is_expired()

    async def logout(self) -> None:
        """Revoke the provider token (best effort) and forget the session."""
        async with self._lock:
            session = await self._load_locked()
            if session is not None:
                if not await self.provider.revoke_token(session.access_token):
                    logger.debug("Token revocation at %s was not confirmed", session.provider.value)
            await self._clear_locked()
            logger.info("Signed out")
