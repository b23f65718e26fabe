"""Exchange of provider tokens for backend-issued internal tokens.

The internal token is a short-lived JWT used as the bearer credential
for every API call. Its expiry is already reduced by the backend, so the
client only applies a small buffer against in-flight requests.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import time

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from ..backend import BackendClient
    from .providers import OAuthProvider
    from .types import AuthSession

logger = logging.getLogger("taskman.auth")

DEFAULT_BUFFER_SECONDS = 300


class InternalTokenExchanger:
    """Maintains the internal token overlay of an AuthSession.

    Parameters
    ----------
    backend : BackendClient
        RPC client exposing ``auth.internal.exchange``.
    provider : OAuthProvider
        Decides which provider token is offered for exchange.
    buffer_seconds : int
        Default expiry buffer for :meth:`is_internal_token_expired`.
    """

    def __init__(
        self,
        backend: BackendClient,
        provider: OAuthProvider,
        buffer_seconds: int = DEFAULT_BUFFER_SECONDS,
    ) -> None:
        self.backend = backend
        self.provider = provider
        self.buffer_seconds = buffer_seconds

    async def exchange(self, session: AuthSession) -> AuthSession:
        """Trade the session's provider token for a fresh internal token.

        Parameters
        ----------
        session : AuthSession
            The provider-level session.

        Returns
        -------
        AuthSession
            A copy carrying the new internal token, or ``session`` itself
            when it holds no token suitable for exchange.

        Raises
        ------
        NetworkError
            If the backend rejects the exchange.
        """
        provider_token = self.provider.get_provider_backend_token(session)
        if not provider_token:
            logger.debug("No %s token available for internal exchange", session.provider.value)
            return session
        result = await self.backend.internal_exchange(provider_token, session.provider.value)
        expires_at = int(time.time()) + result.expires_in
        logger.debug("Internal token issued, expires at %s", expires_at)
        return session.with_internal_token(result.internal_token, expires_at)

    def is_internal_token_expired(
        self,
        session: AuthSession,
        buffer_seconds: int | None = None,
        now: float | None = None,
    ) -> bool:
        """Whether the internal token is missing or within the buffer of expiry.

        Parameters
        ----------
        session : AuthSession
            Session to check.
        buffer_seconds : int, optional
            Seconds before ``internal_expires_at`` at which the token already
            counts as expired (defaults to the exchanger's buffer).
        now : float, optional
            Current Unix time, for tests.

        Returns
        -------
        bool
        """
        if not session.internal_token or session.internal_expires_at is None:
            return True
        buffer = self.buffer_seconds if buffer_seconds is None else buffer_seconds
        now = time.time() if now is None else now
        return now >= session.internal_expires_at - buffer

    async def refresh_if_needed(self, session: AuthSession) -> AuthSession:
        """Re-run the exchange only when the internal token is expired."""
        if not self.is_internal_token_expired(session):
            return session
        return await self.exchange(session)

    @staticmethod
    def remove_internal_token(session: AuthSession) -> AuthSession:
        """Strip the internal token, keeping the provider-level session.

        Public helper for callers that drop backend access but keep the
        provider sign-in. Logout does not use it; it deletes the whole record.
        """
        return session.without_internal_token()
