"""OAuth2 browser login flow orchestrator.

Provides AuthFlowManager, which drives one Authorization-Code-with-PKCE
login through its states and reports each transition to a status
callback:

``INITIALIZING -> BROWSER_OPENING -> WAITING_FOR_USER -> PROCESSING_TOKEN
-> SUCCESS``, or ``ERROR`` from any state.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import secrets

from collections.abc import Callable
from typing import TYPE_CHECKING

from .. import log
from ..config import AuthSettings
from ..exceptions import AuthenticationError, TaskmanException
from .browser import open_browser
from .callback_server import OAuthCallbackServer
from .pkce import PKCEChallenge, generate_state
from .types import AuthFlowError, AuthFlowState, AuthFlowStatus


if TYPE_CHECKING:
    from .internal_token import InternalTokenExchanger
    from .providers import OAuthProvider
    from .session import SessionManager
    from .types import AuthSession, StatusCallback


logger = logging.getLogger("taskman.auth")

DEFAULT_ERROR_CODE = AuthenticationError.default_code


class AuthFlowManager:
    """Orchestrates the browser login for one provider.

    Parameters
    ----------
    provider : OAuthProvider
        The configured OAuth2 provider.
    exchanger : InternalTokenExchanger
        Adds the internal token to the new session.
    session_manager : SessionManager
        Receives and persists the new session.
    settings : AuthSettings, optional
        Listener ports, delays and timeout.
    browser_opener : callable, optional
        ``browser_opener(url) -> bool``; defaults to :func:`open_browser`.
    """

    def __init__(
        self,
        provider: OAuthProvider,
        exchanger: InternalTokenExchanger,
        session_manager: SessionManager,
        settings: AuthSettings | None = None,
        browser_opener: Callable[[str], bool] | None = None,
    ) -> None:
        """Initialize the auth flow manager."""
        self.provider = provider
        self.exchanger = exchanger
        self.session_manager = session_manager
        self.settings = settings or AuthSettings()
        self.browser_opener = browser_opener or open_browser

        self._flow_state: AuthFlowState | None = None
        self._lock = asyncio.Lock()

    @property
    def flow_state(self) -> AuthFlowState | None:
        """State of the current or last flow (``None`` before the first run)."""
        return self._flow_state

    def _emit(self, callback: StatusCallback | None, status: AuthFlowStatus) -> None:
        """Record a transition and notify the callback; callback errors are logged."""
        self._flow_state = status.state
        logger.debug("Auth flow state: %s", status.state.value)
        if callback is None:
            return
        try:
            callback(status)
        except Exception as exc:  # noqa: BLE001
            log.log_callback_error(status.state.value, exc)

    def _callback_server(self, state: str) -> OAuthCallbackServer:
        return OAuthCallbackServer(
            expected_state=state,
            callback_path=self.provider.callback_path,
            host=self.settings.callback_host,
            ports=self.settings.callback_ports,
            success_delay=self.settings.success_shutdown_delay,
            error_delay=self.settings.error_shutdown_delay,
        )

    async def run(self, status_callback: StatusCallback | None = None) -> AuthSession:
        """Run one login flow.

        Parameters
        ----------
        status_callback : callable, optional
            Receives an AuthFlowStatus on every transition.

        Returns
        -------
        AuthSession
            The new session, already holding an internal token and stored.

        Raises
        ------
        AuthenticationError
            A login is already running in this manager.
        Exception
            Whatever failed the flow, after an ``ERROR`` status was emitted.
        """
        if self._lock.locked():
            msg = "A login flow is already in progress"
            raise AuthenticationError(msg, provider=self.provider.provider.value)

        async with self._lock:
            flow_id = secrets.token_urlsafe(8)
            try:
                return await self._run(flow_id, status_callback)
            except Exception as exc:
                if isinstance(exc, AuthenticationError):
                    exc.flow_id = exc.flow_id or flow_id
                    code = exc.code
                else:
                    code = DEFAULT_ERROR_CODE
                if isinstance(exc, TaskmanException):
                    description = getattr(exc, "description", None) or exc.message
                else:
                    description = str(exc) or exc.__class__.__name__
                logger.warning("Auth flow %s failed: %s", flow_id, description)
                self._emit(
                    status_callback,
                    AuthFlowStatus(
                        state=AuthFlowState.ERROR,
                        message="Authentication failed",
                        error=AuthFlowError(code=code, description=description),
                    ),
                )
                raise

    async def _run(self, flow_id: str, callback: StatusCallback | None) -> AuthSession:
        provider_name = self.provider.provider.value
        self._emit(
            callback,
            AuthFlowStatus(state=AuthFlowState.INITIALIZING, message="Setting up authentication..."),
        )

        pkce = PKCEChallenge.generate()
        state = generate_state()

        with self._callback_server(state) as server:
            redirect_uri = self.provider.redirect_uri(server.port)
            auth_url = self.provider.build_authorize_url(redirect_uri, state, pkce)
            logger.info("Auth flow %s (%s): listening on port %s", flow_id, provider_name, server.port)

            self._emit(
                callback,
                AuthFlowStatus(
                    state=AuthFlowState.BROWSER_OPENING,
                    message="Opening browser for authentication...",
                ),
            )
            if self.settings.open_browser and not self.browser_opener(auth_url):
                logger.info("Browser launch failed; waiting for manual navigation")

            self._emit(
                callback,
                AuthFlowStatus(
                    state=AuthFlowState.WAITING_FOR_USER,
                    message="Please complete authentication in your browser...",
                    auth_url=auth_url,
                ),
            )
            loop = asyncio.get_running_loop()
            code = await loop.run_in_executor(
                None, server.wait_for_code, self.settings.auth_timeout_seconds
            )

        self._emit(
            callback,
            AuthFlowStatus(
                state=AuthFlowState.PROCESSING_TOKEN,
                message="Processing authentication token...",
            ),
        )
        session = await self.provider.complete_login(code, pkce.verifier, redirect_uri)
        session = await self.exchanger.exchange(session)
        if not await self.session_manager.save(session):
            logger.warning("Session for %s kept in memory only", session.email)

        logger.info("Auth flow %s completed for %s", flow_id, session.email)
        self._emit(
            callback,
            AuthFlowStatus(
                state=AuthFlowState.SUCCESS,
                message=f"Welcome, {session.name or session.email}!",
            ),
        )
        return session
