"""Taskman client exception hierarchy.

All client-side exceptions inherit from TaskmanException, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any


class TaskmanException(Exception):
    """Base exception for all taskman client errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize taskman exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (provider, path, status_code, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class ConfigurationError(TaskmanException):
    """Client configuration is missing or has not been loaded yet."""


class PersistenceError(TaskmanException):
    """The local session file could not be written, read or removed.

    Never escapes a login: the session stays usable in memory for the
    current process.
    """

    def __init__(self, message: str, path: str | None = None, **context: Any) -> None:
        """Initialize persistence error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        path : str, optional
            The session file involved.
        **context : Any
            Additional context.
        """
        super().__init__(message, path=path, **context)
        self.path = path


class AuthenticationError(TaskmanException):
    """Base exception for all authentication failures.

    Raised when an authentication operation fails, including
    OAuth2 flows, token exchange, or session management.

    The ``code`` attribute is what the login flow reports in the
    ``error.code`` field of its ``Error`` status.
    """

    default_code = "AUTH_FAILED"

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        flow_id: str | None = None,
        code: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The OAuth2 provider name (e.g., "google", "github").
        flow_id : str, optional
            The unique identifier of the auth flow that failed.
        code : str, optional
            Machine-readable error code (defaults to ``default_code``).
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, flow_id=flow_id, **context)
        self.provider = provider
        self.flow_id = flow_id
        self.code = code or self.default_code


class ProviderAuthError(AuthenticationError):
    """The identity provider redirected back with an OAuth ``error``.

    ``code`` carries the provider's error (e.g. ``access_denied``) and
    ``description`` its ``error_description``.
    """

    def __init__(
        self,
        message: str,
        code: str,
        description: str | None = None,
        provider: str | None = None,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize provider error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        code : str
            The OAuth ``error`` parameter.
        description : str, optional
            The OAuth ``error_description`` parameter.
        provider : str, optional
            The OAuth2 provider name.
        flow_id : str, optional
            The unique identifier of the auth flow.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, flow_id=flow_id, code=code, **context)
        self.description = description or code


class CallbackValidationError(AuthenticationError):
    """The redirect was missing its code or carried the wrong state."""

    default_code = "validation_failed"


class CallbackServerError(AuthenticationError):
    """The local callback listener could not be started."""


class AuthFlowTimeout(AuthenticationError):
    """Authentication flow timed out.

    Raised when the blocking wait for the OAuth2 redirect
    exceeds the configured timeout.
    """

    def __init__(
        self,
        message: str,
        timeout: float,
        provider: str | None = None,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize timeout error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        timeout : float
            The timeout value in seconds.
        provider : str, optional
            The OAuth2 provider name.
        flow_id : str, optional
            The unique identifier of the auth flow.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, flow_id=flow_id, timeout=timeout, **context)
        self.timeout = timeout


class NetworkError(AuthenticationError):
    """An HTTP call to the backend or a provider failed.

    Covers both transport failures and non-2xx responses.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize network error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        status_code : int, optional
            HTTP status of the failed response, if one was received.
        body : str, optional
            Response body (or error message) for diagnostics.
        **context : Any
            Additional context.
        """
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code
        self.body = body


class IdentityError(AuthenticationError):
    """User info could not be resolved to a usable identity (email)."""


class UnsupportedProviderError(AuthenticationError):
    """The requested identity provider is not implemented."""


class TokenError(AuthenticationError):
    """Base exception for token-related failures.

    Raised when token operations (exchange, refresh) fail.
    """


class TokenRefreshError(TokenError):
    """Token refresh failed.

    Raised when a provider or internal token could not be renewed.
    The session that owned the token is cleared.
    """
