"""Data model shared by the taskman authentication components.

``AuthSession`` is the only persisted record; everything else is
transient (RPC payloads, flow status events, the parsed redirect).
"""

from __future__ import annotations

import time

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..exceptions import UnsupportedProviderError


class AuthProvider(str, Enum):
    """Identity providers known to the backend."""

    GOOGLE = "google"
    GITHUB = "github"
    # Reserved by the backend, no client flow exists yet.
    APPLE = "apple"


def to_auth_provider(value: str | AuthProvider) -> AuthProvider:
    """Coerce a provider discriminant, rejecting unknown names.

    Parameters
    ----------
    value : str or AuthProvider
        Provider name, case-insensitive.

    Returns
    -------
    AuthProvider

    Raises
    ------
    UnsupportedProviderError
        If ``value`` does not name a known provider.
    """
    if isinstance(value, AuthProvider):
        return value
    try:
        return AuthProvider(str(value).strip().lower())
    except ValueError as exc:
        msg = f"Unknown authentication provider: {value!r}"
        raise UnsupportedProviderError(msg, provider=str(value)) from exc


class _CamelModel(BaseModel):
    """Base for wire/disk models that use camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class AuthSession(_CamelModel):
    """Provider-agnostic credential bundle persisted between runs.

    Attributes
    ----------
    access_token : str
        Provider access token.
    provider : AuthProvider
        Which identity provider issued the tokens.
    provider_user_id : str
        Stable user id at the provider (Google ``sub``, GitHub ``id``).
    email : str
        Verified email address; a session never exists without one.
    refresh_token : str or None
        Provider refresh token (Google only).
    id_token : str or None
        OIDC ID token (Google only).
    expires_at : int or None
        Unix seconds when the provider token expires; ``None`` means never.
    name, picture : str or None
        Display profile.
    internal_token : str or None
        Backend-issued JWT used as the API bearer.
    internal_expires_at : int or None
        Unix seconds when ``internal_token`` expires.
    metadata : dict or None
        Provider-specific extras (e.g. the GitHub login handle).
    """

    access_token: str = Field(min_length=1)
    provider: AuthProvider
    provider_user_id: str = Field(min_length=1)
    email: str = Field(min_length=1)
    refresh_token: str | None = None
    id_token: str | None = None
    expires_at: int | None = None
    name: str | None = None
    picture: str | None = None
    internal_token: str | None = None
    internal_expires_at: int | None = None
    metadata: dict[str, Any] | None = None

    @field_validator("provider_user_id", mode="before")
    @classmethod
    def _coerce_user_id(cls, value: Any) -> Any:
        # GitHub user ids are numeric.
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @model_validator(mode="after")
    def _check_internal_pair(self) -> AuthSession:
        if (self.internal_token is None) != (self.internal_expires_at is None):
            msg = "internalToken and internalExpiresAt must be set together"
            raise ValueError(msg)
        return self

    def is_expired(self, now: float | None = None) -> bool:
        """Return True when the provider token has an expiry in the past."""
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        return now >= self.expires_at

    def with_internal_token(self, token: str, expires_at: int) -> AuthSession:
        """Return a copy carrying a new internal token."""
        return self.model_copy(update={"internal_token": token, "internal_expires_at": expires_at})

    def without_internal_token(self) -> AuthSession:
        """Return a copy with the internal token overlay stripped."""
        return self.model_copy(update={"internal_token": None, "internal_expires_at": None})

    def to_json_dict(self) -> dict[str, Any]:
        """Serialize with camelCase keys, omitting unset optional fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AuthFlowState(str, Enum):
    """States of the browser login flow."""

    INITIALIZING = "initializing"
    BROWSER_OPENING = "browser_opening"
    WAITING_FOR_USER = "waiting_for_user"
    PROCESSING_TOKEN = "processing_token"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class AuthFlowError:
    """Machine-readable failure carried by an ``ERROR`` status."""

    code: str
    description: str


@dataclass(frozen=True)
class AuthFlowStatus:
    """One progress event emitted by the login flow.

    ``auth_url`` is only set while waiting for the user, as a fallback
    link when the browser could not be opened.
    """

    state: AuthFlowState
    message: str | None = None
    auth_url: str | None = None
    error: AuthFlowError | None = None


StatusCallback = Callable[[AuthFlowStatus], None]


class ProviderTokenSet(_CamelModel):
    """Tokens returned by the backend's mediated code or refresh exchange."""

    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    id_token: str | None = None
    expires_in: int | None = None


class TokenExchangeResult(_CamelModel):
    """Internal token issued by ``auth.internal.exchange``."""

    internal_token: str = Field(min_length=1)
    expires_in: int


class ProviderClientConfig(_CamelModel):
    """Public OAuth client settings for one provider."""

    client_id: str
    redirect_uri_base: str = "http://localhost"
    scopes: list[str] = Field(default_factory=list)


class AuthClientConfig(_CamelModel):
    """Per-provider public OAuth settings."""

    google: ProviderClientConfig | None = None
    github: ProviderClientConfig | None = None

    def for_provider(self, provider: AuthProvider) -> ProviderClientConfig | None:
        """Return the settings for ``provider``, if the backend published any."""
        return getattr(self, provider.value, None)


class ClientConfig(_CamelModel):
    """Response of ``config.clientConfig``."""

    auth: AuthClientConfig = Field(default_factory=AuthClientConfig)


@dataclass
class CallbackResult:
    """Query parameters captured from the OAuth redirect."""

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None
    extra: dict[str, str] = field(default_factory=dict)
