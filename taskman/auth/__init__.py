"""OAuth2 authentication system for the taskman client.

Provides the PKCE browser login against Google and GitHub, the exchange
of provider tokens for backend-issued internal tokens, and local session
persistence with transparent refresh.
"""

from __future__ import annotations

from .types import (
    AuthFlowError,
    AuthFlowState,
    AuthFlowStatus,
    AuthProvider,
    AuthSession,
    StatusCallback,
    TokenExchangeResult,
    to_auth_provider,
)
from .pkce import PKCEChallenge, generate_code_challenge, generate_code_verifier, generate_state
from .callback_server import OAuthCallbackServer
from .providers import GitHubProvider, GoogleProvider, OAuthProvider, create_provider
from .session_store import (
    FileSessionStore,
    MemorySessionStore,
    SessionStore,
    resolve_session_path,
)
from .internal_token import InternalTokenExchanger
from .flow import AuthFlowManager
from .session import SessionManager
from .service import AuthService
from .factory import AuthServiceFactory


__all__ = [
    "AuthFlowError",
    "AuthFlowManager",
    "AuthFlowState",
    "AuthFlowStatus",
    "AuthProvider",
    "AuthService",
    "AuthServiceFactory",
    "AuthSession",
    "FileSessionStore",
    "GitHubProvider",
    "GoogleProvider",
    "InternalTokenExchanger",
    "MemorySessionStore",
    "OAuthCallbackServer",
    "OAuthProvider",
    "PKCEChallenge",
    "SessionManager",
    "SessionStore",
    "StatusCallback",
    "TokenExchangeResult",
    "create_provider",
    "generate_code_challenge",
    "generate_code_verifier",
    "generate_state",
    "resolve_session_path",
    "to_auth_provider",
]
