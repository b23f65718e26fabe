"""taskman - command-line client for the taskman task manager.

This package provides the client-side authentication layer: browser
sign-in with Google or GitHub, backend token exchange and local session
management.
"""

# The auth package must load before backend; backend imports auth.types.
from .auth import (
    AuthFlowState,
    AuthFlowStatus,
    AuthProvider,
    AuthService,
    AuthServiceFactory,
    AuthSession,
)
from .backend import BackendClient
from .config import TaskmanSettings, get_settings
from .exceptions import AuthenticationError, TaskmanException


__version__ = "0.1.0"

__all__ = [
    "AuthFlowState",
    "AuthFlowStatus",
    "AuthProvider",
    "AuthService",
    "AuthServiceFactory",
    "AuthSession",
    "AuthenticationError",
    "BackendClient",
    "TaskmanException",
    "TaskmanSettings",
    "__version__",
    "get_settings",
]
