"""Client side: API client, session controller and admin API."""

from .admin_api import AdminApi, AdminApiError
from .backend import AuthEvent, BackendClient, BackendError
from .session import AuthError, AuthResult, SessionController, SessionState

__all__ = [
    "AdminApi",
    "AdminApiError",
    "AuthEvent",
    "BackendClient",
    "BackendError",
    "AuthError",
    "AuthResult",
    "SessionController",
    "SessionState",
]
