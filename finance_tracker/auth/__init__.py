"""Authentication / authorization helpers.

Auth is intentionally lightweight:

- `users` table (email + password hash), with a profile and a role row per identity
- JWT access tokens that carry identity only, never a role

Roles live in `user_roles` and are re-read from the store for every
privileged decision (`require_admin`, the admin gateway).
"""

from .deps import get_current_user, require_admin, verify_access_token
from .crud import bootstrap_admin_if_needed, create_identity

__all__ = [
    "get_current_user",
    "require_admin",
    "verify_access_token",
    "bootstrap_admin_if_needed",
    "create_identity",
]
