from __future__ import annotations

from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from finance_tracker.config import Config
from finance_tracker.db import connect

from .crud import get_role, get_user_by_id, is_account_active, public_user
from .security import decode_access_token


_bearer = HTTPBearer(auto_error=False)


class AuthFailure(Exception):
    """Token could not be resolved; `reason` is a stable snake_case code."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def _app_cfg(request: Request) -> Config:
    cfg = getattr(request.app.state, "cfg", None)
    if cfg is None:
        raise HTTPException(status_code=500, detail="server_config_missing")
    return cfg


def bearer_token_from_header(value: Optional[str]) -> Optional[str]:
    """`Bearer <token>` -> `<token>`; anything else -> None."""
    scheme, _, token = (value or "").strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None
    return token


def verify_access_token(cfg: Config, token: Optional[str]) -> Dict[str, Any]:
    """Map a bearer token to its user, who must still exist and be active.

    Roles are not consulted here.
    """
    if not token:
        raise AuthFailure("missing_token")
    try:
        claims = decode_access_token(token=token, secret=cfg.AUTH_JWT_SECRET)
    except jwt.ExpiredSignatureError:
        raise AuthFailure("token_expired")
    except (jwt.InvalidTokenError, ValueError):
        raise AuthFailure("token_invalid")

    user_id = claims.get("sub")
    if not user_id:
        raise AuthFailure("token_missing_sub")
    with connect(cfg.DB_DSN) as conn:
        row = get_user_by_id(conn, str(user_id))
        active = row is not None and is_account_active(conn, str(user_id))
    if row is None:
        raise AuthFailure("user_not_found")
    if not active:
        raise AuthFailure("user_inactive")
    return public_user(row)


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Dict[str, Any]:
    token = None if credentials is None else credentials.credentials
    try:
        return verify_access_token(_app_cfg(request), token)
    except AuthFailure as e:
        raise HTTPException(status_code=401, detail=e.reason, headers={"WWW-Authenticate": "Bearer"})


def require_admin(
    request: Request,
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    """Caller must hold `admin` in `user_roles`, read fresh on each request."""
    with connect(_app_cfg(request).DB_DSN) as conn:
        role = get_role(conn, str(user["user_id"]))
    if role != "admin":
        raise HTTPException(status_code=403, detail="admin_required")
    return {**user, "role": role}
