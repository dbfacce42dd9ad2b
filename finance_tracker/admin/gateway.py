"""Admin gateway: the single entry point for privileged user management.

Every call goes through the same sequence before any handler runs:

1. a bearer token must be present (401 otherwise),
2. the token is resolved to an identity through the ordinary,
   non-privileged verification path (401 if forged, expired or orphaned),
3. the caller's role is read fresh from `user_roles` (403 unless `admin`),
4. the `action` field selects exactly one handler from `ACTIONS` (400 if unknown).

Handlers run on a store connection that is not scoped to the caller, so they
can read and mutate any user's rows. Responses are `(status, body)` pairs
where error bodies are always `{"error": "<message>"}`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Literal, Optional, Tuple, Type

from pydantic import BaseModel, Field, ValidationError

from finance_tracker.auth.crud import (
    create_identity,
    delete_identity,
    get_profile,
    get_role,
    set_role,
    update_password,
    update_profile,
)
from finance_tracker.auth.deps import AuthFailure, bearer_token_from_header, verify_access_token
from finance_tracker.auth.security import generate_temp_password
from finance_tracker.config import Config
from finance_tracker.db import connect
from finance_tracker.finance.records import fetch_all_kinds
from finance_tracker.util.time import local_midnight_iso

from .login_history import count_logins_since, last_login_at, list_login_history, login_count


def _debug(msg: str) -> None:
    print(f"[gateway] {msg}")


GatewayResponse = Tuple[int, Dict[str, Any]]


class GatewayError(Exception):
    """A handler failure that maps to a specific HTTP status."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


# Messages for identity-store error codes that callers are allowed to see.
_CLIENT_ERRORS = {
    "email_exists": "A user with this email address has already been registered",
    "email_invalid": "Unable to validate email address: invalid format",
    "user_not_found": "User not found",
    "invalid_role": "Invalid role",
    "password_blank": "Password cannot be blank",
}


def _client_error(e: ValueError) -> GatewayError:
    code = str(e)
    return GatewayError(400, _CLIENT_ERRORS.get(code, code))


class AdminAction(str, Enum):
    CREATE_USER = "create_user"
    UPDATE_USER = "update_user"
    RESET_PASSWORD = "reset_password"
    DELETE_USER = "delete_user"
    GET_STATS = "get_stats"
    GET_USERS = "get_users"
    GET_LOGIN_HISTORY = "get_login_history"
    GET_USER_FINANCIAL_DATA = "get_user_financial_data"


Role = Literal["user", "admin"]


class NoParams(BaseModel):
    pass


class CreateUserParams(BaseModel):
    email: str
    full_name: Optional[str] = None
    role: Role = "user"


class UpdateUserParams(BaseModel):
    user_id: str
    full_name: Optional[str] = None
    is_active: Optional[bool] = None
    role: Optional[Role] = None


class UserIdParams(BaseModel):
    user_id: str


class LoginHistoryParams(BaseModel):
    user_id: Optional[str] = None
    limit: int = Field(default=50, ge=1, le=1000)


@dataclass(frozen=True)
class ActionContext:
    conn: Any
    caller: Dict[str, Any]


Handler = Callable[[ActionContext, Any], Dict[str, Any]]


@dataclass(frozen=True)
class ActionSpec:
    params: Type[BaseModel]
    handler: Handler


# -----------------------------
# Handlers
# -----------------------------


def create_user_account(
    conn: Any,
    *,
    email: str,
    full_name: Optional[str],
    role: str,
    created_by: Optional[str],
) -> Tuple[Dict[str, Any], str]:
    """Create a pre-confirmed identity with a one-time temporary password.

    The profile is flagged `must_change_password` and keeps the temporary
    password until the user changes it. Returns (user, temp_password).
    Shared with access-request approval.
    """
    temp_password = generate_temp_password()
    try:
        user = create_identity(conn, email=email, password=temp_password, full_name=full_name, email_confirmed=True)
        update_profile(
            conn,
            user["user_id"],
            full_name=full_name,
            must_change_password=True,
            temp_password=temp_password,
            created_by=created_by,
        )
        if role == "admin":
            set_role(conn, user["user_id"], "admin")
    except ValueError as e:
        raise _client_error(e)
    return user, temp_password


def _create_user(ctx: ActionContext, p: CreateUserParams) -> Dict[str, Any]:
    user, temp_password = create_user_account(
        ctx.conn,
        email=p.email,
        full_name=p.full_name,
        role=p.role,
        created_by=str(ctx.caller["user_id"]),
    )
    _debug(f"create_user email={user['email']} role={p.role} by={ctx.caller['user_id']}")
    return {"success": True, "user": user, "temp_password": temp_password}


def _require_profile(conn: Any, user_id: str) -> Dict[str, Any]:
    profile = get_profile(conn, user_id)
    if profile is None:
        raise GatewayError(400, _CLIENT_ERRORS["user_not_found"])
    return profile


def _update_user(ctx: ActionContext, p: UpdateUserParams) -> Dict[str, Any]:
    _require_profile(ctx.conn, p.user_id)
    fields: Dict[str, Any] = {}
    if p.full_name is not None:
        fields["full_name"] = p.full_name
    if p.is_active is not None:
        fields["is_active"] = p.is_active
    update_profile(ctx.conn, p.user_id, **fields)
    if p.role is not None:
        set_role(ctx.conn, p.user_id, p.role)
    return {"success": True}


def _reset_password(ctx: ActionContext, p: UserIdParams) -> Dict[str, Any]:
    temp_password = generate_temp_password()
    try:
        update_password(ctx.conn, p.user_id, temp_password)
    except ValueError as e:
        raise _client_error(e)
    update_profile(ctx.conn, p.user_id, must_change_password=True, temp_password=temp_password)
    _debug(f"reset_password user_id={p.user_id} by={ctx.caller['user_id']}")
    return {"success": True, "temp_password": temp_password}


def _delete_user(ctx: ActionContext, p: UserIdParams) -> Dict[str, Any]:
    try:
        delete_identity(ctx.conn, p.user_id)
    except ValueError as e:
        raise _client_error(e)
    _debug(f"delete_user user_id={p.user_id} by={ctx.caller['user_id']}")
    return {"success": True}


def _get_stats(ctx: ActionContext, _p: NoParams) -> Dict[str, Any]:
    total = ctx.conn.execute("SELECT COUNT(*) AS n FROM profiles").fetchone()["n"]
    active = ctx.conn.execute("SELECT COUNT(*) AS n FROM profiles WHERE is_active=1").fetchone()["n"]
    return {
        "totalUsers": int(total or 0),
        "activeUsers": int(active or 0),
        "loginsToday": count_logins_since(ctx.conn, local_midnight_iso()),
    }


def _get_users(ctx: ActionContext, _p: NoParams) -> Dict[str, Any]:
    rows = ctx.conn.execute(
        """
        SELECT p.*, r.role AS role
        FROM profiles p
        LEFT JOIN user_roles r ON r.user_id = p.user_id
        ORDER BY p.created_at DESC
        """
    ).fetchall()

    users = []
    # One pair of lookups per user; fine at the expected handful of accounts.
    for r in rows:
        d = dict(r)
        d["is_active"] = bool(int(d.get("is_active") or 0))
        d["must_change_password"] = bool(int(d.get("must_change_password") or 0))
        d["role"] = d.get("role") or "user"
        d["last_login"] = last_login_at(ctx.conn, d["user_id"])
        d["login_count"] = login_count(ctx.conn, d["user_id"])
        users.append(d)
    return {"users": users}


def _get_login_history(ctx: ActionContext, p: LoginHistoryParams) -> Dict[str, Any]:
    return {"history": list_login_history(ctx.conn, user_id=p.user_id, limit=p.limit)}


def _get_user_financial_data(ctx: ActionContext, p: UserIdParams) -> Dict[str, Any]:
    return fetch_all_kinds(ctx.conn, user_id=p.user_id)


ACTIONS: Dict[AdminAction, ActionSpec] = {
    AdminAction.CREATE_USER: ActionSpec(CreateUserParams, _create_user),
    AdminAction.UPDATE_USER: ActionSpec(UpdateUserParams, _update_user),
    AdminAction.RESET_PASSWORD: ActionSpec(UserIdParams, _reset_password),
    AdminAction.DELETE_USER: ActionSpec(UserIdParams, _delete_user),
    AdminAction.GET_STATS: ActionSpec(NoParams, _get_stats),
    AdminAction.GET_USERS: ActionSpec(NoParams, _get_users),
    AdminAction.GET_LOGIN_HISTORY: ActionSpec(LoginHistoryParams, _get_login_history),
    AdminAction.GET_USER_FINANCIAL_DATA: ActionSpec(UserIdParams, _get_user_financial_data),
}

_unhandled = set(AdminAction) - set(ACTIONS)
if _unhandled:
    raise RuntimeError(f"admin actions without a handler: {sorted(a.value for a in _unhandled)}")


# -----------------------------
# Entry point
# -----------------------------


def _error(status: int, message: str) -> GatewayResponse:
    return status, {"error": message}


def _params_error(e: ValidationError) -> str:
    first = e.errors()[0] if e.errors() else {}
    loc = ".".join(str(x) for x in first.get("loc", ()))
    msg = first.get("msg", "invalid parameters")
    return f"Invalid parameters: {loc} {msg}".strip() if loc else f"Invalid parameters: {msg}"


def handle_admin_request(
    cfg: Config,
    *,
    authorization: Optional[str],
    body: Any,
    actions: Optional[Dict[AdminAction, ActionSpec]] = None,
) -> GatewayResponse:
    """Authenticate, authorize and dispatch one gateway call.

    `body` is the decoded JSON request body, or None when it could not be
    decoded. It is not inspected until the caller is known to be an admin.
    """
    table = ACTIONS if actions is None else actions

    token = bearer_token_from_header(authorization)
    if not token:
        return _error(401, "Unauthorized")

    try:
        caller = verify_access_token(cfg, token)
    except AuthFailure as e:
        _debug(f"rejected token: {e.reason}")
        return _error(401, "Unauthorized")

    with connect(cfg.DB_DSN) as conn:
        role = get_role(conn, str(caller["user_id"]))
    if role != "admin":
        return _error(403, "Admin access required")

    if not isinstance(body, dict):
        return _error(400, "Invalid request body")

    params = dict(body)
    raw_action = params.pop("action", None)
    try:
        action = AdminAction(raw_action)
    except ValueError:
        return _error(400, "Invalid action")

    spec = table.get(action)
    if spec is None:
        return _error(400, "Invalid action")

    # Clients send explicit nulls for omitted optionals.
    params = {k: v for k, v in params.items() if v is not None}
    try:
        parsed = spec.params.model_validate(params)
    except ValidationError as e:
        return _error(400, _params_error(e))

    try:
        with connect(cfg.DB_DSN) as conn:
            result = spec.handler(ActionContext(conn=conn, caller=caller), parsed)
    except GatewayError as e:
        return _error(e.status, e.message)
    except Exception as e:
        _debug(f"Error in {action.value}: {e!r}")
        return _error(500, str(e) or e.__class__.__name__)

    return 200, result
