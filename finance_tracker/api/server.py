from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from finance_tracker.admin.gateway import handle_admin_request
from finance_tracker.admin.login_history import prune_login_history
from finance_tracker.auth import get_current_user
from finance_tracker.auth.crud import (
    bootstrap_admin_if_needed,
    consume_password_reset,
    create_identity,
    create_password_reset,
    is_account_active,
    public_user,
    touch_last_sign_in,
    update_password,
    verify_user_credentials,
)
from finance_tracker.auth.security import create_access_token
from finance_tracker.config import Config, load_config
from finance_tracker.db import connect, init_db
from finance_tracker.validation import is_valid_email, is_valid_password, sanitize_email

from .deps import get_cfg
from .rest import router as rest_router


def _debug(msg: str) -> None:
    print(f"[api] {msg}")


router = APIRouter()


# -----------------------------
# Health
# -----------------------------


@router.get("/health")
def health() -> Dict[str, Any]:
    return {"status": "ok"}


# -----------------------------
# Auth (credential service)
# -----------------------------


class SignUpRequest(BaseModel):
    email: str
    password: str
    full_name: Optional[str] = None


class TokenRequest(BaseModel):
    email: str
    password: str


class PasswordUpdateRequest(BaseModel):
    password: str


class RecoverRequest(BaseModel):
    email: str


class RecoverConfirmRequest(BaseModel):
    token: str
    password: str


def _session_payload(cfg: Config, user: Dict[str, Any]) -> Dict[str, Any]:
    token = create_access_token(
        secret=cfg.AUTH_JWT_SECRET,
        user_id=str(user["user_id"]),
        email=str(user["email"]),
        expires_minutes=int(cfg.AUTH_TOKEN_EXPIRE_MINUTES),
    )
    return {
        "access_token": token,
        "token_type": "bearer",
        "expires_in": int(cfg.AUTH_TOKEN_EXPIRE_MINUTES) * 60,
        "user": user,
    }


@router.post("/auth/v1/signup")
def auth_signup(payload: SignUpRequest, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    """Self-serve account creation. New identities always get the `user` role."""
    email = sanitize_email(payload.email)
    if not is_valid_email(email):
        raise HTTPException(status_code=400, detail="email_invalid")
    if not is_valid_password(payload.password or ""):
        raise HTTPException(status_code=400, detail="password_length")

    with connect(cfg.DB_DSN) as conn:
        try:
            u = create_identity(
                conn,
                email=email,
                password=payload.password,
                full_name=(payload.full_name or "").strip() or None,
                email_confirmed=True,
            )
        except ValueError as e:
            detail = str(e)
            if detail == "email_exists":
                raise HTTPException(status_code=409, detail=detail)
            raise HTTPException(status_code=400, detail=detail)
        touch_last_sign_in(conn, u["user_id"])

    return {"user": u, "session": _session_payload(cfg, u)}


@router.post("/auth/v1/token")
def auth_token(payload: TokenRequest, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        row = verify_user_credentials(conn, payload.email, payload.password)
        if row is None:
            raise HTTPException(status_code=401, detail="invalid_credentials")
        if not is_account_active(conn, str(row["user_id"])):
            raise HTTPException(status_code=403, detail="account_deactivated")
        touch_last_sign_in(conn, str(row["user_id"]))
        u = public_user(row)
    return _session_payload(cfg, u)


@router.post("/auth/v1/token/refresh")
def auth_token_refresh(user: Dict[str, Any] = Depends(get_current_user), cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    """Exchange a still-valid token for a fresh one."""
    return _session_payload(cfg, user)


@router.get("/auth/v1/user")
def auth_user(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    return {"user": user}


@router.put("/auth/v1/user")
def auth_update_password(
    payload: PasswordUpdateRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    if not is_valid_password(payload.password or ""):
        raise HTTPException(status_code=400, detail="password_length")
    with connect(cfg.DB_DSN) as conn:
        update_password(conn, str(user["user_id"]), payload.password)
    return {"user": user}


@router.post("/auth/v1/logout")
def auth_logout() -> Dict[str, Any]:
    """Tokens are stateless; the client discards its copy."""
    return {"ok": True}


@router.post("/auth/v1/recover")
def auth_recover(payload: RecoverRequest, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    """Start password recovery. Always answers ok so emails cannot be enumerated."""
    with connect(cfg.DB_DSN) as conn:
        token = create_password_reset(conn, payload.email, ttl_minutes=cfg.PASSWORD_RESET_TOKEN_MINUTES)
    if token:
        # No mail transport is configured; operators relay the link.
        link = f"{cfg.PUBLIC_APP_URL.rstrip('/')}/reset-password?token={token}"
        _debug(f"Password recovery requested for {sanitize_email(payload.email)}: {link}")
    return {"ok": True}


@router.post("/auth/v1/recover/confirm")
def auth_recover_confirm(payload: RecoverConfirmRequest, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    if not is_valid_password(payload.password or ""):
        raise HTTPException(status_code=400, detail="password_length")
    with connect(cfg.DB_DSN) as conn:
        try:
            consume_password_reset(conn, payload.token, payload.password)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True}


# -----------------------------
# Admin gateway
# -----------------------------

ADMIN_GATEWAY_PATH = "/functions/v1/admin-users"


def _gateway_cors_headers(cfg: Config) -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Headers": cfg.GATEWAY_ALLOW_HEADERS,
    }


@router.options(ADMIN_GATEWAY_PATH)
def admin_gateway_preflight(cfg: Config = Depends(get_cfg)) -> Response:
    return Response(status_code=200, headers=_gateway_cors_headers(cfg))


@router.post(ADMIN_GATEWAY_PATH)
async def admin_gateway(request: Request) -> JSONResponse:
    cfg = get_cfg(request)
    try:
        body = await request.json()
    except ValueError:
        body = None

    status, payload = await run_in_threadpool(
        handle_admin_request,
        cfg,
        authorization=request.headers.get("authorization"),
        body=body,
    )
    return JSONResponse(payload, status_code=status, headers=_gateway_cors_headers(cfg))


# -----------------------------
# App factory
# -----------------------------


def create_app(cfg: Optional[Config] = None) -> FastAPI:
    cfg = cfg or load_config()
    app = FastAPI(title="Finance Tracker", version="0.1.0")
    app.state.cfg = cfg

    origins = [o.strip() for o in (cfg.CORS_ALLOW_ORIGINS or "").split(",") if o.strip()]
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            # Browsers reject credentialed responses for a wildcard origin.
            allow_credentials="*" not in origins,
            allow_methods=["*"],
            allow_headers=[h.strip() for h in cfg.GATEWAY_ALLOW_HEADERS.split(",") if h.strip()],
        )

    app.include_router(router)
    app.include_router(rest_router)

    @app.on_event("startup")
    def _on_startup() -> None:
        init_db(cfg.DB_DSN)

        boot = bootstrap_admin_if_needed(cfg)
        if boot:
            _debug(f"Bootstrapped initial admin user: email={boot.get('email')}")

        if cfg.PRUNE_LOGIN_HISTORY_ON_STARTUP:
            with connect(cfg.DB_DSN) as conn:
                prune_login_history(conn, retention_hours=cfg.LOGIN_HISTORY_RETENTION_HOURS)

    return app


app = create_app()
