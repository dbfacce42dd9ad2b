from __future__ import annotations

from typing import Any, Dict, Iterator, Optional

import pytest
from fastapi.testclient import TestClient

from finance_tracker.api.server import create_app
from finance_tracker.auth.crud import create_identity, set_role, update_profile
from finance_tracker.client.backend import BackendClient
from finance_tracker.config import Config
from finance_tracker.db import connect


ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "AdminPass123"
USER_PASSWORD = "UserPass123"


@pytest.fixture()
def cfg(tmp_path) -> Config:
    return Config(
        DB_DSN=str(tmp_path / "finance.sqlite"),
        API_BASE_URL="http://testserver",
        AUTH_JWT_SECRET="test-secret",
        AUTH_BOOTSTRAP_ADMIN_EMAIL=ADMIN_EMAIL,
        AUTH_BOOTSTRAP_ADMIN_PASSWORD=ADMIN_PASSWORD,
        PRUNE_LOGIN_HISTORY_ON_STARTUP=False,
        CORS_ALLOW_ORIGINS="*",
    )


@pytest.fixture()
def client(cfg: Config) -> Iterator[TestClient]:
    # Entering the client runs the startup hook (schema + bootstrap admin).
    with TestClient(create_app(cfg)) as c:
        yield c


def make_user(
    cfg: Config,
    email: str,
    *,
    password: str = USER_PASSWORD,
    role: str = "user",
    is_active: bool = True,
    full_name: Optional[str] = None,
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        u = create_identity(conn, email=email, password=password, full_name=full_name, email_confirmed=True)
        if role != "user":
            set_role(conn, u["user_id"], role)
        if not is_active:
            update_profile(conn, u["user_id"], is_active=False)
    return u


def sign_in(client: TestClient, email: str, password: str) -> str:
    r = client.post("/auth/v1/token", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return r.json()["access_token"]


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin_token(client: TestClient) -> str:
    return sign_in(client, ADMIN_EMAIL, ADMIN_PASSWORD)


@pytest.fixture()
def user_token(client: TestClient, cfg: Config) -> str:
    make_user(cfg, "user@example.com", full_name="Regular User")
    return sign_in(client, "user@example.com", USER_PASSWORD)


@pytest.fixture()
def backend(client: TestClient) -> BackendClient:
    return BackendClient("http://testserver", http=client, timeout=None)


def gateway(client: TestClient, body: Any, token: Optional[str] = None):
    headers = bearer(token) if token else {}
    return client.post("/functions/v1/admin-users", json=body, headers=headers)
