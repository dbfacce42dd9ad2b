from __future__ import annotations

import re
from datetime import timedelta

import jwt

from finance_tracker.admin.gateway import ACTIONS, ActionSpec, AdminAction, NoParams, handle_admin_request
from finance_tracker.auth.crud import get_profile, get_role, set_role, update_profile
from finance_tracker.db import connect
from finance_tracker.util.time import to_iso, utcnow, utcnow_iso

from conftest import ADMIN_EMAIL, USER_PASSWORD, bearer, gateway, make_user, sign_in


def _count(cfg, table: str) -> int:
    with connect(cfg.DB_DSN) as conn:
        return int(conn.execute(f"SELECT COUNT(*) AS n FROM {table}").fetchone()["n"])


def _action_bodies(target_id: str):
    return [
        {"action": "create_user", "email": "mallory@example.com", "full_name": "M", "role": "admin"},
        {"action": "update_user", "user_id": target_id, "full_name": "Hacked", "is_active": False, "role": "admin"},
        {"action": "reset_password", "user_id": target_id},
        {"action": "delete_user", "user_id": target_id},
        {"action": "get_stats"},
        {"action": "get_users"},
        {"action": "get_login_history"},
        {"action": "get_user_financial_data", "user_id": target_id},
    ]


def test_every_action_is_dispatchable():
    assert set(ACTIONS) == set(AdminAction)


def test_missing_token_is_401_and_nothing_changes(client, cfg):
    target = make_user(cfg, "target@example.com", full_name="Target")
    users_before = _count(cfg, "users")

    for body in _action_bodies(target["user_id"]):
        r = gateway(client, body)
        assert r.status_code == 401, body
        assert r.json() == {"error": "Unauthorized"}

    assert _count(cfg, "users") == users_before
    with connect(cfg.DB_DSN) as conn:
        profile = get_profile(conn, target["user_id"])
        assert profile["full_name"] == "Target"
        assert profile["is_active"] is True
        assert profile["must_change_password"] is False
        assert get_role(conn, target["user_id"]) == "user"
    # Old password still works, so reset_password did not run.
    sign_in(client, "target@example.com", USER_PASSWORD)


def test_forged_and_malformed_tokens_are_401(client, cfg):
    target = make_user(cfg, "target@example.com")
    forged = jwt.encode({"sub": target["user_id"], "email": "target@example.com"}, "wrong-secret", algorithm="HS256")

    for token in (forged, "not-a-jwt"):
        r = gateway(client, {"action": "get_stats"}, token)
        assert r.status_code == 401

    r = client.post(
        "/functions/v1/admin-users",
        json={"action": "get_stats"},
        headers={"Authorization": "Basic abc"},
    )
    assert r.status_code == 401


def test_expired_token_is_401(client, cfg):
    admin_id = None
    with connect(cfg.DB_DSN) as conn:
        admin_id = conn.execute("SELECT user_id FROM users WHERE email=?", (ADMIN_EMAIL,)).fetchone()["user_id"]
    now = utcnow()
    expired = jwt.encode(
        {"sub": admin_id, "email": ADMIN_EMAIL, "iat": now - timedelta(hours=2), "exp": now - timedelta(hours=1)},
        cfg.AUTH_JWT_SECRET,
        algorithm="HS256",
    )
    r = gateway(client, {"action": "get_stats"}, expired)
    assert r.status_code == 401


def test_non_admin_gets_403_for_every_action(client, cfg, user_token):
    target = make_user(cfg, "target@example.com", full_name="Target")
    users_before = _count(cfg, "users")

    for body in _action_bodies(target["user_id"]):
        r = gateway(client, body, user_token)
        assert r.status_code == 403, body
        assert r.json() == {"error": "Admin access required"}

    assert _count(cfg, "users") == users_before
    with connect(cfg.DB_DSN) as conn:
        assert get_profile(conn, target["user_id"])["full_name"] == "Target"


def test_role_is_read_fresh_on_every_call(client, cfg):
    u = make_user(cfg, "promoted@example.com")
    token = sign_in(client, "promoted@example.com", USER_PASSWORD)

    assert gateway(client, {"action": "get_stats"}, token).status_code == 403

    with connect(cfg.DB_DSN) as conn:
        set_role(conn, u["user_id"], "admin")
    assert gateway(client, {"action": "get_stats"}, token).status_code == 200

    with connect(cfg.DB_DSN) as conn:
        set_role(conn, u["user_id"], "user")
    assert gateway(client, {"action": "get_stats"}, token).status_code == 403


def test_deactivated_admin_is_rejected_before_dispatch(client, cfg):
    u = make_user(cfg, "exadmin@example.com", role="admin")
    token = sign_in(client, "exadmin@example.com", USER_PASSWORD)
    assert gateway(client, {"action": "get_stats"}, token).status_code == 200

    with connect(cfg.DB_DSN) as conn:
        update_profile(conn, u["user_id"], is_active=False)

    before = _count(cfg, "users")
    r = gateway(client, {"action": "create_user", "email": "new@example.com", "full_name": "New"}, token)
    assert r.status_code == 401
    assert r.json() == {"error": "Unauthorized"}
    assert _count(cfg, "users") == before


def test_role_in_token_claims_is_ignored(client, cfg):
    u = make_user(cfg, "sneaky@example.com")
    token = jwt.encode(
        {"sub": u["user_id"], "email": "sneaky@example.com", "role": "admin"},
        cfg.AUTH_JWT_SECRET,
        algorithm="HS256",
    )
    assert gateway(client, {"action": "get_users"}, token).status_code == 403


def test_unknown_action_and_bad_body_are_400(client, admin_token):
    r = gateway(client, {"action": "drop_everything"}, admin_token)
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid action"}

    r = gateway(client, {"full_name": "no action"}, admin_token)
    assert r.status_code == 400

    r = client.post(
        "/functions/v1/admin-users",
        content=b"{not json",
        headers={**bearer(admin_token), "Content-Type": "application/json"},
    )
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid request body"}

    r = gateway(client, {"action": "delete_user"}, admin_token)
    assert r.status_code == 400
    assert r.json()["error"].startswith("Invalid parameters")


def test_preflight_needs_no_auth(client):
    r = client.options("/functions/v1/admin-users")
    assert r.status_code == 200
    assert r.headers["access-control-allow-origin"] == "*"
    assert "authorization" in r.headers["access-control-allow-headers"]


def test_create_user_then_sign_in_with_temp_password(client, cfg, admin_token):
    r = gateway(
        client,
        {"action": "create_user", "email": "New.Person@Example.com", "full_name": "New Person", "role": "user"},
        admin_token,
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["success"] is True
    assert body["user"]["email"] == "new.person@example.com"
    temp = body["temp_password"]
    assert re.fullmatch(r"[A-Za-z0-9!@#$%]{12}", temp)

    token = sign_in(client, "new.person@example.com", temp)
    profile = client.get("/rest/profile", headers=bearer(token)).json()["profile"]
    assert profile["must_change_password"] is True
    assert profile["temp_password"] == temp
    assert profile["full_name"] == "New Person"
    assert client.get("/rest/role", headers=bearer(token)).json() == {"role": "user"}


def test_create_admin_sets_role(client, admin_token):
    r = gateway(client, {"action": "create_user", "email": "boss@example.com", "full_name": "Boss", "role": "admin"}, admin_token)
    assert r.status_code == 200
    token = sign_in(client, "boss@example.com", r.json()["temp_password"])
    assert gateway(client, {"action": "get_stats"}, token).status_code == 200


def test_create_user_duplicate_email_is_400(client, cfg, admin_token):
    make_user(cfg, "taken@example.com")
    r = gateway(client, {"action": "create_user", "email": "taken@example.com", "full_name": "X"}, admin_token)
    assert r.status_code == 400
    assert "already been registered" in r.json()["error"]


def test_update_user_is_idempotent(client, cfg, admin_token):
    u = make_user(cfg, "target@example.com", full_name="Before")
    body = {"action": "update_user", "user_id": u["user_id"], "full_name": "After", "is_active": False, "role": "admin"}

    states = []
    for _ in range(2):
        r = gateway(client, body, admin_token)
        assert r.status_code == 200
        assert r.json() == {"success": True}
        with connect(cfg.DB_DSN) as conn:
            p = get_profile(conn, u["user_id"])
            states.append((p["full_name"], p["is_active"], get_role(conn, u["user_id"])))

    assert states[0] == states[1] == ("After", False, "admin")


def test_update_user_does_not_touch_credentials(client, cfg, admin_token):
    u = make_user(cfg, "target@example.com")
    gateway(client, {"action": "update_user", "user_id": u["user_id"], "full_name": "Renamed"}, admin_token)
    sign_in(client, "target@example.com", USER_PASSWORD)


def test_reset_password_issues_new_temp_password(client, cfg, admin_token):
    u = make_user(cfg, "target@example.com")
    r = gateway(client, {"action": "reset_password", "user_id": u["user_id"]}, admin_token)
    assert r.status_code == 200
    temp = r.json()["temp_password"]

    assert client.post("/auth/v1/token", json={"email": "target@example.com", "password": USER_PASSWORD}).status_code == 401
    token = sign_in(client, "target@example.com", temp)
    assert client.get("/rest/profile", headers=bearer(token)).json()["profile"]["must_change_password"] is True


def test_actions_on_deleted_user_fail_gracefully(client, cfg, admin_token):
    u = make_user(cfg, "doomed@example.com")
    r = gateway(client, {"action": "delete_user", "user_id": u["user_id"]}, admin_token)
    assert r.status_code == 200
    assert r.json() == {"success": True}
    assert _count(cfg, "profiles") == 1

    for body in (
        {"action": "update_user", "user_id": u["user_id"], "full_name": "Ghost"},
        {"action": "reset_password", "user_id": u["user_id"]},
        {"action": "delete_user", "user_id": u["user_id"]},
    ):
        r = gateway(client, body, admin_token)
        assert r.status_code == 400, body
        assert r.json() == {"error": "User not found"}

    r = gateway(client, {"action": "get_user_financial_data", "user_id": u["user_id"]}, admin_token)
    assert r.status_code == 200
    assert r.json() == {"income": [], "expenses": [], "savings": []}


def test_deleted_user_token_is_rejected(client, cfg, admin_token):
    u = make_user(cfg, "doomed@example.com", role="admin")
    token = sign_in(client, "doomed@example.com", USER_PASSWORD)
    gateway(client, {"action": "delete_user", "user_id": u["user_id"]}, admin_token)
    assert gateway(client, {"action": "get_stats"}, token).status_code == 401


def test_get_stats_counts(client, cfg, admin_token):
    # Bootstrap admin + 9 more = 10 profiles; 3 deactivated.
    users = [make_user(cfg, f"u{i}@example.com", is_active=i >= 3) for i in range(9)]
    now = utcnow_iso()
    old = to_iso(utcnow() - timedelta(days=2))
    with connect(cfg.DB_DSN) as conn:
        for u in users[:3]:
            conn.execute("INSERT INTO login_history (user_id, login_at) VALUES (?, ?)", (u["user_id"], now))
        conn.execute("INSERT INTO login_history (user_id, login_at) VALUES (?, ?)", (users[4]["user_id"], old))

    r = gateway(client, {"action": "get_stats"}, admin_token)
    assert r.status_code == 200
    assert r.json() == {"totalUsers": 10, "activeUsers": 7, "loginsToday": 3}


def test_get_users_includes_role_and_login_counts(client, cfg, admin_token):
    u = make_user(cfg, "counted@example.com", full_name="Counted")
    with connect(cfg.DB_DSN) as conn:
        conn.execute("INSERT INTO login_history (user_id, login_at) VALUES (?, ?)", (u["user_id"], "2030-01-01T00:00:00Z"))
        conn.execute("INSERT INTO login_history (user_id, login_at) VALUES (?, ?)", (u["user_id"], "2030-01-02T00:00:00Z"))

    r = gateway(client, {"action": "get_users"}, admin_token)
    assert r.status_code == 200
    by_email = {x["email"]: x for x in r.json()["users"]}
    assert by_email["counted@example.com"]["login_count"] == 2
    assert by_email["counted@example.com"]["last_login"] == "2030-01-02T00:00:00Z"
    assert by_email["counted@example.com"]["role"] == "user"
    assert by_email[ADMIN_EMAIL]["role"] == "admin"
    assert by_email[ADMIN_EMAIL]["login_count"] == 0
    assert by_email[ADMIN_EMAIL]["last_login"] is None


def test_get_login_history_joins_profile_and_limits(client, cfg, admin_token):
    u = make_user(cfg, "hist@example.com", full_name="Hist")
    with connect(cfg.DB_DSN) as conn:
        for day in range(1, 6):
            conn.execute(
                "INSERT INTO login_history (user_id, login_at, user_agent) VALUES (?, ?, ?)",
                (u["user_id"], f"2030-01-0{day}T00:00:00Z", "pytest"),
            )

    r = gateway(client, {"action": "get_login_history", "user_id": u["user_id"], "limit": 2}, admin_token)
    assert r.status_code == 200
    history = r.json()["history"]
    assert [h["login_at"] for h in history] == ["2030-01-05T00:00:00Z", "2030-01-04T00:00:00Z"]
    assert history[0]["profiles"] == {"email": "hist@example.com", "full_name": "Hist"}

    # Clients send explicit nulls for "not given".
    r = gateway(client, {"action": "get_login_history", "user_id": None, "limit": None}, admin_token)
    assert r.status_code == 200
    assert len(r.json()["history"]) == 5


def test_get_user_financial_data(client, cfg, admin_token):
    u = make_user(cfg, "rich@example.com")
    token = sign_in(client, "rich@example.com", USER_PASSWORD)
    client.post("/rest/records/income", json={"date": "2024-01-15", "amount": 500, "source": "Salary"}, headers=bearer(token))

    r = gateway(client, {"action": "get_user_financial_data", "user_id": u["user_id"]}, admin_token)
    assert r.status_code == 200
    data = r.json()
    assert [x["source"] for x in data["income"]] == ["Salary"]
    assert data["expenses"] == [] and data["savings"] == []


def test_handler_exception_becomes_500(cfg, client, admin_token):
    def boom(ctx, params):
        raise RuntimeError("boom")

    status, body = handle_admin_request(
        cfg,
        authorization=f"Bearer {admin_token}",
        body={"action": "get_stats"},
        actions={AdminAction.GET_STATS: ActionSpec(NoParams, boom)},
    )
    assert status == 500
    assert body == {"error": "boom"}


def test_role_check_runs_before_handler(cfg, client, user_token):
    calls = []

    def spy(ctx, params):
        calls.append(params)
        return {}

    status, _ = handle_admin_request(
        cfg,
        authorization=f"Bearer {user_token}",
        body={"action": "get_stats"},
        actions={AdminAction.GET_STATS: ActionSpec(NoParams, spy)},
    )
    assert status == 403
    assert calls == []
