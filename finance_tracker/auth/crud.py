from __future__ import annotations

import json
import uuid
from datetime import timedelta
from typing import Any, Dict, Optional

from finance_tracker.config import Config
from finance_tracker.db import connect
from finance_tracker.util.hashing import sha256_hex
from finance_tracker.util.time import to_iso, utcnow, utcnow_iso
from finance_tracker.validation import is_valid_email, sanitize_email

from .security import generate_reset_token, hash_password, verify_password


ROLES = ("admin", "user")


def normalize_email(email: str) -> str:
    return sanitize_email(email)


def public_user(row: Any | Dict[str, Any]) -> Dict[str, Any]:
    d = dict(row)
    d.pop("password_hash", None)
    raw_meta = d.pop("user_metadata_json", None) or "{}"
    try:
        d["user_metadata"] = json.loads(raw_meta)
    except ValueError:
        d["user_metadata"] = {}
    d["id"] = d.get("user_id")
    return d


def public_profile(row: Any | Dict[str, Any]) -> Dict[str, Any]:
    d = dict(row)
    d["is_active"] = bool(int(d.get("is_active") or 0))
    d["must_change_password"] = bool(int(d.get("must_change_password") or 0))
    return d


def get_user_by_email(conn: Any, email: str) -> Optional[Any]:
    e = normalize_email(email)
    if not e:
        return None
    return conn.execute("SELECT * FROM users WHERE email=?", (e,)).fetchone()


def get_user_by_id(conn: Any, user_id: str) -> Optional[Any]:
    if not user_id:
        return None
    return conn.execute("SELECT * FROM users WHERE user_id=?", (str(user_id),)).fetchone()


def create_identity(
    conn: Any,
    *,
    email: str,
    password: str,
    full_name: str | None = None,
    email_confirmed: bool = False,
) -> Dict[str, Any]:
    """Create an identity together with its profile and a `user` role row.

    All three rows are written on the same connection, so they commit or roll
    back together.
    """
    e = normalize_email(email)
    if not is_valid_email(e):
        raise ValueError("email_invalid")

    if get_user_by_email(conn, e) is not None:
        raise ValueError("email_exists")

    now = utcnow_iso()
    user_id = str(uuid.uuid4())
    meta = {"full_name": full_name} if full_name else {}
    conn.execute(
        """
        INSERT INTO users (user_id, email, password_hash, email_confirmed_at, user_metadata_json, created_at, updated_at)
        VALUES (?,?,?,?,?,?,?)
        """,
        (user_id, e, hash_password(password), now if email_confirmed else None, json.dumps(meta), now, now),
    )
    conn.execute(
        """
        INSERT INTO profiles (user_id, email, full_name, is_active, must_change_password, created_at, updated_at)
        VALUES (?,?,?,1,0,?,?)
        """,
        (user_id, e, full_name, now, now),
    )
    conn.execute("INSERT INTO user_roles (user_id, role) VALUES (?, 'user')", (user_id,))

    row = get_user_by_id(conn, user_id)
    assert row is not None
    return public_user(row)


def verify_user_credentials(conn: Any, email: str, password: str) -> Optional[Any]:
    """Check an email/password pair against the identity table.

    Profile activation is checked separately (`is_account_active`) so the
    token route can answer a deactivated account with its own code.
    """
    row = get_user_by_email(conn, email)
    if row is None:
        return None
    if not verify_password(password, str(row["password_hash"])):
        return None
    return row


def touch_last_sign_in(conn: Any, user_id: str) -> None:
    now = utcnow_iso()
    conn.execute(
        "UPDATE users SET last_sign_in_at=?, updated_at=? WHERE user_id=?",
        (now, now, str(user_id)),
    )


def update_password(conn: Any, user_id: str, password: str) -> None:
    cur = conn.execute(
        "UPDATE users SET password_hash=?, updated_at=? WHERE user_id=?",
        (hash_password(password), utcnow_iso(), str(user_id)),
    )
    if cur.rowcount == 0:
        raise ValueError("user_not_found")


def delete_identity(conn: Any, user_id: str) -> None:
    cur = conn.execute("DELETE FROM users WHERE user_id=?", (str(user_id),))
    if cur.rowcount == 0:
        raise ValueError("user_not_found")


def get_role(conn: Any, user_id: str) -> Optional[str]:
    row = conn.execute("SELECT role FROM user_roles WHERE user_id=?", (str(user_id),)).fetchone()
    if row is None:
        return None
    return str(row["role"])


def set_role(conn: Any, user_id: str, role: str) -> None:
    if role not in ROLES:
        raise ValueError("invalid_role")
    conn.execute(
        """
        INSERT INTO user_roles (user_id, role) VALUES (?, ?)
        ON CONFLICT(user_id) DO UPDATE SET role=excluded.role
        """,
        (str(user_id), role),
    )


def get_profile(conn: Any, user_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM profiles WHERE user_id=?", (str(user_id),)).fetchone()
    if row is None:
        return None
    return public_profile(row)


def is_account_active(conn: Any, user_id: str) -> bool:
    """False only when a profile exists and is switched off."""
    row = conn.execute("SELECT is_active FROM profiles WHERE user_id=?", (str(user_id),)).fetchone()
    return row is None or bool(int(row["is_active"] or 0))


_PROFILE_FIELDS = ("full_name", "is_active", "must_change_password", "temp_password", "created_by")


def update_profile(conn: Any, user_id: str, **fields: Any) -> int:
    """Update only the provided profile fields. Returns the number of rows touched."""
    updates: list[tuple[str, Any]] = []
    for k, v in fields.items():
        if k not in _PROFILE_FIELDS:
            raise ValueError(f"unknown_profile_field:{k}")
        if k in ("is_active", "must_change_password") and v is not None:
            v = 1 if v else 0
        updates.append((k, v))
    if not updates:
        return 0

    updates.append(("updated_at", utcnow_iso()))
    sets = ", ".join([f"{k}=?" for k, _ in updates])
    params = [v for _, v in updates] + [str(user_id)]
    cur = conn.execute(f"UPDATE profiles SET {sets} WHERE user_id=?", params)
    return cur.rowcount


def create_password_reset(conn: Any, email: str, *, ttl_minutes: int) -> Optional[str]:
    """Issue a one-time recovery token for an email, or None when no such identity.

    Only the token hash is persisted.
    """
    row = get_user_by_email(conn, email)
    if row is None:
        return None
    token = generate_reset_token()
    now = utcnow()
    conn.execute(
        """
        INSERT INTO password_reset_tokens (token_hash, user_id, created_at, expires_at)
        VALUES (?,?,?,?)
        """,
        (sha256_hex(token), str(row["user_id"]), to_iso(now), to_iso(now + timedelta(minutes=int(ttl_minutes)))),
    )
    return token


def consume_password_reset(conn: Any, token: str, new_password: str) -> str:
    """Set a new password using a recovery token. Returns the user id."""
    row = conn.execute(
        "SELECT * FROM password_reset_tokens WHERE token_hash=?",
        (sha256_hex(token or ""),),
    ).fetchone()
    if row is None or row["used_at"]:
        raise ValueError("reset_token_invalid")
    now = utcnow_iso()
    if str(row["expires_at"]) < now:
        raise ValueError("reset_token_expired")

    user_id = str(row["user_id"])
    update_password(conn, user_id, new_password)
    conn.execute("UPDATE password_reset_tokens SET used_at=? WHERE token_hash=?", (now, row["token_hash"]))
    return user_id


def bootstrap_admin_if_needed(cfg: Config) -> Optional[Dict[str, Any]]:
    """Create the first admin when the users table is empty.

    - AUTH_BOOTSTRAP_ADMIN_EMAIL
    - AUTH_BOOTSTRAP_ADMIN_PASSWORD

    The bootstrap admin is flagged to change the password at first sign-in.
    """

    with connect(cfg.DB_DSN) as conn:
        n = conn.execute("SELECT COUNT(*) AS n FROM users").fetchone()["n"]
        if int(n) > 0:
            return None

        email = normalize_email(cfg.AUTH_BOOTSTRAP_ADMIN_EMAIL or "")
        password = cfg.AUTH_BOOTSTRAP_ADMIN_PASSWORD or ""
        if not email or not password:
            return None

        u = create_identity(conn, email=email, password=password, full_name="Administrator", email_confirmed=True)
        set_role(conn, u["user_id"], "admin")
        update_profile(conn, u["user_id"], must_change_password=True)
        u["role"] = "admin"
        return u
