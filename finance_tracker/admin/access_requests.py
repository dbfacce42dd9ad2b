from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from finance_tracker.util.time import utcnow_iso
from finance_tracker.validation import is_valid_email, sanitize_email, sanitize_text

from .gateway import create_user_account


STATUSES = ("pending", "approved", "rejected")


def _debug(msg: str) -> None:
    print(f"[access_requests] {msg}")


def create_access_request(
    conn: Any,
    *,
    email: str,
    phone_number: str,
    full_name: Optional[str] = None,
) -> Dict[str, Any]:
    e = sanitize_email(email)
    if not is_valid_email(e):
        raise ValueError("email_invalid")
    phone = sanitize_text(phone_number)
    if len(phone) < 5:
        raise ValueError("phone_invalid")

    existing = conn.execute(
        "SELECT 1 FROM access_requests WHERE email=? AND status='pending'",
        (e,),
    ).fetchone()
    if existing is not None:
        raise ValueError("request_pending")

    row = conn.execute(
        """
        INSERT INTO access_requests (email, phone_number, full_name, status, requested_at)
        VALUES (?,?,?,'pending',?)
        RETURNING *
        """,
        (e, phone, sanitize_text(full_name or "") or None, utcnow_iso()),
    ).fetchone()
    return dict(row)


def get_access_request(conn: Any, request_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM access_requests WHERE id=?", (int(request_id),)).fetchone()
    return dict(row) if row is not None else None


def list_access_requests(conn: Any, *, status: str = "pending", q: Optional[str] = None) -> List[Dict[str, Any]]:
    """Newest first; status 'all' disables the status filter, q searches email/phone/name."""
    where: List[str] = []
    params: List[Any] = []
    if status != "all":
        if status not in STATUSES:
            raise ValueError("invalid_status")
        where.append("status=?")
        params.append(status)
    if q:
        like = f"%{q.strip().lower()}%"
        where.append("(LOWER(email) LIKE ? OR phone_number LIKE ? OR LOWER(COALESCE(full_name, '')) LIKE ?)")
        params.extend([like, f"%{q.strip()}%", like])

    sql = "SELECT * FROM access_requests"
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY requested_at DESC, id DESC"
    return [dict(r) for r in conn.execute(sql, params).fetchall()]


def _require_pending(conn: Any, request_id: int) -> Dict[str, Any]:
    req = get_access_request(conn, request_id)
    if req is None:
        raise ValueError("request_not_found")
    if req["status"] != "pending":
        raise ValueError("request_not_pending")
    return req


def approve_access_request(
    conn: Any,
    request_id: int,
    *,
    role: str,
    reviewed_by: str,
) -> Tuple[Dict[str, Any], str]:
    """Create the account for a pending request and mark it approved.

    Returns (user, temp_password). The temporary password is only ever
    returned here; the caller must show it once.
    """
    req = _require_pending(conn, request_id)
    full_name = req.get("full_name") or req["email"].split("@")[0]
    user, temp_password = create_user_account(
        conn,
        email=req["email"],
        full_name=full_name,
        role=role,
        created_by=reviewed_by,
    )
    conn.execute(
        "UPDATE access_requests SET status='approved', reviewed_at=?, reviewed_by=? WHERE id=?",
        (utcnow_iso(), reviewed_by, int(request_id)),
    )
    _debug(f"Approved request id={request_id} email={req['email']} role={role}")
    return user, temp_password


def reject_access_request(conn: Any, request_id: int, *, reviewed_by: str, reason: Optional[str] = None) -> None:
    _require_pending(conn, request_id)
    conn.execute(
        """
        UPDATE access_requests
        SET status='rejected', reviewed_at=?, reviewed_by=?, rejection_reason=?
        WHERE id=?
        """,
        (utcnow_iso(), reviewed_by, sanitize_text(reason or "") or None, int(request_id)),
    )


def delete_access_request(conn: Any, request_id: int) -> bool:
    cur = conn.execute("DELETE FROM access_requests WHERE id=?", (int(request_id),))
    return cur.rowcount > 0
