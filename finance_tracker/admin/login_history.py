from __future__ import annotations

from typing import Any, Dict, List, Optional

from finance_tracker.util.time import iso_hours_ago, utcnow_iso


def _debug(msg: str) -> None:
    print(f"[login_history] {msg}")


def record_login(
    conn: Any,
    *,
    user_id: str,
    user_agent: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> Dict[str, Any]:
    row = conn.execute(
        """
        INSERT INTO login_history (user_id, login_at, user_agent, ip_address)
        VALUES (?,?,?,?)
        RETURNING *
        """,
        (str(user_id), utcnow_iso(), (user_agent or "")[:512] or None, ip_address),
    ).fetchone()
    return dict(row)


def list_login_history(conn: Any, *, user_id: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
    """Newest first, each row carrying the owner's profile (email, full_name)."""
    where = ""
    params: List[Any] = []
    if user_id:
        where = "WHERE h.user_id=?"
        params.append(str(user_id))
    params.append(int(limit))

    rows = conn.execute(
        f"""
        SELECT h.id, h.user_id, h.login_at, h.user_agent, h.ip_address,
               p.email AS profile_email, p.full_name AS profile_full_name
        FROM login_history h
        LEFT JOIN profiles p ON p.user_id = h.user_id
        {where}
        ORDER BY h.login_at DESC, h.id DESC
        LIMIT ?
        """,
        params,
    ).fetchall()

    out: List[Dict[str, Any]] = []
    for r in rows:
        d = dict(r)
        d["profiles"] = {"email": d.pop("profile_email"), "full_name": d.pop("profile_full_name")}
        out.append(d)
    return out


def count_logins_since(conn: Any, since_iso: str) -> int:
    row = conn.execute("SELECT COUNT(*) AS n FROM login_history WHERE login_at >= ?", (since_iso,)).fetchone()
    return int(row["n"])


def last_login_at(conn: Any, user_id: str) -> Optional[str]:
    row = conn.execute(
        "SELECT login_at FROM login_history WHERE user_id=? ORDER BY login_at DESC LIMIT 1",
        (str(user_id),),
    ).fetchone()
    return str(row["login_at"]) if row is not None else None


def login_count(conn: Any, user_id: str) -> int:
    row = conn.execute("SELECT COUNT(*) AS n FROM login_history WHERE user_id=?", (str(user_id),)).fetchone()
    return int(row["n"])


def delete_login_record(conn: Any, record_id: int) -> bool:
    cur = conn.execute("DELETE FROM login_history WHERE id=?", (int(record_id),))
    return cur.rowcount > 0


def delete_all_login_history(conn: Any) -> int:
    cur = conn.execute("DELETE FROM login_history")
    return cur.rowcount


def prune_login_history(conn: Any, *, retention_hours: int) -> int:
    """Delete records older than the retention window. Returns rows deleted."""
    cutoff = iso_hours_ago(retention_hours)
    cur = conn.execute("DELETE FROM login_history WHERE login_at < ?", (cutoff,))
    n = cur.rowcount
    if n:
        _debug(f"Pruned {n} login records older than {cutoff}")
    return n
