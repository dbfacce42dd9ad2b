"""Income / expense / savings records.

Every function takes the owning `user_id` explicitly and filters on it, which
is how per-row ownership is enforced for ordinary users. The admin gateway
calls the read helpers with another user's id after verifying the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from finance_tracker.util.time import month_bounds, utcnow_iso, year_bounds
from finance_tracker.validation import sanitize_text, validate_amount, validate_date, validate_text


@dataclass(frozen=True)
class RecordKind:
    table: str
    label: str
    required_text: Tuple[str, ...]
    optional_text: Tuple[str, ...] = ()

    @property
    def text_fields(self) -> Tuple[str, ...]:
        return self.required_text + self.optional_text


INCOME = RecordKind(table="income", label="Income", required_text=("source",))
EXPENSES = RecordKind(table="expenses", label="Expenses", required_text=("expense_details", "payment_mode"))
SAVINGS = RecordKind(table="savings", label="Savings", required_text=(), optional_text=("details",))

RECORD_KINDS: Dict[str, RecordKind] = {k.table: k for k in (INCOME, EXPENSES, SAVINGS)}

# Earliest year shown in the all-time yearly report.
REPORT_FIRST_YEAR = 2020


def get_kind(name: str) -> RecordKind:
    kind = RECORD_KINDS.get((name or "").strip().lower())
    if kind is None:
        raise ValueError("unknown_record_kind")
    return kind


def _row_out(row: Any) -> Dict[str, Any]:
    d = dict(row)
    d["amount"] = float(d["amount"])
    return d


def clean_record(kind: RecordKind, data: Dict[str, Any], *, partial: bool = False) -> Dict[str, Any]:
    """Validate and normalise user input for a record.

    Raises ValueError with a user-facing message on the first problem found.
    With partial=True only the provided fields are checked (PATCH semantics).
    """
    out: Dict[str, Any] = {}

    if not partial or "date" in data:
        err = validate_date(data.get("date"))
        if err:
            raise ValueError(err)
        out["date"] = str(data["date"])[:10]

    if not partial or "amount" in data:
        err = validate_amount(data.get("amount"))
        if err:
            raise ValueError(err)
        out["amount"] = round(float(data["amount"]), 2)

    for field in kind.required_text:
        if partial and field not in data:
            continue
        value = data.get(field)
        err = validate_text(None if value is None else str(value), field.replace("_", " ").capitalize())
        if err:
            raise ValueError(err)
        out[field] = sanitize_text(str(value))

    for field in kind.optional_text:
        if field not in data:
            continue
        value = data.get(field)
        if value is None or str(value).strip() == "":
            out[field] = None
            continue
        err = validate_text(str(value), field.replace("_", " ").capitalize())
        if err:
            raise ValueError(err)
        out[field] = sanitize_text(str(value))

    return out


def list_records(
    conn: Any,
    kind: RecordKind,
    *,
    user_id: str,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Records for one user, newest first."""
    where = ["user_id=?"]
    params: List[Any] = [str(user_id)]
    if date_from:
        where.append("date >= ?")
        params.append(date_from)
    if date_to:
        where.append("date <= ?")
        params.append(date_to)

    rows = conn.execute(
        f"SELECT * FROM {kind.table} WHERE {' AND '.join(where)} ORDER BY date DESC, id DESC",
        params,
    ).fetchall()
    return [_row_out(r) for r in rows]


def insert_record(conn: Any, kind: RecordKind, *, user_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
    """Insert an already-cleaned record (see `clean_record`)."""
    cols = ["user_id", "date", "amount"] + [f for f in kind.text_fields if f in values] + ["created_at"]
    params = [str(user_id), values["date"], values["amount"]]
    params += [values[f] for f in kind.text_fields if f in values]
    params.append(utcnow_iso())

    placeholders = ",".join(["?"] * len(cols))
    row = conn.execute(
        f"INSERT INTO {kind.table} ({', '.join(cols)}) VALUES ({placeholders}) RETURNING *",
        params,
    ).fetchone()
    return _row_out(row)


def update_record(
    conn: Any,
    kind: RecordKind,
    record_id: int,
    *,
    user_id: str,
    values: Dict[str, Any],
) -> Optional[Dict[str, Any]]:
    if not values:
        row = conn.execute(
            f"SELECT * FROM {kind.table} WHERE id=? AND user_id=?",
            (int(record_id), str(user_id)),
        ).fetchone()
        return _row_out(row) if row is not None else None

    sets = ", ".join([f"{k}=?" for k in values])
    params = list(values.values()) + [int(record_id), str(user_id)]
    row = conn.execute(
        f"UPDATE {kind.table} SET {sets} WHERE id=? AND user_id=? RETURNING *",
        params,
    ).fetchone()
    return _row_out(row) if row is not None else None


def delete_record(conn: Any, kind: RecordKind, record_id: int, *, user_id: str) -> bool:
    cur = conn.execute(
        f"DELETE FROM {kind.table} WHERE id=? AND user_id=?",
        (int(record_id), str(user_id)),
    )
    return cur.rowcount > 0


def delete_all_records(conn: Any, kind: RecordKind, *, user_id: str) -> int:
    cur = conn.execute(f"DELETE FROM {kind.table} WHERE user_id=?", (str(user_id),))
    return cur.rowcount


def fetch_all_kinds(
    conn: Any,
    *,
    user_id: str,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
) -> Dict[str, List[Dict[str, Any]]]:
    return {
        name: list_records(conn, kind, user_id=user_id, date_from=date_from, date_to=date_to)
        for name, kind in RECORD_KINDS.items()
    }


# -----------------------------
# Summaries / reports
# -----------------------------


def period_bounds(year: Optional[int], month: Optional[int]) -> Tuple[Optional[str], Optional[str]]:
    """Inclusive date range for a month, a year, or all time (None, None)."""
    if year is None:
        return None, None
    if month is None:
        return year_bounds(year)
    if not 1 <= int(month) <= 12:
        raise ValueError("invalid_month")
    return month_bounds(year, month)


def period_label(year: Optional[int], month: Optional[int]) -> str:
    if year is None:
        return "All time"
    if month is None:
        return f"Year {year}"
    return date(int(year), int(month), 1).strftime("%B %Y")


def totals(records: Dict[str, List[Dict[str, Any]]]) -> Dict[str, float]:
    income = round(sum(r["amount"] for r in records.get("income", [])), 2)
    expenses = round(sum(r["amount"] for r in records.get("expenses", [])), 2)
    savings = round(sum(r["amount"] for r in records.get("savings", [])), 2)
    return {
        "total_income": income,
        "total_expenses": expenses,
        "total_savings": savings,
        "net": round(income - expenses - savings, 2),
    }


def summarize(conn: Any, *, user_id: str, year: Optional[int] = None, month: Optional[int] = None) -> Dict[str, Any]:
    date_from, date_to = period_bounds(year, month)
    records = fetch_all_kinds(conn, user_id=user_id, date_from=date_from, date_to=date_to)
    out: Dict[str, Any] = totals(records)
    out["period"] = period_label(year, month)
    return out


def report_series(conn: Any, *, user_id: str, year: Optional[int] = None) -> List[Dict[str, Any]]:
    """Per-month series for one year, or per-year series from 2020 for year=None."""
    if year is None:
        current = date.today().year
        keys = [str(y) for y in range(REPORT_FIRST_YEAR, current + 1)]
        date_from, date_to = f"{REPORT_FIRST_YEAR}-01-01", date.today().isoformat()

        def key_of(d: str) -> str:
            return d[:4]

        def label_of(k: str) -> str:
            return k

    else:
        keys = [f"{m:02d}" for m in range(1, 13)]
        date_from, date_to = year_bounds(year)

        def key_of(d: str) -> str:
            return d[5:7]

        def label_of(k: str) -> str:
            return date(int(year), int(k), 1).strftime("%b")

    buckets: Dict[str, Dict[str, float]] = {k: {"income": 0.0, "expenses": 0.0, "savings": 0.0} for k in keys}
    records = fetch_all_kinds(conn, user_id=user_id, date_from=date_from, date_to=date_to)
    for name, rows in records.items():
        for r in rows:
            bucket = buckets.get(key_of(str(r["date"])))
            if bucket is not None:
                bucket[name] += r["amount"]

    series: List[Dict[str, Any]] = []
    for k in keys:
        b = buckets[k]
        series.append(
            {
                "period": label_of(k),
                "income": round(b["income"], 2),
                "expenses": round(b["expenses"], 2),
                "savings": round(b["savings"], 2),
                "net": round(b["income"] - b["expenses"] - b["savings"], 2),
            }
        )
    return series
