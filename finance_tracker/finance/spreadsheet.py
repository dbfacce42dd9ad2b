"""Excel import/export for financial records.

Workbooks have one sheet per record kind (`Income`, `Expenses`, `Savings`).
Headers are matched case-insensitively with spaces treated as underscores, so
both the upload template (`expense_details`) and our own exports
(`Expense Details`) import cleanly.
"""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

import pandas as pd

from .records import EXPENSES, INCOME, RECORD_KINDS, SAVINGS, RecordKind, clean_record, insert_record, totals

_ENGINE = "openpyxl"

# Excel's day zero for serial dates (accounts for the 1900 leap-year bug).
_EXCEL_EPOCH = date(1899, 12, 30)

_EXPORT_COLUMNS: Dict[str, List[tuple[str, str]]] = {
    "income": [("Source", "source")],
    "expenses": [("Expense Details", "expense_details"), ("Payment Mode", "payment_mode")],
    "savings": [("Details", "details")],
}

TEMPLATE_INSTRUCTIONS = [
    "INSTRUCTIONS FOR DATA UPLOAD",
    "",
    "1. Fill in your data in the respective sheets (Income, Expenses, Savings)",
    "2. Date format: YYYY-MM-DD (e.g., 2024-01-15)",
    "3. Amount: Numbers only (e.g., 1500, 50000)",
    "4. Do NOT change column headers",
    "5. Delete the sample rows and add your actual data",
    "6. Save as Excel file (.xlsx) and upload",
    "",
    "COLUMN REQUIREMENTS:",
    "",
    "Income Sheet:",
    "- date: Date of income (YYYY-MM-DD)",
    "- amount: Income amount (number)",
    "- source: Source of income (text)",
    "",
    "Expenses Sheet:",
    "- date: Date of expense (YYYY-MM-DD)",
    "- amount: Expense amount (number)",
    "- expense_details: Description of expense (text)",
    "- payment_mode: How you paid (Cash/Card/UPI/etc.)",
    "",
    "Savings Sheet:",
    "- date: Date of saving (YYYY-MM-DD)",
    "- amount: Savings amount (number)",
    "- details: Description of savings (text)",
]

_TEMPLATE_ROWS: Dict[str, List[Dict[str, Any]]] = {
    "income": [
        {"date": "2024-01-15", "amount": 50000, "source": "Salary"},
        {"date": "2024-01-20", "amount": 5000, "source": "Freelance Work"},
    ],
    "expenses": [
        {"date": "2024-01-10", "amount": 2000, "expense_details": "Bike Petrol", "payment_mode": "Card"},
        {"date": "2024-01-12", "amount": 1500, "expense_details": "Groceries", "payment_mode": "Cash"},
    ],
    "savings": [
        {"date": "2024-01-31", "amount": 10000, "details": "Monthly Savings"},
        {"date": "2024-01-15", "amount": 5000, "details": "Emergency Fund"},
    ],
}


@dataclass
class ParsedWorkbook:
    rows: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    skipped_rows: List[str] = field(default_factory=list)


@dataclass
class ImportResult:
    inserted: int = 0
    skipped: int = 0
    errors: int = 0
    skipped_rows: List[str] = field(default_factory=list)
    error_rows: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "inserted": self.inserted,
            "skipped": self.skipped,
            "errors": self.errors,
            "skipped_rows": list(self.skipped_rows),
            "error_rows": list(self.error_rows),
        }


def _normalize_header(h: Any) -> str:
    return "_".join(str(h).strip().lower().split())


def _blank(v: Any) -> bool:
    if v is None:
        return True
    if isinstance(v, str):
        return v.strip() == ""
    try:
        return bool(pd.isna(v))
    except (TypeError, ValueError):
        return False


def parse_date_cell(v: Any) -> Optional[str]:
    """Best-effort conversion of a cell to YYYY-MM-DD, or None."""
    if _blank(v):
        return None
    if isinstance(v, (pd.Timestamp, datetime)):
        return v.date().isoformat()
    if isinstance(v, date):
        return v.isoformat()
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        try:
            return (_EXCEL_EPOCH + timedelta(days=int(v))).isoformat()
        except OverflowError:
            return None

    s = str(v).strip()
    try:
        return date.fromisoformat(s[:10]).isoformat()
    except ValueError:
        pass
    for fmt in ("%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y"):
        try:
            return datetime.strptime(s, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def parse_amount_cell(v: Any) -> Optional[float]:
    if _blank(v) or isinstance(v, bool):
        return None
    try:
        return float(str(v).replace(",", "").strip())
    except ValueError:
        return None


def _parse_sheet(df: pd.DataFrame, kind: RecordKind, parsed: ParsedWorkbook) -> None:
    df = df.rename(columns=_normalize_header)
    out: List[Dict[str, Any]] = []
    for i, raw in enumerate(df.to_dict(orient="records")):
        # Spreadsheet row number: header is row 1.
        row_no = i + 2
        if all(_blank(v) for v in raw.values()):
            continue

        values: Dict[str, Any] = {"date": parse_date_cell(raw.get("date")), "amount": parse_amount_cell(raw.get("amount"))}
        missing = [k for k in ("date", "amount") if values[k] is None]
        for f in kind.required_text:
            if _blank(raw.get(f)):
                missing.append(f)
            else:
                values[f] = str(raw.get(f)).strip()
        for f in kind.optional_text:
            if not _blank(raw.get(f)):
                values[f] = str(raw.get(f)).strip()

        if missing:
            parsed.skipped_rows.append(f"{kind.label} row {row_no}: Missing {', '.join(missing)}")
            continue

        try:
            cleaned = clean_record(kind, values)
        except ValueError as e:
            parsed.skipped_rows.append(f"{kind.label} row {row_no}: {e}")
            continue
        cleaned["_row"] = row_no
        out.append(cleaned)
    parsed.rows[kind.table] = out


def parse_workbook(data: bytes) -> ParsedWorkbook:
    """Read the Income/Expenses/Savings sheets; absent sheets are ignored."""
    sheets = pd.read_excel(io.BytesIO(data), sheet_name=None, engine=_ENGINE, dtype=object)
    parsed = ParsedWorkbook()
    for kind in (INCOME, EXPENSES, SAVINGS):
        df = sheets.get(kind.label)
        if df is None:
            parsed.rows[kind.table] = []
            continue
        _parse_sheet(df, kind, parsed)
    return parsed


def import_workbook(conn: Any, *, user_id: str, data: bytes) -> ImportResult:
    parsed = parse_workbook(data)
    result = ImportResult(skipped=len(parsed.skipped_rows), skipped_rows=list(parsed.skipped_rows))
    for name, rows in parsed.rows.items():
        kind = RECORD_KINDS[name]
        for values in rows:
            row_no = values.pop("_row")
            try:
                insert_record(conn, kind, user_id=user_id, values=values)
            except Exception as e:
                result.errors += 1
                result.error_rows.append(f"{kind.label} row {row_no}: {e}")
                continue
            result.inserted += 1
    return result


def _to_xlsx(frames: List[tuple[str, pd.DataFrame, bool]]) -> bytes:
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine=_ENGINE) as writer:
        for sheet_name, df, header in frames:
            df.to_excel(writer, sheet_name=sheet_name, index=False, header=header)
    return buf.getvalue()


def _display_date(iso: str) -> str:
    return date.fromisoformat(str(iso)[:10]).strftime("%d/%m/%Y")


def export_workbook(records: Dict[str, List[Dict[str, Any]]], *, period_label: str) -> bytes:
    """Summary sheet plus one sheet per non-empty record kind."""
    t = totals(records)
    summary = pd.DataFrame(
        [
            {
                "Total Income": t["total_income"],
                "Total Expenses": t["total_expenses"],
                "Total Savings": t["total_savings"],
                "Net Amount": t["net"],
                "Period": period_label,
            }
        ]
    )
    frames: List[tuple[str, pd.DataFrame, bool]] = [("Summary", summary, True)]

    for name, kind in RECORD_KINDS.items():
        rows = records.get(name) or []
        if not rows:
            continue
        data = []
        for r in rows:
            item: Dict[str, Any] = {"Date": _display_date(r["date"])}
            for header, key in _EXPORT_COLUMNS[name]:
                item[header] = r.get(key)
            item["Amount"] = r["amount"]
            data.append(item)
        frames.append((kind.label, pd.DataFrame(data), True))

    return _to_xlsx(frames)


def build_template() -> bytes:
    frames: List[tuple[str, pd.DataFrame, bool]] = [
        ("Instructions", pd.DataFrame({"text": TEMPLATE_INSTRUCTIONS}), False),
    ]
    for name, kind in RECORD_KINDS.items():
        frames.append((kind.label, pd.DataFrame(_TEMPLATE_ROWS[name]), True))
    return _to_xlsx(frames)


def export_filename(year: Optional[int], month: Optional[int], *, today: Optional[date] = None) -> str:
    today = today or date.today()
    if year is None:
        period = "All_Time"
    elif month is None:
        period = f"Year_{year}"
    else:
        period = date(int(year), int(month), 1).strftime("%b_%Y")
    return f"Financial_Data_{period}_{today.isoformat()}.xlsx"
