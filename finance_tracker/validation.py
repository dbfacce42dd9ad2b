"""Input validation shared by the API routes and the client-side controller.

Validators return an error message string (or None when the input is fine),
so both the HTTP layer and the session controller can surface the same copy.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional


EMAIL_MAX_LENGTH = 254
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128
AMOUNT_MAX = Decimal("10000000")

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_SUSPICIOUS_PATTERNS = [
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"data:text/html", re.IGNORECASE),
]


def sanitize_email(email: str) -> str:
    return (email or "").strip().lower()


def sanitize_text(value: str) -> str:
    """Trim and drop angle brackets."""
    return re.sub(r"[<>]", "", (value or "").strip())


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or "")) and len(email) <= EMAIL_MAX_LENGTH


def is_valid_password(password: str) -> bool:
    return PASSWORD_MIN_LENGTH <= len(password or "") <= PASSWORD_MAX_LENGTH


def validate_amount(amount: Any) -> Optional[str]:
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        return "Please enter a valid number"
    if not value.is_finite():
        return "Please enter a valid number"
    if value <= 0:
        return "Amount must be greater than 0"
    if value > AMOUNT_MAX:
        return "Amount cannot exceed 1,00,00,000"
    # Decimal exponent is the negative count of fractional digits.
    if value.as_tuple().exponent < -2:  # type: ignore[operator]
        return "Amount cannot have more than 2 decimal places"
    return None


def validate_date(value: Any, *, today: Optional[date] = None) -> Optional[str]:
    if value is None or value == "":
        return "Date is required"
    if isinstance(value, datetime):
        d = value.date()
    elif isinstance(value, date):
        d = value
    else:
        try:
            d = date.fromisoformat(str(value).strip()[:10])
        except ValueError:
            return "Please enter a valid date"

    today = today or date.today()
    if d > today:
        return "Date cannot be in the future"
    try:
        hundred_years_ago = today.replace(year=today.year - 100)
    except ValueError:
        # Feb 29 -> Feb 28
        hundred_years_ago = today.replace(year=today.year - 100, day=28)
    if d < hundred_years_ago:
        return "Date cannot be more than 100 years ago"
    return None


def validate_text(
    value: Optional[str],
    field_name: str,
    min_length: int = 1,
    max_length: int = 255,
) -> Optional[str]:
    if not value or len(value.strip()) < min_length:
        return f"{field_name} must be at least {min_length} character(s) long"
    if len(value) > max_length:
        return f"{field_name} cannot exceed {max_length} characters"
    for pattern in _SUSPICIOUS_PATTERNS:
        if pattern.search(value):
            return f"{field_name} contains invalid characters"
    return None
