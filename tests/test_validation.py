from __future__ import annotations

from datetime import date

import pytest

from finance_tracker.validation import (
    is_valid_email,
    is_valid_password,
    sanitize_email,
    sanitize_text,
    validate_amount,
    validate_date,
    validate_text,
)


@pytest.mark.parametrize(
    "email,ok",
    [
        ("alice@example.com", True),
        ("a.b+c@sub.example.org", True),
        ("no-at-sign.example.com", False),
        ("two@@example.com", False),
        ("space in@example.com", False),
        ("missing@tld", False),
        ("x@" + "a" * 250 + ".com", False),
    ],
)
def test_email_shape(email, ok):
    assert is_valid_email(email) is ok


def test_sanitizers():
    assert sanitize_email("  Alice@Example.COM ") == "alice@example.com"
    assert sanitize_text("  <b>bold</b> ") == "bbold/b"


def test_password_length():
    assert not is_valid_password("a" * 7)
    assert is_valid_password("a" * 8)
    assert is_valid_password("a" * 128)
    assert not is_valid_password("a" * 129)


def test_amounts():
    assert validate_amount("12.34") is None
    assert validate_amount(10_000_000) is None
    assert validate_amount("abc") == "Please enter a valid number"
    assert validate_amount("NaN") == "Please enter a valid number"
    assert validate_amount(-1) == "Amount must be greater than 0"
    assert validate_amount("10000000.01") == "Amount cannot exceed 1,00,00,000"
    assert validate_amount("1.001") == "Amount cannot have more than 2 decimal places"


def test_dates():
    today = date(2024, 3, 15)
    assert validate_date("2024-03-15", today=today) is None
    assert validate_date("2024-03-16", today=today) == "Date cannot be in the future"
    assert validate_date("1924-03-15", today=today) is None
    assert validate_date("1924-03-14", today=today) == "Date cannot be more than 100 years ago"
    assert validate_date("", today=today) == "Date is required"
    assert validate_date("31/02/2024", today=today) == "Please enter a valid date"


@pytest.mark.parametrize(
    "value",
    ["<script>x</script>", "javascript:alert(1)", "img onerror=boom", "data:text/html,hi"],
)
def test_text_rejects_suspicious_patterns(value):
    assert validate_text(value, "Details") == "Details contains invalid characters"


def test_text_length():
    assert validate_text("   ", "Source") == "Source must be at least 1 character(s) long"
    assert validate_text("x" * 256, "Source") == "Source cannot exceed 255 characters"
    assert validate_text("Salary", "Source") is None

