from __future__ import annotations

from datetime import date, timedelta

from conftest import USER_PASSWORD, bearer, make_user, sign_in


def _add(client, token, kind, **values):
    r = client.post(f"/rest/records/{kind}", json=values, headers=bearer(token))
    assert r.status_code == 200, r.text
    return r.json()["record"]


def test_crud_round_trip(client, user_token):
    h = bearer(user_token)
    rec = _add(client, user_token, "expenses", date="2024-03-10", amount=250.5, expense_details="Groceries", payment_mode="Card")
    assert rec["amount"] == 250.5

    r = client.patch(f"/rest/records/expenses/{rec['id']}", json={"amount": 300}, headers=h)
    assert r.status_code == 200
    assert r.json()["record"]["amount"] == 300.0
    assert r.json()["record"]["expense_details"] == "Groceries"

    listed = client.get("/rest/records/expenses", headers=h).json()["records"]
    assert [x["id"] for x in listed] == [rec["id"]]

    assert client.delete(f"/rest/records/expenses/{rec['id']}", headers=h).status_code == 200
    assert client.get("/rest/records/expenses", headers=h).json()["records"] == []
    assert client.delete(f"/rest/records/expenses/{rec['id']}", headers=h).status_code == 404


def test_newest_first_and_date_filters(client, user_token):
    h = bearer(user_token)
    for d in ("2024-01-05", "2024-02-05", "2024-03-05"):
        _add(client, user_token, "income", date=d, amount=100, source="Salary")

    dates = [x["date"] for x in client.get("/rest/records/income", headers=h).json()["records"]]
    assert dates == ["2024-03-05", "2024-02-05", "2024-01-05"]

    r = client.get("/rest/records/income", params={"date_from": "2024-02-01", "date_to": "2024-02-29"}, headers=h)
    assert [x["date"] for x in r.json()["records"]] == ["2024-02-05"]


def test_validation_errors(client, user_token):
    h = bearer(user_token)
    tomorrow = (date.today() + timedelta(days=1)).isoformat()
    cases = [
        ({"date": "2024-01-01", "amount": 0, "source": "x"}, "Amount must be greater than 0"),
        ({"date": "2024-01-01", "amount": 10.123, "source": "x"}, "Amount cannot have more than 2 decimal places"),
        ({"date": "2024-01-01", "amount": 20000000, "source": "x"}, "Amount cannot exceed 1,00,00,000"),
        ({"date": tomorrow, "amount": 5, "source": "x"}, "Date cannot be in the future"),
        ({"amount": 5, "source": "x"}, "Date is required"),
        ({"date": "2024-01-01", "amount": 5, "source": "<script>alert(1)</script>"}, "Source contains invalid characters"),
        ({"date": "2024-01-01", "amount": 5}, "Source must be at least 1 character(s) long"),
    ]
    for payload, message in cases:
        r = client.post("/rest/records/income", json=payload, headers=h)
        assert r.status_code == 400, payload
        assert r.json()["detail"] == message


def test_unknown_kind_is_404(client, user_token):
    assert client.get("/rest/records/trips", headers=bearer(user_token)).status_code == 404


def test_records_are_owner_scoped(client, cfg, user_token):
    rec = _add(client, user_token, "savings", date="2024-01-31", amount=1000, details="Emergency Fund")

    make_user(cfg, "other@example.com")
    other = bearer(sign_in(client, "other@example.com", USER_PASSWORD))
    assert client.get("/rest/records/savings", headers=other).json()["records"] == []
    assert client.patch(f"/rest/records/savings/{rec['id']}", json={"amount": 1}, headers=other).status_code == 404
    assert client.delete(f"/rest/records/savings/{rec['id']}", headers=other).status_code == 404
    assert client.delete("/rest/records/savings", headers=other).json()["deleted"] == 0

    mine = client.get("/rest/records/savings", headers=bearer(user_token)).json()["records"]
    assert [x["amount"] for x in mine] == [1000.0]


def test_delete_all_of_kind(client, user_token):
    h = bearer(user_token)
    _add(client, user_token, "income", date="2024-01-01", amount=1, source="A")
    _add(client, user_token, "income", date="2024-01-02", amount=2, source="B")
    _add(client, user_token, "savings", date="2024-01-02", amount=2)

    assert client.delete("/rest/records/income", headers=h).json() == {"ok": True, "deleted": 2}
    assert len(client.get("/rest/records/savings", headers=h).json()["records"]) == 1


def test_requires_auth(client):
    assert client.get("/rest/records/income").status_code == 401
    assert client.get("/rest/summary").status_code == 401


def test_summary_and_reports(client, user_token):
    h = bearer(user_token)
    _add(client, user_token, "income", date="2024-01-15", amount=50000, source="Salary")
    _add(client, user_token, "income", date="2024-02-15", amount=50000, source="Salary")
    _add(client, user_token, "expenses", date="2024-01-10", amount=2000, expense_details="Petrol", payment_mode="Card")
    _add(client, user_token, "savings", date="2024-01-31", amount=10000, details="Monthly")
    _add(client, user_token, "income", date="2023-06-01", amount=100, source="Gift")

    jan = client.get("/rest/summary", params={"year": 2024, "month": 1}, headers=h).json()
    assert jan["total_income"] == 50000
    assert jan["total_expenses"] == 2000
    assert jan["total_savings"] == 10000
    assert jan["net"] == 38000
    assert jan["period"] == "January 2024"

    year = client.get("/rest/summary", params={"year": 2024}, headers=h).json()
    assert year["total_income"] == 100000

    all_time = client.get("/rest/summary", headers=h).json()
    assert all_time["total_income"] == 100100
    assert all_time["period"] == "All time"

    assert client.get("/rest/summary", params={"month": 1}, headers=h).status_code == 400
    assert client.get("/rest/summary", params={"year": 2024, "month": 13}, headers=h).status_code == 400

    monthly = client.get("/rest/reports", params={"year": 2024}, headers=h).json()["series"]
    assert len(monthly) == 12
    assert monthly[0] == {"period": "Jan", "income": 50000, "expenses": 2000, "savings": 10000, "net": 38000}
    assert monthly[1]["income"] == 50000

    yearly = client.get("/rest/reports", headers=h).json()["series"]
    assert yearly[0]["period"] == "2020"
    by_year = {x["period"]: x for x in yearly}
    assert by_year["2023"]["income"] == 100
    assert by_year["2024"]["income"] == 100000


def test_own_profile_updates_are_restricted(client, user_token):
    h = bearer(user_token)
    r = client.patch("/rest/profile", json={"full_name": "New Name"}, headers=h)
    assert r.status_code == 200
    assert r.json()["profile"]["full_name"] == "New Name"

    assert client.patch("/rest/profile", json={"must_change_password": True}, headers=h).status_code == 403
    assert client.patch("/rest/profile", json={"temp_password": "abc"}, headers=h).status_code == 403
    # Unknown fields such as is_active are ignored.
    r = client.patch("/rest/profile", json={"is_active": False}, headers=h)
    assert r.json()["profile"]["is_active"] is True

    assert client.get("/rest/role", headers=h).json() == {"role": "user"}
