from datetime import date
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from envelope_budget.main import app


TODAY = date(2025, 3, 1).isoformat()


def _amounts(rows):
    return {r["envelope_id"]: Decimal(r["amount"]) for r in rows if r["envelope_id"]}


def _two_envelope_state(client, **rules):
    state = {
        "accounts": [{"id": "chk", "name": "Checking"}],
        "envelopes": [
            {"id": "rent", "name": "Rent", "allocated": "1000", "account_id": "chk", "allocation_rule": rules.get("rent")},
            {"id": "food", "name": "Food", "allocated": "600", "account_id": "chk", "allocation_rule": rules.get("food")},
        ],
        "transactions": [],
        "setup_completed": True,
    }
    r = client.put("/api/state", json=state)
    assert r.status_code == 200, r.text


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_requires_user_header(db_session):
    with TestClient(app) as anon:
        assert anon.get("/api/state").status_code == 401
        assert anon.get("/api/state", headers={"X-User-Id": "  "}).status_code == 401


def test_fresh_user_gets_starter_state(client):
    r = client.get("/api/state")
    assert r.status_code == 200
    body = r.json()
    assert body["setup_completed"] is False
    assert [a["id"] for a in body["accounts"]] == ["checking-1", "savings-1"]
    assert [e["name"] for e in body["envelopes"]] == ["Groceries", "Transportation", "Entertainment", "Utilities"]


def test_state_is_per_user(client):
    client.post("/api/setup/complete", json={"accounts": [], "envelopes": [], "transactions": []})
    other = client.get("/api/state", headers={"X-User-Id": "someone-else"}).json()
    assert len(other["accounts"]) == 2
    mine = client.get("/api/state").json()
    assert mine == {"accounts": [], "envelopes": [], "transactions": [], "setup_completed": True}


def test_reset_state(client):
    client.post("/api/setup/complete", json={})
    assert client.delete("/api/state").status_code == 204
    assert client.get("/api/state").json()["setup_completed"] is False


def test_patch_state_keeps_omitted_fields(client):
    r = client.patch("/api/state", json={"setup_completed": True, "accounts": None})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["setup_completed"] is True
    assert len(body["accounts"]) == 2
    assert len(body["envelopes"]) == 4
    assert client.get("/api/state").json() == body

    r = client.patch("/api/state", json={"envelopes": []})
    assert r.json()["envelopes"] == []
    assert r.json()["setup_completed"] is True


def _failing_commit(*args, **kwargs):
    raise OperationalError("UPDATE", {}, Exception("disk I/O error"))


def test_failed_save_is_503_and_stores_nothing(client, db_session, monkeypatch):
    _two_envelope_state(client)
    monkeypatch.setattr(db_session, "commit", _failing_commit)
    r = client.post("/api/transactions", json={"transactions": [
        {"account_id": "chk", "amount": "1600", "description": "Salary", "date": TODAY},
    ]})
    assert r.status_code == 503
    assert client.patch("/api/state", json={"setup_completed": False}).status_code == 503
    assert client.delete("/api/state").status_code == 503
    monkeypatch.undo()

    stored = client.get("/api/state").json()
    # neither the income nor its allocations landed
    assert stored["transactions"] == []
    assert stored["setup_completed"] is True
    assert [e["id"] for e in stored["envelopes"]] == ["rent", "food"]


def test_income_split_proportionally(client):
    r = client.post("/api/transactions", json={"transactions": [
        {"account_id": "checking-1", "amount": "1250", "description": "Salary", "date": TODAY},
    ]})
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["warnings"] == []
    created = body["created"]
    assert created[0]["description"] == "Salary"
    assert _amounts(created[1:]) == {
        "1": Decimal("500"),
        "2": Decimal("300"),
        "3": Decimal("200"),
        "4": Decimal("250"),
    }
    assert created[1]["description"] == "Income allocation - Groceries"
    assert all(t["date"] == TODAY for t in created)
    assert len(client.get("/api/transactions").json()) == 5


def test_income_split_by_rules(client):
    _two_envelope_state(
        client,
        rent={"value": "62.5", "kind": "percentage"},
        food={"value": "37.5", "kind": "percentage"},
    )
    r = client.post("/api/transactions", json={"transactions": [
        {"account_id": "chk", "amount": "1500", "description": "Salary", "date": TODAY},
    ]})
    assert r.status_code == 201, r.text
    assert _amounts(r.json()["created"]) == {"rent": Decimal("937.50"), "food": Decimal("562.50")}


def test_invalid_rules_fall_back_with_warning(client):
    _two_envelope_state(
        client,
        rent={"value": "700", "kind": "fixed"},
        food={"value": "50", "kind": "percentage"},
    )
    r = client.post("/api/transactions", json={"transactions": [
        {"id": "pay-1", "account_id": "chk", "amount": "1600", "description": "Salary", "date": TODAY},
    ]})
    assert r.status_code == 201, r.text
    body = r.json()
    assert len(body["warnings"]) == 1
    assert "pay-1" in body["warnings"][0]
    assert "conflicting allocation types" in body["warnings"][0]
    assert _amounts(body["created"]) == {"rent": Decimal("1000"), "food": Decimal("600")}


def test_expense_and_assigned_income_not_allocated(client):
    r = client.post("/api/transactions", json={"transactions": [
        {"account_id": "checking-1", "envelope_id": "1", "amount": "-40", "description": "Groceries", "date": TODAY},
        {"account_id": "checking-1", "envelope_id": "2", "amount": "20", "description": "Refund", "date": TODAY},
    ]})
    assert r.status_code == 201
    assert len(r.json()["created"]) == 2


def test_add_transactions_rejects_unknown_references(client):
    r = client.post("/api/transactions", json={"transactions": [
        {"account_id": "nope", "amount": "10", "description": "x", "date": TODAY},
    ]})
    assert r.status_code == 422
    r = client.post("/api/transactions", json={"transactions": [
        {"account_id": "checking-1", "envelope_id": "nope", "amount": "10", "description": "x", "date": TODAY},
    ]})
    assert r.status_code == 422


def test_duplicate_transaction_id_conflicts(client):
    txn = {"id": "t-1", "account_id": "checking-1", "envelope_id": "1", "amount": "-5", "description": "Coffee", "date": TODAY}
    assert client.post("/api/transactions", json={"transactions": [txn]}).status_code == 201
    r = client.post("/api/transactions", json={"transactions": [txn]})
    assert r.status_code == 409
    assert len(client.get("/api/transactions").json()) == 1


def test_import_rows(client):
    r = client.post("/api/transactions/import", json={
        "account_id": "checking-1",
        "rows": [
            {"date": TODAY, "amount": "-12.5", "description": "Bus"},
            {"date": TODAY, "amount": "125", "description": "Refund"},
        ],
    })
    assert r.status_code == 201, r.text
    created = r.json()["created"]
    # two imported rows, then four allocations of the positive one
    assert len(created) == 6
    assert all(t["id"].startswith("import-") for t in created[:2])
    assert sum(_amounts(created[2:]).values()) == Decimal("125")

    r = client.post("/api/transactions/import", json={"account_id": "missing", "rows": []})
    assert r.status_code == 422


def test_list_transactions_filters(client):
    client.post("/api/transactions", json={"transactions": [
        {"id": "a", "account_id": "checking-1", "envelope_id": "1", "amount": "-1", "description": "first", "date": TODAY},
        {"id": "b", "account_id": "checking-1", "envelope_id": "2", "amount": "-2", "description": "second", "date": TODAY},
        {"id": "c", "account_id": "savings-1", "amount": "-3", "description": "third", "date": TODAY},
    ]})
    ids = lambda r: [t["id"] for t in r.json()]  # noqa: E731
    assert ids(client.get("/api/transactions")) == ["a", "b", "c"]
    assert ids(client.get("/api/transactions", params={"recent": True, "limit": 2})) == ["c", "b"]
    assert ids(client.get("/api/transactions", params={"account_id": "checking-1"})) == ["a", "b"]
    assert ids(client.get("/api/transactions", params={"envelope_id": "2"})) == ["b"]


def test_edit_and_delete_transaction(client):
    client.post("/api/transactions", json={"transactions": [
        {"id": "t-1", "account_id": "checking-1", "envelope_id": "1", "amount": "-5", "description": "Coffee", "date": TODAY},
    ]})
    r = client.put("/api/transactions/t-1", json={
        "account_id": "checking-1", "envelope_id": "3", "amount": "-7.25", "description": "Movie", "date": TODAY,
    })
    assert r.status_code == 200, r.text
    assert r.json()["envelope_id"] == "3"
    assert client.get("/api/transactions").json()[0]["description"] == "Movie"

    r = client.put("/api/transactions/missing", json={
        "account_id": "checking-1", "amount": "-1", "description": "x", "date": TODAY,
    })
    assert r.status_code == 404

    assert client.delete("/api/transactions/t-1").status_code == 204
    assert client.delete("/api/transactions/t-1").status_code == 404
    assert client.get("/api/transactions").json() == []


def test_accounts_crud(client):
    r = client.post("/api/accounts", json={"name": "Visa", "kind": "credit_card", "account_number": "4111111111111111"})
    assert r.status_code == 201, r.text
    acc = r.json()
    assert acc["id"].startswith("credit_card-")
    assert acc["account_number"] == "************1111"

    assert client.post("/api/accounts", json={"id": acc["id"], "name": "Dup"}).status_code == 409

    r = client.patch(f"/api/accounts/{acc['id']}", json={"is_active": False})
    assert r.status_code == 200
    assert r.json()["name"] == "Visa"
    active = client.get("/api/accounts", params={"is_active": True}).json()
    assert acc["id"] not in [a["id"] for a in active]

    assert client.patch("/api/accounts/missing", json={"name": "x"}).status_code == 404
    assert client.delete(f"/api/accounts/{acc['id']}").status_code == 204
    assert client.delete(f"/api/accounts/{acc['id']}").status_code == 404


def test_delete_account_in_use_conflicts(client):
    r = client.delete("/api/accounts/checking-1")
    assert r.status_code == 409
    assert len(client.get("/api/accounts").json()) == 2


def test_default_paycheck_amount(client):
    r = client.put("/api/accounts/checking-1/default-paycheck", json={"amount": "2000"})
    assert r.status_code == 200
    assert Decimal(r.json()["default_paycheck_amount"]) == Decimal("2000")
    assert client.put("/api/accounts/checking-1/default-paycheck", json={"amount": "0"}).status_code == 422
    assert client.put("/api/accounts/nope/default-paycheck", json={"amount": "1"}).status_code == 404


def test_envelopes_crud(client):
    r = client.post("/api/envelopes", json={
        "name": "Travel",
        "account_id": "savings-1",
        "income_allocation": 10,
        "income_allocation_type": "percentage",
    })
    assert r.status_code == 201, r.text
    env = r.json()
    assert env["allocation_rule"]["kind"] == "percentage"
    assert [e["id"] for e in client.get("/api/envelopes", params={"account_id": "savings-1"}).json()] == [env["id"]]

    assert client.post("/api/envelopes", json={"name": "X", "account_id": "nope"}).status_code == 422
    over = {"name": "X", "account_id": "savings-1", "allocation_rule": {"value": "150", "kind": "percentage"}}
    assert client.post("/api/envelopes", json=over).status_code == 422
    r = client.patch(f"/api/envelopes/{env['id']}", json={"allocation_rule": {"value": "101", "kind": "percentage"}})
    assert r.status_code == 422

    r = client.patch(f"/api/envelopes/{env['id']}", json={"allocation_rule": None, "allocated": "150"})
    assert r.status_code == 200
    assert r.json()["allocation_rule"] is None
    assert Decimal(r.json()["allocated"]) == Decimal("150")

    assert client.delete(f"/api/envelopes/{env['id']}").status_code == 204
    assert client.patch(f"/api/envelopes/{env['id']}", json={"name": "Y"}).status_code == 404


def test_validate_allocations(client):
    r = client.post("/api/allocations/validate", json={
        "total_amount": "1000",
        "rules": [{"rule": {"value": "600", "kind": "fixed"}}, {"rule": {"value": "300", "kind": "fixed"}}],
    })
    assert r.json() == {"valid": False, "reason": "fixed allocations do not sum to total"}
    r = client.post("/api/allocations/validate", json={"total_amount": "1000", "rules": []})
    assert r.json()["valid"] is True


def test_distribute_preview(client):
    r = client.post("/api/allocations/distribute", json={
        "total_amount": "100",
        "strategy": "equal",
        "envelope_ids": ["1", "2", "3", "4"],
    })
    assert r.status_code == 200
    body = r.json()
    assert {k: Decimal(v) for k, v in body["distribution"].items()} == {k: Decimal("25") for k in "1234"}
    assert Decimal(body["remaining"]) == 0
    # previews never write
    assert client.get("/api/transactions").json() == []


def test_paycheck_flow(client):
    r = client.post("/api/paychecks/preview", json={"account_id": "checking-1", "amount": "2500"})
    assert r.status_code == 200
    assert Decimal(r.json()["distribution"]["1"]) == Decimal("1000")

    r = client.post("/api/paychecks", json={
        "account_id": "checking-1",
        "amount": "1000",
        "method": "manual",
        "custom_amounts": {"1": "400", "4": "600"},
        "date": TODAY,
    })
    assert r.status_code == 201, r.text
    body = r.json()
    assert Decimal(body["total_distributed"]) == Decimal("1000")
    assert Decimal(body["remaining"]) == 0
    txns = body["transactions"]
    assert txns[0]["description"] == "Paycheck"
    assert _amounts(txns[1:]) == {"1": Decimal("400"), "4": Decimal("600")}
    # the paycheck is not auto-allocated on top of the manual split
    assert len(client.get("/api/transactions").json()) == 3


def test_paycheck_split_must_match_amount(client):
    preview = client.post("/api/paychecks/preview", json={
        "account_id": "checking-1", "amount": "100", "method": "manual", "custom_amounts": {"1": "5000"},
    })
    assert preview.status_code == 200
    assert Decimal(preview.json()["remaining"]) == Decimal("-4900")

    for amounts in ({"1": "5000"}, {"1": "40"}):
        r = client.post("/api/paychecks", json={
            "account_id": "checking-1", "amount": "100", "method": "manual", "custom_amounts": amounts,
        })
        assert r.status_code == 422
        assert "cover the full amount" in r.json()["detail"]
    assert client.get("/api/transactions").json() == []


def test_paycheck_errors(client):
    assert client.post("/api/paychecks", json={"account_id": "nope", "amount": "1"}).status_code == 404
    # no amount and no default on the account
    assert client.post("/api/paychecks", json={"account_id": "checking-1"}).status_code == 422
    r = client.post("/api/paychecks", json={"account_id": "checking-1", "amount": "1", "method": "custom_rule"})
    assert r.status_code == 422


def test_export_csv_and_json(client):
    client.post("/api/transactions", json={"transactions": [
        {"account_id": "checking-1", "envelope_id": "1", "amount": "-42", "description": "Market", "date": TODAY},
    ]})
    r = client.get("/api/export")
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert "budget-data.csv" in r.headers["content-disposition"]
    lines = r.text.splitlines()
    assert lines[0] == "TRANSACTIONS"
    assert lines[2] == f'"{TODAY}","Market","-42.00","Groceries","Expense"'
    assert "ENVELOPES" in lines

    r = client.get("/api/export", params={"format": "json"})
    assert r.status_code == 200
    body = r.json()
    assert set(body) == {"export_date", "envelopes", "transactions"}
    assert body["transactions"][0]["description"] == "Market"

    assert client.get("/api/export", params={"format": "xml"}).status_code == 422
