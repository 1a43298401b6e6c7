from contextlib import contextmanager
from decimal import Decimal

from fastapi.testclient import TestClient

from commission_desk import crud
from commission_desk.auth import User
from commission_desk.database import get_session
from commission_desk.dependencies import get_session_factory
from commission_desk.main import app
from commission_desk.routers.auth import get_current_user


@contextmanager
def _override_dependencies(session, user, session_factory=None):
    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_current_user] = lambda: user
    if session_factory is not None:
        app.dependency_overrides[get_session_factory] = lambda: session_factory
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_session, None)
        app.dependency_overrides.pop(get_current_user, None)
        app.dependency_overrides.pop(get_session_factory, None)


def _user(session, username, role):
    user = User.create_user(username, "password", role=role)
    session.add(user)
    session.commit()
    return user


def test_recalculate_and_read_current_record(db_session, make_rate_table, make_facts):
    user = _user(db_session, "boss", "admin")
    make_rate_table(db_session)
    make_facts(db_session)

    with _override_dependencies(db_session, user) as client:
        resp = client.post("/commissions/recalculate", json={"employee_id": 1, "month": "2025-05"})
        assert resp.status_code == 200
        data = resp.json()
        assert Decimal(data["total_commission"]) == Decimal("1754.00")
        assert data["status"] == "pending_approval"
        assert Decimal(data["bonus_breakdown"]["own_lead_bonus"]) == Decimal("150.00")

        current = client.get("/commissions/1/2025-05")
        assert current.status_code == 200
        assert current.json()["id"] == data["id"]


def test_missing_record_is_404_with_code(db_session):
    user = _user(db_session, "clerk", "user")
    with _override_dependencies(db_session, user) as client:
        resp = client.get("/commissions/1/2025-05")
    assert resp.status_code == 404
    assert resp.json()["code"] == "not_found"


def test_bad_month_is_422(db_session):
    user = _user(db_session, "boss", "admin")
    with _override_dependencies(db_session, user) as client:
        assert client.get("/commissions/1/May-2025").status_code == 422
        assert client.post("/commissions/recalculate", json={"employee_id": 1, "month": "2025-5"}).status_code == 422


def test_missing_facts_map_to_422(db_session, make_rate_table):
    user = _user(db_session, "boss", "admin")
    make_rate_table(db_session)
    with _override_dependencies(db_session, user) as client:
        resp = client.post("/commissions/recalculate", json={"employee_id": 1, "month": "2025-05"})
    assert resp.status_code == 422
    assert resp.json()["code"] == "facts_unavailable"


def test_missing_rate_table_maps_to_500(db_session, make_facts):
    user = _user(db_session, "boss", "admin")
    make_facts(db_session, department="sales")
    with _override_dependencies(db_session, user) as client:
        resp = client.post("/commissions/recalculate", json={"employee_id": 1, "month": "2025-05"})
    assert resp.status_code == 500
    assert resp.json()["code"] == "rate_table_not_found"


def test_approval_flow_and_history(db_session, make_rate_table, make_facts):
    clerk = _user(db_session, "clerk", "user")
    approver = _user(db_session, "approver", "approver")
    admin = _user(db_session, "boss", "admin")
    make_rate_table(db_session)
    make_facts(db_session)

    with _override_dependencies(db_session, admin) as client:
        record_id = client.post("/commissions/recalculate", json={"employee_id": 1, "month": "2025-05"}).json()["id"]

    with _override_dependencies(db_session, clerk) as client:
        denied = client.post(f"/commissions/records/{record_id}/approve")
        assert denied.status_code == 403
        assert denied.json()["code"] == "not_authorized"

    with _override_dependencies(db_session, approver) as client:
        approved = client.post(f"/commissions/records/{record_id}/approve")
        assert approved.status_code == 200
        assert approved.json()["status"] == "approved"

        again = client.post(f"/commissions/records/{record_id}/approve")
        assert again.status_code == 409

    with _override_dependencies(db_session, admin) as client:
        client.post("/commissions/recalculate", json={"employee_id": 1, "month": "2025-05"})

    with _override_dependencies(db_session, approver) as client:
        history = client.get("/commissions/1/history").json()
        assert [item["status"] for item in history] == ["approved", "pending_approval"]
        assert history[1]["supersedes_record_id"] == record_id

        stale = client.post(f"/commissions/records/{record_id}/reject", json={"reason": "late"})
        assert stale.status_code == 409
        assert stale.json()["code"] == "stale_record"


def test_reject_requires_reason(db_session, make_rate_table, make_facts):
    admin = _user(db_session, "boss", "admin")
    make_rate_table(db_session)
    make_facts(db_session)
    with _override_dependencies(db_session, admin) as client:
        record_id = client.post("/commissions/recalculate", json={"employee_id": 1, "month": "2025-05"}).json()["id"]
        assert client.post(f"/commissions/records/{record_id}/reject", json={"reason": "  "}).status_code == 422
        resp = client.post(f"/commissions/records/{record_id}/reject", json={"reason": "wrong loads"})
    assert resp.status_code == 200
    assert resp.json()["rejection_reason"] == "wrong loads"


def test_recalculate_all_is_admin_only(db_session, make_rate_table, make_facts):
    clerk = _user(db_session, "clerk", "user")
    admin = _user(db_session, "boss", "admin")
    make_rate_table(db_session)
    make_facts(db_session, employee_id=1)
    make_facts(db_session, employee_id=2, is_complete=False)

    with _override_dependencies(db_session, clerk) as client:
        assert client.post("/commissions/recalculate-all", json={"month": "2025-05"}).status_code == 403

    with _override_dependencies(db_session, admin) as client:
        resp = client.post("/commissions/recalculate-all", json={"month": "2025-05"})
    assert resp.status_code == 200
    data = resp.json()
    assert [record["employee_id"] for record in data["records"]] == [1]
    assert data["failures"] == [
        {"employee_id": 2, "code": "facts_unavailable", "detail": "Facts for employee 2 in 2025-05 are still incomplete upstream."}
    ]


def test_top_earners_with_previous_month(db_session, make_rate_table, make_facts):
    admin = _user(db_session, "boss", "admin")
    clerk = _user(db_session, "clerk", "user")
    make_rate_table(db_session)
    make_facts(db_session, employee_id=1, month="2025-04", invoice_total="1000", own_leads=0)
    make_facts(db_session, employee_id=1, month="2025-05")
    make_facts(db_session, employee_id=2, month="2025-05", invoice_total="25000", own_leads=0)

    with _override_dependencies(db_session, admin) as client:
        for employee_id, month in ((1, "2025-04"), (1, "2025-05"), (2, "2025-05")):
            client.post("/commissions/recalculate", json={"employee_id": employee_id, "month": month})

    with _override_dependencies(db_session, clerk) as client:
        resp = client.get("/commissions/top-earners", params={"month": "2025-05", "include_previous": "true"})

    assert resp.status_code == 200
    rows = resp.json()
    assert [row["employee_id"] for row in rows] == [2, 1]
    assert Decimal(rows[0]["total_commission"]) == Decimal("2950.00")
    assert rows[0]["previous_amount"] is None
    assert Decimal(rows[1]["previous_amount"]) == Decimal("50.00")


def test_put_facts_schedules_recalculation(db_session, session_factory, make_rate_table):
    admin = _user(db_session, "boss", "admin")
    make_rate_table(db_session)
    payload = {"department": "dispatch", "invoice_total": "18400", "own_leads": 3, "completed_loads": 22}

    with _override_dependencies(db_session, admin, session_factory) as client:
        resp = client.put("/facts/1/2025-05", json=payload)
        assert resp.status_code == 200
        assert resp.json()["month"] == "2025-05"
        assert client.get("/facts/1/2025-05").status_code == 200

    db_session.expire_all()
    record = crud.get_current_record(db_session, 1, "2025-05")
    assert record is not None
    assert record.total_commission == Decimal("1754.00")


def test_put_facts_requires_admin(db_session):
    clerk = _user(db_session, "clerk", "user")
    with _override_dependencies(db_session, clerk) as client:
        resp = client.put("/facts/1/2025-05", json={"department": "dispatch"})
    assert resp.status_code == 403


def test_export_xlsx_requires_admin(db_session):
    clerk = _user(db_session, "clerk", "user")
    with _override_dependencies(db_session, clerk) as client:
        assert client.get("/commissions/export", params={"month": "2025-05"}).status_code == 403


def test_recalculate_is_admin_only(db_session, make_rate_table, make_facts):
    clerk = _user(db_session, "clerk", "user")
    approver = _user(db_session, "approver", "approver")
    admin = _user(db_session, "boss", "admin")
    make_rate_table(db_session)
    make_facts(db_session)

    with _override_dependencies(db_session, admin) as client:
        record_id = client.post("/commissions/recalculate", json={"employee_id": 1, "month": "2025-05"}).json()["id"]
    with _override_dependencies(db_session, approver) as client:
        assert client.post(f"/commissions/records/{record_id}/approve").status_code == 200

    with _override_dependencies(db_session, clerk) as client:
        resp = client.post("/commissions/recalculate", json={"employee_id": 1, "month": "2025-05"})
        assert resp.status_code == 403

        current = client.get("/commissions/1/2025-05").json()
    assert current["id"] == record_id
    assert current["status"] == "approved"


def test_list_month_and_fetch_record_by_id(db_session, make_rate_table, make_facts):
    admin = _user(db_session, "boss", "admin")
    clerk = _user(db_session, "clerk", "user")
    make_rate_table(db_session)
    make_facts(db_session, employee_id=1)
    make_facts(db_session, employee_id=2, invoice_total="5000", own_leads=0)

    with _override_dependencies(db_session, admin) as client:
        first = client.post("/commissions/recalculate", json={"employee_id": 1, "month": "2025-05"}).json()
        client.post("/commissions/recalculate", json={"employee_id": 2, "month": "2025-05"})
        latest = client.post("/commissions/recalculate", json={"employee_id": 1, "month": "2025-05"}).json()

    with _override_dependencies(db_session, clerk) as client:
        listing = client.get("/commissions", params={"month": "2025-05"})
        assert listing.status_code == 200
        rows = listing.json()
        assert [row["employee_id"] for row in rows] == [1, 2]
        assert rows[0]["id"] == latest["id"]
        assert Decimal(rows[1]["total_commission"]) == Decimal("250.00")

        assert client.get("/commissions", params={"month": "2025-05", "department": "sales"}).json() == []
        assert client.get("/commissions", params={"month": "05-2025"}).status_code == 422

        superseded = client.get(f"/commissions/records/{first['id']}")
        assert superseded.status_code == 200
        assert superseded.json()["employee_id"] == 1
        assert Decimal(superseded.json()["total_commission"]) == Decimal("1754.00")

        missing = client.get("/commissions/records/999")
    assert missing.status_code == 404
    assert missing.json()["code"] == "not_found"
