from contextlib import contextmanager
from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from commission_desk import crud
from commission_desk.auth import User
from commission_desk.database import get_session
from commission_desk.main import app
from commission_desk.routers.auth import get_current_user
from commission_desk.schemas import RateTableCreate

TIERS = [
    {"lower_bound": "0", "upper_bound": "1000", "fixed_amount": "0", "percentage_rate": "1"},
    {"lower_bound": "1000", "upper_bound": None, "fixed_amount": "10", "percentage_rate": "2"},
]


@contextmanager
def _override_dependencies(session, user):
    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_current_user] = lambda: user
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_session, None)
        app.dependency_overrides.pop(get_current_user, None)


def _admin(session):
    user = User.create_user("boss", "password", role="admin")
    session.add(user)
    session.commit()
    return user


def test_seed_default_rate_tables_is_idempotent(db_session):
    assert crud.seed_default_rate_tables(db_session) == ["sales", "dispatch"]
    assert crud.seed_default_rate_tables(db_session) == []

    sales = crud.get_rate_table_in_force(db_session, "sales", date(2025, 5, 1))
    assert sales.metric == "active_leads"
    assert len(sales.tiers) == 10
    plan = crud.plan_for_table(sales)
    assert [rule.kind for rule in plan.penalties] == ["no_active_leads", "attendance"]


def test_version_in_force_is_latest_on_or_before_date(db_session, make_rate_table):
    old = make_rate_table(db_session, effective_from=date(2025, 1, 1))
    new = make_rate_table(db_session, effective_from=date(2025, 6, 1))

    assert crud.get_rate_table_in_force(db_session, "dispatch", date(2024, 12, 31)) is None
    assert crud.get_rate_table_in_force(db_session, "dispatch", date(2025, 5, 1)).id == old.id
    assert crud.get_rate_table_in_force(db_session, "dispatch", date(2025, 6, 1)).id == new.id


def test_same_effective_date_cannot_be_republished(db_session, make_rate_table):
    make_rate_table(db_session)
    with pytest.raises(ValueError):
        make_rate_table(db_session)


@pytest.mark.parametrize(
    "tiers",
    [
        [{"lower_bound": "0", "upper_bound": "100"}],
        [{"lower_bound": "0", "upper_bound": "100"}, {"lower_bound": "150", "upper_bound": None}],
        [{"lower_bound": "0", "upper_bound": "100"}, {"lower_bound": "50", "upper_bound": None}],
    ],
)
def test_invalid_tier_layouts_are_rejected(tiers):
    with pytest.raises(ValidationError):
        RateTableCreate(department="dispatch", effective_from=date(2025, 1, 1), metric="invoice_total", tiers=tiers)


def test_unknown_bonus_kind_is_rejected():
    with pytest.raises(ValidationError):
        RateTableCreate(
            department="dispatch",
            effective_from=date(2025, 1, 1),
            metric="invoice_total",
            tiers=TIERS,
            bonus_rules=[{"kind": "lottery", "amount": "5"}],
        )


def test_publish_and_fetch_over_http(db_session):
    admin = _admin(db_session)
    payload = {
        "department": "dispatch",
        "effective_from": "2025-07-01",
        "metric": "invoice_total",
        "tiers": TIERS,
        "bonus_rules": [{"kind": "own_lead", "amount_per_lead": "25"}],
        "penalty_rules": [{"kind": "quality", "percentage_per_incident": "2"}],
    }

    with _override_dependencies(db_session, admin) as client:
        created = client.post("/rate-tables", json=payload)
        assert created.status_code == 201
        body = created.json()
        assert [Decimal(tier["lower_bound"]) for tier in body["tiers"]] == [Decimal("0"), Decimal("1000")]
        assert body["bonus_rules"] == [{"kind": "own_lead", "amount_per_lead": "25"}]

        duplicate = client.post("/rate-tables", json=payload)
        assert duplicate.status_code == 409

        fetched = client.get(f"/rate-tables/{body['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["penalty_rules"][0]["kind"] == "quality"

        listed = client.get("/rate-tables", params={"department": "dispatch"})
        assert [item["id"] for item in listed.json()] == [body["id"]]

        assert client.get("/rate-tables/999").status_code == 404

    logs = crud.list_audit_logs(db_session, entity_type="rate_table", entity_id=body["id"])
    assert [log.action for log in logs] == ["rate_table_published"]


def test_publish_with_gap_is_422(db_session):
    admin = _admin(db_session)
    payload = {
        "department": "dispatch",
        "effective_from": "2025-07-01",
        "metric": "invoice_total",
        "tiers": [{"lower_bound": "0", "upper_bound": "10"}, {"lower_bound": "20", "upper_bound": None}],
    }
    with _override_dependencies(db_session, admin) as client:
        assert client.post("/rate-tables", json=payload).status_code == 422


def test_publish_requires_admin(db_session):
    user = User.create_user("clerk", "password", role="user")
    db_session.add(user)
    db_session.commit()
    with _override_dependencies(db_session, user) as client:
        assert client.get("/rate-tables").status_code == 200
        resp = client.post(
            "/rate-tables",
            json={"department": "dispatch", "effective_from": "2025-07-01", "metric": "invoice_total", "tiers": TIERS},
        )
    assert resp.status_code == 403
