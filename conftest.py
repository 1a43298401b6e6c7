import os
import shutil
import tempfile

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Create a temporary SQLite database file for the whole test session
_TEMP_DIR = tempfile.mkdtemp(prefix="commission_tests_")
_DB_FILE = os.path.join(_TEMP_DIR, "test_commissions.db")
os.environ["COMMISSION_DATABASE_URL"] = f"sqlite:///{_DB_FILE}"
os.environ.setdefault("COMMISSION_FACTS_TIMEOUT_SECONDS", "5")
os.environ.setdefault("COMMISSION_LOCK_WAIT_SECONDS", "5")


def _enable_sqlite_foreign_keys(engine):
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Initialize a fresh temporary SQLite database for tests and clean it up after."""
    # Import after setting env var so the app uses the temp DB
    from commission_desk.database import engine, init_db

    _enable_sqlite_foreign_keys(engine)
    init_db()

    yield

    engine.dispose()
    shutil.rmtree(_TEMP_DIR, ignore_errors=True)


@pytest.fixture
def session_factory():
    """Sessionmaker bound to a private in-memory database."""
    from commission_desk import models  # noqa: F401
    from commission_desk.database import Base

    engine = create_engine(
        "sqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    yield factory
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


EXAMPLE_TIERS = [
    {"lower_bound": "0", "upper_bound": "10000", "fixed_amount": "0", "percentage_rate": "5"},
    {"lower_bound": "10000", "upper_bound": "20000", "fixed_amount": "500", "percentage_rate": "6"},
    {"lower_bound": "20000", "upper_bound": None, "fixed_amount": "1200", "percentage_rate": "7"},
]


@pytest.fixture
def make_rate_table():
    """Publish a dispatch table shaped like the worked example (own leads at 50)."""
    from datetime import date

    from commission_desk import crud
    from commission_desk.schemas import RateTableCreate

    def _make(db, **overrides):
        data = {
            "department": "dispatch",
            "effective_from": date(2025, 1, 1),
            "metric": "invoice_total",
            "tiers": EXAMPLE_TIERS,
            "bonus_rules": [{"kind": "own_lead", "amount_per_lead": "50"}],
            "penalty_rules": [{"kind": "attendance", "percentage": "10"}],
        }
        data.update(overrides)
        return crud.create_rate_table(db, RateTableCreate(**data))

    return _make


@pytest.fixture
def make_facts():
    """Upsert complete facts for an employee-month (18,400 invoiced, 3 own leads by default)."""
    from commission_desk import crud
    from commission_desk.schemas import PerformanceFactsIn

    def _make(db, employee_id=1, month="2025-05", **overrides):
        data = {
            "department": "dispatch",
            "invoice_total": "18400",
            "completed_loads": 22,
            "own_leads": 3,
            "active_leads": 2,
        }
        data.update(overrides)
        return crud.upsert_facts(db, employee_id, month, PerformanceFactsIn(**data))

    return _make
