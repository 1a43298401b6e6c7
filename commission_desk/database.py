"""Database configuration for the commission service."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from commission_desk.config import DEFAULT_SQLITE_PATH, get_settings

logger = logging.getLogger(__name__)

DATABASE_URL = get_settings().database_url


def _create_engine(url: str):
    """Create a SQLAlchemy engine for the given URL, handling sqlite connect args."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    if url.startswith("sqlite:///") and ":memory:" not in url:
        Path(url.replace("sqlite:///", "", 1)).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url, connect_args=connect_args, future=True)


# In development an unreachable server database falls back to the local SQLite
# file; any other environment fails at import time.
try:
    engine = _create_engine(DATABASE_URL)
    with engine.connect() as _conn:  # type: ignore[var-annotated]
        pass
except OperationalError as exc:  # pragma: no cover - environment dependent
    if not get_settings().is_development:
        raise
    logger.warning("Could not connect to database at %r: %s", DATABASE_URL, exc)
    DATABASE_URL = f"sqlite:///{DEFAULT_SQLITE_PATH}"
    logger.warning("Falling back to SQLite for local development at %s", DATABASE_URL)
    engine = _create_engine(DATABASE_URL)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

Base = declarative_base()


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a database session."""

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def init_db(seed: bool | None = None) -> None:
    """Create tables and, when enabled, seed the admin user and default rate tables."""

    from commission_desk import models  # noqa: F401  (registers model metadata)
    from commission_desk import crud
    from commission_desk.auth import User

    Base.metadata.create_all(bind=engine, checkfirst=True)

    if seed is None:
        seed = get_settings().seed_defaults
    if not seed:
        return

    session = SessionLocal()
    try:
        if session.query(User).filter(User.username == "admin").count() == 0:
            session.add(User.create_user("admin", "admin", role="admin"))
            session.commit()
            logger.info("Created default admin user (username: admin)")
        seeded = crud.seed_default_rate_tables(session)
        if seeded:
            logger.info("Seeded default rate tables for: %s", ", ".join(seeded))
    except Exception:
        session.rollback()
        logger.exception("Seeding defaults failed")
        raise
    finally:
        session.close()
