"""Environment driven settings for the commission service."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from pathlib import Path

DEFAULT_SQLITE_PATH = Path("data/commissions.db")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _env_decimal(name: str, default: str) -> Decimal:
    raw = os.getenv(name, default)
    try:
        return Decimal(raw.strip())
    except (InvalidOperation, AttributeError):
        raise ValueError(f"{name} must be numeric, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be numeric, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    database_url: str
    environment: str
    require_approval: bool
    variance_threshold_pct: Decimal
    facts_timeout_seconds: float
    lock_wait_seconds: float
    log_level: str
    seed_defaults: bool

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Read settings from the environment once per process."""

    return Settings(
        database_url=os.getenv("COMMISSION_DATABASE_URL", f"sqlite:///{DEFAULT_SQLITE_PATH}"),
        environment=os.getenv("ENVIRONMENT", "development").lower(),
        require_approval=_env_bool("COMMISSION_REQUIRE_APPROVAL", True),
        variance_threshold_pct=_env_decimal("COMMISSION_VARIANCE_THRESHOLD_PCT", "10"),
        facts_timeout_seconds=_env_float("COMMISSION_FACTS_TIMEOUT_SECONDS", 10.0),
        lock_wait_seconds=_env_float("COMMISSION_LOCK_WAIT_SECONDS", 5.0),
        log_level=os.getenv("COMMISSION_LOG_LEVEL", "INFO").upper(),
        seed_defaults=_env_bool("COMMISSION_SEED_DEFAULTS", True),
    )


def configure_logging(level: str | None = None) -> None:
    """Install the root handler used by the web app and the CLI."""

    logging.basicConfig(level=level or get_settings().log_level, format=LOG_FORMAT)
