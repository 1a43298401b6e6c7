"""Helpers for the ``YYYY-MM`` month keys used across the engine."""
from __future__ import annotations

import re
from datetime import date

_MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


def parse_month(value: str) -> tuple[int, int]:
    """Split a ``YYYY-MM`` key into (year, month), rejecting anything else."""

    match = _MONTH_PATTERN.match((value or "").strip())
    if not match:
        raise ValueError("Month must be in YYYY-MM format.")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValueError("Month must be in YYYY-MM format.")
    return year, month


def normalize_month(value: str) -> str:
    year, month = parse_month(value)
    return f"{year:04d}-{month:02d}"


def month_start(value: str) -> date:
    """First calendar day of the month; the effective date used for rate tables."""

    year, month = parse_month(value)
    return date(year, month, 1)


def previous_month(value: str) -> str:
    year, month = parse_month(value)
    month -= 1
    if month == 0:
        month = 12
        year -= 1
    return f"{year:04d}-{month:02d}"


def lock_key(employee_id: int, month: str) -> str:
    return f"{employee_id}:{normalize_month(month)}"
