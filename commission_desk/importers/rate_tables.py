"""Import rate-table versions from CSV or Excel sheets of tier rows."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from io import BytesIO
from pathlib import Path
from typing import Any, Iterable

import pandas as pd
from dateutil import parser as date_parser
from pydantic import ValidationError
from sqlalchemy.orm import Session

from commission_desk import crud
from commission_desk.core.money import parse_decimal
from commission_desk.core.policy import DEFAULT_PLANS
from commission_desk.models import RateTable
from commission_desk.schemas import RateTableCreate

logger = logging.getLogger(__name__)

TIER_COLUMNS: dict[str, dict[str, Any]] = {
    "department": {"aliases": ["department", "dept"], "required": True},
    "effective_from": {"aliases": ["effective from", "effective_from", "effective date", "effective"], "required": True},
    "metric": {"aliases": ["metric", "tier metric"], "required": False},
    "lower_bound": {"aliases": ["lower bound", "lower_bound", "from", "min"], "required": True},
    "upper_bound": {"aliases": ["upper bound", "upper_bound", "to", "max"], "required": False},
    "fixed_amount": {"aliases": ["fixed amount", "fixed_amount", "fixed", "amount"], "required": False},
    "percentage_rate": {"aliases": ["percentage rate", "percentage_rate", "rate", "rate %", "percent"], "required": False},
}


@dataclass
class ImportSummary:
    tables_created: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {"tables_created": self.tables_created, "errors": self.errors}


def resolve_column(df: pd.DataFrame, aliases: Iterable[str]) -> str | None:
    lookup = {str(col).strip().lower(): str(col) for col in df.columns}
    for alias in aliases:
        key = alias.strip().lower()
        if key in lookup:
            return lookup[key]
    return None


def normalize_columns(df: pd.DataFrame, spec: dict[str, dict[str, Any]], label: str) -> pd.DataFrame:
    mapping: dict[str, str] = {}
    for canonical, column_spec in spec.items():
        source = resolve_column(df, column_spec["aliases"])
        if source:
            mapping[source] = canonical
        elif column_spec.get("required", False):
            raise ValueError(f"Missing required column '{canonical}' in {label}")
    renamed = df.rename(columns=mapping)
    return renamed[list(mapping.values())]


def parse_date_value(raw: Any, field_name: str) -> date:
    if raw is None or (not isinstance(raw, str) and pd.isna(raw)):
        raise ValueError(f"{field_name} is missing")
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    text = str(raw).strip()
    if not text:
        raise ValueError(f"{field_name} is empty")
    try:
        return date_parser.parse(text).date()
    except (ValueError, TypeError, OverflowError) as exc:
        raise ValueError(f"Could not parse {field_name} value '{raw}'") from exc


def _cell(row: pd.Series, column: str) -> Any:
    if column not in row.index:
        return None
    value = row[column]
    if not isinstance(value, str) and pd.isna(value):
        return None
    return value


def read_tier_frame(source: str | Path | bytes, filename: str | None = None) -> pd.DataFrame:
    """Load a tier sheet; ``.xlsx``/``.xls`` go through openpyxl, anything else is CSV."""

    name = (filename or (str(source) if not isinstance(source, bytes) else "")).lower()
    handle: Any = BytesIO(source) if isinstance(source, bytes) else source
    if name.endswith((".xlsx", ".xls")):
        df = pd.read_excel(handle, engine="openpyxl", dtype=str)
    else:
        df = pd.read_csv(handle, dtype=str)
    return normalize_columns(df, TIER_COLUMNS, name or "tier sheet")


def _rules_for(db: Session, department: str, effective_from: date) -> tuple[str | None, list, list]:
    """Carry over metric and rules from the version in force, else the built-in plan."""

    current: RateTable | None = crud.get_rate_table_in_force(db, department, effective_from)
    if current is not None:
        return (
            current.metric,
            json.loads(current.bonus_rules or "[]"),
            json.loads(current.penalty_rules or "[]"),
        )
    plan = DEFAULT_PLANS.get(department, {})
    return plan.get("metric"), list(plan.get("bonus_rules", [])), list(plan.get("penalty_rules", []))


def build_payloads(db: Session, df: pd.DataFrame) -> tuple[list[RateTableCreate], list[str]]:
    groups: dict[tuple[str, date], dict[str, Any]] = {}
    errors: list[str] = []

    for idx, row in df.iterrows():
        line = int(idx) + 2
        try:
            department = str(_cell(row, "department") or "").strip().lower()
            if not department:
                raise ValueError("department is missing")
            effective_from = parse_date_value(_cell(row, "effective_from"), "effective_from")
            lower = parse_decimal(_cell(row, "lower_bound"))
            if lower is None:
                raise ValueError("lower_bound is missing")
            tier = {
                "lower_bound": lower,
                "upper_bound": parse_decimal(_cell(row, "upper_bound")),
                "fixed_amount": parse_decimal(_cell(row, "fixed_amount")) or 0,
                "percentage_rate": parse_decimal(_cell(row, "percentage_rate")) or 0,
            }
        except ValueError as exc:
            errors.append(f"Row {line}: {exc}")
            continue

        group = groups.setdefault((department, effective_from), {"metric": None, "tiers": []})
        metric = _cell(row, "metric")
        if metric:
            group["metric"] = str(metric).strip()
        group["tiers"].append(tier)

    payloads: list[RateTableCreate] = []
    for (department, effective_from), group in groups.items():
        metric, bonus_rules, penalty_rules = _rules_for(db, department, effective_from)
        try:
            payloads.append(
                RateTableCreate(
                    department=department,
                    effective_from=effective_from,
                    metric=group["metric"] or metric or "",
                    tiers=group["tiers"],
                    bonus_rules=bonus_rules,
                    penalty_rules=penalty_rules,
                    notes="Imported tier sheet",
                )
            )
        except ValidationError as exc:
            messages = "; ".join(error["msg"] for error in exc.errors())
            errors.append(f"{department} {effective_from.isoformat()}: {messages}")
    return payloads, errors


def import_rate_tables(
    db: Session,
    source: str | Path | bytes,
    filename: str | None = None,
    created_by: int | None = None,
) -> ImportSummary:
    """Publish one new rate-table version per (department, effective date) group.

    Nothing is written when any row or group fails validation.
    """

    summary = ImportSummary()
    df = read_tier_frame(source, filename)
    payloads, summary.errors = build_payloads(db, df)
    if summary.errors:
        logger.warning("Tier import rejected with %d error(s)", len(summary.errors))
        return summary

    try:
        for payload in payloads:
            table = crud.create_rate_table(db, payload, created_by=created_by, commit=False)
            crud.log_admin_action(
                db,
                created_by,
                "rate_table_published",
                {"department": table.department, "effective_from": table.effective_from.isoformat(), "source": "import"},
                entity_type="rate_table",
                entity_id=table.id,
                commit=False,
            )
            summary.tables_created.append(table.id)
        db.commit()
    except ValueError as exc:
        db.rollback()
        summary.tables_created.clear()
        summary.errors.append(str(exc))
        return summary
    except Exception:
        db.rollback()
        raise

    logger.info("Imported %d rate table version(s)", len(summary.tables_created))
    return summary
