from __future__ import annotations

import json
from io import BytesIO
from typing import Iterable, Optional

import pandas as pd
from sqlalchemy.orm import Session

from commission_desk import crud
from commission_desk.core.periods import normalize_month
from commission_desk.models import CommissionRecord

COMMISSION_COLUMNS = [
    "record_id",
    "employee_id",
    "department",
    "team_id",
    "month",
    "metric_name",
    "metric_value",
    "tier",
    "base_amount",
    "bonus_total",
    "penalty_pct",
    "gross_commission",
    "total_commission",
    "status",
    "requires_review",
    "computed_at",
    "decided_at",
]

BONUS_COLUMNS = ["record_id", "employee_id", "component", "kind", "amount"]


def _money(value) -> Optional[float]:
    return float(value) if value is not None else None


def _tier_label(record: CommissionRecord) -> str:
    if record.tier_upper_bound is None:
        return f"{record.tier_lower_bound}+"
    return f"{record.tier_lower_bound}-{record.tier_upper_bound}"


def _commissions_df(records: Iterable[CommissionRecord]) -> pd.DataFrame:
    rows = []
    for item in records:
        rows.append(
            {
                "record_id": item.id,
                "employee_id": item.employee_id,
                "department": item.department,
                "team_id": item.team_id,
                "month": item.month,
                "metric_name": item.metric_name,
                "metric_value": _money(item.metric_value),
                "tier": _tier_label(item),
                "base_amount": _money(item.base_amount),
                "bonus_total": _money(item.bonus_total),
                "penalty_pct": _money(item.penalty_pct),
                "gross_commission": _money(item.gross_commission),
                "total_commission": _money(item.total_commission),
                "status": item.status,
                "requires_review": bool(item.requires_review),
                "computed_at": item.computed_at,
                "decided_at": item.decided_at,
            }
        )
    return pd.DataFrame(rows, columns=COMMISSION_COLUMNS)


def _breakdown_df(records: Iterable[CommissionRecord]) -> pd.DataFrame:
    rows = []
    for item in records:
        for kind, column in (("bonus", item.bonus_breakdown), ("penalty_pct", item.penalty_breakdown)):
            for component, amount in json.loads(column or "{}").items():
                rows.append(
                    {
                        "record_id": item.id,
                        "employee_id": item.employee_id,
                        "component": component,
                        "kind": kind,
                        "amount": float(amount),
                    }
                )
    return pd.DataFrame(rows, columns=BONUS_COLUMNS)


def export_commission_workbook(db: Session, month: str, department: str | None = None) -> bytes:
    """Return an XLSX workbook (bytes) with the current records of a month."""

    records = crud.list_current_records_for_month(db, normalize_month(month), department)

    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        _commissions_df(records).to_excel(writer, sheet_name="Commissions", index=False)
        _breakdown_df(records).to_excel(writer, sheet_name="Breakdown", index=False)

    buffer.seek(0)
    return buffer.getvalue()
