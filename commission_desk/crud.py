"""Database access helpers."""
from __future__ import annotations

import json
from datetime import date
from decimal import Decimal
from typing import Any, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from commission_desk.core.periods import normalize_month, previous_month
from commission_desk.core.policy import DEFAULT_PLANS, CommissionPlan
from commission_desk.models import (
    AuditLog,
    CommissionRecord,
    PerformanceFact,
    RateTable,
    RateTierRow,
    Team,
)
from commission_desk.schemas import PerformanceFactsIn, RateTableCreate

DEFAULT_EFFECTIVE_FROM = date(2020, 1, 1)


# --- Rate tables -------------------------------------------------------------

def list_rate_tables(db: Session, department: str | None = None) -> Sequence[RateTable]:
    stmt = select(RateTable).options(selectinload(RateTable.tiers))
    if department:
        stmt = stmt.where(RateTable.department == department)
    stmt = stmt.order_by(RateTable.department, RateTable.effective_from.desc())
    return db.execute(stmt).scalars().all()


def get_rate_table(db: Session, rate_table_id: int) -> RateTable | None:
    return db.get(RateTable, rate_table_id)


def get_rate_table_in_force(db: Session, department: str, effective_date: date) -> RateTable | None:
    """Latest version whose ``effective_from`` is on or before ``effective_date``."""

    stmt = (
        select(RateTable)
        .options(selectinload(RateTable.tiers))
        .where(
            RateTable.department == department,
            RateTable.effective_from <= effective_date,
        )
        .order_by(RateTable.effective_from.desc())
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def create_rate_table(
    db: Session,
    payload: RateTableCreate,
    created_by: int | None = None,
    commit: bool = True,
) -> RateTable:
    existing = (
        db.query(RateTable)
        .filter(
            RateTable.department == payload.department,
            RateTable.effective_from == payload.effective_from,
        )
        .first()
    )
    if existing:
        raise ValueError(
            f"A {payload.department} rate table effective {payload.effective_from.isoformat()} "
            f"already exists (id {existing.id}); publish a new effective date instead."
        )

    bonuses, penalties = payload.rule_configs()
    table = RateTable(
        department=payload.department,
        effective_from=payload.effective_from,
        metric=payload.metric,
        bonus_rules=json.dumps(bonuses),
        penalty_rules=json.dumps(penalties),
        notes=(payload.notes.strip() if payload.notes else None),
        created_by=created_by,
    )
    for tier in payload.tiers:
        table.tiers.append(
            RateTierRow(
                lower_bound=tier.lower_bound,
                upper_bound=tier.upper_bound,
                fixed_amount=tier.fixed_amount,
                percentage_rate=tier.percentage_rate,
            )
        )
    db.add(table)
    if commit:
        db.commit()
        db.refresh(table)
    else:
        db.flush()
    return table


def seed_default_rate_tables(db: Session) -> list[str]:
    """Publish the built-in plan for every department that has none yet."""

    seeded: list[str] = []
    for department, plan in DEFAULT_PLANS.items():
        has_table = db.execute(
            select(func.count()).select_from(RateTable).where(RateTable.department == department)
        ).scalar_one()
        if has_table:
            continue
        payload = RateTableCreate(
            department=department,
            effective_from=DEFAULT_EFFECTIVE_FROM,
            notes="Default plan",
            **plan,
        )
        create_rate_table(db, payload, commit=False)
        seeded.append(department)
    if seeded:
        db.commit()
    return seeded


def tier_dicts(table: RateTable) -> list[dict[str, Any]]:
    return [
        {
            "lower_bound": row.lower_bound,
            "upper_bound": row.upper_bound,
            "fixed_amount": row.fixed_amount,
            "percentage_rate": row.percentage_rate,
        }
        for row in table.tiers
    ]


def plan_for_table(table: RateTable) -> CommissionPlan:
    return CommissionPlan.from_config(
        department=table.department,
        metric=table.metric,
        tiers=tier_dicts(table),
        bonus_rules=json.loads(table.bonus_rules or "[]"),
        penalty_rules=json.loads(table.penalty_rules or "[]"),
        effective_from=table.effective_from,
        rate_table_id=table.id,
    )


# --- Teams and facts ---------------------------------------------------------

def get_team(db: Session, team_id: int) -> Team | None:
    return db.get(Team, team_id)


def create_team(
    db: Session,
    name: str,
    department: str,
    lead_employee_id: int | None = None,
    target_active_leads: int | None = None,
) -> Team:
    team = Team(
        name=name.strip(),
        department=department,
        lead_employee_id=lead_employee_id,
        target_active_leads=target_active_leads,
    )
    db.add(team)
    db.commit()
    db.refresh(team)
    return team


def get_facts(db: Session, employee_id: int, month: str) -> PerformanceFact | None:
    stmt = select(PerformanceFact).where(
        PerformanceFact.employee_id == employee_id,
        PerformanceFact.month == normalize_month(month),
    )
    return db.execute(stmt).scalars().first()


def upsert_facts(db: Session, employee_id: int, month: str, payload: PerformanceFactsIn) -> PerformanceFact:
    month = normalize_month(month)
    row = get_facts(db, employee_id, month)
    if row is None:
        row = PerformanceFact(employee_id=employee_id, month=month)
    for key, value in payload.model_dump().items():
        setattr(row, key, value)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def list_team_facts(db: Session, team_id: int, month: str) -> Sequence[PerformanceFact]:
    stmt = select(PerformanceFact).where(
        PerformanceFact.team_id == team_id,
        PerformanceFact.month == normalize_month(month),
    )
    return db.execute(stmt).scalars().all()


def employees_with_facts(db: Session, month: str) -> list[int]:
    stmt = (
        select(PerformanceFact.employee_id)
        .where(PerformanceFact.month == normalize_month(month))
        .order_by(PerformanceFact.employee_id)
    )
    return list(db.execute(stmt).scalars().all())


# --- Commission records ------------------------------------------------------

def get_record(db: Session, record_id: int) -> CommissionRecord | None:
    return db.get(CommissionRecord, record_id)


def get_current_record(db: Session, employee_id: int, month: str) -> CommissionRecord | None:
    """The newest record of a key; every older one has been superseded."""

    stmt = (
        select(CommissionRecord)
        .where(
            CommissionRecord.employee_id == employee_id,
            CommissionRecord.month == normalize_month(month),
        )
        .order_by(CommissionRecord.id.desc())
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def get_latest_approved_record(db: Session, employee_id: int, month: str) -> CommissionRecord | None:
    """Newest approved record of a key; the baseline for variance review."""

    stmt = (
        select(CommissionRecord)
        .where(
            CommissionRecord.employee_id == employee_id,
            CommissionRecord.month == normalize_month(month),
            CommissionRecord.status == "approved",
        )
        .order_by(CommissionRecord.id.desc())
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def is_current_record(db: Session, record: CommissionRecord) -> bool:
    stmt = select(func.count()).where(CommissionRecord.supersedes_record_id == record.id)
    return (db.execute(stmt).scalar_one() or 0) == 0


def list_history(db: Session, employee_id: int) -> Sequence[CommissionRecord]:
    stmt = (
        select(CommissionRecord)
        .where(CommissionRecord.employee_id == employee_id)
        .order_by(CommissionRecord.computed_at, CommissionRecord.id)
    )
    return db.execute(stmt).scalars().all()


def list_current_records_for_month(
    db: Session,
    month: str,
    department: str | None = None,
) -> Sequence[CommissionRecord]:
    month = normalize_month(month)
    latest = (
        select(func.max(CommissionRecord.id).label("record_id"))
        .where(CommissionRecord.month == month)
        .group_by(CommissionRecord.employee_id)
        .subquery()
    )
    stmt = select(CommissionRecord).join(latest, CommissionRecord.id == latest.c.record_id)
    if department:
        stmt = stmt.where(CommissionRecord.department == department)
    stmt = stmt.order_by(CommissionRecord.employee_id)
    return db.execute(stmt).scalars().all()


def top_earners(
    db: Session,
    month: str,
    department: str | None = None,
    limit: int = 5,
    include_previous: bool = False,
    exclude_rejected: bool = True,
) -> list[dict[str, Any]]:
    """Highest current totals for a month, optionally with last month's amount."""

    month = normalize_month(month)
    records = [
        record
        for record in list_current_records_for_month(db, month, department)
        if not (exclude_rejected and record.status == "rejected")
    ]
    records.sort(key=lambda record: (-Decimal(record.total_commission), record.employee_id))

    previous: dict[int, Decimal] = {}
    if include_previous:
        for record in list_current_records_for_month(db, previous_month(month), department):
            previous[record.employee_id] = Decimal(record.total_commission)

    rows: list[dict[str, Any]] = []
    for record in records[: max(limit, 0)]:
        rows.append(
            {
                "employee_id": record.employee_id,
                "department": record.department,
                "month": record.month,
                "total_commission": Decimal(record.total_commission),
                "status": record.status,
                "previous_amount": previous.get(record.employee_id) if include_previous else None,
            }
        )
    return rows


# --- Audit --------------------------------------------------------------------

def log_admin_action(
    db: Session,
    user_id: int | None,
    action: str,
    details: dict | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    commit: bool = True,
) -> AuditLog:
    payload = AuditLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=json.dumps(details or {}, default=str),
    )
    db.add(payload)
    if commit:
        db.commit()
    return payload


def list_audit_logs(db: Session, entity_type: str | None = None, entity_id: int | None = None) -> Sequence[AuditLog]:
    stmt = select(AuditLog)
    if entity_type:
        stmt = stmt.where(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        stmt = stmt.where(AuditLog.entity_id == entity_id)
    return db.execute(stmt.order_by(AuditLog.id)).scalars().all()
