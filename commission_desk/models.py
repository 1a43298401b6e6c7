"""SQLAlchemy models for the commission service."""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commission_desk.auth import User  # noqa: F401  (audit_logs references users)
from commission_desk.core.lifecycle import STATUS_ENUM
from commission_desk.database import Base

_STATUS_VALUES = ", ".join(f"'{value}'" for value in STATUS_ENUM)


class RateTable(Base):
    """One published version of a department's commission plan."""

    __tablename__ = "rate_tables"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    department: Mapped[str] = mapped_column(String(20), nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    metric: Mapped[str] = mapped_column(String(40), nullable=False)
    bonus_rules: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    penalty_rules: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    tiers: Mapped[list["RateTierRow"]] = relationship(
        back_populates="rate_table",
        cascade="all, delete-orphan",
        order_by="RateTierRow.lower_bound",
    )

    __table_args__ = (
        UniqueConstraint("department", "effective_from", name="uq_rate_table_department_effective"),
    )


class RateTierRow(Base):
    __tablename__ = "rate_tiers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rate_table_id: Mapped[int] = mapped_column(
        ForeignKey("rate_tables.id", ondelete="CASCADE"), nullable=False, index=True
    )
    lower_bound: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    upper_bound: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    fixed_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    percentage_rate: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False, default=0)

    rate_table: Mapped[RateTable] = relationship(back_populates="tiers")

    __table_args__ = (
        CheckConstraint("lower_bound >= 0", name="ck_rate_tiers_lower_nonnegative"),
        CheckConstraint("fixed_amount >= 0", name="ck_rate_tiers_fixed_nonnegative"),
        CheckConstraint("percentage_rate >= 0", name="ck_rate_tiers_rate_nonnegative"),
    )


class Team(Base):
    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    department: Mapped[str] = mapped_column(String(20), nullable=False)
    lead_employee_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    target_active_leads: Mapped[int | None] = mapped_column(Integer, nullable=True)


class PerformanceFact(Base):
    """Facts snapshot pushed by the CRM and dispatch modules."""

    __tablename__ = "performance_facts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    department: Mapped[str] = mapped_column(String(20), nullable=False)
    team_id: Mapped[int | None] = mapped_column(ForeignKey("teams.id", ondelete="SET NULL"), nullable=True)
    active_leads: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    inbound_leads: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    outbound_leads: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    new_leads: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    own_leads: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_loads: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    invoice_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    first_two_weeks_invoice_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    quality_incidents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    team_target_met: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tenure_under_two_weeks: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    attendance_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_team_lead: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, onupdate=datetime.now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("employee_id", "month", name="uq_facts_employee_month"),
        CheckConstraint("invoice_total >= 0", name="ck_facts_invoice_nonnegative"),
    )


class CommissionRecord(Base):
    """Immutable result of one computation; only lifecycle fields ever change."""

    __tablename__ = "commission_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    department: Mapped[str] = mapped_column(String(20), nullable=False)
    team_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rate_table_id: Mapped[int | None] = mapped_column(
        ForeignKey("rate_tables.id", ondelete="RESTRICT"), nullable=True
    )
    metric_name: Mapped[str] = mapped_column(String(40), nullable=False)
    metric_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    tier_lower_bound: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    tier_upper_bound: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    tier_fixed_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    tier_percentage_rate: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False)
    base_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    bonus_breakdown: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    bonus_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    penalty_breakdown: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    penalty_pct: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=0)
    gross_commission: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total_commission: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="computed")
    requires_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    facts_snapshot: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    computed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)
    computed_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    supersedes_record_id: Mapped[int | None] = mapped_column(
        ForeignKey("commission_records.id", ondelete="RESTRICT"), nullable=True, unique=True
    )
    decided_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    rate_table: Mapped[RateTable | None] = relationship()

    __table_args__ = (
        Index("idx_commission_records_key", "employee_id", "month"),
        CheckConstraint("total_commission >= 0", name="ck_commission_records_total_nonnegative"),
        CheckConstraint("penalty_pct >= 0 AND penalty_pct <= 100", name="ck_commission_records_penalty_range"),
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})",
            name="ck_commission_records_status_valid",
        ),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    details: Mapped[str] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)
