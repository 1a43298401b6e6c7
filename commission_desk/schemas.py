"""Pydantic schemas for API payloads and responses."""
from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from commission_desk.core.facts import DEPARTMENTS, METRIC_FIELDS
from commission_desk.core.periods import normalize_month
from commission_desk.core.policy import CommissionPlan
from commission_desk.errors import TierConfigurationError

MONEY_QUANT = Decimal("0.01")


def _validate_department(value: str) -> str:
    normalized = (value or "").strip().lower()
    if normalized not in DEPARTMENTS:
        raise ValueError(f"Department must be one of: {', '.join(DEPARTMENTS)}.")
    return normalized


def _validate_month(value: str) -> str:
    return normalize_month(value)


# --- Rate tables -------------------------------------------------------------

class RateTierIn(BaseModel):
    lower_bound: Decimal = Field(..., ge=0)
    upper_bound: Optional[Decimal] = Field(None, gt=0)
    fixed_amount: Decimal = Field(Decimal("0"), ge=0)
    percentage_rate: Decimal = Field(Decimal("0"), ge=0, le=100)

    @field_validator("fixed_amount")
    def quantize_amount(cls, value: Decimal) -> Decimal:
        return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


class OwnLeadBonusConfig(BaseModel):
    kind: Literal["own_lead"]
    name: Optional[str] = None
    amount_per_lead: Decimal = Field(Decimal("3000"), ge=0)


class NewLeadBonusConfig(BaseModel):
    kind: Literal["new_lead"]
    name: Optional[str] = None
    amount_per_lead: Decimal = Field(Decimal("2000"), ge=0)


class FirstTwoWeeksBonusConfig(BaseModel):
    kind: Literal["first_two_weeks"]
    name: Optional[str] = None
    percentage: Decimal = Field(Decimal("3"), ge=0, le=100)


class ActiveTrucksBonusConfig(BaseModel):
    kind: Literal["active_trucks"]
    name: Optional[str] = None
    min_active: int = Field(3, ge=0)
    amount_per_lead: Decimal = Field(Decimal("3000"), ge=0)


class ActiveLeadMilestoneBonusConfig(BaseModel):
    kind: Literal["active_lead_milestone"]
    name: Optional[str] = None
    threshold: int = Field(5, ge=0)
    amount_flat: Decimal = Field(Decimal("5000"), ge=0)


class TeamLeadBonusConfig(BaseModel):
    kind: Literal["team_lead"]
    name: Optional[str] = None
    amount_per_active_lead: Decimal = Field(Decimal("1000"), ge=0)


BonusRuleConfig = Annotated[
    Union[
        OwnLeadBonusConfig,
        NewLeadBonusConfig,
        FirstTwoWeeksBonusConfig,
        ActiveTrucksBonusConfig,
        ActiveLeadMilestoneBonusConfig,
        TeamLeadBonusConfig,
    ],
    Field(discriminator="kind"),
]


class AttendancePenaltyConfig(BaseModel):
    kind: Literal["attendance"]
    name: Optional[str] = None
    percentage: Decimal = Field(Decimal("10"), ge=0, le=100)


class QualityPenaltyConfig(BaseModel):
    kind: Literal["quality"]
    name: Optional[str] = None
    percentage_per_incident: Decimal = Field(Decimal("5"), ge=0, le=100)
    max_percentage: Decimal = Field(Decimal("20"), ge=0, le=100)


class TargetMissPenaltyConfig(BaseModel):
    kind: Literal["target_miss"]
    name: Optional[str] = None
    metric: str = "invoice_total"
    threshold: Decimal = Field(Decimal("650"), ge=0)
    percentage: Decimal = Field(Decimal("25"), ge=0, le=100)

    @field_validator("metric")
    def validate_metric(cls, value: str) -> str:
        if value not in METRIC_FIELDS:
            raise ValueError(f"Metric must be one of: {', '.join(METRIC_FIELDS)}.")
        return value


class NoActiveLeadsPenaltyConfig(BaseModel):
    kind: Literal["no_active_leads"]
    name: Optional[str] = None
    percentage: Decimal = Field(Decimal("25"), ge=0, le=100)


PenaltyRuleConfig = Annotated[
    Union[
        AttendancePenaltyConfig,
        QualityPenaltyConfig,
        TargetMissPenaltyConfig,
        NoActiveLeadsPenaltyConfig,
    ],
    Field(discriminator="kind"),
]


class RateTableCreate(BaseModel):
    department: str
    effective_from: date
    metric: str
    tiers: list[RateTierIn] = Field(..., min_length=1)
    bonus_rules: list[BonusRuleConfig] = Field(default_factory=list)
    penalty_rules: list[PenaltyRuleConfig] = Field(default_factory=list)
    notes: Optional[str] = None

    @field_validator("department")
    def validate_department(cls, value: str) -> str:
        return _validate_department(value)

    @field_validator("metric")
    def validate_metric(cls, value: str) -> str:
        if value not in METRIC_FIELDS:
            raise ValueError(f"Metric must be one of: {', '.join(METRIC_FIELDS)}.")
        return value

    @model_validator(mode="after")
    def validate_plan(self) -> "RateTableCreate":
        try:
            self.to_plan()
        except (TierConfigurationError, ValueError) as exc:
            raise ValueError(str(exc)) from exc
        return self

    def rule_configs(self) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        bonuses = [rule.model_dump(mode="json", exclude_none=True) for rule in self.bonus_rules]
        penalties = [rule.model_dump(mode="json", exclude_none=True) for rule in self.penalty_rules]
        return bonuses, penalties

    def to_plan(self) -> CommissionPlan:
        bonuses, penalties = self.rule_configs()
        return CommissionPlan.from_config(
            department=self.department,
            metric=self.metric,
            tiers=[tier.model_dump() for tier in self.tiers],
            bonus_rules=bonuses,
            penalty_rules=penalties,
            effective_from=self.effective_from,
        )


class RateTierRead(BaseModel):
    lower_bound: Decimal
    upper_bound: Optional[Decimal]
    fixed_amount: Decimal
    percentage_rate: Decimal

    model_config = ConfigDict(from_attributes=True)


class RateTableRead(BaseModel):
    id: int
    department: str
    effective_from: date
    metric: str
    tiers: list[RateTierRead]
    bonus_rules: list[dict[str, Any]]
    penalty_rules: list[dict[str, Any]]
    notes: Optional[str]
    created_by: Optional[int]
    created_at: datetime

    @field_validator("bonus_rules", "penalty_rules", mode="before")
    def decode_rules(cls, value: Any) -> Any:
        if isinstance(value, str):
            return json.loads(value or "[]")
        return value

    model_config = ConfigDict(from_attributes=True)


# --- Performance facts -------------------------------------------------------

class PerformanceFactsIn(BaseModel):
    department: str
    team_id: Optional[int] = None
    active_leads: int = Field(0, ge=0)
    inbound_leads: int = Field(0, ge=0)
    outbound_leads: int = Field(0, ge=0)
    new_leads: int = Field(0, ge=0)
    own_leads: int = Field(0, ge=0)
    completed_loads: int = Field(0, ge=0)
    invoice_total: Decimal = Field(Decimal("0"), ge=0)
    first_two_weeks_invoice_total: Decimal = Field(Decimal("0"), ge=0)
    quality_incidents: int = Field(0, ge=0)
    team_target_met: bool = False
    tenure_under_two_weeks: bool = False
    attendance_complete: bool = True
    is_team_lead: bool = False
    is_complete: bool = True

    @field_validator("department")
    def validate_department(cls, value: str) -> str:
        return _validate_department(value)

    @field_validator("invoice_total", "first_two_weeks_invoice_total")
    def quantize_amount(cls, value: Decimal) -> Decimal:
        return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)

    @model_validator(mode="after")
    def validate_totals(self) -> "PerformanceFactsIn":
        if self.first_two_weeks_invoice_total > self.invoice_total:
            raise ValueError("First two weeks invoice total cannot exceed the monthly invoice total.")
        return self


class PerformanceFactsRead(PerformanceFactsIn):
    employee_id: int
    month: str
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Commission records ------------------------------------------------------

class CommissionRecordRead(BaseModel):
    id: int
    employee_id: int
    month: str
    department: str
    team_id: Optional[int]
    rate_table_id: Optional[int]
    metric_name: str
    metric_value: Decimal
    tier_lower_bound: Decimal
    tier_upper_bound: Optional[Decimal]
    tier_fixed_amount: Decimal
    tier_percentage_rate: Decimal
    base_amount: Decimal
    bonus_breakdown: dict[str, Decimal]
    bonus_total: Decimal
    penalty_breakdown: dict[str, Decimal]
    penalty_pct: Decimal
    gross_commission: Decimal
    total_commission: Decimal
    status: str
    requires_review: bool
    computed_at: datetime
    computed_by: Optional[int]
    supersedes_record_id: Optional[int]
    decided_by: Optional[int]
    decided_at: Optional[datetime]
    rejection_reason: Optional[str]

    @field_validator("bonus_breakdown", "penalty_breakdown", mode="before")
    def decode_breakdown(cls, value: Any) -> Any:
        if isinstance(value, str):
            return json.loads(value or "{}")
        return value

    model_config = ConfigDict(from_attributes=True)


class RecalculateRequest(BaseModel):
    employee_id: int = Field(..., gt=0)
    month: str

    @field_validator("month")
    def validate_month(cls, value: str) -> str:
        return _validate_month(value)


class RecalculateAllRequest(BaseModel):
    month: str

    @field_validator("month")
    def validate_month(cls, value: str) -> str:
        return _validate_month(value)


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)

    @field_validator("reason")
    def strip_reason(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Reason cannot be empty.")
        return value


class RecalculationFailure(BaseModel):
    employee_id: int
    code: str
    detail: str


class RecalculateAllResponse(BaseModel):
    month: str
    records: list[CommissionRecordRead]
    failures: list[RecalculationFailure]


class TopEarnerRead(BaseModel):
    employee_id: int
    department: str
    month: str
    total_commission: Decimal
    status: str
    previous_amount: Optional[Decimal] = None
