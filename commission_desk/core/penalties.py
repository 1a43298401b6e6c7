"""Penalty rules reducing gross commission by a percentage."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar, Iterable, Union

from commission_desk.core.facts import PerformanceFacts
from commission_desk.core.money import HUNDRED

PCT_ZERO = Decimal("0.00")
PCT_MAX = Decimal("100.00")
PCT_QUANT = Decimal("0.01")


@dataclass(frozen=True)
class AttendancePenalty:
    kind: ClassVar[str] = "attendance"
    percentage: Decimal = Decimal("10")
    name: str = "attendance_penalty"

    def percent(self, facts: PerformanceFacts) -> Decimal:
        return PCT_ZERO if facts.attendance_complete else self.percentage


@dataclass(frozen=True)
class QualityPenalty:
    """Percentage per recorded quality incident, capped at ``max_percentage``."""

    kind: ClassVar[str] = "quality"
    percentage_per_incident: Decimal = Decimal("5")
    max_percentage: Decimal = Decimal("20")
    name: str = "quality_penalty"

    def percent(self, facts: PerformanceFacts) -> Decimal:
        if facts.quality_incidents <= 0:
            return PCT_ZERO
        return min(self.percentage_per_incident * facts.quality_incidents, self.max_percentage)


@dataclass(frozen=True)
class TargetMissPenalty:
    """Applies when a metric ends the month under its threshold.

    Employees in their first two weeks are exempt.
    """

    kind: ClassVar[str] = "target_miss"
    metric: str = "invoice_total"
    threshold: Decimal = Decimal("650")
    percentage: Decimal = Decimal("25")
    name: str = "target_miss_penalty"

    def percent(self, facts: PerformanceFacts) -> Decimal:
        if facts.tenure_under_two_weeks:
            return PCT_ZERO
        if facts.metric_value(self.metric) >= self.threshold:
            return PCT_ZERO
        return self.percentage


@dataclass(frozen=True)
class NoActiveLeadsPenalty:
    kind: ClassVar[str] = "no_active_leads"
    percentage: Decimal = Decimal("25")
    name: str = "no_active_leads_penalty"

    def percent(self, facts: PerformanceFacts) -> Decimal:
        if facts.tenure_under_two_weeks or facts.active_leads > 0:
            return PCT_ZERO
        return self.percentage


PenaltyRule = Union[AttendancePenalty, QualityPenalty, TargetMissPenalty, NoActiveLeadsPenalty]

PENALTY_KINDS: dict[str, type] = {
    rule.kind: rule
    for rule in (AttendancePenalty, QualityPenalty, TargetMissPenalty, NoActiveLeadsPenalty)
}


def _clamp(value: Decimal) -> Decimal:
    return max(PCT_ZERO, min(PCT_MAX, value)).quantize(PCT_QUANT)


def compute_penalty_breakdown(rules: Iterable[PenaltyRule], facts: PerformanceFacts) -> dict[str, Decimal]:
    return {rule.name: _clamp(rule.percent(facts)) for rule in rules}


def compute_penalty_pct(rules: Iterable[PenaltyRule], facts: PerformanceFacts) -> Decimal:
    """Additive penalty percentage, never outside [0, 100]."""

    return _clamp(sum(compute_penalty_breakdown(rules, facts).values(), PCT_ZERO))


def penalty_factor(penalty_pct: Decimal) -> Decimal:
    return (HUNDRED - _clamp(penalty_pct)) / HUNDRED
