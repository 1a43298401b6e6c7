"""Bonus rules.

Bonuses are a closed set of rule variants. Each variant is a frozen dataclass
with its own typed parameters and an ``amount`` method evaluated against the
same facts snapshot; no rule ever sees another rule's output. Amounts are
rounded to cents per rule, before anything adds them up.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import ClassVar, Iterable, Union

from commission_desk.core.facts import PerformanceFacts, TeamAggregates
from commission_desk.core.money import HUNDRED, ZERO, quantize_money


@dataclass(frozen=True)
class OwnLeadBonus:
    """Flat amount for every lead the employee sourced and onboarded."""

    kind: ClassVar[str] = "own_lead"
    amount_per_lead: Decimal = Decimal("3000")
    name: str = "own_lead_bonus"

    def amount(self, facts: PerformanceFacts, team: TeamAggregates) -> Decimal:
        return quantize_money(self.amount_per_lead * facts.own_leads)


@dataclass(frozen=True)
class NewLeadBonus:
    """Flat amount for every new lead brought in during the month."""

    kind: ClassVar[str] = "new_lead"
    amount_per_lead: Decimal = Decimal("2000")
    name: str = "new_lead_bonus"

    def amount(self, facts: PerformanceFacts, team: TeamAggregates) -> Decimal:
        return quantize_money(self.amount_per_lead * facts.new_leads)


@dataclass(frozen=True)
class FirstTwoWeeksBonus:
    """Percentage of the invoices raised in the first two weeks of the month."""

    kind: ClassVar[str] = "first_two_weeks"
    percentage: Decimal = Decimal("3")
    name: str = "first_two_weeks_bonus"

    def amount(self, facts: PerformanceFacts, team: TeamAggregates) -> Decimal:
        return quantize_money(facts.first_two_weeks_invoice_total * self.percentage / HUNDRED)


@dataclass(frozen=True)
class ActiveTrucksBonus:
    """Per-lead amount once the employee keeps ``min_active`` trucks running."""

    kind: ClassVar[str] = "active_trucks"
    min_active: int = 3
    amount_per_lead: Decimal = Decimal("3000")
    name: str = "active_trucks_bonus"

    def amount(self, facts: PerformanceFacts, team: TeamAggregates) -> Decimal:
        if facts.active_leads < self.min_active:
            return ZERO
        return quantize_money(self.amount_per_lead * facts.active_leads)


@dataclass(frozen=True)
class ActiveLeadMilestoneBonus:
    """One-off amount for more than ``threshold`` active leads in the month."""

    kind: ClassVar[str] = "active_lead_milestone"
    threshold: int = 5
    amount_flat: Decimal = Decimal("5000")
    name: str = "active_lead_milestone_bonus"

    def amount(self, facts: PerformanceFacts, team: TeamAggregates) -> Decimal:
        if facts.active_leads <= self.threshold:
            return ZERO
        return quantize_money(self.amount_flat)


@dataclass(frozen=True)
class TeamLeadBonus:
    """Per-active-lead amount for team leads whose team hit its target."""

    kind: ClassVar[str] = "team_lead"
    amount_per_active_lead: Decimal = Decimal("1000")
    name: str = "team_lead_bonus"

    def amount(self, facts: PerformanceFacts, team: TeamAggregates) -> Decimal:
        if not facts.is_team_lead or not team.target_met:
            return ZERO
        return quantize_money(self.amount_per_active_lead * facts.active_leads)


BonusRule = Union[
    OwnLeadBonus,
    NewLeadBonus,
    FirstTwoWeeksBonus,
    ActiveTrucksBonus,
    ActiveLeadMilestoneBonus,
    TeamLeadBonus,
]

BONUS_KINDS: dict[str, type] = {
    rule.kind: rule
    for rule in (
        OwnLeadBonus,
        NewLeadBonus,
        FirstTwoWeeksBonus,
        ActiveTrucksBonus,
        ActiveLeadMilestoneBonus,
        TeamLeadBonus,
    )
}


@dataclass(frozen=True)
class BonusSet:
    rules: tuple[BonusRule, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        names = [rule.name for rule in self.rules]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate bonus rule names: {', '.join(duplicates)}")

    def without(self, name: str) -> "BonusSet":
        return BonusSet(tuple(rule for rule in self.rules if rule.name != name))


def compute_bonuses(
    rules: Iterable[BonusRule] | BonusSet,
    facts: PerformanceFacts,
    team: TeamAggregates | None = None,
) -> dict[str, Decimal]:
    """Evaluate every rule independently; inapplicable rules contribute 0.00."""

    rule_set = rules if isinstance(rules, BonusSet) else BonusSet(tuple(rules))
    team = team if team is not None else TeamAggregates.empty(facts.month)
    return {rule.name: rule.amount(facts, team) for rule in rule_set.rules}
