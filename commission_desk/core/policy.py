"""Commission plans: a rate-table version plus its bonus and penalty rules."""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Mapping, Optional

from commission_desk.core.bonuses import BONUS_KINDS, BonusRule, BonusSet
from commission_desk.core.facts import METRIC_FIELDS
from commission_desk.core.money import to_decimal
from commission_desk.core.penalties import PENALTY_KINDS, PenaltyRule
from commission_desk.core.tiers import RateTier, validate_tiers
from commission_desk.errors import TierConfigurationError


def _coerce(field_type: str, value: Any) -> Any:
    if field_type == "Decimal":
        return to_decimal(value)
    if field_type == "int":
        return int(value)
    return value


def rule_from_config(config: Mapping[str, Any], registry: Mapping[str, type]) -> Any:
    """Build a rule variant from its stored ``{"kind": ..., **params}`` form."""

    kind = config.get("kind")
    if kind not in registry:
        raise TierConfigurationError(f"Unknown rule kind '{kind}'.")
    rule_cls = registry[kind]
    types = {item.name: item.type for item in dataclasses.fields(rule_cls)}
    params = {}
    for key, value in config.items():
        if key == "kind" or value is None:
            continue
        if key not in types:
            raise TierConfigurationError(f"Rule '{kind}' has no parameter '{key}'.")
        params[key] = _coerce(types[key], value)
    return rule_cls(**params)


@dataclass(frozen=True)
class CommissionPlan:
    department: str
    metric: str
    tiers: tuple[RateTier, ...]
    bonuses: BonusSet = field(default_factory=BonusSet)
    penalties: tuple[PenaltyRule, ...] = ()
    effective_from: Optional[date] = None
    rate_table_id: Optional[int] = None

    def __post_init__(self) -> None:
        if self.metric not in METRIC_FIELDS:
            raise TierConfigurationError(f"Unknown tier metric '{self.metric}'.")

    @classmethod
    def from_config(
        cls,
        department: str,
        metric: str,
        tiers: Iterable[Mapping[str, Any]],
        bonus_rules: Iterable[Mapping[str, Any]] = (),
        penalty_rules: Iterable[Mapping[str, Any]] = (),
        effective_from: Optional[date] = None,
        rate_table_id: Optional[int] = None,
    ) -> "CommissionPlan":
        tier_objects = tuple(validate_tiers([RateTier.from_dict(item) for item in tiers]))
        bonuses: tuple[BonusRule, ...] = tuple(rule_from_config(item, BONUS_KINDS) for item in bonus_rules)
        penalties: tuple[PenaltyRule, ...] = tuple(rule_from_config(item, PENALTY_KINDS) for item in penalty_rules)
        return cls(
            department=department,
            metric=metric,
            tiers=tier_objects,
            bonuses=BonusSet(bonuses),
            penalties=penalties,
            effective_from=effective_from,
            rate_table_id=rate_table_id,
        )


# Default plans seeded on first start. Amounts are in the ledger currency.
DEFAULT_PLANS: dict[str, dict[str, Any]] = {
    "sales": {
        "metric": "active_leads",
        "tiers": [
            {"lower_bound": 0, "upper_bound": 2, "fixed_amount": 0, "percentage_rate": 0},
            {"lower_bound": 2, "upper_bound": 3, "fixed_amount": 5000, "percentage_rate": 0},
            {"lower_bound": 3, "upper_bound": 4, "fixed_amount": 10000, "percentage_rate": 0},
            {"lower_bound": 4, "upper_bound": 5, "fixed_amount": 15000, "percentage_rate": 0},
            {"lower_bound": 5, "upper_bound": 6, "fixed_amount": 21500, "percentage_rate": 0},
            {"lower_bound": 6, "upper_bound": 7, "fixed_amount": 28000, "percentage_rate": 0},
            {"lower_bound": 7, "upper_bound": 8, "fixed_amount": 36000, "percentage_rate": 0},
            {"lower_bound": 8, "upper_bound": 9, "fixed_amount": 45000, "percentage_rate": 0},
            {"lower_bound": 9, "upper_bound": 10, "fixed_amount": 55000, "percentage_rate": 0},
            {"lower_bound": 10, "upper_bound": None, "fixed_amount": 70000, "percentage_rate": 0},
        ],
        "bonus_rules": [
            {"kind": "team_lead", "amount_per_active_lead": "1000"},
        ],
        "penalty_rules": [
            {"kind": "no_active_leads", "percentage": "25"},
            {"kind": "attendance", "percentage": "10"},
        ],
    },
    "dispatch": {
        "metric": "invoice_total",
        "tiers": [
            {"lower_bound": 0, "upper_bound": 651, "fixed_amount": 0, "percentage_rate": 0},
            {"lower_bound": 651, "upper_bound": 851, "fixed_amount": 0, "percentage_rate": "2.5"},
            {"lower_bound": 851, "upper_bound": 1501, "fixed_amount": 0, "percentage_rate": 5},
            {"lower_bound": 1501, "upper_bound": 2701, "fixed_amount": 0, "percentage_rate": 10},
            {"lower_bound": 2701, "upper_bound": 3701, "fixed_amount": 0, "percentage_rate": "12.5"},
            {"lower_bound": 3701, "upper_bound": None, "fixed_amount": 0, "percentage_rate": 15},
        ],
        "bonus_rules": [
            {"kind": "own_lead", "amount_per_lead": "3000"},
            {"kind": "new_lead", "amount_per_lead": "2000"},
            {"kind": "first_two_weeks", "percentage": "3"},
            {"kind": "active_trucks", "min_active": 3, "amount_per_lead": "3000"},
            {"kind": "active_lead_milestone", "threshold": 5, "amount_flat": "5000"},
        ],
        "penalty_rules": [
            {"kind": "target_miss", "metric": "invoice_total", "threshold": "650", "percentage": "25"},
            {"kind": "attendance", "percentage": "10"},
        ],
    },
}
