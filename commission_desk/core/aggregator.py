"""Composition of tier, bonuses and penalty into a final commission."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping

from commission_desk.core.facts import PerformanceFacts
from commission_desk.core.money import HUNDRED, ZERO, quantize_money, sum_money
from commission_desk.core.penalties import penalty_factor
from commission_desk.core.tiers import RateTier
from commission_desk.errors import InvariantViolationError, NegativeCommissionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommissionComputation:
    """Unsaved result of one computation, plus what is needed to audit it."""

    facts: PerformanceFacts
    metric_name: str
    metric_value: Decimal
    tier: RateTier
    base_amount: Decimal
    bonus_breakdown: Mapping[str, Decimal]
    bonus_total: Decimal
    penalty_pct: Decimal
    gross_commission: Decimal
    total_commission: Decimal
    penalty_breakdown: Mapping[str, Decimal] = field(default_factory=dict)

    def breakdown_lines(self) -> list[tuple[str, Decimal]]:
        """Human-auditable lines in the order they were applied."""

        lines = [(f"Tier {self.tier.label} base", self.base_amount)]
        lines.extend((name, amount) for name, amount in sorted(self.bonus_breakdown.items()))
        lines.append(("Gross commission", self.gross_commission))
        if self.penalty_pct:
            lines.append((f"Penalty {self.penalty_pct}%", self.total_commission - self.gross_commission))
        lines.append(("Total commission", self.total_commission))
        return lines


def compute_base_amount(tier: RateTier, metric_value: Decimal) -> Decimal:
    return quantize_money(tier.fixed_amount + metric_value * tier.percentage_rate / HUNDRED)


def aggregate(
    facts: PerformanceFacts,
    tier: RateTier,
    bonuses: Mapping[str, Decimal],
    penalty_pct: Decimal,
    metric_name: str = "invoice_total",
    penalty_breakdown: Mapping[str, Decimal] | None = None,
) -> CommissionComputation:
    """Compose ``base + bonuses`` and apply the penalty, all in Decimal."""

    if penalty_pct < 0 or penalty_pct > HUNDRED:
        logger.error("Penalty %s%% outside [0, 100] for %s %s", penalty_pct, facts.employee_id, facts.month)
        raise InvariantViolationError(f"Penalty percentage {penalty_pct} is outside [0, 100].")

    metric_value = facts.metric_value(metric_name)
    base_amount = compute_base_amount(tier, metric_value)
    rounded_bonuses = {name: quantize_money(amount) for name, amount in bonuses.items()}
    bonus_total = sum_money(rounded_bonuses.values())
    gross = quantize_money(base_amount + bonus_total)

    if gross < 0:
        logger.error(
            "Negative gross commission %s for employee %s in %s (base %s, bonuses %s)",
            gross,
            facts.employee_id,
            facts.month,
            base_amount,
            bonus_total,
        )
        raise NegativeCommissionError(
            f"Gross commission {gross} is negative for employee {facts.employee_id} in {facts.month}."
        )

    total = max(ZERO, quantize_money(gross * penalty_factor(penalty_pct)))

    return CommissionComputation(
        facts=facts,
        metric_name=metric_name,
        metric_value=metric_value,
        tier=tier,
        base_amount=base_amount,
        bonus_breakdown=rounded_bonuses,
        bonus_total=bonus_total,
        penalty_pct=penalty_pct,
        gross_commission=gross,
        total_commission=total,
        penalty_breakdown=dict(penalty_breakdown or {}),
    )
