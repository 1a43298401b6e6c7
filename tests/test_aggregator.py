from __future__ import annotations

from decimal import Decimal

import pytest

from commission_desk.core.aggregator import aggregate, compute_base_amount
from commission_desk.core.bonuses import BonusSet, NewLeadBonus, OwnLeadBonus, compute_bonuses
from commission_desk.core.facts import PerformanceFacts
from commission_desk.core.tiers import RateTier
from commission_desk.errors import InvariantViolationError, NegativeCommissionError

TIER = RateTier(
    lower_bound=Decimal("10000"),
    upper_bound=Decimal("20000"),
    fixed_amount=Decimal("500"),
    percentage_rate=Decimal("6"),
)


def _facts(**overrides):
    data = {
        "employee_id": 1,
        "month": "2025-05",
        "department": "dispatch",
        "invoice_total": Decimal("18400.00"),
        "completed_loads": 22,
        "own_leads": 3,
    }
    data.update(overrides)
    return PerformanceFacts(**data)


def test_example_without_penalty():
    facts = _facts()
    bonuses = compute_bonuses([OwnLeadBonus(amount_per_lead=Decimal("50"))], facts)
    result = aggregate(facts, TIER, bonuses, Decimal("0"))

    assert result.base_amount == Decimal("1604.00")
    assert result.bonus_total == Decimal("150.00")
    assert result.gross_commission == Decimal("1754.00")
    assert result.total_commission == Decimal("1754.00")


def test_example_with_attendance_penalty():
    facts = _facts()
    bonuses = compute_bonuses([OwnLeadBonus(amount_per_lead=Decimal("50"))], facts)
    result = aggregate(facts, TIER, bonuses, Decimal("10"))
    assert result.total_commission == Decimal("1578.60")


def test_full_penalty_floors_at_zero():
    result = aggregate(_facts(), TIER, {}, Decimal("100"))
    assert result.total_commission == Decimal("0.00")


def test_penalty_outside_range_is_an_invariant_violation():
    with pytest.raises(InvariantViolationError):
        aggregate(_facts(), TIER, {}, Decimal("100.01"))
    with pytest.raises(InvariantViolationError):
        aggregate(_facts(), TIER, {}, Decimal("-1"))


def test_negative_gross_is_rejected():
    with pytest.raises(NegativeCommissionError):
        aggregate(_facts(), TIER, {"correction": Decimal("-5000")}, Decimal("0"))


def test_removing_a_bonus_changes_total_by_its_amount():
    facts = _facts(new_leads=2)
    bonus_set = BonusSet((OwnLeadBonus(amount_per_lead=Decimal("50")), NewLeadBonus(amount_per_lead=Decimal("20"))))

    full = aggregate(facts, TIER, compute_bonuses(bonus_set, facts), Decimal("0"))
    reduced_bonuses = compute_bonuses(bonus_set.without("new_lead_bonus"), facts)
    reduced = aggregate(facts, TIER, reduced_bonuses, Decimal("0"))

    assert full.total_commission - reduced.total_commission == full.bonus_breakdown["new_lead_bonus"]
    assert reduced.bonus_breakdown["own_lead_bonus"] == full.bonus_breakdown["own_lead_bonus"]
    assert reduced.base_amount == full.base_amount


def test_base_amount_rounds_half_up():
    tier = RateTier(Decimal("0"), None, Decimal("0"), Decimal("2.5"))
    # 2.5% of 100.10 is 2.5025
    assert compute_base_amount(tier, Decimal("100.10")) == Decimal("2.50")
    # 2.5% of 100.30 is 2.5075
    assert compute_base_amount(tier, Decimal("100.30")) == Decimal("2.51")


def test_breakdown_lines_end_with_total():
    facts = _facts()
    result = aggregate(facts, TIER, compute_bonuses([OwnLeadBonus(amount_per_lead=Decimal("50"))], facts), Decimal("10"))
    lines = result.breakdown_lines()
    assert lines[0] == ("Tier 10000-20000 base", Decimal("1604.00"))
    assert lines[-1] == ("Total commission", Decimal("1578.60"))
    assert ("Penalty 10%", Decimal("-175.40")) in lines
