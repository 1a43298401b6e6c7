"""Tier resolution against versioned, contiguous rate tables."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Optional, Sequence

from commission_desk.core.money import to_decimal
from commission_desk.errors import NoMatchingTierError, TierConfigurationError, TierOverlapError

if TYPE_CHECKING:  # pragma: no cover
    from commission_desk.providers import RateTableRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateTier:
    """Lower-inclusive / upper-exclusive bracket; ``upper_bound=None`` is open-ended."""

    lower_bound: Decimal
    upper_bound: Optional[Decimal]
    fixed_amount: Decimal
    percentage_rate: Decimal

    @classmethod
    def from_dict(cls, data: dict) -> "RateTier":
        upper = data.get("upper_bound")
        return cls(
            lower_bound=to_decimal(data["lower_bound"]),
            upper_bound=to_decimal(upper) if upper not in (None, "") else None,
            fixed_amount=to_decimal(data.get("fixed_amount", 0)),
            percentage_rate=to_decimal(data.get("percentage_rate", 0)),
        )

    @property
    def is_open_ended(self) -> bool:
        return self.upper_bound is None

    @property
    def label(self) -> str:
        if self.upper_bound is None:
            return f"{self.lower_bound}+"
        return f"{self.lower_bound}-{self.upper_bound}"

    def contains(self, value: Decimal) -> bool:
        if value < self.lower_bound:
            return False
        return self.upper_bound is None or value < self.upper_bound


def validate_tiers(tiers: Sequence[RateTier]) -> list[RateTier]:
    """Check a table covers [0, infinity) exactly once and return it sorted."""

    if not tiers:
        raise NoMatchingTierError("Rate table has no tiers.")

    ordered = sorted(tiers, key=lambda tier: tier.lower_bound)
    for tier in ordered:
        if tier.fixed_amount < 0 or tier.percentage_rate < 0:
            raise TierConfigurationError(f"Tier {tier.label} has a negative amount or rate.")
        if tier.upper_bound is not None and tier.upper_bound <= tier.lower_bound:
            raise TierConfigurationError(f"Tier {tier.label} has an empty range.")

    if ordered[0].lower_bound != 0:
        raise NoMatchingTierError(f"Rate table starts at {ordered[0].lower_bound}, not 0.")

    for current, following in zip(ordered, ordered[1:]):
        if current.upper_bound is None or following.lower_bound < current.upper_bound:
            logger.error("Overlapping tiers %s and %s", current.label, following.label)
            raise TierOverlapError(f"Tiers {current.label} and {following.label} overlap.")
        if following.lower_bound > current.upper_bound:
            raise NoMatchingTierError(
                f"Gap between {current.upper_bound} and {following.lower_bound} in rate table."
            )

    if ordered[-1].upper_bound is not None:
        raise NoMatchingTierError(f"Rate table stops at {ordered[-1].upper_bound}; top tier must be open-ended.")

    return ordered


def resolve_tier(tiers: Sequence[RateTier], metric_value) -> RateTier:
    """Return the single tier containing ``metric_value``."""

    value = to_decimal(metric_value)
    if value < 0:
        raise NoMatchingTierError(f"No tier covers negative metric value {value}.")

    matches = [tier for tier in validate_tiers(tiers) if tier.contains(value)]
    if not matches:
        raise NoMatchingTierError(f"No tier covers metric value {value}.")
    return matches[0]


class TierResolver:
    """Looks up the table version in force at a date and resolves within it."""

    def __init__(self, repository: "RateTableRepository") -> None:
        self.repository = repository

    def resolve(self, department: str, metric_value, effective_date: date) -> RateTier:
        tiers = self.repository.get_tiers(department, effective_date)
        return self._resolve(tiers, metric_value, department, effective_date)

    def resolve_in_plan(self, plan, metric_value) -> RateTier:
        """Resolve against a plan already loaded for the month."""

        return self._resolve(plan.tiers, metric_value, plan.department, plan.effective_from)

    def _resolve(self, tiers, metric_value, department: str, effective_date: Optional[date]) -> RateTier:
        try:
            return resolve_tier(tiers, metric_value)
        except TierConfigurationError:
            logger.error(
                "Rate table for %s effective %s cannot resolve %s",
                department,
                effective_date.isoformat() if effective_date else "unknown",
                metric_value,
            )
            raise
