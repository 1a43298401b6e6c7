"""Immutable performance inputs for one employee and month."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Optional

DEPARTMENTS = ("sales", "dispatch")

# Fact fields a rate table may tier on.
METRIC_FIELDS = ("invoice_total", "active_leads", "completed_loads", "own_leads", "new_leads")


@dataclass(frozen=True)
class PerformanceFacts:
    """Snapshot of the upstream counters a computation runs against."""

    employee_id: int
    month: str
    department: str
    team_id: Optional[int] = None
    active_leads: int = 0
    inbound_leads: int = 0
    outbound_leads: int = 0
    new_leads: int = 0
    own_leads: int = 0
    completed_loads: int = 0
    invoice_total: Decimal = Decimal("0.00")
    first_two_weeks_invoice_total: Decimal = Decimal("0.00")
    quality_incidents: int = 0
    team_target_met: bool = False
    tenure_under_two_weeks: bool = False
    attendance_complete: bool = True
    is_team_lead: bool = False

    def metric_value(self, metric: str) -> Decimal:
        if metric not in METRIC_FIELDS:
            raise ValueError(f"Unknown metric '{metric}'.")
        return Decimal(getattr(self, metric))

    def snapshot(self) -> dict[str, Any]:
        """JSON-friendly copy stored on the record for audit."""

        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, Decimal):
                data[key] = str(value)
        return data


@dataclass(frozen=True)
class TeamAggregates:
    """Read-only team projection handed to team-dependent bonus rules."""

    team_id: Optional[int]
    month: str
    member_count: int = 0
    total_active_leads: int = 0
    total_invoice_total: Decimal = Decimal("0.00")
    target_met: bool = False

    @classmethod
    def empty(cls, month: str) -> "TeamAggregates":
        return cls(team_id=None, month=month)
