"""Collaborator interfaces consumed by the engine and their SQL-backed defaults."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Protocol, TypeVar

from sqlalchemy.orm import Session

from commission_desk import crud
from commission_desk.core.facts import PerformanceFacts, TeamAggregates
from commission_desk.core.periods import normalize_month
from commission_desk.core.policy import CommissionPlan
from commission_desk.core.tiers import RateTier
from commission_desk.errors import FactsUnavailableError, RateTableNotFoundError
from commission_desk.models import PerformanceFact

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FactProvider(Protocol):
    def get_facts(self, employee_id: int, month: str) -> PerformanceFacts: ...


class RateTableRepository(Protocol):
    def get_tiers(self, department: str, effective_date: date) -> list[RateTier]: ...

    def get_plan(self, department: str, effective_date: date) -> CommissionPlan: ...


class TeamAggregateProvider(Protocol):
    def get_team_facts(self, team_id: int, month: str) -> TeamAggregates: ...


@dataclass(frozen=True)
class CommissionEvent:
    name: str
    record_id: int
    employee_id: int
    month: str
    status: str
    total_commission: Decimal
    occurred_at: datetime = field(default_factory=datetime.now)
    details: dict[str, Any] = field(default_factory=dict)


class NotificationSink(Protocol):
    def notify(self, event: CommissionEvent) -> None: ...


def facts_from_row(row: PerformanceFact) -> PerformanceFacts:
    return PerformanceFacts(
        employee_id=row.employee_id,
        month=row.month,
        department=row.department,
        team_id=row.team_id,
        active_leads=row.active_leads,
        inbound_leads=row.inbound_leads,
        outbound_leads=row.outbound_leads,
        new_leads=row.new_leads,
        own_leads=row.own_leads,
        completed_loads=row.completed_loads,
        invoice_total=Decimal(row.invoice_total),
        first_two_weeks_invoice_total=Decimal(row.first_two_weeks_invoice_total),
        quality_incidents=row.quality_incidents,
        team_target_met=bool(row.team_target_met),
        tenure_under_two_weeks=bool(row.tenure_under_two_weeks),
        attendance_complete=bool(row.attendance_complete),
        is_team_lead=bool(row.is_team_lead),
    )


class SqlFactProvider:
    """Reads facts through a session of its own.

    The fetch runs on a worker thread when a timeout is configured, and a
    timed-out worker may still be querying after the caller gave up, so it
    must never share the caller's session.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory

    def get_facts(self, employee_id: int, month: str) -> PerformanceFacts:
        with self.session_factory() as db:
            row = crud.get_facts(db, employee_id, month)
            if row is None:
                raise FactsUnavailableError(f"No activity recorded for employee {employee_id} in {month}.")
            if not row.is_complete:
                raise FactsUnavailableError(
                    f"Facts for employee {employee_id} in {month} are still incomplete upstream."
                )
            return facts_from_row(row)


class SqlRateTableRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _table(self, department: str, effective_date: date):
        table = crud.get_rate_table_in_force(self.db, department, effective_date)
        if table is None:
            logger.error("No %s rate table in force on %s", department, effective_date.isoformat())
            raise RateTableNotFoundError(
                f"No {department} rate table is in force on {effective_date.isoformat()}."
            )
        return table

    def get_tiers(self, department: str, effective_date: date) -> list[RateTier]:
        return list(self.get_plan(department, effective_date).tiers)

    def get_plan(self, department: str, effective_date: date) -> CommissionPlan:
        return crud.plan_for_table(self._table(department, effective_date))


class SqlTeamAggregateProvider:
    """Builds the team projection from the members' fact rows."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_team_facts(self, team_id: int, month: str) -> TeamAggregates:
        month = normalize_month(month)
        members = crud.list_team_facts(self.db, team_id, month)
        total_active = sum(member.active_leads for member in members)
        total_invoice = sum((Decimal(member.invoice_total) for member in members), Decimal("0.00"))

        team = crud.get_team(self.db, team_id)
        if team is not None and team.target_active_leads is not None:
            target_met = total_active >= team.target_active_leads
        else:
            target_met = bool(members) and all(member.team_target_met for member in members)

        return TeamAggregates(
            team_id=team_id,
            month=month,
            member_count=len(members),
            total_active_leads=total_active,
            total_invoice_total=total_invoice,
            target_met=target_met,
        )


class LoggingNotificationSink:
    def notify(self, event: CommissionEvent) -> None:
        logger.info(
            "%s: record %s employee %s month %s status %s total %s",
            event.name,
            event.record_id,
            event.employee_id,
            event.month,
            event.status,
            event.total_commission,
        )


def call_with_timeout(func: Callable[..., T], timeout: Optional[float], *args: Any) -> T:
    """Run ``func`` with a deadline; expiry surfaces as ``FactsUnavailableError``."""

    if not timeout or timeout <= 0:
        return func(*args)
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="facts-fetch")
    try:
        future = executor.submit(func, *args)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeoutError:
            raise FactsUnavailableError(f"Fact fetch timed out after {timeout:g}s.") from None
    finally:
        executor.shutdown(wait=False)
