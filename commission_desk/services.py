"""Application service layer: recalculation trigger and lifecycle entry points."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from commission_desk import crud
from commission_desk.config import Settings, get_settings
from commission_desk.core.aggregator import CommissionComputation, aggregate
from commission_desk.core.bonuses import compute_bonuses
from commission_desk.core.facts import PerformanceFacts, TeamAggregates
from commission_desk.core.lifecycle import SYSTEM_ACTOR, Actor, LifecycleManager, exceeds_variance
from commission_desk.core.penalties import compute_penalty_breakdown, compute_penalty_pct
from commission_desk.core.periods import lock_key, month_start, normalize_month
from commission_desk.core.policy import CommissionPlan
from commission_desk.core.tiers import TierResolver
from commission_desk.errors import (
    ConcurrencyError,
    ConcurrentRecalculationError,
    DataError,
    RecordNotFoundError,
)
from commission_desk.locks import KeyedLockRegistry, recalculation_locks
from commission_desk.models import CommissionRecord
from commission_desk.providers import (
    CommissionEvent,
    FactProvider,
    LoggingNotificationSink,
    NotificationSink,
    RateTableRepository,
    SqlFactProvider,
    SqlRateTableRepository,
    SqlTeamAggregateProvider,
    TeamAggregateProvider,
    call_with_timeout,
)

logger = logging.getLogger(__name__)

RECALCULATED_EVENT = "commission_recalculated"
APPROVED_EVENT = "commission_approved"
REJECTED_EVENT = "commission_rejected"


@dataclass
class RecalculationFailure:
    employee_id: int
    code: str
    detail: str


@dataclass
class BatchResult:
    month: str
    records: list[CommissionRecord] = field(default_factory=list)
    failures: list[RecalculationFailure] = field(default_factory=list)


def _decimal_map_to_json(values) -> str:
    return json.dumps({name: str(amount) for name, amount in values.items()}, sort_keys=True)


class CommissionService:
    """Coordinates commission computations using database state."""

    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        fact_provider: Optional[FactProvider] = None,
        rate_tables: Optional[RateTableRepository] = None,
        team_provider: Optional[TeamAggregateProvider] = None,
        notifier: Optional[NotificationSink] = None,
        locks: Optional[KeyedLockRegistry] = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.fact_provider = fact_provider or SqlFactProvider(
            sessionmaker(bind=db.get_bind(), autoflush=False, autocommit=False, future=True)
        )
        self.rate_tables = rate_tables or SqlRateTableRepository(db)
        self.team_provider = team_provider or SqlTeamAggregateProvider(db)
        self.notifier = notifier or LoggingNotificationSink()
        self.locks = locks or recalculation_locks
        self.tier_resolver = TierResolver(self.rate_tables)
        self.lifecycle = LifecycleManager(require_approval=self.settings.require_approval)

    # --- computation -----------------------------------------------------

    def compute(self, facts: PerformanceFacts) -> tuple[CommissionComputation, CommissionPlan]:
        """Run tier, bonus and penalty evaluation for a facts snapshot. No writes."""

        plan = self.rate_tables.get_plan(facts.department, month_start(facts.month))
        tier = self.tier_resolver.resolve_in_plan(plan, facts.metric_value(plan.metric))

        if facts.team_id is not None:
            team = self.team_provider.get_team_facts(facts.team_id, facts.month)
        else:
            team = TeamAggregates.empty(facts.month)

        bonuses = compute_bonuses(plan.bonuses, facts, team)
        penalty_breakdown = compute_penalty_breakdown(plan.penalties, facts)
        penalty_pct = compute_penalty_pct(plan.penalties, facts)
        computation = aggregate(
            facts,
            tier,
            bonuses,
            penalty_pct,
            metric_name=plan.metric,
            penalty_breakdown=penalty_breakdown,
        )
        return computation, plan

    def recalculate(self, employee_id: int, month: str, actor: Actor = SYSTEM_ACTOR) -> CommissionRecord:
        """Compute and persist a new record for the key, superseding the current one."""

        month = normalize_month(month)
        key = lock_key(employee_id, month)
        with self.locks.hold(key):
            facts = call_with_timeout(
                self.fact_provider.get_facts,
                self.settings.facts_timeout_seconds,
                employee_id,
                month,
            )
            computation, plan = self.compute(facts)
            record = self._persist(computation, plan, actor)

        logger.info(
            "Recalculated %s: tier %s total %s status %s (record %s)",
            key,
            computation.tier.label,
            record.total_commission,
            record.status,
            record.id,
        )
        self._emit(RECALCULATED_EVENT, record, {"supersedes_record_id": record.supersedes_record_id})
        return record

    def recalculate_or_current(self, employee_id: int, month: str, actor: Actor = SYSTEM_ACTOR) -> CommissionRecord:
        """Recalculate, or when another caller holds the key, wait and return its result.

        The wait only counts when the other caller actually wrote a new
        record; otherwise the original concurrency error is raised.
        """

        month = normalize_month(month)
        previous = crud.get_current_record(self.db, employee_id, month)
        previous_id = previous.id if previous is not None else None
        try:
            return self.recalculate(employee_id, month, actor)
        except ConcurrentRecalculationError:
            key = lock_key(employee_id, month)
            logger.info("Recalculation of %s already running; waiting for it", key)
            if not self.locks.wait(key, self.settings.lock_wait_seconds):
                raise
            self.db.expire_all()
            record = crud.get_current_record(self.db, employee_id, month)
            if record is None or record.id == previous_id:
                logger.warning("Concurrent recalculation of %s finished without a new record", key)
                raise
            return record

    def recalculate_month(self, month: str, actor: Actor = SYSTEM_ACTOR) -> BatchResult:
        """Recalculate every employee with facts in ``month``.

        Data and concurrency errors are collected per employee; configuration
        errors and invariant violations stop the batch.
        """

        month = normalize_month(month)
        result = BatchResult(month=month)
        for employee_id in crud.employees_with_facts(self.db, month):
            try:
                result.records.append(self.recalculate(employee_id, month, actor))
            except (DataError, ConcurrencyError) as exc:
                logger.warning("Skipped employee %s for %s: %s", employee_id, month, exc)
                result.failures.append(RecalculationFailure(employee_id, exc.code, exc.message))
        crud.log_admin_action(
            self.db,
            actor.user_id,
            "commissions_recalculated_all",
            {"month": month, "computed": len(result.records), "failed": len(result.failures)},
            entity_type="commission_record",
        )
        return result

    def _persist(self, computation: CommissionComputation, plan: CommissionPlan, actor: Actor) -> CommissionRecord:
        facts = computation.facts
        previous = crud.get_current_record(self.db, facts.employee_id, facts.month)
        superseded_id = previous.id if previous is not None else None

        baseline = crud.get_latest_approved_record(self.db, facts.employee_id, facts.month)
        requires_review = False
        if baseline is not None:
            requires_review = exceeds_variance(
                Decimal(baseline.total_commission),
                computation.total_commission,
                self.settings.variance_threshold_pct,
            )

        tier = computation.tier
        record = CommissionRecord(
            employee_id=facts.employee_id,
            month=facts.month,
            department=facts.department,
            team_id=facts.team_id,
            rate_table_id=plan.rate_table_id,
            metric_name=computation.metric_name,
            metric_value=computation.metric_value,
            tier_lower_bound=tier.lower_bound,
            tier_upper_bound=tier.upper_bound,
            tier_fixed_amount=tier.fixed_amount,
            tier_percentage_rate=tier.percentage_rate,
            base_amount=computation.base_amount,
            bonus_breakdown=_decimal_map_to_json(computation.bonus_breakdown),
            bonus_total=computation.bonus_total,
            penalty_breakdown=_decimal_map_to_json(computation.penalty_breakdown),
            penalty_pct=computation.penalty_pct,
            gross_commission=computation.gross_commission,
            total_commission=computation.total_commission,
            facts_snapshot=json.dumps(facts.snapshot(), sort_keys=True),
            computed_at=datetime.now(),
            computed_by=actor.user_id,
            supersedes_record_id=superseded_id,
        )
        self.lifecycle.on_created(record, requires_review=requires_review)
        if requires_review:
            logger.warning(
                "Recalculation of %s:%s moved total from approved %s to %s; flagged for admin review",
                facts.employee_id,
                facts.month,
                baseline.total_commission,
                computation.total_commission,
            )

        try:
            self.db.add(record)
            self.db.flush()
            crud.log_admin_action(
                self.db,
                actor.user_id,
                RECALCULATED_EVENT,
                {
                    "employee_id": facts.employee_id,
                    "month": facts.month,
                    "total_commission": str(computation.total_commission),
                    "status": record.status,
                    "supersedes_record_id": record.supersedes_record_id,
                },
                entity_type="commission_record",
                entity_id=record.id,
                commit=False,
            )
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.warning(
                "Record %s for %s:%s was superseded by another writer",
                superseded_id,
                facts.employee_id,
                facts.month,
            )
            raise ConcurrentRecalculationError(
                f"Another recalculation for {facts.employee_id}:{facts.month} was saved first."
            ) from exc
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(record)
        return record

    # --- lifecycle -------------------------------------------------------

    def _get_record_or_404(self, record_id: int) -> CommissionRecord:
        record = crud.get_record(self.db, record_id)
        if record is None:
            raise RecordNotFoundError(f"Commission record {record_id} not found.")
        return record

    def approve(self, record_id: int, actor: Actor) -> CommissionRecord:
        record = self._get_record_or_404(record_id)
        self.lifecycle.approve(record, actor, is_current=crud.is_current_record(self.db, record))
        return self._commit_decision(record, actor, APPROVED_EVENT)

    def reject(self, record_id: int, actor: Actor, reason: str) -> CommissionRecord:
        record = self._get_record_or_404(record_id)
        self.lifecycle.reject(record, actor, reason, is_current=crud.is_current_record(self.db, record))
        return self._commit_decision(record, actor, REJECTED_EVENT, {"reason": record.rejection_reason})

    def _commit_decision(self, record: CommissionRecord, actor: Actor, event: str, extra: dict | None = None) -> CommissionRecord:
        try:
            crud.log_admin_action(
                self.db,
                actor.user_id,
                event,
                {"employee_id": record.employee_id, "month": record.month, **(extra or {})},
                entity_type="commission_record",
                entity_id=record.id,
                commit=False,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(record)
        self._emit(event, record, extra)
        return record

    # --- queries ---------------------------------------------------------

    def get_monthly_commission(self, employee_id: int, month: str) -> CommissionRecord:
        record = crud.get_current_record(self.db, employee_id, month)
        if record is None:
            raise RecordNotFoundError(f"No commission computed for employee {employee_id} in {month}.")
        return record

    def get_commission_history(self, employee_id: int) -> Sequence[CommissionRecord]:
        return crud.list_history(self.db, employee_id)

    def get_record(self, record_id: int) -> CommissionRecord:
        return self._get_record_or_404(record_id)

    def list_monthly_commissions(self, month: str, department: Optional[str] = None) -> Sequence[CommissionRecord]:
        """Current record of every employee computed for ``month``."""

        return crud.list_current_records_for_month(self.db, month, department)

    # --- notifications ---------------------------------------------------

    def _emit(self, name: str, record: CommissionRecord, details: dict | None = None) -> None:
        event = CommissionEvent(
            name=name,
            record_id=record.id,
            employee_id=record.employee_id,
            month=record.month,
            status=record.status,
            total_commission=Decimal(record.total_commission),
            details=dict(details or {}),
        )
        try:
            self.notifier.notify(event)
        except Exception:
            logger.exception("Notification %s for record %s failed", name, record.id)
