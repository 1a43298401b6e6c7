"""State machine for monthly commission records.

computed -> pending_approval -> approved | rejected
computed -> approved                 (auto-approval policy, never for flagged records)

``approved`` and ``rejected`` are terminal for a record. Recomputing always
creates a new record that supersedes the previous one.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from commission_desk.core.money import HUNDRED
from commission_desk.errors import AuthorizationError, InvalidTransitionError, StaleRecordError

COMPUTED = "computed"
PENDING_APPROVAL = "pending_approval"
APPROVED = "approved"
REJECTED = "rejected"

STATUS_ENUM = (COMPUTED, PENDING_APPROVAL, APPROVED, REJECTED)

TRANSITIONS: dict[str, tuple[str, ...]] = {
    COMPUTED: (PENDING_APPROVAL, APPROVED),
    PENDING_APPROVAL: (APPROVED, REJECTED),
    APPROVED: (),
    REJECTED: (),
}

ROLE_ENUM = ("user", "approver", "admin")
APPROVAL_ROLES = ("approver", "admin")
ELEVATED_ROLES = ("admin",)


@dataclass(frozen=True)
class Actor:
    """Pre-validated acting user handed in by the caller's auth layer."""

    user_id: Optional[int]
    role: str = "user"

    @property
    def can_approve(self) -> bool:
        return self.role in APPROVAL_ROLES

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES


SYSTEM_ACTOR = Actor(user_id=None, role="admin")


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, ())


def ensure_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(f"Cannot move a commission record from {current} to {target}.")


def exceeds_variance(previous_total: Decimal, new_total: Decimal, threshold_pct: Decimal) -> bool:
    """True when the change against ``previous_total`` is more than ``threshold_pct`` percent."""

    delta = abs(new_total - previous_total)
    if previous_total == 0:
        return delta > 0
    return delta * HUNDRED / abs(previous_total) > threshold_pct


class LifecycleManager:
    """Owns every status change on a commission record."""

    def __init__(self, require_approval: bool = True) -> None:
        self.require_approval = require_approval

    def on_created(self, record: Any, requires_review: bool = False) -> str:
        """Move a freshly computed record to its resting state."""

        record.status = COMPUTED
        record.requires_review = requires_review
        target = PENDING_APPROVAL if (self.require_approval or requires_review) else APPROVED
        self._move(record, target)
        if target == APPROVED:
            record.decided_at = record.computed_at or datetime.now()
        return record.status

    def approve(self, record: Any, actor: Actor, is_current: bool = True) -> Any:
        self._check_decision(record, actor, is_current)
        if record.requires_review and not actor.is_elevated:
            raise AuthorizationError("Records flagged for variance review need an admin to approve.")
        self._move(record, APPROVED)
        record.decided_by = actor.user_id
        record.decided_at = datetime.now()
        return record

    def reject(self, record: Any, actor: Actor, reason: str, is_current: bool = True) -> Any:
        if not (reason or "").strip():
            raise InvalidTransitionError("A rejection reason is required.")
        self._check_decision(record, actor, is_current)
        self._move(record, REJECTED)
        record.decided_by = actor.user_id
        record.decided_at = datetime.now()
        record.rejection_reason = reason.strip()
        return record

    @staticmethod
    def _check_decision(record: Any, actor: Actor, is_current: bool) -> None:
        if not actor.can_approve:
            raise AuthorizationError("Approval authority required.")
        if not is_current:
            raise StaleRecordError(f"Record {record.id} has been superseded by a newer computation.")

    @staticmethod
    def _move(record: Any, target: str) -> None:
        ensure_transition(record.status, target)
        record.status = target
