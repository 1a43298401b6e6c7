from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

import pytest

from commission_desk.core.lifecycle import (
    APPROVED,
    COMPUTED,
    PENDING_APPROVAL,
    REJECTED,
    Actor,
    LifecycleManager,
    can_transition,
    exceeds_variance,
)
from commission_desk.errors import AuthorizationError, InvalidTransitionError, StaleRecordError

APPROVER = Actor(user_id=2, role="approver")
ADMIN = Actor(user_id=1, role="admin")
CLERK = Actor(user_id=3, role="user")


@dataclass
class _Record:
    id: int = 1
    status: str = COMPUTED
    requires_review: bool = False
    computed_at: Optional[datetime] = None
    decided_by: Optional[int] = None
    decided_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None


def test_transition_table():
    assert can_transition(COMPUTED, PENDING_APPROVAL)
    assert can_transition(COMPUTED, APPROVED)
    assert can_transition(PENDING_APPROVAL, REJECTED)
    assert not can_transition(APPROVED, PENDING_APPROVAL)
    assert not can_transition(REJECTED, APPROVED)
    assert not can_transition(COMPUTED, REJECTED)


def test_new_records_wait_for_approval_by_default():
    record = _Record()
    assert LifecycleManager(require_approval=True).on_created(record) == PENDING_APPROVAL
    assert record.decided_at is None


def test_auto_approval_policy():
    record = _Record(computed_at=datetime(2025, 6, 1, 9, 0))
    assert LifecycleManager(require_approval=False).on_created(record) == APPROVED
    assert record.decided_at == datetime(2025, 6, 1, 9, 0)


def test_flagged_records_never_auto_approve():
    record = _Record()
    assert LifecycleManager(require_approval=False).on_created(record, requires_review=True) == PENDING_APPROVAL
    assert record.requires_review is True


def test_approve_needs_approval_role():
    manager = LifecycleManager()
    record = _Record()
    manager.on_created(record)
    with pytest.raises(AuthorizationError):
        manager.approve(record, CLERK)
    manager.approve(record, APPROVER)
    assert record.status == APPROVED
    assert record.decided_by == APPROVER.user_id


def test_flagged_record_needs_admin():
    manager = LifecycleManager()
    record = _Record()
    manager.on_created(record, requires_review=True)
    with pytest.raises(AuthorizationError):
        manager.approve(record, APPROVER)
    manager.approve(record, ADMIN)
    assert record.status == APPROVED


def test_superseded_record_cannot_be_decided():
    manager = LifecycleManager()
    record = _Record()
    manager.on_created(record)
    with pytest.raises(StaleRecordError):
        manager.approve(record, ADMIN, is_current=False)
    with pytest.raises(StaleRecordError):
        manager.reject(record, ADMIN, "wrong month", is_current=False)


def test_reject_requires_reason_and_is_terminal():
    manager = LifecycleManager()
    record = _Record()
    manager.on_created(record)
    with pytest.raises(InvalidTransitionError):
        manager.reject(record, APPROVER, "   ")
    manager.reject(record, APPROVER, "  invoice disputed ")
    assert record.status == REJECTED
    assert record.rejection_reason == "invoice disputed"
    with pytest.raises(InvalidTransitionError):
        manager.approve(record, ADMIN)


def test_variance_threshold():
    threshold = Decimal("10")
    assert not exceeds_variance(Decimal("1000"), Decimal("1100"), threshold)
    assert exceeds_variance(Decimal("1000"), Decimal("1100.01"), threshold)
    assert exceeds_variance(Decimal("1000"), Decimal("899.99"), threshold)
    assert not exceeds_variance(Decimal("0"), Decimal("0"), threshold)
    assert exceeds_variance(Decimal("0"), Decimal("0.01"), threshold)
