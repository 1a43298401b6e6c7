"""Performance facts intake; every change schedules a recalculation."""
from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session

from commission_desk import crud
from commission_desk.auth import User
from commission_desk.core.lifecycle import Actor
from commission_desk.database import get_session
from commission_desk.dependencies import get_session_factory, valid_month
from commission_desk.errors import CommissionError
from commission_desk.routers.auth import get_admin_user, get_current_user
from commission_desk.schemas import PerformanceFactsIn, PerformanceFactsRead
from commission_desk.services import CommissionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/facts", tags=["Facts"])


def recalculate_in_background(session_factory, employee_id: int, month: str, actor: Actor) -> None:
    """Run a fact-change recalculation on its own session."""

    session = session_factory()
    try:
        CommissionService(session).recalculate_or_current(employee_id, month, actor)
    except CommissionError as exc:
        logger.warning("Background recalculation of %s:%s failed: %s", employee_id, month, exc)
    finally:
        session.close()


@router.put("/{employee_id}/{month}", response_model=PerformanceFactsRead)
def put_facts(
    employee_id: int,
    payload: PerformanceFactsIn,
    background_tasks: BackgroundTasks,
    month: str = Depends(valid_month),
    db: Session = Depends(get_session),
    session_factory=Depends(get_session_factory),
    admin: User = Depends(get_admin_user),
):
    row = crud.upsert_facts(db, employee_id, month, payload)
    if row.is_complete:
        background_tasks.add_task(recalculate_in_background, session_factory, employee_id, month, admin.as_actor())
    return row


@router.get("/{employee_id}/{month}", response_model=PerformanceFactsRead)
def get_facts(
    employee_id: int,
    month: str = Depends(valid_month),
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    row = crud.get_facts(db, employee_id, month)
    if row is None:
        raise HTTPException(status_code=404, detail="No facts recorded")
    return row
