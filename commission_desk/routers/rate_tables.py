"""Rate-table versions: list, fetch and publish."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from commission_desk import crud
from commission_desk.auth import User
from commission_desk.database import get_session
from commission_desk.routers.auth import get_admin_user, get_current_user
from commission_desk.schemas import RateTableCreate, RateTableRead

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rate-tables", tags=["Rate tables"])


@router.get("", response_model=list[RateTableRead])
def list_rate_tables(
    department: Optional[str] = Query(None),
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    return crud.list_rate_tables(db, department)


@router.get("/{rate_table_id}", response_model=RateTableRead)
def get_rate_table(
    rate_table_id: int,
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    table = crud.get_rate_table(db, rate_table_id)
    if table is None:
        raise HTTPException(status_code=404, detail="Rate table not found")
    return table


@router.post("", response_model=RateTableRead, status_code=status.HTTP_201_CREATED)
def publish_rate_table(
    payload: RateTableCreate,
    db: Session = Depends(get_session),
    admin: User = Depends(get_admin_user),
):
    """Publish a new version; existing versions are never edited."""
    try:
        table = crud.create_rate_table(db, payload, created_by=admin.id, commit=False)
        crud.log_admin_action(
            db,
            admin.id,
            "rate_table_published",
            {"department": table.department, "effective_from": table.effective_from.isoformat()},
            entity_type="rate_table",
            entity_id=table.id,
            commit=False,
        )
        db.commit()
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(exc))
    db.refresh(table)
    logger.info("Published %s rate table effective %s (id %s)", table.department, table.effective_from, table.id)
    return table
