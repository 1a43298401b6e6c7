"""Shared FastAPI dependencies."""
from __future__ import annotations

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from commission_desk.core.periods import normalize_month
from commission_desk.database import SessionLocal, get_session
from commission_desk.services import CommissionService


def get_commission_service(db: Session = Depends(get_session)) -> CommissionService:
    return CommissionService(db)


def valid_month(month: str) -> str:
    """Path/query parameter in ``YYYY-MM`` form, normalized."""

    try:
        return normalize_month(month)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


def get_session_factory():
    """Session factory for work that outlives the request, such as background tasks."""

    return SessionLocal
