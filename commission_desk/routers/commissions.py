"""Commission records: read, recalculate, approve, reject, export."""
from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from commission_desk import crud
from commission_desk.auth import User
from commission_desk.database import get_session
from commission_desk.dependencies import get_commission_service, valid_month
from commission_desk.exporting import export_commission_workbook
from commission_desk.routers.auth import get_admin_user, get_current_user
from commission_desk.schemas import (
    CommissionRecordRead,
    RecalculateAllRequest,
    RecalculateAllResponse,
    RecalculateRequest,
    RecalculationFailure,
    RejectRequest,
    TopEarnerRead,
)
from commission_desk.services import CommissionService

router = APIRouter(prefix="/commissions", tags=["Commissions"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.get("", response_model=list[CommissionRecordRead])
def list_commissions(
    month: str = Depends(valid_month),
    department: Optional[str] = Query(None),
    service: CommissionService = Depends(get_commission_service),
    user: User = Depends(get_current_user),
):
    """Current record of every employee for a month, optionally one department."""
    return service.list_monthly_commissions(month, department)


@router.get("/top-earners", response_model=list[TopEarnerRead])
def top_earners(
    month: str = Depends(valid_month),
    department: Optional[str] = Query(None),
    limit: int = Query(5, ge=1, le=100),
    include_previous: bool = Query(False),
    db: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    """Highest current totals of a month, optionally with last month's figure."""
    return crud.top_earners(
        db,
        month,
        department=department,
        limit=limit,
        include_previous=include_previous,
    )


@router.get("/export")
def export_commissions(
    month: str = Depends(valid_month),
    department: Optional[str] = Query(None),
    db: Session = Depends(get_session),
    admin: User = Depends(get_admin_user),
) -> Response:
    content = export_commission_workbook(db, month, department)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filename = f"commissions_{month}_{timestamp}.xlsx"
    return Response(
        content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.post("/recalculate", response_model=CommissionRecordRead)
def recalculate(
    payload: RecalculateRequest,
    service: CommissionService = Depends(get_commission_service),
    admin: User = Depends(get_admin_user),
):
    """Recompute one employee-month; a concurrent caller gets the fresh result."""
    return service.recalculate_or_current(payload.employee_id, payload.month, admin.as_actor())


@router.post("/recalculate-all", response_model=RecalculateAllResponse)
def recalculate_all(
    payload: RecalculateAllRequest,
    service: CommissionService = Depends(get_commission_service),
    admin: User = Depends(get_admin_user),
):
    result = service.recalculate_month(payload.month, admin.as_actor())
    return RecalculateAllResponse(
        month=result.month,
        records=[CommissionRecordRead.model_validate(record) for record in result.records],
        failures=[RecalculationFailure(**asdict(failure)) for failure in result.failures],
    )


@router.get("/records/{record_id}", response_model=CommissionRecordRead)
def commission_record(
    record_id: int,
    service: CommissionService = Depends(get_commission_service),
    user: User = Depends(get_current_user),
):
    return service.get_record(record_id)


@router.post("/records/{record_id}/approve", response_model=CommissionRecordRead)
def approve_record(
    record_id: int,
    service: CommissionService = Depends(get_commission_service),
    user: User = Depends(get_current_user),
):
    return service.approve(record_id, user.as_actor())


@router.post("/records/{record_id}/reject", response_model=CommissionRecordRead)
def reject_record(
    record_id: int,
    payload: RejectRequest,
    service: CommissionService = Depends(get_commission_service),
    user: User = Depends(get_current_user),
):
    return service.reject(record_id, user.as_actor(), payload.reason)


@router.get("/{employee_id}/history", response_model=list[CommissionRecordRead])
def commission_history(
    employee_id: int,
    service: CommissionService = Depends(get_commission_service),
    user: User = Depends(get_current_user),
):
    """Every record of the employee, oldest first, superseded ones included."""
    return service.get_commission_history(employee_id)


@router.get("/{employee_id}/{month}", response_model=CommissionRecordRead)
def monthly_commission(
    employee_id: int,
    month: str = Depends(valid_month),
    service: CommissionService = Depends(get_commission_service),
    user: User = Depends(get_current_user),
):
    return service.get_monthly_commission(employee_id, month)
