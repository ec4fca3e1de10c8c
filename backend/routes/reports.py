"""
Report Routes
Financial summary, staff performance and individual staff work history.
"""
from fastapi import APIRouter, HTTPException, Depends, Query
from typing import Optional
from datetime import datetime
from middleware import reports_route_guard, require_auth, RequestContext
from services.order_workflow import OVERSEER_ROLES
from services.reporting_service import reporting_service, get_date_range_start, DATE_RANGE_KEYS
from services.order_service import get_staff_work_logs
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["reports"])


def _range_start(range_key: str) -> datetime:
    if range_key not in DATE_RANGE_KEYS:
        raise HTTPException(status_code=400, detail=f"Invalid range: {range_key}")
    return get_date_range_start(range_key)


@router.get("/admin/reports/financial")
async def financial_report(
    range: str = Query("month"),
    garment_type: Optional[str] = None,
    status: Optional[str] = None,
    ctx: RequestContext = Depends(reports_route_guard),
):
    """Revenue, materials cost and profit for orders created in the range."""
    metrics = await reporting_service.aggregate(
        _range_start(range),
        filters={"garment_type": garment_type, "status": status},
    )
    return metrics


@router.get("/admin/reports/staff-performance")
async def staff_performance_report(
    range: str = Query("month"),
    role: Optional[str] = None,
    ctx: RequestContext = Depends(reports_route_guard),
):
    metrics = await reporting_service.staff_performance(_range_start(range), role=role)
    return {"range": range, "staff": metrics}


@router.get("/staff/{staff_id}/work-logs")
async def staff_work_logs(
    staff_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    ctx: RequestContext = Depends(require_auth),
):
    """Staff see their own history; admins and supervisors see anyone's."""
    if staff_id != ctx.staff_id and ctx.role.value not in OVERSEER_ROLES:
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    logs = await get_staff_work_logs(staff_id, start=start, end=end)
    return {"staff_id": staff_id, "logs": logs}
