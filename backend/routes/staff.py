"""
Staff Routes
Staff directory: overseers browse it, staff read their own entry, admins
maintain it.
"""
from fastapi import APIRouter, HTTPException, Depends
from typing import Optional
from middleware import admin_route_guard, overseer_route_guard, require_auth, RequestContext
from models import StaffMemberUpdate, UserRole
from services.order_workflow import WorkflowError, OVERSEER_ROLES
from services import staff_service
from utils.http_errors import http_error
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["staff"])


@router.get("/staff")
async def list_staff(role: Optional[UserRole] = None, ctx: RequestContext = Depends(overseer_route_guard)):
    """Active staff, optionally only those of one role (assignment pickers)."""
    if role:
        staff = await staff_service.get_staff_by_roles([role.value])
    else:
        staff = await staff_service.get_all_active_staff()
    return {"staff": staff}


@router.get("/staff/{staff_id}")
async def get_staff_member(staff_id: str, ctx: RequestContext = Depends(require_auth)):
    if staff_id != ctx.staff_id and ctx.role.value not in OVERSEER_ROLES:
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    member = await staff_service.get_staff_by_id(staff_id)
    if not member:
        raise HTTPException(status_code=404, detail="Staff member not found")
    return member


@router.put("/admin/staff/{staff_id}")
async def save_staff_member(
    staff_id: str,
    body: StaffMemberUpdate,
    ctx: RequestContext = Depends(admin_route_guard),
):
    try:
        member = await staff_service.save_staff(staff_id, body)
    except WorkflowError as e:
        raise http_error(e)
    logger.info(f"Staff {staff_id} updated by {ctx.staff_id}")
    return member
