"""
Assignment Routes
Admins and supervisors move work between staff; every move is logged.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from typing import Optional, List
from middleware import overseer_route_guard, RequestContext
from models import Assignment, StaffRef, TaskRef
from services.order_workflow import WorkflowError
from services import assignment_service
from utils.http_errors import http_error
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/assignments", tags=["assignments"])


class AssignRequest(BaseModel):
    target: TaskRef = Field(..., discriminator="kind")
    staff: StaffRef
    current_staff: Optional[StaffRef] = None


class BulkAssignRequest(BaseModel):
    assignments: List[Assignment]
    staff: StaffRef


@router.post("")
async def assign(body: AssignRequest, ctx: RequestContext = Depends(overseer_route_guard)):
    try:
        log = await assignment_service.assign(
            body.target, body.staff, ctx.actor, current_staff=body.current_staff
        )
    except WorkflowError as e:
        raise http_error(e)
    return {"success": True, "log": log}


@router.post("/bulk")
async def bulk_assign(body: BulkAssignRequest, ctx: RequestContext = Depends(overseer_route_guard)):
    """Best effort: each target is assigned independently."""
    try:
        count = await assignment_service.bulk_assign(body.assignments, body.staff, ctx.actor)
    except WorkflowError as e:
        raise http_error(e)
    return {"success_count": count, "total": len(body.assignments)}


@router.get("/order/{order_id}")
async def order_assignment_history(order_id: str, ctx: RequestContext = Depends(overseer_route_guard)):
    logs = await assignment_service.get_assignment_logs_for_order(order_id)
    return {"order_id": order_id, "logs": logs}


@router.get("/staff/{staff_id}")
async def staff_assignment_history(staff_id: str, ctx: RequestContext = Depends(overseer_route_guard)):
    logs = await assignment_service.get_assignment_logs_for_staff(staff_id)
    return {"staff_id": staff_id, "logs": logs}
