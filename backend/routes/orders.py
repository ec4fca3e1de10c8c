"""
Orders Routes
Intake, staff stage queues, order detail, timeline and hand-over.
Every read that returns an order passes through the privacy projection.
"""
from fastapi import APIRouter, HTTPException, Depends, status
from typing import Optional
from middleware import require_auth, require_roles, RequestContext
from models import UserRole, OrderCreate
from services.order_workflow import WorkflowError, OVERSEER_ROLES, can_work_stage, require_stage
from services import order_service
from services.privacy import project
from utils.http_errors import http_error
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_order(
    data: OrderCreate,
    ctx: RequestContext = Depends(require_roles(UserRole.INTAKE, UserRole.ADMIN, UserRole.SUPERVISOR)),
):
    """Create a draft order at intake."""
    try:
        order = await order_service.create_order(data, ctx.actor)
    except WorkflowError as e:
        raise http_error(e)
    return project(order, ctx.role)


@router.get("/stage/{stage}")
async def list_orders_for_stage(
    stage: str,
    staff_id: Optional[str] = None,
    ctx: RequestContext = Depends(require_auth),
):
    """
    Orders waiting at a stage.
    Stage workers see unassigned orders and their own; admins and supervisors
    see all of them unless they filter by staff_id.
    """
    try:
        stage = require_stage(stage)
    except WorkflowError as e:
        raise http_error(e)
    if not can_work_stage(ctx.role, stage):
        raise HTTPException(status_code=403, detail=f"Role {ctx.role.value} does not work {stage}")
    if ctx.role.value not in OVERSEER_ROLES:
        staff_id = ctx.staff_id

    try:
        orders = await order_service.get_orders_for_stage(stage, staff_id=staff_id)
    except WorkflowError as e:
        raise http_error(e)
    return {"stage": stage, "orders": [project(o, ctx.role) for o in orders], "count": len(orders)}


@router.get("/{order_id}")
async def get_order(order_id: str, ctx: RequestContext = Depends(require_auth)):
    try:
        order = await order_service.get_order(order_id)
    except WorkflowError as e:
        raise http_error(e)
    return project(order, ctx.role)


@router.get("/{order_id}/timeline")
async def get_order_timeline(order_id: str, ctx: RequestContext = Depends(require_auth)):
    """Timeline entries, oldest first."""
    try:
        await order_service.get_order(order_id)
    except WorkflowError as e:
        raise http_error(e)
    timeline = await order_service.get_order_timeline(order_id)
    return {"order_id": order_id, "timeline": timeline}


@router.post("/{order_id}/deliver")
async def deliver_order(
    order_id: str,
    ctx: RequestContext = Depends(require_roles(UserRole.DELIVERY, UserRole.ADMIN, UserRole.SUPERVISOR)),
):
    try:
        return await order_service.mark_delivered(order_id, ctx.actor)
    except WorkflowError as e:
        raise http_error(e)
