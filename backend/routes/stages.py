"""
Stage Routes
Stage completion for orders and items, and the per-stage task checklist.
Only the stage's own role (or admin / supervisor) may act on a stage.
"""
from fastapi import APIRouter, HTTPException, Depends, status
from pydantic import BaseModel
from typing import Optional, Dict, Any
from middleware import require_auth, RequestContext
from models import StageAction
from services.order_workflow import WorkflowError, can_work_stage, require_stage
from services import order_service, template_service
from utils.http_errors import http_error
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["stages"])


class StageCompleteRequest(BaseModel):
    action: StageAction = StageAction.COMPLETE
    previous_stage: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None


class ItemStageCompleteRequest(BaseModel):
    action: StageAction = StageAction.COMPLETE
    previous_stage: Optional[str] = None
    hold: bool = False


class TaskStatusRequest(BaseModel):
    action: str
    order_id: Optional[str] = None
    notes: Optional[str] = None


def _require_stage_role(ctx: RequestContext, stage: str) -> str:
    try:
        stage = require_stage(stage)
    except WorkflowError as e:
        raise http_error(e)
    if not can_work_stage(ctx.role, stage):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Role {ctx.role.value} cannot act on stage {stage}"
        )
    return stage


@router.post("/orders/{order_id}/stages/{stage}/complete")
async def complete_order_stage(
    order_id: str,
    stage: str,
    body: StageCompleteRequest,
    ctx: RequestContext = Depends(require_auth),
):
    """Complete the order's current stage; checkers may approve or reject."""
    stage = _require_stage_role(ctx, stage)
    try:
        return await order_service.complete_stage(
            order_id,
            stage,
            ctx.actor,
            action=body.action,
            payload=body.payload,
            previous_stage=body.previous_stage,
        )
    except WorkflowError as e:
        raise http_error(e)


@router.post("/orders/{order_id}/items/{item_index}/stages/{stage}/complete")
async def complete_item_stage(
    order_id: str,
    item_index: int,
    stage: str,
    body: ItemStageCompleteRequest,
    ctx: RequestContext = Depends(require_auth),
):
    stage = _require_stage_role(ctx, stage)
    try:
        return await order_service.complete_item_stage(
            order_id,
            item_index,
            stage,
            ctx.actor,
            action=body.action,
            previous_stage=body.previous_stage,
            hold=body.hold,
        )
    except WorkflowError as e:
        raise http_error(e)


@router.post("/orders/{order_id}/stages/{stage}/tasks")
async def create_stage_tasks(order_id: str, stage: str, ctx: RequestContext = Depends(require_auth)):
    """Create the stage's checklist from the garment template (idempotent)."""
    stage = _require_stage_role(ctx, stage)
    try:
        tasks = await template_service.instantiate_stage_tasks(order_id, stage)
    except WorkflowError as e:
        raise http_error(e)
    return {"order_id": order_id, "stage": stage, "tasks": tasks}


@router.get("/orders/{order_id}/tasks/{stage}")
async def get_stage_tasks(order_id: str, stage: str, ctx: RequestContext = Depends(require_auth)):
    try:
        tasks = await template_service.get_tasks_for_order(order_id, stage)
    except WorkflowError as e:
        raise http_error(e)
    return {
        "order_id": order_id,
        "stage": stage,
        "tasks": tasks,
        "all_approved": template_service.all_tasks_approved(tasks),
    }


@router.post("/tasks/{stage}/{task_id}/status")
async def update_task_status(
    stage: str,
    task_id: str,
    body: TaskStatusRequest,
    ctx: RequestContext = Depends(require_auth),
):
    """start / complete by the stage worker; approve / reject by its checker."""
    checker_stage = f"{stage}_checker"
    acting_stage = checker_stage if body.action in ("approve", "reject") else stage
    _require_stage_role(ctx, acting_stage)
    try:
        return await template_service.update_task_status(
            stage,
            task_id,
            body.action,
            ctx.actor,
            order_id=body.order_id,
            notes=body.notes,
        )
    except WorkflowError as e:
        raise http_error(e)
