"""
Admin Template Routes
Per-garment task templates for the marking, cutting and stitching stages.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import List
from middleware import admin_route_guard, RequestContext
from models import GarmentType, TemplateTask
from services.order_workflow import WorkflowError
from services import template_service
from utils.http_errors import http_error
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/templates", tags=["admin-templates"])


class TemplateUpdateRequest(BaseModel):
    tasks: List[TemplateTask]


@router.get("/{stage}")
async def list_templates(stage: str, ctx: RequestContext = Depends(admin_route_guard)):
    try:
        templates = await template_service.list_templates(stage)
    except WorkflowError as e:
        raise http_error(e)
    return {"stage": stage, "templates": templates}


@router.get("/{stage}/{garment_type}")
async def get_template(stage: str, garment_type: GarmentType, ctx: RequestContext = Depends(admin_route_guard)):
    try:
        return await template_service.get_template(stage, garment_type.value)
    except WorkflowError as e:
        raise http_error(e)


@router.put("/{stage}/{garment_type}")
async def save_template(
    stage: str,
    garment_type: GarmentType,
    body: TemplateUpdateRequest,
    ctx: RequestContext = Depends(admin_route_guard),
):
    """Applies to orders whose tasks are created after this call."""
    try:
        template = await template_service.save_template(stage, garment_type.value, body.tasks)
    except WorkflowError as e:
        raise http_error(e)
    logger.info(f"Template {stage}/{garment_type.value} updated by {ctx.staff_id}")
    return template
