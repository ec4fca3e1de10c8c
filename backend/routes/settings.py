"""Admin settings: default staff per stage."""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import Dict
from middleware import admin_route_guard, RequestContext
from services.order_workflow import WorkflowError
from services import settings_service
from utils.http_errors import http_error

router = APIRouter(prefix="/api/admin/settings", tags=["admin-settings"])


class StageDefaultsRequest(BaseModel):
    defaults: Dict[str, str]


@router.get("/stage-defaults")
async def get_stage_defaults(ctx: RequestContext = Depends(admin_route_guard)):
    return await settings_service.get_stage_defaults()


@router.put("/stage-defaults")
async def save_stage_defaults(body: StageDefaultsRequest, ctx: RequestContext = Depends(admin_route_guard)):
    try:
        return await settings_service.save_stage_defaults(body.defaults, updated_by=ctx.staff_id)
    except WorkflowError as e:
        raise http_error(e)
