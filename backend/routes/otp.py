"""
Order confirmation OTP API: POST /api/otp/send and POST /api/otp/verify.
Intake staff send the code while the customer is present; verification locks the order.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from typing import Optional
from middleware import require_roles, RequestContext
from models import UserRole
from services.order_workflow import WorkflowError
from services.otp_service import send_otp as otp_send, verify_otp as otp_verify
from services.privacy import project
from utils.http_errors import http_error
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/otp", tags=["otp"])

intake_guard = require_roles(UserRole.INTAKE, UserRole.ADMIN, UserRole.SUPERVISOR)


class OtpSendBody(BaseModel):
    """POST /api/otp/send. phone defaults to the number on the order."""
    order_id: str
    phone: Optional[str] = Field(None, min_length=10)


class OtpVerifyBody(BaseModel):
    """POST /api/otp/verify. code may be omitted while mock mode is on."""
    order_id: str
    code: str = Field("", pattern="^([0-9]{6})?$")


@router.post("/send")
async def otp_send_endpoint(data: OtpSendBody, ctx: RequestContext = Depends(intake_guard)):
    try:
        result = await otp_send(data.order_id, data.phone)
    except WorkflowError as e:
        raise http_error(e)
    return {"ok": True, **result}


@router.post("/verify")
async def otp_verify_endpoint(data: OtpVerifyBody, ctx: RequestContext = Depends(intake_guard)):
    try:
        order = await otp_verify(data.order_id, data.code)
    except WorkflowError as e:
        raise http_error(e)
    return {"ok": True, "status": "verified", "order": project(order, ctx.role)}
