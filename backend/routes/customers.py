"""
Customer Routes
Customer profiles and order history by phone number. Only roles that may see
customer details can use these.
"""
from fastapi import APIRouter, HTTPException, Depends, Query
from typing import Optional
from middleware import require_roles, RequestContext
from models import UserRole
from services import customer_service
from services.privacy import CUSTOMER_VISIBLE_ROLES
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/customers", tags=["customers"])

customer_guard = require_roles(*(UserRole(r) for r in sorted(CUSTOMER_VISIBLE_ROLES)))


@router.get("")
async def list_customers(
    search: Optional[str] = None,
    sort_by: str = Query("recent"),
    ctx: RequestContext = Depends(customer_guard),
):
    if sort_by not in customer_service.CUSTOMER_SORTS:
        raise HTTPException(status_code=400, detail=f"Invalid sort: {sort_by}")
    customers = await customer_service.list_customers(search=search, sort_by=sort_by)
    return {"customers": customers, "total": len(customers)}


@router.get("/{phone}")
async def get_customer(phone: str, ctx: RequestContext = Depends(customer_guard)):
    customer = await customer_service.get_customer(phone)
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer


@router.get("/{phone}/orders")
async def get_customer_orders(phone: str, ctx: RequestContext = Depends(customer_guard)):
    """All orders placed under the phone number, newest first."""
    orders = await customer_service.get_orders_by_customer_phone(phone)
    return {"phone_number": phone, "orders": orders}
