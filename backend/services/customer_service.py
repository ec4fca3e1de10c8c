"""
Customer registry
Profiles keyed by normalised phone number, upserted at intake; orders are
grouped by the same phone number.
"""
from database import database
from models import Customer, utcnow
from services.sms_service import normalize_phone
from pymongo.errors import DuplicateKeyError
from typing import Dict, List, Optional
import re
import logging

logger = logging.getLogger(__name__)

CUSTOMER_SORTS = {
    "recent": ("last_order_date", -1),
    "orders": ("total_orders", -1),
    "name": ("name", 1),
}


async def record_order(phone: str, name: str, order_id: str, address: str = "") -> None:
    """
    Create the customer on first order, otherwise refresh name/address and
    count the order. Re-recording the same order does not double-count it.
    """
    phone = normalize_phone(phone)
    db = database.get_db()
    now = utcnow()

    fields = {"name": name, "updated_at": now, "last_order_date": now}
    if address:
        fields["address"] = address
    on_insert = {"phone_number": phone, "created_at": now, "delivered_orders": 0}
    if not address:
        on_insert["address"] = ""

    try:
        result = await db.customers.update_one(
            {"phone_number": phone, "order_ids": {"$ne": order_id}},
            {
                "$set": fields,
                "$setOnInsert": on_insert,
                "$inc": {"total_orders": 1},
                "$push": {"order_ids": order_id},
            },
            upsert=True,
        )
    except DuplicateKeyError:
        # Profile exists and already lists this order
        logger.info(f"Order {order_id} already recorded for its customer")
        return
    if result.upserted_id is not None:
        logger.info(f"Customer created for order {order_id}")


async def record_delivery(phone: str) -> None:
    db = database.get_db()
    await db.customers.update_one(
        {"phone_number": normalize_phone(phone)},
        {"$inc": {"delivered_orders": 1}, "$set": {"updated_at": utcnow()}},
    )


async def get_customer(phone: str) -> Optional[Customer]:
    db = database.get_db()
    doc = await db.customers.find_one({"phone_number": normalize_phone(phone)}, {"_id": 0})
    return Customer(**doc) if doc else None


async def list_customers(search: Optional[str] = None, sort_by: str = "recent", limit: int = 500) -> List[Customer]:
    """Customers matching a name or phone fragment."""
    field, direction = CUSTOMER_SORTS.get(sort_by, CUSTOMER_SORTS["recent"])
    query: Dict = {}
    if search and search.strip():
        term = re.escape(search.strip())
        query["$or"] = [
            {"name": {"$regex": term, "$options": "i"}},
            {"phone_number": {"$regex": term}},
        ]
    db = database.get_db()
    docs = await db.customers.find(query, {"_id": 0}).sort(field, direction).to_list(limit)
    return [Customer(**d) for d in docs]


async def get_orders_by_customer_phone(phone: str, limit: int = 200) -> List[Dict]:
    """Every order for the phone number, newest first."""
    db = database.get_db()
    return await db.orders.find(
        {"customer_phone": normalize_phone(phone)},
        {"_id": 0},
    ).sort("created_at", -1).to_list(limit)
