"""
Order Service - Business Logic Layer
Handles order creation, confirmation and stage advancement with audit logging.

Every stage advancement goes through complete_stage / complete_item_stage:
validate -> resolve next stage -> conditional state write -> timeline entry -> work log.
"""
import os
import uuid
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, List, Any, Tuple

from database import database
from models import (
    Actor, OrderCreate, OrderMaterials, OrderBilling,
    TimelineEntry, StaffWorkLog, StageAction, TimelineAction,
)
from services.order_workflow import (
    Stage, OrderStatus, ItemStatus,
    WORKABLE_ORDER_STATUSES,
    OrderNotFoundError, InvalidTransitionError, StageMismatchError,
    ConcurrentTransitionError,
    require_stage, normalize_active_stages, default_active_stages,
    first_stage, resolve_transition, compute_overall_status,
)
from services.settings_service import get_stage_defaults, apply_stage_defaults
from services.sms_service import normalize_phone
from services import customer_service
from utils.audit import write_audit_record
from pydantic import ValidationError
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)

WORKFLOW_USE_TRANSACTIONS = os.getenv("WORKFLOW_USE_TRANSACTIONS", "false").lower() == "true"

TIMELINE_COLLECTION = "order_timeline"
WORK_LOG_COLLECTION = "staff_work_logs"

# Stage -> (order field, model) a completion at that stage may write
STAGE_PAYLOAD_FIELDS = {
    Stage.MATERIALS.value: ("materials", OrderMaterials),
    Stage.BILLING.value: ("billing", OrderBilling),
}


def generate_order_id() -> str:
    """Generate unique order ID: ORD-YYYYMMDD-XXXXXX"""
    day = datetime.now(timezone.utc).strftime("%Y%m%d")
    short_uuid = uuid.uuid4().hex[:6].upper()
    return f"ORD-{day}-{short_uuid}"


def generate_item_id(order_id: str, index: int) -> str:
    return f"{order_id}-I{index + 1:02d}"


async def create_order(data: OrderCreate, actor: Actor) -> Dict:
    """
    Create a new order in DRAFT status.
    Active stages come from the request or the garment type; unassigned stages
    are filled from the stage defaults. Returns the created order document.
    """
    db = database.get_db()
    now = datetime.now(timezone.utc)
    order_id = generate_order_id()
    customer_phone = normalize_phone(data.customer_phone)

    if data.active_stages:
        active_stages = normalize_active_stages(data.active_stages)
    else:
        active_stages = default_active_stages(data.garment_type, data.include_aari_work)
    if not active_stages:
        raise InvalidTransitionError("An order needs at least one active stage")

    defaults = await get_stage_defaults()
    for stage in data.assigned_staff:
        require_stage(stage)
    assigned_staff = apply_stage_defaults(data.assigned_staff, defaults, active_stages)

    items = []
    for index, item in enumerate(data.items):
        items.append({
            "item_id": generate_item_id(order_id, index),
            "item_name": item.item_name,
            "garment_type": item.garment_type.value,
            "quantity": item.quantity,
            "current_stage": None,
            "status": ItemStatus.DRAFT.value,
            "active_stages": normalize_active_stages(item.active_stages) if item.active_stages else None,
            "assigned_staff_id": None,
            "assigned_staff_name": None,
            "measurements": item.measurements,
            "reference_images": item.reference_images,
            "design_notes": item.design_notes,
            "customer_name": data.customer_name,
        })

    order_doc = {
        "order_id": order_id,

        # Customer
        "customer_id": data.customer_id,
        "customer_name": data.customer_name,
        "customer_phone": customer_phone,
        "customer_address": data.customer_address,

        # Garment & workflow
        "garment_type": data.garment_type.value,
        "status": OrderStatus.DRAFT.value,
        "current_stage": Stage.INTAKE.value,
        "active_stages": active_stages,
        "assigned_staff": assigned_staff,
        "items": items,
        **compute_overall_status(items),

        # Stage data
        "measurements": data.measurements,
        "sampler_images": data.sampler_images,
        "planned_materials": [m.model_dump() for m in data.planned_materials],
        "design_notes": data.design_notes,
        "materials": None,
        "billing": None,
        "marking_tasks": {},

        # Tracking
        "due_date": data.due_date,
        "created_by_staff_id": actor.staff_id,
        "created_at": now,
        "updated_at": now,
        "confirmed_at": None,
        "completed_at": None,
        "delivered_at": None,
    }

    await db.orders.insert_one(order_doc)
    logger.info(f"Order created: {order_id} ({data.garment_type.value}, {len(items)} items) by {actor.staff_id}")
    order_doc.pop("_id", None)

    try:
        await customer_service.record_order(
            customer_phone, data.customer_name, order_id, address=data.customer_address
        )
    except PyMongoError as e:
        logger.error(f"Customer profile not updated for order {order_id}: {e}")

    # Taking the order is the intake stage's completion
    pending = []
    for collection, id_field, record in build_audit_records(
        order_id, actor, Stage.INTAKE.value, TimelineAction.COMPLETED
    ):
        if not await write_audit_record(collection, record, id_field):
            pending.append(collection)

    return {**order_doc, "audit_pending": pending}


async def get_order(order_id: str) -> Dict:
    db = database.get_db()
    order = await db.orders.find_one({"order_id": order_id}, {"_id": 0})
    if not order:
        raise OrderNotFoundError(f"Order not found: {order_id}")
    return order


async def get_orders_for_stage(stage: str, staff_id: Optional[str] = None, limit: int = 200) -> List[Dict]:
    """
    Orders waiting at a stage. With staff_id, only orders nobody is assigned to
    at that stage or that are assigned to this staff member.
    """
    stage = require_stage(stage)
    db = database.get_db()
    query: Dict[str, Any] = {
        "current_stage": stage,
        "status": {"$in": sorted(WORKABLE_ORDER_STATUSES)},
    }
    if staff_id:
        query["$or"] = [
            {f"assigned_staff.{stage}": {"$in": [None, ""]}},
            {f"assigned_staff.{stage}": staff_id},
        ]
    return await db.orders.find(query, {"_id": 0}).sort("due_date", 1).to_list(limit)


async def confirm_order(order_id: str) -> Dict:
    """
    Lock an order after customer confirmation.
    The order and its items start at the first active stage after intake.
    """
    db = database.get_db()
    order = await get_order(order_id)
    if order["status"] not in (OrderStatus.DRAFT.value, OrderStatus.OTP_SENT.value):
        raise InvalidTransitionError(
            f"Order {order_id} is {order['status']} and cannot be confirmed"
        )

    now = datetime.now(timezone.utc)
    start = first_stage(order.get("active_stages") or [])
    update_fields = {
        "status": OrderStatus.CONFIRMED_LOCKED.value,
        "current_stage": start,
        "confirmed_at": now,
        "updated_at": now,
    }
    items = order.get("items") or []
    for index, item in enumerate(items):
        item["current_stage"] = first_stage(item.get("active_stages") or order.get("active_stages") or [])
        item["status"] = ItemStatus.IN_PROGRESS.value
        update_fields[f"items.{index}.current_stage"] = item["current_stage"]
        update_fields[f"items.{index}.status"] = item["status"]
    update_fields.update(compute_overall_status(items))

    result = await db.orders.update_one(
        {"order_id": order_id, "status": order["status"]},
        {"$set": update_fields},
    )
    if result.matched_count == 0:
        raise ConcurrentTransitionError(f"Order {order_id} changed while being confirmed")

    logger.info(f"Order {order_id} confirmed; starting at {start}")
    order.update({k: v for k, v in update_fields.items() if not k.startswith("items.")})
    return order


# ============================================================================
# STAGE TRANSITIONS
# ============================================================================

def _require_workable(order: Dict):
    if order.get("status") not in WORKABLE_ORDER_STATUSES:
        raise InvalidTransitionError(
            f"Order {order['order_id']} is {order.get('status')}; "
            f"stages can only be completed on confirmed orders"
        )


def _stage_payload(stage: str, payload: Optional[Dict]) -> Dict:
    """Validate a stage's payload and return the order fields to set."""
    if not payload:
        return {}
    if stage not in STAGE_PAYLOAD_FIELDS:
        raise InvalidTransitionError(f"Stage {stage} does not accept a payload")
    field, model = STAGE_PAYLOAD_FIELDS[stage]
    try:
        return {field: model(**payload).model_dump(mode="json")}
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise InvalidTransitionError(f"Invalid {stage} payload: {problems}") from e


def build_audit_records(
    order_id: str,
    actor: Actor,
    stage: str,
    action: TimelineAction,
    item_id: Optional[str] = None,
    sub_stage: Optional[str] = None,
) -> List[Tuple[str, str, Dict]]:
    """Timeline entry and work log for one completion, sharing a timestamp."""
    entry = TimelineEntry(
        order_id=order_id,
        item_id=item_id,
        staff_id=actor.staff_id,
        role=actor.role.value,
        stage=stage,
        sub_stage=sub_stage,
        action=action,
    )
    work_log = StaffWorkLog(
        staff_id=actor.staff_id,
        role=actor.role.value,
        order_id=order_id,
        item_id=item_id,
        stage=stage,
        sub_stage=sub_stage,
        action=action,
        timestamp=entry.timestamp,
    )
    return [
        (TIMELINE_COLLECTION, "entry_id", entry.model_dump()),
        (WORK_LOG_COLLECTION, "log_id", work_log.model_dump()),
    ]


async def _commit_transition(
    state_filter: Dict,
    state_update: Dict,
    records: List[Tuple[str, str, Dict]],
    array_filters: Optional[List[Dict]] = None,
) -> List[str]:
    """
    Conditional state write followed by the audit appends.
    Returns the collections whose append was queued for retry.
    """
    db = database.get_db()

    if WORKFLOW_USE_TRANSACTIONS:
        client = database.get_client()
        async with await client.start_session() as session:
            async with session.start_transaction():
                result = await db.orders.update_one(
                    state_filter, state_update, array_filters=array_filters, session=session
                )
                if result.matched_count == 0:
                    raise ConcurrentTransitionError(
                        f"Order {state_filter.get('order_id')} was moved by another request"
                    )
                for collection, _, record in records:
                    await db[collection].insert_one(dict(record), session=session)
        return []

    result = await db.orders.update_one(state_filter, state_update, array_filters=array_filters)
    if result.matched_count == 0:
        raise ConcurrentTransitionError(
            f"Order {state_filter.get('order_id')} was moved by another request"
        )

    pending = []
    for collection, id_field, record in records:
        if not await write_audit_record(collection, record, id_field):
            pending.append(collection)
    return pending


async def complete_stage(
    order_id: str,
    stage: str,
    actor: Actor,
    action: StageAction = StageAction.COMPLETE,
    payload: Optional[Dict] = None,
    previous_stage: Optional[str] = None,
) -> Dict:
    """
    Complete the order's current stage and advance it.

    Raises OrderNotFoundError, InvalidTransitionError, StageMismatchError,
    NoNextStageError or ConcurrentTransitionError; nothing is written when any
    of them is raised.
    """
    stage = require_stage(stage)
    order = await get_order(order_id)
    _require_workable(order)

    if order.get("current_stage") != stage:
        raise StageMismatchError(
            f"Order {order_id} is at {order.get('current_stage')}, not {stage}"
        )

    following, status, recorded = resolve_transition(
        stage,
        order.get("active_stages") or [],
        action=action,
        previous_stage=previous_stage,
    )

    now = datetime.now(timezone.utc)
    update_fields = {
        "current_stage": following,
        "status": status,
        "updated_at": now,
        **_stage_payload(stage, payload),
    }
    if status == OrderStatus.COMPLETED.value:
        update_fields["completed_at"] = now

    records = build_audit_records(order_id, actor, stage, recorded)
    pending = await _commit_transition(
        {"order_id": order_id, "current_stage": stage, "status": order["status"]},
        {"$set": update_fields},
        records,
    )

    logger.info(
        f"Order {order_id}: {stage} -> {following or status} "
        f"({recorded.value} by {actor.staff_id}/{actor.role.value})"
    )
    return {
        "order_id": order_id,
        "from_stage": stage,
        "current_stage": following,
        "status": status,
        "action": recorded.value,
        "audit_pending": pending,
    }


async def complete_item_stage(
    order_id: str,
    item_index: int,
    stage: str,
    actor: Actor,
    action: StageAction = StageAction.COMPLETE,
    previous_stage: Optional[str] = None,
    hold: bool = False,
) -> Dict:
    """
    Complete one item's current stage. Items follow the same rules as orders;
    a checker may send an item back, optionally putting it on hold.
    Only the item's own fields are written.
    """
    stage = require_stage(stage)
    order = await get_order(order_id)
    _require_workable(order)

    items = order.get("items") or []
    if item_index < 0 or item_index >= len(items):
        raise OrderNotFoundError(f"Order {order_id} has no item at index {item_index}")
    item = items[item_index]

    if item.get("current_stage") != stage:
        raise StageMismatchError(
            f"Item {item.get('item_id')} is at {item.get('current_stage')}, not {stage}"
        )
    if item.get("status") == ItemStatus.HOLD.value and action != StageAction.COMPLETE:
        raise InvalidTransitionError(f"Item {item.get('item_id')} is on hold")

    following, status, recorded = resolve_transition(
        stage,
        item.get("active_stages") or order.get("active_stages") or [],
        action=action,
        previous_stage=previous_stage,
        hold=hold,
        item_level=True,
    )

    now = datetime.now(timezone.utc)
    prefix = f"items.{item_index}"
    update_fields = {
        f"{prefix}.current_stage": following,
        f"{prefix}.status": status,
        f"{prefix}.updated_at": now,
        "updated_at": now,
    }
    # Work on an item moves a locked order into production
    if order["status"] == OrderStatus.CONFIRMED_LOCKED.value:
        update_fields["status"] = OrderStatus.IN_PROGRESS.value

    item_after = dict(item, status=status)
    summary = compute_overall_status(
        [item_after if i == item_index else other for i, other in enumerate(items)]
    )
    update_fields.update(summary)
    # Last item finished: the order is complete and can be delivered
    if summary["overall_status"] == OrderStatus.COMPLETED.value:
        update_fields["status"] = OrderStatus.COMPLETED.value
        update_fields["current_stage"] = None
        update_fields["completed_at"] = now
    order_status = update_fields.get("status", order["status"])

    records = build_audit_records(order_id, actor, stage, recorded, item_id=item.get("item_id"))
    pending = await _commit_transition(
        {"order_id": order_id, f"{prefix}.current_stage": stage, f"{prefix}.item_id": item.get("item_id")},
        {"$set": update_fields},
        records,
    )

    logger.info(
        f"Item {item.get('item_id')}: {stage} -> {following or status} "
        f"({recorded.value} by {actor.staff_id}/{actor.role.value})"
    )
    return {
        "order_id": order_id,
        "item_id": item.get("item_id"),
        "from_stage": stage,
        "current_stage": following,
        "status": status,
        "action": recorded.value,
        "order_status": order_status,
        "audit_pending": pending,
        **summary,
    }


async def mark_delivered(order_id: str, actor: Actor) -> Dict:
    """Hand a completed order over to the customer."""
    order = await get_order(order_id)
    if order.get("status") != OrderStatus.COMPLETED.value:
        raise InvalidTransitionError(
            f"Order {order_id} is {order.get('status')}; only completed orders can be delivered"
        )

    _, status, recorded = resolve_transition(Stage.DELIVERY.value, order.get("active_stages") or [])

    now = datetime.now(timezone.utc)
    items = [
        dict(i, status=ItemStatus.DELIVERED.value) if i.get("status") == ItemStatus.COMPLETED.value else i
        for i in order.get("items") or []
    ]
    update_fields = {
        "status": status,
        "current_stage": None,
        "delivered_at": now,
        "updated_at": now,
        "items.$[done].status": ItemStatus.DELIVERED.value,
        **compute_overall_status(items),
    }

    records = build_audit_records(order_id, actor, Stage.DELIVERY.value, recorded)
    pending = await _commit_transition(
        {"order_id": order_id, "status": OrderStatus.COMPLETED.value},
        {"$set": update_fields},
        records,
        array_filters=[{"done.status": ItemStatus.COMPLETED.value}],
    )

    logger.info(f"Order {order_id} delivered by {actor.staff_id}")
    if order.get("customer_phone"):
        try:
            await customer_service.record_delivery(order["customer_phone"])
        except PyMongoError as e:
            logger.error(f"Customer delivery count not updated for order {order_id}: {e}")
    return {
        "order_id": order_id,
        "status": status,
        "delivered_at": now,
        "action": recorded.value,
        "audit_pending": pending,
    }


# ============================================================================
# AUDIT READS
# ============================================================================

async def get_order_timeline(order_id: str) -> List[Dict]:
    """Timeline entries for an order, oldest first."""
    db = database.get_db()
    return await db.order_timeline.find(
        {"order_id": order_id},
        {"_id": 0},
    ).sort("timestamp", 1).to_list(1000)


async def get_staff_work_logs(
    staff_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 500,
) -> List[Dict]:
    """Work logs for one staff member, newest first."""
    db = database.get_db()
    query: Dict[str, Any] = {"staff_id": staff_id}
    if start or end:
        query["timestamp"] = {}
        if start:
            query["timestamp"]["$gte"] = start
        if end:
            query["timestamp"]["$lt"] = end
    return await db.staff_work_logs.find(query, {"_id": 0}).sort("timestamp", -1).to_list(limit)
