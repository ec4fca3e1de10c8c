"""
Assignment Service
Reassigns order items and stage tasks to staff, leaving an audit trail.

Each assignment is one targeted field-path write on the target followed by
exactly one AssignmentAuditLog, including first-time assignments.
"""
from database import database
from models import (
    Actor, StaffRef, Assignment, AssignmentAuditLog, AssignmentTarget,
    EmbeddedTaskRef, StandaloneTaskRef, OrderItemRef, TaskRef,
)
from services.order_workflow import WorkflowError, OVERSEER_ROLES
from utils.audit import write_audit_record
from pymongo.errors import PyMongoError
from datetime import datetime
from typing import Optional, Dict, List, Any
import logging

logger = logging.getLogger(__name__)

ASSIGNMENT_LOG_COLLECTION = "assignment_logs"

# Stage -> order field holding its embedded task map
EMBEDDED_TASK_FIELDS = {
    "marking": "marking_tasks",
}

# Stage -> collection holding its task documents
STANDALONE_TASK_COLLECTIONS = {
    "cutting": "cutting_tasks",
    "stitching": "stitching_tasks",
}


class AssignmentTargetError(WorkflowError):
    """The assignment target does not exist or is not assignable."""
    pass


class AssignmentPermissionError(WorkflowError):
    pass


def _current(doc: Dict, hint: Optional[StaffRef]) -> Optional[StaffRef]:
    if doc.get("assigned_staff_id"):
        return StaffRef(staff_id=doc["assigned_staff_id"], name=doc.get("assigned_staff_name") or "")
    return hint


async def _assign_order_item(ref: OrderItemRef, staff: StaffRef, hint: Optional[StaffRef]) -> Dict:
    db = database.get_db()
    order = await db.orders.find_one({"order_id": ref.order_id}, {"_id": 0, "items": 1})
    if not order:
        raise AssignmentTargetError(f"Order not found: {ref.order_id}")
    items = order.get("items") or []
    if ref.item_index < 0 or ref.item_index >= len(items):
        raise AssignmentTargetError(
            f"Order {ref.order_id} has no item at index {ref.item_index}"
        )
    item = items[ref.item_index]
    prefix = f"items.{ref.item_index}"

    result = await db.orders.update_one(
        {"order_id": ref.order_id, f"{prefix}.item_id": item["item_id"]},
        {"$set": {
            f"{prefix}.assigned_staff_id": staff.staff_id,
            f"{prefix}.assigned_staff_name": staff.name,
        }},
    )
    if result.matched_count == 0:
        raise AssignmentTargetError(f"Item {item['item_id']} moved while being assigned")

    return {
        "item_id": item["item_id"],
        "order_id": ref.order_id,
        "assignment_target": AssignmentTarget.ORDER_ITEM,
        "stage": ref.stage or item.get("current_stage"),
        "sub_stage": None,
        "previous": _current(item, hint),
    }


async def _assign_embedded_task(ref: EmbeddedTaskRef, staff: StaffRef, hint: Optional[StaffRef]) -> Dict:
    field = EMBEDDED_TASK_FIELDS.get(ref.stage)
    if not field:
        raise AssignmentTargetError(f"Stage {ref.stage} has no embedded tasks")

    db = database.get_db()
    order = await db.orders.find_one({"order_id": ref.order_id}, {"_id": 0, field: 1})
    if not order:
        raise AssignmentTargetError(f"Order not found: {ref.order_id}")
    task = (order.get(field) or {}).get(ref.task_key)
    if not task:
        raise AssignmentTargetError(f"Order {ref.order_id} has no {ref.stage} task {ref.task_key}")

    path = f"{field}.{ref.task_key}"
    await db.orders.update_one(
        {"order_id": ref.order_id},
        {"$set": {
            f"{path}.assigned_staff_id": staff.staff_id,
            f"{path}.assigned_staff_name": staff.name,
        }},
    )

    return {
        "item_id": ref.task_key,
        "order_id": ref.order_id,
        "assignment_target": AssignmentTarget.STAGE_TASK,
        "stage": ref.stage,
        "sub_stage": task.get("sub_stage_id"),
        "previous": _current(task, hint),
    }


async def _assign_standalone_task(ref: StandaloneTaskRef, staff: StaffRef, hint: Optional[StaffRef]) -> Dict:
    if STANDALONE_TASK_COLLECTIONS.get(ref.stage) != ref.collection:
        raise AssignmentTargetError(
            f"Collection {ref.collection} does not hold {ref.stage} tasks"
        )

    db = database.get_db()
    task = await db[ref.collection].find_one({"task_id": ref.doc_id}, {"_id": 0})
    if not task:
        raise AssignmentTargetError(f"Task not found: {ref.collection}/{ref.doc_id}")

    await db[ref.collection].update_one(
        {"task_id": ref.doc_id},
        {"$set": {
            "assigned_staff_id": staff.staff_id,
            "assigned_staff_name": staff.name,
        }},
    )

    return {
        "item_id": ref.doc_id,
        "order_id": task.get("order_id"),
        "assignment_target": AssignmentTarget.STAGE_TASK,
        "stage": ref.stage,
        "sub_stage": task.get("sub_stage_id"),
        "previous": _current(task, hint),
    }


_HANDLERS = {
    "order_item": _assign_order_item,
    "embedded": _assign_embedded_task,
    "standalone": _assign_standalone_task,
}


async def assign(
    target: TaskRef,
    staff: StaffRef,
    actor: Actor,
    current_staff: Optional[StaffRef] = None,
) -> Dict:
    """
    Assign a target to a staff member and write the audit log.
    Returns the log document.

    Raises AssignmentTargetError (nothing written) when the target does not exist.
    """
    if actor.role.value not in OVERSEER_ROLES:
        raise AssignmentPermissionError(f"Role {actor.role.value} cannot assign work")

    handler = _HANDLERS.get(getattr(target, "kind", None))
    if handler is None:
        raise AssignmentTargetError(f"Unsupported assignment target: {target!r}")

    applied = await handler(target, staff, current_staff)
    previous: Optional[StaffRef] = applied.pop("previous")

    log = AssignmentAuditLog(
        **applied,
        assigned_from_staff_id=previous.staff_id if previous else None,
        assigned_from_staff_name=previous.name if previous else None,
        assigned_to_staff_id=staff.staff_id,
        assigned_to_staff_name=staff.name,
        assigned_by_staff_id=actor.staff_id,
        assigned_by_staff_name=actor.name,
        assigned_by_role=actor.role.value,
    ).model_dump()

    await write_audit_record(ASSIGNMENT_LOG_COLLECTION, log, "log_id")
    logger.info(
        f"Assigned {log['assignment_target']} {log['item_id']} "
        f"({log['order_id']}/{log['stage']}) "
        f"{log['assigned_from_staff_id'] or '-'} -> {staff.staff_id} by {actor.staff_id}"
    )
    return log


async def bulk_assign(assignments: List[Assignment], staff: StaffRef, actor: Actor) -> int:
    """Assign each target independently; failures are logged and skipped. Returns the success count."""
    success = 0
    for assignment in assignments:
        try:
            await assign(assignment.target, staff, actor, current_staff=assignment.current_staff)
            success += 1
        except AssignmentPermissionError:
            raise
        except (WorkflowError, PyMongoError) as e:
            logger.warning(f"Bulk assignment skipped {assignment.target!r}: {e}")
    logger.info(f"Bulk assignment to {staff.staff_id}: {success}/{len(assignments)} succeeded")
    return success


async def get_assignment_logs_for_order(order_id: str, limit: int = 500) -> List[Dict]:
    db = database.get_db()
    return await db.assignment_logs.find(
        {"order_id": order_id},
        {"_id": 0},
    ).sort("timestamp", -1).to_list(limit)


async def get_assignment_logs_for_staff(staff_id: str, limit: int = 500) -> List[Dict]:
    """Logs where the staff member received or lost work, newest first."""
    db = database.get_db()
    return await db.assignment_logs.find(
        {"$or": [
            {"assigned_to_staff_id": staff_id},
            {"assigned_from_staff_id": staff_id},
        ]},
        {"_id": 0},
    ).sort("timestamp", -1).to_list(limit)


async def get_all_assignment_logs(since: Optional[datetime] = None, limit: int = 1000) -> List[Dict]:
    db = database.get_db()
    query: Dict[str, Any] = {}
    if since:
        query["timestamp"] = {"$gte": since}
    return await db.assignment_logs.find(query, {"_id": 0}).sort("timestamp", -1).to_list(limit)
