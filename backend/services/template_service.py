"""
Stage Task Templates
Per-garment task lists for the marking, cutting and stitching stages, and the
task instances created from them when an order reaches one of those stages.

Marking tasks live on the order (orders.marking_tasks.{task_id});
cutting and stitching tasks are documents in cutting_tasks / stitching_tasks.
Editing a template only affects orders instantiated afterwards.
"""
import re
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any

from database import database
from models import (
    Actor, GarmentType, StageTemplate, TemplateTask, TaskStatus, TimelineAction,
)
from services.order_workflow import WorkflowError, InvalidTransitionError, OrderNotFoundError
from services.order_service import build_audit_records
from utils.audit import write_audit_record

logger = logging.getLogger(__name__)


class TemplateStageError(WorkflowError):
    """The stage has no task templates."""
    pass


class TaskNotFoundError(WorkflowError):
    pass


TEMPLATE_COLLECTIONS = {
    "marking": "marking_templates",
    "cutting": "cutting_templates",
    "stitching": "stitching_templates",
}

EMBEDDED_TASK_FIELD = {"marking": "marking_tasks"}
TASK_COLLECTIONS = {"cutting": "cutting_tasks", "stitching": "stitching_tasks"}


def _tasks(*names_and_flags) -> List[Dict[str, Any]]:
    """Build an ordered task list from (name, is_mandatory) pairs."""
    return [
        {"task_name": name, "task_order": order, "is_mandatory": mandatory}
        for order, (name, mandatory) in enumerate(names_and_flags, start=1)
    ]


_BLOUSE_MARKING = _tasks(
    ("Front Neck Marking", True),
    ("Back Neck Marking", True),
    ("Sleeve / Putty Marking", True),
    ("Marking Quality Check", True),
)
_REPAIR_MARKING = _tasks(("Repair Area Marking", True), ("Marking Quality Check", True))

DEFAULT_TEMPLATES: Dict[str, Dict[str, List[Dict[str, Any]]]] = {
    "marking": {
        "blouse": _BLOUSE_MARKING,
        "lining_blouse": _BLOUSE_MARKING,
        "sada_blouse": _BLOUSE_MARKING,
        "chudi": _tasks(("Body Panel Marking", True), ("Sleeve Marking", True), ("Marking Quality Check", True)),
        "frock": _tasks(
            ("Yoke Marking", True),
            ("Flare / Skirt Marking", True),
            ("Sleeve Marking", False),
            ("Marking Quality Check", True),
        ),
        "pavadai_sattai": _tasks(("Waist Marking", True), ("Length Marking", True), ("Marking Quality Check", True)),
        "aari_blouse": _REPAIR_MARKING,
        "aari_pavada_sattai": _REPAIR_MARKING,
        "rework": _REPAIR_MARKING,
        "other": _tasks(("General Marking", True), ("Marking Quality Check", True)),
    },
    "cutting": {
        "blouse": _tasks(
            ("Lining Cutting", True),
            ("Main Fabric Cutting", True),
            ("Sleeve Cutting", True),
            ("Cutting Quality Check", True),
        ),
        "lining_blouse": _tasks(
            ("Lining Cutting", True),
            ("Main Fabric Cutting", True),
            ("Sleeve Cutting", True),
            ("Cutting Quality Check", True),
        ),
        "sada_blouse": _tasks(
            ("Main Fabric Cutting", True),
            ("Sleeve Cutting", True),
            ("Hem/Patti Cutting", True),
            ("Cutting Quality Check", True),
        ),
        "chudi": _tasks(
            ("Body Panel Cutting", True),
            ("Sleeve Cutting", True),
            ("Collar Cutting", False),
            ("Cutting Quality Check", True),
        ),
        "top": _tasks(("Body Panel Cutting", True), ("Sleeve Cutting", True), ("Cutting Quality Check", True)),
        "pant": _tasks(
            ("Pant Panel Cutting", True),
            ("Waist Band Cutting", True),
            ("Pocket Cutting", False),
            ("Cutting Quality Check", True),
        ),
        "frock": _tasks(
            ("Yoke Cutting", True),
            ("Skirt Cutting", True),
            ("Sleeve Cutting", False),
            ("Cutting Quality Check", True),
        ),
        "lehenga": _tasks(
            ("Lehenga Panel Cutting", True),
            ("Waist Band Cutting", True),
            ("Blouse/Top Cutting", True),
            ("Cutting Quality Check", True),
        ),
        "pavadai_sattai": _tasks(("Pavadai Cutting", True), ("Sattai Cutting", True), ("Cutting Quality Check", True)),
        "aari_blouse": _tasks(("Repair Piece Cutting", True), ("Cutting Quality Check", True)),
        "aari_pavada_sattai": _tasks(("Repair Piece Cutting", True), ("Cutting Quality Check", True)),
        "rework": _tasks(("Assessment", True), ("Opening/Cutting", True), ("Cutting Quality Check", True)),
        "other": _tasks(("General Cutting", True), ("Cutting Quality Check", True)),
    },
    "stitching": {
        "blouse": _tasks(
            ("Body Stitching", True),
            ("Sleeve Attachment", True),
            ("Neck Finishing", True),
            ("Hook & Button", True),
            ("Stitching Quality Check", True),
        ),
        "lining_blouse": _tasks(
            ("Body Stitching", True),
            ("Sleeve Attachment", True),
            ("Neck Finishing", True),
            ("Hook & Button", True),
            ("Stitching Quality Check", True),
        ),
        "sada_blouse": _tasks(
            ("Body Stitching", True),
            ("Sleeve Attachment", True),
            ("Hemming/Patti", True),
            ("Hook & Button", True),
            ("Stitching Quality Check", True),
        ),
        "chudi": _tasks(
            ("Body Stitching", True),
            ("Sleeve Attachment", True),
            ("Collar Stitching", False),
            ("Side Slit Work", False),
            ("Stitching Quality Check", True),
        ),
        "top": _tasks(
            ("Body Stitching", True),
            ("Sleeve Attachment", True),
            ("Side Slit Work", False),
            ("Stitching Quality Check", True),
        ),
        "pant": _tasks(
            ("Pant Stitching", True),
            ("Waist Band/Elastic", True),
            ("Hemming", False),
            ("Stitching Quality Check", True),
        ),
        "frock": _tasks(
            ("Yoke Stitching", True),
            ("Skirt Pleating", True),
            ("Sleeve Attachment", False),
            ("Trim & Finishing", True),
            ("Stitching Quality Check", True),
        ),
        "lehenga": _tasks(
            ("Lehenga Stitching", True),
            ("Blouse Stitching", True),
            ("Waist Band/Dori", True),
            ("Stitching Quality Check", True),
        ),
        "pavadai_sattai": _tasks(
            ("Pavadai Stitching", True),
            ("Sattai Stitching", True),
            ("Waist Band", True),
            ("Stitching Quality Check", True),
        ),
        "aari_blouse": _tasks(("Repair Stitching", True), ("Stitching Quality Check", True)),
        "aari_pavada_sattai": _tasks(("Repair Stitching", True), ("Stitching Quality Check", True)),
        "rework": _tasks(("Repair Stitching", True), ("Stitching Quality Check", True)),
        "other": _tasks(("Main Stitching", True), ("Finishing Work", True), ("Stitching Quality Check", True)),
    },
}

# action -> (statuses it may start from, resulting status, recorded timeline action)
TASK_ACTIONS = {
    "start": (
        {TaskStatus.NOT_STARTED.value, TaskStatus.NEEDS_REWORK.value},
        TaskStatus.IN_PROGRESS.value,
        TimelineAction.STARTED,
    ),
    "complete": (
        {TaskStatus.NOT_STARTED.value, TaskStatus.IN_PROGRESS.value, TaskStatus.NEEDS_REWORK.value},
        TaskStatus.COMPLETED.value,
        TimelineAction.COMPLETED,
    ),
    "approve": (
        {TaskStatus.COMPLETED.value},
        TaskStatus.APPROVED.value,
        TimelineAction.CHECKED_OK,
    ),
    "reject": (
        {TaskStatus.COMPLETED.value},
        TaskStatus.NEEDS_REWORK.value,
        TimelineAction.CHECKED_REJECT,
    ),
}


def generate_sub_stage_id(task_name: str) -> str:
    """'Lining Cutting' -> 'lining_cutting'"""
    cleaned = re.sub(r"[^a-z0-9\s]", "", task_name.lower()).strip()
    return re.sub(r"\s+", "_", cleaned)


def _require_template_stage(stage: str) -> str:
    if stage not in TEMPLATE_COLLECTIONS:
        raise TemplateStageError(f"Stage {stage} has no task templates")
    return stage


def default_template(stage: str, garment_type: str) -> StageTemplate:
    stage = _require_template_stage(stage)
    defaults = DEFAULT_TEMPLATES[stage]
    tasks = defaults.get(garment_type) or defaults["other"]
    return StageTemplate(
        template_id=f"default_{stage}_{garment_type}",
        stage=stage,
        garment_type=garment_type,
        tasks=[TemplateTask(**t) for t in tasks],
    )


async def get_template(stage: str, garment_type: str) -> StageTemplate:
    """Stored template for the garment type, or the built-in default."""
    stage = _require_template_stage(stage)
    db = database.get_db()
    doc = await db[TEMPLATE_COLLECTIONS[stage]].find_one({"garment_type": garment_type}, {"_id": 0})
    if doc:
        return StageTemplate(**{**doc, "stage": stage})
    return default_template(stage, garment_type)


async def list_templates(stage: str) -> List[StageTemplate]:
    """Every garment type's template for a stage, stored ones first."""
    stage = _require_template_stage(stage)
    db = database.get_db()
    stored = await db[TEMPLATE_COLLECTIONS[stage]].find({}, {"_id": 0}).to_list(100)
    templates = [StageTemplate(**{**doc, "stage": stage}) for doc in stored]
    seen = {t.garment_type for t in templates}
    for garment_type in GarmentType:
        if garment_type not in seen:
            templates.append(default_template(stage, garment_type.value))
    return templates


async def save_template(stage: str, garment_type: str, tasks: List[TemplateTask]) -> StageTemplate:
    """Replace a garment type's template. Existing orders keep their tasks."""
    stage = _require_template_stage(stage)
    if not tasks:
        raise InvalidTransitionError("A template needs at least one task")

    ordered = sorted(tasks, key=lambda t: t.task_order)
    db = database.get_db()
    collection = db[TEMPLATE_COLLECTIONS[stage]]
    existing = await collection.find_one({"garment_type": garment_type}, {"_id": 0})

    now = datetime.now(timezone.utc)
    template = StageTemplate(
        template_id=existing["template_id"] if existing else f"{stage}_{garment_type}",
        stage=stage,
        garment_type=garment_type,
        tasks=ordered,
        created_at=existing.get("created_at", now) if existing else now,
        updated_at=now,
    )
    doc = template.model_dump(mode="python")
    doc["garment_type"] = template.garment_type.value
    await collection.replace_one({"garment_type": garment_type}, doc, upsert=True)
    logger.info(f"{stage} template saved for {garment_type} ({len(ordered)} tasks)")
    return template


# ============================================================================
# TASK INSTANCES
# ============================================================================

def _task_key(task: TemplateTask) -> str:
    return f"t{task.task_order:02d}_{generate_sub_stage_id(task.task_name)}"


def _new_task(order: Dict, stage: str, task: TemplateTask, task_id: str) -> Dict:
    default_staff = (order.get("assigned_staff") or {}).get(stage)
    return {
        "task_id": task_id,
        "order_id": order["order_id"],
        "stage": stage,
        "task_name": task.task_name,
        "task_order": task.task_order,
        "is_mandatory": task.is_mandatory,
        "sub_stage_id": generate_sub_stage_id(task.task_name),
        "status": TaskStatus.NOT_STARTED.value,
        "assigned_staff_id": default_staff,
        "assigned_staff_name": None,
        "created_at": datetime.now(timezone.utc),
    }


async def instantiate_stage_tasks(order_id: str, stage: str) -> List[Dict]:
    """
    Create the stage's tasks for an order from its garment template.
    Safe to call repeatedly: tasks already present are left untouched.
    """
    stage = _require_template_stage(stage)
    db = database.get_db()
    order = await db.orders.find_one({"order_id": order_id}, {"_id": 0})
    if not order:
        raise OrderNotFoundError(f"Order not found: {order_id}")

    template = await get_template(stage, order.get("garment_type") or "other")

    if stage in EMBEDDED_TASK_FIELD:
        field = EMBEDDED_TASK_FIELD[stage]
        for task in template.tasks:
            key = _task_key(task)
            await db.orders.update_one(
                {"order_id": order_id, f"{field}.{key}": {"$exists": False}},
                {"$set": {f"{field}.{key}": _new_task(order, stage, task, key)}},
            )
    else:
        collection = db[TASK_COLLECTIONS[stage]]
        for task in template.tasks:
            task_id = f"{order_id}_{_task_key(task)}"
            await collection.update_one(
                {"task_id": task_id},
                {"$setOnInsert": _new_task(order, stage, task, task_id)},
                upsert=True,
            )

    tasks = await get_tasks_for_order(order_id, stage)
    logger.info(f"{len(tasks)} {stage} tasks ready for order {order_id}")
    return tasks


async def get_tasks_for_order(order_id: str, stage: str) -> List[Dict]:
    stage = _require_template_stage(stage)
    db = database.get_db()
    if stage in EMBEDDED_TASK_FIELD:
        field = EMBEDDED_TASK_FIELD[stage]
        order = await db.orders.find_one({"order_id": order_id}, {"_id": 0, field: 1})
        if not order:
            raise OrderNotFoundError(f"Order not found: {order_id}")
        tasks = list((order.get(field) or {}).values())
    else:
        tasks = await db[TASK_COLLECTIONS[stage]].find({"order_id": order_id}, {"_id": 0}).to_list(100)
    return sorted(tasks, key=lambda t: t.get("task_order", 0))


def all_tasks_approved(tasks: List[Dict]) -> bool:
    return bool(tasks) and all(t.get("status") == TaskStatus.APPROVED.value for t in tasks)


async def update_task_status(
    stage: str,
    task_id: str,
    action: str,
    actor: Actor,
    order_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> Dict:
    """
    Move a task through not_started -> in_progress -> completed -> approved,
    or back to needs_rework on reject. Records a timeline entry and work log
    with the task's sub-stage.
    """
    stage = _require_template_stage(stage)
    if action not in TASK_ACTIONS:
        raise InvalidTransitionError(f"Unknown task action: {action}")
    allowed_from, new_status, recorded = TASK_ACTIONS[action]

    db = database.get_db()
    now = datetime.now(timezone.utc)
    changes = {"status": new_status, "updated_at": now}
    if notes:
        changes["notes"] = notes
    if action == "start":
        changes["started_at"] = now
    elif action == "complete":
        changes["completed_at"] = now
    elif action == "approve":
        changes["approved_by"] = actor.staff_id
        changes["approved_by_name"] = actor.name
        changes["approved_at"] = now

    if stage in EMBEDDED_TASK_FIELD:
        if not order_id:
            raise InvalidTransitionError(f"{stage} tasks are addressed through their order")
        field = EMBEDDED_TASK_FIELD[stage]
        order = await db.orders.find_one({"order_id": order_id}, {"_id": 0, field: 1})
        task = ((order or {}).get(field) or {}).get(task_id)
        if not task:
            raise TaskNotFoundError(f"Order {order_id} has no {stage} task {task_id}")
        path = f"{field}.{task_id}"
        task_filter = {"order_id": order_id, f"{path}.status": task["status"]}
        update = {"$set": {f"{path}.{k}": v for k, v in changes.items()}}
        target = db.orders
    else:
        target = db[TASK_COLLECTIONS[stage]]
        task = await target.find_one({"task_id": task_id}, {"_id": 0})
        if not task:
            raise TaskNotFoundError(f"Task not found: {stage}/{task_id}")
        task_filter = {"task_id": task_id, "status": task["status"]}
        update = {"$set": changes}

    if task["status"] not in allowed_from:
        raise InvalidTransitionError(
            f"Cannot {action} a task that is {task['status']}"
        )

    result = await target.update_one(task_filter, update)
    if result.matched_count == 0:
        raise InvalidTransitionError(f"Task {task_id} changed while being updated")

    for collection, id_field, record in build_audit_records(
        task["order_id"], actor, stage, recorded, sub_stage=task.get("sub_stage_id")
    ):
        await write_audit_record(collection, record, id_field)

    logger.info(f"Task {task_id} ({stage}) {task['status']} -> {new_status} by {actor.staff_id}")
    return {**task, **changes}
