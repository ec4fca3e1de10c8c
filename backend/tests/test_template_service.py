"""
Stage task templates and task instances.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from conftest import make_cursor, make_db
from models import Actor, TemplateTask, UserRole, GarmentType
from services.order_workflow import InvalidTransitionError
from services.template_service import (
    generate_sub_stage_id, default_template, list_templates, save_template,
    instantiate_stage_tasks, update_task_status, all_tasks_approved,
    TemplateStageError, TaskNotFoundError,
)

CHECKER = Actor(staff_id="S-CHK", name="Meena", role=UserRole.CUTTING_CHECKER)


def test_generate_sub_stage_id():
    assert generate_sub_stage_id("Lining Cutting") == "lining_cutting"
    assert generate_sub_stage_id("Hem/Patti Cutting") == "hempatti_cutting"
    assert generate_sub_stage_id("Hook & Button") == "hook_button"


def test_default_template_falls_back_to_other():
    template = default_template("cutting", "blouse")
    assert [t.task_order for t in template.tasks] == [1, 2, 3, 4]
    assert template.tasks[0].task_name == "Lining Cutting"
    # no marking list for pants
    assert default_template("marking", "pant").tasks[0].task_name == "General Marking"


def test_default_template_rejects_untemplated_stage():
    with pytest.raises(TemplateStageError):
        default_template("billing", "blouse")


@pytest.mark.asyncio
async def test_list_templates_prefers_stored():
    db = make_db()
    db.cutting_templates.find = MagicMock(return_value=make_cursor([
        {"template_id": "T1", "garment_type": "blouse", "tasks": [{"task_name": "Only", "task_order": 1}]},
    ]))
    with patch("services.template_service.database.get_db", return_value=db):
        templates = await list_templates("cutting")

    assert len(templates) == len(GarmentType)
    blouse = [t for t in templates if t.garment_type == GarmentType.BLOUSE]
    assert len(blouse) == 1
    assert blouse[0].tasks[0].task_name == "Only"


@pytest.mark.asyncio
async def test_save_template_orders_tasks_and_keeps_id():
    db = make_db()
    db.stitching_templates.find_one = AsyncMock(return_value={"template_id": "KEEP", "garment_type": "top"})
    db.stitching_templates.replace_one = AsyncMock()
    tasks = [TemplateTask(task_name="B", task_order=2), TemplateTask(task_name="A", task_order=1)]

    with patch("services.template_service.database.get_db", return_value=db):
        template = await save_template("stitching", "top", tasks)

    assert template.template_id == "KEEP"
    assert [t.task_name for t in template.tasks] == ["A", "B"]
    filter_, doc = db.stitching_templates.replace_one.call_args[0][:2]
    assert filter_ == {"garment_type": "top"}
    assert doc["garment_type"] == "top"
    assert db.stitching_templates.replace_one.call_args.kwargs["upsert"] is True


@pytest.mark.asyncio
async def test_save_template_requires_tasks():
    with pytest.raises(InvalidTransitionError):
        await save_template("cutting", "blouse", [])


@pytest.mark.asyncio
async def test_instantiate_cutting_tasks_upserts_without_overwriting():
    db = make_db()
    db.orders.find_one = AsyncMock(return_value={
        "order_id": "ORD-1", "garment_type": "other", "assigned_staff": {"cutting": "S-9"},
    })
    db.cutting_templates.find_one = AsyncMock(return_value=None)
    db.cutting_tasks.update_one = AsyncMock()
    db.cutting_tasks.find = MagicMock(return_value=make_cursor([]))

    with patch("services.template_service.database.get_db", return_value=db):
        await instantiate_stage_tasks("ORD-1", "cutting")

    calls = db.cutting_tasks.update_one.call_args_list
    assert len(calls) == 2
    filter_, update = calls[0][0][:2]
    assert filter_ == {"task_id": "ORD-1_t01_general_cutting"}
    task = update["$setOnInsert"]
    assert task["assigned_staff_id"] == "S-9"
    assert task["status"] == "not_started"
    assert calls[0].kwargs["upsert"] is True


@pytest.mark.asyncio
async def test_instantiate_marking_tasks_embeds_on_order():
    db = make_db()
    db.orders.find_one = AsyncMock(return_value={"order_id": "ORD-1", "garment_type": "other", "marking_tasks": {}})
    db.orders.update_one = AsyncMock()
    db.marking_templates.find_one = AsyncMock(return_value=None)

    with patch("services.template_service.database.get_db", return_value=db):
        await instantiate_stage_tasks("ORD-1", "marking")

    filter_, update = db.orders.update_one.call_args_list[0][0][:2]
    assert filter_ == {"order_id": "ORD-1", "marking_tasks.t01_general_marking": {"$exists": False}}
    assert "marking_tasks.t01_general_marking" in update["$set"]


@pytest.mark.asyncio
async def test_approve_task_records_checker_action():
    db = make_db()
    task = {"task_id": "ORD-1_t01_x", "order_id": "ORD-1", "status": "completed", "sub_stage_id": "x"}
    db.cutting_tasks.find_one = AsyncMock(return_value=task)
    db.cutting_tasks.update_one = AsyncMock(return_value=MagicMock(matched_count=1))
    db.order_timeline.insert_one = AsyncMock()
    db.staff_work_logs.insert_one = AsyncMock()

    with patch("services.template_service.database.get_db", return_value=db):
        updated = await update_task_status("cutting", "ORD-1_t01_x", "approve", CHECKER)

    assert updated["status"] == "approved"
    assert updated["approved_by"] == "S-CHK"
    assert db.cutting_tasks.update_one.call_args[0][0] == {"task_id": "ORD-1_t01_x", "status": "completed"}
    entry = db.order_timeline.insert_one.call_args[0][0]
    assert entry["action"] == "checked_ok"
    assert entry["sub_stage"] == "x"


@pytest.mark.asyncio
async def test_task_status_guards():
    db = make_db()
    db.cutting_tasks.find_one = AsyncMock(return_value={"task_id": "T", "order_id": "O", "status": "not_started"})
    db.stitching_tasks.find_one = AsyncMock(return_value=None)

    with patch("services.template_service.database.get_db", return_value=db):
        with pytest.raises(InvalidTransitionError):
            await update_task_status("cutting", "T", "approve", CHECKER)
        with pytest.raises(InvalidTransitionError):
            await update_task_status("cutting", "T", "finish", CHECKER)
        with pytest.raises(TaskNotFoundError):
            await update_task_status("stitching", "missing", "start", CHECKER)


def test_all_tasks_approved():
    assert not all_tasks_approved([])
    assert all_tasks_approved([{"status": "approved"}, {"status": "approved"}])
    assert not all_tasks_approved([{"status": "approved"}, {"status": "completed"}])
