"""
Assignment service: item and task reassignment with one audit log per success.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from conftest import make_cursor, make_db
from models import (
    Actor, StaffRef, Assignment, UserRole,
    OrderItemRef, EmbeddedTaskRef, StandaloneTaskRef,
)
from services.assignment_service import (
    assign, bulk_assign, get_assignment_logs_for_order, get_assignment_logs_for_staff,
    AssignmentTargetError, AssignmentPermissionError,
)

SUPERVISOR = Actor(staff_id="SUP-1", name="Devi", role=UserRole.SUPERVISOR)
TAILOR = StaffRef(staff_id="S-42", name="Kumar")


def _order_with_items():
    return {
        "order_id": "ORD-1",
        "items": [
            {"item_id": "ORD-1-I01", "current_stage": "stitching", "assigned_staff_id": "S-7", "assigned_staff_name": "Old"},
            {"item_id": "ORD-1-I02", "current_stage": "stitching"},
        ],
    }


def _db(order=None):
    db = make_db()
    db.orders.find_one = AsyncMock(return_value=order)
    db.orders.update_one = AsyncMock(return_value=MagicMock(matched_count=1))
    db.assignment_logs.insert_one = AsyncMock()
    db.audit_retry_queue.update_one = AsyncMock()
    return db


@pytest.mark.asyncio
async def test_assign_item_logs_previous_staff():
    db = _db(_order_with_items())
    with patch("services.assignment_service.database.get_db", return_value=db):
        log = await assign(OrderItemRef(order_id="ORD-1", item_index=0), TAILOR, SUPERVISOR)

    assert log["assigned_from_staff_id"] == "S-7"
    assert log["assigned_to_staff_id"] == "S-42"
    assert log["assigned_by_role"] == "supervisor"
    assert log["assignment_target"] == "order_item"
    assert log["stage"] == "stitching"

    update = db.orders.update_one.call_args[0][1]["$set"]
    assert update == {"items.0.assigned_staff_id": "S-42", "items.0.assigned_staff_name": "Kumar"}
    stored = db.assignment_logs.insert_one.call_args[0][0]
    assert stored["log_id"] == log["log_id"]


@pytest.mark.asyncio
async def test_first_assignment_still_logged():
    db = _db(_order_with_items())
    with patch("services.assignment_service.database.get_db", return_value=db):
        log = await assign(OrderItemRef(order_id="ORD-1", item_index=1), TAILOR, SUPERVISOR)

    assert log["assigned_from_staff_id"] is None
    db.assignment_logs.insert_one.assert_called_once()


@pytest.mark.asyncio
async def test_bulk_assign_skips_invalid_targets():
    db = _db(_order_with_items())
    assignments = [
        Assignment(target={"kind": "order_item", "order_id": "ORD-1", "item_index": 0}),
        Assignment(target={"kind": "order_item", "order_id": "ORD-1", "item_index": 1}),
        Assignment(target={"kind": "order_item", "order_id": "ORD-1", "item_index": 9}),
    ]
    with patch("services.assignment_service.database.get_db", return_value=db):
        count = await bulk_assign(assignments, TAILOR, SUPERVISOR)

    assert count == 2
    assert db.orders.update_one.call_count == 2
    assert db.assignment_logs.insert_one.call_count == 2


@pytest.mark.asyncio
async def test_assign_requires_overseer_role():
    db = _db(_order_with_items())
    actor = Actor(staff_id="S-1", role=UserRole.STITCHING)
    with patch("services.assignment_service.database.get_db", return_value=db):
        with pytest.raises(AssignmentPermissionError):
            await assign(OrderItemRef(order_id="ORD-1", item_index=0), TAILOR, actor)
        with pytest.raises(AssignmentPermissionError):
            await bulk_assign([Assignment(target={"kind": "order_item", "order_id": "ORD-1", "item_index": 0})], TAILOR, actor)
    db.orders.update_one.assert_not_called()


@pytest.mark.asyncio
async def test_assign_embedded_marking_task():
    order = {
        "order_id": "ORD-1",
        "marking_tasks": {"t01_sub1": {"sub_stage_id": "sub1", "task_name": "Front"}},
    }
    db = _db(order)
    with patch("services.assignment_service.database.get_db", return_value=db):
        log = await assign(
            EmbeddedTaskRef(order_id="ORD-1", task_key="t01_sub1", stage="marking"),
            TAILOR, SUPERVISOR,
            current_staff=StaffRef(staff_id="S-3", name="Prev"),
        )

    assert log["assignment_target"] == "stage_task"
    assert log["sub_stage"] == "sub1"
    assert log["assigned_from_staff_id"] == "S-3"
    update = db.orders.update_one.call_args[0][1]["$set"]
    assert update["marking_tasks.t01_sub1.assigned_staff_id"] == "S-42"


@pytest.mark.asyncio
async def test_assign_standalone_task_checks_collection():
    db = _db()
    db.cutting_tasks.find_one = AsyncMock(return_value={"task_id": "ORD-1_t01", "order_id": "ORD-1"})
    db.cutting_tasks.update_one = AsyncMock(return_value=MagicMock(matched_count=1))

    with patch("services.assignment_service.database.get_db", return_value=db):
        log = await assign(
            StandaloneTaskRef(collection="cutting_tasks", doc_id="ORD-1_t01", stage="cutting"),
            TAILOR, SUPERVISOR,
        )
        assert log["order_id"] == "ORD-1"

        with pytest.raises(AssignmentTargetError):
            await assign(
                StandaloneTaskRef(collection="orders", doc_id="ORD-1", stage="cutting"),
                TAILOR, SUPERVISOR,
            )


@pytest.mark.asyncio
async def test_assign_missing_order_writes_nothing():
    db = _db(None)
    with patch("services.assignment_service.database.get_db", return_value=db):
        with pytest.raises(AssignmentTargetError):
            await assign(OrderItemRef(order_id="ORD-X", item_index=0), TAILOR, SUPERVISOR)
    db.orders.update_one.assert_not_called()
    db.assignment_logs.insert_one.assert_not_called()


@pytest.mark.asyncio
async def test_logs_for_staff_include_both_directions():
    db = make_db()
    db.assignment_logs.find = MagicMock(return_value=make_cursor([{"log_id": "L1"}]))
    with patch("services.assignment_service.database.get_db", return_value=db):
        logs = await get_assignment_logs_for_staff("S-42")

    assert logs == [{"log_id": "L1"}]
    query = db.assignment_logs.find.call_args[0][0]
    assert {"assigned_to_staff_id": "S-42"} in query["$or"]
    assert {"assigned_from_staff_id": "S-42"} in query["$or"]


@pytest.mark.asyncio
async def test_written_log_is_found_by_order_and_by_staff():
    db = _db(_order_with_items())
    with patch("services.assignment_service.database.get_db", return_value=db):
        log = await assign(OrderItemRef(order_id="ORD-1", item_index=0), TAILOR, SUPERVISOR)

    stored = db.assignment_logs.insert_one.call_args[0][0]
    db.assignment_logs.find = MagicMock(side_effect=lambda *a, **k: make_cursor([dict(stored)]))
    with patch("services.assignment_service.database.get_db", return_value=db):
        by_order = await get_assignment_logs_for_order("ORD-1")
        by_staff = await get_assignment_logs_for_staff("S-42")

    assert [l["log_id"] for l in by_order] == [log["log_id"]]
    assert [l["log_id"] for l in by_staff] == [log["log_id"]]

    order_query = db.assignment_logs.find.call_args_list[0][0][0]
    staff_query = db.assignment_logs.find.call_args_list[1][0][0]
    assert order_query == {"order_id": "ORD-1"}
    assert stored["order_id"] == order_query["order_id"]
    assert {"assigned_to_staff_id": stored["assigned_to_staff_id"]} in staff_query["$or"]
    assert {"assigned_from_staff_id": "S-42"} in staff_query["$or"]
