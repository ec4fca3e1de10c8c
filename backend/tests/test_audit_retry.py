"""
Audit appends and the retry queue worker.
"""
import pytest
from unittest.mock import AsyncMock, patch
from pymongo.errors import PyMongoError, AutoReconnect

from conftest import make_cursor, make_db
from services.order_workflow import PartialWriteError
from utils.audit import (
    append_audit_record, write_audit_record, process_audit_retry_queue,
    STATUS_DONE, STATUS_DEAD, AUDIT_RETRY_MAX_ATTEMPTS,
)

RECORD = {"entry_id": "E1", "order_id": "ORD-1", "action": "completed"}


@pytest.mark.asyncio
async def test_append_raises_partial_write_error():
    db = make_db()
    db.order_timeline.insert_one = AsyncMock(side_effect=AutoReconnect("gone"))
    with patch("utils.audit.database.get_db", return_value=db):
        with pytest.raises(PartialWriteError) as exc:
            await append_audit_record("order_timeline", RECORD, "entry_id")

    assert exc.value.collection == "order_timeline"
    assert exc.value.record_id == "E1"


@pytest.mark.asyncio
async def test_write_audit_record_queues_on_failure():
    db = make_db()
    db.order_timeline.insert_one = AsyncMock(side_effect=PyMongoError("down"))
    db.audit_retry_queue.update_one = AsyncMock()
    with patch("utils.audit.database.get_db", return_value=db):
        assert await write_audit_record("order_timeline", RECORD, "entry_id") is False

    queue_filter = db.audit_retry_queue.update_one.call_args[0][0]
    assert queue_filter == {"collection": "order_timeline", "record_id": "E1"}
    assert db.audit_retry_queue.update_one.call_args.kwargs["upsert"] is True


@pytest.mark.asyncio
async def test_write_audit_record_survives_queue_failure():
    db = make_db()
    db.order_timeline.insert_one = AsyncMock(side_effect=PyMongoError("down"))
    db.audit_retry_queue.update_one = AsyncMock(side_effect=PyMongoError("still down"))
    with patch("utils.audit.database.get_db", return_value=db):
        assert await write_audit_record("order_timeline", RECORD, "entry_id") is False


@pytest.mark.asyncio
async def test_retry_worker_upserts_by_record_id():
    db = make_db()
    item = {"_id": "Q1", "collection": "order_timeline", "id_field": "entry_id", "record": RECORD, "attempts": 1}
    db.audit_retry_queue.find.return_value = make_cursor([item])
    db.audit_retry_queue.update_one = AsyncMock()
    db.order_timeline.update_one = AsyncMock()

    with patch("utils.audit.database.get_db", return_value=db):
        summary = await process_audit_retry_queue()

    assert summary == {"processed": 1, "done": 1, "dead": 0}
    db.order_timeline.update_one.assert_called_once_with({"entry_id": "E1"}, {"$setOnInsert": RECORD}, upsert=True)
    assert db.audit_retry_queue.update_one.call_args[0][1]["$set"]["status"] == STATUS_DONE


@pytest.mark.asyncio
async def test_retry_worker_reschedules_then_gives_up():
    db = make_db()
    fresh = {"_id": "Q1", "collection": "staff_work_logs", "id_field": "log_id", "record": {"log_id": "L1"}, "attempts": 0}
    last = {"_id": "Q2", "collection": "staff_work_logs", "id_field": "log_id", "record": {"log_id": "L2"},
            "attempts": AUDIT_RETRY_MAX_ATTEMPTS - 1}
    db.audit_retry_queue.find.return_value = make_cursor([fresh, last])
    db.audit_retry_queue.update_one = AsyncMock()
    db.staff_work_logs.update_one = AsyncMock(side_effect=PyMongoError("down"))

    with patch("utils.audit.database.get_db", return_value=db):
        summary = await process_audit_retry_queue()

    assert summary == {"processed": 2, "done": 0, "dead": 1}
    first_update, second_update = [c[0][1]["$set"] for c in db.audit_retry_queue.update_one.call_args_list]
    assert first_update["attempts"] == 1
    assert "next_run_at" in first_update
    assert second_update["status"] == STATUS_DEAD
