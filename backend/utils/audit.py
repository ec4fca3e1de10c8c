from database import database
from services.order_workflow import PartialWriteError
from pymongo.errors import PyMongoError
from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any
import os
import logging

logger = logging.getLogger(__name__)

AUDIT_RETRY_MAX_ATTEMPTS = int(os.getenv("AUDIT_RETRY_MAX_ATTEMPTS", "8"))
AUDIT_RETRY_BATCH_SIZE = int(os.getenv("AUDIT_RETRY_BATCH_SIZE", "50"))
# Backoff seconds per attempt; the last value repeats
AUDIT_RETRY_BACKOFFS = [30, 60, 300, 900, 3600]

STATUS_PENDING = "PENDING"
STATUS_DONE = "DONE"
STATUS_DEAD = "DEAD"


async def append_audit_record(collection: str, record: Dict[str, Any], id_field: str, session=None) -> None:
    """Insert one append-only audit record. Raises PartialWriteError on failure."""
    db = database.get_db()
    try:
        await db[collection].insert_one(dict(record), session=session)
    except PyMongoError as e:
        raise PartialWriteError(collection, record.get(id_field), e) from e


async def enqueue_audit_retry(
    collection: str,
    record: Dict[str, Any],
    id_field: str,
    error: Optional[str] = None,
) -> bool:
    """Put a failed audit append on the retry queue. Returns False if even that failed."""
    db = database.get_db()
    now = datetime.now(timezone.utc)
    try:
        await db.audit_retry_queue.update_one(
            {"collection": collection, "record_id": record.get(id_field)},
            {
                "$setOnInsert": {
                    "collection": collection,
                    "record_id": record.get(id_field),
                    "id_field": id_field,
                    "record": record,
                    "status": STATUS_PENDING,
                    "attempts": 0,
                    "next_run_at": now,
                    "created_at": now,
                },
                "$set": {"last_error": error, "updated_at": now},
            },
            upsert=True,
        )
        return True
    except PyMongoError as e:
        logger.error(
            f"Could not enqueue audit retry for {collection}/{record.get(id_field)}: {e}. "
            f"Record lost from history: {record}"
        )
        return False


async def write_audit_record(collection: str, record: Dict[str, Any], id_field: str) -> bool:
    """
    Append an audit record, falling back to the retry queue.
    Never fails the calling operation; returns True if written immediately.
    """
    try:
        await append_audit_record(collection, record, id_field)
        return True
    except PartialWriteError as e:
        logger.error(f"{e}; queued for retry")
        await enqueue_audit_retry(collection, record, id_field, error=str(e.cause))
        return False


def _next_run_at(attempts: int, now: datetime) -> datetime:
    backoff = AUDIT_RETRY_BACKOFFS[min(attempts, len(AUDIT_RETRY_BACKOFFS)) - 1]
    return now + timedelta(seconds=backoff)


async def process_audit_retry_queue(limit: int = AUDIT_RETRY_BATCH_SIZE) -> Dict[str, int]:
    """
    Re-apply queued audit records.
    Upserts by record id, so a record that did land earlier is not duplicated.
    """
    db = database.get_db()
    now = datetime.now(timezone.utc)
    items = await db.audit_retry_queue.find(
        {"status": STATUS_PENDING, "next_run_at": {"$lte": now}},
    ).limit(limit).to_list(limit)

    done = 0
    dead = 0
    for item in items:
        collection = item["collection"]
        id_field = item["id_field"]
        record = item["record"]
        try:
            await db[collection].update_one(
                {id_field: record[id_field]},
                {"$setOnInsert": record},
                upsert=True,
            )
            await db.audit_retry_queue.update_one(
                {"_id": item["_id"]},
                {"$set": {"status": STATUS_DONE, "updated_at": now}},
            )
            done += 1
        except PyMongoError as e:
            attempts = item.get("attempts", 0) + 1
            update = {"attempts": attempts, "last_error": str(e), "updated_at": now}
            if attempts >= AUDIT_RETRY_MAX_ATTEMPTS:
                update["status"] = STATUS_DEAD
                dead += 1
                logger.error(f"Audit retry for {collection}/{record.get(id_field)} gave up after {attempts} attempts: {e}")
            else:
                update["next_run_at"] = _next_run_at(attempts, now)
                logger.warning(f"Audit retry for {collection}/{record.get(id_field)} failed (attempt {attempts}): {e}")
            await db.audit_retry_queue.update_one({"_id": item["_id"]}, {"$set": update})

    if items:
        logger.info(f"Audit retry queue: {done} written, {dead} dead, {len(items) - done - dead} rescheduled")
    return {"processed": len(items), "done": done, "dead": dead}
