"""
Staff directory - who works here, under which role.
Read by assignment pickers, stage queues and staff-performance reports.
"""
from database import database
from models import StaffMember, StaffMemberUpdate, utcnow
from services.order_workflow import require_stage
from typing import Dict, Iterable, List, Optional
import logging

logger = logging.getLogger(__name__)


async def get_staff_by_id(staff_id: str) -> Optional[Dict]:
    db = database.get_db()
    return await db.staff.find_one({"staff_id": staff_id}, {"_id": 0})


async def get_all_active_staff() -> List[Dict]:
    """Active staff; a missing is_active flag counts as active."""
    db = database.get_db()
    return await db.staff.find(
        {"is_active": {"$ne": False}},
        {"_id": 0},
    ).sort("name", 1).to_list(1000)


async def get_staff_by_roles(roles: Iterable[str]) -> List[Dict]:
    db = database.get_db()
    return await db.staff.find(
        {"role": {"$in": sorted(set(roles))}, "is_active": {"$ne": False}},
        {"_id": 0},
    ).sort("name", 1).to_list(1000)


async def get_staff_roles(staff_ids: Iterable[str]) -> Dict[str, str]:
    """staff_id -> directory role, for the ids that are in the directory."""
    ids = sorted(set(s for s in staff_ids if s))
    if not ids:
        return {}
    db = database.get_db()
    docs = await db.staff.find(
        {"staff_id": {"$in": ids}},
        {"_id": 0, "staff_id": 1, "role": 1},
    ).to_list(len(ids))
    return {d["staff_id"]: d.get("role") for d in docs}


async def save_staff(staff_id: str, data: StaffMemberUpdate) -> StaffMember:
    """Create or update a directory entry. created_at is kept on update."""
    for stage in data.allowed_stages:
        require_stage(stage)

    db = database.get_db()
    now = utcnow()
    member = StaffMember(staff_id=staff_id, created_at=now, updated_at=now, **data.model_dump())
    doc = member.model_dump()
    created_at = doc.pop("created_at")
    await db.staff.update_one(
        {"staff_id": staff_id},
        {"$set": doc, "$setOnInsert": {"created_at": created_at}},
        upsert=True,
    )
    logger.info(f"Staff {staff_id} saved as {doc['role']} (active={doc['is_active']})")
    return member
