"""
Stage defaults - which staff member picks up each stage by default.
Consulted only when an order is created; changing defaults never touches existing orders.
"""
from database import database
from models import StageDefaults, utcnow
from services.order_workflow import require_stage
from typing import Dict, Optional
import logging

logger = logging.getLogger(__name__)

STAGE_DEFAULTS_ID = "stage_defaults"


async def get_stage_defaults() -> StageDefaults:
    db = database.get_db()
    doc = await db.settings.find_one({"_id": STAGE_DEFAULTS_ID})
    if not doc:
        return StageDefaults()
    return StageDefaults(
        defaults=doc.get("defaults") or {},
        updated_at=doc.get("updated_at"),
        updated_by=doc.get("updated_by"),
    )


async def save_stage_defaults(defaults: Dict[str, str], updated_by: Optional[str] = None) -> StageDefaults:
    """Replace the stage -> staff_id map. Empty values clear a stage's default."""
    cleaned = {}
    for stage, staff_id in (defaults or {}).items():
        stage = require_stage(stage)
        if staff_id:
            cleaned[stage] = staff_id

    now = utcnow()
    db = database.get_db()
    await db.settings.update_one(
        {"_id": STAGE_DEFAULTS_ID},
        {"$set": {"defaults": cleaned, "updated_at": now, "updated_by": updated_by}},
        upsert=True,
    )
    logger.info(f"Stage defaults updated by {updated_by}: {sorted(cleaned)}")
    return StageDefaults(defaults=cleaned, updated_at=now, updated_by=updated_by)


def apply_stage_defaults(assigned_staff: Dict[str, str], defaults: StageDefaults, active_stages) -> Dict[str, str]:
    """Fill unassigned active stages from the defaults. Explicit choices win."""
    merged = {k: v for k, v in (assigned_staff or {}).items() if v}
    for stage in active_stages:
        if not merged.get(stage) and defaults.defaults.get(stage):
            merged[stage] = defaults.defaults[stage]
    return merged
