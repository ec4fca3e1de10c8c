"""
Drain or revive the audit retry queue by hand.

Usage (from backend/):
  python -m scripts.retry_audit_queue                 # one pass over due PENDING items
  python -m scripts.retry_audit_queue --revive-dead   # put DEAD items back to PENDING first
"""
import asyncio
import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from database import database


async def run(revive_dead: bool = False) -> dict:
    from utils.audit import process_audit_retry_queue, STATUS_DEAD, STATUS_PENDING

    db = database.get_db()
    if revive_dead:
        result = await db.audit_retry_queue.update_many(
            {"status": STATUS_DEAD},
            {"$set": {"status": STATUS_PENDING, "attempts": 0, "next_run_at": datetime.now(timezone.utc)}},
        )
        print(f"Revived {result.modified_count} dead audit records")
    summary = await process_audit_retry_queue()
    print(f"Processed {summary['processed']}: {summary['done']} written, {summary['dead']} dead")
    return summary


def main():
    parser = argparse.ArgumentParser(description="Re-apply queued audit records")
    parser.add_argument("--revive-dead", action="store_true", help="Retry records that exhausted their attempts")
    args = parser.parse_args()

    async def _():
        await database.connect()
        try:
            return await run(revive_dead=args.revive_dead)
        finally:
            await database.close()

    asyncio.run(_())


if __name__ == "__main__":
    main()
