"""
Shared job runner for scheduled background jobs.
Used by server (scheduler) and scripts (manual run).
Each run_* returns a dict with "message" (and optionally "count").
"""
import logging

logger = logging.getLogger(__name__)


async def run_audit_retry_worker():
    """Process the audit retry queue (outbox pattern). Picks items with next_run_at <= now and re-applies them."""
    from utils.audit import process_audit_retry_queue
    try:
        result = await process_audit_retry_queue()
        return {
            "message": f"Re-applied {result['done']} audit records ({result['dead']} dead)",
            "count": result["done"],
        }
    except Exception as e:
        logger.error(f"Audit retry worker failed: {e}")
        raise


# Map scheduler job id -> run function (for manual run)
JOB_RUNNERS = {
    "audit_retry_worker": run_audit_retry_worker,
}
