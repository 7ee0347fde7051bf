"""
Internal routes for scheduled jobs.

Called by the scheduler with `Authorization: Bearer <CRON_SECRET>`; never
exposed to end users.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from services.daily_snapshot_service import get_daily_snapshot_service
from utils.authentication import verify_cron_secret

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/internal", tags=["internal"])


@router.post("/snapshots/daily", dependencies=[Depends(verify_cron_secret)])
async def run_daily_snapshots():
    """Capture today's snapshot for every active user."""
    try:
        result = await get_daily_snapshot_service().capture_all_users()
        return {"success": not result.errors, **result.to_dict()}
    except Exception as e:
        logger.error(f"Daily snapshot run failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Daily snapshot run failed")
