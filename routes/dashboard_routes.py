"""
Dashboard API Routes

Owner-only endpoints: the live portfolio valuation (which also records
today's snapshot) and the snapshot series for the history chart.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from services.portfolio_snapshot_service import get_snapshot_service
from services.portfolio_valuation_service import RequestContext, get_valuation_service
from utils.authentication import get_authenticated_user_id
from utils.portfolio.constants import DEFAULT_HISTORY_DAYS, MAX_HISTORY_DAYS
from utils.portfolio.inventory_provider import InventoryProviderError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("")
async def get_dashboard(user_id: str = Depends(get_authenticated_user_id)):
    """
    Value the authenticated user's portfolio.

    Returns the summary with per-asset holdings, past snapshots keyed
    24h/7d/30d/1y (24h is always null, its change is computed live), the
    change for each period and the market panel. Today's snapshot is
    upserted as a side effect; a failed write does not fail the request.
    """
    try:
        service = get_valuation_service()
        view = await service.build_dashboard(RequestContext.for_owner(user_id))
        data = view.to_dict(include_holdings=True)
        data["snapshot_saved"] = view.snapshot_saved
        return data

    except InventoryProviderError as e:
        logger.error(f"Inventory unavailable for dashboard of user {user_id}: {e}")
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error building dashboard for user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error building dashboard")


@router.get("/history")
async def get_dashboard_history(
    days: int = Query(default=DEFAULT_HISTORY_DAYS, ge=1, le=MAX_HISTORY_DAYS,
                      description="Days of history to return"),
    user_id: str = Depends(get_authenticated_user_id),
):
    """Daily snapshots for the last `days` days, oldest first."""
    snapshots = await get_snapshot_service().list_since(user_id, days)
    return {
        "days": days,
        "snapshots": [s.to_dict() for s in snapshots],
    }
