"""
Share API Routes

Two routers:

- `router` (/api/shares): the owner manages their share links.
- `public_router` (/api/share/{token}): anonymous, read-only views for
  token holders. Every token failure is a 404 with the same body, and these
  endpoints never record a snapshot.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from services.portfolio_snapshot_service import get_snapshot_service
from services.portfolio_valuation_service import RequestContext, get_valuation_service
from services.share_service import ShareScope, get_share_service
from utils.authentication import get_authenticated_user_id
from utils.authorization import ShareNotFoundError
from utils.portfolio.constants import DEFAULT_HISTORY_DAYS, MAX_HISTORY_DAYS
from utils.portfolio.inventory_provider import InventoryProviderError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/shares", tags=["shares"])
public_router = APIRouter(prefix="/api/share", tags=["shared-portfolio"])


class CreateShareRequest(BaseModel):
    scope: ShareScope = ShareScope.FULL
    label: Optional[str] = Field(default=None, max_length=100)
    expires_in_days: Optional[int] = Field(default=None, ge=1, le=3650,
                                           description="Days until expiry; omit for no expiry")


# --- Owner endpoints ---

@router.get("")
async def list_shares(user_id: str = Depends(get_authenticated_user_id)):
    """List the owner's share links, newest first."""
    try:
        shares = await get_share_service().list_shares(user_id)
        return {"shares": [s.to_dict() for s in shares]}
    except Exception as e:
        logger.error(f"Error listing shares for user {user_id}: {e}")
        raise HTTPException(status_code=500, detail="Error listing shares")


@router.post("", status_code=201)
async def create_share(request: CreateShareRequest, user_id: str = Depends(get_authenticated_user_id)):
    """Create a share link and return its token."""
    try:
        token = await get_share_service().create_share_link(
            user_id,
            scope=request.scope,
            label=request.label,
            expires_in_days=request.expires_in_days,
        )
        return {"token": token, "scope": request.scope.value}
    except Exception as e:
        logger.error(f"Error creating share for user {user_id}: {e}")
        raise HTTPException(status_code=500, detail="Error creating share")


@router.delete("/{share_id}")
async def revoke_share(share_id: str, user_id: str = Depends(get_authenticated_user_id)):
    """Revoke one of the owner's share links."""
    try:
        revoked = await get_share_service().revoke_share(user_id, share_id)
    except Exception as e:
        logger.error(f"Error revoking share {share_id} for user {user_id}: {e}")
        raise HTTPException(status_code=500, detail="Error revoking share")

    if not revoked:
        raise HTTPException(status_code=404, detail="Share not found")
    return {"revoked": True, "id": share_id}


# --- Token-holder endpoints ---

def _not_found(error: ShareNotFoundError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.message)


async def _shared_dashboard(token: str, min_scope: ShareScope, include_holdings: bool):
    try:
        share = await get_share_service().require_scope(token, min_scope)
        view = await get_valuation_service().build_dashboard(RequestContext.for_share(share))
    except ShareNotFoundError as e:
        raise _not_found(e)
    except InventoryProviderError as e:
        logger.error(f"Inventory unavailable for shared view: {e}")
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error building shared view: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error building shared portfolio")

    data = view.to_dict(include_holdings=include_holdings)
    data["scope"] = share.scope.value
    data["label"] = share.label
    return data


@public_router.get("/{token}")
async def get_shared_overview(token: str):
    """Summary totals, allocation and changes without the per-asset breakdown (scope: overview)."""
    return await _shared_dashboard(token, ShareScope.OVERVIEW, include_holdings=False)


@public_router.get("/{token}/holdings")
async def get_shared_holdings(token: str):
    """Summary with per-asset holdings (scope: full)."""
    return await _shared_dashboard(token, ShareScope.FULL, include_holdings=True)


@public_router.get("/{token}/history")
async def get_shared_history(
    token: str,
    days: int = Query(default=DEFAULT_HISTORY_DAYS, ge=1, le=MAX_HISTORY_DAYS),
):
    """Snapshot series of the owner (scope: full_with_history)."""
    try:
        share = await get_share_service().require_scope(token, ShareScope.FULL_WITH_HISTORY)
    except ShareNotFoundError as e:
        raise _not_found(e)

    snapshots = await get_snapshot_service().list_since(share.owner_id, days)
    return {
        "days": days,
        "snapshots": [s.to_dict() for s in snapshots],
    }
