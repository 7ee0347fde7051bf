"""
Market routes for asset discovery.

Stock/ETF search and quotes come from Yahoo Finance, crypto search and coin
detail from CoinGecko. Used by the frontend when adding holdings, so these
only require a signed-in user, not a specific portfolio.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from utils.authentication import get_authenticated_user_id
from utils.prices.coingecko_client import get_coingecko_client
from utils.prices.yahoo_client import get_yahoo_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/market", tags=["market"])


class AssetSearchResult(BaseModel):
    """A single search result."""
    symbol: str
    name: str
    exchange: Optional[str] = None
    quote_type: Optional[str] = None
    currency: Optional[str] = None
    price: Optional[float] = None
    thumb: Optional[str] = None
    market_cap_rank: Optional[int] = None


class AssetSearchResponse(BaseModel):
    """Response from the search endpoints."""
    success: bool
    results: List[AssetSearchResult]
    query: str


@router.get("/stocks/search", response_model=AssetSearchResponse)
async def search_stocks(
    q: str = Query(..., min_length=1, max_length=50, description="Ticker or company name"),
    user_id: str = Depends(get_authenticated_user_id),
):
    """
    Search stocks and ETFs by ticker or name.

    Results carry the trading currency and current price when the quote
    lookup succeeded; both are null otherwise.
    """
    try:
        results = await get_yahoo_client().search(q.strip())
        return AssetSearchResponse(
            success=True,
            results=[AssetSearchResult(**r.to_dict()) for r in results],
            query=q,
        )
    except Exception as e:
        logger.error(f"Error in stock search: {e}")
        raise HTTPException(status_code=500, detail="Error searching stocks")


@router.get("/stocks/quote")
async def get_stock_quote(
    symbol: str = Query(..., min_length=1, max_length=20, description="Yahoo ticker, e.g. AAPL or SAP.DE"),
    user_id: str = Depends(get_authenticated_user_id),
):
    """Current quote for one ticker."""
    quote = await get_yahoo_client().get_quote(symbol.strip().upper())
    if quote is None:
        raise HTTPException(status_code=404, detail=f"No quote for {symbol}")
    return {"success": True, "quote": quote.to_dict()}


@router.get("/crypto/search", response_model=AssetSearchResponse)
async def search_crypto(
    q: str = Query(..., min_length=1, max_length=50, description="Coin name or symbol"),
    user_id: str = Depends(get_authenticated_user_id),
):
    """Search CoinGecko coins. `symbol` in each result is the CoinGecko id."""
    try:
        results = await get_coingecko_client().search(q.strip())
        return AssetSearchResponse(
            success=True,
            results=[AssetSearchResult(**r.to_dict()) for r in results],
            query=q,
        )
    except Exception as e:
        logger.error(f"Error in crypto search: {e}")
        raise HTTPException(status_code=500, detail="Error searching crypto")


@router.get("/crypto/detail/{coin_id}")
async def get_crypto_detail(coin_id: str, user_id: str = Depends(get_authenticated_user_id)):
    """Coin metadata with inferred chain, subcategory and stablecoin flag."""
    detail = await get_coingecko_client().get_coin_detail(coin_id.strip().lower())
    if detail is None:
        raise HTTPException(status_code=404, detail=f"Coin {coin_id} not found")
    return {"success": True, "coin": detail}
