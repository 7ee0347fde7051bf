#!/usr/bin/env python3

"""
FastAPI server for the net-worth backend.

Routes live in routes/; this module only wires logging, configuration,
middleware and the routers together.
"""

import contextlib
import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("networth-api-server")
logger.setLevel(logging.INFO)
logger.propagate = False
logging_handler = logging.StreamHandler()
logging_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
logger.addHandler(logging_handler)

if os.getenv("ENVIRONMENT", "development") == "development":
    load_dotenv(override=True)
    logger.info("Loaded environment variables from .env file for local development.")

from routes.dashboard_routes import router as dashboard_router
from routes.internal_routes import router as internal_router
from routes.market_routes import router as market_router
from routes.share_routes import public_router as shared_portfolio_router
from routes.share_routes import router as share_router
from utils.settings import get_settings


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("LIFESPAN: Starting API server...")
    logger.info(
        f"Quote cache {'enabled' if settings.cache_enabled else 'disabled'}, "
        f"max upstream concurrency {settings.quote_max_concurrency}, "
        f"snapshot time zone {settings.snapshot_timezone}"
    )
    if not settings.supabase_jwt_secret:
        logger.warning("SUPABASE_JWT_SECRET not set, owner endpoints will reject every request")
    if not settings.cron_secret:
        logger.warning("CRON_SECRET not set, the daily snapshot endpoint is disabled")

    yield

    logger.info("LIFESPAN: Shutting down API server...")


app = FastAPI(
    title="Networth API",
    description="Multi-currency net-worth valuation, daily snapshots and read-only share links.",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(dashboard_router)
app.include_router(share_router)
app.include_router(shared_portfolio_router)
app.include_router(market_router)
app.include_router(internal_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting API server for local development...")
    uvicorn.run(
        "api_server:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
    )
