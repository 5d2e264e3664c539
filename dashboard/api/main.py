"""
DM Lab — API Server
=====================

Local REST backend for the DM Lab KPI dashboard. Holds one in-memory
AppState (loaded from DMLAB_DATA_DIR at startup) and serves CRUD, KPI
analytics and optional Supabase sync on top of it.

Route groups:
  /api/health          - Health check
  /api/data, /api/save - Whole-state load/save
  /api/logs/*          - Daily log CRUD
  /api/experiments/*   - Experiments, variants, evaluation
  /api/prospects/*     - CRM board
  /api/settings/*      - KPI targets, flags, accounts
  /api/analytics/*     - KPIs, charts, weekly goals, forecast, CSV export
  /api/sync/*          - Supabase push/pull
"""

import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dashboard.api.deps import get_container, set_container
from scripts.dmlab.constants import SCHEMA_VERSION
from scripts.lib import supabase_client
from scripts.lib.logger import setup_logger
from scripts.lib.state_store import LocalStateStore, StateContainer

load_dotenv()

logger = setup_logger("dmlab_api")

VERSION = "5.0.0"


# ─── Lifespan ─────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app):
    """Load the persisted state on startup; flush unsaved changes on shutdown."""
    logger.info("Starting DM Lab...")

    container = StateContainer(LocalStateStore())
    result = container.load()
    set_container(container)
    logger.info(
        "State loaded from %s (%s): %d logs",
        container.store.state_path, result.source, len(result.state.logs),
    )

    if supabase_client.is_configured():
        logger.info("Supabase sync: configured")
    else:
        logger.info("Supabase sync: not configured")

    logger.info("DM Lab ready")
    yield

    if container.dirty and container.state.config.autosave:
        container.save()
    logger.info("Shutting down DM Lab...")


# ─── App Setup ────────────────────────────────────────────────

cors_origins = os.getenv(
    "CORS_ORIGINS", "http://localhost:3000,http://localhost:8001"
).split(",")

app = FastAPI(
    title="DM Lab",
    version=VERSION,
    description="LinkedIn DM outreach KPI engine and experiment lab",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Include Routers ──────────────────────────────────────────

from dashboard.api.routers.dmlab_data import router as data_router
from dashboard.api.routers.dmlab_logs import router as logs_router
from dashboard.api.routers.dmlab_experiments import router as experiments_router
from dashboard.api.routers.dmlab_prospects import router as prospects_router
from dashboard.api.routers.dmlab_settings import router as settings_router
from dashboard.api.routers.dmlab_analytics import router as analytics_router
from dashboard.api.routers.dmlab_sync import router as sync_router

app.include_router(data_router)
app.include_router(logs_router)
app.include_router(experiments_router)
app.include_router(prospects_router)
app.include_router(settings_router)
app.include_router(analytics_router)
app.include_router(sync_router)


# ─── Health ───────────────────────────────────────────────────

@app.get("/api/health", tags=["system"])
async def health():
    """Health check with state and sync status."""
    container = get_container()
    state = container.state
    return {
        "status": "healthy",
        "service": "DM Lab",
        "version": VERSION,
        "schema_version": SCHEMA_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "state": {
            "source": container.source,
            "saved_at": container.saved_at,
            "dirty": container.dirty,
            "logs": len(state.logs),
            "experiments": len(state.experiments),
            "prospects": len(state.prospects),
        },
        "integrations": {
            "supabase": supabase_client.is_configured(),
        },
    }
