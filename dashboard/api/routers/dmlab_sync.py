"""
DM Lab — Cloud Sync Router
============================

Optional Supabase backend. Disabled (503) unless SUPABASE_URL and
SUPABASE_SERVICE_ROLE_KEY are set.

Endpoints:
  GET  /api/sync/status  - Whether cloud sync is configured
  POST /api/sync/push    - Upsert the local state into Supabase
  POST /api/sync/pull    - Replace local state with the remote rows (UI prefs kept)
"""
from __future__ import annotations

from fastapi import APIRouter, HTTPException

from dashboard.api.deps import get_container
from scripts.lib import supabase_client
from scripts.lib.errors import CloudSyncError, ConfigError, StorageError
from scripts.lib.logger import setup_logger

logger = setup_logger("dmlab_sync_router")

router = APIRouter(prefix="/api/sync", tags=["sync"])


def _require_configured():
    if not supabase_client.is_configured():
        raise HTTPException(status_code=503, detail="Supabase sync is not configured")


@router.get("/status")
async def sync_status():
    return {"configured": supabase_client.is_configured()}


@router.post("/push")
async def push():
    _require_configured()
    try:
        counts = supabase_client.push_state(get_container().state)
        return {"success": True, "rows": counts}
    except ConfigError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except CloudSyncError as e:
        logger.error("Cloud push failed: %s", e)
        raise HTTPException(status_code=502, detail="Failed to push state to Supabase")


@router.post("/pull")
async def pull():
    _require_configured()
    container = get_container()
    try:
        remote = supabase_client.load_remote_state()
        state = container.replace(remote.model_copy(update={"ui": container.state.ui}))
        if state.config.autosave:
            container.save()
        return {
            "success": True,
            "counts": {
                "logs": len(state.logs),
                "experiments": len(state.experiments),
                "prospects": len(state.prospects),
            },
        }
    except ConfigError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except CloudSyncError as e:
        logger.error("Cloud pull failed: %s", e)
        raise HTTPException(status_code=502, detail="Failed to pull state from Supabase")
    except StorageError as e:
        logger.error("Save after pull failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to save state")
