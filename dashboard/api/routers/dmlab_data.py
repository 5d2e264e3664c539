"""
DM Lab — Data Router
======================

Whole-state load/save, the contract of the local REST backend.

Endpoints:
  GET  /api/data  - Full persisted envelope {schemaVersion, savedAt, data}
  POST /api/save  - Replace the full state (any schema generation) and save
"""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, HTTPException

from dashboard.api.deps import get_container
from scripts.lib.errors import StorageError
from scripts.lib.logger import setup_logger

logger = setup_logger("dmlab_data_router")

router = APIRouter(prefix="/api", tags=["data"])


@router.get("/data")
async def get_data():
    """Return the in-memory state wrapped in the persisted envelope."""
    try:
        return get_container().envelope()
    except Exception as e:
        logger.error("Load data failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to load state")


@router.post("/save")
async def save_data(body: Dict[str, Any] = Body(...)):
    """Replace the whole state. Raw legacy shapes are migrated first."""
    container = get_container()
    try:
        state = container.replace(body)
        saved_at = container.save()
        return {
            "success": True,
            "savedAt": saved_at,
            "counts": {
                "logs": len(state.logs),
                "experiments": len(state.experiments),
                "prospects": len(state.prospects),
            },
        }
    except StorageError as e:
        logger.error("Save data failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to save state")
