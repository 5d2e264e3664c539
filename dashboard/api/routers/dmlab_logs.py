"""
DM Lab — Daily Logs Router
============================

Endpoints:
  GET    /api/logs           - Logs matching the filters (old leads included)
  POST   /api/logs           - Add a log (any raw shape, e.g. browser extension push)
  PUT    /api/logs/{log_id}  - Update a log
  DELETE /api/logs/{log_id}  - Delete a log
"""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException

from dashboard.api.deps import filter_params, get_container, run_action
from models.analytics_models import FilterCriteria
from scripts.dmlab.log_filter import filter_logs
from scripts.dmlab.state_actions import add_log, delete_log, update_log
from scripts.lib.logger import setup_logger

logger = setup_logger("dmlab_logs_router")

router = APIRouter(prefix="/api/logs", tags=["logs"])


@router.get("")
async def list_logs(criteria: FilterCriteria = Depends(filter_params)):
    """List logs newest-first."""
    try:
        logs = filter_logs(get_container().state.logs, criteria)
        return {"results": logs, "count": len(logs)}
    except Exception as e:
        logger.error("List logs failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to fetch logs")


@router.post("", status_code=201)
async def create_log(body: Dict[str, Any] = Body(...)):
    """Add a daily log. Account names are resolved to account ids."""
    result = run_action(add_log, body)
    logger.info("Log %s added for %s", result.item.id, result.item.date)
    return result.item


@router.put("/{log_id}")
async def edit_log(log_id: str, body: Dict[str, Any] = Body(...)):
    if not body:
        raise HTTPException(status_code=400, detail="No fields to update")
    return run_action(update_log, log_id, body).item


@router.delete("/{log_id}")
async def remove_log(log_id: str):
    run_action(delete_log, log_id)
    return {"deleted": log_id}
