"""
DM Lab — Prospects Router
===========================

CRM board cards. Independent of the KPI math.

Endpoints:
  GET    /api/prospects                 - List prospects with filters
  GET    /api/prospects/board           - Kanban columns in funnel order
  POST   /api/prospects                 - Create a prospect
  PUT    /api/prospects/{prospect_id}   - Update a prospect (stage codes normalized)
  DELETE /api/prospects/{prospect_id}   - Delete a prospect
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, HTTPException, Query

from dashboard.api.deps import get_container, run_action
from scripts.dmlab.reporting import group_prospects_by_stage
from scripts.dmlab.schema_normalizer import normalize_lead_stage
from scripts.dmlab.state_actions import add_prospect, delete_prospect, update_prospect
from scripts.lib.logger import setup_logger

logger = setup_logger("dmlab_prospects_router")

router = APIRouter(prefix="/api/prospects", tags=["prospects"])


@router.get("")
async def list_prospects(
    account_id: Optional[str] = Query(None, description="Filter by account"),
    stage: Optional[str] = Query(None, description="Filter by funnel stage"),
    search: Optional[str] = Query(None, description="Search name/notes"),
):
    try:
        prospects = get_container().state.prospects
        if account_id and account_id != "all":
            prospects = [p for p in prospects if p.account_id == account_id]
        if stage:
            wanted = normalize_lead_stage(stage)
            prospects = [p for p in prospects if p.stage == wanted]
        if search:
            needle = search.lower()
            prospects = [p for p in prospects if needle in p.name.lower() or needle in p.notes.lower()]
        return {"results": prospects, "count": len(prospects)}
    except Exception as e:
        logger.error("List prospects failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to fetch prospects")


@router.get("/board")
async def prospect_board():
    return {"columns": group_prospects_by_stage(get_container().state.prospects)}


@router.post("", status_code=201)
async def create_prospect(body: Dict[str, Any] = Body(...)):
    if not str(body.get("name") or "").strip():
        raise HTTPException(status_code=400, detail="Prospect name is required")
    return run_action(add_prospect, body).item


@router.put("/{prospect_id}")
async def edit_prospect(prospect_id: str, body: Dict[str, Any] = Body(...)):
    if not body:
        raise HTTPException(status_code=400, detail="No fields to update")
    return run_action(update_prospect, prospect_id, body).item


@router.delete("/{prospect_id}")
async def remove_prospect(prospect_id: str):
    run_action(delete_prospect, prospect_id)
    return {"deleted": prospect_id}
