"""
DM Lab — Settings Router
==========================

KPI targets, global flags and LinkedIn accounts.

Endpoints:
  GET    /api/settings                          - Config + KPI definitions
  PUT    /api/settings/targets                  - Merge partial KPI targets
  PUT    /api/settings/config                   - autosave / excludeOldLeadsFromKpi
  POST   /api/settings/accounts                 - Add an account
  PUT    /api/settings/accounts/{id}            - Rename / set weekly goals
  POST   /api/settings/accounts/{id}/rename     - Change the id (cascades to logs + prospects)
  DELETE /api/settings/accounts/{id}            - Delete an unreferenced account
"""
from __future__ import annotations

from fastapi import APIRouter

from dashboard.api.deps import get_container, run_action
from models.analytics_models import (
    AccountCreate,
    AccountRename,
    AccountUpdate,
    ConfigUpdate,
    TargetsUpdate,
)
from scripts.dmlab.constants import KPI_DEFINITIONS
from scripts.dmlab.state_actions import (
    add_account,
    delete_account,
    rename_account_id,
    update_account,
    update_config,
    update_kpi_targets,
)
from scripts.lib.logger import setup_logger

logger = setup_logger("dmlab_settings_router")

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("")
async def get_settings():
    return {
        "config": get_container().state.config,
        "kpi_definitions": {metric.value: text for metric, text in KPI_DEFINITIONS.items()},
    }


@router.put("/targets")
async def put_targets(body: TargetsUpdate):
    return run_action(update_kpi_targets, body.targets).item


@router.put("/config")
async def put_config(body: ConfigUpdate):
    return run_action(
        update_config,
        autosave=body.autosave,
        exclude_old_leads_from_kpi=body.exclude_old_leads_from_kpi,
    ).item


@router.post("/accounts", status_code=201)
async def create_account(body: AccountCreate):
    return run_action(add_account, body.name, account_id=body.id, weekly_goals=body.weekly_goals).item


@router.put("/accounts/{account_id}")
async def edit_account(account_id: str, body: AccountUpdate):
    return run_action(update_account, account_id, name=body.name, weekly_goals=body.weekly_goals).item


@router.post("/accounts/{account_id}/rename")
async def rename_account(account_id: str, body: AccountRename):
    account = run_action(rename_account_id, account_id, body.new_id).item
    logger.info("Account %s renamed to %s", account_id, account.id)
    return account


@router.delete("/accounts/{account_id}")
async def remove_account(account_id: str):
    run_action(delete_account, account_id)
    return {"deleted": account_id}
