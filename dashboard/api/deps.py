"""
DM Lab — API Dependencies
===========================

Shared state container access, action execution with rejection → HTTP
status mapping, and the common log filter query parameters.
"""
from __future__ import annotations

from typing import Callable, Optional

from fastapi import HTTPException, Query

from models.analytics_models import FilterCriteria
from scripts.dmlab.state_actions import NOT_FOUND, ActionResult
from scripts.lib.errors import StorageError
from scripts.lib.logger import setup_logger
from scripts.lib.state_store import LocalStateStore, StateContainer

logger = setup_logger("api_deps")

_container: Optional[StateContainer] = None


def get_container() -> StateContainer:
    """Return the process-wide state container, loading it on first use."""
    global _container
    if _container is None:
        _container = StateContainer(LocalStateStore())
        _container.load()
    return _container


def set_container(container: Optional[StateContainer]) -> None:
    global _container
    _container = container


def rejection_status(code: Optional[str]) -> int:
    return 404 if code == NOT_FOUND else 409


def run_action(action: Callable[..., ActionResult], *args, **kwargs) -> ActionResult:
    """Apply an action to the shared state. Rejections become 404/409 responses."""
    try:
        result = get_container().apply(action, *args, **kwargs)
    except StorageError as e:
        logger.error("Autosave after %s failed: %s", action.__name__, e)
        raise HTTPException(status_code=500, detail="Failed to save state")

    if not result.ok:
        raise HTTPException(
            status_code=rejection_status(result.code),
            detail={"code": result.code, "reason": result.reason},
        )
    return result


def filter_params(
    account_id: Optional[str] = Query(None, description="Account id or 'all'"),
    campaign_tag: Optional[str] = Query(None, description="Campaign tag or 'all'"),
    experiment_id: Optional[str] = Query(None, description="Experiment id"),
    variant_id: Optional[str] = Query(None, description="Variant id"),
    start: Optional[str] = Query(None, description="Inclusive start date (YYYY-MM-DD)"),
    end: Optional[str] = Query(None, description="Inclusive end date (YYYY-MM-DD)"),
) -> FilterCriteria:
    return FilterCriteria(
        account_id=account_id,
        campaign_tag=campaign_tag,
        experiment_id=experiment_id,
        variant_id=variant_id,
        start=start,
        end=end,
    )
