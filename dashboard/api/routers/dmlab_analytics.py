"""
DM Lab — Analytics Router
===========================

KPI dashboard, chart series, weekly goals, forecasting and CSV export.
KPI figures honor config.exclude_old_leads_from_kpi; the old-leads lane is
reported separately.

Endpoints:
  GET /api/analytics/kpis          - Dashboard snapshot (totals, KPIs, bottleneck, experiments)
  GET /api/analytics/funnel        - Funnel bar-chart series
  GET /api/analytics/daily         - Per-day series for the trend chart
  GET /api/analytics/weekly-goals  - Current-week progress per account
  GET /api/analytics/forecast      - Activity needed to hit a booked-call goal
  GET /api/analytics/export.csv    - Filtered logs as CSV
"""
from __future__ import annotations

from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from dashboard.api.deps import filter_params, get_container
from models.analytics_models import FilterCriteria
from scripts.dmlab.aggregator import aggregate_logs
from scripts.dmlab.csv_export import build_csv
from scripts.dmlab.kpi_calculator import compute_kpis
from scripts.dmlab.log_filter import filter_logs
from scripts.dmlab.reporting import (
    build_daily_series,
    build_dashboard_snapshot,
    build_funnel_series,
    forecast_required_activity,
    weekly_goal_progress,
)
from scripts.lib.logger import setup_logger

logger = setup_logger("dmlab_analytics_router")

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


def _kpi_logs(criteria: FilterCriteria):
    state = get_container().state
    policy = criteria.model_copy(update={
        "exclude_old_leads": state.config.exclude_old_leads_from_kpi,
        "include_old_leads": False,
    })
    return state, filter_logs(state.logs, policy)


@router.get("/kpis")
async def get_kpis(criteria: FilterCriteria = Depends(filter_params)):
    try:
        snapshot = build_dashboard_snapshot(get_container().state, criteria)
        snapshot["table_log_count"] = len(snapshot.pop("table_logs"))
        return snapshot
    except Exception as e:
        logger.error("KPI snapshot failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to compute KPIs")


@router.get("/funnel")
async def get_funnel(criteria: FilterCriteria = Depends(filter_params)):
    try:
        _, logs = _kpi_logs(criteria)
        return {"series": build_funnel_series(aggregate_logs(logs))}
    except Exception as e:
        logger.error("Funnel series failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to build funnel")


@router.get("/daily")
async def get_daily(criteria: FilterCriteria = Depends(filter_params)):
    try:
        _, logs = _kpi_logs(criteria)
        return {"series": build_daily_series(logs)}
    except Exception as e:
        logger.error("Daily series failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to build daily series")


@router.get("/weekly-goals")
async def get_weekly_goals(
    today: Optional[date] = Query(None, description="Reference day (defaults to today)"),
):
    try:
        return {"accounts": weekly_goal_progress(get_container().state, today)}
    except Exception as e:
        logger.error("Weekly goals failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to compute weekly goals")


@router.get("/forecast")
async def get_forecast(
    target_booked: int = Query(5, ge=0, description="Booked calls goal"),
    timeframe: Literal["week", "month"] = Query("week"),
    criteria: FilterCriteria = Depends(filter_params),
):
    """Required sends from current rates; falls back to baseline rates when they are zero."""
    try:
        state, logs = _kpi_logs(criteria)
        kpis = compute_kpis(aggregate_logs(logs), state.config.kpi_targets)
        return forecast_required_activity(kpis, target_booked, timeframe)
    except Exception as e:
        logger.error("Forecast failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to build forecast")


@router.get("/export.csv")
async def export_csv(criteria: FilterCriteria = Depends(filter_params)):
    try:
        state = get_container().state
        logs = filter_logs(state.logs, criteria)
        content = build_csv(logs, state.config, state.experiments)
    except Exception as e:
        logger.error("CSV export failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to export CSV")

    filename = f"dm_lab_logs_{date.today().isoformat()}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
