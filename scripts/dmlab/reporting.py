"""
DM Lab — Reporting
====================

Derived views over the canonical state, built on the filter → aggregate →
KPI pipeline. All functions are pure.

Functions:
  build_daily_series()          - Per-date funnel sums, ascending
  build_funnel_series()         - (stage, count) pairs Requested → Closed
  weekly_goal_progress()        - Monday-Sunday progress vs. account goals
  forecast_required_activity()  - Reverse forecast from a booked-calls target
  campaign_options()            - Sorted unique campaign tags
  group_prospects_by_stage()    - Kanban columns in funnel order
  build_dashboard_snapshot()    - Everything the primary KPI view needs
"""
from __future__ import annotations

import math
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional

from models.analytics_models import (
    AccountWeeklyProgress,
    FilterCriteria,
    Forecast,
    GoalProgress,
    KpiResult,
    Totals,
)
from models.dmlab_models import AppState, DailyLog, Metric, Prospect
from scripts.dmlab.aggregator import aggregate_logs
from scripts.dmlab.constants import FUNNEL_STAGE_LABELS, FUNNEL_STAGES
from scripts.dmlab.experiment_evaluator import evaluate_experiments
from scripts.dmlab.kpi_calculator import compute_kpis
from scripts.dmlab.log_filter import coerce_criteria, filter_logs

DAILY_SERIES_FIELDS = (
    "connection_requests_sent",
    "connections_accepted",
    "permission_messages_sent",
    "permission_positives",
    "offer_or_booking_intent_positives",
    "booked_calls",
)

FUNNEL_SERIES = (
    ("Requested", "connection_requests_sent"),
    ("Connected", "connections_accepted"),
    ("Permission Sent", "permission_messages_sent"),
    ("Permission Positive", "permission_positives"),
    ("Offer Positive / Booking Intent", "offer_or_booking_intent_positives"),
    ("Booked", "booked_calls"),
    ("Attended", "attended_calls"),
    ("Closed", "closed_deals"),
)

WORKING_DAYS = {"week": 5, "month": 20}
BASELINE_BOOKED_RATE = 0.01
BASELINE_CR = 0.2


def build_daily_series(logs: Iterable[DailyLog]) -> List[Dict[str, Any]]:
    by_date: Dict[str, Dict[str, Any]] = {}
    for log in logs or []:
        if not log.date:
            continue
        row = by_date.setdefault(log.date, {"date": log.date, **dict.fromkeys(DAILY_SERIES_FIELDS, 0)})
        for field in DAILY_SERIES_FIELDS:
            row[field] += getattr(log, field)
    return [by_date[key] for key in sorted(by_date)]


def build_funnel_series(totals: Totals) -> List[Dict[str, Any]]:
    return [{"stage": label, "value": getattr(totals, field)} for label, field in FUNNEL_SERIES]


def week_bounds(today: date) -> tuple[date, date]:
    """Monday and Sunday of the week containing ``today``."""
    start = today - timedelta(days=today.weekday())
    return start, start + timedelta(days=6)


def _progress(current: int, goal: int) -> GoalProgress:
    percent = min(100.0, current / goal * 100) if goal > 0 else 0.0
    return GoalProgress(current=current, goal=goal, percent=round(percent, 2))


def weekly_goal_progress(state: AppState, today: Optional[date] = None) -> List[AccountWeeklyProgress]:
    """Per-account progress for the current week, honouring the old-leads exclusion policy."""
    start, end = week_bounds(today or date.today())
    week_logs = filter_logs(state.logs, FilterCriteria(
        start=start.isoformat(),
        end=end.isoformat(),
        exclude_old_leads=state.config.exclude_old_leads_from_kpi,
    ))

    progress = []
    for account in state.config.accounts:
        totals = aggregate_logs([log for log in week_logs if log.account_id == account.id])
        goals = account.weekly_goals
        progress.append(AccountWeeklyProgress(
            account_id=account.id,
            account_name=account.name,
            week_start=start.isoformat(),
            week_end=end.isoformat(),
            connection_requests=_progress(totals.connection_requests_sent, goals.connection_requests),
            permission_sent=_progress(totals.permission_messages_sent, goals.permission_sent),
            booked_calls=_progress(totals.booked_calls, goals.booked_calls),
        ))
    return progress


def forecast_required_activity(kpis: KpiResult, target_booked: int = 5, timeframe: str = "week") -> Forecast:
    """
    Work backwards from a booked-calls target:
      permission messages = ceil(target / booked rate)
      connection requests = ceil(permission messages / CR)

    A missing or zero booked rate or CR is replaced with the 1% / 20%
    baselines and the forecast is flagged as an estimate.
    """
    target_booked = max(1, int(target_booked))
    days = WORKING_DAYS.get(timeframe, WORKING_DAYS["week"])

    booked_rate = kpis.value(Metric.BOOKED_KPI) or 0.0
    cr = kpis.value(Metric.CR) or 0.0
    prr = kpis.value(Metric.PRR) or 0.0
    abr = kpis.value(Metric.ABR) or 0.0

    effective_booked = booked_rate if booked_rate > 0 else BASELINE_BOOKED_RATE
    effective_cr = cr if cr > 0 else BASELINE_CR

    permission = math.ceil(round(target_booked / effective_booked, 9))
    connections = math.ceil(round(permission / effective_cr, 9))

    return Forecast(
        target_booked=target_booked,
        timeframe=timeframe if timeframe in WORKING_DAYS else "week",
        required_permission_sent=permission,
        required_connection_requests=connections,
        predicted_positive_replies=math.ceil(round(permission * prr, 9)),
        predicted_offer_positives=math.ceil(round(permission * abr, 9)),
        connection_requests_per_day=math.ceil(connections / days),
        permission_sent_per_day=math.ceil(permission / days),
        is_estimate=booked_rate <= 0 or cr <= 0,
    )


def campaign_options(logs: Iterable[DailyLog]) -> List[str]:
    return sorted({log.campaign_tag for log in logs or [] if log.campaign_tag})


def group_prospects_by_stage(prospects: Iterable[Prospect]) -> List[Dict[str, Any]]:
    prospects = list(prospects or [])
    return [
        {
            "stage": stage.value,
            "label": FUNNEL_STAGE_LABELS[stage],
            "prospects": [p for p in prospects if p.stage == stage],
        }
        for stage in FUNNEL_STAGES
    ]


def build_dashboard_snapshot(
    state: AppState,
    criteria: FilterCriteria | Mapping[str, Any] | None = None,
) -> Dict[str, Any]:
    """
    Primary KPI view. KPI logs apply the exclusion policy; the old-leads lane
    is aggregated separately; table logs keep old leads.
    """
    criteria = coerce_criteria(criteria)
    policy = state.config.exclude_old_leads_from_kpi

    kpi_logs = filter_logs(
        state.logs,
        criteria.model_copy(update={"exclude_old_leads": policy, "include_old_leads": False}),
    )
    old_lane_logs = filter_logs(state.logs, criteria.model_copy(update={"only_old_leads": True}))
    table_logs = filter_logs(state.logs, criteria.model_copy(update={"exclude_old_leads": False}))

    totals = aggregate_logs(kpi_logs)
    return {
        "totals": totals,
        "kpis": compute_kpis(totals, state.config.kpi_targets),
        "old_lane_totals": aggregate_logs(old_lane_logs),
        "kpi_log_count": len(kpi_logs),
        "table_logs": table_logs,
        "campaign_options": campaign_options(state.logs),
        "funnel": build_funnel_series(totals),
        "experiments": evaluate_experiments(
            state.experiments, state.logs,
            criteria.model_copy(update={"include_old_leads": False}),
            state.config,
        ),
    }
