"""Tests for derived reporting views."""

from datetime import date

import pytest

from models.analytics_models import Totals
from models.dmlab_models import FunnelStage
from scripts.dmlab.constants import BOTTLENECK_NONE
from scripts.dmlab.kpi_calculator import compute_kpis
from scripts.dmlab.reporting import (
    build_daily_series,
    build_dashboard_snapshot,
    build_funnel_series,
    campaign_options,
    forecast_required_activity,
    group_prospects_by_stage,
    week_bounds,
    weekly_goal_progress,
)
from scripts.dmlab.schema_normalizer import normalize_log, normalize_prospect, normalize_state


def _old_lane_state(exclude=True):
    return normalize_state({
        "config": {"exclude_old_leads_from_kpi": exclude},
        "logs": [
            {"id": "old", "date": "2025-01-06", "is_old_leads_lane": True, "booked_calls": 5, "campaign_tag": "reboot"},
            {"id": "new", "date": "2025-01-07", "is_old_leads_lane": False, "booked_calls": 1, "campaign_tag": "core"},
        ],
    })


class TestDashboardSnapshot:
    def test_old_lane_reported_separately(self):
        snapshot = build_dashboard_snapshot(_old_lane_state())
        assert snapshot["totals"].booked_calls == 1
        assert snapshot["old_lane_totals"].booked_calls == 5
        assert snapshot["kpi_log_count"] == 1
        assert [log.id for log in snapshot["table_logs"]] == ["old", "new"]

    def test_policy_off_merges_lanes(self):
        snapshot = build_dashboard_snapshot(_old_lane_state(exclude=False))
        assert snapshot["totals"].booked_calls == 6
        assert snapshot["old_lane_totals"].booked_calls == 5

    def test_criteria_and_campaign_options(self):
        snapshot = build_dashboard_snapshot(_old_lane_state(), {"campaignTag": "core"})
        assert snapshot["totals"].booked_calls == 1
        assert snapshot["old_lane_totals"].booked_calls == 0
        assert snapshot["campaign_options"] == ["core", "reboot"]

    def test_experiments_evaluated(self, experiment_state):
        snapshot = build_dashboard_snapshot(experiment_state)
        assert snapshot["experiments"][0].winner.variant_id == "var_a"


class TestSeries:
    def test_daily_series_ascending_sums(self):
        logs = [
            normalize_log({"date": "2025-01-03", "bookedCalls": 1}),
            normalize_log({"date": "2025-01-01", "connectionRequestsSent": 4}),
            normalize_log({"date": "2025-01-03", "bookedCalls": 2}),
        ]
        series = build_daily_series(logs)
        assert [row["date"] for row in series] == ["2025-01-01", "2025-01-03"]
        assert series[1]["booked_calls"] == 3
        assert series[0]["connection_requests_sent"] == 4

    def test_funnel_series_order(self):
        series = build_funnel_series(Totals(connection_requests_sent=10, closed_deals=1))
        assert series[0] == {"stage": "Requested", "value": 10}
        assert series[-1] == {"stage": "Closed", "value": 1}
        assert len(series) == 8

    def test_campaign_options_unique_sorted(self):
        logs = [normalize_log({"campaignTag": tag}) for tag in ("b", "a", "", "b")]
        assert campaign_options(logs) == ["a", "b"]


class TestWeeklyGoals:
    def test_week_bounds_monday_to_sunday(self):
        start, end = week_bounds(date(2025, 1, 8))
        assert start == date(2025, 1, 6)
        assert end == date(2025, 1, 12)

    def test_progress_capped_and_policy_applied(self):
        state = normalize_state({
            "config": {"accounts": [
                {"id": "a1", "name": "One", "weekly_goals": {"connection_requests": 10, "booked_calls": 2}},
            ]},
            "logs": [
                {"date": "2025-01-06", "account_id": "a1", "connection_requests_sent": 15, "booked_calls": 1},
                {"date": "2025-01-07", "account_id": "a1", "booked_calls": 4, "is_old_leads_lane": True},
                {"date": "2025-01-02", "account_id": "a1", "connection_requests_sent": 99},
            ],
        })
        progress = weekly_goal_progress(state, date(2025, 1, 8))[0]
        assert progress.week_start == "2025-01-06"
        assert progress.connection_requests.current == 15
        assert progress.connection_requests.percent == 100.0
        assert progress.booked_calls.current == 1
        assert progress.booked_calls.percent == 50.0
        assert progress.permission_sent.percent == 0.0


class TestForecast:
    def test_forecast_from_actual_rates(self):
        kpis = compute_kpis(Totals(
            connection_requests_sent=100, connections_accepted=25,
            permission_messages_sent=50, permission_positives=5,
            offer_or_booking_intent_positives=3, booked_calls=2,
        ))
        forecast = forecast_required_activity(kpis, target_booked=5, timeframe="week")
        assert forecast.required_permission_sent == 125
        assert forecast.required_connection_requests == 500
        assert forecast.predicted_positive_replies == 13
        assert forecast.predicted_offer_positives == 8
        assert forecast.connection_requests_per_day == 100
        assert forecast.permission_sent_per_day == 25
        assert forecast.is_estimate is False

    def test_baselines_when_no_data(self):
        forecast = forecast_required_activity(compute_kpis(Totals()), target_booked=5, timeframe="month")
        assert forecast.required_permission_sent == 500
        assert forecast.required_connection_requests == 2500
        assert forecast.permission_sent_per_day == 25
        assert forecast.is_estimate is True

    def test_unknown_timeframe_falls_back_to_week(self):
        forecast = forecast_required_activity(compute_kpis(Totals()), 1, "quarter")
        assert forecast.timeframe == "week"


class TestProspectBoard:
    def test_columns_in_funnel_order(self):
        prospects = [normalize_prospect({"name": "A", "stage": "BOOKED"}), normalize_prospect({"name": "B", "stage": "X"})]
        columns = group_prospects_by_stage(prospects)
        assert [c["stage"] for c in columns][:2] == ["REQUESTED", "CONNECTED"]
        by_stage = {c["stage"]: c["prospects"] for c in columns}
        assert [p.name for p in by_stage[FunnelStage.BOOKED.value]] == ["A"]
        assert [p.name for p in by_stage["LOST"]] == ["B"]
        assert len(columns) == 9


@pytest.mark.parametrize("exclude, expected", [(True, BOTTLENECK_NONE), (False, BOTTLENECK_NONE)])
def test_snapshot_kpis_have_bottleneck(exclude, expected):
    state = normalize_state({
        "config": {"exclude_old_leads_from_kpi": exclude},
        "logs": [{
            "connection_requests_sent": 100, "connections_accepted": 30, "permission_messages_sent": 30,
            "permission_positives": 3, "offer_or_booking_intent_positives": 2, "booked_calls": 1,
        }],
    })
    assert build_dashboard_snapshot(state)["kpis"].bottleneck == expected
