"""Tests for per-variant evaluation, the sample-size gate and winner selection."""

import pytest

from models.analytics_models import KpiResult, Totals, VariantStats
from models.dmlab_models import DMLabConfig, ExperimentStage, Metric
from scripts.dmlab.experiment_evaluator import (
    evaluate_experiment,
    evaluate_experiments,
    pick_winner,
    seen_for_stage,
)
from scripts.dmlab.kpi_calculator import compute_kpis
from scripts.dmlab.schema_normalizer import normalize_experiment, normalize_log


def _experiment(stage="PERMISSION", metric=None, required=None, variants=("v1", "v2")):
    raw = {
        "id": "exp",
        "name": "Experiment",
        "funnel_stage_targeted": stage,
        "variants": [{"id": variant_id, "name": variant_id.upper()} for variant_id in variants],
    }
    if metric is not None:
        raw["primary_metric"] = metric
    if required is not None:
        raw["required_sample_size_seen"] = required
    return normalize_experiment(raw)


def _log(variant_id, **counts):
    return normalize_log({"experiment_id": "exp", "variant_id": variant_id, "date": "2025-01-06", **counts})


def _stats(variant_id, value, valid=True):
    return VariantStats(
        variant_id=variant_id,
        variant_name=variant_id,
        totals=Totals(),
        kpis=compute_kpis(Totals()),
        metric_value=value,
        is_valid=valid,
    )


class TestSeenForStage:
    def test_seen_per_stage(self):
        totals = Totals(permission_seen=12, offer_seen=7, permission_messages_sent=100)
        assert seen_for_stage(ExperimentStage.PERMISSION, totals) == 12
        assert seen_for_stage(ExperimentStage.OFFER, totals) == 7
        assert seen_for_stage(ExperimentStage.CONNECTION, totals) == 0
        assert seen_for_stage(ExperimentStage.BOOKING, totals) == 0


class TestPickWinner:
    def test_highest_valid_value(self):
        assert pick_winner([_stats("a", 0.1), _stats("b", 0.3), _stats("c", 0.2)]).variant_id == "b"

    def test_invalid_never_wins(self):
        assert pick_winner([_stats("a", 0.1), _stats("b", 0.9, valid=False)]).variant_id == "a"

    def test_tie_keeps_first(self):
        assert pick_winner([_stats("a", 0.2), _stats("b", 0.2)]).variant_id == "a"

    def test_none_loses_to_zero(self):
        assert pick_winner([_stats("a", None), _stats("b", 0.0)]).variant_id == "b"

    def test_no_valid_variant(self):
        assert pick_winner([_stats("a", 0.5, valid=False)]) is None
        assert pick_winner([]) is None


class TestEvaluateExperiment:
    def test_insufficient_sample_beats_raw_rate(self, experiment_state):
        experiment = experiment_state.get_experiment("exp_1")
        evaluation = evaluate_experiment(experiment, experiment_state.logs, config=experiment_state.config)

        stats = {s.variant_id: s for s in evaluation.variant_stats}
        assert stats["var_b"].metric_value > stats["var_a"].metric_value
        assert stats["var_b"].seen == 59
        assert stats["var_b"].is_valid is False
        assert stats["var_a"].is_valid is True
        assert evaluation.winner.variant_id == "var_a"

    def test_zero_rate_with_full_sample_is_valid(self):
        experiment = _experiment(metric="ABR", required=60, variants=("v1",))
        logs = [_log("v1", permission_seen=60, permission_messages_sent=10, offer_or_booking_intent_positives=0)]
        evaluation = evaluate_experiment(experiment, logs)

        stats = evaluation.variant_stats[0]
        assert stats.metric_value == 0.0
        assert stats.is_valid is True
        assert evaluation.winner.variant_id == "v1"

    def test_no_valid_variant_means_no_winner(self):
        experiment = _experiment()
        logs = [_log("v1", permission_seen=10, permission_messages_sent=10, permission_positives=5)]
        evaluation = evaluate_experiment(experiment, logs)
        assert evaluation.winner is None
        assert evaluation.insufficient_sample is True

    def test_zero_required_always_valid(self):
        experiment = _experiment(stage="CONNECTION", variants=("v1", "v2"))
        logs = [
            _log("v1", connection_requests_sent=10, connections_accepted=2),
            _log("v2", connection_requests_sent=10, connections_accepted=4),
        ]
        evaluation = evaluate_experiment(experiment, logs)
        assert evaluation.primary_metric is Metric.CR
        assert all(s.is_valid for s in evaluation.variant_stats)
        assert evaluation.winner.variant_id == "v2"

    def test_only_matching_experiment_logs_counted(self):
        experiment = _experiment(stage="CONNECTION", variants=("v1",))
        logs = [
            _log("v1", connection_requests_sent=10),
            normalize_log({"experiment_id": "other", "variant_id": "v1", "connection_requests_sent": 50}),
        ]
        stats = evaluate_experiment(experiment, logs).variant_stats[0]
        assert stats.totals.connection_requests_sent == 10

    def test_old_lane_excluded_by_config(self):
        experiment = _experiment(stage="CONNECTION", variants=("v1",))
        logs = [
            _log("v1", connection_requests_sent=10),
            _log("v1", connection_requests_sent=90, is_old_leads_lane=True),
        ]
        excluded = evaluate_experiment(experiment, logs, config=DMLabConfig(exclude_old_leads_from_kpi=True))
        included = evaluate_experiment(experiment, logs, config=DMLabConfig(exclude_old_leads_from_kpi=False))
        assert excluded.variant_stats[0].totals.connection_requests_sent == 10
        assert included.variant_stats[0].totals.connection_requests_sent == 100

    def test_caller_criteria_apply(self):
        experiment = _experiment(stage="CONNECTION", variants=("v1",))
        logs = [
            _log("v1", connection_requests_sent=10, date="2025-01-01"),
            _log("v1", connection_requests_sent=5, date="2025-02-01"),
        ]
        stats = evaluate_experiment(experiment, logs, {"start": "2025-01-15"}).variant_stats[0]
        assert stats.totals.connection_requests_sent == 5

    def test_evaluate_many(self, experiment_state):
        evaluations = evaluate_experiments(experiment_state.experiments, experiment_state.logs)
        assert [e.experiment_id for e in evaluations] == ["exp_1"]
        assert isinstance(evaluations[0].variant_stats[0].kpis, KpiResult)

    @pytest.mark.parametrize("required, seen, valid", [(60, 59, False), (60, 60, True), (0, 0, True)])
    def test_validity_gate(self, required, seen, valid):
        experiment = _experiment(required=required, variants=("v1",))
        logs = [_log("v1", permission_seen=seen, permission_messages_sent=100, permission_positives=50)]
        assert evaluate_experiment(experiment, logs).variant_stats[0].is_valid is valid
