"""
DM Lab — Experiment Evaluator
===============================

Per-variant KPIs for an experiment, a sample-size validity gate and winner
selection. A winner is never declared from an insufficient sample.

For each variant:
  1. Logs with matching experiment_id AND variant_id
  2. Caller's filter criteria + the config's old-leads exclusion policy
  3. Aggregate → KPIs → value of the experiment's primary metric
  4. seen = permission_seen (PERMISSION) / offer_seen (OFFER) / 0 otherwise
  5. valid = required == 0 or seen >= required

Winner: strictly greatest metric value among valid variants (None counts as
-1, ties keep the earliest variant). No valid variant → winner is None.
"""
from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Optional

from models.analytics_models import ExperimentEvaluation, FilterCriteria, Totals, VariantStats
from models.dmlab_models import DailyLog, DMLabConfig, Experiment, ExperimentStage
from scripts.dmlab.aggregator import aggregate_logs
from scripts.dmlab.kpi_calculator import compute_kpis
from scripts.dmlab.log_filter import coerce_criteria, filter_logs
from scripts.lib.logger import setup_logger

logger = setup_logger("experiment_evaluator")


def seen_for_stage(stage: ExperimentStage, totals: Totals) -> int:
    if stage is ExperimentStage.PERMISSION:
        return totals.permission_seen
    if stage is ExperimentStage.OFFER:
        return totals.offer_seen
    return 0


def _variant_criteria(criteria: FilterCriteria, config: DMLabConfig) -> FilterCriteria:
    scoped = criteria.model_copy()
    scoped.exclude_old_leads = config.exclude_old_leads_from_kpi
    # The experiment/variant scope comes from the experiment itself
    scoped.experiment_id = None
    scoped.variant_id = None
    return scoped


def pick_winner(variant_stats: Iterable[VariantStats]) -> Optional[VariantStats]:
    best = None
    for stats in variant_stats:
        if not stats.is_valid:
            continue
        value = stats.metric_value if stats.metric_value is not None else -1
        best_value = best.metric_value if best is not None and best.metric_value is not None else -1
        if best is None or value > best_value:
            best = stats
    return best


def evaluate_experiment(
    experiment: Experiment,
    logs: Iterable[DailyLog],
    criteria: FilterCriteria | Mapping[str, Any] | None = None,
    config: Optional[DMLabConfig] = None,
) -> ExperimentEvaluation:
    config = config or DMLabConfig()
    criteria = _variant_criteria(coerce_criteria(criteria), config)
    logs = list(logs or [])
    required = experiment.required_sample_size_seen

    variant_stats: List[VariantStats] = []
    for variant in experiment.variants:
        variant_logs = [
            log for log in logs
            if log.experiment_id == experiment.id and log.variant_id == variant.id
        ]
        totals = aggregate_logs(filter_logs(variant_logs, criteria))
        kpis = compute_kpis(totals, config.kpi_targets)
        seen = seen_for_stage(experiment.funnel_stage_targeted, totals)
        variant_stats.append(VariantStats(
            variant_id=variant.id,
            variant_name=variant.name,
            totals=totals,
            kpis=kpis,
            metric_value=kpis.value(experiment.primary_metric),
            seen=seen,
            required=required,
            is_valid=required == 0 or seen >= required,
        ))

    winner = pick_winner(variant_stats)
    if winner is None:
        logger.debug("Experiment %s: insufficient sample, no winner", experiment.id)

    return ExperimentEvaluation(
        experiment_id=experiment.id,
        experiment_name=experiment.name,
        primary_metric=experiment.primary_metric,
        variant_stats=variant_stats,
        winner=winner,
    )


def evaluate_experiments(
    experiments: Iterable[Experiment],
    logs: Iterable[DailyLog],
    criteria: FilterCriteria | Mapping[str, Any] | None = None,
    config: Optional[DMLabConfig] = None,
) -> List[ExperimentEvaluation]:
    logs = list(logs or [])
    return [evaluate_experiment(experiment, logs, criteria, config) for experiment in experiments or []]
