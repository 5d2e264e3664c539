"""
DM Lab — KPI Calculator
=========================

Converts funnel totals into ratio metrics, classifies each against its
target and diagnoses the funnel bottleneck.

Ratios are on a 0-1 scale and None when the denominator is 0 ("no data",
as opposed to a known 0% rate). Targets are percentages on a 0-100 scale.

Functions:
  safe_divide()        - numerator / denominator, None when denominator <= 0
  status_for()         - good / warn / bad / neutral for one ratio
  compute_bottleneck() - latest healthy stage → the stage after it
  compute_kpis()       - full KpiResult for a Totals record
"""
from __future__ import annotations

import math
from typing import Any, Dict, Mapping, Optional

from models.analytics_models import KpiResult, Totals
from models.dmlab_models import KpiStatus, KpiTargets, Metric
from scripts.dmlab.constants import (
    BOTTLENECK_BOOKING,
    BOTTLENECK_NONE,
    BOTTLENECK_OFFER,
    BOTTLENECK_PERMISSION,
    BOTTLENECK_TARGETING,
    WARN_RATIO,
)
from scripts.dmlab.schema_normalizer import normalize_kpi_targets

# metric → (numerator, denominator) on Totals
RATIO_DEFINITIONS = {
    Metric.CR: ("connections_accepted", "connection_requests_sent"),
    Metric.PRR: ("permission_positives", "permission_messages_sent"),
    Metric.ABR: ("offer_or_booking_intent_positives", "permission_messages_sent"),
    Metric.BOOKED_KPI: ("booked_calls", "permission_messages_sent"),
    Metric.POSITIVE_TO_ABR: ("offer_or_booking_intent_positives", "permission_positives"),
    Metric.ABR_TO_BOOKED: ("booked_calls", "offer_or_booking_intent_positives"),
    Metric.SEEN_RATE: ("permission_seen", "permission_messages_sent"),
    Metric.SHOW_UP_RATE: ("attended_calls", "booked_calls"),
    Metric.SCR: ("closed_deals", "attended_calls"),
}

PRIMARY_METRICS = (Metric.CR, Metric.PRR, Metric.ABR, Metric.BOOKED_KPI)
SECONDARY_METRICS = (Metric.POSITIVE_TO_ABR, Metric.ABR_TO_BOOKED)
DIAGNOSTIC_METRICS = (Metric.SEEN_RATE, Metric.SHOW_UP_RATE, Metric.SCR)

# Latest funnel stage first; the first healthy one names the bottleneck
_BOTTLENECK_ORDER = (
    (Metric.BOOKED_KPI, BOTTLENECK_NONE),
    (Metric.ABR, BOTTLENECK_BOOKING),
    (Metric.PRR, BOTTLENECK_OFFER),
    (Metric.CR, BOTTLENECK_PERMISSION),
)


def safe_divide(numerator: Any, denominator: Any) -> Optional[float]:
    try:
        num = float(numerator or 0)
        den = float(denominator or 0)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(den) or den <= 0 or not math.isfinite(num):
        return None
    return num / den


def _percent(value: float) -> float:
    # Rounded so that float noise such as 0.29 * 100 does not flip a status
    return round(value * 100, 9)


def status_for(value: Optional[float], target: Optional[float]) -> KpiStatus:
    """
    Classify a 0-1 ratio against a 0-100 target.

    None value or unset (<= 0) target → neutral; >= target → good;
    >= 90% of target → warn; otherwise bad. A target of 0 marks an ungraded
    metric (seen rate, show-up rate by default): it stays neutral even though
    every value is >= 0.
    """
    if value is None or target is None or target <= 0:
        return KpiStatus.NEUTRAL
    pct = _percent(value)
    if pct >= target:
        return KpiStatus.GOOD
    if pct >= target * WARN_RATIO:
        return KpiStatus.WARN
    return KpiStatus.BAD


def compute_bottleneck(values: Mapping[Metric | str, Optional[float]], targets: KpiTargets) -> str:
    """
    Walk the funnel backwards from booking. None ratios count as 0 here only.
    SHOW_UP_RATE and SCR never take part.
    """
    for metric, label in _BOTTLENECK_ORDER:
        value = values.get(metric, values.get(metric.value))
        if _percent(value or 0.0) >= targets.for_metric(metric):
            return label
    return BOTTLENECK_TARGETING


def coerce_targets(targets: KpiTargets | Mapping[str, Any] | None) -> KpiTargets:
    if isinstance(targets, KpiTargets):
        return targets
    return normalize_kpi_targets(targets)


def compute_kpis(totals: Totals, targets: KpiTargets | Mapping[str, Any] | None = None) -> KpiResult:
    targets = coerce_targets(targets)
    values: Dict[Metric, Optional[float]] = {
        metric: safe_divide(getattr(totals, numerator), getattr(totals, denominator))
        for metric, (numerator, denominator) in RATIO_DEFINITIONS.items()
    }

    return KpiResult(
        primary={m.value: values[m] for m in PRIMARY_METRICS},
        secondary={m.value: values[m] for m in SECONDARY_METRICS},
        diagnostics={m.value: values[m] for m in DIAGNOSTIC_METRICS},
        status={m.value: status_for(values[m], targets.for_metric(m)) for m in RATIO_DEFINITIONS},
        targets={m.value: targets.for_metric(m) for m in RATIO_DEFINITIONS},
        bottleneck=compute_bottleneck(values, targets),
    )
