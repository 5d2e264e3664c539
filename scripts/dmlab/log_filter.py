"""
DM Lab — Log Filter
=====================

Selects daily logs by account, campaign tag, experiment/variant, inclusive
date range and old-leads lane. Pure and order-preserving.

Old-leads lane rules:
  only_old_leads     - keep only old-lane rows (takes precedence)
  exclude_old_leads  - drop old-lane rows, unless include_old_leads is set
  neither            - no restriction
"""
from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Optional

from models.analytics_models import FilterCriteria
from models.dmlab_models import DailyLog

ALL = "all"


def _is_set(value: Optional[str]) -> bool:
    return bool(value) and value != ALL


def coerce_criteria(criteria: FilterCriteria | Mapping[str, Any] | None = None, **overrides) -> FilterCriteria:
    """Build FilterCriteria from a model, a (snake or camel) mapping, or nothing."""
    if isinstance(criteria, FilterCriteria):
        base = criteria.model_dump()
    else:
        base = FilterCriteria.model_validate(dict(criteria or {})).model_dump()
    base.update({key: value for key, value in overrides.items() if value is not None})
    return FilterCriteria(**base)


def matches(log: DailyLog, criteria: FilterCriteria) -> bool:
    """True when the log satisfies every supplied criterion."""
    if _is_set(criteria.account_id) and log.account_id != criteria.account_id:
        return False
    if _is_set(criteria.campaign_tag) and (log.campaign_tag or "") != criteria.campaign_tag:
        return False
    if _is_set(criteria.experiment_id) and log.experiment_id != criteria.experiment_id:
        return False
    if _is_set(criteria.variant_id) and log.variant_id != criteria.variant_id:
        return False

    if criteria.only_old_leads:
        if not log.is_old_leads_lane:
            return False
    elif criteria.exclude_old_leads and not criteria.include_old_leads and log.is_old_leads_lane:
        return False

    # ISO calendar dates sort lexicographically
    if criteria.start and log.date < criteria.start:
        return False
    if criteria.end and log.date > criteria.end:
        return False
    return True


def filter_logs(
    logs: Iterable[DailyLog],
    criteria: FilterCriteria | Mapping[str, Any] | None = None,
) -> List[DailyLog]:
    """Return the logs matching ``criteria`` in their original order."""
    criteria = coerce_criteria(criteria)
    return [log for log in logs or [] if matches(log, criteria)]
