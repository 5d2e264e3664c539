"""
DM Lab — Aggregator
=====================

Sums normalized daily logs into funnel totals. Order-independent; an empty
input yields all-zero Totals.
"""
from __future__ import annotations

from typing import Iterable

from models.analytics_models import Totals
from models.dmlab_models import DailyLog
from scripts.dmlab.constants import COUNT_FIELDS


def aggregate_logs(logs: Iterable[DailyLog]) -> Totals:
    sums = dict.fromkeys(COUNT_FIELDS, 0)
    for log in logs or []:
        for field in COUNT_FIELDS:
            sums[field] += getattr(log, field)
    return Totals(**sums)
