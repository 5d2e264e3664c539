"""
DM Lab — CSV Export
=====================

One row per log: identity columns, raw counts, the nine KPIs computed for
that single row (percentages with 2 decimals, empty when undefined) and
notes. RFC 4180 escaping via the csv module.
"""
from __future__ import annotations

import csv
import io
from typing import Dict, Iterable, List, Optional

from models.dmlab_models import DailyLog, DMLabConfig, Experiment
from scripts.dmlab.aggregator import aggregate_logs
from scripts.dmlab.constants import COUNT_FIELDS
from scripts.dmlab.kpi_calculator import compute_kpis

KPI_COLUMNS = [
    "CR",
    "PRR",
    "ABR",
    "BOOKED_KPI",
    "POSITIVE_TO_ABR",
    "ABR_TO_BOOKED",
    "SEEN_RATE",
    "SHOW_UP_RATE",
    "SCR",
]

CSV_HEADER = [
    "date",
    "account_id",
    "account_name",
    "campaign_tag",
    "is_old_leads_lane",
    "experiment_id",
    "experiment_name",
    "variant_id",
    "variant_name",
    *COUNT_FIELDS,
    *KPI_COLUMNS,
    "notes",
]


def format_percent(value: Optional[float], digits: int = 2) -> str:
    if value is None:
        return ""
    return f"{value * 100:.{digits}f}"


def build_csv_rows(
    logs: Iterable[DailyLog],
    config: DMLabConfig,
    experiments: Iterable[Experiment] = (),
) -> List[Dict[str, str]]:
    account_names = {account.id: account.name for account in config.accounts}
    experiment_names = {}
    variant_names = {}
    for experiment in experiments or []:
        experiment_names[experiment.id] = experiment.name
        for variant in experiment.variants:
            variant_names[variant.id] = variant.name

    rows = []
    for log in logs or []:
        kpis = compute_kpis(aggregate_logs([log]), config.kpi_targets).all_values()
        row = {
            "date": log.date,
            "account_id": log.account_id,
            "account_name": account_names.get(log.account_id, ""),
            "campaign_tag": log.campaign_tag,
            "is_old_leads_lane": "true" if log.is_old_leads_lane else "false",
            "experiment_id": log.experiment_id,
            "experiment_name": experiment_names.get(log.experiment_id, ""),
            "variant_id": log.variant_id,
            "variant_name": variant_names.get(log.variant_id, ""),
            "notes": log.notes,
        }
        row.update({field: str(getattr(log, field)) for field in COUNT_FIELDS})
        row.update({column: format_percent(kpis.get(column)) for column in KPI_COLUMNS})
        rows.append(row)
    return rows


def build_csv(
    logs: Iterable[DailyLog],
    config: DMLabConfig,
    experiments: Iterable[Experiment] = (),
) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(
        buffer,
        fieldnames=CSV_HEADER,
        quoting=csv.QUOTE_MINIMAL,
        lineterminator="\n",
    )
    writer.writeheader()
    writer.writerows(build_csv_rows(logs, config, experiments))
    return buffer.getvalue()
