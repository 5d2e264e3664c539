"""
DM Lab KPI Report
===================
Loads the local DM Lab state and prints the KPI snapshot: funnel totals,
primary ratios with their status, the bottleneck, weekly goal progress and
experiment winners.

Outputs:
    - stdout                (human-readable summary, unless --json-only)
    - --output FILE.json    (structured report)
    - --output FILE.csv     (filtered logs with per-row KPIs)

Usage:
    python scripts/kpi_report.py
    python scripts/kpi_report.py --start 2025-01-01 --end 2025-01-31 --account account_1
    python scripts/kpi_report.py --campaign q1-founders --json-only
    python scripts/kpi_report.py --output reports/dm_lab.csv
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup
# ---------------------------------------------------------------------------
SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

from models.analytics_models import FilterCriteria
from models.dmlab_models import AppState
from scripts.dmlab.csv_export import build_csv
from scripts.dmlab.kpi_calculator import PRIMARY_METRICS
from scripts.dmlab.log_filter import filter_logs
from scripts.dmlab.reporting import build_dashboard_snapshot, weekly_goal_progress
from scripts.lib.logger import setup_logger
from scripts.lib.state_store import LocalStateStore
from scripts.lib.utils import atomic_write_json, ensure_directory

logger = setup_logger("kpi_report")


def build_report(state: AppState, criteria: FilterCriteria) -> Dict[str, Any]:
    """Assemble the JSON-serializable KPI report for the given filters."""
    snapshot = build_dashboard_snapshot(state, criteria)
    kpis = snapshot["kpis"]
    return {
        "filters": criteria.model_dump(exclude_none=True),
        "kpi_log_count": snapshot["kpi_log_count"],
        "totals": snapshot["totals"].model_dump(),
        "old_lane_totals": snapshot["old_lane_totals"].model_dump(),
        "kpis": kpis.model_dump(mode="json"),
        "bottleneck": kpis.bottleneck,
        "weekly_goals": [p.model_dump() for p in weekly_goal_progress(state)],
        "experiments": [
            {
                "id": evaluation.experiment_id,
                "name": evaluation.experiment_name,
                "primary_metric": evaluation.primary_metric.value,
                "winner": evaluation.winner.variant_name if evaluation.winner else None,
                "winner_value": evaluation.winner.metric_value if evaluation.winner else None,
            }
            for evaluation in snapshot["experiments"]
        ],
    }


def _pct(value: Optional[float]) -> str:
    return "—" if value is None else f"{value * 100:.1f}%"


def print_report(report: Dict[str, Any]) -> None:
    totals = report["totals"]
    kpis = report["kpis"]
    print("=" * 60)
    print("  DM LAB KPI REPORT")
    print("=" * 60)
    print(f"  Logs counted : {report['kpi_log_count']}")
    print(f"  {'Requested':<12}: {totals['connection_requests_sent']}")
    print(f"  {'Accepted':<12}: {totals['connections_accepted']}")
    print(f"  {'Permission':<12}: {totals['permission_messages_sent']}")
    print(f"  {'Booked':<12}: {totals['booked_calls']}")
    print("-" * 60)
    for metric in PRIMARY_METRICS:
        key = metric.value
        print(f"  {key:<12}: {_pct(kpis['primary'].get(key)):>8}  [{kpis['status'].get(key)}]")
    print(f"  Bottleneck   : {report['bottleneck']}")
    print("-" * 60)
    for progress in report["weekly_goals"]:
        print(
            f"  {progress['account_name']:<16} "
            f"CR {progress['connection_requests']['current']}/{progress['connection_requests']['goal']}  "
            f"PM {progress['permission_sent']['current']}/{progress['permission_sent']['goal']}  "
            f"Booked {progress['booked_calls']['current']}/{progress['booked_calls']['goal']}"
        )
    if report["experiments"]:
        print("-" * 60)
        for experiment in report["experiments"]:
            winner = experiment["winner"] or "insufficient sample"
            print(f"  {experiment['name']:<24} {experiment['primary_metric']:<10} winner: {winner}")
    print("=" * 60)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Print DM Lab KPIs from the local state")
    parser.add_argument("--start", default=None, help="Inclusive start date YYYY-MM-DD")
    parser.add_argument("--end", default=None, help="Inclusive end date YYYY-MM-DD")
    parser.add_argument("--account", default=None, help="Account id")
    parser.add_argument("--campaign", default=None, help="Campaign tag")
    parser.add_argument("--data-dir", default=None, help="State directory. Default: $DMLAB_DATA_DIR or data/")
    parser.add_argument("--json-only", action="store_true", help="Print JSON instead of the text summary")
    parser.add_argument("--output", default=None, help="Write the report (.json) or the log export (.csv)")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    loaded = LocalStateStore(args.data_dir).load()
    state = loaded.state
    logger.info("Loaded state from %s: %d logs", loaded.source, len(state.logs))

    criteria = FilterCriteria(
        start=args.start, end=args.end,
        account_id=args.account, campaign_tag=args.campaign,
    )
    report = build_report(state, criteria)

    if args.json_only:
        print(json.dumps(report, indent=2, default=str))
    else:
        print_report(report)

    if args.output:
        output = Path(args.output)
        if output.suffix.lower() == ".csv":
            ensure_directory(output.parent)
            output.write_text(
                build_csv(filter_logs(state.logs, criteria), state.config, state.experiments),
                encoding="utf-8",
            )
        elif not atomic_write_json(report, output):
            logger.error("Could not write report to %s", output)
            return 1
        logger.info("Wrote %s", output)
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as exc:
        logger.error("KPI report failed: %s", exc, exc_info=True)
        sys.exit(1)
