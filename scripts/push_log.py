"""
DM Lab Log Pusher
===================
Pushes one day's outreach counts to a running DM Lab backend, the same
payload the browser extension sends. The backend resolves the account
name to its id and normalizes the log.

Usage:
    python scripts/push_log.py --connections 12 --permission 20 --booked 1
    python scripts/push_log.py --connections 5 --account "Account 2" --old-lane
    python scripts/push_log.py --permission 8 --date 2025-01-06 --api-url http://localhost:8001/api/logs
"""

from __future__ import annotations

import argparse
import os
import sys
from datetime import date
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

from scripts.lib.logger import setup_logger
from scripts.lib.utils import safe_request

logger = setup_logger("push_log")

DEFAULT_API_URL = "http://localhost:8001/api/logs"


def build_payload(
    connections: int = 0,
    permission: int = 0,
    booked: int = 0,
    account: str = "Account 1",
    log_date: Optional[str] = None,
    old_lane: bool = False,
    campaign: str = "",
    notes: str = "Imported via Extension",
) -> Dict[str, Any]:
    """Build the extension-style camelCase log payload."""
    return {
        "date": log_date or date.today().isoformat(),
        "connectionRequestsSent": max(0, connections),
        "permissionMessagesSent": max(0, permission),
        "bookedCalls": max(0, booked),
        "isOldLane": old_lane,
        "accountId": account,
        "campaignTag": campaign,
        "notes": notes,
    }


def push_log(payload: Dict[str, Any], api_url: str) -> Optional[Dict[str, Any]]:
    """POST the payload. Returns the stored log, or None on failure."""
    response = safe_request(api_url, method="POST", json=payload, timeout=10)
    if response is None:
        return None
    return response.json()


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Push a daily DM log to the DM Lab backend")
    parser.add_argument("--connections", type=int, default=0, help="Connection requests sent")
    parser.add_argument("--permission", type=int, default=0, help="Permission messages sent")
    parser.add_argument("--booked", type=int, default=0, help="Booked calls")
    parser.add_argument("--account", default="Account 1", help="Account name or id. Default: Account 1")
    parser.add_argument("--date", dest="log_date", default=None, help="Log date YYYY-MM-DD. Default: today")
    parser.add_argument("--campaign", default="", help="Campaign tag")
    parser.add_argument("--notes", default="Imported via Extension", help="Free-text notes")
    parser.add_argument("--old-lane", action="store_true", help="Mark as an old-leads lane log")
    parser.add_argument(
        "--api-url",
        default=os.getenv("DMLAB_API_URL", DEFAULT_API_URL),
        help=f"Logs endpoint. Default: $DMLAB_API_URL or {DEFAULT_API_URL}",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    payload = build_payload(
        connections=args.connections,
        permission=args.permission,
        booked=args.booked,
        account=args.account,
        log_date=args.log_date,
        old_lane=args.old_lane,
        campaign=args.campaign,
        notes=args.notes,
    )
    logger.info("Pushing log for %s (%s) to %s", payload["date"], payload["accountId"], args.api_url)

    stored = push_log(payload, args.api_url)
    if stored is None:
        logger.error("Push failed. Is the DM Lab backend running?")
        return 1

    logger.info("Logged %s as %s", stored.get("date"), stored.get("id"))
    return 0


if __name__ == "__main__":
    sys.exit(main())
