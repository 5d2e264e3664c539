"""
Supabase Client Helper for DM Lab.
Optional cloud sync of the whole state into four tables.

Tables:
    dm_settings     - one row {id: "default", data: <config>}
    dm_logs         - one row per daily log
    dm_experiments  - one row per experiment (variants as JSON)
    dm_prospects    - one row per prospect

Usage:
    from scripts.lib.supabase_client import is_configured, load_remote_state, push_state

    if is_configured():
        push_state(container.state)
        state = load_remote_state()
"""
import os
from pathlib import Path
from typing import Dict, List

from dotenv import load_dotenv

from models.dmlab_models import AppState
from scripts.dmlab.schema_normalizer import normalize_state
from scripts.lib.errors import CloudSyncError, ConfigError
from scripts.lib.logger import setup_logger

logger = setup_logger(__name__)

# Load .env from project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(PROJECT_ROOT / ".env")

SETTINGS_TABLE = "dm_settings"
LOGS_TABLE = "dm_logs"
EXPERIMENTS_TABLE = "dm_experiments"
PROSPECTS_TABLE = "dm_prospects"
SETTINGS_ROW_ID = "default"

_client = None


def _credentials():
    url = os.environ.get("SUPABASE_URL", "")
    key = (
        os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")
        or os.environ.get("SUPABASE_KEY", "")
    )
    return url, key


def is_configured() -> bool:
    url, key = _credentials()
    return bool(url and key)


def get_client():
    """Create and return a Supabase client (singleton)."""
    global _client
    if _client is not None:
        return _client

    url, key = _credentials()
    if not url or not key:
        raise ConfigError(
            "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set in .env",
            setting="SUPABASE_URL",
        )

    from supabase import create_client
    _client = create_client(url, key)
    logger.info("Supabase client connected to %s", url)
    return _client


def reset_client():
    """Drop the cached client (after credentials change)."""
    global _client
    _client = None


def fetch_rows(table: str) -> List[Dict]:
    """Read every row of a table."""
    try:
        result = get_client().table(table).select("*").execute()
        return result.data or []
    except ConfigError:
        raise
    except Exception as e:
        logger.error("Supabase query failed on %s: %s", table, e)
        raise CloudSyncError(f"Query failed: {e}", table=table) from e


def upsert_rows(table: str, rows: List[Dict], on_conflict: str = "id") -> int:
    """
    Upsert multiple rows into a table.

    Returns:
        Number of rows sent.
    """
    if not rows:
        return 0

    try:
        get_client().table(table).upsert(rows, on_conflict=on_conflict).execute()
        logger.info("Upserted %d rows into %s", len(rows), table)
        return len(rows)
    except ConfigError:
        raise
    except Exception as e:
        logger.error("Supabase bulk upsert failed on %s: %s", table, e)
        raise CloudSyncError(f"Upsert failed: {e}", table=table) from e


def push_state(state: AppState) -> Dict[str, int]:
    """Upsert config, logs, experiments and prospects. Returns rows sent per table."""
    data = state.model_dump(mode="json")
    counts = {
        SETTINGS_TABLE: upsert_rows(SETTINGS_TABLE, [{"id": SETTINGS_ROW_ID, "data": data["config"]}]),
        LOGS_TABLE: upsert_rows(LOGS_TABLE, data["logs"]),
        EXPERIMENTS_TABLE: upsert_rows(EXPERIMENTS_TABLE, data["experiments"]),
        PROSPECTS_TABLE: upsert_rows(PROSPECTS_TABLE, data["prospects"]),
    }
    logger.info("Pushed state to Supabase: %s", counts)
    return counts


def load_remote_state() -> AppState:
    """Read the four tables and normalize them into an AppState."""
    settings_rows = fetch_rows(SETTINGS_TABLE)
    settings = next((row for row in settings_rows if row.get("id") == SETTINGS_ROW_ID), None)

    state = normalize_state({
        "config": (settings or {}).get("data") or {},
        "logs": fetch_rows(LOGS_TABLE),
        "experiments": fetch_rows(EXPERIMENTS_TABLE),
        "prospects": fetch_rows(PROSPECTS_TABLE),
    })
    logger.info(
        "Loaded remote state: %d logs, %d experiments, %d prospects",
        len(state.logs), len(state.experiments), len(state.prospects),
    )
    return state
