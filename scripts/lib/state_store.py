"""
DM Lab — Local State Store
============================

Local JSON persistence for the whole AppState plus the single in-memory
authority that applies state actions.

Files (under DMLAB_DATA_DIR, default <project>/data):
  dm_lab_state_v5.json               - {schemaVersion, savedAt, data}
  dm_experiment_dashboard_v4/3/2.json - legacy exports, read-only fallbacks

Usage:
    from scripts.lib.state_store import LocalStateStore, StateContainer

    container = StateContainer(LocalStateStore())
    container.load()
    result = container.apply(add_log, {"date": "2025-01-06", "bookedCalls": 1})
    container.save()
"""
from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from dotenv import load_dotenv

from models.dmlab_models import AppState, PersistedState
from scripts.dmlab.constants import LEGACY_STATE_FILENAMES, SCHEMA_VERSION, STATE_FILENAME
from scripts.dmlab.schema_normalizer import default_state, normalize_state, unwrap_envelope
from scripts.dmlab.state_actions import ActionResult
from scripts.lib.errors import StateSaveError
from scripts.lib.logger import setup_logger
from scripts.lib.utils import atomic_write_json, read_json

logger = setup_logger("state_store")

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(PROJECT_ROOT / ".env")

SOURCE_STORAGE = "storage"
SOURCE_LEGACY = "legacy"
SOURCE_DEFAULT = "default"

_LEGACY_STATE_KEYS = ("logs", "dailyLogs", "daily", "experiments", "prospects", "leads")


def default_data_dir() -> Path:
    return Path(os.environ.get("DMLAB_DATA_DIR") or PROJECT_ROOT / "data")


def build_envelope(state: AppState, saved_at: Optional[str] = None) -> Dict[str, Any]:
    """Serialize state into the persisted {schemaVersion, savedAt, data} shape."""
    envelope = PersistedState(schema_version=SCHEMA_VERSION, saved_at=saved_at, data=state)
    return envelope.model_dump(mode="json", by_alias=True)


@dataclass
class LoadResult:
    state: AppState
    saved_at: Optional[str]
    source: str


class LocalStateStore:
    """Reads and writes the persisted envelope under a data directory."""

    def __init__(self, data_dir: str | Path | None = None):
        self.data_dir = Path(data_dir) if data_dir else default_data_dir()

    @property
    def state_path(self) -> Path:
        return self.data_dir / STATE_FILENAME

    def load(self) -> LoadResult:
        """
        Load the current envelope, falling back to legacy files, then to the
        default state. Always returns a normalized AppState.
        """
        parsed = read_json(self.state_path)
        if isinstance(parsed, dict):
            if isinstance(parsed.get("data"), dict) and parsed.get("schemaVersion") is not None:
                _, declared, saved_at = unwrap_envelope(parsed)
                if declared == SCHEMA_VERSION:
                    logger.info("Loaded state from %s", self.state_path)
                    return LoadResult(normalize_state(parsed), saved_at, SOURCE_STORAGE)
                logger.info("Migrating schema v%s state from %s", declared, self.state_path)
                return LoadResult(normalize_state(parsed), saved_at, SOURCE_LEGACY)
            if any(key in parsed for key in _LEGACY_STATE_KEYS):
                return LoadResult(normalize_state(parsed), None, SOURCE_LEGACY)

        for filename in LEGACY_STATE_FILENAMES:
            legacy = read_json(self.data_dir / filename)
            if legacy:
                logger.info("Migrating legacy state from %s", filename)
                return LoadResult(normalize_state(legacy), None, SOURCE_LEGACY)

        logger.info("No stored state in %s, starting from defaults", self.data_dir)
        return LoadResult(default_state(), None, SOURCE_DEFAULT)

    def save(self, state: AppState) -> str:
        """Write the envelope atomically. Returns the savedAt timestamp."""
        saved_at = datetime.now(timezone.utc).isoformat()
        if not atomic_write_json(build_envelope(state, saved_at), self.state_path):
            raise StateSaveError("Could not write state file", path=str(self.state_path))
        logger.info(
            "Saved state: %d logs, %d experiments, %d prospects",
            len(state.logs), len(state.experiments), len(state.prospects),
        )
        return saved_at


class StateContainer:
    """
    The single in-memory authority over AppState. Actions run one at a time
    under a lock; accepted actions mark the container dirty and trigger a
    save when config.autosave is on.
    """

    def __init__(self, store: LocalStateStore, state: Optional[AppState] = None):
        self.store = store
        self._state = state or default_state()
        self._lock = threading.RLock()
        self.saved_at: Optional[str] = None
        self.source: str = SOURCE_DEFAULT
        self.dirty = False

    @property
    def state(self) -> AppState:
        return self._state

    def load(self) -> LoadResult:
        with self._lock:
            result = self.store.load()
            self._state = result.state
            self.saved_at = result.saved_at
            self.source = result.source
            self.dirty = False
            return result

    def apply(self, action: Callable[..., ActionResult], *args, **kwargs) -> ActionResult:
        with self._lock:
            result = action(self._state, *args, **kwargs)
            if result.ok:
                self._state = result.state
                self.dirty = True
                if self._state.config.autosave:
                    self.save()
            return result

    def replace(self, raw: Any) -> AppState:
        """Replace the whole state with raw data of any schema generation."""
        with self._lock:
            self._state = normalize_state(raw)
            self.dirty = True
            return self._state

    def save(self) -> str:
        with self._lock:
            self.saved_at = self.store.save(self._state)
            self.dirty = False
            return self.saved_at

    def envelope(self) -> Dict[str, Any]:
        with self._lock:
            return build_envelope(self._state, self.saved_at)
