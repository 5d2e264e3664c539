"""Tests for local persistence and the in-memory state container."""

import json
from unittest.mock import patch

import pytest

from scripts.dmlab.constants import SCHEMA_VERSION, STATE_FILENAME
from scripts.dmlab.state_actions import add_log, delete_account, update_config
from scripts.lib.errors import StateSaveError
from scripts.lib.state_store import (
    SOURCE_DEFAULT,
    SOURCE_LEGACY,
    SOURCE_STORAGE,
    LocalStateStore,
    StateContainer,
    build_envelope,
)


class TestLocalStateStore:
    def test_empty_dir_gives_default(self, tmp_path):
        result = LocalStateStore(tmp_path).load()
        assert result.source == SOURCE_DEFAULT
        assert result.saved_at is None
        assert result.state.logs == []

    def test_save_then_load_round_trip(self, tmp_path, experiment_state):
        store = LocalStateStore(tmp_path)
        saved_at = store.save(experiment_state)

        envelope = json.loads((tmp_path / STATE_FILENAME).read_text(encoding="utf-8"))
        assert envelope["schemaVersion"] == SCHEMA_VERSION
        assert envelope["savedAt"] == saved_at

        result = store.load()
        assert result.source == SOURCE_STORAGE
        assert result.saved_at == saved_at
        assert result.state == experiment_state

    def test_legacy_file_fallback(self, tmp_path):
        legacy = {
            "schemaVersion": 3,
            "dailyLogs": [{"date": "2024-03-01", "bookedCalls": 2, "accountId": "account_1"}],
            "settings": {"accounts": [{"id": "account_1", "name": "Main"}]},
        }
        (tmp_path / "dm_experiment_dashboard_v3.json").write_text(json.dumps(legacy), encoding="utf-8")

        result = LocalStateStore(tmp_path).load()
        assert result.source == SOURCE_LEGACY
        assert result.state.logs[0].booked_calls == 2

    def test_older_envelope_migrated(self, tmp_path):
        envelope = {"schemaVersion": 2, "savedAt": "2024-01-01T00:00:00Z", "data": {
            "dailyLogs": [{"date": "2024-01-01", "permissionMessagesSent": 9}],
        }}
        (tmp_path / STATE_FILENAME).write_text(json.dumps(envelope), encoding="utf-8")

        result = LocalStateStore(tmp_path).load()
        assert result.source == SOURCE_LEGACY
        assert result.state.logs[0].permission_messages_sent == 9

    def test_corrupt_file_treated_as_absent(self, tmp_path):
        (tmp_path / STATE_FILENAME).write_text("{not json", encoding="utf-8")
        assert LocalStateStore(tmp_path).load().source == SOURCE_DEFAULT

    def test_env_data_dir(self, tmp_path):
        with patch.dict("os.environ", {"DMLAB_DATA_DIR": str(tmp_path)}, clear=False):
            assert LocalStateStore().state_path == tmp_path / STATE_FILENAME

    def test_save_failure_raises(self, tmp_path, experiment_state):
        with patch("scripts.lib.state_store.atomic_write_json", return_value=False):
            with pytest.raises(StateSaveError):
                LocalStateStore(tmp_path).save(experiment_state)

    def test_envelope_uses_camel_keys(self, experiment_state):
        envelope = build_envelope(experiment_state, "now")
        assert set(envelope) == {"schemaVersion", "savedAt", "data"}
        assert envelope["data"]["logs"][0]["permission_messages_sent"] == 80


class TestStateContainer:
    def test_apply_accepted_marks_dirty(self, tmp_path):
        container = StateContainer(LocalStateStore(tmp_path))
        container.load()
        result = container.apply(add_log, {"bookedCalls": 1})
        assert result.ok
        assert container.dirty is True
        assert len(container.state.logs) == 1
        assert not (tmp_path / STATE_FILENAME).exists()

    def test_rejected_action_leaves_state(self, tmp_path):
        container = StateContainer(LocalStateStore(tmp_path))
        before = container.state
        result = container.apply(delete_account, "ghost")
        assert not result.ok
        assert container.state is before
        assert container.dirty is False

    def test_autosave(self, tmp_path):
        container = StateContainer(LocalStateStore(tmp_path))
        container.apply(update_config, autosave=True)
        assert (tmp_path / STATE_FILENAME).exists()
        assert container.dirty is False
        assert container.saved_at is not None

    def test_replace_normalizes_raw(self, tmp_path):
        container = StateContainer(LocalStateStore(tmp_path))
        state = container.replace({"daily": [{"sent": 5}]})
        assert state.logs[0].permission_messages_sent == 5
        assert container.dirty is True

    def test_envelope(self, tmp_path):
        container = StateContainer(LocalStateStore(tmp_path))
        saved_at = container.save()
        assert container.envelope()["savedAt"] == saved_at
