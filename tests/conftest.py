"""Shared fixtures for the DM Lab test suite."""

import pytest
from fastapi.testclient import TestClient

from models.dmlab_models import AppState
from scripts.dmlab.schema_normalizer import normalize_state


@pytest.fixture
def experiment_state() -> AppState:
    """One PERMISSION experiment with two variants and logs for each."""
    return normalize_state({
        "config": {"accounts": [{"id": "account_1", "name": "Account 1"}, {"id": "account_2", "name": "Account 2"}]},
        "experiments": [{
            "id": "exp_1",
            "name": "Opener test",
            "funnel_stage_targeted": "PERMISSION",
            "variants": [{"id": "var_a", "name": "Short"}, {"id": "var_b", "name": "Long"}],
        }],
        "logs": [
            {
                "id": "log_a", "date": "2025-01-07", "account_id": "account_1",
                "experiment_id": "exp_1", "variant_id": "var_a",
                "permission_messages_sent": 80, "permission_seen": 60, "permission_positives": 8,
            },
            {
                "id": "log_b", "date": "2025-01-06", "account_id": "account_1",
                "experiment_id": "exp_1", "variant_id": "var_b",
                "permission_messages_sent": 70, "permission_seen": 59, "permission_positives": 20,
            },
        ],
        "prospects": [
            {"id": "p_1", "name": "Ada", "account_id": "account_1", "stage": "BOOKED"},
        ],
    })


@pytest.fixture
def api_client(tmp_path, monkeypatch):
    """TestClient over a fresh state stored under tmp_path."""
    from dashboard.api import deps
    from dashboard.api.main import app

    monkeypatch.setenv("DMLAB_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)
    monkeypatch.delenv("SUPABASE_KEY", raising=False)
    with TestClient(app) as client:
        yield client
    deps.set_container(None)
