"""Tests for the DM Lab REST API."""

import csv
import io
from unittest.mock import patch

import pytest

from scripts.dmlab.constants import SCHEMA_VERSION, STATE_FILENAME


@pytest.fixture
def seeded(api_client, experiment_state):
    resp = api_client.post("/api/save", json=experiment_state.model_dump(mode="json"))
    assert resp.status_code == 200
    return api_client


class TestSystem:
    def test_health(self, api_client):
        resp = api_client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["schema_version"] == SCHEMA_VERSION
        assert data["integrations"]["supabase"] is False
        assert data["state"]["logs"] == 0


class TestData:
    def test_fresh_envelope(self, api_client):
        data = api_client.get("/api/data").json()
        assert data["schemaVersion"] == SCHEMA_VERSION
        assert data["savedAt"] is None
        assert [a["id"] for a in data["data"]["config"]["accounts"]] == ["account_1", "account_2"]

    def test_save_migrates_legacy_shape(self, api_client, tmp_path):
        resp = api_client.post("/api/save", json={"daily": [{"date": "2024-02-01", "sent": 12, "booked": 1}]})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["counts"]["logs"] == 1
        assert (tmp_path / STATE_FILENAME).exists()

        log = api_client.get("/api/data").json()["data"]["logs"][0]
        assert log["permission_messages_sent"] == 12
        assert log["booked_calls"] == 1


class TestLogs:
    def test_create_resolves_account_name(self, api_client):
        resp = api_client.post("/api/logs", json={
            "date": "2025-01-06", "accountId": "account 2", "connectionRequestsSent": 9, "isOldLane": True,
        })
        assert resp.status_code == 201
        log = resp.json()
        assert log["account_id"] == "account_2"
        assert log["is_old_leads_lane"] is True

    def test_list_filters_by_account(self, seeded):
        seeded.post("/api/logs", json={"id": "log_c", "date": "2025-01-08", "account_id": "account_2"})
        data = seeded.get("/api/logs", params={"account_id": "account_1"}).json()
        assert data["count"] == 2
        assert [log["id"] for log in data["results"]] == ["log_a", "log_b"]

    def test_update_and_delete(self, seeded):
        resp = seeded.put("/api/logs/log_a", json={"bookedCalls": 3})
        assert resp.status_code == 200
        assert resp.json()["booked_calls"] == 3
        assert resp.json()["permission_messages_sent"] == 80

        assert seeded.delete("/api/logs/log_a").json() == {"deleted": "log_a"}
        assert seeded.get("/api/logs").json()["count"] == 1

    def test_missing_log_is_404(self, api_client):
        resp = api_client.put("/api/logs/ghost", json={"bookedCalls": 1})
        assert resp.status_code == 404
        assert resp.json()["detail"]["code"] == "NOT_FOUND"

    def test_empty_update_is_400(self, seeded):
        assert seeded.put("/api/logs/log_a", json={}).status_code == 400

    def test_duplicate_id_is_409(self, seeded):
        resp = seeded.post("/api/logs", json={"id": "log_a"})
        assert resp.status_code == 409
        assert resp.json()["detail"]["code"] == "DUPLICATE_ID"


class TestExperiments:
    def test_create_requires_name(self, api_client):
        assert api_client.post("/api/experiments", json={"name": " "}).status_code == 400

    def test_create_defaults_from_stage(self, api_client):
        resp = api_client.post("/api/experiments", json={"name": "Offer copy", "funnelStageTargeted": "OFFER"})
        assert resp.status_code == 201
        experiment = resp.json()
        assert experiment["primary_metric"] == "ABR"
        assert experiment["required_sample_size_seen"] == 30
        assert len(experiment["variants"]) == 1

    def test_evaluation_picks_valid_winner(self, seeded):
        data = seeded.get("/api/experiments/exp_1/evaluation").json()
        assert data["primary_metric"] == "PRR"
        assert data["winner"]["variant_id"] == "var_a"
        assert data["insufficient_sample"] is False
        stats = {s["variant_id"]: s for s in data["variant_stats"]}
        assert stats["var_b"]["is_valid"] is False

    def test_evaluation_missing_experiment(self, api_client):
        assert api_client.get("/api/experiments/nope/evaluation").status_code == 404

    def test_variant_lifecycle(self, seeded):
        resp = seeded.post("/api/experiments/exp_1/variants", json={"message": "Hi"})
        assert resp.status_code == 201
        variant = resp.json()
        assert variant["name"] == "Variant 3"

        resp = seeded.put(f"/api/experiments/exp_1/variants/{variant['id']}", json={"name": "Warm"})
        assert resp.json()["name"] == "Warm"
        assert seeded.delete(f"/api/experiments/exp_1/variants/{variant['id']}").status_code == 200

    def test_last_variant_is_409(self, seeded):
        assert seeded.delete("/api/experiments/exp_1/variants/var_a").status_code == 200
        resp = seeded.delete("/api/experiments/exp_1/variants/var_b")
        assert resp.status_code == 409
        assert resp.json()["detail"]["code"] == "LAST_VARIANT"

    def test_delete_keeps_logs(self, seeded):
        assert seeded.delete("/api/experiments/exp_1").status_code == 200
        assert seeded.get("/api/experiments").json()["count"] == 0
        assert seeded.get("/api/logs", params={"experiment_id": "exp_1"}).json()["count"] == 2


class TestProspects:
    def test_board_and_filters(self, seeded):
        seeded.post("/api/prospects", json={"name": "Grace", "stage": "B", "notes": "met at event"})
        columns = {c["stage"]: c["prospects"] for c in seeded.get("/api/prospects/board").json()["columns"]}
        assert [p["name"] for p in columns["BOOKED"]] == ["Ada"]
        assert [p["name"] for p in columns["PERMISSION_POSITIVE"]] == ["Grace"]

        assert seeded.get("/api/prospects", params={"stage": "D"}).json()["count"] == 1
        assert seeded.get("/api/prospects", params={"search": "event"}).json()["count"] == 1

    def test_create_requires_name(self, api_client):
        assert api_client.post("/api/prospects", json={"stage": "BOOKED"}).status_code == 400

    def test_update_and_delete(self, seeded):
        resp = seeded.put("/api/prospects/p_1", json={"stage": "X"})
        assert resp.json()["stage"] == "LOST"
        assert seeded.delete("/api/prospects/p_1").json() == {"deleted": "p_1"}
        assert seeded.delete("/api/prospects/p_1").status_code == 404


class TestSettings:
    def test_get_settings(self, api_client):
        data = api_client.get("/api/settings").json()
        assert data["config"]["kpi_targets"]["cr"] == 30.0
        assert "PRR" in data["kpi_definitions"]

    def test_targets_merge_and_clamp(self, api_client):
        resp = api_client.put("/api/settings/targets", json={"targets": {"PRR": 12, "cr": -5}})
        assert resp.status_code == 200
        targets = resp.json()
        assert targets["prr"] == 12.0
        assert targets["cr"] == 0.0
        assert targets["abr"] == 4.0

    def test_config_flags(self, api_client):
        resp = api_client.put("/api/settings/config", json={"exclude_old_leads_from_kpi": False})
        assert resp.json()["exclude_old_leads_from_kpi"] is False
        assert resp.json()["autosave"] is False

    def test_account_crud(self, api_client):
        resp = api_client.post("/api/settings/accounts", json={"name": "Founder"})
        assert resp.status_code == 201
        assert resp.json()["id"] == "account_3"

        resp = api_client.put("/api/settings/accounts/account_3", json={"weekly_goals": {"booked_calls": 4}})
        assert resp.json()["weekly_goals"]["booked_calls"] == 4

        assert api_client.delete("/api/settings/accounts/account_3").status_code == 200

    def test_account_in_use_is_409(self, seeded):
        resp = seeded.delete("/api/settings/accounts/account_1")
        assert resp.status_code == 409
        assert resp.json()["detail"]["code"] == "ACCOUNT_IN_USE"

    def test_rename_cascades(self, seeded):
        resp = seeded.post("/api/settings/accounts/account_1/rename", json={"new_id": "founder"})
        assert resp.status_code == 200
        assert seeded.get("/api/logs", params={"account_id": "founder"}).json()["count"] == 2
        assert seeded.get("/api/prospects", params={"account_id": "founder"}).json()["count"] == 1

    def test_rename_to_existing_is_409(self, seeded):
        resp = seeded.post("/api/settings/accounts/account_1/rename", json={"new_id": "account_2"})
        assert resp.status_code == 409


class TestAnalytics:
    def test_kpis_snapshot(self, seeded):
        data = seeded.get("/api/analytics/kpis").json()
        assert data["totals"]["permission_messages_sent"] == 150
        assert data["kpi_log_count"] == 2
        assert data["table_log_count"] == 2
        assert "table_logs" not in data
        assert data["experiments"][0]["winner"]["variant_id"] == "var_a"

    def test_funnel_and_daily(self, seeded):
        funnel = seeded.get("/api/analytics/funnel").json()["series"]
        assert funnel[2] == {"stage": "Permission Sent", "value": 150}
        daily = seeded.get("/api/analytics/daily").json()["series"]
        assert [row["date"] for row in daily] == ["2025-01-06", "2025-01-07"]

    def test_weekly_goals(self, seeded):
        data = seeded.get("/api/analytics/weekly-goals", params={"today": "2025-01-08"}).json()
        first = data["accounts"][0]
        assert first["week_start"] == "2025-01-06"
        assert first["permission_sent"]["current"] == 150

    def test_forecast_baseline(self, api_client):
        data = api_client.get("/api/analytics/forecast", params={"target_booked": 5, "timeframe": "week"}).json()
        assert data["required_permission_sent"] == 500
        assert data["is_estimate"] is True

    def test_forecast_rejects_bad_timeframe(self, api_client):
        assert api_client.get("/api/analytics/forecast", params={"timeframe": "year"}).status_code == 422

    def test_export_csv(self, seeded):
        resp = seeded.get("/api/analytics/export.csv")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert "attachment" in resp.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(resp.text)))
        assert len(rows) == 3


class TestSync:
    def test_status_unconfigured(self, api_client):
        assert api_client.get("/api/sync/status").json() == {"configured": False}

    def test_push_and_pull_unconfigured(self, api_client):
        assert api_client.post("/api/sync/push").status_code == 503
        assert api_client.post("/api/sync/pull").status_code == 503

    def test_pull_replaces_state(self, seeded, experiment_state):
        remote = experiment_state.model_copy(update={"prospects": []})
        with patch("scripts.lib.supabase_client.is_configured", return_value=True), \
                patch("scripts.lib.supabase_client.load_remote_state", return_value=remote):
            resp = seeded.post("/api/sync/pull")
        assert resp.status_code == 200
        assert resp.json()["counts"] == {"logs": 2, "experiments": 1, "prospects": 0}
