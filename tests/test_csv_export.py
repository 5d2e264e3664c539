"""Tests for the CSV export."""

import csv
import io

from models.dmlab_models import DMLabConfig
from scripts.dmlab.csv_export import CSV_HEADER, build_csv, build_csv_rows, format_percent
from scripts.dmlab.schema_normalizer import normalize_config, normalize_experiment, normalize_log


def _parse(text):
    return list(csv.reader(io.StringIO(text)))


class TestFormatPercent:
    def test_two_decimals(self):
        assert format_percent(1 / 3) == "33.33"
        assert format_percent(0.0) == "0.00"

    def test_none_is_empty(self):
        assert format_percent(None) == ""


class TestBuildCsv:
    def test_quotes_and_round_trips_notes(self):
        log = normalize_log({"date": "2025-01-06", "notes": 'hello, "world"'})
        text = build_csv([log], DMLabConfig())
        assert '"hello, ""world"""' in text
        rows = _parse(text)
        assert rows[1][CSV_HEADER.index("notes")] == 'hello, "world"'

    def test_newlines_in_fields_survive(self):
        log = normalize_log({"notes": "line one\nline two"})
        rows = _parse(build_csv([log], DMLabConfig()))
        assert len(rows) == 2
        assert rows[1][-1] == "line one\nline two"

    def test_header_and_row_per_log(self):
        logs = [normalize_log({"date": "2025-01-06"}), normalize_log({"date": "2025-01-07"})]
        rows = _parse(build_csv(logs, DMLabConfig()))
        assert rows[0] == CSV_HEADER
        assert len(rows) == 3

    def test_per_row_kpis_and_names(self):
        config = normalize_config({"accounts": [{"id": "a1", "name": "Founder"}]})
        experiment = normalize_experiment({"id": "e1", "name": "Opener", "variants": [{"id": "v1", "name": "Short"}]})
        log = normalize_log({
            "account_id": "a1", "experiment_id": "e1", "variant_id": "v1",
            "connection_requests_sent": 3, "connections_accepted": 1,
            "is_old_leads_lane": True,
        })
        row = build_csv_rows([log], config, [experiment])[0]
        assert row["account_name"] == "Founder"
        assert row["experiment_name"] == "Opener"
        assert row["variant_name"] == "Short"
        assert row["CR"] == "33.33"
        assert row["PRR"] == ""
        assert row["is_old_leads_lane"] == "true"
        assert row["connection_requests_sent"] == "3"

    def test_empty_export_has_header_only(self):
        rows = _parse(build_csv([], DMLabConfig()))
        assert rows == [CSV_HEADER]
