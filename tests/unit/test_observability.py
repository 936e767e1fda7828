"""
Unit tests for structured logging and metric helpers
"""

import json
import logging

import pytest

from feedgate.observability import metrics
from feedgate.observability.logger import get_logger, log_operation, setup_logger
from feedgate.observability.metrics import REGISTRY


class TestLogger:

    def test_json_output(self, capsys):
        logger = setup_logger("feedgate_test_json", level="INFO", format_type="json")

        logger.info("Run finished", extra={"feed_id": "feed_001", "run_id": "run_1"})

        line = capsys.readouterr().out.strip().splitlines()[-1]
        payload = json.loads(line)
        assert payload["message"] == "Run finished"
        assert payload["level"] == "INFO"
        assert payload["feed_id"] == "feed_001"
        assert payload["logger"] == "feedgate_test_json"
        assert payload["timestamp"]
        assert payload["service"] == "feedgate"

    def test_level_from_environment(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "warning")

        logger = setup_logger("feedgate_test_level")

        assert logger.level == logging.WARNING

    def test_module_loggers_share_root_handler(self):
        logger = get_logger("feedgate.pipeline.orchestrator")

        assert logger.handlers == []
        assert logging.getLogger("feedgate").handlers

    def test_log_operation_reports_failure(self, capsys):
        logger = setup_logger("feedgate_test_op", format_type="json")

        with pytest.raises(RuntimeError):
            with log_operation("Promotion", logger=logger, run_id="run_1"):
                raise RuntimeError("disk full")

        lines = [json.loads(line) for line in capsys.readouterr().out.strip().splitlines()]
        assert lines[0]["message"] == "Starting: Promotion"
        assert lines[-1]["status"] == "error"
        assert lines[-1]["error_type"] == "RuntimeError"
        assert lines[-1]["run_id"] == "run_1"


class TestMetrics:

    def test_increment_counter(self):
        labels = {"outcome": "resolved"}
        before = REGISTRY.get_sample_value("feedgate_reprocess_outcomes_total", labels) or 0

        metrics.increment_counter(metrics.reprocess_outcomes_total, outcome="resolved")
        metrics.increment_counter(metrics.reprocess_outcomes_total, 0, outcome="resolved")

        assert REGISTRY.get_sample_value("feedgate_reprocess_outcomes_total", labels) == before + 1

    def test_record_run_outcome(self):
        labels = {"feed_id": "feed_metrics", "lane": "quarantine"}
        before = REGISTRY.get_sample_value("feedgate_records_processed_total", labels) or 0

        metrics.record_run_outcome("feed_metrics", "COMPLETED", "SCHEDULED", {"indexable": 5, "quarantined": 2})

        assert REGISTRY.get_sample_value("feedgate_records_processed_total", labels) == before + 2
        assert REGISTRY.get_sample_value(
            "feedgate_feed_runs_total", {"feed_id": "feed_metrics", "status": "COMPLETED", "trigger": "SCHEDULED"}
        ) >= 1

    def test_gauge(self):
        metrics.set_gauge(metrics.quarantine_size, 7, feed_id="feed_gauge")

        assert REGISTRY.get_sample_value("feedgate_quarantine_size", {"feed_id": "feed_gauge"}) == 7

    def test_generate_metrics_text(self):
        text = metrics.generate_metrics().decode("utf-8")

        assert "feedgate_circuit_breaker_trips_total" in text
        assert metrics.get_content_type().startswith("text/plain")
