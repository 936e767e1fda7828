"""
Unit tests for dry runs: sampling, grading and failure reporting.
"""

import httpx
import pytest

from feedgate.core.models import TestRunStatus
from feedgate.observability.metrics import REGISTRY
from feedgate.pipeline.dry_run import percentage
from feedgate.settings import Settings


def mixed_rows(indexable: int, quarantined: int, rejected: int) -> list[tuple]:
    rows = [(f"Good {i}", "10.00", f"{10000000 + i}", f"G-{i}", "Acme", "yes") for i in range(indexable)]
    rows += [(f"Soft {i}", "10.00", "", f"S-{i}", "Acme", "yes") for i in range(quarantined)]
    rows += [("", "10.00", f"{20000000 + i}", f"R-{i}", "Acme", "yes") for i in range(rejected)]
    return rows


class TestGrading:

    @pytest.mark.parametrize(
        "ratio,expected",
        [
            (1.0, TestRunStatus.PASS),
            (0.9, TestRunStatus.PASS),
            (0.8999, TestRunStatus.WARN),
            (0.5, TestRunStatus.WARN),
            (0.4999, TestRunStatus.FAIL),
            (0.0, TestRunStatus.FAIL),
        ],
    )
    def test_grade_thresholds(self, dry_run_evaluator, ratio, expected):
        assert dry_run_evaluator.grade(ratio) == expected

    @pytest.mark.parametrize("ratio,expected", [(0.895, 90), (0.894, 89), (0.005, 1), (2 / 3, 67), (1.0, 100)])
    def test_percentage_rounds_half_up(self, ratio, expected):
        assert percentage(ratio) == expected


class TestEvaluateContent:

    def test_counts_lanes(self, dry_run_evaluator, feed, build_csv):
        result = dry_run_evaluator.evaluate_content(feed, build_csv(mixed_rows(7, 2, 1)))

        assert result.sample_size == 10
        assert result.records_parsed == 10
        assert result.would_index == 7
        assert result.would_quarantine == 2
        assert result.would_reject == 1
        assert result.indexable_ratio == 70
        assert result.status == TestRunStatus.WARN

    def test_lane_counts_sum_to_sample_size(self, dry_run_evaluator, feed, build_csv):
        result = dry_run_evaluator.evaluate_content(feed, build_csv(mixed_rows(13, 21, 8)))

        assert result.would_index + result.would_quarantine + result.would_reject == result.sample_size

    def test_full_sample_mostly_indexable_passes(self, feed, store, fetcher, build_csv):
        from feedgate.pipeline import DryRunEvaluator

        evaluator = DryRunEvaluator(store, fetcher, settings=Settings(dry_run_sample_size=100))
        result = evaluator.evaluate_content(feed, build_csv(mixed_rows(95, 3, 2)))

        assert result.sample_size == 100
        assert (result.would_index, result.would_quarantine, result.would_reject) == (95, 3, 2)
        assert result.indexable_ratio == 95
        assert result.status == TestRunStatus.PASS

    def test_full_sample_mostly_quarantined_fails(self, feed, store, fetcher, build_csv):
        from feedgate.pipeline import DryRunEvaluator

        evaluator = DryRunEvaluator(store, fetcher, settings=Settings(dry_run_sample_size=100))
        result = evaluator.evaluate_content(feed, build_csv(mixed_rows(40, 60, 0)))

        assert result.sample_size == 100
        assert result.would_index == 40
        assert result.indexable_ratio == 40
        assert result.status == TestRunStatus.FAIL

    def test_sample_is_capped(self, feed, store, fetcher, build_csv, build_rows):
        from feedgate.pipeline import DryRunEvaluator

        evaluator = DryRunEvaluator(store, fetcher, settings=Settings(dry_run_sample_size=50))
        result = evaluator.evaluate_content(feed, build_csv(build_rows(120)))

        assert result.sample_size == 50
        assert result.records_parsed == 120
        assert result.status == TestRunStatus.PASS

    def test_error_samples_capped_at_ten(self, dry_run_evaluator, feed, build_csv):
        result = dry_run_evaluator.evaluate_content(feed, build_csv(mixed_rows(0, 30, 0)))

        assert result.would_quarantine == 30
        assert len(result.error_samples) == 10
        assert result.error_samples[0].row_index == 0
        assert result.error_samples[0].errors[0]["code"] == "MISSING_UPC"
        assert result.status == TestRunStatus.FAIL

    def test_coercion_summary(self, dry_run_evaluator, feed):
        content = "name,Price\nWidget,5\nGadget,6\n"
        result = dry_run_evaluator.evaluate_content(feed, content)

        assert result.coercion_summary["title:alias"] == 2
        assert result.coercion_summary["price:numeric"] == 2
        assert result.coercion_summary["in_stock:default"] == 2

    def test_empty_feed_fails(self, dry_run_evaluator, feed):
        result = dry_run_evaluator.evaluate_content(feed, "Product Name,Price\n")

        assert result.sample_size == 0
        assert result.indexable_ratio == 0
        assert result.status == TestRunStatus.FAIL

    def test_parse_error_is_reported(self, dry_run_evaluator, feed):
        result = dry_run_evaluator.evaluate_content(feed, '{"data": []}')

        assert result.status == TestRunStatus.FAIL
        assert result.primary_error_code == "PARSE_ERROR"
        assert result.sample_size == 0

    def test_nothing_is_written(self, dry_run_evaluator, feed, store, build_csv, build_rows):
        dry_run_evaluator.evaluate_content(feed, build_csv(build_rows(5) + mixed_rows(0, 3, 0)))

        assert store.skus == {}
        assert store.quarantine == {}
        assert store.test_runs == {}


class TestRun:

    def test_run_persists_result(self, dry_run_evaluator, feed, feed_responses, store, build_csv, build_rows):
        feed_responses.set(feed.url, build_csv(build_rows(10)))
        before = REGISTRY.get_sample_value("feedgate_dry_runs_total", {"feed_id": feed.id, "status": "PASS"}) or 0

        result = dry_run_evaluator.run(feed.id, triggered_by="ops@example.com")

        assert result.status == TestRunStatus.PASS
        assert result.indexable_ratio == 100
        assert result.triggered_by == "ops@example.com"
        assert store.get_test_run(result.id).status == TestRunStatus.PASS
        assert store.skus == {}
        after = REGISTRY.get_sample_value("feedgate_dry_runs_total", {"feed_id": feed.id, "status": "PASS"})
        assert after == before + 1

    def test_fetch_failure_is_recorded(self, dry_run_evaluator, feed, feed_responses, store):
        feed_responses.set(feed.url, "oops", status=500)

        result = dry_run_evaluator.run(feed.id)

        assert result.status == TestRunStatus.FAIL
        assert result.primary_error_code == "FETCH_ERROR"
        assert store.get_test_run(result.id).primary_error_code == "FETCH_ERROR"

    def test_timeout_is_recorded(self, dry_run_evaluator, feed, feed_responses):
        feed_responses.fail(feed.url, httpx.ReadTimeout)

        result = dry_run_evaluator.run(feed.id)

        assert result.primary_error_code == "TIMEOUT_ERROR"

    def test_list_results_newest_first(self, dry_run_evaluator, feed, feed_responses, build_csv, build_rows):
        feed_responses.set(feed.url, build_csv(build_rows(3)))
        first = dry_run_evaluator.run(feed.id)
        second = dry_run_evaluator.run(feed.id)

        results = dry_run_evaluator.list_results(feed.id)

        assert {r.id for r in results} == {first.id, second.id}
        assert results[0].created_at >= results[1].created_at
        assert dry_run_evaluator.get_result(first.id).id == first.id
