"""
Unit tests for RunOrchestrator: the run state machine, the circuit breaker
integration, failure counters and blocked-run approval.
"""

import httpx
import pytest

from feedgate.core.errors import InvalidTransitionError, NotFoundError, PersistenceError
from feedgate.core.identity import compute_sku_hash
from feedgate.core.models import FeedHealth, FeedStatus, RunStats, RunStatus, RunTrigger
from feedgate.dispatch import FEED_RUN_QUEUE, JobState
from feedgate.matching import CanonicalMatcher, CanonicalProduct, CatalogMatchStrategy
from feedgate.notifications import RecordingNotifier
from feedgate.observability.metrics import REGISTRY
from feedgate.pipeline import VALID_TRANSITIONS, RunOrchestrator, compute_feed_health
from feedgate.settings import Settings

ACTOR = "ops@example.com"


def row_hash(row: tuple) -> str:
    title, price, upc, sku = row[0], row[1], row[2], row[3]
    return compute_sku_hash(title, upc or None, sku or None, float(price))


class UnreachableNotifier(RecordingNotifier):
    """Every delivery raises, as when the mail or chat relay is down"""

    def _down(self, *args, **kwargs):
        raise RuntimeError("notification relay unreachable")

    notify_run_failed = _down
    notify_circuit_breaker_triggered = _down
    notify_feed_auto_disabled = _down
    notify_feed_recovered = _down


@pytest.fixture
def serve(feed, feed_responses, build_csv):
    """Serve a list of CSV rows at the feed URL"""
    def _serve(rows, status=200):
        feed_responses.set(feed.url, build_csv(rows), status=status)
    return _serve


class TestStateMachine:

    def test_terminal_states_have_no_exits(self):
        for status in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.SKIPPED, RunStatus.DISCARDED):
            assert VALID_TRANSITIONS[status] == set()

    def test_blocked_can_only_promote_or_discard(self):
        assert VALID_TRANSITIONS[RunStatus.BLOCKED] == {RunStatus.PROMOTING, RunStatus.DISCARDED}

    def test_every_status_is_covered(self):
        assert set(VALID_TRANSITIONS) == set(RunStatus)


class TestSuccessfulRun:

    def test_first_run_promotes(self, orchestrator, feed, serve, store, build_rows):
        rows = build_rows(10)
        serve(rows)

        run = orchestrator.run_feed(feed.id)

        assert run.status == RunStatus.COMPLETED
        assert run.stats.records_total == 10
        assert run.stats.indexable == 10
        assert run.stats.upserted == 10
        assert run.stats.deactivated == 0
        assert run.staged_upserts == []
        assert run.finished_at is not None
        assert run.duration_ms is not None
        assert store.count_active_skus(feed.retailer_id) == 10
        assert store.get_retailer_sku(feed.retailer_id, row_hash(rows[0])) is not None

        stored_feed = store.get_feed(feed.id)
        assert stored_feed.last_content_hash == run.content_hash
        assert stored_feed.last_success_at is not None
        assert stored_feed.health == FeedHealth.HEALTHY
        assert store.get_run(run.id).status == RunStatus.COMPLETED

    def test_lanes_are_routed(self, orchestrator, feed, serve, store, build_rows):
        rows = build_rows(8) + [("Soft", "5.00", "", "SOFT-1", "Acme", "yes"), ("", "5.00", "12345678", "R-1", "Acme", "yes")]
        serve(rows)

        run = orchestrator.run_feed(feed.id)

        assert run.stats.indexable == 8
        assert run.stats.quarantined == 1
        assert run.stats.rejected == 1
        assert len(store.quarantine) == 1
        assert store.count_active_skus(feed.retailer_id) == 8
        assert run.stats.errors == [
            {"row": 9, "title": "Soft", "message": "MISSING_UPC"},
            {"row": 10, "title": "", "message": "MISSING_TITLE"},
        ]

    def test_coercion_summary(self, orchestrator, feed, serve, build_rows):
        serve(build_rows(3))

        run = orchestrator.run_feed(feed.id)

        assert run.stats.coercion_summary["price:numeric"] == 3
        assert run.stats.coercion_summary["in_stock:boolean"] == 3

    def test_duplicate_rows_upsert_once(self, orchestrator, feed, serve, store, build_rows):
        rows = build_rows(5)
        serve(rows + [rows[0]])

        run = orchestrator.run_feed(feed.id)

        assert run.stats.indexable == 6
        assert run.stats.upserted == 5
        assert store.count_active_skus(feed.retailer_id) == 5

    def test_rerun_is_idempotent(self, orchestrator, feed, serve, store, build_rows):
        serve(build_rows(5))
        orchestrator.run_feed(feed.id)

        run = orchestrator.run_feed(feed.id, RunTrigger.ADMIN_TEST)

        assert run.status == RunStatus.COMPLETED
        assert run.skipped_reason is None
        assert run.stats.deactivated == 0
        assert len(store.skus) == 5

    def test_unchanged_content_is_skipped(self, orchestrator, feed, serve, store, build_rows):
        serve(build_rows(5))
        orchestrator.run_feed(feed.id)

        run = orchestrator.run_feed(feed.id)

        assert run.status == RunStatus.COMPLETED
        assert run.skipped_reason == "no_changes"
        assert run.stats.records_total == 0

    def test_health_reflects_quarantine_ratio(self, orchestrator, feed, serve, store, build_rows):
        soft = [(f"Soft {i}", "5.00", "", f"S-{i}", "Acme", "yes") for i in range(4)]
        serve(build_rows(6) + soft)

        orchestrator.run_feed(feed.id)

        assert store.get_feed(feed.id).health == FeedHealth.WARNING

    def test_expired_skus_are_deactivated_not_deleted(self, orchestrator, feed, serve, store, build_rows):
        rows = build_rows(10)
        serve(rows)
        orchestrator.run_feed(feed.id)

        serve(rows[:9])
        run = orchestrator.run_feed(feed.id)

        assert run.status == RunStatus.COMPLETED
        assert run.stats.deactivated == 1
        assert len(store.skus) == 10
        dropped = store.get_retailer_sku(feed.retailer_id, row_hash(rows[9]))
        assert dropped.is_active is False

    def test_reappearing_sku_is_reactivated(self, orchestrator, feed, serve, store, build_rows):
        rows = build_rows(10)
        serve(rows)
        orchestrator.run_feed(feed.id)
        serve(rows[:9])
        orchestrator.run_feed(feed.id)

        serve(rows)
        orchestrator.run_feed(feed.id)

        assert store.get_retailer_sku(feed.retailer_id, row_hash(rows[9])).is_active is True

    def test_matcher_applies_proposals(self, store, fetcher, notifier, feed, serve, build_rows):
        rows = build_rows(2)
        strategy = CatalogMatchStrategy([CanonicalProduct(id="can_1", name="x", upc=rows[0][2])])
        orchestrator = RunOrchestrator(store, fetcher, notifier, matcher=CanonicalMatcher(store, strategy))
        serve(rows)

        orchestrator.run_feed(feed.id)

        sku = store.get_retailer_sku(feed.retailer_id, row_hash(rows[0]))
        assert sku.canonical_sku_id == "can_1"
        assert sku.needs_review is False


class TestCircuitBreaker:

    def test_mass_expiry_blocks_without_writing(self, orchestrator, feed, serve, store, notifier, build_rows):
        rows = build_rows(10)
        serve(rows)
        orchestrator.run_feed(feed.id)
        before = REGISTRY.get_sample_value(
            "feedgate_circuit_breaker_trips_total", {"feed_id": feed.id, "reason": "SPIKE_THRESHOLD_EXCEEDED"}
        ) or 0

        serve(rows[:7])
        run = orchestrator.run_feed(feed.id)

        assert run.status == RunStatus.BLOCKED
        assert run.circuit_breaker_reason == "SPIKE_THRESHOLD_EXCEEDED"
        assert run.circuit_breaker_metrics.would_expire_count == 3
        assert run.circuit_breaker_metrics.expiry_percentage == 30.0
        assert store.count_active_skus(feed.retailer_id) == 10
        assert len(run.staged_upserts) == 7
        assert sorted(run.staged_expiries) == sorted(row_hash(r) for r in rows[7:])
        assert "circuit_breaker_triggered" in notifier.kinds()
        after = REGISTRY.get_sample_value(
            "feedgate_circuit_breaker_trips_total", {"feed_id": feed.id, "reason": "SPIKE_THRESHOLD_EXCEEDED"}
        )
        assert after == before + 1

    def test_blocked_run_is_not_a_failure(self, orchestrator, feed, serve, store, build_rows):
        rows = build_rows(10)
        serve(rows)
        orchestrator.run_feed(feed.id)

        serve(rows[:5])
        orchestrator.run_feed(feed.id)

        stored = store.get_feed(feed.id)
        assert stored.consecutive_failures == 0
        assert stored.status == FeedStatus.ACTIVE

    def test_exactly_twenty_percent_promotes(self, orchestrator, feed, serve, store, build_rows):
        rows = build_rows(10)
        serve(rows)
        orchestrator.run_feed(feed.id)

        serve(rows[:8])
        run = orchestrator.run_feed(feed.id)

        assert run.status == RunStatus.COMPLETED
        assert run.stats.deactivated == 2

    def test_url_hash_spike_blocks(self, orchestrator, feed, serve, build_rows):
        no_sku = [(f"Loose {i}", "5.00", f"{30000000 + i}", "", "Acme", "yes") for i in range(6)]
        serve(build_rows(4) + no_sku)

        run = orchestrator.run_feed(feed.id)

        assert run.status == RunStatus.BLOCKED
        assert run.circuit_breaker_reason == "DATA_QUALITY_URL_HASH_SPIKE"
        assert run.stats.url_hash_fallback_count == 6

    def test_approve_promotes_staged_changes(self, orchestrator, feed, serve, store, build_rows):
        rows = build_rows(10)
        serve(rows)
        orchestrator.run_feed(feed.id)
        serve(rows[:5])
        blocked = orchestrator.run_feed(feed.id)

        approved = orchestrator.approve_blocked_run(blocked.id, ACTOR)

        assert approved.status == RunStatus.COMPLETED
        assert approved.resolved_by == ACTOR
        assert approved.stats.deactivated == 5
        assert store.count_active_skus(feed.retailer_id) == 5
        assert store.get_run(blocked.id).status == RunStatus.COMPLETED
        assert store.get_feed(feed.id).last_content_hash == blocked.content_hash

    def test_discard_leaves_catalog_untouched(self, orchestrator, feed, serve, store, build_rows):
        rows = build_rows(10)
        serve(rows)
        orchestrator.run_feed(feed.id)
        serve(rows[:5])
        blocked = orchestrator.run_feed(feed.id)

        discarded = orchestrator.discard_blocked_run(blocked.id, ACTOR)

        assert discarded.status == RunStatus.DISCARDED
        assert discarded.staged_upserts == []
        assert store.count_active_skus(feed.retailer_id) == 10

    def test_only_blocked_runs_can_be_approved_or_discarded(self, orchestrator, feed, serve, build_rows):
        serve(build_rows(3))
        run = orchestrator.run_feed(feed.id)

        with pytest.raises(InvalidTransitionError):
            orchestrator.approve_blocked_run(run.id, ACTOR)
        with pytest.raises(InvalidTransitionError):
            orchestrator.discard_blocked_run(run.id, ACTOR)

    def test_failed_approval_stays_blocked(self, orchestrator, feed, serve, store, monkeypatch, build_rows):
        rows = build_rows(10)
        serve(rows)
        orchestrator.run_feed(feed.id)
        serve(rows[:5])
        blocked = orchestrator.run_feed(feed.id)

        def broken(*args, **kwargs):
            raise PersistenceError("database unavailable")

        monkeypatch.setattr(store, "apply_promotion", broken)

        with pytest.raises(PersistenceError):
            orchestrator.approve_blocked_run(blocked.id, ACTOR)

        assert store.get_run(blocked.id).status == RunStatus.BLOCKED
        assert store.count_active_skus(feed.retailer_id) == 10

    def test_unknown_run(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.approve_blocked_run("missing", ACTOR)


class TestFailures:

    def test_server_error_fails_run(self, orchestrator, feed, serve, store, notifier):
        serve([], status=500)

        run = orchestrator.run_feed(feed.id)

        assert run.status == RunStatus.FAILED
        assert run.error_code == "FETCH_ERROR"
        assert run.error_kind == "TRANSIENT"
        stored = store.get_feed(feed.id)
        assert stored.consecutive_failures == 1
        assert stored.last_error == run.error_message
        assert notifier.kinds() == ["run_failed"]

    def test_timeout_fails_run(self, orchestrator, feed, feed_responses):
        feed_responses.fail(feed.url, httpx.ReadTimeout)

        run = orchestrator.run_feed(feed.id)

        assert run.status == RunStatus.FAILED
        assert run.error_code == "TIMEOUT_ERROR"

    def test_parse_error_fails_run(self, orchestrator, feed, feed_responses, store):
        feed_responses.set(feed.url, "<catalog><entry/></catalog>")

        run = orchestrator.run_feed(feed.id)

        assert run.status == RunStatus.FAILED
        assert run.error_code == "PARSE_ERROR"
        assert store.skus == {}

    def test_persistence_error_during_promotion(self, orchestrator, feed, serve, store, monkeypatch, build_rows):
        serve(build_rows(3))

        def broken(*args, **kwargs):
            raise PersistenceError("database unavailable")

        monkeypatch.setattr(store, "apply_promotion", broken)

        run = orchestrator.run_feed(feed.id)

        assert run.status == RunStatus.FAILED
        assert run.error_code == "PERSISTENCE_ERROR"
        assert run.staged_upserts == []
        assert store.get_feed(feed.id).last_content_hash is None

    def test_unexpected_error_is_recorded_and_raised(self, orchestrator, feed, serve, store, monkeypatch, build_rows):
        serve(build_rows(3))

        def broken(*args, **kwargs):
            raise RuntimeError("bug")

        monkeypatch.setattr(store, "apply_promotion", broken)

        with pytest.raises(RuntimeError):
            orchestrator.run_feed(feed.id)

        runs = store.list_runs(feed.id)
        assert runs[0].status == RunStatus.FAILED
        assert runs[0].error_code == "INTERNAL_ERROR"
        assert store.get_feed(feed.id).consecutive_failures == 1

    def test_auto_disable_after_three_failures(self, orchestrator, feed, serve, store, notifier):
        serve([], status=503)

        for _ in range(3):
            orchestrator.run_feed(feed.id, RunTrigger.RETRY)

        stored = store.get_feed(feed.id)
        assert stored.status == FeedStatus.DISABLED
        assert stored.consecutive_failures == 3
        assert notifier.kinds().count("feed_auto_disabled") == 1

    def test_disabled_feed_is_skipped(self, orchestrator, feed, serve, store, feed_responses, build_rows):
        feed.status = FeedStatus.DISABLED
        store.save_feed(feed)
        serve(build_rows(3))

        run = orchestrator.run_feed(feed.id, RunTrigger.SCHEDULED)

        assert run.status == RunStatus.SKIPPED
        assert run.skipped_reason == "feed_disabled"
        assert feed_responses.requests == []
        assert store.get_run(run.id).status == RunStatus.SKIPPED

    @pytest.mark.parametrize("trigger", [RunTrigger.MANUAL, RunTrigger.ADMIN_TEST])
    def test_manual_triggers_run_disabled_feed(self, orchestrator, feed, serve, store, trigger, build_rows):
        feed.status = FeedStatus.DISABLED
        store.save_feed(feed)
        serve(build_rows(3))

        run = orchestrator.run_feed(feed.id, trigger)

        assert run.status == RunStatus.COMPLETED

    def test_recovery_resets_counter_and_notifies(self, store, fetcher, notifier, feed, serve, build_rows):
        orchestrator = RunOrchestrator(store, fetcher, notifier, settings=Settings(max_consecutive_failures=5))
        serve([], status=500)
        orchestrator.run_feed(feed.id)
        orchestrator.run_feed(feed.id)
        assert store.get_feed(feed.id).consecutive_failures == 2

        serve(build_rows(3))
        run = orchestrator.run_feed(feed.id)

        stored = store.get_feed(feed.id)
        assert run.status == RunStatus.COMPLETED
        assert stored.consecutive_failures == 0
        assert stored.last_error is None
        assert notifier.kinds() == ["run_failed", "run_failed", "feed_recovered"]

    def test_notifier_failure_does_not_lose_run_state(self, store, fetcher, feed, serve, settings):
        orchestrator = RunOrchestrator(store, fetcher, UnreachableNotifier(), settings=settings)
        labels = {"event": "run_failed"}
        before = REGISTRY.get_sample_value("feedgate_notification_failures_total", labels) or 0
        serve([], status=503)

        runs = [orchestrator.run_feed(feed.id, RunTrigger.RETRY) for _ in range(3)]

        assert [store.get_run(run.id).status for run in runs] == [RunStatus.FAILED] * 3
        stored = store.get_feed(feed.id)
        assert stored.consecutive_failures == 3
        assert stored.status == FeedStatus.DISABLED
        assert REGISTRY.get_sample_value("feedgate_notification_failures_total", labels) == before + 3

    def test_notifier_failure_on_block_keeps_run_blocked(self, store, fetcher, feed, serve, settings, build_rows):
        orchestrator = RunOrchestrator(store, fetcher, UnreachableNotifier(), settings=settings)
        rows = build_rows(10)
        serve(rows)
        orchestrator.run_feed(feed.id)

        serve(rows[:5])
        run = orchestrator.run_feed(feed.id)

        assert run.status == RunStatus.BLOCKED
        assert store.get_run(run.id).status == RunStatus.BLOCKED
        assert store.count_active_skus(feed.retailer_id) == 10

    def test_unknown_feed(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.run_feed("missing")


class TestFeedHealth:

    @pytest.mark.parametrize(
        "stats,expected",
        [
            (RunStats(records_total=10, indexable=10), FeedHealth.HEALTHY),
            (RunStats(records_total=10, quarantined=3), FeedHealth.HEALTHY),
            (RunStats(records_total=10, quarantined=4), FeedHealth.WARNING),
            (RunStats(records_total=10, rejected=2), FeedHealth.WARNING),
            (RunStats(records_total=10, rejected=6), FeedHealth.FAILED),
        ],
    )
    def test_compute_feed_health(self, stats, expected):
        assert compute_feed_health(stats, Settings()) == expected


class TestDispatch:

    def test_enqueue_run_skips_when_job_open(self, orchestrator, feed, dispatcher):
        first = orchestrator.enqueue_run(feed.id, dispatcher)
        second = orchestrator.enqueue_run(feed.id, dispatcher)

        assert first["enqueued"] is True
        assert second == {"enqueued": False, "job_id": None}

    def test_enqueue_after_completion(self, orchestrator, feed, dispatcher, serve, build_rows):
        serve(build_rows(3))
        orchestrator.enqueue_run(feed.id, dispatcher)
        job = dispatcher.next_job(FEED_RUN_QUEUE)
        orchestrator.handle_feed_run_job(job, dispatcher)

        assert dispatcher.get_job_state(job["job_id"]) == JobState.COMPLETED
        assert orchestrator.enqueue_run(feed.id, dispatcher)["enqueued"] is True

    def test_transient_failure_is_retried_once(self, orchestrator, feed, dispatcher, serve):
        serve([], status=503)
        orchestrator.enqueue_run(feed.id, dispatcher, RunTrigger.SCHEDULED)

        job = dispatcher.next_job(FEED_RUN_QUEUE)
        run = orchestrator.handle_feed_run_job(job, dispatcher)

        assert run.status == RunStatus.FAILED
        assert dispatcher.get_job_state(job["job_id"]) == JobState.FAILED

        retry = dispatcher.next_job(FEED_RUN_QUEUE)
        assert retry is not None
        assert retry["trigger"] == "RETRY"

        orchestrator.handle_feed_run_job(retry, dispatcher)
        assert dispatcher.next_job(FEED_RUN_QUEUE) is None

    def test_permanent_failure_is_not_retried(self, orchestrator, feed, dispatcher, serve):
        serve([], status=404)
        orchestrator.enqueue_run(feed.id, dispatcher, RunTrigger.SCHEDULED)

        orchestrator.handle_feed_run_job(dispatcher.next_job(FEED_RUN_QUEUE), dispatcher)

        assert dispatcher.next_job(FEED_RUN_QUEUE) is None
