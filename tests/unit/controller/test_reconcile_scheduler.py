"""
Unit tests for ReconcileScheduler.

Tests:
1. Delayed queue keeps the earliest due time per repository
2. reconcile() runs handlers in order and persists changed status
3. Failures persist the handler's error status and back off exponentially
4. Repositories are reconciled single-flight
5. start()/stop() are idempotent and workers process queued repositories
"""

import threading
import time
from datetime import timedelta

import pytest

from catalog_sync.controller.conditions import StatusHandlerError
from catalog_sync.controller.scheduler import ReconcileScheduler
from catalog_sync.models import GitLocation, RepositoryDescriptor, RepositoryStatus
from catalog_sync.storage.repository_store import SqliteRepositoryStore

SPEC = RepositoryDescriptor(location=GitLocation(url="https://git.example.com/c.git"))


class _Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store(tmp_path):
    store = SqliteRepositoryStore(str(tmp_path / "catalog.db"))
    yield store
    store.close()


@pytest.fixture
def clock():
    return _Clock()


@pytest.fixture
def scheduler(store, clock):
    return ReconcileScheduler(
        store, workers=1, base_backoff_seconds=5.0, max_backoff_seconds=60.0, clock=clock
    )


def _set_commit(commit):
    def handler(repo, status):
        status.commit = commit
        return status

    return handler


def _failing(status=None):
    def handler(repo, current):
        raise StatusHandlerError(status or current, RuntimeError("fetch failed"))

    return handler


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------


class TestDelayedQueue:
    def test_enqueue_after_accepts_timedelta(self, scheduler):
        scheduler.enqueue_after("charts", timedelta(minutes=5))

        assert scheduler.pending_delay("charts") == 300.0

    def test_earliest_request_wins(self, scheduler):
        scheduler.enqueue_after("charts", 300)
        scheduler.enqueue_after("charts", 10)
        scheduler.enqueue_after("charts", 60)

        assert scheduler.pending_delay("charts") == 10.0

    def test_not_queued_has_no_delay(self, scheduler):
        assert scheduler.pending_delay("charts") is None

    def test_pop_due_respects_due_time(self, scheduler, clock):
        scheduler.enqueue_after("later", 30)
        scheduler.enqueue("now")

        assert scheduler._pop_due(timeout=0) == "now"
        assert scheduler._pop_due(timeout=0) is None

        clock.now += 30
        assert scheduler._pop_due(timeout=0) == "later"
        assert scheduler.pending_delay("later") is None

    def test_superseded_entry_is_skipped(self, scheduler, clock):
        scheduler.enqueue_after("charts", 30)
        scheduler.enqueue("charts")

        assert scheduler._pop_due(timeout=0) == "charts"
        clock.now += 60
        assert scheduler._pop_due(timeout=0) is None

    def test_enqueue_all_queues_stored_repositories(self, scheduler, store):
        store.create_repository("a", SPEC)
        store.create_repository("b", SPEC)

        assert scheduler.enqueue_all() == 2
        assert scheduler.pending_delay("a") == 0.0
        assert scheduler.pending_delay("b") == 0.0


# ---------------------------------------------------------------------------
# reconcile
# ---------------------------------------------------------------------------


class TestReconcile:
    def test_returned_status_is_persisted(self, scheduler, store):
        store.create_repository("charts", SPEC)
        scheduler.register_handler("download", _set_commit("abc"))

        assert scheduler.reconcile("charts") is True

        assert store.get_repository("charts").status.commit == "abc"

    def test_handlers_run_in_order_on_persisted_status(self, scheduler, store):
        store.create_repository("charts", SPEC)
        seen = []

        def second(repo, status):
            seen.append(status.commit)
            return status

        scheduler.register_handler("first", _set_commit("abc"))
        scheduler.register_handler("second", second)

        scheduler.reconcile("charts")

        assert seen == ["abc"]

    def test_missing_repository_is_dropped(self, scheduler):
        calls = []
        scheduler.register_handler("download", lambda repo, status: calls.append(repo))

        assert scheduler.reconcile("gone") is True
        assert calls == []

    def test_handler_sees_repository_spec(self, scheduler, store):
        store.create_repository("charts", SPEC)
        specs = []

        def handler(repo, status):
            specs.append(repo.spec)
            return status

        scheduler.register_handler("download", handler)
        scheduler.reconcile("charts")

        assert specs == [SPEC]


class TestFailureHandling:
    """Failed handlers persist their error status and retry with backoff."""

    def test_error_status_is_persisted(self, scheduler, store):
        store.create_repository("charts", SPEC)
        scheduler.register_handler("download", _failing(RepositoryStatus(commit="error")))

        assert scheduler.reconcile("charts") is False

        assert store.get_repository("charts").status.commit == "error"

    def test_remaining_handlers_skipped(self, scheduler, store):
        store.create_repository("charts", SPEC)
        calls = []
        scheduler.register_handler("download", _failing())
        scheduler.register_handler("after", lambda repo, status: calls.append(1) or status)

        scheduler.reconcile("charts")

        assert calls == []

    def test_backoff_grows_and_is_capped(self, scheduler, store, clock):
        store.create_repository("charts", SPEC)
        scheduler.register_handler("download", _failing())

        delays = []
        for _ in range(6):
            scheduler.reconcile("charts")
            delay = scheduler.pending_delay("charts")
            delays.append(delay)
            clock.now += delay
            assert scheduler._pop_due(timeout=0) == "charts"

        assert delays == [5.0, 10.0, 20.0, 40.0, 60.0, 60.0]

    def test_plain_exceptions_also_back_off(self, scheduler, store):
        store.create_repository("charts", SPEC)

        def handler(repo, status):
            raise ValueError("bad")

        scheduler.register_handler("download", handler)

        assert scheduler.reconcile("charts") is False
        assert scheduler.pending_delay("charts") == 5.0

    def test_success_resets_backoff(self, scheduler, store):
        store.create_repository("charts", SPEC)
        outcomes = [RuntimeError("once"), None]

        def handler(repo, status):
            error = outcomes.pop(0)
            if error:
                raise error
            return status

        scheduler.register_handler("download", handler)

        assert scheduler.reconcile("charts") is False
        assert scheduler.reconcile("charts") is True
        assert "charts" not in scheduler._failures

    def test_failure_is_logged_with_error_code(self, scheduler, store, caplog):
        store.create_repository("charts", SPEC)
        scheduler.register_handler("download", _failing())

        with caplog.at_level("ERROR", logger="catalog_sync.controller.scheduler"):
            scheduler.reconcile("charts")

        assert "SYNC-SCHED-001" in caplog.text
        assert "fetch failed" in caplog.text


class TestSingleFlight:
    def test_same_repository_never_runs_concurrently(self, scheduler, store):
        store.create_repository("charts", SPEC)
        active = []
        peak = []
        guard = threading.Lock()

        def handler(repo, status):
            with guard:
                active.append(1)
                peak.append(len(active))
            time.sleep(0.05)
            with guard:
                active.pop()
            return status

        scheduler.register_handler("download", handler)
        threads = [threading.Thread(target=scheduler.reconcile, args=("charts",)) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5.0)

        assert max(peak) == 1
        assert len(peak) == 4


# ---------------------------------------------------------------------------
# Workers
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_start_stop_idempotent(self, store):
        scheduler = ReconcileScheduler(store, workers=1)

        scheduler.start()
        scheduler.start()
        assert scheduler.is_running()
        assert len(scheduler._threads) == 1

        scheduler.stop()
        scheduler.stop()
        assert not scheduler.is_running()

    def test_workers_reconcile_stored_repositories(self, store):
        store.create_repository("charts", SPEC)
        done = threading.Event()

        def handler(repo, status):
            status.commit = "abc"
            done.set()
            return status

        scheduler = ReconcileScheduler(store, workers=2)
        scheduler.register_handler("download", handler)
        scheduler.start()
        try:
            assert done.wait(timeout=5.0)
        finally:
            scheduler.stop()

        assert store.get_repository("charts").status.commit == "abc"
