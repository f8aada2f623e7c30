"""
Reconcile scheduler for repository status handlers.

Delivers repository records to registered status handlers on demand
(``enqueue``) or after a delay (``enqueue_after``), persists the status they
return, and retries failures with exponential backoff. One repository is
never reconciled by two workers at once; distinct repositories run in
parallel.
"""

import heapq
import itertools
import logging
import threading
import time
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Tuple, Union

from ..logging_utils import format_error_log, get_log_extra, repo_context
from ..models import RepositoryStatus
from ..storage.repository_store import RepositoryNotFoundError, SqliteRepositoryStore
from .conditions import StatusHandler, StatusHandlerError

logger = logging.getLogger(__name__)

Delay = Union[timedelta, float, int]


def _seconds(delay: Delay) -> float:
    if isinstance(delay, timedelta):
        return delay.total_seconds()
    return float(delay)


class ReconcileScheduler:
    """
    Delayed work queue plus worker threads driving repository status handlers.

    A repository queued several times before it is processed runs once, at
    the earliest requested time.
    """

    def __init__(
        self,
        repository_store: SqliteRepositoryStore,
        workers: int = 2,
        base_backoff_seconds: float = 5.0,
        max_backoff_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the scheduler.

        Args:
            repository_store: Source of repository records and sink for status
            workers: Number of worker threads
            base_backoff_seconds: First retry delay after a failure
            max_backoff_seconds: Upper bound on the retry delay
            clock: Monotonic time source (seconds)
        """
        self.repository_store = repository_store
        self.workers = workers
        self.base_backoff_seconds = base_backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self._clock = clock

        self._handlers: List[Tuple[str, StatusHandler]] = []

        # Delayed queue: heap of (due, seq, name); _pending holds the live due time
        self._queue: List[Tuple[float, int, str]] = []
        self._pending: Dict[str, float] = {}
        self._seq = itertools.count()
        self._cond = threading.Condition()

        self._failures: Dict[str, int] = {}

        # Per-repo locking for single-flight reconciliation
        self._repo_locks: Dict[str, threading.Lock] = {}
        self._repo_locks_lock = threading.Lock()

        self._running = False
        self._threads: List[threading.Thread] = []
        self._stop_event = threading.Event()

    # ------------------------------------------------------------------
    # Registration and queueing
    # ------------------------------------------------------------------

    def register_handler(self, name: str, handler: StatusHandler) -> None:
        """Register a status handler; handlers run in registration order."""
        self._handlers.append((name, handler))
        logger.debug(f"Registered status handler {name}")

    def enqueue(self, name: str) -> None:
        """Queue a repository for immediate reconciliation."""
        self.enqueue_after(name, 0)

    def enqueue_after(self, name: str, delay: Delay) -> None:
        """Queue a repository for reconciliation after ``delay``."""
        due = self._clock() + max(_seconds(delay), 0.0)
        with self._cond:
            current = self._pending.get(name)
            if current is not None and current <= due:
                return
            self._pending[name] = due
            heapq.heappush(self._queue, (due, next(self._seq), name))
            self._cond.notify()

    def pending_delay(self, name: str) -> Optional[float]:
        """Seconds until a queued repository is due, or None if not queued."""
        with self._cond:
            due = self._pending.get(name)
        if due is None:
            return None
        return max(due - self._clock(), 0.0)

    def enqueue_all(self) -> int:
        """Queue every stored repository; returns how many were queued."""
        repos = self.repository_store.list_repositories()
        for repo in repos:
            self.enqueue(repo.name)
        return len(repos)

    def _pop_due(self, timeout: float) -> Optional[str]:
        """Pop the next due repository name, waiting at most ``timeout`` seconds."""
        with self._cond:
            while self._queue:
                due, _, name = self._queue[0]
                if self._pending.get(name) != due:
                    # Superseded by an earlier request
                    heapq.heappop(self._queue)
                    continue
                now = self._clock()
                if due <= now:
                    heapq.heappop(self._queue)
                    del self._pending[name]
                    return name
                self._cond.wait(min(due - now, timeout))
                return None
            self._cond.wait(timeout)
            return None

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def _get_repo_lock(self, name: str) -> threading.Lock:
        with self._repo_locks_lock:
            if name not in self._repo_locks:
                self._repo_locks[name] = threading.Lock()
            return self._repo_locks[name]

    def _backoff_delay(self, failures: int) -> float:
        delay = self.base_backoff_seconds * (2 ** max(failures - 1, 0))
        return min(delay, self.max_backoff_seconds)

    def _persist(self, name: str, status: RepositoryStatus) -> RepositoryStatus:
        return self.repository_store.update_status(name, status).status

    def reconcile(self, name: str) -> bool:
        """
        Run every registered handler for one repository.

        Returned status is persisted after each handler. On failure the
        remaining handlers are skipped and the repository is re-queued with
        backoff.

        Returns:
            True if all handlers succeeded (or the repository no longer exists)
        """
        with self._get_repo_lock(name), repo_context(name):
            try:
                repo = self.repository_store.get_repository(name)
            except RepositoryNotFoundError:
                logger.debug(f"Repository {name} no longer exists, dropping")
                self._failures.pop(name, None)
                return True

            for handler_name, handler in self._handlers:
                status = repo.status
                try:
                    new_status = handler(repo, status)
                except Exception as e:
                    if isinstance(e, StatusHandlerError) and e.status != status:
                        self._persist(name, e.status)
                    self._handle_failure(name, handler_name, e)
                    return False

                if new_status != status:
                    repo.status = self._persist(name, new_status)

            if self._failures.pop(name, None):
                logger.info(f"Repository {name} reconciled after earlier failures")
            return True

    def _handle_failure(self, name: str, handler_name: str, error: Exception) -> None:
        failures = self._failures.get(name, 0) + 1
        self._failures[name] = failures
        delay = self._backoff_delay(failures)
        cause = error.cause if isinstance(error, StatusHandlerError) else error
        logger.error(
            format_error_log(
                "SYNC-SCHED-001",
                f"Handler {handler_name} failed for {name}: {cause}",
                attempt=failures,
                retry_in=f"{delay:.0f}s",
            ),
            exc_info=True,
            extra=get_log_extra("SYNC-SCHED-001"),
        )
        self.enqueue_after(name, delay)

    # ------------------------------------------------------------------
    # Worker threads
    # ------------------------------------------------------------------

    def is_running(self) -> bool:
        """
        Check if scheduler is running.

        Returns:
            True if worker threads are active
        """
        return self._running

    def start(self) -> None:
        """
        Start worker threads and queue every stored repository.

        Idempotent: Safe to call multiple times
        """
        if self._running:
            logger.debug("Reconcile scheduler already running")
            return

        self._running = True
        self._stop_event.clear()

        queued = self.enqueue_all()
        for i in range(self.workers):
            thread = threading.Thread(
                target=self._worker_loop, name=f"catalog-sync-worker-{i}", daemon=True
            )
            thread.start()
            self._threads.append(thread)
        logger.info(
            f"Reconcile scheduler started with {self.workers} worker(s), "
            f"{queued} repository(ies) queued"
        )

    def stop(self) -> None:
        """
        Stop worker threads and wait for them to exit.

        Idempotent: Safe to call multiple times
        """
        if not self._running:
            logger.debug("Reconcile scheduler already stopped")
            return

        self._running = False
        self._stop_event.set()
        with self._cond:
            self._cond.notify_all()

        for thread in self._threads:
            thread.join(timeout=5.0)
        self._threads = []

        logger.info("Reconcile scheduler stopped")

    def _worker_loop(self) -> None:
        while not self._stop_event.is_set():
            name = self._pop_due(timeout=1.0)
            if name is None:
                continue
            try:
                self.reconcile(name)
            except Exception as e:
                logger.error(
                    format_error_log(
                        "SYNC-SCHED-002", f"Unexpected error reconciling {name}: {e}"
                    ),
                    exc_info=True,
                    extra=get_log_extra("SYNC-SCHED-002"),
                )
                self._handle_failure(name, "reconcile", e)
