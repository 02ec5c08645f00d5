"""Controller loop: decide when each provider revision is reconciled.

``WorkQueue`` hands out revision names to worker threads. A name is never
handed to two workers at once; adding a name while it is being processed
marks it dirty and it is handed out again once the current worker calls
``done``. ``Controller`` runs the workers, maps each ``Result`` back onto the
queue and periodically re-enqueues every revision in the store.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

from .errors import ReconcileCancelled, StoreError
from .models import ProviderRevision
from .reconciler import CancelScope, Reconciler
from .settings import Settings
from .store import ObjectStore

logger = logging.getLogger(__name__)


class WorkQueue:
    def __init__(
        self,
        *,
        backoff: Callable[[int], float],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backoff = backoff
        self._clock = clock
        self._cond = threading.Condition()
        self._ready: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._delayed: list[tuple[float, int, str]] = []
        self._seq = itertools.count()
        self._failures: dict[str, int] = {}
        self._shutdown = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._ready)

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutdown

    def add(self, key: str) -> None:
        with self._cond:
            self._add_locked(key)

    def _add_locked(self, key: str) -> None:
        if self._shutdown or key in self._dirty:
            return
        self._dirty.add(key)
        if key not in self._processing:
            self._ready.append(key)
            self._cond.notify()

    def add_after(self, key: str, delay: float) -> None:
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutdown:
                return
            heapq.heappush(self._delayed, (self._clock() + delay, next(self._seq), key))
            self._cond.notify()

    def add_rate_limited(self, key: str) -> float:
        """Re-add ``key`` after its per-key exponential backoff; return the delay."""
        with self._cond:
            failures = self._failures.get(key, 0) + 1
            self._failures[key] = failures
        delay = float(self._backoff(failures))
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        with self._cond:
            self._failures.pop(key, None)

    def failures(self, key: str) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def _promote_due_locked(self) -> None:
        now = self._clock()
        while self._delayed and self._delayed[0][0] <= now:
            _, _, key = heapq.heappop(self._delayed)
            self._add_locked(key)

    def get(self, timeout: float | None = None) -> str | None:
        """Block until a key is ready; ``None`` on timeout or shutdown."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                self._promote_due_locked()
                if self._ready:
                    key = self._ready.popleft()
                    self._dirty.discard(key)
                    self._processing.add(key)
                    return key
                if self._shutdown:
                    return None

                wait: float | None = None
                if deadline is not None:
                    wait = deadline - time.monotonic()
                    if wait <= 0:
                        return None
                if self._delayed:
                    until_due = max(0.0, self._delayed[0][0] - self._clock())
                    wait = until_due if wait is None else min(wait, until_due)
                self._cond.wait(wait)

    def done(self, key: str) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._ready.append(key)
                self._cond.notify()

    def shutdown(self) -> None:
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()


class Controller:
    """Run reconciles for queued revision names on a thread pool."""

    def __init__(
        self,
        *,
        reconciler: Reconciler,
        store: ObjectStore,
        settings: Settings,
        queue: WorkQueue | None = None,
    ) -> None:
        self._reconciler = reconciler
        self._store = store
        self._settings = settings
        self.queue = queue if queue is not None else WorkQueue(backoff=settings.backoff_seconds)
        self._stop = threading.Event()
        self._scopes_lock = threading.Lock()
        self._scopes: set[CancelScope] = set()

    def resync(self) -> int:
        """Enqueue every revision in the store; return how many were added."""
        try:
            revisions = self._store.list(ProviderRevision)
        except StoreError:
            logger.exception("resync failed to list provider revisions")
            return 0
        for revision in revisions:
            self.queue.add(revision.name)
        return len(revisions)

    def process_next(self, timeout: float | None = None) -> bool:
        key = self.queue.get(timeout)
        if key is None:
            return False
        try:
            self._process(key)
        finally:
            self.queue.done(key)
        return True

    def _process(self, key: str) -> None:
        scope = CancelScope(timeout=float(self._settings.reconcile_timeout_seconds))
        with self._scopes_lock:
            self._scopes.add(scope)
        try:
            result = self._reconciler.reconcile(key, cancel=scope)
        except ReconcileCancelled as exc:
            if self._stop.is_set():
                logger.info("reconcile cancelled by shutdown revision=%s", key)
                return
            delay = self.queue.add_rate_limited(key)
            logger.info("reconcile cancelled revision=%s retry_in=%.1fs (%s)", key, delay, exc)
            return
        except Exception:
            delay = self.queue.add_rate_limited(key)
            logger.exception("reconcile failed revision=%s retry_in=%.1fs", key, delay)
            return
        finally:
            with self._scopes_lock:
                self._scopes.discard(scope)

        if result.requeue_after > 0:
            self.queue.forget(key)
            self.queue.add_after(key, result.requeue_after)
            logger.info("reconcile requeued revision=%s after=%.1fs", key, result.requeue_after)
        elif result.requeue:
            self.queue.add_rate_limited(key)
        else:
            self.queue.forget(key)

    def _worker_loop(self, idx: int) -> None:
        logger.info("controller worker %s started", idx)
        poll = float(self._settings.worker_poll_interval)
        while not self._stop.is_set():
            try:
                self.process_next(timeout=poll)
            except Exception:
                logger.exception("work item crashed")
        logger.info("controller worker %s stopped", idx)

    def start(self) -> None:
        concurrency = int(self._settings.worker_concurrency)
        resync_every = float(self._settings.resync_interval_seconds)
        logger.info(
            "provider-rbac controller starting concurrency=%s short_wait=%.1fs",
            concurrency,
            self._reconciler.short_wait,
        )

        with ThreadPoolExecutor(max_workers=concurrency) as executor:
            workers: list[Future[None]] = [
                executor.submit(self._worker_loop, idx) for idx in range(concurrency)
            ]
            try:
                next_resync = time.monotonic()
                while not self._stop.is_set():
                    if time.monotonic() >= next_resync:
                        added = self.resync()
                        logger.debug("resync enqueued %s provider revisions", added)
                        next_resync = time.monotonic() + resync_every
                    self._stop.wait(min(resync_every, 1.0))
            except KeyboardInterrupt:
                logger.info("interrupted; stopping")
            finally:
                self.stop()
                for f in workers:
                    try:
                        f.result()
                    except Exception:
                        logger.exception("controller worker crashed")

    def stop(self) -> None:
        self._stop.set()
        self.queue.shutdown()
        with self._scopes_lock:
            for scope in self._scopes:
                scope.cancel()


__all__ = ["Controller", "WorkQueue"]
