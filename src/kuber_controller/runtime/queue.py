"""
Deduplicating, rate-limited work queue.

Semantics follow the client-go work queue that controllers are usually built
on:

* an item is queued at most once, however many times it is added before a
  worker picks it up;
* an item being processed is never handed to a second worker; adding it
  again while it is processing marks it dirty and it is re-queued once the
  first worker calls ``done``;
* ``add_after`` schedules an add in the future, and ``add_rate_limited``
  does so with a per-item exponential backoff that ``forget`` resets.
"""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from collections import deque
from collections.abc import Callable, Hashable

from ..kube.retry import ExponentialBackoff
from ..observability.metrics import WORKQUEUE_DEPTH, WORKQUEUE_RETRIES


class RateLimitingQueue:
    """Thread-safe work queue shared by the workers of one controller."""

    def __init__(
        self,
        name: str,
        backoff: ExponentialBackoff | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.backoff = backoff or ExponentialBackoff(base_delay=0.005, max_delay=1000.0)
        self._clock = clock
        self._cond = threading.Condition()
        self._queue: deque[Hashable] = deque()
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._waiting: dict[Hashable, float] = {}
        self._heap: list[tuple[float, int, Hashable]] = []
        self._sequence = itertools.count()
        self._failures: dict[Hashable, int] = {}
        self._shutting_down = False
        self._depth = WORKQUEUE_DEPTH.labels(name=name)
        self._retries = WORKQUEUE_RETRIES.labels(name=name)

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def add(self, item: Hashable) -> None:
        with self._cond:
            self._add_locked(item)

    def _add_locked(self, item: Hashable) -> None:
        if self._shutting_down or item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            return
        self._queue.append(item)
        self._depth.set(len(self._queue))
        self._cond.notify()

    def add_after(self, item: Hashable, delay: float) -> None:
        """Add *item* once *delay* seconds have passed."""
        if delay <= 0:
            self.add(item)
            return
        with self._cond:
            if self._shutting_down:
                return
            ready_at = self._clock() + delay
            current = self._waiting.get(item)
            if current is not None and current <= ready_at:
                return
            self._waiting[item] = ready_at
            heapq.heappush(self._heap, (ready_at, next(self._sequence), item))
            self._cond.notify_all()

    def add_rate_limited(self, item: Hashable) -> None:
        """Add *item* after its personal exponential backoff delay."""
        with self._cond:
            failures = self._failures.get(item, 0) + 1
            self._failures[item] = failures
        self._retries.inc()
        self.add_after(item, self.backoff.calculate_delay(failures))

    def forget(self, item: Hashable) -> None:
        """Reset the backoff of *item*; call it once the item succeeded."""
        with self._cond:
            self._failures.pop(item, None)

    def num_requeues(self, item: Hashable) -> int:
        with self._cond:
            return self._failures.get(item, 0)

    def get(self, timeout: float | None = None) -> Hashable | None:
        """
        Block until an item is ready and mark it as processing.

        Returns ``None`` when the queue shuts down or *timeout* elapses.
        """
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                self._promote_due_locked()
                if self._queue:
                    item = self._queue.popleft()
                    self._depth.set(len(self._queue))
                    self._processing.add(item)
                    self._dirty.discard(item)
                    return item
                if self._shutting_down:
                    return None
                if deadline is not None and self._clock() >= deadline:
                    return None
                self._cond.wait(self._next_wait_locked(deadline))

    def done(self, item: Hashable) -> None:
        """Mark *item* finished; re-queue it if it was added meanwhile."""
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._depth.set(len(self._queue))
                self._cond.notify()

    def shutdown(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    def _promote_due_locked(self) -> None:
        now = self._clock()
        while self._heap and self._heap[0][0] <= now:
            ready_at, _, item = heapq.heappop(self._heap)
            # Entries superseded by an earlier add_after are skipped.
            if self._waiting.get(item) != ready_at:
                continue
            del self._waiting[item]
            self._add_locked(item)

    def _next_wait_locked(self, deadline: float | None) -> float | None:
        now = self._clock()
        candidates = []
        if self._heap:
            candidates.append(self._heap[0][0] - now)
        if deadline is not None:
            candidates.append(deadline - now)
        if not candidates:
            return None
        return max(min(candidates), 0.0)
