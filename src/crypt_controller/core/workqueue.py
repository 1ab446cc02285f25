"""Deduplicating, rate-limited work queue.

This module provides the queue that feeds the controller's workers.
Items are reconcile keys. The queue guarantees that a key is never
processed by two workers at once, and that a key added while it is
being processed is handed out again once processing is done, so no
trigger is ever lost:

    key, shutdown = queue.get()
    if shutdown:
        return
    try:
        reconcile(key)
    except RetryableError:
        queue.add_rate_limited(key)
    else:
        queue.forget(key)
    finally:
        queue.done(key)
"""

import heapq
import itertools
import threading
import time
from collections import deque
from collections.abc import Callable, Hashable
from typing import Protocol

from icecream import ic

# Defaults used by the controller's rate limiter
_FAILURE_BASE_DELAY = 0.005
_FAILURE_MAX_DELAY = 1000.0
_BUCKET_QPS = 10.0
_BUCKET_BURST = 100


class RateLimiter(Protocol):
    """Decides how long an item has to wait before it is requeued."""

    def when(self, item: Hashable) -> float: ...

    def forget(self, item: Hashable) -> None: ...

    def num_requeues(self, item: Hashable) -> int: ...


class ItemExponentialFailureRateLimiter:
    """Per-item exponential backoff.

    The delay is ``base_delay * 2 ** failures``, capped at ``max_delay``,
    where ``failures`` counts consecutive requeues of the same item.
    """

    def __init__(self, base_delay: float = _FAILURE_BASE_DELAY, max_delay: float = _FAILURE_MAX_DELAY) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            exp = self._failures.get(item, 0)
            self._failures[item] = exp + 1

        # Avoid float overflow on long failure streaks
        if exp > 64:
            return self.max_delay
        return min(self.base_delay * 2**exp, self.max_delay)

    def forget(self, item: Hashable) -> None:
        with self._lock:
            self._failures.pop(item, None)

    def num_requeues(self, item: Hashable) -> int:
        with self._lock:
            return self._failures.get(item, 0)


class BucketRateLimiter:
    """Overall token bucket shared by all items.

    Tokens refill at ``qps`` per second up to ``burst``. Each call reserves
    one token; when the bucket is empty the returned delay is the time
    until the reservation is covered.
    """

    def __init__(
        self,
        qps: float = _BUCKET_QPS,
        burst: int = _BUCKET_BURST,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.qps = qps
        self.burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:  # noqa: ARG002
        with self._lock:
            now = self._clock()
            self._tokens = min(float(self.burst), self._tokens + (now - self._last) * self.qps)
            self._last = now
            self._tokens -= 1
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self.qps

    def forget(self, item: Hashable) -> None:
        pass

    def num_requeues(self, item: Hashable) -> int:  # noqa: ARG002
        return 0


class MaxOfRateLimiter:
    """Combines limiters and always waits for the slowest of them."""

    def __init__(self, *limiters: RateLimiter) -> None:
        self.limiters = limiters

    def when(self, item: Hashable) -> float:
        return max((limiter.when(item) for limiter in self.limiters), default=0.0)

    def forget(self, item: Hashable) -> None:
        for limiter in self.limiters:
            limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return max((limiter.num_requeues(item) for limiter in self.limiters), default=0)


def default_controller_rate_limiter() -> MaxOfRateLimiter:
    """Build the rate limiter used by the controller.

    Returns:
        Per-item exponential backoff (5ms up to 1000s) combined with an
        overall 10 qps / 100 burst token bucket.

    """
    return MaxOfRateLimiter(ItemExponentialFailureRateLimiter(), BucketRateLimiter())


class WorkQueue:
    """Deduplicating FIFO queue with per-item processing exclusion.

    Attributes:
        name: Queue name, used in log output.

    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._queue: deque[Hashable] = deque()
        # Items that need processing; a superset of the items in _queue
        self._dirty: set[Hashable] = set()
        # Items currently handed out to a worker
        self._processing: set[Hashable] = set()
        self._shutting_down = False
        self._cond = threading.Condition()

    def add(self, item: Hashable) -> None:
        """Mark an item as needing processing.

        An item that is already queued is not queued twice. An item that is
        being processed is queued again when ``done`` is called for it.
        """
        with self._cond:
            if self._shutting_down or item in self._dirty:
                return
            self._dirty.add(item)
            if item in self._processing:
                return
            self._queue.append(item)
            self._cond.notify()

    def get(self, timeout: float | None = None) -> tuple[Hashable | None, bool]:
        """Block until an item is ready to be processed.

        Items still queued when the queue shuts down are handed out until
        the queue is empty.

        Args:
            timeout: Maximum time to wait, or None to wait forever.

        Returns:
            ``(item, shutdown)``. ``item`` is None when the queue is shut
            down and empty, or when the timeout elapsed.

        """
        with self._cond:
            self._cond.wait_for(lambda: self._queue or self._shutting_down, timeout=timeout)
            if not self._queue:
                return None, self._shutting_down
            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            return item, False

    def done(self, item: Hashable) -> None:
        """Mark an item as processed, requeueing it if it was added meanwhile."""
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()

    def shut_down(self) -> None:
        """Stop accepting new items and wake up every blocked ``get``."""
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)


class DelayingQueue(WorkQueue):
    """Work queue that can add items after a delay.

    A background thread moves waiting items into the queue once they are
    due. An item that is already waiting keeps the earlier of its two due
    times.
    """

    def __init__(self, name: str = "", clock: Callable[[], float] = time.monotonic) -> None:
        super().__init__(name)
        self._clock = clock
        self._waiting: list[tuple[float, int, Hashable]] = []
        self._ready_at: dict[Hashable, float] = {}
        self._sequence = itertools.count()
        self._waiting_cond = threading.Condition()
        self._waiting_thread = threading.Thread(target=self._waiting_loop, name=f"{name}-delay", daemon=True)
        self._waiting_thread.start()

    def add_after(self, item: Hashable, delay: float) -> None:
        """Add an item once ``delay`` seconds have passed."""
        if self.shutting_down:
            return
        if delay <= 0:
            self.add(item)
            return

        ready_at = self._clock() + delay
        with self._waiting_cond:
            current = self._ready_at.get(item)
            if current is not None and current <= ready_at:
                return
            self._ready_at[item] = ready_at
            heapq.heappush(self._waiting, (ready_at, next(self._sequence), item))
            self._waiting_cond.notify()

    def shut_down(self) -> None:
        super().shut_down()
        with self._waiting_cond:
            self._waiting_cond.notify_all()

    def _waiting_loop(self) -> None:
        while True:
            ready: list[Hashable] = []
            with self._waiting_cond:
                # Checked under the wait lock so a shutdown notify cannot be missed
                if self.shutting_down:
                    return
                now = self._clock()
                while self._waiting and self._waiting[0][0] <= now:
                    ready_at, _, item = heapq.heappop(self._waiting)
                    # Stale heap entry superseded by an earlier due time
                    if self._ready_at.get(item) != ready_at:
                        continue
                    del self._ready_at[item]
                    ready.append(item)
                if not ready:
                    timeout = self._waiting[0][0] - now if self._waiting else None
                    self._waiting_cond.wait(timeout=timeout)
                    continue
            for item in ready:
                self.add(item)


class RateLimitingQueue(DelayingQueue):
    """Delaying queue whose retries are spaced out by a rate limiter.

    Attributes:
        rate_limiter: Computes the delay for ``add_rate_limited``.

    """

    def __init__(
        self,
        rate_limiter: RateLimiter | None = None,
        name: str = "",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(name, clock=clock)
        self.rate_limiter: RateLimiter = rate_limiter or default_controller_rate_limiter()

    def add_rate_limited(self, item: Hashable) -> None:
        """Requeue an item after the delay the rate limiter decides on."""
        delay = self.rate_limiter.when(item)
        ic(item, delay)
        self.add_after(item, delay)

    def forget(self, item: Hashable) -> None:
        """Clear the item's failure history; it does not remove the item from the queue."""
        self.rate_limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return self.rate_limiter.num_requeues(item)
