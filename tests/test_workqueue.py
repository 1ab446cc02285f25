"""Tests for core/workqueue.py module."""

import threading

import pytest

from crypt_controller.core.workqueue import (
    BucketRateLimiter,
    DelayingQueue,
    ItemExponentialFailureRateLimiter,
    MaxOfRateLimiter,
    RateLimitingQueue,
    WorkQueue,
    default_controller_rate_limiter,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestWorkQueueDedup:
    """Tests for deduplication and dirty tracking."""

    def test_duplicate_adds_collapse(self):
        """Test that a key added twice is only queued once."""
        queue = WorkQueue()
        queue.add("default/a")
        queue.add("default/a")

        assert len(queue) == 1

    def test_fifo_order(self):
        """Test that distinct keys come out in insertion order."""
        queue = WorkQueue()
        for key in ("a", "b", "c"):
            queue.add(key)

        assert [queue.get()[0] for _ in range(3)] == ["a", "b", "c"]

    def test_add_during_processing_is_deferred(self):
        """Test that a key added mid-processing waits for done."""
        queue = WorkQueue()
        queue.add("a")
        item, shutdown = queue.get()
        assert (item, shutdown) == ("a", False)

        queue.add("a")
        assert len(queue) == 0

        queue.done("a")
        assert len(queue) == 1
        assert queue.get() == ("a", False)

    def test_done_without_new_add_does_not_requeue(self):
        """Test that done drops a key that was not re-added."""
        queue = WorkQueue()
        queue.add("a")
        queue.get()
        queue.done("a")

        assert len(queue) == 0

    def test_burst_during_processing_collapses_to_one(self):
        """Test that many adds during processing yield a single extra pass."""
        queue = WorkQueue()
        queue.add("a")
        queue.get()
        for _ in range(10):
            queue.add("a")
        queue.done("a")

        assert len(queue) == 1


class TestWorkQueueShutdown:
    """Tests for shutdown behaviour."""

    def test_get_times_out(self):
        """Test that get returns no item after its timeout."""
        queue = WorkQueue()
        assert queue.get(timeout=0.01) == (None, False)

    def test_shutdown_unblocks_get(self):
        """Test that a blocked get returns once the queue shuts down."""
        queue = WorkQueue()
        results = []
        thread = threading.Thread(target=lambda: results.append(queue.get()))
        thread.start()

        queue.shut_down()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert results == [(None, True)]

    def test_shutdown_drains_remaining_items(self):
        """Test that queued items are still handed out after shutdown."""
        queue = WorkQueue()
        queue.add("a")
        queue.shut_down()

        assert queue.get() == ("a", False)
        assert queue.get() == (None, True)

    def test_add_after_shutdown_is_ignored(self):
        """Test that no new work is accepted after shutdown."""
        queue = WorkQueue()
        queue.shut_down()
        queue.add("a")

        assert len(queue) == 0
        assert queue.shutting_down


class TestExponentialFailureRateLimiter:
    """Tests for per-item exponential backoff."""

    def test_delay_doubles(self):
        """Test that each failure doubles the delay."""
        limiter = ItemExponentialFailureRateLimiter(base_delay=0.005, max_delay=1000)

        delays = [limiter.when("a") for _ in range(4)]

        assert delays == pytest.approx([0.005, 0.01, 0.02, 0.04])
        assert limiter.num_requeues("a") == 4

    def test_delay_is_capped(self):
        """Test that delays never exceed the maximum."""
        limiter = ItemExponentialFailureRateLimiter(base_delay=1, max_delay=3)

        delays = [limiter.when("a") for _ in range(100)]

        assert max(delays) == 3

    def test_items_are_independent(self):
        """Test that failures are counted per item."""
        limiter = ItemExponentialFailureRateLimiter(base_delay=1, max_delay=100)
        limiter.when("a")
        limiter.when("a")

        assert limiter.when("b") == 1

    def test_forget_resets(self):
        """Test that forget clears the failure count."""
        limiter = ItemExponentialFailureRateLimiter(base_delay=1, max_delay=100)
        limiter.when("a")
        limiter.when("a")
        limiter.forget("a")

        assert limiter.num_requeues("a") == 0
        assert limiter.when("a") == 1


class TestBucketRateLimiter:
    """Tests for the overall token bucket."""

    def test_burst_then_throttle(self):
        """Test that the bucket allows a burst and then spaces requests."""
        clock = FakeClock()
        limiter = BucketRateLimiter(qps=1, burst=2, clock=clock)

        assert limiter.when("a") == 0
        assert limiter.when("b") == 0
        assert limiter.when("c") == pytest.approx(1.0)

    def test_refill_over_time(self):
        """Test that tokens refill with time."""
        clock = FakeClock()
        limiter = BucketRateLimiter(qps=2, burst=1, clock=clock)
        limiter.when("a")

        clock.now += 0.5

        assert limiter.when("b") == 0

    def test_max_of_uses_slowest(self):
        """Test that the combined limiter waits for the slowest limiter."""
        clock = FakeClock()
        limiter = MaxOfRateLimiter(
            ItemExponentialFailureRateLimiter(base_delay=0.5, max_delay=10),
            BucketRateLimiter(qps=1, burst=1, clock=clock),
        )

        assert limiter.when("a") == 0.5
        assert limiter.when("b") == pytest.approx(1.0)
        assert limiter.num_requeues("a") == 1

    def test_default_limiter(self):
        """Test the default controller limiter starts at 5ms."""
        limiter = default_controller_rate_limiter()

        assert limiter.when("a") == pytest.approx(0.005)


class TestDelayingQueue:
    """Tests for delayed adds."""

    def test_add_after_delivers(self):
        """Test that a delayed item becomes available."""
        queue = DelayingQueue()
        try:
            queue.add_after("a", 0.01)
            assert queue.get(timeout=5) == ("a", False)
        finally:
            queue.shut_down()

    def test_earlier_due_time_wins(self):
        """Test that re-adding with a shorter delay brings the item forward."""
        queue = DelayingQueue()
        try:
            queue.add_after("a", 60)
            queue.add_after("a", 0.01)
            assert queue.get(timeout=5) == ("a", False)
        finally:
            queue.shut_down()

    def test_zero_delay_adds_immediately(self):
        """Test that a non-positive delay is a plain add."""
        queue = DelayingQueue()
        try:
            queue.add_after("a", 0)
            assert len(queue) == 1
        finally:
            queue.shut_down()

    @pytest.mark.parametrize("pending", [False, True], ids=["idle", "pending"])
    def test_shutdown_stops_delay_thread(self, pending):
        """Test that the delay thread exits whether or not items are waiting."""
        queue = DelayingQueue()
        if pending:
            queue.add_after("a", 60)

        queue.shut_down()
        queue._waiting_thread.join(timeout=5)

        assert not queue._waiting_thread.is_alive()

    def test_delay_thread_rechecks_shutdown_on_wakeup(self):
        """Test that a wake-up after an unnotified shutdown ends the delay thread."""
        queue = DelayingQueue()
        with queue._cond:
            queue._shutting_down = True

        with queue._waiting_cond:
            queue._waiting_cond.notify_all()
        queue._waiting_thread.join(timeout=5)

        assert not queue._waiting_thread.is_alive()


class TestRateLimitingQueue:
    """Tests for rate limited requeues."""

    def test_add_rate_limited_counts_requeues(self):
        """Test that rate limited adds are tracked and delivered."""
        queue = RateLimitingQueue(ItemExponentialFailureRateLimiter(base_delay=0.001, max_delay=0.01))
        try:
            queue.add_rate_limited("a")
            assert queue.num_requeues("a") == 1
            assert queue.get(timeout=5) == ("a", False)
        finally:
            queue.shut_down()

    def test_forget_clears_requeues(self):
        """Test that forget resets the failure history."""
        queue = RateLimitingQueue(ItemExponentialFailureRateLimiter(base_delay=0.001, max_delay=0.01))
        try:
            queue.add_rate_limited("a")
            queue.forget("a")
            assert queue.num_requeues("a") == 0
        finally:
            queue.shut_down()
