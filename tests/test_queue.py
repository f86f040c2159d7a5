"""
Tests for BoundedSynchronizedQueue: FIFO delivery, capacity, blocking
handoff, closure, timeouts and cancellation.
"""

import threading
import time

import pytest

from prodcon.engine.cancel import CancellationToken
from prodcon.engine.errors import (
    CancelledError,
    ClosedError,
    InvalidArgument,
    QueueTimeoutError,
)
from prodcon.engine.queue import BoundedSynchronizedQueue

from conftest import wait_until


class TestConstruction:
    """Capacity validation and initial state."""

    def test_defaults_to_unbounded(self):
        q = BoundedSynchronizedQueue()
        assert q.capacity is None
        assert q.is_empty()
        assert not q.is_full()
        assert not q.closed

    def test_zero_capacity_means_unbounded(self):
        q = BoundedSynchronizedQueue(0)
        for i in range(1000):
            q.put_nowait(i)
        assert q.capacity is None
        assert q.size() == 1000

    @pytest.mark.parametrize("capacity", [-1, 2.5, "3", True])
    def test_invalid_capacity_fails_fast(self, capacity):
        with pytest.raises(InvalidArgument):
            BoundedSynchronizedQueue(capacity)

    def test_invalid_argument_is_a_value_error(self):
        with pytest.raises(ValueError):
            BoundedSynchronizedQueue(-5)

    def test_negative_timeout_rejected(self):
        q = BoundedSynchronizedQueue(1)
        with pytest.raises(InvalidArgument):
            q.put(1, timeout=-1)
        with pytest.raises(InvalidArgument):
            q.get(timeout=-0.5)
        assert q.size() == 0


class TestFifo:
    """Items come out in the order they went in."""

    def test_single_thread_order(self):
        q = BoundedSynchronizedQueue(3)
        for item in ("a", "b", "c"):
            q.put(item)
        assert [q.get(), q.get(), q.get()] == ["a", "b", "c"]

    def test_snapshot_queries(self):
        q = BoundedSynchronizedQueue(2, name="snap")
        q.put(1)
        assert q.size() == 1
        assert len(q) == 1
        assert not q.is_empty()
        assert not q.is_full()
        q.put(2)
        assert q.is_full()
        assert "snap" in repr(q)

    def test_per_producer_order_with_concurrent_producers(self, spawn):
        q = BoundedSynchronizedQueue(4)
        n = 300

        def produce(tag):
            for i in range(n):
                q.put((tag, i))

        producers = [spawn(produce, tag) for tag in ("x", "y", "z")]
        seen = {"x": [], "y": [], "z": []}
        for _ in range(3 * n):
            tag, i = q.get(timeout=2)
            seen[tag].append(i)
        for p in producers:
            assert p.finish().error is None
        for tag in seen:
            assert seen[tag] == list(range(n))


class TestBlockingHandoff:
    """put blocks while full, get blocks while empty."""

    def test_capacity_one_second_put_blocks_until_get(self, spawn):
        q = BoundedSynchronizedQueue(1)
        q.put(1)
        second = spawn(q.put, 2)

        wait_until(lambda: q.stats()["waits_for_space"] == 1)
        time.sleep(0.05)
        assert second.is_alive()
        assert q.size() == 1

        assert q.get(timeout=1) == 1
        second.finish()
        assert second.error is None
        assert q.get(timeout=1) == 2

    def test_get_blocks_until_put(self, spawn):
        q = BoundedSynchronizedQueue(2)
        getter = spawn(q.get)
        wait_until(lambda: q.stats()["waits_for_item"] == 1)
        assert getter.is_alive()

        q.put("hello")
        assert getter.finish().result == "hello"
        assert q.is_empty()

    def test_no_lost_wakeup_one_producer_one_consumer(self, spawn):
        q = BoundedSynchronizedQueue(1)
        n = 2000
        received = []

        def consume():
            for _ in range(n):
                received.append(q.get(timeout=5))

        consumer = spawn(consume)
        for i in range(n):
            q.put(i, timeout=5)
        consumer.finish(timeout=10)
        assert consumer.error is None
        assert received == list(range(n))

    def test_many_producers_many_consumers_exactly_once(self, spawn):
        q = BoundedSynchronizedQueue(3)
        producers, per_producer = 4, 250
        received = []
        lock = threading.Lock()

        def produce(p):
            for i in range(per_producer):
                q.put((p, i), timeout=5)

        def consume():
            while True:
                try:
                    item = q.get(timeout=5)
                except ClosedError:
                    return
                with lock:
                    received.append(item)

        consumers = [spawn(consume) for _ in range(3)]
        workers = [spawn(produce, p) for p in range(producers)]
        for w in workers:
            assert w.finish(timeout=10).error is None
        q.close()
        for c in consumers:
            assert c.finish(timeout=10).error is None

        expected = {(p, i) for p in range(producers) for i in range(per_producer)}
        assert len(received) == len(expected)
        assert set(received) == expected

    def test_capacity_never_exceeded(self, spawn):
        capacity = 2
        q = BoundedSynchronizedQueue(capacity)
        sizes = []

        def produce():
            for i in range(500):
                q.put(i, timeout=5)

        def consume():
            for _ in range(1000):
                sizes.append(q.size())
                q.get(timeout=5)

        consumer = spawn(consume)
        producers = [spawn(produce) for _ in range(2)]
        for p in producers:
            p.finish(timeout=10)
        consumer.finish(timeout=10)
        assert consumer.error is None
        assert max(sizes) <= capacity
        assert q.stats()["high_water"] <= capacity


class TestFairness:
    """Blocked callers complete in the order they started waiting."""

    def test_blocked_producers_complete_in_arrival_order(self, spawn):
        q = BoundedSynchronizedQueue(1)
        q.put("first")
        a = spawn(q.put, "a")
        wait_until(lambda: q.stats()["waits_for_space"] == 1)
        b = spawn(q.put, "b")
        wait_until(lambda: q.stats()["waits_for_space"] == 2)

        assert q.get(timeout=1) == "first"
        assert q.get(timeout=1) == "a"
        assert q.get(timeout=1) == "b"
        a.finish()
        b.finish()

    def test_blocked_consumers_served_in_arrival_order(self, spawn):
        q = BoundedSynchronizedQueue(4)
        first = spawn(q.get, timeout=2)
        wait_until(lambda: q.stats()["waits_for_item"] == 1)
        second = spawn(q.get, timeout=2)
        wait_until(lambda: q.stats()["waits_for_item"] == 2)

        q.put(1)
        q.put(2)
        assert first.finish().result == 1
        assert second.finish().result == 2

    def test_new_put_does_not_overtake_waiting_producer(self, spawn):
        q = BoundedSynchronizedQueue(1)
        q.put(0)
        waiting = spawn(q.put, 1)
        wait_until(lambda: q.stats()["waits_for_space"] == 1)
        assert q.get() == 0
        with pytest.raises(QueueTimeoutError):
            # the slot belongs to the producer already in line
            q.put_nowait(99)
        waiting.finish()
        assert q.get_nowait() == 1

    def test_timed_out_head_passes_wakeup_on(self, spawn):
        q = BoundedSynchronizedQueue(1)
        q.put(0)
        head = spawn(q.put, "head", timeout=0.2)
        wait_until(lambda: q.stats()["waits_for_space"] == 1)
        tail = spawn(q.put, "tail", timeout=5)
        wait_until(lambda: q.stats()["waits_for_space"] == 2)

        assert isinstance(head.finish().error, QueueTimeoutError)
        assert q.get(timeout=1) == 0
        assert tail.finish().error is None
        assert q.get(timeout=1) == "tail"


class TestClose:
    """Closure rejects puts and lets consumers drain."""

    def test_put_after_close_fails_immediately(self):
        q = BoundedSynchronizedQueue(2)
        q.close()
        with pytest.raises(ClosedError):
            q.put(1)
        assert q.closed

    def test_get_drains_then_fails(self):
        q = BoundedSynchronizedQueue(3)
        q.put("a")
        q.put("b")
        q.close()
        assert q.get() == "a"
        assert q.get() == "b"
        with pytest.raises(ClosedError):
            q.get()

    def test_close_is_idempotent(self):
        q = BoundedSynchronizedQueue(1)
        q.close()
        q.close()
        assert q.closed

    def test_close_wakes_blocked_consumers(self, spawn):
        q = BoundedSynchronizedQueue(1)
        getters = [spawn(q.get) for _ in range(3)]
        wait_until(lambda: q.stats()["waits_for_item"] == 3)
        q.close()
        for g in getters:
            assert isinstance(g.finish().error, ClosedError)

    def test_close_wakes_blocked_producers_without_enqueueing(self, spawn):
        q = BoundedSynchronizedQueue(1)
        q.put("kept")
        putter = spawn(q.put, "rejected")
        wait_until(lambda: q.stats()["waits_for_space"] == 1)
        q.close()
        assert isinstance(putter.finish().error, ClosedError)
        assert q.get() == "kept"
        with pytest.raises(ClosedError):
            q.get()

    def test_waiting_consumers_drain_after_close(self, spawn):
        q = BoundedSynchronizedQueue(4)
        for i in range(2):
            q.put(i)
        q.close()
        results = [spawn(q.get, timeout=2) for _ in range(3)]
        for r in results:
            r.finish()
        values = sorted(r.result for r in results if r.error is None)
        errors = [r.error for r in results if r.error is not None]
        assert values == [0, 1]
        assert len(errors) == 1 and isinstance(errors[0], ClosedError)


class TestTimeouts:
    """Timed-out operations leave the queue unchanged."""

    def test_get_timeout_on_empty_queue(self):
        q = BoundedSynchronizedQueue(1)
        start = time.monotonic()
        with pytest.raises(QueueTimeoutError):
            q.get(timeout=0.05)
        assert time.monotonic() - start >= 0.04
        assert q.size() == 0
        assert q.stats()["timeouts"] == 1

    def test_put_timeout_leaves_size_unchanged(self):
        q = BoundedSynchronizedQueue(2)
        q.put(1)
        q.put(2)
        with pytest.raises(QueueTimeoutError):
            q.put(3, timeout=0.02)
        assert q.size() == 2
        assert [q.get(), q.get()] == [1, 2]

    def test_timeout_error_is_builtin_timeout(self):
        q = BoundedSynchronizedQueue(1)
        with pytest.raises(TimeoutError):
            q.get_nowait()

    def test_nowait_variants(self):
        q = BoundedSynchronizedQueue(1)
        q.put_nowait("x")
        with pytest.raises(QueueTimeoutError):
            q.put_nowait("y")
        assert q.get_nowait() == "x"
        with pytest.raises(QueueTimeoutError):
            q.get_nowait()


class TestCancellation:
    """Cancellation tokens abort waits without mutating the queue."""

    def test_cancel_wakes_blocked_get(self, spawn):
        q = BoundedSynchronizedQueue(1)
        token = CancellationToken()
        getter = spawn(q.get, cancel=token)
        wait_until(lambda: q.stats()["waits_for_item"] == 1)

        token.cancel("shutting down")
        getter.finish(timeout=1)
        assert isinstance(getter.error, CancelledError)
        assert "shutting down" in str(getter.error)
        assert q.size() == 0
        assert q.stats()["cancellations"] == 1

    def test_cancel_wakes_blocked_put_and_keeps_contents(self, spawn):
        q = BoundedSynchronizedQueue(1)
        q.put("a")
        token = CancellationToken()
        putter = spawn(q.put, "b", cancel=token)
        wait_until(lambda: q.stats()["waits_for_space"] == 1)

        token.cancel()
        assert isinstance(putter.finish(timeout=1).error, CancelledError)
        assert q.size() == 1
        assert q.get() == "a"

    def test_pre_cancelled_token_fails_when_wait_needed(self):
        q = BoundedSynchronizedQueue(1)
        token = CancellationToken()
        token.cancel()
        with pytest.raises(CancelledError):
            q.get(cancel=token)

    def test_pre_cancelled_token_does_not_block_ready_operation(self):
        q = BoundedSynchronizedQueue(1)
        token = CancellationToken()
        token.cancel()
        q.put(1, cancel=token)
        assert q.get(cancel=token) == 1

    def test_cancelled_waiter_hands_turn_to_next(self, spawn):
        q = BoundedSynchronizedQueue(1)
        token = CancellationToken()
        first = spawn(q.get, cancel=token)
        wait_until(lambda: q.stats()["waits_for_item"] == 1)
        second = spawn(q.get, timeout=2)
        wait_until(lambda: q.stats()["waits_for_item"] == 2)

        token.cancel()
        assert isinstance(first.finish().error, CancelledError)
        q.put("for second")
        assert second.finish().result == "for second"

    def test_callbacks_are_unregistered_after_success(self):
        q = BoundedSynchronizedQueue(1)
        token = CancellationToken()
        q.put(1, cancel=token)
        q.get(cancel=token)
        assert token._callbacks == {}
