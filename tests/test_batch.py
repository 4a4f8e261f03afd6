"""
Tests for rate-limited batch processing.
"""

import random
import threading
import time

import pytest

from leadscan.batch import ProgressCounter, RateLimitedQueue, process_batch_with_recovery
from leadscan.concurrency import CancellationToken, CancelledError
from leadscan.retry import RetryOptions

NO_RETRY = RetryOptions(max_retries=0)


def fast_queue(concurrency=3, batch_size=None):
    return RateLimitedQueue(concurrency, batch_size=batch_size, batch_delay=0, batch_jitter=0)


def jittery(item, index):
    time.sleep(random.uniform(0, 0.03))
    return item * 10


class TestProcessAll:
    """Test ordered batch processing."""

    def test_results_in_input_order(self):
        results = fast_queue().process_all(list(range(8)), jittery)
        assert results == [i * 10 for i in range(8)]

    def test_empty_input(self):
        assert fast_queue().process_all([], jittery) == []

    def test_progress_reported(self):
        progress = []
        fast_queue().process_all(
            [1, 2, 3, 4],
            jittery,
            on_progress=lambda completed, total, result: progress.append((completed, total)),
        )
        assert [p[0] for p in progress] == [1, 2, 3, 4]
        assert all(p[1] == 4 for p in progress)

    def test_concurrency_bounded(self):
        lock = threading.Lock()
        active = [0]
        peak = [0]

        def work(item, index):
            with lock:
                active[0] += 1
                peak[0] = max(peak[0], active[0])
            time.sleep(0.01)
            with lock:
                active[0] -= 1
            return item

        fast_queue(concurrency=2, batch_size=4).process_all(list(range(12)), work)
        assert peak[0] <= 2

    def test_pause_between_batches(self, monkeypatch):
        queue = RateLimitedQueue(2, batch_size=2, batch_delay=0.5, batch_jitter=0)
        pauses = []
        monkeypatch.setattr("leadscan.batch.time.sleep", pauses.append)

        queue.process_all(list(range(5)), lambda item, index: item)

        # 3 batches, 2 pauses between them
        assert pauses == [0.5, 0.5]

    def test_processor_error_propagates(self):
        def work(item, index):
            if item == 2:
                raise ValueError("bad item")
            return item

        with pytest.raises(ValueError):
            fast_queue().process_all([1, 2, 3], work)

    def test_cancelled_before_start(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(CancelledError):
            fast_queue().process_all([1, 2, 3], jittery, cancel=token)

    def test_cancel_mid_flight_releases_permits(self):
        """Items waiting for a permit abort; running items finish and release theirs."""
        queue = fast_queue(concurrency=2, batch_size=4)
        token = CancellationToken()
        threading.Timer(0.05, token.cancel).start()

        def slow(item, index):
            time.sleep(0.2)
            return item

        with pytest.raises(CancelledError):
            queue.process_all(list(range(8)), slow, cancel=token)

        assert queue.semaphore.available == 2
        assert queue.semaphore.waiting == 0


class TestProcessStream:
    """Test ordered streaming."""

    def test_yields_in_index_order(self):
        """Randomized latency still yields 0, 1, 2, 3, 4."""
        for _ in range(5):
            items = list(fast_queue(concurrency=5).process_stream(list(range(5)), jittery))
            assert [i.index for i in items] == [0, 1, 2, 3, 4]
            assert [i.result for i in items] == [0, 10, 20, 30, 40]

    def test_reverse_completion_order(self):
        """The slowest item first must not let later items jump ahead."""

        def slow_first(item, index):
            time.sleep(0.05 if index == 0 else 0)
            return item

        items = list(fast_queue(concurrency=4).process_stream(list("abcd"), slow_first))

        assert [i.result for i in items] == ["a", "b", "c", "d"]
        assert items[0].completed == 4

    def test_reports_totals(self):
        items = list(fast_queue().process_stream([1, 2, 3], jittery))
        assert all(i.total == 3 for i in items)
        assert items[-1].completed == 3

    def test_in_flight_bounded(self):
        lock = threading.Lock()
        active = [0]
        peak = [0]

        def work(item, index):
            with lock:
                active[0] += 1
                peak[0] = max(peak[0], active[0])
            time.sleep(0.01)
            with lock:
                active[0] -= 1
            return item

        list(fast_queue(concurrency=5, batch_size=2).process_stream(list(range(10)), work))
        assert peak[0] <= 2

    def test_empty_input(self):
        assert list(fast_queue().process_stream([], jittery)) == []

    def test_cancel_mid_flight_releases_permits(self):
        queue = fast_queue(concurrency=2, batch_size=4)
        token = CancellationToken()
        threading.Timer(0.05, token.cancel).start()

        def slow(item, index):
            time.sleep(0.2)
            return item

        with pytest.raises(CancelledError):
            list(queue.process_stream(list(range(8)), slow, cancel=token))

        assert queue.semaphore.available == 2
        assert queue.semaphore.waiting == 0


class TestProcessBatchWithRecovery:
    """Test per-item failure recovery."""

    def test_failed_items_get_default(self):
        """10 items with 2 permanent failures still yield 10 results."""

        def work(item):
            if item in (3, 7):
                raise ConnectionError(f"upstream failed for {item}")
            return item * 2

        results = process_batch_with_recovery(list(range(10)), work, -1, retry_options=NO_RETRY)

        assert len(results) == 10
        assert results[3] == -1
        assert results[7] == -1
        assert results[4] == 8

    def test_default_factory(self):
        def work(item):
            raise ValueError("nope")

        results = process_batch_with_recovery(
            ["a", "b"], work, lambda item, error: f"{item}:{error}", retry_options=NO_RETRY
        )

        assert results == ["a:nope", "b:nope"]

    def test_retries_before_default(self):
        attempts = {}
        errors = []

        def flaky(item):
            attempts[item] = attempts.get(item, 0) + 1
            if attempts[item] < 3:
                raise ConnectionError("temporary")
            return item

        results = process_batch_with_recovery(
            [1, 2],
            flaky,
            None,
            retry_options=RetryOptions(max_retries=3, base_delay=0, jitter=0),
            on_item_error=lambda item, error, attempt: errors.append((item, attempt)),
        )

        assert results == [1, 2]
        assert attempts == {1: 3, 2: 3}
        assert sorted(errors) == [(1, 1), (1, 2), (2, 1), (2, 2)]

    def test_completion_callback(self):
        seen = []

        def work(item):
            if item == "bad":
                raise ValueError("bad")
            return item

        process_batch_with_recovery(
            ["ok", "bad"],
            work,
            "default",
            retry_options=NO_RETRY,
            on_item_complete=lambda item, result, success: seen.append((item, result, success)),
        )

        assert sorted(seen) == [("bad", "default", False), ("ok", "ok", True)]

    def test_reraise_aborts_batch(self):
        class Fatal(Exception):
            pass

        attempts = [0]

        def work(item):
            attempts[0] += 1
            raise Fatal("stop")

        with pytest.raises(Fatal):
            process_batch_with_recovery(
                [1],
                work,
                None,
                retry_options=RetryOptions(max_retries=3, base_delay=0, jitter=0),
                reraise=(Fatal,),
            )

        assert attempts[0] == 1

    def test_runs_on_given_queue(self):
        queue = fast_queue(concurrency=1)
        results = process_batch_with_recovery([1, 2, 3], lambda x: x + 1, 0, queue=queue)
        assert results == [2, 3, 4]

    def test_default_window_slides(self):
        """A slow item doesn't hold back items queued behind it."""
        later_item_started = threading.Event()

        def work(item):
            if item == 0:
                return later_item_started.wait(2)
            if item == 3:
                later_item_started.set()
            return True

        results = process_batch_with_recovery(
            [0, 1, 2, 3], work, False, concurrency=2, retry_options=NO_RETRY
        )

        assert results == [True, True, True, True]


class TestProgressCounter:
    def test_counts_across_threads(self):
        counter = ProgressCounter(100)
        threads = [threading.Thread(target=counter.increment) for _ in range(100)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert counter.completed == 100
