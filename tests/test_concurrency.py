"""
Tests for the FIFO semaphore, cancellation token and call deadlines.
"""

import threading
import time
from concurrent.futures import TimeoutError as FutureTimeoutError

import pytest

from leadscan.concurrency import CancellationToken, CancelledError, Semaphore, call_with_deadline


def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        time.sleep(0.005)


class TestSemaphore:
    """Test permit accounting and ordering."""

    def test_requires_a_permit(self):
        with pytest.raises(ValueError):
            Semaphore(0)

    def test_acquire_and_release(self):
        sem = Semaphore(2)
        sem.acquire()
        assert sem.available == 1
        sem.release()
        assert sem.available == 2

    def test_bounds_concurrency(self):
        sem = Semaphore(2)
        lock = threading.Lock()
        active = [0]
        peak = [0]

        def work():
            with sem.permit():
                with lock:
                    active[0] += 1
                    peak[0] = max(peak[0], active[0])
                time.sleep(0.02)
                with lock:
                    active[0] -= 1

        threads = [threading.Thread(target=work) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert peak[0] == 2
        assert sem.available == 2

    def test_fifo_handoff(self):
        """Waiters are granted permits in the order they queued."""
        sem = Semaphore(1)
        sem.acquire()
        order = []

        def waiter(n):
            sem.acquire()
            order.append(n)
            sem.release()

        threads = []
        for n in range(4):
            t = threading.Thread(target=waiter, args=(n,))
            t.start()
            threads.append(t)
            wait_until(lambda: sem.waiting == n + 1)

        sem.release()
        for t in threads:
            t.join()

        assert order == [0, 1, 2, 3]

    def test_release_hands_permit_to_waiter(self):
        """A released permit never returns to the pool while someone waits."""
        sem = Semaphore(1)
        sem.acquire()
        got = threading.Event()

        def waiter():
            sem.acquire()
            got.set()

        t = threading.Thread(target=waiter)
        t.start()
        wait_until(lambda: sem.waiting == 1)

        sem.release()
        t.join()

        assert got.is_set()
        assert sem.available == 0

    def test_with_permit_releases_on_error(self):
        sem = Semaphore(1)

        def boom():
            raise RuntimeError("fail")

        with pytest.raises(RuntimeError):
            sem.with_permit(boom)

        assert sem.available == 1

    def test_with_permit_returns_value(self):
        sem = Semaphore(1)
        assert sem.with_permit(lambda x: x * 2, 21) == 42


class TestCancellation:
    """Test cancellable acquisition."""

    def test_cancelled_token_raises(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(CancelledError):
            token.raise_if_cancelled()

    def test_acquire_with_cancelled_token(self):
        sem = Semaphore(1)
        token = CancellationToken()
        token.cancel()
        with pytest.raises(CancelledError):
            sem.acquire(token)
        assert sem.available == 1

    def test_cancel_while_waiting_leaves_queue(self):
        sem = Semaphore(1)
        sem.acquire()
        token = CancellationToken()
        errors = []

        def waiter():
            try:
                sem.acquire(token)
            except CancelledError as e:
                errors.append(e)

        t = threading.Thread(target=waiter)
        t.start()
        wait_until(lambda: sem.waiting == 1)

        token.cancel()
        t.join()

        assert len(errors) == 1
        assert sem.waiting == 0
        sem.release()
        assert sem.available == 1

    def test_token_wait_returns_early(self):
        token = CancellationToken()
        threading.Timer(0.01, token.cancel).start()
        assert token.wait(2.0) is True
        assert token.cancelled


class TestCallWithDeadline:
    def test_returns_result(self):
        assert call_with_deadline(lambda: 42, 1.0) == 42

    def test_propagates_error(self):
        def fail():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            call_with_deadline(fail, 1.0)

    def test_gives_up_at_deadline(self):
        release = threading.Event()
        started = time.monotonic()
        try:
            with pytest.raises(FutureTimeoutError):
                call_with_deadline(lambda: release.wait(5), 0.1)
        finally:
            release.set()
        assert time.monotonic() - started < 1.0
