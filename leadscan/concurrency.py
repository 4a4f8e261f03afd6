"""
Concurrency primitives for bounding upstream load.

Semaphore hands freed permits straight to the longest-waiting caller so
late arrivals can't overtake the queue. CancellationToken lets a caller
abort a batch that is still running. call_with_deadline puts a hard
wall-clock limit on a blocking call.
"""

import threading
from collections import deque
from concurrent.futures import Future
from contextlib import contextmanager
from typing import Callable, Deque, Optional, TypeVar

T = TypeVar("T")


class CancelledError(RuntimeError):
    """Raised when work is abandoned because its token was cancelled."""


class CancellationToken:
    """Shared flag a caller sets to abort in-flight batch work."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Sleep up to `timeout` seconds; returns True early if cancelled."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancelledError("Operation cancelled")


class Semaphore:
    """
    Bounded counting semaphore with FIFO waiters.

    release() never returns a permit to the pool while someone is waiting;
    the permit goes directly to the head of the queue.
    """

    # How often a cancellable acquire() re-checks its token
    POLL_INTERVAL = 0.05

    def __init__(self, permits: int):
        if permits < 1:
            raise ValueError("Semaphore needs at least one permit")
        self._permits = permits
        self._waiters: Deque[threading.Event] = deque()
        self._lock = threading.Lock()

    @property
    def available(self) -> int:
        return self._permits

    @property
    def waiting(self) -> int:
        return len(self._waiters)

    def acquire(self, cancel: Optional[CancellationToken] = None) -> None:
        """
        Block until a permit is available.

        Raises:
            CancelledError: If `cancel` fires before a permit is granted.
        """
        if cancel is not None:
            cancel.raise_if_cancelled()

        with self._lock:
            if self._permits > 0 and not self._waiters:
                self._permits -= 1
                return
            waiter = threading.Event()
            self._waiters.append(waiter)

        if cancel is None:
            waiter.wait()
            return

        while not waiter.wait(self.POLL_INTERVAL):
            if not cancel.cancelled:
                continue
            with self._lock:
                if not waiter.is_set():
                    self._waiters.remove(waiter)
                    raise CancelledError("Cancelled while waiting for a permit")
            # Granted in the same instant as the cancel: pass the permit on
            self.release()
            raise CancelledError("Cancelled while waiting for a permit")

    def release(self) -> None:
        with self._lock:
            if self._waiters:
                self._waiters.popleft().set()
            else:
                self._permits += 1

    @contextmanager
    def permit(self, cancel: Optional[CancellationToken] = None):
        """Hold one permit for the duration of the block."""
        self.acquire(cancel)
        try:
            yield
        finally:
            self.release()

    def with_permit(
        self,
        fn: Callable[..., T],
        *args,
        cancel: Optional[CancellationToken] = None,
        **kwargs,
    ) -> T:
        """Run `fn` while holding a permit; the permit is released on every exit path."""
        with self.permit(cancel):
            return fn(*args, **kwargs)


def call_with_deadline(fn: Callable[[], T], timeout: float, name: str = "leadscan-call") -> T:
    """
    Run `fn` on a daemon thread and wait at most `timeout` seconds for it.

    The caller gets control back when the deadline passes even if `fn` is
    still blocked. The abandoned call runs on in the background until it
    returns; its result is discarded.

    Raises:
        concurrent.futures.TimeoutError: If `fn` has not finished in time
        Whatever `fn` raises, if it finishes in time
    """
    future: Future = Future()

    def run():
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn())
        except BaseException as e:
            future.set_exception(e)

    threading.Thread(target=run, name=name, daemon=True).start()
    return future.result(timeout=timeout)
