"""
Rate-limited batch processing of upstream calls.

RateLimitedQueue bounds how many calls run at once (semaphore) and how fast
new ones start (batches separated by a pause), because the provider limits
requests per second as well as concurrent connections. Results come back in
input order no matter what order they complete in.
"""

import random
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, as_completed, wait
from typing import Callable, Dict, Generic, Iterable, Iterator, List, Optional, Tuple, Type, TypeVar, Union

from .concurrency import CancellationToken, CancelledError, Semaphore
from .logger import get_logger
from .models import BatchItem
from .retry import RetryOptions, is_transient_error, with_retry

logger = get_logger()

T = TypeVar("T")
R = TypeVar("R")

Processor = Callable[[T, int], R]
ProgressCallback = Callable[[int, int, R], None]


class RateLimitedQueue(Generic[T, R]):
    """Process items with bounded concurrency and a pause between batches."""

    def __init__(
        self,
        concurrency: int,
        batch_size: Optional[int] = None,
        batch_delay: float = 1.0,
        batch_jitter: float = 0.5,
    ):
        """
        Args:
            concurrency: Max processor calls running at once
            batch_size: Items admitted before the inter-batch pause
                (default: concurrency)
            batch_delay: Seconds to pause between batches
            batch_jitter: Upper bound of random seconds added to each pause
        """
        self.semaphore = Semaphore(concurrency)
        self.concurrency = concurrency
        self.batch_size = batch_size or concurrency
        self.batch_delay = batch_delay
        self.batch_jitter = batch_jitter

    def _run(self, processor: Processor, item: T, index: int,
             cancel: Optional[CancellationToken]) -> R:
        return self.semaphore.with_permit(processor, item, index, cancel=cancel)

    def _pause(self, cancel: Optional[CancellationToken]) -> None:
        delay = self.batch_delay + random.uniform(0, self.batch_jitter)
        if delay <= 0:
            return
        if cancel is None:
            time.sleep(delay)
        elif cancel.wait(delay):
            raise CancelledError("Batch cancelled")

    def _executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(
            max_workers=max(self.batch_size, 1),
            thread_name_prefix="leadscan-queue",
        )

    def process_all(
        self,
        items: Iterable[T],
        processor: Processor,
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[R]:
        """
        Process every item and return results in input order.

        on_progress(completed, total, result) is called from the calling
        thread as each item finishes. A processor exception propagates after
        the rest of its batch has finished.

        Raises:
            CancelledError: If `cancel` fires; in-flight items still finish.
        """
        items = list(items)
        total = len(items)
        results: List[Optional[R]] = [None] * total
        completed = 0

        executor = self._executor()
        try:
            for start in range(0, total, self.batch_size):
                if cancel is not None:
                    cancel.raise_if_cancelled()

                futures = {
                    executor.submit(self._run, processor, items[i], i, cancel): i
                    for i in range(start, min(start + self.batch_size, total))
                }
                for future in as_completed(futures):
                    index = futures[future]
                    results[index] = future.result()
                    completed += 1
                    if on_progress:
                        on_progress(completed, total, results[index])

                if start + self.batch_size < total:
                    self._pause(cancel)
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

        return results  # type: ignore[return-value]

    def process_stream(
        self,
        items: Iterable[T],
        processor: Processor,
        cancel: Optional[CancellationToken] = None,
    ) -> Iterator[BatchItem[R]]:
        """
        Yield results strictly in input order as they become available.

        At most `batch_size` items are in flight. Completions that arrive
        ahead of a lower index are buffered until every lower index has
        been yielded.
        """
        items = list(items)
        total = len(items)
        if total == 0:
            return

        pending: Dict = {}
        buffered: Dict[int, R] = {}
        next_index = 0
        completed = 0

        executor = self._executor()
        try:
            for index, item in enumerate(items):
                if cancel is not None:
                    cancel.raise_if_cancelled()
                pending[executor.submit(self._run, processor, item, index, cancel)] = index

                if len(pending) < self.batch_size:
                    continue
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    buffered[pending.pop(future)] = future.result()
                    completed += 1
                while next_index in buffered:
                    yield BatchItem(buffered.pop(next_index), next_index, completed, total)
                    next_index += 1

            while pending:
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    buffered[pending.pop(future)] = future.result()
                    completed += 1
                while next_index in buffered:
                    yield BatchItem(buffered.pop(next_index), next_index, completed, total)
                    next_index += 1
        finally:
            executor.shutdown(wait=True, cancel_futures=True)


def process_batch_with_recovery(
    items: Iterable[T],
    processor: Callable[[T], R],
    default: Union[R, Callable[[T, BaseException], R]],
    concurrency: int = 5,
    retry_options: Optional[RetryOptions] = None,
    on_item_complete: Optional[Callable[[T, R, bool], None]] = None,
    on_item_error: Optional[Callable[[T, BaseException, int], None]] = None,
    reraise: Tuple[Type[BaseException], ...] = (),
    queue: Optional[RateLimitedQueue] = None,
    cancel: Optional[CancellationToken] = None,
) -> List[R]:
    """
    Process items concurrently; a failing item gets a default instead of failing the batch.

    Args:
        items: Items to process
        processor: Called once per attempt with the item
        default: Value substituted for a failed item, or a function
            default(item, error) computing it
        concurrency: Max items processed at once (ignored when `queue` is given)
        retry_options: Per-item retry configuration
        on_item_complete: callback(item, result, success) for every item,
            called from worker threads
        on_item_error: callback(item, error, attempt) for every retried failure
        reraise: Exception types that abort the whole batch instead of
            being replaced by the default
        queue: Queue to run on in paced batches, e.g. one with inter-batch
            throttling (default: a sliding window of `concurrency` items,
            where each finished item lets the next one start)
        cancel: Optional token; unstarted items are abandoned

    Returns:
        One result per item, in input order.
    """
    window = None
    if queue is None:
        window = RateLimitedQueue(concurrency, batch_delay=0, batch_jitter=0)

    def notify_retry(item: T):
        if on_item_error is None:
            return None
        return lambda attempt, error, delay: on_item_error(item, error, attempt)

    def recover(item: T, index: int) -> R:
        try:
            result = with_retry(
                lambda: processor(item),
                retry_options,
                on_retry=notify_retry(item),
                give_up_on=reraise,
            )
        except reraise:
            raise
        except Exception as e:
            fallback = default(item, e) if callable(default) else default
            logger.warning(
                "Batch item failed, using default",
                index=index,
                item=str(item)[:200],
                error_type=type(e).__name__,
                error=str(e),
                transient=is_transient_error(e),
            )
            if on_item_complete:
                on_item_complete(item, fallback, False)
            return fallback

        if on_item_complete:
            on_item_complete(item, result, True)
        return result

    if window is not None:
        return [item.result for item in window.process_stream(items, recover, cancel=cancel)]
    return queue.process_all(items, recover, cancel=cancel)


class ProgressCounter:
    """Thread-safe completed-item counter for progress callbacks fired from workers."""

    def __init__(self, total: int):
        self.total = total
        self.completed = 0
        self._lock = threading.Lock()

    def increment(self) -> int:
        with self._lock:
            self.completed += 1
            return self.completed
