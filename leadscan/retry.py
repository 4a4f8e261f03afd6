"""
Retry logic with exponential backoff for handling transient failures.

Provides an executor and a decorator for automatically retrying operations
that may fail due to network issues, rate limiting, or temporary errors.
Name-resolution failures get a longer backoff than application errors.
"""

import functools
import random
import socket
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

T = TypeVar("T")

OnRetry = Callable[[int, BaseException, float], None]

DNS_MULTIPLIER = 1.5

DNS_ERROR_MARKERS = (
    "ENOTFOUND",
    "EAI_AGAIN",
    "getaddrinfo",
    "DNS",
    "NameResolutionError",
    "Name or service not known",
    "Temporary failure in name resolution",
    "nodename nor servname",
)


@dataclass(frozen=True)
class RetryOptions:
    """Backoff configuration. Delays are in seconds."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    jitter: float = 0.5


DEFAULT_RETRY_OPTIONS = RetryOptions()


def _error_chain(error: BaseException):
    """Yield the error and every exception it was raised from."""
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def is_dns_error(error: BaseException) -> bool:
    """
    Check if an error (or anything in its cause chain) is a name-resolution failure.

    These indicate infrastructure problems and need longer recovery windows.
    """
    for exc in _error_chain(error):
        if isinstance(exc, socket.gaierror):
            return True
        text = f"{type(exc).__name__}: {exc}"
        if any(marker in text for marker in DNS_ERROR_MARKERS):
            return True
    return False


def calculate_backoff_delay(
    attempt: int,
    options: RetryOptions = DEFAULT_RETRY_OPTIONS,
    error: Optional[BaseException] = None,
) -> float:
    """
    Delay before retry number `attempt + 1`.

    min(base * 2^attempt, max_delay), times 1.5 for DNS errors, plus
    uniform jitter in [0, options.jitter].
    """
    exponential_delay = min(options.base_delay * (2 ** attempt), options.max_delay)
    multiplier = DNS_MULTIPLIER if error is not None and is_dns_error(error) else 1.0
    jitter = random.uniform(0, options.jitter) if options.jitter > 0 else 0.0
    return exponential_delay * multiplier + jitter


def with_retry(
    fn: Callable[[], T],
    options: Optional[RetryOptions] = None,
    on_retry: Optional[OnRetry] = None,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    give_up_on: Tuple[Type[BaseException], ...] = (),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run `fn` with exponential backoff.

    Args:
        fn: Zero-argument callable to run
        options: Backoff configuration (default: DEFAULT_RETRY_OPTIONS)
        on_retry: Optional callback(attempt, exception, delay), called before each sleep
        exceptions: Exception types that are retried. Anything else propagates
            immediately without consuming the retry budget.
        give_up_on: Subtypes of `exceptions` that must not be retried either
        sleep: Sleep function (injectable for tests)

    Returns:
        The first successful return value of `fn`.

    Raises:
        The last exception once all attempts are exhausted.
    """
    opts = options or DEFAULT_RETRY_OPTIONS

    for attempt in range(opts.max_retries + 1):
        try:
            return fn()
        except exceptions as e:
            if attempt >= opts.max_retries or isinstance(e, give_up_on):
                raise
            delay = calculate_backoff_delay(attempt, opts, e)
            if on_retry:
                on_retry(attempt + 1, e, delay)
            sleep(delay)

    # Unreachable: the loop either returns or raises
    raise AssertionError("retry loop exited without result")


def exponential_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    jitter: float = 0.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[OnRetry] = None,
):
    """
    Decorator for retrying functions with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (0 = no retries)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay between retries in seconds
        jitter: Upper bound of random jitter added to each delay
        exceptions: Tuple of exceptions to catch and retry
        on_retry: Optional callback function(attempt, exception, delay)

    Example:
        @exponential_backoff(max_retries=3, base_delay=1.0)
        def fetch_data(url):
            return requests.get(url)
    """
    options = RetryOptions(
        max_retries=max_retries,
        base_delay=base_delay,
        max_delay=max_delay,
        jitter=jitter,
    )

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return with_retry(
                lambda: func(*args, **kwargs),
                options,
                on_retry=on_retry,
                exceptions=exceptions,
            )

        return wrapper
    return decorator


def is_transient_error(exception: BaseException) -> bool:
    """
    Determine if an exception is likely transient and should be retried.

    Args:
        exception: Exception to check

    Returns:
        True if error is likely transient (timeout, connection, DNS, 5xx, 429)
    """
    if is_dns_error(exception):
        return True

    error_str = str(exception).lower()

    transient_keywords = [
        'timeout',
        'timed out',
        'connection',
        'temporary failure',
        'service unavailable',
        '503',
        '502',
        '500',
        '429',  # Rate limit
        'connection reset',
    ]

    return any(keyword in error_str for keyword in transient_keywords)


def should_retry_http_status(status_code: int) -> bool:
    """
    Check if HTTP status code indicates a retryable error.

    Args:
        status_code: HTTP status code

    Returns:
        True if should retry
    """
    retryable_codes = {
        408,  # Request Timeout
        429,  # Too Many Requests
        500,  # Internal Server Error
        502,  # Bad Gateway
        503,  # Service Unavailable
        504,  # Gateway Timeout
    }

    return status_code in retryable_codes


def is_authorization_status(status_code: int) -> bool:
    """401/403 mean the key is wrong; no endpoint or retry will fix that."""
    return status_code in (401, 403)
