"""
Client for the Outscraper Google Maps API.

Every capability call is structured as

    CircuitBreaker( Retry( try every base URL once ) )

so a single retry attempt walks the whole endpoint list, and only a full
pass in which every endpoint failed counts against the retry budget and
the breaker. A rejected API key (401/403) stops everything at once.
"""

import enum
import json
import math
import time
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import requests

from .batch import ProgressCounter, RateLimitedQueue, process_batch_with_recovery
from .cache import REVIEWS_TTL, SEARCH_RESULTS_TTL, TTLCache, reviews_key, search_key
from .circuit import CircuitBreaker
from .concurrency import CancellationToken, CancelledError, call_with_deadline
from .config import DEFAULT_BASE_URLS, ConfigError, Settings, get_settings
from .logger import get_logger
from .models import BusinessListing, ReviewRecord, ReviewSummary
from .retry import RetryOptions, is_authorization_status, should_retry_http_status, with_retry
from .schema import validate_search_request

logger = get_logger()

SEARCH_PATH = "/maps/search-v3"
REVIEWS_PATH = "/maps/reviews-v3"

OUTSCRAPER_DATETIME_FORMAT = "%m/%d/%Y %H:%M:%S"

BODY_CHUNK_SIZE = 8192

ReviewProgress = Callable[[int, int, str, bool], None]


class SearchClientError(RuntimeError):
    """Base class for upstream failures."""


class AuthorizationError(SearchClientError):
    """The upstream rejected the API key. Not retryable."""

    def __init__(self, status_code: int, endpoint: str):
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(f"Upstream rejected API key ({status_code}) at {endpoint}")


class UpstreamExhaustedError(SearchClientError):
    """Every endpoint failed during one attempt."""

    def __init__(self, capability: str, errors: Sequence[str]):
        self.capability = capability
        self.errors = list(errors)
        super().__init__(
            f"All {len(self.errors)} {capability} endpoints failed: " + "; ".join(self.errors)
        )


class EndpointOutcome(enum.Enum):
    OK = "ok"
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass
class EndpointResult:
    """Result of one request against one base URL."""

    outcome: EndpointOutcome
    base_url: str
    payload: Any = None
    status_code: Optional[int] = None
    error: Optional[str] = None
    exception: Optional[BaseException] = None


class SearchClient:
    """
    Search and review lookups with endpoint failover, retries and per-capability breakers.

    Safe to share between threads.
    """

    def __init__(
        self,
        api_key: str,
        base_urls: Sequence[str] = DEFAULT_BASE_URLS,
        session: Optional[requests.Session] = None,
        search_retry: Optional[RetryOptions] = None,
        reviews_retry: Optional[RetryOptions] = None,
        search_breaker: Optional[CircuitBreaker] = None,
        reviews_breaker: Optional[CircuitBreaker] = None,
        search_timeout: float = 30.0,
        reviews_timeout: float = 20.0,
        cache: Optional[TTLCache] = None,
        review_queue: Optional[RateLimitedQueue] = None,
        batch_item_retry: Optional[RetryOptions] = None,
    ):
        """
        Args:
            api_key: Outscraper API key
            base_urls: Interchangeable API base URLs, tried in order
            session: HTTP session (default: new requests.Session)
            search_retry: Retry options for search
            reviews_retry: Retry options for reviews
            search_breaker: Breaker for search (default: threshold 5, 60s)
            reviews_breaker: Breaker for reviews (default: threshold 5, 60s)
            search_timeout: Seconds before a search request is abandoned
            reviews_timeout: Seconds before a reviews request is abandoned
            cache: Optional response cache
            review_queue: Queue used by batch_fetch_reviews
            batch_item_retry: Extra per-item retries in batch_fetch_reviews,
                on top of the client's own retries (default: none)
        """
        if not base_urls:
            raise ValueError("At least one base URL is required")
        self.api_key = api_key
        self.base_urls = [u.rstrip("/") for u in base_urls]
        self.session = session or requests.Session()
        self.search_retry = search_retry or RetryOptions()
        self.reviews_retry = reviews_retry or RetryOptions()
        self.search_breaker = search_breaker or CircuitBreaker(
            "search", expected_exception=UpstreamExhaustedError
        )
        self.reviews_breaker = reviews_breaker or CircuitBreaker(
            "reviews", expected_exception=UpstreamExhaustedError
        )
        self.search_timeout = search_timeout
        self.reviews_timeout = reviews_timeout
        self.cache = cache
        self.review_queue = review_queue or RateLimitedQueue(5, batch_size=5, batch_delay=1.0)
        self.batch_item_retry = batch_item_retry or RetryOptions(max_retries=0)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
    ) -> "SearchClient":
        s = settings or get_settings()
        retry = RetryOptions(
            max_retries=s.retry_max_retries,
            base_delay=s.retry_base_delay,
            max_delay=s.retry_max_delay,
            jitter=s.retry_jitter,
        )

        def breaker(name: str) -> CircuitBreaker:
            return CircuitBreaker(
                name,
                failure_threshold=s.circuit_failure_threshold,
                reset_timeout=s.circuit_reset_timeout,
                half_open_successes=s.circuit_half_open_successes,
                expected_exception=UpstreamExhaustedError,
            )

        return cls(
            api_key=s.api_key,
            base_urls=s.base_urls,
            session=session,
            search_retry=retry,
            reviews_retry=retry,
            search_breaker=breaker("search"),
            reviews_breaker=breaker("reviews"),
            search_timeout=s.search_timeout,
            reviews_timeout=s.reviews_timeout,
            cache=TTLCache() if s.cache_enabled else None,
            review_queue=RateLimitedQueue(
                s.max_concurrency, batch_size=s.batch_size, batch_delay=s.batch_delay
            ),
        )

    # Transport

    def _fetch(
        self,
        url: str,
        params: Dict[str, Any],
        timeout: float,
        deadline: float,
    ) -> Tuple[int, bytes]:
        """GET `url` and read the body, giving up once `deadline` has passed."""
        response = self.session.get(
            url,
            params=params,
            headers={"X-API-KEY": self.api_key},
            timeout=timeout,
            stream=True,
        )
        try:
            if is_authorization_status(response.status_code):
                return response.status_code, b""
            chunks = []
            for chunk in response.iter_content(chunk_size=BODY_CHUNK_SIZE):
                if time.monotonic() > deadline:
                    raise requests.exceptions.Timeout(
                        f"Response body not received within {timeout}s"
                    )
                chunks.append(chunk)
            return response.status_code, b"".join(chunks)
        finally:
            response.close()

    def _request_endpoint(
        self,
        base_url: str,
        path: str,
        params: Dict[str, Any],
        timeout: float,
    ) -> EndpointResult:
        url = f"{base_url}{path}"
        logger.record_api_call()
        deadline = time.monotonic() + timeout
        try:
            status, body = call_with_deadline(
                lambda: self._fetch(url, params, timeout, deadline),
                timeout,
                name="leadscan-request",
            )
        except FutureTimeoutError:
            e = requests.exceptions.Timeout(f"Request to {url} did not complete within {timeout}s")
            return EndpointResult(
                EndpointOutcome.RETRYABLE, base_url,
                error=f"{type(e).__name__}: {e}", exception=e,
            )
        except requests.exceptions.RequestException as e:
            return EndpointResult(
                EndpointOutcome.RETRYABLE, base_url,
                error=f"{type(e).__name__}: {e}", exception=e,
            )

        if is_authorization_status(status):
            return EndpointResult(EndpointOutcome.FATAL, base_url, status_code=status,
                                  error=f"HTTP {status}")
        text = body.decode("utf-8", errors="replace")
        if status >= 400:
            return EndpointResult(EndpointOutcome.RETRYABLE, base_url, status_code=status,
                                  error=f"HTTP {status}: {text[:200]}")

        try:
            payload = json.loads(text)
        except ValueError as e:
            return EndpointResult(EndpointOutcome.RETRYABLE, base_url, status_code=status,
                                  error=f"Invalid JSON: {e}", exception=e)

        if isinstance(payload, dict) and payload.get("error"):
            return EndpointResult(EndpointOutcome.RETRYABLE, base_url, status_code=status,
                                  error=f"Upstream error: {payload.get('errorMessage') or payload['error']}")

        return EndpointResult(EndpointOutcome.OK, base_url, payload=payload, status_code=status)

    def _try_all_endpoints(
        self,
        capability: str,
        path: str,
        params: Dict[str, Any],
        timeout: float,
    ) -> Any:
        """One pass over every base URL. Returns the first good payload."""
        errors: List[str] = []
        last_exception: Optional[BaseException] = None

        for base_url in self.base_urls:
            result = self._request_endpoint(base_url, path, params, timeout)
            if result.outcome is EndpointOutcome.OK:
                return result.payload
            if result.outcome is EndpointOutcome.FATAL:
                logger.error(
                    "Upstream rejected API key",
                    capability=capability,
                    endpoint=base_url,
                    status=result.status_code,
                )
                raise AuthorizationError(result.status_code, base_url)

            logger.warning(
                "Endpoint failed, trying next",
                capability=capability,
                endpoint=base_url,
                status=result.status_code,
                retryable_status=(
                    should_retry_http_status(result.status_code)
                    if result.status_code else None
                ),
                error=result.error,
            )
            errors.append(f"{base_url}: {result.error}")
            if result.exception is not None:
                last_exception = result.exception

        raise UpstreamExhaustedError(capability, errors) from last_exception

    def _call(
        self,
        capability: str,
        breaker: CircuitBreaker,
        retry_options: RetryOptions,
        path: str,
        params: Dict[str, Any],
        timeout: float,
        parse: Callable[[Any], Any],
        fallback: Optional[Callable[[], Any]] = None,
    ):
        """
        Run one capability call through breaker and retry.

        Returns (value, from_fallback).
        """
        if not self.api_key:
            raise ConfigError("OUTSCRAPER_API_KEY is not configured")

        logger.record_request_attempt(capability)
        used_fallback = []

        def on_retry(attempt: int, error: BaseException, delay: float):
            logger.warning(
                f"Retrying {capability} request",
                attempt=attempt,
                delay=round(delay, 3),
                error=str(error),
            )

        def attempt():
            payload = with_retry(
                lambda: self._try_all_endpoints(capability, path, params, timeout),
                retry_options,
                on_retry=on_retry,
                exceptions=(UpstreamExhaustedError,),
            )
            return parse(payload)

        def open_fallback():
            used_fallback.append(True)
            return fallback()

        try:
            value = breaker.call(
                attempt,
                fallback=open_fallback if fallback is not None else None,
            )
        except Exception as e:
            logger.record_request_failure(capability, type(e).__name__)
            raise

        if used_fallback:
            logger.record_request_failure(capability, "CircuitOpenFallback")
        else:
            logger.record_request_success(capability)
        return value, bool(used_fallback)

    # Capabilities

    def search(self, query: str, location: str, limit: int = 50) -> List[BusinessListing]:
        """
        Search Google Maps for `query` in `location`.

        Raises:
            ValueError: Invalid arguments
            AuthorizationError: API key rejected
            UpstreamExhaustedError: Every endpoint failed every retry
            CircuitOpenError: Search capability is cooling down
        """
        errors = validate_search_request(query, location, limit)
        if errors:
            raise ValueError("; ".join(errors))

        key = search_key(query, location, limit)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Search cache hit", query=query, location=location)
                return list(cached)

        search_query = f"{query.strip()} in {location.strip()}"
        logger.info("Searching", query=search_query, limit=limit)
        params = {"query": search_query, "limit": limit, "async": "false"}
        listings, _ = self._call(
            "search", self.search_breaker, self.search_retry,
            SEARCH_PATH, params, self.search_timeout, parse_search_payload,
        )
        logger.info(f"Found {len(listings)} places", query=search_query)

        if self.cache is not None:
            self.cache.set(key, tuple(listings), SEARCH_RESULTS_TTL)
        return listings

    def fetch_reviews(self, id_or_name: str, limit: int = 20) -> ReviewSummary:
        """
        Summarize the newest `limit` reviews of a place (id or "name, address").

        While the reviews circuit is open this returns ReviewSummary.empty()
        instead of raising.
        """
        summary, _ = self._fetch_reviews(id_or_name, limit)
        return summary

    def _fetch_reviews(self, id_or_name: str, limit: int) -> Tuple[ReviewSummary, bool]:
        """Returns (summary, from_fallback)."""
        if not id_or_name or not id_or_name.strip():
            raise ValueError("Place id or name must be provided")

        key = reviews_key(id_or_name, limit)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached, False

        params = {
            "query": id_or_name,
            "reviewsLimit": limit,
            "sort": "newest",
            "async": "false",
        }
        summary, from_fallback = self._call(
            "reviews", self.reviews_breaker, self.reviews_retry,
            REVIEWS_PATH, params, self.reviews_timeout,
            lambda payload: summarize_reviews(parse_reviews_payload(payload)),
            fallback=ReviewSummary.empty,
        )
        logger.debug(
            "Reviews fetched",
            query=id_or_name,
            review_count=summary.review_count,
            response_rate=summary.response_rate,
            fallback=from_fallback,
        )

        if self.cache is not None and not from_fallback:
            self.cache.set(key, summary, REVIEWS_TTL)
        return summary, from_fallback

    def batch_fetch_reviews(
        self,
        items: Iterable[Mapping[str, str]],
        limit: int = 20,
        on_progress: Optional[ReviewProgress] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Dict[str, ReviewSummary]:
        """
        Fetch review summaries for many places.

        Args:
            items: Mappings with "id" (caller's key) and "query" (place id or name)
            limit: Reviews per place
            on_progress: callback(completed, total, id, success), called from
                worker threads
            cancel: Optional token to abort the batch

        Returns:
            Dict with an entry for every id. Failed lookups, and lookups
            answered by the open-circuit fallback, map to ReviewSummary.empty()
            and are reported to on_progress with success=False.

        Raises:
            AuthorizationError: API key rejected; aborts the batch
        """
        items = list(items)
        counter = ProgressCounter(len(items))
        logger.info(f"Fetching reviews for {len(items)} places", limit=limit)

        def complete(item: Mapping[str, str], result: Tuple[ReviewSummary, bool], success: bool):
            completed = counter.increment()
            _, from_fallback = result
            if on_progress:
                on_progress(completed, counter.total, item["id"], success and not from_fallback)

        results = process_batch_with_recovery(
            items,
            lambda item: self._fetch_reviews(item["query"], limit),
            (ReviewSummary.empty(), True),
            retry_options=self.batch_item_retry,
            on_item_complete=complete,
            reraise=(AuthorizationError, ConfigError, CancelledError),
            queue=self.review_queue,
            cancel=cancel,
        )
        return {item["id"]: summary for item, (summary, _) in zip(items, results)}


# Response normalization


def _unwrap_data(payload: Any) -> List[Dict[str, Any]]:
    """
    Outscraper nests results one level per query: data = [[...]], but also
    returns data = [...] or a bare object. Returns the first query's entries.
    """
    data = payload.get("data") if isinstance(payload, dict) else payload
    if isinstance(data, dict):
        return [data]
    if not isinstance(data, list) or not data:
        return []
    if isinstance(data[0], list):
        data = data[0]
    return [entry for entry in data if isinstance(entry, dict)]


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    for k in keys:
        value = raw.get(k)
        if value not in (None, ""):
            return value
    return None


def _first_bool(raw: Dict[str, Any], *keys: str) -> bool:
    for k in keys:
        if raw.get(k) is not None:
            return bool(raw[k])
    return False


def _safe_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _safe_int(value: Any) -> Optional[int]:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_place(raw: Dict[str, Any]) -> BusinessListing:
    rating = _safe_float(raw.get("rating")) or 0.0
    review_count = _safe_int(_first(raw, "reviews", "reviews_count")) or 0
    return BusinessListing(
        name=_strip_or_none(raw.get("name")) or "Unknown Business",
        place_id=_strip_or_none(_first(raw, "place_id", "google_id")),
        address=_strip_or_none(_first(raw, "full_address", "address")) or "Address not available",
        phone=_strip_or_none(raw.get("phone")),
        website=_strip_or_none(_first(raw, "site", "website")),
        rating=min(max(rating, 0.0), 5.0),
        review_count=max(review_count, 0),
        category=_strip_or_none(_first(raw, "type", "category", "main_category")) or "Uncategorized",
        claimed=_first_bool(raw, "is_claimed", "claimed", "verified"),
        sponsored=_first_bool(raw, "is_sponsored", "sponsored"),
    )


def parse_search_payload(payload: Any) -> List[BusinessListing]:
    return [parse_place(raw) for raw in _unwrap_data(payload)]


def parse_timestamp(text: Any = None, epoch: Any = None) -> Optional[datetime]:
    """
    Parse an Outscraper timestamp into an aware UTC datetime.

    Accepts "MM/DD/YYYY HH:MM:SS" or ISO 8601 text, falling back to epoch
    seconds. Returns None when neither is usable.
    """
    if text:
        s = str(text).strip()
        parsed: Optional[datetime] = None
        try:
            parsed = datetime.strptime(s, OUTSCRAPER_DATETIME_FORMAT)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
            except ValueError:
                parsed = None
        if parsed is not None:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)

    seconds = _safe_float(epoch)
    if seconds is not None:
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    return None


def _looks_like_review(entry: Dict[str, Any]) -> bool:
    return any(
        k in entry
        for k in ("review_id", "review_text", "review_datetime_utc", "review_timestamp")
    )


def parse_review(raw: Dict[str, Any]) -> ReviewRecord:
    return ReviewRecord(
        review_id=_strip_or_none(raw.get("review_id")),
        rating=_safe_float(raw.get("review_rating")),
        text=raw.get("review_text") or "",
        reviewed_at=parse_timestamp(raw.get("review_datetime_utc"), raw.get("review_timestamp")),
        owner_reply_text=raw.get("owner_answer"),
        owner_replied_at=parse_timestamp(
            raw.get("owner_answer_timestamp_datetime_utc"),
            raw.get("owner_answer_timestamp"),
        ),
    )


def parse_reviews_payload(payload: Any) -> List[ReviewRecord]:
    """
    Extract review records from any of the observed response shapes.

    Reviews are either nested in the first place under "reviews_data", or
    the unwrapped entries are the reviews themselves.
    """
    entries = _unwrap_data(payload)
    if not entries:
        return []

    first = entries[0]
    if "reviews_data" in first:
        raw_reviews = first.get("reviews_data") or []
    elif _looks_like_review(first):
        raw_reviews = entries
    else:
        raw_reviews = []

    return [parse_review(r) for r in raw_reviews if isinstance(r, dict)]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def summarize_reviews(reviews: Sequence[ReviewRecord]) -> ReviewSummary:
    """Latest review, latest owner reply and reply rate; empty input gives ReviewSummary.empty()."""
    if not reviews:
        return ReviewSummary.empty()

    last_review_date = max(
        (r.reviewed_at for r in reviews if r.reviewed_at is not None), default=None
    )
    replied = [r for r in reviews if r.has_owner_reply]
    last_owner_activity = max(
        (r.owner_replied_at for r in replied if r.owner_replied_at is not None), default=None
    )

    return ReviewSummary(
        last_review_date=last_review_date,
        last_owner_activity=last_owner_activity,
        response_rate=_round_half_up(100 * len(replied) / len(reviews)),
        review_count=len(reviews),
    )
