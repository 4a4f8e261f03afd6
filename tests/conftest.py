"""
Pytest configuration and shared fixtures.
"""

import json
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import pytest

from leadscan.batch import RateLimitedQueue
from leadscan.circuit import CircuitBreaker
from leadscan.client import SearchClient, UpstreamExhaustedError
from leadscan.retry import RetryOptions

BASE_URLS = ("https://primary.test", "https://secondary.test")

NO_DELAY = RetryOptions(max_retries=2, base_delay=0, max_delay=0, jitter=0)


class DummyResponse:
    """
    Minimal stand-in for requests.Response.

    With `drip` set, iter_content yields the body one byte at a time with a
    `drip`-second pause before each byte, like a server trickling its reply.
    """

    def __init__(self, status_code: int = 200, json_data: Any = None, text: Optional[str] = None,
                 drip: Optional[float] = None):
        self.status_code = status_code
        self._json = json_data
        if text is None:
            text = json.dumps(json_data) if json_data is not None else ""
        self.text = text
        self.drip = drip
        self.closed = False

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if self._json is None:
            return json.loads(self.text)
        return self._json

    def iter_content(self, chunk_size: int = 1):
        body = self.text.encode("utf-8")
        if self.drip is None:
            for start in range(0, len(body), chunk_size):
                yield body[start:start + chunk_size]
            return
        for i in range(len(body)):
            time.sleep(self.drip)
            yield body[i:i + 1]

    def close(self) -> None:
        self.closed = True


class DummySession:
    """
    Records every GET and answers with handler(url, params).

    The handler may return a DummyResponse or raise a requests exception.
    """

    def __init__(self, handler: Callable[[str, Dict[str, Any]], DummyResponse]):
        self.handler = handler
        self.calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def get(self, url, params=None, headers=None, timeout=None, **kwargs):
        with self._lock:
            self.calls.append({"url": url, "params": params or {}, "headers": headers or {},
                               "timeout": timeout, "stream": kwargs.get("stream", False)})
        return self.handler(url, params or {})

    def urls(self) -> List[str]:
        return [c["url"] for c in self.calls]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def search_payload(*names: str) -> Dict[str, Any]:
    return {
        "status": "Success",
        "data": [[
            {
                "name": name,
                "place_id": f"place-{i}",
                "full_address": f"{i} Main St, Austin, TX",
                "rating": 4.2,
                "reviews": 12,
                "site": f"https://{name.lower().replace(' ', '')}.example",
                "type": "Plumber",
                "is_claimed": True,
            }
            for i, name in enumerate(names)
        ]],
    }


def reviews_payload(*reviews: Dict[str, Any]) -> Dict[str, Any]:
    return {"data": [{"name": "Some Place", "reviews_data": list(reviews)}]}


@pytest.fixture
def make_client():
    """Build a SearchClient over a DummySession with zero retry delays."""

    def factory(handler, **kwargs) -> SearchClient:
        session = DummySession(handler)
        clock = kwargs.pop("clock", FakeClock())
        options = dict(
            api_key="test-key",
            base_urls=BASE_URLS,
            session=session,
            search_retry=NO_DELAY,
            reviews_retry=NO_DELAY,
            search_breaker=CircuitBreaker(
                "search", failure_threshold=3, reset_timeout=60,
                expected_exception=UpstreamExhaustedError, clock=clock,
            ),
            reviews_breaker=CircuitBreaker(
                "reviews", failure_threshold=3, reset_timeout=60,
                expected_exception=UpstreamExhaustedError, clock=clock,
            ),
            review_queue=RateLimitedQueue(3, batch_delay=0, batch_jitter=0),
        )
        options.update(kwargs)
        return SearchClient(**options)

    return factory


@pytest.fixture
def sample_wordpress_html() -> str:
    """WordPress site with Yoast output and a LocalBusiness founder."""
    return """
    <html>
    <head>
        <title>Joe's Plumbing | Austin Plumbers</title>
        <meta name="generator" content="WordPress 6.4">
        <link rel="stylesheet" href="https://joesplumbing.example/wp-content/themes/x/style.css">
        <script type="application/ld+json">
        {"@context": "https://schema.org", "@graph": [
            {"@type": "WebSite", "name": "Joe's Plumbing"},
            {"@type": ["LocalBusiness", "Plumber"], "name": "Joe's Plumbing",
             "founder": {"@type": "Person", "name": "Joe Smith"},
             "telephone": "+1 512-555-0100"}
        ]}
        </script>
    </head>
    <body><h1>Joe's Plumbing</h1></body>
    </html>
    """


@pytest.fixture
def sample_plain_html() -> str:
    """Hand-built site with no CMS, no SEO signals and no contacts."""
    return """
    <html>
    <head><title>Bob's Pipes</title></head>
    <body><p>Call us today.</p></body>
    </html>
    """


@pytest.fixture
def enriched_document() -> Dict[str, Any]:
    """Flat enriched business JSON as accepted by the `score` command."""
    return {
        "name": "Joe's Plumbing",
        "address": "12 Main St, Austin, TX",
        "website": None,
        "rating": 2.5,
        "review_count": 3,
        "claimed": False,
        "search_visibility": None,
        "days_dormant": 400,
        "response_rate": 10,
        "reviews_analyzed": 3,
        "seo_optimized": False,
    }
