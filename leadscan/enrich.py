"""
Enrichment pipeline: search listings in, EnrichedBusiness records out.

Every listing comes back, in input order. Missing upstream data becomes an
explicit default rather than a dropped business.
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

import requests

from .batch import RateLimitedQueue
from .client import SearchClient
from .concurrency import CancellationToken
from .logger import get_logger
from .models import BusinessListing, EnrichedBusiness, ReviewSummary, WebsiteAnalysis
from .normalize import classify_location_type
from .ranking import check_listing_visibility
from .scoring import calculate_days_dormant
from .website import analyze_website

logger = get_logger()

# callback(stage, completed, total); stage is "visibility", "reviews" or "websites"
StageProgress = Callable[[str, int, int], None]

NO_WEBSITE = WebsiteAnalysis(tech_stack="No Website")
ANALYSIS_FAILED = WebsiteAnalysis(tech_stack="Analysis Failed")

WEBSITE_CONCURRENCY = 5


def analyze_listing_websites(
    listings: Sequence[BusinessListing],
    queue: Optional[RateLimitedQueue] = None,
    session: Optional[requests.Session] = None,
    on_progress: Optional[StageProgress] = None,
    cancel: Optional[CancellationToken] = None,
) -> List[WebsiteAnalysis]:
    """Website analysis for every listing, in input order."""
    queue = queue or RateLimitedQueue(WEBSITE_CONCURRENCY, batch_delay=0, batch_jitter=0)
    session = session or requests.Session()

    def analyze(listing: BusinessListing, index: int) -> WebsiteAnalysis:
        if not listing.website:
            return NO_WEBSITE
        try:
            return analyze_website(listing.website, session=session)
        except Exception as e:
            logger.error(
                "Website analysis failed",
                business=listing.name,
                website=listing.website,
                error_type=type(e).__name__,
                error=str(e),
            )
            return ANALYSIS_FAILED

    results: List[WebsiteAnalysis] = []
    for item in queue.process_stream(listings, analyze, cancel=cancel):
        results.append(item.result)
        if on_progress:
            on_progress("websites", item.completed, item.total)
    return results


def enrich_businesses(
    client: SearchClient,
    listings: Sequence[BusinessListing],
    niche: str,
    location: str,
    analyze_websites: bool = True,
    reviews_limit: int = 20,
    on_progress: Optional[StageProgress] = None,
    cancel: Optional[CancellationToken] = None,
    website_queue: Optional[RateLimitedQueue] = None,
    now: Optional[datetime] = None,
) -> List[EnrichedBusiness]:
    """
    Enrich search listings with visibility, review activity and website signals.

    Makes one visibility search for the whole list, then fetches reviews and
    analyzes websites in rate-limited batches.

    Raises:
        AuthorizationError: API key rejected
        CancelledError: If `cancel` fires
    """
    listings = list(listings)
    total = len(listings)
    logger.info(f"Enriching {total} businesses", niche=niche, location=location)
    if not listings:
        return []

    visibility = check_listing_visibility(client, listings, niche, location)
    if on_progress:
        on_progress("visibility", total, total)

    review_items = [{"id": str(i), "query": b.review_query} for i, b in enumerate(listings)]
    summaries: Dict[str, ReviewSummary] = client.batch_fetch_reviews(
        review_items,
        limit=reviews_limit,
        on_progress=(
            (lambda completed, count, _id, _ok: on_progress("reviews", completed, count))
            if on_progress else None
        ),
        cancel=cancel,
    )

    if analyze_websites:
        websites = analyze_listing_websites(
            listings, queue=website_queue, on_progress=on_progress, cancel=cancel
        )
    else:
        websites = [WebsiteAnalysis() for _ in listings]

    enriched = []
    for i, listing in enumerate(listings):
        summary = summaries.get(str(i), ReviewSummary.empty())
        website = websites[i]
        enriched.append(EnrichedBusiness(
            listing=listing,
            search_visibility=visibility[i],
            last_review_date=summary.last_review_date,
            last_owner_activity=summary.last_owner_activity,
            days_dormant=calculate_days_dormant(summary.last_owner_activity, now),
            response_rate=summary.response_rate,
            reviews_analyzed=summary.review_count,
            seo_optimized=website.seo_optimized,
            website_tech=website.tech_stack,
            owner_name=website.owner_name,
            owner_phone=website.owner_phone,
            location_type=classify_location_type(listing.address),
        ))

    logger.info(f"Enrichment complete for {len(enriched)} businesses", niche=niche)
    return enriched
