"""
Tests for the enrichment pipeline.
"""

from datetime import datetime, timezone

from conftest import DummyResponse, reviews_payload, search_payload
from leadscan.batch import RateLimitedQueue
from leadscan.client import REVIEWS_PATH
from leadscan.enrich import ANALYSIS_FAILED, NO_WEBSITE, analyze_listing_websites, enrich_businesses
from leadscan.models import BusinessListing, WebsiteAnalysis

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)

LISTINGS = [
    BusinessListing(name="Joe's Plumbing", place_id="place-joe", address="12 Main St, Austin, TX"),
    BusinessListing(name="Bob's Pipes", address="400 Oak Ave Apt 3, Austin, TX"),
    BusinessListing(name="Acme Drains", place_id="place-acme", address="1 Commerce Plaza, Austin, TX"),
]


def upstream(url, params):
    if REVIEWS_PATH not in url:
        return DummyResponse(200, search_payload("Acme Drains", "Someone Else", "Joe's Plumbing"))
    if params["query"] == "place-joe":
        return DummyResponse(200, reviews_payload(
            {"review_id": "r1", "review_datetime_utc": "05/20/2024 10:00:00",
             "owner_answer": "Thanks", "owner_answer_timestamp_datetime_utc": "01/01/2024 00:00:00"},
            {"review_id": "r2", "review_datetime_utc": "05/01/2024 10:00:00"},
        ))
    if params["query"] == "place-acme":
        return DummyResponse(500)
    return DummyResponse(200, reviews_payload())


class TestEnrichBusinesses:
    """Test end-to-end enrichment with a fake upstream."""

    def test_same_named_listings_get_distinct_positions(self, make_client):
        """Two locations of one chain each claim their own search slot."""

        def handler(url, params):
            if REVIEWS_PATH not in url:
                return DummyResponse(200, search_payload("Roto Plumbing", "Roto Plumbing"))
            return DummyResponse(200, reviews_payload())

        client = make_client(handler)
        listings = [
            BusinessListing(name="Roto Plumbing", place_id="roto-north"),
            BusinessListing(name="Roto Plumbing", place_id="roto-south"),
        ]

        enriched = enrich_businesses(
            client, listings, "plumber", "Austin, TX", analyze_websites=False, now=NOW
        )

        assert [b.search_visibility for b in enriched] == [1, 2]

    def test_enriches_in_input_order(self, make_client):
        client = make_client(upstream)

        enriched = enrich_businesses(
            client, LISTINGS, "plumber", "Austin, TX", analyze_websites=False, now=NOW
        )

        assert [b.name for b in enriched] == ["Joe's Plumbing", "Bob's Pipes", "Acme Drains"]

        joe, bob, acme = enriched
        assert joe.search_visibility == 3
        assert joe.response_rate == 50
        assert joe.reviews_analyzed == 2
        assert joe.days_dormant == 152
        assert joe.location_type == "commercial"

        assert bob.search_visibility is None
        assert bob.days_dormant is None
        assert bob.location_type == "residential"

        # Reviews failed for Acme; the business is still present with defaults
        assert acme.search_visibility == 1
        assert acme.reviews_analyzed == 0
        assert acme.response_rate == 0

    def test_reviews_queried_by_place_id_or_name(self, make_client):
        client = make_client(upstream)

        enrich_businesses(client, LISTINGS, "plumber", "Austin, TX", analyze_websites=False, now=NOW)

        queries = {c["params"]["query"] for c in client.session.calls if REVIEWS_PATH in c["url"]}
        assert {"place-joe", "place-acme", "Bob's Pipes, 400 Oak Ave Apt 3, Austin, TX"} <= queries

    def test_progress_stages(self, make_client):
        client = make_client(upstream)
        stages = []

        enrich_businesses(
            client, LISTINGS, "plumber", "Austin, TX",
            analyze_websites=False,
            on_progress=lambda stage, completed, total: stages.append(stage),
        )

        assert stages[0] == "visibility"
        assert stages.count("reviews") == 3

    def test_empty_input(self, make_client):
        client = make_client(upstream)
        assert enrich_businesses(client, [], "plumber", "Austin") == []
        assert client.session.calls == []


class TestAnalyzeListingWebsites:
    """Test website stage defaults."""

    def test_defaults_for_missing_and_failed(self, monkeypatch):
        def fake_analyze(url, session=None):
            if "broken" in url:
                raise RuntimeError("parser exploded")
            return WebsiteAnalysis(cms="Wix", tech_stack="Wix")

        monkeypatch.setattr("leadscan.enrich.analyze_website", fake_analyze)
        listings = [
            BusinessListing(name="A", website="https://a.example"),
            BusinessListing(name="B"),
            BusinessListing(name="C", website="https://broken.example"),
        ]
        progress = []

        results = analyze_listing_websites(
            listings,
            queue=RateLimitedQueue(2, batch_delay=0, batch_jitter=0),
            on_progress=lambda stage, completed, total: progress.append((stage, total)),
        )

        assert results == [WebsiteAnalysis(cms="Wix", tech_stack="Wix"), NO_WEBSITE, ANALYSIS_FAILED]
        assert progress == [("websites", 3)] * 3
