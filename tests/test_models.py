"""
Tests for data model conversions.
"""

from datetime import datetime, timezone

from leadscan.models import BusinessListing, EnrichedBusiness, ReviewSummary


class TestBusinessListing:
    def test_review_query_prefers_place_id(self):
        assert BusinessListing(name="Joe", place_id="p1", address="1 Main").review_query == "p1"
        assert BusinessListing(name="Joe", address="1 Main").review_query == "Joe, 1 Main"


class TestReviewSummary:
    def test_empty(self):
        assert ReviewSummary.empty().to_dict() == {
            "last_review_date": None,
            "last_owner_activity": None,
            "response_rate": 0,
            "review_count": 0,
        }


class TestEnrichedBusiness:
    def test_from_dict(self, enriched_document):
        business = EnrichedBusiness.from_dict(enriched_document)

        assert business.name == "Joe's Plumbing"
        assert business.claimed is False
        assert business.days_dormant == 400
        assert business.reviews_analyzed == 3

    def test_reviews_analyzed_falls_back_to_review_count(self):
        business = EnrichedBusiness.from_dict({"name": "A", "review_count": 8})
        assert business.reviews_analyzed == 8

    def test_dict_round_trip(self):
        original = EnrichedBusiness(
            listing=BusinessListing(name="A", website="https://a.example", rating=4.1),
            search_visibility=4,
            last_owner_activity=datetime(2024, 1, 1, tzinfo=timezone.utc),
            days_dormant=100,
            website_tech="Wix + SEO",
        )
        assert EnrichedBusiness.from_dict(original.to_dict()) == original
