"""Core data models shared by the search, enrichment and scoring layers."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

R = TypeVar("R")


@dataclass(frozen=True)
class BusinessListing:
    """Normalized snapshot of a business returned by a maps search."""

    name: str
    place_id: Optional[str] = None
    address: str = "Address not available"
    phone: Optional[str] = None
    website: Optional[str] = None
    rating: float = 0.0
    review_count: int = 0
    category: str = "Uncategorized"
    claimed: bool = False
    sponsored: bool = False

    @property
    def review_query(self) -> str:
        """What to send to the reviews endpoint for this listing."""
        return self.place_id or f"{self.name}, {self.address}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ReviewRecord:
    review_id: Optional[str]
    rating: Optional[float]
    text: str
    reviewed_at: Optional[datetime]
    owner_reply_text: Optional[str] = None
    owner_replied_at: Optional[datetime] = None

    @property
    def has_owner_reply(self) -> bool:
        return bool(self.owner_reply_text and self.owner_reply_text.strip())


@dataclass(frozen=True)
class ReviewSummary:
    """Activity summary derived from a business's most recent reviews."""

    last_review_date: Optional[datetime] = None
    last_owner_activity: Optional[datetime] = None
    response_rate: int = 0
    review_count: int = 0

    @classmethod
    def empty(cls) -> "ReviewSummary":
        """The "no data" value used when reviews are missing or unreachable."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_review_date": _iso(self.last_review_date),
            "last_owner_activity": _iso(self.last_owner_activity),
            "response_rate": self.response_rate,
            "review_count": self.review_count,
        }


@dataclass(frozen=True)
class WebsiteAnalysis:
    cms: Optional[str] = None
    seo_optimized: bool = False
    owner_name: Optional[str] = None
    owner_phone: Optional[str] = None
    tech_stack: str = "Unknown"


@dataclass(frozen=True)
class EnrichedBusiness:
    """A listing plus everything the need scorer looks at."""

    listing: BusinessListing
    search_visibility: Optional[int] = None
    last_review_date: Optional[datetime] = None
    last_owner_activity: Optional[datetime] = None
    days_dormant: Optional[int] = None
    response_rate: int = 0
    reviews_analyzed: int = 0
    seo_optimized: bool = False
    website_tech: str = "Unknown"
    owner_name: Optional[str] = None
    owner_phone: Optional[str] = None
    location_type: str = "commercial"

    # Listing fields the scorer reads directly
    @property
    def name(self) -> str:
        return self.listing.name

    @property
    def website(self) -> Optional[str]:
        return self.listing.website

    @property
    def rating(self) -> float:
        return self.listing.rating

    @property
    def review_count(self) -> int:
        return self.listing.review_count

    @property
    def claimed(self) -> bool:
        return self.listing.claimed

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EnrichedBusiness":
        """Build from a flat JSON document (listing and enrichment fields side by side)."""
        listing_fields = BusinessListing.__dataclass_fields__.keys()
        listing = BusinessListing(**{k: data[k] for k in listing_fields if k in data})
        return cls(
            listing=listing,
            search_visibility=data.get("search_visibility"),
            last_review_date=_parse_iso(data.get("last_review_date")),
            last_owner_activity=_parse_iso(data.get("last_owner_activity")),
            days_dormant=data.get("days_dormant"),
            response_rate=int(data.get("response_rate") or 0),
            reviews_analyzed=int(data.get("reviews_analyzed", data.get("review_count")) or 0),
            seo_optimized=bool(data.get("seo_optimized", False)),
            website_tech=data.get("website_tech") or "Unknown",
            owner_name=data.get("owner_name"),
            owner_phone=data.get("owner_phone"),
            location_type=data.get("location_type") or "commercial",
        )

    def to_dict(self) -> Dict[str, Any]:
        data = self.listing.to_dict()
        data.update(
            search_visibility=self.search_visibility,
            last_review_date=_iso(self.last_review_date),
            last_owner_activity=_iso(self.last_owner_activity),
            days_dormant=self.days_dormant,
            response_rate=self.response_rate,
            reviews_analyzed=self.reviews_analyzed,
            seo_optimized=self.seo_optimized,
            website_tech=self.website_tech,
            owner_name=self.owner_name,
            owner_phone=self.owner_phone,
            location_type=self.location_type,
        )
        return data


@dataclass(frozen=True)
class ScoredBusiness:
    """Need score plus the explanations that produced it, in rule order."""

    score: int
    signals: List[str] = field(default_factory=list)
    categories: Dict[str, List[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class BatchItem(Generic[R]):
    """One ordered emission of RateLimitedQueue.process_stream."""

    result: R
    index: int
    completed: int
    total: int


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_iso(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None
