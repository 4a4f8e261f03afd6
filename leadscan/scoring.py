"""
Need scoring.

Higher score = the business more urgently needs local SEO help. Score and
signals are produced from one rule table so the explanation can never
disagree with the number. Rules gated on enrichment data contribute nothing
when that data is missing.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from .models import BusinessListing, EnrichedBusiness, ScoredBusiness

MAX_NEED_SCORE = 100


@dataclass(frozen=True)
class NeedRule:
    """
    One row of the scoring table.

    Rows sharing a `group` are tiers of the same measurement; only the
    first matching tier in a group counts.
    """

    group: str
    category: str
    points: int
    applies: Callable[[EnrichedBusiness], bool]
    label: Callable[[EnrichedBusiness], str]


def _ranked_below(position: int) -> Callable[[EnrichedBusiness], bool]:
    return lambda b: b.search_visibility is not None and b.search_visibility > position


def _dormant_over(days: int) -> Callable[[EnrichedBusiness], bool]:
    return lambda b: b.days_dormant is not None and b.days_dormant > days


def _replies_under(rate: int) -> Callable[[EnrichedBusiness], bool]:
    return lambda b: b.reviews_analyzed > 0 and b.response_rate < rate


def _rated_under(rating: float) -> Callable[[EnrichedBusiness], bool]:
    return lambda b: 0 < b.rating < rating


def _reviews_under(count: int) -> Callable[[EnrichedBusiness], bool]:
    return lambda b: b.review_count < count


NEED_RULES: List[NeedRule] = [
    # Search visibility
    NeedRule("visibility", "rank", 30, lambda b: b.search_visibility is None,
             lambda b: "Not ranking in search"),
    NeedRule("visibility", "rank", 22, _ranked_below(10),
             lambda b: f"Buried in search (#{b.search_visibility})"),
    NeedRule("visibility", "rank", 15, _ranked_below(6),
             lambda b: f"Low search rank (#{b.search_visibility})"),
    NeedRule("visibility", "rank", 8, _ranked_below(3),
             lambda b: f"Mid-pack rank (#{b.search_visibility})"),
    # Owner activity on the listing
    NeedRule("dormancy", "gbp", 25, _dormant_over(365),
             lambda b: "No review reply in 1+ year"),
    NeedRule("dormancy", "gbp", 20, _dormant_over(180),
             lambda b: f"No review reply in {b.days_dormant} days"),
    NeedRule("dormancy", "gbp", 15, _dormant_over(90),
             lambda b: f"No review reply in {b.days_dormant} days"),
    NeedRule("dormancy", "gbp", 10, _dormant_over(30),
             lambda b: f"Last review reply {b.days_dormant} days ago"),
    # Review replies
    NeedRule("response", "gbp", 12, _replies_under(20),
             lambda b: f"Rarely replies to reviews ({b.response_rate}%)"),
    NeedRule("response", "gbp", 8, _replies_under(50),
             lambda b: f"Low review reply rate ({b.response_rate}%)"),
    NeedRule("response", "gbp", 4, _replies_under(70),
             lambda b: f"Sometimes replies to reviews ({b.response_rate}%)"),
    # Website
    NeedRule("seo", "web", 10, lambda b: not b.seo_optimized,
             lambda b: "No SEO tools detected" if b.website else "No website"),
    # Profile ownership
    NeedRule("claimed", "gbp", 10, lambda b: not b.claimed,
             lambda b: "Unclaimed profile"),
    # Reputation
    NeedRule("rating", "rep", 5, _rated_under(3),
             lambda b: f"Poor rating ({b.rating:g})"),
    NeedRule("rating", "rep", 3, _rated_under(4),
             lambda b: f"Below avg rating ({b.rating:g})"),
    NeedRule("rating", "rep", 1, _rated_under(4.5),
             lambda b: f"Could improve rating ({b.rating:g})"),
    NeedRule("reviews", "rep", 5, _reviews_under(10),
             lambda b: f"Very few reviews ({b.review_count})"),
    NeedRule("reviews", "rep", 3, _reviews_under(50),
             lambda b: f"Few reviews ({b.review_count})"),
    NeedRule("reviews", "rep", 1, _reviews_under(100),
             lambda b: f"Moderate reviews ({b.review_count})"),
]


def max_possible_score(rules: Iterable[NeedRule]) -> int:
    """Sum of the largest tier of every group."""
    best: Dict[str, int] = {}
    for rule in rules:
        best[rule.group] = max(best.get(rule.group, 0), rule.points)
    return sum(best.values())


def _check_bounds(rules: List[NeedRule]) -> None:
    ceiling = max_possible_score(rules)
    if ceiling > MAX_NEED_SCORE:
        raise ValueError(
            f"Need rules can reach {ceiling}, above the {MAX_NEED_SCORE} ceiling"
        )


_check_bounds(NEED_RULES)


def score_need(business: EnrichedBusiness) -> ScoredBusiness:
    """
    Score how much a business needs SEO services (0-100).

    Returns the score, the human-readable signals in rule order, and the
    same signals grouped by category.
    """
    score = 0
    signals: List[str] = []
    categories: Dict[str, List[str]] = {}
    scored_groups = set()

    for rule in NEED_RULES:
        if rule.group in scored_groups or not rule.applies(business):
            continue
        scored_groups.add(rule.group)
        score += rule.points
        label = rule.label(business)
        signals.append(label)
        categories.setdefault(rule.category, []).append(label)

    return ScoredBusiness(score=score, signals=signals, categories=categories)


def sort_by_need(businesses: Iterable[EnrichedBusiness]) -> List[EnrichedBusiness]:
    """Highest need first; ties keep their input order."""
    return sorted(businesses, key=lambda b: score_need(b).score, reverse=True)


def calculate_days_dormant(
    last_owner_activity: Optional[datetime],
    now: Optional[datetime] = None,
) -> Optional[int]:
    """Whole days since the owner last replied, or None if never seen."""
    if last_owner_activity is None:
        return None
    if last_owner_activity.tzinfo is None:
        last_owner_activity = last_owner_activity.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return (now - last_owner_activity).days


def basic_opportunity_score(listing: BusinessListing) -> int:
    """
    Opportunity score from search-level fields only (no enrichment needed).

    Useful for ranking a fresh search before spending review requests on it.
    """
    score = 0

    if not listing.claimed:
        score += 30
    if not listing.website:
        score += 25

    if listing.rating == 0:
        score += 20
    elif listing.rating < 3:
        score += 18
    elif listing.rating < 3.5:
        score += 14
    elif listing.rating < 4:
        score += 10
    elif listing.rating < 4.5:
        score += 5

    if listing.review_count == 0:
        score += 15
    elif listing.review_count < 5:
        score += 12
    elif listing.review_count < 20:
        score += 8
    elif listing.review_count < 50:
        score += 4

    if not listing.phone:
        score += 5
    # Not running ads
    if not listing.sponsored:
        score += 5

    return min(score, MAX_NEED_SCORE)


def opportunity_level(score: int) -> str:
    if score >= 50:
        return "high"
    if score >= 25:
        return "medium"
    return "low"
