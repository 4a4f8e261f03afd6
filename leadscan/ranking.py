"""
Search-rank matching.

Assigns each target business at most one position in a ranked search result
list, and each position to at most one business. Similar names (franchise
locations, "X" vs "X LLC") would otherwise all claim the same slot.
"""

import math
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .circuit import CircuitOpenError
from .client import SearchClient, UpstreamExhaustedError
from .logger import get_logger
from .models import BusinessListing
from .normalize import normalize_name, significant_words

logger = get_logger()

VISIBILITY_TOP_N = 10
WORD_OVERLAP_RATIO = 0.6


def _result_name(result: Any) -> str:
    if isinstance(result, str):
        return result
    if isinstance(result, dict):
        return result.get("name") or ""
    return getattr(result, "name", "") or ""


def _exact(target: str, candidate: str) -> bool:
    return target == candidate


def _contains(target: str, candidate: str) -> bool:
    return target in candidate or candidate in target


def _word_overlap(target: str, candidate: str) -> bool:
    target_words = significant_words(target)
    if not target_words:
        return False
    candidate_words = set(significant_words(candidate))
    matching = sum(1 for w in target_words if w in candidate_words)
    return matching >= math.ceil(len(target_words) * WORD_OVERLAP_RATIO)


# Highest priority first
MATCH_PASSES: List[Callable[[str, str], bool]] = [_exact, _contains, _word_overlap]


def match_positions(
    names: Sequence[str],
    ranked_results: Sequence[Any],
) -> List[Optional[int]]:
    """
    Give each entry of `names` its 1-based position in `ranked_results`, or None.

    Every pass runs over all names before the next, weaker pass starts, and
    each pass gives a name the best (lowest) position nobody has claimed yet.
    Repeated names are separate businesses (franchise locations) and each
    claims its own position.

    Args:
        names: Target business names, one per business
        ranked_results: Search results in rank order (listings, dicts with
            a "name" key, or plain strings)

    Returns:
        One position or None per name, in the same order. No two entries
        share a position.
    """
    targets = [normalize_name(name) for name in names]
    candidates = [
        (position, normalize_name(_result_name(result)))
        for position, result in enumerate(ranked_results, start=1)
    ]
    candidates = [(p, n) for p, n in candidates if n]

    assignment: List[Optional[int]] = [None] * len(targets)
    claimed = set()

    for matches in MATCH_PASSES:
        for i, target in enumerate(targets):
            if assignment[i] is not None or not target:
                continue
            for position, candidate in candidates:
                if position in claimed:
                    continue
                if matches(target, candidate):
                    assignment[i] = position
                    claimed.add(position)
                    break

    return assignment


def match_ranks(
    names: Iterable[str],
    ranked_results: Sequence[Any],
) -> Dict[str, Optional[int]]:
    """
    Map each distinct business name to its position in `ranked_results`, or None.

    Returns:
        Dict of name -> position or None. No two names share a position.
    """
    targets = list(dict.fromkeys(names))
    return dict(zip(targets, match_positions(targets, ranked_results)))


def _top_results(
    client: SearchClient,
    niche: str,
    location: str,
    top_n: int,
) -> Optional[List[BusinessListing]]:
    """One search for the top results; None if the upstream is unavailable."""
    try:
        return client.search(niche, location, top_n)
    except (UpstreamExhaustedError, CircuitOpenError) as e:
        logger.error(
            "Visibility check failed",
            niche=niche,
            location=location,
            error=str(e),
        )
        return None


def check_visibility(
    client: SearchClient,
    names: Iterable[str],
    niche: str,
    location: str,
    top_n: int = VISIBILITY_TOP_N,
) -> Dict[str, Optional[int]]:
    """
    Rank-match businesses against the top search results for a niche.

    Makes ONE search request for all names. If the upstream is unavailable
    every name is reported as unranked.
    """
    names = list(names)
    results = _top_results(client, niche, location, top_n)
    if results is None:
        return {name: None for name in names}

    assignment = match_ranks(names, results)
    ranked = sum(1 for v in assignment.values() if v is not None)
    logger.info(
        f"Visibility check complete: {ranked}/{len(assignment)} ranked",
        niche=niche,
        location=location,
        top_n=len(results),
    )
    return assignment


def check_listing_visibility(
    client: SearchClient,
    listings: Sequence[BusinessListing],
    niche: str,
    location: str,
    top_n: int = VISIBILITY_TOP_N,
) -> List[Optional[int]]:
    """
    Like check_visibility, but one position per listing, in listing order.

    Same-named listings are matched separately, so two locations of one
    chain never report the same position.
    """
    results = _top_results(client, niche, location, top_n)
    if results is None:
        return [None] * len(listings)

    positions = match_positions([listing.name for listing in listings], results)
    logger.info(
        f"Visibility check complete: {sum(1 for p in positions if p is not None)}/{len(positions)} ranked",
        niche=niche,
        location=location,
        top_n=len(results),
    )
    return positions
