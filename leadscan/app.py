import argparse
import json
from pathlib import Path
from typing import List

from . import __version__
from .circuit import CircuitOpenError
from .client import AuthorizationError, SearchClient, SearchClientError
from .config import ConfigError, get_settings, load_env
from .enrich import enrich_businesses
from .logger import get_logger
from .models import BusinessListing, EnrichedBusiness
from .schema import validate_listing
from .scoring import basic_opportunity_score, opportunity_level, score_need, sort_by_need


def _client() -> SearchClient:
    settings = get_settings()
    try:
        settings.require_api_key()
    except ConfigError as e:
        raise SystemExit(f"{e}. Set it in the environment or .env.")
    return SearchClient.from_settings(settings)


def _print_listing(listing: BusinessListing) -> None:
    score = basic_opportunity_score(listing)
    print(f"{listing.name}")
    print(f"  Address: {listing.address}")
    print(f"  Rating: {listing.rating:g} ({listing.review_count} reviews)")
    print(f"  Website: {listing.website or '-'}")
    print(f"  Claimed: {'yes' if listing.claimed else 'no'}")
    print(f"  Opportunity: {score} ({opportunity_level(score)})")
    print()


def _print_scored(business: EnrichedBusiness) -> None:
    scored = score_need(business)
    rank = f"#{business.search_visibility}" if business.search_visibility else "not ranked"
    print(f"[{scored.score:3d}] {business.name} ({rank})")
    print(f"  Website: {business.website_tech}")
    if business.days_dormant is not None:
        print(f"  Days dormant: {business.days_dormant}")
    print(f"  Response rate: {business.response_rate}% of {business.reviews_analyzed} reviews")
    if business.owner_name or business.owner_phone:
        print(f"  Owner: {business.owner_name or '-'} {business.owner_phone or ''}".rstrip())
    for signal in scored.signals:
        print(f"   - {signal}")
    print()


def _scored_dict(business: EnrichedBusiness) -> dict:
    scored = score_need(business)
    data = business.to_dict()
    data.update(need_score=scored.score, signals=scored.signals, categories=scored.categories)
    return data


def cmd_search(args: argparse.Namespace) -> None:
    client = _client()
    try:
        listings = client.search(args.query, args.location, args.limit)
    except ValueError as e:
        raise SystemExit(str(e))
    except (SearchClientError, CircuitOpenError) as e:
        raise SystemExit(f"Search failed: {e}")

    if args.json:
        print(json.dumps([b.to_dict() for b in listings], indent=2))
        return
    if not listings:
        print("No results found.")
        return
    print(f"Found {len(listings)} businesses:\n")
    for listing in listings:
        _print_listing(listing)


def cmd_reviews(args: argparse.Namespace) -> None:
    client = _client()
    try:
        summary = client.fetch_reviews(args.id, args.limit)
    except ValueError as e:
        raise SystemExit(str(e))
    except SearchClientError as e:
        raise SystemExit(f"Reviews failed: {e}")
    print(json.dumps(summary.to_dict(), indent=2))


def cmd_analyze(args: argparse.Namespace) -> None:
    client = _client()
    try:
        listings = client.search(args.query, args.location, args.limit)
    except ValueError as e:
        raise SystemExit(str(e))
    except (SearchClientError, CircuitOpenError) as e:
        raise SystemExit(f"Search failed: {e}")

    if not listings:
        print("No results found.")
        return

    def progress(stage: str, completed: int, total: int) -> None:
        if not args.json:
            print(f"[{stage}] {completed}/{total}")

    try:
        enriched = enrich_businesses(
            client,
            listings,
            args.query,
            args.location,
            analyze_websites=not args.no_websites,
            on_progress=progress,
        )
    except AuthorizationError as e:
        raise SystemExit(str(e))

    ranked = sort_by_need(enriched)
    if args.json:
        print(json.dumps([_scored_dict(b) for b in ranked], indent=2))
        return
    print()
    for business in ranked:
        _print_scored(business)
    get_logger().log_metrics_summary()


def cmd_score(args: argparse.Namespace) -> None:
    input_path = Path(args.input)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    with input_path.open("r", encoding="utf-8") as f:
        data = json.load(f)

    documents: List[dict] = data if isinstance(data, list) else [data]
    invalid = False
    businesses = []
    for i, doc in enumerate(documents):
        errors = validate_listing(doc) if isinstance(doc, dict) else ["Entry must be an object"]
        if errors:
            invalid = True
            print(f"Invalid entry {i}:")
            for e in errors:
                print(f" - {e}")
            continue
        businesses.append(EnrichedBusiness.from_dict(doc))

    for business in sort_by_need(businesses):
        _print_scored(business)
    if invalid:
        raise SystemExit(2)


def main():
    # Load .env if present (OUTSCRAPER_API_KEY, LOG_LEVEL, etc.)
    load_env()
    parser = argparse.ArgumentParser(prog="leadscan", description="Find local businesses that need SEO help")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")
    srch = subparsers.add_parser("search", help="Search Google Maps for businesses")
    srch.add_argument("--query", required=True, help="Niche to search, e.g. \"plumber\"")
    srch.add_argument("--location", required=True, help="City or area, e.g. \"Austin, TX\"")
    srch.add_argument("--limit", type=int, default=20, help="Max results (default 20)")
    srch.add_argument("--json", action="store_true", help="Print JSON instead of text")
    srch.set_defaults(func=cmd_search)

    rev = subparsers.add_parser("reviews", help="Summarize recent reviews of one business")
    rev.add_argument("--id", required=True, help="Place id, or \"name, address\"")
    rev.add_argument("--limit", type=int, default=20, help="Reviews to inspect (default 20)")
    rev.set_defaults(func=cmd_reviews)

    ana = subparsers.add_parser("analyze", help="Search, enrich and rank businesses by need")
    ana.add_argument("--query", required=True, help="Niche to search")
    ana.add_argument("--location", required=True, help="City or area")
    ana.add_argument("--limit", type=int, default=20, help="Max businesses (default 20)")
    ana.add_argument("--no-websites", action="store_true", help="Skip website analysis")
    ana.add_argument("--json", action="store_true", help="Print JSON instead of text")
    ana.set_defaults(func=cmd_analyze)

    scr = subparsers.add_parser("score", help="Score enriched business JSON (object or list)")
    scr.add_argument("--input", required=True, help="Path to JSON input")
    scr.set_defaults(func=cmd_score)

    args = parser.parse_args()

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        args.func(args)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
