"""Website analysis: CMS, SEO tooling and owner contacts scraped from a business site."""

import json
import re
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from .logger import get_logger
from .models import WebsiteAnalysis
from .normalize import normalize_website
from .retry import exponential_backoff

logger = get_logger()

FETCH_TIMEOUT = 8

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

# Checked in order; the first CMS with a matching selector wins
CMS_SELECTORS: List[Tuple[str, Tuple[str, ...]]] = [
    ("WordPress", (
        'link[href*="wp-content"]',
        'script[src*="wp-includes"]',
        'meta[name="generator"][content*="WordPress"]',
    )),
    ("Wix", (
        'meta[name="generator"][content*="Wix"]',
        'link[href*="parastorage.com"]',
        'link[href*="wixsite.com"]',
    )),
    ("Squarespace", (
        'meta[name="generator"][content*="Squarespace"]',
        'link[href*="sqsp.net"]',
    )),
    ("Shopify", (
        'link[href*="cdn.shopify.com"]',
        'script[src*="cdn.shopify.com"]',
    )),
    ("Webflow", (
        "[data-wf-site]",
        'meta[name="generator"][content*="Webflow"]',
    )),
    ("GoDaddy", (
        'meta[content*="GoDaddy"]',
        'link[href*="godaddysites.com"]',
    )),
    ("Weebly", (
        'link[href*="editmysite.com"]',
        'link[href*="weebly.com"]',
    )),
]

# Raw-HTML fallback when no selector matched
CMS_SIGNATURES: List[Tuple[str, Tuple[str, ...]]] = [
    ("WordPress", ("wp-content", "wp-includes", "wordpress", "/wp-json/", "wp-emoji")),
    ("Wix", ("wix.com", "_wix_browser_sess", "wixsite.com", "x-wix-", "wixpress.com")),
    ("Squarespace", ("squarespace", "sqsp.net", "static1.squarespace.com", "squarespace-cdn")),
    ("Shopify", ("cdn.shopify.com", "shopify.com", "myshopify.com")),
    ("Webflow", ("webflow.com", "wf-cdn.com", "website-files.com")),
    ("GoDaddy", ("godaddy.com", "secureserver.net", "godaddysites.com")),
    ("Weebly", ("weebly.com", "editmysite.com")),
]

SEO_PLUGIN_SIGNATURES = (
    "yoast",
    "rank math",
    "rankmath",
    "all in one seo",
    "aioseo",
    "seopress",
    "schema.org",
    "application/ld+json",
)

BUSINESS_SCHEMA_TYPES = {
    "LocalBusiness", "Organization", "Restaurant", "Store",
    "ProfessionalService", "MedicalBusiness", "LegalService",
    "FinancialService", "AutoRepair", "BeautySalon", "DayCare",
    "Dentist", "HealthClub", "HomeAndConstructionBusiness",
}

PERSON_FIELDS = ("founder", "employee", "member", "author")

CONTACT_PATHS = ("/contact", "/contact-us", "/about", "/about-us", "/team", "/our-team")

MAX_AUTHOR_LENGTH = 50
MIN_PHONE_LENGTH = 10

_PHONE_JUNK = re.compile(r"[^\d+\-()\s]")


@exponential_backoff(
    max_retries=2,
    base_delay=0.5,
    max_delay=4.0,
    exceptions=(requests.exceptions.Timeout, requests.exceptions.ConnectionError),
)
def _fetch_with_retry(session: requests.Session, url: str) -> requests.Response:
    """Fetch URL with automatic retry on transient errors."""
    return session.get(url, headers=HEADERS, timeout=FETCH_TIMEOUT, allow_redirects=True)


def detect_cms(soup: BeautifulSoup, html: str) -> Optional[str]:
    for cms, selectors in CMS_SELECTORS:
        if any(soup.select_one(s) is not None for s in selectors):
            logger.debug("Detected CMS", cms=cms, method="dom")
            return cms

    lower_html = html.lower()
    for cms, signatures in CMS_SIGNATURES:
        for sig in signatures:
            if sig in lower_html:
                logger.debug("Detected CMS", cms=cms, signature=sig, method="fallback")
                return cms
    return None


def detect_seo(soup: BeautifulSoup, html: str) -> bool:
    if soup.select_one('script[type="application/ld+json"]') is not None:
        return True

    if (
        soup.select_one('meta[name="yoast"], meta[property="yoast"]') is not None
        or "<!-- This site is optimized with the Yoast" in html
        or "yoast-schema-graph" in html
    ):
        return True

    if soup.select_one(".rank-math-breadcrumb") is not None:
        return True
    if any("rankmath" in (s.get("src") or "").lower() for s in soup.select("script[src]")):
        return True

    if (
        soup.select_one('link[rel="canonical"]') is not None
        and soup.select_one('meta[name="description"]') is not None
    ):
        return True

    lower_html = html.lower()
    return any(sig in lower_html for sig in SEO_PLUGIN_SIGNATURES)


def _clean_phone(raw: str) -> Optional[str]:
    phone = _PHONE_JUNK.sub("", raw).strip()
    return phone if len(phone) >= MIN_PHONE_LENGTH else None


def _schema_items(soup: BeautifulSoup) -> Iterable[dict]:
    """Every JSON-LD object on the page, with @graph arrays flattened."""
    for script in soup.select('script[type="application/ld+json"]'):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            data = json.loads(raw)
        except ValueError:
            continue
        documents = data if isinstance(data, list) else [data]
        for doc in documents:
            if not isinstance(doc, dict):
                continue
            graph = doc.get("@graph")
            for item in graph if isinstance(graph, list) else [doc]:
                if isinstance(item, dict):
                    yield item


def _is_business(item: dict) -> bool:
    types = item.get("@type")
    if not types:
        return False
    if not isinstance(types, list):
        types = [types]
    return any(t in BUSINESS_SCHEMA_TYPES for t in types)


def extract_contacts(soup: BeautifulSoup) -> Tuple[Optional[str], Optional[str]]:
    """Returns (owner_name, owner_phone), either of which may be None."""
    owner_name = None
    owner_phone = None

    tel = soup.select_one('a[href^="tel:"]')
    if tel is not None:
        owner_phone = _clean_phone((tel.get("href") or "").replace("tel:", "", 1))

    for item in _schema_items(soup):
        if owner_name:
            break
        if not _is_business(item):
            continue
        for field_name in PERSON_FIELDS:
            person = item.get(field_name)
            if isinstance(person, list):
                person = person[0] if person else None
            if isinstance(person, dict) and isinstance(person.get("name"), str) and person["name"].strip():
                owner_name = person["name"].strip()
                break
        if owner_phone is None and item.get("telephone"):
            owner_phone = _clean_phone(str(item["telephone"]))

    if not owner_name:
        meta = soup.select_one('meta[name="author"]')
        author = (meta.get("content") or "").strip() if meta is not None else ""
        if author and len(author) <= MAX_AUTHOR_LENGTH:
            owner_name = author

    return owner_name, owner_phone


def _contacts_from_subpages(
    session: requests.Session, base_url: str
) -> Tuple[Optional[str], Optional[str]]:
    for path in CONTACT_PATHS:
        url = urljoin(base_url + "/", path.lstrip("/"))
        try:
            resp = _fetch_with_retry(session, url)
        except requests.exceptions.RequestException as e:
            logger.debug("Contact page unreachable", url=url, error=str(e))
            continue
        if not resp.ok:
            continue
        name, phone = extract_contacts(BeautifulSoup(resp.text, "html.parser"))
        if name or phone:
            logger.debug("Found contacts on subpage", url=url)
            return name, phone
    return None, None


def analyze_website(url: Optional[str], session: Optional[requests.Session] = None) -> WebsiteAnalysis:
    """
    Fetch a business website and report CMS, SEO tooling and owner contacts.

    Never raises for network or parse problems; those return the default
    analysis (tech_stack "Unknown").
    """
    normalized = normalize_website(url)
    if not normalized:
        return WebsiteAnalysis()

    session = session or requests.Session()
    logger.info("Fetching website", url=normalized)
    try:
        resp = _fetch_with_retry(session, normalized)
    except requests.exceptions.RequestException as e:
        logger.warning("Website fetch failed", url=normalized, error=str(e))
        return WebsiteAnalysis()

    if not resp.ok:
        logger.warning("Non-OK website response", url=normalized, status=resp.status_code)
        return WebsiteAnalysis()

    html = resp.text or ""
    soup = BeautifulSoup(html, "html.parser")

    cms = detect_cms(soup, html)
    seo_optimized = detect_seo(soup, html)
    owner_name, owner_phone = extract_contacts(soup)
    if not owner_name and not owner_phone:
        owner_name, owner_phone = _contacts_from_subpages(session, normalized)

    tech_stack = cms or "Custom"
    if seo_optimized:
        tech_stack += " + SEO"

    logger.info(
        "Website analysis complete",
        url=normalized,
        cms=cms,
        seo_optimized=seo_optimized,
        owner_found=bool(owner_name),
    )
    return WebsiteAnalysis(
        cms=cms,
        seo_optimized=seo_optimized,
        owner_name=owner_name,
        owner_phone=owner_phone,
        tech_stack=tech_stack,
    )
