import re
from typing import List, Optional


def normalize_text(s: str) -> str:
    return " ".join((s or "").strip().lower().split())


def normalize_name(name: str) -> str:
    return normalize_text(name)


def significant_words(name: str, min_length: int = 4) -> List[str]:
    """Words of a normalized name long enough to carry meaning (drops 'the', 'llc', 'co')."""
    return [w for w in normalize_name(name).split(" ") if len(w) >= min_length]


def normalize_website(url: Optional[str]) -> Optional[str]:
    """Add a scheme if missing and drop trailing slashes; None for blank input."""
    if not url or not url.strip():
        return None
    u = url.strip()
    if not u.startswith("http"):
        u = f"https://{u}"
    return u.rstrip("/")


def cache_key(*parts: str) -> str:
    return "|".join(normalize_text(str(p)) for p in parts)


RESIDENTIAL_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bapt\.?\s*#?\d*",
        r"\bapartment\s*#?\d*",
        r"\bunit\s*#?\d*",
        r"\bste\.?\s*#?\d*",
        r"\bsuite\s*#?\d*",
        r"#\d+[a-z]?\b",
        r"\bfloor\s*\d+",
        r"\bfl\.?\s*\d+",
        r"\broom\s*\d+",
        r"\brm\.?\s*\d+",
        r"\bbldg\.?\s*[a-z0-9]+",
        r"\bbuilding\s*[a-z0-9]+",
    )
]

COMMERCIAL_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bplaza\b",
        r"\bmall\b",
        r"\bshopping center\b",
        r"\bbusiness park\b",
        r"\bindustrial\b",
        r"\bcommercial\b",
        r"\boffice\s*park\b",
        r"\bcorporate\b",
        r"\bwarehouse\b",
        r"\bdistribution\b",
    )
]


def classify_location_type(address: Optional[str]) -> str:
    """'residential' or 'commercial'; commercial markers win, unknown defaults to commercial."""
    if not address:
        return "commercial"
    addr = address.lower()
    if any(p.search(addr) for p in COMMERCIAL_PATTERNS):
        return "commercial"
    if any(p.search(addr) for p in RESIDENTIAL_PATTERNS):
        return "residential"
    return "commercial"
