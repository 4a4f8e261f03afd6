from typing import Any, Dict, List

MAX_QUERY_LENGTH = 100
MAX_LOCATION_LENGTH = 150
MAX_NAME_LENGTH = 300
MAX_SEARCH_LIMIT = 500

OPTIONAL_STR_FIELDS = ["place_id", "address", "phone", "website", "category"]
NUMBER_FIELDS = ["rating", "review_count"]
BOOL_FIELDS = ["claimed", "sponsored"]


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def validate_search_request(query: Any, location: Any, limit: Any) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.
    """
    errors: List[str] = []

    if not _is_non_empty_str(query):
        errors.append("Query must be a non-empty string")
    elif len(query.strip()) > MAX_QUERY_LENGTH:
        errors.append(f"Query must be at most {MAX_QUERY_LENGTH} characters")

    if not _is_non_empty_str(location):
        errors.append("Location must be a non-empty string")
    elif len(location.strip()) > MAX_LOCATION_LENGTH:
        errors.append(f"Location must be at most {MAX_LOCATION_LENGTH} characters")

    if not isinstance(limit, int) or isinstance(limit, bool):
        errors.append("Limit must be an integer")
    elif not 1 <= limit <= MAX_SEARCH_LIMIT:
        errors.append(f"Limit must be between 1 and {MAX_SEARCH_LIMIT}")

    return errors


def validate_listing(data: Dict[str, Any]) -> List[str]:
    """
    Validate a business document (e.g. input to the `score` command).

    Only `name` is required; upstream data is often incomplete.
    """
    errors: List[str] = []

    if "name" not in data:
        errors.append("Missing required field: name")
    elif not _is_non_empty_str(data["name"]):
        errors.append("Field 'name' must be a non-empty string")
    elif len(data["name"].strip()) > MAX_NAME_LENGTH:
        errors.append(f"Field 'name' must be at most {MAX_NAME_LENGTH} characters")

    for f in OPTIONAL_STR_FIELDS:
        if data.get(f) is not None and not isinstance(data[f], str):
            errors.append(f"Field '{f}' must be a string if provided")

    for f in NUMBER_FIELDS:
        if f in data and not _is_number(data[f]):
            errors.append(f"Field '{f}' must be a number")

    if _is_number(data.get("rating")) and not 0 <= data["rating"] <= 5:
        errors.append("Field 'rating' must be between 0 and 5")
    if _is_number(data.get("review_count")) and data["review_count"] < 0:
        errors.append("Field 'review_count' must not be negative")

    for f in BOOL_FIELDS:
        if f in data and not isinstance(data[f], bool):
            errors.append(f"Field '{f}' must be true or false")

    visibility = data.get("search_visibility")
    if visibility is not None and (not isinstance(visibility, int) or isinstance(visibility, bool) or visibility < 1):
        errors.append("Field 'search_visibility' must be a positive integer or null")

    return errors
