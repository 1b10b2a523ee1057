"""Lightweight request parsing helpers.

Each helper returns (value, error_or_none) so routes can answer 400 with the
message. Range rules (positive limit, query length, ...) are enforced by
SmartSearch itself.
"""

from typing import Any, Dict, List, Optional, Tuple

from ..search.classification import GameKindBucket, parse_bucket

MAX_REFRESH_IDS = 500

_TRUE = ('1', 'true', 'yes', 'on')
_FALSE = ('0', 'false', 'no', 'off', '')


def parse_int(value: Any, field: str) -> Tuple[Optional[int], Optional[str]]:
    """Parse an optional integer from JSON or a query string."""
    if value is None or value == '':
        return None, None
    if isinstance(value, bool):
        return None, f"Field '{field}' must be an integer"
    if isinstance(value, int):
        return value, None
    if isinstance(value, float) and value.is_integer():
        return int(value), None
    if isinstance(value, str):
        try:
            return int(value.strip()), None
        except ValueError:
            pass
    return None, f"Field '{field}' must be an integer"


def parse_bool(value: Any, field: str, default: bool = False) -> Tuple[bool, Optional[str]]:
    if value is None:
        return default, None
    if isinstance(value, bool):
        return value, None
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True, None
        if lowered in _FALSE:
            return False, None
    return default, f"Field '{field}' must be a boolean"


def parse_search_params(payload: Dict[str, Any]) -> Tuple[Dict[str, Any], Optional[str]]:
    """
    Pull search parameters out of a JSON body or query-string dict.

    Returns:
        (kwargs for SmartSearch.search, error message or None)
    """
    query = payload.get('query', payload.get('q'))
    if query is not None and not isinstance(query, str):
        return {}, "Field 'query' must be string"

    limit, error = parse_int(payload.get('limit'), 'limit')
    if error:
        return {}, error
    offset, error = parse_int(payload.get('offset', payload.get('cursor')), 'offset')
    if error:
        return {}, error
    min_cached, error = parse_int(payload.get('minCachedResults'), 'minCachedResults')
    if error:
        return {}, error
    include_dlc, error = parse_bool(payload.get('includeDLC'), 'includeDLC')
    if error:
        return {}, error

    return {
        'query': query or '',
        'limit': limit,
        'offset': offset or 0,
        'include_dlc': include_dlc,
        'min_cached_results': min_cached,
    }, None


def parse_buckets(value: Any) -> Tuple[List[GameKindBucket], Optional[str]]:
    """Parse "mainline,enhancedRelease" (or a list) into buckets."""
    if not value:
        return [], None
    items = value if isinstance(value, list) else str(value).split(',')
    buckets = []
    for item in items:
        if not str(item).strip():
            continue
        try:
            buckets.append(parse_bucket(str(item)))
        except ValueError as e:
            return [], str(e)
    return buckets, None


def parse_id_list(value: Any) -> Tuple[List[int], Optional[str]]:
    if not isinstance(value, list) or not value:
        return [], "Field 'ids' must be a non-empty list of integers"
    if len(value) > MAX_REFRESH_IDS:
        return [], f"At most {MAX_REFRESH_IDS} ids per request"
    ids = []
    for item in value:
        parsed, error = parse_int(item, 'ids')
        if error or parsed is None or parsed <= 0:
            return [], "Field 'ids' must be a non-empty list of positive integers"
        ids.append(parsed)
    return ids, None
