"""
Search pipeline settings.

Every heuristic threshold lives here so it can be tuned per deployment through
environment variables (loaded from .env by create_app) or per app through
create_app(test_config={'SEARCH_SETTINGS': ...}).
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    return float(raw)


@dataclass
class SearchSettings:
    """Tunables for cache fallback, fetching and locking."""
    # Completeness estimator
    min_cached_results: int = 5          # Default threshold per request
    completeness_threshold: float = 0.8  # Franchise ratio below this -> fetch
    franchise_floor: int = 5             # Big franchise with fewer cached -> fetch
    franchise_stale_after: timedelta = field(default_factory=lambda: timedelta(days=7))

    # Pagination
    default_limit: int = 20
    max_limit: int = 100

    # Volumes
    cache_read_limit: int = 200   # Cached rows scanned per query
    max_fetch_results: int = 200  # Upper bound on one upstream search

    # Timeouts (seconds)
    fetch_timeout: float = 15.0
    count_timeout: float = 5.0

    # Query locks
    lock_backend: str = 'memory'  # memory | redis | database
    lock_ttl: int = 60
    redis_url: str = None

    @classmethod
    def from_env(cls) -> 'SearchSettings':
        return cls(
            min_cached_results=_env_int('SEARCH_MIN_CACHED_RESULTS', 5),
            completeness_threshold=_env_float('SEARCH_COMPLETENESS_THRESHOLD', 0.8),
            franchise_floor=_env_int('SEARCH_FRANCHISE_FLOOR', 5),
            franchise_stale_after=timedelta(days=_env_float('SEARCH_FRANCHISE_STALE_DAYS', 7)),
            default_limit=_env_int('SEARCH_DEFAULT_LIMIT', 20),
            max_limit=_env_int('SEARCH_MAX_LIMIT', 100),
            cache_read_limit=_env_int('SEARCH_CACHE_READ_LIMIT', 200),
            max_fetch_results=_env_int('SEARCH_MAX_FETCH_RESULTS', 200),
            fetch_timeout=_env_float('SEARCH_FETCH_TIMEOUT', 15.0),
            count_timeout=_env_float('SEARCH_COUNT_TIMEOUT', 5.0),
            lock_backend=os.environ.get('SEARCH_LOCK_BACKEND', 'memory').strip().lower(),
            lock_ttl=_env_int('SEARCH_LOCK_TTL_SECONDS', 60),
            redis_url=os.environ.get('REDIS_URL'),
        )
