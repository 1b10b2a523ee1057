"""
================================================================================
QuestLog - Smart Search Coordinator
================================================================================
Answers "search for title X" from the local cache, falling back to IGDB only
when the cache looks incomplete.

Flow:
  1. Validate and normalize the query
  2. Read the cache (substring match, newest first)
  3. Ask the Completeness Estimator whether that is enough
  4. If not, fetch upstream under the query lock and cache the results
  5. Drop fetched DLC/expansions unless asked for them
  6. Merge (cache first, unique external_id), rank, paginate

Upstream and store failures degrade the response (source "cache",
confidence "low", error set); only invalid input raises.
================================================================================
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..catalog.models import CacheConfidence, CacheSearchResult, CatalogEntry
from ..catalog.providers.base import BaseCatalogProvider
from ..catalog.repository import CatalogRepository
from ..exceptions import CatalogStoreError, SearchValidationError
from .classification import GameKindBucket, classify
from .completeness import CompletenessEstimator
from .config import SearchSettings
from .coordinator import FetchCoordinator, FetchOutcome
from .deduplicator import merge_results, paginate
from .locks import QueryLock, create_query_lock
from .ranking import RankedEntry, classify_and_sort, normalize_text

logger = logging.getLogger(__name__)

MAX_QUERY_LENGTH = 200


@dataclass
class SearchResponse:
    results: List[RankedEntry] = field(default_factory=list)
    total: int = 0
    source: str = "cache"           # cache | live | merged
    cursor: Optional[int] = None
    has_more: bool = False
    confidence: str = CacheConfidence.LOW.value
    was_fallback_needed: bool = False
    latency_ms: int = 0
    cache_results: int = 0
    live_results: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'results': [r.to_dict() for r in self.results],
            'total': self.total,
            'source': self.source,
            'cursor': self.cursor,
            'hasMore': self.has_more,
            'confidence': self.confidence,
            'wasFallbackNeeded': self.was_fallback_needed,
            'latencyMs': self.latency_ms,
            'debug': {
                'cacheResults': self.cache_results,
                'liveResults': self.live_results,
            },
        }
        if self.error:
            data['error'] = self.error
        return data


class SmartSearch:
    """
    Cache-first catalog search with on-demand upstream fallback.
    """

    def __init__(
        self,
        repository: CatalogRepository,
        provider: BaseCatalogProvider,
        lock: QueryLock,
        settings: Optional[SearchSettings] = None,
    ):
        self.settings = settings or SearchSettings()
        self.repository = repository
        self.provider = provider
        self.lock = lock
        self.estimator = CompletenessEstimator(repository, provider, self.settings)
        self.coordinator = FetchCoordinator(provider, repository, lock, self.settings)

    @classmethod
    def from_settings(cls, settings: SearchSettings, provider: BaseCatalogProvider,
                      session_factory=None) -> 'SmartSearch':
        lock = create_query_lock(
            settings.lock_backend,
            ttl=settings.lock_ttl,
            redis_url=settings.redis_url,
            session_factory=session_factory,
        )
        return cls(CatalogRepository(session_factory), provider, lock, settings)

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def validate_query(self, query: Any) -> Tuple[str, str]:
        """Return (trimmed query, normalized key) or raise SearchValidationError."""
        if not isinstance(query, str) or not query.strip():
            raise SearchValidationError("Query is required", field='query')
        query = query.strip()
        if len(query) > MAX_QUERY_LENGTH:
            raise SearchValidationError(
                f"Query exceeds max length {MAX_QUERY_LENGTH}", field='query'
            )
        key = normalize_text(query)
        if not key:
            raise SearchValidationError("Query must contain letters or digits", field='query')
        return query, key

    def validate_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.settings.default_limit
        if limit <= 0:
            raise SearchValidationError("limit must be a positive integer", field='limit')
        return min(limit, self.settings.max_limit)

    # =========================================================================
    # SEARCH
    # =========================================================================

    async def search(
        self,
        query: str,
        limit: Optional[int] = None,
        offset: int = 0,
        include_dlc: bool = False,
        min_cached_results: Optional[int] = None,
    ) -> SearchResponse:
        """
        Search the catalog.

        Args:
            query: Search text (1-200 chars, must contain letters or digits)
            limit: Page size (default 20, capped at 100)
            offset: Index of the first result on the page
            include_dlc: Keep fetched DLC/expansions/bundles
            min_cached_results: Cached results that count as "enough"

        Raises:
            SearchValidationError: On invalid input, before any I/O
        """
        started = time.perf_counter()

        query, query_key = self.validate_query(query)
        limit = self.validate_limit(limit)
        if offset is None:
            offset = 0
        if offset < 0:
            raise SearchValidationError("offset must be >= 0", field='offset')
        if min_cached_results is None:
            min_cached_results = self.settings.min_cached_results
        if min_cached_results < 1:
            raise SearchValidationError("minCachedResults must be >= 1", field='minCachedResults')

        # Cache
        cache_error = None
        cache_limit = max(self.settings.cache_read_limit, offset + limit + 1)
        try:
            cache = self.repository.search_cached(query, cache_limit)
        except CatalogStoreError as e:
            logger.error(f"Cache read failed, continuing without cache: {e}")
            cache = CacheSearchResult()
            cache_error = "Catalog cache unavailable"

        # Decide
        decision = await self.estimator.estimate(cache.entries, min_cached_results)

        # Fetch
        outcome = FetchOutcome()
        if decision.fetch_required:
            target = min(max(offset + limit, min_cached_results), self.settings.max_fetch_results)
            logger.info(
                f"Cache MISS for '{query}' ({len(cache)} cached, {decision.reason}), "
                f"fetching up to {target} from {self.provider.name}"
            )
            outcome = await self.coordinator.fetch(query_key, query, target)
        else:
            logger.info(f"Cache HIT for '{query}' ({len(cache)} cached, {decision.reason})")

        fetched = outcome.entries
        if not include_dlc:
            fetched = self._strip_additional_content(cache.entries, fetched)

        merged = merge_results(cache.entries, fetched)
        ranked = classify_and_sort(merged, query=query)
        page = paginate(ranked, offset, limit)

        error = outcome.error or cache_error
        if outcome.succeeded:
            source = "merged" if cache.entries else "live"
            confidence = CacheConfidence.HIGH.value
        else:
            source = "cache"
            confidence = CacheConfidence.LOW.value if error else cache.confidence.value

        response = SearchResponse(
            results=page.items,
            total=page.total,
            source=source,
            cursor=page.cursor,
            has_more=page.has_more,
            confidence=confidence,
            was_fallback_needed=decision.fetch_required and not outcome.lock_busy,
            latency_ms=int((time.perf_counter() - started) * 1000),
            cache_results=len(cache.entries),
            live_results=len(outcome.entries),
            error=error,
        )
        logger.info(
            f"Search '{query}' -> {response.total} results "
            f"(source={response.source}, confidence={response.confidence}, {response.latency_ms}ms)"
        )
        return response

    def _strip_additional_content(self, cached: List[CatalogEntry],
                                  fetched: List[CatalogEntry]) -> List[CatalogEntry]:
        """Drop fetched entries whose type code marks them as DLC-like content."""
        kept = []
        for entry in fetched:
            classification = classify(entry)
            if classification.from_code and classification.bucket == GameKindBucket.ADDITIONAL_CONTENT:
                continue
            kept.append(entry)

        # Never turn a non-empty answer into an empty one
        if not cached and not kept and fetched:
            logger.info(f"Keeping {len(fetched)} additional-content results, nothing else matched")
            return fetched
        return kept

    # =========================================================================
    # STANDALONE OPERATIONS
    # =========================================================================

    def search_cached(
        self,
        query: str,
        limit: Optional[int] = None,
        buckets: Optional[Iterable[GameKindBucket]] = None,
    ) -> Dict[str, Any]:
        """
        Rank cached results only; never calls upstream.

        Raises:
            SearchValidationError: On invalid input
            CatalogStoreError: If the cache cannot be read
        """
        query, _ = self.validate_query(query)
        limit = self.validate_limit(limit)
        cache = self.repository.search_cached(query, max(self.settings.cache_read_limit, limit))
        ranked = classify_and_sort(cache.entries, query=query, allowed_buckets=buckets)
        return {
            'results': [r.to_dict() for r in ranked[:limit]],
            'total': len(ranked),
            'confidence': cache.confidence.value,
        }

    async def refresh_entries(self, external_ids: List[int]) -> List[CatalogEntry]:
        """
        Re-fetch games by id and update the cache.

        Raises:
            ProviderError: If the upstream request fails
        """
        ids = list(dict.fromkeys(external_ids))
        if not ids:
            return []
        entries = await self.provider.get_by_ids(ids)
        self.coordinator.persist(entries)
        logger.info(f"Refreshed {len(entries)}/{len(ids)} games from {self.provider.name}")
        return entries

    async def close(self):
        await self.provider.close()
