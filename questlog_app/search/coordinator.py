"""
================================================================================
QuestLog - Fetch Coordinator
================================================================================
Runs the upstream fetch for a query under its query lock.

  1. Try the lock. Held elsewhere -> no fetch, caller answers from cache.
  2. Search upstream (bounded by fetch_timeout).
  3. Upsert results by external_id and recount touched franchises.
  4. Release the lock, whatever happened.

Upstream failures and timeouts come back as FetchOutcome.error; store
failures are logged and the fetched entries are still returned.
================================================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..catalog.models import CatalogEntry
from ..catalog.providers.base import BaseCatalogProvider
from ..catalog.repository import CatalogRepository
from ..exceptions import CatalogStoreError, ProviderError
from .config import SearchSettings
from .locks import QueryLock

logger = logging.getLogger(__name__)


@dataclass
class FetchOutcome:
    entries: List[CatalogEntry] = field(default_factory=list)
    performed: bool = False   # Upstream was actually called
    lock_busy: bool = False   # Another request is fetching this query
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.performed and self.error is None


class FetchCoordinator:
    """One upstream fetch per normalized query at a time."""

    def __init__(self, provider: BaseCatalogProvider, repository: CatalogRepository,
                 lock: QueryLock, settings: SearchSettings):
        self.provider = provider
        self.repository = repository
        self.lock = lock
        self.settings = settings

    async def fetch(self, query_key: str, query: str, target: int) -> FetchOutcome:
        """
        Fetch up to target upstream results for query.

        Args:
            query_key: Normalized query text (lock key)
            query: Query as the user typed it (sent upstream)
            target: Number of upstream results wanted
        """
        try:
            token = await self.lock.acquire(query_key)
        except Exception as e:
            logger.error(f"Search lock unavailable for '{query_key}': {e}")
            return FetchOutcome(error=f"Search lock unavailable: {e}")

        if token is None:
            logger.info(f"Fetch already in flight for '{query_key}', serving cache")
            return FetchOutcome(lock_busy=True)

        try:
            try:
                entries = await asyncio.wait_for(
                    self.provider.search_games(query, target),
                    timeout=self.settings.fetch_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(f"Upstream fetch for '{query_key}' timed out after {self.settings.fetch_timeout}s")
                return FetchOutcome(performed=True, error="Upstream fetch timed out")
            except ProviderError as e:
                logger.warning(f"Upstream fetch for '{query_key}' failed: {e}")
                return FetchOutcome(performed=True, error=str(e))
            except Exception as e:
                logger.exception(f"Unexpected error fetching '{query_key}' from {self.provider.name}")
                return FetchOutcome(performed=True, error=f"Upstream fetch failed: {e}")

            self.persist(entries)
            return FetchOutcome(entries=entries, performed=True)
        finally:
            await self._release(query_key, token)

    def persist(self, entries: List[CatalogEntry]) -> bool:
        """Upsert entries and recount their franchises. Returns False on store failure."""
        if not entries:
            return True
        try:
            written = self.repository.upsert_entries(entries)
            franchises = [name for entry in entries for name in entry.franchise_names]
            self.repository.refresh_franchise_counts(franchises)
            logger.info(f"Cached {written} games from {self.provider.name}")
            return True
        except CatalogStoreError as e:
            logger.error(f"Failed to cache fetched games: {e}")
            return False

    async def _release(self, query_key: str, token: str) -> None:
        try:
            await self.lock.release(query_key, token)
        except Exception as e:
            # Lock expires after its TTL
            logger.error(f"Failed to release search lock '{query_key}': {e}")
