"""
================================================================================
QuestLog - Completeness Estimator
================================================================================
Decides whether cached results are good enough or an upstream fetch is needed.

Rules, in order:
  1. No cached results                       -> fetch
  2. At least min_cached_results cached      -> no fetch
  3. Otherwise look at the franchise of the first cached result that has one:
       none found                            -> fetch (below threshold)
       usable record                         -> ratio rule
       missing / stale / unknown total       -> ask upstream for the total,
                                                store it, ratio rule
       upstream total of 0                   -> fetch (count not trusted)

Ratio rule: fetch when cached / total < completeness_threshold, or when the
franchise is bigger than franchise_floor upstream but fewer than
franchise_floor members are cached.

Franchise bookkeeping failures never fail the search; they fall back to the
plain threshold rule.
================================================================================
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from ..catalog.models import CatalogEntry, FranchiseCompleteness
from ..catalog.providers.base import BaseCatalogProvider
from ..catalog.repository import CatalogRepository
from .config import SearchSettings

logger = logging.getLogger(__name__)


@dataclass
class CompletenessDecision:
    fetch_required: bool
    reason: str
    franchise: Optional[str] = None
    record: Optional[FranchiseCompleteness] = None


def first_franchise(entries: List[CatalogEntry]) -> Optional[str]:
    """Franchise of the first entry that has one."""
    for entry in entries:
        name = entry.primary_franchise
        if name:
            return name
    return None


class CompletenessEstimator:
    """Cache-vs-upstream decision policy."""

    def __init__(self, repository: CatalogRepository, provider: BaseCatalogProvider,
                 settings: SearchSettings):
        self.repository = repository
        self.provider = provider
        self.settings = settings

    def ratio_requires_fetch(self, record: FranchiseCompleteness) -> bool:
        if record.completeness_ratio < self.settings.completeness_threshold:
            return True
        floor = self.settings.franchise_floor
        return record.total_known_upstream > floor and record.cached_count < floor

    async def estimate(self, entries: List[CatalogEntry],
                       min_cached_results: Optional[int] = None) -> CompletenessDecision:
        threshold = min_cached_results or self.settings.min_cached_results

        if not entries:
            return CompletenessDecision(True, "empty_cache")
        if len(entries) >= threshold:
            return CompletenessDecision(False, "threshold_met")

        franchise = first_franchise(entries)
        if not franchise:
            return CompletenessDecision(True, "below_threshold")

        try:
            return await self._estimate_franchise(franchise)
        except Exception as e:
            logger.warning(f"Franchise check failed for '{franchise}', using threshold rule: {e}")
            return CompletenessDecision(True, "below_threshold", franchise=franchise)

    async def _estimate_franchise(self, franchise: str) -> CompletenessDecision:
        record = self.repository.get_franchise_record(franchise)

        if record is None or not record.is_usable(self.settings.franchise_stale_after):
            total = await asyncio.wait_for(
                self.provider.count_franchise_games(franchise),
                timeout=self.settings.count_timeout,
            )
            if total <= 0:
                logger.info(f"Upstream reports no games for franchise '{franchise}'")
                return CompletenessDecision(True, "franchise_count_unknown", franchise=franchise)
            record = self.repository.save_franchise_record(franchise, total)

        fetch = self.ratio_requires_fetch(record)
        logger.info(
            f"Franchise '{franchise}': {record.cached_count}/{record.total_known_upstream} cached "
            f"({record.completeness_ratio:.0%}) -> {'fetch' if fetch else 'cache'}"
        )
        return CompletenessDecision(
            fetch,
            "franchise_incomplete" if fetch else "franchise_complete",
            franchise=franchise,
            record=record,
        )
