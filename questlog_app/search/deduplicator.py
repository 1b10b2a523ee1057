"""
================================================================================
QuestLog - Result Merging & Pagination
================================================================================
Combines cached and freshly fetched entries into one list with no duplicate
external_id, then slices it into pages.

Cache entries win: they keep their order and position, and a fetched entry is
only appended when its id has not been seen yet.
================================================================================
"""

import logging
from dataclasses import dataclass, field
from typing import Generic, Iterable, List, Optional, Set, TypeVar

from ..catalog.models import CatalogEntry

logger = logging.getLogger(__name__)

T = TypeVar('T')


def merge_results(
    cached: Iterable[CatalogEntry],
    fetched: Iterable[CatalogEntry],
) -> List[CatalogEntry]:
    """Union of cached and fetched entries keyed by external_id, cache first."""
    cached = list(cached)
    fetched = list(fetched)
    seen: Set[int] = set()
    merged: List[CatalogEntry] = []

    for entry in cached + fetched:
        if entry.external_id in seen:
            continue
        seen.add(entry.external_id)
        merged.append(entry)

    logger.debug(f"Merged {len(cached)} cached + {len(fetched)} fetched -> {len(merged)} unique")
    return merged


@dataclass
class Page(Generic[T]):
    items: List[T] = field(default_factory=list)
    total: int = 0
    has_more: bool = False
    cursor: Optional[int] = None


def paginate(items: List[T], offset: int, limit: int) -> Page:
    """
    Slice items[offset:offset + limit].

    cursor is the offset of the next page, or None on the last page.
    """
    end = offset + limit
    has_more = len(items) > end
    return Page(
        items=items[offset:end],
        total=len(items),
        has_more=has_more,
        cursor=end if has_more else None,
    )
