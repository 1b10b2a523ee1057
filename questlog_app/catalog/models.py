"""
================================================================================
QuestLog - Catalog Models
================================================================================
Plain data models shared by the cache, the upstream provider and the search
pipeline:

  - CatalogEntry: cached projection of one upstream game record
  - FranchiseCompleteness: how much of a franchise the cache already holds
  - CacheSearchResult: what the Cache Reader hands to the search pipeline

ORM rows (questlog_app.models) are converted to these before they leave the
repository so nothing downstream depends on an open session.
================================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


# =============================================================================
# ENUMS
# =============================================================================

class CacheConfidence(str, Enum):
    """How well the cached results cover the query."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# =============================================================================
# DATA MODELS
# =============================================================================

@dataclass
class CatalogEntry:
    """
    One game as stored in the local catalog.

    external_id is the upstream identifier and the only join key between
    cached and freshly fetched records.
    """
    external_id: int
    title: str
    release_year: Optional[int] = None

    # IGDB game_type, and the legacy category used when game_type is missing
    type_code: Optional[int] = None
    category_code: Optional[int] = None

    parent_id: Optional[int] = None
    version_parent_id: Optional[int] = None

    # Main franchise first, then secondary ones
    franchise_names: List[str] = field(default_factory=list)

    cover_url: Optional[str] = None
    summary: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def primary_franchise(self) -> Optional[str]:
        for name in self.franchise_names:
            if name and name.strip():
                return name
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'externalId': self.external_id,
            'title': self.title,
            'releaseYear': self.release_year,
            'typeCode': self.type_code,
            'categoryCode': self.category_code,
            'parentId': self.parent_id,
            'versionParentId': self.version_parent_id,
            'franchises': list(self.franchise_names),
            'coverUrl': self.cover_url,
            'summary': self.summary,
            'details': dict(self.details),
        }


def franchise_key(name: str) -> str:
    """Normalized lookup key for a franchise name."""
    return (name or '').lower().strip()


@dataclass
class FranchiseCompleteness:
    """Cache coverage record for one franchise."""
    key: str
    display_name: str
    total_known_upstream: int = 0
    cached_count: int = 0
    last_checked_at: Optional[datetime] = None

    @property
    def completeness_ratio(self) -> float:
        return self.cached_count / max(self.total_known_upstream, 1)

    def is_stale(self, max_age: timedelta, now: Optional[datetime] = None) -> bool:
        if self.last_checked_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        checked = self.last_checked_at
        # SQLite hands back naive datetimes; they are stored as UTC
        if checked.tzinfo is None:
            checked = checked.replace(tzinfo=timezone.utc)
        return now - checked > max_age

    def is_usable(self, max_age: timedelta, now: Optional[datetime] = None) -> bool:
        return self.total_known_upstream > 0 and not self.is_stale(max_age, now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key': self.key,
            'name': self.display_name,
            'totalKnownUpstream': self.total_known_upstream,
            'cachedCount': self.cached_count,
            'completenessRatio': round(self.completeness_ratio, 3),
            'lastCheckedAt': self.last_checked_at.isoformat() if self.last_checked_at else None,
        }


@dataclass
class CacheSearchResult:
    """Cached entries for a query plus how much to trust them."""
    entries: List[CatalogEntry] = field(default_factory=list)
    confidence: CacheConfidence = CacheConfidence.LOW

    def __len__(self):
        return len(self.entries)
