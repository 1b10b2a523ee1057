"""
================================================================================
QuestLog - Game Kind Classification
================================================================================
Maps an entry's IGDB type codes and relationships onto a small set of ranking
buckets.

Precedence:
  1. game_type code (table below, unknown codes -> Other)
  2. legacy category code, same table
  3. version_parent -> Enhanced Release / "Alternate Version"
  4. parent_game -> Additional Content / "Related Content"
  5. nothing known -> Mainline / "Main Game"
================================================================================
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple

from ..catalog.models import CatalogEntry


class GameKindBucket(str, Enum):
    """Ranking bucket, declared in priority order."""
    MAINLINE = "mainline"
    ENHANCED_RELEASE = "enhancedRelease"
    ADDITIONAL_CONTENT = "additionalContent"
    FAN_OR_FORK = "fanOrFork"
    OTHER = "other"


class ClassificationSource(str, Enum):
    """Which field decided the bucket."""
    TYPE_CODE = "typeCode"
    CATEGORY = "category"
    RELATIONSHIP = "relationship"
    FALLBACK = "fallback"


BUCKET_PRIORITY: Dict[GameKindBucket, int] = {
    GameKindBucket.MAINLINE: 0,
    GameKindBucket.ENHANCED_RELEASE: 1,
    GameKindBucket.ADDITIONAL_CONTENT: 2,
    GameKindBucket.FAN_OR_FORK: 3,
    GameKindBucket.OTHER: 4,
}

TYPE_CODE_TABLE: Dict[int, Tuple[GameKindBucket, str]] = {
    0: (GameKindBucket.MAINLINE, "Main Game"),
    1: (GameKindBucket.ADDITIONAL_CONTENT, "DLC"),
    2: (GameKindBucket.ADDITIONAL_CONTENT, "Expansion"),
    3: (GameKindBucket.ADDITIONAL_CONTENT, "Bundle"),
    4: (GameKindBucket.ADDITIONAL_CONTENT, "Standalone Expansion"),
    5: (GameKindBucket.FAN_OR_FORK, "Mod"),
    6: (GameKindBucket.ADDITIONAL_CONTENT, "Episode"),
    7: (GameKindBucket.ADDITIONAL_CONTENT, "Season"),
    8: (GameKindBucket.ENHANCED_RELEASE, "Remake"),
    9: (GameKindBucket.ENHANCED_RELEASE, "Remaster"),
    10: (GameKindBucket.ENHANCED_RELEASE, "Expanded Game"),
    11: (GameKindBucket.ENHANCED_RELEASE, "Port"),
    12: (GameKindBucket.FAN_OR_FORK, "Fork"),
    13: (GameKindBucket.ADDITIONAL_CONTENT, "Pack"),
    14: (GameKindBucket.ADDITIONAL_CONTENT, "Update"),
}

UNKNOWN_CODE = (GameKindBucket.OTHER, "Other")


@dataclass(frozen=True)
class ClassificationResult:
    bucket: GameKindBucket
    label: str
    source: ClassificationSource

    @property
    def priority(self) -> int:
        return BUCKET_PRIORITY[self.bucket]

    @property
    def from_code(self) -> bool:
        return self.source in (ClassificationSource.TYPE_CODE, ClassificationSource.CATEGORY)

    def to_dict(self) -> Dict[str, str]:
        return {
            'bucket': self.bucket.value,
            'label': self.label,
            'source': self.source.value,
        }


def _from_code(code: int, source: ClassificationSource) -> ClassificationResult:
    bucket, label = TYPE_CODE_TABLE.get(code, UNKNOWN_CODE)
    return ClassificationResult(bucket, label, source)


def classify(entry: CatalogEntry) -> ClassificationResult:
    """Classify an entry into its ranking bucket."""
    if entry.type_code is not None:
        return _from_code(entry.type_code, ClassificationSource.TYPE_CODE)

    if entry.category_code is not None:
        return _from_code(entry.category_code, ClassificationSource.CATEGORY)

    if entry.version_parent_id:
        return ClassificationResult(
            GameKindBucket.ENHANCED_RELEASE, "Alternate Version", ClassificationSource.RELATIONSHIP
        )

    if entry.parent_id:
        return ClassificationResult(
            GameKindBucket.ADDITIONAL_CONTENT, "Related Content", ClassificationSource.RELATIONSHIP
        )

    return ClassificationResult(GameKindBucket.MAINLINE, "Main Game", ClassificationSource.FALLBACK)


def parse_bucket(value: str) -> GameKindBucket:
    """Parse a bucket name from a request ("mainline", "enhanced_release", ...)."""
    cleaned = (value or '').strip()
    for bucket in GameKindBucket:
        if cleaned == bucket.value or cleaned.lower() == bucket.name.lower():
            return bucket
    raise ValueError(f"Unknown bucket: {value}")
