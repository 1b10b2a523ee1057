"""
================================================================================
QuestLog - Relevance Ranking
================================================================================
Orders search results so the canonical edition of a title comes first.

Sort key, in order:
  1. bucket priority (Mainline < Enhanced Release < Additional Content
     < Fan/Fork < Other)
  2. exact title match
  3. leading tokens matching the query (more first)
  4. longest run of query tokens anywhere in the title (more first)
  5. position of the first full query match (earlier first)
  6. sequel number right after the query ("II", "2"; lower first, none last)
  7. tokens not covered by the match (fewer first)
  8. release year (older first, unknown last)
  9. original position

Criteria 2-8 only apply when a non-blank query is given; without one each
bucket keeps its input order.

Example ("super mario bros"):
  "Super Mario Bros."  ->  exact
  "Super Mario Bros. 2" -> prefix 3, sequel 2
  "Super Mario Bros. 3" -> prefix 3, sequel 3
  "New Super Mario Bros." -> full match at position 1
================================================================================
"""

import math
import re
import unicodedata
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from ..catalog.models import CatalogEntry
from .classification import ClassificationResult, GameKindBucket, classify

_COMBINING_MARKS = re.compile(r'[\u0300-\u036f]')
_NON_ALNUM = re.compile(r'[^a-z0-9]+')

ROMAN_VALUES = {'m': 1000, 'd': 500, 'c': 100, 'l': 50, 'x': 10, 'v': 5, 'i': 1}


# =============================================================================
# TEXT NORMALIZATION
# =============================================================================

def normalize_text(value: Optional[str]) -> str:
    """NFKD, strip accents, lowercase, collapse non-alphanumerics to spaces."""
    if not value:
        return ''
    value = unicodedata.normalize('NFKD', value)
    value = _COMBINING_MARKS.sub('', value).lower()
    return _NON_ALNUM.sub(' ', value).strip()


def tokenize(value: str) -> List[str]:
    if not value:
        return []
    return value.split()


def roman_to_int(token: str) -> Optional[int]:
    """Subtractive Roman numeral value, or None if token is not a numeral."""
    chars = token.lower()
    if not chars or any(c not in ROMAN_VALUES for c in chars):
        return None

    total = 0
    for i, c in enumerate(chars):
        current = ROMAN_VALUES[c]
        following = ROMAN_VALUES[chars[i + 1]] if i + 1 < len(chars) else 0
        if current < following:
            total -= current
        else:
            total += current
    return total if total > 0 else None


def numeric_token_value(token: str) -> Optional[int]:
    if token.isdigit():
        return int(token)
    return roman_to_int(token)


# =============================================================================
# METRICS
# =============================================================================

@dataclass
class RankingMetrics:
    exact_match: bool = False
    prefix_match_length: int = 0
    longest_match_length: int = 0
    full_match_start: float = math.inf
    numeric_suffix: Optional[int] = None
    extra_token_count: float = math.inf


def compute_ranking_metrics(title: Optional[str], query_tokens: Sequence[str]) -> RankingMetrics:
    """Measure how closely a title matches the tokenized query."""
    if not title:
        return RankingMetrics()

    title_tokens = tokenize(normalize_text(title))
    if not title_tokens or not query_tokens:
        return RankingMetrics()

    q_len = len(query_tokens)
    t_len = len(title_tokens)

    prefix = 0
    while prefix < q_len and prefix < t_len and title_tokens[prefix] == query_tokens[prefix]:
        prefix += 1

    longest = 0
    full_start = math.inf
    for i in range(t_len):
        span = 0
        while span < q_len and i + span < t_len and title_tokens[i + span] == query_tokens[span]:
            span += 1
        longest = max(longest, span)
        if span == q_len and i < full_start:
            full_start = i

    exact = prefix == q_len and t_len == q_len

    numeric_suffix = None
    if prefix == q_len:
        if t_len > q_len:
            numeric_suffix = numeric_token_value(title_tokens[q_len])
        else:
            numeric_suffix = 0

    return RankingMetrics(
        exact_match=exact,
        prefix_match_length=prefix,
        longest_match_length=longest,
        full_match_start=full_start,
        numeric_suffix=numeric_suffix,
        extra_token_count=t_len - max(prefix, longest),
    )


# =============================================================================
# CLASSIFY + SORT
# =============================================================================

@dataclass
class RankedEntry:
    """An entry with its classification, as returned by classify_and_sort."""
    entry: CatalogEntry
    classification: ClassificationResult

    def to_dict(self):
        data = self.entry.to_dict()
        data['classification'] = self.classification.to_dict()
        return data


def _sort_key(priority: int, metrics: Optional[RankingMetrics],
              release_year: Optional[int], index: int) -> Tuple:
    if metrics is None:
        return (priority, index)
    return (
        priority,
        not metrics.exact_match,
        -metrics.prefix_match_length,
        -metrics.longest_match_length,
        metrics.full_match_start,
        metrics.numeric_suffix if metrics.numeric_suffix is not None else math.inf,
        metrics.extra_token_count,
        release_year if release_year is not None else math.inf,
        index,
    )


def classify_and_sort(
    entries: Iterable[CatalogEntry],
    query: Optional[str] = None,
    allowed_buckets: Optional[Iterable[GameKindBucket]] = None,
) -> List[RankedEntry]:
    """
    Classify entries and order them by bucket and query relevance.

    Args:
        entries: Entries in their incoming order (used as final tiebreak)
        query: Raw search text; blank or None disables relevance ordering
        allowed_buckets: Keep only these buckets; empty or None keeps all

    Returns:
        RankedEntry list, most relevant first
    """
    query = (query or '').strip()
    query_tokens = tokenize(normalize_text(query)) if query else []
    allowed = set(allowed_buckets or ())

    keyed = []
    for index, entry in enumerate(entries):
        classification = classify(entry)
        if allowed and classification.bucket not in allowed:
            continue
        metrics = compute_ranking_metrics(entry.title, query_tokens) if query else None
        year = entry.release_year if query else None
        keyed.append((_sort_key(classification.priority, metrics, year, index),
                      RankedEntry(entry, classification)))

    keyed.sort(key=lambda pair: pair[0])
    return [ranked for _, ranked in keyed]
