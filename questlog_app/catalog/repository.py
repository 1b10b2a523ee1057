"""
================================================================================
QuestLog - Catalog Repository
================================================================================
All reads and writes of the local catalog cache go through here.

  - search_cached(): the Cache Reader (substring match on the normalized
    title, newest first, plus a confidence signal)
  - upsert_entries(): idempotent insert-or-update keyed by external_id
  - franchise records: read, write and recount cached members

Every method opens its own short session and returns plain dataclasses, so
callers never hold a session across an await. SQLAlchemy errors are wrapped
in CatalogStoreError.
================================================================================
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from rapidfuzz import fuzz
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..database import get_db_session
from ..exceptions import CatalogStoreError
from ..models import Game, GameFranchise, FranchiseMetadata, as_utc
from ..search.ranking import normalize_text
from .models import (
    CacheConfidence, CacheSearchResult, CatalogEntry, FranchiseCompleteness, franchise_key
)

logger = logging.getLogger(__name__)

# Best fuzzy ratio between query and a cached title
HIGH_CONFIDENCE_SCORE = 90.0
MEDIUM_CONFIDENCE_SCORE = 60.0


def entry_from_row(row: Game) -> CatalogEntry:
    return CatalogEntry(
        external_id=row.external_id,
        title=row.title,
        release_year=row.release_year,
        type_code=row.type_code,
        category_code=row.category_code,
        parent_id=row.parent_id,
        version_parent_id=row.version_parent_id,
        franchise_names=list(row.franchise_names or []),
        cover_url=row.cover_url,
        summary=row.summary,
        details=dict(row.payload or {}),
    )


def _apply_entry(row: Game, entry: CatalogEntry) -> None:
    row.title = entry.title
    row.search_title = normalize_text(entry.title)
    row.release_year = entry.release_year
    row.type_code = entry.type_code
    row.category_code = entry.category_code
    row.parent_id = entry.parent_id
    row.version_parent_id = entry.version_parent_id
    row.franchise_names = list(entry.franchise_names)
    row.cover_url = entry.cover_url
    row.summary = entry.summary
    row.payload = dict(entry.details)


def _record_from_row(row: FranchiseMetadata) -> FranchiseCompleteness:
    return FranchiseCompleteness(
        key=row.franchise_key,
        display_name=row.display_name,
        total_known_upstream=row.total_known_upstream or 0,
        cached_count=row.cached_count or 0,
        last_checked_at=as_utc(row.last_checked_at),
    )


def score_confidence(query: str, entries: List[CatalogEntry]) -> CacheConfidence:
    """Grade cached entries by their best fuzzy match against the query."""
    normalized = normalize_text(query)
    if not entries or not normalized:
        return CacheConfidence.LOW

    best = max(fuzz.ratio(normalized, normalize_text(e.title)) for e in entries)
    if best >= HIGH_CONFIDENCE_SCORE:
        return CacheConfidence.HIGH
    if best >= MEDIUM_CONFIDENCE_SCORE:
        return CacheConfidence.MEDIUM
    return CacheConfidence.LOW


class CatalogRepository:
    """Persistence for cached games and franchise completeness records."""

    def __init__(self, session_factory: Optional[Callable] = None):
        self.session_factory = session_factory

    def _session(self):
        return get_db_session(self.session_factory)

    # =========================================================================
    # CACHE READER
    # =========================================================================

    def search_cached(self, query: str, limit: int) -> CacheSearchResult:
        """
        Cached games whose normalized title contains the normalized query.

        Never calls upstream. Raises CatalogStoreError on store failure.
        """
        term = normalize_text(query)
        if not term or limit <= 0:
            return CacheSearchResult()

        try:
            with self._session() as session:
                rows = (
                    session.query(Game)
                    .filter(Game.search_title.contains(term, autoescape=True))
                    .order_by(Game.updated_at.desc(), Game.id.desc())
                    .limit(limit)
                    .all()
                )
                entries = [entry_from_row(row) for row in rows]
        except SQLAlchemyError as e:
            raise CatalogStoreError(f"Cache read failed for '{query}': {e}") from e

        return CacheSearchResult(entries=entries, confidence=score_confidence(query, entries))

    def get_by_external_ids(self, external_ids: Iterable[int]) -> List[CatalogEntry]:
        ids = list(dict.fromkeys(external_ids))
        if not ids:
            return []
        try:
            with self._session() as session:
                rows = session.query(Game).filter(Game.external_id.in_(ids)).all()
                by_id = {row.external_id: entry_from_row(row) for row in rows}
        except SQLAlchemyError as e:
            raise CatalogStoreError(f"Cache lookup failed: {e}") from e
        return [by_id[i] for i in ids if i in by_id]

    # =========================================================================
    # UPSERT
    # =========================================================================

    def upsert_entries(self, entries: Iterable[CatalogEntry]) -> int:
        """
        Insert or update entries by external_id.

        A concurrent writer inserting the same id first surfaces as an
        IntegrityError; the batch is retried once, which then takes the
        update path for those rows.

        Returns:
            Number of entries written
        """
        batch: Dict[int, CatalogEntry] = {}
        for entry in entries:
            batch[entry.external_id] = entry
        if not batch:
            return 0

        for attempt in range(2):
            try:
                self._write_batch(list(batch.values()))
                return len(batch)
            except IntegrityError as e:
                if attempt == 0:
                    logger.warning(f"Upsert conflict, retrying batch of {len(batch)}: {e.orig}")
                    continue
                raise CatalogStoreError(f"Upsert failed after retry: {e}") from e
            except SQLAlchemyError as e:
                raise CatalogStoreError(f"Upsert failed: {e}") from e
        return 0

    def _write_batch(self, entries: List[CatalogEntry]) -> None:
        ids = [e.external_id for e in entries]
        with self._session() as session:
            existing = {
                row.external_id: row
                for row in session.query(Game).filter(Game.external_id.in_(ids)).all()
            }
            for entry in entries:
                row = existing.get(entry.external_id)
                if row is None:
                    row = Game(external_id=entry.external_id)
                    session.add(row)
                _apply_entry(row, entry)

            # Franchise links are replaced wholesale for the batch
            session.query(GameFranchise).filter(
                GameFranchise.external_id.in_(ids)
            ).delete(synchronize_session=False)
            for entry in entries:
                keys = {franchise_key(name) for name in entry.franchise_names}
                for key in sorted(k for k in keys if k):
                    session.add(GameFranchise(external_id=entry.external_id, franchise_key=key))

    # =========================================================================
    # FRANCHISE RECORDS
    # =========================================================================

    def count_franchise_members(self, name: str) -> int:
        key = franchise_key(name)
        try:
            with self._session() as session:
                return session.query(func.count(GameFranchise.id)).filter(
                    GameFranchise.franchise_key == key
                ).scalar() or 0
        except SQLAlchemyError as e:
            raise CatalogStoreError(f"Franchise count failed for '{name}': {e}") from e

    def get_franchise_record(self, name: str) -> Optional[FranchiseCompleteness]:
        key = franchise_key(name)
        if not key:
            return None
        try:
            with self._session() as session:
                row = session.get(FranchiseMetadata, key)
                return _record_from_row(row) if row else None
        except SQLAlchemyError as e:
            raise CatalogStoreError(f"Franchise lookup failed for '{name}': {e}") from e

    def save_franchise_record(
        self,
        name: str,
        total_known_upstream: int,
        checked_at: Optional[datetime] = None,
    ) -> FranchiseCompleteness:
        """Store a fresh upstream total; cached_count is recounted from the links."""
        key = franchise_key(name)
        checked_at = checked_at or datetime.now(timezone.utc)
        try:
            with self._session() as session:
                cached = session.query(func.count(GameFranchise.id)).filter(
                    GameFranchise.franchise_key == key
                ).scalar() or 0
                row = session.get(FranchiseMetadata, key)
                if row is None:
                    row = FranchiseMetadata(franchise_key=key, display_name=name.strip())
                    session.add(row)
                row.total_known_upstream = max(int(total_known_upstream), 0)
                row.cached_count = cached
                row.last_checked_at = checked_at
                session.flush()
                return _record_from_row(row)
        except SQLAlchemyError as e:
            raise CatalogStoreError(f"Franchise save failed for '{name}': {e}") from e

    def refresh_franchise_counts(self, names: Iterable[str]) -> List[FranchiseCompleteness]:
        """
        Recount cached members for each franchise touched by a fetch.

        Unseen franchises get a record with an unknown upstream total (0).
        The count comes from the link table, so repeating this is harmless.
        """
        display = {}
        for name in names:
            key = franchise_key(name)
            if key and key not in display:
                display[key] = name.strip()
        if not display:
            return []

        records = []
        try:
            with self._session() as session:
                counts = dict(
                    session.query(GameFranchise.franchise_key, func.count(GameFranchise.id))
                    .filter(GameFranchise.franchise_key.in_(list(display)))
                    .group_by(GameFranchise.franchise_key)
                    .all()
                )
                for key, name in display.items():
                    row = session.get(FranchiseMetadata, key)
                    if row is None:
                        row = FranchiseMetadata(
                            franchise_key=key,
                            display_name=name,
                            total_known_upstream=0,
                            last_checked_at=datetime.now(timezone.utc),
                        )
                        session.add(row)
                    row.cached_count = counts.get(key, 0)
                    records.append(row)
                session.flush()
                return [_record_from_row(row) for row in records]
        except SQLAlchemyError as e:
            raise CatalogStoreError(f"Franchise recount failed: {e}") from e
