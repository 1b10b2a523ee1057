"""
================================================================================
QuestLog - Database Models
================================================================================
SQLAlchemy models for the local catalog cache.

  - Game: cached projection of one upstream (IGDB) game, unique by external_id
  - GameFranchise: game -> franchise links used to count cached members
  - FranchiseMetadata: per-franchise completeness record
  - SearchLock: persisted in-flight marker for multi-process deployments
  - ApiToken: cached provider access token
================================================================================
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Integer, SmallInteger, DateTime, Text, JSON, UniqueConstraint, Index
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.ext.declarative import declared_attr

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo on the way back; stored values are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# MIXINS
# =============================================================================

class TimestampMixin:
    """Adds created_at and updated_at timestamps to models."""
    @declared_attr
    def created_at(cls):
        return Column(DateTime(timezone=True), default=utcnow, nullable=False)

    @declared_attr
    def updated_at(cls):
        return Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


# =============================================================================
# CATALOG
# =============================================================================

class Game(Base, TimestampMixin):
    """One cached game record."""
    __tablename__ = 'games'

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(Integer, unique=True, nullable=False, index=True)
    title = Column(String(500), nullable=False)
    search_title = Column(String(500), nullable=False, index=True)  # normalize_text(title)
    release_year = Column(Integer)

    type_code = Column(SmallInteger)
    category_code = Column(SmallInteger)
    parent_id = Column(Integer)
    version_parent_id = Column(Integer)

    franchise_names = Column(JSON, default=list)
    cover_url = Column(String(500))
    summary = Column(Text)
    payload = Column(JSON, default=dict)

    def __repr__(self):
        return f"<Game(external_id={self.external_id}, title='{self.title}')>"


class GameFranchise(Base):
    """Link between a cached game and one of its franchises."""
    __tablename__ = 'game_franchises'

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(Integer, nullable=False, index=True)
    franchise_key = Column(String(255), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint('external_id', 'franchise_key', name='uq_game_franchise'),
    )


class FranchiseMetadata(Base):
    """How many members of a franchise exist upstream vs. in the cache."""
    __tablename__ = 'franchise_metadata'

    franchise_key = Column(String(255), primary_key=True)
    display_name = Column(String(255), nullable=False)
    total_known_upstream = Column(Integer, nullable=False, default=0)  # 0 = unknown
    cached_count = Column(Integer, nullable=False, default=0)
    last_checked_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self):
        return {
            'franchise_key': self.franchise_key,
            'display_name': self.display_name,
            'total_known_upstream': self.total_known_upstream,
            'cached_count': self.cached_count,
            'last_checked_at': self.last_checked_at.isoformat() if self.last_checked_at else None,
        }


# =============================================================================
# COORDINATION
# =============================================================================

class SearchLock(Base):
    """In-flight upstream fetch for one normalized query."""
    __tablename__ = 'search_locks'

    query_key = Column(String(255), primary_key=True)
    owner = Column(String(64), nullable=False)
    acquired_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index('ix_search_locks_expires_at', 'expires_at'),
    )


class ApiToken(Base, TimestampMixin):
    """Provider bearer token shared between workers."""
    __tablename__ = 'api_tokens'

    provider = Column(String(50), primary_key=True)
    access_token = Column(String(500), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
