import asyncio

import pytest
from sqlalchemy.orm import sessionmaker

from questlog_app.catalog.models import CatalogEntry, franchise_key
from questlog_app.catalog.providers.base import BaseCatalogProvider
from questlog_app.catalog.repository import CatalogRepository
from questlog_app.database import create_db_engine, init_database
from questlog_app.search.config import SearchSettings
from questlog_app.search.ranking import normalize_text


def make_entry(external_id, title, **kwargs):
    kwargs.setdefault('type_code', 0)
    return CatalogEntry(external_id=external_id, title=title, **kwargs)


class FakeProvider(BaseCatalogProvider):
    """In-memory provider recording every call."""

    id = "fake"
    name = "Fake"

    def __init__(self, results=None, counts=None, delay=0.0, error=None):
        super().__init__()
        self.results = {normalize_text(k): v for k, v in (results or {}).items()}
        self.counts = {franchise_key(k): v for k, v in (counts or {}).items()}
        self.delay = delay
        self.error = error
        self.search_calls = []
        self.count_calls = []
        self.id_calls = []

    async def search_games(self, query, target):
        self.search_calls.append((query, target))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return list(self.results.get(normalize_text(query), []))[:target]

    async def get_by_ids(self, external_ids):
        self.id_calls.append(list(external_ids))
        if self.error:
            raise self.error
        by_id = {e.external_id: e for entries in self.results.values() for e in entries}
        return [by_id[i] for i in external_ids if i in by_id]

    async def count_franchise_games(self, franchise_name):
        self.count_calls.append(franchise_name)
        count = self.counts.get(franchise_key(franchise_name), 0)
        if isinstance(count, Exception):
            raise count
        return count


@pytest.fixture
def session_factory():
    engine = create_db_engine("sqlite://")
    init_database(engine=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def repository(session_factory):
    return CatalogRepository(session_factory)


@pytest.fixture
def settings():
    return SearchSettings()
