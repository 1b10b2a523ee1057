import asyncio
from datetime import datetime, timedelta, timezone

from conftest import FakeProvider, make_entry

from questlog_app.exceptions import ProviderError
from questlog_app.search.completeness import CompletenessEstimator
from questlog_app.search.config import SearchSettings


def zelda_entries(count, start=1):
    return [
        make_entry(i, f"The Legend of Zelda {i}", franchise_names=["The Legend of Zelda"])
        for i in range(start, start + count)
    ]


def estimate(estimator, entries, threshold=5):
    return asyncio.run(estimator.estimate(entries, threshold))


def test_empty_cache_requires_fetch(repository, settings):
    provider = FakeProvider()
    decision = estimate(CompletenessEstimator(repository, provider, settings), [])
    assert decision.fetch_required is True
    assert decision.reason == "empty_cache"


def test_enough_cached_results_skip_fetch(repository, settings):
    provider = FakeProvider()
    entries = [make_entry(i, f"Game {i}") for i in range(5)]
    decision = estimate(CompletenessEstimator(repository, provider, settings), entries)
    assert decision.fetch_required is False
    assert provider.count_calls == []


def test_below_threshold_without_franchise_fetches(repository, settings):
    provider = FakeProvider()
    entries = [make_entry(1, "Celeste"), make_entry(2, "Celeste Classic")]
    decision = estimate(CompletenessEstimator(repository, provider, settings), entries)
    assert decision.fetch_required is True
    assert decision.reason == "below_threshold"
    assert provider.count_calls == []


def test_complete_franchise_record_skips_fetch(repository, settings):
    entries = zelda_entries(3)
    repository.upsert_entries(entries)
    repository.save_franchise_record("The Legend of Zelda", 3)
    provider = FakeProvider()

    decision = estimate(CompletenessEstimator(repository, provider, settings), entries)

    assert decision.fetch_required is False
    assert decision.reason == "franchise_complete"
    assert provider.count_calls == []


def test_incomplete_franchise_record_fetches(repository, settings):
    entries = zelda_entries(3)
    repository.upsert_entries(entries)
    repository.save_franchise_record("The Legend of Zelda", 20)

    decision = estimate(CompletenessEstimator(repository, FakeProvider(), settings), entries)

    assert decision.fetch_required is True
    assert decision.record.completeness_ratio == 3 / 20


def test_floor_rule_for_large_franchise(repository):
    settings = SearchSettings(completeness_threshold=0.5)
    entries = zelda_entries(4)
    repository.upsert_entries(entries)
    repository.save_franchise_record("The Legend of Zelda", 8)

    decision = estimate(CompletenessEstimator(repository, FakeProvider(), settings), entries)

    # 4/8 meets the ratio, but a franchise of 8 with only 4 cached is too thin
    assert decision.fetch_required is True


def test_missing_record_asks_upstream_and_stores_it(repository, settings):
    entries = zelda_entries(2)
    repository.upsert_entries(entries)
    provider = FakeProvider(counts={"the legend of zelda": 2})

    decision = estimate(CompletenessEstimator(repository, provider, settings), entries)

    assert provider.count_calls == ["The Legend of Zelda"]
    assert decision.fetch_required is False
    record = repository.get_franchise_record("the legend of zelda ")
    assert record.total_known_upstream == 2
    assert record.cached_count == 2


def test_stale_record_is_rechecked(repository, settings):
    entries = zelda_entries(2)
    repository.upsert_entries(entries)
    old = datetime.now(timezone.utc) - timedelta(days=8)
    repository.save_franchise_record("The Legend of Zelda", 2, checked_at=old)
    provider = FakeProvider(counts={"The Legend of Zelda": 30})

    decision = estimate(CompletenessEstimator(repository, provider, settings), entries)

    assert provider.count_calls == ["The Legend of Zelda"]
    assert decision.fetch_required is True


def test_zero_upstream_count_is_not_trusted(repository, settings):
    entries = zelda_entries(2)
    provider = FakeProvider(counts={"The Legend of Zelda": 0})

    decision = estimate(CompletenessEstimator(repository, provider, settings), entries)

    assert decision.fetch_required is True
    assert decision.reason == "franchise_count_unknown"
    assert repository.get_franchise_record("The Legend of Zelda") is None


def test_franchise_failure_falls_back_to_threshold(repository, settings):
    entries = zelda_entries(2)
    provider = FakeProvider(counts={"The Legend of Zelda": ProviderError("fake", "boom")})

    decision = estimate(CompletenessEstimator(repository, provider, settings), entries)

    assert decision.fetch_required is True
    assert decision.reason == "below_threshold"
