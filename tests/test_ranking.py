import math

from conftest import make_entry

from questlog_app.search.classification import GameKindBucket
from questlog_app.search.ranking import (
    classify_and_sort, compute_ranking_metrics, normalize_text, roman_to_int, tokenize
)


def titles(ranked):
    return [r.entry.title for r in ranked]


def test_normalize_text():
    assert normalize_text("Pokémon: Let's Go, Pikachu!") == "pokemon let s go pikachu"
    assert normalize_text("  ÉLITE   Dangerous ") == "elite dangerous"
    assert normalize_text("!!!") == ""
    assert normalize_text(None) == ""
    assert tokenize("") == []


def test_roman_numerals():
    assert roman_to_int("iv") == 4
    assert roman_to_int("IX") == 9
    assert roman_to_int("vii") == 7
    assert roman_to_int("mcmxc") == 1990
    assert roman_to_int("zelda") is None
    assert roman_to_int("") is None


def test_metrics_no_title():
    metrics = compute_ranking_metrics(None, ["halo"])
    assert metrics.extra_token_count == math.inf
    assert metrics.full_match_start == math.inf
    assert metrics.exact_match is False


def test_metrics_sequel_suffix():
    metrics = compute_ranking_metrics("Final Fantasy VII", ["final", "fantasy"])
    assert metrics.prefix_match_length == 2
    assert metrics.numeric_suffix == 7
    assert metrics.extra_token_count == 1
    assert compute_ranking_metrics("Final Fantasy", ["final", "fantasy"]).numeric_suffix == 0
    assert compute_ranking_metrics("Final Fantasy Tactics", ["final", "fantasy"]).numeric_suffix is None


def test_super_mario_bros_ordering():
    entries = [
        make_entry(1, "New Super Mario Bros.", release_year=2006),
        make_entry(2, "Super Mario Bros. 3", release_year=1988),
        make_entry(3, "Super Mario Bros. Deluxe", release_year=1999),
        make_entry(4, "Super Mario Bros.", release_year=1985),
        make_entry(5, "Super Mario Bros. 2", release_year=1988),
    ]
    ranked = classify_and_sort(entries, query="super mario bros")
    assert titles(ranked) == [
        "Super Mario Bros.",
        "Super Mario Bros. 2",
        "Super Mario Bros. 3",
        "Super Mario Bros. Deluxe",
        "New Super Mario Bros.",
    ]


def test_super_mario_mainline_example():
    entries = [
        make_entry(1, "Super Mario World"),
        make_entry(2, "Super Mario Bros. 3"),
        make_entry(3, "Super Mario Bros."),
        make_entry(4, "Super Mario Bros. 2"),
        make_entry(5, "Super Mario Galaxy"),
    ]
    ranked = classify_and_sort(entries, query="Super Mario Bros")
    assert titles(ranked) == [
        "Super Mario Bros.",
        "Super Mario Bros. 2",
        "Super Mario Bros. 3",
        "Super Mario World",
        "Super Mario Galaxy",
    ]


def test_roman_sequels_sort_numerically():
    entries = [
        make_entry(1, "Final Fantasy X"),
        make_entry(2, "Final Fantasy VII"),
        make_entry(3, "Final Fantasy"),
    ]
    ranked = classify_and_sort(entries, query="Final Fantasy")
    assert titles(ranked) == ["Final Fantasy", "Final Fantasy VII", "Final Fantasy X"]


def test_bucket_beats_text_relevance():
    entries = [
        make_entry(1, "Witcher 3 Blood and Wine", type_code=2),
        make_entry(2, "The Witcher 3: Wild Hunt - Complete Edition", type_code=10),
        make_entry(3, "The Witcher 3: Wild Hunt", type_code=0),
        make_entry(4, "Witcher 3 Fan Mod", type_code=5),
        make_entry(5, "Witcher 3 Soundtrack", type_code=99),
    ]
    ranked = classify_and_sort(entries, query="witcher 3")
    assert [r.classification.bucket for r in ranked] == [
        GameKindBucket.MAINLINE,
        GameKindBucket.ENHANCED_RELEASE,
        GameKindBucket.ADDITIONAL_CONTENT,
        GameKindBucket.FAN_OR_FORK,
        GameKindBucket.OTHER,
    ]


def test_release_year_breaks_ties():
    entries = [
        make_entry(1, "Doom", release_year=2016),
        make_entry(2, "Doom", release_year=None),
        make_entry(3, "Doom", release_year=1993),
    ]
    ranked = classify_and_sort(entries, query="doom")
    assert [r.entry.external_id for r in ranked] == [3, 1, 2]


def test_without_query_keeps_input_order_within_bucket():
    entries = [
        make_entry(1, "Zeta", type_code=1),
        make_entry(2, "Beta"),
        make_entry(3, "Alpha", type_code=1),
        make_entry(4, "Gamma"),
    ]
    ranked = classify_and_sort(entries)
    assert [r.entry.external_id for r in ranked] == [2, 4, 1, 3]
    assert [r.entry.external_id for r in classify_and_sort(entries, query="   ")] == [2, 4, 1, 3]


def test_allowed_buckets_filter():
    entries = [
        make_entry(1, "Halo", type_code=0),
        make_entry(2, "Halo DLC", type_code=1),
        make_entry(3, "Halo Remastered", type_code=9),
    ]
    ranked = classify_and_sort(entries, query="halo", allowed_buckets=[GameKindBucket.ENHANCED_RELEASE])
    assert titles(ranked) == ["Halo Remastered"]
    assert len(classify_and_sort(entries, query="halo", allowed_buckets=[])) == 3


def test_mainline_and_enhanced_filter_keeps_relative_order():
    entries = [
        make_entry(1, "Halo 3", type_code=0),
        make_entry(2, "Halo: Reach - Noble Map Pack", type_code=1),
        make_entry(3, "Halo: The Master Chief Collection", type_code=3),
        make_entry(4, "Halo: Combat Evolved Anniversary", type_code=9),
        make_entry(5, "Halo Fan Remake", type_code=5),
        make_entry(6, "Halo", type_code=0),
        make_entry(7, "Halo 2 Anniversary", type_code=8),
        make_entry(8, "Halo Wars Episode", type_code=6),
        make_entry(9, "Halo Online", type_code=42),
    ]
    allowed = [GameKindBucket.MAINLINE, GameKindBucket.ENHANCED_RELEASE]

    everything = classify_and_sort(entries, query="halo")
    filtered = classify_and_sort(entries, query="halo", allowed_buckets=allowed)

    assert {r.classification.bucket for r in filtered} <= set(allowed)
    assert [r.entry.external_id for r in filtered] == [
        r.entry.external_id for r in everything if r.classification.bucket in allowed
    ]
    assert {r.entry.external_id for r in filtered} == {1, 4, 6, 7}


def test_ranked_entry_dict_includes_classification():
    ranked = classify_and_sort([make_entry(7, "Portal", release_year=2007)], query="portal")
    data = ranked[0].to_dict()
    assert data['externalId'] == 7
    assert data['classification']['bucket'] == 'mainline'
