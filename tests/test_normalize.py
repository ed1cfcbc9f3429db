from __future__ import annotations

from estimate_engine.models import LibraryItem
from estimate_engine.normalize.library import best_matches, match_library_items, normalize, tokens


def test_normalize_units_and_numbers():
    assert normalize("Slab 150mm, 25MPa") == "slab 150 mm, 25 mpa"
    assert normalize("2 Cubic Metres of fill") == "2 m3 of fill"
    assert normalize("Half-height_wall") == "half height wall"


def test_tokens_drop_stopwords():
    assert tokens("Supply and install block wall") == ["block", "wall"]


def test_best_matches_ranks_closest_first():
    choices = ["Concrete slab on grade", "Block wall 190mm", "Steel beam"]
    out = best_matches("190 block wall", choices, limit=2)
    assert out[0] == ("Block wall 190mm", 100)
    assert len(out) == 2


def test_match_library_items_skips_drafts_and_weak_hits():
    items = [
        LibraryItem(id="a", code="A1", name="Concrete slab 150mm"),
        LibraryItem(id="b", code="B1", name="Concrete slab 150mm topping", status="draft"),
        LibraryItem(id="c", code="C1", name="Roof sheeting"),
    ]
    out = match_library_items("slab 150", items, min_score=60)
    assert [i.id for i, _ in out] == ["a"]


def test_match_library_items_exact_code_first():
    items = [
        LibraryItem(id="a", code="WALL-1", name="Block wall"),
        LibraryItem(id="b", code="WALL-2", name="Block wall rendered"),
    ]
    out = match_library_items("wall-2", items)
    assert out[0][0].id == "b"
    assert out[0][1] == 100


def test_match_library_items_empty_query():
    assert match_library_items("   ", [LibraryItem(id="a", code="A", name="x")]) == []
