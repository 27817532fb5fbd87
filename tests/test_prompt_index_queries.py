import copy

import pytest

from config.config_loader import IndexSettings
from data.backend import InMemoryBackend
from data.errors import NotFoundError
from data.prompt_index import PromptIndex


def ids(rows):
    return [p.id for p in rows]


def test_scenario_search_folder_and_counts(index):
    assert ids(index.filter(search="foo")) == ["1"]
    assert ids(index.filter(folder="Life")) == ["2"]
    assert index.counts_by_folder() == {"Work": 1, "Life": 1, "All": 2}


def test_load_does_not_mutate_input_and_copies(sample):
    records = sample
    records[0]["tags"] = ["X", "x", 5]
    original = copy.deepcopy(records)
    idx = PromptIndex(InMemoryBackend())
    idx.load(records)
    assert records == original
    assert idx.get("1").tags == ["x"]


def test_load_normalizes_tags_and_folders():
    idx = PromptIndex(InMemoryBackend())
    idx.load([
        {"id": "a", "title": "t", "content": "c", "tags": None},
        {"id": "b", "title": "t", "content": "c", "tags": '["One", "two"]', "folder": "work"},
        {"id": "c", "title": "t", "content": "c", "folder": "Somewhere Else"},
        {"id": "d", "title": "t", "content": "c", "folder": "All"},
    ])
    for p in idx.prompts:
        assert isinstance(p.tags, list)
        assert all(isinstance(t, str) for t in p.tags)
    assert idx.get("b").tags == ["one", "two"]
    assert idx.folder_name(idx.get("a")) == "Life"
    assert idx.folder_name(idx.get("b")) == "Work"
    assert idx.folder_name(idx.get("c")) == "Life"
    assert idx.folder_name(idx.get("d")) == "Life"


def test_load_skips_bad_records_without_raising():
    idx = PromptIndex(InMemoryBackend())
    n = idx.load([
        "garbage",
        {"title": "no id", "content": "c"},
        {"id": "ok", "title": "t", "content": "c"},
        {"id": "ok", "title": "dup", "content": "c"},
    ])
    assert n == 1
    assert idx.get("ok").title == "t"


def test_load_sorts_newest_first():
    idx = PromptIndex(InMemoryBackend())
    idx.load([
        {"id": "old", "title": "t", "content": "c", "created_at": "2023-01-01T00:00:00Z"},
        {"id": "undated", "title": "t", "content": "c"},
        {"id": "new", "title": "t", "content": "c", "created_at": "2024-01-01T00:00:00Z"},
    ])
    assert ids(idx.prompts) == ["new", "old", "undated"]


def test_filter_is_pure_and_idempotent(index):
    before = index.prompts
    first = index.filter(search="a", tag=None, folder=None)
    second = index.filter(search="a", tag=None, folder=None)
    assert first == second
    assert index.prompts == before


def test_search_covers_all_text_fields():
    idx = PromptIndex(InMemoryBackend())
    idx.load([
        {"id": "1", "title": "Alpha", "content": "c"},
        {"id": "2", "title": "t", "content": "has ALPHA inside"},
        {"id": "3", "title": "t", "content": "c", "best_for": "alphabet soup"},
        {"id": "4", "title": "t", "content": "c", "notes": "see Alpha"},
        {"id": "5", "title": "t", "content": "c", "tags": ["alpha-team"]},
        {"id": "6", "title": "t", "content": "c"},
    ])
    assert ids(idx.filter(search="ALPHA")) == ["1", "2", "3", "4", "5"]
    assert ids(idx.filter(search="   ")) == ["1", "2", "3", "4", "5", "6"]


def test_filter_combines_with_and(index):
    assert ids(index.filter(search="bar", tag="y", folder="Life")) == ["2"]
    assert index.filter(search="bar", tag="x") == []
    assert index.filter(folder="No Such Folder") == []
    assert ids(index.filter(folder="All")) == ["1", "2"]
    assert ids(index.filter(tag="X")) == ["1"]


def test_unique_tags_first_seen_without_duplicates():
    idx = PromptIndex(InMemoryBackend())
    idx.load([
        {"id": "1", "title": "t", "content": "c", "tags": ["b", "a"]},
        {"id": "2", "title": "t", "content": "c", "tags": ["a", "c", "b"]},
    ])
    tags = idx.unique_tags()
    assert tags == ["b", "a", "c"]
    assert len(tags) == len(set(tags))
    assert idx.unique_tags(limit=2) == ["b", "a"]
    with pytest.raises(ValueError):
        idx.unique_tags(limit=-1)


def test_recent_tags_uses_configured_limit(sample):
    idx = PromptIndex(InMemoryBackend(), IndexSettings(recent_tags=1))
    idx.load(sample)
    assert idx.recent_tags() == ["x"]


def test_counts_all_equals_sum(index):
    counts = index.counts_by_folder()
    total = counts.pop("All")
    assert total == sum(counts.values()) == len(index)


def test_list_page_tag_containment_and_paging():
    idx = PromptIndex(InMemoryBackend())
    idx.load([
        {"id": str(i), "title": "t", "content": "c", "tags": ["a", "b"] if i % 2 else ["a"],
         "created_at": f"2024-01-{i + 1:02d}T00:00:00Z"}
        for i in range(6)
    ])
    assert ids(idx.list_page(limit=2)) == ["5", "4"]
    assert ids(idx.list_page(limit=2, offset=2)) == ["3", "2"]
    assert ids(idx.list_page(tags=["A", "b"])) == ["5", "3", "1"]
    assert ids(idx.list_page(folder="Work")) == []


def test_get_unknown_raises(index):
    with pytest.raises(NotFoundError):
        index.get("nope")


def test_suggest_tags(index):
    assert index.suggest_tags("x") == ["x"]
    assert index.suggest_tags("x", selected=["x"]) == []


def test_tag_color_is_consistent(index):
    assert index.tag_color("urgent") == index.tag_color("urgent")
