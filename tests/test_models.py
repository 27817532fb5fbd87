import pytest
from pydantic import ValidationError

from models.prompt import Folder, Prompt, PromptDraft, PromptPatch


def test_prompt_cleans_tags_and_stringifies_id():
    p = Prompt.model_validate({"id": 7, "title": "t", "content": "c", "tags": '["A", "a", "B"]'})
    assert p.id == "7"
    assert p.tags == ["a", "b"]
    assert p.is_favorite is False


def test_prompt_null_tags_become_empty_list():
    p = Prompt.model_validate({"id": "1", "title": "t", "content": "c", "tags": None})
    assert p.tags == []


def test_prompt_is_read_only():
    p = Prompt(id="1", title="t", content="c")
    with pytest.raises(ValidationError):
        p.title = "changed"


@pytest.mark.parametrize("field,value", [
    ("title", ""),
    ("title", "x" * 101),
    ("content", "x" * 10_001),
    ("best_for", "x" * 101),
    ("notes", "x" * 1_001),
])
def test_draft_bounds(field, value):
    data = {"title": "ok", "content": "ok", field: value}
    with pytest.raises(ValidationError):
        PromptDraft.model_validate(data)


def test_draft_strips_and_rejects_unknown_fields():
    d = PromptDraft(title="  Hello ", content="body", tags=["X", "x"])
    assert d.title == "Hello"
    assert d.tags == ["x"]
    with pytest.raises(ValidationError):
        PromptDraft.model_validate({"title": "a", "content": "b", "id": "nope"})


def test_patch_keeps_unset_fields_unset():
    patch = PromptPatch(title="New")
    assert patch.model_dump(exclude_unset=True) == {"title": "New"}
    with pytest.raises(ValidationError):
        PromptPatch(title=None)
    with pytest.raises(ValidationError):
        PromptPatch(is_favorite=None)


def test_folder_name_bounds():
    assert Folder(id="f", name="  Research ").name == "Research"
    with pytest.raises(ValidationError):
        Folder(id="f", name="x" * 51)
    with pytest.raises(ValidationError):
        Folder(id="f", name="")
