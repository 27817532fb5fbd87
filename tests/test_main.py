import json

import pytest

import main


@pytest.fixture
def snapshot(tmp_path, sample):
    path = tmp_path / "prompts.json"
    path.write_text(json.dumps({"items": sample}), encoding="utf-8")
    return str(path)


def _run(capsys, *argv):
    assert main.main(list(argv)) == 0
    return json.loads(capsys.readouterr().out)


def test_search_command(snapshot, capsys):
    rows = _run(capsys, "--snapshot", snapshot, "search", "foo")
    assert [r["id"] for r in rows] == ["1"]
    assert rows[0]["folder"] == "Work"
    assert set(rows[0]["tag_colors"]) == {"x"}


def test_counts_and_tags(snapshot, capsys):
    assert _run(capsys, "--snapshot", snapshot, "counts") == {"Work": 1, "Life": 1, "All": 2}
    tags = _run(capsys, "--snapshot", snapshot, "tags", "--limit", "1")
    assert [t["tag"] for t in tags] == ["x"]


def test_page_command(snapshot, capsys):
    rows = _run(capsys, "--snapshot", snapshot, "page", "--folder", "Life")
    assert [r["id"] for r in rows] == ["2"]


def test_missing_snapshot_fails(tmp_path):
    assert main.main(["--snapshot", str(tmp_path / "missing.json"), "counts"]) == 1
