import re

import pytest

from onedrive_uploader.errors import FileSystemError
from onedrive_uploader.file_handler import (
    WalkMode,
    parse_pattern,
    should_exclude_path,
    validate_name,
    walk,
)
from onedrive_uploader.monitoring import upload_stats


@pytest.fixture
def tree(tmp_path):
    (tmp_path / "b_dir" / "nested").mkdir(parents=True)
    (tmp_path / "a.txt").write_bytes(b"aaa")
    (tmp_path / "b_dir" / "c.jpg").write_bytes(b"c" * 10)
    (tmp_path / "b_dir" / "nested" / "d.JPG").write_bytes(b"")
    (tmp_path / "bad.").mkdir()
    (tmp_path / "bad." / "hidden.txt").write_bytes(b"x")
    (tmp_path / "what?.txt").write_bytes(b"x")
    (tmp_path / "__pycache__").mkdir()
    (tmp_path / "__pycache__" / "m.pyc").write_bytes(b"x")
    return tmp_path


def test_walk_is_depth_first_in_name_order(tree):
    entries = list(walk(str(tree), exclude_patterns=["__pycache__"]))

    assert [(e.rel_path, e.is_file) for e in entries] == [
        ("a.txt", True),
        ("b_dir", False),
        ("b_dir/c.jpg", True),
        ("b_dir/nested", False),
        ("b_dir/nested/d.JPG", True),
    ]


def test_entry_fields(tree):
    entries = {e.rel_path: e for e in walk(str(tree))}

    c = entries["b_dir/c.jpg"]
    assert c.filename == "c.jpg"
    assert c.size == 10
    assert c.rel_dir == "b_dir"
    assert c.absolute_path == str(tree / "b_dir" / "c.jpg")
    assert entries["b_dir"].rel_dir == ""


def test_illegal_names_are_skipped_with_their_subtree(tree, capsys):
    paths = [e.rel_path for e in walk(str(tree))]

    assert "bad." not in paths
    assert "bad./hidden.txt" not in paths
    assert "what?.txt" not in paths
    assert upload_stats.stats["skipped_entries"] == 2
    assert "Skipping bad." in capsys.readouterr().out


def test_quiet_walk_does_not_count_skips(tree):
    list(walk(str(tree), quiet=True))

    assert upload_stats.stats["skipped_entries"] == 0


def test_modes_filter_entry_kinds(tree):
    folders = [e.rel_path for e in walk(str(tree), mode=WalkMode.FOLDERS, exclude_patterns=["__pycache__"])]
    files = [e.rel_path for e in walk(str(tree), mode=WalkMode.FILES, exclude_patterns=["__pycache__"])]

    assert folders == ["b_dir", "b_dir/nested"]
    assert files == ["a.txt", "b_dir/c.jpg", "b_dir/nested/d.JPG"]


def test_pattern_filters_names_but_not_traversal(tree):
    pattern = parse_pattern("/\\.jpg$/i")

    files = [e.rel_path for e in walk(str(tree), pattern=pattern, mode=WalkMode.FILES)]

    assert files == ["b_dir/c.jpg", "b_dir/nested/d.JPG"]


def test_walk_is_lazy(tree):
    walker = walk(str(tree))

    assert next(walker).rel_path == "a.txt"


def test_missing_base_directory_yields_nothing(tmp_path):
    assert list(walk(str(tmp_path / "missing"))) == []


@pytest.mark.parametrize("name", ["a:b", "a|b", "a*b", "a<b", "a>b", "a?b", "a\\b", "ends."])
def test_validate_name_rejects_illegal_names(name):
    with pytest.raises(FileSystemError):
        validate_name(name)


def test_validate_name_accepts_regular_names():
    validate_name("report 2024.final.pdf")
    validate_name(".hidden")


def test_parse_pattern_forms():
    assert parse_pattern("") is None
    assert parse_pattern("/abc/").flags & re.IGNORECASE == 0
    assert parse_pattern("/abc/i").flags & re.IGNORECASE
    assert parse_pattern("\\.mp4$").search("clip.mp4")
    with pytest.raises(ValueError):
        parse_pattern("/([/")


def test_should_exclude_path():
    assert should_exclude_path("file.tmp", ["*.tmp"])
    assert should_exclude_path("src/__pycache__/module.pyc", ["__pycache__"])
    assert should_exclude_path("logs/app.log", ["log"])
    assert not should_exclude_path("docs/report.pdf", ["*.tmp", "log"])
    assert not should_exclude_path("docs/report.pdf", [])
