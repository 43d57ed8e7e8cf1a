"""
Tests for source scanning and indexing.
"""
import logging
import os
import threading
import pytest
from unittest.mock import patch

from manifest_copier.exceptions import ScanError
from manifest_copier.scanner import FileScanner, search_key, unique_destination

from conftest import make_file


@pytest.mark.parametrize("filename,ignore_ext,fold,expected", [
    ("IMG_01.JPG", False, False, "IMG_01.JPG"),
    ("IMG_01.JPG", True, False, "IMG_01"),
    ("IMG_01.JPG", False, True, "img_01.jpg"),
    ("IMG_01.JPG", True, True, "img_01"),
    ("archive.tar.gz", True, False, "archive.tar"),
    ("README", True, False, "README"),
])
def test_search_key(filename, ignore_ext, fold, expected):
    """Test search key normalization under each matching option."""
    assert search_key(filename, ignore_ext, fold) == expected


def test_scan_lists_nested_files(photo_tree):
    """Test that scanning recurses and returns absolute paths."""
    files = FileScanner().scan(photo_tree)
    names = sorted(os.path.basename(f) for f in files)
    assert names == ["a.jpg", "b.jpg", "c.NEF", "d.png"]
    assert all(os.path.isabs(f) for f in files)


def test_scan_missing_root_returns_empty(tmp_path):
    """Test that a missing root yields no files."""
    assert FileScanner().scan(tmp_path / "missing") == []


def test_scan_file_root_raises(tmp_path):
    """Test that a file given as root is rejected."""
    path = make_file(tmp_path, "file.txt")
    with pytest.raises(ScanError):
        FileScanner().scan(path)


def test_scan_stops_when_cancelled(photo_tree):
    """Test that a set cancel event stops scanning."""
    event = threading.Event()
    event.set()
    assert FileScanner().scan(photo_tree, event) == []


def test_index_lookup_respects_options(build_index):
    """Test exact, extension-less and case-insensitive lookups."""
    exact = build_index()
    assert exact.lookup("a.jpg").endswith("a.jpg")
    assert exact.lookup("A.JPG") is None
    assert exact.lookup("c") is None

    loose = build_index(ignore_extension=True, case_insensitive=True)
    assert loose.lookup("C.nef").endswith("c.NEF")
    assert loose.lookup("c").endswith("c.NEF")
    assert loose.lookup("A.PNG").endswith("a.jpg")
    assert "e.jpg" not in loose


def test_index_first_entry_wins(source_dir):
    """Test that the first file in scan order keeps a shared key."""
    make_file(source_dir, "a/photo.jpg", b"first")
    make_file(source_dir, "b/photo.jpg", b"second")
    scanner = FileScanner()
    index = scanner.build_index(scanner.scan(source_dir))

    assert len(index) == 1
    assert index.shadowed == 1
    assert index.lookup("photo.jpg") == os.path.join(str(source_dir), "a", "photo.jpg")


def test_unique_destination_skips_existing_and_reserved(tmp_path):
    """Test that renaming picks the first free _N suffix."""
    make_file(tmp_path, "a.jpg")
    make_file(tmp_path, "a_1.jpg")
    target = str(tmp_path / "a.jpg")

    assert unique_destination(target) == str(tmp_path / "a_2.jpg")
    assert unique_destination(target, {str(tmp_path / "a_2.jpg")}) == str(tmp_path / "a_3.jpg")
    assert unique_destination(str(tmp_path / "b.jpg")) == str(tmp_path / "b.jpg")


def test_unreadable_subtree_does_not_stop_scan(photo_tree, caplog):
    """Test that one unreadable folder is logged and the rest is still indexed."""
    real_scandir = os.scandir
    blocked = os.path.join(str(photo_tree), "2024")

    def scandir(path):
        if path == blocked:
            raise PermissionError(13, "Permission denied", path)
        return real_scandir(path)

    caplog.set_level(logging.WARNING, logger="manifest_copier.scanner")
    with patch("manifest_copier.scanner.os.scandir", side_effect=scandir):
        files = FileScanner().scan(photo_tree)

    assert sorted(os.path.basename(f) for f in files) == ["a.jpg", "b.jpg"]
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert blocked in warnings[0].getMessage()


def test_scan_order_is_depth_first_and_sorted(photo_tree):
    """Test that files come out folder by folder in name order."""
    files = FileScanner().scan(photo_tree)
    relative = [os.path.relpath(f, str(photo_tree)).replace(os.sep, "/") for f in files]
    assert relative == ["2023/a.jpg", "2023/b.jpg", "2024/d.png", "2024/raw/c.NEF"]


def test_scan_skips_non_files(photo_tree):
    """Test that only regular files are listed."""
    (photo_tree / "empty_folder").mkdir()
    os.symlink(str(photo_tree / "2023"), str(photo_tree / "linked_folder"))

    names = sorted(os.path.basename(f) for f in FileScanner().scan(photo_tree))
    assert names == ["a.jpg", "b.jpg", "c.NEF", "d.png"]


def test_building_the_index_twice_gives_the_same_mapping(photo_tree):
    """Test that indexing is repeatable for the same scan."""
    scanner = FileScanner()
    paths = scanner.scan(photo_tree)

    first = scanner.build_index(paths, ignore_extension=True, case_insensitive=True)
    second = scanner.build_index(paths, ignore_extension=True, case_insensitive=True)

    assert first.as_dict() == second.as_dict()
    assert scanner.scan(photo_tree) == paths
