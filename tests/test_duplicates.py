from __future__ import annotations

import hashlib
from pathlib import Path

from dirindex.duplicates import DuplicateDetector, build_groups, group_entries, wasted_bytes
from dirindex.indexer import Indexer
from dirindex.IndexStore import IndexStore
from dirindex.models import DuplicateGroup, ScanOptions
from dirindex.scanner import PathScanner


def test_identical_files_form_one_group(indexer: Indexer, store: IndexStore, tree: Path) -> None:
    indexer.rebuild(tree)

    groups = DuplicateDetector(store).find_duplicates(tree)

    assert groups == [
        DuplicateGroup(
            content_hash=hashlib.md5(b"same").hexdigest(),
            member_paths=[str(tree / "a.txt"), str(tree / "b.txt")],
            count=2,
            size=4,
        )
    ]


def test_files_over_the_hash_limit_never_match(indexer: Indexer, store: IndexStore, tree: Path) -> None:
    indexer.rebuild(tree, ScanOptions(hash_size_limit=3))

    assert DuplicateDetector(store).find_duplicates(tree) == []
    assert store.get_entry(str(tree / "a.txt")).content_hash is None
    assert store.get_entry(str(tree / "docs" / "deep" / "deeper" / "song.mp3")).content_hash is not None


def test_groups_span_directories_and_respect_scope(indexer: Indexer, store: IndexStore, tree: Path) -> None:
    (tree / "docs" / "copy.txt").write_bytes(b"same")
    indexer.rebuild(tree)
    detector = DuplicateDetector(store)

    [group] = detector.find_duplicates(tree)
    assert group.count == 3
    assert str(tree / "docs" / "copy.txt") in group.member_paths

    [shallow] = detector.find_duplicates(tree, recurse=False)
    assert shallow.member_paths == [str(tree / "a.txt"), str(tree / "b.txt")]

    assert detector.find_duplicates(tree / "docs") == []


def test_scan_entries_group_like_the_store(indexer: Indexer, store: IndexStore, scanner: PathScanner, tree: Path) -> None:
    indexer.rebuild(tree)
    result = scanner.scan(tree)

    assert group_entries(result.files) == DuplicateDetector(store).find_duplicates(tree)


def test_build_groups_is_order_independent() -> None:
    members = [("/r/z", 5, "h1"), ("/r/b", 2, "h2"), ("/r/a", 5, "h1"), ("/r/c", 2, "h2"), ("/r/u", 1, "h3")]

    forward = build_groups(members)
    backward = build_groups(reversed(members))

    assert forward == backward
    assert [g.member_paths for g in forward] == [["/r/a", "/r/z"], ["/r/b", "/r/c"]]


def test_wasted_bytes() -> None:
    groups = [
        DuplicateGroup(content_hash="h1", member_paths=["/a", "/b", "/c"], count=3, size=10),
        DuplicateGroup(content_hash="h2", member_paths=["/d", "/e"], count=2, size=7),
    ]

    assert wasted_bytes(groups) == 27
    assert wasted_bytes([]) == 0
