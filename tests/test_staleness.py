from __future__ import annotations

import os
import sqlite3
import time
from pathlib import Path

from dirindex.indexer import Indexer
from dirindex.IndexStore import IndexStore
from dirindex.models import ScanOptions
from dirindex.staleness import StalenessOracle


def bump_mtime(path: Path, seconds: float = 5.0) -> None:
    st = os.stat(path)
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + int(seconds * 1e9)))


def test_missing_snapshot_is_stale(store: IndexStore, tree: Path) -> None:
    assert StalenessOracle(store).is_stale(tree)


def test_fresh_right_after_rebuild(indexer: Indexer, store: IndexStore, tree: Path) -> None:
    indexer.rebuild(tree)

    assert not StalenessOracle(store).is_stale(tree)


def test_adding_a_direct_child_makes_it_stale(indexer: Indexer, store: IndexStore, tree: Path) -> None:
    indexer.rebuild(tree)
    time.sleep(0.05)

    (tree / "new.txt").write_bytes(b"new")

    assert StalenessOracle(store).is_stale(tree)


def test_removing_a_direct_child_makes_it_stale(indexer: Indexer, store: IndexStore, tree: Path) -> None:
    indexer.rebuild(tree)
    time.sleep(0.05)

    (tree / "c.txt").unlink()

    assert StalenessOracle(store).is_stale(tree)


def test_in_place_edit_of_nested_file_is_a_known_gap(indexer: Indexer, store: IndexStore, tree: Path) -> None:
    """The root-mtime check does not see edits below the root that leave directory mtimes alone."""
    indexer.rebuild(tree)
    song = tree / "docs" / "deep" / "deeper" / "song.mp3"

    with song.open("r+b") as f:
        f.write(b"XYZ")
    bump_mtime(song)

    oracle = StalenessOracle(store)
    assert not oracle.is_stale(tree)
    assert oracle.is_stale(tree, deep=True)


def test_deep_check_sees_new_nested_file(indexer: Indexer, store: IndexStore, tree: Path) -> None:
    indexer.rebuild(tree)
    nested = tree / "docs" / "deep"

    (nested / "added.txt").write_bytes(b"added")
    bump_mtime(nested)

    oracle = StalenessOracle(store)
    assert not oracle.is_stale(tree)
    assert oracle.is_stale(tree, deep=True)


def test_deep_check_is_fresh_for_untouched_tree(indexer: Indexer, store: IndexStore, tree: Path) -> None:
    indexer.rebuild(tree)

    assert not StalenessOracle(store).is_stale(tree, deep=True)


def test_different_options_make_it_stale(indexer: Indexer, store: IndexStore, tree: Path) -> None:
    indexer.rebuild(tree, ScanOptions(recurse=False))
    oracle = StalenessOracle(store)

    assert not oracle.is_stale(tree, ScanOptions(recurse=False))
    assert oracle.is_stale(tree, ScanOptions(recurse=True))


def test_vanished_root_is_stale(indexer: Indexer, store: IndexStore, tmp_path: Path) -> None:
    root = tmp_path / "gone"
    root.mkdir()
    indexer.rebuild(root)
    root.rmdir()

    assert StalenessOracle(store).is_stale(root)


def test_store_errors_read_as_stale(indexer: Indexer, store: IndexStore, tree: Path, monkeypatch) -> None:
    indexer.rebuild(tree)

    def broken(path: str):
        raise sqlite3.OperationalError("database disk image is malformed")

    monkeypatch.setattr(store, "get_root_entry", broken)

    assert StalenessOracle(store).is_stale(tree)


def test_different_hash_limit_makes_it_stale(indexer: Indexer, store: IndexStore, tree: Path) -> None:
    indexer.rebuild(tree, ScanOptions(hash_size_limit=4))
    oracle = StalenessOracle(store)

    assert not oracle.is_stale(tree, ScanOptions(hash_size_limit=4))
    assert oracle.is_stale(tree, ScanOptions(hash_size_limit=100))
