from __future__ import annotations

import fcntl
import os
import threading
from pathlib import Path

import pytest

from dirindex.errors import RootUnavailable, ScanCancelled
from dirindex.indexer import Indexer
from dirindex.IndexStore import IndexStore, descendant_bounds
from dirindex.models import EntryKind, IndexEntry, ScanOptions
from dirindex.scanner import PathScanner


def snapshot(store: IndexStore, root: Path) -> dict[str, str | None]:
    return {e.path: e.content_hash for e in store.subtree_entries(str(root))}


def make_entry(path: str, kind: EntryKind = EntryKind.FILE, size: int = 1, indexed_at: int = 1) -> IndexEntry:
    return IndexEntry(
        path=path,
        parent_path=os.path.dirname(path),
        name=os.path.basename(path),
        kind=kind,
        size=size,
        extension=os.path.splitext(path)[1],
        mtime=1,
        ctime=1,
        indexed_at=indexed_at,
        content_hash="h" if kind is EntryKind.FILE else None,
    )


def test_rebuild_persists_every_entry(indexer: Indexer, store: IndexStore, tree: Path) -> None:
    result = indexer.rebuild(tree)

    assert result.entries_written == 12
    assert result.failures == []
    root_entry = store.get_root_entry(str(tree))
    assert root_entry is not None and root_entry.listed
    assert len(store.subtree_entries(str(tree))) == 11

    indexed_root = store.get_indexed_root(str(tree))
    assert indexed_root is not None
    assert indexed_root.entry_count == 12
    assert indexed_root.indexed_at == result.indexed_at


def test_every_file_parent_is_an_indexed_directory(indexer: Indexer, store: IndexStore, tree: Path) -> None:
    indexer.rebuild(tree)

    dirs = {e.path for e in store.subtree_entries(str(tree), EntryKind.DIRECTORY)} | {str(tree)}
    for entry in store.subtree_entries(str(tree), EntryKind.FILE):
        assert entry.parent_path in dirs


def test_rebuild_is_idempotent(indexer: Indexer, store: IndexStore, tree: Path) -> None:
    indexer.rebuild(tree)
    first = snapshot(store, tree)

    indexer.rebuild(tree)
    second = snapshot(store, tree)

    assert first == second


def test_rebuild_drops_rows_for_deleted_paths(indexer: Indexer, store: IndexStore, tree: Path) -> None:
    indexer.rebuild(tree)
    (tree / "c.txt").unlink()
    (tree / "empty" / "nested").rmdir()

    indexer.rebuild(tree)

    assert store.get_entry(str(tree / "c.txt")) is None
    assert store.get_entry(str(tree / "empty" / "nested")) is None


def test_indexed_at_never_goes_backwards(indexer: Indexer, store: IndexStore, tree: Path, monkeypatch) -> None:
    first = indexer.rebuild(tree)

    monkeypatch.setattr("dirindex.indexer.now_ms", lambda: 1)
    second = indexer.rebuild(tree)

    assert second.indexed_at >= first.indexed_at
    assert all(e.indexed_at >= first.indexed_at for e in store.subtree_entries(str(tree)))


def test_upsert_replaces_rather_than_duplicates(indexer: Indexer, store: IndexStore) -> None:
    written = indexer.upsert([make_entry("/data/a.txt", size=1), make_entry("/data/b.txt")])
    indexer.upsert([make_entry("/data/a.txt", size=99, indexed_at=2)])

    entry = store.get_entry("/data/a.txt")
    assert written == 2
    assert entry is not None and entry.size == 99 and entry.indexed_at == 2
    assert len(store.subtree_entries("/data")) == 2


def test_delete_subtree_respects_separator_boundaries(indexer: Indexer, store: IndexStore) -> None:
    indexer.upsert(
        [
            make_entry("/data/foo", EntryKind.DIRECTORY),
            make_entry("/data/foo/a.txt"),
            make_entry("/data/foo/sub/b.txt"),
            make_entry("/data/foobar", EntryKind.DIRECTORY),
            make_entry("/data/foobar/c.txt"),
            make_entry("/data/foo.txt"),
        ]
    )

    deleted = indexer.delete_subtree("/data/foo")

    assert deleted == 3
    remaining = sorted(e.path for e in store.subtree_entries("/data"))
    assert remaining == ["/data/foo.txt", "/data/foobar", "/data/foobar/c.txt"]


def test_descendant_bounds_exclude_sibling_prefixes() -> None:
    lower, upper = descendant_bounds("/data/foo")

    assert lower <= "/data/foo/x" < upper
    assert not (lower <= "/data/foobar" < upper)
    assert not (lower <= "/data/foo.txt" < upper)
    assert descendant_bounds("/data/foo/") == (lower, upper)


def test_cancelled_rebuild_keeps_previous_snapshot(
    indexer: Indexer, store: IndexStore, tree: Path
) -> None:
    indexer.rebuild(tree)
    before = snapshot(store, tree)
    (tree / "new.txt").write_bytes(b"new")

    cancel = threading.Event()
    cancel.set()
    with pytest.raises(ScanCancelled):
        indexer.rebuild(tree, cancel=cancel)

    assert snapshot(store, tree) == before
    assert store.get_status_snapshot().staged_entries == 0


def test_failed_rebuild_of_missing_root_changes_nothing(
    indexer: Indexer, store: IndexStore, tree: Path, tmp_path: Path
) -> None:
    indexer.rebuild(tree)
    before = snapshot(store, tree)

    with pytest.raises(RootUnavailable):
        indexer.rebuild(tmp_path / "missing")

    assert snapshot(store, tree) == before


def test_rebuild_of_subtree_leaves_the_rest_alone(indexer: Indexer, store: IndexStore, tree: Path) -> None:
    indexer.rebuild(tree)
    (tree / "docs" / "extra.txt").write_bytes(b"extra")
    (tree / "a.txt").unlink()

    indexer.rebuild(tree / "docs")

    assert store.get_entry(str(tree / "docs" / "extra.txt")) is not None
    # a.txt is outside the rebuilt subtree, so its row survives until the root is rebuilt
    assert store.get_entry(str(tree / "a.txt")) is not None
    assert store.get_root_entry(str(tree / "docs")) is not None


def test_non_recursive_rebuild_records_options(indexer: Indexer, store: IndexStore, tree: Path) -> None:
    indexer.rebuild(tree, ScanOptions(recurse=False))

    indexed_root = store.get_indexed_root(str(tree))
    assert indexed_root is not None and not indexed_root.recurse
    assert store.get_entry(str(tree / "docs" / "report.pdf")) is None
    docs = store.get_entry(str(tree / "docs"))
    assert docs is not None and not docs.listed


def test_ensure_fresh_skips_unchanged_tree(indexer: Indexer, tree: Path) -> None:
    assert indexer.ensure_fresh(tree) is not None
    assert indexer.ensure_fresh(tree) is None
    assert indexer.ensure_fresh(tree, force=True) is not None


def lock_is_held(lock_file: Path) -> bool:
    with open(lock_file, "a") as f:
        try:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return True
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        return False


def test_rebuild_holds_the_lock_file(store: IndexStore, scanner: PathScanner, tree: Path, tmp_path: Path) -> None:
    lock_file = tmp_path / "index.db.lock"
    seen: list[bool] = []

    class Spy(PathScanner):
        def stream(self, *args, **kwargs):  # type: ignore[no-untyped-def]
            seen.append(lock_is_held(lock_file))
            return super().stream(*args, **kwargs)

    indexer = Indexer(store, Spy(max_workers=2), lock_file=lock_file)
    indexer.rebuild(tree)
    indexer.rebuild(tree)

    assert seen == [True, True]
    # The file stays so every process keeps locking the same inode.
    assert lock_file.exists()
    assert not lock_is_held(lock_file)


def test_ensure_fresh_rehashes_under_a_larger_limit(indexer: Indexer, store: IndexStore, tree: Path) -> None:
    report = str(tree / "docs" / "report.pdf")
    indexer.rebuild(tree, ScanOptions(hash_size_limit=4))
    assert store.get_entry(report).content_hash is None

    result = indexer.ensure_fresh(tree, ScanOptions(hash_size_limit=100))

    assert result is not None
    assert store.get_entry(report).content_hash is not None
    assert store.get_indexed_root(str(tree)).hash_size_limit == 100
