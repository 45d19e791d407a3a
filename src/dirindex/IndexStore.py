import os
import sqlite3
from collections.abc import Iterable, Sequence
from typing import cast

from .index_db import IndexDB
from .models import (
    ContentStats,
    EntryKind,
    FileStats,
    IndexedRoot,
    IndexEntry,
    StatusSnapshot,
)
from .sql import entries, roots, stats


def descendant_bounds(root: str) -> tuple[str, str]:
    """
    Return the half-open string range holding every path strictly below `root`.

    Paths are compared as strings, so `/data/foo/` up to (but excluding)
    `/data/foo0` covers `/data/foo/...` and never `/data/foobar`.
    """
    prefix: str = root if root.endswith(os.sep) else root + os.sep
    upper: str = prefix[:-1] + chr(ord(os.sep) + 1)
    return prefix, upper


def row_to_entry(row: sqlite3.Row) -> IndexEntry:
    return IndexEntry(
        path=cast(str, row["path"]),
        parent_path=cast(str | None, row["parent_path"]),
        name=cast(str, row["name"]),
        kind=EntryKind(row["kind"]),
        size=cast(int, row["size"]),
        extension=cast(str, row["extension"]),
        mtime=cast(int, row["mtime"]),
        ctime=cast(int, row["ctime"]),
        indexed_at=cast(int, row["indexed_at"]),
        content_hash=cast(str | None, row["content_hash"]),
        listed=bool(row["listed"]),
    )


def row_to_root(row: sqlite3.Row) -> IndexedRoot:
    return IndexedRoot(
        path=cast(str, row["path"]),
        indexed_at=cast(int, row["indexed_at"]),
        recurse=bool(row["recurse"]),
        max_depth=cast(int | None, row["max_depth"]),
        include_hidden=bool(row["include_hidden"]),
        hash_size_limit=cast(int, row["hash_size_limit"]),
        entry_count=cast(int, row["entry_count"]),
    )


class IndexStore:
    def __init__(self, index_db: IndexDB) -> None:
        self.db: IndexDB = index_db

    def begin(self) -> None:
        self.db.begin()

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    def scope(self, root: str, recurse: bool) -> tuple[str, tuple[object, ...]]:
        """Return the WHERE fragment and parameters selecting what lies under `root`."""
        if recurse:
            lower, upper = descendant_bounds(root)
            return stats.SCOPE_DESCENDANTS, (lower, upper, root)
        return stats.SCOPE_CHILDREN, (root,)

    # --- writes -------------------------------------------------------------

    def upsert_entries(self, batch: Sequence[IndexEntry]) -> None:
        self.db.executemany(entries.UPSERT_ENTRY, [entry.as_row() for entry in batch])

    def clear_staging(self) -> None:
        self.db.execute(sql=entries.CLEAR_STAGING)

    def stage_entries(self, batch: Sequence[IndexEntry]) -> None:
        self.db.executemany(entries.STAGE_ENTRY, [entry.as_row() for entry in batch])

    def swap_in_subtree(self, root: IndexedRoot) -> None:
        """
        Replace the snapshot of `root.path` with the staged rows.

        Runs as one transaction: old rows under the root are deleted, the staged
        rows are copied in with the root row last, the roots table is updated
        and staging is cleared.
        """
        lower, upper = descendant_bounds(root.path)

        with self.db.transaction():
            self.db.execute(sql=entries.DELETE_SUBTREE, params=(root.path, lower, upper))
            self.db.execute(sql=entries.COPY_STAGED, params=(root.path,))
            self.db.execute(sql=roots.DELETE_NESTED_ROOTS, params=(lower, upper, root.path))
            self.db.execute(
                sql=roots.UPSERT_ROOT,
                params=(
                    root.path,
                    root.indexed_at,
                    int(root.recurse),
                    root.max_depth,
                    int(root.include_hidden),
                    root.hash_size_limit,
                    root.entry_count,
                ),
            )
            self.db.execute(sql=entries.CLEAR_STAGING)

    def delete_subtree(self, path_prefix: str) -> int:
        lower, upper = descendant_bounds(path_prefix)
        return self.db.execute(sql=entries.DELETE_SUBTREE, params=(path_prefix, lower, upper))

    def delete_paths(self, paths: Iterable[str]) -> None:
        self.db.executemany(entries.DELETE_PATH, [(path,) for path in paths])

    # --- reads --------------------------------------------------------------

    def get_entry(self, path: str) -> IndexEntry | None:
        row: sqlite3.Row | None = self.db.query_one(sql=entries.SELECT_ENTRY, params=(path,))
        return row_to_entry(row) if row is not None else None

    def get_root_entry(self, path: str) -> IndexEntry | None:
        row: sqlite3.Row | None = self.db.query_one(sql=entries.SELECT_ROOT_DIR, params=(path,))
        return row_to_entry(row) if row is not None else None

    def get_indexed_root(self, path: str) -> IndexedRoot | None:
        row: sqlite3.Row | None = self.db.query_one(sql=roots.SELECT_ROOT, params=(path,))
        return row_to_root(row) if row is not None else None

    def list_roots(self) -> list[IndexedRoot]:
        return [row_to_root(row) for row in self.db.query_all(sql=roots.SELECT_ROOTS)]

    def max_indexed_at(self, root: str) -> int | None:
        lower, upper = descendant_bounds(root)
        row: sqlite3.Row | None = self.db.query_one(sql=entries.MAX_INDEXED_AT, params=(root, lower, upper))
        assert row is not None
        return cast(int | None, row["max_indexed_at"])

    def subtree_entries(self, root: str, kind: EntryKind | None = None) -> list[IndexEntry]:
        """All entries strictly below `root`, sorted by path."""
        lower, upper = descendant_bounds(root)

        if kind is None:
            rows = self.db.query_all(sql=entries.SELECT_SUBTREE, params=(root, lower, upper, root))
        else:
            rows = self.db.query_all(
                sql=entries.SELECT_SUBTREE_BY_KIND, params=(root, lower, upper, root, kind.value)
            )

        return [row_to_entry(row) for row in rows]

    def scoped_entries(self, root: str, *, recurse: bool, kind: EntryKind) -> list[IndexEntry]:
        if recurse:
            return self.subtree_entries(root, kind)

        rows = self.db.query_all(sql=entries.SELECT_CHILDREN_BY_KIND, params=(root, kind.value))
        return [row_to_entry(row) for row in rows]

    def totals(self, root: str, *, recurse: bool) -> tuple[int, int, int]:
        where, params = self.scope(root, recurse)
        row: sqlite3.Row | None = self.db.query_one(sql=stats.TOTALS.format(scope=where), params=params)

        assert row is not None

        return (
            cast(int, row["total_files"]),
            cast(int, row["total_folders"]),
            cast(int, row["total_size"]),
        )

    def extension_rollup(self, root: str, *, recurse: bool) -> list[tuple[str, int, int]]:
        where, params = self.scope(root, recurse)
        rows = self.db.query_all(sql=stats.BY_EXTENSION.format(scope=where), params=params)

        return [
            (cast(str, row["extension"]), cast(int, row["file_count"]), cast(int, row["total_bytes"]))
            for row in rows
        ]

    def file_paths(self, root: str, *, recurse: bool) -> list[tuple[str, str]]:
        where, params = self.scope(root, recurse)
        rows = self.db.query_all(sql=stats.FILE_PATHS.format(scope=where), params=params)

        return [(cast(str, row["path"]), cast(str, row["extension"])) for row in rows]

    def largest_files(self, root: str, *, recurse: bool, limit: int) -> list[IndexEntry]:
        where, params = self.scope(root, recurse)
        rows = self.db.query_all(sql=stats.LARGEST_FILES.format(scope=where), params=(*params, limit))

        return [row_to_entry(row) for row in rows]

    def duplicate_members(self, root: str, *, recurse: bool) -> list[tuple[str, int, str]]:
        """(path, size, content_hash) for every file sharing its hash with another in scope."""
        where, params = self.scope(root, recurse)
        rows = self.db.query_all(
            sql=stats.DUPLICATE_MEMBERS.format(scope=where), params=(*params, *params)
        )

        return [
            (cast(str, row["path"]), cast(int, row["size"]), cast(str, row["content_hash"]))
            for row in rows
        ]

    def directory_tree(self, root: str) -> tuple[list[tuple[str, str | None, bool]], set[str]]:
        """
        Return every directory below `root` as (path, parent_path, listed) and
        the set of directories that directly contain a file.
        """
        lower, upper = descendant_bounds(root)
        dir_rows = self.db.query_all(sql=stats.DIRECTORIES, params=(lower, upper, root))
        parent_rows = self.db.query_all(sql=stats.FILE_PARENTS, params=(lower, upper, root))

        dirs: list[tuple[str, str | None, bool]] = [
            (cast(str, row["path"]), cast(str | None, row["parent_path"]), bool(row["listed"]))
            for row in dir_rows
        ]
        parents: set[str] = {cast(str, row["parent_path"]) for row in parent_rows}

        return dirs, parents

    # --- status -------------------------------------------------------------

    def _get_file_stats(self) -> FileStats:
        row: sqlite3.Row | None = self.db.query_one(
            """
            SELECT
            COUNT(*) AS total_entries,
            COALESCE(SUM(kind = 'file'), 0) AS total_files,
            COALESCE(SUM(kind = 'directory'), 0) AS total_dirs,
            COALESCE(SUM(size), 0) AS total_bytes,
            MAX(indexed_at) AS last_indexed_at
            FROM entries;
            """
        )

        assert row is not None

        return FileStats(
            total_entries=cast(int, row["total_entries"]),
            total_files=cast(int, row["total_files"]),
            total_dirs=cast(int, row["total_dirs"]),
            total_bytes=cast(int, row["total_bytes"]),
            last_indexed_at=cast(int | None, row["last_indexed_at"]),
        )

    def _get_content_stats(self) -> ContentStats:
        row = self.db.query_one(
            """
            WITH per_hash AS (
            SELECT content_hash, COUNT(*) AS n
            FROM entries
            WHERE kind = 'file' AND content_hash IS NOT NULL
            GROUP BY content_hash
            )
            SELECT
            (SELECT COUNT(*) FROM entries WHERE kind = 'file' AND content_hash IS NOT NULL)
                AS hashed_files,
            (SELECT COUNT(*) FROM entries WHERE kind = 'file' AND content_hash IS NULL)
                AS unhashed_files,
            (SELECT COUNT(*) FROM per_hash WHERE n > 1) AS duplicate_groups,
            (SELECT COALESCE(SUM(n), 0) FROM per_hash WHERE n > 1) AS duplicate_files;
            """
        )

        assert row is not None

        return ContentStats(
            hashed_files=cast(int, row["hashed_files"]),
            unhashed_files=cast(int, row["unhashed_files"]),
            duplicate_groups=cast(int, row["duplicate_groups"]),
            duplicate_files=cast(int, row["duplicate_files"]),
        )

    def _get_integrity_stats(self) -> tuple[int, int]:
        row = self.db.query_one(
            """
            SELECT
            (SELECT COUNT(*) FROM entries
                WHERE path NOT IN (SELECT path FROM roots)
                AND parent_path NOT IN (SELECT path FROM entries WHERE kind = 'directory'))
                AS orphaned_entries,
            (SELECT COUNT(*) FROM staging_entries) AS staged_entries;
            """
        )

        assert row is not None

        return cast(int, row["orphaned_entries"]), cast(int, row["staged_entries"])

    def get_status_snapshot(self) -> StatusSnapshot:
        files: FileStats = self._get_file_stats()
        content: ContentStats = self._get_content_stats()
        orphaned_entries, staged_entries = self._get_integrity_stats()

        return StatusSnapshot(
            roots=self.list_roots(),
            last_indexed_at=files.last_indexed_at,
            total_entries=files.total_entries,
            total_files=files.total_files,
            total_dirs=files.total_dirs,
            total_bytes=files.total_bytes,
            hashed_files=content.hashed_files,
            unhashed_files=content.unhashed_files,
            duplicate_groups=content.duplicate_groups,
            duplicate_files=content.duplicate_files,
            orphaned_entries=orphaned_entries,
            staged_entries=staged_entries,
        )
