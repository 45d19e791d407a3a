import logging
import os
import sqlite3

from .errors import IndexUnavailable
from .IndexStore import IndexStore
from .models import IndexedRoot, IndexEntry, ScanOptions
from .scanner import normalize_root

logger = logging.getLogger(__name__)


class StalenessOracle:
    """
    Decides whether the persisted snapshot of a root can be reused.

    The default check compares only the root directory's own mtime with the
    one recorded at the last build. Adding, removing or renaming a direct
    child changes that mtime; editing a file several levels down in place
    does not, so such edits go unnoticed until something touches the root.
    `deep=True` closes that gap by comparing the recorded mtime of every
    indexed entry with the filesystem, at the cost of one stat per entry.

    Any failure to answer (no snapshot, stat error, store error) reads as
    stale so callers rebuild instead of serving old data.
    """

    def __init__(self, store: IndexStore) -> None:
        self.store: IndexStore = store

    def is_stale(
        self, root: str | os.PathLike[str], options: ScanOptions | None = None, *, deep: bool = False
    ) -> bool:
        root_path: str = normalize_root(root)

        try:
            recorded: IndexEntry | None = self.store.get_root_entry(root_path)
            indexed_root: IndexedRoot | None = self.store.get_indexed_root(root_path)
        except (sqlite3.Error, IndexUnavailable) as e:
            logger.warning("Index lookup for %s failed, treating as stale: %s", root_path, e)
            return True

        if recorded is None:
            return True

        if options is not None and (indexed_root is None or not indexed_root.matches(options)):
            return True

        try:
            current_mtime: int = os.stat(root_path).st_mtime_ns // 1_000_000
        except OSError as e:
            logger.debug("Cannot stat %s, treating as stale: %s", root_path, e)
            return True

        if current_mtime != recorded.mtime:
            return True

        if deep:
            return self._any_entry_changed(root_path)

        return False

    def _any_entry_changed(self, root_path: str) -> bool:
        try:
            indexed: list[IndexEntry] = self.store.subtree_entries(root_path)
        except sqlite3.Error as e:
            logger.warning("Index lookup for %s failed, treating as stale: %s", root_path, e)
            return True

        for entry in indexed:
            try:
                st: os.stat_result = os.stat(entry.path, follow_symlinks=False)
            except OSError:
                return True

            if st.st_mtime_ns // 1_000_000 != entry.mtime:
                return True
            if entry.is_file and st.st_size != entry.size:
                return True

        return False
