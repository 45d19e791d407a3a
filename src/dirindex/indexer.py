import fcntl
import logging
import os
import threading
import time
from collections.abc import Callable, Generator, Iterable, Sequence
from contextlib import contextmanager
from pathlib import Path

from .IndexStore import IndexStore
from .models import IndexedRoot, IndexEntry, RebuildResult, ScanOptions
from .progress import ProgressReporter
from .scanner import PathScanner, normalize_root, now_ms
from .staleness import StalenessOracle

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE: int = 500

WriteBatch = Callable[[Sequence[IndexEntry]], None]


@contextmanager
def file_lock(lock_file: Path) -> Generator[None, None, None]:
    # The file is never removed: every process must lock the same inode.
    with open(file=lock_file, mode="a") as f:
        fcntl.flock(f.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(f.fileno(), fcntl.LOCK_UN)


class Indexer:
    """
    Writes scanner output into the index store.

    `rebuild` streams a fresh scan into the staging table and only replaces
    the live rows once the scan has finished, so a cancelled or failed scan
    leaves the previous snapshot untouched.
    """

    def __init__(
        self,
        store: IndexStore,
        scanner: PathScanner,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        lock_file: Path | None = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")

        self.store: IndexStore = store
        self.scanner: PathScanner = scanner
        self.batch_size: int = batch_size
        self.lock_file: Path | None = lock_file
        self.oracle: StalenessOracle = StalenessOracle(store)

        self._locks_guard: threading.Lock = threading.Lock()
        self._root_locks: dict[str, threading.Lock] = {}

    @contextmanager
    def _exclusive(self, root: str) -> Generator[None, None, None]:
        with self._locks_guard:
            lock: threading.Lock = self._root_locks.setdefault(root, threading.Lock())

        with lock:
            if self.lock_file is None:
                yield
            else:
                with file_lock(self.lock_file):
                    yield

    def _write_batches(self, entries: Iterable[IndexEntry], write: WriteBatch) -> int:
        written: int = 0
        batch: list[IndexEntry] = []

        self.store.begin()
        try:
            for entry in entries:
                batch.append(entry)

                if len(batch) >= self.batch_size:
                    write(batch)
                    written += len(batch)
                    batch = []
                    self.store.commit()
                    self.store.begin()

            if batch:
                write(batch)
                written += len(batch)
        except BaseException:
            self.store.rollback()
            raise

        self.store.commit()

        return written

    def upsert(self, entries: Iterable[IndexEntry]) -> int:
        """Insert or replace rows keyed by path. Returns the number of rows written."""
        return self._write_batches(entries, self.store.upsert_entries)

    def delete_subtree(self, path_prefix: str | os.PathLike[str]) -> int:
        """Delete `path_prefix` and everything below it, matching on separator boundaries."""
        root_path: str = normalize_root(path_prefix)

        self.store.begin()
        try:
            deleted: int = self.store.delete_subtree(root_path)
        except BaseException:
            self.store.rollback()
            raise
        self.store.commit()

        return deleted

    def _discard_staging(self) -> None:
        self.store.begin()
        self.store.clear_staging()
        self.store.commit()

    def rebuild(
        self,
        root: str | os.PathLike[str],
        options: ScanOptions | None = None,
        *,
        progress: ProgressReporter | None = None,
        cancel: threading.Event | None = None,
    ) -> RebuildResult:
        root_path: str = normalize_root(root)
        opts: ScanOptions = options or ScanOptions()

        with self._exclusive(root_path):
            started: float = time.monotonic()
            indexed_at: int = max(now_ms(), self.store.max_indexed_at(root_path) or 0)

            self._discard_staging()
            stream = self.scanner.stream(root_path, opts, progress=progress, cancel=cancel, indexed_at=indexed_at)

            try:
                written: int = self._write_batches(stream, self.store.stage_entries)
            except BaseException:
                logger.info("Rebuild of %s aborted; keeping the previous snapshot", root_path)
                self._discard_staging()
                raise

            self.store.swap_in_subtree(
                IndexedRoot(
                    path=root_path,
                    indexed_at=indexed_at,
                    recurse=opts.recurse,
                    max_depth=opts.max_depth,
                    include_hidden=opts.include_hidden,
                    hash_size_limit=opts.hash_size_limit,
                    entry_count=written,
                )
            )

            duration_ms: int = int((time.monotonic() - started) * 1000)
            logger.info(
                "Indexed %s: %d entries, %d skipped, %d ms",
                root_path,
                written,
                len(stream.failures),
                duration_ms,
            )

            return RebuildResult(
                root=root_path,
                entries_written=written,
                failures=stream.failures,
                indexed_at=indexed_at,
                duration_ms=duration_ms,
            )

    def ensure_fresh(
        self,
        root: str | os.PathLike[str],
        options: ScanOptions | None = None,
        *,
        force: bool = False,
        deep: bool = False,
        progress: ProgressReporter | None = None,
        cancel: threading.Event | None = None,
    ) -> RebuildResult | None:
        """Rebuild `root` if forced or stale; return None when the snapshot was reused."""
        if not force and not self.oracle.is_stale(root, options, deep=deep):
            logger.debug("Index for %s is up to date", root)
            return None

        return self.rebuild(root, options, progress=progress, cancel=cancel)

