import copy
import logging
import os
import threading
import time
from dataclasses import dataclass, replace

from .config import AppConfig
from .duplicates import DuplicateDetector, group_entries
from .errors import RootUnavailable
from .index_db import IndexDB
from .indexer import Indexer
from .IndexStore import IndexStore
from .models import (
    DirectoryStats,
    DuplicateGroup,
    IndexEntry,
    ProgressEvent,
    ProgressPhase,
    RebuildResult,
    ScanOptions,
    ScanSummary,
)
from .progress import ProgressReporter
from .scanner import PathScanner, normalize_root
from .staleness import StalenessOracle
from .stats import StatsAggregator, summarize_entries

logger = logging.getLogger(__name__)

CacheKey = tuple[str, bool, int | None, bool]


@dataclass(frozen=True, slots=True)
class CachedScan:
    summary: ScanSummary
    stored_at: float
    root_mtime_ns: int


class ScanCache:
    """
    Short-lived cache of quick scan results.

    An entry is served only while it is younger than `ttl` seconds and the
    root directory's mtime is unchanged since it was stored. Expired and
    invalidated entries are dropped on the next get() or put(). Summaries are
    copied in both directions so callers never share lists with the cache.
    """

    def __init__(self, ttl: float = 300.0) -> None:
        self.ttl: float = ttl
        self._entries: dict[CacheKey, CachedScan] = {}
        self._lock: threading.Lock = threading.Lock()

    @staticmethod
    def key(root: str, options: ScanOptions) -> CacheKey:
        return (root, options.recurse, options.max_depth, options.include_hidden)

    def _evict_expired(self, now: float) -> None:
        expired: list[CacheKey] = [
            key for key, cached in self._entries.items() if now - cached.stored_at >= self.ttl
        ]
        for key in expired:
            del self._entries[key]

    def get(self, root: str, options: ScanOptions) -> ScanSummary | None:
        key: CacheKey = self.key(root, options)

        with self._lock:
            self._evict_expired(time.monotonic())
            cached: CachedScan | None = self._entries.get(key)

        if cached is None:
            return None

        try:
            mtime_ns: int | None = os.stat(root).st_mtime_ns
        except OSError:
            mtime_ns = None

        if mtime_ns != cached.root_mtime_ns:
            with self._lock:
                if self._entries.get(key) is cached:
                    del self._entries[key]
            return None

        return replace(copy.deepcopy(cached.summary), from_cache=True)

    def put(self, root: str, options: ScanOptions, summary: ScanSummary, root_mtime_ns: int) -> None:
        now: float = time.monotonic()
        with self._lock:
            self._evict_expired(now)
            self._entries[self.key(root, options)] = CachedScan(
                summary=copy.deepcopy(summary), stored_at=now, root_mtime_ns=root_mtime_ns
            )

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class DirectoryService:
    """
    Answers "what is in this directory" for a root and traversal options.

    Persisted queries check the staleness oracle, rebuild the snapshot when
    needed and then read statistics from the index. `quick_scan` skips the
    index and summarizes a live walk instead.
    """

    def __init__(self, store: IndexStore, scanner: PathScanner, config: AppConfig | None = None) -> None:
        self.config: AppConfig = config or AppConfig()
        self.store: IndexStore = store
        self.scanner: PathScanner = scanner
        self.indexer: Indexer = Indexer(
            store,
            scanner,
            batch_size=self.config.batch_size,
            lock_file=None if str(self.config.db_path) == ":memory:" else self.config.lock_file,
        )
        self.oracle: StalenessOracle = self.indexer.oracle
        self.aggregator: StatsAggregator = StatsAggregator(store)
        self.detector: DuplicateDetector = DuplicateDetector(store)
        self.cache: ScanCache = ScanCache(ttl=self.config.cache_ttl)

    @classmethod
    def from_config(cls, config: AppConfig, db: IndexDB) -> "DirectoryService":
        scanner: PathScanner = PathScanner(
            max_workers=config.max_workers or None,
            max_inflight=config.max_inflight,
            chunk_size=config.chunk_size,
            hash_algorithm=config.hash_algorithm,
        )
        return cls(IndexStore(db), scanner, config)

    def refresh(
        self,
        root: str | os.PathLike[str],
        options: ScanOptions | None = None,
        *,
        force: bool = False,
        deep: bool = False,
        progress: ProgressReporter | None = None,
        cancel: threading.Event | None = None,
    ) -> RebuildResult | None:
        opts: ScanOptions = options or self.config.scan_options()
        result: RebuildResult | None = self.indexer.ensure_fresh(
            root, opts, force=force, deep=deep, progress=progress, cancel=cancel
        )

        if result is None and progress is not None:
            progress.complete(files_found=0, folders_found=0, message="Index is up to date")

        return result

    def stats(
        self, root: str | os.PathLike[str], options: ScanOptions | None = None, *, force: bool = False
    ) -> DirectoryStats:
        opts: ScanOptions = options or self.config.scan_options()
        self.refresh(root, opts, force=force)
        return self.aggregator.aggregate(root, opts.recurse)

    def summary(
        self,
        root: str | os.PathLike[str],
        options: ScanOptions | None = None,
        *,
        include_duplicates: bool = False,
        force: bool = False,
    ) -> ScanSummary:
        opts: ScanOptions = options or self.config.scan_options()
        rebuilt: RebuildResult | None = self.refresh(root, opts, force=force)
        summary: ScanSummary = self.aggregator.summarize(
            root, opts.recurse, include_duplicates=include_duplicates
        )

        if rebuilt is not None:
            summary.failures = rebuilt.failures

        return summary

    def duplicates(
        self, root: str | os.PathLike[str], options: ScanOptions | None = None, *, force: bool = False
    ) -> list[DuplicateGroup]:
        opts: ScanOptions = options or self.config.scan_options()
        self.refresh(root, opts, force=force)
        return self.detector.find_duplicates(root, opts.recurse)

    def quick_scan(
        self,
        root: str | os.PathLike[str],
        options: ScanOptions | None = None,
        *,
        include_duplicates: bool = False,
        progress: ProgressReporter | None = None,
        cancel: threading.Event | None = None,
        use_cache: bool = True,
    ) -> ScanSummary:
        root_path: str = normalize_root(root)
        opts: ScanOptions = options or self.config.scan_options()

        if not include_duplicates:
            opts = replace(opts, compute_hashes=False)

        if use_cache and not include_duplicates:
            cached: ScanSummary | None = self.cache.get(root_path, opts)
            if cached is not None:
                logger.debug("Serving quick scan of %s from cache", root_path)
                if progress is not None:
                    progress.publish(
                        ProgressEvent(
                            phase=ProgressPhase.COMPLETE,
                            progress_percent=100,
                            message="Using cached result",
                            files_found=cached.total_files,
                            folders_found=cached.total_folders,
                        )
                    )
                    progress.close()
                return cached

        try:
            root_mtime_ns: int = os.stat(root_path).st_mtime_ns
        except OSError as e:
            if progress is not None:
                progress.close()
            raise RootUnavailable(root_path, e.strerror or str(e)) from e

        stream = self.scanner.stream(root_path, opts, progress=progress, cancel=cancel)

        if include_duplicates:
            entries: list[IndexEntry] = list(stream)
            summary: ScanSummary = summarize_entries(root_path, entries, recurse=opts.recurse)
            summary.duplicate_files = group_entries(
                entry for entry in entries if opts.recurse or entry.parent_path == root_path
            )
        else:
            summary = summarize_entries(root_path, stream, recurse=opts.recurse)

        summary.failures = stream.failures

        if use_cache and not include_duplicates:
            self.cache.put(root_path, opts, summary, root_mtime_ns)

        return summary
