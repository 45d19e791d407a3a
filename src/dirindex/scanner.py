import hashlib
import logging
import os
import stat
import threading
import time
from collections.abc import Callable, Generator, Iterable, Iterator
from concurrent.futures import FIRST_COMPLETED, Executor, Future, ThreadPoolExecutor, wait
from typing import BinaryIO, NamedTuple, Protocol, TypeVar

from .errors import EntryUnreadable, RootUnavailable, ScanCancelled
from .models import EntryKind, IndexEntry, ScanFailure, ScanOptions, ScanResult
from .progress import ProgressReporter

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_MAX_INFLIGHT: int = 256
DEFAULT_CHUNK_SIZE: int = 1024 * 1024
DEFAULT_HASH_ALGORITHM: str = "md5"


class DirListing(NamedTuple):
    name: str
    path: str
    is_dir: bool
    is_file: bool
    is_symlink: bool


class StatResult(Protocol):
    @property
    def st_mode(self) -> int: ...

    @property
    def st_size(self) -> int: ...

    @property
    def st_mtime_ns(self) -> int: ...

    @property
    def st_ctime_ns(self) -> int: ...


class FileSystem(Protocol):
    def list_dir(self, path: str) -> list[DirListing]: ...

    def stat(self, path: str) -> StatResult: ...

    def open_binary(self, path: str) -> BinaryIO: ...


class LocalFileSystem:
    def list_dir(self, path: str) -> list[DirListing]:
        listing: list[DirListing] = []

        with os.scandir(path) as it:
            for entry in it:
                is_symlink: bool = entry.is_symlink()
                listing.append(
                    DirListing(
                        name=entry.name,
                        path=entry.path,
                        is_dir=entry.is_dir(follow_symlinks=False),
                        is_file=entry.is_file(follow_symlinks=False),
                        is_symlink=is_symlink,
                    )
                )

        return listing

    def stat(self, path: str) -> StatResult:
        return os.stat(path, follow_symlinks=False)

    def open_binary(self, path: str) -> BinaryIO:
        return open(path, "rb")


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def normalize_root(path: str | os.PathLike[str]) -> str:
    return os.path.abspath(os.fspath(path))


def calculate_digest(fs: FileSystem, path: str, algorithm: str, chunk_size: int) -> str:
    digest = hashlib.new(algorithm, usedforsecurity=False)
    with fs.open_binary(path) as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def bounded_map(
    executor: Executor, fn: Callable[[T], R], items: Iterable[T], max_in_flight: int
) -> Iterator[tuple[T, Future[R]]]:
    """
    Submit `fn(item)` for every item, never holding more than `max_in_flight`
    unfinished futures. Yields (item, future) pairs in completion order.
    """
    if max_in_flight <= 0:
        raise ValueError("max_in_flight must be > 0")

    in_flight: dict[Future[R], T] = {}

    for item in items:
        # Apply backpressure
        while len(in_flight) >= max_in_flight:
            done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
            for future in done:
                yield in_flight.pop(future), future

        in_flight[executor.submit(fn, item)] = item

    # Drain remaining futures
    while in_flight:
        done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
        for future in done:
            yield in_flight.pop(future), future


class ScanStream:
    """
    Iterator over the entries of one scan.

    Entries are produced as the walk proceeds: the root first, then for each
    directory its files and its subdirectories, each group sorted by path,
    and every child after its parent. `failures` and the counters are
    complete once iteration has finished.
    """

    def __init__(
        self,
        scanner: "PathScanner",
        root: str,
        options: ScanOptions,
        progress: ProgressReporter | None,
        cancel: threading.Event | None,
        indexed_at: int,
    ) -> None:
        self.scanner: PathScanner = scanner
        self.root: str = root
        self.options: ScanOptions = options
        self.progress: ProgressReporter | None = progress
        self.cancel: threading.Event | None = cancel
        self.indexed_at: int = indexed_at
        self.max_depth: int | None = options.effective_max_depth()

        self.failures: list[ScanFailure] = []
        self.files_found: int = 0
        self.folders_found: int = 0
        self._iterator: Generator[IndexEntry, None, None] = self._run()

    def __iter__(self) -> Iterator[IndexEntry]:
        return self

    def __next__(self) -> IndexEntry:
        return next(self._iterator)

    def close(self) -> None:
        self._iterator.close()

    # --- walk ---------------------------------------------------------------

    def _may_list(self, depth: int) -> bool:
        return self.max_depth is None or depth < self.max_depth

    def _record(self, path: str, reason: str) -> None:
        logger.warning("Skipping %s: %s", path, reason)
        self.failures.append(ScanFailure(path=path, reason=reason))

    def _open_root(self) -> tuple[StatResult, list[DirListing] | None]:
        fs: FileSystem = self.scanner.fs

        try:
            root_stat: StatResult = fs.stat(self.root)
        except OSError as e:
            raise RootUnavailable(self.root, e.strerror or str(e)) from e

        if not stat.S_ISDIR(root_stat.st_mode):
            raise RootUnavailable(self.root, "not a directory")

        listing: list[DirListing] | None = None
        if self._may_list(0):
            try:
                listing = fs.list_dir(self.root)
            except OSError as e:
                raise RootUnavailable(self.root, e.strerror or str(e)) from e

        return root_stat, listing

    def _run(self) -> Generator[IndexEntry, None, None]:
        try:
            root_stat, listing = self._open_root()
        except RootUnavailable:
            # Consumers blocked on the channel must see it end.
            if self.progress is not None:
                self.progress.close()
            raise

        if self.progress is not None:
            self.progress.start(self.root)

        parent: str = os.path.dirname(self.root)
        root_entry: IndexEntry = self._dir_entry(
            path=self.root,
            parent_path=parent if parent != self.root else None,
            name=os.path.basename(self.root) or self.root,
            st=root_stat,
            listed=listing is not None,
        )

        try:
            with ThreadPoolExecutor(
                max_workers=self.scanner.max_workers, thread_name_prefix="dirindex-scan"
            ) as executor:
                yield root_entry

                if listing is not None:
                    yield from self._walk_dir(executor, self.root, 0, listing)
        except BaseException:
            if self.progress is not None:
                self.progress.close()
            raise

        if self.progress is not None:
            self.progress.complete(files_found=self.files_found, folders_found=self.folders_found)

    def _walk_dir(
        self, executor: Executor, dir_path: str, depth: int, listing: list[DirListing]
    ) -> Iterator[IndexEntry]:
        if self.cancel is not None and self.cancel.is_set():
            raise ScanCancelled(f"Scan of {self.root} cancelled at {dir_path}")

        file_candidates: list[DirListing] = []
        dir_candidates: list[DirListing] = []

        for item in listing:
            if not self.options.include_hidden and item.name.startswith("."):
                continue
            if item.is_symlink:
                logger.debug("Skipping symlink %s", item.path)
                continue
            if item.is_dir:
                dir_candidates.append(item)
            elif item.is_file:
                file_candidates.append(item)

        files: list[IndexEntry] = self._inspect_all(executor, self._inspect_file, file_candidates)
        self.files_found += len(files)
        yield from files

        dir_stats: list[tuple[DirListing, StatResult]] = self._stat_all(executor, dir_candidates)
        self.folders_found += len(dir_stats)

        if self.progress is not None:
            self.progress.advance(
                processed=len(listing),
                current_path=dir_path,
                files_found=self.files_found,
                folders_found=self.folders_found,
            )

        child_depth: int = depth + 1
        for item, st in dir_stats:
            child_listing: list[DirListing] | None = None
            if self._may_list(child_depth):
                try:
                    child_listing = self.scanner.fs.list_dir(item.path)
                except OSError as e:
                    self._record(item.path, e.strerror or str(e))

            yield self._dir_entry(
                path=item.path,
                parent_path=dir_path,
                name=item.name,
                st=st,
                listed=child_listing is not None,
            )

            if child_listing is not None:
                yield from self._walk_dir(executor, item.path, child_depth, child_listing)

    def _inspect_all(
        self,
        executor: Executor,
        fn: Callable[[DirListing], IndexEntry],
        items: list[DirListing],
    ) -> list[IndexEntry]:
        results: list[IndexEntry] = []

        for item, future in bounded_map(executor, fn, items, self.scanner.max_inflight):
            try:
                results.append(future.result())
            except EntryUnreadable as e:
                self._record(item.path, e.reason)

        results.sort(key=lambda entry: entry.path)
        return results

    def _stat_all(self, executor: Executor, items: list[DirListing]) -> list[tuple[DirListing, StatResult]]:
        results: list[tuple[DirListing, StatResult]] = []

        for item, future in bounded_map(executor, self._stat, items, self.scanner.max_inflight):
            try:
                results.append((item, future.result()))
            except EntryUnreadable as e:
                self._record(item.path, e.reason)

        results.sort(key=lambda pair: pair[0].path)
        return results

    # --- per-entry work, runs on the executor --------------------------------

    def _stat(self, item: DirListing) -> StatResult:
        try:
            return self.scanner.fs.stat(item.path)
        except OSError as e:
            raise EntryUnreadable(item.path, e.strerror or str(e)) from e

    def _inspect_file(self, item: DirListing) -> IndexEntry:
        st: StatResult = self._stat(item)
        size: int = st.st_size

        content_hash: str | None = None
        if self.options.compute_hashes:
            if size <= self.options.hash_size_limit:
                try:
                    content_hash = calculate_digest(
                        self.scanner.fs, item.path, self.scanner.hash_algorithm, self.scanner.chunk_size
                    )
                except OSError as e:
                    raise EntryUnreadable(item.path, e.strerror or str(e)) from e
            else:
                logger.debug("Not hashing %s: %d bytes exceeds the hash size limit", item.path, size)

        return IndexEntry(
            path=item.path,
            parent_path=os.path.dirname(item.path),
            name=item.name,
            kind=EntryKind.FILE,
            size=size,
            extension=os.path.splitext(item.name)[1].lower(),
            mtime=st.st_mtime_ns // 1_000_000,
            ctime=st.st_ctime_ns // 1_000_000,
            indexed_at=self.indexed_at,
            content_hash=content_hash,
        )

    def _dir_entry(
        self, *, path: str, parent_path: str | None, name: str, st: StatResult, listed: bool
    ) -> IndexEntry:
        return IndexEntry(
            path=path,
            parent_path=parent_path,
            name=name,
            kind=EntryKind.DIRECTORY,
            size=0,
            extension="",
            mtime=st.st_mtime_ns // 1_000_000,
            ctime=st.st_ctime_ns // 1_000_000,
            indexed_at=self.indexed_at,
            listed=listed,
        )


class PathScanner:
    """
    Walks a directory tree one directory at a time.

    Within a directory all files are stat'ed (and hashed) concurrently, then
    all subdirectories, on a thread pool with at most `max_inflight`
    outstanding operations. Recursion across directories is depth-first, so
    only one directory batch is in flight at any moment.
    """

    def __init__(
        self,
        fs: FileSystem | None = None,
        *,
        max_workers: int | None = None,
        max_inflight: int = DEFAULT_MAX_INFLIGHT,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        hash_algorithm: str = DEFAULT_HASH_ALGORITHM,
    ) -> None:
        if max_inflight <= 0:
            raise ValueError("max_inflight must be > 0")
        if max_workers is not None and max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")

        self.fs: FileSystem = fs if fs is not None else LocalFileSystem()
        self.max_workers: int = max_workers or min(32, (os.cpu_count() or 1) + 4)
        self.max_inflight: int = max_inflight
        self.chunk_size: int = chunk_size
        self.hash_algorithm: str = hash_algorithm

    def stream(
        self,
        root: str | os.PathLike[str],
        options: ScanOptions | None = None,
        *,
        progress: ProgressReporter | None = None,
        cancel: threading.Event | None = None,
        indexed_at: int | None = None,
    ) -> ScanStream:
        return ScanStream(
            scanner=self,
            root=normalize_root(root),
            options=options or ScanOptions(),
            progress=progress,
            cancel=cancel,
            indexed_at=indexed_at if indexed_at is not None else now_ms(),
        )

    def scan(
        self,
        root: str | os.PathLike[str],
        options: ScanOptions | None = None,
        *,
        progress: ProgressReporter | None = None,
        cancel: threading.Event | None = None,
    ) -> ScanResult:
        """Run a full scan and return its files and folders (root excluded), sorted by path."""
        stream: ScanStream = self.stream(root, options, progress=progress, cancel=cancel)
        result: ScanResult = ScanResult(root=stream.root)

        for entry in stream:
            if entry.path == stream.root:
                continue
            if entry.is_file:
                result.files.append(entry)
            else:
                result.folders.append(entry)

        result.files.sort(key=lambda entry: entry.path)
        result.folders.sort(key=lambda entry: entry.path)
        result.failures = stream.failures

        return result
