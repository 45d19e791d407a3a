from __future__ import annotations

import io
import os
import stat
import threading
import time
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

import pytest

from dirindex.index_db import IndexDB
from dirindex.indexer import Indexer
from dirindex.IndexStore import IndexStore
from dirindex.scanner import DirListing, PathScanner


@pytest.fixture
def db(tmp_path: Path) -> Iterator[IndexDB]:
    with IndexDB.open(tmp_path / "index.db") as index_db:
        yield index_db


@pytest.fixture
def store(db: IndexDB) -> IndexStore:
    return IndexStore(db)


@pytest.fixture
def scanner() -> PathScanner:
    return PathScanner(max_workers=4, max_inflight=16, chunk_size=4096)


@pytest.fixture
def indexer(store: IndexStore, scanner: PathScanner) -> Indexer:
    return Indexer(store, scanner, batch_size=3)


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    """
    root/
      a.txt          "same"
      b.txt          "same"
      c.txt          "different"
      photo.JPG      4 bytes
      .hidden        "secret"
      docs/
        report.pdf   10 bytes
        deep/
          deeper/
            song.mp3 3 bytes
      empty/
        nested/
    """
    root = tmp_path / "root"
    (root / "docs" / "deep" / "deeper").mkdir(parents=True)
    (root / "empty" / "nested").mkdir(parents=True)

    (root / "a.txt").write_bytes(b"same")
    (root / "b.txt").write_bytes(b"same")
    (root / "c.txt").write_bytes(b"different")
    (root / "photo.JPG").write_bytes(b"\xff\xd8\xff\xe0")
    (root / ".hidden").write_bytes(b"secret")
    (root / "docs" / "report.pdf").write_bytes(b"%PDF-1.4\n\n")
    (root / "docs" / "deep" / "deeper" / "song.mp3").write_bytes(b"ID3")

    return root


@dataclass(frozen=True)
class FakeStat:
    st_mode: int
    st_size: int
    st_mtime_ns: int
    st_ctime_ns: int


class TrackedBytes(io.BytesIO):
    def __init__(self, data: bytes, fs: FakeFileSystem) -> None:
        super().__init__(data)
        self._fs = fs

    def close(self) -> None:
        if not self.closed:
            self._fs.release("open")
        super().close()


class FakeFileSystem:
    """
    In-memory filesystem that counts concurrent stat calls and open handles.

    `delay` keeps each stat busy for a moment so overlapping calls are
    observable.
    """

    def __init__(
        self,
        files: dict[str, bytes],
        dirs: set[str],
        *,
        delay: float = 0.0,
        unreadable: set[str] | None = None,
    ) -> None:
        self.files = files
        self.dirs = dirs
        self.delay = delay
        self.unreadable = unreadable or set()

        self._children: dict[str, list[str]] = {path: [] for path in dirs}
        for path in [*dirs, *files]:
            parent = os.path.dirname(path)
            if parent != path and parent in self._children:
                self._children[parent].append(path)

        self._lock = threading.Lock()
        self.active: dict[str, int] = {"stat": 0, "open": 0}
        self.peak: dict[str, int] = {"stat": 0, "open": 0}

    @classmethod
    def flat(cls, root: str, count: int, **kwargs: object) -> FakeFileSystem:
        files = {os.path.join(root, f"f{i:06d}.txt"): b"x" for i in range(count)}
        return cls(files, {root}, **kwargs)  # type: ignore[arg-type]

    def acquire(self, kind: str) -> None:
        with self._lock:
            self.active[kind] += 1
            self.peak[kind] = max(self.peak[kind], self.active[kind])

    def release(self, kind: str) -> None:
        with self._lock:
            self.active[kind] -= 1

    def list_dir(self, path: str) -> list[DirListing]:
        if path not in self._children:
            raise FileNotFoundError(2, "No such file or directory", path)

        return [
            DirListing(
                name=os.path.basename(child),
                path=child,
                is_dir=child in self.dirs,
                is_file=child in self.files,
                is_symlink=False,
            )
            for child in self._children[path]
        ]

    def stat(self, path: str) -> FakeStat:
        self.acquire("stat")
        try:
            if self.delay:
                time.sleep(self.delay)
            if path in self.unreadable:
                raise PermissionError(13, "Permission denied", path)
            if path in self.dirs:
                return FakeStat(stat.S_IFDIR | 0o755, 0, 1_000_000_000, 1_000_000_000)
            if path in self.files:
                return FakeStat(stat.S_IFREG | 0o644, len(self.files[path]), 2_000_000_000, 2_000_000_000)
            raise FileNotFoundError(2, "No such file or directory", path)
        finally:
            self.release("stat")

    def open_binary(self, path: str) -> TrackedBytes:
        if path not in self.files:
            raise FileNotFoundError(2, "No such file or directory", path)
        self.acquire("open")
        return TrackedBytes(self.files[path], self)


@pytest.fixture
def fake_fs_factory() -> type[FakeFileSystem]:
    return FakeFileSystem
