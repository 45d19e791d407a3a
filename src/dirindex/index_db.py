import logging
import sqlite3
import time
from collections.abc import Generator, Iterable, Sequence
from contextlib import contextmanager
from pathlib import Path
from types import TracebackType
from typing import cast

from .errors import IndexUnavailable
from .sql import entries, roots

logger = logging.getLogger(__name__)


class IndexDB:
    def __init__(self, path: Path) -> None:
        self.path: Path = path
        try:
            self.connection: sqlite3.Connection = sqlite3.connect(
                path, detect_types=sqlite3.PARSE_DECLTYPES, isolation_level=None, check_same_thread=False
            )
        except sqlite3.Error as e:
            raise IndexUnavailable(f"Cannot open index store {path}: {e}") from e
        self.connection.row_factory = sqlite3.Row

        try:
            self._configure()
            self._create_schema_if_needed()
        except sqlite3.Error as e:
            self.connection.close()
            raise IndexUnavailable(f"Index store {path} is unusable: {e}") from e

    @classmethod
    def open(cls, path: Path) -> "IndexDB":
        """
        Open the store at `path`, replacing it with an empty one if it is corrupt.

        A corrupt file is moved aside rather than deleted. The fresh store has
        no entries, so every root reads as stale and is rebuilt on demand.
        """
        try:
            db = cls(path)
            db._check_integrity()
            return db
        except IndexUnavailable as e:
            if str(path) == ":memory:" or not path.exists():
                raise
            aside: Path = path.with_name(f"{path.name}.corrupt-{time.time_ns()}")
            logger.warning("%s; moving it to %s and starting a new index", e, aside)
            path.rename(aside)
            for suffix in ("-wal", "-shm"):
                path.with_name(path.name + suffix).unlink(missing_ok=True)
            return cls(path)

    def __enter__(self) -> "IndexDB":
        return self

    def __exit__(
        self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: TracebackType | None
    ) -> None:
        self.connection.close()

    def _configure(self) -> None:
        cursor: sqlite3.Cursor = self.connection.cursor()

        statements: list[str] = [
            "PRAGMA journal_mode = WAL;",
            "PRAGMA synchronous = NORMAL;",
        ]

        for statement in statements:
            _ = cursor.execute(statement)

    def _check_integrity(self) -> None:
        try:
            row: sqlite3.Row | None = self.query_one("PRAGMA quick_check;")
        except sqlite3.Error as e:
            self.connection.close()
            raise IndexUnavailable(f"Index store {self.path} failed its integrity check: {e}") from e

        if row is None or row[0] != "ok":
            self.connection.close()
            raise IndexUnavailable(f"Index store {self.path} failed its integrity check")

    def _create_schema_if_needed(self) -> None:
        self.begin()

        self._apply_schema(table_sql=entries.CREATE_TABLE, index_sql=entries.CREATE_INDEXES)
        self._apply_schema(table_sql=entries.CREATE_STAGING_TABLE)
        self._apply_schema(table_sql=roots.CREATE_TABLE)

        self.commit()

    def _apply_schema(self, *, table_sql: str, index_sql: Sequence[str] | None = None) -> None:
        self.execute(sql=table_sql)

        if index_sql is not None:
            for sql in index_sql:
                self.execute(sql)

    def begin(self) -> None:
        _ = self.connection.execute("BEGIN;")

    def commit(self) -> None:
        _ = self.connection.execute("COMMIT;")

    def rollback(self) -> None:
        _ = self.connection.execute("ROLLBACK;")

    @property
    def in_transaction(self) -> bool:
        return self.connection.in_transaction

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        self.begin()
        try:
            yield
        except BaseException:
            self.rollback()
            raise
        self.commit()

    def execute(self, sql: str, params: Sequence[object] | None = None) -> int:
        cursor: sqlite3.Cursor = self.connection.cursor()

        if params is not None:
            _ = cursor.execute(sql, params)
        else:
            _ = cursor.execute(sql)

        rowcount: int = cursor.rowcount
        cursor.close()

        return rowcount

    def executemany(self, sql: str, rows: Iterable[Sequence[object]]) -> None:
        cursor: sqlite3.Cursor = self.connection.cursor()
        _ = cursor.executemany(sql, rows)
        cursor.close()

    def close(self) -> None:
        self.connection.close()

    def query_one(self, sql: str, params: Sequence[object] | None = None) -> sqlite3.Row | None:
        cursor: sqlite3.Cursor = self.connection.cursor()

        if params is None:
            _ = cursor.execute(sql)
        else:
            _ = cursor.execute(sql, params)
        row: sqlite3.Row | None = cast(sqlite3.Row | None, cursor.fetchone())

        cursor.close()

        return row

    def query_all(self, sql: str, params: Sequence[object] | None = None) -> list[sqlite3.Row]:
        cursor: sqlite3.Cursor = self.connection.cursor()

        if params is None:
            _ = cursor.execute(sql)
        else:
            _ = cursor.execute(sql, params)
        rows: list[sqlite3.Row] = cast(list[sqlite3.Row], cursor.fetchall())

        cursor.close()

        return rows
