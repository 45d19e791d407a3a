CREATE_TABLE: str = """
    CREATE TABLE IF NOT EXISTS roots (
        id              INTEGER PRIMARY KEY,
        path            TEXT NOT NULL UNIQUE,
        indexed_at      INTEGER NOT NULL,
        recurse         INTEGER NOT NULL,
        max_depth       INTEGER,
        include_hidden  INTEGER NOT NULL,
        hash_size_limit INTEGER NOT NULL,
        entry_count     INTEGER NOT NULL
    );
"""

UPSERT_ROOT: str = """
    INSERT INTO roots (
        path,
        indexed_at,
        recurse,
        max_depth,
        include_hidden,
        hash_size_limit,
        entry_count
    )
    VALUES (?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(path) DO UPDATE SET
        indexed_at      = excluded.indexed_at,
        recurse         = excluded.recurse,
        max_depth       = excluded.max_depth,
        include_hidden  = excluded.include_hidden,
        hash_size_limit = excluded.hash_size_limit,
        entry_count     = excluded.entry_count;
"""

# A rebuild of a parent replaces the snapshots of any roots nested inside it.
DELETE_NESTED_ROOTS: str = """
    DELETE FROM roots
    WHERE path >= ? AND path < ? AND path != ?;
"""

SELECT_ROOT: str = """
    SELECT path, indexed_at, recurse, max_depth, include_hidden, hash_size_limit, entry_count
    FROM roots
    WHERE path = ?;
"""

SELECT_ROOTS: str = """
    SELECT path, indexed_at, recurse, max_depth, include_hidden, hash_size_limit, entry_count
    FROM roots
    ORDER BY path;
"""
