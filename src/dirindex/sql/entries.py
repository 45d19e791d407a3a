_COLUMNS: str = """
        path          TEXT NOT NULL UNIQUE,
        parent_path   TEXT,
        name          TEXT NOT NULL,
        kind          TEXT NOT NULL CHECK (kind IN ('file', 'directory')),
        size          INTEGER NOT NULL DEFAULT 0,
        extension     TEXT NOT NULL DEFAULT '',
        mtime         INTEGER NOT NULL,
        ctime         INTEGER NOT NULL,
        indexed_at    INTEGER NOT NULL,
        content_hash  TEXT,
        listed        INTEGER NOT NULL DEFAULT 0
"""

CREATE_TABLE: str = f"""
    CREATE TABLE IF NOT EXISTS entries (
        id            INTEGER PRIMARY KEY,
        {_COLUMNS}
    );
"""

CREATE_INDEXES: tuple[str, ...] = (
    "CREATE INDEX IF NOT EXISTS idx_entries_parent ON entries(parent_path);",
    "CREATE INDEX IF NOT EXISTS idx_entries_kind ON entries(kind);",
    "CREATE INDEX IF NOT EXISTS idx_entries_extension ON entries(extension);",
    "CREATE INDEX IF NOT EXISTS idx_entries_hash ON entries(content_hash);",
)

CREATE_STAGING_TABLE: str = f"""
    CREATE TABLE IF NOT EXISTS staging_entries (
        id            INTEGER PRIMARY KEY,
        {_COLUMNS}
    );
"""

FIELDS: str = """
    path, parent_path, name, kind, size, extension,
    mtime, ctime, indexed_at, content_hash, listed
"""

UPSERT_ENTRY: str = f"""
    INSERT INTO entries ({FIELDS})
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(path) DO UPDATE SET
        parent_path  = excluded.parent_path,
        name         = excluded.name,
        kind         = excluded.kind,
        size         = excluded.size,
        extension    = excluded.extension,
        mtime        = excluded.mtime,
        ctime        = excluded.ctime,
        indexed_at   = excluded.indexed_at,
        content_hash = excluded.content_hash,
        listed       = excluded.listed;
"""

STAGE_ENTRY: str = f"""
    INSERT INTO staging_entries ({FIELDS})
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(path) DO UPDATE SET
        parent_path  = excluded.parent_path,
        size         = excluded.size,
        mtime        = excluded.mtime,
        ctime        = excluded.ctime,
        content_hash = excluded.content_hash,
        listed       = excluded.listed;
"""

CLEAR_STAGING: str = "DELETE FROM staging_entries;"

# The root row goes in last so a half-copied subtree has no root entry.
COPY_STAGED: str = f"""
    INSERT INTO entries ({FIELDS})
    SELECT {FIELDS}
    FROM staging_entries
    ORDER BY path = ?, id;
"""

# Subtree predicate: the root itself or anything in [root + sep, root + next(sep)).
SUBTREE_WHERE: str = "(path = ? OR (path >= ? AND path < ?))"

DELETE_SUBTREE: str = f"DELETE FROM entries WHERE {SUBTREE_WHERE};"

DELETE_PATH: str = "DELETE FROM entries WHERE path = ?;"

SELECT_ENTRY: str = f"SELECT {FIELDS} FROM entries WHERE path = ?;"

SELECT_ROOT_DIR: str = f"""
    SELECT {FIELDS}
    FROM entries
    WHERE path = ? AND kind = 'directory';
"""

MAX_INDEXED_AT: str = f"""
    SELECT MAX(indexed_at) AS max_indexed_at
    FROM entries
    WHERE {SUBTREE_WHERE};
"""

SELECT_SUBTREE: str = f"""
    SELECT {FIELDS}
    FROM entries
    WHERE {SUBTREE_WHERE} AND path != ?
    ORDER BY path;
"""

SELECT_SUBTREE_BY_KIND: str = f"""
    SELECT {FIELDS}
    FROM entries
    WHERE {SUBTREE_WHERE} AND path != ? AND kind = ?
    ORDER BY path;
"""

SELECT_CHILDREN_BY_KIND: str = f"""
    SELECT {FIELDS}
    FROM entries
    WHERE parent_path = ? AND kind = ?
    ORDER BY path;
"""
