# Scope fragments. Each takes the parameters produced by IndexStore.scope_params().
SCOPE_DESCENDANTS: str = "(path >= ? AND path < ? AND path != ?)"
SCOPE_CHILDREN: str = "(parent_path = ?)"

TOTALS: str = """
    SELECT
    COALESCE(SUM(kind = 'file'), 0)                         AS total_files,
    COALESCE(SUM(kind = 'directory'), 0)                    AS total_folders,
    COALESCE(SUM(CASE WHEN kind = 'file' THEN size END), 0) AS total_size
    FROM entries
    WHERE {scope};
"""

BY_EXTENSION: str = """
    SELECT extension, COUNT(*) AS file_count, COALESCE(SUM(size), 0) AS total_bytes
    FROM entries
    WHERE {scope} AND kind = 'file'
    GROUP BY extension
    ORDER BY extension;
"""

FILE_PATHS: str = """
    SELECT path, extension
    FROM entries
    WHERE {scope} AND kind = 'file'
    ORDER BY path;
"""

LARGEST_FILES: str = """
    SELECT path, parent_path, name, kind, size, extension,
           mtime, ctime, indexed_at, content_hash, listed
    FROM entries
    WHERE {scope} AND kind = 'file'
    ORDER BY size DESC, path
    LIMIT ?;
"""

DUPLICATE_MEMBERS: str = """
    SELECT path, size, content_hash
    FROM entries
    WHERE {scope} AND kind = 'file' AND content_hash IN (
        SELECT content_hash
        FROM entries
        WHERE {scope} AND kind = 'file' AND content_hash IS NOT NULL
        GROUP BY content_hash
        HAVING COUNT(*) > 1
    )
    ORDER BY content_hash, path;
"""

# Every directory under the root, used for the parent-pointer emptiness walk.
DIRECTORIES: str = """
    SELECT path, parent_path, listed
    FROM entries
    WHERE (path >= ? AND path < ? AND path != ?) AND kind = 'directory';
"""

# Distinct parents of files under the root.
FILE_PARENTS: str = """
    SELECT DISTINCT parent_path
    FROM entries
    WHERE (path >= ? AND path < ? AND path != ?) AND kind = 'file';
"""
