import os
from collections import defaultdict
from collections.abc import Iterable

from .duplicates import DuplicateDetector
from .IndexStore import IndexStore
from .models import CategoryStat, DirectoryStats, EntryKind, IndexEntry, ScanSummary
from .scanner import normalize_root

LARGEST_FILES_LIMIT: int = 10

IMAGE: str = "image"
VIDEO: str = "video"
AUDIO: str = "audio"
DOCUMENT: str = "document"
OTHER: str = "other"

CATEGORY_ORDER: tuple[str, ...] = (IMAGE, VIDEO, AUDIO, DOCUMENT, OTHER)

CATEGORY_EXTENSIONS: dict[str, frozenset[str]] = {
    IMAGE: frozenset({".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp", ".svg", ".ico", ".tiff"}),
    VIDEO: frozenset({".mp4", ".avi", ".mkv", ".mov", ".wmv", ".flv", ".webm", ".m4v", ".3gp"}),
    AUDIO: frozenset({".mp3", ".wav", ".flac", ".aac", ".ogg", ".wma", ".m4a", ".opus"}),
    DOCUMENT: frozenset(
        {".pdf", ".doc", ".docx", ".txt", ".rtf", ".odt", ".xls", ".xlsx", ".ppt", ".pptx"}
    ),
}

_EXTENSION_TO_CATEGORY: dict[str, str] = {
    ext: category for category, extensions in CATEGORY_EXTENSIONS.items() for ext in extensions
}


def category_for_extension(extension: str) -> str:
    return _EXTENSION_TO_CATEGORY.get(extension.lower(), OTHER)


def roll_up_categories(rollup: Iterable[tuple[str, int, int]]) -> list[CategoryStat]:
    """Fold (extension, file_count, total_bytes) rows into category totals, in CATEGORY_ORDER."""
    counts: dict[str, int] = defaultdict(int)
    sizes: dict[str, int] = defaultdict(int)

    for extension, file_count, total_bytes in rollup:
        category: str = category_for_extension(extension)
        counts[category] += file_count
        sizes[category] += total_bytes

    return [
        CategoryStat(category=category, file_count=counts[category], total_bytes=sizes[category])
        for category in CATEGORY_ORDER
        if category in counts
    ]


def find_empty_folders(
    root: str, directories: Iterable[tuple[str, str | None, bool]], file_parents: set[str]
) -> list[str]:
    """
    Return the directories below `root` with no file anywhere beneath them.

    Works purely on the parent-pointer relation: every directory that holds a
    file, and every directory whose children were never listed, marks itself
    and all its ancestors as non-empty. The root itself is never reported.
    """
    parent_of: dict[str, str | None] = {}
    occupied: set[str] = set()
    unlisted: list[str] = []

    for path, parent_path, listed in directories:
        parent_of[path] = parent_path
        if not listed:
            unlisted.append(path)

    def mark(start: str | None) -> None:
        node: str | None = start
        while node is not None and node in parent_of and node not in occupied:
            occupied.add(node)
            node = parent_of[node]

    for parent in file_parents:
        mark(parent)
    for path in unlisted:
        mark(path)

    return sorted(path for path in parent_of if path not in occupied and path != root)


def summarize_entries(root: str, entries: Iterable[IndexEntry], *, recurse: bool = True) -> ScanSummary:
    """Build a ScanSummary from in-memory entries, for scans that bypass the store."""
    summary: ScanSummary = ScanSummary(root=root)
    directories: list[tuple[str, str | None, bool]] = []
    file_parents: set[str] = set()
    by_extension: dict[str, list[str]] = defaultdict(list)

    for entry in entries:
        if entry.path == root:
            continue

        in_scope: bool = recurse or entry.parent_path == root

        if entry.is_dir:
            directories.append((entry.path, entry.parent_path, entry.listed))
            if in_scope:
                summary.total_folders += 1
            continue

        if entry.parent_path is not None:
            file_parents.add(entry.parent_path)
        if in_scope:
            summary.total_files += 1
            summary.total_size += entry.size
            by_extension[entry.extension].append(entry.path)

    summary.files_by_extension = {ext: sorted(paths) for ext, paths in sorted(by_extension.items())}

    empty: list[str] = find_empty_folders(root, directories, file_parents)
    if not recurse:
        empty = [path for path in empty if os.path.dirname(path) == root]
    summary.empty_folders = empty

    return summary


class StatsAggregator:
    """Derives directory statistics from the persisted index."""

    def __init__(self, store: IndexStore) -> None:
        self.store: IndexStore = store

    def empty_folders(self, root: str, *, recurse: bool = True) -> list[str]:
        directories, file_parents = self.store.directory_tree(root)
        empty: list[str] = find_empty_folders(root, directories, file_parents)

        if recurse:
            return empty

        return [path for path in empty if os.path.dirname(path) == root]

    def aggregate(self, root: str | os.PathLike[str], recurse: bool = True) -> DirectoryStats:
        root_path: str = normalize_root(root)
        total_files, total_folders, total_size = self.store.totals(root_path, recurse=recurse)

        return DirectoryStats(
            root=root_path,
            total_files=total_files,
            total_folders=total_folders,
            total_size=total_size,
            by_category=roll_up_categories(self.store.extension_rollup(root_path, recurse=recurse)),
            largest_files=self.store.largest_files(root_path, recurse=recurse, limit=LARGEST_FILES_LIMIT),
            empty_folders=self.empty_folders(root_path, recurse=recurse),
        )

    def summarize(
        self, root: str | os.PathLike[str], recurse: bool = True, *, include_duplicates: bool = False
    ) -> ScanSummary:
        root_path: str = normalize_root(root)
        total_files, total_folders, total_size = self.store.totals(root_path, recurse=recurse)

        by_extension: dict[str, list[str]] = defaultdict(list)
        for path, extension in self.store.file_paths(root_path, recurse=recurse):
            by_extension[extension].append(path)

        summary: ScanSummary = ScanSummary(
            root=root_path,
            total_files=total_files,
            total_folders=total_folders,
            total_size=total_size,
            files_by_extension=dict(sorted(by_extension.items())),
            empty_folders=self.empty_folders(root_path, recurse=recurse),
        )

        if include_duplicates:
            summary.duplicate_files = DuplicateDetector(self.store).find_duplicates(root_path, recurse)

        return summary

    def files_in_category(self, root: str | os.PathLike[str], category: str, recurse: bool = True) -> list[str]:
        if category not in CATEGORY_ORDER:
            raise ValueError(f"Unknown category {category!r}; expected one of {', '.join(CATEGORY_ORDER)}")

        root_path: str = normalize_root(root)
        return [
            entry.path
            for entry in self.store.scoped_entries(root_path, recurse=recurse, kind=EntryKind.FILE)
            if category_for_extension(entry.extension) == category
        ]
