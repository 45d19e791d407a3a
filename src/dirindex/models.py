import enum
from dataclasses import dataclass, field

HASH_SIZE_LIMIT: int = 100 * 1024 * 1024


class EntryKind(enum.Enum):
    FILE = "file"
    DIRECTORY = "directory"


@dataclass(frozen=True, slots=True)
class IndexEntry:
    path: str
    parent_path: str | None
    name: str
    kind: EntryKind
    size: int
    extension: str
    mtime: int
    ctime: int
    indexed_at: int
    content_hash: str | None = None
    # Directories only: children were enumerated in the pass that wrote this row.
    listed: bool = False

    @property
    def is_file(self) -> bool:
        return self.kind is EntryKind.FILE

    @property
    def is_dir(self) -> bool:
        return self.kind is EntryKind.DIRECTORY

    def as_row(self) -> tuple[object, ...]:
        return (
            self.path,
            self.parent_path,
            self.name,
            self.kind.value,
            self.size,
            self.extension,
            self.mtime,
            self.ctime,
            self.indexed_at,
            self.content_hash,
            int(self.listed),
        )


@dataclass(frozen=True, slots=True)
class ScanOptions:
    recurse: bool = True
    max_depth: int | None = None
    include_hidden: bool = False
    hash_size_limit: int = HASH_SIZE_LIMIT
    compute_hashes: bool = True

    def effective_max_depth(self) -> int | None:
        if not self.recurse:
            return 1 if self.max_depth is None else min(1, self.max_depth)
        return self.max_depth


@dataclass(frozen=True, slots=True)
class ScanFailure:
    path: str
    reason: str


@dataclass(slots=True)
class ScanResult:
    root: str
    files: list[IndexEntry] = field(default_factory=list)
    folders: list[IndexEntry] = field(default_factory=list)
    failures: list[ScanFailure] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class DuplicateGroup:
    content_hash: str
    member_paths: list[str]
    count: int
    size: int


@dataclass(frozen=True, slots=True)
class CategoryStat:
    category: str
    file_count: int
    total_bytes: int


@dataclass(frozen=True)
class DirectoryStats:
    root: str
    total_files: int
    total_folders: int
    total_size: int
    by_category: list[CategoryStat]
    largest_files: list[IndexEntry]
    empty_folders: list[str]


@dataclass(slots=True)
class ScanSummary:
    root: str
    total_files: int = 0
    total_folders: int = 0
    total_size: int = 0
    files_by_extension: dict[str, list[str]] = field(default_factory=dict)
    empty_folders: list[str] = field(default_factory=list)
    duplicate_files: list[DuplicateGroup] = field(default_factory=list)
    failures: list[ScanFailure] = field(default_factory=list)
    from_cache: bool = False


class ProgressPhase(enum.Enum):
    START = "start"
    SCANNING = "scanning"
    COMPLETE = "complete"


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    phase: ProgressPhase
    progress_percent: int
    message: str
    current_path: str | None = None
    files_found: int = 0
    folders_found: int = 0


@dataclass(frozen=True)
class RebuildResult:
    root: str
    entries_written: int
    failures: list[ScanFailure]
    indexed_at: int
    duration_ms: int


@dataclass(frozen=True)
class IndexedRoot:
    path: str
    indexed_at: int
    recurse: bool
    max_depth: int | None
    include_hidden: bool
    hash_size_limit: int
    entry_count: int

    def matches(self, options: ScanOptions) -> bool:
        return (
            self.recurse == options.recurse
            and self.max_depth == options.max_depth
            and self.include_hidden == options.include_hidden
            and self.hash_size_limit == options.hash_size_limit
        )


@dataclass(frozen=True)
class FileStats:
    total_entries: int
    total_files: int
    total_dirs: int
    total_bytes: int
    last_indexed_at: int | None


@dataclass(frozen=True)
class ContentStats:
    hashed_files: int
    unhashed_files: int
    duplicate_groups: int
    duplicate_files: int


@dataclass(frozen=True)
class StatusSnapshot:
    # Roots
    roots: list[IndexedRoot]
    last_indexed_at: int | None

    # Entries
    total_entries: int
    total_files: int
    total_dirs: int
    total_bytes: int

    # Content
    hashed_files: int
    unhashed_files: int
    duplicate_groups: int
    duplicate_files: int

    # Integrity
    orphaned_entries: int
    staged_entries: int


@dataclass(frozen=True, slots=True)
class FileMove:
    source: str
    target: str
    category: str


@dataclass(slots=True)
class CleanupReport:
    preview: bool
    paths: list[str] = field(default_factory=list)
    reclaimed_bytes: int = 0
    errors: list[ScanFailure] = field(default_factory=list)
    moves: list[FileMove] = field(default_factory=list)
