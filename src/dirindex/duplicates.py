import os
from collections import defaultdict
from collections.abc import Iterable

from .IndexStore import IndexStore
from .models import DuplicateGroup, IndexEntry
from .scanner import normalize_root


def build_groups(members: Iterable[tuple[str, int, str]]) -> list[DuplicateGroup]:
    """
    Group (path, size, content_hash) triples by hash.

    Only hashes shared by two or more paths form a group. Members are sorted
    by path and groups by their first member, so the result is stable for a
    given input regardless of the order it arrives in.
    """
    by_hash: dict[str, list[tuple[str, int]]] = defaultdict(list)

    for path, size, content_hash in members:
        by_hash[content_hash].append((path, size))

    groups: list[DuplicateGroup] = []
    for content_hash, files in by_hash.items():
        if len(files) < 2:
            continue

        files.sort()
        groups.append(
            DuplicateGroup(
                content_hash=content_hash,
                member_paths=[path for path, _ in files],
                count=len(files),
                size=files[0][1],
            )
        )

    groups.sort(key=lambda group: group.member_paths[0])
    return groups


def group_entries(entries: Iterable[IndexEntry]) -> list[DuplicateGroup]:
    """Duplicate groups among freshly scanned entries. Unhashed files never match."""
    return build_groups(
        (entry.path, entry.size, entry.content_hash)
        for entry in entries
        if entry.is_file and entry.content_hash is not None
    )


def wasted_bytes(groups: Iterable[DuplicateGroup]) -> int:
    """Bytes that would be freed by keeping one copy per group."""
    return sum(group.size * (group.count - 1) for group in groups)


class DuplicateDetector:
    def __init__(self, store: IndexStore) -> None:
        self.store: IndexStore = store

    def find_duplicates(self, root: str | os.PathLike[str], recurse: bool = True) -> list[DuplicateGroup]:
        root_path: str = normalize_root(root)
        return build_groups(self.store.duplicate_members(root_path, recurse=recurse))
