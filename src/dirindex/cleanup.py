import logging
import os
from collections.abc import Iterable
from dataclasses import replace

from .IndexStore import IndexStore
from .models import CleanupReport, DuplicateGroup, EntryKind, FileMove, IndexEntry, ScanFailure
from .scanner import normalize_root, now_ms
from .stats import StatsAggregator, category_for_extension

logger = logging.getLogger(__name__)


def _depth(path: str) -> int:
    return path.count(os.sep)


def prune_empty_folders(
    store: IndexStore, root: str | os.PathLike[str], *, recurse: bool = True, apply: bool = False
) -> CleanupReport:
    """
    Remove the folders the index reports as empty, deepest first.

    In preview mode nothing is touched. Folders that turn out not to be empty
    on disk (for example because they hold hidden files that were not
    indexed) are reported as errors and left in place.
    """
    root_path: str = normalize_root(root)
    empty: list[str] = StatsAggregator(store).empty_folders(root_path, recurse=recurse)
    report: CleanupReport = CleanupReport(preview=not apply)

    if not apply:
        report.paths = empty
        return report

    for path in sorted(empty, key=lambda p: (-_depth(p), p)):
        try:
            os.rmdir(path)
        except OSError as e:
            logger.warning("Cannot remove %s: %s", path, e)
            report.errors.append(ScanFailure(path=path, reason=e.strerror or str(e)))
            continue
        report.paths.append(path)

    store.begin()
    try:
        for path in report.paths:
            store.delete_subtree(path)
    except BaseException:
        store.rollback()
        raise
    store.commit()

    report.paths.sort()
    return report


def remove_duplicates(
    store: IndexStore, groups: Iterable[DuplicateGroup], *, apply: bool = False
) -> CleanupReport:
    """
    Keep the first member (by path) of every group and remove the others.

    A group whose kept copy is no longer on disk is skipped entirely so the
    last copy of some content is never deleted.
    """
    report: CleanupReport = CleanupReport(preview=not apply)

    for group in groups:
        keep, *extra = group.member_paths

        if apply and not os.path.isfile(keep):
            report.errors.append(ScanFailure(path=keep, reason="kept copy is missing; group skipped"))
            continue

        for path in extra:
            if apply:
                try:
                    os.unlink(path)
                except OSError as e:
                    logger.warning("Cannot remove %s: %s", path, e)
                    report.errors.append(ScanFailure(path=path, reason=e.strerror or str(e)))
                    continue

            report.paths.append(path)
            report.reclaimed_bytes += group.size

    if apply and report.paths:
        store.begin()
        try:
            store.delete_paths(report.paths)
        except BaseException:
            store.rollback()
            raise
        store.commit()

    return report


def _plan_moves(store: IndexStore, root_path: str, recurse: bool, report: CleanupReport) -> list[IndexEntry]:
    """Fill `report.moves` and return the index entries of the files to move, in the same order."""
    sources: list[IndexEntry] = []
    taken: set[str] = set()

    for entry in store.scoped_entries(root_path, recurse=recurse, kind=EntryKind.FILE):
        category: str = category_for_extension(entry.extension)
        target_dir: str = os.path.join(root_path, category)
        if entry.parent_path == target_dir:
            continue

        target: str = os.path.join(target_dir, entry.name)
        if target in taken or os.path.lexists(target):
            report.errors.append(ScanFailure(path=entry.path, reason=f"{target} already exists"))
            continue

        taken.add(target)
        report.moves.append(FileMove(source=entry.path, target=target, category=category))
        sources.append(entry)

    return sources


def organize_by_category(
    store: IndexStore, root: str | os.PathLike[str], *, recurse: bool = True, apply: bool = False
) -> CleanupReport:
    """
    Move indexed files into one folder per category directly below `root`.

    Files already in their category folder stay where they are. A file whose
    target name is taken, on disk or by an earlier move in the same run, is
    reported as an error and left alone; nothing is ever overwritten. When
    applied, the index rows follow the files to their new paths and rows for
    newly created category folders are added.
    """
    root_path: str = normalize_root(root)
    report: CleanupReport = CleanupReport(preview=not apply)
    sources: list[IndexEntry] = _plan_moves(store, root_path, recurse, report)

    if not apply:
        report.paths = [move.source for move in report.moves]
        return report

    stamp: int = max(now_ms(), store.max_indexed_at(root_path) or 0)
    planned: list[FileMove] = report.moves
    report.moves = []
    moved: list[IndexEntry] = []
    created: dict[str, IndexEntry] = {}

    for move, entry in zip(planned, sources):
        target_dir: str = os.path.dirname(move.target)
        try:
            if target_dir not in created and store.get_entry(target_dir) is None:
                if not os.path.isdir(target_dir):
                    os.mkdir(target_dir)
                dir_stat: os.stat_result = os.stat(target_dir)
                created[target_dir] = IndexEntry(
                    path=target_dir,
                    parent_path=root_path,
                    name=move.category,
                    kind=EntryKind.DIRECTORY,
                    size=0,
                    extension="",
                    mtime=dir_stat.st_mtime_ns // 1_000_000,
                    ctime=dir_stat.st_ctime_ns // 1_000_000,
                    indexed_at=stamp,
                    listed=True,
                )
            os.rename(move.source, move.target)
            st: os.stat_result = os.stat(move.target, follow_symlinks=False)
        except OSError as e:
            logger.warning("Cannot move %s to %s: %s", move.source, move.target, e)
            report.errors.append(ScanFailure(path=move.source, reason=e.strerror or str(e)))
            continue

        report.moves.append(move)
        report.paths.append(move.source)
        moved.append(
            replace(
                entry,
                path=move.target,
                parent_path=target_dir,
                mtime=st.st_mtime_ns // 1_000_000,
                ctime=st.st_ctime_ns // 1_000_000,
                indexed_at=stamp,
            )
        )

    if report.moves or created:
        store.begin()
        try:
            store.delete_paths(report.paths)
            store.upsert_entries([*created.values(), *moved])
        except BaseException:
            store.rollback()
            raise
        store.commit()

    return report
