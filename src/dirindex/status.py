from datetime import datetime

import typer

from .config import AppConfig
from .index_db import IndexDB
from .IndexStore import IndexStore
from .models import DirectoryStats, ScanFailure, ScanSummary, StatusSnapshot


def _format_ms(ts: int | None) -> str:
    if ts is None:
        return "never"
    return datetime.fromtimestamp(ts / 1e3).isoformat(timespec="seconds")


def format_size(size: int) -> str:
    value: float = float(size)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024:
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TiB"


def echo_failures(failures: list[ScanFailure], limit: int = 10) -> None:
    if not failures:
        return

    typer.echo(f"\nSkipped {len(failures)} unreadable entries")
    for failure in failures[:limit]:
        typer.echo(f"  {failure.path}: {failure.reason}")
    if len(failures) > limit:
        typer.echo(f"  ... and {len(failures) - limit} more")


def echo_stats(s: DirectoryStats) -> None:
    typer.echo(f"Statistics for {s.root}")
    typer.echo("-" * (15 + len(s.root)))
    typer.echo(f"Files:               {s.total_files}")
    typer.echo(f"Folders:             {s.total_folders}")
    typer.echo(f"Total size:          {s.total_size:,} bytes ({format_size(s.total_size)})")

    typer.echo("\nBy category")
    typer.echo("-----------")
    for stat in s.by_category:
        typer.echo(f"{stat.category:<20} {stat.file_count:>8} files  {format_size(stat.total_bytes):>12}")

    typer.echo("\nLargest files")
    typer.echo("-------------")
    for entry in s.largest_files:
        typer.echo(f"{format_size(entry.size):>12}  {entry.path}")

    typer.echo(f"\nEmpty folders:       {len(s.empty_folders)}")
    for path in s.empty_folders:
        typer.echo(f"  {path}")


def echo_summary(s: ScanSummary) -> None:
    source: str = " (cached)" if s.from_cache else ""
    typer.echo(f"Scan of {s.root}{source}")
    typer.echo(f"Files:               {s.total_files}")
    typer.echo(f"Folders:             {s.total_folders}")
    typer.echo(f"Total size:          {s.total_size:,} bytes ({format_size(s.total_size)})")

    typer.echo("\nBy extension")
    typer.echo("------------")
    for extension, paths in sorted(s.files_by_extension.items(), key=lambda item: (-len(item[1]), item[0])):
        typer.echo(f"{extension or '(none)':<20} {len(paths):>8}")

    typer.echo(f"\nEmpty folders:       {len(s.empty_folders)}")
    if s.duplicate_files:
        typer.echo(f"Duplicate groups:    {len(s.duplicate_files)}")

    echo_failures(s.failures)


def status_command(cfg: AppConfig) -> None:
    """
    Show index status and high-level statistics.
    """
    with IndexDB.open(cfg.db_path) as db:
        store: IndexStore = IndexStore(index_db=db)
        s: StatusSnapshot = store.get_status_snapshot()

    typer.echo("Index status")
    typer.echo("------------")
    typer.echo(f"Last indexed:        {_format_ms(s.last_indexed_at)}")
    typer.echo(f"Rebuild interrupted: {'yes' if s.staged_entries else 'no'}")

    typer.echo("\nRoots")
    typer.echo("-----")
    if not s.roots:
        typer.echo("No roots indexed yet.")
    for root in s.roots:
        mode: str = "recursive" if root.recurse else "top level"
        if root.max_depth is not None:
            mode += f", depth {root.max_depth}"
        typer.echo(f"{root.path}  ({root.entry_count} entries, {mode}, {_format_ms(root.indexed_at)})")

    typer.echo("\nEntries")
    typer.echo("-------")
    typer.echo(f"Files indexed:       {s.total_files}")
    typer.echo(f"Folders indexed:     {s.total_dirs}")
    typer.echo(f"Total size:          {s.total_bytes:,} bytes")

    typer.echo("\nContent")
    typer.echo("-------")
    typer.echo(f"Hashed files:        {s.hashed_files}")
    typer.echo(f"Too large to hash:   {s.unhashed_files}")
    typer.echo(f"Duplicate groups:    {s.duplicate_groups}")
    typer.echo(f"Duplicate files:     {s.duplicate_files}")

    if s.orphaned_entries:
        typer.echo("\nIntegrity warnings")
        typer.echo("------------------")
        typer.echo(f"Orphaned entries:    {s.orphaned_entries}")
