import logging
from collections.abc import Generator
from contextlib import contextmanager
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Annotated

import typer

from .cleanup import organize_by_category, prune_empty_folders, remove_duplicates
from .config import CONFIG_FILENAME, AppConfig
from .duplicates import wasted_bytes
from .errors import RootUnavailable, ScanCancelled
from .index_db import IndexDB
from .models import CleanupReport, ProgressEvent, ScanOptions
from .progress import ProgressReporter
from .service import DirectoryService
from .status import echo_failures, echo_stats, echo_summary, format_size, status_command


def package_version() -> str:
    try:
        return version(distribution_name="dirindex")
    except PackageNotFoundError:
        return "unknown (package not installed)"


app: typer.Typer = typer.Typer(
    help=f"dirindex: index directory trees and find duplicates\n\nVersion: {package_version()}",
)

RootArg = Annotated[Path, typer.Argument(help="Directory to index or scan.")]
RecurseOpt = Annotated[bool, typer.Option("--recurse/--no-recurse", help="Descend into subdirectories.")]
MaxDepthOpt = Annotated[int | None, typer.Option(min=0, help="Maximum depth below the root.")]
HiddenOpt = Annotated[bool, typer.Option("--hidden", help="Include entries whose name starts with a dot.")]
ForceOpt = Annotated[bool, typer.Option(help="Rebuild the index even if it looks up to date.")]
ApplyOpt = Annotated[bool, typer.Option(help="Actually delete; without it only a preview is shown.")]


def print_version(is_version: bool) -> None:
    """
    Callback for the global --version / -V option.

    Prints the installed version and exits early so --version works
    regardless of which subcommand is given.
    """
    if not is_version:
        return

    typer.echo(package_version())
    raise typer.Exit()


def parse_size(value: str) -> int:
    # Normalize
    text: str = value.strip().upper()
    if not text:
        raise ValueError("Size must not be empty.")

    last_char: str = text[-1]
    # Match "[number][optional suffix]"
    if last_char in {"K", "M", "G"}:
        number: str = text[:-1]
        suffix: str | None = last_char
    else:
        number = text
        suffix = None

    try:
        base: int = int(number)
    except ValueError:
        raise ValueError("Specified size is not a number. Only K, M and G are allowed suffixes.")

    if suffix == "K":
        return base * 1024
    elif suffix == "M":
        return base * 1024 * 1024
    elif suffix == "G":
        return base * 1024 * 1024 * 1024
    else:
        return base


def load_config(ctx: typer.Context) -> AppConfig:
    path: Path = ctx.obj["config_path"] if ctx.obj else CONFIG_FILENAME

    try:
        return AppConfig.load(path)
    except FileNotFoundError as e:
        typer.echo(e, err=True)
        raise typer.Exit(code=1)


@contextmanager
def open_service(cfg: AppConfig) -> Generator[DirectoryService, None, None]:
    with IndexDB.open(cfg.db_path) as db:
        try:
            yield DirectoryService.from_config(cfg, db)
        except RootUnavailable as e:
            typer.echo(f"Cannot scan {e.path}: {e.reason}", err=True)
            raise typer.Exit(code=2)
        except ScanCancelled:
            typer.echo("Scan cancelled; the previous index was kept.", err=True)
            raise typer.Exit(code=130)


def progress_printer() -> ProgressReporter:
    reporter: ProgressReporter = ProgressReporter(buffered=False)

    def show(event: ProgressEvent) -> None:
        typer.echo(f"[{event.progress_percent:3d}%] {event.message}")

    reporter.subscribe(show)
    return reporter


def echo_cleanup(report: CleanupReport, noun: str) -> None:
    verb: str = "Would remove" if report.preview else "Removed"
    for path in report.paths:
        typer.echo(f"  {path}")
    typer.echo(f"{verb} {len(report.paths)} {noun}")
    if report.reclaimed_bytes:
        typer.echo(f"Space: {format_size(report.reclaimed_bytes)}")
    echo_failures(report.errors)


@app.command()
def init(
    ctx: typer.Context,
    db_path: Annotated[Path, typer.Option()] = Path("dirindex.db"),
    max_workers: Annotated[int, typer.Option()] = 0,
    max_inflight: Annotated[int, typer.Option()] = 256,
    chunk_size: Annotated[str, typer.Option(help="Hash read size, with optional K/M/G suffix")] = "1M",
    batch_size: Annotated[int, typer.Option()] = 500,
    hash_size_limit: Annotated[str, typer.Option(help="Largest file to hash, e.g. 100M")] = "100M",
    include_hidden: Annotated[bool, typer.Option()] = False,
    force: Annotated[bool, typer.Option()] = False,
) -> None:
    """Write a config file and create an empty index."""
    config_path: Path = ctx.obj["config_path"] if ctx.obj else CONFIG_FILENAME

    if config_path.exists() and not force:
        typer.echo("Config file already exists. Use --force to overwrite.")
        raise typer.Exit(code=1)

    try:
        chunk: int = parse_size(chunk_size)
        limit: int = parse_size(hash_size_limit)
    except ValueError as e:
        raise typer.BadParameter(str(e))

    cfg: AppConfig = AppConfig(
        db_path=db_path,
        max_workers=max_workers,
        max_inflight=max_inflight,
        chunk_size=chunk,
        batch_size=batch_size,
        hash_size_limit=limit,
        include_hidden=include_hidden,
    )

    cfg.save(config_path)
    typer.echo(f"Config written to {config_path}")

    with IndexDB.open(AppConfig.load(config_path).db_path):
        pass


@app.command()
def index(
    ctx: typer.Context,
    root: RootArg,
    recurse: RecurseOpt = True,
    max_depth: MaxDepthOpt = None,
    hidden: HiddenOpt = False,
    force: ForceOpt = False,
    deep: Annotated[bool, typer.Option(help="Check every indexed entry for changes, not just the root.")] = False,
    progress: Annotated[bool, typer.Option(help="Print progress while scanning.")] = False,
) -> None:
    """Build or refresh the index for ROOT."""
    cfg: AppConfig = load_config(ctx)
    options: ScanOptions = cfg.scan_options(recurse=recurse, max_depth=max_depth, include_hidden=hidden or None)

    with open_service(cfg) as service:
        result = service.refresh(
            root, options, force=force, deep=deep, progress=progress_printer() if progress else None
        )

    if result is None:
        # With --progress the reporter already printed the final line.
        if not progress:
            typer.echo("Index is up to date.")
        return

    typer.echo(f"Indexed {result.entries_written} entries under {result.root} in {result.duration_ms} ms")
    echo_failures(result.failures)


@app.command()
def stats(
    ctx: typer.Context,
    root: RootArg,
    recurse: RecurseOpt = True,
    max_depth: MaxDepthOpt = None,
    hidden: HiddenOpt = False,
    force: ForceOpt = False,
) -> None:
    """Show totals, categories, largest files and empty folders for ROOT."""
    cfg: AppConfig = load_config(ctx)
    options: ScanOptions = cfg.scan_options(recurse=recurse, max_depth=max_depth, include_hidden=hidden or None)

    with open_service(cfg) as service:
        echo_stats(service.stats(root, options, force=force))


@app.command()
def duplicates(
    ctx: typer.Context,
    root: RootArg,
    recurse: RecurseOpt = True,
    hidden: HiddenOpt = False,
    force: ForceOpt = False,
) -> None:
    """List groups of files with identical content under ROOT."""
    cfg: AppConfig = load_config(ctx)
    options: ScanOptions = cfg.scan_options(recurse=recurse, include_hidden=hidden or None)

    with open_service(cfg) as service:
        groups = service.duplicates(root, options, force=force)

    for group in groups:
        typer.echo(f"{group.content_hash}  {group.count} x {format_size(group.size)}")
        for path in group.member_paths:
            typer.echo(f"  {path}")

    typer.echo(f"{len(groups)} duplicate groups, {format_size(wasted_bytes(groups))} reclaimable")


@app.command()
def empty(
    ctx: typer.Context,
    root: RootArg,
    recurse: RecurseOpt = True,
    hidden: HiddenOpt = False,
    apply: ApplyOpt = False,
) -> None:
    """Preview or remove folders under ROOT that contain no files."""
    cfg: AppConfig = load_config(ctx)
    options: ScanOptions = cfg.scan_options(recurse=recurse, include_hidden=hidden or None)

    with open_service(cfg) as service:
        service.refresh(root, options)
        report: CleanupReport = prune_empty_folders(service.store, root, recurse=recurse, apply=apply)

    echo_cleanup(report, "empty folders")


@app.command()
def dedupe(
    ctx: typer.Context,
    root: RootArg,
    recurse: RecurseOpt = True,
    hidden: HiddenOpt = False,
    apply: ApplyOpt = False,
) -> None:
    """Preview or remove duplicate files under ROOT, keeping the first copy by path."""
    cfg: AppConfig = load_config(ctx)
    options: ScanOptions = cfg.scan_options(recurse=recurse, include_hidden=hidden or None)

    with open_service(cfg) as service:
        groups = service.duplicates(root, options)
        report: CleanupReport = remove_duplicates(service.store, groups, apply=apply)

    echo_cleanup(report, "duplicate files")


@app.command()
def organize(
    ctx: typer.Context,
    root: RootArg,
    recurse: RecurseOpt = True,
    hidden: HiddenOpt = False,
    apply: ApplyOpt = False,
) -> None:
    """Preview or move files under ROOT into image/, video/, audio/, document/ and other/ folders."""
    cfg: AppConfig = load_config(ctx)
    options: ScanOptions = cfg.scan_options(recurse=recurse, include_hidden=hidden or None)

    with open_service(cfg) as service:
        service.refresh(root, options)
        report: CleanupReport = organize_by_category(service.store, root, recurse=recurse, apply=apply)

    verb: str = "Would move" if report.preview else "Moved"
    for move in report.moves:
        typer.echo(f"  {move.source} -> {move.target}")
    typer.echo(f"{verb} {len(report.moves)} files")
    echo_failures(report.errors)


@app.command()
def scan(
    ctx: typer.Context,
    root: RootArg,
    recurse: RecurseOpt = True,
    max_depth: MaxDepthOpt = None,
    hidden: HiddenOpt = False,
    find_duplicates: Annotated[
        bool, typer.Option("--duplicates", help="Hash files and group duplicates.")
    ] = False,
    progress: Annotated[bool, typer.Option(help="Print progress while scanning.")] = False,
) -> None:
    """Scan ROOT without touching the index and print a summary."""
    cfg: AppConfig = load_config(ctx)
    options: ScanOptions = cfg.scan_options(recurse=recurse, max_depth=max_depth, include_hidden=hidden or None)

    with open_service(cfg) as service:
        summary = service.quick_scan(
            root,
            options,
            include_duplicates=find_duplicates,
            progress=progress_printer() if progress else None,
        )

    echo_summary(summary)


@app.command()
def stale(
    ctx: typer.Context,
    root: RootArg,
    deep: Annotated[bool, typer.Option(help="Check every indexed entry for changes, not just the root.")] = False,
) -> None:
    """Report whether the index for ROOT needs a rebuild. Exits with 1 when stale."""
    cfg: AppConfig = load_config(ctx)

    with open_service(cfg) as service:
        is_stale: bool = service.oracle.is_stale(root, deep=deep)

    typer.echo("stale" if is_stale else "fresh")
    if is_stale:
        raise typer.Exit(code=1)


@app.command()
def status(ctx: typer.Context) -> None:
    """Show what the index holds."""
    status_command(load_config(ctx))


@app.command(name="version")
def version_cmd() -> None:
    """Print the installed version of dirindex."""
    print_version(True)


@app.callback()
def main(
    ctx: typer.Context,
    config: Annotated[Path, typer.Option("--config", "-c", help="Path to the config file.")] = CONFIG_FILENAME,
    verbose: Annotated[int, typer.Option("--verbose", "-v", count=True, help="-v for info, -vv for debug.")] = 0,
    _version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=print_version,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """
    Global options for dirindex. All subcommands run after this callback unless
    --version is used.
    """
    level: int = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG

    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    ctx.obj = {"config_path": config}


if __name__ == "__main__":
    app()
