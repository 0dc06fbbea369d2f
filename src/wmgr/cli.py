"""wmgr command-line interface."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from ._version import __version__
from .config import RuntimeSettings
from .errors import WmgrError
from .foreach import ForeachConfig, foreach
from .formatters import OutputFormatter
from .history import LogConfig, collect_logs
from .logging import configure_logging, get_logger
from .manifest import dump_manifest as render_manifest
from .status import StatusConfig
from .status import status as run_status
from .sync import SyncConfig
from .sync import sync as run_sync
from .workspace import (
    DEFAULT_MANIFEST_BRANCH,
    Workspace,
    apply_manifest as apply_manifest_file,
    discover_workspace_root,
    init_workspace,
    load_workspace,
)

logger = get_logger("cli")

app = typer.Typer(
    name="wmgr",
    help="Manage a workspace of many repositories from a single manifest.",
    no_args_is_help=True,
)


@dataclass
class CliState:
    directory: Path | None = None
    settings: RuntimeSettings = field(default_factory=RuntimeSettings)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"wmgr {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log every step to stderr",
    ),
    directory: Path = typer.Option(
        None,
        "--directory",
        "-C",
        help="Run as if started in this directory",
    ),
):
    """wmgr: manage a workspace of many repositories from a single manifest."""
    try:
        settings = RuntimeSettings.from_env()
    except WmgrError as exc:
        Console(stderr=True).print(f"[red]Error:[/] {exc}")
        raise typer.Exit(1) from None
    configure_logging(verbose=verbose, level=settings.log_level)
    ctx.obj = CliState(directory=directory, settings=settings)


def get_console_and_formatter(json_output: bool) -> tuple[Console, OutputFormatter]:
    """Create console and formatter."""
    console = Console(highlight=not json_output)
    formatter = OutputFormatter(console, use_json=json_output)
    return console, formatter


def _state(ctx: typer.Context) -> CliState:
    return ctx.obj if isinstance(ctx.obj, CliState) else CliState()


def _start_dir(ctx: typer.Context) -> Path:
    return (_state(ctx).directory or Path.cwd()).resolve()


def _load(ctx: typer.Context) -> Workspace:
    start = _start_dir(ctx)
    root = discover_workspace_root(start) or start
    return load_workspace(root, _state(ctx).settings.config_path)


@contextmanager
def _spinner(console: Console, json_output: bool, description: str):
    if json_output:
        yield
        return
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task(description, total=None)
        yield


def _fail(formatter: OutputFormatter, exc: WmgrError):
    logger.debug("Command failed", exc_info=exc)
    formatter.print_error(exc)
    raise typer.Exit(1)


@app.command()
def init(
    ctx: typer.Context,
    source: str = typer.Argument(
        None,
        help="Manifest file or git URL of a manifest repository (omit to write a template)",
    ),
    branch: str = typer.Option(
        DEFAULT_MANIFEST_BRANCH,
        "--branch",
        "-b",
        help="Branch of the manifest repository",
    ),
    groups: list[str] = typer.Option(
        None,
        "--group",
        "-g",
        help="Default group(s) for later commands",
    ),
    shallow: bool = typer.Option(False, "--shallow", help="Clone repositories with depth 1"),
    clone_all: bool = typer.Option(
        False, "--clone-all-repos", help="Ignore default groups and select every repository"
    ),
    singular_remote: str = typer.Option(
        None, "--singular-remote", "-r", help="Only use the remote with this name"
    ),
    manifest_name: str = typer.Option(
        "wmgr.yaml", "--name", help="File name for the template manifest"
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing workspace"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Create a workspace in the current directory."""
    _, formatter = get_console_and_formatter(json_output)
    try:
        workspace = init_workspace(
            _start_dir(ctx),
            source,
            branch=branch,
            groups=groups,
            shallow=shallow,
            clone_all=clone_all,
            singular_remote=singular_remote,
            force=force,
            template_name=manifest_name,
        )
    except WmgrError as exc:
        _fail(formatter, exc)
    formatter.print_workspace(workspace)


@app.command()
def sync(
    ctx: typer.Context,
    groups: list[str] = typer.Option(None, "--group", "-g", help="Only sync these groups"),
    force: bool = typer.Option(
        False, "--force", "-f", help="Discard local changes when switching branches"
    ),
    no_correct_branch: bool = typer.Option(
        False,
        "--no-correct-branch",
        help="Leave repositories on their current branch",
    ),
    parallel: bool = typer.Option(False, "--parallel", "-p", help="Sync repositories in parallel"),
    jobs: int = typer.Option(None, "--jobs", help="Maximum parallel jobs"),
    recursive: bool = typer.Option(
        False, "--recursive", "-r", help="Also sync nested workspaces"
    ),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Clone missing repositories and fast-forward the others."""
    console, formatter = get_console_and_formatter(json_output)
    settings = _state(ctx).settings
    config = SyncConfig(
        groups=groups or None,
        force=force,
        correct_branch=not no_correct_branch,
        parallel=parallel,
        max_jobs=jobs or settings.jobs,
        recursive=recursive,
        timeout=settings.timeout,
    )
    try:
        workspace = _load(ctx)
        with _spinner(console, json_output, "Syncing repositories..."):
            result = run_sync(workspace, config)
    except WmgrError as exc:
        _fail(formatter, exc)

    formatter.print_sync_result(result)
    if not result.ok:
        raise typer.Exit(1)


@app.command()
def status(
    ctx: typer.Context,
    show_branch: bool = typer.Option(False, "--branch", "-b", help="Show current branches"),
    compact: bool = typer.Option(False, "--compact", "-c", help="One line per repository"),
    groups: list[str] = typer.Option(None, "--group", "-g", help="Only these groups"),
    parallel: bool = typer.Option(
        True, "--parallel/--sequential", help="Inspect repositories in parallel"
    ),
    jobs: int = typer.Option(None, "--jobs", help="Maximum parallel jobs"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show how each repository differs from the manifest."""
    console, formatter = get_console_and_formatter(json_output)
    settings = _state(ctx).settings
    config = StatusConfig(
        groups=groups or None,
        show_branch=show_branch,
        compact=compact,
        parallel=parallel,
        max_jobs=jobs or settings.jobs,
        timeout=settings.timeout,
    )
    try:
        workspace = _load(ctx)
        with _spinner(console, json_output, "Inspecting repositories..."):
            report = run_status(workspace, config)
    except WmgrError as exc:
        _fail(formatter, exc)

    formatter.print_status_report(report, show_branch=show_branch, compact=compact)
    if not report.ok:
        raise typer.Exit(1)


@app.command(name="foreach")
def foreach_command(
    ctx: typer.Context,
    command: str = typer.Argument(..., help="Shell command to run in every repository"),
    groups: list[str] = typer.Option(None, "--group", "-g", help="Only these groups"),
    parallel: bool = typer.Option(False, "--parallel", "-p", help="Run in parallel"),
    jobs: int = typer.Option(None, "--jobs", help="Maximum parallel jobs"),
    continue_on_error: bool = typer.Option(
        False,
        "--continue-on-error",
        "-k",
        help="Keep going after a repository fails",
    ),
    timeout: float = typer.Option(None, "--timeout", help="Seconds before a command is killed"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Run a command in every repository."""
    _, formatter = get_console_and_formatter(json_output)
    settings = _state(ctx).settings
    config = ForeachConfig(
        command=command,
        groups=groups or None,
        parallel=parallel,
        max_jobs=jobs or settings.jobs,
        continue_on_error=continue_on_error,
        timeout=timeout or settings.timeout,
    )
    try:
        report = foreach(_load(ctx), config)
    except WmgrError as exc:
        _fail(formatter, exc)

    formatter.print_foreach_report(report)
    if not report.ok:
        raise typer.Exit(1)


@app.command()
def log(
    ctx: typer.Context,
    groups: list[str] = typer.Option(None, "--group", "-g", help="Only these groups"),
    oneline: bool = typer.Option(True, "--oneline/--full", help="One line per commit"),
    max_count: int = typer.Option(None, "--max-count", "-n", help="Commits per repository"),
    since: str = typer.Option(None, "--since", help="Only commits after this date"),
    until: str = typer.Option(None, "--until", help="Only commits before this date"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show recent commits of every repository."""
    _, formatter = get_console_and_formatter(json_output)
    settings = _state(ctx).settings
    config = LogConfig(
        groups=groups or None,
        oneline=oneline,
        max_count=max_count,
        since=since,
        until=until,
        max_jobs=settings.jobs,
        timeout=settings.timeout,
    )
    try:
        report = collect_logs(_load(ctx), config)
    except WmgrError as exc:
        _fail(formatter, exc)

    formatter.print_log_report(report)
    if not report.ok:
        raise typer.Exit(1)


@app.command(name="dump-manifest")
def dump_manifest(
    ctx: typer.Context,
    fmt: str = typer.Option("yaml", "--format", "-f", help="yaml or json"),
    output: Path = typer.Option(None, "--output", "-o", help="Write to this file"),
):
    """Print the resolved manifest."""
    console, formatter = get_console_and_formatter(False)
    try:
        manifest = _load(ctx).require_initialized()
        text = render_manifest(manifest, fmt)
    except WmgrError as exc:
        _fail(formatter, exc)

    if output is not None:
        output.write_text(text, encoding="utf-8")
        console.print(f"Manifest written to {output}")
    else:
        console.print(text, markup=False, highlight=False, soft_wrap=True, end="")


@app.command(name="apply-manifest")
def apply_manifest(
    ctx: typer.Context,
    manifest_file: Path = typer.Argument(..., help="Manifest to apply"),
    force: bool = typer.Option(False, "--force", "-f", help="Write the changes"),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Only show the changes"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Replace the workspace manifest with another manifest file."""
    _, formatter = get_console_and_formatter(json_output)
    try:
        result = apply_manifest_file(_load(ctx), manifest_file, force=force, dry_run=dry_run)
    except WmgrError as exc:
        _fail(formatter, exc)
    formatter.print_apply_result(result)


if __name__ == "__main__":
    app()
