"""Output formatters for console and JSON display."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .status import StatusKind
from .sync import SyncOutcome

if TYPE_CHECKING:
    from .errors import WmgrError
    from .foreach import ExecutionResult, ForeachReport
    from .history import LogReport
    from .status import RepoStatus, StatusReport
    from .sync import SyncResult
    from .workspace import ApplyResult, Workspace


class OutputFormatter:
    """Format output for console or JSON."""

    def __init__(self, console: Console, use_json: bool = False):
        self.console = console
        self.use_json = use_json

    def _print_json(self, output: dict):
        self.console.print(
            json.dumps(output, indent=2, default=str), markup=False, highlight=False, soft_wrap=True
        )

    # -------------------------------------------------------------------------
    # sync
    # -------------------------------------------------------------------------

    def print_sync_result(self, result: SyncResult):
        """Print sync outcomes."""
        if self.use_json:
            self._print_json(result.to_dict())
        else:
            self._print_sync_table(result)

    def _get_outcome_icon(self, outcome: SyncOutcome) -> str:
        match outcome:
            case SyncOutcome.CLONED:
                return "[green]+ cloned[/]"
            case SyncOutcome.UPDATED:
                return "[blue]⬇ updated[/]"
            case SyncOutcome.UP_TO_DATE:
                return "[green]✓[/]"
            case SyncOutcome.SKIPPED:
                return "[yellow]- skipped[/]"
            case SyncOutcome.FAILED:
                return "[red]✗ failed[/]"
            case _:
                return "[dim]?[/]"

    def _print_sync_table(self, result: SyncResult):
        if not result.repos:
            self.console.print("[dim]No repositories to sync[/]")
            return

        table = Table(title="Sync Results")
        table.add_column("Repository", style="cyan", no_wrap=True)
        table.add_column("Branch")
        table.add_column("Result", justify="center")
        table.add_column("Message")

        for repo in result.repos:
            message = escape(repo.message)
            if repo.outcome == SyncOutcome.FAILED:
                message = f"[red]{message}[/]"
            table.add_row(
                escape(repo.dest),
                escape(repo.branch or ""),
                self._get_outcome_icon(repo.outcome),
                message,
            )

        self.console.print(table)
        self.console.print()

        parts = [f"[bold]Total:[/] {len(result.repos)}"]
        if result.cloned:
            parts.append(f"[green]Cloned:[/] {result.cloned}")
        if result.updated:
            parts.append(f"[blue]Updated:[/] {result.updated}")
        parts.append(f"[green]✓ Successful:[/] {result.successful}")
        if result.skipped:
            parts.append(f"[yellow]Skipped:[/] {result.skipped}")
        if result.failed:
            parts.append(f"[red]✗ Failed:[/] {result.failed}")
        self.console.print(" | ".join(parts))

        if result.errors:
            self.console.print("\n[bold red]Errors:[/]")
            for dest, message in result.errors:
                self.console.print(f"  [cyan]{escape(dest)}[/]: {escape(message)}")

    # -------------------------------------------------------------------------
    # status
    # -------------------------------------------------------------------------

    def print_status_report(
        self, report: StatusReport, show_branch: bool = False, compact: bool = False
    ):
        """Print workspace status."""
        if self.use_json:
            self._print_json(report.to_dict())
        elif compact:
            self._print_status_compact(report)
        else:
            self._print_status_table(report, show_branch)

    def _get_status_char(self, status: RepoStatus) -> str:
        match status.kind:
            case StatusKind.CLEAN:
                return "[green]✓[/]"
            case StatusKind.DIRTY:
                return "[yellow]M[/]"
            case StatusKind.MISSING:
                return "[red]?[/]"
            case StatusKind.WRONG_BRANCH:
                return "[magenta]B[/]"
            case StatusKind.OUT_OF_SYNC:
                return "[blue]S[/]"
            case StatusKind.ERROR:
                return "[red]E[/]"
            case _:
                return "[dim]?[/]"

    def _get_status_detail(self, status: RepoStatus) -> str:
        match status.kind:
            case StatusKind.CLEAN:
                return "[green]clean[/]"
            case StatusKind.DIRTY:
                return (
                    f"[yellow]dirty[/] \\[{status.modified_count}M "
                    f"{status.staged_count}S {status.untracked_count}U]"
                )
            case StatusKind.MISSING:
                return "[red]missing[/]"
            case StatusKind.WRONG_BRANCH:
                return (
                    f"[magenta]wrong branch[/] "
                    f"(expected {escape(status.expected or '')}, on {escape(status.branch or '?')})"
                )
            case StatusKind.OUT_OF_SYNC:
                return f"[blue]out of sync[/] ⬆{status.ahead} ⬇{status.behind}"
            case StatusKind.ERROR:
                return f"[red]error: {escape(status.message)}[/]"
            case _:
                return "[dim]unknown[/]"

    def _print_status_compact(self, report: StatusReport):
        for status in report.repos:
            self.console.print(f"{self._get_status_char(status)} {escape(status.dest)}")
        self._print_status_summary(report)

    def _print_status_table(self, report: StatusReport, show_branch: bool):
        table = Table(title="Workspace Status")
        table.add_column("", justify="center")
        table.add_column("Repository", style="cyan", no_wrap=True)
        if show_branch:
            table.add_column("Branch")
        table.add_column("Status")

        for status in report.repos:
            row = [self._get_status_char(status), escape(status.dest)]
            if show_branch:
                row.append(escape(status.branch or ""))
            row.append(self._get_status_detail(status))
            table.add_row(*row)

        self.console.print(table)
        self.console.print()
        self._print_status_summary(report)

    def _print_status_summary(self, report: StatusReport):
        summary = report.summary
        parts = [f"[bold]Total:[/] {summary.total}"]
        if summary.clean:
            parts.append(f"[green]✓ Clean:[/] {summary.clean}")
        if summary.dirty:
            parts.append(f"[yellow]M Dirty:[/] {summary.dirty}")
        if summary.missing:
            parts.append(f"[red]? Missing:[/] {summary.missing}")
        if summary.wrong_branch:
            parts.append(f"[magenta]B Wrong branch:[/] {summary.wrong_branch}")
        if summary.out_of_sync:
            parts.append(f"[blue]S Out of sync:[/] {summary.out_of_sync}")
        if summary.error:
            parts.append(f"[red]E Errors:[/] {summary.error}")
        self.console.print(" | ".join(parts))

    # -------------------------------------------------------------------------
    # foreach
    # -------------------------------------------------------------------------

    def print_foreach_report(self, report: ForeachReport):
        if self.use_json:
            self._print_json(report.to_dict())
            return
        for result in report.results:
            self._print_execution(result)
        ok = sum(1 for r in report.results if r.success)
        self.console.print(f"\n[bold]Success:[/] {ok}/{len(report.results)}")

    def _print_execution(self, result: ExecutionResult):
        header = f"[bold cyan]{escape(result.dest)}[/]"
        if result.success:
            header += f" [green]✓[/] [dim]{result.duration:.2f}s[/]"
        elif result.exit_code is not None:
            header += f" [red]✗ exit {result.exit_code}[/]"
        else:
            header += f" [yellow]{result.state.value}[/]"
            if result.error:
                header += f" [dim]{escape(result.error)}[/]"
        self.console.print(header)
        if result.stdout:
            self.console.print(escape(result.stdout.rstrip()), highlight=False)
        if result.stderr:
            self.console.print(f"[red]{escape(result.stderr.rstrip())}[/]", highlight=False)

    # -------------------------------------------------------------------------
    # log
    # -------------------------------------------------------------------------

    def print_log_report(self, report: LogReport):
        if self.use_json:
            self._print_json(report.to_dict())
            return
        for entry in report.entries:
            self.console.print(f"[bold cyan]== {escape(entry.dest)}[/]")
            if entry.error:
                self.console.print(f"[red]{escape(entry.error)}[/]")
            elif entry.output.strip():
                self.console.print(escape(entry.output.rstrip()), highlight=False)
            else:
                self.console.print("[dim]no commits[/]")
            self.console.print()

    # -------------------------------------------------------------------------
    # manifest / workspace
    # -------------------------------------------------------------------------

    def print_apply_result(self, result: ApplyResult):
        if self.use_json:
            self._print_json(result.to_dict())
            return
        changes = result.changes
        if not changes.has_changes:
            self.console.print("[green]Manifest is already up to date[/]")
            return
        for repo in changes.added:
            self.console.print(f"[green]+ {escape(repo.dest)}[/] {escape(repo.url)}")
        for old, new in changes.modified:
            self.console.print(
                f"[yellow]~ {escape(new.dest)}[/] {escape(old.url)} -> {escape(new.url)}"
            )
        for repo in changes.removed:
            self.console.print(f"[red]- {escape(repo.dest)}[/]")
        if result.dry_run:
            self.console.print("\n[dim]Dry run: nothing written[/]")
        elif result.applied:
            self.console.print(f"\n[bold]Manifest written to[/] {result.manifest_path}")

    def print_workspace(self, workspace: Workspace):
        if self.use_json:
            self._print_json(
                {
                    "root": str(workspace.root),
                    "status": workspace.status.value,
                    "manifest": str(workspace.manifest_path) if workspace.manifest_path else None,
                    "config": workspace.config.to_dict(),
                    "repositories": len(workspace.repositories),
                }
            )
            return
        self.console.print(f"[green]✓[/] Workspace initialized at [bold]{workspace.root}[/]")
        if workspace.manifest_path:
            self.console.print(f"  Manifest: {workspace.manifest_path}")
        self.console.print(f"  Repositories: {len(workspace.repositories)}")

    def print_error(self, error: WmgrError):
        if self.use_json:
            self._print_json({"error": error.to_dict()})
        else:
            self.console.print(f"[red]Error:[/] {escape(str(error))}")
