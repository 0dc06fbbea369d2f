"""Commit history across workspace repositories."""

from __future__ import annotations

from dataclasses import dataclass, field

from .errors import WmgrError
from .models import Repository, ScmType
from .runner import run_parallel
from .vcs import backend_for
from .workspace import Workspace


@dataclass
class LogConfig:
    groups: list[str] | None = None
    oneline: bool = True
    max_count: int | None = None
    since: str | None = None
    until: str | None = None
    parallel: bool = True
    max_jobs: int | None = None
    timeout: float | None = None

    def options(self) -> list[str]:
        """git log options for this configuration."""
        options = ["--oneline", "--decorate"] if self.oneline else ["--format=medium"]
        if self.max_count is not None:
            options.append(f"--max-count={self.max_count}")
        if self.since:
            options.append(f"--since={self.since}")
        if self.until:
            options.append(f"--until={self.until}")
        return options


@dataclass
class LogEntry:
    dest: str
    output: str = ""
    error: str = ""

    def to_dict(self) -> dict:
        return {"dest": self.dest, "output": self.output, "error": self.error}


@dataclass
class LogReport:
    entries: list[LogEntry] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not any(entry.error for entry in self.entries)

    def to_dict(self) -> dict:
        return {"repositories": [e.to_dict() for e in self.entries]}


def collect_logs(workspace: Workspace, config: LogConfig | None = None) -> LogReport:
    config = config or LogConfig()
    repos = workspace.select(config.groups)
    options = config.options()

    def read_log(repo: Repository) -> LogEntry:
        path = workspace.repo_path(repo.dest)
        if not path.is_dir():
            return LogEntry(repo.dest, error="repository not cloned")
        try:
            backend = backend_for(repo.scm, timeout=config.timeout)
            if repo.scm == ScmType.SVN:
                svn_options = [f"--limit={config.max_count}"] if config.max_count else []
                return LogEntry(repo.dest, output=backend.log(path, svn_options))
            return LogEntry(repo.dest, output=backend.log(path, options))
        except WmgrError as exc:
            return LogEntry(repo.dest, error=exc.message)

    entries = run_parallel(
        repos,
        read_log,
        key=lambda repo: repo.dest,
        max_jobs=config.max_jobs,
        parallel=config.parallel,
    )
    return LogReport(entries=list(entries.values()))
