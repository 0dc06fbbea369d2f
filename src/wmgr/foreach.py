"""Run one command in every selected repository."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum

from .errors import InvalidCommand
from .logging import get_logger
from .models import Repository
from .runner import BatchTask, CommandSpec, TaskState, run_batch
from .workspace import Workspace

logger = get_logger("foreach")

ENV_REPO_NAME = "WMGR_REPO_NAME"
ENV_REPO_PATH = "WMGR_REPO_PATH"
ENV_WORKSPACE_ROOT = "WMGR_WORKSPACE_ROOT"
ENV_REPO_URL = "WMGR_REPO_URL"
ENV_REPO_BRANCH = "WMGR_REPO_BRANCH"
ENV_REPO_GROUPS = "WMGR_REPO_GROUPS"


class ExecutionState(StrEnum):
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass
class ForeachConfig:
    command: str | list[str]
    groups: list[str] | None = None
    parallel: bool = False
    max_jobs: int | None = None
    continue_on_error: bool = False
    timeout: float | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    shell: bool = True
    capture_output: bool = True


@dataclass
class ExecutionResult:
    """Result of running the command in one repository."""

    dest: str
    command: str
    state: ExecutionState
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    error: str = ""

    @property
    def success(self) -> bool:
        return self.state == ExecutionState.SUCCESS

    def to_dict(self) -> dict:
        return {
            "dest": self.dest,
            "command": self.command,
            "state": self.state.value,
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "duration": round(self.duration, 3),
            "error": self.error,
        }


@dataclass
class ForeachReport:
    results: list[ExecutionResult] = field(default_factory=list)

    def _count(self, state: ExecutionState) -> int:
        return sum(1 for r in self.results if r.state == state)

    @property
    def ok(self) -> bool:
        return all(r.state in (ExecutionState.SUCCESS, ExecutionState.SKIPPED) for r in self.results)

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "summary": {
                "total": len(self.results),
                **{state.value: self._count(state) for state in ExecutionState},
            },
        }


def repo_environment(workspace: Workspace, repo: Repository) -> dict[str, str]:
    """Variables describing ``repo`` to the child process."""
    return {
        ENV_REPO_NAME: repo.dest,
        ENV_REPO_PATH: str(workspace.repo_path(repo.dest)),
        ENV_WORKSPACE_ROOT: str(workspace.root),
        ENV_REPO_URL: repo.url,
        ENV_REPO_BRANCH: repo.branch or "",
        ENV_REPO_GROUPS: ",".join(repo.groups),
    }


_STATES = {
    TaskState.SUCCESS: ExecutionState.SUCCESS,
    TaskState.FAILED: ExecutionState.FAILED,
    TaskState.TIMEOUT: ExecutionState.TIMEOUT,
    TaskState.CANCELLED: ExecutionState.CANCELLED,
}


def foreach(workspace: Workspace, config: ForeachConfig) -> ForeachReport:
    """Run ``config.command`` once per selected repository.

    Results come back in manifest order, one per selected repository.
    Repositories missing on disk are reported as skipped.
    """
    if not config.command or (isinstance(config.command, str) and not config.command.strip()):
        raise InvalidCommand("foreach needs a command to run")

    repos = workspace.select(config.groups)
    command_text = config.command if isinstance(config.command, str) else " ".join(config.command)

    tasks: list[BatchTask] = []
    skipped: dict[str, ExecutionResult] = {}
    for repo in repos:
        path = workspace.repo_path(repo.dest)
        if not path.is_dir():
            skipped[repo.dest] = ExecutionResult(
                repo.dest, command_text, ExecutionState.SKIPPED, error="repository not cloned"
            )
            continue
        env = {**repo_environment(workspace, repo), **config.env}
        spec = CommandSpec(
            config.command,
            cwd=path,
            env=env,
            timeout=config.timeout,
            capture_output=config.capture_output,
            shell=config.shell,
        )
        tasks.append(BatchTask(key=repo.dest, spec=spec))

    jobs = config.max_jobs if config.parallel else 1
    logger.info("Running '%s' in %d repositories", command_text, len(tasks))
    outcomes = run_batch(tasks, max_jobs=jobs, fail_fast=not config.continue_on_error)

    report = ForeachReport()
    for repo in repos:
        if repo.dest in skipped:
            report.results.append(skipped[repo.dest])
            continue
        outcome = outcomes[repo.dest]
        result = ExecutionResult(
            repo.dest, command_text, _STATES[outcome.state], error=outcome.error
        )
        if outcome.result is not None:
            result.exit_code = outcome.result.exit_code
            result.stdout = outcome.result.stdout
            result.stderr = outcome.result.stderr
            result.duration = outcome.result.duration
        report.results.append(result)
    return report
