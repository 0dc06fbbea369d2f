"""External process execution and bounded parallel fan-out."""

from __future__ import annotations

import os
import shlex
import signal
import subprocess
import threading
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TypeVar

from .config import default_jobs
from .errors import CommandTimeout, SpawnFailure, WmgrError
from .logging import get_logger

logger = get_logger("runner")

T = TypeVar("T")
R = TypeVar("R")

# =============================================================================
# Single command
# =============================================================================


@dataclass
class CommandSpec:
    """Everything needed to start one external process."""

    command: str | Sequence[str]
    cwd: Path | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    isolate_env: bool = False
    timeout: float | None = None
    capture_output: bool = True
    shell: bool = False

    def argv(self) -> str | list[str]:
        if self.shell:
            if isinstance(self.command, str):
                return self.command
            return shlex.join(self.command)
        if isinstance(self.command, str):
            return shlex.split(self.command)
        return list(self.command)

    def environment(self) -> dict[str, str]:
        base = {} if self.isolate_env else dict(os.environ)
        base.update({k: str(v) for k, v in self.env.items()})
        return base

    def describe(self) -> str:
        if isinstance(self.command, str):
            return self.command
        return shlex.join(self.command)


@dataclass
class CommandResult:
    exit_code: int
    stdout: str
    stderr: str
    duration: float

    @property
    def success(self) -> bool:
        return self.exit_code == 0


def run_command(spec: CommandSpec) -> CommandResult:
    """Run ``spec`` to completion.

    Raises SpawnFailure when the process cannot be started and
    CommandTimeout when it outlives ``spec.timeout``; in that case the
    whole process group is killed before returning.
    """
    pipe = subprocess.PIPE if spec.capture_output else None
    started = time.monotonic()
    try:
        proc = subprocess.Popen(
            spec.argv(),
            cwd=spec.cwd,
            env=spec.environment(),
            shell=spec.shell,
            stdin=subprocess.DEVNULL,
            stdout=pipe,
            stderr=pipe,
            text=True,
            errors="replace",
            start_new_session=True,
        )
    except (FileNotFoundError, PermissionError, NotADirectoryError) as exc:
        raise SpawnFailure(
            f"Cannot start '{spec.describe()}': {exc.strerror or exc}",
            command=spec.describe(),
            cwd=spec.cwd,
        ) from exc
    except OSError as exc:
        raise SpawnFailure(f"Cannot start '{spec.describe()}': {exc}", command=spec.describe()) from exc

    try:
        stdout, stderr = proc.communicate(timeout=spec.timeout)
    except subprocess.TimeoutExpired:
        _kill_process_group(proc)
        proc.communicate()
        logger.warning("Killed '%s' after %ss", spec.describe(), spec.timeout)
        raise CommandTimeout(
            f"'{spec.describe()}' timed out after {spec.timeout}s",
            timeout=spec.timeout or 0.0,
        ) from None

    return CommandResult(
        exit_code=proc.returncode,
        stdout=stdout or "",
        stderr=stderr or "",
        duration=time.monotonic() - started,
    )


def _kill_process_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        proc.kill()


# =============================================================================
# Batches
# =============================================================================


class TaskState(StrEnum):
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass
class BatchTask:
    key: str
    spec: CommandSpec


@dataclass
class TaskResult:
    key: str
    state: TaskState
    result: CommandResult | None = None
    error: str = ""

    @property
    def exit_code(self) -> int | None:
        return self.result.exit_code if self.result else None


def _run_task(task: BatchTask, cancelled: threading.Event) -> TaskResult:
    if cancelled.is_set():
        return TaskResult(task.key, TaskState.CANCELLED, error="cancelled after an earlier failure")
    try:
        result = run_command(task.spec)
    except CommandTimeout as exc:
        return TaskResult(task.key, TaskState.TIMEOUT, error=exc.message)
    except WmgrError as exc:
        return TaskResult(task.key, TaskState.FAILED, error=exc.message)
    state = TaskState.SUCCESS if result.success else TaskState.FAILED
    return TaskResult(task.key, state, result=result)


def run_batch(
    tasks: Sequence[BatchTask],
    max_jobs: int | None = None,
    fail_fast: bool = False,
) -> dict[str, TaskResult]:
    """Run ``tasks`` with at most ``max_jobs`` in flight.

    With ``fail_fast`` the first failing task stops tasks that have not
    started yet; running tasks are left to finish. The returned mapping is
    keyed by task key and ordered like ``tasks``.
    """
    keys = [task.key for task in tasks]
    if len(set(keys)) != len(keys):
        raise ValueError("batch task keys must be unique")

    cancelled = threading.Event()
    jobs = default_jobs(len(tasks), max_jobs)
    collected: dict[str, TaskResult] = {}

    with ThreadPoolExecutor(max_workers=jobs) as executor:
        futures: dict[Future, BatchTask] = {
            executor.submit(_run_task, task, cancelled): task for task in tasks
        }
        for future in as_completed(futures):
            task = futures[future]
            if future.cancelled():
                collected[task.key] = TaskResult(
                    task.key, TaskState.CANCELLED, error="cancelled after an earlier failure"
                )
                continue
            outcome = future.result()
            collected[task.key] = outcome
            if fail_fast and outcome.state in (TaskState.FAILED, TaskState.TIMEOUT):
                if not cancelled.is_set():
                    logger.info("Task %s failed, cancelling pending tasks", task.key)
                cancelled.set()
                for pending in futures:
                    pending.cancel()

    return {key: collected[key] for key in keys}


def run_parallel(
    items: Iterable[T],
    operation: Callable[[T], R],
    key: Callable[[T], str],
    max_jobs: int | None = None,
    parallel: bool = True,
) -> dict[str, R]:
    """Apply ``operation`` to every item, keyed by ``key`` in input order."""
    items = list(items)
    results: dict[str, R] = {}

    if not parallel or len(items) <= 1:
        for item in items:
            results[key(item)] = operation(item)
        return results

    with ThreadPoolExecutor(max_workers=default_jobs(len(items), max_jobs)) as executor:
        futures = {executor.submit(operation, item): key(item) for item in items}
        for future in as_completed(futures):
            results[futures[future]] = future.result()

    return {key(item): results[key(item)] for item in items}
