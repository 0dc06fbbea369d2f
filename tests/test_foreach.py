"""Foreach engine tests."""

from __future__ import annotations

import shutil
import time

import pytest

from wmgr.errors import InvalidCommand
from wmgr.foreach import (
    ENV_REPO_BRANCH,
    ENV_REPO_GROUPS,
    ENV_REPO_NAME,
    ENV_WORKSPACE_ROOT,
    ExecutionState,
    ForeachConfig,
    foreach,
)
from wmgr.sync import sync
from wmgr.workspace import Workspace


@pytest.fixture
def synced(three_repos: Workspace) -> Workspace:
    sync(three_repos)
    return three_repos


def test_command_runs_in_every_repository(synced: Workspace) -> None:
    report = foreach(synced, ForeachConfig("pwd"))

    assert report.ok
    assert [r.dest for r in report.results] == ["a", "b", "c"]
    for result in report.results:
        assert result.state == ExecutionState.SUCCESS
        assert result.exit_code == 0
        assert result.stdout.strip() == str(synced.repo_path(result.dest))


def test_repository_variables_are_exported(synced: Workspace) -> None:
    command = (
        f'echo "${ENV_REPO_NAME}|${ENV_REPO_BRANCH}|${ENV_REPO_GROUPS}|${ENV_WORKSPACE_ROOT}"'
    )

    report = foreach(synced, ForeachConfig(command, groups=["libs"]))

    (result,) = report.results
    assert result.stdout.strip() == f"c|main|libs|{synced.root}"


def test_extra_environment_is_passed(synced: Workspace) -> None:
    config = ForeachConfig('echo "$GREETING"', env={"GREETING": "hello"}, groups=["apps"])

    report = foreach(synced, config)

    assert [r.stdout.strip() for r in report.results] == ["hello", "hello"]


def test_failure_stops_remaining_repositories(synced: Workspace) -> None:
    command = 'case "$WMGR_REPO_NAME" in a) exit 3;; b) sleep 0.3;; esac; echo ran'

    report = foreach(synced, ForeachConfig(command))

    assert report.results[0].state == ExecutionState.FAILED
    assert report.results[0].exit_code == 3
    assert report.results[2].state == ExecutionState.CANCELLED
    assert report.results[2].stdout == ""
    assert not report.ok


def test_continue_on_error_runs_everything(synced: Workspace) -> None:
    command = 'test "$WMGR_REPO_NAME" != b'

    report = foreach(synced, ForeachConfig(command, continue_on_error=True))

    assert [r.state for r in report.results] == [
        ExecutionState.SUCCESS,
        ExecutionState.FAILED,
        ExecutionState.SUCCESS,
    ]
    assert report.to_dict()["summary"]["failed"] == 1
    assert not report.ok


def test_parallel_runs_overlap(synced: Workspace) -> None:
    config = ForeachConfig("sleep 0.5", parallel=True, max_jobs=3)

    started = time.monotonic()
    report = foreach(synced, config)
    elapsed = time.monotonic() - started

    assert report.ok
    assert elapsed < 1.4
    assert [r.dest for r in report.results] == ["a", "b", "c"]


def test_missing_repositories_are_skipped(synced: Workspace) -> None:
    shutil.rmtree(synced.repo_path("b"))

    report = foreach(synced, ForeachConfig("true"))

    assert [r.state for r in report.results] == [
        ExecutionState.SUCCESS,
        ExecutionState.SKIPPED,
        ExecutionState.SUCCESS,
    ]
    assert report.ok


def test_timeout_is_reported(synced: Workspace) -> None:
    config = ForeachConfig("sleep 10", groups=["libs"], timeout=0.3)

    report = foreach(synced, config)

    assert report.results[0].state == ExecutionState.TIMEOUT
    assert report.results[0].exit_code is None


@pytest.mark.parametrize("command", ["", "   ", []])
def test_empty_command_is_rejected(synced: Workspace, command) -> None:
    with pytest.raises(InvalidCommand):
        foreach(synced, ForeachConfig(command))


def test_argument_list_runs_without_shell(synced: Workspace) -> None:
    config = ForeachConfig(["git", "rev-parse", "--abbrev-ref", "HEAD"], shell=False)

    report = foreach(synced, config)

    assert [r.stdout.strip() for r in report.results] == ["main", "main", "main"]
    assert report.results[0].command == "git rev-parse --abbrev-ref HEAD"
