"""Command-line tests driven through typer's CliRunner."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from tests._fixtures.git_builder import GitServer, write_manifest
from wmgr import __version__
from wmgr.cli import app

runner = CliRunner()
ENV = {"WMGR_LOG_LEVEL": "ERROR"}


def invoke(*args: str, env: dict[str, str] | None = None):
    return runner.invoke(app, list(args), env={**ENV, **(env or {})})


@pytest.fixture
def initialized(server: GitServer, tmp_path: Path, workspace_root: Path) -> Path:
    source = write_manifest(
        tmp_path / "manifests",
        [
            {"dest": "a", "url": server.create("a"), "groups": ["apps"]},
            {"dest": "b", "url": server.create("b"), "groups": ["apps"]},
            {"dest": "c", "url": server.create("c"), "groups": ["libs"]},
        ],
    )
    result = invoke("-C", str(workspace_root), "init", str(source), "--json")
    assert result.exit_code == 0, result.output
    return workspace_root


def test_version() -> None:
    result = invoke("--version")

    assert result.exit_code == 0
    assert f"wmgr {__version__}" in result.stdout


def test_init_reports_workspace(initialized: Path) -> None:
    assert (initialized / "wmgr.yml").is_file()
    assert (initialized / ".tsrc" / "config.yml").is_file()


def test_init_twice_fails(initialized: Path) -> None:
    result = invoke("-C", str(initialized), "init")

    assert result.exit_code == 1
    assert "already exists" in result.stdout


def test_sync_then_status(initialized: Path) -> None:
    synced = invoke("-C", str(initialized), "sync", "--json")
    assert synced.exit_code == 0, synced.output
    data = json.loads(synced.stdout)
    assert data["summary"]["cloned"] == 3
    assert [r["dest"] for r in data["repositories"]] == ["a", "b", "c"]

    (initialized / "b" / "README.md").write_text("edited\n")
    status = invoke("-C", str(initialized), "status", "--json")
    assert status.exit_code == 0, status.output
    report = json.loads(status.stdout)
    assert [r["status"] for r in report["repositories"]] == ["clean", "dirty", "clean"]


def test_sync_group_option(initialized: Path) -> None:
    result = invoke("-C", str(initialized), "sync", "-g", "libs", "--json")

    assert result.exit_code == 0, result.output
    assert [r["dest"] for r in json.loads(result.stdout)["repositories"]] == ["c"]


def test_status_runs_from_a_subdirectory(initialized: Path) -> None:
    invoke("-C", str(initialized), "sync")

    result = invoke("-C", str(initialized / "a"), "status", "--compact")

    assert result.exit_code == 0, result.output
    assert "Total:" in result.stdout


def test_status_outside_a_workspace_fails(tmp_path: Path) -> None:
    empty = tmp_path / "empty"
    empty.mkdir()

    result = invoke("-C", str(empty), "status", "--json")

    assert result.exit_code == 1
    assert json.loads(result.stdout)["error"]["error"] == "WorkspaceNotInitialized"


def test_foreach_exit_code(initialized: Path) -> None:
    invoke("-C", str(initialized), "sync")

    ok = invoke("-C", str(initialized), "foreach", "git status --short", "--json")
    assert ok.exit_code == 0, ok.output
    assert len(json.loads(ok.stdout)["results"]) == 3

    failing = invoke(
        "-C", str(initialized), "foreach", 'test "$WMGR_REPO_NAME" != a', "-k", "--json"
    )
    assert failing.exit_code == 1
    states = [r["state"] for r in json.loads(failing.stdout)["results"]]
    assert states == ["failed", "success", "success"]


def test_log_command(initialized: Path) -> None:
    invoke("-C", str(initialized), "sync")

    result = invoke("-C", str(initialized), "log", "-g", "apps", "-n", "1", "--json")

    assert result.exit_code == 0, result.output
    entries = json.loads(result.stdout)["repositories"]
    assert [e["dest"] for e in entries] == ["a", "b"]
    assert all("initial commit" in e["output"] for e in entries)


def test_dump_manifest_as_json(initialized: Path, tmp_path: Path) -> None:
    result = invoke("-C", str(initialized), "dump-manifest", "--format", "json")

    assert result.exit_code == 0, result.output
    assert [r["dest"] for r in json.loads(result.stdout)["repos"]] == ["a", "b", "c"]

    target = tmp_path / "dumped.yml"
    written = invoke("-C", str(initialized), "dump-manifest", "-o", str(target))
    assert written.exit_code == 0
    assert "dest: a" in target.read_text()


def test_dump_manifest_rejects_unknown_format(initialized: Path) -> None:
    result = invoke("-C", str(initialized), "dump-manifest", "--format", "toml")

    assert result.exit_code == 1


def test_apply_manifest_requires_force(initialized: Path, tmp_path: Path) -> None:
    replacement = write_manifest(
        tmp_path / "replacement", [{"dest": "z", "url": "https://example.com/z.git"}]
    )

    preview = invoke("-C", str(initialized), "apply-manifest", str(replacement), "-n", "--json")
    assert preview.exit_code == 0, preview.output
    assert json.loads(preview.stdout)["changes"]["removed"] == ["a", "b", "c"]

    refused = invoke("-C", str(initialized), "apply-manifest", str(replacement))
    assert refused.exit_code == 1

    applied = invoke("-C", str(initialized), "apply-manifest", str(replacement), "--force")
    assert applied.exit_code == 0, applied.output
    assert "dest: z" in (initialized / "wmgr.yml").read_text()


def test_invalid_environment_is_reported(initialized: Path) -> None:
    result = invoke("-C", str(initialized), "status", env={"WMGR_JOBS": "many"})

    assert result.exit_code == 1
    assert "WMGR_JOBS" in result.output
