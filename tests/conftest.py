from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from tests._fixtures.git_builder import GitServer, write_manifest
from wmgr.workspace import Workspace, load_workspace


@pytest.fixture(autouse=True)
def git_identity(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate git from the developer's configuration."""
    home = tmp_path / "home"
    home.mkdir()
    global_config = home / ".gitconfig"
    global_config.write_text("", encoding="utf-8")
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(global_config))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "wmgr tests")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "tests@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "wmgr tests")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "tests@example.com")
    for name in ("WMGR_LOG_LEVEL", "WMGR_CONFIG", "WMGR_JOBS", "WMGR_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def server(tmp_path: Path) -> GitServer:
    """Provide bare git remotes rooted at the pytest tmp_path."""
    return GitServer(tmp_path)


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def make_workspace(workspace_root: Path) -> Callable[..., Workspace]:
    """Write a manifest into the workspace root and load the workspace."""

    def factory(repos: list[dict], groups: dict | None = None, **kwargs) -> Workspace:
        write_manifest(workspace_root, repos, groups, **kwargs)
        return load_workspace(workspace_root)

    return factory


@pytest.fixture
def three_repos(server: GitServer, make_workspace: Callable[..., Workspace]) -> Workspace:
    """Workspace with repos a, b (group "apps") and c (group "libs")."""
    repos = [
        {"dest": "a", "url": server.create("a"), "groups": ["apps"]},
        {"dest": "b", "url": server.create("b"), "groups": ["apps"]},
        {"dest": "c", "url": server.create("c"), "groups": ["libs"]},
    ]
    return make_workspace(repos)
