"""Status engine tests."""

from __future__ import annotations

import shutil

from tests._fixtures.git_builder import GitServer, git
from wmgr.status import StatusConfig, StatusKind, status
from wmgr.sync import sync
from wmgr.workspace import Workspace


def test_freshly_synced_workspace_is_clean(three_repos: Workspace) -> None:
    sync(three_repos)

    report = status(three_repos)

    assert [s.dest for s in report.repos] == ["a", "b", "c"]
    assert {s.kind for s in report.repos} == {StatusKind.CLEAN}
    assert report.summary.clean == 3
    assert report.ok


def test_deleted_repository_is_missing(three_repos: Workspace) -> None:
    sync(three_repos)
    shutil.rmtree(three_repos.repo_path("b"))

    report = status(three_repos)

    assert report.get("b").kind == StatusKind.MISSING
    assert report.get("a").kind == StatusKind.CLEAN
    assert report.summary.missing == 1
    assert report.ok


def test_dirty_repository_reports_change_counts(three_repos: Workspace) -> None:
    sync(three_repos)
    repo = three_repos.repo_path("a")
    (repo / "README.md").write_text("changed\n")
    (repo / "staged.txt").write_text("staged\n")
    git(repo, "add", "staged.txt")
    (repo / "scratch.txt").write_text("untracked\n")

    dirty = status(three_repos).get("a")

    assert dirty.kind == StatusKind.DIRTY
    assert dirty.modified_count == 1
    assert dirty.staged_count == 1
    assert dirty.untracked_count == 1
    assert dirty.branch == "main"


def test_other_branch_is_wrong_branch(three_repos: Workspace) -> None:
    sync(three_repos)
    git(three_repos.repo_path("c"), "checkout", "--quiet", "-b", "feature")

    wrong = status(three_repos).get("c")

    assert wrong.kind == StatusKind.WRONG_BRANCH
    assert wrong.branch == "feature"
    assert wrong.expected == "main"


def test_fetched_but_unmerged_commits_are_out_of_sync(
    server: GitServer, three_repos: Workspace
) -> None:
    sync(three_repos)
    server.commit("a", {"one.txt": "1\n"})
    server.commit("a", {"two.txt": "2\n"})
    git(three_repos.repo_path("a"), "fetch", "--quiet", "origin")

    behind = status(three_repos).get("a")

    assert behind.kind == StatusKind.OUT_OF_SYNC
    assert (behind.ahead, behind.behind) == (0, 2)


def test_local_commits_are_out_of_sync(three_repos: Workspace) -> None:
    sync(three_repos)
    repo = three_repos.repo_path("b")
    (repo / "local.txt").write_text("local\n")
    git(repo, "add", "local.txt")
    git(repo, "commit", "--quiet", "-m", "local")

    ahead = status(three_repos).get("b")

    assert ahead.kind == StatusKind.OUT_OF_SYNC
    assert (ahead.ahead, ahead.behind) == (1, 0)


def test_status_does_not_fetch_or_modify(server: GitServer, three_repos: Workspace) -> None:
    sync(three_repos)
    repo = three_repos.repo_path("a")
    head = git(repo, "rev-parse", "HEAD")
    remote_head = git(repo, "rev-parse", "origin/main")
    server.commit("a", {"remote.txt": "remote\n"})

    report = status(three_repos)

    assert report.get("a").kind == StatusKind.CLEAN
    assert git(repo, "rev-parse", "HEAD") == head
    assert git(repo, "rev-parse", "origin/main") == remote_head


def test_directory_without_git_is_an_error(three_repos: Workspace) -> None:
    (three_repos.root / "a").mkdir()

    report = status(three_repos)

    assert report.get("a").kind == StatusKind.ERROR
    assert "not a git repository" in report.get("a").message
    assert not report.ok
    assert report.summary.error == 1


def test_detached_head_on_a_branch_repository_is_an_error(three_repos: Workspace) -> None:
    sync(three_repos)
    git(three_repos.repo_path("a"), "checkout", "--quiet", "--detach")

    detached = status(three_repos).get("a")

    assert detached.kind == StatusKind.ERROR
    assert "detached HEAD" in detached.message


def test_pinned_tag_compares_commits(server: GitServer, make_workspace) -> None:
    url = server.create("lib")
    server.tag("lib", "v1.0")
    server.commit("lib", {"later.txt": "later\n"})
    workspace = make_workspace([{"dest": "lib", "url": url, "tag": "v1.0"}])
    sync(workspace)

    assert status(workspace).get("lib").kind == StatusKind.CLEAN

    git(workspace.repo_path("lib"), "checkout", "--quiet", "main")
    assert status(workspace).get("lib").kind == StatusKind.WRONG_BRANCH


def test_sequential_and_parallel_reports_match(three_repos: Workspace) -> None:
    sync(three_repos)
    shutil.rmtree(three_repos.repo_path("c"))

    parallel = status(three_repos, StatusConfig(parallel=True, max_jobs=3))
    sequential = status(three_repos, StatusConfig(parallel=False))

    assert parallel.to_dict() == sequential.to_dict()


def test_group_filter_and_json_shape(three_repos: Workspace) -> None:
    report = status(three_repos, StatusConfig(groups=["apps"]))

    data = report.to_dict()
    assert [r["dest"] for r in data["repositories"]] == ["a", "b"]
    assert {r["status"] for r in data["repositories"]} == {"missing"}
    assert data["summary"]["total"] == 2
    assert data["summary"]["missing"] == 2
