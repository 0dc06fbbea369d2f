"""Manifest parsing, validation and discovery tests."""

from __future__ import annotations

import json
from textwrap import dedent
from pathlib import Path

import pytest
import yaml

from tests._fixtures.git_builder import write_manifest
from wmgr.errors import DuplicateDest, InvalidUrl, ManifestError, UnknownGroup, ValidationError
from wmgr.manifest import (
    MANIFEST_TEMPLATE,
    diff_manifests,
    discover_manifest,
    dump_manifest,
    find_manifest_file,
    load_manifest,
    loads_manifest,
    select_repos,
)
from wmgr.models import RefKind, Remote, ScmType

BASIC = """
defaults:
  branch: develop
repos:
  - dest: core
    url: https://example.com/org/core.git
    groups: [backend]
  - dest: web
    url: git@example.com:org/web.git
    branch: main
    remotes:
      - name: upstream
        url: https://github.com/upstream/web.git
  - dest: tools/cli
    url: https://example.com/org/cli.git
    tag: v1.2.0
groups:
  frontend:
    description: UI code
    repos: [web]
  backend:
    repos: [tools/cli]
"""


def test_parses_repos_groups_and_defaults() -> None:
    manifest = loads_manifest(BASIC)

    assert [r.dest for r in manifest.repos] == ["core", "web", "tools/cli"]
    assert manifest.default_branch == "develop"
    assert manifest.groups["frontend"].description == "UI code"
    # repo-level membership is merged into the group
    assert manifest.groups["backend"].repos == ["tools/cli", "core"]

    web = manifest.find_repo("web")
    assert web is not None
    assert web.remotes == [Remote("upstream", "https://github.com/upstream/web.git")]
    assert [r.name for r in web.all_remotes()] == ["origin", "upstream"]


def test_repositories_apply_manifest_defaults() -> None:
    repos = {r.dest: r for r in loads_manifest(BASIC).to_repositories()}

    assert repos["core"].branch == "develop"
    assert repos["web"].branch == "main"
    assert repos["tools/cli"].pinned_ref == "v1.2.0"
    assert repos["core"].groups == ["backend"]
    assert repos["core"].scm == ScmType.GIT


def test_select_repos_is_a_union_in_manifest_order() -> None:
    manifest = loads_manifest(BASIC)

    selected = select_repos(manifest, ["backend", "frontend"])
    assert [r.dest for r in selected] == ["core", "web", "tools/cli"]
    assert [r.dest for r in select_repos(manifest, ["frontend"])] == ["web"]
    assert len(select_repos(manifest, None)) == 3


def test_unknown_group_is_rejected() -> None:
    with pytest.raises(UnknownGroup):
        select_repos(loads_manifest(BASIC), ["nope"])


def test_duplicate_dest_is_rejected() -> None:
    text = """
    repos:
      - {dest: a, url: https://example.com/a.git}
      - {dest: a, url: https://example.com/b.git}
    """
    with pytest.raises(DuplicateDest):
        loads_manifest(dedent(text))


def test_invalid_url_reports_the_repository() -> None:
    text = """
    repos:
      - {dest: a, url: "ftp://example.com/a.git"}
    """
    with pytest.raises(InvalidUrl) as excinfo:
        loads_manifest(dedent(text))
    assert excinfo.value.dest == "a"


def test_group_with_unknown_repo_is_rejected() -> None:
    text = """
    repos:
      - {dest: a, url: https://example.com/a.git}
    groups:
      g: {repos: [a, ghost]}
    """
    with pytest.raises(ValidationError, match="non-existent repository: ghost"):
        loads_manifest(dedent(text))


@pytest.mark.parametrize(
    "entry",
    [
        "{dest: a, url: https://example.com/a.git, sha1: abc123, tag: v1}",
        "{dest: /abs, url: https://example.com/a.git}",
        "{dest: ../escape, url: https://example.com/a.git}",
        "{dest: a, url: https://example.com/a.git, scm: cvs}",
    ],
)
def test_invalid_repository_entries(entry: str) -> None:
    with pytest.raises(ValidationError):
        loads_manifest(f"repos:\n  - {entry}\n")


def test_origin_remote_must_match_the_repository_url() -> None:
    clashing = """
    repos:
      - dest: a
        url: https://example.com/a.git
        remotes:
          - {name: origin, url: https://mirror.example.com/a.git}
    """
    with pytest.raises(ValidationError, match="unique"):
        loads_manifest(dedent(clashing))

    repeated = clashing.replace("mirror.example.com", "example.com")
    (repo,) = loads_manifest(dedent(repeated)).to_repositories()
    assert [r.name for r in repo.remotes] == ["origin"]


def test_ref_kind_prefers_sha1_then_tag_then_branch() -> None:
    text = """
    repos:
      - {dest: pinned, url: https://example.com/p.git, sha1: abc123, branch: main}
      - {dest: tagged, url: https://example.com/t.git, tag: v1, branch: main}
      - {dest: tracking, url: https://example.com/b.git, branch: main}
      - {dest: loose, url: https://example.com/l.git}
    """
    kinds = {r.dest: r.ref_kind for r in loads_manifest(dedent(text)).to_repositories()}

    assert kinds == {
        "pinned": RefKind.SHA1,
        "tagged": RefKind.TAG,
        "tracking": RefKind.BRANCH,
        "loose": RefKind.NONE,
    }


def test_malformed_yaml_raises_manifest_error() -> None:
    with pytest.raises(ManifestError):
        loads_manifest("repos: [unclosed")


def test_find_manifest_file_priority(tmp_path: Path) -> None:
    (tmp_path / ".wmgr").mkdir()
    (tmp_path / ".wmgr" / "wmgr.yml").write_text("repos: []\n")
    assert find_manifest_file(tmp_path) == tmp_path / ".wmgr" / "wmgr.yml"

    (tmp_path / "manifest.yaml").write_text("repos: []\n")
    assert find_manifest_file(tmp_path) == tmp_path / "manifest.yaml"

    (tmp_path / "wmgr.yaml").write_text("repos: []\n")
    assert find_manifest_file(tmp_path) == tmp_path / "wmgr.yaml"


def test_discover_manifest_walks_upward(tmp_path: Path) -> None:
    write_manifest(tmp_path, [])
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)

    assert discover_manifest(nested) == tmp_path / "wmgr.yml"


def test_includes_merge_repos_and_groups(tmp_path: Path) -> None:
    write_manifest(
        tmp_path / "common",
        [
            {"dest": "shared", "url": "https://example.com/shared.git", "groups": ["base"]},
            {"dest": "app", "url": "https://example.com/other-app.git"},
        ],
        name="common.yml",
    )
    path = write_manifest(
        tmp_path,
        [{"dest": "app", "url": "https://example.com/app.git", "groups": ["base"]}],
        includes=["common/common.yml"],
    )

    manifest = load_manifest(path)

    assert [r.dest for r in manifest.repos] == ["app", "shared"]
    assert manifest.find_repo("app").url == "https://example.com/app.git"
    assert manifest.groups["base"].repos == ["app", "shared"]


def test_include_cycles_are_detected(tmp_path: Path) -> None:
    write_manifest(tmp_path, [], name="one.yml", includes=["two.yml"])
    write_manifest(tmp_path, [], name="two.yml", includes=["one.yml"])

    with pytest.raises(ManifestError, match="Circular"):
        load_manifest(tmp_path / "one.yml")


def test_dump_manifest_formats() -> None:
    manifest = loads_manifest(BASIC)

    as_json = json.loads(dump_manifest(manifest, "json"))
    assert [r["dest"] for r in as_json["repos"]] == ["core", "web", "tools/cli"]
    assert as_json["defaults"] == {"branch": "develop"}

    reparsed = loads_manifest(dump_manifest(manifest, "yaml"))
    assert [r.dest for r in reparsed.repos] == [r.dest for r in manifest.repos]
    assert reparsed.groups["backend"].repos == manifest.groups["backend"].repos

    with pytest.raises(ValidationError):
        dump_manifest(manifest, "toml")


def test_diff_manifests() -> None:
    current = loads_manifest(BASIC)
    data = yaml.safe_load(BASIC)
    data["repos"][0]["branch"] = "release"
    data["repos"].pop(1)
    data["groups"].pop("frontend")
    data["repos"].append({"dest": "docs", "url": "https://example.com/docs.git"})
    new = loads_manifest(yaml.dump(data))

    changes = diff_manifests(current, new)

    assert changes.to_dict() == {"added": ["docs"], "modified": ["core"], "removed": ["web"]}
    assert not diff_manifests(current, current).has_changes


def test_template_is_a_valid_manifest() -> None:
    manifest = loads_manifest(MANIFEST_TEMPLATE)
    assert [r.dest for r in manifest.repos] == ["example"]
    assert manifest.groups["default"].repos == ["example"]
