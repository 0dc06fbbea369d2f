"""Domain models for manifests, repositories and workspaces."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

DEFAULT_REMOTE = "origin"

# =============================================================================
# Domain Models
# =============================================================================


class ScmType(StrEnum):
    """Version control system backing a repository."""

    GIT = "git"
    SVN = "svn"


class RefKind(StrEnum):
    """Which field of a repository decides what gets checked out."""

    SHA1 = "sha1"
    TAG = "tag"
    BRANCH = "branch"
    NONE = "none"


@dataclass(frozen=True)
class Remote:
    """A named remote of a repository."""

    name: str
    url: str

    def to_dict(self) -> dict:
        return {"name": self.name, "url": self.url}


@dataclass(frozen=True)
class FileCopy:
    """Copy ``file`` from inside the repository to ``dest`` in the workspace."""

    file: str
    dest: str

    def to_dict(self) -> dict:
        return {"file": self.file, "dest": self.dest}


@dataclass(frozen=True)
class FileSymlink:
    """Create a workspace-relative symlink ``source`` pointing at ``target``."""

    source: str
    target: str

    def to_dict(self) -> dict:
        return {"source": self.source, "target": self.target}


@dataclass
class ManifestRepo:
    """A repository entry exactly as declared in a manifest."""

    dest: str
    url: str
    branch: str | None = None
    sha1: str | None = None
    tag: str | None = None
    groups: list[str] = field(default_factory=list)
    remotes: list[Remote] = field(default_factory=list)
    shallow: bool = False
    scm: ScmType = ScmType.GIT
    copy: list[FileCopy] = field(default_factory=list)
    symlink: list[FileSymlink] = field(default_factory=list)

    def all_remotes(self) -> list[Remote]:
        """Primary remote first, then the extra remotes without duplicates."""
        remotes = [Remote(DEFAULT_REMOTE, self.url)]
        seen = {DEFAULT_REMOTE}
        for remote in self.remotes:
            if remote.name not in seen:
                remotes.append(remote)
                seen.add(remote.name)
        return remotes

    def to_dict(self) -> dict:
        """Manifest representation, omitting empty optional fields."""
        data: dict = {"dest": self.dest, "url": self.url}
        for key in ("branch", "sha1", "tag"):
            value = getattr(self, key)
            if value:
                data[key] = value
        if self.groups:
            data["groups"] = list(self.groups)
        if self.remotes:
            data["remotes"] = [r.to_dict() for r in self.remotes]
        if self.shallow:
            data["shallow"] = True
        if self.scm != ScmType.GIT:
            data["scm"] = self.scm.value
        if self.copy:
            data["copy"] = [c.to_dict() for c in self.copy]
        if self.symlink:
            data["symlink"] = [s.to_dict() for s in self.symlink]
        return data


@dataclass
class Group:
    """Named subset of manifest repositories."""

    repos: list[str] = field(default_factory=list)
    description: str | None = None

    def to_dict(self) -> dict:
        data: dict = {"repos": list(self.repos)}
        if self.description:
            data["description"] = self.description
        return data


@dataclass
class Manifest:
    """Parsed and validated manifest."""

    repos: list[ManifestRepo] = field(default_factory=list)
    groups: dict[str, Group] = field(default_factory=dict)
    default_branch: str | None = None
    default_shallow: bool = False
    path: Path | None = None

    def find_repo(self, dest: str) -> ManifestRepo | None:
        for repo in self.repos:
            if repo.dest == dest:
                return repo
        return None

    def repos_in_group(self, name: str) -> list[ManifestRepo]:
        """Repositories of ``name`` in manifest order."""
        group = self.groups.get(name)
        if group is None:
            return []
        members = set(group.repos)
        return [repo for repo in self.repos if repo.dest in members]

    def groups_of(self, dest: str) -> list[str]:
        return [name for name, group in self.groups.items() if dest in group.repos]

    def to_repositories(self) -> list[Repository]:
        return [Repository.from_manifest_repo(repo, self) for repo in self.repos]

    def to_dict(self) -> dict:
        data: dict = {}
        if self.default_branch or self.default_shallow:
            defaults: dict = {}
            if self.default_branch:
                defaults["branch"] = self.default_branch
            if self.default_shallow:
                defaults["shallow"] = True
            data["defaults"] = defaults
        data["repos"] = [repo.to_dict() for repo in self.repos]
        if self.groups:
            data["groups"] = {name: group.to_dict() for name, group in self.groups.items()}
        return data


@dataclass
class Repository:
    """Workspace-side view of a manifest repository with defaults applied."""

    dest: str
    remotes: list[Remote]
    branch: str | None = None
    sha1: str | None = None
    tag: str | None = None
    shallow: bool = False
    scm: ScmType = ScmType.GIT
    groups: list[str] = field(default_factory=list)

    @classmethod
    def from_manifest_repo(cls, repo: ManifestRepo, manifest: Manifest) -> Repository:
        return cls(
            dest=repo.dest,
            remotes=repo.all_remotes(),
            branch=repo.branch or manifest.default_branch,
            sha1=repo.sha1,
            tag=repo.tag,
            shallow=repo.shallow or manifest.default_shallow,
            scm=repo.scm,
            groups=manifest.groups_of(repo.dest),
        )

    @property
    def url(self) -> str:
        return self.remotes[0].url

    @property
    def ref_kind(self) -> RefKind:
        """The authoritative ref target: sha1 wins over tag, tag over branch."""
        if self.sha1:
            return RefKind.SHA1
        if self.tag:
            return RefKind.TAG
        if self.branch:
            return RefKind.BRANCH
        return RefKind.NONE

    @property
    def pinned_ref(self) -> str | None:
        return self.sha1 or self.tag

    def remote(self, name: str) -> Remote | None:
        for remote in self.remotes:
            if remote.name == name:
                return remote
        return None

    def to_dict(self) -> dict:
        return {
            "dest": self.dest,
            "url": self.url,
            "remotes": [r.to_dict() for r in self.remotes],
            "branch": self.branch,
            "sha1": self.sha1,
            "tag": self.tag,
            "shallow": self.shallow,
            "scm": self.scm.value,
            "groups": list(self.groups),
        }
