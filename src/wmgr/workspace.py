"""Workspace discovery, configuration, initialization and manifest updates."""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

import yaml

from .errors import (
    ConfigError,
    ManifestChangesPending,
    ManifestError,
    ManifestUpdateFailed,
    ValidationError,
    WmgrError,
    WorkspaceExists,
    WorkspaceNotInitialized,
)
from .logging import get_logger
from .manifest import (
    MANIFEST_FILENAMES,
    MANIFEST_SUBDIR,
    MANIFEST_TEMPLATE,
    ManifestChanges,
    diff_manifests,
    find_manifest_file,
    load_manifest,
    select_repos,
)
from .models import DEFAULT_REMOTE, Manifest, Remote, Repository
from .urls import validate_url
from .vcs import GitBackend

logger = get_logger("workspace")

CONFIG_DIR = ".tsrc"
CONFIG_FILE = "config.yml"
DEFAULT_GROUP = "default"
DEFAULT_MANIFEST_BRANCH = "main"

# =============================================================================
# Configuration
# =============================================================================


@dataclass
class WorkspaceConfig:
    """Settings persisted in ``.tsrc/config.yml``."""

    manifest_url: str = ""
    manifest_branch: str = DEFAULT_MANIFEST_BRANCH
    shallow_clones: bool = False
    repo_groups: list[str] = field(default_factory=list)
    clone_all_repos: bool = False
    singular_remote: str | None = None

    def to_dict(self) -> dict:
        return {
            "manifest_url": self.manifest_url,
            "manifest_branch": self.manifest_branch,
            "shallow_clones": self.shallow_clones,
            "repo_groups": list(self.repo_groups),
            "clone_all_repos": self.clone_all_repos,
            "singular_remote": self.singular_remote,
        }

    @classmethod
    def from_dict(cls, data: dict) -> WorkspaceConfig:
        groups = data.get("repo_groups") or []
        if not isinstance(groups, list):
            raise ConfigError("'repo_groups' must be a list")
        return cls(
            manifest_url=str(data.get("manifest_url") or ""),
            manifest_branch=str(data.get("manifest_branch") or DEFAULT_MANIFEST_BRANCH),
            shallow_clones=bool(data.get("shallow_clones", False)),
            repo_groups=[str(g) for g in groups],
            clone_all_repos=bool(data.get("clone_all_repos", False)),
            singular_remote=data.get("singular_remote") or None,
        )

    @classmethod
    def load(cls, path: Path) -> WorkspaceConfig:
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Cannot read workspace config {path}: {exc}", path=path) from exc
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"Workspace config {path} must be a mapping", path=path)
        return cls.from_dict(data)

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.dump(self.to_dict(), sort_keys=False), encoding="utf-8")


# =============================================================================
# Workspace
# =============================================================================


class WorkspaceStatus(StrEnum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    CORRUPTED = "corrupted"


@dataclass
class Workspace:
    """A workspace root together with its configuration and manifest."""

    root: Path
    config: WorkspaceConfig
    config_path: Path
    status: WorkspaceStatus
    manifest: Manifest | None = None
    manifest_path: Path | None = None
    error: WmgrError | None = None

    @property
    def repositories(self) -> list[Repository]:
        if self.manifest is None:
            return []
        return self.manifest.to_repositories()

    @property
    def manifest_repo_dir(self) -> Path:
        return self.root / MANIFEST_SUBDIR

    def repo_path(self, dest: str) -> Path:
        return self.root / dest

    def require_initialized(self) -> Manifest:
        """Return the manifest or raise the error that made it unusable."""
        if self.status == WorkspaceStatus.INITIALIZED and self.manifest is not None:
            return self.manifest
        if isinstance(self.error, ValidationError):
            raise self.error
        if self.status == WorkspaceStatus.CORRUPTED:
            raise WorkspaceNotInitialized(
                f"Workspace at {self.root} is corrupted: {self.error}", path=self.root
            )
        raise WorkspaceNotInitialized(
            f"No workspace found at {self.root}. Run 'wmgr init' first.", path=self.root
        )

    def select(self, groups: list[str] | None = None) -> list[Repository]:
        """Repositories targeted by an operation, in manifest order.

        Explicit ``groups`` win. Otherwise the configured default groups
        apply unless the workspace clones every repository.
        """
        manifest = self.require_initialized()
        if not groups and not self.config.clone_all_repos:
            configured = self.config.repo_groups
            # A "default" group the manifest does not define means every repo.
            implicit_default = configured == [DEFAULT_GROUP] and DEFAULT_GROUP not in manifest.groups
            if configured and not implicit_default:
                groups = configured
        selected = {repo.dest for repo in select_repos(manifest, groups)}
        return [repo for repo in manifest.to_repositories() if repo.dest in selected]

    def primary_remote(self, repo: Repository) -> Remote:
        """Remote used for cloning: the configured singular remote if the repo has it."""
        if self.config.singular_remote:
            remote = repo.remote(self.config.singular_remote)
            if remote is not None:
                return remote
        return repo.remotes[0]

    def reload_manifest(self) -> Manifest:
        path = self.manifest_path or find_manifest_file(self.root)
        if path is None:
            raise ManifestUpdateFailed(f"Manifest file missing in {self.root}", path=self.root)
        self.manifest = load_manifest(path)
        self.manifest_path = path
        return self.manifest

    def refresh_manifest(self, git: GitBackend | None = None) -> Manifest:
        """Fast-forward a cloned manifest repository, then re-read the manifest."""
        self.require_initialized()
        git = git or GitBackend()
        manifest_dir = self.manifest_repo_dir
        path = self.manifest_path
        if path is not None and path.parent == manifest_dir and git.is_repository(manifest_dir):
            upstream = f"{DEFAULT_REMOTE}/{self.config.manifest_branch}"
            try:
                git.fetch(manifest_dir, DEFAULT_REMOTE)
                git.merge_ff_only(manifest_dir, upstream)
            except WmgrError as exc:
                raise ManifestUpdateFailed(
                    f"Cannot update manifest repository: {exc.message}", path=manifest_dir
                ) from exc
            logger.info("Updated manifest repository %s", manifest_dir)
        return self.reload_manifest()


def config_path_for(root: Path, override: Path | None = None) -> Path:
    return override or root / CONFIG_DIR / CONFIG_FILE


def discover_workspace_root(start: Path) -> Path | None:
    """Walk upward from ``start`` to the first directory holding a workspace."""
    current = start.resolve()
    for directory in (current, *current.parents):
        if (directory / CONFIG_DIR / CONFIG_FILE).is_file():
            return directory
        if find_manifest_file(directory) is not None:
            return directory
    return None


def load_workspace(root: Path, config_path: Path | None = None) -> Workspace:
    """Load the workspace at ``root`` and classify its state.

    A manifest without a config file is an initialized local workspace.
    A config file without a readable, valid manifest is corrupted.
    """
    root = root.resolve()
    config_file = config_path_for(root, config_path)
    manifest_path = find_manifest_file(root)
    workspace = Workspace(
        root=root,
        config=WorkspaceConfig(),
        config_path=config_file,
        status=WorkspaceStatus.UNINITIALIZED,
        manifest_path=manifest_path,
    )

    has_config = config_file.is_file()
    if not has_config and manifest_path is None:
        return workspace

    if has_config:
        try:
            workspace.config = WorkspaceConfig.load(config_file)
        except ConfigError as exc:
            workspace.status = WorkspaceStatus.CORRUPTED
            workspace.error = exc
            return workspace

    if manifest_path is None:
        workspace.status = WorkspaceStatus.CORRUPTED
        workspace.error = ManifestError(f"Manifest file missing in {root}", path=root)
        return workspace

    try:
        workspace.manifest = load_manifest(manifest_path)
    except ValidationError as exc:
        workspace.status = WorkspaceStatus.CORRUPTED
        workspace.error = exc
        return workspace

    workspace.status = WorkspaceStatus.INITIALIZED
    return workspace


# =============================================================================
# Init
# =============================================================================


def init_workspace(
    root: Path,
    manifest_source: str | None = None,
    *,
    branch: str = DEFAULT_MANIFEST_BRANCH,
    groups: list[str] | None = None,
    shallow: bool = False,
    clone_all: bool = False,
    singular_remote: str | None = None,
    force: bool = False,
    template_name: str = "wmgr.yaml",
) -> Workspace:
    """Create a workspace at ``root``.

    Without ``manifest_source`` a commented template manifest is written.
    A local manifest file is validated and copied to ``wmgr.yml``; anything
    else is treated as the URL of a git repository holding the manifest and
    is cloned into ``.wmgr``.
    """
    root = root.resolve()
    root.mkdir(parents=True, exist_ok=True)
    config_file = config_path_for(root)

    if not force and (config_file.exists() or find_manifest_file(root) is not None):
        raise WorkspaceExists(
            f"A workspace already exists at {root}. Use --force to overwrite.", path=root
        )

    if template_name not in MANIFEST_FILENAMES:
        raise ValidationError(f"Manifest name must be one of {', '.join(MANIFEST_FILENAMES)}")

    if manifest_source is None:
        target = root / template_name
        target.write_text(MANIFEST_TEMPLATE, encoding="utf-8")
        manifest_url = ""
        logger.info("Wrote manifest template %s", target)
    elif Path(manifest_source).expanduser().is_file():
        source = Path(manifest_source).expanduser().resolve()
        load_manifest(source)
        target = root / MANIFEST_FILENAMES[0]
        if source != target:
            shutil.copyfile(source, target)
        manifest_url = str(source)
    else:
        manifest_url = validate_url(manifest_source)
        _clone_manifest_repo(root / MANIFEST_SUBDIR, manifest_url, branch, force)
        target = None
    _remove_stale_manifests(root, keep=target)

    config = WorkspaceConfig(
        manifest_url=manifest_url,
        manifest_branch=branch,
        shallow_clones=shallow,
        repo_groups=list(groups or []),
        clone_all_repos=clone_all,
        singular_remote=singular_remote,
    )
    config.save(config_file)

    workspace = load_workspace(root)
    workspace.require_initialized()
    if groups:
        workspace.select(groups)
    return workspace


def _remove_stale_manifests(root: Path, keep: Path | None) -> None:
    """Delete root-level manifests other than ``keep``; they would shadow it."""
    for name in MANIFEST_FILENAMES:
        candidate = root / name
        if candidate != keep and candidate.is_file():
            candidate.unlink()
            logger.info("Removed stale manifest %s", candidate)


def _clone_manifest_repo(target: Path, url: str, branch: str, force: bool) -> None:
    if target.exists():
        if not force:
            raise WorkspaceExists(f"{target} already exists. Use --force to overwrite.", path=target)
        shutil.rmtree(target)
    repo = Repository(dest=MANIFEST_SUBDIR, remotes=[Remote(DEFAULT_REMOTE, url)], branch=branch)
    git = GitBackend()
    try:
        git.clone(repo, target, repo.remotes[0])
    except WmgrError as exc:
        raise ManifestError(f"Cannot clone manifest repository {url}: {exc.message}", url=url) from exc
    if find_manifest_file(target) is None:
        raise ManifestError(f"No manifest file found in {url}", url=url)


# =============================================================================
# Apply manifest
# =============================================================================


@dataclass
class ApplyResult:
    changes: ManifestChanges
    applied: bool = False
    dry_run: bool = False
    manifest_path: Path | None = None

    def to_dict(self) -> dict:
        return {
            "changes": self.changes.to_dict(),
            "applied": self.applied,
            "dry_run": self.dry_run,
            "manifest_path": str(self.manifest_path) if self.manifest_path else None,
        }


def apply_manifest(
    workspace: Workspace, source: Path, *, force: bool = False, dry_run: bool = False
) -> ApplyResult:
    """Replace the workspace manifest with ``source``.

    Changes are only written with ``force``; ``dry_run`` reports them
    without writing.
    """
    current = workspace.require_initialized()
    new = load_manifest(source)
    changes = diff_manifests(current, new)
    target = workspace.manifest_path or workspace.root / MANIFEST_FILENAMES[0]
    result = ApplyResult(changes=changes, dry_run=dry_run, manifest_path=target)

    if not changes.has_changes or dry_run:
        return result
    if not force:
        total = len(changes.added) + len(changes.modified) + len(changes.removed)
        raise ManifestChangesPending(
            f"{total} repository change(s) pending. Use --force to apply them.",
            changes=changes.to_dict(),
        )

    if source.resolve() != target.resolve():
        shutil.copyfile(source, target)
    workspace.reload_manifest()
    result.applied = True
    logger.info("Applied manifest %s to %s", source, target)
    return result
