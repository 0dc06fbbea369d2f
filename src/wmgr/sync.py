"""Bring workspace repositories in line with the manifest."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import StrEnum

from .errors import WmgrError
from .file_ops import apply_file_operations
from .logging import get_logger
from .manifest import find_manifest_file
from .models import RefKind, Remote, Repository
from .runner import run_parallel
from .vcs import VcsBackend, backend_for
from .workspace import Workspace, WorkspaceStatus, load_workspace

logger = get_logger("sync")

LOCAL_CHANGES = "local changes present"

# =============================================================================
# Domain Models
# =============================================================================


class SyncOutcome(StrEnum):
    """What happened to one repository during a sync."""

    CLONED = "cloned"
    UPDATED = "updated"
    UP_TO_DATE = "up_to_date"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class SyncConfig:
    groups: list[str] | None = None
    force: bool = False
    correct_branch: bool = True
    parallel: bool = False
    max_jobs: int | None = None
    recursive: bool = False
    timeout: float | None = None


@dataclass
class RepoSyncResult:
    """Outcome of syncing a single repository."""

    dest: str
    outcome: SyncOutcome
    message: str = ""
    branch: str | None = None

    @property
    def changed(self) -> bool:
        return self.outcome in (SyncOutcome.CLONED, SyncOutcome.UPDATED)

    @property
    def success(self) -> bool:
        return self.outcome not in (SyncOutcome.FAILED, SyncOutcome.SKIPPED)

    def to_dict(self) -> dict:
        return {
            "dest": self.dest,
            "outcome": self.outcome.value,
            "message": self.message,
            "branch": self.branch,
        }


@dataclass
class SyncResult:
    """Per-repository outcomes in manifest order plus an ordered error log."""

    repos: list[RepoSyncResult] = field(default_factory=list)
    errors: list[tuple[str, str]] = field(default_factory=list)

    def _count(self, *outcomes: SyncOutcome) -> int:
        return sum(1 for r in self.repos if r.outcome in outcomes)

    @property
    def successful(self) -> int:
        return self._count(SyncOutcome.CLONED, SyncOutcome.UPDATED, SyncOutcome.UP_TO_DATE)

    @property
    def failed(self) -> int:
        return self._count(SyncOutcome.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(SyncOutcome.SKIPPED)

    @property
    def changed(self) -> int:
        return self._count(SyncOutcome.CLONED, SyncOutcome.UPDATED)

    @property
    def cloned(self) -> int:
        return self._count(SyncOutcome.CLONED)

    @property
    def updated(self) -> int:
        return self._count(SyncOutcome.UPDATED)

    @property
    def ok(self) -> bool:
        return not self.errors and self.failed == 0

    def get(self, dest: str) -> RepoSyncResult | None:
        for result in self.repos:
            if result.dest == dest:
                return result
        return None

    def to_dict(self) -> dict:
        return {
            "repositories": [r.to_dict() for r in self.repos],
            "errors": [{"dest": dest, "error": message} for dest, message in self.errors],
            "summary": {
                "total": len(self.repos),
                "successful": self.successful,
                "failed": self.failed,
                "skipped": self.skipped,
                "changed": self.changed,
                "cloned": self.cloned,
                "updated": self.updated,
            },
        }


# =============================================================================
# Sync Engine
# =============================================================================


class SyncEngine:
    """Reconcile the repositories of one workspace with its manifest."""

    def __init__(self, workspace: Workspace, config: SyncConfig):
        self.workspace = workspace
        self.config = config

    def run(self) -> SyncResult:
        """Sync every selected repository.

        Raises only for precondition and validation problems; failures of
        individual repositories are recorded in the result.
        """
        self.workspace.require_initialized()
        manifest = self.workspace.refresh_manifest()
        repos = self.workspace.select(self.config.groups)
        logger.info("Syncing %d repositories in %s", len(repos), self.workspace.root)

        outcomes = run_parallel(
            repos,
            self._sync_repo,
            key=lambda repo: repo.dest,
            max_jobs=self.config.max_jobs,
            parallel=self.config.parallel,
        )
        result = SyncResult(repos=list(outcomes.values()))
        for repo_result in result.repos:
            if repo_result.outcome == SyncOutcome.FAILED:
                result.errors.append((repo_result.dest, repo_result.message))

        synced = [repo for repo in repos if outcomes[repo.dest].success]
        for repo in synced:
            manifest_repo = manifest.find_repo(repo.dest)
            if manifest_repo is None or not (manifest_repo.copy or manifest_repo.symlink):
                continue
            try:
                apply_file_operations(self.workspace.root, manifest_repo)
            except WmgrError as exc:
                logger.warning("%s: %s", repo.dest, exc.message)
                result.errors.append((repo.dest, exc.message))

        if self.config.recursive:
            for repo in synced:
                self._sync_child(repo, result)

        return result

    # -------------------------------------------------------------------------
    # Per repository
    # -------------------------------------------------------------------------

    def _backend(self, repo: Repository) -> VcsBackend:
        return backend_for(repo.scm, timeout=self.config.timeout)

    def _remotes(self, repo: Repository) -> list[Remote]:
        singular = self.workspace.config.singular_remote
        if singular and repo.remote(singular) is not None:
            return [repo.remote(singular)]
        return repo.remotes

    def _sync_repo(self, repo: Repository) -> RepoSyncResult:
        path = self.workspace.repo_path(repo.dest)
        backend = self._backend(repo)
        try:
            if not path.exists():
                result = self._clone(repo, backend)
            else:
                result = self._update(repo, backend)
        except WmgrError as exc:
            result = RepoSyncResult(repo.dest, SyncOutcome.FAILED, exc.message)
        except OSError as exc:
            result = RepoSyncResult(repo.dest, SyncOutcome.FAILED, str(exc))

        if result.outcome == SyncOutcome.FAILED:
            logger.warning("%s: %s", repo.dest, result.message)
        else:
            logger.info("%s: %s %s", repo.dest, result.outcome.value, result.message)
        return result

    def _clone(self, repo: Repository, backend: VcsBackend) -> RepoSyncResult:
        path = self.workspace.repo_path(repo.dest)
        remotes = self._remotes(repo)
        shallow = repo.shallow or self.workspace.config.shallow_clones
        backend.clone(replace(repo, shallow=shallow), path, remotes[0])
        if len(remotes) > 1:
            backend.update_remotes(path, remotes)
        return RepoSyncResult(
            repo.dest, SyncOutcome.CLONED, f"cloned from {remotes[0].url}", branch=repo.branch
        )

    def _update(self, repo: Repository, backend: VcsBackend) -> RepoSyncResult:
        path = self.workspace.repo_path(repo.dest)
        if not backend.is_repository(path):
            return RepoSyncResult(
                repo.dest,
                SyncOutcome.FAILED,
                f"{path} exists but is not a {backend.scm.value} repository",
            )

        remotes = self._remotes(repo)
        remote = remotes[0].name
        backend.update_remotes(path, remotes)
        backend.fetch(path, remote)
        tree = backend.working_tree(path)
        force = self.config.force

        if repo.ref_kind in (RefKind.SHA1, RefKind.TAG):
            target = backend.resolve(path, repo.pinned_ref)
            if target is None:
                return RepoSyncResult(
                    repo.dest, SyncOutcome.FAILED, f"ref '{repo.pinned_ref}' not found"
                )
            if backend.head(path) == target:
                return RepoSyncResult(repo.dest, SyncOutcome.UP_TO_DATE, f"at {repo.pinned_ref}")
            if tree.is_dirty and not force:
                return RepoSyncResult(repo.dest, SyncOutcome.SKIPPED, LOCAL_CHANGES)
            backend.checkout(path, repo.pinned_ref, force=force)
            return RepoSyncResult(repo.dest, SyncOutcome.UPDATED, f"checked out {repo.pinned_ref}")

        if not backend.supports_branches or repo.ref_kind == RefKind.NONE:
            if tree.is_dirty and not force:
                return RepoSyncResult(
                    repo.dest, SyncOutcome.SKIPPED, LOCAL_CHANGES, branch=tree.branch
                )
            return self._fast_forward(repo, backend, tree.upstream, tree.branch, switched=False)

        expected = repo.branch
        switched = False
        if tree.branch != expected:
            actual = tree.branch or "detached HEAD"
            if not self.config.correct_branch:
                return RepoSyncResult(
                    repo.dest,
                    SyncOutcome.SKIPPED,
                    f"not on expected branch (on {actual}, expected {expected})",
                    branch=tree.branch,
                )
            if tree.is_dirty and not force:
                return RepoSyncResult(
                    repo.dest,
                    SyncOutcome.FAILED,
                    f"local changes would be discarded by checkout of {expected}. "
                    "Use --force to override.",
                    branch=tree.branch,
                )
            backend.checkout_branch(path, expected, remote, force=force)
            switched = True
            tree = backend.working_tree(path)

        if tree.is_dirty and not force:
            return RepoSyncResult(repo.dest, SyncOutcome.SKIPPED, LOCAL_CHANGES, branch=expected)

        return self._fast_forward(repo, backend, f"{remote}/{expected}", expected, switched)

    def _fast_forward(
        self,
        repo: Repository,
        backend: VcsBackend,
        upstream: str | None,
        branch: str | None,
        switched: bool,
    ) -> RepoSyncResult:
        path = self.workspace.repo_path(repo.dest)
        if backend.supports_branches:
            if upstream is None:
                return RepoSyncResult(
                    repo.dest, SyncOutcome.UP_TO_DATE, "no upstream branch", branch=branch
                )
            if backend.resolve(path, upstream) is None:
                return RepoSyncResult(
                    repo.dest,
                    SyncOutcome.FAILED,
                    f"remote branch {upstream} not found",
                    branch=branch,
                )

        moved = backend.merge_ff_only(path, upstream or "")
        if moved:
            return RepoSyncResult(repo.dest, SyncOutcome.UPDATED, "fast-forwarded", branch=branch)
        if switched:
            return RepoSyncResult(
                repo.dest, SyncOutcome.UPDATED, f"switched to {branch}", branch=branch
            )
        return RepoSyncResult(repo.dest, SyncOutcome.UP_TO_DATE, branch=branch)

    # -------------------------------------------------------------------------
    # Nested workspaces
    # -------------------------------------------------------------------------

    def _sync_child(self, repo: Repository, result: SyncResult) -> None:
        path = self.workspace.repo_path(repo.dest)
        if find_manifest_file(path) is None:
            return
        child = load_workspace(path)
        if child.status != WorkspaceStatus.INITIALIZED:
            result.errors.append((repo.dest, f"nested workspace is {child.status.value}"))
            return

        logger.info("Syncing nested workspace %s", repo.dest)
        child_config = replace(self.config, groups=None, recursive=False)
        try:
            child_result = SyncEngine(child, child_config).run()
        except WmgrError as exc:
            result.errors.append((repo.dest, exc.message))
            return

        for child_repo in child_result.repos:
            result.repos.append(replace(child_repo, dest=f"{repo.dest}/{child_repo.dest}"))
        for dest, message in child_result.errors:
            result.errors.append((f"{repo.dest}/{dest}", message))


def sync(workspace: Workspace, config: SyncConfig | None = None) -> SyncResult:
    """Sync ``workspace``. See SyncEngine.run."""
    return SyncEngine(workspace, config or SyncConfig()).run()
