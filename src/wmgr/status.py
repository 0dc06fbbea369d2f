"""Read-only classification of every workspace repository."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import StrEnum

from .errors import WmgrError
from .logging import get_logger
from .models import RefKind, Repository
from .runner import run_parallel
from .vcs import VcsBackend, WorkingTree, backend_for
from .workspace import Workspace

logger = get_logger("status")

# =============================================================================
# Domain Models
# =============================================================================


class StatusKind(StrEnum):
    """How a repository differs from what the manifest expects."""

    CLEAN = "clean"
    DIRTY = "dirty"
    MISSING = "missing"
    WRONG_BRANCH = "wrong_branch"
    OUT_OF_SYNC = "out_of_sync"
    ERROR = "error"


@dataclass
class RepoStatus:
    """Status of one repository. Which fields matter depends on ``kind``."""

    dest: str
    kind: StatusKind
    branch: str | None = None
    expected: str | None = None
    ahead: int = 0
    behind: int = 0
    staged_count: int = 0
    modified_count: int = 0
    untracked_count: int = 0
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "dest": self.dest,
            "status": self.kind.value,
            "branch": self.branch,
            "expected": self.expected,
            "ahead": self.ahead,
            "behind": self.behind,
            "staged_count": self.staged_count,
            "modified_count": self.modified_count,
            "untracked_count": self.untracked_count,
            "message": self.message,
        }


@dataclass
class StatusSummary:
    """Number of repositories per status kind."""

    total: int = 0
    clean: int = 0
    dirty: int = 0
    missing: int = 0
    wrong_branch: int = 0
    out_of_sync: int = 0
    error: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StatusConfig:
    groups: list[str] | None = None
    show_branch: bool = False
    compact: bool = False
    parallel: bool = True
    max_jobs: int | None = None
    timeout: float | None = None


@dataclass
class StatusReport:
    repos: list[RepoStatus] = field(default_factory=list)

    @property
    def summary(self) -> StatusSummary:
        summary = StatusSummary(total=len(self.repos))
        for status in self.repos:
            setattr(summary, status.kind.value, getattr(summary, status.kind.value) + 1)
        return summary

    @property
    def ok(self) -> bool:
        return all(status.kind != StatusKind.ERROR for status in self.repos)

    def get(self, dest: str) -> RepoStatus | None:
        for status in self.repos:
            if status.dest == dest:
                return status
        return None

    def to_dict(self) -> dict:
        return {
            "repositories": [s.to_dict() for s in self.repos],
            "summary": self.summary.to_dict(),
        }


# =============================================================================
# Status Engine
# =============================================================================


class StatusEngine:
    """Inspect repositories without modifying them. No fetch is performed."""

    def __init__(self, workspace: Workspace, config: StatusConfig):
        self.workspace = workspace
        self.config = config

    def run(self) -> StatusReport:
        repos = self.workspace.select(self.config.groups)
        statuses = run_parallel(
            repos,
            self.inspect,
            key=lambda repo: repo.dest,
            max_jobs=self.config.max_jobs,
            parallel=self.config.parallel,
        )
        return StatusReport(repos=list(statuses.values()))

    def inspect(self, repo: Repository) -> RepoStatus:
        backend = backend_for(repo.scm, timeout=self.config.timeout)
        try:
            return self._classify(repo, backend)
        except (WmgrError, OSError, ValueError) as exc:
            logger.warning("%s: %s", repo.dest, exc)
            return RepoStatus(repo.dest, StatusKind.ERROR, message=str(getattr(exc, "message", exc)))

    def _classify(self, repo: Repository, backend: VcsBackend) -> RepoStatus:
        path = self.workspace.repo_path(repo.dest)
        if not path.exists():
            return RepoStatus(repo.dest, StatusKind.MISSING, expected=repo.branch)
        if not backend.is_repository(path):
            return RepoStatus(
                repo.dest,
                StatusKind.ERROR,
                message=f"not a {backend.scm.value} repository",
            )

        tree = backend.working_tree(path)
        status = RepoStatus(
            repo.dest,
            StatusKind.CLEAN,
            branch=tree.branch,
            expected=repo.pinned_ref or repo.branch,
            staged_count=tree.staged_count,
            modified_count=tree.modified_count,
            untracked_count=tree.untracked_count,
        )
        if tree.is_dirty:
            status.kind = StatusKind.DIRTY
            return status

        if repo.ref_kind in (RefKind.SHA1, RefKind.TAG):
            target = backend.resolve(path, repo.pinned_ref)
            if target is None:
                status.kind = StatusKind.ERROR
                status.message = f"ref '{repo.pinned_ref}' not found"
                return status
            head = backend.head(path)
            if head != target:
                status.kind = StatusKind.WRONG_BRANCH
                status.branch = tree.branch or head[:10]
            return status

        if backend.supports_branches and repo.ref_kind == RefKind.BRANCH:
            if tree.detached:
                status.kind = StatusKind.ERROR
                status.message = f"detached HEAD, expected branch {repo.branch}"
                return status
            if tree.branch != repo.branch:
                status.kind = StatusKind.WRONG_BRANCH
                return status

        ahead, behind = self._divergence(repo, backend, tree)
        status.ahead, status.behind = ahead, behind
        if ahead or behind:
            status.kind = StatusKind.OUT_OF_SYNC
        return status

    def _divergence(
        self, repo: Repository, backend: VcsBackend, tree: WorkingTree
    ) -> tuple[int, int]:
        """Ahead/behind against the tracked upstream, else the primary remote branch.

        Backends without branches compare the working copy with the server head.
        """
        path = self.workspace.repo_path(repo.dest)
        if not backend.supports_branches:
            return backend.ahead_behind(path, "")
        if tree.upstream:
            return tree.ahead, tree.behind
        if not tree.branch:
            return 0, 0
        candidate = f"{self.workspace.primary_remote(repo).name}/{tree.branch}"
        if backend.resolve(path, candidate) is None:
            return 0, 0
        return backend.ahead_behind(path, candidate)


def status(workspace: Workspace, config: StatusConfig | None = None) -> StatusReport:
    """Classify the selected repositories of ``workspace``."""
    return StatusEngine(workspace, config or StatusConfig()).run()
