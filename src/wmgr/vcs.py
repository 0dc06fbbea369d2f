"""VCS adapters driving the git and svn command-line tools."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .errors import CannotFastForward, VcsError
from .logging import get_logger
from .models import Remote, Repository, ScmType
from .runner import CommandResult, CommandSpec, run_command

logger = get_logger("vcs")

# =============================================================================
# Domain Models
# =============================================================================


@dataclass
class WorkingTree:
    """Snapshot of a working copy, as reported by the VCS."""

    branch: str | None = None
    upstream: str | None = None
    ahead: int = 0
    behind: int = 0
    staged_count: int = 0
    modified_count: int = 0
    untracked_count: int = 0
    detached: bool = False

    @property
    def is_dirty(self) -> bool:
        return self.staged_count > 0 or self.modified_count > 0 or self.untracked_count > 0


class VcsBackend(Protocol):
    """Capabilities the sync, status and log engines need from a VCS."""

    scm: ScmType
    supports_branches: bool

    def is_repository(self, path: Path) -> bool: ...

    def clone(self, repo: Repository, path: Path, remote: Remote) -> None: ...

    def update_remotes(self, path: Path, remotes: list[Remote]) -> None: ...

    def fetch(self, path: Path, remote: str) -> None: ...

    def checkout(self, path: Path, ref: str, *, force: bool = False) -> None: ...

    def checkout_branch(
        self, path: Path, branch: str, remote: str, *, force: bool = False
    ) -> None: ...

    def working_tree(self, path: Path) -> WorkingTree: ...

    def head(self, path: Path) -> str: ...

    def resolve(self, path: Path, ref: str) -> str | None: ...

    def ahead_behind(self, path: Path, upstream: str) -> tuple[int, int]: ...

    def merge_ff_only(self, path: Path, upstream: str) -> bool: ...

    def log(self, path: Path, options: list[str]) -> str: ...


# =============================================================================
# Git
# =============================================================================


class GitBackend:
    """Git operations for working copies inside a workspace."""

    scm = ScmType.GIT
    supports_branches = True

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout

    def _run(self, path: Path, *args: str, check: bool = True) -> CommandResult:
        """Run a git command in ``path``."""
        spec = CommandSpec(
            ["git", *args],
            cwd=path,
            env={"GIT_TERMINAL_PROMPT": "0"},
            timeout=self.timeout,
        )
        result = run_command(spec)
        if check and result.exit_code != 0:
            message = result.stderr.strip() or result.stdout.strip() or f"exit code {result.exit_code}"
            raise VcsError(
                f"git {args[0]} failed: {message}",
                args=["git", *args],
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
        return result

    def is_repository(self, path: Path) -> bool:
        if not path.is_dir():
            return False
        result = self._run(path, "rev-parse", "--show-toplevel", check=False)
        if result.exit_code != 0:
            return False
        return Path(result.stdout.strip()).resolve() == path.resolve()

    def clone(self, repo: Repository, path: Path, remote: Remote) -> None:
        """Clone ``remote`` into ``path`` and check out the pinned ref."""
        args = ["clone", "--origin", remote.name]
        # A depth-1 clone only holds the tip, which an arbitrary sha1 may not be.
        if repo.shallow and not repo.sha1:
            args += ["--depth", "1"]
        # Branches and tags can be cloned directly; a sha1 needs a checkout after.
        if not repo.sha1 and (repo.tag or repo.branch):
            args += ["--branch", repo.tag or repo.branch]
        args += [remote.url, str(path)]
        path.parent.mkdir(parents=True, exist_ok=True)
        self._run(path.parent, *args)
        if repo.sha1:
            try:
                self.checkout(path, repo.sha1)
            except VcsError:
                shutil.rmtree(path, ignore_errors=True)
                raise

    def remotes(self, path: Path) -> dict[str, str]:
        result = self._run(path, "config", "--get-regexp", r"^remote\..*\.url$", check=False)
        remotes = {}
        for line in result.stdout.splitlines():
            key, _, url = line.partition(" ")
            name = key[len("remote.") : -len(".url")]
            remotes[name] = url.strip()
        return remotes

    def update_remotes(self, path: Path, remotes: list[Remote]) -> None:
        """Add missing remotes and overwrite URLs that differ."""
        existing = self.remotes(path)
        for remote in remotes:
            current = existing.get(remote.name)
            if current is None:
                self._run(path, "remote", "add", remote.name, remote.url)
            elif current != remote.url:
                self._run(path, "remote", "set-url", remote.name, remote.url)

    def fetch(self, path: Path, remote: str) -> None:
        self._run(path, "fetch", "--tags", "--prune", remote)

    def checkout(self, path: Path, ref: str, *, force: bool = False) -> None:
        args = ["checkout", "--quiet"]
        if force:
            args.append("--force")
        self._run(path, *args, ref, "--")

    def checkout_branch(self, path: Path, branch: str, remote: str, *, force: bool = False) -> None:
        """Check out ``branch``, creating it to track ``remote`` when absent locally."""
        args = ["checkout", "--quiet"]
        if force:
            args.append("--force")
        if self.resolve(path, f"refs/heads/{branch}") is not None:
            self._run(path, *args, branch, "--")
        else:
            self._run(path, *args, "-b", branch, "--track", f"{remote}/{branch}")

    def working_tree(self, path: Path) -> WorkingTree:
        """Branch, upstream, ahead/behind and change counts in one command.

        Uses ``git status --porcelain=v2 --branch``. ``--no-optional-locks``
        keeps the index untouched so status stays read-only.
        """
        result = self._run(path, "--no-optional-locks", "status", "--porcelain=v2", "--branch")
        tree = WorkingTree()
        for line in result.stdout.splitlines():
            if line.startswith("# branch.head "):
                head = line[len("# branch.head ") :]
                if head == "(detached)":
                    tree.detached = True
                else:
                    tree.branch = head
            elif line.startswith("# branch.upstream "):
                tree.upstream = line[len("# branch.upstream ") :]
            elif line.startswith("# branch.ab "):
                # Format: # branch.ab +<ahead> -<behind>
                parts = line.split()
                if len(parts) == 4:
                    tree.ahead = abs(int(parts[2]))
                    tree.behind = abs(int(parts[3]))
            elif line.startswith("1 ") or line.startswith("2 "):
                # Changed entry: XY sub mH mI mW hH hI path
                xy = line[2:4]
                if xy[0] != ".":
                    tree.staged_count += 1
                if xy[1] != ".":
                    tree.modified_count += 1
            elif line.startswith("u "):
                # Unmerged entry: counts as both staged and modified
                tree.staged_count += 1
                tree.modified_count += 1
            elif line.startswith("? "):
                tree.untracked_count += 1
        return tree

    def head(self, path: Path) -> str:
        return self._run(path, "rev-parse", "HEAD").stdout.strip()

    def resolve(self, path: Path, ref: str) -> str | None:
        """Commit id of ``ref`` or None when it does not exist."""
        result = self._run(path, "rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}", check=False)
        if result.exit_code != 0:
            return None
        return result.stdout.strip()

    def ahead_behind(self, path: Path, upstream: str) -> tuple[int, int]:
        result = self._run(path, "rev-list", "--left-right", "--count", f"{upstream}...HEAD")
        parts = result.stdout.split()
        if len(parts) != 2:
            raise VcsError(f"Unexpected rev-list output: {result.stdout.strip()!r}")
        return int(parts[1]), int(parts[0])

    def merge_ff_only(self, path: Path, upstream: str) -> bool:
        """Fast-forward to ``upstream``. Returns whether HEAD moved."""
        ahead, behind = self.ahead_behind(path, upstream)
        if behind == 0:
            return False
        if ahead > 0:
            raise CannotFastForward(
                f"cannot fast-forward: local branch has {ahead} commit(s) not on {upstream} "
                f"and is {behind} commit(s) behind",
                ahead=ahead,
                behind=behind,
            )
        self._run(path, "merge", "--ff-only", "--quiet", upstream)
        return True

    def log(self, path: Path, options: list[str]) -> str:
        return self._run(path, "--no-pager", "log", *options).stdout


# =============================================================================
# Subversion
# =============================================================================


class SvnBackend:
    """Subversion working copies. Svn has no local branches to correct."""

    scm = ScmType.SVN
    supports_branches = False

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout

    def _run(self, path: Path, *args: str, check: bool = True) -> CommandResult:
        result = run_command(
            CommandSpec(["svn", "--non-interactive", *args], cwd=path, timeout=self.timeout)
        )
        if check and result.exit_code != 0:
            message = result.stderr.strip() or f"exit code {result.exit_code}"
            raise VcsError(
                f"svn {args[0]} failed: {message}",
                args=["svn", *args],
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
        return result

    def is_repository(self, path: Path) -> bool:
        return (path / ".svn").is_dir()

    def clone(self, repo: Repository, path: Path, remote: Remote) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        args = ["checkout", remote.url, str(path)]
        if repo.sha1:
            args[1:1] = ["--revision", repo.sha1]
        self._run(path.parent, *args)

    def update_remotes(self, path: Path, remotes: list[Remote]) -> None:
        url = self._run(path, "info", "--show-item", "url").stdout.strip()
        if remotes and url != remotes[0].url:
            self._run(path, "relocate", remotes[0].url)

    def fetch(self, path: Path, remote: str) -> None:
        # svn has no separate fetch; update does both.
        return None

    def checkout(self, path: Path, ref: str, *, force: bool = False) -> None:
        if force:
            self._run(path, "revert", "--recursive", ".")
        self._run(path, "update", "--revision", ref)

    def checkout_branch(self, path: Path, branch: str, remote: str, *, force: bool = False) -> None:
        raise VcsError("svn working copies have no branches to check out")

    def working_tree(self, path: Path) -> WorkingTree:
        tree = WorkingTree()
        result = self._run(path, "status")
        for line in result.stdout.splitlines():
            if not line:
                continue
            code = line[0]
            if code == "?":
                tree.untracked_count += 1
            elif code in "AD":
                tree.staged_count += 1
            elif code in "MRC!~":
                tree.modified_count += 1
        return tree

    def head(self, path: Path) -> str:
        return self._run(path, "info", "--show-item", "revision").stdout.strip()

    def resolve(self, path: Path, ref: str) -> str | None:
        return ref if ref.isdigit() else None

    def ahead_behind(self, path: Path, upstream: str) -> tuple[int, int]:
        local = int(self.head(path) or 0)
        remote = int(
            self._run(path, "info", "--show-item", "revision", "-r", "HEAD").stdout.strip() or 0
        )
        return 0, max(remote - local, 0)

    def merge_ff_only(self, path: Path, upstream: str) -> bool:
        before = self.head(path)
        self._run(path, "update")
        return self.head(path) != before

    def log(self, path: Path, options: list[str]) -> str:
        return self._run(path, "log", *options).stdout


_BACKENDS: dict[ScmType, type[GitBackend] | type[SvnBackend]] = {
    ScmType.GIT: GitBackend,
    ScmType.SVN: SvnBackend,
}


def backend_for(scm: ScmType, timeout: float | None = None) -> VcsBackend:
    """Return the backend implementing ``scm``."""
    return _BACKENDS[scm](timeout=timeout)
