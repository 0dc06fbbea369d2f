"""Error taxonomy shared by every wmgr engine.

Errors fall into four kinds. Precondition and validation errors abort a
whole invocation before any repository is touched; repository and process
errors are caught per repository and recorded in the engine's result.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    """Closed set of error categories."""

    PRECONDITION = "precondition"
    REPOSITORY = "repository"
    PROCESS = "process"
    VALIDATION = "validation"


class WmgrError(Exception):
    """Base class for all wmgr errors."""

    kind: ErrorKind = ErrorKind.REPOSITORY

    def __init__(self, message: str, *, dest: str | None = None, **context: Any):
        super().__init__(message)
        self.message = message
        self.dest = dest
        self.context = context

    def __str__(self) -> str:
        if self.dest:
            return f"{self.dest}: {self.message}"
        return self.message

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "error": type(self).__name__,
            "message": self.message,
            "dest": self.dest,
            "context": {k: str(v) for k, v in self.context.items()},
        }


# =============================================================================
# Precondition
# =============================================================================


class PreconditionError(WmgrError):
    kind = ErrorKind.PRECONDITION


class WorkspaceNotInitialized(PreconditionError):
    """Raised when an operation needs an initialized workspace."""


class ManifestUpdateFailed(PreconditionError):
    """Raised when the manifest cannot be refreshed or re-read."""


class WorkspaceExists(PreconditionError):
    """Raised by init when a workspace is already present."""


class ManifestChangesPending(PreconditionError):
    """Raised by apply-manifest when changes need --force."""


class ConfigError(PreconditionError):
    """Raised when the workspace configuration cannot be parsed."""


# =============================================================================
# Repository
# =============================================================================


class RepositoryError(WmgrError):
    kind = ErrorKind.REPOSITORY


class VcsError(RepositoryError):
    """A VCS command exited with a non-zero status."""

    def __init__(
        self,
        message: str,
        *,
        dest: str | None = None,
        args: list[str] | None = None,
        exit_code: int | None = None,
        stderr: str = "",
    ):
        super().__init__(message, dest=dest, args=" ".join(args or []), exit_code=exit_code)
        self.exit_code = exit_code
        self.stderr = stderr


class CannotFastForward(RepositoryError):
    """Local and remote histories have diverged."""


# =============================================================================
# Process execution
# =============================================================================


class ProcessError(WmgrError):
    kind = ErrorKind.PROCESS


class CommandTimeout(ProcessError):
    """The process exceeded its timeout and was killed."""

    def __init__(self, message: str, *, timeout: float, dest: str | None = None):
        super().__init__(message, dest=dest, timeout=timeout)
        self.timeout = timeout


class SpawnFailure(ProcessError):
    """The process could not be started."""


# =============================================================================
# Validation
# =============================================================================


class ValidationError(WmgrError):
    kind = ErrorKind.VALIDATION


class InvalidUrl(ValidationError):
    pass


class DuplicateDest(ValidationError):
    pass


class UnknownGroup(ValidationError):
    pass


class InvalidCommand(ValidationError):
    pass


class ManifestError(ValidationError):
    """The manifest could not be read or has an invalid structure."""
