"""wmgr: manage a workspace of many repositories from a single manifest."""

from ._version import __version__
from .errors import (
    ErrorKind,
    WmgrError,
    WorkspaceNotInitialized,
)
from .foreach import ExecutionResult, ForeachConfig, ForeachReport, foreach
from .history import LogConfig, LogReport, collect_logs
from .manifest import dump_manifest, find_manifest_file, load_manifest, loads_manifest
from .models import Group, Manifest, ManifestRepo, Remote, Repository, ScmType
from .runner import CommandResult, CommandSpec, run_batch, run_command
from .status import RepoStatus, StatusConfig, StatusKind, StatusReport, status
from .sync import RepoSyncResult, SyncConfig, SyncOutcome, SyncResult, sync
from .vcs import GitBackend, SvnBackend, backend_for
from .workspace import (
    Workspace,
    WorkspaceConfig,
    WorkspaceStatus,
    apply_manifest,
    init_workspace,
    load_workspace,
)

__all__ = [
    # Version
    "__version__",
    # Errors
    "ErrorKind",
    "WmgrError",
    "WorkspaceNotInitialized",
    # Models
    "Group",
    "Manifest",
    "ManifestRepo",
    "Remote",
    "Repository",
    "ScmType",
    # Manifest
    "dump_manifest",
    "find_manifest_file",
    "load_manifest",
    "loads_manifest",
    # Workspace
    "Workspace",
    "WorkspaceConfig",
    "WorkspaceStatus",
    "apply_manifest",
    "init_workspace",
    "load_workspace",
    # Engines
    "CommandResult",
    "CommandSpec",
    "ExecutionResult",
    "ForeachConfig",
    "ForeachReport",
    "GitBackend",
    "LogConfig",
    "LogReport",
    "RepoStatus",
    "RepoSyncResult",
    "StatusConfig",
    "StatusKind",
    "StatusReport",
    "SvnBackend",
    "SyncConfig",
    "SyncOutcome",
    "SyncResult",
    "backend_for",
    "collect_logs",
    "foreach",
    "run_batch",
    "run_command",
    "status",
    "sync",
]
