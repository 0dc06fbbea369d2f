"""Copy and symlink entries declared on manifest repositories."""

from __future__ import annotations

import os
import shutil
from pathlib import Path

from .errors import RepositoryError
from .logging import get_logger
from .models import FileCopy, FileSymlink, ManifestRepo

logger = get_logger("file_ops")


def _inside(root: Path, relative: str, dest: str) -> Path:
    path = (root / relative).resolve()
    if path != root and root not in path.parents:
        raise RepositoryError(f"'{relative}' points outside the workspace", dest=dest)
    return path


def copy_file(root: Path, repo: ManifestRepo, entry: FileCopy) -> bool:
    """Copy ``entry.file`` of ``repo`` to ``entry.dest``. Returns whether anything changed."""
    source = _inside(root / repo.dest, entry.file, repo.dest)
    target = _inside(root, entry.dest, repo.dest)
    if not source.is_file():
        raise RepositoryError(f"copy source '{entry.file}' does not exist", dest=repo.dest)
    if target.is_file() and target.read_bytes() == source.read_bytes():
        return False
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, target)
    logger.debug("%s: copied %s -> %s", repo.dest, entry.file, entry.dest)
    return True


def create_symlink(root: Path, repo: ManifestRepo, entry: FileSymlink) -> bool:
    """Create ``entry.source`` as a symlink to ``entry.target``."""
    link = root / entry.source
    _inside(root, entry.source, repo.dest)
    if link.is_symlink():
        if os.readlink(link) == entry.target:
            return False
        link.unlink()
    elif link.exists():
        raise RepositoryError(
            f"cannot create symlink '{entry.source}': a file is in the way", dest=repo.dest
        )
    link.parent.mkdir(parents=True, exist_ok=True)
    link.symlink_to(entry.target)
    logger.debug("%s: linked %s -> %s", repo.dest, entry.source, entry.target)
    return True


def apply_file_operations(root: Path, repo: ManifestRepo) -> int:
    """Apply every copy and symlink entry of ``repo``; returns how many changed."""
    changed = 0
    try:
        for entry in repo.copy:
            changed += copy_file(root, repo, entry)
        for link in repo.symlink:
            changed += create_symlink(root, repo, link)
    except OSError as exc:
        raise RepositoryError(f"file operation failed: {exc}", dest=repo.dest) from exc
    return changed
