"""Manifest loading, validation, discovery and serialization."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import DuplicateDest, InvalidUrl, ManifestError, UnknownGroup, ValidationError
from .logging import get_logger
from .models import DEFAULT_REMOTE, FileCopy, FileSymlink, Group, Manifest, ManifestRepo, Remote, ScmType
from .urls import validate_url

logger = get_logger("manifest")

MANIFEST_FILENAMES = ("wmgr.yml", "wmgr.yaml", "manifest.yml", "manifest.yaml")
MANIFEST_SUBDIR = ".wmgr"
MAX_INCLUDE_DEPTH = 10

MANIFEST_TEMPLATE = """\
# wmgr manifest
#
# Each repository is cloned into <workspace>/<dest>.
# Optional per-repository keys: branch, tag, sha1, groups, remotes,
# shallow, scm (git or svn), copy and symlink.

defaults:
  branch: main
  shallow: false

repos:
  - dest: example
    url: https://github.com/example/example.git
    groups: [default]
    # remotes:
    #   - name: upstream
    #     url: https://github.com/upstream/example.git

groups:
  default:
    description: Repositories cloned by a plain `wmgr sync`
    repos: []
"""


# =============================================================================
# Discovery
# =============================================================================


def find_manifest_file(directory: Path) -> Path | None:
    """Return the manifest in ``directory`` or its ``.wmgr`` subdirectory."""
    for base in (directory, directory / MANIFEST_SUBDIR):
        for name in MANIFEST_FILENAMES:
            candidate = base / name
            if candidate.is_file():
                return candidate
    return None


def discover_manifest(start: Path) -> Path | None:
    """Search ``start`` and then each parent directory for a manifest."""
    current = start.resolve()
    for directory in (current, *current.parents):
        found = find_manifest_file(directory)
        if found is not None:
            return found
    return None


# =============================================================================
# Parsing
# =============================================================================


def load_manifest(path: Path) -> Manifest:
    """Read, resolve includes of and validate the manifest at ``path``."""
    path = path.resolve()
    manifest = _load_with_includes(path, stack=[], depth=0)
    validate_manifest(manifest)
    manifest.path = path
    logger.debug("Loaded manifest %s with %d repos", path, len(manifest.repos))
    return manifest


def loads_manifest(text: str, base_dir: Path | None = None) -> Manifest:
    """Parse manifest text. Relative includes resolve against ``base_dir``."""
    data = _parse_yaml(text, "<string>")
    manifest = _build(data, "<string>")
    if data.get("includes"):
        base = (base_dir or Path.cwd()).resolve()
        _merge_includes(manifest, data["includes"], base, stack=[], depth=0)
    validate_manifest(manifest)
    return manifest


def _read(path: Path) -> dict:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ManifestError(f"Cannot read manifest {path}: {exc}", path=path) from exc
    return _parse_yaml(text, str(path))


def _parse_yaml(text: str, source: str) -> dict:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ManifestError(f"Invalid YAML in {source}: {exc}", path=source) from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ManifestError(f"Manifest {source} must be a mapping", path=source)
    return data


def _load_with_includes(path: Path, stack: list[Path], depth: int) -> Manifest:
    if path in stack:
        chain = " -> ".join(str(p) for p in [*stack, path])
        raise ManifestError(f"Circular manifest include: {chain}", path=path)
    if depth > MAX_INCLUDE_DEPTH:
        raise ManifestError(f"Manifest includes nested deeper than {MAX_INCLUDE_DEPTH}", path=path)

    data = _read(path)
    manifest = _build(data, str(path))
    if data.get("includes"):
        _merge_includes(manifest, data["includes"], path.parent, [*stack, path], depth)
    return manifest


def _merge_includes(
    manifest: Manifest, includes: Any, base: Path, stack: list[Path], depth: int
) -> None:
    if not isinstance(includes, list):
        raise ManifestError("'includes' must be a list")
    for entry in includes:
        if isinstance(entry, str):
            include_path, include_groups = entry, None
        elif isinstance(entry, dict) and isinstance(entry.get("path"), str):
            include_path, include_groups = entry["path"], entry.get("groups")
        else:
            raise ManifestError(f"Invalid include entry: {entry!r}")

        target = (base / include_path).resolve()
        included = _load_with_includes(target, stack, depth + 1)
        if include_groups:
            included = filter_manifest(included, list(include_groups))
        _merge(manifest, included)


def _merge(manifest: Manifest, included: Manifest) -> None:
    """Add repos and groups of ``included``. Entries already present win."""
    known = {repo.dest for repo in manifest.repos}
    for repo in included.repos:
        if repo.dest not in known:
            manifest.repos.append(repo)
            known.add(repo.dest)
    for name, group in included.groups.items():
        target = manifest.groups.setdefault(name, Group(description=group.description))
        for dest in group.repos:
            if dest not in target.repos:
                target.repos.append(dest)
    if manifest.default_branch is None:
        manifest.default_branch = included.default_branch


def _build(data: dict, source: str) -> Manifest:
    defaults = data.get("defaults") or {}
    if not isinstance(defaults, dict):
        raise ManifestError(f"'defaults' must be a mapping in {source}")

    raw_repos = data.get("repos") or []
    if not isinstance(raw_repos, list):
        raise ManifestError(f"'repos' must be a list in {source}")
    repos = [_build_repo(entry, index, source) for index, entry in enumerate(raw_repos)]

    groups: dict[str, Group] = {}
    raw_groups = data.get("groups") or {}
    if not isinstance(raw_groups, dict):
        raise ManifestError(f"'groups' must be a mapping in {source}")
    for name, raw in raw_groups.items():
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ManifestError(f"Group '{name}' must be a mapping in {source}")
        members = raw.get("repos") or []
        if not isinstance(members, list):
            raise ManifestError(f"Group '{name}' repos must be a list in {source}")
        group = Group(description=raw.get("description"))
        for dest in members:
            if str(dest) not in group.repos:
                group.repos.append(str(dest))
        groups[str(name)] = group

    # Repos may declare membership themselves.
    for repo in repos:
        for name in repo.groups:
            group = groups.setdefault(name, Group())
            if repo.dest not in group.repos:
                group.repos.append(repo.dest)

    return Manifest(
        repos=repos,
        groups=groups,
        default_branch=defaults.get("branch") or data.get("default_branch"),
        default_shallow=bool(defaults.get("shallow", False)),
    )


def _build_repo(entry: Any, index: int, source: str) -> ManifestRepo:
    if not isinstance(entry, dict):
        raise ManifestError(f"Repository #{index + 1} in {source} must be a mapping")
    dest = entry.get("dest")
    url = entry.get("url")
    if not dest or not isinstance(dest, str):
        raise ManifestError(f"Repository #{index + 1} in {source} has no 'dest'")
    if not url or not isinstance(url, str):
        raise ManifestError(f"Repository '{dest}' has no 'url'", dest=dest)

    try:
        scm = ScmType(entry.get("scm", ScmType.GIT.value))
    except ValueError:
        raise ValidationError(f"Unknown scm '{entry.get('scm')}'", dest=dest) from None

    groups = entry.get("groups") or []
    if isinstance(groups, str):
        groups = [groups]

    remotes = [
        Remote(name=str(r.get("name", "")), url=str(r.get("url", "")))
        for r in entry.get("remotes") or []
        if isinstance(r, dict)
    ]
    copies = [
        FileCopy(file=str(c["file"]), dest=str(c["dest"]))
        for c in entry.get("copy") or []
        if isinstance(c, dict) and "file" in c and "dest" in c
    ]
    links = [
        FileSymlink(source=str(s["source"]), target=str(s["target"]))
        for s in entry.get("symlink") or []
        if isinstance(s, dict) and "source" in s and "target" in s
    ]

    return ManifestRepo(
        dest=dest,
        url=url,
        branch=_opt_str(entry.get("branch")),
        sha1=_opt_str(entry.get("sha1")),
        tag=_opt_str(entry.get("tag")),
        groups=[str(g) for g in groups],
        remotes=remotes,
        shallow=bool(entry.get("shallow", False)),
        scm=scm,
        copy=copies,
        symlink=links,
    )


def _opt_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


# =============================================================================
# Validation
# =============================================================================


def validate_manifest(manifest: Manifest) -> None:
    """Raise a ValidationError subclass for the first problem found."""
    seen: set[str] = set()
    for repo in manifest.repos:
        _validate_dest(repo.dest)
        if repo.dest in seen:
            raise DuplicateDest(f"Duplicate dest '{repo.dest}'", dest=repo.dest)
        seen.add(repo.dest)

        try:
            validate_url(repo.url)
            for remote in repo.remotes:
                validate_url(remote.url)
        except InvalidUrl as exc:
            raise InvalidUrl(exc.message, dest=repo.dest, **exc.context) from exc

        # An explicit origin entry is only allowed when it repeats the repo url.
        extra = [r for r in repo.remotes if not (r.name == DEFAULT_REMOTE and r.url == repo.url)]
        names = [DEFAULT_REMOTE] + [r.name for r in extra]
        if any(not name for name in names) or len(names) != len(set(names)):
            raise ValidationError("Remote names must be non-empty and unique", dest=repo.dest)
        if repo.sha1 and repo.tag:
            raise ValidationError("Only one of 'sha1' and 'tag' may be set", dest=repo.dest)

    for name, group in manifest.groups.items():
        for dest in group.repos:
            if dest not in seen:
                raise ValidationError(
                    f"Group '{name}' references non-existent repository: {dest}",
                    dest=dest,
                    group=name,
                )


def _validate_dest(dest: str) -> None:
    path = Path(dest)
    if path.is_absolute() or ".." in path.parts or dest.strip() in ("", "."):
        raise ValidationError(f"Invalid dest '{dest}': must stay inside the workspace", dest=dest)


# =============================================================================
# Group filtering
# =============================================================================


def select_repos(manifest: Manifest, groups: list[str] | None) -> list[ManifestRepo]:
    """Union of the repos of ``groups`` in manifest order.

    ``None`` or an empty list selects every repository. Unknown group
    names raise UnknownGroup.
    """
    if not groups:
        return list(manifest.repos)
    unknown = [name for name in groups if name not in manifest.groups]
    if unknown:
        raise UnknownGroup(f"Unknown group(s): {', '.join(unknown)}", groups=unknown)
    wanted: set[str] = set()
    for name in groups:
        wanted.update(manifest.groups[name].repos)
    return [repo for repo in manifest.repos if repo.dest in wanted]


def filter_manifest(manifest: Manifest, groups: list[str]) -> Manifest:
    """Copy of ``manifest`` restricted to ``groups``."""
    repos = select_repos(manifest, groups)
    kept = {repo.dest for repo in repos}
    return Manifest(
        repos=repos,
        groups={
            name: Group(
                repos=[dest for dest in manifest.groups[name].repos if dest in kept],
                description=manifest.groups[name].description,
            )
            for name in groups
        },
        default_branch=manifest.default_branch,
        default_shallow=manifest.default_shallow,
        path=manifest.path,
    )


# =============================================================================
# Serialization
# =============================================================================


def dump_manifest(manifest: Manifest, fmt: str = "yaml") -> str:
    """Serialize ``manifest`` as ``yaml`` or ``json``."""
    data = manifest.to_dict()
    if fmt == "json":
        return json.dumps(data, indent=2)
    if fmt == "yaml":
        return yaml.dump(data, sort_keys=False, default_flow_style=False)
    raise ValidationError(f"Unsupported format '{fmt}' (expected yaml or json)")


# =============================================================================
# Diff
# =============================================================================


@dataclass
class ManifestChanges:
    """Repository-level differences between two manifests."""

    added: list[ManifestRepo] = field(default_factory=list)
    modified: list[tuple[ManifestRepo, ManifestRepo]] = field(default_factory=list)
    removed: list[ManifestRepo] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.modified or self.removed)

    def to_dict(self) -> dict:
        return {
            "added": [repo.dest for repo in self.added],
            "modified": [new.dest for _, new in self.modified],
            "removed": [repo.dest for repo in self.removed],
        }


_COMPARED_FIELDS = ("url", "branch", "sha1", "tag", "remotes", "scm", "shallow")


def diff_manifests(current: Manifest, new: Manifest) -> ManifestChanges:
    changes = ManifestChanges()
    for repo in new.repos:
        old = current.find_repo(repo.dest)
        if old is None:
            changes.added.append(repo)
        elif any(getattr(old, f) != getattr(repo, f) for f in _COMPARED_FIELDS):
            changes.modified.append((old, repo))
    for repo in current.repos:
        if new.find_repo(repo.dest) is None:
            changes.removed.append(repo)
    return changes
