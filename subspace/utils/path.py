"""Filesystem helpers used across :mod:`subspace`."""

from __future__ import annotations

import logging
from pathlib import Path

from plumbum import local
from tomlkit import parse
from tomlkit.exceptions import TOMLKitError

MANIFEST_FILENAME = "Cargo.toml"

LOGGER = logging.getLogger(__name__)


def normalise_workspace_root(value: Path | str | None) -> Path:
    """Return an absolute workspace path with ``~`` expanded."""
    if value is None:
        return Path.cwd().resolve()
    candidate = local.path(str(value))
    expanded = Path(str(candidate)).expanduser()
    return expanded.resolve(strict=False)


def normalise_path(value: Path | str) -> Path:
    """Return ``value`` as an absolute, symlink-free path."""
    return Path(value).expanduser().resolve(strict=False)


def is_within(path: Path, root: Path) -> bool:
    """Return ``True`` when ``path`` equals ``root`` or lives beneath it."""
    return path == root or root in path.parents


def _declares_workspace(manifest_path: Path) -> bool:
    """Return ``True`` when ``manifest_path`` has a ``[workspace]`` table."""
    try:
        document = parse(manifest_path.read_text(encoding="utf-8"))
    except (OSError, TOMLKitError) as exc:
        LOGGER.debug("Ignoring unreadable manifest %s: %s", manifest_path, exc)
        return False
    return document.get("workspace") is not None


def find_manifest(path: Path | str) -> Path | None:
    """Return the nearest ``Cargo.toml`` at or above ``path``."""
    resolved = normalise_path(path)
    start = resolved if resolved.is_dir() else resolved.parent
    for ancestor in (start, *start.parents):
        candidate = ancestor / MANIFEST_FILENAME
        if candidate.is_file():
            return candidate
    return None


def locate_workspace_root(path: Path | str) -> Path | None:
    """Return the Cargo workspace root containing ``path``.

    Ancestors are searched for manifests; the nearest one declaring a
    ``[workspace]`` table wins. A standalone package (no workspace table
    anywhere above it) is its own workspace, so the nearest manifest's
    directory is returned instead.
    """
    nearest = find_manifest(path)
    if nearest is None:
        return None
    for ancestor in (nearest.parent, *nearest.parent.parents):
        candidate = ancestor / MANIFEST_FILENAME
        if candidate.is_file() and _declares_workspace(candidate):
            return ancestor
    return nearest.parent


def _string_entries(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(entry) for entry in value if isinstance(entry, str)]


def _member_directories(workspace_root: Path, pattern: str) -> list[Path]:
    if Path(pattern).is_absolute():
        LOGGER.debug("Ignoring absolute workspace member pattern %s", pattern)
        return []
    if any(char in pattern for char in "*?["):
        return sorted(workspace_root.glob(pattern))
    return [workspace_root / pattern]


def workspace_member_manifests(workspace_root: Path) -> tuple[Path, ...]:
    """Return the manifests matched by the workspace's ``members`` patterns.

    ``exclude`` entries are removed from the matches. This follows the
    manifest files on disk rather than what ``cargo metadata`` last
    reported, so a crate created under a ``members`` glob is noticed before
    the workspace graph is rebuilt.
    """
    manifest_path = workspace_root / MANIFEST_FILENAME
    try:
        document = parse(manifest_path.read_text(encoding="utf-8"))
    except (OSError, TOMLKitError) as exc:
        LOGGER.debug("Cannot read workspace members from %s: %s", manifest_path, exc)
        return ()
    workspace = document.get("workspace")
    if not isinstance(workspace, dict):
        return ()
    excluded = {
        normalise_path(workspace_root / entry)
        for entry in _string_entries(workspace.get("exclude"))
    }
    manifests: set[Path] = set()
    for pattern in _string_entries(workspace.get("members")):
        for directory in _member_directories(workspace_root, pattern):
            candidate = directory / MANIFEST_FILENAME
            if normalise_path(directory) in excluded or not candidate.is_file():
                continue
            manifests.add(normalise_path(candidate))
    return tuple(sorted(manifests))
