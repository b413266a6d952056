"""Map filesystem paths to the build unit that owns them."""

from __future__ import annotations

import logging
import typing as typ

from subspace.errors import NotOwnedError
from subspace.utils.path import is_within, normalise_path

if typ.TYPE_CHECKING:
    from pathlib import Path

    from subspace.workspace import BuildUnit, WorkspaceGraph

LOGGER = logging.getLogger(__name__)


def _preference(unit: BuildUnit, target: Path) -> tuple[int, bool, bool, str]:
    """Return a sort key: deepest source root, libraries, crate roots, then id."""
    depth = len(unit.source_root.parts)
    return (-depth, not unit.is_library, unit.root_module != target, unit.id)


def owner_candidates(path: Path | str, graph: WorkspaceGraph) -> list[BuildUnit]:
    """Return every unit whose source root contains ``path``, best first."""
    target = normalise_path(path)
    candidates = [unit for unit in graph.units if is_within(target, unit.source_root)]
    return sorted(candidates, key=lambda unit: _preference(unit, target))


def resolve_owner(path: Path | str, graph: WorkspaceGraph) -> BuildUnit:
    """Return the build unit owning ``path``.

    The unit with the longest source root prefix wins. Units sharing the
    same source root (``src/lib.rs`` next to ``src/main.rs``) prefer the
    library target, then the target whose crate root is ``path`` itself
    (``tests/a.rs`` beside ``tests/b.rs``), then the smallest identifier.

    Raises
    ------
    NotOwnedError
        If no unit's source root contains ``path``.

    """
    candidates = owner_candidates(path, graph)
    if not candidates:
        raise NotOwnedError(path)
    owner = candidates[0]
    LOGGER.debug("Resolved %s to %s", path, owner.id)
    return owner


def resolve_manifest_owner(manifest_path: Path | str, graph: WorkspaceGraph) -> BuildUnit:
    """Return the preferred unit of the package described by ``manifest_path``."""
    target = normalise_path(manifest_path)
    candidates = sorted(
        (unit for unit in graph.units if unit.manifest_path == target),
        key=lambda unit: (0 if unit.is_library else 1, unit.id),
    )
    if not candidates:
        raise NotOwnedError(manifest_path)
    return candidates[0]
