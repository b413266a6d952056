"""Reduce a workspace graph to the dependency closure of one build unit."""

from __future__ import annotations

import logging
import typing as typ
from pathlib import Path

import msgspec

from subspace.errors import InconsistentPruneError
from subspace.workspace.models import BuildUnit, DependencyEdge, WorkspaceGraph

LOGGER = logging.getLogger(__name__)


class PrunedGraph(msgspec.Struct, frozen=True, kw_only=True):
    """A unit of interest plus everything it (transitively) depends on.

    ``units`` starts with ``root`` and is ordered by discovery depth, then by
    identifier. Dependents of ``root`` never appear.
    """

    root: BuildUnit
    units: tuple[BuildUnit, ...]
    edges: tuple[DependencyEdge, ...]
    workspace_root: Path
    sysroot: Path | None = None
    sysroot_src: Path | None = None
    sysroot_units: tuple[BuildUnit, ...] = ()

    @property
    def unit_ids(self) -> tuple[str, ...]:
        """Return the identifiers of the retained units in order."""
        return tuple(unit.id for unit in self.units)

    @property
    def package_names(self) -> dict[str, str]:
        """Map each package contributing a retained unit to its name."""
        return {unit.package_id: unit.package_name for unit in self.units}

    def as_workspace_graph(self) -> WorkspaceGraph:
        """Return the pruned units and edges as a standalone graph."""
        return WorkspaceGraph(
            workspace_root=self.workspace_root,
            units=self.units,
            edges=self.edges,
            sysroot=self.sysroot,
            sysroot_src=self.sysroot_src,
            sysroot_units=self.sysroot_units,
        )


def _follows(edge: DependencyEdge, root: BuildUnit) -> bool:
    """Return whether the traversal from ``root`` should follow ``edge``.

    Build and dev dependencies only matter for the build script or test
    target being opened, never for the libraries it pulls in.
    """
    if edge.kind == "normal":
        return True
    if edge.source != root.id:
        return False
    if edge.kind == "build":
        return root.is_build_script
    return root.is_test_like


def prune(unit: BuildUnit, graph: WorkspaceGraph) -> PrunedGraph:
    """Return the forward dependency closure of ``unit`` within ``graph``."""
    units_by_id = graph.units_by_id
    if unit.id not in units_by_id:
        message = f"unknown build unit {unit.id!r}"
        raise KeyError(message)
    outgoing = graph.outgoing_edges()

    ordered: list[BuildUnit] = [unit]
    seen: set[str] = {unit.id}
    kept_edges: list[DependencyEdge] = []
    frontier: list[BuildUnit] = [unit]
    while frontier:
        discovered: dict[str, BuildUnit] = {}
        for current in frontier:
            for edge in outgoing.get(current.id, ()):
                if not _follows(edge, unit):
                    continue
                try:
                    target = units_by_id[edge.target]
                except KeyError as exc:
                    raise InconsistentPruneError(edge.source, edge.target) from exc
                kept_edges.append(edge)
                if edge.target not in seen:
                    discovered[edge.target] = target
        frontier = sorted(discovered.values(), key=lambda found: found.id)
        seen.update(discovered)
        ordered.extend(frontier)

    LOGGER.debug(
        "Pruned %d of %d units for %s", len(ordered), len(graph.units), unit.id
    )
    return PrunedGraph(
        root=unit,
        units=tuple(ordered),
        edges=tuple(sorted(kept_edges, key=lambda e: (e.source, e.target, e.kind))),
        workspace_root=graph.workspace_root,
        sysroot=graph.sysroot,
        sysroot_src=graph.sysroot_src,
        sysroot_units=graph.sysroot_units,
    )
