"""Serialise pruned graphs into rust-analyzer's ``rust-project.json`` shape."""

from __future__ import annotations

import logging
import typing as typ
from pathlib import Path

import msgspec

from subspace.errors import InconsistentPruneError

if typ.TYPE_CHECKING:
    from subspace.compile_time import CompileTimeArtifacts
    from subspace.pruning import PrunedGraph
    from subspace.workspace import BuildUnit

LOGGER = logging.getLogger(__name__)

ProjectTargetKind = typ.Literal["lib", "bin", "test"]

EXCLUDED_DIRECTORIES: typ.Final[tuple[str, ...]] = (".git", "target")

_PROJECT_TARGET_KIND: typ.Final[dict[str, ProjectTargetKind]] = {
    "lib": "lib",
    "proc-macro": "lib",
    "bin": "bin",
    "example": "bin",
    "custom-build": "bin",
    "test": "test",
    "bench": "test",
}


class Dep(msgspec.Struct, frozen=True):
    """Reference from one crate to another by position in ``crates``."""

    crate_index: int = msgspec.field(name="crate")
    name: str


class CrateSource(msgspec.Struct, frozen=True):
    """Directories whose ``.rs`` files may belong to a crate."""

    include_dirs: tuple[str, ...]
    exclude_dirs: tuple[str, ...]


class BuildInfo(msgspec.Struct, frozen=True):
    """Build-system specific data about a crate."""

    label: str
    build_file: str
    target_kind: ProjectTargetKind


class Crate(msgspec.Struct, frozen=True, kw_only=True, omit_defaults=True):
    """One entry of the ``crates`` array."""

    display_name: str | None = None
    root_module: Path
    edition: str
    version: str | None = None
    deps: tuple[Dep, ...]
    is_workspace_member: bool
    is_proc_macro: bool
    cfg: tuple[str, ...] = ()
    env: dict[str, str] = msgspec.field(default_factory=dict)
    source: CrateSource | None = None
    build: BuildInfo | None = None
    proc_macro_dylib_path: Path | None = None
    proc_macro_cwd: Path | None = None
    repository: str | None = None


class Runnable(msgspec.Struct, frozen=True):
    """Command template the language server can offer as a code lens."""

    program: str
    args: tuple[str, ...]
    cwd: str
    kind: str


class ProjectJson(msgspec.Struct, frozen=True, kw_only=True, omit_defaults=True):
    """Project description consumed by rust-analyzer.

    Standard-library crates are not listed: rust-analyzer adds them itself
    from ``sysroot_src``.
    """

    sysroot: Path | None = None
    sysroot_src: Path | None = None
    crates: tuple[Crate, ...]
    runnables: tuple[Runnable, ...]


def _collect_deps(pruned: PrunedGraph) -> dict[str, tuple[Dep, ...]]:
    """Return deps for each unit, keyed by unit id, as crate indices."""
    positions = {unit.id: index for index, unit in enumerate(pruned.units)}
    collected: dict[str, set[tuple[int, str]]] = {}
    for edge in pruned.edges:
        if edge.source not in positions or edge.target not in positions:
            raise InconsistentPruneError(edge.source, edge.target)
        collected.setdefault(edge.source, set()).add(
            (positions[edge.target], edge.name)
        )
    return {
        source: tuple(Dep(crate_index=index, name=name) for index, name in sorted(pairs))
        for source, pairs in collected.items()
    }


def _crate_env(unit: BuildUnit, artifacts: CompileTimeArtifacts | None) -> dict[str, str]:
    env = {
        "CARGO_MANIFEST_DIR": str(unit.manifest_path.parent),
        "CARGO_PKG_NAME": unit.package_name,
        "CARGO_PKG_VERSION": unit.version,
        "CARGO_CRATE_NAME": unit.crate_name,
    }
    script = None if artifacts is None else artifacts.build_scripts.get(unit.package_id)
    if script is not None:
        env["OUT_DIR"] = str(script.out_dir)
        env.update(dict(script.env))
    return env


def _crate_source(
    unit: BuildUnit, artifacts: CompileTimeArtifacts | None
) -> CrateSource:
    include_dirs = [str(unit.manifest_path.parent)]
    script = None if artifacts is None else artifacts.build_scripts.get(unit.package_id)
    if script is not None:
        include_dirs.append(str(script.out_dir.parent))
    return CrateSource(
        include_dirs=tuple(include_dirs), exclude_dirs=EXCLUDED_DIRECTORIES
    )


def _crate(
    unit: BuildUnit,
    deps: tuple[Dep, ...],
    artifacts: CompileTimeArtifacts | None,
) -> Crate:
    dylib = None
    if artifacts is not None and unit.is_proc_macro:
        dylib = artifacts.proc_macro_dylibs.get(unit.package_id)
    return Crate(
        display_name=unit.package_name.replace("-", "_"),
        root_module=unit.root_module,
        edition=unit.edition,
        version=unit.version or None,
        deps=deps,
        is_workspace_member=unit.is_workspace_member,
        is_proc_macro=unit.is_proc_macro,
        cfg=tuple(f'feature="{feature}"' for feature in unit.features),
        env=_crate_env(unit, artifacts),
        source=_crate_source(unit, artifacts),
        build=BuildInfo(
            label=unit.name,
            build_file=str(unit.manifest_path),
            target_kind=_PROJECT_TARGET_KIND[unit.kind],
        ),
        proc_macro_dylib_path=dylib,
        proc_macro_cwd=unit.manifest_path.parent,
        repository=unit.repository,
    )


def emit_project(
    pruned: PrunedGraph,
    artifacts: CompileTimeArtifacts | None = None,
) -> ProjectJson:
    """Return the :class:`ProjectJson` describing ``pruned``.

    Crates keep the pruned graph's order, so the unit of interest is always
    ``crates[0]`` and indices stay stable across reloads of the same graph.

    Raises
    ------
    InconsistentPruneError
        If an edge references a unit missing from ``pruned``.

    """
    deps = _collect_deps(pruned)
    crates = tuple(
        _crate(unit, deps.get(unit.id, ()), artifacts) for unit in pruned.units
    )
    LOGGER.debug("Emitting %d crates for %s", len(crates), pruned.root.id)
    return ProjectJson(
        sysroot=pruned.sysroot,
        sysroot_src=pruned.sysroot_src,
        crates=crates,
        runnables=(),
    )
