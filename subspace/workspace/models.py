"""Workspace graph models and builders for :mod:`subspace`."""

from __future__ import annotations

import logging
import typing as typ
from collections import abc as cabc
from pathlib import Path

import msgspec

from subspace.errors import MalformedOutputError
from subspace.toolchain import sysroot_source

if typ.TYPE_CHECKING:
    from subspace.toolchain import Toolchain
    from subspace.workspace.metadata import MetadataOptions

LOGGER = logging.getLogger(__name__)

WORKSPACE_ROOT_MISSING_MSG = "cargo metadata missing 'workspace_root'"

TargetKind = typ.Literal[
    "lib", "proc-macro", "bin", "test", "bench", "example", "custom-build"
]
DependencyKind = typ.Literal["normal", "build", "dev"]

LIBRARY_KINDS: typ.Final[frozenset[str]] = frozenset({"lib", "proc-macro"})
TEST_LIKE_KINDS: typ.Final[frozenset[str]] = frozenset({"test", "bench", "example"})
_LIBRARY_CRATE_TYPES: typ.Final[frozenset[str]] = frozenset(
    {"lib", "rlib", "dylib", "cdylib", "staticlib"}
)
_PLAIN_TARGET_KINDS: typ.Final[frozenset[str]] = frozenset(
    {"proc-macro", "bin", "test", "bench", "example", "custom-build"}
)
_DEP_KIND_BY_LABEL: typ.Final[dict[str | None, DependencyKind]] = {
    None: "normal",
    "normal": "normal",
    "dev": "dev",
    "build": "build",
}

SYSROOT_CRATES: typ.Final[tuple[str, ...]] = ("core", "alloc", "std", "proc_macro")
SYSROOT_EDITION = "2021"


class BuildUnit(msgspec.Struct, frozen=True, kw_only=True):
    """One compilable target of a package."""

    id: str
    package_id: str
    name: str
    package_name: str
    version: str
    kind: TargetKind
    edition: str
    source_root: Path
    root_module: Path
    manifest_path: Path
    features: tuple[str, ...] = ()
    is_workspace_member: bool = False
    repository: str | None = None

    @property
    def is_library(self) -> bool:
        """Return ``True`` for ``lib`` and ``proc-macro`` targets."""
        return self.kind in LIBRARY_KINDS

    @property
    def is_test_like(self) -> bool:
        """Return ``True`` for targets that may use dev-dependencies."""
        return self.kind in TEST_LIKE_KINDS

    @property
    def is_build_script(self) -> bool:
        """Return ``True`` for ``build.rs`` targets."""
        return self.kind == "custom-build"

    @property
    def is_proc_macro(self) -> bool:
        """Return ``True`` for procedural macro libraries."""
        return self.kind == "proc-macro"

    @property
    def crate_name(self) -> str:
        """Return the name used in ``extern crate`` declarations."""
        return self.name.replace("-", "_")


class DependencyEdge(msgspec.Struct, frozen=True, kw_only=True):
    """Directed edge from a dependant unit to one of its dependencies."""

    source: str
    target: str
    name: str
    kind: DependencyKind = "normal"


class WorkspaceGraph(msgspec.Struct, frozen=True, kw_only=True):
    """All build units of a workspace and the edges between them."""

    workspace_root: Path
    units: tuple[BuildUnit, ...]
    edges: tuple[DependencyEdge, ...] = ()
    sysroot: Path | None = None
    sysroot_src: Path | None = None
    sysroot_units: tuple[BuildUnit, ...] = ()

    @property
    def units_by_id(self) -> dict[str, BuildUnit]:
        """Return an identifier-indexed mapping of build units."""
        return {unit.id: unit for unit in self.units}

    def unit(self, unit_id: str) -> BuildUnit:
        """Return the unit registered under ``unit_id``."""
        for unit in self.units:
            if unit.id == unit_id:
                return unit
        message = f"unknown build unit {unit_id!r}"
        raise KeyError(message)

    def outgoing_edges(self) -> dict[str, list[DependencyEdge]]:
        """Return edges grouped by their dependant unit."""
        outgoing: dict[str, list[DependencyEdge]] = {}
        for edge in self.edges:
            outgoing.setdefault(edge.source, []).append(edge)
        return outgoing

    @property
    def manifest_paths(self) -> tuple[Path, ...]:
        """Return the workspace manifest and every member manifest."""
        members = {
            unit.manifest_path for unit in self.units if unit.is_workspace_member
        }
        members.add(self.workspace_root / "Cargo.toml")
        return tuple(sorted(members))


def load_workspace(
    workspace_root: Path | str | None = None,
    options: MetadataOptions | None = None,
    toolchain: Toolchain | None = None,
) -> WorkspaceGraph:
    """Return a :class:`WorkspaceGraph` constructed from ``cargo metadata``."""
    from subspace.toolchain import Toolchain
    from subspace.workspace.metadata import load_cargo_metadata

    active_toolchain = Toolchain() if toolchain is None else toolchain
    metadata = load_cargo_metadata(workspace_root, options, active_toolchain)
    sysroot = active_toolchain.sysroot()
    return build_workspace_graph(metadata, sysroot=sysroot)


def build_sysroot_units(sysroot_src: Path) -> tuple[BuildUnit, ...]:
    """Return the standard-library units found beneath ``sysroot_src``."""
    units: list[BuildUnit] = []
    for name in SYSROOT_CRATES:
        crate_root = sysroot_src / name
        source_root = crate_root / "src"
        units.append(
            BuildUnit(
                id=f"sysroot::{name}",
                package_id=f"sysroot::{name}",
                name=name,
                package_name=name,
                version="",
                kind="lib",
                edition=SYSROOT_EDITION,
                source_root=source_root,
                root_module=source_root / "lib.rs",
                manifest_path=crate_root / "Cargo.toml",
            )
        )
    return tuple(units)


def build_workspace_graph(
    metadata: cabc.Mapping[str, typ.Any],
    *,
    sysroot: Path | None = None,
) -> WorkspaceGraph:
    """Convert ``cargo metadata`` output into :class:`WorkspaceGraph`."""
    try:
        workspace_root_value = metadata["workspace_root"]
    except KeyError as exc:
        raise MalformedOutputError(WORKSPACE_ROOT_MISSING_MSG) from exc
    workspace_root = _normalise_path(workspace_root_value, "workspace_root")
    packages = _expect_sequence(metadata.get("packages"), "packages")
    member_ids = frozenset(
        _expect_string(member, "workspace_members[]")
        for member in _expect_sequence(
            metadata.get("workspace_members"), "workspace_members"
        )
    )
    nodes = _index_resolve_nodes(metadata.get("resolve"))

    arena: dict[str, BuildUnit] = {}
    units_by_package: dict[str, tuple[BuildUnit, ...]] = {}
    for entry in packages:
        package = _expect_mapping(entry, "packages[]")
        package_id = _expect_string(package.get("id"), "packages[].id")
        if package_id in units_by_package:
            continue
        units = _build_units(package, member_ids, nodes.get(package_id))
        units_by_package[package_id] = units
        for unit in units:
            arena.setdefault(unit.id, unit)

    missing = sorted(member_ids - set(units_by_package))
    if missing:
        message = f"workspace member {missing[0]!r} missing from package list"
        raise MalformedOutputError(message)

    edges = _build_edges(units_by_package, nodes)
    sysroot_src = None if sysroot is None else sysroot_source(sysroot)
    return WorkspaceGraph(
        workspace_root=workspace_root,
        units=tuple(sorted(arena.values(), key=lambda unit: unit.id)),
        edges=edges,
        sysroot=sysroot,
        sysroot_src=sysroot_src,
        sysroot_units=() if sysroot_src is None else build_sysroot_units(sysroot_src),
    )


def _index_resolve_nodes(value: object) -> dict[str, cabc.Mapping[str, typ.Any]]:
    """Return resolve nodes keyed by package identifier."""
    resolve = _expect_mapping(value, "resolve")
    index: dict[str, cabc.Mapping[str, typ.Any]] = {}
    for entry in _expect_sequence(resolve.get("nodes"), "resolve.nodes"):
        node = _expect_mapping(entry, "resolve.nodes[]")
        node_id = _expect_string(node.get("id"), "resolve.nodes[].id")
        index[node_id] = node
    return index


def _build_units(
    package: cabc.Mapping[str, typ.Any],
    member_ids: frozenset[str],
    node: cabc.Mapping[str, typ.Any] | None,
) -> tuple[BuildUnit, ...]:
    """Construct a unit for every relevant target of ``package``."""
    package_id = _expect_string(package.get("id"), "packages[].id")
    name = _expect_string(package.get("name"), f"package {package_id!r} name")
    version = _expect_string(package.get("version"), f"package {package_id!r} version")
    manifest_path = _normalise_path(
        package.get("manifest_path"), f"package {package_id!r} manifest_path"
    )
    repository = _optional_string(
        package.get("repository"), f"package {package_id!r} repository"
    )
    default_edition = _optional_string(
        package.get("edition"), f"package {package_id!r} edition"
    )
    is_member = package_id in member_ids
    features = _node_features(node, package_id)

    units: list[BuildUnit] = []
    for entry in _expect_sequence(
        package.get("targets"), f"package {package_id!r} targets"
    ):
        target = _expect_mapping(entry, f"package {package_id!r} targets[]")
        field = f"package {package_id!r} target"
        target_name = _expect_string(target.get("name"), f"{field} name")
        kind = _normalise_target_kind(
            _expect_sequence(target.get("kind"), f"{field} {target_name!r} kind")
        )
        if not is_member and kind in TEST_LIKE_KINDS:
            continue
        root_module = _normalise_path(
            target.get("src_path"), f"{field} {target_name!r} src_path"
        )
        edition = _optional_string(
            target.get("edition"), f"{field} {target_name!r} edition"
        )
        units.append(
            BuildUnit(
                id=f"{package_id}::{kind}::{target_name}",
                package_id=package_id,
                name=target_name,
                package_name=name,
                version=version,
                kind=kind,
                edition=edition or default_edition or "2015",
                source_root=root_module.parent,
                root_module=root_module,
                manifest_path=manifest_path,
                features=features,
                is_workspace_member=is_member,
                repository=repository,
            )
        )
    return tuple(units)


def _normalise_target_kind(kinds: cabc.Sequence[object]) -> TargetKind:
    """Collapse Cargo's target kind list into a single :data:`TargetKind`."""
    for kind in kinds:
        if kind in _LIBRARY_CRATE_TYPES:
            return "lib"
        if kind in _PLAIN_TARGET_KINDS:
            return typ.cast("TargetKind", kind)
    LOGGER.debug("Treating unrecognised target kind %r as a binary", kinds)
    return "bin"


def _node_features(
    node: cabc.Mapping[str, typ.Any] | None, package_id: str
) -> tuple[str, ...]:
    """Return the resolved features enabled for ``package_id``."""
    if node is None:
        return ()
    raw = _expect_sequence(
        node.get("features"), f"resolve node {package_id!r} features", allow_none=True
    )
    if raw is None:
        return ()
    return tuple(
        sorted({_expect_string(feature, "resolve.nodes[].features[]") for feature in raw})
    )


def _library_unit(units: cabc.Sequence[BuildUnit]) -> BuildUnit | None:
    """Return the library unit among ``units`` when the package has one."""
    return next((unit for unit in units if unit.is_library), None)


def _edge_applies(unit: BuildUnit, kind: DependencyKind) -> bool:
    """Return whether a ``kind`` dependency is visible to ``unit``."""
    if kind == "build":
        return unit.is_build_script
    return not unit.is_build_script


def _dependency_kinds(
    dependency: cabc.Mapping[str, typ.Any],
) -> tuple[DependencyKind, ...]:
    """Return the validated dependency kinds recorded for ``dependency``."""
    raw = _expect_sequence(
        dependency.get("dep_kinds"), "resolve dependency dep_kinds", allow_none=True
    )
    if not raw:
        return ("normal",)
    kinds: list[DependencyKind] = []
    for entry in raw:
        label = _expect_mapping(entry, "dep_kinds[]").get("kind")
        if label is not None and not isinstance(label, str):
            message = f"dependency kind must be string; received {type(label).__name__}"
            raise MalformedOutputError(message)
        try:
            kind = _DEP_KIND_BY_LABEL[label]
        except KeyError as exc:
            message = f"unsupported dependency kind {label!r}"
            raise MalformedOutputError(message) from exc
        if kind not in kinds:
            kinds.append(kind)
    return tuple(kinds)


def _build_edges(
    units_by_package: cabc.Mapping[str, tuple[BuildUnit, ...]],
    nodes: cabc.Mapping[str, cabc.Mapping[str, typ.Any]],
) -> tuple[DependencyEdge, ...]:
    """Return deduplicated dependency edges between build units."""
    edges: dict[tuple[str, str, str], DependencyEdge] = {}

    def add(
        source: BuildUnit, target: BuildUnit, kind: DependencyKind, name: str
    ) -> None:
        key = (source.id, target.id, kind)
        if key not in edges:
            edges[key] = DependencyEdge(
                source=source.id, target=target.id, name=name, kind=kind
            )

    for package_id, units in units_by_package.items():
        library = _library_unit(units)
        if library is not None:
            for unit in units:
                if unit is not library and not unit.is_build_script:
                    add(unit, library, "normal", library.crate_name)
        node = nodes.get(package_id)
        if node is None:
            continue
        raw_deps = _expect_sequence(
            node.get("deps"), f"resolve node {package_id!r} deps", allow_none=True
        )
        for entry in raw_deps or ():
            dependency = _expect_mapping(entry, "resolve.nodes[].deps[]")
            target_id = _expect_string(dependency.get("pkg"), "resolve dependency pkg")
            name = _expect_string(dependency.get("name"), "resolve dependency name")
            target = _library_unit(units_by_package.get(target_id, ()))
            if target is None:
                LOGGER.debug("Skipping dependency %s without a library target", target_id)
                continue
            for kind in _dependency_kinds(dependency):
                for unit in units:
                    if _edge_applies(unit, kind):
                        add(unit, target, kind, name)
    return tuple(sorted(edges.values(), key=lambda e: (e.source, e.target, e.kind)))


def _normalise_path(value: object, field_name: str) -> Path:
    """Return ``value`` as an absolute :class:`Path`."""
    if not isinstance(value, str | Path):
        message = f"{field_name} must be a path string; received {type(value).__name__}"
        raise MalformedOutputError(message)
    from subspace.utils.path import normalise_path

    return normalise_path(value)


def _expect_mapping(value: object, field_name: str) -> cabc.Mapping[str, typ.Any]:
    """Return ``value`` when it is a mapping, otherwise raise an error."""
    if isinstance(value, cabc.Mapping):
        return value
    message = f"{field_name} must be an object; received {type(value).__name__}"
    raise MalformedOutputError(message)


def _expect_sequence(
    value: object,
    field_name: str,
    *,
    allow_none: bool = False,
) -> cabc.Sequence[object] | None:
    """Ensure ``value`` is a sequence (optionally ``None``)."""
    if value is None:
        if allow_none:
            return None
        message = f"{field_name} must be a sequence"
        raise MalformedOutputError(message)
    if isinstance(value, cabc.Sequence) and not isinstance(
        value, str | bytes | bytearray
    ):
        return value
    message = f"{field_name} must be a sequence; received {type(value).__name__}"
    raise MalformedOutputError(message)


def _expect_string(value: object, field_name: str) -> str:
    """Return ``value`` when it is a string, otherwise raise an error."""
    if isinstance(value, str):
        return value
    message = f"{field_name} must be a string; received {type(value).__name__}"
    raise MalformedOutputError(message)


def _optional_string(value: object, field_name: str) -> str | None:
    """Return ``value`` when it is a string or ``None``."""
    if value is None:
        return None
    return _expect_string(value, field_name)
