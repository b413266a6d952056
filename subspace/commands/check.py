"""Run ``cargo check`` or ``cargo clippy`` scoped to the crate owning a file."""

from __future__ import annotations

import dataclasses as dc
import logging
import sys
import typing as typ

from subspace.commands import _shared
from subspace.errors import NotOwnedError
from subspace.ownership import resolve_owner
from subspace.toolchain import Toolchain, run_foreground
from subspace.utils import normalise_path
from subspace.utils.path import MANIFEST_FILENAME

if typ.TYPE_CHECKING:
    from collections import abc as cabc
    from pathlib import Path

    from subspace.config import SubspaceConfig
    from subspace.workspace import BuildUnit, WorkspaceGraph

LOGGER = logging.getLogger(__name__)

CheckCommand = typ.Literal["check", "clippy"]


@dc.dataclass(frozen=True, slots=True)
class CheckOptions:
    """Per-invocation settings layered over ``[check]`` configuration."""

    disable_color_diagnostics: bool = False
    passthrough: tuple[str, ...] = ()


def scope_for(path: Path | str, graph: WorkspaceGraph) -> str:
    """Return the identifier of the unit a check of ``path`` targets.

    Raises
    ------
    NotOwnedError
        If no unit in ``graph`` owns ``path``.

    """
    return resolve_owner(path, graph).id


def package_spec(unit: BuildUnit) -> str:
    """Return the ``cargo --package`` value selecting ``unit``'s package."""
    return f"{unit.package_name}@{unit.version}"


def message_format(*, disable_color: bool, is_tty: bool) -> str:
    """Return the ``--message-format`` cargo should use.

    Humans at a terminal get cargo's default rendering. The editor gets JSON
    with diagnostics pre-rendered in colour unless colour was disabled.
    """
    if is_tty:
        return "human"
    if disable_color:
        return "json"
    return "json-diagnostic-rendered-ansi"


def check_arguments(
    command: CheckCommand,
    *,
    manifest_path: Path,
    message_format: str,
    package: str | None,
    extra: cabc.Sequence[str] = (),
) -> list[str]:
    """Return the cargo arguments for a scoped or workspace-wide check."""
    arguments = [
        command,
        f"--message-format={message_format}",
        "--keep-going",
        "--all-targets",
        "--manifest-path",
        str(manifest_path),
    ]
    if package is None:
        arguments.append("--workspace")
    else:
        arguments.extend(["--package", package])
    arguments.extend(extra)
    return arguments


def _package_for(target: Path, graph: WorkspaceGraph) -> str | None:
    """Return the package spec owning ``target`` or ``None`` when unowned."""
    try:
        unit = graph.unit(scope_for(target, graph))
    except NotOwnedError:
        LOGGER.info("%s is not owned by any crate; checking the workspace", target)
        return None
    LOGGER.debug("Scoping check of %s to %s", target, unit.id)
    return package_spec(unit)


def run(
    command: CheckCommand,
    path: Path | str,
    *,
    workspace_root: Path | str | None = None,
    configuration: SubspaceConfig | None = None,
    toolchain: Toolchain | None = None,
    options: CheckOptions | None = None,
    is_tty: bool | None = None,
) -> int:
    """Run ``cargo <command>`` for the package owning ``path``.

    Returns cargo's exit status. Diagnostics stream straight to the
    inherited standard output.
    """
    target = normalise_path(path)
    root = _shared.resolve_workspace_root(workspace_root, target)
    active_toolchain = Toolchain() if toolchain is None else toolchain
    active_options = CheckOptions() if options is None else options
    tty = sys.stdout.isatty() if is_tty is None else is_tty

    def _check(active: SubspaceConfig) -> int:
        graph = _shared.load_graph(root, active, active_toolchain)
        disable_color = (
            active_options.disable_color_diagnostics
            or active.check.disable_color_diagnostics
        )
        arguments = check_arguments(
            command,
            manifest_path=root / MANIFEST_FILENAME,
            message_format=message_format(disable_color=disable_color, is_tty=tty),
            package=_package_for(target, graph),
            extra=(*active.check.args, *active_options.passthrough),
        )
        return run_foreground(active_toolchain.cargo()[arguments], tool="cargo")

    return _shared.run_with_configuration(root, configuration, _check)
