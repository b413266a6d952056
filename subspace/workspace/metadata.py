"""Interfaces for invoking ``cargo metadata``."""

from __future__ import annotations

import dataclasses as dc
import json
import logging
import typing as typ

from subspace.errors import (
    GraphLoadError,
    MalformedOutputError,
    ToolFailedError,
    ToolUnavailableError,
)
from subspace.toolchain import Toolchain, run_captured
from subspace.utils import normalise_workspace_root

if typ.TYPE_CHECKING:
    from pathlib import Path

    from plumbum.commands.base import BaseCommand

LOGGER = logging.getLogger(__name__)

FeatureMode = typ.Literal["default", "all", "no-default"]

_FEATURE_FLAGS: typ.Final[dict[str, tuple[str, ...]]] = {
    "default": (),
    "all": ("--all-features",),
    "no-default": ("--no-default-features",),
}

__all__ = [
    "FeatureMode",
    "GraphLoadError",
    "MalformedOutputError",
    "MetadataOptions",
    "ToolFailedError",
    "ToolUnavailableError",
    "load_cargo_metadata",
    "metadata_arguments",
]


@dc.dataclass(frozen=True, slots=True)
class MetadataOptions:
    """Feature and platform selection passed to ``cargo metadata``."""

    features: FeatureMode = "default"
    filter_platform: bool = True

    def fingerprint(self) -> str:
        """Return a stable digest input describing these options."""
        return f"features={self.features};filter_platform={self.filter_platform}"


def metadata_arguments(
    workspace_root: Path,
    options: MetadataOptions,
    host_triple: str | None = None,
) -> list[str]:
    """Return the ``cargo`` arguments for a metadata query."""
    arguments = [
        "metadata",
        "--format-version",
        "1",
        "--manifest-path",
        str(workspace_root / "Cargo.toml"),
        *_FEATURE_FLAGS[options.features],
    ]
    if host_triple is not None:
        arguments.extend(["--filter-platform", host_triple])
    return arguments


def _ensure_command(toolchain: Toolchain) -> BaseCommand:
    """Return the ``cargo`` command object."""
    return toolchain.cargo()


def load_cargo_metadata(
    workspace_root: Path | str | None = None,
    options: MetadataOptions | None = None,
    toolchain: Toolchain | None = None,
) -> typ.Mapping[str, typ.Any]:
    """Execute ``cargo metadata`` and parse the resulting JSON payload."""
    active_options = MetadataOptions() if options is None else options
    active_toolchain = Toolchain() if toolchain is None else toolchain
    root_path = normalise_workspace_root(workspace_root)
    host_triple = (
        active_toolchain.host_triple() if active_options.filter_platform else None
    )
    arguments = metadata_arguments(root_path, active_options, host_triple)
    command = _ensure_command(active_toolchain)[arguments]
    exit_code, stdout, stderr = run_captured(command, tool="cargo", cwd=root_path)
    if exit_code != 0:
        raise ToolFailedError("cargo metadata", exit_code, stdout, stderr)
    try:
        payload = json.loads(stdout)
    except json.JSONDecodeError as exc:
        raise MalformedOutputError.invalid_json() from exc
    if not isinstance(payload, dict):
        raise MalformedOutputError.non_object_payload()
    LOGGER.debug(
        "cargo metadata returned %d packages", len(payload.get("packages") or ())
    )
    return payload
