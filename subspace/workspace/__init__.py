"""Workspace discovery utilities for :mod:`subspace`."""

from __future__ import annotations

from .metadata import (
    FeatureMode,
    GraphLoadError,
    MalformedOutputError,
    MetadataOptions,
    ToolFailedError,
    ToolUnavailableError,
    load_cargo_metadata,
)
from .models import (
    BuildUnit,
    DependencyEdge,
    DependencyKind,
    TargetKind,
    WorkspaceGraph,
    build_sysroot_units,
    build_workspace_graph,
    load_workspace,
)

__all__ = [
    "BuildUnit",
    "DependencyEdge",
    "DependencyKind",
    "FeatureMode",
    "GraphLoadError",
    "MalformedOutputError",
    "MetadataOptions",
    "TargetKind",
    "ToolFailedError",
    "ToolUnavailableError",
    "WorkspaceGraph",
    "build_sysroot_units",
    "build_workspace_graph",
    "load_cargo_metadata",
    "load_workspace",
]
