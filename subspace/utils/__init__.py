"""Utility helpers for the :mod:`subspace` package."""

from __future__ import annotations

from .path import (
    find_manifest,
    is_within,
    locate_workspace_root,
    normalise_path,
    normalise_workspace_root,
    workspace_member_manifests,
)

__all__ = [
    "find_manifest",
    "is_within",
    "locate_workspace_root",
    "normalise_path",
    "normalise_workspace_root",
    "workspace_member_manifests",
]
