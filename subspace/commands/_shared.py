"""Graph acquisition shared by the ``discover`` and ``check`` commands."""

from __future__ import annotations

import logging
import typing as typ

from subspace import config as config_module
from subspace.cache import GraphCache, cache_path_for
from subspace.utils import (
    locate_workspace_root,
    normalise_workspace_root,
    workspace_member_manifests,
)
from subspace.workspace import load_workspace

if typ.TYPE_CHECKING:
    from collections import abc as cabc
    from pathlib import Path

    from subspace.config import SubspaceConfig
    from subspace.toolchain import Toolchain
    from subspace.workspace import WorkspaceGraph

LOGGER = logging.getLogger(__name__)

T = typ.TypeVar("T")


def resolve_workspace_root(workspace_root: Path | str | None, target: Path) -> Path:
    """Return ``workspace_root`` or the workspace enclosing ``target``."""
    if workspace_root is not None:
        return normalise_workspace_root(workspace_root)
    located = locate_workspace_root(target)
    if located is None:
        LOGGER.debug("No manifest above %s; using the working directory", target)
        return normalise_workspace_root(None)
    return located


def run_with_configuration(
    workspace_root: Path,
    configuration: SubspaceConfig | None,
    runner: cabc.Callable[[SubspaceConfig], T],
) -> T:
    """Execute ``runner`` with a configuration, loading it on demand.

    An explicit or freshly loaded configuration is installed as the active
    one while ``runner`` executes. Without one, the configuration already
    active in this context is used.
    """
    if configuration is None:
        try:
            configuration = config_module.current_configuration()
        except config_module.ConfigurationNotLoadedError:
            configuration = config_module.load_configuration(workspace_root)
        else:
            return runner(configuration)
    with config_module.use_configuration(configuration):
        return runner(configuration)


def fingerprint_inputs(
    workspace_root: Path, configuration: SubspaceConfig
) -> tuple[Path, ...]:
    """Return the files whose changes invalidate a cached graph.

    Member manifests matched on disk are included, so adding or removing a
    crate under a ``members`` glob invalidates the entry.
    """
    return (
        workspace_root / "Cargo.toml",
        *configuration.cache.watched_paths(workspace_root),
        *workspace_member_manifests(workspace_root),
    )


def graph_settings(configuration: SubspaceConfig, toolchain: Toolchain) -> str:
    """Return the loader settings recorded alongside a cached graph."""
    options = configuration.discover.metadata_options
    return f"{options.fingerprint()};cargo_home={toolchain.cargo_home}"


def load_graph(
    workspace_root: Path,
    configuration: SubspaceConfig,
    toolchain: Toolchain,
    progress: cabc.Callable[[str], None] | None = None,
) -> WorkspaceGraph:
    """Return the workspace graph, served from the cache when it is fresh."""
    options = configuration.discover.metadata_options

    def loader() -> WorkspaceGraph:
        if progress is not None:
            progress("Fetching metadata")
        return load_workspace(workspace_root, options, toolchain)

    if not configuration.cache.enabled:
        return loader()
    cache_path = cache_path_for(configuration.cache.directory, workspace_root)
    with GraphCache(
        cache_path, loader, settings=graph_settings(configuration, toolchain)
    ) as cache:
        return cache.get_or_load(fingerprint_inputs(workspace_root, configuration))
