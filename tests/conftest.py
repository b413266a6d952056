"""Pytest configuration for the subspace test-suite."""

from __future__ import annotations

import os
import typing as typ
from pathlib import Path

import pytest

from subspace import config as config_module
from subspace.workspace import WorkspaceGraph, build_workspace_graph
from tests.helpers.metadata_payloads import chain_workspace, write_manifests
from tests.helpers.workspace_helpers import install_toolchain_stub

if typ.TYPE_CHECKING:
    from cmd_mox import CmdMox
    from cmd_mox.ipc import Invocation

pytest_plugins = ("cmd_mox.pytest_plugin",)


@pytest.fixture
def repo_root() -> Path:
    """Return the repository root directory."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(autouse=True)
def _restore_environment() -> typ.Iterator[None]:
    """Ensure tests do not leak environment overrides between runs."""
    from subspace.cli import CARGO_HOME_ENV_VAR, WORKSPACE_ROOT_ENV_VAR

    names = (WORKSPACE_ROOT_ENV_VAR, CARGO_HOME_ENV_VAR)
    original = {name: os.environ.get(name) for name in names}
    try:
        yield
    finally:
        for name, value in original.items():
            if value is None:
                os.environ.pop(name, None)
            else:
                os.environ[name] = value


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    """Return a resolved directory to host a test workspace."""
    root = (tmp_path / "workspace").resolve()
    root.mkdir()
    return root


@pytest.fixture
def chain_metadata(workspace_root: Path) -> dict[str, typ.Any]:
    """Return metadata for the ``a -> b -> c`` workspace, written to disk."""
    metadata = chain_workspace(workspace_root)
    write_manifests(workspace_root, metadata)
    return metadata


@pytest.fixture
def chain_graph(chain_metadata: dict[str, typ.Any]) -> WorkspaceGraph:
    """Return the graph built from :func:`chain_metadata`."""
    return build_workspace_graph(chain_metadata, sysroot=Path("/opt/rust"))


@pytest.fixture
def toolchain_calls(
    cmd_mox: CmdMox, monkeypatch: pytest.MonkeyPatch
) -> list[Invocation]:
    """Answer ``cargo`` and ``rustc`` from cmd-mox, recording each invocation."""
    return install_toolchain_stub(cmd_mox, monkeypatch)


@pytest.fixture
def isolated_config(tmp_path: Path) -> config_module.SubspaceConfig:
    """Return a configuration whose cache lives under ``tmp_path``.

    Platform filtering and build scripts are off, so a discovery request
    runs exactly ``cargo metadata`` and ``rustc --print sysroot``.
    """
    return config_module.SubspaceConfig(
        discover=config_module.DiscoverConfig(
            filter_platform=False, compile_time_deps=False
        ),
        cache=config_module.CacheConfig(directory=tmp_path / "state"),
    )
