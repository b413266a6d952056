"""Tests for the ``check`` and ``clippy`` commands."""

from __future__ import annotations

import typing as typ

import pytest

from subspace import config as config_module
from subspace.commands import check as check_command
from subspace.errors import NotOwnedError
from subspace.toolchain import Toolchain
from tests.helpers.metadata_payloads import unit_id
from tests.helpers.workspace_helpers import invocations

if typ.TYPE_CHECKING:
    from pathlib import Path

    from cmd_mox import CmdMox
    from cmd_mox.ipc import Invocation

    from subspace.workspace import WorkspaceGraph


@pytest.mark.parametrize(
    ("disable_color", "is_tty", "expected"),
    [
        (False, True, "human"),
        (True, True, "human"),
        (True, False, "json"),
        (False, False, "json-diagnostic-rendered-ansi"),
    ],
)
def test_message_format(disable_color: bool, is_tty: bool, expected: str) -> None:  # noqa: FBT001
    """Terminals get human output; editors get JSON."""
    assert (
        check_command.message_format(disable_color=disable_color, is_tty=is_tty)
        == expected
    )


def test_scope_for_returns_owning_unit(
    chain_graph: WorkspaceGraph, workspace_root: Path
) -> None:
    """The scope is the unit owning the file."""
    scope = check_command.scope_for(workspace_root / "b" / "src" / "lib.rs", chain_graph)

    assert scope == unit_id("b")


def test_scope_for_unowned_path_raises(
    chain_graph: WorkspaceGraph, workspace_root: Path
) -> None:
    """Unowned files leave the decision to the caller."""
    with pytest.raises(NotOwnedError):
        check_command.scope_for(workspace_root / "notes.md", chain_graph)


def test_check_arguments_scope_to_package(workspace_root: Path) -> None:
    """A resolved package is selected with ``--package``."""
    arguments = check_command.check_arguments(
        "clippy",
        manifest_path=workspace_root / "Cargo.toml",
        message_format="json",
        package="b@0.1.0",
        extra=("--", "-D", "warnings"),
    )

    assert arguments == [
        "clippy",
        "--message-format=json",
        "--keep-going",
        "--all-targets",
        "--manifest-path",
        str(workspace_root / "Cargo.toml"),
        "--package",
        "b@0.1.0",
        "--",
        "-D",
        "warnings",
    ]


def _patch_graph(monkeypatch: pytest.MonkeyPatch, graph: WorkspaceGraph) -> None:
    def _load_graph(*_args: object, **_kwargs: object) -> WorkspaceGraph:
        return graph

    monkeypatch.setattr(check_command._shared, "load_graph", _load_graph)


def _expected_arguments(
    command: str, workspace_root: Path, message_format: str, *tail: str
) -> list[str]:
    return [
        command,
        f"--message-format={message_format}",
        "--keep-going",
        "--all-targets",
        "--manifest-path",
        str(workspace_root / "Cargo.toml"),
        *tail,
    ]


def test_run_scopes_cargo_to_owning_package(
    cmd_mox: CmdMox,
    toolchain_calls: list[Invocation],
    monkeypatch: pytest.MonkeyPatch,
    chain_graph: WorkspaceGraph,
    workspace_root: Path,
    isolated_config: config_module.SubspaceConfig,
) -> None:
    """``check`` runs cargo for the package that owns the file."""
    _patch_graph(monkeypatch, chain_graph)
    cmd_mox.mock("cargo").with_args(
        *_expected_arguments(
            "check",
            workspace_root,
            "json-diagnostic-rendered-ansi",
            "--package",
            "a@0.1.0",
            "--locked",
        )
    ).returns(exit_code=0, stdout="", stderr="")

    exit_code = check_command.run(
        "check",
        workspace_root / "a" / "tests" / "integration.rs",
        workspace_root=workspace_root,
        configuration=isolated_config,
        toolchain=Toolchain(),
        options=check_command.CheckOptions(passthrough=("--locked",)),
        is_tty=False,
    )

    assert exit_code == 0
    assert len(invocations(toolchain_calls, "cargo", "check")) == 1


def test_run_falls_back_to_workspace_when_unowned(
    cmd_mox: CmdMox,
    toolchain_calls: list[Invocation],
    monkeypatch: pytest.MonkeyPatch,
    chain_graph: WorkspaceGraph,
    workspace_root: Path,
    isolated_config: config_module.SubspaceConfig,
) -> None:
    """Files outside every crate check the whole workspace."""
    _patch_graph(monkeypatch, chain_graph)
    cmd_mox.mock("cargo").with_args(
        *_expected_arguments(
            "clippy", workspace_root, "json-diagnostic-rendered-ansi", "--workspace"
        )
    ).returns(exit_code=0, stdout="", stderr="")

    check_command.run(
        "clippy",
        workspace_root / "README.md",
        workspace_root=workspace_root,
        configuration=isolated_config,
        toolchain=Toolchain(),
        is_tty=False,
    )

    (arguments,) = invocations(toolchain_calls, "cargo", "clippy")
    assert "--package" not in arguments


def test_run_applies_configured_arguments_and_colour(
    cmd_mox: CmdMox,
    toolchain_calls: list[Invocation],
    monkeypatch: pytest.MonkeyPatch,
    chain_graph: WorkspaceGraph,
    workspace_root: Path,
) -> None:
    """``[check]`` settings apply before per-invocation arguments."""
    _patch_graph(monkeypatch, chain_graph)
    configuration = config_module.SubspaceConfig(
        check=config_module.CheckConfig(
            disable_color_diagnostics=True, args=("--all-features",)
        )
    )
    cmd_mox.mock("cargo").with_args(
        *_expected_arguments(
            "check",
            workspace_root,
            "json",
            "--package",
            "c@0.1.0",
            "--all-features",
            "--locked",
        )
    ).returns(exit_code=0, stdout="", stderr="")

    check_command.run(
        "check",
        workspace_root / "c" / "src" / "lib.rs",
        workspace_root=workspace_root,
        configuration=configuration,
        toolchain=Toolchain(),
        options=check_command.CheckOptions(passthrough=("--locked",)),
        is_tty=False,
    )

    (arguments,) = invocations(toolchain_calls, "cargo", "check")
    assert arguments[-2:] == ("--all-features", "--locked")


def test_run_uses_the_active_configuration(
    cmd_mox: CmdMox,
    toolchain_calls: list[Invocation],
    monkeypatch: pytest.MonkeyPatch,
    chain_graph: WorkspaceGraph,
    workspace_root: Path,
) -> None:
    """Without an explicit configuration the active one applies."""
    _patch_graph(monkeypatch, chain_graph)
    active = config_module.SubspaceConfig(
        check=config_module.CheckConfig(args=("--frozen",))
    )
    cmd_mox.mock("cargo").with_args(
        *_expected_arguments(
            "check", workspace_root, "human", "--package", "c@0.1.0", "--frozen"
        )
    ).returns(exit_code=0, stdout="", stderr="")

    with config_module.use_configuration(active):
        check_command.run(
            "check",
            workspace_root / "c" / "src" / "lib.rs",
            workspace_root=workspace_root,
            toolchain=Toolchain(),
            is_tty=True,
        )

    (arguments,) = invocations(toolchain_calls, "cargo", "check")
    assert arguments[-1] == "--frozen"


@pytest.mark.usefixtures("toolchain_calls")
def test_run_installs_the_configuration_it_uses(
    monkeypatch: pytest.MonkeyPatch,
    chain_graph: WorkspaceGraph,
    workspace_root: Path,
    isolated_config: config_module.SubspaceConfig,
) -> None:
    """The configuration is active while the graph is loaded."""
    active: list[config_module.SubspaceConfig] = []

    def _load_graph(*_args: object, **_kwargs: object) -> WorkspaceGraph:
        active.append(config_module.current_configuration())
        return chain_graph

    monkeypatch.setattr(check_command._shared, "load_graph", _load_graph)
    monkeypatch.setattr(check_command, "run_foreground", lambda *_a, **_k: 0)

    check_command.run(
        "check",
        workspace_root / "c" / "src" / "lib.rs",
        workspace_root=workspace_root,
        configuration=isolated_config,
        toolchain=Toolchain(),
        is_tty=True,
    )

    assert active == [isolated_config]
    with pytest.raises(config_module.ConfigurationNotLoadedError):
        config_module.current_configuration()


def test_run_returns_cargo_exit_status(
    cmd_mox: CmdMox,
    toolchain_calls: list[Invocation],
    monkeypatch: pytest.MonkeyPatch,
    chain_graph: WorkspaceGraph,
    workspace_root: Path,
    isolated_config: config_module.SubspaceConfig,
) -> None:
    """Cargo's status is the command's status."""
    _patch_graph(monkeypatch, chain_graph)
    cmd_mox.mock("cargo").with_args(
        *_expected_arguments("check", workspace_root, "human", "--package", "c@0.1.0")
    ).returns(exit_code=101, stdout="", stderr="error: could not compile `c`\n")

    exit_code = check_command.run(
        "check",
        workspace_root / "c" / "src" / "lib.rs",
        workspace_root=workspace_root,
        configuration=isolated_config,
        toolchain=Toolchain(),
        is_tty=True,
    )

    assert exit_code == 101
    assert len(toolchain_calls) == 1
