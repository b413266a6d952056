"""Tests for the ``cargo metadata`` wrapper."""

from __future__ import annotations

import json
import typing as typ
from dataclasses import dataclass

import pytest

from subspace import toolchain as toolchain_module
from subspace.toolchain import Toolchain
from subspace.workspace import (
    GraphLoadError,
    MalformedOutputError,
    MetadataOptions,
    ToolFailedError,
    ToolUnavailableError,
    load_cargo_metadata,
)
from subspace.workspace import metadata as metadata_module
from tests.helpers.workspace_helpers import invocations, metadata_arguments_for

if typ.TYPE_CHECKING:
    from pathlib import Path

    from cmd_mox import CmdMox
    from cmd_mox.ipc import Invocation

_NO_PLATFORM = MetadataOptions(filter_platform=False)


def test_load_cargo_metadata_parses_output(
    cmd_mox: CmdMox, toolchain_calls: list[Invocation], tmp_path: Path
) -> None:
    """Successful invocations should return parsed JSON payloads."""
    payload = {"workspace_root": str(tmp_path), "packages": []}
    arguments = metadata_arguments_for(tmp_path.resolve())
    cmd_mox.mock("cargo").with_args(*arguments).returns(
        exit_code=0, stdout=json.dumps(payload), stderr=""
    )

    result = load_cargo_metadata(tmp_path, _NO_PLATFORM, Toolchain())

    assert result == payload
    assert len(invocations(toolchain_calls, "cargo", "metadata")) == 1


def test_load_cargo_metadata_passes_feature_and_platform_flags(
    cmd_mox: CmdMox, toolchain_calls: list[Invocation], tmp_path: Path
) -> None:
    """Configured options are forwarded to ``cargo metadata``."""
    cmd_mox.mock("rustc").with_args("-vV").returns(
        exit_code=0,
        stdout="rustc 1.80.0\nhost: aarch64-apple-darwin\nrelease: 1.80.0\n",
        stderr="",
    )
    cmd_mox.mock("cargo").with_args(
        *metadata_arguments_for(tmp_path.resolve()),
        "--all-features",
        "--filter-platform",
        "aarch64-apple-darwin",
    ).returns(exit_code=0, stdout='{"packages": []}', stderr="")

    load_cargo_metadata(
        tmp_path, MetadataOptions(features="all", filter_platform=True), Toolchain()
    )

    assert [call.command for call in toolchain_calls] == ["rustc", "cargo"]


def test_load_cargo_metadata_skips_host_lookup_without_platform_filter(
    cmd_mox: CmdMox, toolchain_calls: list[Invocation], tmp_path: Path
) -> None:
    """``rustc -vV`` only runs when the platform filter is enabled."""
    cmd_mox.mock("cargo").with_args(
        *metadata_arguments_for(tmp_path.resolve()), "--no-default-features"
    ).returns(exit_code=0, stdout='{"packages": []}', stderr="")

    load_cargo_metadata(
        tmp_path,
        MetadataOptions(features="no-default", filter_platform=False),
        Toolchain(),
    )

    assert invocations(toolchain_calls, "rustc") == []


def test_load_cargo_metadata_runs_in_workspace_root(
    cmd_mox: CmdMox,
    toolchain_calls: list[Invocation],
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    """The metadata query runs from the workspace directory."""
    arguments = metadata_arguments_for(tmp_path.resolve())
    cmd_mox.mock("cargo").with_args(*arguments).returns(
        exit_code=0, stdout='{"packages": []}', stderr=""
    )
    directories: list[Path | None] = []
    run_captured = metadata_module.run_captured

    def _recording_run(
        command: object, *, tool: str, cwd: Path | None = None
    ) -> tuple[int, str, str]:
        directories.append(cwd)
        return run_captured(command, tool=tool, cwd=cwd)  # type: ignore[arg-type]

    monkeypatch.setattr(metadata_module, "run_captured", _recording_run)

    load_cargo_metadata(tmp_path, _NO_PLATFORM, Toolchain())

    assert directories == [tmp_path.resolve()]
    assert len(toolchain_calls) == 1


def test_load_cargo_metadata_missing_executable(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """Absent ``cargo`` binaries should raise ``ToolUnavailableError``."""

    def _raise(_toolchain: object) -> typ.NoReturn:
        raise ToolUnavailableError("cargo")

    monkeypatch.setattr(metadata_module, "_ensure_command", _raise)

    with pytest.raises(ToolUnavailableError) as excinfo:
        load_cargo_metadata(tmp_path, _NO_PLATFORM, Toolchain())

    assert excinfo.value.kind == "tool_unavailable"


@dataclass(frozen=True)
class ErrorScenario:
    """Test scenario for cargo metadata error cases."""

    exit_code: int
    stdout: str
    stderr: str
    expected_type: type[GraphLoadError]
    expected_message: str


@pytest.mark.parametrize(
    "scenario",
    [
        pytest.param(
            ErrorScenario(
                exit_code=101,
                stdout="",
                stderr="could not read manifest",
                expected_type=ToolFailedError,
                expected_message="could not read manifest",
            ),
            id="non_zero_exit_with_stderr",
        ),
        pytest.param(
            ErrorScenario(
                exit_code=101,
                stdout="",
                stderr="",
                expected_type=ToolFailedError,
                expected_message="cargo metadata exited with status 101",
            ),
            id="non_zero_exit_empty_output",
        ),
        pytest.param(
            ErrorScenario(
                exit_code=0,
                stdout="[]",
                stderr="",
                expected_type=MalformedOutputError,
                expected_message="non-object",
            ),
            id="non_object_json",
        ),
        pytest.param(
            ErrorScenario(
                exit_code=0,
                stdout='{"packages": [',
                stderr="",
                expected_type=MalformedOutputError,
                expected_message="invalid JSON",
            ),
            id="truncated_json",
        ),
    ],
)
def test_load_cargo_metadata_error_scenarios(
    cmd_mox: CmdMox,
    toolchain_calls: list[Invocation],
    tmp_path: Path,
    scenario: ErrorScenario,
) -> None:
    """Error cases should raise the matching :class:`GraphLoadError`."""
    arguments = metadata_arguments_for(tmp_path.resolve())
    cmd_mox.mock("cargo").with_args(*arguments).returns(
        exit_code=scenario.exit_code,
        stdout=scenario.stdout,
        stderr=scenario.stderr,
    )

    with pytest.raises(scenario.expected_type) as excinfo:
        load_cargo_metadata(tmp_path, _NO_PLATFORM, Toolchain())

    assert scenario.expected_message in str(excinfo.value)
    assert len(toolchain_calls) == 1


def test_toolchain_raises_on_missing_executable(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Verify ``CommandNotFound`` is surfaced as ``ToolUnavailableError``."""

    class _MissingCargo:
        def __getitem__(self, name: str) -> typ.NoReturn:
            raise toolchain_module.CommandNotFound(name, ["/usr/bin"])

    monkeypatch.setattr(toolchain_module, "local", _MissingCargo())

    with pytest.raises(ToolUnavailableError):
        toolchain_module.Toolchain().cargo()
