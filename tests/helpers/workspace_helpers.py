"""Shared test helpers that answer toolchain commands through cmd-mox."""

from __future__ import annotations

import dataclasses as dc
import os
import sys
import typing as typ

from cmd_mox.ipc import Invocation
from plumbum import local

if typ.TYPE_CHECKING:
    import subprocess
    from pathlib import Path

    import pytest
    from cmd_mox import CmdMox

# Writes argv[1] to stdout and argv[2] to stderr, then exits with argv[3].
_REPLAY_SCRIPT = (
    "import sys; sys.stdout.write(sys.argv[1]); "
    "sys.stderr.write(sys.argv[2]); sys.exit(int(sys.argv[3]))"
)


def _text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    return value.decode("utf-8") if isinstance(value, bytes) else value


@dc.dataclass(frozen=True)
class CmdMoxCommand:
    """Command object whose behaviour comes from cmd-mox expectations.

    Arguments bind the way they do on plumbum commands. ``popen`` hands the
    invocation to cmd-mox in process and replays the canned response from a
    short-lived Python child, so the runners in :mod:`subspace.toolchain`
    read real pipes and exit statuses.
    """

    cmd_mox: CmdMox
    name: str
    calls: list[Invocation]
    args: tuple[str, ...] = ()

    def __getitem__(self, args: object) -> CmdMoxCommand:
        """Return a copy with ``args`` appended."""
        extra = tuple(args) if isinstance(args, list | tuple) else (args,)
        return dc.replace(self, args=self.args + tuple(str(arg) for arg in extra))

    def popen(self, **kwargs: typ.Any) -> subprocess.Popen:  # noqa: ANN401
        """Record the invocation and start a child replaying the response."""
        invocation = Invocation(
            command=self.name,
            args=list(self.args),
            stdin="",
            env=dict(os.environ),
        )
        self.calls.append(invocation)
        response = self.cmd_mox._handle_invocation(invocation)
        replay = local[sys.executable][
            "-c",
            _REPLAY_SCRIPT,
            _text(response.stdout),
            _text(response.stderr),
            str(response.exit_code),
        ]
        return replay.popen(**kwargs)

    def __str__(self) -> str:
        """Render the command line."""
        return " ".join((self.name, *self.args))


def install_toolchain_stub(
    cmd_mox: CmdMox, monkeypatch: pytest.MonkeyPatch
) -> list[Invocation]:
    """Route ``cargo`` and ``rustc`` lookups to cmd-mox.

    Returns the list that records every invocation in call order.
    """
    from subspace import toolchain as toolchain_module

    calls: list[Invocation] = []

    def _command(_self: object, name: str) -> CmdMoxCommand:
        return CmdMoxCommand(cmd_mox, name, calls)

    monkeypatch.setattr(toolchain_module.Toolchain, "_command", _command)
    return calls


def invocations(
    calls: typ.Iterable[Invocation], name: str, subcommand: str | None = None
) -> list[tuple[str, ...]]:
    """Return the argument tuples recorded for ``name`` [``subcommand``]."""
    return [
        tuple(call.args)
        for call in calls
        if call.command == name
        and (subcommand is None or tuple(call.args[:1]) == (subcommand,))
    ]


def metadata_arguments_for(workspace_root: Path) -> list[str]:
    """Return the default ``cargo metadata`` arguments for ``workspace_root``."""
    return [
        "metadata",
        "--format-version",
        "1",
        "--manifest-path",
        str(workspace_root / "Cargo.toml"),
    ]


def stub_sysroot(cmd_mox: CmdMox, sysroot: str = "/opt/rust") -> None:
    """Answer every ``rustc --print sysroot`` with ``sysroot``."""
    cmd_mox.stub("rustc").with_args("--print", "sysroot").returns(
        exit_code=0, stdout=f"{sysroot}\n", stderr=""
    )
