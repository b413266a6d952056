"""Access to the ``cargo`` and ``rustc`` executables."""

from __future__ import annotations

import dataclasses as dc
import logging
import subprocess
import typing as typ
from pathlib import Path

from plumbum import local
from plumbum.commands.processes import CommandNotFound

from subspace.errors import ToolFailedError, ToolUnavailableError

if typ.TYPE_CHECKING:
    from plumbum.commands.base import BaseCommand

LOGGER = logging.getLogger(__name__)

SYSROOT_SOURCE_SUFFIX: typ.Final[tuple[str, ...]] = (
    "lib",
    "rustlib",
    "src",
    "rust",
    "library",
)


def _coerce_text(value: str | bytes | None) -> str:
    """Normalise process output to text."""
    if value is None:
        return ""
    return value.decode("utf-8", errors="replace") if isinstance(value, bytes) else value


def _terminate(process: typ.Any) -> None:  # noqa: ANN401 - Popen-like object
    """Kill ``process`` and reap it."""
    LOGGER.debug("Terminating child process %s", getattr(process, "pid", "?"))
    process.kill()
    process.wait()


def run_captured(
    command: BaseCommand,
    *,
    tool: str,
    cwd: Path | None = None,
) -> tuple[int, str, str]:
    """Run ``command`` to completion and return its exit code and output.

    The child is killed if this invocation is interrupted, so cancelling a
    discovery request never leaves ``cargo`` running in the background.
    """
    LOGGER.debug("Running %s", command)
    try:
        process = command.popen(cwd=None if cwd is None else str(cwd))
    except OSError as exc:
        raise ToolUnavailableError(tool) from exc
    try:
        stdout, stderr = process.communicate()
    except BaseException:
        _terminate(process)
        raise
    return process.returncode, _coerce_text(stdout), _coerce_text(stderr)


def run_foreground(command: BaseCommand, *, tool: str) -> int:
    """Run ``command`` with inherited standard streams and return its status."""
    LOGGER.debug("Running %s in the foreground", command)
    try:
        process = command.popen(stdin=None, stdout=None, stderr=None)
    except OSError as exc:
        raise ToolUnavailableError(tool) from exc
    try:
        return process.wait()
    except BaseException:
        _terminate(process)
        raise


def stream_lines(
    command: BaseCommand,
    *,
    tool: str,
    cwd: Path | None = None,
) -> typ.Iterator[str]:
    """Yield stdout lines from ``command`` as they are produced.

    stderr is discarded. The exit status is logged once the stream ends.
    """
    LOGGER.debug("Streaming %s", command)
    try:
        process = command.popen(
            stderr=subprocess.DEVNULL,
            cwd=None if cwd is None else str(cwd),
        )
    except OSError as exc:
        raise ToolUnavailableError(tool) from exc
    try:
        for raw_line in process.stdout:
            yield _coerce_text(raw_line).rstrip("\r\n")
        exit_code = process.wait()
    except BaseException:
        _terminate(process)
        raise
    if exit_code != 0:
        LOGGER.warning("%s exited with status %s", tool, exit_code)


@dc.dataclass(frozen=True, slots=True)
class Toolchain:
    """Locate toolchain executables, preferring ``cargo_home`` when set."""

    cargo_home: Path | None = None

    def cargo(self) -> BaseCommand:
        """Return the ``cargo`` command object."""
        return self._command("cargo")

    def rustc(self) -> BaseCommand:
        """Return the ``rustc`` command object."""
        return self._command("rustc")

    def _command(self, name: str) -> BaseCommand:
        if self.cargo_home is not None:
            candidate = Path(self.cargo_home).expanduser() / "bin" / name
            if candidate.is_file():
                return local[str(candidate)]
            LOGGER.debug("%s not found under %s; using PATH", name, self.cargo_home)
        try:
            return local[name]
        except CommandNotFound as exc:
            raise ToolUnavailableError(name) from exc

    def sysroot(self) -> Path:
        """Return the active toolchain's sysroot from ``rustc --print sysroot``."""
        exit_code, stdout, stderr = run_captured(
            self.rustc()["--print", "sysroot"], tool="rustc"
        )
        if exit_code != 0:
            raise ToolFailedError("rustc --print sysroot", exit_code, stdout, stderr)
        return Path(stdout.strip())

    def host_triple(self) -> str | None:
        """Return the host target triple reported by ``rustc -vV``."""
        exit_code, stdout, stderr = run_captured(self.rustc()["-vV"], tool="rustc")
        if exit_code != 0:
            raise ToolFailedError("rustc -vV", exit_code, stdout, stderr)
        for line in stdout.splitlines():
            if line.startswith("host: "):
                return line.removeprefix("host: ").strip()
        return None


def sysroot_source(sysroot: Path) -> Path:
    """Return the standard-library source directory within ``sysroot``."""
    return sysroot.joinpath(*SYSROOT_SOURCE_SUFFIX)
