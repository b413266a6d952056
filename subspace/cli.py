"""Command-line interface for the :mod:`subspace` toolkit."""

from __future__ import annotations

import dataclasses as dc
import os
import signal
import sys
import typing as typ
from contextlib import contextmanager
from importlib import metadata
from pathlib import Path

from cyclopts import App, CycloptsError, Parameter

from . import config
from .commands import check as check_command
from .commands import discover as discover_command
from .errors import GraphLoadError, SubspaceError
from .toolchain import Toolchain
from .utils import normalise_workspace_root
from .utils.logs import LoggingOptions, configure_logging, release_logging

WORKSPACE_ROOT_ENV_VAR = "SUBSPACE_WORKSPACE_ROOT"
CARGO_HOME_ENV_VAR = "CARGO_HOME"
_WORKSPACE_PARAMETER = Parameter(
    name="workspace-root",
    env_var=WORKSPACE_ROOT_ENV_VAR,
    help="Path to the Rust workspace root.",
)
WorkspaceRootOption = typ.Annotated[Path, _WORKSPACE_PARAMETER]

_VALUE_OPTIONS: typ.Final[dict[str, str]] = {
    "--workspace-root": "workspace_root",
    "--log-location": "log_location",
    "--cargo-home": "cargo_home",
}
_FLAG_OPTIONS: typ.Final[dict[str, str]] = {
    "--verbose": "verbose",
    "-v": "verbose",
    "--log-to-stdout": "log_to_stdout",
}

app = App(
    name="subspace",
    help="Incremental crate discovery for rust-analyzer.",
    result_action="return_value",
)


@dc.dataclass(frozen=True, slots=True)
class GlobalOptions:
    """Options accepted before or after any subcommand."""

    workspace_root: str | None = None
    log_location: str | None = None
    cargo_home: str | None = None
    verbose: bool = False
    log_to_stdout: bool = False

    @property
    def logging(self) -> LoggingOptions:
        """Return the logging switches carried by these options."""
        return LoggingOptions(
            verbose=self.verbose,
            log_to_stdout=self.log_to_stdout,
            log_location=None if self.log_location is None else Path(self.log_location),
        )


def _validate_option_value(flag: str, value: str) -> str:
    """Ensure ``value`` is usable as the argument of ``flag``."""
    if not value or value.startswith("-"):
        raise SystemExit(f"{flag} requires a value")
    return value


def _parse_option_flag(
    tokens: typ.Sequence[str], flag: str, index: int
) -> tuple[str, int]:
    """Parse ``<flag> <value>`` form starting at ``index``."""
    try:
        candidate = tokens[index + 1]
    except IndexError as err:
        raise SystemExit(f"{flag} requires a value") from err
    return _validate_option_value(flag, candidate), index + 2


def _parse_option_equals(argument: str, index: int) -> tuple[str, int]:
    """Parse ``<flag>=<value>`` form for ``argument``."""
    flag, _, candidate = argument.partition("=")
    return _validate_option_value(flag, candidate), index + 1


def _extract_global_options(
    tokens: typ.Sequence[str],
) -> tuple[GlobalOptions, list[str]]:
    """Split global options from CLI tokens.

    Value options accept ``--flag <value>`` and ``--flag=<value>``; the last
    occurrence wins. Tokens after ``--`` belong to the subcommand and are
    passed through untouched.
    """
    values: dict[str, typ.Any] = {}
    remainder: list[str] = []
    index = 0
    while index < len(tokens):
        current_argument = tokens[index]
        if current_argument == "--":
            remainder.extend(tokens[index:])
            break
        flag = current_argument.partition("=")[0]
        if current_argument in _VALUE_OPTIONS:
            values[_VALUE_OPTIONS[flag]], index = _parse_option_flag(
                tokens, flag, index
            )
            continue
        if flag in _VALUE_OPTIONS:
            values[_VALUE_OPTIONS[flag]], index = _parse_option_equals(
                current_argument, index
            )
            continue
        if current_argument in _FLAG_OPTIONS:
            values[_FLAG_OPTIONS[current_argument]] = True
            index += 1
            continue
        remainder.append(current_argument)
        index += 1
    return GlobalOptions(**values), remainder


@contextmanager
def _scoped_env(name: str, value: str | Path | None) -> typ.Iterator[None]:
    """Temporarily set environment variable ``name`` to ``value``."""
    if value is None:
        yield
        return
    previous = os.environ.get(name)
    os.environ[name] = str(value)
    try:
        yield
    finally:
        if previous is None:
            os.environ.pop(name, None)
        else:
            os.environ[name] = previous


def _raise_interrupt(signum: int, frame: object) -> None:  # noqa: ARG001
    """Turn ``SIGTERM`` into :class:`KeyboardInterrupt`."""
    raise KeyboardInterrupt


@contextmanager
def _terminate_as_interrupt() -> typ.Iterator[None]:
    """Unwind through ``finally`` blocks when the editor cancels a request.

    Child processes are killed by the runners on the way out.
    """
    try:
        previous = signal.signal(signal.SIGTERM, _raise_interrupt)
    except ValueError:
        # Only the main thread may install handlers.
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


def _is_discover_request(tokens: typ.Sequence[str]) -> bool:
    """Return whether ``tokens`` ask for ``discover`` before any ``--``."""
    options = tokens[: tokens.index("--")] if "--" in tokens else tokens
    return "discover" in options


def _report_failure(tokens: typ.Sequence[str], message: str, source: str) -> int:
    """Report a failure that happened before the subcommand ran.

    ``discover`` answers with a protocol ``error`` line on stdout, since the
    language server does not read stderr.
    """
    if _is_discover_request(tokens):
        discover_command.DiscoveryReporter().error(message, source)
    else:
        print(message, file=sys.stderr)
    return 1


@contextmanager
def _configuration_scope(workspace_root: Path | None) -> typ.Iterator[None]:
    """Install ``subspace.toml`` from an explicit workspace root."""
    if workspace_root is None:
        yield
        return
    configuration = config.load_configuration(workspace_root)
    with config.use_configuration(configuration):
        yield


def _dispatch_and_print(tokens: typ.Sequence[str]) -> int:
    """Execute the Cyclopts app and print command results."""
    try:
        if tokens[:1] == ["discover"]:
            result = app(tokens, print_error=False, exit_on_error=False)
        else:
            result = app(tokens)
    except CycloptsError as err:
        discover_command.DiscoveryReporter().error(str(err), "invalid_argument")
        return 1
    except SystemExit as err:
        code = err.code
        if code is None:
            return 0
        if isinstance(code, int):
            return code
        print(code, file=sys.stderr)
        return 1
    if isinstance(result, int):
        return result
    if result is not None:
        print(result)
    return 0


def main(argv: typ.Sequence[str] | None = None) -> int:
    """Entry point for ``subspace`` and ``cargo-subspace``."""
    try:
        if argv is None:
            argv = sys.argv[1:]
        tokens = list(argv)
        # ``cargo subspace ...`` invokes ``cargo-subspace subspace ...``.
        if tokens[:1] == ["subspace"]:
            tokens = tokens[1:]
        try:
            options, remaining = _extract_global_options(tokens)
        except SystemExit as exc:
            return _report_failure(tokens, str(exc.code), "invalid_argument")
        if not remaining:
            _dispatch_and_print(remaining)  # Print usage message
            return 2  # Standard exit code for missing subcommand
        workspace_root = (
            None
            if options.workspace_root is None
            else normalise_workspace_root(options.workspace_root)
        )
        try:
            handler = configure_logging(options.logging)
        except OSError as exc:
            return _report_failure(
                remaining, f"Cannot open the log file: {exc}", "internal"
            )
        try:
            with (
                _terminate_as_interrupt(),
                _scoped_env(WORKSPACE_ROOT_ENV_VAR, workspace_root),
                _scoped_env(CARGO_HOME_ENV_VAR, options.cargo_home),
                _configuration_scope(workspace_root),
            ):
                return _dispatch_and_print(remaining)
        except config.ConfigurationError as exc:
            return _report_failure(
                remaining, f"Configuration error: {exc}", exc.kind
            )
        finally:
            release_logging(handler)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user.", file=sys.stderr)
        return 130
    except Exception as exc:  # noqa: BLE001 - fallback guard for CLI entry point
        print(f"Unexpected error: {exc}", file=sys.stderr)
        return 1


def _toolchain() -> Toolchain:
    """Return the toolchain selected by ``CARGO_HOME``."""
    cargo_home = os.environ.get(CARGO_HOME_ENV_VAR)
    return Toolchain(cargo_home=None if not cargo_home else Path(cargo_home))


def _package_version() -> str:
    try:
        return metadata.version("subspace")
    except metadata.PackageNotFoundError:
        return "0+unknown"


@app.command
def discover(
    argument: str,
    *,
    workspace_root: WorkspaceRootOption | None = None,
) -> int:
    """Describe the crates needed to analyse a file for rust-analyzer.

    Parameters
    ----------
    argument
        JSON object with a ``path`` or ``buildfile`` key, or a bare path.
    workspace_root
        Path to the Rust workspace root.

    """
    return discover_command.run(
        argument, workspace_root=workspace_root, toolchain=_toolchain()
    )


def _run_check(
    command: check_command.CheckCommand,
    path: Path,
    passthrough: tuple[str, ...],
    workspace_root: Path | None,
    *,
    disable_color_diagnostics: bool,
) -> int:
    options = check_command.CheckOptions(
        disable_color_diagnostics=disable_color_diagnostics,
        passthrough=passthrough,
    )
    try:
        return check_command.run(
            command,
            path,
            workspace_root=workspace_root,
            toolchain=_toolchain(),
            options=options,
        )
    except SubspaceError as exc:
        print(f"{command} failed: {exc}", file=sys.stderr)
        return 1


@app.command
def check(
    path: Path,
    *passthrough: str,
    workspace_root: WorkspaceRootOption | None = None,
    disable_color_diagnostics: bool = False,
) -> int:
    """Run ``cargo check`` for the crate that owns ``path``.

    Parameters
    ----------
    path
        File whose owning crate should be checked.
    passthrough
        Extra arguments forwarded to cargo.
    workspace_root
        Path to the Rust workspace root.
    disable_color_diagnostics
        Ask cargo for plain JSON diagnostics.

    """
    return _run_check(
        "check",
        path,
        passthrough,
        workspace_root,
        disable_color_diagnostics=disable_color_diagnostics,
    )


@app.command
def clippy(
    path: Path,
    *passthrough: str,
    workspace_root: WorkspaceRootOption | None = None,
    disable_color_diagnostics: bool = False,
) -> int:
    """Run ``cargo clippy`` for the crate that owns ``path``.

    Parameters
    ----------
    path
        File whose owning crate should be linted.
    passthrough
        Extra arguments forwarded to cargo.
    workspace_root
        Path to the Rust workspace root.
    disable_color_diagnostics
        Ask cargo for plain JSON diagnostics.

    """
    return _run_check(
        "clippy",
        path,
        passthrough,
        workspace_root,
        disable_color_diagnostics=disable_color_diagnostics,
    )


@app.command
def version() -> str:
    """Print the subspace version and the active sysroot."""
    try:
        sysroot = str(_toolchain().sysroot())
    except GraphLoadError as exc:
        sysroot = f"unavailable ({exc})"
    return f"subspace {_package_version()}\nsysroot: {sysroot}"


if __name__ == "__main__":  # pragma: no cover - convenience entry point
    raise SystemExit(main())
