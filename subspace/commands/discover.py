"""Answer rust-analyzer's project discovery requests.

rust-analyzer runs ``subspace discover <arg>`` whenever it opens a file it
cannot place in a known crate. ``<arg>`` is either a JSON object holding a
``path`` or ``buildfile`` key, or a bare path. The command replies on
standard output with JSON lines: any number of ``progress`` messages, then
exactly one ``finished`` or ``error`` message.
"""

from __future__ import annotations

import dataclasses as dc
import enum
import functools
import logging
import sys
import typing as typ
from pathlib import Path

import msgspec

from subspace.commands import _shared
from subspace.compile_time import build_compile_time_artifacts
from subspace.errors import SubspaceError
from subspace.ownership import resolve_manifest_owner, resolve_owner
from subspace.project import ProjectJson, emit_project
from subspace.pruning import prune
from subspace.serde import dumps_json, loads_json
from subspace.toolchain import Toolchain
from subspace.utils import normalise_path
from subspace.utils.path import MANIFEST_FILENAME

if typ.TYPE_CHECKING:
    from collections import abc as cabc

    from subspace.compile_time import CompileTimeArtifacts
    from subspace.config import SubspaceConfig
    from subspace.pruning import PrunedGraph
    from subspace.workspace import BuildUnit, WorkspaceGraph

LOGGER = logging.getLogger(__name__)


class DiscoverArgumentError(SubspaceError):
    """Raised when the discovery argument cannot be interpreted."""

    kind: typ.ClassVar[str] = "invalid_argument"


class DiscoverArgument(msgspec.Struct, frozen=True, kw_only=True):
    """The file or manifest a discovery request is about."""

    path: Path | None = None
    buildfile: Path | None = None

    @property
    def target(self) -> Path:
        """Return whichever of ``path`` or ``buildfile`` was supplied."""
        target = self.path if self.path is not None else self.buildfile
        if target is None:
            message = "discovery argument names neither a path nor a buildfile"
            raise DiscoverArgumentError(message)
        return target


def parse_discover_argument(raw: str) -> DiscoverArgument:
    """Interpret ``raw`` as a JSON request object or as a bare path."""
    stripped = raw.strip()
    if not stripped:
        message = "Expected a path or a JSON object with a `path` or `buildfile` key"
        raise DiscoverArgumentError(message)
    if not stripped.startswith("{"):
        return DiscoverArgument(path=normalise_path(stripped))
    try:
        argument = loads_json(stripped, target_type=DiscoverArgument)
    except msgspec.DecodeError as exc:
        message = f"Invalid discovery argument: {exc}"
        raise DiscoverArgumentError(message) from exc
    if (argument.path is None) == (argument.buildfile is None):
        message = "Expected a JSON object with exactly one of `path` or `buildfile`"
        raise DiscoverArgumentError(message)
    if argument.path is not None:
        return DiscoverArgument(path=normalise_path(argument.path))
    return DiscoverArgument(buildfile=normalise_path(argument.target))


class Progress(msgspec.Struct, frozen=True, tag_field="kind", tag="progress"):
    """Intermediate status shown by the language server."""

    message: str


class Finished(msgspec.Struct, frozen=True, tag_field="kind", tag="finished"):
    """Successful discovery result."""

    buildfile: Path
    project: ProjectJson


class Error(msgspec.Struct, frozen=True, tag_field="kind", tag="error"):
    """Failed discovery result."""

    error: str
    source: str | None = None


DiscoverMessage = Progress | Finished | Error


class DiscoveryReporter:
    """Write discovery messages as JSON lines.

    ``None`` streams resolve to :data:`sys.stdout` at write time, since the
    language server only reads standard output.
    """

    def __init__(
        self,
        progress_stream: typ.TextIO | None = None,
        result_stream: typ.TextIO | None = None,
    ) -> None:
        """Bind the reporter to its output streams."""
        self._progress_stream = progress_stream
        self._result_stream = result_stream

    def progress(self, message: str) -> None:
        """Report an intermediate step."""
        LOGGER.info("%s", message)
        self._write(self._progress_stream, Progress(message=message))

    def finished(self, buildfile: Path, project: ProjectJson) -> None:
        """Report the project description for ``buildfile``."""
        self._write(self._result_stream, Finished(buildfile=buildfile, project=project))

    def error(self, message: str, source: str | None = None) -> None:
        """Report a failed request."""
        LOGGER.error("Discovery failed (%s): %s", source, message)
        self._write(self._result_stream, Error(error=message, source=source))

    @staticmethod
    def _write(stream: typ.TextIO | None, payload: DiscoverMessage) -> None:
        target = sys.stdout if stream is None else stream
        target.write(dumps_json(payload).decode("utf-8"))
        target.write("\n")
        target.flush()


class DiscoveryState(enum.StrEnum):
    """Stages of a single discovery request."""

    IDLE = "idle"
    LOADING = "loading"
    RESOLVING = "resolving"
    PRUNING = "pruning"
    EMITTING = "emitting"
    DONE = "done"
    FAILED = "failed"


_NEXT_STATE: typ.Final[dict[DiscoveryState, DiscoveryState]] = {
    DiscoveryState.IDLE: DiscoveryState.LOADING,
    DiscoveryState.LOADING: DiscoveryState.RESOLVING,
    DiscoveryState.RESOLVING: DiscoveryState.PRUNING,
    DiscoveryState.PRUNING: DiscoveryState.EMITTING,
    DiscoveryState.EMITTING: DiscoveryState.DONE,
}
_TERMINAL_STATES: typ.Final[frozenset[DiscoveryState]] = frozenset(
    {DiscoveryState.DONE, DiscoveryState.FAILED}
)


class InvalidTransitionError(RuntimeError):
    """Raised when a discovery driver is asked to move backwards."""


@dc.dataclass(frozen=True, slots=True)
class DiscoveryOutcome:
    """Terminal result of :meth:`DiscoveryDriver.run`."""

    state: DiscoveryState
    project: ProjectJson | None = None
    buildfile: Path | None = None
    message: str | None = None
    error_kind: str | None = None

    @property
    def succeeded(self) -> bool:
        """Return whether discovery produced a project."""
        return self.state is DiscoveryState.DONE


GraphSource = typ.Callable[[], "WorkspaceGraph"]
ArtifactBuilder = typ.Callable[["PrunedGraph"], "CompileTimeArtifacts | None"]


class DiscoveryDriver:
    """Drive one request from argument to ``finished`` or ``error``.

    The driver moves strictly forward through
    ``idle -> loading -> resolving -> pruning -> emitting -> done`` and may
    jump to ``failed`` from any non-terminal state. Every failure is
    reported through the reporter; :meth:`run` never raises for errors the
    pipeline knows about.
    """

    def __init__(
        self,
        graph_source: GraphSource,
        reporter: DiscoveryReporter,
        *,
        artifact_builder: ArtifactBuilder | None = None,
    ) -> None:
        """Configure where graphs come from and where messages go."""
        self._graph_source = graph_source
        self._reporter = reporter
        self._artifact_builder = artifact_builder
        self._state = DiscoveryState.IDLE

    @property
    def state(self) -> DiscoveryState:
        """Return the current stage."""
        return self._state

    def _advance(self, target: DiscoveryState) -> None:
        if target is DiscoveryState.FAILED:
            allowed = self._state not in _TERMINAL_STATES
        else:
            allowed = _NEXT_STATE.get(self._state) is target
        if not allowed:
            message = f"cannot move discovery from {self._state} to {target}"
            raise InvalidTransitionError(message)
        LOGGER.debug("Discovery %s -> %s", self._state, target)
        self._state = target

    def _resolve(self, argument: DiscoverArgument, graph: WorkspaceGraph) -> BuildUnit:
        if argument.buildfile is not None:
            return resolve_manifest_owner(argument.buildfile, graph)
        return resolve_owner(argument.target, graph)

    def _fail(self, message: str, kind: str) -> DiscoveryOutcome:
        self._advance(DiscoveryState.FAILED)
        self._reporter.error(message, kind)
        return DiscoveryOutcome(
            state=DiscoveryState.FAILED, message=message, error_kind=kind
        )

    def run(self, argument: DiscoverArgument) -> DiscoveryOutcome:
        """Process ``argument`` and report the outcome.

        Raises
        ------
        InvalidTransitionError
            If the driver already handled a request.

        """
        if self._state is not DiscoveryState.IDLE:
            message = "a discovery driver handles a single request"
            raise InvalidTransitionError(message)
        try:
            self._advance(DiscoveryState.LOADING)
            self._reporter.progress("Loading workspace graph")
            graph = self._graph_source()

            self._advance(DiscoveryState.RESOLVING)
            unit = self._resolve(argument, graph)
            LOGGER.debug("%s is owned by %s", argument.target, unit.id)

            self._advance(DiscoveryState.PRUNING)
            pruned = prune(unit, graph)

            self._advance(DiscoveryState.EMITTING)
            artifacts = None
            if self._artifact_builder is not None:
                artifacts = self._artifact_builder(pruned)
            project = emit_project(pruned, artifacts)
        except SubspaceError as exc:
            return self._fail(str(exc), exc.kind)

        buildfile = graph.workspace_root / MANIFEST_FILENAME
        self._advance(DiscoveryState.DONE)
        self._reporter.finished(buildfile, project)
        return DiscoveryOutcome(
            state=DiscoveryState.DONE, project=project, buildfile=buildfile
        )


def _artifact_builder(
    configuration: SubspaceConfig,
    toolchain: Toolchain,
    reporter: DiscoveryReporter,
) -> ArtifactBuilder | None:
    if not configuration.discover.compile_time_deps:
        return None

    def build(pruned: PrunedGraph) -> CompileTimeArtifacts | None:
        if not pruned.root.is_workspace_member:
            return None
        reporter.progress("Building proc macros and running build scripts")
        return build_compile_time_artifacts(toolchain, pruned, reporter.progress)

    return build


def run(
    raw_argument: str,
    *,
    workspace_root: Path | str | None = None,
    configuration: SubspaceConfig | None = None,
    toolchain: Toolchain | None = None,
    reporter: DiscoveryReporter | None = None,
    graph_loader: cabc.Callable[..., WorkspaceGraph] = _shared.load_graph,
) -> int:
    """Handle ``subspace discover`` and return the process exit status."""
    reporter = DiscoveryReporter() if reporter is None else reporter
    try:
        argument = parse_discover_argument(raw_argument)
        root = _shared.resolve_workspace_root(workspace_root, argument.target)
        active_toolchain = Toolchain() if toolchain is None else toolchain

        def _discover(active: SubspaceConfig) -> DiscoveryOutcome:
            driver = DiscoveryDriver(
                functools.partial(
                    graph_loader, root, active, active_toolchain, reporter.progress
                ),
                reporter,
                artifact_builder=_artifact_builder(active, active_toolchain, reporter),
            )
            return driver.run(argument)

        outcome = _shared.run_with_configuration(root, configuration, _discover)
    except SubspaceError as exc:
        reporter.error(str(exc), exc.kind)
        return 1
    except Exception as exc:  # noqa: BLE001 - every failure must reach the client
        LOGGER.exception("Unexpected discovery failure")
        reporter.error(str(exc) or type(exc).__name__, "internal")
        return 1
    return 0 if outcome.succeeded else 1
