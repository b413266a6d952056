"""Error hierarchy shared by the discovery pipeline."""

from __future__ import annotations

import typing as typ


class SubspaceError(RuntimeError):
    """Base class for failures surfaced to the language server."""

    kind: typ.ClassVar[str] = "internal"


class GraphLoadError(SubspaceError):
    """Raised when the workspace graph cannot be loaded."""

    kind: typ.ClassVar[str] = "load"


class ToolUnavailableError(GraphLoadError):
    """Raised when a toolchain executable cannot be located."""

    kind: typ.ClassVar[str] = "tool_unavailable"

    def __init__(self, tool: str) -> None:
        """Initialise the error with a descriptive message."""
        self.tool = tool
        super().__init__(f"The {tool!r} executable could not be located.")


class ToolFailedError(GraphLoadError):
    """Raised when a toolchain command exits with a failure code."""

    kind: typ.ClassVar[str] = "tool_failed"

    def __init__(self, command: str, exit_code: int, stdout: str, stderr: str) -> None:
        """Summarise the failing invocation for the caller."""
        self.exit_code = exit_code
        message = (
            stderr.strip()
            or stdout.strip()
            or f"{command} exited with status {exit_code}"
        )
        super().__init__(message)


class MalformedOutputError(GraphLoadError):
    """Raised when command output does not match the expected schema."""

    kind: typ.ClassVar[str] = "malformed_output"

    @classmethod
    def invalid_json(cls) -> MalformedOutputError:
        """Return an error indicating malformed JSON output."""
        return cls("cargo metadata produced invalid JSON output")

    @classmethod
    def non_object_payload(cls) -> MalformedOutputError:
        """Return an error indicating the payload was not a JSON object."""
        return cls("cargo metadata returned a non-object JSON payload")


class ResolutionError(SubspaceError):
    """Raised when a path cannot be mapped to a build unit."""

    kind: typ.ClassVar[str] = "resolution"


class NotOwnedError(ResolutionError):
    """Raised when no build unit's source root contains a path."""

    kind: typ.ClassVar[str] = "not_owned"

    def __init__(self, path: object) -> None:
        """Record the unowned ``path``."""
        self.path = path
        super().__init__(f"No crate in the workspace owns {path}")


class InconsistentPruneError(SubspaceError):
    """Raised when a pruned graph refers to units outside itself."""

    kind: typ.ClassVar[str] = "inconsistent_prune"

    def __init__(self, source: str, target: str) -> None:
        """Describe the dangling edge between ``source`` and ``target``."""
        self.source = source
        self.target = target
        super().__init__(
            f"pruned graph edge {source!r} -> {target!r} leaves the pruned set"
        )
