"""Build proc macros and run build scripts for a pruned graph.

rust-analyzer needs compiled proc-macro dylibs to expand macros and the
``OUT_DIR`` of build scripts to resolve ``include!(concat!(env!("OUT_DIR"),
...))``. Both come from ``cargo check --message-format json``.
"""

from __future__ import annotations

import json
import logging
import typing as typ
from collections import abc as cabc
from pathlib import Path

import msgspec

from subspace.toolchain import stream_lines

if typ.TYPE_CHECKING:
    from subspace.pruning import PrunedGraph
    from subspace.toolchain import Toolchain

LOGGER = logging.getLogger(__name__)

DYLIB_SUFFIXES: typ.Final[frozenset[str]] = frozenset({".so", ".dylib", ".dll"})

ProgressCallback = cabc.Callable[[str], None]


class BuildScriptOutput(msgspec.Struct, frozen=True, kw_only=True):
    """Results of running one package's build script."""

    out_dir: Path
    env: tuple[tuple[str, str], ...] = ()


class CompileTimeArtifacts(msgspec.Struct, frozen=True, kw_only=True):
    """Proc-macro dylibs and build-script outputs keyed by package id."""

    proc_macro_dylibs: dict[str, Path] = msgspec.field(default_factory=dict)
    build_scripts: dict[str, BuildScriptOutput] = msgspec.field(
        default_factory=dict
    )


def check_arguments(manifest_path: Path) -> list[str]:
    """Return the ``cargo`` arguments that build compile-time dependencies."""
    return [
        "check",
        "--quiet",
        "--message-format",
        "json",
        "--keep-going",
        "--all-targets",
        "--manifest-path",
        str(manifest_path),
    ]


def _is_dylib(filename: object) -> bool:
    return isinstance(filename, str) and Path(filename).suffix in DYLIB_SUFFIXES


def _decode_message(line: str) -> cabc.Mapping[str, typ.Any] | None:
    """Return the JSON object on ``line`` or ``None`` for other output."""
    try:
        message = json.loads(line)
    except json.JSONDecodeError:
        LOGGER.debug("Ignoring non-JSON cargo output: %s", line)
        return None
    return message if isinstance(message, dict) else None


def _proc_macro_dylib(message: cabc.Mapping[str, typ.Any]) -> Path | None:
    target = message.get("target")
    if not isinstance(target, dict) or "proc-macro" not in (target.get("kind") or ()):
        return None
    dylib = next(
        (name for name in message.get("filenames") or () if _is_dylib(name)), None
    )
    return None if dylib is None else Path(dylib)


def _build_script_output(
    message: cabc.Mapping[str, typ.Any],
) -> BuildScriptOutput | None:
    out_dir = message.get("out_dir")
    if not isinstance(out_dir, str):
        return None
    env = tuple(
        (str(pair[0]), str(pair[1]))
        for pair in message.get("env") or ()
        if isinstance(pair, list | tuple) and len(pair) == 2  # noqa: PLR2004
    )
    return BuildScriptOutput(out_dir=Path(out_dir), env=env)


def parse_compile_time_messages(
    lines: cabc.Iterable[str],
    package_names: cabc.Mapping[str, str],
    progress: ProgressCallback | None = None,
) -> CompileTimeArtifacts:
    """Collect artifacts for the packages in ``package_names`` from ``lines``."""
    dylibs: dict[str, Path] = {}
    build_scripts: dict[str, BuildScriptOutput] = {}
    for line in lines:
        message = _decode_message(line)
        if message is None:
            continue
        package_id = message.get("package_id")
        if package_id not in package_names:
            continue
        reason = message.get("reason")
        if reason == "compiler-artifact":
            dylib = _proc_macro_dylib(message)
            if dylib is None:
                continue
            dylibs[package_id] = dylib
            if progress is not None:
                progress(f"proc-macro {package_names[package_id]} built")
        elif reason == "build-script-executed":
            output = _build_script_output(message)
            if output is None:
                continue
            build_scripts[package_id] = output
            if progress is not None:
                progress(f"build script {package_names[package_id]} run")
    return CompileTimeArtifacts(proc_macro_dylibs=dylibs, build_scripts=build_scripts)


def build_compile_time_artifacts(
    toolchain: Toolchain,
    pruned: PrunedGraph,
    progress: ProgressCallback | None = None,
) -> CompileTimeArtifacts:
    """Run ``cargo check`` for the root unit's package and collect artifacts."""
    manifest_path = pruned.root.manifest_path
    command = toolchain.cargo()[check_arguments(manifest_path)]
    lines = stream_lines(command, tool="cargo", cwd=pruned.workspace_root)
    return parse_compile_time_messages(lines, pruned.package_names, progress)
