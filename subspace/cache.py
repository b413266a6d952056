"""Persisted workspace graphs keyed by a fingerprint of their manifests."""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
import typing as typ
from collections import abc as cabc
from contextlib import suppress
from pathlib import Path

import msgspec

from subspace.serde import dumps_json, loads_json
from subspace.utils.path import normalise_path
from subspace.workspace.models import WorkspaceGraph

if typ.TYPE_CHECKING:
    from types import TracebackType

LOGGER = logging.getLogger(__name__)

CACHE_FORMAT_VERSION = 1
CACHE_SUBDIRECTORY = "cache"
_MISSING_MARKER = b"<missing>"

GraphLoader = cabc.Callable[[], WorkspaceGraph]


class CacheEntry(msgspec.Struct, frozen=True, kw_only=True):
    """A stored graph with the fingerprint of the inputs it was built from."""

    fingerprint: str
    settings: str
    watched: tuple[Path, ...]
    graph: WorkspaceGraph
    version: int = CACHE_FORMAT_VERSION


def compute_fingerprint(paths: cabc.Iterable[Path], settings: str = "") -> str:
    """Return a digest over ``settings`` and the content of every path.

    Missing files contribute a marker, so creating or deleting a watched
    file changes the fingerprint just like editing it.
    """
    digest = hashlib.sha256(settings.encode("utf-8"))
    for path in sorted(set(paths)):
        digest.update(str(path).encode("utf-8"))
        digest.update(b"\0")
        try:
            digest.update(hashlib.sha256(path.read_bytes()).digest())
        except FileNotFoundError:
            digest.update(_MISSING_MARKER)
    return digest.hexdigest()


def cache_path_for(state_directory: Path, workspace_root: Path) -> Path:
    """Return the cache file used for ``workspace_root``."""
    key = hashlib.sha256(str(workspace_root).encode("utf-8")).hexdigest()[:16]
    name = workspace_root.name or "workspace"
    return Path(state_directory).expanduser() / CACHE_SUBDIRECTORY / f"{name}-{key}.json"


def _write_atomic_bytes(path: Path, content: bytes) -> None:
    """Persist ``content`` to ``path`` via a temporary file and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f"{path.name}.")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(content)
        Path(tmp_path).replace(path)
    finally:
        with suppress(FileNotFoundError):
            Path(tmp_path).unlink()


class GraphCache:
    """On-disk cache for one workspace graph.

    Use as a context manager: entering reads the stored entry, leaving drops
    it. Readers never lock; a replacement is written to a temporary file and
    renamed over the old one, so concurrent invocations see either the old
    or the new entry in full.
    """

    def __init__(
        self,
        path: Path,
        loader: GraphLoader,
        *,
        settings: str = "",
    ) -> None:
        """Bind the cache file at ``path`` to ``loader``."""
        self.path = Path(path)
        self._loader = loader
        self._settings = settings
        self._entry: CacheEntry | None = None
        self._opened = False

    def __enter__(self) -> GraphCache:
        """Open the cache for the duration of a ``with`` block."""
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        """Close the cache."""
        self.close()

    @property
    def entry(self) -> CacheEntry | None:
        """Return the entry currently held in memory."""
        return self._entry

    def open(self) -> None:
        """Read the stored entry, ignoring files that cannot be decoded."""
        self._entry = self._read()
        self._opened = True

    def close(self) -> None:
        """Release the in-memory entry."""
        self._entry = None
        self._opened = False

    def _read(self) -> CacheEntry | None:
        try:
            payload = self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            LOGGER.warning("Cannot read graph cache %s: %s", self.path, exc)
            return None
        try:
            entry = loads_json(payload, target_type=CacheEntry)
        except msgspec.DecodeError as exc:
            LOGGER.warning("Discarding corrupt graph cache %s: %s", self.path, exc)
            return None
        if entry.version != CACHE_FORMAT_VERSION:
            LOGGER.info("Discarding graph cache with format %s", entry.version)
            return None
        return entry

    def _is_fresh(self, entry: CacheEntry, inputs: tuple[Path, ...]) -> bool:
        if entry.settings != self._settings:
            return False
        watched = set(inputs) | set(entry.watched)
        return compute_fingerprint(watched, self._settings) == entry.fingerprint

    def get_or_load(self, fingerprint_inputs: cabc.Iterable[Path]) -> WorkspaceGraph:
        """Return the cached graph, reloading it when any watched file changed.

        Loader errors propagate unchanged and leave the stored entry as it
        was; a stale graph is never returned after a failed reload.
        """
        if not self._opened:
            self.open()
        inputs = tuple(normalise_path(path) for path in fingerprint_inputs)
        entry = self._entry
        if entry is not None and self._is_fresh(entry, inputs):
            LOGGER.debug("Graph cache hit: %s", self.path)
            return entry.graph

        LOGGER.debug("Graph cache miss: %s", self.path)
        graph = self._loader()
        watched = tuple(sorted(set(inputs) | set(graph.manifest_paths)))
        replacement = CacheEntry(
            fingerprint=compute_fingerprint(watched, self._settings),
            settings=self._settings,
            watched=watched,
            graph=graph,
        )
        try:
            _write_atomic_bytes(self.path, dumps_json(replacement))
        except OSError as exc:
            LOGGER.warning("Cannot write graph cache %s: %s", self.path, exc)
        self._entry = replacement
        return graph
