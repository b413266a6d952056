"""Configuration loading for the :mod:`subspace` toolkit."""

from __future__ import annotations

import contextlib
import contextvars
import dataclasses as dc
import typing as typ
from collections import abc as cabc
from pathlib import Path

from cyclopts.config import Toml

from subspace.errors import SubspaceError
from subspace.utils import normalise_workspace_root
from subspace.utils.logs import DEFAULT_STATE_DIRECTORY
from subspace.workspace.metadata import FeatureMode, MetadataOptions

CONFIG_FILENAME = "subspace.toml"

_FEATURE_MODES: typ.Final[frozenset[str]] = frozenset({"default", "all", "no-default"})
_DEFAULT_WATCH: typ.Final[tuple[str, ...]] = (
    "Cargo.lock",
    "rust-toolchain.toml",
    "rust-toolchain",
    ".cargo/config.toml",
)


class ConfigurationError(SubspaceError):
    """Raised when the :mod:`subspace` configuration is invalid."""

    kind: typ.ClassVar[str] = "configuration"


class ConfigurationNotLoadedError(ConfigurationError):
    """Raised when code accesses the configuration before it is loaded."""


@dc.dataclass(frozen=True, slots=True)
class DiscoverConfig:
    """Settings for the ``discover`` command."""

    features: FeatureMode = "default"
    filter_platform: bool = True
    compile_time_deps: bool = True

    @classmethod
    def from_mapping(
        cls, mapping: cabc.Mapping[str, typ.Any] | None
    ) -> DiscoverConfig:
        """Create a :class:`DiscoverConfig` from a TOML table mapping."""
        if mapping is None:
            return cls()
        _reject_unknown(
            mapping, {"features", "filter_platform", "compile_time_deps"}, "discover"
        )
        return cls(
            features=_feature_mode(mapping.get("features")),
            filter_platform=_boolean(
                mapping.get("filter_platform"), "discover.filter_platform", default=True
            ),
            compile_time_deps=_boolean(
                mapping.get("compile_time_deps"),
                "discover.compile_time_deps",
                default=True,
            ),
        )

    @property
    def metadata_options(self) -> MetadataOptions:
        """Return the ``cargo metadata`` options implied by these settings."""
        return MetadataOptions(
            features=self.features, filter_platform=self.filter_platform
        )


@dc.dataclass(frozen=True, slots=True)
class CacheConfig:
    """Settings for the persisted workspace graph."""

    enabled: bool = True
    directory: Path = DEFAULT_STATE_DIRECTORY
    watch: tuple[str, ...] = _DEFAULT_WATCH

    @classmethod
    def from_mapping(cls, mapping: cabc.Mapping[str, typ.Any] | None) -> CacheConfig:
        """Create a :class:`CacheConfig` from a TOML table mapping."""
        if mapping is None:
            return cls()
        _reject_unknown(mapping, {"enabled", "directory", "watch"}, "cache")
        directory = mapping.get("directory")
        if directory is not None and not isinstance(directory, str):
            message = (
                "cache.directory must be a string; "
                f"received {type(directory).__name__}."
            )
            raise ConfigurationError(message)
        watch = mapping.get("watch")
        return cls(
            enabled=_boolean(mapping.get("enabled"), "cache.enabled", default=True),
            directory=DEFAULT_STATE_DIRECTORY if directory is None else Path(directory),
            watch=_DEFAULT_WATCH if watch is None else _string_tuple(watch, "cache.watch"),
        )

    def watched_paths(self, workspace_root: Path) -> tuple[Path, ...]:
        """Return the configured watch list resolved against ``workspace_root``."""
        return tuple(workspace_root / entry for entry in self.watch)


@dc.dataclass(frozen=True, slots=True)
class CheckConfig:
    """Settings for the ``check`` and ``clippy`` commands."""

    disable_color_diagnostics: bool = False
    args: tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, mapping: cabc.Mapping[str, typ.Any] | None) -> CheckConfig:
        """Create a :class:`CheckConfig` from a TOML table mapping."""
        if mapping is None:
            return cls()
        _reject_unknown(mapping, {"disable_color_diagnostics", "args"}, "check")
        return cls(
            disable_color_diagnostics=_boolean(
                mapping.get("disable_color_diagnostics"),
                "check.disable_color_diagnostics",
                default=False,
            ),
            args=_string_tuple(mapping.get("args"), "check.args"),
        )


@dc.dataclass(frozen=True, slots=True)
class SubspaceConfig:
    """Strongly-typed representation of ``subspace.toml``."""

    discover: DiscoverConfig = dc.field(default_factory=DiscoverConfig)
    cache: CacheConfig = dc.field(default_factory=CacheConfig)
    check: CheckConfig = dc.field(default_factory=CheckConfig)

    @classmethod
    def from_mapping(cls, mapping: cabc.Mapping[str, typ.Any]) -> SubspaceConfig:
        """Create a :class:`SubspaceConfig` from a parsed configuration mapping."""
        unknown = set(mapping) - {"discover", "cache", "check"}
        if unknown:
            joined = ", ".join(sorted(unknown))
            message = f"Unknown configuration section(s): {joined}."
            raise ConfigurationError(message)
        return cls(
            discover=DiscoverConfig.from_mapping(
                _optional_mapping(mapping.get("discover"), "discover")
            ),
            cache=CacheConfig.from_mapping(
                _optional_mapping(mapping.get("cache"), "cache")
            ),
            check=CheckConfig.from_mapping(
                _optional_mapping(mapping.get("check"), "check")
            ),
        )


_active_config: contextvars.ContextVar[SubspaceConfig] = contextvars.ContextVar(
    "subspace_active_config"
)


def build_loader(workspace_root: Path) -> Toml:
    """Return a Cyclopts loader for ``subspace.toml`` in ``workspace_root``."""
    resolved = normalise_workspace_root(workspace_root)
    return Toml(
        path=resolved / CONFIG_FILENAME,
        must_exist=False,
        search_parents=False,
        allow_unknown=True,
        use_commands_as_keys=True,
    )


def load_from_loader(loader: Toml) -> SubspaceConfig:
    """Load and validate configuration using ``loader``.

    The file is optional: a workspace without ``subspace.toml`` gets the
    defaults.
    """
    if not Path(loader.path).is_file():
        return SubspaceConfig()
    try:
        raw = loader.config
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc
    if not isinstance(raw, cabc.Mapping):
        message = "Configuration root must be a TOML table."
        raise ConfigurationError(message)
    return SubspaceConfig.from_mapping(raw)


def load_configuration(workspace_root: Path) -> SubspaceConfig:
    """Load configuration for ``workspace_root`` using Cyclopts."""
    loader = build_loader(workspace_root)
    return load_from_loader(loader)


@contextlib.contextmanager
def use_configuration(configuration: SubspaceConfig) -> typ.Iterator[None]:
    """Set ``configuration`` as the active configuration for the current context."""
    token = _active_config.set(configuration)
    try:
        yield
    finally:
        _active_config.reset(token)


def current_configuration() -> SubspaceConfig:
    """Return the active configuration or raise if none has been set."""
    try:
        return _active_config.get()
    except LookupError as exc:
        message = "Configuration has not been loaded yet."
        raise ConfigurationNotLoadedError(message) from exc


def _reject_unknown(
    mapping: cabc.Mapping[str, typ.Any], known: set[str], section: str
) -> None:
    """Raise when ``mapping`` holds keys outside ``known``."""
    unknown = set(mapping) - known
    if unknown:
        joined = ", ".join(sorted(unknown))
        message = f"Unknown {section} option(s): {joined}."
        raise ConfigurationError(message)


def _validate_string_sequence(
    sequence: cabc.Sequence[typ.Any], field_name: str
) -> tuple[str, ...]:
    """Validate that ``sequence`` contains only strings and return them."""
    items: list[str] = []
    for index, entry in enumerate(sequence):
        if not isinstance(entry, str):
            message = (
                f"{field_name}[{index}] must be a string, got {type(entry).__name__}."
            )
            raise ConfigurationError(message)
        items.append(entry)
    return tuple(items)


def _string_tuple(value: object, field_name: str) -> tuple[str, ...]:
    """Return a tuple of strings derived from ``value``."""
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, cabc.Sequence) and not isinstance(value, str | bytes):
        return _validate_string_sequence(value, field_name)
    message = (
        f"{field_name} must be a string or a sequence of strings; "
        f"received {type(value).__name__}."
    )
    raise ConfigurationError(message)


def _boolean(value: object, field_name: str, *, default: bool) -> bool:
    """Return ``value`` when it is a boolean, ``default`` when absent."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    message = f"{field_name} must be true or false; received {type(value).__name__}."
    raise ConfigurationError(message)


def _feature_mode(value: object) -> FeatureMode:
    """Normalise the ``discover.features`` value."""
    if value is None:
        return "default"
    if isinstance(value, str) and value in _FEATURE_MODES:
        return typ.cast("FeatureMode", value)
    message = "discover.features must be 'default', 'all', or 'no-default'."
    raise ConfigurationError(message)


def _optional_mapping(
    value: object, field_name: str
) -> cabc.Mapping[str, typ.Any] | None:
    """Ensure ``value`` is a mapping if provided."""
    if value is None:
        return None
    if isinstance(value, cabc.Mapping):
        return value
    message = f"{field_name} must be a TOML table; received {type(value).__name__}."
    raise ConfigurationError(message)
