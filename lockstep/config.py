"""Configuration loading for the :mod:`lockstep` toolkit."""

from __future__ import annotations

import contextlib
import contextvars
import dataclasses as dc
import typing as typ
from collections import abc as cabc
from pathlib import Path

from cyclopts.config import Toml

from lockstep.changelog import DEFAULT_CHANGELOG_FILENAME
from lockstep.changes import DEFAULT_TAG_PREFIX
from lockstep.utils import normalise_workspace_root

CONFIG_FILENAME = "lockstep.toml"


class ConfigurationError(RuntimeError):
    """Raised when the :mod:`lockstep` configuration is invalid."""


class ConfigurationNotLoadedError(ConfigurationError):
    """Raised when code accesses the configuration before it is loaded."""


def _reject_unknown(
    mapping: cabc.Mapping[str, typ.Any], allowed: set[str], section: str
) -> None:
    unknown = set(mapping) - allowed
    if unknown:
        joined = ", ".join(sorted(unknown))
        message = f"Unknown {section} option(s): {joined}."
        raise ConfigurationError(message)


@dc.dataclass(frozen=True, slots=True)
class WorkspaceConfig:
    """Where workspace packages live."""

    packages_dir: str = "packages"

    @classmethod
    def from_mapping(
        cls, mapping: cabc.Mapping[str, typ.Any] | None
    ) -> WorkspaceConfig:
        """Create a :class:`WorkspaceConfig` from a TOML table mapping."""
        if mapping is None:
            return cls()
        _reject_unknown(mapping, {"packages_dir"}, "workspace")
        return cls(
            packages_dir=_string(
                mapping.get("packages_dir"), "workspace.packages_dir", "packages"
            ),
        )


@dc.dataclass(frozen=True, slots=True)
class HistoryConfig:
    """How release tags are named and what an untagged repository means."""

    tag_prefix: str = DEFAULT_TAG_PREFIX
    allow_untagged: bool = False

    @classmethod
    def from_mapping(cls, mapping: cabc.Mapping[str, typ.Any] | None) -> HistoryConfig:
        """Create a :class:`HistoryConfig` from a TOML table mapping."""
        if mapping is None:
            return cls()
        _reject_unknown(mapping, {"tag_prefix", "allow_untagged"}, "history")
        tag_prefix = mapping.get("tag_prefix", DEFAULT_TAG_PREFIX)
        if not isinstance(tag_prefix, str):
            message = "history.tag_prefix must be a string."
            raise ConfigurationError(message)
        return cls(
            tag_prefix=tag_prefix,
            allow_untagged=_boolean(
                mapping.get("allow_untagged"), "history.allow_untagged"
            ),
        )


@dc.dataclass(frozen=True, slots=True)
class ChangelogConfig:
    """Defaults for changelog updates."""

    filename: str = DEFAULT_CHANGELOG_FILENAME
    repository_url: str | None = None

    @classmethod
    def from_mapping(
        cls, mapping: cabc.Mapping[str, typ.Any] | None
    ) -> ChangelogConfig:
        """Create a :class:`ChangelogConfig` from a TOML table mapping."""
        if mapping is None:
            return cls()
        _reject_unknown(mapping, {"filename", "repository_url"}, "changelog")
        repository_url = mapping.get("repository_url")
        return cls(
            filename=_string(
                mapping.get("filename"), "changelog.filename", DEFAULT_CHANGELOG_FILENAME
            ),
            repository_url=(
                None
                if repository_url is None
                else _string(repository_url, "changelog.repository_url", "")
            ),
        )


@dc.dataclass(frozen=True, slots=True)
class LockstepConfig:
    """Strongly-typed representation of ``lockstep.toml``.

    A ``[bump]`` table is accepted but not modelled here; Cyclopts reads it
    directly as defaults for the ``bump`` command's parameters.
    """

    workspace: WorkspaceConfig = dc.field(default_factory=WorkspaceConfig)
    history: HistoryConfig = dc.field(default_factory=HistoryConfig)
    changelog: ChangelogConfig = dc.field(default_factory=ChangelogConfig)

    @classmethod
    def from_mapping(cls, mapping: cabc.Mapping[str, typ.Any]) -> LockstepConfig:
        """Create a :class:`LockstepConfig` from a parsed configuration mapping."""
        allowed = {"workspace", "history", "changelog", "bump"}
        unknown = set(mapping) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            message = f"Unknown configuration section(s): {joined}."
            raise ConfigurationError(message)
        _optional_mapping(mapping.get("bump"), "bump")
        return cls(
            workspace=WorkspaceConfig.from_mapping(
                _optional_mapping(mapping.get("workspace"), "workspace")
            ),
            history=HistoryConfig.from_mapping(
                _optional_mapping(mapping.get("history"), "history")
            ),
            changelog=ChangelogConfig.from_mapping(
                _optional_mapping(mapping.get("changelog"), "changelog")
            ),
        )


_active_config: contextvars.ContextVar[LockstepConfig] = contextvars.ContextVar(
    "lockstep_active_config"
)


def build_loader(workspace_root: Path) -> Toml:
    """Return a Cyclopts loader for ``lockstep.toml`` in ``workspace_root``."""
    resolved = normalise_workspace_root(workspace_root)
    return Toml(
        path=resolved / CONFIG_FILENAME,
        must_exist=False,
        search_parents=False,
        allow_unknown=True,
        use_commands_as_keys=True,
    )


def load_from_loader(loader: Toml) -> LockstepConfig:
    """Load and validate configuration using ``loader``.

    A missing file yields the default configuration.
    """
    if not Path(loader.path).exists():
        return LockstepConfig()
    try:
        raw = loader.config
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc
    if not isinstance(raw, cabc.Mapping):
        message = "Configuration root must be a TOML table."
        raise ConfigurationError(message)
    return LockstepConfig.from_mapping(raw)


def load_configuration(workspace_root: Path) -> LockstepConfig:
    """Load configuration for ``workspace_root`` using Cyclopts."""
    loader = build_loader(workspace_root)
    return load_from_loader(loader)


@contextlib.contextmanager
def use_configuration(configuration: LockstepConfig) -> typ.Iterator[None]:
    """Set ``configuration`` as the active configuration for the current context."""
    token = _active_config.set(configuration)
    try:
        yield
    finally:
        _active_config.reset(token)


def current_configuration() -> LockstepConfig:
    """Return the active configuration or raise if none has been set."""
    try:
        return _active_config.get()
    except LookupError as exc:
        message = "Configuration has not been loaded yet."
        raise ConfigurationNotLoadedError(message) from exc


def _string(value: object, field_name: str, default: str) -> str:
    """Return ``value`` as a non-empty string, or ``default`` when absent."""
    if value is None:
        return default
    if isinstance(value, str) and value:
        return value
    message = f"{field_name} must be a non-empty string."
    raise ConfigurationError(message)


def _boolean(value: object, field_name: str) -> bool:
    """Return ``value`` as a boolean defaulting to ``False``."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    message = f"{field_name} must be true or false; received {type(value).__name__}."
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
