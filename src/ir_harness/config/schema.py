"""
ir-harness: configuration schema and validation.

File: src/ir_harness/config/schema.py

Purpose
- Define the authoritative defaults of ``ir_harness.toml`` and validate any
  candidate config against them.

Functional requirements
- Validation reports every problem at once as ``ConfigValidationIssue(path, message)``
  with dotted paths (``server.handshake_timeout_seconds``,
  ``phases.override_repeated[2]``).
- Unknown sections and keys are rejected; every known key is required (callers
  layer partial configs over ``default_config()`` first).
- ``phases.override_repeated`` entries must name dumpable compile phases.
- A schema version mismatch is reported with migration guidance.

Non-functional requirements
- Pure functions over plain mappings; deterministic issue order.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from ir_harness.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_READ_LIMIT_BYTES,
    DEFAULT_SERVER_HOST,
    HANDSHAKE_TIMEOUT_SECONDS,
)
from ir_harness.domain.phases import DEFAULT_OVERRIDE_REPEATED, CompilePhase

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

# (section, key) pairs holding filesystem paths; resolved relative to the config file.
PATH_FIELDS: Final[tuple[tuple[str, str], ...]] = (("observability", "log_dir"),)

LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
MIN_READ_LIMIT_BYTES: Final[int] = 1024


class MetaConfig(TypedDict):
    schema_version: int


class ServerConfig(TypedDict):
    host: str
    handshake_timeout_seconds: float
    read_limit_bytes: int


class MatchingConfig(TypedDict):
    allow_not_compilable: bool
    include_compilation_output: bool


class PhasesConfig(TypedDict):
    override_repeated: list[str]


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_stdout: bool


class HarnessConfig(TypedDict):
    meta: MetaConfig
    server: ServerConfig
    matching: MatchingConfig
    phases: PhasesConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[HarnessConfig] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "server": {
        "host": DEFAULT_SERVER_HOST,
        "handshake_timeout_seconds": HANDSHAKE_TIMEOUT_SECONDS,
        "read_limit_bytes": DEFAULT_READ_LIMIT_BYTES,
    },
    "matching": {
        "allow_not_compilable": False,
        "include_compilation_output": True,
    },
    "phases": {
        "override_repeated": sorted(phase.name for phase in DEFAULT_OVERRIDE_REPEATED),
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs/",
        "log_to_stdout": False,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """One problem found in a candidate config."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Normalized config (when valid) plus the issues found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised by ``assert_valid_config``; ``issues`` lists every problem."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues] or ["- <root>: unknown failure"]
        super().__init__("invalid config:\n" + "\n".join(lines))


class _Invalid:
    """Marker returned by field checks that already recorded an issue."""


_INVALID: Final[_Invalid] = _Invalid()

_Issues = list[ConfigValidationIssue]
_FieldCheck = Callable[[object, str, _Issues], object]


def default_config() -> HarnessConfig:
    """Fresh deep copy of ``DEFAULT_CONFIG``."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Explain how to resolve a ``meta.schema_version`` of ``found_version``."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} predates {ConfigSchemaVersion}; "
            "upgrade ir_harness.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than {ConfigSchemaVersion}; "
            "upgrade the ir-harness package"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Return ``base`` with ``overlay`` deep-merged on top; neither input is modified."""

    merged: dict[str, Any] = {key: _plain_copy(base[key]) for key in sorted(base)}
    for key in sorted(overlay):
        value = overlay[key]
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, dict):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = _plain_copy(value)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Check ``config`` against the schema without raising."""

    issues: _Issues = []
    normalized = _check_table(config, "", _SECTIONS, issues)
    if issues or not isinstance(normalized, dict):
        return ConfigValidationResult(config=None, issues=tuple(issues))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return the normalized config or raise ``ConfigValidationError``."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


# -- field checks ------------------------------------------------------------------------


def _text(value: object, path: str, issues: _Issues) -> object:
    if not isinstance(value, str):
        return _fail(issues, path, f"expected string, got {type(value).__name__}")
    stripped = value.strip()
    if not stripped:
        return _fail(issues, path, "must not be empty")
    if "\x00" in stripped:
        return _fail(issues, path, "must not contain NUL bytes")
    return stripped


def _flag(value: object, path: str, issues: _Issues) -> object:
    if not isinstance(value, bool):
        return _fail(issues, path, f"expected boolean, got {type(value).__name__}")
    return value


def _integer(*, at_least: int) -> _FieldCheck:
    def check(value: object, path: str, issues: _Issues) -> object:
        if isinstance(value, bool) or not isinstance(value, int):
            return _fail(issues, path, f"expected integer, got {type(value).__name__}")
        if value < at_least:
            return _fail(issues, path, f"must be >= {at_least}")
        return value

    return check


def _positive_seconds(value: object, path: str, issues: _Issues) -> object:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return _fail(issues, path, f"expected number, got {type(value).__name__}")
    seconds = float(value)
    if not math.isfinite(seconds):
        return _fail(issues, path, "must be finite")
    if seconds <= 0:
        return _fail(issues, path, "must be > 0")
    return seconds


def _log_level(value: object, path: str, issues: _Issues) -> object:
    level = _text(value, path, issues)
    if level is _INVALID:
        return _INVALID
    if level not in LOG_LEVELS:
        return _fail(issues, path, f"invalid value {level!r}; expected one of: {', '.join(LOG_LEVELS)}")
    return level


def _schema_version(value: object, path: str, issues: _Issues) -> object:
    version = _integer(at_least=1)(value, path, issues)
    if version is not _INVALID and version != ConfigSchemaVersion:
        assert isinstance(version, int)
        return _fail(issues, path, migration_guidance(version))
    return version


def _phase_names(value: object, path: str, issues: _Issues) -> object:
    if not isinstance(value, (list, tuple)):
        return _fail(issues, path, f"expected array, got {type(value).__name__}")
    names: list[str] = []
    for position, item in enumerate(value):
        item_path = f"{path}[{position}]"
        name = _text(item, item_path, issues)
        if name is _INVALID:
            continue
        if name not in CompilePhase.__members__:
            _fail(issues, item_path, f"unknown compile phase {name!r}")
        elif name == CompilePhase.DEFAULT.name:
            _fail(issues, item_path, "DEFAULT is not a dumpable phase")
        elif name not in names:
            assert isinstance(name, str)
            names.append(name)
    return names


_SECTIONS: Final[Mapping[str, Mapping[str, _FieldCheck]]] = {
    "meta": {"schema_version": _schema_version},
    "server": {
        "host": _text,
        "handshake_timeout_seconds": _positive_seconds,
        "read_limit_bytes": _integer(at_least=MIN_READ_LIMIT_BYTES),
    },
    "matching": {
        "allow_not_compilable": _flag,
        "include_compilation_output": _flag,
    },
    "phases": {"override_repeated": _phase_names},
    "observability": {
        "log_level": _log_level,
        "log_dir": _text,
        "log_to_stdout": _flag,
    },
}


def _check_table(
    payload: object,
    path: str,
    schema: Mapping[str, Mapping[str, _FieldCheck]] | Mapping[str, _FieldCheck],
    issues: _Issues,
) -> object:
    if not isinstance(payload, Mapping):
        return _fail(issues, path or "<root>", f"expected object, got {type(payload).__name__}")

    for key in sorted(payload, key=str):
        if not isinstance(key, str):
            _fail(issues, path or "<root>", f"object key must be string, got {type(key).__name__}")
        elif key not in schema:
            _fail(issues, _join(path, key), "unknown field")

    out: dict[str, Any] = {}
    for key, rule in schema.items():
        key_path = _join(path, key)
        if key not in payload:
            _fail(issues, key_path, "missing required field")
            continue
        if isinstance(rule, Mapping):
            checked = _check_table(payload[key], key_path, rule, issues)
        else:
            checked = rule(payload[key], key_path, issues)
        if checked is not _INVALID:
            out[key] = checked
    return out


def _fail(issues: _Issues, path: str, message: str) -> _Invalid:
    issues.append(ConfigValidationIssue(path=path, message=message))
    return _INVALID


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _plain_copy(value: object) -> Any:
    if isinstance(value, Mapping):
        return {key: _plain_copy(item) for key, item in value.items() if isinstance(key, str)}
    if isinstance(value, (list, tuple)):
        return [_plain_copy(item) for item in value]
    return copy.deepcopy(value)


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "HarnessConfig",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
