"""
ir-harness: runtime config loader.

File: src/ir_harness/config/loader.py

Purpose
- Resolve the effective harness config from built-in defaults, ``ir_harness.toml``,
  ``IR_HARNESS_*`` environment variables and dotted CLI-style overrides.

Functional requirements
- Precedence: overrides > env > file > defaults. The file layer is validated on its
  own first so that a broken file is reported against the file, not the env.
- Every environment variable maps to exactly one config field; the table is
  explicit so a typo in a variable name is simply ignored, never guessed at.
- ``phases.override_repeated`` comes from env as a comma-separated list of phase
  names (case-insensitive).
- ``observability.log_dir`` is resolved relative to the config file.

Non-functional requirements
- Deterministic: the same inputs always give the same mapping and the same dump.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Final

from ir_harness.config.schema import PATH_FIELDS, assert_valid_config, default_config, merge_config
from ir_harness.config.settings import HarnessSettings

DEFAULT_CONFIG_FILE: Final[str] = "ir_harness.toml"
ENV_PREFIX: Final[str] = "IR_HARNESS_"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})

_FieldPath = tuple[str, str]
_Coercer = Callable[[str, str], object]


class ConfigLoadError(ValueError):
    """Raised when a config file cannot be read or an override cannot be coerced."""


def _as_text(raw: str, _: str) -> str:
    return raw


def _as_integer(raw: str, env_name: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ConfigLoadError(f"{env_name} must be an integer, got {raw!r}") from None


def _as_seconds(raw: str, env_name: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ConfigLoadError(f"{env_name} must be a number of seconds, got {raw!r}") from None


def _as_flag(raw: str, env_name: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ConfigLoadError(f"{env_name} must be a boolean (true/false, yes/no, on/off, 1/0), got {raw!r}")


def _as_phase_names(raw: str, _: str) -> list[str]:
    return [name.strip().upper() for name in raw.split(",") if name.strip()]


_ENV_FIELDS: Final[Mapping[str, tuple[_FieldPath, _Coercer]]] = {
    f"{ENV_PREFIX}SERVER_HOST": (("server", "host"), _as_text),
    f"{ENV_PREFIX}SERVER_HANDSHAKE_TIMEOUT_SECONDS": (("server", "handshake_timeout_seconds"), _as_seconds),
    f"{ENV_PREFIX}SERVER_READ_LIMIT_BYTES": (("server", "read_limit_bytes"), _as_integer),
    f"{ENV_PREFIX}MATCHING_ALLOW_NOT_COMPILABLE": (("matching", "allow_not_compilable"), _as_flag),
    f"{ENV_PREFIX}MATCHING_INCLUDE_COMPILATION_OUTPUT": (
        ("matching", "include_compilation_output"),
        _as_flag,
    ),
    f"{ENV_PREFIX}PHASES_OVERRIDE_REPEATED": (("phases", "override_repeated"), _as_phase_names),
    f"{ENV_PREFIX}OBSERVABILITY_LOG_LEVEL": (("observability", "log_level"), lambda raw, _: raw.upper()),
    f"{ENV_PREFIX}OBSERVABILITY_LOG_DIR": (("observability", "log_dir"), _as_text),
    f"{ENV_PREFIX}OBSERVABILITY_LOG_TO_STDOUT": (("observability", "log_to_stdout"), _as_flag),
}


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config mapping.

    Without ``config_path`` the loader looks for ``ir_harness.toml`` in the working
    directory and silently falls back to defaults when it is absent; an explicit
    path that does not exist is an error.
    """

    path = _config_file(config_path)
    from_file = merge_config(default_config(), _read_toml(path, required=config_path is not None))
    effective = assert_valid_config(from_file)

    env = os.environ if environ is None else environ
    effective = merge_config(effective, _env_layer(env))
    effective = merge_config(effective, _override_layer(cli_overrides or {}))
    effective = assert_valid_config(effective)
    return normalize_paths(effective, base_dir=path.parent)


def load_settings(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> HarnessSettings:
    """``load_config`` followed by the typed ``HarnessSettings`` view."""

    return HarnessSettings.from_config(
        load_config(config_path, cli_overrides=cli_overrides, environ=environ)
    )


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve relative path fields against ``base_dir``."""

    normalized = merge_config({}, config)
    for section, key in PATH_FIELDS:
        table = normalized.get(section)
        if isinstance(table, dict) and isinstance(table.get(key), str):
            table[key] = _resolve_path(table[key], base_dir)
    return normalized


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Canonical single-line JSON of ``config``, suitable for a startup log event."""

    return json.dumps(config, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _config_file(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.is_file():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_layer(environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for env_name in sorted(_ENV_FIELDS):
        raw = environ.get(env_name)
        if raw is None:
            continue
        (section, key), coerce = _ENV_FIELDS[env_name]
        layer.setdefault(section, {})[key] = coerce(raw.strip(), env_name)
    return layer


def _override_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for dotted in sorted(overrides):
        parts = [part for part in dotted.split(".") if part]
        if not parts:
            raise ConfigLoadError(f"invalid override key {dotted!r}")
        cursor = layer
        for part in parts[:-1]:
            child = cursor.get(part)
            if not isinstance(child, dict):
                child = cursor[part] = {}
            cursor = child
        value = overrides[dotted]
        cursor[parts[-1]] = merge_config({}, value) if isinstance(value, Mapping) else value
    return layer


def _resolve_path(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "load_config",
    "load_settings",
    "normalize_paths",
]
