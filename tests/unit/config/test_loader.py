"""
ir-harness: unit tests for config loading

File: tests/unit/config/test_loader.py

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides, and
  CLI-style overrides.

What this test file should cover
- Precedence: overrides > env > file > defaults.
- Env coercion, including comma-separated phase lists.
- Path normalization relative to the config file.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from ir_harness.config.loader import ConfigLoadError, dump_effective_config, load_config, load_settings
from ir_harness.config.schema import ConfigValidationError


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_loader_precedence_default_file_env_cli(tmp_path: Path) -> None:
    config_path = tmp_path / "ir_harness.toml"
    _write_config(
        config_path,
        """
[server]
handshake_timeout_seconds = 4.0
""".strip(),
    )

    file_loaded = load_config(config_path, environ={})
    env_loaded = load_config(config_path, environ={"IR_HARNESS_SERVER_HANDSHAKE_TIMEOUT_SECONDS": "6"})
    cli_loaded = load_config(
        config_path,
        environ={"IR_HARNESS_SERVER_HANDSHAKE_TIMEOUT_SECONDS": "6"},
        cli_overrides={"server.handshake_timeout_seconds": 7.5},
    )

    assert file_loaded["server"]["handshake_timeout_seconds"] == 4.0
    assert env_loaded["server"]["handshake_timeout_seconds"] == 6.0
    assert cli_loaded["server"]["handshake_timeout_seconds"] == 7.5
    assert file_loaded["server"]["host"] == "127.0.0.1"


def test_missing_explicit_file_is_a_load_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="not found"):
        load_config(tmp_path / "absent.toml", environ={})


def test_invalid_toml_is_a_load_error(tmp_path: Path) -> None:
    config_path = tmp_path / "ir_harness.toml"
    _write_config(config_path, "[server\nhost = 1")
    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(config_path, environ={})


def test_env_coercion_for_bool_and_list(tmp_path: Path) -> None:
    config_path = tmp_path / "ir_harness.toml"
    _write_config(config_path, "")

    loaded = load_config(
        config_path,
        environ={
            "IR_HARNESS_MATCHING_ALLOW_NOT_COMPILABLE": "yes",
            "IR_HARNESS_PHASES_OVERRIDE_REPEATED": "PRINT_IDEAL, AFTER_PARSING",
        },
    )

    assert loaded["matching"]["allow_not_compilable"] is True
    assert loaded["phases"]["override_repeated"] == ["PRINT_IDEAL", "AFTER_PARSING"]


def test_bad_env_values_are_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "ir_harness.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigLoadError, match="must be a boolean"):
        load_config(config_path, environ={"IR_HARNESS_OBSERVABILITY_LOG_TO_STDOUT": "sometimes"})
    with pytest.raises(ConfigLoadError, match="must be an integer"):
        load_config(config_path, environ={"IR_HARNESS_SERVER_READ_LIMIT_BYTES": "big"})


def test_unknown_phase_in_file_is_a_validation_error(tmp_path: Path) -> None:
    config_path = tmp_path / "ir_harness.toml"
    _write_config(config_path, '[phases]\noverride_repeated = ["NOPE"]\n')

    with pytest.raises(ConfigValidationError) as excinfo:
        load_config(config_path, environ={})

    assert [issue.path for issue in excinfo.value.issues] == ["phases.override_repeated[0]"]


def test_log_dir_is_normalized_relative_to_config_file(tmp_path: Path) -> None:
    config_path = tmp_path / "conf" / "ir_harness.toml"
    _write_config(config_path, '[observability]\nlog_dir = "../run-logs"\n')

    loaded = load_config(config_path, environ={})

    assert loaded["observability"]["log_dir"] == (tmp_path / "run-logs").resolve().as_posix()


def test_effective_config_dump_is_deterministic(tmp_path: Path) -> None:
    config_path = tmp_path / "ir_harness.toml"
    _write_config(config_path, "")

    first = dump_effective_config(load_config(config_path, environ={}))
    second = dump_effective_config(load_config(config_path, environ={}))

    assert first == second
    assert '"handshake_timeout_seconds":10.0' in first


def test_load_settings_gives_typed_view(tmp_path: Path) -> None:
    config_path = tmp_path / "ir_harness.toml"
    _write_config(config_path, '[matching]\nallow_not_compilable = true\n')

    settings = load_settings(
        config_path,
        environ={"IR_HARNESS_PHASES_OVERRIDE_REPEATED": "print_ideal"},
        cli_overrides={"observability.log_level": "DEBUG"},
    )

    assert settings.allow_not_compilable is True
    assert settings.override_repeated == ("PRINT_IDEAL",)
    assert settings.log_level == "DEBUG"
    assert settings.log_dir == (tmp_path / "logs").resolve()
