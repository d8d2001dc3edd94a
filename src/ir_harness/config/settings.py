"""Typed view over a validated config mapping."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ir_harness.config.schema import assert_valid_config, default_config, merge_config
from ir_harness.domain.phases import PhaseRegistry


@dataclass(frozen=True, slots=True)
class HarnessSettings:
    host: str
    handshake_timeout_seconds: float
    read_limit_bytes: int
    allow_not_compilable: bool
    include_compilation_output: bool
    override_repeated: tuple[str, ...]
    log_level: str
    log_dir: Path
    log_to_stdout: bool

    @classmethod
    def from_config(cls, config: Mapping[str, Any] | None = None) -> HarnessSettings:
        """Build settings from a (possibly partial) config mapping layered over the defaults."""

        validated = assert_valid_config(merge_config(default_config(), config or {}))
        server = validated["server"]
        matching = validated["matching"]
        observability = validated["observability"]
        return cls(
            host=server["host"],
            handshake_timeout_seconds=server["handshake_timeout_seconds"],
            read_limit_bytes=server["read_limit_bytes"],
            allow_not_compilable=matching["allow_not_compilable"],
            include_compilation_output=matching["include_compilation_output"],
            override_repeated=tuple(validated["phases"]["override_repeated"]),
            log_level=observability["log_level"],
            log_dir=Path(observability["log_dir"]),
            log_to_stdout=observability["log_to_stdout"],
        )

    def phase_registry(self) -> PhaseRegistry:
        return PhaseRegistry.from_names(self.override_repeated)

    def observability_config(self) -> dict[str, object]:
        """The ``[observability]`` mapping accepted by ``setup_logging``."""

        return {
            "log_level": self.log_level,
            "log_dir": str(self.log_dir),
            "log_to_stdout": self.log_to_stdout,
        }


__all__ = ["HarnessSettings"]
