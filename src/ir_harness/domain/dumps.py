"""
ir-harness: per-method compile phase dumps.

File: src/ir_harness/domain/dumps.py

Purpose
- Hold the raw lines captured for one method in each compile phase.

Functional requirements
- ``MethodDump.add`` keeps the first dump of a phase unless the phase registry
  marks the phase as override-on-repeat, in which case the newest dump wins.
- Looking up a phase that was never dumped yields ``None``.
- Report formatting strips every line and indents non-empty ones by two spaces.

Non-functional requirements
- Formatting is pure: formatting the same dump twice yields the same string.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field

from ir_harness.domain.phases import DEFAULT_PHASE_REGISTRY, CompilePhase, PhaseRegistry
from ir_harness.errors import check

_REPORT_INDENT = "  "


@dataclass(slots=True)
class PhaseDump:
    """Lines of one method in one compile phase."""

    phase: CompilePhase
    lines: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        check(self.phase is not CompilePhase.DEFAULT, "a phase dump cannot belong to DEFAULT")

    def add(self, line: str) -> None:
        self.lines.append(line)

    def is_empty(self) -> bool:
        return not self.lines

    def dump(self) -> str:
        return "\n".join(self.lines)

    def format_for_report(self) -> str:
        formatted: list[str] = []
        for line in self.lines:
            stripped = line.strip()
            formatted.append(f"{_REPORT_INDENT}{stripped}" if stripped else "")
        return "\n".join(formatted)


@dataclass(slots=True)
class MethodDump:
    """Ordered phase -> ``PhaseDump`` mapping for one test method."""

    method_name: str
    registry: PhaseRegistry = field(default=DEFAULT_PHASE_REGISTRY, repr=False, compare=False)
    _phase_dumps: dict[CompilePhase, PhaseDump] = field(default_factory=dict, repr=False)

    def add(self, phase_dump: PhaseDump) -> None:
        phase = phase_dump.phase
        if self.registry.overrides_repeated(phase) or phase not in self._phase_dumps:
            self._phase_dumps[phase] = phase_dump

    def phase_dump(self, phase: CompilePhase) -> PhaseDump | None:
        check(phase is not CompilePhase.DEFAULT, "cannot query for DEFAULT")
        return self._phase_dumps.get(phase)

    def has_phase(self, phase: CompilePhase) -> bool:
        return phase in self._phase_dumps

    @property
    def phases(self) -> tuple[CompilePhase, ...]:
        return tuple(self._phase_dumps)

    def __iter__(self) -> Iterator[PhaseDump]:
        return iter(self._phase_dumps.values())

    def __len__(self) -> int:
        return len(self._phase_dumps)


__all__ = ["MethodDump", "PhaseDump"]
