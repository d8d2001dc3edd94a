"""
ir-harness: domain layer.

File: src/ir_harness/domain/__init__.py

Purpose
- Compile phase catalogue, integer comparisons and per-method phase dumps.

Non-functional requirements
- No IO; safe to import from every other layer.
"""

from ir_harness.domain.comparison import Comparator, Comparison
from ir_harness.domain.dumps import MethodDump, PhaseDump
from ir_harness.domain.phases import (
    DEFAULT_OVERRIDE_REPEATED,
    DEFAULT_PHASE_REGISTRY,
    IDEAL_PHASES,
    IDEAL_PHASES_BEFORE_MACRO_EXPANSION,
    IDEAL_PHASES_WITH_LOOPS,
    MACH_PHASES,
    CompilePhase,
    OutputKind,
    PhaseRegistry,
    phase_for_name,
)

__all__ = [
    "DEFAULT_OVERRIDE_REPEATED",
    "DEFAULT_PHASE_REGISTRY",
    "IDEAL_PHASES",
    "IDEAL_PHASES_BEFORE_MACRO_EXPANSION",
    "IDEAL_PHASES_WITH_LOOPS",
    "MACH_PHASES",
    "Comparator",
    "Comparison",
    "CompilePhase",
    "MethodDump",
    "OutputKind",
    "PhaseDump",
    "PhaseRegistry",
    "phase_for_name",
]
