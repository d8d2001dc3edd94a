"""Compile phase catalogue and the registry that resolves wire names."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum, StrEnum
from typing import Final

from ir_harness.errors import UnknownPhaseError


class OutputKind(StrEnum):
    """Kind of text a phase dump contains."""

    IR = "ir"
    MACHINE = "machine"
    ASSEMBLY = "assembly"
    DEFAULT = "default"


class CompilePhase(Enum):
    """Compile phases whose snapshot may be captured and matched against.

    The member name is the identifier used on the wire (``print_ideal`` for
    ``PRINT_IDEAL``); the value carries the display name and output kind.
    """

    DEFAULT = ("PrintIdeal and PrintOptoAssembly", OutputKind.DEFAULT)
    PRINT_IDEAL = ("PrintIdeal", OutputKind.IR)
    PRINT_OPTO_ASSEMBLY = ("PrintOptoAssembly", OutputKind.ASSEMBLY)

    BEFORE_STRINGOPTS = ("Before StringOpts", OutputKind.IR)
    AFTER_STRINGOPTS = ("After StringOpts", OutputKind.IR)
    BEFORE_REMOVEUSELESS = ("Before RemoveUseless", OutputKind.IR)
    AFTER_PARSING = ("After Parsing", OutputKind.IR)
    ITER_GVN1 = ("Iter GVN 1", OutputKind.IR)
    INCREMENTAL_INLINE_STEP = ("Incremental Inline Step", OutputKind.IR)
    INCREMENTAL_INLINE_CLEANUP = ("Incremental Inline Cleanup", OutputKind.IR)
    INCREMENTAL_INLINE = ("Incremental Inline", OutputKind.IR)
    INCREMENTAL_BOXING_INLINE = ("Incremental Boxing Inline", OutputKind.IR)
    EXPAND_VUNBOX = ("Expand VectorUnbox", OutputKind.IR)
    SCALARIZE_VBOX = ("Scalarize VectorBox", OutputKind.IR)
    INLINE_VECTOR_REBOX = ("Inline Vector Rebox Calls", OutputKind.IR)
    EXPAND_VBOX = ("Expand VectorBox", OutputKind.IR)
    ELIMINATE_VBOX_ALLOC = ("Eliminate VectorBoxAllocate", OutputKind.IR)
    ITER_GVN_BEFORE_EA = ("Iter GVN before EA", OutputKind.IR)
    ITER_GVN_AFTER_VECTOR = ("Iter GVN after vector box elimination", OutputKind.IR)
    BEFORE_BEAUTIFY_LOOPS = ("Before beautify loops", OutputKind.IR)
    AFTER_BEAUTIFY_LOOPS = ("After beautify loops", OutputKind.IR)
    BEFORE_CLOOPS = ("Before CountedLoop", OutputKind.IR)
    AFTER_CLOOPS = ("After CountedLoop", OutputKind.IR)
    PHASEIDEAL_BEFORE_EA = ("PhaseIdealLoop before EA", OutputKind.IR)
    AFTER_EA = ("After Escape Analysis", OutputKind.IR)
    ITER_GVN_AFTER_EA = ("Iter GVN after EA", OutputKind.IR)
    ITER_GVN_AFTER_ELIMINATION = ("Iter GVN after eliminating allocations and locks", OutputKind.IR)
    PHASEIDEALLOOP1 = ("PhaseIdealLoop 1", OutputKind.IR)
    PHASEIDEALLOOP2 = ("PhaseIdealLoop 2", OutputKind.IR)
    PHASEIDEALLOOP3 = ("PhaseIdealLoop 3", OutputKind.IR)
    CCP1 = ("PhaseCCP 1", OutputKind.IR)
    ITER_GVN2 = ("Iter GVN 2", OutputKind.IR)
    PHASEIDEALLOOP_ITERATIONS = ("PhaseIdealLoop iterations", OutputKind.IR)
    MACRO_EXPANSION = ("Macro expand", OutputKind.IR)
    BARRIER_EXPANSION = ("Barrier expand", OutputKind.IR)
    OPTIMIZE_FINISHED = ("Optimize finished", OutputKind.IR)
    BEFORE_MATCHING = ("Before matching", OutputKind.IR)
    MATCHING = ("After matching", OutputKind.MACHINE)
    GLOBAL_CODE_MOTION = ("Global code motion", OutputKind.MACHINE)
    FINAL_CODE = ("Final Code", OutputKind.MACHINE)
    END = ("End", OutputKind.IR)

    def __init__(self, display_name: str, output_kind: OutputKind) -> None:
        self.display_name = display_name
        self.output_kind = output_kind

    @property
    def wire_name(self) -> str:
        if self is CompilePhase.PRINT_IDEAL:
            return "print_ideal"
        return self.name

    def __str__(self) -> str:
        return self.display_name


PHASES_BY_WIRE_NAME: Final[Mapping[str, CompilePhase]] = {
    phase.wire_name: phase for phase in CompilePhase
}

IDEAL_PHASES: Final[tuple[CompilePhase, ...]] = tuple(
    phase for phase in CompilePhase if phase.output_kind is OutputKind.IR
)
MACH_PHASES: Final[tuple[CompilePhase, ...]] = tuple(
    phase for phase in CompilePhase if phase.output_kind is OutputKind.MACHINE
)

# Phases that only exist when loop optimizations ran.
IDEAL_PHASES_WITH_LOOPS: Final[tuple[CompilePhase, ...]] = (
    CompilePhase.AFTER_BEAUTIFY_LOOPS,
    CompilePhase.BEFORE_CLOOPS,
    CompilePhase.AFTER_CLOOPS,
    CompilePhase.PHASEIDEAL_BEFORE_EA,
    CompilePhase.AFTER_EA,
    CompilePhase.ITER_GVN_AFTER_EA,
    CompilePhase.ITER_GVN_AFTER_ELIMINATION,
    CompilePhase.PHASEIDEALLOOP1,
    CompilePhase.PHASEIDEALLOOP2,
    CompilePhase.PHASEIDEALLOOP3,
    CompilePhase.CCP1,
    CompilePhase.ITER_GVN2,
    CompilePhase.PHASEIDEALLOOP_ITERATIONS,
    CompilePhase.MACRO_EXPANSION,
    CompilePhase.BARRIER_EXPANSION,
    CompilePhase.OPTIMIZE_FINISHED,
)


def _catalogue_slice(first: CompilePhase, last: CompilePhase) -> tuple[CompilePhase, ...]:
    members = list(CompilePhase)
    return tuple(members[members.index(first) : members.index(last) + 1])


# Every optimization phase from string opts up to (excluding) macro expansion.
IDEAL_PHASES_BEFORE_MACRO_EXPANSION: Final[tuple[CompilePhase, ...]] = _catalogue_slice(
    CompilePhase.BEFORE_STRINGOPTS, CompilePhase.PHASEIDEALLOOP_ITERATIONS
)

# Phases that may be dumped several times per compilation; by default the last
# snapshot replaces earlier ones. Overridable through ``[phases] override_repeated``.
DEFAULT_OVERRIDE_REPEATED: Final[frozenset[CompilePhase]] = frozenset(
    {
        CompilePhase.PRINT_IDEAL,
        CompilePhase.PRINT_OPTO_ASSEMBLY,
        CompilePhase.INCREMENTAL_INLINE_STEP,
        CompilePhase.INCREMENTAL_INLINE_CLEANUP,
        CompilePhase.INCREMENTAL_INLINE,
        CompilePhase.INCREMENTAL_BOXING_INLINE,
        CompilePhase.BEFORE_BEAUTIFY_LOOPS,
        CompilePhase.AFTER_BEAUTIFY_LOOPS,
        CompilePhase.BEFORE_CLOOPS,
        CompilePhase.AFTER_CLOOPS,
        CompilePhase.PHASEIDEALLOOP_ITERATIONS,
    }
)


def phase_for_name(phase_name: str) -> CompilePhase:
    """Resolve a wire-format phase name, raising ``UnknownPhaseError`` when unknown."""

    phase = PHASES_BY_WIRE_NAME.get(phase_name)
    if phase is None:
        raise UnknownPhaseError(phase_name)
    return phase


class PhaseRegistry:
    """Phase catalogue plus the per-phase repeat policy used while parsing dumps."""

    __slots__ = ("_override_repeated",)

    def __init__(self, override_repeated: Iterable[CompilePhase] = DEFAULT_OVERRIDE_REPEATED) -> None:
        phases = frozenset(override_repeated)
        if CompilePhase.DEFAULT in phases:
            raise ValueError("DEFAULT is not a dumpable phase")
        self._override_repeated = phases

    @classmethod
    def from_names(cls, names: Iterable[str]) -> PhaseRegistry:
        """Build a registry from member names (as written in config files)."""

        phases: list[CompilePhase] = []
        for name in names:
            try:
                phases.append(CompilePhase[name])
            except KeyError:
                raise UnknownPhaseError(name) from None
        return cls(phases)

    def for_name(self, phase_name: str) -> CompilePhase:
        return phase_for_name(phase_name)

    def overrides_repeated(self, phase: CompilePhase) -> bool:
        return phase in self._override_repeated

    @property
    def override_repeated(self) -> frozenset[CompilePhase]:
        return self._override_repeated

    @property
    def phases(self) -> tuple[CompilePhase, ...]:
        return tuple(CompilePhase)

    @property
    def ideal_phases(self) -> tuple[CompilePhase, ...]:
        return IDEAL_PHASES

    @property
    def mach_phases(self) -> tuple[CompilePhase, ...]:
        return MACH_PHASES

    @property
    def loop_phases(self) -> tuple[CompilePhase, ...]:
        return IDEAL_PHASES_WITH_LOOPS

    @property
    def phases_before_macro_expansion(self) -> tuple[CompilePhase, ...]:
        return IDEAL_PHASES_BEFORE_MACRO_EXPANSION

    def catalogue_position(self, phase: CompilePhase) -> int:
        return _CATALOGUE_ORDER[phase]


_CATALOGUE_ORDER: Final[Mapping[CompilePhase, int]] = {
    phase: position for position, phase in enumerate(CompilePhase)
}

DEFAULT_PHASE_REGISTRY: Final[PhaseRegistry] = PhaseRegistry()

__all__ = [
    "DEFAULT_OVERRIDE_REPEATED",
    "DEFAULT_PHASE_REGISTRY",
    "IDEAL_PHASES",
    "IDEAL_PHASES_BEFORE_MACRO_EXPANSION",
    "IDEAL_PHASES_WITH_LOOPS",
    "MACH_PHASES",
    "PHASES_BY_WIRE_NAME",
    "CompilePhase",
    "OutputKind",
    "PhaseRegistry",
    "phase_for_name",
]
