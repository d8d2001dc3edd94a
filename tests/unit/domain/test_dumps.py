"""Unit tests for phase and method dumps."""

from __future__ import annotations

import pytest

from ir_harness.domain.dumps import MethodDump, PhaseDump
from ir_harness.domain.phases import CompilePhase, PhaseRegistry
from ir_harness.errors import InternalCheckError


def _phase_dump(phase: CompilePhase, *lines: str) -> PhaseDump:
    return PhaseDump(phase, list(lines))


def test_phase_dump_joins_lines() -> None:
    dump = _phase_dump(CompilePhase.PRINT_IDEAL, "3 LoadN", "5 LoadN")
    assert dump.dump() == "3 LoadN\n5 LoadN"
    assert not dump.is_empty()
    assert PhaseDump(CompilePhase.PRINT_IDEAL).is_empty()


def test_phase_dump_cannot_belong_to_default() -> None:
    with pytest.raises(InternalCheckError):
        PhaseDump(CompilePhase.DEFAULT)


def test_format_for_report_strips_and_indents_and_is_stable() -> None:
    dump = _phase_dump(CompilePhase.PRINT_IDEAL, "   3  LoadN  ", "", "\t7 StoreI")

    first = dump.format_for_report()
    second = dump.format_for_report()

    assert first == "  3  LoadN\n\n  7 StoreI"
    assert first == second


def test_first_dump_wins_for_non_override_phase() -> None:
    method = MethodDump("foo")
    method.add(_phase_dump(CompilePhase.AFTER_PARSING, "first"))
    method.add(_phase_dump(CompilePhase.AFTER_PARSING, "second"))

    phase_dump = method.phase_dump(CompilePhase.AFTER_PARSING)
    assert phase_dump is not None
    assert phase_dump.lines == ["first"]
    assert len(method) == 1


def test_last_dump_wins_for_override_phase() -> None:
    method = MethodDump("foo")
    method.add(_phase_dump(CompilePhase.PRINT_IDEAL, "first"))
    method.add(_phase_dump(CompilePhase.PRINT_IDEAL, "second"))

    phase_dump = method.phase_dump(CompilePhase.PRINT_IDEAL)
    assert phase_dump is not None
    assert phase_dump.lines == ["second"]


def test_repeat_policy_comes_from_registry() -> None:
    method = MethodDump("foo", PhaseRegistry([CompilePhase.AFTER_PARSING]))
    method.add(_phase_dump(CompilePhase.PRINT_IDEAL, "first"))
    method.add(_phase_dump(CompilePhase.PRINT_IDEAL, "second"))
    method.add(_phase_dump(CompilePhase.AFTER_PARSING, "a"))
    method.add(_phase_dump(CompilePhase.AFTER_PARSING, "b"))

    assert method.phase_dump(CompilePhase.PRINT_IDEAL).lines == ["first"]  # type: ignore[union-attr]
    assert method.phase_dump(CompilePhase.AFTER_PARSING).lines == ["b"]  # type: ignore[union-attr]
    assert method.phases == (CompilePhase.PRINT_IDEAL, CompilePhase.AFTER_PARSING)


def test_missing_phase_is_none_and_default_query_is_internal_error() -> None:
    method = MethodDump("foo")
    assert method.phase_dump(CompilePhase.FINAL_CODE) is None
    assert not method.has_phase(CompilePhase.FINAL_CODE)
    with pytest.raises(InternalCheckError, match="DEFAULT"):
        method.phase_dump(CompilePhase.DEFAULT)
