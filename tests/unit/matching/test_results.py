"""Unit tests for the result tree and the failure report."""

from __future__ import annotations

import pytest

from ir_harness.domain.comparison import Comparison
from ir_harness.domain.phases import CompilePhase
from ir_harness.errors import HarnessError
from ir_harness.matching.constraints import CountsConstraintFailure, FailOnConstraintFailure
from ir_harness.matching.results import (
    IRViolationError,
    MethodMatchResult,
    MethodStatus,
    RuleMatchResult,
    TestClassMatchResult,
)
from ir_harness.network.protocol import parse_compiler_dump_stream


def _failed_tree() -> TestClassMatchResult:
    method_dump = parse_compiler_dump_stream(
        "foo", ["COMPILE_PHASE: print_ideal", "  3  LoadN  ", "  5  LoadN", "#END#"]
    )
    fail_on_rule = RuleMatchResult(
        rule_id=1,
        phase=CompilePhase.PRINT_IDEAL,
        fail_on_failures=(FailOnConstraintFailure("LoadN", 1, ("3  LoadN", "5  LoadN")),),
    )
    counts_rule = RuleMatchResult(
        rule_id=2,
        phase=CompilePhase.PRINT_IDEAL,
        counts_failures=(
            CountsConstraintFailure("LoadN", 2, Comparison.parse(">= 3"), ("3  LoadN", "5  LoadN")),
        ),
    )
    missing_phase_rule = RuleMatchResult(rule_id=3, phase=CompilePhase.AFTER_PARSING, phase_not_compiled=True)
    passing_rule = RuleMatchResult(rule_id=4, phase=CompilePhase.PRINT_IDEAL)
    return TestClassMatchResult(
        (
            MethodMatchResult(
                "foo",
                rule_results=(fail_on_rule, counts_rule, missing_phase_rule, passing_rule),
                applicable_rule_count=4,
                method_dump=method_dump,
            ),
            MethodMatchResult("bar", status=MethodStatus.NOT_COMPILED, applicable_rule_count=2),
            MethodMatchResult("baz", status=MethodStatus.NOT_COMPILABLE, applicable_rule_count=1),
        )
    )


def test_failure_counts() -> None:
    tree = _failed_tree()

    assert tree.failed
    assert [method.method_name for method in tree.failed_methods] == ["foo", "bar"]
    assert tree.failed_rule_count == 5
    assert tree.not_compilable_methods == ("baz",)


def test_report_names_method_rule_phase_constraint_and_lines() -> None:
    message = _failed_tree().build_failure_message(include_compilation_output=False)

    assert message.startswith("One or more IR rules failed:")
    assert "Failed IR Rules (5) of Methods (2)" in message
    assert '1) Method "foo" - [Failed IR rules: 3]:' in message
    assert "* IR rule 1:" in message
    assert '> Phase "PrintIdeal":' in message
    assert "- failOn: Graph contains forbidden nodes:" in message
    assert '* Constraint 1: "LoadN"' in message
    assert "- Matched forbidden nodes (2):" in message
    assert "* 3  LoadN" in message
    assert "- Failed comparison: [found] 2 >= 3 [given]" in message
    assert '> Phase "After Parsing":' in message
    assert "NO compilation output found for this phase" in message
    assert '2) Method "bar" - [Failed IR rules: 2]:' in message
    assert "Method was not compiled" in message
    assert "baz" not in message
    assert "Compilation output" not in message


def test_report_includes_compilation_output_of_failed_phases() -> None:
    message = _failed_tree().build_failure_message()

    assert "Compilation output of failed methods (2)" in message
    assert '> Method "foo":' in message
    assert "  3  LoadN\n  5  LoadN" in message
    assert '> Method "bar": <no compilation output>' in message


def test_report_is_deterministic() -> None:
    tree = _failed_tree()
    assert tree.build_failure_message() == tree.build_failure_message()


def test_raise_if_failed_carries_tree_and_message() -> None:
    tree = _failed_tree()
    with pytest.raises(IRViolationError) as excinfo:
        tree.raise_if_failed()

    assert excinfo.value.result is tree
    assert isinstance(excinfo.value, HarnessError)
    assert "Failed IR Rules (5)" in str(excinfo.value)


def test_passing_tree_does_not_raise() -> None:
    passing = MethodMatchResult("foo", rule_results=(RuleMatchResult(1, CompilePhase.PRINT_IDEAL),))
    tree = TestClassMatchResult((passing,))
    tree.raise_if_failed()
    assert tree.build_failure_message() == ""
