"""Unit tests for IR rules and VM-info activation predicates."""

from __future__ import annotations

import pytest

from ir_harness.domain.comparison import Comparison
from ir_harness.domain.phases import CompilePhase
from ir_harness.errors import ConstraintError, RuleLookupError
from ir_harness.matching.constraints import CountsConstraint, FailOnConstraint
from ir_harness.matching.rules import ActivationMode, ActivationPredicate, FlagCondition, IRRule, MethodRules
from ir_harness.network.messages import VmInfo
from ir_harness.network.protocol import parse_test_vm_stream


def _rule(rule_id: int = 1, **kwargs: object) -> IRRule:
    kwargs.setdefault("fail_on", (FailOnConstraint("LoadN", 1),))
    return IRRule(rule_id=rule_id, phase=kwargs.pop("phase", CompilePhase.PRINT_IDEAL), **kwargs)  # type: ignore[arg-type]


def test_vm_info_from_block_activates_matching_predicate() -> None:
    vm_info = parse_test_vm_stream(["[VM_INFO]", "UseZGC:true", "#END#"]).vm_info
    rule = _rule(activation=ActivationPredicate.of({"UseZGC": "true"}))

    assert rule.is_active(vm_info)


def test_string_conditions_compare_case_insensitively() -> None:
    assert FlagCondition("UseZGC", "TRUE").holds(VmInfo({"UseZGC": "true"}))
    assert not FlagCondition("UseZGC", "true").holds(VmInfo({"UseZGC": "false"}))


def test_missing_key_never_holds() -> None:
    assert not FlagCondition("UseZGC", "true").holds(VmInfo())
    predicate = ActivationPredicate.of({"UseZGC": "true"}, ActivationMode.NONE)
    assert predicate.evaluate(VmInfo())


def test_numeric_conditions_use_comparison() -> None:
    vm_info = VmInfo({"MaxVectorSize": "32", "Name": "abc"})
    assert FlagCondition("MaxVectorSize", ">= 16").holds(vm_info)
    assert not FlagCondition("MaxVectorSize", "< 16").holds(vm_info)
    assert not FlagCondition("Name", ">= 16").holds(vm_info)


@pytest.mark.parametrize("expected", ["= true", ">= x", "!"])
def test_malformed_comparison_is_rejected_at_construction(expected: str) -> None:
    with pytest.raises(ConstraintError, match="condition on 'UseZGC': invalid comparison"):
        FlagCondition("UseZGC", expected)
    with pytest.raises(ConstraintError):
        ActivationPredicate.of({"UseZGC": expected})


@pytest.mark.parametrize(
    ("mode", "expected"),
    [(ActivationMode.ALL, False), (ActivationMode.ANY, True), (ActivationMode.NONE, False)],
)
def test_activation_modes(mode: ActivationMode, expected: bool) -> None:
    predicate = ActivationPredicate.of({"UseZGC": "true", "UseAVX": "3"}, mode)
    assert predicate.evaluate(VmInfo({"UseZGC": "true", "UseAVX": "2"})) is expected


def test_rule_without_activation_is_always_active() -> None:
    assert _rule().is_active(VmInfo())


def test_rule_shape_is_validated() -> None:
    with pytest.raises(ConstraintError, match="DEFAULT"):
        _rule(phase=CompilePhase.DEFAULT)
    with pytest.raises(ConstraintError, match="at least one"):
        IRRule(rule_id=1, phase=CompilePhase.PRINT_IDEAL)
    with pytest.raises(ConstraintError, match="positive"):
        _rule(rule_id=0)


def test_rule_builds_constraint_attributes() -> None:
    rule = _rule(counts=(CountsConstraint("StoreI", 1, Comparison.parse("1")),))
    assert rule.fail_on_attribute.quick_pattern is not None
    assert len(rule.counts_attribute.constraints) == 1


def test_method_rules_lookup_by_id() -> None:
    rules = MethodRules.of("foo", [_rule(1), _rule(2)])
    assert rules.rule(2).rule_id == 2
    with pytest.raises(RuleLookupError, match="no IR rule with id 3"):
        rules.rule(3)
    with pytest.raises(ConstraintError, match="twice"):
        MethodRules.of("foo", [_rule(1), _rule(1)])
