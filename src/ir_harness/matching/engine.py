"""
ir-harness: rule matching engine.

File: src/ir_harness/matching/engine.py

Purpose
- Evaluate the externally supplied IR rules of every method under test against
  the phase dumps collected in one ``TestVmData``.

Functional requirements
- Methods are processed sorted by name. A method without applicable rule ids is
  not under test and is skipped.
- Applicable ids naming an unknown method or rule raise ``RuleLookupError``.
- Rules whose activation predicate is false against VM-info are dropped; a method
  left without active rules is not under test either.
- A method without any dump is "not compiled", or "not compilable" when the run
  or the method allows it.
- Rules are grouped by phase in catalogue order, keeping rule order within a
  group. A phase missing from the dump fails each of its rules with "phase not
  compiled" and evaluates no regex.

Non-functional requirements
- Matching is read-only over ``TestVmData`` and deterministic.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from ir_harness.domain.dumps import MethodDump
from ir_harness.domain.phases import DEFAULT_PHASE_REGISTRY, CompilePhase, PhaseRegistry
from ir_harness.errors import RuleLookupError
from ir_harness.matching.results import (
    MethodMatchResult,
    MethodStatus,
    RuleMatchResult,
    TestClassMatchResult,
)
from ir_harness.matching.rules import IRRule, MethodRules
from ir_harness.network.aggregator import TestVmData
from ir_harness.network.messages import IrRuleIds


class IRMatcher:
    """Match ``MethodRules`` against one run's collected dumps."""

    def __init__(
        self,
        data: TestVmData,
        rules: Mapping[str, MethodRules],
        *,
        registry: PhaseRegistry = DEFAULT_PHASE_REGISTRY,
        logger: Any | None = None,
    ) -> None:
        self._data = data
        self._rules = rules
        self._registry = registry
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def match(self) -> TestClassMatchResult:
        applicable = self._data.applicable_rules
        if applicable.has_no_methods():
            self._logger.info("ir_matching_skipped", reason="no_applicable_rules")
            return TestClassMatchResult()

        method_results: list[MethodMatchResult] = []
        for method_name in applicable.method_names():
            rule_ids = applicable.rule_ids(method_name)
            if rule_ids.is_empty():
                continue
            method_result = self._match_method(method_name, rule_ids)
            if method_result is not None:
                method_results.append(method_result)

        result = TestClassMatchResult(tuple(method_results))
        self._logger.info(
            "ir_matching_finished",
            methods=len(method_results),
            failed_methods=len(result.failed_methods),
            failed_rules=result.failed_rule_count,
            not_compilable=list(result.not_compilable_methods),
        )
        return result

    def _resolve_rules(self, method_name: str, rule_ids: IrRuleIds) -> tuple[MethodRules, list[IRRule]]:
        method_rules = self._rules.get(method_name)
        if method_rules is None:
            raise RuleLookupError(
                f"no IR rules supplied for method {method_name!r} (applicable ids: {list(rule_ids)})"
            )
        return method_rules, [method_rules.rule(rule_id) for rule_id in rule_ids]

    def _match_method(self, method_name: str, rule_ids: IrRuleIds) -> MethodMatchResult | None:
        method_rules, rules = self._resolve_rules(method_name, rule_ids)
        vm_info = self._data.vm_info
        active = [rule for rule in rules if rule.is_active(vm_info)]
        inactive = [rule.rule_id for rule in rules if not rule.is_active(vm_info)]
        if inactive:
            self._logger.debug("ir_rules_inactive", method=method_name, rule_ids=inactive)
        if not active:
            return None

        method_dump = self._data.method_dump(method_name)
        if method_dump is None or len(method_dump) == 0:
            allow = self._data.allow_not_compilable or method_rules.allow_not_compilable
            status = MethodStatus.NOT_COMPILABLE if allow else MethodStatus.NOT_COMPILED
            self._logger.info("ir_method_without_compilation", method=method_name, status=status.value)
            return MethodMatchResult(
                method_name=method_name, status=status, applicable_rule_count=len(active), method_dump=method_dump
            )

        rule_results = [
            self._match_rule(rule, method_dump)
            for phase_rules in self._group_by_phase(active).values()
            for rule in phase_rules
        ]
        return MethodMatchResult(
            method_name=method_name,
            status=MethodStatus.MATCHED,
            rule_results=tuple(rule_results),
            applicable_rule_count=len(active),
            method_dump=method_dump,
        )

    def _group_by_phase(self, rules: list[IRRule]) -> dict[CompilePhase, list[IRRule]]:
        grouped: dict[CompilePhase, list[IRRule]] = {}
        for rule in sorted(rules, key=lambda rule: self._registry.catalogue_position(rule.phase)):
            grouped.setdefault(rule.phase, []).append(rule)
        return grouped

    def _match_rule(self, rule: IRRule, method_dump: MethodDump) -> RuleMatchResult:
        phase_dump = method_dump.phase_dump(rule.phase)
        if phase_dump is None or phase_dump.is_empty():
            return RuleMatchResult(rule_id=rule.rule_id, phase=rule.phase, phase_not_compiled=True)
        text = phase_dump.dump()
        return RuleMatchResult(
            rule_id=rule.rule_id,
            phase=rule.phase,
            fail_on_failures=rule.fail_on_attribute.apply(text) if rule.fail_on_attribute else (),
            counts_failures=rule.counts_attribute.apply(text) if rule.counts_attribute else (),
        )


def match_ir_rules(
    data: TestVmData,
    rules: Mapping[str, MethodRules],
    *,
    registry: PhaseRegistry = DEFAULT_PHASE_REGISTRY,
    logger: Any | None = None,
) -> TestClassMatchResult:
    """Convenience wrapper around ``IRMatcher(...).match()``."""

    return IRMatcher(data, rules, registry=registry, logger=logger).match()


__all__ = ["IRMatcher", "match_ir_rules"]
