"""Externally supplied IR rules and their VM-info activation predicates."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Final

from ir_harness.domain.comparison import Comparison
from ir_harness.domain.phases import CompilePhase
from ir_harness.errors import ConstraintError, RuleLookupError
from ir_harness.matching.constraints import Counts, CountsConstraint, FailOn, FailOnConstraint
from ir_harness.network.messages import VmInfo

_COMPARATOR_PREFIXES: Final[tuple[str, ...]] = ("<", ">", "=", "!")


class ActivationMode(StrEnum):
    ALL = "all"
    ANY = "any"
    NONE = "none"


@dataclass(frozen=True, slots=True)
class FlagCondition:
    """``key`` must have ``expected`` in VM-info.

    ``expected`` starting with a comparator (``">= 2"``) is compared numerically,
    anything else case-insensitively as a string. A missing key never holds.
    """

    key: str
    expected: str
    comparison: Comparison | None = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        expected = self.expected.strip()
        comparison: Comparison | None = None
        if expected.startswith(_COMPARATOR_PREFIXES):
            try:
                comparison = Comparison.parse(expected)
            except ValueError as exc:
                raise ConstraintError(f"condition on {self.key!r}: {exc}") from None
        object.__setattr__(self, "comparison", comparison)

    def holds(self, vm_info: VmInfo) -> bool:
        actual = vm_info.get(self.key)
        if actual is None:
            return False
        if self.comparison is not None:
            try:
                found = int(actual.strip())
            except ValueError:
                return False
            return self.comparison.compare(found)
        return actual.strip().lower() == self.expected.strip().lower()


@dataclass(frozen=True, slots=True)
class ActivationPredicate:
    conditions: tuple[FlagCondition, ...]
    mode: ActivationMode = ActivationMode.ALL

    @classmethod
    def of(cls, conditions: Mapping[str, str], mode: ActivationMode | str = ActivationMode.ALL) -> ActivationPredicate:
        return cls(
            conditions=tuple(FlagCondition(key, str(value)) for key, value in conditions.items()),
            mode=ActivationMode(mode),
        )

    def evaluate(self, vm_info: VmInfo) -> bool:
        results = (condition.holds(vm_info) for condition in self.conditions)
        match self.mode:
            case ActivationMode.ALL:
                return all(results)
            case ActivationMode.ANY:
                return any(results)
            case ActivationMode.NONE:
                return not any(results)


@dataclass(frozen=True, slots=True)
class IRRule:
    """One rule of a method: its phase plus FailOn and/or Counts constraints."""

    rule_id: int
    phase: CompilePhase
    fail_on: tuple[FailOnConstraint, ...] = ()
    counts: tuple[CountsConstraint, ...] = ()
    activation: ActivationPredicate | None = None
    fail_on_attribute: FailOn = field(init=False, repr=False, compare=False)
    counts_attribute: Counts = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if isinstance(self.rule_id, bool) or not isinstance(self.rule_id, int) or self.rule_id < 1:
            raise ConstraintError(f"rule id must be a positive integer, got {self.rule_id!r}")
        if self.phase is CompilePhase.DEFAULT:
            raise ConstraintError(f"rule {self.rule_id} must name a concrete phase, not DEFAULT")
        object.__setattr__(self, "fail_on", tuple(self.fail_on))
        object.__setattr__(self, "counts", tuple(self.counts))
        if not self.fail_on and not self.counts:
            raise ConstraintError(f"rule {self.rule_id} needs at least one FailOn or Counts constraint")
        object.__setattr__(self, "fail_on_attribute", FailOn(self.fail_on))
        object.__setattr__(self, "counts_attribute", Counts(self.counts))

    def is_active(self, vm_info: VmInfo) -> bool:
        return self.activation is None or self.activation.evaluate(vm_info)


@dataclass(frozen=True, slots=True)
class MethodRules:
    """All rules declared for one test method; ids are 1-based positions."""

    method_name: str
    rules: tuple[IRRule, ...] = ()
    allow_not_compilable: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "rules", tuple(self.rules))
        seen: set[int] = set()
        for rule in self.rules:
            if rule.rule_id in seen:
                raise ConstraintError(f"method {self.method_name!r} declares rule id {rule.rule_id} twice")
            seen.add(rule.rule_id)

    @classmethod
    def of(
        cls,
        method_name: str,
        rules: Sequence[IRRule] | Iterable[IRRule],
        *,
        allow_not_compilable: bool = False,
    ) -> MethodRules:
        return cls(method_name=method_name, rules=tuple(rules), allow_not_compilable=allow_not_compilable)

    def rule(self, rule_id: int) -> IRRule:
        for rule in self.rules:
            if rule.rule_id == rule_id:
                return rule
        raise RuleLookupError(f"method {self.method_name!r} has no IR rule with id {rule_id}")


__all__ = [
    "ActivationMode",
    "ActivationPredicate",
    "FlagCondition",
    "IRRule",
    "MethodRules",
]
