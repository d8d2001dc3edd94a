"""Typed messages received on the orchestrator channel."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from ir_harness.constants import NO_RULE_APPLIED


@dataclass(frozen=True, slots=True)
class VmInfo:
    """Key/value facts about the test VM (flags, CPU features, ...)."""

    values: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self.values

    def __len__(self) -> int:
        return len(self.values)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VmInfo):
            return NotImplemented
        return dict(self.values) == dict(other.values)

    def __hash__(self) -> int:
        return hash(tuple(sorted(self.values.items())))


@dataclass(frozen=True, slots=True)
class IrRuleIds:
    """Ordered, de-duplicated 1-based rule ids applicable to one method."""

    ids: tuple[int, ...] = ()

    @classmethod
    def of(cls, ids: Iterable[int]) -> IrRuleIds:
        ordered: list[int] = []
        for rule_id in ids:
            if rule_id == NO_RULE_APPLIED or rule_id in ordered:
                continue
            ordered.append(rule_id)
        return cls(tuple(ordered))

    def is_empty(self) -> bool:
        return not self.ids

    def __iter__(self) -> Iterator[int]:
        return iter(self.ids)

    def __len__(self) -> int:
        return len(self.ids)


_EMPTY_RULE_IDS = IrRuleIds()


@dataclass(frozen=True, slots=True)
class ApplicableIRRules:
    """Method name -> applicable rule ids for this run."""

    methods: Mapping[str, IrRuleIds] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "methods", MappingProxyType(dict(self.methods)))

    def rule_ids(self, method_name: str) -> IrRuleIds:
        return self.methods.get(method_name, _EMPTY_RULE_IDS)

    def has_no_methods(self) -> bool:
        return not self.methods

    def method_names(self) -> tuple[str, ...]:
        return tuple(sorted(self.methods))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ApplicableIRRules):
            return NotImplemented
        return dict(self.methods) == dict(other.methods)

    def __hash__(self) -> int:
        return hash(tuple(sorted(self.methods.items())))


@dataclass(frozen=True, slots=True)
class TestVmMessages:
    """Everything the orchestrator connection sent, grouped by channel."""

    __test__ = False

    stdout_lines: tuple[str, ...] = ()
    executed_tests: tuple[str, ...] = ()
    method_times: tuple[str, ...] = ()
    raw_output: tuple[str, ...] = ()
    vm_info: VmInfo = field(default_factory=VmInfo)
    applicable_rules: ApplicableIRRules = field(default_factory=ApplicableIRRules)

    def log_summary(self, logger: Any) -> None:
        """Emit the side channels as structured events (diagnostics only)."""

        if self.stdout_lines:
            logger.info("test_vm_stdout", lines=list(self.stdout_lines))
        if self.executed_tests:
            logger.info("test_vm_executed_tests", tests=list(self.executed_tests))
        if self.method_times:
            logger.info("test_vm_method_times", times=list(self.method_times))
        if self.raw_output:
            logger.debug("test_vm_raw_output", lines=list(self.raw_output))
        logger.debug(
            "test_vm_applicable_rules",
            rules={name: list(ids) for name, ids in sorted(self.applicable_rules.methods.items())},
            vm_info_keys=len(self.vm_info),
        )


__all__ = ["ApplicableIRRules", "IrRuleIds", "TestVmMessages", "VmInfo"]
