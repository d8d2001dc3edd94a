"""
ir-harness: match result tree and failure report.

File: src/ir_harness/matching/results.py

Purpose
- Compose matching outcomes bottom-up (rule -> method -> test class) and render
  one human-readable report for all failures of a run.

Functional requirements
- A method without any compiled dump is "not compiled" (a failure) or
  "not compilable" (tolerated).
- A rule whose phase was never dumped fails with "phase not compiled" and
  carries no constraint failures.
- The report names method, rule id, phase, constraint index, pattern, expected
  vs. found count and the matched lines verbatim, optionally followed by the
  compilation output of every failed phase.

Non-functional requirements
- Building the report is pure; the same tree always renders the same text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from ir_harness.domain.dumps import MethodDump
from ir_harness.domain.phases import CompilePhase
from ir_harness.errors import HarnessError
from ir_harness.matching.constraints import CountsConstraintFailure, FailOnConstraintFailure

_INDENT = "  "


def _indent(level: int) -> str:
    return _INDENT * level


class MethodStatus(StrEnum):
    MATCHED = "matched"
    NOT_COMPILED = "not_compiled"
    NOT_COMPILABLE = "not_compilable"


@dataclass(frozen=True, slots=True)
class RuleMatchResult:
    """Outcome of one IR rule on its phase dump."""

    rule_id: int
    phase: CompilePhase
    fail_on_failures: tuple[FailOnConstraintFailure, ...] = ()
    counts_failures: tuple[CountsConstraintFailure, ...] = ()
    phase_not_compiled: bool = False

    @property
    def failed(self) -> bool:
        return self.phase_not_compiled or bool(self.fail_on_failures) or bool(self.counts_failures)

    def build_failure_message(self, level: int) -> str:
        lines = [
            f"{_indent(level)}* IR rule {self.rule_id}:",
            f'{_indent(level + 1)}> Phase "{self.phase.display_name}":',
        ]
        body = level + 2
        if self.phase_not_compiled:
            lines.append(
                f"{_indent(body)}- NO compilation output found for this phase! Make sure this phase is "
                "emitted or remove it from the rule."
            )
            return "\n".join(lines)
        if self.fail_on_failures:
            lines.append(f"{_indent(body)}- failOn: Graph contains forbidden nodes:")
            for failure in self.fail_on_failures:
                lines.append(f'{_indent(body + 1)}* Constraint {failure.index}: "{failure.regex}"')
                lines.extend(_matched_lines_block(failure.matched_lines, body + 2, "Matched forbidden node"))
        if self.counts_failures:
            lines.append(f"{_indent(body)}- counts: Graph contains wrong number of nodes:")
            for failure in self.counts_failures:
                comparison = failure.comparison
                lines.append(f'{_indent(body + 1)}* Constraint {failure.index}: "{failure.regex}"')
                lines.append(
                    f"{_indent(body + 2)}- Failed comparison: [found] {failure.found_count} "
                    f"{comparison.comparator.value} {comparison.given} [given]"
                )
                if failure.matched_lines:
                    lines.extend(_matched_lines_block(failure.matched_lines, body + 2, "Matched node"))
                else:
                    lines.append(f"{_indent(body + 2)}- No nodes matched!")
        return "\n".join(lines)


def _matched_lines_block(matched: tuple[str, ...], level: int, label: str) -> list[str]:
    header = f"{label}s ({len(matched)}):" if len(matched) > 1 else f"{label}:"
    return [f"{_indent(level)}- {header}", *(f"{_indent(level + 1)}* {line}" for line in matched)]


@dataclass(frozen=True, slots=True)
class MethodMatchResult:
    method_name: str
    status: MethodStatus = MethodStatus.MATCHED
    rule_results: tuple[RuleMatchResult, ...] = ()
    applicable_rule_count: int = 0
    method_dump: MethodDump | None = field(default=None, repr=False, compare=False)

    @property
    def failed(self) -> bool:
        if self.status is MethodStatus.NOT_COMPILED:
            return True
        return any(result.failed for result in self.rule_results)

    @property
    def failed_rules(self) -> tuple[RuleMatchResult, ...]:
        return tuple(result for result in self.rule_results if result.failed)

    @property
    def failed_rule_count(self) -> int:
        if self.status is MethodStatus.NOT_COMPILED:
            return self.applicable_rule_count
        return len(self.failed_rules)

    def build_failure_message(self, number: int) -> str:
        lines = [f'{number}) Method "{self.method_name}" - [Failed IR rules: {self.failed_rule_count}]:']
        if self.status is MethodStatus.NOT_COMPILED:
            lines.append(
                f"{_indent(2)}* Method was not compiled. Make sure the test triggers a compilation "
                "of this method or allow it to be not compilable."
            )
        else:
            lines.extend(result.build_failure_message(2) for result in self.failed_rules)
        return "\n".join(lines)

    def build_compilation_output(self) -> str:
        if self.method_dump is None:
            return f'> Method "{self.method_name}": <no compilation output>'
        sections = [f'> Method "{self.method_name}":']
        printed: set[CompilePhase] = set()
        for result in self.failed_rules:
            if result.phase in printed:
                continue
            printed.add(result.phase)
            phase_dump = self.method_dump.phase_dump(result.phase)
            sections.append(f'{_INDENT}> Phase "{result.phase.display_name}":')
            sections.append(phase_dump.format_for_report() if phase_dump is not None else f"{_INDENT}<not compiled>")
        return "\n".join(sections)


@dataclass(frozen=True, slots=True)
class TestClassMatchResult:
    """Root of the result tree for one run."""

    __test__ = False

    method_results: tuple[MethodMatchResult, ...] = ()

    @property
    def failed(self) -> bool:
        return any(result.failed for result in self.method_results)

    @property
    def failed_methods(self) -> tuple[MethodMatchResult, ...]:
        return tuple(result for result in self.method_results if result.failed)

    @property
    def not_compilable_methods(self) -> tuple[str, ...]:
        return tuple(
            result.method_name for result in self.method_results if result.status is MethodStatus.NOT_COMPILABLE
        )

    @property
    def failed_rule_count(self) -> int:
        return sum(result.failed_rule_count for result in self.failed_methods)

    def build_failure_message(self, *, include_compilation_output: bool = True) -> str:
        failed = self.failed_methods
        if not failed:
            return ""
        title = f"Failed IR Rules ({self.failed_rule_count}) of Methods ({len(failed)})"
        parts = [
            "One or more IR rules failed:",
            "",
            title,
            "-" * len(title),
            *(result.build_failure_message(number) for number, result in enumerate(failed, start=1)),
        ]
        if include_compilation_output:
            heading = f"Compilation output of failed methods ({len(failed)})"
            parts.extend(["", heading, "-" * len(heading)])
            parts.extend(result.build_compilation_output() for result in failed)
        return "\n".join(parts) + "\n"

    def raise_if_failed(self, *, include_compilation_output: bool = True) -> None:
        if self.failed:
            raise IRViolationError(
                self, self.build_failure_message(include_compilation_output=include_compilation_output)
            )


class IRViolationError(HarnessError):
    """One or more IR rules failed; carries the full result tree."""

    def __init__(self, result: TestClassMatchResult, message: str) -> None:
        self.result = result
        super().__init__(message)


__all__ = [
    "IRViolationError",
    "MethodMatchResult",
    "MethodStatus",
    "RuleMatchResult",
    "TestClassMatchResult",
]
