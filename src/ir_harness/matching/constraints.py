"""
ir-harness: FailOn and Counts constraints.

File: src/ir_harness/matching/constraints.py

Purpose
- Compiled, fully resolved regex constraints and their evaluation against the
  text of one phase dump.

Functional requirements
- A constraint regex never contains an unresolved placeholder token.
- FailOn: the sibling constraints of one rule form a quick pattern (their
  alternation); individual constraints are only evaluated after a quick hit.
  When the alternation cannot stand for its parts (it does not compile, or a
  part uses backreferences) every constraint is evaluated directly.
- Counts: non-overlapping matches are counted; on a failed comparison the
  matched lines are collected and their number equals the found count.
- Matched lines are the full dump lines a match spans, in match order.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Final

from ir_harness.domain.comparison import Comparison
from ir_harness.errors import ConstraintError, check

_PLACEHOLDER_RE: Final[re.Pattern[str]] = re.compile(r"_#[A-Za-z0-9_]+#_|#IS_REPLACED#")
_BACKREFERENCE_RE: Final[re.Pattern[str]] = re.compile(r"\\[1-9]|\(\?P=")


def compile_constraint_regex(regex: str) -> re.Pattern[str]:
    """Compile a resolved constraint regex or raise ``ConstraintError``."""

    if not isinstance(regex, str) or not regex:
        raise ConstraintError("constraint regex must be a non-empty string")
    placeholder = _PLACEHOLDER_RE.search(regex)
    if placeholder is not None:
        raise ConstraintError(f"unresolved placeholder {placeholder.group(0)!r} in regex {regex!r}")
    try:
        return re.compile(regex)
    except re.error as exc:
        raise ConstraintError(f"invalid regex {regex!r}: {exc}") from exc


def matched_lines(pattern: re.Pattern[str], text: str) -> tuple[str, ...]:
    """One entry per non-overlapping match: the stripped dump line(s) the match spans."""

    lines: list[str] = []
    for match in pattern.finditer(text):
        start = text.rfind("\n", 0, match.start()) + 1
        end = text.find("\n", max(match.end() - 1, match.start()))
        if end == -1:
            end = len(text)
        lines.append(text[start:end].strip())
    return tuple(lines)


def _check_index(index: int) -> None:
    if isinstance(index, bool) or not isinstance(index, int) or index < 1:
        raise ConstraintError(f"constraint index must be a positive integer, got {index!r}")


@dataclass(frozen=True, slots=True)
class FailOnConstraintFailure:
    regex: str
    index: int
    matched_lines: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class CountsConstraintFailure:
    regex: str
    index: int
    comparison: Comparison
    matched_lines: tuple[str, ...]

    @property
    def found_count(self) -> int:
        return len(self.matched_lines)


@dataclass(frozen=True, slots=True)
class FailOnConstraint:
    """A pattern that must not appear in the phase dump."""

    regex: str
    index: int
    pattern: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        _check_index(self.index)
        object.__setattr__(self, "pattern", compile_constraint_regex(self.regex))

    def check(self, text: str) -> FailOnConstraintFailure | None:
        lines = matched_lines(self.pattern, text)
        if not lines:
            return None
        return FailOnConstraintFailure(regex=self.regex, index=self.index, matched_lines=lines)


@dataclass(frozen=True, slots=True)
class CountsConstraint:
    """A pattern whose number of matches must satisfy ``comparison``."""

    regex: str
    index: int
    comparison: Comparison
    pattern: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        _check_index(self.index)
        object.__setattr__(self, "pattern", compile_constraint_regex(self.regex))

    def count(self, text: str) -> int:
        return sum(1 for _ in self.pattern.finditer(text))

    def check(self, text: str) -> CountsConstraintFailure | None:
        found = self.count(text)
        if self.comparison.compare(found):
            return None
        lines = matched_lines(self.pattern, text)
        check(found == len(lines), f"must find same number: {found} vs. {len(lines)}")
        return CountsConstraintFailure(
            regex=self.regex, index=self.index, comparison=self.comparison, matched_lines=lines
        )


def build_quick_pattern(constraints: Sequence[FailOnConstraint]) -> re.Pattern[str] | None:
    """Alternation of all FailOn regexes, or ``None`` when it cannot replace its parts."""

    if not constraints:
        return None
    if any(_BACKREFERENCE_RE.search(constraint.regex) for constraint in constraints):
        return None
    try:
        return re.compile("|".join(f"(?:{constraint.regex})" for constraint in constraints))
    except re.error:
        return None


class FailOn:
    """The FailOn constraints of one rule, pre-filtered by their quick pattern."""

    __slots__ = ("constraints", "quick_pattern")

    def __init__(self, constraints: Sequence[FailOnConstraint]) -> None:
        self.constraints: tuple[FailOnConstraint, ...] = tuple(constraints)
        self.quick_pattern = build_quick_pattern(self.constraints)

    def __bool__(self) -> bool:
        return bool(self.constraints)

    def apply(self, text: str) -> tuple[FailOnConstraintFailure, ...]:
        if self.quick_pattern is not None and self.quick_pattern.search(text) is None:
            return ()
        failures = tuple(
            failure for constraint in self.constraints if (failure := constraint.check(text)) is not None
        )
        if self.quick_pattern is not None:
            check(bool(failures), "quick pattern matched but no FailOn constraint did")
        return failures


class Counts:
    """The Counts constraints of one rule."""

    __slots__ = ("constraints",)

    def __init__(self, constraints: Sequence[CountsConstraint]) -> None:
        self.constraints: tuple[CountsConstraint, ...] = tuple(constraints)

    def __bool__(self) -> bool:
        return bool(self.constraints)

    def apply(self, text: str) -> tuple[CountsConstraintFailure, ...]:
        return tuple(
            failure for constraint in self.constraints if (failure := constraint.check(text)) is not None
        )


__all__ = [
    "Counts",
    "CountsConstraint",
    "CountsConstraintFailure",
    "FailOn",
    "FailOnConstraint",
    "FailOnConstraintFailure",
    "build_quick_pattern",
    "compile_constraint_regex",
    "matched_lines",
]
