"""Integer comparison used by Counts constraints and activation conditions."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from typing import Final


class Comparator(StrEnum):
    LESS = "<"
    LESS_EQUAL = "<="
    GREATER = ">"
    GREATER_EQUAL = ">="
    EQUAL = "="
    NOT_EQUAL = "!="

    def evaluate(self, found: int | float, given: int | float) -> bool:
        match self:
            case Comparator.LESS:
                return found < given
            case Comparator.LESS_EQUAL:
                return found <= given
            case Comparator.GREATER:
                return found > given
            case Comparator.GREATER_EQUAL:
                return found >= given
            case Comparator.EQUAL:
                return found == given
            case Comparator.NOT_EQUAL:
                return found != given


# Longest operators first so "<=" is not read as "<".
_COMPARISON_RE: Final[re.Pattern[str]] = re.compile(r"^\s*(<=|>=|!=|<|>|=)?\s*(-?\d+)\s*$")


@dataclass(frozen=True, slots=True)
class Comparison:
    """``found <comparator> given``; a bare number means equality."""

    comparator: Comparator
    given: int

    def compare(self, found: int) -> bool:
        return self.comparator.evaluate(found, self.given)

    @classmethod
    def parse(cls, text: str) -> Comparison:
        """Parse ``"2"``, ``">=3"`` or ``"!= 0"``; raise ``ValueError`` otherwise."""

        match = _COMPARISON_RE.match(text)
        if match is None:
            raise ValueError(f"invalid comparison {text!r}; expected [<|<=|>|>=|=|!=]<integer>")
        operator, number = match.groups()
        comparator = Comparator(operator) if operator else Comparator.EQUAL
        return cls(comparator=comparator, given=int(number))

    def __str__(self) -> str:
        return f"{self.comparator.value}{self.given}"


__all__ = ["Comparator", "Comparison"]
