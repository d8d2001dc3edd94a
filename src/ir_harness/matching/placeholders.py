"""Resolve composite rule templates before constraints are built."""

from __future__ import annotations

import re
from typing import Final

from ir_harness.errors import ConstraintError

IS_REPLACED: Final[str] = "#IS_REPLACED#"


def compose_pattern(template: str, argument: str, *, literal: bool = False) -> str:
    """Substitute ``argument`` for every ``#IS_REPLACED#`` in ``template``.

    With ``literal=True`` the argument is regex-escaped first.
    """

    if IS_REPLACED not in template:
        raise ConstraintError(f"template {template!r} has no {IS_REPLACED} placeholder")
    if not argument:
        raise ConstraintError(f"template {template!r} needs a non-empty argument")
    replacement = re.escape(argument) if literal else argument
    return template.replace(IS_REPLACED, replacement)


__all__ = ["IS_REPLACED", "compose_pattern"]
