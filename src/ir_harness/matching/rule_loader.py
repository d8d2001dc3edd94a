"""
ir-harness: YAML rule files.

File: src/ir_harness/matching/rule_loader.py

Purpose
- Produce the ``Mapping[str, MethodRules]`` consumed by the matching engine
  from a declarative YAML document.

Functional requirements
- Rule ids are 1-based positions in a method's ``rules`` list; constraint
  indexes are 1-based positions within ``fail_on`` / ``counts``.
- A constraint is either a regex string or a ``{template, argument}`` mapping
  resolved through ``compose_pattern``.
- Every problem raises ``RuleFileError`` naming the file and the offending
  location.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from ir_harness.domain.comparison import Comparison
from ir_harness.domain.phases import CompilePhase
from ir_harness.errors import ConstraintError
from ir_harness.matching.constraints import CountsConstraint, FailOnConstraint
from ir_harness.matching.placeholders import compose_pattern
from ir_harness.matching.rules import ActivationMode, ActivationPredicate, IRRule, MethodRules


class RuleFileError(ValueError):
    """Raised when a rule file cannot be read or does not describe valid rules."""

    def __init__(self, path: Path | str, message: str) -> None:
        self.path = str(path)
        super().__init__(f"{self.path}: {message}")


def load_rule_file(path: Path | str) -> dict[str, MethodRules]:
    """Read ``path`` and return method name -> ``MethodRules``."""

    rule_path = Path(path)
    try:
        raw_text = rule_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise RuleFileError(rule_path, f"cannot read rule file: {exc}") from exc
    try:
        document = yaml.safe_load(raw_text)
    except yaml.YAMLError as exc:
        raise RuleFileError(rule_path, f"invalid YAML: {exc}") from exc
    try:
        return parse_rule_document(document)
    except (ValueError, TypeError) as exc:
        raise RuleFileError(rule_path, str(exc)) from exc


def parse_rule_document(document: Any) -> dict[str, MethodRules]:
    """Parse an already loaded rule document; raises ``ValueError`` on bad shape."""

    if not isinstance(document, Mapping):
        raise ValueError("rule document must be a mapping with a 'methods' key")
    methods = document.get("methods")
    if not isinstance(methods, Mapping):
        raise ValueError("'methods' must be a mapping of method name to rules")

    parsed: dict[str, MethodRules] = {}
    for method_name, body in methods.items():
        if not isinstance(method_name, str) or not method_name:
            raise ValueError(f"method names must be non-empty strings, got {method_name!r}")
        parsed[method_name] = _parse_method(method_name, body)
    return parsed


def _parse_method(method_name: str, body: Any) -> MethodRules:
    where = f"methods.{method_name}"
    if not isinstance(body, Mapping):
        raise ValueError(f"{where} must be a mapping")
    allow_not_compilable = body.get("allow_not_compilable", False)
    if not isinstance(allow_not_compilable, bool):
        raise ValueError(f"{where}.allow_not_compilable must be a boolean")
    raw_rules = body.get("rules", [])
    if not isinstance(raw_rules, list):
        raise ValueError(f"{where}.rules must be a list")
    rules = [
        _parse_rule(f"{where}.rules[{rule_id}]", rule_id, raw_rule)
        for rule_id, raw_rule in enumerate(raw_rules, start=1)
    ]
    return MethodRules.of(method_name, rules, allow_not_compilable=allow_not_compilable)


def _parse_rule(where: str, rule_id: int, raw_rule: Any) -> IRRule:
    if not isinstance(raw_rule, Mapping):
        raise ValueError(f"{where} must be a mapping")
    phase_name = raw_rule.get("phase", CompilePhase.PRINT_IDEAL.name)
    try:
        phase = CompilePhase[phase_name]
    except (KeyError, TypeError):
        raise ValueError(f"{where}.phase: unknown compile phase {phase_name!r}") from None

    activation = _parse_activation(f"{where}.apply_if", raw_rule.get("apply_if"))
    try:
        fail_on = [
            FailOnConstraint(regex=_constraint_regex(f"{where}.fail_on[{index}]", entry), index=index)
            for index, entry in enumerate(_as_list(f"{where}.fail_on", raw_rule.get("fail_on")), start=1)
        ]
        counts = [
            _parse_counts(f"{where}.counts[{index}]", index, entry)
            for index, entry in enumerate(_as_list(f"{where}.counts", raw_rule.get("counts")), start=1)
        ]
        return IRRule(
            rule_id=rule_id,
            phase=phase,
            fail_on=tuple(fail_on),
            counts=tuple(counts),
            activation=activation,
        )
    except ConstraintError as exc:
        raise ValueError(f"{where}: {exc}") from exc


def _as_list(where: str, value: Any) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{where} must be a list")
    return value


def _constraint_regex(where: str, entry: Any) -> str:
    if isinstance(entry, str):
        return entry
    if isinstance(entry, Mapping):
        if "regex" in entry:
            regex = entry["regex"]
            if not isinstance(regex, str):
                raise ValueError(f"{where}.regex must be a string")
            return regex
        template = entry.get("template")
        argument = entry.get("argument")
        if isinstance(template, str) and isinstance(argument, str):
            try:
                return compose_pattern(template, argument, literal=bool(entry.get("literal", False)))
            except ConstraintError as exc:
                raise ValueError(f"{where}: {exc}") from exc
    raise ValueError(f"{where} must be a regex string or a mapping with 'regex' or 'template'/'argument'")


def _parse_counts(where: str, index: int, entry: Any) -> CountsConstraint:
    if not isinstance(entry, Mapping):
        raise ValueError(f"{where} must be a mapping with 'comparison'")
    raw_comparison = entry.get("comparison")
    if isinstance(raw_comparison, bool) or not isinstance(raw_comparison, (str, int)):
        raise ValueError(f"{where}.comparison must be a string like '>= 2' or an integer")
    try:
        comparison = Comparison.parse(str(raw_comparison))
    except ValueError as exc:
        raise ValueError(f"{where}.comparison: {exc}") from exc
    regex = _constraint_regex(where, {key: value for key, value in entry.items() if key != "comparison"})
    return CountsConstraint(regex=regex, index=index, comparison=comparison)


def _parse_activation(where: str, raw: Any) -> ActivationPredicate | None:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise ValueError(f"{where} must be a mapping")
    conditions = raw.get("conditions")
    if not isinstance(conditions, Mapping) or not conditions:
        raise ValueError(f"{where}.conditions must be a non-empty mapping")
    mode = raw.get("mode", ActivationMode.ALL.value)
    try:
        activation_mode = ActivationMode(str(mode).lower())
    except ValueError:
        raise ValueError(f"{where}.mode must be one of all, any, none; got {mode!r}") from None
    for key, value in conditions.items():
        if not isinstance(key, str) or isinstance(value, (Mapping, list)) or value is None:
            raise ValueError(f"{where}.conditions: invalid condition {key!r}: {value!r}")
    try:
        return ActivationPredicate.of(
            {key: _condition_text(value) for key, value in conditions.items()}, activation_mode
        )
    except ConstraintError as exc:
        raise ValueError(f"{where}.conditions: {exc}") from exc


def _condition_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


__all__ = ["RuleFileError", "load_rule_file", "parse_rule_document"]
