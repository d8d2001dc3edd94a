"""IR rule model, constraint evaluation, matching engine and result reporting."""

from ir_harness.matching.constraints import (
    Counts,
    CountsConstraint,
    CountsConstraintFailure,
    FailOn,
    FailOnConstraint,
    FailOnConstraintFailure,
    build_quick_pattern,
    matched_lines,
)
from ir_harness.matching.engine import IRMatcher, match_ir_rules
from ir_harness.matching.placeholders import IS_REPLACED, compose_pattern
from ir_harness.matching.results import (
    IRViolationError,
    MethodMatchResult,
    MethodStatus,
    RuleMatchResult,
    TestClassMatchResult,
)
from ir_harness.matching.rule_loader import RuleFileError, load_rule_file, parse_rule_document
from ir_harness.matching.rules import ActivationMode, ActivationPredicate, FlagCondition, IRRule, MethodRules

__all__ = [
    "IS_REPLACED",
    "ActivationMode",
    "ActivationPredicate",
    "Counts",
    "CountsConstraint",
    "CountsConstraintFailure",
    "FailOn",
    "FailOnConstraint",
    "FailOnConstraintFailure",
    "FlagCondition",
    "IRMatcher",
    "IRRule",
    "IRViolationError",
    "MethodMatchResult",
    "MethodRules",
    "MethodStatus",
    "RuleFileError",
    "RuleMatchResult",
    "TestClassMatchResult",
    "build_quick_pattern",
    "compose_pattern",
    "load_rule_file",
    "match_ir_rules",
    "matched_lines",
    "parse_rule_document",
]
