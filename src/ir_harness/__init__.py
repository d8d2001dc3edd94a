"""
ir-harness: driver side of an IR verification test harness.

File: src/ir_harness/__init__.py

Purpose
- Package root. A test VM streams tagged messages and per-method compile phase
  dumps over loopback sockets; the driver parses them and matches IR rules.

Functional requirements
- No side effects at import time (no config loading, no logging init).
"""

from ir_harness.driver import IRMatchingSession
from ir_harness.errors import (
    ConstraintError,
    DuplicateMethodDumpError,
    HandshakeTimeoutError,
    HarnessError,
    InternalCheckError,
    ProtocolError,
    RuleLookupError,
    ServerSocketError,
    TestVmTaskError,
    UnknownPhaseError,
)
from ir_harness.matching import IRViolationError, MethodRules, TestClassMatchResult, load_rule_file, match_ir_rules
from ir_harness.network import TestVmData, TestVmSocketServer

__version__ = "0.1.0"

__all__ = [
    "ConstraintError",
    "DuplicateMethodDumpError",
    "HandshakeTimeoutError",
    "HarnessError",
    "IRMatchingSession",
    "IRViolationError",
    "InternalCheckError",
    "MethodRules",
    "ProtocolError",
    "RuleLookupError",
    "ServerSocketError",
    "TestClassMatchResult",
    "TestVmData",
    "TestVmSocketServer",
    "TestVmTaskError",
    "UnknownPhaseError",
    "__version__",
    "load_rule_file",
    "match_ir_rules",
]
