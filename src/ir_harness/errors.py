"""
ir-harness: error taxonomy.

File: src/ir_harness/errors.py

Purpose
- One exception hierarchy for every fatal condition of a run.

Functional requirements
- Protocol violations, lookup failures and infrastructure failures abort the run
  immediately and carry enough context (connection, offending line) to diagnose.
- Rule matching failures are not errors here; they are collected by the
  matching engine and raised once as ``IRViolationError``.
"""

from __future__ import annotations


class HarnessError(RuntimeError):
    """Base class for fatal harness errors."""


class ProtocolError(HarnessError):
    """Raised when a client violates the line protocol."""

    def __init__(self, message: str, *, line: str | None = None, source: str | None = None) -> None:
        self.line = line
        self.source = source
        details = message
        if source:
            details = f"{source}: {details}"
        if line is not None:
            details = f"{details} (line: {line!r})"
        super().__init__(details)


class UnknownPhaseError(ProtocolError):
    """Raised when a compile phase name does not resolve to a known phase."""

    def __init__(self, phase_name: str) -> None:
        self.phase_name = phase_name
        super().__init__(f'Could not find phase with name "{phase_name}"')


class RuleLookupError(HarnessError):
    """Raised when applicable rule ids do not resolve to supplied rules."""


class ServerSocketError(HarnessError):
    """Raised for bind/accept/read failures of the driver socket."""


class HandshakeTimeoutError(ServerSocketError):
    """Raised when a client does not complete the identity handshake in time."""


class TestVmTaskError(HarnessError):
    """Raised when a per-connection parsing task failed."""

    __test__ = False


class DuplicateMethodDumpError(HarnessError):
    """Raised when more than one dump stream arrives for the same method."""


class InternalCheckError(HarnessError):
    """Raised when an internal consistency check does not hold."""


class ConstraintError(ValueError):
    """Raised for an invalid or unresolved constraint regex, or a malformed rule."""


def check(condition: bool, message: str) -> None:
    """Raise ``InternalCheckError`` with ``message`` unless ``condition`` holds."""

    if not condition:
        raise InternalCheckError(message)


__all__ = [
    "ConstraintError",
    "DuplicateMethodDumpError",
    "HandshakeTimeoutError",
    "HarnessError",
    "InternalCheckError",
    "ProtocolError",
    "RuleLookupError",
    "ServerSocketError",
    "TestVmTaskError",
    "UnknownPhaseError",
    "check",
]
