"""
ir-harness: line protocol parsers.

File: src/ir_harness/network/protocol.py

Purpose
- Turn the raw line streams of both client kinds into typed results.

Functional requirements
- Orchestrator channel: single-line tags are recorded at once; block tags open a
  block closed by ``#END#``. Each block kind appears at most once and is never
  empty. Lines outside a block without a recognized tag (including bracketed
  VM log lines such as ``[0.012s][info][gc] ...``) are kept as raw output.
- Compiler-dump channel: ``COMPILE_PHASE: <name>`` opens a phase segment that
  ``#END#`` closes; the result is one ``MethodDump``.
- Every violation raises ``ProtocolError`` naming the offending line.

Non-functional requirements
- Parsers are pure state machines over strings; the same lines always produce
  equal results.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from enum import Enum
from typing import Final

from ir_harness.constants import (
    APPLICABLE_IR_RULES_TAG,
    BLOCK_TAGS,
    COMPILE_PHASE_HEADER,
    END_MARKER,
    NO_RULES_MARKER,
    PRINT_TIMES_TAG,
    SINGLE_LINE_TAGS,
    STDOUT_TAG,
    TEST_LIST_TAG,
    VM_INFO_TAG,
)
from ir_harness.domain.dumps import MethodDump, PhaseDump
from ir_harness.domain.phases import DEFAULT_PHASE_REGISTRY, PhaseRegistry
from ir_harness.errors import ProtocolError
from ir_harness.network.messages import ApplicableIRRules, IrRuleIds, TestVmMessages, VmInfo

_TAG_LINE_RE: Final[re.Pattern[str]] = re.compile(r"^(\[[^]]+])\s*(.*)$")
_KNOWN_TAGS: Final[frozenset[str]] = SINGLE_LINE_TAGS | BLOCK_TAGS
_COMPILE_PHASE_RE: Final[re.Pattern[str]] = re.compile(rf"^{re.escape(COMPILE_PHASE_HEADER)}\s*(.*?)\s*$")

TEST_VM_SOURCE: Final[str] = "test VM"


class _BlockState(Enum):
    NOTHING_PARSED = "nothing_parsed"
    PARSING = "parsing"
    FINISHED = "finished"


class _BlockParser:
    """Shared state handling for one block kind."""

    tag: str = ""

    def __init__(self, source: str) -> None:
        self._source = source
        self._state = _BlockState.NOTHING_PARSED

    def open(self, line: str) -> None:
        if self._state is _BlockState.FINISHED:
            raise ProtocolError(f"{self.tag} block may only be sent once", line=line, source=self._source)

    def parse_line(self, line: str) -> None:
        self._state = _BlockState.PARSING
        self._parse_body_line(line)

    def finish(self, line: str) -> None:
        if self._state is not _BlockState.PARSING:
            raise ProtocolError(f"{self.tag} block must not be empty", line=line, source=self._source)
        self._state = _BlockState.FINISHED

    def _parse_body_line(self, line: str) -> None:
        raise NotImplementedError

    def _error(self, message: str, line: str) -> ProtocolError:
        return ProtocolError(message, line=line, source=self._source)


class _VmInfoBlock(_BlockParser):
    tag = VM_INFO_TAG

    def __init__(self, source: str) -> None:
        super().__init__(source)
        self.values: dict[str, str] = {}

    def _parse_body_line(self, line: str) -> None:
        key, separator, value = line.partition(":")
        if not separator:
            raise self._error("Invalid VM info key:value encoding", line)
        self.values[key] = value


class _ApplicableRulesBlock(_BlockParser):
    tag = APPLICABLE_IR_RULES_TAG

    def __init__(self, source: str) -> None:
        super().__init__(source)
        self.methods: dict[str, IrRuleIds] = {}

    def _parse_body_line(self, line: str) -> None:
        if line == NO_RULES_MARKER:
            return
        parts = line.split(",")
        while len(parts) > 1 and not parts[-1]:
            parts.pop()
        if len(parts) < 2:
            raise self._error("Invalid applicable IR rules format. No comma found", line)
        method_name, raw_ids = parts[0], parts[1:]
        ids: list[int] = []
        for raw_id in raw_ids:
            try:
                ids.append(int(raw_id))
            except ValueError:
                raise self._error(
                    f"Invalid applicable IR rules format. No number found: {raw_id!r}", line
                ) from None
        self.methods[method_name] = IrRuleIds.of(ids)


class TestVmMessageParser:
    """Demultiplexes the orchestrator connection into ``TestVmMessages``."""

    __test__ = False

    def __init__(self, *, source: str = TEST_VM_SOURCE) -> None:
        self._source = source
        self._stdout: list[str] = []
        self._executed_tests: list[str] = []
        self._method_times: list[str] = []
        self._raw_output: list[str] = []
        self._vm_info = _VmInfoBlock(source)
        self._applicable_rules = _ApplicableRulesBlock(source)
        self._active_block: _BlockParser | None = None

    @property
    def in_block(self) -> bool:
        return self._active_block is not None

    def parse_line(self, line: str) -> None:
        line = line.strip()
        tag_match = _TAG_LINE_RE.match(line)
        if tag_match is not None and tag_match.group(1) in _KNOWN_TAGS:
            if self._active_block is not None:
                raise ProtocolError("unexpected new tag while parsing block", line=line, source=self._source)
            self._parse_tag_line(tag_match.group(1), tag_match.group(2), line)
            return

        if self._active_block is None:
            if line == END_MARKER:
                raise ProtocolError("end marker outside of a block", line=line, source=self._source)
            self._raw_output.append(line)
            return

        if line == END_MARKER:
            self._active_block.finish(line)
            self._active_block = None
            return
        self._active_block.parse_line(line)

    def _parse_tag_line(self, tag: str, message: str, line: str) -> None:
        if tag == STDOUT_TAG:
            self._stdout.append(message)
        elif tag == TEST_LIST_TAG:
            self._executed_tests.append(message)
        elif tag == PRINT_TIMES_TAG:
            self._method_times.append(message)
        elif tag == VM_INFO_TAG:
            self._open_block(self._vm_info, line)
        elif tag == APPLICABLE_IR_RULES_TAG:
            self._open_block(self._applicable_rules, line)

    def _open_block(self, block: _BlockParser, line: str) -> None:
        block.open(line)
        self._active_block = block

    def output(self) -> TestVmMessages:
        if self._active_block is not None:
            raise ProtocolError(
                f"stream ended inside {self._active_block.tag} block", source=self._source
            )
        return TestVmMessages(
            stdout_lines=tuple(self._stdout),
            executed_tests=tuple(self._executed_tests),
            method_times=tuple(self._method_times),
            raw_output=tuple(self._raw_output),
            vm_info=VmInfo(self._vm_info.values),
            applicable_rules=ApplicableIRRules(self._applicable_rules.methods),
        )


class CompilerDumpParser:
    """Builds the ``MethodDump`` of one compiler-dump connection."""

    def __init__(self, method_name: str, registry: PhaseRegistry = DEFAULT_PHASE_REGISTRY) -> None:
        self._source = f"compiler dump for {method_name}"
        self._registry = registry
        self._method_dump = MethodDump(method_name, registry)
        self._active_phase: PhaseDump | None = None

    @property
    def method_name(self) -> str:
        return self._method_dump.method_name

    def parse_line(self, line: str) -> None:
        header = _COMPILE_PHASE_RE.match(line.strip())
        if header is not None:
            if self._active_phase is not None:
                raise ProtocolError("can only have one active phase dump", line=line, source=self._source)
            phase = self._registry.for_name(header.group(1))
            self._active_phase = PhaseDump(phase)
            self._method_dump.add(self._active_phase)
            return

        if line.strip() == END_MARKER:
            if self._active_phase is None:
                raise ProtocolError("must have an active phase dump", line=line, source=self._source)
            self._active_phase = None
            return

        if self._active_phase is None:
            raise ProtocolError("missing COMPILE_PHASE header", line=line, source=self._source)
        self._active_phase.add(line)

    def output(self) -> MethodDump:
        if self._active_phase is not None:
            raise ProtocolError("querying while still having active phase dump", source=self._source)
        return self._method_dump


def parse_test_vm_stream(lines: Iterable[str]) -> TestVmMessages:
    """Replay a recorded orchestrator stream (without the identity line)."""

    parser = TestVmMessageParser()
    for line in lines:
        parser.parse_line(line)
    return parser.output()


def parse_compiler_dump_stream(
    method_name: str,
    lines: Iterable[str],
    registry: PhaseRegistry = DEFAULT_PHASE_REGISTRY,
) -> MethodDump:
    """Replay a recorded compiler-dump stream (without identity and method lines)."""

    parser = CompilerDumpParser(method_name, registry)
    for line in lines:
        parser.parse_line(line)
    return parser.output()


__all__ = [
    "CompilerDumpParser",
    "TEST_VM_SOURCE",
    "TestVmMessageParser",
    "parse_compiler_dump_stream",
    "parse_test_vm_stream",
]
