"""Stable wire-protocol constants shared by the driver and the test VM clients."""

from __future__ import annotations

from typing import Final

# Runtime property through which the launched test VM learns the server port.
SERVER_PORT_PROPERTY: Final[str] = "ir.framework.server.port"
SERVER_PORT_ENV: Final[str] = "IR_FRAMEWORK_SERVER_PORT"
DEFAULT_SERVER_HOST: Final[str] = "127.0.0.1"

# Identity handshake tokens (first line of every connection).
TEST_VM_IDENTITY: Final[str] = "#TestVM#"
COMPILER_DUMP_IDENTITY: Final[str] = "#HotSpot#"
HANDSHAKE_TIMEOUT_SECONDS: Final[float] = 10.0

# Orchestrator channel tags.
STDOUT_TAG: Final[str] = "[STDOUT]"
TEST_LIST_TAG: Final[str] = "[TEST_LIST]"
PRINT_TIMES_TAG: Final[str] = "[PRINT_TIMES]"
VM_INFO_TAG: Final[str] = "[VM_INFO]"
APPLICABLE_IR_RULES_TAG: Final[str] = "[APPLICABLE_IR_RULES]"

SINGLE_LINE_TAGS: Final[frozenset[str]] = frozenset({STDOUT_TAG, TEST_LIST_TAG, PRINT_TIMES_TAG})
BLOCK_TAGS: Final[frozenset[str]] = frozenset({VM_INFO_TAG, APPLICABLE_IR_RULES_TAG})

END_MARKER: Final[str] = "#END#"
NO_RULES_MARKER: Final[str] = "<None>"
NO_RULE_APPLIED: Final[int] = -1

# Compiler-dump channel.
COMPILE_PHASE_HEADER: Final[str] = "COMPILE_PHASE:"

# Asyncio stream reader line limit; IR dump lines can be long.
DEFAULT_READ_LIMIT_BYTES: Final[int] = 1 << 20

CONFIG_SCHEMA_VERSION: Final[int] = 1

__all__ = [
    "APPLICABLE_IR_RULES_TAG",
    "BLOCK_TAGS",
    "COMPILER_DUMP_IDENTITY",
    "COMPILE_PHASE_HEADER",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_READ_LIMIT_BYTES",
    "DEFAULT_SERVER_HOST",
    "END_MARKER",
    "HANDSHAKE_TIMEOUT_SECONDS",
    "NO_RULES_MARKER",
    "NO_RULE_APPLIED",
    "PRINT_TIMES_TAG",
    "SERVER_PORT_ENV",
    "SERVER_PORT_PROPERTY",
    "SINGLE_LINE_TAGS",
    "STDOUT_TAG",
    "TEST_LIST_TAG",
    "TEST_VM_IDENTITY",
    "VM_INFO_TAG",
]
