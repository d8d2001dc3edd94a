"""Loopback transport: line protocol parsers, connection server, client and aggregation."""

from ir_harness.network.aggregator import MethodDumps, TestVmData, aggregate
from ir_harness.network.client import CompilerDumpClient, TestVmClient, server_port_from_env
from ir_harness.network.messages import ApplicableIRRules, IrRuleIds, TestVmMessages, VmInfo
from ir_harness.network.protocol import (
    CompilerDumpParser,
    TestVmMessageParser,
    parse_compiler_dump_stream,
    parse_test_vm_stream,
)
from ir_harness.network.server import TestVmSocketServer

__all__ = [
    "ApplicableIRRules",
    "CompilerDumpClient",
    "CompilerDumpParser",
    "IrRuleIds",
    "MethodDumps",
    "TestVmClient",
    "TestVmData",
    "TestVmMessageParser",
    "TestVmMessages",
    "TestVmSocketServer",
    "VmInfo",
    "aggregate",
    "parse_compiler_dump_stream",
    "parse_test_vm_stream",
    "server_port_from_env",
]
