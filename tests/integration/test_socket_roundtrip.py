"""
ir-harness: socket roundtrip integration tests

File: tests/integration/test_socket_roundtrip.py

Purpose
- Drive the loopback server with the reference clients exactly as a test VM
  would, then match rules against what arrived.

What this test file should cover
- Orchestrator plus compiler-dump connections end to end.
- Fatal handshake failures: unknown identity, timeout, second orchestrator.
- Malformed streams surfacing as task failures from ``collect``.
- Port publication and idempotent close.

Non-functional requirements
- Loopback only; every blocking call carries a timeout.
"""

from __future__ import annotations

import socket
from unittest.mock import MagicMock

import pytest

from ir_harness.constants import SERVER_PORT_ENV, SERVER_PORT_PROPERTY
from ir_harness.domain.phases import CompilePhase
from ir_harness.errors import HandshakeTimeoutError, ProtocolError, ServerSocketError, TestVmTaskError
from ir_harness.matching.engine import match_ir_rules
from ir_harness.matching.rule_loader import parse_rule_document
from ir_harness.network.client import CompilerDumpClient, TestVmClient
from ir_harness.network.server import TestVmSocketServer

pytestmark = pytest.mark.integration

_TIMEOUT = 10.0


def _server(**kwargs: object) -> TestVmSocketServer:
    return TestVmSocketServer(logger=MagicMock(), **kwargs)  # type: ignore[arg-type]


def test_full_roundtrip_collects_and_matches() -> None:
    with _server() as server:
        with CompilerDumpClient("testLoad", server.port) as dump:
            dump.write_phase("AFTER_PARSING", ["  7  Phi  === 5 6"])
            dump.write_phase("print_ideal", ["  12  LoadN  === 5 7", "  13  LoadN  === 5 8"])
        with CompilerDumpClient("testStore", server.port) as dump:
            dump.write_phase("print_ideal", ["  20  StoreI  === 5 7"])

        with TestVmClient(server.port) as client:
            client.write_stdout("running 2 tests")
            client.write("testLoad", "[TEST_LIST]")
            client.write("testStore", "[TEST_LIST]")
            client.write_block("[VM_INFO]", ["UseZGC:false", "MaxVectorSize:32"])
            client.write_block("[APPLICABLE_IR_RULES]", ["testLoad,1,2", "testStore,1"])
            client.write_raw("unframed diagnostic line")

        data = server.collect(timeout=_TIMEOUT)

    assert data.messages.stdout_lines == ("running 2 tests",)
    assert data.messages.executed_tests == ("testLoad", "testStore")
    assert data.messages.raw_output == ("unframed diagnostic line",)
    assert data.vm_info.get("MaxVectorSize") == "32"
    assert sorted(data.method_dumps) == ["testLoad", "testStore"]
    load_dump = data.method_dump("testLoad")
    assert load_dump is not None
    assert load_dump.phases == (CompilePhase.AFTER_PARSING, CompilePhase.PRINT_IDEAL)

    rules = parse_rule_document(
        {
            "methods": {
                "testLoad": {
                    "rules": [
                        {"phase": "PRINT_IDEAL", "counts": [{"regex": "LoadN", "comparison": 2}]},
                        {"phase": "AFTER_PARSING", "fail_on": ["Phi"]},
                    ]
                },
                "testStore": {"rules": [{"fail_on": ["StoreI"]}]},
            }
        }
    )
    result = match_ir_rules(data, rules, logger=MagicMock())

    assert [method.method_name for method in result.failed_methods] == ["testLoad", "testStore"]
    load_result = result.method_results[0]
    assert [rule.rule_id for rule in load_result.failed_rules] == [2]
    assert load_result.failed_rules[0].fail_on_failures[0].matched_lines == ("7  Phi  === 5 6",)


def test_unknown_identity_is_fatal() -> None:
    with _server() as server:
        with socket.create_connection(("127.0.0.1", server.port), timeout=_TIMEOUT) as raw:
            raw.sendall(b"#Bogus#\n")
            with pytest.raises(ProtocolError, match="unknown identity"):
                server.collect(timeout=_TIMEOUT)


def test_silent_connection_times_out_handshake() -> None:
    with _server(handshake_timeout_seconds=0.2) as server:
        with socket.create_connection(("127.0.0.1", server.port), timeout=_TIMEOUT):
            with pytest.raises(HandshakeTimeoutError, match="identity"):
                server.collect(timeout=_TIMEOUT)


def test_second_orchestrator_connection_is_fatal() -> None:
    with _server() as server:
        with TestVmClient(server.port), TestVmClient(server.port):
            with pytest.raises(ProtocolError, match="second orchestrator connection"):
                server.collect(timeout=_TIMEOUT)


def test_malformed_orchestrator_stream_fails_collect() -> None:
    with _server() as server:
        with TestVmClient(server.port) as client:
            client.write_raw("#END#")

        with pytest.raises(TestVmTaskError) as excinfo:
            server.collect(timeout=_TIMEOUT)

    assert isinstance(excinfo.value.__cause__, ProtocolError)
    assert "end marker outside of a block" in str(excinfo.value)


def test_malformed_dump_stream_fails_collect() -> None:
    with _server() as server:
        with CompilerDumpClient("testLoad", server.port) as dump:
            dump.write_raw("  12  LoadN  === 5 7")
        with TestVmClient(server.port) as client:
            client.write_block("[APPLICABLE_IR_RULES]", ["testLoad,1"])

        with pytest.raises(TestVmTaskError, match="missing COMPILE_PHASE header"):
            server.collect(timeout=_TIMEOUT)


def test_collect_times_out_without_orchestrator() -> None:
    with _server() as server:
        with pytest.raises(TimeoutError):
            server.collect(timeout=0.2)


def test_port_publication_and_idempotent_close() -> None:
    server = _server()
    with pytest.raises(ServerSocketError, match="not started"):
        _ = server.port

    server.start()
    try:
        port = server.port
        assert 0 < port < 65536
        assert server.port_property() == {SERVER_PORT_PROPERTY: str(port)}
        assert server.port_property_flag() == f"-D{SERVER_PORT_PROPERTY}={port}"
        assert server.port_environment() == {SERVER_PORT_ENV: str(port)}
    finally:
        server.close()
    server.close()

    with pytest.raises(ServerSocketError, match="already closed"):
        server.start()
