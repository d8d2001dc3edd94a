"""Integration tests for ``IRMatchingSession``: listen, receive, match, report."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import pytest

from ir_harness import IRMatchingSession, IRViolationError, load_rule_file
from ir_harness.config.settings import HarnessSettings
from ir_harness.matching.rules import MethodRules
from ir_harness.network.client import CompilerDumpClient, TestVmClient

if TYPE_CHECKING:
    from pathlib import Path

pytestmark = pytest.mark.integration

RULES_YAML = """
methods:
  testAdd:
    rules:
      - phase: PRINT_IDEAL
        counts: [{regex: "AddI", comparison: 1}]
  testMul:
    rules:
      - phase: PRINT_IDEAL
        fail_on: ["MulI"]
      - phase: AFTER_PARSING
        counts: [{regex: "MulI", comparison: ">= 1"}]
"""


def _run_test_vm(port: int) -> None:
    with CompilerDumpClient("testAdd", port) as dump:
        dump.write_phase("print_ideal", ["  10  AddI  === _ 8 9"])
    with CompilerDumpClient("testMul", port) as dump:
        dump.write_phase("print_ideal", ["  11  MulI  === _ 8 9"])
    with TestVmClient(port) as client:
        client.write("testAdd", "[TEST_LIST]")
        client.write("testMul", "[TEST_LIST]")
        client.write_block("[APPLICABLE_IR_RULES]", ["testAdd,1", "testMul,1,2"])


@pytest.fixture
def rules(tmp_path: Path) -> dict[str, MethodRules]:
    path = tmp_path / "rules.yaml"
    path.write_text(RULES_YAML, encoding="utf-8")
    return load_rule_file(path)


def test_finish_returns_result_tree(rules: dict[str, MethodRules]) -> None:
    logger = MagicMock()
    with IRMatchingSession(logger=logger) as session:
        _run_test_vm(session.port)
        result = session.finish(rules, timeout=10.0)

    assert [method.method_name for method in result.failed_methods] == ["testMul"]
    mul = result.method_results[1]
    assert [rule.rule_id for rule in mul.failed_rules] == [1, 2]
    assert mul.failed_rules[1].phase_not_compiled
    warnings = [call.args[0] for call in logger.warning.call_args_list]
    assert "ir_rules_failed" in warnings


def test_finish_raises_with_report_when_requested(rules: dict[str, MethodRules]) -> None:
    settings = HarnessSettings.from_config({"matching": {"include_compilation_output": False}})
    with IRMatchingSession(settings, logger=MagicMock()) as session:
        _run_test_vm(session.port)
        with pytest.raises(IRViolationError) as excinfo:
            session.finish(rules, raise_on_failure=True, timeout=10.0)

    message = str(excinfo.value)
    assert "Failed IR Rules (2) of Methods (1)" in message
    assert '1) Method "testMul" - [Failed IR rules: 2]:' in message
    assert "Compilation output" not in message
    assert excinfo.value.result.failed_rule_count == 2


def test_session_publishes_server_port() -> None:
    with IRMatchingSession(logger=MagicMock()) as session:
        assert session.port == session.server.port
        assert session.port_environment() == session.server.port_environment()
        assert session.port_property_flag().endswith(f"={session.port}")
        assert session.settings.host == "127.0.0.1"
