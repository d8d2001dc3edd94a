"""
ir-harness: driver session.

File: src/ir_harness/driver.py

Purpose
- Wire server, aggregation and matching into one object the test launcher
  drives: start, hand the port to the test VM, then ``finish(rules)``.

Functional requirements
- Settings (host, handshake timeout, read limit, phase repeat policy,
  ``allow_not_compilable``, report options) come from ``HarnessSettings``.
- ``finish`` logs the side channels, matches, and either returns the result
  tree or raises ``IRViolationError`` when ``raise_on_failure`` is set.
- ``close`` is idempotent and always releases the server.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from ir_harness.config.settings import HarnessSettings
from ir_harness.matching.engine import IRMatcher
from ir_harness.matching.results import TestClassMatchResult
from ir_harness.matching.rules import MethodRules
from ir_harness.network.server import TestVmSocketServer


class IRMatchingSession:
    """One test VM run from listening socket to match result."""

    def __init__(self, settings: HarnessSettings | None = None, *, logger: Any | None = None) -> None:
        self._settings = settings if settings is not None else HarnessSettings.from_config()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._registry = self._settings.phase_registry()
        self._server = TestVmSocketServer(
            self._settings.host,
            registry=self._registry,
            handshake_timeout_seconds=self._settings.handshake_timeout_seconds,
            read_limit_bytes=self._settings.read_limit_bytes,
            logger=self._logger,
        )

    @property
    def settings(self) -> HarnessSettings:
        return self._settings

    @property
    def server(self) -> TestVmSocketServer:
        return self._server

    def start(self) -> IRMatchingSession:
        self._server.start()
        return self

    @property
    def port(self) -> int:
        return self._server.port

    def port_property(self) -> dict[str, str]:
        return self._server.port_property()

    def port_property_flag(self) -> str:
        return self._server.port_property_flag()

    def port_environment(self) -> dict[str, str]:
        return self._server.port_environment()

    def finish(
        self,
        rules: Mapping[str, MethodRules],
        *,
        raise_on_failure: bool = False,
        timeout: float | None = None,
    ) -> TestClassMatchResult:
        """Collect everything the test VM sent and match ``rules`` against it."""

        data = self._server.collect(allow_not_compilable=self._settings.allow_not_compilable, timeout=timeout)
        data.messages.log_summary(self._logger)
        result = IRMatcher(data, rules, registry=self._registry, logger=self._logger).match()
        if result.failed:
            self._logger.warning(
                "ir_rules_failed",
                failed_methods=[method.method_name for method in result.failed_methods],
                failed_rules=result.failed_rule_count,
            )
        if raise_on_failure:
            result.raise_if_failed(include_compilation_output=self._settings.include_compilation_output)
        return result

    def close(self) -> None:
        self._server.close()

    def __enter__(self) -> IRMatchingSession:
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["IRMatchingSession"]
