"""
ir-harness: loopback connection server.

File: src/ir_harness/network/server.py

Purpose
- Accept the test VM's connections on an ephemeral loopback port and parse each
  one on its own task.

Functional requirements
- First line of every connection is an identity, read within the handshake
  timeout. ``#TestVM#`` is the orchestrator connection (exactly one);
  ``#HotSpot#`` is a compiler-dump connection whose second line is the method
  name. Any other identity, a second orchestrator connection or a handshake
  timeout is fatal: accepting stops and ``collect()`` raises it.
- Results are published to the synchronous caller as
  ``concurrent.futures.Future`` objects.

Non-functional requirements
- One asyncio loop in one background thread; the connection registry is guarded
  by a ``threading.Lock``.
- ``close()`` is idempotent and never blocks on connections that never arrived.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import itertools
import threading
import time
from collections.abc import Callable
from contextlib import suppress
from typing import Any, Final

import structlog

from ir_harness.constants import (
    COMPILER_DUMP_IDENTITY,
    DEFAULT_READ_LIMIT_BYTES,
    DEFAULT_SERVER_HOST,
    HANDSHAKE_TIMEOUT_SECONDS,
    SERVER_PORT_ENV,
    SERVER_PORT_PROPERTY,
    TEST_VM_IDENTITY,
)
from ir_harness.domain.dumps import MethodDump
from ir_harness.domain.phases import DEFAULT_PHASE_REGISTRY, PhaseRegistry
from ir_harness.errors import HandshakeTimeoutError, HarnessError, ProtocolError, ServerSocketError
from ir_harness.network.aggregator import TestVmData, aggregate
from ir_harness.network.messages import TestVmMessages
from ir_harness.network.protocol import CompilerDumpParser, TestVmMessageParser
from ir_harness.observability.logging import correlation_scope
from ir_harness.utils.concurrency import BackgroundLoop, CancellationToken, run_with_timeout

_CLOSE_GRACE_SECONDS: Final[float] = 5.0


class TestVmSocketServer:
    """Driver-side socket that receives the test VM's tagged output and compiler dumps.

    Usage::

        with TestVmSocketServer() as server:
            launch_test_vm(extra_flags=[server.port_property_flag()])
            data = server.collect()
    """

    __test__ = False

    def __init__(
        self,
        host: str = DEFAULT_SERVER_HOST,
        *,
        registry: PhaseRegistry = DEFAULT_PHASE_REGISTRY,
        handshake_timeout_seconds: float = HANDSHAKE_TIMEOUT_SECONDS,
        read_limit_bytes: int = DEFAULT_READ_LIMIT_BYTES,
        logger: Any | None = None,
    ) -> None:
        if handshake_timeout_seconds <= 0:
            raise ValueError("handshake_timeout_seconds must be > 0")
        self._host = host
        self._registry = registry
        self._handshake_timeout = handshake_timeout_seconds
        self._read_limit = read_limit_bytes
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

        self._loop = BackgroundLoop(name="ir-harness-server")
        self._server: asyncio.Server | None = None
        self._shutdown_token: CancellationToken | None = None
        self._port: int | None = None

        self._lock = threading.Lock()
        self._connection_ids = itertools.count(1)
        self._test_vm_future: concurrent.futures.Future[TestVmMessages] = concurrent.futures.Future()
        self._test_vm_connected = False
        self._dump_futures: list[concurrent.futures.Future[MethodDump]] = []
        self._fatal: concurrent.futures.Future[None] = concurrent.futures.Future()
        self._connection_tasks: set[asyncio.Task[None]] = set()
        self._handshakes: set[asyncio.Future[None]] = set()
        self._closed = False

    # -- lifecycle -------------------------------------------------------------------------

    def start(self) -> TestVmSocketServer:
        if self._closed:
            raise ServerSocketError("server was already closed")
        if self._port is not None:
            return self
        self._loop.start()
        try:
            self._port = self._loop.run(self._start_listening())
        except OSError as exc:
            self._loop.stop()
            raise ServerSocketError(f"failed to bind server socket on {self._host}: {exc}") from exc
        self._logger.info("ir_server_started", host=self._host, port=self._port)
        return self

    async def _start_listening(self) -> int:
        self._shutdown_token = CancellationToken()
        self._server = await asyncio.start_server(
            self._on_connection, self._host, 0, limit=self._read_limit
        )
        return int(self._server.sockets[0].getsockname()[1])

    def close(self) -> None:
        """Stop accepting, let in-flight connections finish, then stop the loop."""

        with self._lock:
            if self._closed:
                return
            self._closed = True
        if self._loop.is_running:
            try:
                self._loop.run(self._shutdown(), timeout=_CLOSE_GRACE_SECONDS * 2)
            except concurrent.futures.TimeoutError:
                self._logger.warning("ir_server_shutdown_timeout")
            self._loop.stop(timeout=_CLOSE_GRACE_SECONDS)
        # Nothing will ever complete these once the loop is gone.
        self._test_vm_future.cancel()
        self._logger.info("ir_server_closed", port=self._port)

    async def _shutdown(self) -> None:
        if self._shutdown_token is not None:
            self._shutdown_token.cancel()
        if self._server is not None:
            self._server.close()
        tasks = set(self._connection_tasks)
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=_CLOSE_GRACE_SECONDS)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    def __enter__(self) -> TestVmSocketServer:
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- port surface ----------------------------------------------------------------------

    @property
    def port(self) -> int:
        if self._port is None:
            raise ServerSocketError("server is not started")
        return self._port

    def port_property(self) -> dict[str, str]:
        return {SERVER_PORT_PROPERTY: str(self.port)}

    def port_property_flag(self) -> str:
        return f"-D{SERVER_PORT_PROPERTY}={self.port}"

    def port_environment(self) -> dict[str, str]:
        return {SERVER_PORT_ENV: str(self.port)}

    # -- results ---------------------------------------------------------------------------

    def collect(self, *, allow_not_compilable: bool = False, timeout: float | None = None) -> TestVmData:
        """Block until the orchestrator and every compiler-dump connection finished.

        Raises the first fatal server error (``ProtocolError``,
        ``HandshakeTimeoutError``) as is, and connection task failures as
        ``TestVmTaskError``. ``timeout`` bounds the whole call.
        """

        deadline = None if timeout is None else time.monotonic() + timeout
        concurrent.futures.wait(
            [self._test_vm_future, self._fatal],
            timeout=_remaining(deadline),
            return_when=concurrent.futures.FIRST_COMPLETED,
        )
        self._raise_if_fatal()
        if not self._test_vm_future.done():
            raise TimeoutError("test VM did not finish its orchestrator connection in time")

        # Compiler-dump connections accepted before the orchestrator finished may still be
        # in their handshake.
        if self._loop.is_running:
            self._loop.run(self._settle_handshakes(), timeout=_remaining(deadline))
        self._raise_if_fatal()

        with self._lock:
            dump_futures = list(self._dump_futures)
        data = aggregate(
            self._test_vm_future,
            dump_futures,
            allow_not_compilable=allow_not_compilable,
            timeout=_remaining(deadline),
        )
        self._logger.info(
            "ir_server_collected",
            method_dumps=len(data.method_dumps),
            applicable_methods=len(data.applicable_rules.methods),
        )
        return data

    def _raise_if_fatal(self) -> None:
        if self._fatal.done():
            exc = self._fatal.exception()
            if exc is not None:
                raise exc

    async def _settle_handshakes(self) -> None:
        await asyncio.sleep(0)
        while self._handshakes:
            await asyncio.gather(*self._handshakes, return_exceptions=True)

    # -- connection handling (loop thread) -------------------------------------------------

    async def _on_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._connection_tasks.add(task)
            task.add_done_callback(self._connection_tasks.discard)
        connection_id = f"conn-{next(self._connection_ids)}"
        handshake: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._handshakes.add(handshake)
        try:
            with correlation_scope(connection_id=connection_id):
                self._logger.debug("ir_connection_accepted", peer=str(writer.get_extra_info("peername")))
                await self._serve(connection_id, reader, handshake)
        finally:
            self._finish_handshake(handshake)
            writer.close()
            with suppress(ConnectionError, OSError):
                await writer.wait_closed()

    async def _serve(
        self,
        connection_id: str,
        reader: asyncio.StreamReader,
        handshake: asyncio.Future[None],
    ) -> None:
        try:
            identity = await self._read_handshake_line(reader, connection_id, "identity")
            if identity == TEST_VM_IDENTITY:
                future = self._register_test_vm(connection_id)
                self._finish_handshake(handshake)
                self._logger.debug("ir_connection_dispatched", kind="test_vm")
                parser = TestVmMessageParser()
                await self._pump(reader, parser.parse_line, future, parser.output, connection_id)
            elif identity == COMPILER_DUMP_IDENTITY:
                method_name = await self._read_handshake_line(reader, connection_id, "method name")
                dump_future = self._register_dump()
                self._finish_handshake(handshake)
                with correlation_scope(method=method_name):
                    self._logger.debug("ir_connection_dispatched", kind="compiler_dump")
                    dump_parser = CompilerDumpParser(method_name, self._registry)
                    await self._pump(reader, dump_parser.parse_line, dump_future, dump_parser.output, connection_id)
            else:
                raise ProtocolError(f"unknown identity {identity!r}", source=connection_id)
        except asyncio.CancelledError:
            self._logger.debug("ir_connection_cancelled")
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
        except HarnessError as exc:
            self._fail(exc)

    async def _read_handshake_line(
        self, reader: asyncio.StreamReader, connection_id: str, what: str
    ) -> str:
        try:
            raw = await run_with_timeout(reader.readline(), self._handshake_timeout, self._shutdown_token)
        except TimeoutError:
            raise HandshakeTimeoutError(
                f"{connection_id}: did not receive {what} within {self._handshake_timeout}s"
            ) from None
        except (ValueError, OSError) as exc:
            raise ServerSocketError(f"{connection_id}: failed to read {what}: {exc}") from exc
        if not raw:
            raise ProtocolError(f"connection closed before sending {what}", source=connection_id)
        return _decode_line(raw)

    async def _pump(
        self,
        reader: asyncio.StreamReader,
        parse_line: Callable[[str], None],
        future: concurrent.futures.Future[Any],
        output: Callable[[], Any],
        connection_id: str,
    ) -> None:
        lines = 0
        try:
            while raw := await reader.readline():
                parse_line(_decode_line(raw))
                lines += 1
            future.set_result(output())
        except HarnessError as exc:
            future.set_exception(exc)
        except (ValueError, OSError) as exc:
            # StreamReader.readline reports an over-long line as ValueError.
            future.set_exception(ServerSocketError(f"{connection_id}: read failed: {exc}"))
        except asyncio.CancelledError:
            future.cancel()
            raise
        self._logger.debug(
            "ir_connection_finished",
            lines=lines,
            failed=future.cancelled() or future.exception() is not None,
        )

    def _register_test_vm(self, connection_id: str) -> concurrent.futures.Future[TestVmMessages]:
        with self._lock:
            if self._test_vm_connected:
                raise ProtocolError("test VM opened a second orchestrator connection", source=connection_id)
            self._test_vm_connected = True
            return self._test_vm_future

    def _register_dump(self) -> concurrent.futures.Future[MethodDump]:
        future: concurrent.futures.Future[MethodDump] = concurrent.futures.Future()
        with self._lock:
            self._dump_futures.append(future)
        return future

    def _finish_handshake(self, handshake: asyncio.Future[None]) -> None:
        self._handshakes.discard(handshake)
        if not handshake.done():
            handshake.set_result(None)

    def _fail(self, exc: HarnessError) -> None:
        self._logger.error("ir_connection_fatal", error=str(exc), error_type=type(exc).__name__)
        with self._lock:
            if self._fatal.done():
                return
            self._fatal.set_exception(exc)
        if self._server is not None:
            self._server.close()


def _decode_line(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").rstrip("\r\n")


def _remaining(deadline: float | None) -> float | None:
    if deadline is None:
        return None
    return max(deadline - time.monotonic(), 0.0)


__all__ = ["TestVmSocketServer"]
