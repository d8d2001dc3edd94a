"""Reference producer side of the line protocol, as used by a test VM."""

from __future__ import annotations

import os
import socket
import threading
from collections.abc import Iterable, Mapping
from contextlib import suppress
from typing import Final

from ir_harness.constants import (
    COMPILE_PHASE_HEADER,
    COMPILER_DUMP_IDENTITY,
    DEFAULT_SERVER_HOST,
    END_MARKER,
    SERVER_PORT_ENV,
    STDOUT_TAG,
    TEST_VM_IDENTITY,
)
from ir_harness.errors import ServerSocketError

_CONNECT_TIMEOUT_SECONDS: Final[float] = 10.0


def server_port_from_env(environ: Mapping[str, str] | None = None) -> int:
    """Read the driver port published through ``IR_FRAMEWORK_SERVER_PORT``."""

    env = os.environ if environ is None else environ
    raw = env.get(SERVER_PORT_ENV)
    if raw is None:
        raise ServerSocketError(f"{SERVER_PORT_ENV} is not set; was the test VM started by the driver?")
    try:
        port = int(raw.strip())
    except ValueError:
        raise ServerSocketError(f"{SERVER_PORT_ENV} must be an integer port, got {raw!r}") from None
    if not 0 < port < 65536:
        raise ServerSocketError(f"{SERVER_PORT_ENV} is out of range: {port}")
    return port


class _LineClient:
    """Newline-delimited UTF-8 writer over one loopback connection."""

    def __init__(self, port: int | None, identity: str, host: str) -> None:
        resolved_port = server_port_from_env() if port is None else port
        try:
            self._socket = socket.create_connection((host, resolved_port), timeout=_CONNECT_TIMEOUT_SECONDS)
        except OSError as exc:
            raise ServerSocketError(f"cannot connect to driver at {host}:{resolved_port}: {exc}") from exc
        self._socket.settimeout(None)
        self._lock = threading.Lock()
        self._closed = False
        self._send_lines([identity])

    def _send_lines(self, lines: Iterable[str]) -> None:
        payload = "".join(f"{line}\n" for line in lines).encode("utf-8")
        with self._lock:
            if self._closed:
                raise ServerSocketError("client connection is closed")
            try:
                self._socket.sendall(payload)
            except OSError as exc:
                raise ServerSocketError(f"failed to write to driver: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        with suppress(OSError):
            self._socket.shutdown(socket.SHUT_WR)
        self._socket.close()

    @property
    def closed(self) -> bool:
        return self._closed


class TestVmClient(_LineClient):
    """The test VM's orchestrator connection (``#TestVM#``)."""

    __test__ = False

    def __init__(self, port: int | None = None, *, host: str = DEFAULT_SERVER_HOST) -> None:
        super().__init__(port, TEST_VM_IDENTITY, host)

    def write(self, message: str, tag: str) -> None:
        """Send one single-line tagged message, e.g. ``write("m1", "[TEST_LIST]")``."""

        self._send_lines([f"{tag} {message}"])

    def write_stdout(self, message: str) -> None:
        self.write(message, STDOUT_TAG)

    def write_block(self, tag: str, lines: Iterable[str]) -> None:
        """Send a block tag, its body lines and the closing end marker."""

        self._send_lines([tag, *lines, END_MARKER])

    def write_raw(self, line: str) -> None:
        self._send_lines([line])

    def __enter__(self) -> TestVmClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class CompilerDumpClient(_LineClient):
    """One compiler-dump connection (``#HotSpot#``) for a single method."""

    def __init__(self, method_name: str, port: int | None = None, *, host: str = DEFAULT_SERVER_HOST) -> None:
        super().__init__(port, COMPILER_DUMP_IDENTITY, host)
        self.method_name = method_name
        self._send_lines([method_name])

    def write_phase(self, phase_name: str, lines: Iterable[str]) -> None:
        """Send one phase segment: header, dump lines and end marker."""

        self._send_lines([f"{COMPILE_PHASE_HEADER} {phase_name}", *lines, END_MARKER])

    def write_raw(self, line: str) -> None:
        self._send_lines([line])

    def __enter__(self) -> CompilerDumpClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["CompilerDumpClient", "TestVmClient", "server_port_from_env"]
