"""
ir-harness: structured run logging.

File: src/ir_harness/observability/logging.py

Purpose
- One JSON-lines log per harness run (``<log_dir>/<run_id>/ir_harness.jsonl``),
  fed by both stdlib loggers and ``structlog`` loggers.

Functional requirements
- Events carry correlation fields (``run_id``, ``connection_id``, ``method``,
  ``phase``) as top-level keys; ``correlation_scope`` binds them per context, which
  follows each connection task on the server loop.
- Keyword arguments of structlog events end up under ``fields``.

Non-functional requirements
- Emitting never blocks the server loop: records go through a bounded queue to a
  listener thread and are counted, not waited on, when the queue is full.
- ``shutdown_logging`` drains the queue and is safe to call repeatedly.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import threading
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

import structlog

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

CORRELATION_KEYS: Final[tuple[str, ...]] = ("run_id", "connection_id", "method", "phase")

_RESERVED_RECORD_ATTRS: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "correlation"}

_correlation: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "ir_harness_correlation", default=()
)

_active_lock = threading.Lock()
_active: StructuredLoggingHandle | None = None
_atexit_hooked = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Where and how one run logs."""

    run_id: str
    base_log_dir: Path | str = Path("logs")
    logger_name: str = "ir_harness"
    level: int | str = "INFO"
    queue_size: int = 4096
    log_filename: str = "ir_harness.jsonl"
    log_to_stdout: bool = False

    def validated(self) -> tuple[str, str, str, int, int]:
        """Return ``(run_id, logger_name, log_filename, level, queue_size)`` or raise ``ValueError``."""

        run_id = _non_empty("run_id", self.run_id)
        logger_name = _non_empty("logger_name", self.logger_name)
        log_filename = _non_empty("log_filename", self.log_filename)
        if Path(log_filename).name != log_filename:
            raise ValueError("log_filename must not include path separators")
        if isinstance(self.queue_size, bool) or not isinstance(self.queue_size, int):
            raise ValueError(f"queue_size must be an integer, got {type(self.queue_size).__name__}")
        if self.queue_size <= 0:
            raise ValueError("queue_size must be > 0")
        return run_id, logger_name, log_filename, _level_number(self.level), self.queue_size


class _CorrelatingQueueHandler(logging.handlers.QueueHandler):
    """Attaches the caller's correlation context and drops records on a full queue."""

    def __init__(self, log_queue: queue.Queue[logging.LogRecord]) -> None:
        super().__init__(log_queue)
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    @property
    def dropped(self) -> int:
        with self._dropped_lock:
            return self._dropped

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # Must run on the emitting thread: the listener has no access to its contextvars.
        bound = get_correlation_context()
        explicit = getattr(record, "correlation", None)
        if isinstance(explicit, Mapping):
            bound.update(_clean_pairs(explicit))
        if bound:
            record.correlation = bound
        return super().prepare(record)  # type: ignore[return-value]

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1


class _JsonLinesFormatter(logging.Formatter):
    def __init__(self, run_id: str) -> None:
        super().__init__()
        self._run_id = run_id

    def format(self, record: logging.LogRecord) -> str:
        correlation = {"run_id": self._run_id}
        correlation.update(_clean_pairs(getattr(record, "correlation", None) or {}))
        for key in CORRELATION_KEYS:
            value = getattr(record, key, None)
            if isinstance(value, str) and value.strip():
                correlation[key] = value.strip()

        event: dict[str, JSONValue] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **correlation,
        }
        fields = {
            key: _to_json(value)
            for key, value in vars(record).items()
            if key not in _RESERVED_RECORD_ATTRS and key not in CORRELATION_KEYS and not key.startswith("_")
        }
        if fields:
            event["fields"] = fields
        if record.exc_info:
            event["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            event["stack"] = str(record.stack_info)
        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class StructuredLoggingHandle:
    """A running log setup: its logger, file, queue and listener."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        run_id: str,
        log_path: Path,
        queue_handler: _CorrelatingQueueHandler,
        sinks: tuple[logging.Handler, ...],
        listener: logging.handlers.QueueListener,
    ) -> None:
        self.logger = logger
        self.run_id = run_id
        self.log_path = log_path
        self.run_log_dir = log_path.parent
        self._queue_handler = queue_handler
        self._sinks = sinks
        self._listener = listener
        self._lock = threading.Lock()
        self._is_shutdown = False

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._is_shutdown

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        pending: queue.Queue[logging.LogRecord] = self._queue_handler.queue  # type: ignore[assignment]
        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        while pending.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.01)
        for sink in self._sinks:
            sink.flush()

    def shutdown(self, *, timeout_seconds: float = 2.0) -> None:
        with self._lock:
            if self._is_shutdown:
                return
            self.flush(timeout_seconds=timeout_seconds)
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.close()
            self._is_shutdown = True


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Start logging for one run, replacing any previously active setup.

    ``structlog.get_logger(__name__)`` loggers below ``config.logger_name`` share
    the same sinks.
    """

    run_id, logger_name, log_filename, level, queue_size = config.validated()
    _replace_active(None)

    log_path = Path(config.base_log_dir) / run_id / log_filename
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = _JsonLinesFormatter(run_id)
    sinks: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.log_to_stdout:
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    logger = logging.getLogger(logger_name)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(level)
    logger.propagate = False

    log_queue: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=queue_size)
    queue_handler = _CorrelatingQueueHandler(log_queue)
    queue_handler.setLevel(level)
    listener = logging.handlers.QueueListener(log_queue, *sinks, respect_handler_level=True)
    listener.start()
    logger.addHandler(queue_handler)
    configure_structlog()

    handle = StructuredLoggingHandle(
        logger=logger,
        run_id=run_id,
        log_path=log_path,
        queue_handler=queue_handler,
        sinks=tuple(sinks),
        listener=listener,
    )
    _replace_active(handle)
    _hook_atexit()
    return handle


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    run_id: str,
    log_dir: Path | str | None = None,
    logger_name: str = "ir_harness",
) -> logging.Logger:
    """Start logging from an ``[observability]`` table and return the configured logger."""

    table = dict(observability_config or {})
    level = table.get("log_level", "INFO")
    base_log_dir = log_dir if log_dir is not None else table.get("log_dir", "logs")
    handle = setup_structured_logging(
        LoggingConfig(
            run_id=run_id,
            base_log_dir=base_log_dir if isinstance(base_log_dir, (str, Path)) else "logs",
            logger_name=logger_name,
            level=level if isinstance(level, (str, int)) else "INFO",
            log_to_stdout=bool(table.get("log_to_stdout", False)),
        )
    )
    return handle.logger


def configure_structlog() -> None:
    """Send structlog events to stdlib logging: event name as message, kwargs as ``extra``."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    with _active_lock:
        return _active


def flush_logging(handle: StructuredLoggingHandle | None = None, *, timeout_seconds: float = 2.0) -> None:
    target = handle or get_active_logging_handle()
    if target is not None:
        target.flush(timeout_seconds=timeout_seconds)


def shutdown_logging(handle: StructuredLoggingHandle | None = None, *, timeout_seconds: float = 2.0) -> None:
    """Drain and close ``handle`` (default: the active setup)."""

    global _active
    target = handle or get_active_logging_handle()
    if target is None:
        return
    target.shutdown(timeout_seconds=timeout_seconds)
    with _active_lock:
        if _active is target:
            _active = None


def get_correlation_context() -> dict[str, str]:
    return dict(_correlation.get())


def set_correlation_fields(**fields: str | None) -> contextvars.Token[tuple[tuple[str, str], ...]]:
    """Bind (or, with ``None``, unbind) correlation fields; returns the reset token."""

    bound = get_correlation_context()
    for key, value in fields.items():
        key = _non_empty("correlation key", key)
        if value is None:
            bound.pop(key, None)
        else:
            bound[key] = _non_empty("correlation value", value)
    return _correlation.set(tuple(bound.items()))


def reset_correlation_fields(token: contextvars.Token[tuple[tuple[str, str], ...]]) -> None:
    _correlation.reset(token)


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    token = set_correlation_fields(**fields)
    try:
        yield
    finally:
        reset_correlation_fields(token)


def _replace_active(handle: StructuredLoggingHandle | None) -> None:
    global _active
    with _active_lock:
        previous, _active = _active, handle
    if previous is not None and previous is not handle:
        previous.shutdown()


def _hook_atexit() -> None:
    global _atexit_hooked
    if not _atexit_hooked:
        atexit.register(shutdown_logging)
        _atexit_hooked = True


def _non_empty(label: str, value: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{label} must be a string, got {type(value).__name__}")
    stripped = value.strip()
    if not stripped:
        raise ValueError(f"{label} must not be empty")
    return stripped


def _level_number(level: int | str) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        number = logging.getLevelName(level.strip().upper())
        if isinstance(number, int):
            return number
    raise ValueError(f"unsupported logging level {level!r}")


def _clean_pairs(pairs: Mapping[object, object]) -> dict[str, str]:
    return {
        key.strip(): value.strip()
        for key, value in pairs.items()
        if isinstance(key, str) and isinstance(value, str) and key.strip() and value.strip()
    }


def _to_json(value: object) -> JSONValue:
    match value:
        case None | bool() | int() | str():
            return value
        case float():
            return value if math.isfinite(value) else "<non-finite>"
        case datetime():
            aware = value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)
            return aware.isoformat(timespec="microseconds").replace("+00:00", "Z")
        case Path():
            return value.as_posix()
        case bytes():
            return value.decode("utf-8", errors="replace")
        case Mapping():
            return {str(key): _to_json(item) for key, item in value.items()}
        case list() | tuple():
            return [_to_json(item) for item in value]
        case set() | frozenset():
            return sorted((_to_json(item) for item in value), key=lambda item: json.dumps(item, sort_keys=True))
    return repr(value)


__all__ = [
    "CORRELATION_KEYS",
    "JSONScalar",
    "JSONValue",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "flush_logging",
    "get_active_logging_handle",
    "get_correlation_context",
    "reset_correlation_fields",
    "set_correlation_fields",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
