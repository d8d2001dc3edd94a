"""Unit tests for joining connection results into ``TestVmData``."""

from __future__ import annotations

import concurrent.futures

import pytest

from ir_harness.domain.dumps import MethodDump
from ir_harness.errors import DuplicateMethodDumpError, InternalCheckError, ProtocolError, TestVmTaskError
from ir_harness.network.aggregator import MethodDumps, aggregate
from ir_harness.network.messages import TestVmMessages, VmInfo


def _done(value: object) -> concurrent.futures.Future[object]:
    future: concurrent.futures.Future[object] = concurrent.futures.Future()
    future.set_result(value)
    return future


def _failed(exc: BaseException) -> concurrent.futures.Future[object]:
    future: concurrent.futures.Future[object] = concurrent.futures.Future()
    future.set_exception(exc)
    return future


def test_aggregate_builds_read_only_data() -> None:
    messages = TestVmMessages(vm_info=VmInfo({"UseZGC": "true"}))
    data = aggregate(
        _done(messages),  # type: ignore[arg-type]
        [_done(MethodDump("foo")), _done(MethodDump("bar"))],  # type: ignore[list-item]
        allow_not_compilable=True,
    )

    assert data.messages is messages
    assert data.vm_info.get("UseZGC") == "true"
    assert sorted(data.method_dumps) == ["bar", "foo"]
    assert data.method_dump("foo") is not None
    assert data.method_dump("missing") is None
    assert data.allow_not_compilable is True
    with pytest.raises(TypeError):
        data.method_dumps["baz"] = MethodDump("baz")  # type: ignore[index]


def test_task_failure_is_wrapped_with_cause() -> None:
    cause = ProtocolError("bad line")
    with pytest.raises(TestVmTaskError) as excinfo:
        aggregate(_done(TestVmMessages()), [_failed(cause)])  # type: ignore[arg-type, list-item]

    assert excinfo.value.__cause__ is cause


def test_pending_task_times_out() -> None:
    pending: concurrent.futures.Future[MethodDump] = concurrent.futures.Future()
    with pytest.raises(TimeoutError):
        aggregate(_done(TestVmMessages()), [pending], timeout=0.01)  # type: ignore[arg-type]


def test_orchestrator_result_of_wrong_type_is_internal_error() -> None:
    with pytest.raises(InternalCheckError, match="orchestrator task returned MethodDump"):
        aggregate(_done(MethodDump("foo")), [])  # type: ignore[arg-type]


def test_duplicate_method_dump_is_rejected() -> None:
    with pytest.raises(DuplicateMethodDumpError, match="foo"):
        aggregate(
            _done(TestVmMessages()),  # type: ignore[arg-type]
            [_done(MethodDump("foo")), _done(MethodDump("foo"))],  # type: ignore[list-item]
        )


def test_method_dumps_mapping_behaviour() -> None:
    dumps = MethodDumps([MethodDump("a")])
    dumps.add(MethodDump("b"))
    assert len(dumps) == 2
    assert list(dumps) == ["a", "b"]
    with pytest.raises(DuplicateMethodDumpError):
        dumps.add(MethodDump("a"))
