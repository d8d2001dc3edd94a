"""Join per-connection results into one read-only ``TestVmData``."""

from __future__ import annotations

import concurrent.futures
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from ir_harness.domain.dumps import MethodDump
from ir_harness.errors import DuplicateMethodDumpError, TestVmTaskError, check
from ir_harness.network.messages import ApplicableIRRules, TestVmMessages, VmInfo
from ir_harness.utils.concurrency import wait_for_all


class MethodDumps(Mapping[str, MethodDump]):
    """Method name -> ``MethodDump``; one dump stream per method."""

    def __init__(self, dumps: Iterable[MethodDump] = ()) -> None:
        self._dumps: dict[str, MethodDump] = {}
        for dump in dumps:
            self.add(dump)

    def add(self, dump: MethodDump) -> None:
        if dump.method_name in self._dumps:
            raise DuplicateMethodDumpError(
                f"received more than one compiler dump stream for method {dump.method_name!r}"
            )
        self._dumps[dump.method_name] = dump

    def __getitem__(self, method_name: str) -> MethodDump:
        return self._dumps[method_name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._dumps)

    def __len__(self) -> int:
        return len(self._dumps)

    def __repr__(self) -> str:
        return f"MethodDumps({sorted(self._dumps)!r})"


@dataclass(frozen=True, slots=True)
class TestVmData:
    """Everything one test VM run produced, ready for rule matching."""

    __test__ = False

    messages: TestVmMessages
    method_dumps: Mapping[str, MethodDump] = field(default_factory=dict)
    allow_not_compilable: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "method_dumps", MappingProxyType(dict(self.method_dumps)))

    @property
    def vm_info(self) -> VmInfo:
        return self.messages.vm_info

    @property
    def applicable_rules(self) -> ApplicableIRRules:
        return self.messages.applicable_rules

    def method_dump(self, method_name: str) -> MethodDump | None:
        return self.method_dumps.get(method_name)


def aggregate(
    test_vm_future: concurrent.futures.Future[TestVmMessages],
    dump_futures: Iterable[concurrent.futures.Future[MethodDump]],
    *,
    allow_not_compilable: bool = False,
    timeout: float | None = None,
) -> TestVmData:
    """Block until every connection task finished and build ``TestVmData``.

    The first task failure is re-raised as ``TestVmTaskError`` with the original
    exception chained. Timeouts propagate unchanged.
    """

    futures = [test_vm_future, *dump_futures]
    try:
        results = wait_for_all(futures, timeout=timeout)
    except TimeoutError:
        raise
    except Exception as exc:
        raise TestVmTaskError(f"test VM connection task failed: {exc}") from exc

    messages = results[0]
    check(isinstance(messages, TestVmMessages), f"orchestrator task returned {type(messages).__name__}")
    dumps = MethodDumps(result for result in results[1:] if isinstance(result, MethodDump))
    return TestVmData(messages=messages, method_dumps=dumps, allow_not_compilable=allow_not_compilable)


__all__ = ["MethodDumps", "TestVmData", "aggregate"]
