"""Regression tests for concurrency utility edge cases."""

from __future__ import annotations

import asyncio
import concurrent.futures
import gc
import sys
import warnings
from contextlib import contextmanager
from types import SimpleNamespace
from typing import TYPE_CHECKING

import pytest

from ir_harness.utils.concurrency import BackgroundLoop, CancellationToken, run_with_timeout, wait_for_all

if TYPE_CHECKING:
    from collections.abc import Iterator


@contextmanager
def _capture_unraisable() -> Iterator[list[SimpleNamespace]]:
    captured: list[SimpleNamespace] = []
    original = sys.unraisablehook

    def hook(unraisable: object) -> None:
        captured.append(
            SimpleNamespace(
                exc_type=getattr(unraisable, "exc_type", None),
                err_msg=getattr(unraisable, "err_msg", None),
            )
        )

    sys.unraisablehook = hook
    try:
        yield captured
    finally:
        sys.unraisablehook = original


async def _slow() -> int:
    await asyncio.sleep(0.01)
    return 1


async def _slower() -> int:
    await asyncio.sleep(0.05)
    return 1


async def test_run_with_timeout_returns_value() -> None:
    assert await run_with_timeout(_slow(), 1.0) == 1


async def test_run_with_timeout_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValueError, match="timeout_seconds must be > 0"):
        await run_with_timeout(_slow(), 0)


async def test_run_with_timeout_does_not_leak_coroutine_on_early_cancel() -> None:
    token = CancellationToken()
    token.cancel()

    with _capture_unraisable() as leaked, warnings.catch_warnings():
        warnings.simplefilter("error", RuntimeWarning)
        coro = _slow()
        with pytest.raises(asyncio.CancelledError):
            await run_with_timeout(coro, 1.0, token)
        del coro
        gc.collect()

    assert leaked == []


async def test_run_with_timeout_timeout_path_does_not_leak_coroutine() -> None:
    with _capture_unraisable() as leaked, warnings.catch_warnings():
        warnings.simplefilter("error", RuntimeWarning)
        with pytest.raises(TimeoutError):
            await run_with_timeout(_slower(), 0.001, None)
        gc.collect()

    assert leaked == []


async def test_cancel_while_running_raises_cancelled() -> None:
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.01, token.cancel)

    with pytest.raises(asyncio.CancelledError):
        await run_with_timeout(asyncio.sleep(5), 2.0, token)


def test_background_loop_runs_coroutines_and_stops() -> None:
    loop = BackgroundLoop(name="test-loop")
    loop.start()
    try:
        assert loop.is_running
        assert loop.run(_slow(), timeout=2.0) == 1
        with pytest.raises(RuntimeError, match="already started"):
            loop.start()
    finally:
        loop.stop(timeout=2.0)

    assert not loop.is_running
    loop.stop()


def test_background_loop_requires_start() -> None:
    with pytest.raises(RuntimeError, match="not running"):
        _ = BackgroundLoop().loop


def test_wait_for_all_preserves_order() -> None:
    with concurrent.futures.ThreadPoolExecutor(max_workers=2) as pool:
        futures = [pool.submit(lambda value=value: value * 2) for value in (3, 1, 2)]
        assert wait_for_all(futures, timeout=2.0) == [6, 2, 4]


def test_wait_for_all_raises_first_failure() -> None:
    failed: concurrent.futures.Future[int] = concurrent.futures.Future()
    failed.set_exception(ValueError("boom"))
    pending: concurrent.futures.Future[int] = concurrent.futures.Future()

    with pytest.raises(ValueError, match="boom"):
        wait_for_all([pending, failed], timeout=2.0)


def test_wait_for_all_times_out() -> None:
    pending: concurrent.futures.Future[int] = concurrent.futures.Future()
    with pytest.raises(TimeoutError, match="1 task"):
        wait_for_all([pending], timeout=0.01)
