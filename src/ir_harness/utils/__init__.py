"""Utility exports for concurrency helpers."""

from ir_harness.utils.concurrency import (
    BackgroundLoop,
    CancellationToken,
    run_with_timeout,
    wait_for_all,
)

__all__ = [
    "BackgroundLoop",
    "CancellationToken",
    "run_with_timeout",
    "wait_for_all",
]
