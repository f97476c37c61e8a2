"""Hard deadlines around blocking collaborator calls."""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, TypeVar

from taxflow_kernel.exceptions import SubmissionTimeoutError
from taxflow_kernel.logging_config import get_logger

logger = get_logger("utils.timeouts")

T = TypeVar("T")


def call_with_timeout(
    fn: Callable[..., T],
    timeout_seconds: float | None,
    *args: Any,
    **kwargs: Any,
) -> T:
    """Run ``fn`` and wait at most ``timeout_seconds`` for its result.

    Exceptions raised by ``fn`` propagate unchanged.  On timeout the call is
    abandoned (the worker thread is not interrupted) and
    SubmissionTimeoutError is raised.  ``None`` or a non-positive timeout
    calls ``fn`` inline.
    """
    if timeout_seconds is None or timeout_seconds <= 0:
        return fn(*args, **kwargs)

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="taxflow-call")
    try:
        future = executor.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(
                "collaborator_call_timed_out",
                extra={
                    "callable": getattr(fn, "__qualname__", repr(fn)),
                    "timeout_seconds": timeout_seconds,
                },
            )
            raise SubmissionTimeoutError(timeout_seconds) from None
    finally:
        executor.shutdown(wait=False)
