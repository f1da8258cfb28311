"""Bounded-concurrency fan-out for generation calls.

Wraps asyncio.Semaphore to cap how many tasks are in flight. Results keep
input order. The first failure stops further tasks from starting, but
tasks already running are allowed to finish before the error is raised.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, TypeVar

from bookquest.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

log = get_logger(__name__)

T = TypeVar("T")


def is_connectivity_error(exc: BaseException) -> bool:
    """Check if an exception indicates the provider could not be reached.

    Recognises httpx network/timeout errors and Python's built-in
    ConnectionError. Walks the ``__cause__`` chain so errors wrapped by
    LangChain or provider SDKs are also detected.
    """
    import httpx

    if isinstance(exc, (httpx.NetworkError, httpx.TimeoutException, ConnectionError)):
        return True

    cause = exc.__cause__
    if cause is not None:
        return is_connectivity_error(cause)
    return False


async def run_bounded(
    tasks: Sequence[Callable[[], Awaitable[T]]],
    max_concurrency: int = 3,
    *,
    on_progress: Callable[[int, int], None] | None = None,
) -> list[T]:
    """Run deferred tasks with at most ``max_concurrency`` unsettled at once.

    Args:
        tasks: Zero-argument async callables, started in order.
        max_concurrency: Upper bound on tasks started but not yet settled.
        on_progress: Called with ``(settled, total)`` after each started task
            settles, whether it succeeded or failed. Tasks skipped after a
            failure never settle and are not counted.

    Returns:
        Task results in input order.

    Raises:
        ValueError: If ``max_concurrency`` is less than 1.
        Exception: The first task error, re-raised after every task that had
            already started has settled.
    """
    if max_concurrency < 1:
        raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
    if not tasks:
        return []

    total = len(tasks)
    semaphore = asyncio.Semaphore(max_concurrency)
    results: list[T | None] = [None] * total
    completed = 0
    settled = 0
    skipped = 0
    first_error: BaseException | None = None

    async def _run_one(idx: int, task: Callable[[], Awaitable[T]]) -> None:
        nonlocal completed, settled, skipped, first_error
        async with semaphore:
            # Waiting tasks see the failure once they get a slot and never start
            if first_error is not None:
                skipped += 1
                return
            try:
                results[idx] = await task()
            except Exception as e:
                if first_error is None:
                    first_error = e
                    log.warning("batch_item_failed", index=idx, error=str(e))
                else:
                    log.warning("batch_item_failed_after_abort", index=idx, error=str(e))
            else:
                completed += 1
            settled += 1
            if on_progress is not None:
                on_progress(settled, total)

    await asyncio.gather(*(_run_one(i, task) for i, task in enumerate(tasks)))

    if first_error is not None:
        log.error(
            "batch_aborted",
            total_items=total,
            completed=completed,
            skipped=skipped,
            error=str(first_error),
        )
        raise first_error

    log.debug("batch_complete", total_items=total, max_concurrency=max_concurrency)
    return results  # type: ignore[return-value]
