"""Windowed batch scheduler.

Items are processed in consecutive windows of at most ``concurrency``
items. All items of a window run concurrently; the next window starts only
after every item of the current one has settled (succeeded, failed or
raised). The abort token is checked before each window and before each
inter-window pause. A raised exception is counted as an error and never
cancels the other items of its window.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from loguru import logger

from ..config.defaults import (
    DEFAULT_CONCURRENCY,
    DEFAULT_PROGRESS_INTERVAL,
    DEFAULT_WINDOW_DELAY_SECONDS,
)
from .cancellation import AbortToken, is_aborted
from .progress import ProgressSink, notify

T = TypeVar("T")


@dataclass
class BatchResult:
    """Tally of one scheduler run."""

    success: int = 0
    error: int = 0
    aborted: bool = False

    @property
    def processed(self) -> int:
        return self.success + self.error


def _is_success(outcome: Any) -> bool:
    # ItemOutcome-like objects carry a ``success`` attribute; anything else
    # is judged by truthiness.
    if isinstance(outcome, BaseException):
        return False
    return bool(getattr(outcome, "success", outcome))


async def run_batches(
    items: Sequence[T],
    process: Callable[[T], Awaitable[Any]],
    *,
    concurrency: int = DEFAULT_CONCURRENCY,
    abort: AbortToken | None = None,
    delay_seconds: float = DEFAULT_WINDOW_DELAY_SECONDS,
    progress: ProgressSink | None = None,
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
    label: str = "items",
    on_outcome: Callable[[T, Any], None] | None = None,
) -> BatchResult:
    """Run ``process`` over ``items`` in sequential concurrent windows.

    Args:
        items: Work items, processed in order window by window
        process: Per-item coroutine; a truthy result (or ``.success``) counts
            as a success
        concurrency: Maximum items per window
        abort: Abort token checked before each window and each pause
        delay_seconds: Pause between windows
        progress: Optional sink receiving milestone notifications
        progress_interval: Emit progress each time the processed count
            crosses a multiple of this value (and after the last window)
        label: Noun used in progress messages
        on_outcome: Called with ``(item, outcome)`` for every settled item;
            ``outcome`` is the exception when ``process`` raised

    Returns:
        Counts of successful and failed items, and whether the run stopped
        because of the abort token
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    result = BatchResult()
    total = len(items)
    windows = [items[i : i + concurrency] for i in range(0, total, concurrency)]

    for index, window in enumerate(windows):
        if is_aborted(abort):
            logger.info(
                f"Abort requested, skipping {len(windows) - index} remaining window(s) "
                f"of {label}"
            )
            result.aborted = True
            break

        logger.debug(f"Window {index + 1}/{len(windows)}: {len(window)} {label}")
        processed_before = result.processed

        outcomes = await asyncio.gather(
            *(process(item) for item in window), return_exceptions=True
        )

        for item, outcome in zip(window, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(f"Unhandled error while processing {label}: {outcome}")
            if _is_success(outcome):
                result.success += 1
            else:
                result.error += 1
            if on_outcome is not None:
                try:
                    on_outcome(item, outcome)
                except Exception as e:
                    logger.debug(f"Outcome callback failed: {e}")

        is_last = index == len(windows) - 1
        crossed = (
            progress_interval > 0
            and result.processed // progress_interval
            > processed_before // progress_interval
        )
        if is_last or crossed:
            notify(
                progress,
                "info",
                f"Processed {result.processed}/{total} {label} "
                f"({result.success} succeeded, {result.error} failed)",
            )

        if not is_last:
            if is_aborted(abort):
                logger.info(f"Abort requested after window {index + 1} of {label}")
                result.aborted = True
                break
            if delay_seconds > 0:
                await asyncio.sleep(delay_seconds)

    logger.debug(
        f"Batch run of {total} {label} finished: {result.success} ok, "
        f"{result.error} failed{' (aborted)' if result.aborted else ''}"
    )
    return result
