"""Cooperative batch scheduling.

Large record lists are walked in fixed-size chunks. Between chunks control
goes back to the event loop (``asyncio.sleep(0)``) so a single-threaded host
stays responsive. Records are always handed over strictly left to right; the
yield never reorders them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar, Union

T = TypeVar("T")
Logger = Union[logging.Logger, logging.LoggerAdapter]

BATCH_SIZE = 100


def progress_percent(processed: int, total: int) -> int:
    if total <= 0:
        return 100
    return round(min(processed, total) / total * 100)


async def process_in_batches(
    records: Sequence[T],
    handler: Callable[[T], Any],
    *,
    batch_size: int = BATCH_SIZE,
    logger: Optional[Logger] = None,
    label: str = "Batch processing",
    on_progress: Optional[Callable[[int, int, int], None]] = None,
    yield_control: Callable[[], Awaitable[None]] = lambda: asyncio.sleep(0),
) -> int:
    """Feed ``records`` to ``handler`` one by one, yielding between chunks.

    ``on_progress`` receives ``(percent, processed, total)`` after every chunk.
    Returns the number of records processed.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    total = len(records)
    processed = 0
    while processed < total:
        chunk = records[processed:processed + batch_size]
        for record in chunk:
            handler(record)
        processed += len(chunk)

        percent = progress_percent(processed, total)
        if logger:
            logger.info("%s progress: %d%% (%d/%d segments processed)", label, percent, processed, total)
        if on_progress:
            on_progress(percent, processed, total)

        if processed < total:
            await yield_control()
    return processed


def chunked(items: Sequence[T], size: int) -> List[List[T]]:
    if size <= 0:
        raise ValueError("size must be positive")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]
