"""Worker loop for the index queue."""

import asyncio
import logging
from typing import Optional

from index_queue.engine import QueueEngine
from index_queue.errors import BackendUnreachableError
from index_queue.models import ProcessOptions, ProcessResult


async def _pause(seconds: float, shutdown_event: Optional[asyncio.Event]) -> None:
    """Sleep, waking early if shutdown is requested."""
    if shutdown_event is None:
        await asyncio.sleep(seconds)
        return
    try:
        await asyncio.wait_for(shutdown_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass


async def run_worker_loop(
    engine: QueueEngine,
    logger: logging.Logger,
    options: Optional[ProcessOptions] = None,
    shutdown_event: asyncio.Event = None,
    idle_delay_seconds: float = 2,
    outage_delay_seconds: float = 30,
    max_iterations: Optional[int] = None,
) -> ProcessResult:
    """
    Run the worker loop that drains the index queue.

    A full batch is followed immediately by the next one. An empty batch
    sleeps ``idle_delay_seconds``; an outage of the search backend sleeps
    ``outage_delay_seconds``. Store failures and unexpected errors stop the
    loop by propagating.

    Args:
        engine: Queue engine to process with
        logger: Logger instance
        options: Batch size, record type filter and minimum priority
        shutdown_event: Optional event to signal shutdown between batches
        idle_delay_seconds: Sleep after a batch with nothing due
        outage_delay_seconds: Sleep after the search backend was unreachable
        max_iterations: Stop after this many ``process`` calls

    Returns:
        Totals over every batch processed by this loop
    """
    totals = ProcessResult()
    iterations = 0

    logger.info("Starting index queue worker loop")

    while True:
        if shutdown_event and shutdown_event.is_set():
            logger.info("Shutdown signal received, exiting worker loop")
            break

        if max_iterations is not None and iterations >= max_iterations:
            break
        iterations += 1

        try:
            result = await engine.process(options)
        except BackendUnreachableError as e:
            if e.result is not None:
                totals.skipped += e.result.skipped
            logger.warning(
                f"Search backend unreachable, pausing {outage_delay_seconds}s: {e}"
            )
            await _pause(outage_delay_seconds, shutdown_event)
            continue

        totals.succeeded += result.succeeded
        totals.failed += result.failed

        if result.empty:
            logger.debug("No entries due")
            await _pause(idle_delay_seconds, shutdown_event)

    return totals
