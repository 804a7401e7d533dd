from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from backoffice.workers.loop import WorkerHandle, WorkerLoop


async def run_worker_until_stopped(
    *,
    worker_loop: WorkerLoop,
    role: str,
    run_id: str,
    stop_event: asyncio.Event,
    logger: logging.Logger,
    on_started: Callable[[WorkerHandle], None] | None = None,
) -> WorkerHandle:
    """Start the polling loop, block until stop_event is set, then let in-flight jobs finish."""
    handle = await worker_loop.start()
    if on_started is not None:
        on_started(handle)
    logger.info(
        "worker runtime started",
        extra={
            "role": role,
            "service": role,
            "run_id": run_id,
            "worker_id": worker_loop.worker_id,
        },
    )
    try:
        await stop_event.wait()
    finally:
        handle.stop()
        await handle.drain()
        logger.info(
            "worker runtime stopped",
            extra={
                "role": role,
                "service": role,
                "run_id": run_id,
                "worker_id": worker_loop.worker_id,
                "ticks_total": handle.state.ticks_total,
                "errors_total": handle.state.errors_total,
            },
        )
    return handle
