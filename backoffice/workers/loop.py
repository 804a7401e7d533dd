from __future__ import annotations

import asyncio
import atexit
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from backoffice.domain.contracts import JobStore, KillSwitch
from backoffice.domain.error_taxonomy import describe_failure
from backoffice.domain.models import JobRecord

ProcessHandler = Callable[[JobRecord], Awaitable[None]]
logger = logging.getLogger("runtime")


@dataclass
class WorkerState:
    started: bool = False
    stopped: bool = False
    running: bool = False
    ticks_total: int = 0
    claims_total: int = 0
    idle_ticks_total: int = 0
    skipped_ticks_total: int = 0
    kill_switch_skips_total: int = 0
    errors_total: int = 0


@dataclass
class WorkerLoop:
    """Polling driver that claims up to `concurrency` jobs per tick and runs them concurrently."""

    worker_id: str
    store: JobStore
    process: ProcessHandler
    kill_switch: KillSwitch
    poll_interval_ms: int = 10000
    concurrency: int = 2
    kill_switch_name: str = "ocr"

    async def start(self) -> WorkerHandle:
        cleared = await self.store.clear_expired_locks()
        handle = WorkerHandle(worker=self)
        handle.state.started = True
        handle._timer = asyncio.create_task(handle._run_timer())
        atexit.register(handle.stop)
        logger.info(
            "worker loop started",
            extra={"worker_id": self.worker_id, "cleared_locks": cleared},
        )
        return handle


@dataclass(eq=False)
class WorkerHandle:
    worker: WorkerLoop
    state: WorkerState = field(default_factory=WorkerState)
    _timer: asyncio.Task[None] | None = None
    _ticks: set[asyncio.Task[int]] = field(default_factory=set)

    async def tick(self) -> int:
        """Claim and run one batch; returns the number of claimed jobs."""
        if self.state.stopped or self.state.running:
            self.state.skipped_ticks_total += 1
            return 0

        self.state.running = True
        try:
            if await self.worker.kill_switch.is_enabled(self.worker.kill_switch_name):
                self.state.kill_switch_skips_total += 1
                logger.info(
                    "worker tick skipped by kill switch",
                    extra={"worker_id": self.worker.worker_id, "switch": self.worker.kill_switch_name},
                )
                return 0
            return await self._run_batch()
        except Exception:
            self.state.errors_total += 1
            logger.exception("worker tick error", extra={"worker_id": self.worker.worker_id})
            return 0
        finally:
            self.state.running = False

    def stop(self) -> None:
        if self.state.stopped:
            return
        self.state.stopped = True
        if self._timer is not None:
            self._timer.cancel()
        atexit.unregister(self.stop)
        logger.info("worker loop stopped", extra={"worker_id": self.worker.worker_id})

    async def drain(self) -> None:
        """Wait for ticks that were already running when stop() was called."""
        if self._timer is not None:
            await asyncio.gather(self._timer, return_exceptions=True)
        if self._ticks:
            await asyncio.gather(*list(self._ticks), return_exceptions=True)

    async def _run_batch(self) -> int:
        jobs = await self.worker.store.claim(limit=self.worker.concurrency, worker_id=self.worker.worker_id)
        self.state.ticks_total += 1
        if not jobs:
            self.state.idle_ticks_total += 1
            return 0

        self.state.claims_total += len(jobs)
        outcomes = await asyncio.gather(*(self.worker.process(job) for job in jobs), return_exceptions=True)
        for job, outcome in zip(jobs, outcomes):
            if isinstance(outcome, BaseException):
                self.state.errors_total += 1
                logger.error(
                    "worker job error",
                    extra={
                        "worker_id": self.worker.worker_id,
                        "job_id": job.id,
                        "document_id": job.natural_key,
                        "error": describe_failure(outcome),
                    },
                )
        return len(jobs)

    async def _run_timer(self) -> None:
        interval_seconds = max(self.worker.poll_interval_ms, 1) / 1000
        while not self.state.stopped:
            await asyncio.sleep(interval_seconds)
            if self.state.stopped:
                break
            task = asyncio.create_task(self.tick())
            self._ticks.add(task)
            task.add_done_callback(self._ticks.discard)
