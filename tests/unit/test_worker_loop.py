from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from backoffice.clients.stub import StaticKillSwitch
from backoffice.domain.models import JobRecord, JobStatus
from backoffice.repositories.stub import InMemoryJobStore
from backoffice.workers.loop import WorkerLoop


def _loop(store: InMemoryJobStore, process, *, kill_switch: StaticKillSwitch | None = None) -> WorkerLoop:
    return WorkerLoop(
        worker_id="worker-ocr-test",
        store=store,
        process=process,
        kill_switch=kill_switch or StaticKillSwitch(),
        poll_interval_ms=60000,
        concurrency=2,
    )


@pytest.mark.unit
def test_tick_claims_up_to_concurrency_and_processes_batch() -> None:
    store = InMemoryJobStore()
    processed: list[str] = []

    async def _process(job: JobRecord) -> None:
        processed.append(job.natural_key)

    async def _run() -> None:
        for index in range(3):
            await store.enqueue(natural_key=f"doc-{index}", owner_ref="app-1", max_attempts=3)
        handle = await _loop(store, _process).start()
        try:
            assert await handle.tick() == 2
            assert await handle.tick() == 1
            assert await handle.tick() == 0
        finally:
            handle.stop()
            await handle.drain()

        assert sorted(processed) == ["doc-0", "doc-1", "doc-2"]
        assert handle.state.claims_total == 3
        assert handle.state.ticks_total == 3
        assert handle.state.idle_ticks_total == 1

    asyncio.run(_run())


@pytest.mark.unit
def test_kill_switch_skips_claiming() -> None:
    store = InMemoryJobStore()

    async def _process(job: JobRecord) -> None:
        raise AssertionError(f"unexpected job {job.id}")

    async def _run() -> None:
        job = await store.enqueue(natural_key="doc-1", owner_ref="app-1", max_attempts=3)
        handle = await _loop(store, _process, kill_switch=StaticKillSwitch(enabled={"ocr"})).start()
        try:
            assert await handle.tick() == 0
        finally:
            handle.stop()
            await handle.drain()

        assert handle.state.kill_switch_skips_total == 1
        assert store.jobs[job.id].status == JobStatus.QUEUED

    asyncio.run(_run())


@pytest.mark.unit
def test_overlapping_tick_is_skipped_while_batch_runs() -> None:
    store = InMemoryJobStore()

    async def _run() -> None:
        release = asyncio.Event()

        async def _process(job: JobRecord) -> None:
            del job
            await release.wait()

        await store.enqueue(natural_key="doc-1", owner_ref="app-1", max_attempts=3)
        handle = await _loop(store, _process).start()
        try:
            first = asyncio.create_task(handle.tick())
            await asyncio.sleep(0.01)
            assert handle.state.running is True
            assert await handle.tick() == 0
            release.set()
            assert await first == 1
        finally:
            handle.stop()
            await handle.drain()

        assert handle.state.skipped_ticks_total == 1
        assert handle.state.running is False

    asyncio.run(_run())


@pytest.mark.unit
def test_one_failing_job_does_not_stop_the_batch() -> None:
    store = InMemoryJobStore()
    processed: list[str] = []

    async def _process(job: JobRecord) -> None:
        if job.natural_key == "doc-bad":
            raise RuntimeError("unexpected")
        processed.append(job.natural_key)

    async def _run() -> None:
        await store.enqueue(natural_key="doc-bad", owner_ref="app-1", max_attempts=3)
        await store.enqueue(natural_key="doc-good", owner_ref="app-1", max_attempts=3)
        handle = await _loop(store, _process).start()
        try:
            assert await handle.tick() == 2
        finally:
            handle.stop()
            await handle.drain()

        assert processed == ["doc-good"]
        assert handle.state.errors_total == 1

    asyncio.run(_run())


@pytest.mark.unit
def test_start_clears_expired_locks_and_stop_is_idempotent() -> None:
    store = InMemoryJobStore(lease_timeout_minutes=15)

    async def _process(job: JobRecord) -> None:
        del job

    async def _run() -> None:
        job = await store.enqueue(natural_key="doc-1", owner_ref="app-1", max_attempts=3)
        await store.claim(limit=1, worker_id="crashed-worker")
        store.jobs[job.id].locked_at = datetime.now(tz=UTC) - timedelta(minutes=30)

        handle = await _loop(store, _process).start()
        assert store.jobs[job.id].locked_by is None
        assert handle.state.started is True

        handle.stop()
        handle.stop()
        await handle.drain()

        assert handle.state.stopped is True
        assert await handle.tick() == 0
        assert handle.state.skipped_ticks_total == 1

    asyncio.run(_run())


@pytest.mark.unit
def test_timer_ticks_on_poll_interval() -> None:
    store = InMemoryJobStore()
    processed: list[str] = []

    async def _process(job: JobRecord) -> None:
        processed.append(job.natural_key)

    async def _run() -> None:
        await store.enqueue(natural_key="doc-1", owner_ref="app-1", max_attempts=3)
        loop = WorkerLoop(
            worker_id="worker-ocr-test",
            store=store,
            process=_process,
            kill_switch=StaticKillSwitch(),
            poll_interval_ms=5,
            concurrency=2,
        )
        handle = await loop.start()
        for _ in range(100):
            if processed:
                break
            await asyncio.sleep(0.01)
        handle.stop()
        await handle.drain()

        assert processed == ["doc-1"]
        assert handle.state.ticks_total >= 1

    asyncio.run(_run())
