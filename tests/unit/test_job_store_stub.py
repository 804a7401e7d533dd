from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from backoffice.domain.models import ExtractionResult, FailureWrite, JobStatus
from backoffice.repositories.stub import InMemoryJobStore


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.mark.unit
def test_enqueue_is_idempotent_per_document() -> None:
    store = InMemoryJobStore()

    async def _run() -> None:
        first = await store.enqueue(natural_key="doc-A", owner_ref="app-1", max_attempts=3)
        second = await store.enqueue(natural_key="doc-A", owner_ref="app-1", max_attempts=5)

        assert first.id == second.id
        assert second.max_attempts == 3
        assert first.status == JobStatus.QUEUED
        assert first.id.startswith("job_")
        assert len(store.jobs) == 1

    asyncio.run(_run())


@pytest.mark.unit
def test_concurrent_claims_never_hand_out_the_same_job() -> None:
    store = InMemoryJobStore()

    async def _run() -> None:
        for index in range(4):
            await store.enqueue(natural_key=f"doc-{index}", owner_ref="app-1", max_attempts=3)

        batches = await asyncio.gather(
            store.claim(limit=2, worker_id="worker-a"),
            store.claim(limit=2, worker_id="worker-b"),
            store.claim(limit=2, worker_id="worker-c"),
        )
        claimed_ids = [job.id for batch in batches for job in batch]

        assert len(claimed_ids) == len(set(claimed_ids))
        assert len(claimed_ids) == 4
        assert all(job.status == JobStatus.PROCESSING for batch in batches for job in batch)

    asyncio.run(_run())


@pytest.mark.unit
def test_claim_orders_by_creation_and_respects_limit() -> None:
    clock = _Clock()
    store = InMemoryJobStore(clock=clock)

    async def _run() -> None:
        await store.enqueue(natural_key="doc-old", owner_ref="app-1", max_attempts=3)
        clock.advance(seconds=1)
        await store.enqueue(natural_key="doc-new", owner_ref="app-1", max_attempts=3)

        claimed = await store.claim(limit=1, worker_id="worker-a")

        assert [job.natural_key for job in claimed] == ["doc-old"]
        assert claimed[0].locked_by == "worker-a"
        assert await store.claim(limit=0, worker_id="worker-a") == []

    asyncio.run(_run())


@pytest.mark.unit
def test_failed_job_waits_for_next_attempt_at() -> None:
    clock = _Clock()
    store = InMemoryJobStore(clock=clock)

    async def _run() -> None:
        job = await store.enqueue(natural_key="doc-1", owner_ref="app-1", max_attempts=3)
        await store.claim(limit=1, worker_id="worker-a")
        await store.record_failure(
            job_id=job.id,
            worker_id="worker-a",
            outcome=FailureWrite(
                status=JobStatus.FAILED,
                attempt_count=1,
                next_attempt_at=clock.now + timedelta(seconds=1),
                last_error="boom",
            ),
        )

        assert await store.claim(limit=1, worker_id="worker-a") == []
        clock.advance(seconds=1)
        reclaimed = await store.claim(limit=1, worker_id="worker-a")
        assert [item.id for item in reclaimed] == [job.id]
        assert reclaimed[0].attempt_count == 1

    asyncio.run(_run())


@pytest.mark.unit
def test_stale_processing_job_is_reclaimed_by_another_worker() -> None:
    clock = _Clock()
    store = InMemoryJobStore(lease_timeout_minutes=15, clock=clock)

    async def _run() -> None:
        job = await store.enqueue(natural_key="doc-A", owner_ref="app-1", max_attempts=3)
        await store.claim(limit=1, worker_id="worker-a")

        clock.advance(minutes=14)
        assert await store.claim(limit=1, worker_id="worker-b") == []

        clock.advance(minutes=2)
        reclaimed = await store.claim(limit=1, worker_id="worker-b")
        assert [item.id for item in reclaimed] == [job.id]
        assert reclaimed[0].locked_by == "worker-b"

    asyncio.run(_run())


@pytest.mark.unit
def test_clear_expired_locks_only_touches_stale_leases() -> None:
    clock = _Clock()
    store = InMemoryJobStore(lease_timeout_minutes=15, clock=clock)

    async def _run() -> None:
        stale = await store.enqueue(natural_key="doc-stale", owner_ref="app-1", max_attempts=3)
        await store.claim(limit=1, worker_id="worker-a")
        clock.advance(minutes=10)
        live = await store.enqueue(natural_key="doc-live", owner_ref="app-1", max_attempts=3)
        await store.claim(limit=1, worker_id="worker-b")
        clock.advance(minutes=10)

        assert store.jobs[live.id].locked_by == "worker-b"
        cleared = await store.clear_expired_locks()

        assert cleared == 1
        assert store.jobs[stale.id].locked_at is None
        assert store.jobs[stale.id].locked_by is None
        assert store.jobs[live.id].locked_by == "worker-b"

    asyncio.run(_run())


@pytest.mark.unit
def test_success_overwrites_result_and_releases_lease() -> None:
    store = InMemoryJobStore()

    async def _run() -> None:
        await store.enqueue(natural_key="doc-1", owner_ref="app-1", max_attempts=3)
        [claimed] = await store.claim(limit=1, worker_id="worker-a")
        await store.record_success(
            job=claimed,
            worker_id="worker-a",
            result=ExtractionResult(text="first", structured_json=None, model="m1", provider_name="stub"),
        )
        reset = await store.reset_job(job_id=claimed.id)
        assert reset is not None
        [again] = await store.claim(limit=1, worker_id="worker-a")
        await store.record_success(
            job=again,
            worker_id="worker-a",
            result=ExtractionResult(text="second", structured_json={"a": 1}, model="m2", provider_name="stub"),
        )

        job = await store.get_job(natural_key="doc-1")
        result = await store.get_result(natural_key="doc-1")
        assert job is not None and result is not None
        assert job.status == JobStatus.SUCCEEDED
        assert job.locked_at is None and job.locked_by is None
        assert job.next_attempt_at is None
        assert result.text == "second"
        assert result.structured_json == {"a": 1}
        assert len(store.results) == 1

    asyncio.run(_run())


@pytest.mark.unit
def test_reset_refuses_live_lease_and_restores_budget() -> None:
    clock = _Clock()
    store = InMemoryJobStore(lease_timeout_minutes=15, clock=clock)

    async def _run() -> None:
        job = await store.enqueue(natural_key="doc-1", owner_ref="app-1", max_attempts=2)
        await store.claim(limit=1, worker_id="worker-a")
        assert await store.reset_job(job_id=job.id) is None

        await store.record_failure(
            job_id=job.id,
            worker_id="worker-a",
            outcome=FailureWrite(status=JobStatus.CANCELED, attempt_count=2, next_attempt_at=None, last_error="x"),
        )
        reset = await store.reset_job(job_id=job.id)

        assert reset is not None
        assert reset.status == JobStatus.QUEUED
        assert reset.attempt_count == 0
        assert reset.last_error is None
        assert reset.next_attempt_at == clock.now
        assert await store.reset_job(job_id="missing") is None

    asyncio.run(_run())


@pytest.mark.unit
def test_canceled_job_is_not_claimable() -> None:
    store = InMemoryJobStore()

    async def _run() -> None:
        job = await store.enqueue(natural_key="doc-1", owner_ref="app-1", max_attempts=1)
        await store.claim(limit=1, worker_id="worker-a")
        await store.record_failure(
            job_id=job.id,
            worker_id="worker-a",
            outcome=FailureWrite(status=JobStatus.CANCELED, attempt_count=1, next_attempt_at=None, last_error="x"),
        )

        assert await store.claim(limit=5, worker_id="worker-a") == []
        assert store.transitions[-1] == (job.id, JobStatus.PROCESSING, JobStatus.CANCELED)

    asyncio.run(_run())


@pytest.mark.unit
def test_doc_a_enqueue_and_claim_scenario() -> None:
    store = InMemoryJobStore()

    async def _run() -> None:
        await store.enqueue(natural_key="doc-A", owner_ref="app-1", max_attempts=3)
        job = await store.enqueue(natural_key="doc-A", owner_ref="app-1", max_attempts=3)
        assert len(store.jobs) == 1
        assert job.status == JobStatus.QUEUED
        assert job.attempt_count == 0

        [claimed] = await store.claim(limit=1, worker_id="w1")
        assert claimed.status == JobStatus.PROCESSING
        assert claimed.locked_by == "w1"
        assert await store.claim(limit=1, worker_id="w2") == []

    asyncio.run(_run())


@pytest.mark.unit
def test_single_job_two_concurrent_claims_exactly_one_wins() -> None:
    store = InMemoryJobStore()

    async def _run() -> None:
        await store.enqueue(natural_key="doc-1", owner_ref="app-1", max_attempts=3)
        first, second = await asyncio.gather(
            store.claim(limit=1, worker_id="w1"),
            store.claim(limit=1, worker_id="w2"),
        )

        assert sorted([len(first), len(second)]) == [0, 1]

    asyncio.run(_run())


@pytest.mark.unit
def test_late_outcome_from_expired_lease_is_discarded() -> None:
    clock = _Clock()
    store = InMemoryJobStore(lease_timeout_minutes=15, clock=clock)

    async def _run() -> None:
        job = await store.enqueue(natural_key="doc-A", owner_ref="app-1", max_attempts=3)
        await store.claim(limit=1, worker_id="w1")
        clock.advance(minutes=16)
        [reclaimed] = await store.claim(limit=1, worker_id="w2")
        assert reclaimed.locked_by == "w2"

        late_failure = await store.record_failure(
            job_id=job.id,
            worker_id="w1",
            outcome=FailureWrite(status=JobStatus.FAILED, attempt_count=1, next_attempt_at=clock.now, last_error="x"),
        )
        late_success = await store.record_success(
            job=reclaimed,
            worker_id="w1",
            result=ExtractionResult(text="late", structured_json=None, model="m", provider_name="stub"),
        )

        assert late_failure is None
        assert late_success is False
        assert store.results == {}
        row = store.jobs[job.id]
        assert row.status == JobStatus.PROCESSING
        assert row.locked_by == "w2"
        assert row.attempt_count == 0
        assert await store.claim(limit=1, worker_id="w3") == []

        assert await store.record_success(
            job=reclaimed,
            worker_id="w2",
            result=ExtractionResult(text="ok", structured_json=None, model="m", provider_name="stub"),
        )
        assert store.jobs[job.id].status == JobStatus.SUCCEEDED

    asyncio.run(_run())


@pytest.mark.unit
def test_outcome_write_cannot_touch_a_terminal_job() -> None:
    store = InMemoryJobStore()

    async def _run() -> None:
        job = await store.enqueue(natural_key="doc-1", owner_ref="app-1", max_attempts=3)
        [claimed] = await store.claim(limit=1, worker_id="w1")
        assert await store.record_success(
            job=claimed,
            worker_id="w1",
            result=ExtractionResult(text="done", structured_json=None, model="m", provider_name="stub"),
        )

        failed = await store.record_failure(
            job_id=job.id,
            worker_id="w1",
            outcome=FailureWrite(status=JobStatus.FAILED, attempt_count=1, next_attempt_at=None, last_error="x"),
        )

        assert failed is None
        assert store.jobs[job.id].status == JobStatus.SUCCEEDED
        assert store.jobs[job.id].last_error is None

    asyncio.run(_run())
