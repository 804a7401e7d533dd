from __future__ import annotations

from backoffice.domain.models import JobRecord
from backoffice.domain.use_cases.ocr_jobs import process_job
from backoffice.workers.handlers.deps import WorkerDeps

COMPONENT_ID = "worker.ocr.process_job"


async def process_claimed_job(deps: WorkerDeps, *, job: JobRecord) -> None:
    await process_job(
        job,
        store=deps.store,
        documents=deps.documents,
        storage=deps.storage,
        provider=deps.provider,
        audit=deps.audit,
        policy=deps.policy,
        default_max_attempts=deps.max_attempts,
    )
