from __future__ import annotations

from backoffice.domain.models import JobRecord
from backoffice.workers.handlers import ocr
from backoffice.workers.handlers.deps import WorkerDeps
from backoffice.workers.loop import ProcessHandler


def build_process_handler(role: str, deps: WorkerDeps) -> ProcessHandler:
    async def _ocr(job: JobRecord) -> None:
        await ocr.process_claimed_job(deps, job=job)

    handlers: dict[str, ProcessHandler] = {
        "worker-ocr": _ocr,
    }
    handler = handlers.get(role)
    if handler is None:
        raise ValueError(f"No worker handler for role '{role}'")
    return handler
