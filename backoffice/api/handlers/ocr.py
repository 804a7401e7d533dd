from __future__ import annotations

from backoffice.api.handlers.audit import record_admin_event
from backoffice.api.handlers.deps import ApiDeps
from backoffice.api.schemas import OcrJobListResponse, OcrJobResponse, OcrResultResponse
from backoffice.domain.errors import DomainError, NotFoundError
from backoffice.domain.models import JobRecord, ResultRecord
from backoffice.domain.use_cases import ocr_jobs

COMPONENT_ID = "api.ocr.admin"


async def enqueue_document_handler(deps: ApiDeps, *, document_id: str) -> OcrJobResponse:
    try:
        job = await ocr_jobs.enqueue_for_document(
            document_id=document_id,
            store=deps.store,
            documents=deps.documents,
            max_attempts=deps.ocr_settings.max_attempts,
        )
    except DomainError:
        await record_admin_event(
            deps, action="ocr_job_enqueued", target_type="ocr_job", target_id=document_id, success=False
        )
        raise
    await record_admin_event(deps, action="ocr_job_enqueued", target_type="ocr_job", target_id=job.id, success=True)
    return job_response(job)


async def enqueue_application_handler(deps: ApiDeps, *, application_id: str) -> OcrJobListResponse:
    try:
        jobs = await ocr_jobs.enqueue_for_application(
            application_id=application_id,
            store=deps.store,
            documents=deps.documents,
            max_attempts=deps.ocr_settings.max_attempts,
        )
    except DomainError:
        await record_admin_event(
            deps,
            action="ocr_application_enqueued",
            target_type="application",
            target_id=application_id,
            success=False,
        )
        raise
    await record_admin_event(
        deps,
        action="ocr_application_enqueued",
        target_type="application",
        target_id=application_id,
        success=True,
    )
    return OcrJobListResponse(application_id=application_id, items=[job_response(job) for job in jobs])


async def job_status_handler(deps: ApiDeps, *, document_id: str) -> OcrJobResponse:
    job = await ocr_jobs.get_job_status(document_id=document_id, store=deps.store)
    if job is None:
        await record_admin_event(
            deps, action="ocr_job_status_viewed", target_type="ocr_job", target_id=document_id, success=False
        )
        raise NotFoundError("OCR job not found.")
    await record_admin_event(
        deps, action="ocr_job_status_viewed", target_type="ocr_job", target_id=job.id, success=True
    )
    return job_response(job)


async def job_result_handler(deps: ApiDeps, *, document_id: str) -> OcrResultResponse:
    result = await ocr_jobs.get_result(document_id=document_id, store=deps.store)
    if result is None:
        await record_admin_event(
            deps, action="ocr_result_viewed", target_type="ocr_result", target_id=document_id, success=False
        )
        raise NotFoundError("OCR result not found.")
    await record_admin_event(
        deps, action="ocr_result_viewed", target_type="ocr_result", target_id=document_id, success=True
    )
    return result_response(result)


async def retry_job_handler(deps: ApiDeps, *, document_id: str) -> OcrJobResponse:
    try:
        job = await ocr_jobs.retry_job(
            document_id=document_id,
            store=deps.store,
            documents=deps.documents,
            max_attempts=deps.ocr_settings.max_attempts,
        )
    except DomainError:
        await record_admin_event(
            deps, action="ocr_job_retried", target_type="ocr_job", target_id=document_id, success=False
        )
        raise
    await record_admin_event(deps, action="ocr_job_retried", target_type="ocr_job", target_id=job.id, success=True)
    return job_response(job)


def job_response(job: JobRecord) -> OcrJobResponse:
    return OcrJobResponse(
        id=job.id,
        document_id=job.natural_key,
        application_id=job.owner_ref,
        status=job.status,
        attempt_count=job.attempt_count,
        max_attempts=job.max_attempts,
        next_attempt_at=job.next_attempt_at,
        locked_at=job.locked_at,
        locked_by=job.locked_by,
        last_error=job.last_error,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


def result_response(result: ResultRecord) -> OcrResultResponse:
    return OcrResultResponse(
        document_id=result.natural_key,
        provider=result.provider_name,
        model=result.model,
        text=result.text,
        structured_json=result.structured_json,
        meta=result.meta,
        updated_at=result.updated_at,
    )
