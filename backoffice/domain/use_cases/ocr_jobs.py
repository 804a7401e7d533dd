from __future__ import annotations

import dataclasses
import logging
from datetime import UTC, datetime, timedelta

from backoffice.domain.contracts import AuditSink, DocumentRepository, JobStore, Provider, Storage
from backoffice.domain.error_taxonomy import error_code_for, describe_failure
from backoffice.domain.errors import ConflictError, DomainValidationError, NotFoundError, StorageValidationError
from backoffice.domain.lifecycle import ocr_job_work
from backoffice.domain.models import (
    DocumentRecord,
    FailureWrite,
    JobRecord,
    ResultRecord,
)
from backoffice.domain.ocr_fields import extract_fields
from backoffice.domain.retry import RetryPolicy

COMPONENT_ID = "domain.ocr.jobs"
STORAGE_URL_REJECTED_ACTION = "ocr_storage_url_rejected"

logger = logging.getLogger("ocr")


async def enqueue_for_document(
    *,
    document_id: str,
    store: JobStore,
    documents: DocumentRepository,
    max_attempts: int,
) -> JobRecord:
    document = await documents.find_document(document_id=document_id)
    if document is None:
        raise NotFoundError("Document not found.")
    return await _enqueue(document, store=store, max_attempts=max_attempts)


async def enqueue_for_application(
    *,
    application_id: str,
    store: JobStore,
    documents: DocumentRepository,
    max_attempts: int,
) -> list[JobRecord]:
    application = await documents.find_application(application_id=application_id)
    if application is None:
        raise NotFoundError("Application not found.")
    jobs: list[JobRecord] = []
    for document in await documents.list_documents(application_id=application_id):
        jobs.append(await _enqueue(document, store=store, max_attempts=max_attempts))
    return jobs


async def get_job_status(*, document_id: str, store: JobStore) -> JobRecord | None:
    return await store.get_job(natural_key=document_id)


async def get_result(*, document_id: str, store: JobStore) -> ResultRecord | None:
    return await store.get_result(natural_key=document_id)


async def retry_job(
    *,
    document_id: str,
    store: JobStore,
    documents: DocumentRepository,
    max_attempts: int,
) -> JobRecord:
    """Reset a job to queued with a fresh attempt budget, or enqueue it if it never existed."""
    job = await store.get_job(natural_key=document_id)
    if job is None:
        return await enqueue_for_document(
            document_id=document_id,
            store=store,
            documents=documents,
            max_attempts=max_attempts,
        )
    if holds_live_lease(job, lease_timeout_minutes=store.lease_timeout_minutes):
        raise ConflictError("OCR job is being processed.")

    updated = await store.reset_job(job_id=job.id)
    if updated is not None:
        return updated
    # The conditional reset lost a race with a claim.
    if await store.get_job(natural_key=document_id) is not None:
        raise ConflictError("OCR job is being processed.")
    raise NotFoundError("OCR job not found.")


def holds_live_lease(job: JobRecord, *, lease_timeout_minutes: int, now: datetime | None = None) -> bool:
    if job.locked_at is None:
        return False
    current = now or datetime.now(tz=UTC)
    return job.locked_at > current - timedelta(minutes=lease_timeout_minutes)


async def process_job(
    job: JobRecord,
    *,
    store: JobStore,
    documents: DocumentRepository,
    storage: Storage,
    provider: Provider,
    audit: AuditSink,
    policy: RetryPolicy,
    default_max_attempts: int,
) -> None:
    """Run one claimed job to a success or failure write; never raises for job failures."""
    log_extra = {"job_id": job.id, "document_id": job.natural_key, "application_id": job.owner_ref}
    worker_id = job.locked_by or ""
    logger.info("ocr job started", extra=log_extra)
    if job.max_attempts <= 0:
        job = dataclasses.replace(job, max_attempts=default_max_attempts)

    try:
        document = await documents.find_document(document_id=job.natural_key)
        if document is None:
            raise NotFoundError("document_not_found")
        version = await documents.find_active_version(document_id=document.id)
        if version is None:
            raise NotFoundError("document_version_missing")
        mime_type, file_name = parse_version_metadata(version.metadata)
        buffer = await storage.get_buffer(version.content)
        result = await provider.extract(buffer, mime_type, file_name)
        written = await store.record_success(job=job, worker_id=worker_id, result=result)
    except Exception as exc:
        if isinstance(exc, StorageValidationError):
            await _report_rejected_storage_url(job, exc, audit=audit)
        message = describe_failure(exc)
        outcome = ocr_job_work(policy).failed(job, error=message)
        failed = await store.record_failure(
            job_id=job.id,
            worker_id=worker_id,
            outcome=FailureWrite(
                status=outcome.status,
                attempt_count=outcome.attempt_count,
                next_attempt_at=outcome.next_attempt_at,
                last_error=message,
            ),
        )
        if failed is None:
            _log_lease_lost(log_extra, worker_id=worker_id)
            return
        logger.error(
            "ocr job failed",
            extra={
                **log_extra,
                "error": message,
                "error_code": error_code_for(exc),
                "status": str(outcome.status),
            },
        )
        return

    if not written:
        _log_lease_lost(log_extra, worker_id=worker_id)
        return
    await _store_extracted_fields(job, document, result.text, store=store)
    logger.info("ocr job succeeded", extra=log_extra)


def parse_version_metadata(metadata: object) -> tuple[str, str | None]:
    if not isinstance(metadata, dict):
        raise DomainValidationError("missing_document_metadata")
    mime_type = metadata.get("mimeType")
    if not isinstance(mime_type, str) or not mime_type:
        raise DomainValidationError("missing_document_mime_type")
    file_name = metadata.get("fileName")
    return mime_type, file_name if isinstance(file_name, str) else None


async def _enqueue(document: DocumentRecord, *, store: JobStore, max_attempts: int) -> JobRecord:
    return await store.enqueue(
        natural_key=document.id,
        owner_ref=document.application_id,
        max_attempts=max_attempts,
    )


async def _report_rejected_storage_url(job: JobRecord, exc: StorageValidationError, *, audit: AuditSink) -> None:
    logger.error(
        "ocr storage url rejected",
        extra={"job_id": job.id, "document_id": job.natural_key, "url": exc.url},
    )
    try:
        await audit.record(
            action=STORAGE_URL_REJECTED_ACTION,
            target_type="ocr_job",
            target_id=job.id,
            success=False,
        )
    except Exception as audit_exc:
        logger.error(
            "ocr storage url audit failed",
            extra={"job_id": job.id, "error": describe_failure(audit_exc)},
        )


async def _store_extracted_fields(job: JobRecord, document: DocumentRecord, text: str, *, store: JobStore) -> None:
    try:
        fields = extract_fields(text)
        await store.replace_document_fields(
            document_id=document.id,
            application_id=document.application_id,
            document_type=document.document_type,
            fields=fields,
        )
    except Exception as exc:
        logger.error(
            "ocr field insert failed",
            extra={
                "document_id": job.natural_key,
                "application_id": job.owner_ref,
                "error": describe_failure(exc),
            },
        )


def _log_lease_lost(log_extra: dict[str, str], *, worker_id: str) -> None:
    logger.warning("ocr job lease lost", extra={**log_extra, "worker_id": worker_id})
