from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from backoffice.domain.models import (
    ApplicationRecord,
    DocumentRecord,
    DocumentVersion,
    ExtractedField,
    ExtractionResult,
    FailureWrite,
    JobRecord,
    LenderSubmission,
    LenderSubmissionStatus,
    ResultRecord,
    SubmissionRetryState,
    TransmissionResult,
)

CLAIM_SQL_CONTRACT = "SELECT ... FOR UPDATE SKIP LOCKED"


@runtime_checkable
class JobStore(Protocol):
    """Durable OCR work queue.

    Claim semantics must remain compatible with Postgres row claims using
    SELECT ... FOR UPDATE SKIP LOCKED, re-checking lease staleness in the
    UPDATE so two workers never hold the same job.
    """

    lease_timeout_minutes: int

    async def enqueue(self, *, natural_key: str, owner_ref: str, max_attempts: int) -> JobRecord: ...

    async def claim(self, *, limit: int, worker_id: str) -> list[JobRecord]: ...

    async def clear_expired_locks(self) -> int: ...

    # Outcome writes only land while worker_id still holds the lease; a lost lease
    # yields False / None and leaves the row untouched. The result upsert and the
    # succeeded write share one transaction.
    async def record_success(self, *, job: JobRecord, worker_id: str, result: ExtractionResult) -> bool: ...

    async def record_failure(self, *, job_id: str, worker_id: str, outcome: FailureWrite) -> JobRecord | None: ...

    async def reset_job(self, *, job_id: str) -> JobRecord | None: ...

    async def get_job(self, *, natural_key: str) -> JobRecord | None: ...

    async def get_result(self, *, natural_key: str) -> ResultRecord | None: ...

    async def replace_document_fields(
        self,
        *,
        document_id: str,
        application_id: str,
        document_type: str | None,
        fields: list[ExtractedField],
    ) -> int: ...


@runtime_checkable
class DocumentRepository(Protocol):
    async def find_application(self, *, application_id: str) -> ApplicationRecord | None: ...

    async def find_document(self, *, document_id: str) -> DocumentRecord | None: ...

    async def find_active_version(self, *, document_id: str) -> DocumentVersion | None: ...

    async def list_documents(self, *, application_id: str) -> list[DocumentRecord]: ...


@runtime_checkable
class LenderSubmissionRepository(Protocol):
    async def find_submission(self, *, submission_id: str) -> LenderSubmission | None: ...

    async def find_latest_submission(self, *, application_id: str) -> LenderSubmission | None: ...

    async def find_retry_state(self, *, submission_id: str) -> SubmissionRetryState | None: ...

    async def upsert_retry_state(self, *, state: SubmissionRetryState) -> SubmissionRetryState: ...

    # Submission status and retry-state upsert share one transaction.
    async def record_retry_attempt(
        self,
        *,
        submission_id: str,
        submission_status: LenderSubmissionStatus,
        transmission: TransmissionResult,
        state: SubmissionRetryState,
    ) -> SubmissionRetryState: ...


@runtime_checkable
class Storage(Protocol):
    """Resolves a document content reference to bytes."""

    async def get_buffer(self, content: str) -> bytes: ...


@runtime_checkable
class Provider(Protocol):
    async def extract(self, buffer: bytes, mime_type: str, file_name: str | None = None) -> ExtractionResult: ...


@runtime_checkable
class LenderTransport(Protocol):
    async def send(self, submission: LenderSubmission, *, attempt: int) -> TransmissionResult: ...


@runtime_checkable
class AuditSink(Protocol):
    async def record(
        self,
        *,
        action: str,
        target_type: str,
        target_id: str,
        success: bool,
        actor_user_id: str | None = None,
    ) -> None: ...


@runtime_checkable
class KillSwitch(Protocol):
    async def is_enabled(self, name: str) -> bool: ...


@runtime_checkable
class Clock(Protocol):
    def __call__(self) -> datetime: ...
