from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from backoffice.domain.contracts import Clock
from backoffice.domain.errors import DomainInvariantError
from backoffice.domain.ids import new_job_id
from backoffice.domain.lifecycle import CLAIMABLE_STATUSES, ensure_transition
from backoffice.domain.models import (
    ApplicationRecord,
    DocumentRecord,
    DocumentVersion,
    ExtractedField,
    ExtractionResult,
    FailureWrite,
    JobRecord,
    JobStatus,
    LenderSubmission,
    LenderSubmissionStatus,
    ResultRecord,
    SubmissionRetryState,
    TransmissionResult,
)


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class _JobRow:
    id: str
    natural_key: str
    owner_ref: str
    status: JobStatus
    max_attempts: int
    attempt_count: int = 0
    next_attempt_at: datetime | None = None
    locked_at: datetime | None = None
    locked_by: str | None = None
    last_error: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def snapshot(self) -> JobRecord:
        return JobRecord(
            id=self.id,
            natural_key=self.natural_key,
            owner_ref=self.owner_ref,
            status=self.status,
            attempt_count=self.attempt_count,
            max_attempts=self.max_attempts,
            next_attempt_at=self.next_attempt_at,
            locked_at=self.locked_at,
            locked_by=self.locked_by,
            last_error=self.last_error,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


@dataclass
class _StoredField:
    document_id: str
    application_id: str
    source_document_type: str | None
    field: ExtractedField


@dataclass
class InMemoryJobStore:
    """Non-network job store mirroring the Postgres claim and outcome semantics."""

    lease_timeout_minutes: int = 15
    clock: Clock = _utcnow
    jobs: dict[str, _JobRow] = field(default_factory=dict)
    results: dict[str, ResultRecord] = field(default_factory=dict)
    fields: list[_StoredField] = field(default_factory=list)
    transitions: list[tuple[str, JobStatus, JobStatus]] = field(default_factory=list)

    async def enqueue(self, *, natural_key: str, owner_ref: str, max_attempts: int) -> JobRecord:
        existing = self._row_by_natural_key(natural_key)
        if existing is not None:
            return existing.snapshot()
        now = self.clock()
        row = _JobRow(
            id=new_job_id(),
            natural_key=natural_key,
            owner_ref=owner_ref,
            status=JobStatus.QUEUED,
            max_attempts=max_attempts,
            next_attempt_at=now,
            created_at=now,
            updated_at=now,
        )
        self.jobs[row.id] = row
        return row.snapshot()

    async def claim(self, *, limit: int, worker_id: str) -> list[JobRecord]:
        if limit <= 0:
            return []
        now = self.clock()
        ordered = sorted(self.jobs.values(), key=lambda item: item.created_at)
        candidates = [row.id for row in ordered if self._eligible(row, now)][:limit]
        # Yield like a database round-trip so concurrent claimers interleave.
        await asyncio.sleep(0)

        claimed: list[JobRecord] = []
        for job_id in candidates:
            row = self.jobs[job_id]
            now = self.clock()
            if not self._eligible(row, now):
                continue
            self._move(row, JobStatus.PROCESSING)
            row.locked_at = now
            row.locked_by = worker_id
            row.updated_at = now
            claimed.append(row.snapshot())
        return claimed

    async def clear_expired_locks(self) -> int:
        now = self.clock()
        cleared = 0
        for row in self.jobs.values():
            if row.locked_at is not None and self._lease_expired(row, now):
                row.locked_at = None
                row.locked_by = None
                row.updated_at = now
                cleared += 1
        return cleared

    async def record_success(self, *, job: JobRecord, worker_id: str, result: ExtractionResult) -> bool:
        row = self.jobs.get(job.id)
        if row is None or not self._held_by(row, worker_id):
            return False
        now = self.clock()
        previous = self.results.get(job.natural_key)
        self.results[job.natural_key] = ResultRecord(
            natural_key=job.natural_key,
            provider_name=result.provider_name,
            model=result.model,
            text=result.text,
            structured_json=result.structured_json,
            meta=result.meta,
            created_at=previous.created_at if previous is not None else now,
            updated_at=now,
        )
        self._move(row, JobStatus.SUCCEEDED)
        row.next_attempt_at = None
        row.locked_at = None
        row.locked_by = None
        row.last_error = None
        row.updated_at = now
        return True

    async def record_failure(self, *, job_id: str, worker_id: str, outcome: FailureWrite) -> JobRecord | None:
        row = self.jobs.get(job_id)
        if row is None or not self._held_by(row, worker_id):
            return None
        self._move(row, outcome.status)
        row.attempt_count = outcome.attempt_count
        row.next_attempt_at = outcome.next_attempt_at
        row.last_error = outcome.last_error
        row.locked_at = None
        row.locked_by = None
        row.updated_at = self.clock()
        return row.snapshot()

    async def reset_job(self, *, job_id: str) -> JobRecord | None:
        row = self.jobs.get(job_id)
        if row is None:
            return None
        now = self.clock()
        if row.locked_at is not None and not self._lease_expired(row, now):
            return None
        self._move(row, JobStatus.QUEUED)
        row.attempt_count = 0
        row.next_attempt_at = now
        row.locked_at = None
        row.locked_by = None
        row.last_error = None
        row.updated_at = now
        return row.snapshot()

    async def get_job(self, *, natural_key: str) -> JobRecord | None:
        row = self._row_by_natural_key(natural_key)
        return row.snapshot() if row is not None else None

    async def get_result(self, *, natural_key: str) -> ResultRecord | None:
        return self.results.get(natural_key)

    async def replace_document_fields(
        self,
        *,
        document_id: str,
        application_id: str,
        document_type: str | None,
        fields: list[ExtractedField],
    ) -> int:
        self.fields = [stored for stored in self.fields if stored.document_id != document_id]
        self.fields.extend(
            _StoredField(
                document_id=document_id,
                application_id=application_id,
                source_document_type=document_type,
                field=item,
            )
            for item in fields
        )
        return len(fields)

    def document_fields(self, document_id: str) -> list[ExtractedField]:
        return [stored.field for stored in self.fields if stored.document_id == document_id]

    def _row_by_natural_key(self, natural_key: str) -> _JobRow | None:
        for row in self.jobs.values():
            if row.natural_key == natural_key:
                return row
        return None

    def _lease_expired(self, row: _JobRow, now: datetime) -> bool:
        return row.locked_at is None or row.locked_at <= now - timedelta(minutes=self.lease_timeout_minutes)

    def _held_by(self, row: _JobRow, worker_id: str) -> bool:
        return row.status == JobStatus.PROCESSING and row.locked_by == worker_id

    def _eligible(self, row: _JobRow, now: datetime) -> bool:
        if not self._lease_expired(row, now):
            return False
        if row.status == JobStatus.PROCESSING:
            return True
        if row.status not in CLAIMABLE_STATUSES:
            return False
        return row.next_attempt_at is None or row.next_attempt_at <= now

    def _move(self, row: _JobRow, to_status: JobStatus) -> None:
        ensure_transition(from_status=row.status, to_status=to_status)
        self.transitions.append((row.id, row.status, to_status))
        row.status = to_status


@dataclass
class InMemoryDocumentRepository:
    applications: dict[str, ApplicationRecord] = field(default_factory=dict)
    documents: dict[str, DocumentRecord] = field(default_factory=dict)
    versions: dict[str, list[DocumentVersion]] = field(default_factory=dict)

    def add_application(self, application_id: str, *, name: str = "Test Application") -> ApplicationRecord:
        record = ApplicationRecord(id=application_id, name=name)
        self.applications[application_id] = record
        return record

    def add_document(
        self,
        document_id: str,
        *,
        application_id: str,
        document_type: str | None = None,
        title: str = "document",
        created_at: datetime | None = None,
    ) -> DocumentRecord:
        if application_id not in self.applications:
            self.add_application(application_id)
        record = DocumentRecord(
            id=document_id,
            application_id=application_id,
            document_type=document_type,
            title=title,
            created_at=created_at or _utcnow(),
        )
        self.documents[document_id] = record
        return record

    def add_version(
        self,
        document_id: str,
        *,
        content: str,
        metadata: dict[str, object] | None = None,
    ) -> DocumentVersion:
        existing = self.versions.setdefault(document_id, [])
        version = DocumentVersion(
            document_id=document_id,
            version=len(existing) + 1,
            metadata=dict(metadata or {}),
            content=content,
        )
        existing.append(version)
        return version

    async def find_application(self, *, application_id: str) -> ApplicationRecord | None:
        return self.applications.get(application_id)

    async def find_document(self, *, document_id: str) -> DocumentRecord | None:
        return self.documents.get(document_id)

    async def find_active_version(self, *, document_id: str) -> DocumentVersion | None:
        versions = self.versions.get(document_id)
        if not versions:
            return None
        return max(versions, key=lambda item: item.version)

    async def list_documents(self, *, application_id: str) -> list[DocumentRecord]:
        items = [item for item in self.documents.values() if item.application_id == application_id]
        items.sort(key=lambda item: (item.created_at, item.id))
        return items


@dataclass
class InMemoryLenderSubmissionRepository:
    submissions: dict[str, LenderSubmission] = field(default_factory=dict)
    retry_states: dict[str, SubmissionRetryState] = field(default_factory=dict)

    def add_submission(
        self,
        submission_id: str,
        *,
        application_id: str,
        lender_id: str = "lender-1",
        status: LenderSubmissionStatus = LenderSubmissionStatus.FAILED,
        payload: dict[str, object] | None = None,
        created_at: datetime | None = None,
    ) -> LenderSubmission:
        now = created_at or _utcnow()
        record = LenderSubmission(
            id=submission_id,
            application_id=application_id,
            lender_id=lender_id,
            status=status,
            payload=payload if payload is not None else {"application_id": application_id},
            created_at=now,
            updated_at=now,
        )
        self.submissions[submission_id] = record
        return record

    async def find_submission(self, *, submission_id: str) -> LenderSubmission | None:
        return self.submissions.get(submission_id)

    async def find_latest_submission(self, *, application_id: str) -> LenderSubmission | None:
        items = [item for item in self.submissions.values() if item.application_id == application_id]
        if not items:
            return None
        return max(items, key=lambda item: (item.created_at or datetime.min.replace(tzinfo=UTC), item.id))

    async def find_retry_state(self, *, submission_id: str) -> SubmissionRetryState | None:
        return self.retry_states.get(submission_id)

    async def upsert_retry_state(self, *, state: SubmissionRetryState) -> SubmissionRetryState:
        now = _utcnow()
        previous = self.retry_states.get(state.submission_id)
        stored = SubmissionRetryState(
            submission_id=state.submission_id,
            status=state.status,
            attempt_count=state.attempt_count,
            next_attempt_at=state.next_attempt_at,
            last_error=state.last_error,
            canceled_at=state.canceled_at,
            created_at=previous.created_at if previous is not None else now,
            updated_at=now,
        )
        self.retry_states[state.submission_id] = stored
        return stored

    async def record_retry_attempt(
        self,
        *,
        submission_id: str,
        submission_status: LenderSubmissionStatus,
        transmission: TransmissionResult,
        state: SubmissionRetryState,
    ) -> SubmissionRetryState:
        submission = self.submissions.get(submission_id)
        if submission is None:
            raise DomainInvariantError("lender submission disappeared before retry write")
        now = _utcnow()
        self.submissions[submission_id] = LenderSubmission(
            id=submission.id,
            application_id=submission.application_id,
            lender_id=submission.lender_id,
            status=submission_status,
            payload=submission.payload,
            lender_response=dict(transmission.response),
            failure_reason=None if transmission.success else transmission.failure_reason,
            submitted_at=now if submission_status == LenderSubmissionStatus.SUBMITTED else submission.submitted_at,
            created_at=submission.created_at,
            updated_at=now,
        )
        return await self.upsert_retry_state(state=state)
