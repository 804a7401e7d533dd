from __future__ import annotations

from dataclasses import dataclass
import importlib
import json
from typing import Any

from backoffice.domain.errors import DomainInvariantError
from backoffice.domain.ids import new_job_id, new_result_id, new_retry_state_id
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
    SubmissionRetryStatus,
    TransmissionResult,
)
from backoffice.repositories.sql_loader import load_sql

asyncpg_module = importlib.import_module("asyncpg")

SQL_ENQUEUE_JOB = load_sql("enqueue_job.sql")
SQL_CLAIM_JOBS = load_sql("claim_jobs.sql")
SQL_CLEAR_EXPIRED_LOCKS = load_sql("clear_expired_locks.sql")
SQL_MARK_JOB_SUCCESS = load_sql("mark_job_success.sql")
SQL_UPSERT_RESULT = load_sql("upsert_result.sql")
SQL_MARK_JOB_FAILURE = load_sql("mark_job_failure.sql")
SQL_RESET_JOB = load_sql("reset_job.sql")
SQL_GET_JOB = load_sql("get_job.sql")
SQL_GET_RESULT = load_sql("get_result.sql")
SQL_DELETE_DOCUMENT_FIELDS = load_sql("delete_document_fields.sql")
SQL_INSERT_DOCUMENT_FIELD = load_sql("insert_document_field.sql")
SQL_FIND_APPLICATION = load_sql("find_application.sql")
SQL_FIND_DOCUMENT = load_sql("find_document.sql")
SQL_FIND_ACTIVE_VERSION = load_sql("find_active_version.sql")
SQL_LIST_DOCUMENTS = load_sql("list_documents.sql")
SQL_FIND_SUBMISSION = load_sql("find_submission.sql")
SQL_FIND_LATEST_SUBMISSION = load_sql("find_latest_submission.sql")
SQL_UPDATE_SUBMISSION_STATUS = load_sql("update_submission_status.sql")
SQL_FIND_RETRY_STATE = load_sql("find_retry_state.sql")
SQL_UPSERT_RETRY_STATE = load_sql("upsert_retry_state.sql")


@dataclass
class AsyncpgPoolManager:
    dsn: str
    pool: Any | None = None

    async def startup(self) -> None:
        async def _init_connection(conn: Any) -> None:
            await conn.set_type_codec(
                "json",
                encoder=json.dumps,
                decoder=json.loads,
                schema="pg_catalog",
            )
            await conn.set_type_codec(
                "jsonb",
                encoder=json.dumps,
                decoder=json.loads,
                schema="pg_catalog",
            )

        self.pool = await asyncpg_module.create_pool(
            dsn=self.dsn,
            min_size=1,
            max_size=5,
            init=_init_connection,
        )

    async def shutdown(self) -> None:
        if self.pool is None:
            return
        await self.pool.close()
        self.pool = None


@dataclass
class _PoolBacked:
    pool_manager: AsyncpgPoolManager

    def _pool(self) -> Any:
        if self.pool_manager.pool is None:
            raise RuntimeError("postgres pool is not initialized")
        return self.pool_manager.pool


@dataclass
class PostgresJobStore(_PoolBacked):
    lease_timeout_minutes: int = 15

    async def enqueue(self, *, natural_key: str, owner_ref: str, max_attempts: int) -> JobRecord:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_ENQUEUE_JOB, new_job_id(), natural_key, owner_ref, max_attempts)
        if row is None:
            raise DomainInvariantError("failed to enqueue ocr job")
        return _job_from_row(row)

    async def claim(self, *, limit: int, worker_id: str) -> list[JobRecord]:
        if limit <= 0:
            return []
        pool = self._pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                rows = await conn.fetch(SQL_CLAIM_JOBS, limit, worker_id, self.lease_timeout_minutes)
        jobs = [_job_from_row(row) for row in rows]
        jobs.sort(key=lambda job: job.created_at)
        return jobs

    async def clear_expired_locks(self) -> int:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_CLEAR_EXPIRED_LOCKS, self.lease_timeout_minutes)
        return len(rows)

    async def record_success(self, *, job: JobRecord, worker_id: str, result: ExtractionResult) -> bool:
        pool = self._pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                updated = await conn.fetchrow(SQL_MARK_JOB_SUCCESS, job.id, worker_id)
                if updated is None:
                    return False
                await conn.execute(
                    SQL_UPSERT_RESULT,
                    new_result_id(),
                    job.natural_key,
                    result.provider_name,
                    result.model,
                    result.text,
                    result.structured_json,
                    result.meta,
                )
        return True

    async def record_failure(self, *, job_id: str, worker_id: str, outcome: FailureWrite) -> JobRecord | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                SQL_MARK_JOB_FAILURE,
                job_id,
                str(outcome.status),
                outcome.attempt_count,
                outcome.next_attempt_at,
                outcome.last_error,
                worker_id,
            )
        return _job_from_row(row) if row is not None else None

    async def reset_job(self, *, job_id: str) -> JobRecord | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_RESET_JOB, job_id, self.lease_timeout_minutes)
        return _job_from_row(row) if row is not None else None

    async def get_job(self, *, natural_key: str) -> JobRecord | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_GET_JOB, natural_key)
        return _job_from_row(row) if row is not None else None

    async def get_result(self, *, natural_key: str) -> ResultRecord | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_GET_RESULT, natural_key)
        if row is None:
            return None
        return ResultRecord(
            natural_key=row["natural_key"],
            provider_name=row["provider"],
            model=row["model"],
            text=row["extracted_text"],
            structured_json=row["extracted_json"],
            meta=_json_object_or_none(row["meta"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def replace_document_fields(
        self,
        *,
        document_id: str,
        application_id: str,
        document_type: str | None,
        fields: list[ExtractedField],
    ) -> int:
        pool = self._pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(SQL_DELETE_DOCUMENT_FIELDS, document_id)
                if fields:
                    await conn.executemany(
                        SQL_INSERT_DOCUMENT_FIELD,
                        [
                            (document_id, application_id, item.field_key, item.value, item.confidence, document_type)
                            for item in fields
                        ],
                    )
        return len(fields)


@dataclass
class PostgresDocumentRepository(_PoolBacked):
    async def find_application(self, *, application_id: str) -> ApplicationRecord | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_FIND_APPLICATION, application_id)
        if row is None:
            return None
        return ApplicationRecord(id=row["id"], name=row["name"])

    async def find_document(self, *, document_id: str) -> DocumentRecord | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_FIND_DOCUMENT, document_id)
        return _document_from_row(row) if row is not None else None

    async def find_active_version(self, *, document_id: str) -> DocumentVersion | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_FIND_ACTIVE_VERSION, document_id)
        if row is None:
            return None
        return DocumentVersion(
            document_id=row["document_id"],
            version=row["version"],
            metadata=_json_object(row["metadata"]),
            content=row["content"],
        )

    async def list_documents(self, *, application_id: str) -> list[DocumentRecord]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_LIST_DOCUMENTS, application_id)
        return [_document_from_row(row) for row in rows]


@dataclass
class PostgresLenderSubmissionRepository(_PoolBacked):
    async def find_submission(self, *, submission_id: str) -> LenderSubmission | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_FIND_SUBMISSION, submission_id)
        return _submission_from_row(row) if row is not None else None

    async def find_latest_submission(self, *, application_id: str) -> LenderSubmission | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_FIND_LATEST_SUBMISSION, application_id)
        return _submission_from_row(row) if row is not None else None

    async def find_retry_state(self, *, submission_id: str) -> SubmissionRetryState | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_FIND_RETRY_STATE, submission_id)
        return _retry_state_from_row(row) if row is not None else None

    async def upsert_retry_state(self, *, state: SubmissionRetryState) -> SubmissionRetryState:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await _upsert_retry_state(conn, state)
        return _retry_state_from_row(row)

    async def record_retry_attempt(
        self,
        *,
        submission_id: str,
        submission_status: LenderSubmissionStatus,
        transmission: TransmissionResult,
        state: SubmissionRetryState,
    ) -> SubmissionRetryState:
        pool = self._pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                updated = await conn.fetchrow(
                    SQL_UPDATE_SUBMISSION_STATUS,
                    submission_id,
                    str(submission_status),
                    dict(transmission.response),
                    None if transmission.success else transmission.failure_reason,
                    transmission.external_reference,
                )
                if updated is None:
                    raise DomainInvariantError("lender submission disappeared before retry write")
                row = await _upsert_retry_state(conn, state)
        return _retry_state_from_row(row)


async def _upsert_retry_state(conn: Any, state: SubmissionRetryState) -> Any:
    row = await conn.fetchrow(
        SQL_UPSERT_RETRY_STATE,
        new_retry_state_id(),
        state.submission_id,
        str(state.status),
        state.attempt_count,
        state.next_attempt_at,
        state.last_error,
        state.canceled_at,
    )
    if row is None:
        raise DomainInvariantError("failed to upsert submission retry state")
    return row


def _job_from_row(row: Any) -> JobRecord:
    return JobRecord(
        id=row["id"],
        natural_key=row["natural_key"],
        owner_ref=row["owner_ref"],
        status=JobStatus(row["status"]),
        attempt_count=row["attempt_count"],
        max_attempts=row["max_attempts"],
        next_attempt_at=row["next_attempt_at"],
        locked_at=row["locked_at"],
        locked_by=row["locked_by"],
        last_error=row["last_error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _document_from_row(row: Any) -> DocumentRecord:
    return DocumentRecord(
        id=row["id"],
        application_id=row["application_id"],
        document_type=_as_str(_record_get(row, "document_type")),
        title=row["title"],
        created_at=row["created_at"],
    )


def _submission_from_row(row: Any) -> LenderSubmission:
    return LenderSubmission(
        id=row["id"],
        application_id=row["application_id"],
        lender_id=row["lender_id"],
        status=LenderSubmissionStatus(row["status"]),
        payload=_json_object_or_none(row["payload"]),
        lender_response=_json_object_or_none(row["lender_response"]),
        failure_reason=_as_str(row["failure_reason"]),
        submitted_at=row["submitted_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _retry_state_from_row(row: Any) -> SubmissionRetryState:
    return SubmissionRetryState(
        submission_id=row["submission_id"],
        status=SubmissionRetryStatus(row["status"]),
        attempt_count=row["attempt_count"],
        next_attempt_at=row["next_attempt_at"],
        last_error=_as_str(row["last_error"]),
        canceled_at=row["canceled_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _json_object(value: object) -> dict[str, object]:
    if isinstance(value, dict):
        return dict(value)
    if isinstance(value, str):
        parsed = json.loads(value)
        if isinstance(parsed, dict):
            return parsed
    return {}


def _json_object_or_none(value: object | None) -> dict[str, object] | None:
    if value is None:
        return None
    return _json_object(value)


def _record_get(row: object, key: str) -> object | None:
    if isinstance(row, dict):
        return row.get(key)
    try:
        return row[key]  # type: ignore[index]
    except KeyError:
        return None


def _as_str(value: object | None) -> str | None:
    if isinstance(value, str):
        return value
    return None
