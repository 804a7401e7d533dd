from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


# Keep synchronized with the ocr_jobs status CHECK constraint in
# db/migrations/000001_bootstrap.up.sql.
class JobStatus(StrEnum):
    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


class SubmissionRetryStatus(StrEnum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    CANCELED = "canceled"


class LenderSubmissionStatus(StrEnum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    FAILED = "failed"


@dataclass(frozen=True)
class JobRecord:
    id: str
    natural_key: str
    owner_ref: str
    status: JobStatus
    attempt_count: int
    max_attempts: int
    next_attempt_at: datetime | None
    locked_at: datetime | None
    locked_by: str | None
    last_error: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class ExtractionResult:
    text: str
    structured_json: object | None
    model: str
    provider_name: str
    meta: dict[str, object] | None = None


@dataclass(frozen=True)
class ResultRecord:
    natural_key: str
    provider_name: str
    model: str
    text: str
    structured_json: object | None
    meta: dict[str, object] | None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class FailureWrite:
    """Outcome of a failed attempt as it is persisted on the job row."""

    status: JobStatus
    attempt_count: int
    next_attempt_at: datetime | None
    last_error: str


@dataclass(frozen=True)
class ApplicationRecord:
    id: str
    name: str


@dataclass(frozen=True)
class DocumentRecord:
    id: str
    application_id: str
    document_type: str | None
    title: str
    created_at: datetime


@dataclass(frozen=True)
class DocumentVersion:
    document_id: str
    version: int
    metadata: dict[str, object]
    content: str


@dataclass(frozen=True)
class ExtractedField:
    field_key: str
    value: str
    confidence: float
    page: int | None = None


@dataclass(frozen=True)
class LenderSubmission:
    id: str
    application_id: str
    lender_id: str
    status: LenderSubmissionStatus
    payload: dict[str, object] | None
    lender_response: dict[str, object] | None = None
    failure_reason: str | None = None
    submitted_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class TransmissionResult:
    success: bool
    retryable: bool = True
    failure_reason: str | None = None
    response: dict[str, object] = field(default_factory=dict)
    external_reference: str | None = None


@dataclass(frozen=True)
class SubmissionRetryState:
    submission_id: str
    status: SubmissionRetryStatus
    attempt_count: int
    next_attempt_at: datetime | None
    last_error: str | None
    canceled_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class SubmissionRetryResult:
    submission_id: str
    status: str
    retry_status: str


@dataclass(frozen=True)
class TransmissionStatus:
    application_id: str
    submission: LenderSubmission
    retry_state: SubmissionRetryState | None
