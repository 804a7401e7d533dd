from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from backoffice.domain.models import JobStatus


class ErrorResponse(BaseModel):
    detail: str


class WorkerMetrics(BaseModel):
    started: bool
    stopped: bool
    running: bool
    ticks_total: int
    claims_total: int
    idle_ticks_total: int
    skipped_ticks_total: int
    kill_switch_skips_total: int
    errors_total: int


class HealthResponse(BaseModel):
    status: str
    role: str
    mode: str


class ReadyResponse(BaseModel):
    status: str
    role: str
    mode: str
    worker_loop_enabled: bool
    worker_loop_ready: bool
    worker_metrics: WorkerMetrics


class OcrJobResponse(BaseModel):
    id: str
    document_id: str
    application_id: str
    status: JobStatus
    attempt_count: int = Field(ge=0)
    max_attempts: int = Field(ge=1)
    next_attempt_at: datetime | None = None
    locked_at: datetime | None = None
    locked_by: str | None = None
    last_error: str | None = None
    created_at: datetime
    updated_at: datetime


class OcrJobListResponse(BaseModel):
    application_id: str
    items: list[OcrJobResponse]


class OcrResultResponse(BaseModel):
    document_id: str
    provider: str
    model: str
    text: str
    structured_json: object | None = None
    meta: dict[str, object] | None = None
    updated_at: datetime | None = None


class RetryStateResponse(BaseModel):
    status: str | None = None
    attempt_count: int | None = None
    next_attempt_at: datetime | None = None
    last_error: str | None = None
    canceled_at: datetime | None = None


class TransmissionStatusResponse(BaseModel):
    application_id: str
    submission_id: str
    lender_id: str
    status: str
    submitted_at: datetime | None = None
    last_response: dict[str, object] | None = None
    retry_state: RetryStateResponse


class SubmissionRetryResponse(BaseModel):
    submission_id: str
    status: str
    retry_status: str


class CancelRetryResponse(BaseModel):
    submission_id: str
    status: str
