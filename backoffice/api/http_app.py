from __future__ import annotations

from contextlib import asynccontextmanager
import asyncio
from collections.abc import Awaitable, Callable
import logging

from fastapi import FastAPI, Header, HTTPException

from backoffice.api.handlers import lender, ocr
from backoffice.api.handlers.deps import ApiDeps
from backoffice.api.schemas import (
    CancelRetryResponse,
    ErrorResponse,
    HealthResponse,
    OcrJobListResponse,
    OcrJobResponse,
    OcrResultResponse,
    ReadyResponse,
    SubmissionRetryResponse,
    TransmissionStatusResponse,
    WorkerMetrics,
)
from backoffice.domain.errors import (
    ConflictError,
    DomainError,
    DomainValidationError,
    KillSwitchEnabledError,
    NotFoundError,
)
from backoffice.workers.loop import WorkerHandle, WorkerLoop, WorkerState
from backoffice.workers.runner import run_worker_until_stopped

ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    423: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def http_error_for(exc: DomainError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, KillSwitchEnabledError):
        return HTTPException(status_code=423, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, DomainValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail="internal error")


def build_app(
    role: str,
    run_id: str,
    worker_loop: WorkerLoop | None = None,
    api_deps: ApiDeps | None = None,
    on_startup: Callable[[], Awaitable[None]] | None = None,
    on_shutdown: Callable[[], Awaitable[None]] | None = None,
) -> FastAPI:
    logger = logging.getLogger("runtime")
    worker_handle: WorkerHandle | None = None
    worker_task: asyncio.Task[WorkerHandle] | None = None

    def _remember_handle(handle: WorkerHandle) -> None:
        nonlocal worker_handle
        worker_handle = handle

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal worker_task
        del app
        stop_event: asyncio.Event | None = None

        logger.info(
            "role started",
            extra={"role": role, "service": role, "run_id": run_id},
        )

        if on_startup is not None:
            await on_startup()

        if worker_loop is not None:
            stop_event = asyncio.Event()
            worker_task = asyncio.create_task(
                run_worker_until_stopped(
                    worker_loop=worker_loop,
                    role=role,
                    run_id=run_id,
                    stop_event=stop_event,
                    logger=logger,
                    on_started=_remember_handle,
                )
            )

        yield

        if stop_event is not None and worker_task is not None:
            stop_event.set()
            await worker_task

        if on_shutdown is not None:
            await on_shutdown()

        logger.info(
            "role stopped",
            extra={"role": role, "service": role, "run_id": run_id},
        )

    app = FastAPI(title="loan-backoffice", version="0.1.0", lifespan=lifespan)

    def _deps() -> ApiDeps:
        if api_deps is None:
            raise HTTPException(status_code=503, detail="api dependencies are not available")
        return api_deps

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", role=role, mode=_mode())

    @app.get("/ready", response_model=ReadyResponse, tags=["System"])
    async def ready() -> ReadyResponse:
        worker_loop_enabled = worker_loop is not None
        worker_loop_ready = True
        state = WorkerState()
        if worker_loop_enabled:
            worker_loop_ready = (
                worker_handle is not None
                and worker_handle.state.started
                and not worker_handle.state.stopped
                and worker_task is not None
                and not worker_task.done()
            )
            if worker_handle is not None:
                state = worker_handle.state

        return ReadyResponse(
            status="ready",
            role=role,
            mode=_mode(),
            worker_loop_enabled=worker_loop_enabled,
            worker_loop_ready=worker_loop_ready,
            worker_metrics=WorkerMetrics(
                started=state.started,
                stopped=state.stopped,
                running=state.running,
                ticks_total=state.ticks_total,
                claims_total=state.claims_total,
                idle_ticks_total=state.idle_ticks_total,
                skipped_ticks_total=state.skipped_ticks_total,
                kill_switch_skips_total=state.kill_switch_skips_total,
                errors_total=state.errors_total,
            ),
        )

    @app.post(
        "/ocr/documents/{document_id}/enqueue",
        status_code=202,
        response_model=OcrJobResponse,
        responses=ERROR_RESPONSES,
        tags=["OCR"],
    )
    async def enqueue_document(document_id: str) -> OcrJobResponse:
        try:
            return await ocr.enqueue_document_handler(_deps(), document_id=document_id)
        except DomainError as exc:
            raise http_error_for(exc) from exc

    @app.post(
        "/ocr/applications/{application_id}/enqueue",
        status_code=202,
        response_model=OcrJobListResponse,
        responses=ERROR_RESPONSES,
        tags=["OCR"],
    )
    async def enqueue_application(application_id: str) -> OcrJobListResponse:
        try:
            return await ocr.enqueue_application_handler(_deps(), application_id=application_id)
        except DomainError as exc:
            raise http_error_for(exc) from exc

    @app.get(
        "/ocr/documents/{document_id}/status",
        response_model=OcrJobResponse,
        responses=ERROR_RESPONSES,
        tags=["OCR"],
    )
    async def job_status(document_id: str) -> OcrJobResponse:
        try:
            return await ocr.job_status_handler(_deps(), document_id=document_id)
        except DomainError as exc:
            raise http_error_for(exc) from exc

    @app.get(
        "/ocr/documents/{document_id}/result",
        response_model=OcrResultResponse,
        responses=ERROR_RESPONSES,
        tags=["OCR"],
    )
    async def job_result(document_id: str) -> OcrResultResponse:
        try:
            return await ocr.job_result_handler(_deps(), document_id=document_id)
        except DomainError as exc:
            raise http_error_for(exc) from exc

    @app.post(
        "/ocr/documents/{document_id}/retry",
        status_code=202,
        response_model=OcrJobResponse,
        responses=ERROR_RESPONSES,
        tags=["OCR"],
    )
    async def retry_job(document_id: str) -> OcrJobResponse:
        try:
            return await ocr.retry_job_handler(_deps(), document_id=document_id)
        except DomainError as exc:
            raise http_error_for(exc) from exc

    @app.get(
        "/lender/applications/{application_id}/transmission",
        response_model=TransmissionStatusResponse,
        responses=ERROR_RESPONSES,
        tags=["Lender"],
    )
    async def transmission_status(application_id: str) -> TransmissionStatusResponse:
        try:
            return await lender.transmission_status_handler(_deps(), application_id=application_id)
        except DomainError as exc:
            raise http_error_for(exc) from exc

    @app.post(
        "/lender/submissions/{submission_id}/retry",
        response_model=SubmissionRetryResponse,
        responses=ERROR_RESPONSES,
        tags=["Lender"],
    )
    async def retry_submission(
        submission_id: str,
        x_actor_user_id: str | None = Header(default=None),
    ) -> SubmissionRetryResponse:
        try:
            return await lender.retry_submission_handler(
                _deps(),
                submission_id=submission_id,
                actor_user_id=x_actor_user_id,
            )
        except DomainError as exc:
            raise http_error_for(exc) from exc

    @app.post(
        "/lender/submissions/{submission_id}/cancel-retry",
        response_model=CancelRetryResponse,
        responses=ERROR_RESPONSES,
        tags=["Lender"],
    )
    async def cancel_retry(
        submission_id: str,
        x_actor_user_id: str | None = Header(default=None),
    ) -> CancelRetryResponse:
        try:
            return await lender.cancel_retry_handler(
                _deps(),
                submission_id=submission_id,
                actor_user_id=x_actor_user_id,
            )
        except DomainError as exc:
            raise http_error_for(exc) from exc

    def _mode() -> str:
        return "worker" if worker_loop is not None else "api"

    return app
