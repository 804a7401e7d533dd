from __future__ import annotations

from backoffice.api.handlers.deps import ApiDeps
from backoffice.api.schemas import (
    CancelRetryResponse,
    RetryStateResponse,
    SubmissionRetryResponse,
    TransmissionStatusResponse,
)
from backoffice.domain.use_cases import lender_retry

COMPONENT_ID = "api.lender.retry"


async def transmission_status_handler(deps: ApiDeps, *, application_id: str) -> TransmissionStatusResponse:
    status = await lender_retry.get_transmission_status(
        application_id=application_id,
        submissions=deps.submissions,
    )
    retry = status.retry_state
    return TransmissionStatusResponse(
        application_id=status.application_id,
        submission_id=status.submission.id,
        lender_id=status.submission.lender_id,
        status=str(status.submission.status),
        submitted_at=status.submission.submitted_at,
        last_response=status.submission.lender_response,
        retry_state=RetryStateResponse(
            status=str(retry.status) if retry is not None else None,
            attempt_count=retry.attempt_count if retry is not None else None,
            next_attempt_at=retry.next_attempt_at if retry is not None else None,
            last_error=retry.last_error if retry is not None else None,
            canceled_at=retry.canceled_at if retry is not None else None,
        ),
    )


async def retry_submission_handler(
    deps: ApiDeps,
    *,
    submission_id: str,
    actor_user_id: str | None = None,
) -> SubmissionRetryResponse:
    result = await lender_retry.retry_submission(
        submission_id=submission_id,
        submissions=deps.submissions,
        transport=deps.transport,
        kill_switch=deps.kill_switch,
        audit=deps.audit,
        policy=deps.lender_settings.retry_policy,
        max_attempts=deps.lender_settings.max_attempts,
        actor_user_id=actor_user_id,
    )
    return SubmissionRetryResponse(
        submission_id=result.submission_id,
        status=result.status,
        retry_status=result.retry_status,
    )


async def cancel_retry_handler(
    deps: ApiDeps,
    *,
    submission_id: str,
    actor_user_id: str | None = None,
) -> CancelRetryResponse:
    state = await lender_retry.cancel_submission_retry(
        submission_id=submission_id,
        submissions=deps.submissions,
        audit=deps.audit,
        actor_user_id=actor_user_id,
    )
    return CancelRetryResponse(submission_id=state.submission_id, status=str(state.status))
