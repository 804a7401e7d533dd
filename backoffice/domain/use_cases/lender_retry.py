from __future__ import annotations

import dataclasses
import logging
from datetime import UTC, datetime

from backoffice.domain.contracts import AuditSink, KillSwitch, LenderSubmissionRepository, LenderTransport
from backoffice.domain.error_taxonomy import describe_failure
from backoffice.domain.errors import (
    ConflictError,
    KillSwitchEnabledError,
    NotFoundError,
    RetryCanceledError,
    RetryExhaustedError,
)
from backoffice.domain.lifecycle import lender_submission_work
from backoffice.domain.models import (
    LenderSubmissionStatus,
    SubmissionRetryResult,
    SubmissionRetryState,
    SubmissionRetryStatus,
    TransmissionResult,
    TransmissionStatus,
)
from backoffice.domain.retry import RetryPolicy

COMPONENT_ID = "domain.lender.retry"
LENDER_TRANSMISSION_SWITCH = "lender_transmission"
RETRIED_ACTION = "lender_submission_retried"
RETRY_CANCELED_ACTION = "lender_submission_retry_canceled"
ALREADY_SUBMITTED = "already_submitted"

logger = logging.getLogger("lender")


async def retry_submission(
    *,
    submission_id: str,
    submissions: LenderSubmissionRepository,
    transport: LenderTransport,
    kill_switch: KillSwitch,
    audit: AuditSink,
    policy: RetryPolicy,
    max_attempts: int,
    actor_user_id: str | None = None,
) -> SubmissionRetryResult:
    if await kill_switch.is_enabled(LENDER_TRANSMISSION_SWITCH):
        raise KillSwitchEnabledError(LENDER_TRANSMISSION_SWITCH)

    submission = await submissions.find_submission(submission_id=submission_id)
    if submission is None:
        raise NotFoundError("Submission not found.")
    if submission.status == LenderSubmissionStatus.SUBMITTED:
        return SubmissionRetryResult(
            submission_id=submission.id,
            status=str(submission.status),
            retry_status=ALREADY_SUBMITTED,
        )

    state = await submissions.find_retry_state(submission_id=submission.id)
    if state is None:
        state = SubmissionRetryState(
            submission_id=submission.id,
            status=SubmissionRetryStatus.PENDING,
            attempt_count=0,
            next_attempt_at=None,
            last_error=None,
        )
    if state.status == SubmissionRetryStatus.CANCELED:
        raise RetryCanceledError("Retry was canceled.")
    work = lender_submission_work(policy, max_attempts=max_attempts)
    if work.is_exhausted(state):
        raise RetryExhaustedError("Retry limit reached.")
    if not isinstance(submission.payload, dict) or not submission.payload:
        raise ConflictError("Submission payload is missing.")

    attempt = state.attempt_count + 1
    try:
        transmission = await transport.send(submission, attempt=attempt)
    except Exception as exc:
        transmission = TransmissionResult(success=False, retryable=True, failure_reason=describe_failure(exc))

    if transmission.success:
        outcome = work.succeeded(state, consumed_attempt=True)
        submission_status = LenderSubmissionStatus.SUBMITTED
    else:
        outcome = work.failed(state, error=transmission.failure_reason or "lender_error")
        submission_status = LenderSubmissionStatus.FAILED
        if not transmission.retryable:
            outcome = dataclasses.replace(outcome, status=SubmissionRetryStatus.CANCELED, next_attempt_at=None)

    now = datetime.now(tz=UTC)
    saved = await submissions.record_retry_attempt(
        submission_id=submission.id,
        submission_status=submission_status,
        transmission=transmission,
        state=SubmissionRetryState(
            submission_id=submission.id,
            status=outcome.status,
            attempt_count=outcome.attempt_count,
            next_attempt_at=outcome.next_attempt_at,
            last_error=outcome.last_error,
            canceled_at=now if outcome.status == SubmissionRetryStatus.CANCELED else None,
        ),
    )
    await _audit(
        audit,
        action=RETRIED_ACTION,
        submission_id=submission.id,
        success=transmission.success,
        actor_user_id=actor_user_id,
    )
    logger.info(
        "lender submission retried",
        extra={
            "submission_id": submission.id,
            "status": str(submission_status),
            "retry_status": str(saved.status),
            "attempt": saved.attempt_count,
        },
    )
    return SubmissionRetryResult(
        submission_id=submission.id,
        status=str(submission_status),
        retry_status=str(saved.status),
    )


async def cancel_submission_retry(
    *,
    submission_id: str,
    submissions: LenderSubmissionRepository,
    audit: AuditSink,
    actor_user_id: str | None = None,
) -> SubmissionRetryState:
    submission = await submissions.find_submission(submission_id=submission_id)
    if submission is None:
        raise NotFoundError("Submission not found.")
    state = await submissions.find_retry_state(submission_id=submission.id)
    if state is None:
        raise NotFoundError("Retry state not found.")

    canceled = await submissions.upsert_retry_state(
        state=SubmissionRetryState(
            submission_id=submission.id,
            status=SubmissionRetryStatus.CANCELED,
            attempt_count=state.attempt_count,
            next_attempt_at=None,
            last_error=state.last_error,
            canceled_at=datetime.now(tz=UTC),
        )
    )
    await _audit(
        audit,
        action=RETRY_CANCELED_ACTION,
        submission_id=submission.id,
        success=True,
        actor_user_id=actor_user_id,
    )
    logger.info("lender submission retry canceled", extra={"submission_id": submission.id})
    return canceled


async def get_transmission_status(
    *,
    application_id: str,
    submissions: LenderSubmissionRepository,
) -> TransmissionStatus:
    submission = await submissions.find_latest_submission(application_id=application_id)
    if submission is None:
        raise NotFoundError("Submission not found.")
    state = await submissions.find_retry_state(submission_id=submission.id)
    return TransmissionStatus(application_id=application_id, submission=submission, retry_state=state)


async def _audit(
    audit: AuditSink,
    *,
    action: str,
    submission_id: str,
    success: bool,
    actor_user_id: str | None,
) -> None:
    try:
        await audit.record(
            action=action,
            target_type="submission",
            target_id=submission_id,
            success=success,
            actor_user_id=actor_user_id,
        )
    except Exception as exc:
        logger.error(
            "lender audit failed",
            extra={"submission_id": submission_id, "action": action, "error": describe_failure(exc)},
        )
