from __future__ import annotations

from backoffice.domain.errors import DomainInvariantError
from backoffice.domain.models import JobRecord, JobStatus, SubmissionRetryState, SubmissionRetryStatus
from backoffice.domain.retry import RetryableWork, RetryPolicy, RetryStates

CLAIMABLE_STATUSES: frozenset[JobStatus] = frozenset({JobStatus.QUEUED, JobStatus.FAILED})

# Keep synchronized with the claim/finalize SQL in backoffice/repositories/sql.
# The transition back to queued is the manual reset and is only reachable
# through reset_job().
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.PROCESSING, JobStatus.QUEUED}),
    JobStatus.FAILED: frozenset({JobStatus.PROCESSING, JobStatus.QUEUED}),
    JobStatus.PROCESSING: frozenset(
        {
            JobStatus.PROCESSING,
            JobStatus.SUCCEEDED,
            JobStatus.FAILED,
            JobStatus.CANCELED,
            JobStatus.QUEUED,
        }
    ),
    JobStatus.SUCCEEDED: frozenset({JobStatus.QUEUED, JobStatus.SUCCEEDED}),
    JobStatus.CANCELED: frozenset({JobStatus.QUEUED}),
}

OCR_RETRY_STATES = RetryStates(
    retry=JobStatus.FAILED,
    success=JobStatus.SUCCEEDED,
    terminal=JobStatus.CANCELED,
)

LENDER_RETRY_STATES = RetryStates(
    retry=SubmissionRetryStatus.PENDING,
    success=SubmissionRetryStatus.SUCCEEDED,
    terminal=SubmissionRetryStatus.CANCELED,
)


def ensure_transition(*, from_status: JobStatus, to_status: JobStatus) -> None:
    allowed = ALLOWED_TRANSITIONS.get(from_status, frozenset())
    if to_status not in allowed:
        raise DomainInvariantError(f"invalid transition: {from_status} -> {to_status}")


def ocr_job_work(policy: RetryPolicy) -> RetryableWork[JobRecord, JobStatus]:
    return RetryableWork(
        name="ocr",
        policy=policy,
        states=OCR_RETRY_STATES,
        natural_key=lambda job: job.natural_key,
        attempts=lambda job: job.attempt_count,
        max_attempts=lambda job: job.max_attempts,
    )


def lender_submission_work(
    policy: RetryPolicy,
    *,
    max_attempts: int,
) -> RetryableWork[SubmissionRetryState, SubmissionRetryStatus]:
    return RetryableWork(
        name="lender_submission",
        policy=policy,
        states=LENDER_RETRY_STATES,
        natural_key=lambda state: state.submission_id,
        attempts=lambda state: state.attempt_count,
        max_attempts=lambda _state: max_attempts,
    )
