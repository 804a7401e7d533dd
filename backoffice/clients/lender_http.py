from __future__ import annotations

from dataclasses import dataclass

import httpx

from backoffice.domain.models import LenderSubmission, TransmissionResult

RETRYABLE_STATUS_CODES = frozenset({408, 425, 429})


@dataclass
class HttpLenderTransport:
    """Posts the stored submission payload to a lender intake endpoint.

    2xx is a success, 5xx and throttling codes are retryable, any other
    status is a permanent rejection. Network errors propagate to the caller.
    """

    endpoint_url: str
    timeout_seconds: float = 30.0
    transport: httpx.AsyncBaseTransport | None = None

    async def send(self, submission: LenderSubmission, *, attempt: int) -> TransmissionResult:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            response = await client.post(
                self.endpoint_url,
                json={
                    "submission_id": submission.id,
                    "application_id": submission.application_id,
                    "lender_id": submission.lender_id,
                    "attempt": attempt,
                    "payload": submission.payload,
                },
                headers={"Idempotency-Key": submission.id},
            )

        body = _json_body(response)
        if response.is_success:
            reference = body.get("external_reference") or body.get("id")
            return TransmissionResult(
                success=True,
                response=body,
                external_reference=str(reference) if reference is not None else None,
            )
        retryable = response.status_code >= 500 or response.status_code in RETRYABLE_STATUS_CODES
        return TransmissionResult(
            success=False,
            retryable=retryable,
            failure_reason=f"lender_http_{response.status_code}",
            response=body,
        )


def _json_body(response: httpx.Response) -> dict[str, object]:
    try:
        parsed = response.json()
    except ValueError:
        return {"status_code": response.status_code, "text": response.text}
    if isinstance(parsed, dict):
        return parsed
    return {"status_code": response.status_code, "body": parsed}
