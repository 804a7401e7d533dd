from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from backoffice.clients.lender_http import HttpLenderTransport
from backoffice.domain.models import LenderSubmission, LenderSubmissionStatus

SUBMISSION = LenderSubmission(
    id="sub-1",
    application_id="app-1",
    lender_id="lender-1",
    status=LenderSubmissionStatus.FAILED,
    payload={"amount": 50000},
)


def _transport(status_code: int, body: object) -> tuple[HttpLenderTransport, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code, json=body)

    return (
        HttpLenderTransport(endpoint_url="https://lender.example/intake", transport=httpx.MockTransport(_handler)),
        requests,
    )


@pytest.mark.unit
def test_accepted_submission_returns_reference() -> None:
    transport, requests = _transport(201, {"id": "ext-42"})

    result = asyncio.run(transport.send(SUBMISSION, attempt=2))

    assert result.success is True
    assert result.external_reference == "ext-42"
    assert requests[0].headers["Idempotency-Key"] == "sub-1"
    body = json.loads(requests[0].content)
    assert body["attempt"] == 2
    assert body["payload"] == {"amount": 50000}


@pytest.mark.unit
@pytest.mark.parametrize(
    ("status_code", "retryable"),
    [(503, True), (429, True), (408, True), (422, False), (400, False)],
)
def test_failure_status_classification(status_code: int, retryable: bool) -> None:
    transport, _ = _transport(status_code, {"error": "rejected"})

    result = asyncio.run(transport.send(SUBMISSION, attempt=1))

    assert result.success is False
    assert result.retryable is retryable
    assert result.failure_reason == f"lender_http_{status_code}"
    assert result.response == {"error": "rejected"}
