from __future__ import annotations

import logging
from dataclasses import dataclass, field

from backoffice.domain.errors import DomainValidationError, StorageValidationError
from backoffice.domain.models import ExtractionResult, LenderSubmission, TransmissionResult

audit_logger = logging.getLogger("audit")


@dataclass
class StubStorage:
    objects: dict[str, bytes] = field(default_factory=dict)
    rejected_prefixes: tuple[str, ...] = ("http://",)
    reads: list[str] = field(default_factory=list)

    async def get_buffer(self, content: str) -> bytes:
        self.reads.append(content)
        if content.startswith(self.rejected_prefixes):
            raise StorageValidationError(content)
        payload = self.objects.get(content)
        if payload is None:
            raise KeyError(f"content reference not found: {content}")
        return payload


@dataclass
class StubProvider:
    text: str = "Business Name: Stub Holdings LLC"
    model: str = "stub-ocr"
    failures: list[Exception] = field(default_factory=list)
    calls: list[tuple[int, str, str | None]] = field(default_factory=list)

    async def extract(self, buffer: bytes, mime_type: str, file_name: str | None = None) -> ExtractionResult:
        self.calls.append((len(buffer), mime_type, file_name))
        if self.failures:
            raise self.failures.pop(0)
        if not mime_type:
            raise DomainValidationError("unsupported_mime_type")
        return ExtractionResult(
            text=self.text,
            structured_json=None,
            model=self.model,
            provider_name="stub",
            meta={"bytes": len(buffer)},
        )


@dataclass
class StubLenderTransport:
    """Replays scripted transmission results; succeeds once the script is exhausted."""

    results: list[TransmissionResult | Exception] = field(default_factory=list)
    sent: list[tuple[str, int]] = field(default_factory=list)

    async def send(self, submission: LenderSubmission, *, attempt: int) -> TransmissionResult:
        self.sent.append((submission.id, attempt))
        if self.results:
            scripted = self.results.pop(0)
            if isinstance(scripted, Exception):
                raise scripted
            return scripted
        return TransmissionResult(
            success=True,
            response={"status": "accepted"},
            external_reference=f"ext-{submission.id}",
        )


@dataclass
class StaticKillSwitch:
    enabled: set[str] = field(default_factory=set)

    async def is_enabled(self, name: str) -> bool:
        return name in self.enabled


@dataclass
class InMemoryAuditSink:
    events: list[dict[str, object]] = field(default_factory=list)
    fail_with: Exception | None = None

    async def record(
        self,
        *,
        action: str,
        target_type: str,
        target_id: str,
        success: bool,
        actor_user_id: str | None = None,
    ) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.events.append(
            {
                "action": action,
                "target_type": target_type,
                "target_id": target_id,
                "success": success,
                "actor_user_id": actor_user_id,
            }
        )


class LoggingAuditSink:
    """Writes audit events to the audit logger; persistence lives outside this service."""

    async def record(
        self,
        *,
        action: str,
        target_type: str,
        target_id: str,
        success: bool,
        actor_user_id: str | None = None,
    ) -> None:
        audit_logger.info(
            "audit event",
            extra={
                "action": action,
                "target_type": target_type,
                "target_id": target_id,
                "success": success,
                "actor_user_id": actor_user_id,
            },
        )
