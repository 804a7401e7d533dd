from __future__ import annotations

from dataclasses import dataclass

from backoffice.domain.contracts import (
    AuditSink,
    DocumentRepository,
    JobStore,
    KillSwitch,
    LenderSubmissionRepository,
    LenderTransport,
)
from backoffice.settings import LenderRetrySettings, OcrSettings


@dataclass(frozen=True)
class ApiDeps:
    store: JobStore
    documents: DocumentRepository
    submissions: LenderSubmissionRepository
    transport: LenderTransport
    audit: AuditSink
    kill_switch: KillSwitch
    ocr_settings: OcrSettings
    lender_settings: LenderRetrySettings
