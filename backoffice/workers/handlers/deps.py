from __future__ import annotations

from dataclasses import dataclass

from backoffice.domain.contracts import AuditSink, DocumentRepository, JobStore, Provider, Storage
from backoffice.domain.retry import RetryPolicy


@dataclass(frozen=True)
class WorkerDeps:
    store: JobStore
    documents: DocumentRepository
    storage: Storage
    provider: Provider
    audit: AuditSink
    policy: RetryPolicy
    max_attempts: int
