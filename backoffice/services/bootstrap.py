from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import os
import socket

from backoffice.api.handlers.deps import ApiDeps
from backoffice.clients.lender_http import HttpLenderTransport
from backoffice.clients.openai_ocr import OpenAiOcrProvider
from backoffice.clients.storage import ContentStorage
from backoffice.clients.stub import LoggingAuditSink, StubLenderTransport, StubProvider
from backoffice.domain.contracts import (
    AuditSink,
    DocumentRepository,
    JobStore,
    KillSwitch,
    LenderSubmissionRepository,
    LenderTransport,
    Provider,
    Storage,
)
from backoffice.repositories.postgres import (
    AsyncpgPoolManager,
    PostgresDocumentRepository,
    PostgresJobStore,
    PostgresLenderSubmissionRepository,
)
from backoffice.repositories.stub import (
    InMemoryDocumentRepository,
    InMemoryJobStore,
    InMemoryLenderSubmissionRepository,
)
from backoffice.roles import RuntimeRole
from backoffice.settings import (
    EnvKillSwitch,
    LenderRetrySettings,
    OcrSettings,
    ProviderSettings,
    StorageSettings,
    lender_retry_settings_from_env,
    ocr_settings_from_env,
    provider_settings_from_env,
    storage_settings_from_env,
)
from backoffice.workers.handlers.deps import WorkerDeps
from backoffice.workers.handlers.factory import build_process_handler
from backoffice.workers.loop import WorkerLoop


@dataclass
class RuntimeContainer:
    store: JobStore
    documents: DocumentRepository
    submissions: LenderSubmissionRepository
    storage: Storage
    provider: Provider
    transport: LenderTransport
    audit: AuditSink
    kill_switch: KillSwitch
    api_deps: ApiDeps
    worker_loop: WorkerLoop | None
    on_startup: Callable[[], Awaitable[None]] | None
    on_shutdown: Callable[[], Awaitable[None]] | None


def build_provider(settings: ProviderSettings) -> Provider:
    if settings.provider == "openai":
        return OpenAiOcrProvider(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            timeout_ms=settings.timeout_ms,
        )
    if settings.provider == "stub":
        return StubProvider()
    raise ValueError(f"unsupported_ocr_provider:{settings.provider}")


def build_lender_transport(settings: LenderRetrySettings) -> LenderTransport:
    if settings.transport_url:
        return HttpLenderTransport(endpoint_url=settings.transport_url)
    return StubLenderTransport()


def default_worker_id(role: str) -> str:
    return f"{role}:{socket.gethostname()}:{os.getpid()}"


def build_runtime_container(
    role: RuntimeRole,
    *,
    ocr_settings: OcrSettings | None = None,
    lender_settings: LenderRetrySettings | None = None,
    provider_settings: ProviderSettings | None = None,
    storage_settings: StorageSettings | None = None,
) -> RuntimeContainer:
    ocr_settings = ocr_settings or ocr_settings_from_env()
    lender_settings = lender_settings or lender_retry_settings_from_env()
    provider_settings = provider_settings or provider_settings_from_env()
    storage_settings = storage_settings or storage_settings_from_env()

    database_url = os.getenv("DATABASE_URL")
    on_startup: Callable[[], Awaitable[None]] | None = None
    on_shutdown: Callable[[], Awaitable[None]] | None = None
    store: JobStore
    documents: DocumentRepository
    submissions: LenderSubmissionRepository
    if database_url:
        pool_manager = AsyncpgPoolManager(dsn=database_url)
        store = PostgresJobStore(pool_manager=pool_manager, lease_timeout_minutes=ocr_settings.lease_timeout_minutes)
        documents = PostgresDocumentRepository(pool_manager=pool_manager)
        submissions = PostgresLenderSubmissionRepository(pool_manager=pool_manager)
        on_startup = pool_manager.startup
        on_shutdown = pool_manager.shutdown
    else:
        store = InMemoryJobStore(lease_timeout_minutes=ocr_settings.lease_timeout_minutes)
        documents = InMemoryDocumentRepository()
        submissions = InMemoryLenderSubmissionRepository()

    storage = ContentStorage(
        timeout_seconds=provider_settings.timeout_ms / 1000,
        azure_connection_string=storage_settings.azure_connection_string,
    )
    provider = build_provider(provider_settings)
    transport = build_lender_transport(lender_settings)
    audit = LoggingAuditSink()
    kill_switch = EnvKillSwitch()
    api_deps = ApiDeps(
        store=store,
        documents=documents,
        submissions=submissions,
        transport=transport,
        audit=audit,
        kill_switch=kill_switch,
        ocr_settings=ocr_settings,
        lender_settings=lender_settings,
    )

    worker_loop: WorkerLoop | None = None
    if role.is_worker:
        worker_deps = WorkerDeps(
            store=store,
            documents=documents,
            storage=storage,
            provider=provider,
            audit=audit,
            policy=ocr_settings.retry_policy,
            max_attempts=ocr_settings.max_attempts,
        )
        worker_loop = WorkerLoop(
            worker_id=default_worker_id(role.name),
            store=store,
            process=build_process_handler(role.name, worker_deps),
            kill_switch=kill_switch,
            poll_interval_ms=ocr_settings.poll_interval_ms,
            concurrency=ocr_settings.worker_concurrency,
        )

    return RuntimeContainer(
        store=store,
        documents=documents,
        submissions=submissions,
        storage=storage,
        provider=provider,
        transport=transport,
        audit=audit,
        kill_switch=kill_switch,
        api_deps=api_deps,
        worker_loop=worker_loop,
        on_startup=on_startup,
        on_shutdown=on_shutdown,
    )
