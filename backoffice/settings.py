from __future__ import annotations

import os
from dataclasses import dataclass

from backoffice.domain.retry import RetryPolicy

KILL_SWITCH_ENV = {
    "ocr": "OPS_KILL_SWITCH_OCR",
    "lender_transmission": "OPS_KILL_SWITCH_LENDER_TRANSMISSION",
}


@dataclass(frozen=True)
class OcrSettings:
    poll_interval_ms: int = 10000
    worker_concurrency: int = 2
    max_attempts: int = 3
    lease_timeout_minutes: int = 15
    retry_base_delay_ms: int = 1000
    retry_max_delay_ms: int = 15 * 60 * 1000

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(base_delay_ms=self.retry_base_delay_ms, max_delay_ms=self.retry_max_delay_ms)


@dataclass(frozen=True)
class LenderRetrySettings:
    base_delay_ms: int = 30000
    max_delay_ms: int = 300000
    max_attempts: int = 5
    transport_url: str | None = None

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(base_delay_ms=self.base_delay_ms, max_delay_ms=self.max_delay_ms)


@dataclass(frozen=True)
class ProviderSettings:
    provider: str = "stub"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    timeout_ms: int = 30000


@dataclass(frozen=True)
class StorageSettings:
    azure_connection_string: str | None = None


def ocr_settings_from_env() -> OcrSettings:
    return OcrSettings(
        poll_interval_ms=_env_int("OCR_POLL_INTERVAL_MS", 10000),
        worker_concurrency=_env_int("OCR_WORKER_CONCURRENCY", 2),
        max_attempts=_env_int("OCR_MAX_ATTEMPTS", 3),
        lease_timeout_minutes=_env_int("OCR_LOCK_TIMEOUT_MINUTES", 15),
        retry_base_delay_ms=_env_int("OCR_RETRY_BASE_DELAY_MS", 1000),
        retry_max_delay_ms=_env_int("OCR_RETRY_MAX_DELAY_MS", 15 * 60 * 1000),
    )


def lender_retry_settings_from_env() -> LenderRetrySettings:
    return LenderRetrySettings(
        base_delay_ms=_env_int("LENDER_RETRY_BASE_DELAY_MS", 30000),
        max_delay_ms=_env_int("LENDER_RETRY_MAX_DELAY_MS", 300000),
        max_attempts=_env_int("LENDER_RETRY_MAX_COUNT", 5),
        transport_url=os.getenv("LENDER_TRANSPORT_URL") or None,
    )


def provider_settings_from_env() -> ProviderSettings:
    api_key = os.getenv("OPENAI_API_KEY") or None
    default_provider = "openai" if api_key else "stub"
    return ProviderSettings(
        provider=(os.getenv("OCR_PROVIDER") or default_provider).strip().lower(),
        openai_api_key=api_key,
        openai_model=os.getenv("OPENAI_OCR_MODEL") or "gpt-4o-mini",
        timeout_ms=_env_int("OCR_TIMEOUT_MS", 30000),
    )


def storage_settings_from_env() -> StorageSettings:
    return StorageSettings(azure_connection_string=os.getenv("AZURE_STORAGE_CONNECTION_STRING") or None)


class EnvKillSwitch:
    """Reads OPS_KILL_SWITCH_* on every call so operators can flip it without a restart."""

    async def is_enabled(self, name: str) -> bool:
        env_name = KILL_SWITCH_ENV.get(name, f"OPS_KILL_SWITCH_{name.upper()}")
        return _env_bool(env_name, False)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default

    try:
        parsed = int(value)
    except ValueError:
        return default

    return parsed if parsed > 0 else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}
