from __future__ import annotations

from typing import Literal

from backoffice.domain.errors import (
    DomainDependencyError,
    DomainValidationError,
    NotFoundError,
    StorageValidationError,
)

# Canonical failure vocabulary recorded in logs next to last_error.
ErrorCode = Literal[
    "storage_url_rejected",
    "validation_error",
    "reference_missing",
    "dependency_unavailable",
    "provider_failed",
    "internal_error",
]

FailureKind = Literal["validation", "transient"]

CANONICAL_ERROR_CODES: tuple[ErrorCode, ...] = (
    "storage_url_rejected",
    "validation_error",
    "reference_missing",
    "dependency_unavailable",
    "provider_failed",
    "internal_error",
)

# Validation failures are audited separately but still consume an attempt.
VALIDATION_ERROR_CODES: frozenset[ErrorCode] = frozenset({"storage_url_rejected", "validation_error"})

AUDITED_ERROR_CODES: frozenset[ErrorCode] = frozenset({"storage_url_rejected"})


def is_canonical_error_code(code: str) -> bool:
    return code in CANONICAL_ERROR_CODES


def error_code_for(exc: BaseException) -> ErrorCode:
    if isinstance(exc, StorageValidationError):
        return "storage_url_rejected"
    if isinstance(exc, DomainValidationError):
        return "validation_error"
    if isinstance(exc, NotFoundError):
        return "reference_missing"
    if isinstance(exc, DomainDependencyError):
        return "dependency_unavailable"
    if isinstance(exc, (OSError, RuntimeError)):
        return "provider_failed"
    return "internal_error"


def classify_failure(code: ErrorCode) -> FailureKind:
    if code in VALIDATION_ERROR_CODES:
        return "validation"
    return "transient"


def describe_failure(exc: BaseException) -> str:
    message = str(exc).strip()
    return message or "unknown_error"
