from __future__ import annotations


class DomainError(Exception):
    pass


class DomainValidationError(DomainError):
    pass


class DomainInvariantError(DomainError):
    pass


class DomainDependencyError(DomainError):
    pass


class NotFoundError(DomainError):
    pass


class ConflictError(DomainError):
    pass


class RetryExhaustedError(ConflictError):
    pass


class RetryCanceledError(ConflictError):
    pass


class KillSwitchEnabledError(DomainError):
    def __init__(self, switch: str) -> None:
        super().__init__(f"kill switch is enabled: {switch}")
        self.switch = switch


class StorageValidationError(DomainValidationError):
    """Content reference points somewhere the storage adapter must not fetch."""

    def __init__(self, url: str) -> None:
        super().__init__("invalid_ocr_storage_url")
        self.url = url
