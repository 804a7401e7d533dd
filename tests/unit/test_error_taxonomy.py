import pytest

from backoffice.domain.error_taxonomy import (
    classify_failure,
    describe_failure,
    error_code_for,
    is_canonical_error_code,
)
from backoffice.domain.errors import (
    DomainDependencyError,
    DomainValidationError,
    NotFoundError,
    RetryExhaustedError,
    StorageValidationError,
)


@pytest.mark.unit
def test_canonical_error_codes_are_enforced() -> None:
    assert is_canonical_error_code("storage_url_rejected") is True
    assert is_canonical_error_code("schema_validation_failed") is False


@pytest.mark.unit
def test_exceptions_map_to_error_codes() -> None:
    assert error_code_for(StorageValidationError("http://x")) == "storage_url_rejected"
    assert error_code_for(DomainValidationError("unsupported_mime_type")) == "validation_error"
    assert error_code_for(NotFoundError("document_not_found")) == "reference_missing"
    assert error_code_for(DomainDependencyError("missing_openai_api_key")) == "dependency_unavailable"
    assert error_code_for(RuntimeError("openai_ocr_failed:500")) == "provider_failed"
    assert error_code_for(KeyError("missing")) == "internal_error"


@pytest.mark.unit
def test_failure_classification_and_description() -> None:
    assert classify_failure("storage_url_rejected") == "validation"
    assert classify_failure("provider_failed") == "transient"
    assert describe_failure(RuntimeError("  ")) == "unknown_error"
    assert describe_failure(StorageValidationError("http://x")) == "invalid_ocr_storage_url"
    assert isinstance(RetryExhaustedError("limit"), Exception)
