from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from backoffice.clients.openai_ocr import (
    OpenAiOcrProvider,
    build_input_content,
    extract_output_text,
    parse_structured_json,
)
from backoffice.domain.errors import DomainDependencyError, DomainValidationError


@pytest.mark.unit
def test_missing_api_key_is_a_dependency_error() -> None:
    provider = OpenAiOcrProvider(api_key=None)

    async def _run() -> None:
        with pytest.raises(DomainDependencyError):
            await provider.extract(b"%PDF", "application/pdf")

    asyncio.run(_run())


@pytest.mark.unit
def test_input_content_depends_on_mime_type() -> None:
    pdf = build_input_content(b"%PDF", "application/pdf", None)
    image = build_input_content(b"\x89PNG", "image/png", "scan.png")

    assert pdf[1]["type"] == "input_file"
    assert pdf[1]["filename"] == "document.pdf"
    assert image[1]["type"] == "input_image"
    assert str(image[1]["image_url"]).startswith("data:image/png;base64,")
    with pytest.raises(DomainValidationError):
        build_input_content(b"text", "text/plain", None)


@pytest.mark.unit
def test_extract_posts_to_responses_api() -> None:
    captured: list[dict[str, object]] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/responses")
        assert request.headers["Authorization"] == "Bearer sk-test"
        captured.append(json.loads(request.content))
        return httpx.Response(
            200,
            json={
                "id": "resp_1",
                "output": [{"content": [{"type": "output_text", "text": '{"business_name": "Acme"}'}]}],
            },
        )

    provider = OpenAiOcrProvider(api_key="sk-test", model="gpt-test", transport=httpx.MockTransport(_handler))
    result = asyncio.run(provider.extract(b"%PDF", "application/pdf", "statement.pdf"))

    assert captured[0]["model"] == "gpt-test"
    assert result.provider_name == "openai"
    assert result.model == "gpt-test"
    assert result.structured_json == {"business_name": "Acme"}
    assert result.meta == {"id": "resp_1"}


@pytest.mark.unit
def test_error_status_raises() -> None:
    provider = OpenAiOcrProvider(
        api_key="sk-test",
        transport=httpx.MockTransport(lambda request: httpx.Response(500, text="overloaded")),
    )

    async def _run() -> None:
        with pytest.raises(RuntimeError, match="openai_ocr_failed:500"):
            await provider.extract(b"\x89PNG", "image/png")

    asyncio.run(_run())


@pytest.mark.unit
def test_output_text_helpers() -> None:
    assert extract_output_text({"output_text": "plain"}) == "plain"
    assert extract_output_text({"output": "bad"}) == ""
    assert parse_structured_json("Business Name: Acme") is None
    assert parse_structured_json("[1, 2]") == [1, 2]
    assert parse_structured_json("{broken") is None
