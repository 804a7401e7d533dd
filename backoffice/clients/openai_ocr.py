from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass

import httpx

from backoffice.domain.errors import DomainDependencyError, DomainValidationError
from backoffice.domain.models import ExtractionResult

PROVIDER_NAME = "openai"
EXTRACTION_PROMPT = "Extract all readable text from this document. Return plain text only."

logger = logging.getLogger("ocr")


@dataclass
class OpenAiOcrProvider:
    """OCR through the OpenAI Responses API; PDFs go as input_file, images as input_image."""

    api_key: str | None
    model: str = "gpt-4o-mini"
    timeout_ms: int = 30000
    base_url: str = "https://api.openai.com/v1"
    transport: httpx.AsyncBaseTransport | None = None

    async def extract(self, buffer: bytes, mime_type: str, file_name: str | None = None) -> ExtractionResult:
        if not self.api_key:
            logger.warning("openai api key missing")
            raise DomainDependencyError("missing_openai_api_key")

        request_body = {
            "model": self.model,
            "input": [{"role": "user", "content": build_input_content(buffer, mime_type, file_name)}],
        }
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_ms / 1000,
            transport=self.transport,
        ) as client:
            try:
                response = await client.post(
                    "/responses",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=request_body,
                )
            except httpx.HTTPError as exc:
                raise DomainDependencyError(f"openai_ocr_unreachable:{exc.__class__.__name__}") from exc
        if response.status_code >= 400:
            raise RuntimeError(f"openai_ocr_failed:{response.status_code}:{response.text}")

        payload = response.json()
        if not isinstance(payload, dict):
            raise RuntimeError("openai_ocr_failed:unexpected_payload")
        text = extract_output_text(payload)
        return ExtractionResult(
            text=text,
            structured_json=parse_structured_json(text),
            model=self.model,
            provider_name=PROVIDER_NAME,
            meta={"id": payload.get("id")},
        )


def build_input_content(buffer: bytes, mime_type: str, file_name: str | None) -> list[dict[str, object]]:
    encoded = base64.b64encode(buffer).decode("ascii")
    content: list[dict[str, object]] = [{"type": "input_text", "text": EXTRACTION_PROMPT}]
    if mime_type == "application/pdf":
        content.append({"type": "input_file", "filename": file_name or "document.pdf", "file_data": encoded})
    elif mime_type.startswith("image/"):
        content.append({"type": "input_image", "image_url": f"data:{mime_type};base64,{encoded}"})
    else:
        raise DomainValidationError("unsupported_mime_type")
    return content


def extract_output_text(payload: dict[str, object]) -> str:
    output_text = payload.get("output_text")
    if isinstance(output_text, str):
        return output_text
    output = payload.get("output")
    if not isinstance(output, list):
        return ""
    chunks: list[str] = []
    for item in output:
        if not isinstance(item, dict) or not isinstance(item.get("content"), list):
            continue
        for entry in item["content"]:
            if isinstance(entry, dict) and entry.get("type") == "output_text" and isinstance(entry.get("text"), str):
                chunks.append(entry["text"])
    return "\n".join(chunks).strip()


def parse_structured_json(text: str) -> object | None:
    trimmed = text.strip()
    if not trimmed or trimmed[0] not in "{[":
        return None
    try:
        return json.loads(trimmed)
    except json.JSONDecodeError:
        return None
