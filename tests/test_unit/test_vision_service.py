"""
Unit Tests for the Vision Extraction Client

The OpenAI client is mocked; no network calls are made.
"""
import base64
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest
from tenacity import wait_none

from docsearch.config import get_settings
from docsearch.errors import ExternalServiceError, FileProcessingError
from docsearch.services.vision_service import VisionService


def _completion(content):
    return MagicMock(choices=[MagicMock(message=MagicMock(content=content))])


def _openai_error(cls, status_code: int):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(status_code, request=request)
    return cls("upstream said no", response=response, body=None)


@pytest.fixture
def mock_client():
    client = MagicMock()
    client.chat.completions.create = AsyncMock()
    return client


@pytest.fixture
def vision_service(mock_client):
    return VisionService(mock_client, get_settings())


@pytest.fixture
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(VisionService._create_completion.retry, "wait", wait_none())


class TestExtractPage:

    @pytest.mark.asyncio
    async def test_valid_response(self, vision_service, mock_client, sample_png_bytes):
        mock_client.chat.completions.create.return_value = _completion(json.dumps({
            "documentType": "invoice",
            "extractedFields": {"invoiceNumber": "INV-7"},
            "tables": [{"row": "72", "column": "Pallets", "value": 9}],
            "rawText": "Invoice INV-7",
            "confidence": 0.95,
        }))

        page = await vision_service.extract_page(sample_png_bytes, "image/png", page_index=0, page_count=1)

        assert page.document_type == "invoice"
        assert page.extracted_fields == {"invoiceNumber": "INV-7"}
        assert page.tables[0].value == "9"
        assert page.raw_text == "Invoice INV-7"
        assert page.confidence == 0.95

    @pytest.mark.asyncio
    async def test_request_shape(self, vision_service, mock_client, sample_png_bytes):
        mock_client.chat.completions.create.return_value = _completion("{}")

        await vision_service.extract_page(sample_png_bytes, "image/jpeg", page_index=0, page_count=1)

        kwargs = mock_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["max_tokens"] == 4000
        text_part, image_part = kwargs["messages"][0]["content"]
        assert text_part["text"] == VisionService.EXTRACTION_PROMPT
        expected_url = "data:image/jpeg;base64," + base64.b64encode(sample_png_bytes).decode("utf-8")
        assert image_part["image_url"]["url"] == expected_url

    @pytest.mark.asyncio
    async def test_multi_page_note(self, vision_service, mock_client, sample_png_bytes):
        mock_client.chat.completions.create.return_value = _completion("{}")

        await vision_service.extract_page(sample_png_bytes, "image/png", page_index=2, page_count=5)

        text = mock_client.chat.completions.create.call_args.kwargs["messages"][0]["content"][0]["text"]
        assert text.endswith("\n\nNote: This is page 3 of 5.")

    @pytest.mark.asyncio
    async def test_prompt_override(self, vision_service, mock_client, sample_png_bytes):
        mock_client.chat.completions.create.return_value = _completion("{}")

        await vision_service.extract_page(
            sample_png_bytes, "image/png", page_index=0, page_count=1,
            prompt_override="  Only extract totals as JSON.  ",
        )

        text = mock_client.chat.completions.create.call_args.kwargs["messages"][0]["content"][0]["text"]
        assert text == "Only extract totals as JSON."

    @pytest.mark.asyncio
    async def test_missing_keys_get_defaults(self, vision_service, mock_client, sample_png_bytes):
        mock_client.chat.completions.create.return_value = _completion('{"tables": null, "rawText": null}')

        page = await vision_service.extract_page(sample_png_bytes, "image/png", page_index=0, page_count=1)

        assert page.tables == []
        assert page.raw_text == ""
        assert page.document_type is None
        assert page.confidence is None

    @pytest.mark.asyncio
    async def test_api_error_is_external_service_error(self, vision_service, mock_client, sample_png_bytes):
        mock_client.chat.completions.create.side_effect = _openai_error(openai.BadRequestError, 400)

        with pytest.raises(ExternalServiceError) as exc_info:
            await vision_service.extract_page(sample_png_bytes, "image/png", page_index=0, page_count=1)

        assert exc_info.value.status_code == 502
        assert mock_client.chat.completions.create.await_count == 1

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, vision_service, mock_client, sample_png_bytes, no_retry_wait):
        mock_client.chat.completions.create.side_effect = [
            _openai_error(openai.RateLimitError, 429),
            _completion('{"documentType": "receipt"}'),
        ]

        page = await vision_service.extract_page(sample_png_bytes, "image/png", page_index=0, page_count=1)

        assert page.document_type == "receipt"
        assert mock_client.chat.completions.create.await_count == 2

    @pytest.mark.asyncio
    async def test_retries_give_up_after_three_attempts(self, vision_service, mock_client, sample_png_bytes, no_retry_wait):
        mock_client.chat.completions.create.side_effect = _openai_error(openai.RateLimitError, 429)

        with pytest.raises(ExternalServiceError):
            await vision_service.extract_page(sample_png_bytes, "image/png", page_index=0, page_count=1)

        assert mock_client.chat.completions.create.await_count == 3


class TestParseResponse:

    @pytest.mark.parametrize("content", [None, ""])
    def test_empty(self, content):
        with pytest.raises(FileProcessingError, match="empty response"):
            VisionService.parse_response(content)

    def test_invalid_json(self):
        with pytest.raises(FileProcessingError, match="invalid JSON for page 2"):
            VisionService.parse_response("not json {", page_index=1)

    def test_non_object(self):
        with pytest.raises(FileProcessingError, match="non-object"):
            VisionService.parse_response("[1, 2, 3]")

    @pytest.mark.parametrize("confidence", [1.5, -0.1])
    def test_confidence_out_of_range(self, confidence):
        with pytest.raises(FileProcessingError, match="unexpected shape"):
            VisionService.parse_response(json.dumps({"confidence": confidence}))

    def test_malformed_table_cell(self):
        with pytest.raises(FileProcessingError):
            VisionService.parse_response(json.dumps({"tables": [{"row": "1"}]}))
