"""
Vision Service
Uses GPT-4o to extract tables, text and a document classification from page images.
"""
import base64
import json
from typing import Optional
import openai
import structlog
from openai import AsyncOpenAI
from pydantic import ValidationError as PydanticValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from docsearch.clients import get_openai_client
from docsearch.config import Settings, get_settings
from docsearch.errors import ExternalServiceError, FileProcessingError
from docsearch.models.schemas import PageExtraction

logger = structlog.get_logger()

TRANSIENT_ERRORS = (openai.APIConnectionError, openai.APITimeoutError, openai.RateLimitError)


class VisionService:
    """Extracts structured content from one page image per request."""

    EXTRACTION_PROMPT = """You are an expert document classifier and data extractor. Analyze the provided document image and return a strict JSON response with these keys:

1. "documentType" – Classify the document as one of: "invoice", "purchase_order", "receipt", "contract", "report", "form", "letter", or whatever category is the most appropriate.

2. "extractedFields" – Key structured data based on document type:
   • For invoices: {"invoiceNumber", "date", "dueDate", "vendor", "total", "tax", "subtotal", "billTo", "items"}
   • For purchase orders: {"poNumber", "date", "vendor", "buyer", "total", "items", "deliveryDate", "terms"}
   • For receipts: {"store", "date", "total", "tax", "paymentMethod", "items"}
   • For contracts: {"parties", "date", "title", "value", "terms", "duration"}
   • For other types: extract the most relevant fields found

3. "tables" – an array that captures EVERY data cell from ALL tables in the document **excluding header rows**. Represent each cell as an object {"row","column","value"}.
   • "row"  – the EXACT text of the FIRST cell in that row (the row header/value).
   • "column" – the EXACT text of the column header (top-most header cell) for that column.
   • "value" – the cell text itself.
   Do NOT use numeric indices or positional terms. Do NOT include header rows themselves (they become the column names).

   Example table snippet (header + 1 row):
   Pieces | Pallets | Description
   72     | 9       | SAP Forms

   Should yield in "tables":
   [
     {"row":"72","column":"Pieces","value":"72"},
     {"row":"72","column":"Pallets","value":"9"},
     {"row":"72","column":"Description","value":"SAP Forms"}
   ]

4. "rawText" – plain text of all NON-tabular content in reading order.

5. "confidence" – Your confidence in the classification (0-1)

Return ONLY a valid JSON object. Extract actual values when present, use null for missing fields."""

    def __init__(self, client: AsyncOpenAI, settings: Settings):
        self.client = client
        self.settings = settings

    async def extract_page(
        self,
        image_bytes: bytes,
        mime_type: str,
        page_index: int,
        page_count: int,
        prompt_override: Optional[str] = None,
    ) -> PageExtraction:
        """
        Run structured extraction on a single page image.

        Args:
            image_bytes: Encoded page image
            mime_type: MIME type of the image
            page_index: 0-based page index
            page_count: Total number of pages in the document
            prompt_override: Replaces the built-in instruction block when set

        Returns:
            Validated per-page extraction

        Raises:
            ExternalServiceError: If the OpenAI request fails
            FileProcessingError: If the response is not the expected JSON shape
        """
        messages = self._build_messages(image_bytes, mime_type, page_index, page_count, prompt_override)

        logger.info(f"🔍 AI Vision: Analyzing page {page_index + 1}/{page_count}...")

        try:
            response = await self._create_completion(messages)
        except openai.APIError as e:
            logger.error("Vision API failed", page=page_index + 1, total_pages=page_count, error=str(e))
            raise ExternalServiceError("OpenAI", f"vision request failed on page {page_index + 1}: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        return self.parse_response(content, page_index)

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _create_completion(self, messages: list):
        return await self.client.chat.completions.create(
            model=self.settings.vision_model,
            messages=messages,
            response_format={"type": "json_object"},
            max_tokens=self.settings.vision_max_tokens,
        )

    def _build_messages(
        self,
        image_bytes: bytes,
        mime_type: str,
        page_index: int,
        page_count: int,
        prompt_override: Optional[str],
    ) -> list:
        prompt = (prompt_override or "").strip() or self.EXTRACTION_PROMPT
        if page_count > 1:
            prompt += f"\n\nNote: This is page {page_index + 1} of {page_count}."

        b64_image = base64.b64encode(image_bytes).decode("utf-8")
        return [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:{mime_type};base64,{b64_image}"},
                    },
                ],
            }
        ]

    @staticmethod
    def parse_response(content: Optional[str], page_index: int = 0) -> PageExtraction:
        """Parse and validate the model's JSON answer for one page."""
        page = page_index + 1
        if not content:
            raise FileProcessingError(f"vision model returned an empty response for page {page}")

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise FileProcessingError(f"vision model returned invalid JSON for page {page}") from e

        if not isinstance(data, dict):
            raise FileProcessingError(f"vision model returned a non-object JSON value for page {page}")

        try:
            return PageExtraction.model_validate(data)
        except PydanticValidationError as e:
            logger.warning("Vision response failed validation", page=page, errors=e.error_count())
            raise FileProcessingError(f"vision model response has an unexpected shape for page {page}") from e


# Singleton
_vision_service: Optional[VisionService] = None


def get_vision_service() -> VisionService:
    """Get singleton vision service instance."""
    global _vision_service
    if _vision_service is None:
        _vision_service = VisionService(get_openai_client(), get_settings())
    return _vision_service
