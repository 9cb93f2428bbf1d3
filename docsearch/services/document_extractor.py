"""
Document Extractor
Routes an upload through its lane and merges the per-page vision results.
"""
import asyncio
import time
from typing import Awaitable, Callable, List, Optional
import structlog

from docsearch.errors import FileProcessingError
from docsearch.models.schemas import ExtractionResult, FileLane, PageExtraction, UploadedFile
from docsearch.services.extraction_merger import merge_pages
from docsearch.services.file_converter import FileConverter, get_file_converter
from docsearch.services.file_handler import classify, image_mime_type, is_word_document
from docsearch.services.pdf_rasterizer import PdfRasterizer, get_pdf_rasterizer
from docsearch.services.text_extractor import extract_text
from docsearch.services.vision_service import VisionService, get_vision_service

logger = structlog.get_logger()

PageCallback = Callable[[int, int], Awaitable[None]]


class DocumentExtractor:
    """Text lane locally; image and PDF lanes page by page through the vision model."""

    def __init__(
        self,
        vision_service: VisionService,
        rasterizer: PdfRasterizer,
        converter: Optional[FileConverter] = None,
    ):
        self.vision_service = vision_service
        self.rasterizer = rasterizer
        self.converter = converter

    async def extract(
        self,
        upload: UploadedFile,
        prompt_override: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
        on_page: Optional[PageCallback] = None,
    ) -> ExtractionResult:
        """
        Extract tables and text from an upload.

        Pages are sent to the model one at a time, in page order. Once
        `cancel_event` is set no further page requests are issued.

        Raises:
            FileProcessingError: On conversion/rasterization/parse failures or cancellation
            ExternalServiceError: If the vision model request fails
        """
        start_time = time.monotonic()
        content = upload.content

        if is_word_document(upload.filename, upload.content_type):
            if self.converter is None:
                raise FileProcessingError("Word documents are not supported", upload.filename)
            content = await self.converter.convert_to_pdf(content, upload.filename)
            lane = FileLane.PDF
        else:
            lane = classify(upload.filename, upload.content_type)

        if lane is FileLane.TEXT:
            return extract_text(content, upload.filename)

        if lane is FileLane.PDF:
            images = await self.rasterizer.rasterize(content, upload.filename)
            mime_type = "image/png"
        else:
            images = [content]
            mime_type = image_mime_type(upload.filename, upload.content_type)

        page_count = len(images)
        pages: List[PageExtraction] = []
        for index, image in enumerate(images):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("Extraction cancelled", filename=upload.filename, pages_done=index)
                raise FileProcessingError("upload was cancelled", upload.filename)
            if on_page is not None:
                await on_page(index + 1, page_count)
            page = await self.vision_service.extract_page(
                image,
                mime_type,
                page_index=index,
                page_count=page_count,
                prompt_override=prompt_override,
            )
            pages.append(page)

        result = merge_pages(pages)

        logger.info(
            "Document content extracted",
            filename=upload.filename,
            lane=lane.value,
            pages_processed=page_count,
            table_entries=len(result.tables),
            text_length=len(result.raw_text),
            processing_time_ms=int((time.monotonic() - start_time) * 1000),
        )
        return result


# Singleton instance
_document_extractor: Optional[DocumentExtractor] = None


def get_document_extractor() -> DocumentExtractor:
    """Get singleton document extractor instance."""
    global _document_extractor
    if _document_extractor is None:
        _document_extractor = DocumentExtractor(
            vision_service=get_vision_service(),
            rasterizer=get_pdf_rasterizer(),
            converter=get_file_converter(),
        )
    return _document_extractor
