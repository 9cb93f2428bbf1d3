"""
Extraction Merger
Folds per-page extractions into one document-level result.
"""
from typing import Any, Dict, List, Sequence

from docsearch.errors import FileProcessingError
from docsearch.models.schemas import ExtractionResult, PageExtraction, TableCell


def merge_pages(pages: Sequence[PageExtraction]) -> ExtractionResult:
    """
    Merge page results in page order.

    Scalars (document type, extracted fields, confidence) take the last value
    a page actually supplies. Table rows and text blocks are concatenated in
    page order; for multi-page documents row labels get a " (Page k/n)"
    suffix and text blocks a "=== Page k ===" header.
    """
    page_count = len(pages)
    if page_count == 0:
        raise FileProcessingError("no pages to merge")

    multi_page = page_count > 1
    document_type = "other"
    extracted_fields: Dict[str, Any] = {}
    confidence = 0.0
    tables: List[TableCell] = []
    text_blocks: List[str] = []

    for number, page in enumerate(pages, start=1):
        if page.document_type:
            document_type = page.document_type
        if page.extracted_fields:
            extracted_fields = page.extracted_fields
        if page.confidence is not None:
            confidence = page.confidence

        suffix = f" (Page {number}/{page_count})" if multi_page else ""
        for cell in page.tables:
            tables.append(TableCell(row=f"{cell.row}{suffix}", column=cell.column, value=cell.value))

        if page.raw_text:
            header = f"=== Page {number} ===\n" if multi_page else ""
            text_blocks.append(f"{header}{page.raw_text}")

    return ExtractionResult(
        document_type=document_type,
        extracted_fields=extracted_fields,
        confidence=confidence,
        tables=tables,
        raw_text="\n\n".join(text_blocks),
        page_count=page_count,
    )
