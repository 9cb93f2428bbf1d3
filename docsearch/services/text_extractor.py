"""
Text Extractor
Handles plain text and CSV uploads without calling the vision model.
"""
from typing import List
import structlog

from docsearch.errors import FileProcessingError
from docsearch.models.schemas import ExtractionResult, TableCell
from docsearch.services.file_handler import get_extension

logger = structlog.get_logger()


def parse_csv_cells(text: str) -> List[TableCell]:
    """
    Turn CSV text into row/column/value cells.

    The first non-blank line holds the headers. Rows are labelled "Row n"
    (1-based) since CSV has no row header; ragged rows are truncated to the
    shorter of headers and values.
    """
    lines = [line for line in text.split("\n") if line.strip()]
    if len(lines) < 2:
        return []

    headers = [h.strip() for h in lines[0].split(",")]
    cells: List[TableCell] = []
    for row_number, line in enumerate(lines[1:], start=1):
        values = [v.strip() for v in line.split(",")]
        for header, value in zip(headers, values):
            cells.append(TableCell(row=f"Row {row_number}", column=header, value=value))
    return cells


def extract_text(content: bytes, filename: str) -> ExtractionResult:
    """
    Extract a text-lane upload.

    Raises:
        FileProcessingError: If the bytes are not valid UTF-8
    """
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError as e:
        raise FileProcessingError("content is not valid UTF-8 text", filename) from e

    tables = parse_csv_cells(text) if get_extension(filename) == "csv" else []

    logger.info("Text file processed", filename=filename, text_length=len(text), table_entries=len(tables))

    return ExtractionResult(
        document_type="other",
        extracted_fields={},
        confidence=0.5,
        tables=tables,
        raw_text=text,
        page_count=1,
    )
