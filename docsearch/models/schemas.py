"""
Data models for the extraction and search pipeline.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─────────────────────────────────────────────────────────────
# Upload
# ─────────────────────────────────────────────────────────────

@dataclass
class UploadedFile:
    """A file received by the upload endpoint, scoped to one request."""
    content: bytes
    filename: str
    content_type: str

    @property
    def size(self) -> int:
        return len(self.content)


class FileLane(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    PDF = "pdf"


# ─────────────────────────────────────────────────────────────
# Extraction
# ─────────────────────────────────────────────────────────────

class TableCell(BaseModel):
    """One data cell: row is the first-cell text, column the header text."""
    model_config = ConfigDict(frozen=True)

    row: str
    column: str
    value: str

    @field_validator("row", "column", "value", mode="before")
    @classmethod
    def _scalar_to_str(cls, value: Any) -> Any:
        # The model regularly returns numeric cells as JSON numbers
        if value is None:
            return ""
        if isinstance(value, (int, float, bool)):
            return str(value)
        return value


class PageExtraction(CamelModel):
    """Validated model output for a single page, before merging."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    document_type: Optional[str] = None
    extracted_fields: Optional[Dict[str, Any]] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    tables: List[TableCell] = Field(default_factory=list)
    raw_text: str = ""

    @field_validator("tables", mode="before")
    @classmethod
    def _null_tables(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("raw_text", mode="before")
    @classmethod
    def _null_text(cls, value: Any) -> Any:
        return "" if value is None else value


class ExtractionResult(CamelModel):
    """Document-level extraction, merged from one PageExtraction per page."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    document_type: str = "other"
    extracted_fields: Dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    tables: List[TableCell] = Field(default_factory=list)
    raw_text: str = ""
    page_count: int = Field(default=1, ge=1)


# ─────────────────────────────────────────────────────────────
# Index / persistence
# ─────────────────────────────────────────────────────────────

class IndexEntry(CamelModel):
    """Link between one document's extracted content and the vector store."""
    vector_store_id: str
    vector_store_file_id: str
    extracted_file_id: str
    status: str


DocumentStatus = Literal["success", "pending"]


class DocumentCreate(CamelModel):
    """Payload the pipeline hands to the repository."""
    file_id: str
    filename: str
    original_name: str
    file_size: int
    file_type: str
    processing_time_ms: Optional[int] = None
    status: DocumentStatus = "success"
    extracted_content: Optional[ExtractionResult] = None
    vector_store_id: Optional[str] = None
    vector_store_file_id: Optional[str] = None
    extracted_file_id: Optional[str] = None


class DocumentRecord(DocumentCreate):
    """A persisted document row."""
    id: str
    uploaded_at: datetime


# ─────────────────────────────────────────────────────────────
# Search
# ─────────────────────────────────────────────────────────────

class CachedSearchResult(CamelModel):
    response: str
    run_id: str
    thread_id: str


class SearchRequest(BaseModel):
    query: str = Field(..., max_length=1000)

    @field_validator("query", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        # Length limits apply to the trimmed query
        return value.strip() if isinstance(value, str) else value

    @field_validator("query")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value:
            raise ValueError("Search query cannot be empty or only whitespace")
        return value


# ─────────────────────────────────────────────────────────────
# Vector store management
# ─────────────────────────────────────────────────────────────

class StaticChunkingConfig(BaseModel):
    max_chunk_size_tokens: int = Field(..., gt=0, le=2000)
    chunk_overlap_tokens: int = Field(..., ge=0, le=1000)


class ChunkingStrategy(BaseModel):
    type: Literal["static"]
    static: StaticChunkingConfig


class VectorStoreCreateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    expires_days: Optional[int] = Field(default=None, gt=0, le=365)
    chunking_strategy: Optional[ChunkingStrategy] = None
    metadata: Optional[Dict[str, Any]] = None


class VectorStoreFileCreateRequest(BaseModel):
    file_id: str = Field(..., min_length=1)
