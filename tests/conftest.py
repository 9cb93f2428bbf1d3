"""
Shared Test Fixtures for Document Search Tests

This file contains:
- FastAPI TestClient setup with service overrides
- In-memory fakes for the repository, vector store and extractor
- Test data generators
"""
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Generator, List, Optional
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

# Settings are read at import time; keep unit tests independent of a real .env
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")

from docsearch.config import DEFAULT_ALLOWED_UPLOAD_TYPES  # noqa: E402
from docsearch.main import app  # noqa: E402
from docsearch.models.schemas import (  # noqa: E402
    CachedSearchResult,
    DocumentCreate,
    DocumentRecord,
    ExtractionResult,
    IndexEntry,
    TableCell,
)
from docsearch.services.document_extractor import DocumentExtractor  # noqa: E402
from docsearch.services.document_repository import DuplicateDocumentError, get_document_repository  # noqa: E402
from docsearch.services.file_handler import FileHandler  # noqa: E402
from docsearch.services.progress import ProgressRegistry, get_progress_registry  # noqa: E402
from docsearch.services.search_service import SearchService, get_search_service  # noqa: E402
from docsearch.services.upload_orchestrator import UploadOrchestrator, get_upload_orchestrator  # noqa: E402
from docsearch.services.vector_store import VectorStoreService, get_vector_store  # noqa: E402


# ═══════════════════════════════════════════════════════════════
# FAKES
# ═══════════════════════════════════════════════════════════════

class InMemoryDocumentRepository:
    """Stands in for the Supabase-backed repository."""

    def __init__(self):
        self.documents: Dict[str, DocumentRecord] = {}
        self.fail_on_save: Optional[Exception] = None

    async def save(self, document: DocumentCreate) -> DocumentRecord:
        if self.fail_on_save is not None:
            raise self.fail_on_save
        if await self.find_by_original_name(document.original_name) is not None:
            raise DuplicateDocumentError(document.original_name)
        # Strictly increasing timestamps keep newest-first ordering deterministic
        uploaded_at = datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=len(self.documents))
        record = DocumentRecord.model_validate(
            {**document.model_dump(), "id": str(uuid.uuid4()), "uploaded_at": uploaded_at}
        )
        self.documents[record.id] = record
        return record

    async def find_by_original_name(self, original_name: str) -> Optional[DocumentRecord]:
        for record in self.documents.values():
            if record.original_name == original_name:
                return record
        return None

    async def get(self, document_id: str) -> Optional[DocumentRecord]:
        return self.documents.get(document_id)

    async def list_all(self) -> List[DocumentRecord]:
        return sorted(self.documents.values(), key=lambda r: r.uploaded_at, reverse=True)

    async def delete(self, document_id: str) -> None:
        self.documents.pop(document_id, None)


class FakeCache:
    """Dict-backed stand-in for the Redis search cache."""

    def __init__(self):
        self.entries: Dict[str, CachedSearchResult] = {}
        self.get_calls = 0
        self.set_calls = 0

    async def get(self, key: str) -> Optional[CachedSearchResult]:
        self.get_calls += 1
        return self.entries.get(key)

    async def set(self, key: str, result: CachedSearchResult) -> None:
        self.set_calls += 1
        self.entries[key] = result


# ═══════════════════════════════════════════════════════════════
# TEST DATA FIXTURES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def sample_extraction() -> ExtractionResult:
    """Extraction of a one-page invoice."""
    return ExtractionResult(
        document_type="invoice",
        extracted_fields={"invoiceNumber": "INV-001", "total": "150.00"},
        confidence=0.92,
        tables=[
            TableCell(row="72", column="Pieces", value="72"),
            TableCell(row="72", column="Description", value="SAP Forms"),
        ],
        raw_text="Invoice INV-001\nTotal due: $150.00",
        page_count=1,
    )


@pytest.fixture
def sample_index_entry() -> IndexEntry:
    return IndexEntry(
        vector_store_id="vs_test123",
        vector_store_file_id="file-vs-456",
        extracted_file_id="file-ext-789",
        status="in_progress",
    )


@pytest.fixture
def sample_pdf_bytes() -> bytes:
    """Minimal valid PDF bytes for testing."""
    return b"""%PDF-1.4
1 0 obj << /Type /Catalog /Pages 2 0 R >> endobj
2 0 obj << /Type /Pages /Kids [3 0 R] /Count 1 >> endobj
3 0 obj << /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >> endobj
trailer << /Size 4 /Root 1 0 R >>
%%EOF"""


@pytest.fixture
def sample_png_bytes() -> bytes:
    """PNG signature plus filler; the vision model is mocked, so it is never decoded."""
    return b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def sample_csv_bytes() -> bytes:
    return b"Item,Qty,Price\nWidget,2,9.99\nGadget,1,24.50\n"


# ═══════════════════════════════════════════════════════════════
# SERVICE FIXTURES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def repository() -> InMemoryDocumentRepository:
    return InMemoryDocumentRepository()


@pytest.fixture
def fake_cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def file_handler() -> FileHandler:
    return FileHandler(max_upload_size=10 * 1024 * 1024, allowed_types=DEFAULT_ALLOWED_UPLOAD_TYPES)


@pytest.fixture
def mock_extractor(sample_extraction) -> AsyncMock:
    extractor = AsyncMock(spec=DocumentExtractor)
    extractor.extract.return_value = sample_extraction
    return extractor


@pytest.fixture
def mock_vector_store(sample_index_entry) -> AsyncMock:
    vector_store = AsyncMock(spec=VectorStoreService)
    vector_store.index_extraction.return_value = sample_index_entry
    return vector_store


@pytest.fixture
def mock_search_service() -> AsyncMock:
    service = AsyncMock(spec=SearchService)
    service.search.return_value = CachedSearchResult(
        response="The invoice total is $150.00【4:0†extracted_invoice.pdf.txt】",
        run_id="run_abc",
        thread_id="thread_xyz",
    )
    return service


@pytest.fixture
def progress_registry() -> ProgressRegistry:
    return ProgressRegistry(ttl_seconds=5.0)


@pytest.fixture
def orchestrator(file_handler, mock_extractor, mock_vector_store, repository) -> UploadOrchestrator:
    return UploadOrchestrator(
        file_handler=file_handler,
        extractor=mock_extractor,
        vector_store=mock_vector_store,
        repository=repository,
    )


# ═══════════════════════════════════════════════════════════════
# FASTAPI CLIENT FIXTURES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def client(
    orchestrator,
    repository,
    mock_vector_store,
    mock_search_service,
    progress_registry,
) -> Generator[TestClient, None, None]:
    """FastAPI test client wired to in-memory services."""
    app.dependency_overrides[get_upload_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_document_repository] = lambda: repository
    app.dependency_overrides[get_vector_store] = lambda: mock_vector_store
    app.dependency_overrides[get_search_service] = lambda: mock_search_service
    app.dependency_overrides[get_progress_registry] = lambda: progress_registry
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
