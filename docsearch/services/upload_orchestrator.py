"""
Upload Orchestrator
validate -> duplicate check -> extract -> index -> persist, all or nothing.
"""
import asyncio
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
import structlog

from docsearch.models.schemas import (
    DocumentCreate,
    DocumentRecord,
    ExtractionResult,
    IndexEntry,
    UploadedFile,
)
from docsearch.services.document_extractor import DocumentExtractor, get_document_extractor
from docsearch.services.document_repository import (
    DocumentRepository,
    DuplicateDocumentError,
    get_document_repository,
)
from docsearch.services.file_handler import FileHandler, get_file_handler
from docsearch.services.progress import InvalidTransitionError, ProgressSession, ProgressStep
from docsearch.services.vector_store import VectorStoreService, get_vector_store

logger = structlog.get_logger()


@dataclass
class UploadOutcome:
    """Result of one orchestration: either a duplicate hit or a new record."""
    uploaded_at: datetime
    record: DocumentRecord
    duplicate: bool = False
    extraction: Optional[ExtractionResult] = None
    index_entry: Optional[IndexEntry] = None


class UploadOrchestrator:
    """
    Runs one upload through the pipeline.

    Any failure after validation aborts the run and nothing is persisted:
    a DocumentRecord is written only after extraction and indexing have
    both succeeded.
    """

    def __init__(
        self,
        file_handler: FileHandler,
        extractor: DocumentExtractor,
        vector_store: VectorStoreService,
        repository: DocumentRepository,
    ):
        self.file_handler = file_handler
        self.extractor = extractor
        self.vector_store = vector_store
        self.repository = repository

    async def run(
        self,
        upload: UploadedFile,
        progress: Optional[ProgressSession] = None,
        cancel_event: Optional[asyncio.Event] = None,
        prompt_override: Optional[str] = None,
    ) -> UploadOutcome:
        """
        Process an upload end to end.

        Raises:
            ValidationError: If the upload breaks the size/type policy
            AppError: Any extraction, indexing or persistence failure
        """
        uploaded_at = datetime.now(timezone.utc)
        start_time = time.monotonic()
        logger.info(
            "📄 File received",
            filename=upload.filename,
            mime_type=upload.content_type,
            size_mb=round(upload.size / 1024 / 1024, 2),
        )

        try:
            self._report(progress, ProgressStep.VALIDATING, "Validating file")
            self.file_handler.validate(upload)

            existing = await self.repository.find_by_original_name(upload.filename)
            if existing is not None:
                logger.warning(f"⚠️ Duplicate file detected: {upload.filename}", existing_document_id=existing.id)
                self._report(progress, ProgressStep.COMPLETED, "File already exists", {"documentId": existing.id})
                return UploadOutcome(uploaded_at=uploaded_at, record=existing, duplicate=True)

            self._report(progress, ProgressStep.PROCESSING, "Processing document")

            logger.info("Stage: table and text extraction", filename=upload.filename)
            self._report(progress, ProgressStep.EXTRACTING, "Extracting tables and text")
            extraction = await self.extractor.extract(
                upload,
                prompt_override=prompt_override,
                cancel_event=cancel_event,
                on_page=self._page_reporter(progress),
            )
            logger.info(
                "Stage: extraction completed",
                table_entries=len(extraction.tables),
                text_length=len(extraction.raw_text),
            )

            logger.info("Stage: add extracted content to vector store")
            self._report(progress, ProgressStep.INDEXING, "Adding content to vector store")
            index_entry = await self.vector_store.index_extraction(extraction, upload.filename)

            self._report(progress, ProgressStep.SAVING, "Saving document")
            try:
                record = await self._persist(upload, extraction, index_entry, start_time)
            except DuplicateDocumentError:
                # A concurrent upload of the same name saved first
                existing = await self.repository.find_by_original_name(upload.filename)
                if existing is None:
                    raise
                logger.warning(f"⚠️ Duplicate file saved concurrently: {upload.filename}", existing_document_id=existing.id)
                self._report(progress, ProgressStep.COMPLETED, "File already exists", {"documentId": existing.id})
                return UploadOutcome(uploaded_at=uploaded_at, record=existing, duplicate=True)

        except asyncio.CancelledError:
            logger.warning("Upload cancelled, nothing persisted", filename=upload.filename)
            self._fail(progress, "Upload cancelled")
            raise
        except Exception as e:
            logger.error("❌ Processing error, not saving failed record", filename=upload.filename, error=str(e))
            self._fail(progress, str(e))
            raise

        self._report(progress, ProgressStep.COMPLETED, "Upload complete", {"documentId": record.id})
        logger.info(
            "✅ Completed: file upload process",
            document_id=record.id,
            processing_time_ms=record.processing_time_ms,
        )
        return UploadOutcome(
            uploaded_at=uploaded_at,
            record=record,
            extraction=extraction,
            index_entry=index_entry,
        )

    async def _persist(
        self,
        upload: UploadedFile,
        extraction: ExtractionResult,
        index_entry: IndexEntry,
        start_time: float,
    ) -> DocumentRecord:
        document = DocumentCreate(
            file_id=f"direct-processing-{uuid.uuid4()}",
            filename=upload.filename,
            original_name=upload.filename,
            file_size=upload.size,
            file_type=upload.content_type,
            processing_time_ms=int((time.monotonic() - start_time) * 1000),
            status="success",
            extracted_content=extraction,
            vector_store_id=index_entry.vector_store_id,
            vector_store_file_id=index_entry.vector_store_file_id,
            extracted_file_id=index_entry.extracted_file_id,
        )
        try:
            return await self.repository.save(document)
        except Exception:
            # The record is the source of truth; indexed content without one is orphaned
            await self.vector_store.release_entry(
                index_entry.vector_store_id,
                index_entry.vector_store_file_id,
                index_entry.extracted_file_id,
            )
            raise

    @staticmethod
    def _report(progress: Optional[ProgressSession], step: ProgressStep, message: str, data=None) -> None:
        if progress is None:
            return
        try:
            progress.advance(step, message, data)
        except InvalidTransitionError as e:
            # Progress only feeds subscribers; a stale session never fails the upload
            logger.warning("Progress update skipped", session_id=progress.session_id, step=step.value, error=str(e))

    @staticmethod
    def _fail(progress: Optional[ProgressSession], message: str) -> None:
        if progress is not None:
            progress.fail(message)

    @staticmethod
    def _page_reporter(progress: Optional[ProgressSession]):
        if progress is None:
            return None

        async def report_page(page: int, page_count: int) -> None:
            if page_count > 1:
                UploadOrchestrator._report(
                    progress,
                    ProgressStep.EXTRACTING,
                    f"Extracting page {page}/{page_count}",
                    {"page": page, "pageCount": page_count},
                )

        return report_page


# Singleton instance
_upload_orchestrator: Optional[UploadOrchestrator] = None


def get_upload_orchestrator() -> UploadOrchestrator:
    """Get singleton upload orchestrator instance."""
    global _upload_orchestrator
    if _upload_orchestrator is None:
        _upload_orchestrator = UploadOrchestrator(
            file_handler=get_file_handler(),
            extractor=get_document_extractor(),
            vector_store=get_vector_store(),
            repository=get_document_repository(),
        )
    return _upload_orchestrator
