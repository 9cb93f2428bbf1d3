"""
Document Repository
Persists document records in a Supabase (Postgres) table.
"""
import asyncio
from typing import Any, List, Optional
import structlog
from supabase import Client

from docsearch.clients import get_supabase_client
from docsearch.config import get_settings
from docsearch.errors import DatabaseError
from docsearch.models.schemas import DocumentCreate, DocumentRecord

logger = structlog.get_logger()

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"


class DuplicateDocumentError(DatabaseError):
    """Another upload already saved a document with the same original name."""

    def __init__(self, original_name: str):
        super().__init__("save document")
        self.original_name = original_name


async def _execute(query) -> Any:
    # The Supabase client is synchronous; keep its network round trip off the event loop
    return await asyncio.to_thread(query.execute)


class DocumentRepository:
    """save / find / list / delete over the documents table."""

    def __init__(self, client: Client, table: str = "documents"):
        self.client = client
        self.table = table

    async def save(self, document: DocumentCreate) -> DocumentRecord:
        """
        Insert a document; id and uploaded_at are generated by the database.

        Raises:
            DuplicateDocumentError: If original_name is already taken
            DatabaseError: Any other failure
        """
        try:
            result = await _execute(self.client.table(self.table).insert(document.model_dump(mode="json")))
            record = DocumentRecord.model_validate(result.data[0])
        except Exception as e:
            if getattr(e, "code", None) == UNIQUE_VIOLATION:
                logger.warning("Document name already saved", original_name=document.original_name)
                raise DuplicateDocumentError(document.original_name) from e
            logger.error(
                "Failed to save document to database",
                original_name=document.original_name,
                file_id=document.file_id,
                error=str(e),
            )
            raise DatabaseError("save document") from e

        logger.info(
            "Document saved to database",
            document_id=record.id,
            original_name=record.original_name,
            file_type=record.file_type,
            file_size=record.file_size,
            processing_time_ms=record.processing_time_ms,
            status=record.status,
        )
        return record

    async def find_by_original_name(self, original_name: str) -> Optional[DocumentRecord]:
        try:
            result = await _execute(
                self.client.table(self.table)
                .select("*")
                .eq("original_name", original_name)
                .limit(1)
            )
        except Exception as e:
            logger.error("Failed to check for existing document", original_name=original_name, error=str(e))
            raise DatabaseError("check for existing document") from e

        if not result.data:
            return None

        record = DocumentRecord.model_validate(result.data[0])
        logger.info(
            "Duplicate document detected",
            original_name=original_name,
            existing_document_id=record.id,
            existing_upload_date=record.uploaded_at.isoformat(),
        )
        return record

    async def get(self, document_id: str) -> Optional[DocumentRecord]:
        try:
            result = await _execute(self.client.table(self.table).select("*").eq("id", document_id))
        except Exception as e:
            logger.error("Failed to fetch document", document_id=document_id, error=str(e))
            raise DatabaseError("fetch document") from e

        if not result.data:
            logger.warning("Document not found", document_id=document_id)
            return None
        return DocumentRecord.model_validate(result.data[0])

    async def list_all(self) -> List[DocumentRecord]:
        """All documents, newest upload first."""
        try:
            result = await _execute(self.client.table(self.table).select("*").order("uploaded_at", desc=True))
        except Exception as e:
            logger.error("Failed to fetch all documents", error=str(e))
            raise DatabaseError("fetch all documents") from e

        documents = [DocumentRecord.model_validate(row) for row in result.data]
        logger.info("Documents retrieved", count=len(documents))
        return documents

    async def delete(self, document_id: str) -> None:
        try:
            await _execute(self.client.table(self.table).delete().eq("id", document_id))
        except Exception as e:
            logger.error("Failed to delete document", document_id=document_id, error=str(e))
            raise DatabaseError("delete document") from e


# Singleton instance
_document_repository: Optional[DocumentRepository] = None


def get_document_repository() -> DocumentRepository:
    """Get singleton document repository instance."""
    global _document_repository
    if _document_repository is None:
        _document_repository = DocumentRepository(
            get_supabase_client(),
            get_settings().supabase_documents_table,
        )
    return _document_repository
