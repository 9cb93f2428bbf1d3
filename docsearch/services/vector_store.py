"""
Vector Store Service
Indexes extracted document content into an OpenAI vector store and wraps
the store management API.
"""
from typing import Any, Dict, Optional, Tuple
import openai
import structlog
from openai import AsyncOpenAI

from docsearch.clients import get_openai_client
from docsearch.config import Settings, get_settings
from docsearch.errors import ExternalServiceError, NotFoundError
from docsearch.models.schemas import ExtractionResult, IndexEntry
from docsearch.services.cleanup import release_best_effort

logger = structlog.get_logger()


def render_extraction(extraction: ExtractionResult, original_filename: str) -> str:
    """
    Format an extraction as one searchable text document.

    Layout: a "File:" header, a TEXT CONTENT section when there is raw text
    and a TABLE DATA section with one "Row/Column/Value" line per cell.
    """
    text = f"File: {original_filename}\n\n"

    if extraction.raw_text:
        text += f"TEXT CONTENT:\n{extraction.raw_text}\n\n"

    if extraction.tables:
        text += "TABLE DATA:\n"
        for cell in extraction.tables:
            text += f"Row: {cell.row}, Column: {cell.column}, Value: {cell.value}\n"
        text += "\n"

    return text


class VectorStoreService:
    """Manages OpenAI vector stores and the files attached to them."""

    def __init__(self, client: AsyncOpenAI, settings: Settings):
        self.client = client
        self.settings = settings
        # Store created on demand when no usable default is configured
        self._created_store_id: Optional[str] = None

    async def resolve_store(self, vector_store_id: Optional[str] = None):
        """
        Find the store to index into.

        An explicit id is used as is. Otherwise the configured default is
        used; if it no longer exists, or none is configured, a store is
        created once and reused for the rest of the process lifetime.
        """
        if vector_store_id:
            return await self.client.vector_stores.retrieve(vector_store_id)

        default_id = self._created_store_id or self.settings.default_vector_store_id
        if default_id:
            try:
                vector_store = await self.client.vector_stores.retrieve(default_id)
                logger.info(
                    "Using existing vector store",
                    vector_store_id=vector_store.id,
                    file_count=vector_store.file_counts.total if vector_store.file_counts else 0,
                )
                return vector_store
            except openai.NotFoundError:
                logger.warning("Configured vector store not found, creating new one", configured_id=default_id)

        vector_store = await self.client.vector_stores.create(
            name=self.settings.vector_store_name,
            expires_after={"anchor": "last_active_at", "days": self.settings.vector_store_expires_days},
        )
        self._created_store_id = vector_store.id
        logger.info(
            "Created new vector store",
            vector_store_id=vector_store.id,
            name=vector_store.name,
            env_var_needed=f"DEFAULT_VECTOR_STORE_ID={vector_store.id}",
        )
        return vector_store

    async def index_extraction(
        self,
        extraction: ExtractionResult,
        original_filename: str,
        vector_store_id: Optional[str] = None,
    ) -> IndexEntry:
        """
        Upload the rendered extraction and attach it to a vector store.

        Args:
            extraction: Merged extraction result
            original_filename: Name of the uploaded file
            vector_store_id: Target store; defaults to the configured store

        Returns:
            Identifiers needed to detach and delete the content later

        Raises:
            ExternalServiceError: If resolving, uploading or attaching fails
        """
        try:
            vector_store = await self.resolve_store(vector_store_id)
        except openai.APIError as e:
            logger.error("Failed to resolve vector store", vector_store_id=vector_store_id, error=str(e))
            raise ExternalServiceError("OpenAI", f"could not resolve vector store: {e}") from e

        text_content = render_extraction(extraction, original_filename)

        try:
            extracted_file = await self.client.files.create(
                file=(f"extracted_{original_filename}.txt", text_content.encode("utf-8"), "text/plain"),
                purpose="assistants",
            )
        except openai.APIError as e:
            logger.error("Failed to upload extracted content", filename=original_filename, error=str(e))
            raise ExternalServiceError("OpenAI", f"could not upload extracted content: {e}") from e

        try:
            vector_store_file = await self.client.vector_stores.files.create(
                vector_store_id=vector_store.id,
                file_id=extracted_file.id,
            )
        except openai.APIError as e:
            logger.error(
                "Failed to add content to vector store",
                filename=original_filename,
                vector_store_id=vector_store.id,
                error=str(e),
            )
            await release_best_effort(
                "extracted file",
                lambda: self.client.files.delete(extracted_file.id),
                extracted_file_id=extracted_file.id,
            )
            raise ExternalServiceError("OpenAI", f"could not attach content to vector store: {e}") from e

        logger.info(
            "Content added to vector store",
            original_filename=original_filename,
            vector_store_id=vector_store.id,
            vector_store_file_id=vector_store_file.id,
            extracted_file_id=extracted_file.id,
            text_length=len(text_content),
            table_count=len(extraction.tables),
            status=vector_store_file.status,
        )

        return IndexEntry(
            vector_store_id=vector_store.id,
            vector_store_file_id=vector_store_file.id,
            extracted_file_id=extracted_file.id,
            status=vector_store_file.status,
        )

    async def release_entry(
        self,
        vector_store_id: Optional[str],
        vector_store_file_id: Optional[str],
        extracted_file_id: Optional[str],
    ) -> None:
        """Best-effort removal of a document's store file and extracted file."""
        if vector_store_id and vector_store_file_id:
            await release_best_effort(
                "vector store file",
                lambda: self.client.vector_stores.files.delete(
                    vector_store_file_id, vector_store_id=vector_store_id
                ),
                vector_store_id=vector_store_id,
                vector_store_file_id=vector_store_file_id,
            )
        if extracted_file_id:
            await release_best_effort(
                "extracted file",
                lambda: self.client.files.delete(extracted_file_id),
                extracted_file_id=extracted_file_id,
            )

    # ─────────────────────────────────────────────────────────
    # Management pass-throughs
    # ─────────────────────────────────────────────────────────

    async def list_stores(self) -> list:
        page = await self._call("list vector stores", self.client.vector_stores.list())
        return page.data

    async def create_store(self, options: Dict[str, Any]):
        vector_store = await self._call("create vector store", self.client.vector_stores.create(**options))
        logger.info("Vector store created", vector_store_id=vector_store.id)
        return vector_store

    async def get_store(self, vector_store_id: str):
        return await self._call(
            "retrieve vector store",
            self.client.vector_stores.retrieve(vector_store_id),
            missing=("Vector store", vector_store_id),
        )

    async def delete_store(self, vector_store_id: str):
        result = await self._call(
            "delete vector store",
            self.client.vector_stores.delete(vector_store_id),
            missing=("Vector store", vector_store_id),
        )
        logger.info("Vector store deleted", vector_store_id=vector_store_id)
        return result

    async def list_files(self, vector_store_id: str) -> list:
        page = await self._call(
            "list vector store files",
            self.client.vector_stores.files.list(vector_store_id=vector_store_id),
        )
        return page.data

    async def add_file(self, vector_store_id: str, file_id: str):
        return await self._call(
            "add file to vector store",
            self.client.vector_stores.files.create(vector_store_id=vector_store_id, file_id=file_id),
        )

    async def remove_file(self, vector_store_id: str, file_id: str):
        return await self._call(
            "remove file from vector store",
            self.client.vector_stores.files.delete(file_id, vector_store_id=vector_store_id),
            missing=("Vector store file", file_id),
        )

    async def _call(self, operation: str, awaitable, missing: Optional[Tuple[str, str]] = None):
        try:
            return await awaitable
        except openai.NotFoundError as e:
            if missing is None:
                raise ExternalServiceError("OpenAI", f"{operation} failed: {e}") from e
            raise NotFoundError(*missing) from e
        except openai.APIError as e:
            logger.error(f"Failed to {operation}", error=str(e))
            raise ExternalServiceError("OpenAI", f"{operation} failed: {e}") from e


# Singleton instance
_vector_store: Optional[VectorStoreService] = None


def get_vector_store() -> VectorStoreService:
    """Get singleton vector store service instance."""
    global _vector_store
    if _vector_store is None:
        _vector_store = VectorStoreService(get_openai_client(), get_settings())
    return _vector_store
