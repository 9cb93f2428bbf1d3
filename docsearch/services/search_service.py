"""
Search Service
Answers natural-language questions over a vector store with an ephemeral
file-search assistant, caching answers in Redis.
"""
import re
import time
from typing import Optional
import openai
import structlog
from openai import AsyncOpenAI

from docsearch.clients import get_openai_client
from docsearch.config import Settings, get_settings
from docsearch.errors import ExternalServiceError, InternalError
from docsearch.models.schemas import CachedSearchResult
from docsearch.services.cleanup import release_best_effort
from docsearch.services.search_cache import SearchCache, cache_key, get_search_cache

logger = structlog.get_logger()

NO_TEXT_RESPONSE = "No text response"

# File-search citations look like 【4:0†extracted_invoice.pdf.txt】; plain [1] markers also appear
CITATION_PATTERNS = (re.compile(r"【[^】]*】"), re.compile(r"\[[^\]]*\]"))


def strip_citations(text: str) -> str:
    """Remove bracketed citation markers and surrounding whitespace."""
    for pattern in CITATION_PATTERNS:
        text = pattern.sub("", text)
    return text.strip()


class SearchService:
    """Cache-first search; cache failures only cost latency."""

    ASSISTANT_NAME = "Document Search Assistant"
    ASSISTANT_INSTRUCTIONS = (
        "You are a helpful assistant that searches through uploaded documents to answer questions."
    )

    def __init__(self, client: AsyncOpenAI, settings: Settings, cache: Optional[SearchCache] = None):
        self.client = client
        self.settings = settings
        self.cache = cache

    async def search(self, query: str, vector_store_id: Optional[str] = None) -> CachedSearchResult:
        """
        Answer a query from the documents in a vector store.

        Args:
            query: The user's question
            vector_store_id: Store to search; defaults to the configured store

        Returns:
            Answer text with the run and thread identifiers

        Raises:
            InternalError: If no vector store is given or configured
            ExternalServiceError: If the OpenAI search fails
        """
        start_time = time.monotonic()
        store_id = vector_store_id or self.settings.default_vector_store_id
        if not store_id:
            raise InternalError("No vector store ID provided")

        key = cache_key(query, store_id)
        cached = await self._read_cache(key)
        if cached is not None:
            logger.info(
                "Search result served from cache",
                query=query[:100],
                vector_store_id=store_id,
                response_time_ms=int((time.monotonic() - start_time) * 1000),
            )
            return cached

        try:
            result, run_status = await self._run_search(query, store_id)
        except openai.APIError as e:
            logger.error(
                "Vector store search failed",
                query=query[:100],
                vector_store_id=store_id,
                error=str(e),
            )
            raise ExternalServiceError("OpenAI", str(e)) from e

        await self._write_cache(key, result)

        logger.info(
            "Vector store search completed",
            query=query[:100],
            vector_store_id=store_id,
            response_length=len(result.response),
            processing_time_ms=int((time.monotonic() - start_time) * 1000),
            run_id=result.run_id,
            run_status=run_status,
        )
        return result

    async def _run_search(self, query: str, store_id: str):
        assistant = await self.client.beta.assistants.create(
            name=self.ASSISTANT_NAME,
            instructions=self.ASSISTANT_INSTRUCTIONS,
            model=self.settings.search_model,
            tools=[{"type": "file_search"}],
            tool_resources={"file_search": {"vector_store_ids": [store_id]}},
        )
        try:
            thread = await self.client.beta.threads.create(
                messages=[{"role": "user", "content": query}]
            )
            run = await self.client.beta.threads.runs.create_and_poll(
                thread_id=thread.id,
                assistant_id=assistant.id,
            )
            if run.status != "completed":
                raise ExternalServiceError("OpenAI", f"search run ended with status '{run.status}'")

            messages = await self.client.beta.threads.messages.list(thread_id=thread.id)
            response_text = self._first_text(messages.data)
        finally:
            await release_best_effort(
                "search assistant",
                lambda: self.client.beta.assistants.delete(assistant.id),
                assistant_id=assistant.id,
            )

        result = CachedSearchResult(response=response_text, run_id=run.id, thread_id=thread.id)
        return result, run.status

    @staticmethod
    def _first_text(messages: list) -> str:
        # Messages are listed newest first, so the assistant's answer leads
        if not messages or not messages[0].content:
            return NO_TEXT_RESPONSE
        block = messages[0].content[0]
        if block.type != "text":
            return NO_TEXT_RESPONSE
        return block.text.value

    async def _read_cache(self, key: str) -> Optional[CachedSearchResult]:
        if self.cache is None:
            return None
        try:
            return await self.cache.get(key)
        except Exception as e:
            logger.warning("Cache lookup failed, proceeding without cache", error=str(e), cache_key=key[:50])
            return None

    async def _write_cache(self, key: str, result: CachedSearchResult) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.set(key, result)
        except Exception as e:
            logger.warning("Failed to cache search result", error=str(e), cache_key=key[:50])


# Singleton instance
_search_service: Optional[SearchService] = None


def get_search_service() -> SearchService:
    """Get singleton search service instance."""
    global _search_service
    if _search_service is None:
        _search_service = SearchService(get_openai_client(), get_settings(), get_search_cache())
    return _search_service
