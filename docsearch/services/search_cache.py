"""
Search Cache
Redis-backed cache of search answers keyed by query and vector store.
"""
from typing import Optional

import redis.asyncio as redis
import structlog

from docsearch.clients import get_redis_client
from docsearch.config import get_settings
from docsearch.models.schemas import CachedSearchResult

logger = structlog.get_logger()


def cache_key(query: str, vector_store_id: str) -> str:
    return f"{query}::{vector_store_id}"


class SearchCache:
    """
    Thin wrapper over a Redis client. Errors propagate; callers decide
    whether a cache failure matters.
    """

    def __init__(self, client: redis.Redis, ttl_seconds: int = 60 * 60):
        self.client = client
        self.ttl_seconds = ttl_seconds

    async def get(self, key: str) -> Optional[CachedSearchResult]:
        value = await self.client.get(key)
        if value is None:
            logger.debug("Search cache MISS", key=key[:50])
            return None
        return CachedSearchResult.model_validate_json(value)

    async def set(self, key: str, result: CachedSearchResult) -> None:
        await self.client.set(key, result.model_dump_json(by_alias=True), ex=self.ttl_seconds)
        logger.debug("Search result cached", key=key[:50], ttl=self.ttl_seconds)


# Singleton instance
_search_cache: Optional[SearchCache] = None


def get_search_cache() -> Optional[SearchCache]:
    """Get singleton search cache, or None when Redis is not configured."""
    global _search_cache
    if _search_cache is None:
        client = get_redis_client()
        if client is None:
            return None
        _search_cache = SearchCache(client, get_settings().search_cache_ttl_seconds)
    return _search_cache
