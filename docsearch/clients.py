"""
Shared External Clients
Lazily constructed OpenAI, Redis and Supabase clients.
"""
from typing import Optional

import redis.asyncio as redis
import structlog
from openai import AsyncOpenAI
from supabase import Client, create_client

from docsearch.config import get_settings

logger = structlog.get_logger()

_openai_client: Optional[AsyncOpenAI] = None
_redis_client: Optional[redis.Redis] = None
_supabase_client: Optional[Client] = None


def get_openai_client() -> AsyncOpenAI:
    """Get singleton OpenAI client."""
    global _openai_client
    if _openai_client is None:
        settings = get_settings()
        _openai_client = AsyncOpenAI(
            api_key=settings.openai_api_key,
            timeout=settings.openai_timeout_seconds,
        )
    return _openai_client


def get_redis_client() -> Optional[redis.Redis]:
    """Get singleton Redis client, or None when no REDIS_URL is configured."""
    global _redis_client
    settings = get_settings()
    if not settings.redis_url:
        return None
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
        )
        logger.info("Redis client initialized")
    return _redis_client


def get_supabase_client() -> Client:
    """Get singleton Supabase client."""
    global _supabase_client
    if _supabase_client is None:
        settings = get_settings()
        _supabase_client = create_client(settings.supabase_url, settings.supabase_service_key)
    return _supabase_client


async def close_clients() -> None:
    """Release pooled connections on shutdown."""
    global _openai_client, _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
    if _openai_client is not None:
        await _openai_client.close()
        _openai_client = None
