"""
Best-effort release of external resources.

Cleanup of artifacts that are not needed for correctness (a vector store
file, an uploaded extracted-text file, an ephemeral assistant) must never
fail the caller. Failures are logged with a uniform message and swallowed.
"""
from typing import Any, Awaitable, Callable
import openai
import structlog

logger = structlog.get_logger()


async def release_best_effort(
    description: str,
    action: Callable[[], Awaitable[Any]],
    **context: Any,
) -> bool:
    """
    Await a cleanup action without letting it fail the caller.

    A 404 from OpenAI means the resource is already gone, which counts as
    released, so the call is safe to repeat.

    Returns:
        True if the resource is gone, False if the release failed
    """
    try:
        await action()
    except openai.NotFoundError:
        logger.info(f"Already released: {description}", **context)
        return True
    except Exception as e:
        logger.warning(f"Failed to release {description}", error=str(e), **context)
        return False

    logger.info(f"Released {description}", **context)
    return True
