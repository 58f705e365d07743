"""
Per-endpoint attempt limits backed by Redis counters.

A hit over the limit is recorded as a warning-severity security event before
RateLimitExceeded is raised. If Redis is unreachable the check fails open.
"""

from typing import Any, Optional

import httpx
import structlog

from reqflow.exceptions import RateLimitExceeded
from reqflow.models.enums import Severity
from reqflow.services import audit_service
from reqflow.services.cache import cache

logger = structlog.get_logger()


def rate_limit_key(endpoint: str, identifier: str) -> str:
    return f"rl:{endpoint}:{identifier}"


async def enforce_rate_limit(
    endpoint: str,
    identifier: str,
    max_attempts: int,
    window_seconds: int,
    actor_id: Any = None,
    actor_email: Optional[str] = None,
) -> int:
    """Count an attempt; return attempts left, or raise RateLimitExceeded."""
    if not cache.configured:
        logger.debug("rate_limit_disabled", endpoint=endpoint)
        return max_attempts

    key = rate_limit_key(endpoint, identifier)
    try:
        hits, retry_after = await cache.increment_window(key, window_seconds)
    except (httpx.HTTPError, ValueError, KeyError, IndexError) as e:
        logger.warning("rate_limit_cache_error", endpoint=endpoint, error=str(e))
        return max_attempts

    if hits > max_attempts:
        await audit_service.record_security_event(
            audit_service.RATE_LIMIT_EXCEEDED,
            Severity.WARNING,
            f"Rate limit exceeded on {endpoint}: {hits} attempts in "
            f"{window_seconds}s (limit {max_attempts})",
            actor_id=actor_id,
            actor_email=actor_email,
            resource_type="endpoint",
            action=endpoint,
            source_identifier=identifier,
            details={
                "endpoint": endpoint,
                "attempts": hits,
                "limit": max_attempts,
                "window_seconds": window_seconds,
            },
        )
        raise RateLimitExceeded(retry_after=retry_after)

    return max_attempts - hits
