"""Redis configuration and helpers."""
from __future__ import annotations

import os

from redis import Redis

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_TRACE_CHANNEL_PREFIX = os.getenv("REDIS_TRACE_CHANNEL_PREFIX", "traces")
REDIS_SOURCE_QUEUE = os.getenv("REDIS_SOURCE_QUEUE", "frames:in")
REDIS_SINK_QUEUE = os.getenv("REDIS_SINK_QUEUE", "frames:out")


def trace_channel(stream: str) -> str:
    """Build pub/sub channel name for one aggregator output stream."""
    return f"{REDIS_TRACE_CHANNEL_PREFIX}:{stream}"


def redis_url(host: str | None = None, port: int | None = None) -> str:
    """Resolve a connection URL, preferring explicit host/port over REDIS_URL."""
    if host:
        return f"redis://{host}:{port or 6379}/0"
    return REDIS_URL


def create_redis_client(url: str | None = None, decode_responses: bool = True) -> Redis:
    """Create a sync Redis client.

    Frame queues carry encoded image bytes, so their clients must be created
    with ``decode_responses=False``.
    """
    return Redis.from_url(url or REDIS_URL, decode_responses=decode_responses)
