"""Publishes aggregator output streams over Redis pub/sub."""
from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import BaseModel
from redis import Redis
from redis.exceptions import RedisError

from common.config import create_redis_client, trace_channel
from topology.collector import OutputCollector

logger = logging.getLogger(__name__)


def _payload_dict(payload: Any) -> dict:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json")
    if isinstance(payload, dict):
        return payload
    raise TypeError(f"Cannot publish payload of type {type(payload).__name__}")


class TracePublisher:
    def __init__(self, client: Redis | None = None):
        self._redis = client if client is not None else create_redis_client()

    def publish(self, stream: str, payload: BaseModel | dict, channel: str | None = None) -> bool:
        body = json.dumps({"type": stream, **_payload_dict(payload)})
        try:
            self._redis.publish(channel or trace_channel(stream), body)
            return True
        except RedisError as exc:
            logger.warning("Failed to publish %s: %s", stream, exc)
            return False

    def close(self):
        try:
            self._redis.close()
        except Exception as exc:
            logger.debug("Ignoring error while closing Redis client: %s", exc)


class PublisherCollector(OutputCollector):
    """Forwards aggregator emissions to Redis; direct emissions get a per-task channel."""

    def __init__(self, publisher: TracePublisher):
        self._publisher = publisher
        self.failed_count = 0

    def emit(self, stream: str, payload: Any) -> None:
        if not self._publisher.publish(stream, payload):
            self.failed_count += 1

    def emit_direct(self, task_id: int, stream: str, payload: Any) -> None:
        channel = f"{trace_channel(stream)}:{task_id}"
        if not self._publisher.publish(stream, payload, channel=channel):
            self.failed_count += 1
