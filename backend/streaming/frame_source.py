"""
Frame source reading encoded images from a durable Redis list.
"""
from __future__ import annotations

import logging
import threading
from typing import Iterator

import cv2
import numpy as np
from redis import Redis

from common.codec import FrameDecodeError, mat_from_ndarray
from common.config import REDIS_SOURCE_QUEUE, create_redis_client, redis_url
from common.settings import SourceConfig
from common.types import Frame, Mat

logger = logging.getLogger(__name__)


def decode_image(data: bytes) -> Mat:
    """Decode a JPEG/PNG payload into a BGR Mat."""
    if not data:
        raise FrameDecodeError("Empty image payload")
    image = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
    if image is None:
        raise FrameDecodeError(f"Undecodable image payload ({len(data)} bytes)")
    return mat_from_ndarray(image)


class RedisFrameSource:
    """Pops encoded frames and numbers them with increasing frame ids."""

    def __init__(
        self,
        client: Redis | None = None,
        queue_name: str = REDIS_SOURCE_QUEUE,
        first_frame_id: int = 1,
        block_timeout_seconds: int = 1,
    ) -> None:
        self._redis = client if client is not None else create_redis_client(decode_responses=False)
        self._queue_name = queue_name
        self._next_frame_id = first_frame_id
        self._block_timeout_seconds = block_timeout_seconds
        self._stopped = threading.Event()

    @classmethod
    def from_config(cls, config: SourceConfig, first_frame_id: int = 1) -> "RedisFrameSource":
        client = create_redis_client(redis_url(config.host, config.port), decode_responses=False)
        return cls(client=client, queue_name=config.queue_name, first_frame_id=first_frame_id)

    @property
    def next_frame_id(self) -> int:
        return self._next_frame_id

    def read(self) -> Frame | None:
        """Return the next frame, or None if nothing arrived within the block timeout."""
        item = self._redis.blpop([self._queue_name], timeout=self._block_timeout_seconds)
        if item is None:
            return None
        _, data = item
        # Ids advance only for decodable payloads so the id sequence has no gaps.
        mat = decode_image(data)
        frame = Frame(frame_id=self._next_frame_id, mat=mat)
        self._next_frame_id += 1
        logger.debug("Read frame %d (%dx%d) from %s", frame.frame_id, frame.width, frame.height, self._queue_name)
        return frame

    def stop(self) -> None:
        self._stopped.set()

    def __iter__(self) -> Iterator[Frame]:
        while not self._stopped.is_set():
            frame = self.read()
            if frame is not None:
                yield frame
