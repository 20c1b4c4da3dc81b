"""Background sender that batches finished frames into a Redis list."""
from __future__ import annotations

import logging
import threading
from queue import Empty, Full, Queue

import cv2
from redis import Redis
from redis.exceptions import RedisError

from common.codec import mat_to_ndarray
from common.config import REDIS_SINK_QUEUE, create_redis_client, redis_url
from common.settings import SinkConfig
from common.types import Mat

logger = logging.getLogger(__name__)


def _offer_latest(queue_obj: Queue, item) -> bool:
    """Keep queue non-blocking and biased toward newest data. Returns True if an item was dropped."""
    try:
        queue_obj.put_nowait(item)
        return False
    except Full:
        try:
            queue_obj.get_nowait()
            queue_obj.put_nowait(item)
        except (Empty, Full):
            pass
        return True


class RedisFrameSink:
    """Accepts frames from the message-handling path without blocking it.

    Frames wait in a bounded queue; when it is full the oldest waiting frame
    is dropped. A background thread collects ``batch_size`` frames, orders
    them by frame id, JPEG-encodes them and pushes them in one RPUSH.
    """

    def __init__(
        self,
        client: Redis | None = None,
        queue_name: str = REDIS_SINK_QUEUE,
        batch_size: int = 1,
        queue_size: int = 64,
        jpeg_quality: int = 90,
    ):
        self._redis = client if client is not None else create_redis_client(decode_responses=False)
        self._queue_name = queue_name
        self._batch_size = max(1, batch_size)
        self._queue: Queue = Queue(maxsize=max(1, queue_size))
        self._jpeg_params = [int(cv2.IMWRITE_JPEG_QUALITY), jpeg_quality]
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self.sent_count = 0
        self.dropped_count = 0
        self.failed_batches = 0

    @classmethod
    def from_config(cls, config: SinkConfig) -> "RedisFrameSink":
        client = create_redis_client(redis_url(config.host, config.port), decode_responses=False)
        return cls(
            client=client,
            queue_name=config.queue_name,
            batch_size=config.batch_size,
            queue_size=config.queue_size,
            jpeg_quality=config.jpeg_quality,
        )

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._run, daemon=True)
            self._thread.start()

    def add_frame(self, frame_id: int, mat: Mat) -> None:
        if _offer_latest(self._queue, (frame_id, mat)):
            with self._lock:
                self.dropped_count += 1
            logger.warning("Sink queue full; dropped oldest frame before %d", frame_id)

    def close(self, timeout: float = 5.0) -> None:
        """Flush waiting frames and stop the sender."""
        thread = self._thread
        if thread is None:
            return
        self._queue.put(None, timeout=timeout)
        thread.join(timeout=timeout)
        self._thread = None

    def _run(self) -> None:
        pending: dict[int, Mat] = {}
        while True:
            item = self._queue.get()
            if item is None:
                break
            frame_id, mat = item
            pending[frame_id] = mat
            if len(pending) >= self._batch_size:
                self._flush(pending)
        if pending:
            self._flush(pending)

    def _encode(self, frame_id: int, mat: Mat) -> bytes | None:
        ok, encoded = cv2.imencode(".jpg", mat_to_ndarray(mat), self._jpeg_params)
        if not ok:
            logger.error("JPEG encoding failed for frame %d", frame_id)
            return None
        return encoded.tobytes()

    def _flush(self, pending: dict[int, Mat]) -> None:
        frame_ids = sorted(pending)
        payloads = []
        for frame_id in frame_ids:
            data = self._encode(frame_id, pending[frame_id])
            if data is not None:
                payloads.append(data)
        pending.clear()
        if not payloads:
            return
        try:
            self._redis.rpush(self._queue_name, *payloads)
        except RedisError:
            with self._lock:
                self.failed_batches += 1
            logger.exception("Failed to push frames %d-%d to %s", frame_ids[0], frame_ids[-1], self._queue_name)
            return
        with self._lock:
            self.sent_count += len(payloads)
        logger.debug("Pushed frames %d-%d to %s", frame_ids[0], frame_ids[-1], self._queue_name)
