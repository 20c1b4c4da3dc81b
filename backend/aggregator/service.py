"""Serialized message delivery and stale-frame monitoring around one aggregator."""
from __future__ import annotations

import logging
import queue
import threading
from enum import Enum

from pydantic import ValidationError

from aggregator.aggregator import TrajectoryAggregator
from aggregator.exceptions import AggregatorError, ConsistencyViolation
from aggregator.types import ExistTrace, FinalizedFrame, RegisterTrace, RemoveTrace, parse_message
from common.settings import PipelineConfig, load_pipeline_config
from topology.collector import OutputCollector

logger = logging.getLogger(__name__)

_STOP = object()


class FullQueuePolicy(str, Enum):
    """What submit() does when the inbox is full.

    Trace messages cannot be dropped without breaking the barrier, so the
    default blocks the producer (up to ``put_timeout_seconds``).
    """

    BLOCK = "block"
    REJECT = "reject"


class AggregatorService:
    def __init__(
        self,
        aggregator: TrajectoryAggregator,
        queue_size: int = 1024,
        full_policy: FullQueuePolicy = FullQueuePolicy.BLOCK,
        put_timeout_seconds: float = 5.0,
        monitor_interval_seconds: float = 1.0,
    ):
        self._aggregator = aggregator
        self._inbox: queue.Queue = queue.Queue(maxsize=max(1, queue_size))
        self._full_policy = full_policy
        self._put_timeout_seconds = put_timeout_seconds
        self._monitor_interval_seconds = monitor_interval_seconds
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._worker_thread: threading.Thread | None = None
        self._monitor_thread: threading.Thread | None = None
        self._degraded: dict[int, str] = {}
        self.processed_count = 0
        self.rejected_count = 0
        self.error_count = 0

    @classmethod
    def from_config(
        cls,
        collector: OutputCollector,
        config: PipelineConfig | None = None,
        full_policy: FullQueuePolicy = FullQueuePolicy.BLOCK,
    ) -> "AggregatorService":
        """Build the aggregator and its service from pipeline configuration.

        Every trace generator task reports once per frame, so the expected
        reporter count is the trace generator parallelism.
        """
        config = config or load_pipeline_config()
        aggregator = TrajectoryAggregator(
            collector,
            expected_reporters=config.parallelism.trace_generator_tasks,
            config=config.aggregator,
        )
        return cls(
            aggregator,
            queue_size=config.aggregator.inbound_queue_size,
            full_policy=full_policy,
            monitor_interval_seconds=config.aggregator.monitor_interval_seconds,
        )

    @property
    def aggregator(self) -> TrajectoryAggregator:
        return self._aggregator

    # ---------- Producer side ----------

    def submit(self, message: RegisterTrace | ExistTrace | RemoveTrace) -> bool:
        """Queue a message for the delivery thread. Returns False if it was not accepted."""
        try:
            if self._full_policy == FullQueuePolicy.BLOCK:
                self._inbox.put(message, timeout=self._put_timeout_seconds)
            else:
                self._inbox.put_nowait(message)
            return True
        except queue.Full:
            with self._lock:
                self.rejected_count += 1
            logger.warning(
                "Aggregator inbox full (%d); rejected %s for frame %d",
                self._inbox.maxsize,
                message.kind,
                message.frame_id,
            )
            return False

    def submit_raw(self, raw: str | bytes | dict) -> bool:
        try:
            message = parse_message(raw)
        except ValidationError as exc:
            with self._lock:
                self.rejected_count += 1
            logger.warning("Rejected malformed aggregator message: %s", exc)
            return False
        return self.submit(message)

    # ---------- Delivery ----------

    def deliver(self, message: RegisterTrace | ExistTrace | RemoveTrace) -> FinalizedFrame | None:
        """Apply one message synchronously. Protocol errors degrade only the message's frame."""
        with self._lock:
            try:
                result = self._aggregator.handle(message)
            except AggregatorError as exc:
                self.error_count += 1
                self._degraded.setdefault(exc.frame_id, str(exc))
                if isinstance(exc, ConsistencyViolation):
                    logger.error("Consistency violation: %s", exc)
                else:
                    logger.warning("Stale message: %s", exc)
                return None
            except Exception:
                self.error_count += 1
                self._degraded.setdefault(message.frame_id, "unexpected error")
                logger.exception("Unexpected error handling %s for frame %d", message.kind, message.frame_id)
                return None
            self.processed_count += 1
            return result

    def evict_expired(self, now: float | None = None) -> list[int]:
        with self._lock:
            evicted = self._aggregator.evict_expired(now)
            for frame_id in evicted:
                self._degraded.setdefault(frame_id, "stale frame dropped")
            return evicted

    def degraded_frames(self) -> dict[int, str]:
        with self._lock:
            return dict(self._degraded)

    def stats(self) -> dict:
        with self._lock:
            return {
                "processed": self.processed_count,
                "rejected": self.rejected_count,
                "errors": self.error_count,
                "finalized": self._aggregator.finalized_count,
                "evicted": self._aggregator.evicted_count,
                "last_closed": self._aggregator.last_closed,
                "queued": self._inbox.qsize(),
                "live_frames": self._aggregator.live_frames(),
                "degraded_frames": sorted(self._degraded),
            }

    # ---------- Lifecycle ----------

    def start(self):
        if self._worker_thread and self._worker_thread.is_alive():
            return
        self._stop_event.clear()
        self._worker_thread = threading.Thread(target=self._delivery_loop, daemon=True)
        self._worker_thread.start()
        self._monitor_thread = threading.Thread(target=self._monitor_loop, daemon=True)
        self._monitor_thread.start()
        logger.info("Aggregator service started")

    def join(self):
        """Block until every submitted message has been delivered."""
        self._inbox.join()

    def shutdown(self):
        self._stop_event.set()
        if self._worker_thread:
            self._inbox.put(_STOP)
            self._worker_thread.join(timeout=5)
            self._worker_thread = None
        if self._monitor_thread:
            self._monitor_thread.join(timeout=5)
            self._monitor_thread = None
        logger.info("Aggregator service shutdown complete")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.shutdown()
        return False

    def _delivery_loop(self):
        while True:
            item = self._inbox.get()
            try:
                if item is _STOP:
                    return
                self.deliver(item)
            finally:
                self._inbox.task_done()

    def _monitor_loop(self):
        while not self._stop_event.wait(self._monitor_interval_seconds):
            evicted = self.evict_expired()
            if evicted:
                logger.warning("Evicted stale frames %s", evicted)
