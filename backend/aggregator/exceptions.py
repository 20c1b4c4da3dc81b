"""Custom exceptions for trajectory aggregation."""
from __future__ import annotations


class AggregatorError(Exception):
    """Base aggregator exception; always tied to one frame."""

    def __init__(self, frame_id: int, message: str):
        super().__init__(f"frame {frame_id}: {message}")
        self.frame_id = frame_id


class ConsistencyViolation(AggregatorError):
    """Raised when a message breaks the registration/resolution protocol."""

    def __init__(self, frame_id: int, message: str, trace_id: str | None = None):
        if trace_id is not None:
            message = f"{message} (trace {trace_id!r})"
        super().__init__(frame_id, message)
        self.trace_id = trace_id


class StaleFrameError(AggregatorError):
    """Raised when a message refers to a frame the arena can no longer hold."""
