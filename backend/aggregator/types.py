"""Message variants, output payloads and per-frame state for the aggregator."""
from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Annotated, Deque, Dict, List, Literal, Optional, Set, Tuple, Union

from pydantic import BaseModel, Field, TypeAdapter

from common.types import Point


# ---------- Inbound messages ----------

class RegisterTrace(BaseModel):
    """One producer's registration for a frame: new trace ids plus frame size."""

    kind: Literal["register"] = "register"
    frame_id: int
    trace_ids: List[str] = Field(default_factory=list)
    width: int = Field(..., ge=0)
    height: int = Field(..., ge=0)
    reporter: Optional[int] = None  # producer task id, when known


class ExistTrace(BaseModel):
    """The trace continues in this frame at ``point``."""

    kind: Literal["exist"] = "exist"
    frame_id: int
    trace_id: str
    point: Point


class RemoveTrace(BaseModel):
    """The trace ended in this frame."""

    kind: Literal["remove"] = "remove"
    frame_id: int
    trace_id: str


TraceResolution = Union[ExistTrace, RemoveTrace]
AggregatorMessage = Annotated[
    Union[RegisterTrace, ExistTrace, RemoveTrace],
    Field(discriminator="kind"),
]

_message_adapter: TypeAdapter = TypeAdapter(AggregatorMessage)


def parse_message(raw: str | bytes | dict) -> RegisterTrace | ExistTrace | RemoveTrace:
    """Decode one wire message (JSON text or an already-parsed dict)."""
    if isinstance(raw, dict):
        return _message_adapter.validate_python(raw)
    return _message_adapter.validate_json(raw)


# ---------- Outbound payloads ----------

class PlotTrace(BaseModel):
    frame_id: int
    traces: Dict[str, List[Point]]


class CacheClean(BaseModel):
    frame_id: int


class RenewTrace(BaseModel):
    frame_id: int
    trace_id: str
    last_point: Point


class IndicatorTrace(BaseModel):
    frame_id: int
    cell_indices: List[int]


class StaleFrame(BaseModel):
    frame_id: int
    reason: str
    unresolved: int = 0
    pending: int = 0


# ---------- Internal state ----------

@dataclass
class FrameState:
    """Aggregation state for one frame id.

    ``monitored`` stays None until the frame is seeded (first frame, or the
    previous frame's finalization). Resolutions that arrive earlier wait in
    ``pending``.
    """
    frame_id: int
    monitored: Optional[Set[str]] = None
    pending: Deque[TraceResolution] = field(default_factory=deque)
    reports: List[Tuple[int, int]] = field(default_factory=list)
    reporters: Set[int] = field(default_factory=set)
    created_at: float = field(default_factory=time.monotonic)

    @property
    def seeded(self) -> bool:
        return self.monitored is not None

    @property
    def reporter_count(self) -> int:
        return len(self.reports)

    @property
    def width(self) -> int:
        return self.reports[0][0] if self.reports else 0

    @property
    def height(self) -> int:
        return self.reports[0][1] if self.reports else 0

    def registration_complete(self, expected_reporters: int) -> bool:
        return self.seeded and self.reporter_count == expected_reporters

    def to_dict(self, now: float | None = None) -> dict:
        now = time.monotonic() if now is None else now
        return {
            "frame_id": self.frame_id,
            "seeded": self.seeded,
            "monitored": len(self.monitored) if self.monitored is not None else None,
            "pending": len(self.pending),
            "reporters": self.reporter_count,
            "age_seconds": round(now - self.created_at, 3),
        }


@dataclass
class FinalizedFrame:
    """What one finalization emitted."""
    frame_id: int
    traces: Dict[str, List[Point]]
    survivors: Dict[str, Point]
    expired: List[str]
    cell_indices: List[int]
