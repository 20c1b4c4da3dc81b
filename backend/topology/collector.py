"""Output collectors used by pipeline components to emit on named streams."""
from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional


@dataclass(frozen=True)
class Emission:
    stream: str
    payload: Any
    task_id: Optional[int] = None   # set for direct emissions only


class OutputCollector(ABC):
    """Where a component sends its output. The hosting layer decides delivery."""

    @abstractmethod
    def emit(self, stream: str, payload: Any) -> None:
        """Emit for platform-side distribution (shuffle, fields, global)."""

    @abstractmethod
    def emit_direct(self, task_id: int, stream: str, payload: Any) -> None:
        """Emit to one explicitly chosen consumer task."""


class ListCollector(OutputCollector):
    """Keeps every emission in memory, in order."""

    def __init__(self):
        self._lock = threading.Lock()
        self.emissions: List[Emission] = []

    def emit(self, stream: str, payload: Any) -> None:
        with self._lock:
            self.emissions.append(Emission(stream, payload))

    def emit_direct(self, task_id: int, stream: str, payload: Any) -> None:
        with self._lock:
            self.emissions.append(Emission(stream, payload, task_id))

    def on_stream(self, stream: str) -> list:
        with self._lock:
            return [e.payload for e in self.emissions if e.stream == stream]

    def direct_targets(self, stream: str) -> list[int]:
        with self._lock:
            return [e.task_id for e in self.emissions if e.stream == stream and e.task_id is not None]

    def clear(self) -> None:
        with self._lock:
            self.emissions.clear()
