"""Task routing: shuffle, fields, global and direct addressing.

Components only emit on named streams. Direct addressing is resolved by the
patch generator itself; ShuffleRouter, fields_route and global_route are for
the hosting layer that delivers emitted messages to consumer tasks.
"""
from __future__ import annotations

import itertools
import threading
import zlib
from dataclasses import dataclass
from enum import Enum
from typing import Hashable, Sequence


class ZeroIndexPolicy(str, Enum):
    """How a generator with task index 0 addresses raw frames."""

    ALL = "all"
    NONE = "none"


@dataclass(frozen=True)
class DirectRoutingTable:
    """Precomputed direct-routing targets for one generator task.

    Worker task ``t`` is a target iff ``t % self_index == 0``. Index 0 has no
    meaningful modulus and is resolved by ``zero_index_policy`` instead.
    Rebuild the table whenever task membership changes.
    """

    self_index: int
    targets: tuple[int, ...]

    @classmethod
    def build(
        cls,
        self_index: int,
        worker_tasks: Sequence[int],
        zero_index_policy: ZeroIndexPolicy = ZeroIndexPolicy.ALL,
    ) -> "DirectRoutingTable":
        if self_index < 0:
            raise ValueError(f"Task index must be non-negative, got {self_index}")
        if self_index == 0:
            targets = tuple(worker_tasks) if zero_index_policy == ZeroIndexPolicy.ALL else ()
        else:
            targets = tuple(t for t in worker_tasks if t % self_index == 0)
        return cls(self_index=self_index, targets=targets)

    def __contains__(self, task_id: int) -> bool:
        return task_id in self.targets

    def __len__(self) -> int:
        return len(self.targets)


class ShuffleRouter:
    """Round-robin load spreading over a fixed task list."""

    def __init__(self, tasks: Sequence[int]):
        if not tasks:
            raise ValueError("ShuffleRouter needs at least one task")
        self._tasks = tuple(tasks)
        self._cycle = itertools.cycle(self._tasks)
        self._lock = threading.Lock()

    def next_task(self) -> int:
        with self._lock:
            return next(self._cycle)


def stable_hash(key: Hashable) -> int:
    """Process-independent hash; Python's hash() is salted for str/bytes."""
    if isinstance(key, bool):
        return int(key)
    if isinstance(key, int):
        return key
    return zlib.crc32(str(key).encode("utf-8"))


def fields_route(key: Hashable, tasks: Sequence[int]) -> int:
    """Consistent task choice for a key; every message for one frame id lands on one task."""
    if not tasks:
        raise ValueError("fields_route needs at least one task")
    return tasks[stable_hash(key) % len(tasks)]


def global_route(tasks: Sequence[int]) -> int:
    """Single-instance stage: always the lowest task id."""
    if not tasks:
        raise ValueError("global_route needs at least one task")
    return min(tasks)
