"""Bounded per-frame state storage indexed by ``frame_id % window_size``."""
from __future__ import annotations

import time
from typing import Callable, Iterator, List, Optional

from aggregator.exceptions import StaleFrameError
from aggregator.types import FrameState


class FrameArena:
    """Fixed ring of frame states.

    A slot holds at most one frame. Creating a frame whose slot is taken by an
    older frame displaces the older one; the caller receives it to report as
    stale. States older than ``ttl_seconds`` are reported by ``expired``.
    """

    def __init__(
        self,
        window_size: int,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if window_size < 1:
            raise ValueError(f"window_size must be positive, got {window_size}")
        self._slots: List[Optional[FrameState]] = [None] * window_size
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    @property
    def window_size(self) -> int:
        return len(self._slots)

    def _slot(self, frame_id: int) -> int:
        return frame_id % len(self._slots)

    def get(self, frame_id: int) -> FrameState | None:
        state = self._slots[self._slot(frame_id)]
        if state is not None and state.frame_id == frame_id:
            return state
        return None

    def get_or_create(self, frame_id: int) -> tuple[FrameState, FrameState | None]:
        """Return (state, displaced) where displaced is an older frame pushed out of the slot."""
        slot = self._slot(frame_id)
        occupant = self._slots[slot]
        if occupant is not None and occupant.frame_id == frame_id:
            return occupant, None
        if occupant is not None and occupant.frame_id > frame_id:
            raise StaleFrameError(
                frame_id,
                f"slot {slot} is held by newer frame {occupant.frame_id}",
            )
        state = FrameState(frame_id=frame_id, created_at=self._clock())
        self._slots[slot] = state
        return state, occupant

    def claim(self, frame_id: int) -> tuple[FrameState, FrameState | None]:
        """Like get_or_create, but a newer occupant that was never seeded is displaced too.

        Used for the successor of a finalizing frame, which must always get its slot.
        A seeded newer occupant still raises StaleFrameError.
        """
        slot = self._slot(frame_id)
        occupant = self._slots[slot]
        if occupant is not None and occupant.frame_id > frame_id and not occupant.seeded:
            self._slots[slot] = None
            state, _ = self.get_or_create(frame_id)
            return state, occupant
        return self.get_or_create(frame_id)

    def pop(self, frame_id: int) -> FrameState | None:
        slot = self._slot(frame_id)
        state = self._slots[slot]
        if state is None or state.frame_id != frame_id:
            return None
        self._slots[slot] = None
        return state

    def expired(self, now: float | None = None) -> list[FrameState]:
        now = self._clock() if now is None else now
        return sorted(
            (s for s in self if (now - s.created_at) > self._ttl_seconds),
            key=lambda s: s.frame_id,
        )

    def touch(self, frame_id: int) -> None:
        """Restart the TTL of a frame, e.g. when it becomes the live frame."""
        state = self.get(frame_id)
        if state is not None:
            state.created_at = self._clock()

    def __iter__(self) -> Iterator[FrameState]:
        return (s for s in self._slots if s is not None)

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def __contains__(self, frame_id: int) -> bool:
        return self.get(frame_id) is not None
