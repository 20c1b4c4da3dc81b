"""Per-frame barrier that merges trace reports from all trace generator tasks.

Every frame is closed exactly once: when all expected producers have
registered for it and every monitored trace id has been resolved by an
exist or remove message. Closing a frame emits the plot-trace result, a
cache-clean signal, feedback indicators and renew-trace seeds, then seeds the
next frame with the surviving trace ids.

Not thread-safe. Deliver messages from one thread (see AggregatorService).
"""
from __future__ import annotations

import logging
import math
import time
from typing import Callable, Iterable

from aggregator.arena import FrameArena
from aggregator.exceptions import ConsistencyViolation
from aggregator.types import (
    CacheClean,
    ExistTrace,
    FinalizedFrame,
    FrameState,
    IndicatorTrace,
    PlotTrace,
    RegisterTrace,
    RemoveTrace,
    RenewTrace,
    StaleFrame,
    TraceResolution,
)
from common.settings import AggregatorConfig
from common.types import Point
from topology.collector import OutputCollector
from topology.streams import (
    CACHE_CLEAN_STREAM,
    INDICATOR_TRACE_STREAM,
    PLOT_TRACE_STREAM,
    RENEW_TRACE_STREAM,
    STALE_FRAME_STREAM,
)

logger = logging.getLogger(__name__)

_SAMPLE_EVERY = 100


class TrajectoryAggregator:
    def __init__(
        self,
        collector: OutputCollector,
        expected_reporters: int,
        config: AggregatorConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if expected_reporters < 1:
            raise ValueError(f"expected_reporters must be positive, got {expected_reporters}")
        self._collector = collector
        self._config = config or AggregatorConfig()
        self._expected_reporters = expected_reporters
        self._clock = clock
        self._arena = FrameArena(
            window_size=self._config.window_size,
            ttl_seconds=self._config.frame_ttl_seconds,
            clock=clock,
        )
        self._traces: dict[str, list[Point]] = {}
        # Highest frame id that was finalized or evicted; nothing at or below it may change.
        self._last_closed: int | None = None
        self._message_count = 0
        self.finalized_count = 0
        self.evicted_count = 0

    @property
    def expected_reporters(self) -> int:
        return self._expected_reporters

    @property
    def last_closed(self) -> int | None:
        return self._last_closed

    @property
    def traces(self) -> dict[str, list[Point]]:
        return {tid: list(points) for tid, points in self._traces.items()}

    def frame_state(self, frame_id: int) -> FrameState | None:
        return self._arena.get(frame_id)

    def live_frames(self) -> list[dict]:
        now = self._clock()
        return [s.to_dict(now) for s in sorted(self._arena, key=lambda s: s.frame_id)]

    # ---------- Message entry points ----------

    def handle(self, message: RegisterTrace | ExistTrace | RemoveTrace) -> FinalizedFrame | None:
        if isinstance(message, RegisterTrace):
            return self.register(
                message.frame_id,
                message.trace_ids,
                message.width,
                message.height,
                reporter=message.reporter,
            )
        if isinstance(message, ExistTrace):
            return self.update(message.frame_id, message.trace_id, message.point)
        if isinstance(message, RemoveTrace):
            return self.remove(message.frame_id, message.trace_id)
        raise TypeError(f"Unsupported aggregator message: {type(message).__name__}")

    def register(
        self,
        frame_id: int,
        trace_ids: Iterable[str],
        width: int,
        height: int,
        reporter: int | None = None,
    ) -> FinalizedFrame | None:
        self._check_open(frame_id)
        state = self._arena.get(frame_id)
        if state is None or not state.seeded:
            if frame_id != self._config.first_frame_id or self._last_closed is not None:
                raise ConsistencyViolation(frame_id, "registration for a frame that was never seeded")
            state = self._acquire(frame_id)
            state.monitored = set()
            logger.info("Seeded first frame %d", frame_id)

        if reporter is not None and reporter in state.reporters:
            raise ConsistencyViolation(frame_id, f"duplicate registration from reporter {reporter}")
        if state.reporter_count >= self._expected_reporters:
            raise ConsistencyViolation(
                frame_id,
                f"registration beyond the {self._expected_reporters} expected reporters",
            )

        new_ids = set(trace_ids)
        state.reports.append((width, height))
        if reporter is not None:
            state.reporters.add(reporter)
        state.monitored.update(new_ids)
        logger.debug(
            "Register frame %d: %d new traces, %d/%d reporters, %d monitored, %d pending",
            frame_id,
            len(new_ids),
            state.reporter_count,
            self._expected_reporters,
            len(state.monitored),
            len(state.pending),
        )
        return self._settle(state)

    def update(self, frame_id: int, trace_id: str, point: Point) -> FinalizedFrame | None:
        return self._enqueue(ExistTrace(frame_id=frame_id, trace_id=trace_id, point=point))

    def remove(self, frame_id: int, trace_id: str) -> FinalizedFrame | None:
        return self._enqueue(RemoveTrace(frame_id=frame_id, trace_id=trace_id))

    # ---------- Barrier ----------

    def try_finalize(self, frame_id: int) -> FinalizedFrame | None:
        """Close the frame if every reporter registered and every trace is resolved."""
        state = self._arena.get(frame_id)
        if state is None or not state.registration_complete(self._expected_reporters):
            return None
        if state.monitored or state.pending:
            return None

        width, height = state.width, state.height
        next_frame_id = frame_id + 1
        min_distance = self._config.min_distance

        # Secure the successor's slot before anything is emitted or closed.
        _, displaced = self._arena.claim(next_frame_id)
        if displaced is not None:
            self._evict(displaced, f"displaced by frame {next_frame_id}")

        traces = self.traces
        self._collector.emit(PLOT_TRACE_STREAM, PlotTrace(frame_id=frame_id, traces=traces))
        self._collector.emit(CACHE_CLEAN_STREAM, CacheClean(frame_id=frame_id))

        survivors: dict[str, Point] = {}
        expired: list[str] = []
        cell_indices: list[int] = []
        for trace_id in sorted(traces):
            points = traces[trace_id]
            if len(points) > self._config.max_tracker_length:
                expired.append(trace_id)
                continue
            last = points[-1]
            survivors[trace_id] = last
            cell = math.floor(last.y / min_distance) * width + math.floor(last.x / min_distance)
            if last.x < min_distance * width and last.y < min_distance * height:
                cell_indices.append(cell)

        self._collector.emit(
            INDICATOR_TRACE_STREAM,
            IndicatorTrace(frame_id=next_frame_id, cell_indices=cell_indices),
        )
        for trace_id, last in survivors.items():
            self._collector.emit(
                RENEW_TRACE_STREAM,
                RenewTrace(frame_id=next_frame_id, trace_id=trace_id, last_point=last),
            )

        for trace_id in expired:
            del self._traces[trace_id]
        self._arena.pop(frame_id)
        self._close(frame_id)
        self._seed(next_frame_id, survivors.keys())
        self.finalized_count += 1

        logger.info(
            "Finalized frame %d: %d traces, %d carried to frame %d, %d expired",
            frame_id,
            len(traces),
            len(survivors),
            next_frame_id,
            len(expired),
        )
        return FinalizedFrame(
            frame_id=frame_id,
            traces=traces,
            survivors=survivors,
            expired=expired,
            cell_indices=cell_indices,
        )

    # ---------- Eviction ----------

    def evict_expired(self, now: float | None = None) -> list[int]:
        """Drop frames that outlived the TTL. Returns their ids."""
        evicted = []
        for state in self._arena.expired(now):
            if self._arena.get(state.frame_id) is not state:
                continue
            self._arena.pop(state.frame_id)
            self._evict(state, "ttl expired")
            evicted.append(state.frame_id)
        return evicted

    def _evict(self, state: FrameState, reason: str) -> None:
        unresolved = len(state.monitored) if state.monitored is not None else 0
        logger.warning(
            "Dropping stale frame %d (%s): %d unresolved traces, %d pending messages, %d/%d reporters",
            state.frame_id,
            reason,
            unresolved,
            len(state.pending),
            state.reporter_count,
            self._expected_reporters,
        )
        self._collector.emit(
            STALE_FRAME_STREAM,
            StaleFrame(
                frame_id=state.frame_id,
                reason=reason,
                unresolved=unresolved,
                pending=len(state.pending),
            ),
        )
        self._collector.emit(CACHE_CLEAN_STREAM, CacheClean(frame_id=state.frame_id))
        self.evicted_count += 1
        if not state.seeded:
            return
        # The live frame is gone: restart trajectories from an empty seed, like the first frame.
        self._traces.clear()
        self._close(state.frame_id)
        self._seed(state.frame_id + 1, ())

    # ---------- Helpers ----------

    def _check_open(self, frame_id: int) -> None:
        if self._last_closed is not None and frame_id <= self._last_closed:
            raise ConsistencyViolation(frame_id, f"frame already closed (last closed {self._last_closed})")

    def _close(self, frame_id: int) -> None:
        if self._last_closed is None or frame_id > self._last_closed:
            self._last_closed = frame_id

    def _acquire(self, frame_id: int) -> FrameState:
        state, displaced = self._arena.get_or_create(frame_id)
        if displaced is not None:
            self._evict(displaced, f"displaced by frame {frame_id}")
        return state

    def _seed(self, frame_id: int, trace_ids: Iterable[str]) -> None:
        state = self._acquire(frame_id)
        if state.monitored is None:
            state.monitored = set(trace_ids)
        else:
            state.monitored.update(trace_ids)
        self._arena.touch(frame_id)
        logger.debug(
            "Seeded frame %d with %d traces (%d pending)",
            frame_id,
            len(state.monitored),
            len(state.pending),
        )

    def _enqueue(self, message: TraceResolution) -> FinalizedFrame | None:
        self._check_open(message.frame_id)
        state = self._acquire(message.frame_id)
        state.pending.append(message)

        self._message_count += 1
        if self._message_count % _SAMPLE_EVERY == 0:
            logger.debug(
                "Resolution messages: %d, live frames: %d, traces: %d, frame %d pending: %d",
                self._message_count,
                len(self._arena),
                len(self._traces),
                message.frame_id,
                len(state.pending),
            )
        return self._settle(state)

    def _settle(self, state: FrameState) -> FinalizedFrame | None:
        """Apply queued resolutions once registration is complete, then try to close the frame."""
        violations: list[ConsistencyViolation] = []
        if state.registration_complete(self._expected_reporters):
            while state.pending:
                message = state.pending.popleft()
                try:
                    self._resolve(state, message)
                except ConsistencyViolation as exc:
                    violations.append(exc)

        result = self.try_finalize(state.frame_id)
        if violations:
            for exc in violations[1:]:
                logger.error("Rejected message: %s", exc)
            raise violations[0]
        return result

    def _resolve(self, state: FrameState, message: TraceResolution) -> None:
        if message.trace_id not in state.monitored:
            raise ConsistencyViolation(state.frame_id, "resolution for an unmonitored trace", message.trace_id)
        state.monitored.discard(message.trace_id)
        if isinstance(message, ExistTrace):
            self._traces.setdefault(message.trace_id, []).append(message.point)
        else:
            self._traces.pop(message.trace_id, None)
