"""Splits frames into overlapping patches and addresses them to processor tasks."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, Sequence

from common.settings import PatchGeometry, PipelineConfig, load_pipeline_config
from common.types import Frame, Mat, PatchIdentifier, Rect
from topology.collector import OutputCollector
from topology.routing import DirectRoutingTable, ZeroIndexPolicy
from topology.streams import PATCH_STREAM, RAW_FRAME_STREAM

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatchMessage:
    identifier: PatchIdentifier
    patch_count: int


@dataclass(frozen=True)
class RawFrameMessage:
    frame_id: int
    mat: Mat
    patch_count: int


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


@dataclass(frozen=True)
class PatchLayout:
    """Patch size and stride for one frame size."""
    frame_width: int
    frame_height: int
    width: int
    height: int
    stride_x: int
    stride_y: int

    @classmethod
    def compute(cls, frame_width: int, frame_height: int, geometry: PatchGeometry) -> "PatchLayout":
        w = _round_half_up(frame_width * geometry.patch_width_fraction)
        h = _round_half_up(frame_height * geometry.patch_height_fraction)
        # A stride that rounds to zero would never advance; step one pixel instead.
        dx = max(1, _round_half_up(w * geometry.stride_x_fraction))
        dy = max(1, _round_half_up(h * geometry.stride_y_fraction))
        return cls(frame_width, frame_height, w, h, dx, dy)

    def origins(self) -> Iterator[tuple[int, int]]:
        """Patch origins, x-major. Trailing strips narrower than a stride stay uncovered."""
        if self.width <= 0 or self.height <= 0:
            return
        for x in range(0, self.frame_width - self.width + 1, self.stride_x):
            for y in range(0, self.frame_height - self.height + 1, self.stride_y):
                yield x, y

    def count(self) -> int:
        return sum(1 for _ in self.origins())


class PatchGenerator:
    """Stateless per-frame patch generator.

    Patches go out on the patch stream for shuffled distribution; the full
    frame goes directly to the processor tasks selected by the routing table.
    """

    def __init__(
        self,
        collector: OutputCollector,
        self_index: int,
        processor_tasks: Sequence[int],
        geometry: PatchGeometry | None = None,
        zero_index_policy: ZeroIndexPolicy = ZeroIndexPolicy.ALL,
    ):
        self._collector = collector
        self._geometry = geometry or PatchGeometry()
        self.routing = DirectRoutingTable.build(self_index, processor_tasks, zero_index_policy)
        logger.info(
            "Patch generator %d routes raw frames to %d of %d processor tasks",
            self_index,
            len(self.routing),
            len(processor_tasks),
        )

    @classmethod
    def from_config(
        cls,
        collector: OutputCollector,
        self_index: int,
        config: PipelineConfig | None = None,
        zero_index_policy: ZeroIndexPolicy = ZeroIndexPolicy.ALL,
    ) -> "PatchGenerator":
        config = config or load_pipeline_config()
        processor_tasks = range(1, config.parallelism.patch_processor_tasks + 1)
        return cls(
            collector,
            self_index=self_index,
            processor_tasks=list(processor_tasks),
            geometry=config.geometry,
            zero_index_policy=zero_index_policy,
        )

    def layout(self, frame_width: int, frame_height: int) -> PatchLayout:
        return PatchLayout.compute(frame_width, frame_height, self._geometry)

    def patches(self, frame_id: int, frame_width: int, frame_height: int) -> list[PatchIdentifier]:
        layout = self.layout(frame_width, frame_height)
        return [
            PatchIdentifier(frame_id, Rect(x, y, layout.width, layout.height))
            for x, y in layout.origins()
        ]

    def process(self, frame: Frame) -> int:
        """Emit every patch of the frame plus the direct raw-frame copies. Returns the patch count."""
        layout = self.layout(frame.width, frame.height)
        patch_count = layout.count()

        for x, y in layout.origins():
            identifier = PatchIdentifier(frame.frame_id, Rect(x, y, layout.width, layout.height))
            self._collector.emit(PATCH_STREAM, PatchMessage(identifier, patch_count))

        raw = RawFrameMessage(frame.frame_id, frame.mat, patch_count)
        for task_id in self.routing.targets:
            self._collector.emit_direct(task_id, RAW_FRAME_STREAM, raw)

        logger.debug(
            "Frame %d (%dx%d): %d patches of %dx%d, raw frame to %d tasks",
            frame.frame_id,
            frame.width,
            frame.height,
            patch_count,
            layout.width,
            layout.height,
            len(self.routing),
        )
        return patch_count
