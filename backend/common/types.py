"""
Data structures shared by the patch generator, workers and the aggregator.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, ConfigDict


class Point(BaseModel):
    """A tracked point in frame pixel coordinates."""
    model_config = ConfigDict(frozen=True)

    x: float
    y: float


@dataclass(frozen=True)
class Rect:
    """Region of interest; (x, y) is the upper-left corner."""
    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height


@dataclass(frozen=True)
class PatchIdentifier:
    """Identifies one patch by its frame and rectangle."""
    frame_id: int
    roi: Optional[Rect]

    def __str__(self) -> str:
        if self.roi is None:
            return f"N{self.frame_id:04d}@null"
        r = self.roi
        return f"N{self.frame_id:04d}@{r.x:04d}@{r.y:04d}@{r.right:04d}@{r.bottom:04d}"


@dataclass
class Mat:
    """Raw image buffer in OpenCV layout (rows x cols, OpenCV type code)."""
    rows: int
    cols: int
    type_code: int
    data: bytes

    @property
    def width(self) -> int:
        return self.cols

    @property
    def height(self) -> int:
        return self.rows


@dataclass
class Frame:
    frame_id: int
    mat: Mat

    @property
    def width(self) -> int:
        return self.mat.width

    @property
    def height(self) -> int:
        return self.mat.height
