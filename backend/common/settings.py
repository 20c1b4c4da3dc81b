"""
Shared pipeline configuration.

Values come from the environment (``backend/.env`` is loaded first) and may be
overridden by a JSON file, e.g.::

    {
        "geometry": {"patch_width_fraction": 0.25, "stride_x_fraction": 0.5},
        "aggregator": {"min_distance": 5.0, "max_tracker_length": 15},
        "parallelism": {"trace_generator_tasks": 4}
    }
"""
from __future__ import annotations

import json
import os
from pathlib import Path

from pydantic import BaseModel, Field

from common.config import PIPELINE_CONFIG_PATH, REDIS_SINK_QUEUE, REDIS_SOURCE_QUEUE


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


def _env_int(name: str, default: str) -> int:
    return int(os.getenv(name, default))


class PatchGeometry(BaseModel):
    """Patch size and stride as fractions of the frame and patch size."""

    patch_width_fraction: float = Field(
        default_factory=lambda: _env_float("PATCH_WIDTH_FRACTION", "0.25"), gt=0, le=1
    )
    patch_height_fraction: float = Field(
        default_factory=lambda: _env_float("PATCH_HEIGHT_FRACTION", "0.25"), gt=0, le=1
    )
    stride_x_fraction: float = Field(
        default_factory=lambda: _env_float("STRIDE_X_FRACTION", "0.5"), gt=0, le=1
    )
    stride_y_fraction: float = Field(
        default_factory=lambda: _env_float("STRIDE_Y_FRACTION", "0.5"), gt=0, le=1
    )


class AggregatorConfig(BaseModel):
    min_distance: float = Field(default_factory=lambda: _env_float("MIN_DISTANCE", "5.0"), gt=0)
    max_tracker_length: int = Field(
        default_factory=lambda: _env_int("MAX_TRACKER_LENGTH", "15"), ge=1
    )
    first_frame_id: int = Field(default_factory=lambda: _env_int("FIRST_FRAME_ID", "1"))
    window_size: int = Field(default_factory=lambda: _env_int("AGGREGATOR_WINDOW_SIZE", "64"), ge=2)
    frame_ttl_seconds: float = Field(
        default_factory=lambda: _env_float("AGGREGATOR_FRAME_TTL_SEC", "30.0"), gt=0
    )
    inbound_queue_size: int = Field(
        default_factory=lambda: _env_int("AGGREGATOR_QUEUE_SIZE", "1024"), ge=1
    )
    monitor_interval_seconds: float = Field(
        default_factory=lambda: _env_float("AGGREGATOR_MONITOR_INTERVAL_SEC", "1.0"), gt=0
    )


class SourceConfig(BaseModel):
    host: str | None = Field(default_factory=lambda: os.getenv("REDIS_HOST") or None)
    port: int = Field(default_factory=lambda: _env_int("REDIS_PORT", "6379"))
    queue_name: str = REDIS_SOURCE_QUEUE


class SinkConfig(BaseModel):
    host: str | None = Field(default_factory=lambda: os.getenv("REDIS_HOST") or None)
    port: int = Field(default_factory=lambda: _env_int("REDIS_PORT", "6379"))
    queue_name: str = REDIS_SINK_QUEUE
    # Frames accumulated before one push to the sink queue.
    batch_size: int = Field(default_factory=lambda: _env_int("ACCUMULATE_FRAME_SIZE", "1"), ge=1)
    queue_size: int = Field(default_factory=lambda: _env_int("SINK_QUEUE_SIZE", "64"), ge=1)
    jpeg_quality: int = Field(default=90, ge=1, le=100)


class ComponentParallelism(BaseModel):
    """Task counts of the components whose parallelism other components depend on."""

    # Processor tasks are numbered from 1; patch generators route raw frames by task id.
    patch_processor_tasks: int = Field(
        default_factory=lambda: _env_int("PATCH_PROCESSOR_TASKS", "1"), ge=1
    )
    # Every trace generator task reports once per frame to the aggregator.
    trace_generator_tasks: int = Field(
        default_factory=lambda: _env_int("TRACE_GENERATOR_TASKS", "1"), ge=1
    )


class PipelineConfig(BaseModel):
    geometry: PatchGeometry = Field(default_factory=PatchGeometry)
    aggregator: AggregatorConfig = Field(default_factory=AggregatorConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)
    sink: SinkConfig = Field(default_factory=SinkConfig)
    parallelism: ComponentParallelism = Field(default_factory=ComponentParallelism)


def load_pipeline_config(path: Path | None = None) -> PipelineConfig:
    """Load configuration, applying JSON overrides when the file exists.

    Invalid JSON or out-of-range values raise instead of falling back to
    defaults, so a broken deployment file is noticed at startup.
    """
    path = path or PIPELINE_CONFIG_PATH
    if not path.exists():
        return PipelineConfig()
    data = json.loads(path.read_text(encoding="utf-8"))
    return PipelineConfig.model_validate(data)
