"""Trajectory aggregation package."""

from .aggregator import TrajectoryAggregator
from .arena import FrameArena
from .exceptions import AggregatorError, ConsistencyViolation, StaleFrameError
from .service import AggregatorService, FullQueuePolicy
from .types import (
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
    parse_message,
)

__all__ = [
    "AggregatorError",
    "AggregatorService",
    "CacheClean",
    "ConsistencyViolation",
    "ExistTrace",
    "FinalizedFrame",
    "FrameArena",
    "FrameState",
    "FullQueuePolicy",
    "IndicatorTrace",
    "PlotTrace",
    "RegisterTrace",
    "RemoveTrace",
    "RenewTrace",
    "StaleFrame",
    "StaleFrameError",
    "TrajectoryAggregator",
    "parse_message",
]
