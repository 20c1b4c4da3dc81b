"""Patch generation, stream names and task routing."""

from .collector import Emission, ListCollector, OutputCollector
from .patch_generator import PatchGenerator, PatchLayout, PatchMessage, RawFrameMessage
from .routing import (
    DirectRoutingTable,
    ShuffleRouter,
    ZeroIndexPolicy,
    fields_route,
    global_route,
)

__all__ = [
    "DirectRoutingTable",
    "Emission",
    "ListCollector",
    "OutputCollector",
    "PatchGenerator",
    "PatchLayout",
    "PatchMessage",
    "RawFrameMessage",
    "ShuffleRouter",
    "ZeroIndexPolicy",
    "fields_route",
    "global_route",
]
