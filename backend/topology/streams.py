"""Logical stream names shared by producers and consumers."""

RAW_FRAME_STREAM = "raw-frame"
PATCH_STREAM = "patch"

PLOT_TRACE_STREAM = "plot-trace"
CACHE_CLEAN_STREAM = "cache-clean"
RENEW_TRACE_STREAM = "renew-trace"
INDICATOR_TRACE_STREAM = "indicator-trace"
STALE_FRAME_STREAM = "stale-frame"

AGGREGATOR_OUTPUT_STREAMS = (
    PLOT_TRACE_STREAM,
    CACHE_CLEAN_STREAM,
    RENEW_TRACE_STREAM,
    INDICATOR_TRACE_STREAM,
    STALE_FRAME_STREAM,
)
