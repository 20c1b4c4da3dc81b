"""Downstream sinks: Redis pub/sub for trace results, Redis list for frames."""
