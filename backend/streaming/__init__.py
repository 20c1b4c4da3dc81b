"""Frame sources feeding the pipeline."""
