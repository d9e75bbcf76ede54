"""Live channel statistics overlay streamed to an RTMP ingestion endpoint."""

__version__ = "0.1.0"
