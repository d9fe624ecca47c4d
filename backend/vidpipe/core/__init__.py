"""Core infrastructure: configuration, logging, tracing, metrics, storage."""
