"""Prometheus metrics for the processing workers.

Tracks job outcomes, rendition results, encode timing and artifact uploads.
"""

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    CollectorRegistry,
    multiprocess,
)
import os

# Create a custom registry for our metrics
REGISTRY = CollectorRegistry()

# Check if running in multiprocess mode (e.g., several Celery worker processes)
if "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


APP_INFO = Info(
    "vidpipe_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# Job Metrics
# ============================================
JOBS_TOTAL = Counter(
    "processing_jobs_total",
    "Processing jobs by terminal outcome",
    ["outcome", "reason"],
    registry=REGISTRY,
)

JOB_DURATION_SECONDS = Histogram(
    "processing_job_duration_seconds",
    "Wall-clock duration of a processing job",
    ["outcome"],
    buckets=[5.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0, 3600.0, 7200.0],
    registry=REGISTRY,
)

JOBS_IN_PROGRESS = Gauge(
    "processing_jobs_in_progress",
    "Number of jobs currently held by a worker slot",
    registry=REGISTRY,
)

MALFORMED_MESSAGES_TOTAL = Counter(
    "processing_queue_malformed_messages_total",
    "Queue messages dropped because they could not be parsed",
    ["queue_name"],
    registry=REGISTRY,
)


# ============================================
# Rendition Metrics
# ============================================
RENDITIONS_TOTAL = Counter(
    "renditions_total",
    "Rendition encodes by result",
    ["rendition", "result"],
    registry=REGISTRY,
)

ENCODE_DURATION_SECONDS = Histogram(
    "rendition_encode_duration_seconds",
    "Duration of encoding and segmenting one rendition",
    ["rendition"],
    buckets=[1.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0, 3600.0],
    registry=REGISTRY,
)


# ============================================
# Storage Metrics
# ============================================
ARTIFACT_UPLOADS_TOTAL = Counter(
    "artifact_uploads_total",
    "Artifact uploads to the object store by result",
    ["result"],
    registry=REGISTRY,
)


def record_job_outcome(outcome: str, reason: str, duration_seconds: float) -> None:
    """Record a terminal job outcome.

    Args:
        outcome: "published" or "failed"
        reason: Failure reason, empty for published jobs
        duration_seconds: Total job duration
    """
    JOBS_TOTAL.labels(outcome=outcome, reason=reason).inc()
    JOB_DURATION_SECONDS.labels(outcome=outcome).observe(duration_seconds)


def record_rendition(rendition: str, succeeded: bool, duration_seconds: float) -> None:
    """Record the result of one rendition encode."""
    RENDITIONS_TOTAL.labels(
        rendition=rendition,
        result="succeeded" if succeeded else "failed",
    ).inc()
    ENCODE_DURATION_SECONDS.labels(rendition=rendition).observe(duration_seconds)


def set_app_info(version: str, environment: str) -> None:
    """Set application info metrics."""
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })
