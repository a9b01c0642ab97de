"""Prometheus metrics for the media ingestion service.

Tracks HTTP traffic, compression queue depth, job outcomes and storage
backend behaviour (uploads, fallbacks).
"""

import os

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    multiprocess,
)

REGISTRY = CollectorRegistry()

# Check if running in multiprocess mode (e.g., with gunicorn)
if "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "reelshop_media_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# HTTP Request Metrics
# ============================================
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)


# ============================================
# Compression Queue Metrics
# ============================================
COMPRESSION_QUEUE_DEPTH = Gauge(
    "compression_queue_depth",
    "Number of ingestion jobs waiting in the compression queue",
    registry=REGISTRY,
)

COMPRESSION_WORKER_BUSY = Gauge(
    "compression_worker_busy",
    "Whether the compression worker is running a job (1=busy, 0=idle)",
    registry=REGISTRY,
)

COMPRESSION_JOBS_TOTAL = Counter(
    "compression_jobs_total",
    "Ingestion jobs by terminal status",
    ["status"],
    registry=REGISTRY,
)

COMPRESSION_JOB_DURATION_SECONDS = Histogram(
    "compression_job_duration_seconds",
    "Wall time of one ingestion job, transcode through cleanup",
    buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0],
    registry=REGISTRY,
)

COMPRESSION_BYTES_SAVED_TOTAL = Counter(
    "compression_bytes_saved_total",
    "Bytes saved by transcoding, summed over completed jobs",
    registry=REGISTRY,
)


# ============================================
# Storage Metrics
# ============================================
STORAGE_UPLOADS_TOTAL = Counter(
    "storage_uploads_total",
    "Object store put operations",
    ["backend", "result"],
    registry=REGISTRY,
)

STORAGE_FALLBACKS_TOTAL = Counter(
    "storage_fallbacks_total",
    "Remote uploads that fell back to local storage",
    registry=REGISTRY,
)

STORAGE_MODE_CACHE_REFRESHES_TOTAL = Counter(
    "storage_mode_cache_refreshes_total",
    "Storage mode reads that went to the backing store",
    ["result"],
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate latest metrics in Prometheus format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    """Set application info metrics."""
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })
