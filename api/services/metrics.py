"""
Business metrics for the Live Photo pipeline

Counters and histograms for uploads, stylization calls, compositions and
end-to-end jobs, kept in a dedicated registry mounted at /metrics.
"""
import time
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
)
import structlog

from api.config import settings

logger = structlog.get_logger()


class BusinessMetricsService:
    """Service for collecting and exposing pipeline metrics."""

    def __init__(self, enabled: Optional[bool] = None):
        self.registry = CollectorRegistry()
        self.enabled = settings.ENABLE_METRICS if enabled is None else enabled

        if self.enabled:
            self._initialize_metrics()

        logger.debug("Business metrics service initialized", enabled=self.enabled)

    def _initialize_metrics(self):
        self.uploads_total = Counter(
            "livephoto_uploads_total",
            "Video uploads by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.upload_size_bytes = Histogram(
            "livephoto_upload_size_bytes",
            "Size of accepted uploads",
            buckets=[1e6, 5e6, 10e6, 50e6, 100e6, 250e6, 500e6],
            registry=self.registry,
        )
        self.stylization_requests_total = Counter(
            "livephoto_stylization_requests_total",
            "Stylization provider calls by operation and outcome",
            ["operation", "outcome"],
            registry=self.registry,
        )
        self.stylization_wait_seconds = Histogram(
            "livephoto_stylization_wait_seconds",
            "Time from submit to a terminal stylization result",
            buckets=[1, 3, 10, 30, 60, 120, 180],
            registry=self.registry,
        )
        self.compositions_total = Counter(
            "livephoto_compositions_total",
            "Compositions by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.composition_duration_seconds = Histogram(
            "livephoto_composition_duration_seconds",
            "Wall time spent composing a video",
            buckets=[1, 2, 5, 10, 20, 40, 80],
            registry=self.registry,
        )
        self.jobs_total = Counter(
            "livephoto_jobs_total",
            "Processing jobs by final status",
            ["status"],
            registry=self.registry,
        )
        self.job_duration_seconds = Histogram(
            "livephoto_job_duration_seconds",
            "End-to-end processing time",
            buckets=[5, 15, 30, 60, 120, 300, 600],
            registry=self.registry,
        )
        self.daily_limit_rejections_total = Counter(
            "livephoto_daily_limit_rejections_total",
            "Stylization requests refused by the daily limit",
            registry=self.registry,
        )

    def record_upload(self, outcome: str, size: int = 0):
        if self.enabled:
            self.uploads_total.labels(outcome=outcome).inc()
            if outcome == "accepted":
                self.upload_size_bytes.observe(size)

    def record_stylization(self, operation: str, outcome: str):
        if self.enabled:
            self.stylization_requests_total.labels(operation=operation, outcome=outcome).inc()

    def record_stylization_wait(self, duration_seconds: float):
        if self.enabled:
            self.stylization_wait_seconds.observe(duration_seconds)

    def record_composition(self, outcome: str, duration_seconds: Optional[float] = None):
        if self.enabled:
            self.compositions_total.labels(outcome=outcome).inc()
            if duration_seconds is not None:
                self.composition_duration_seconds.observe(duration_seconds)

    def record_job(self, status: str, duration_seconds: Optional[float] = None):
        if self.enabled:
            self.jobs_total.labels(status=status).inc()
            if duration_seconds is not None:
                self.job_duration_seconds.observe(duration_seconds)

    def record_limit_rejection(self):
        if self.enabled:
            self.daily_limit_rejections_total.inc()


# Global metrics service instance
business_metrics = BusinessMetricsService()


class MetricsTimer:
    """Context manager measuring wall time in seconds."""

    def __init__(self):
        self.start_time: Optional[float] = None
        self.elapsed: float = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.perf_counter() - self.start_time
        return False
