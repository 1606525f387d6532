"""Prometheus metrics for bulk jobs."""

from prometheus_client import Counter, Gauge, Histogram

# Job metrics
JOBS_SUBMITTED = Counter(
    "provisioner_jobs_submitted_total",
    "Total number of jobs submitted",
    ["kind"],
)

JOBS_FINISHED = Counter(
    "provisioner_jobs_finished_total",
    "Total number of jobs reaching a terminal status",
    ["kind", "status"],  # completed, failed, cancelled
)

JOBS_RUNNING = Gauge(
    "provisioner_jobs_running",
    "Jobs currently running",
)

JOB_DURATION = Histogram(
    "provisioner_job_duration_seconds",
    "Wall-clock duration of finished jobs",
    ["kind"],
    buckets=[1, 5, 15, 30, 60, 120, 300, 600, 1800, 3600],
)

# Item metrics
ITEMS_SETTLED = Counter(
    "provisioner_items_settled_total",
    "Total number of items with a recorded outcome",
    ["kind", "outcome"],  # success, failed, skipped
)

ITEMS_IN_FLIGHT = Gauge(
    "provisioner_items_in_flight",
    "Item workflows currently running across all jobs",
)

ATTEMPT_FAILURES = Counter(
    "provisioner_attempt_failures_total",
    "Failed attempts (including ones later retried)",
    ["kind", "stage"],
)

JOBS_PURGED = Counter(
    "provisioner_jobs_purged_total",
    "Finished jobs removed by the retention reaper",
)


def record_job_submitted(kind: str):
    """Record a job submission."""
    JOBS_SUBMITTED.labels(kind=kind).inc()
    JOBS_RUNNING.inc()


def record_job_finished(kind: str, status: str, duration_ms: int | None):
    """Record a job reaching a terminal status."""
    JOBS_FINISHED.labels(kind=kind, status=status).inc()
    JOBS_RUNNING.dec()
    if duration_ms is not None:
        JOB_DURATION.labels(kind=kind).observe(duration_ms / 1000)


def record_item_settled(kind: str, outcome: str):
    ITEMS_SETTLED.labels(kind=kind, outcome=outcome).inc()


def record_attempt_failure(kind: str, stage: str):
    ATTEMPT_FAILURES.labels(kind=kind, stage=stage or "unknown").inc()


def record_jobs_purged(count: int):
    if count > 0:
        JOBS_PURGED.inc(count)
