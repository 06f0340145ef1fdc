"""
Prometheus metrics collection for curtailment-reconciler

This module provides metrics instrumentation for monitoring reconciliation
progress, partition outcomes, retries and derivation-input fallbacks.
"""
import os
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
)


# Global registry for metrics
REGISTRY = CollectorRegistry()


# =======================
# PARTITION METRICS
# =======================

partitions_reconciled_total = Counter(
    name="reconciler_partitions_reconciled_total",
    documentation="Total number of partitions reprocessed",
    labelnames=["variant", "outcome"],  # outcome: success, failure
    registry=REGISTRY,
)

partition_duration_seconds = Histogram(
    name="reconciler_partition_duration_seconds",
    documentation="Time spent reprocessing a single partition",
    labelnames=["variant"],
    buckets=[0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
    registry=REGISTRY,
)

derived_records_written_total = Counter(
    name="reconciler_derived_records_written_total",
    documentation="Total number of derived calculation rows written",
    labelnames=["variant"],
    registry=REGISTRY,
)

# =======================
# RUN METRICS
# =======================

batches_processed_total = Counter(
    name="reconciler_batches_processed_total",
    documentation="Total number of batches processed",
    labelnames=["status"],  # status: completed, cancelled
    registry=REGISTRY,
)

progress_write_failures_total = Counter(
    name="reconciler_progress_write_failures_total",
    documentation="Partition outcomes that could not be appended to the progress log",
    registry=REGISTRY,
)

completion_percentage = Gauge(
    name="reconciler_completion_percentage",
    documentation="Completion percentage reported by the last verification",
    labelnames=["scope"],
    registry=REGISTRY,
)

partitions_outstanding = Gauge(
    name="reconciler_partitions_outstanding",
    documentation="Partitions not complete after the last verification",
    labelnames=["state"],  # state: missing, incomplete, unknown
    registry=REGISTRY,
)

# =======================
# ERROR METRICS
# =======================

retries_total = Counter(
    name="reconciler_retries_total",
    documentation="Total number of retry attempts against upstream dependencies",
    labelnames=["operation"],
    registry=REGISTRY,
)

difficulty_fallbacks_total = Counter(
    name="reconciler_difficulty_fallbacks_total",
    documentation="Calculations that used a fallback difficulty",
    labelnames=["source"],  # source: carried_forward, default
    registry=REGISTRY,
)

scan_failures_total = Counter(
    name="reconciler_scan_failures_total",
    documentation="Dates whose counts could not be evaluated",
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def start_metrics_server(port: Optional[int] = None) -> None:
    """
    Start HTTP server for Prometheus metrics

    Args:
        port: Port to listen on (defaults to env var METRICS_PORT or 8000)
    """
    # Lazy import: only bind a port when the operator asks for the exporter
    from prometheus_client import start_http_server

    metrics_port = port or int(os.getenv("METRICS_PORT", "8000"))
    start_http_server(metrics_port, registry=REGISTRY)


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    """
    Increment a counter metric

    Args:
        counter: Prometheus Counter metric
        value: Amount to increment (default: 1.0)
        **labels: Label values for the metric
    """
    if labels:
        counter.labels(**labels).inc(value)
    else:
        counter.inc(value)


def set_gauge(gauge: Gauge, value: float, **labels) -> None:
    gauge.labels(**labels).set(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    histogram.labels(**labels).observe(value)


# =======================
# RECONCILIATION HELPERS
# =======================

def record_partition_result(variant: str, succeeded: bool, records_written: int, duration_seconds: float) -> None:
    """
    Record the outcome of one partition.

    Args:
        variant: Miner model of the partition
        succeeded: Whether reprocessing succeeded
        records_written: Derived rows written
        duration_seconds: Time spent on the partition
    """
    outcome = "success" if succeeded else "failure"
    increment_counter(partitions_reconciled_total, 1, variant=variant, outcome=outcome)
    observe_histogram(partition_duration_seconds, duration_seconds, variant=variant)
    if records_written > 0:
        increment_counter(derived_records_written_total, records_written, variant=variant)


def record_verification(scope: str, completion_pct: float, missing: int, incomplete: int, unknown: int) -> None:
    """
    Publish the result of a verification pass.

    Args:
        scope: Scope description
        completion_pct: Overall completion percentage
        missing: Missing partitions
        incomplete: Incomplete partitions
        unknown: Partitions that could not be evaluated
    """
    set_gauge(completion_percentage, completion_pct, scope=scope)
    set_gauge(partitions_outstanding, missing, state="missing")
    set_gauge(partitions_outstanding, incomplete, state="incomplete")
    set_gauge(partitions_outstanding, unknown, state="unknown")
