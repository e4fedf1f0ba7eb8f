"""
Load Generation Controller - Prometheus Metrics

Provides Prometheus-compatible metrics for monitoring generator load,
launch activity and reconciliation cost.

Metrics Exposed:
- loadgen_generator_queued_runs: Gauge of queued items per generator
- loadgen_generator_running_runs: Gauge of live runs per generator
- loadgen_generator_active: Gauge (1=RAMP_UP/LOAD_TEST, 0=otherwise)
- loadgen_registered_generators: Gauge of registered generators
- loadgen_runs_launched_total: Counter of successful submissions
- loadgen_submission_failures_total: Counter of rejected submissions
- loadgen_cancellations_total: Counter of cancelled items and stopped runs
- loadgen_reconcile_duration_seconds: Histogram of per-generator reconcile time

Usage:
    from loadgen.observability.metrics import record_runs_launched

    record_runs_launched(short_name="checkout-ramp", count=3)

    # Export metrics (in /metrics endpoint)
    from prometheus_client import generate_latest
    metrics_data = generate_latest(metrics_registry)
"""

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    CollectorRegistry,
)

# Use custom registry to avoid conflicts
metrics_registry = CollectorRegistry()

# =============================================================================
# GENERATOR LOAD METRICS
# =============================================================================

generator_queued_runs = Gauge(
    name="loadgen_generator_queued_runs",
    documentation="Items submitted by the generator that have not started yet",
    labelnames=["generator_id", "short_name"],
    registry=metrics_registry,
)

generator_running_runs = Gauge(
    name="loadgen_generator_running_runs",
    documentation="Live runs started on behalf of the generator",
    labelnames=["generator_id", "short_name"],
    registry=metrics_registry,
)

generator_active = Gauge(
    name="loadgen_generator_active",
    documentation="Generator active status (1=ramp-up or load test, 0=idle)",
    labelnames=["generator_id", "short_name"],
    registry=metrics_registry,
)

registered_generators = Gauge(
    name="loadgen_registered_generators",
    documentation="Number of registered load generators",
    registry=metrics_registry,
)

# =============================================================================
# ACTIVITY METRICS
# =============================================================================

runs_launched_total = Counter(
    name="loadgen_runs_launched_total",
    documentation="Total queue submissions made by generators",
    labelnames=["short_name"],
    registry=metrics_registry,
)

submission_failures_total = Counter(
    name="loadgen_submission_failures_total",
    documentation="Total queue submissions rejected by the host",
    labelnames=["short_name"],
    registry=metrics_registry,
)

cancellations_total = Counter(
    name="loadgen_cancellations_total",
    documentation="Total queue items cancelled and runs stopped by abrupt stops",
    labelnames=["short_name", "target"],
    registry=metrics_registry,
)

reconcile_duration_seconds = Histogram(
    name="loadgen_reconcile_duration_seconds",
    documentation="Duration of a single generator reconcile in seconds",
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0],
    registry=metrics_registry,
)

# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def set_generator_load(
    generator_id: str,
    short_name: str,
    queued: int,
    running: int,
    active: bool,
) -> None:
    """
    Publish the current load of one generator.

    Args:
        generator_id: Generator identifier
        short_name: Generator short name
        queued: Queued item count
        running: Live run count
        active: Whether the generator is launching new runs
    """
    labels = {"generator_id": generator_id, "short_name": short_name}
    generator_queued_runs.labels(**labels).set(queued)
    generator_running_runs.labels(**labels).set(running)
    generator_active.labels(**labels).set(1 if active else 0)


def set_registered_generators(count: int) -> None:
    registered_generators.set(count)


def record_runs_launched(short_name: str, count: int = 1) -> None:
    """
    Record successful submissions.

    Args:
        short_name: Generator short name
        count: Number of submissions
    """
    if count > 0:
        runs_launched_total.labels(short_name=short_name).inc(count)


def record_submission_failure(short_name: str) -> None:
    submission_failures_total.labels(short_name=short_name).inc()


def record_cancellation(short_name: str, target: str) -> None:
    """
    Record an abrupt-stop cancellation.

    Args:
        short_name: Generator short name
        target: "queue_item" or "run"
    """
    cancellations_total.labels(short_name=short_name, target=target).inc()


def record_reconcile_latency(duration_seconds: float) -> None:
    reconcile_duration_seconds.observe(duration_seconds)


def clear_generator_metrics(generator_id: str, short_name: str) -> None:
    """
    Drop the per-generator gauge series of an unregistered generator.

    Args:
        generator_id: Generator identifier
        short_name: Generator short name
    """
    for gauge in (generator_queued_runs, generator_running_runs, generator_active):
        try:
            gauge.remove(generator_id, short_name)
        except KeyError:
            pass
