"""
Pipeline metrics.

Prometheus counters and histograms for job ticks, rewards and anomalies.
Exposed by GET /metrics.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Dedicated registry so tests and reloads never collide with the default one
REGISTRY = CollectorRegistry(auto_describe=True)

JOB_RUNS = Counter(
    "ecobin_job_runs_total",
    "Scheduled job ticks by outcome",
    ["job", "outcome"],
    registry=REGISTRY,
)

JOB_DURATION = Histogram(
    "ecobin_job_duration_seconds",
    "Wall-clock duration of completed job ticks",
    ["job"],
    buckets=(0.05, 0.1, 0.5, 1, 5, 15, 60, 300, 900, 3600),
    registry=REGISTRY,
)

POINTS_CREDITED = Counter(
    "ecobin_points_credited_total",
    "Reward points credited by accrual",
    registry=REGISTRY,
)

REDEMPTIONS = Counter(
    "ecobin_redemptions_total",
    "Redemption attempts by outcome",
    ["outcome"],
    registry=REGISTRY,
)

ANOMALIES_CREATED = Counter(
    "ecobin_anomalies_created_total",
    "Anomalies persisted by type and severity",
    ["anomaly_type", "severity"],
    registry=REGISTRY,
)


def render_latest() -> tuple[bytes, str]:
    """Return the exposition payload and its content type."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
