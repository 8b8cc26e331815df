"""Prometheus metrics configuration."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
)


# Application info
APP_INFO = Info("bluegreen", "Blue/green deployment controller info")
APP_INFO.info({
    "version": "1.0.0",
    "service": "bluegreen-controller",
})

# Deployment metrics
DEPLOYMENTS_TOTAL = Counter(
    "bluegreen_deployments_total",
    "Deployments that reached a terminal state",
    ["outcome"],  # completed, rolled_back, failed
)

DEPLOYMENT_DURATION = Histogram(
    "bluegreen_deployment_duration_seconds",
    "Wall-clock time from request to terminal state",
    ["outcome"],
    buckets=[10, 30, 60, 120, 300, 600, 1800],
)

ACTIVE_DEPLOYMENTS = Gauge(
    "bluegreen_active_deployments",
    "Deployments currently driven by this controller",
)

STATE_TRANSITIONS_TOTAL = Counter(
    "bluegreen_state_transitions_total",
    "Deployment state machine transitions",
    ["from_state", "to_state"],
)

DEGRADED_ROLLBACKS_TOTAL = Counter(
    "bluegreen_degraded_rollbacks_total",
    "Rollbacks that could not restore traffic to blue",
)

EXTERNAL_CALL_RETRIES = Counter(
    "bluegreen_external_call_retries_total",
    "Retries of calls into the platform or router",
    ["operation"],
)

# Task set and traffic metrics
TASK_SET_OPERATIONS = Counter(
    "bluegreen_task_set_operations_total",
    "Task set manager operations",
    ["operation", "result"],
)

TRAFFIC_SHIFTS_TOTAL = Counter(
    "bluegreen_traffic_shifts_total",
    "Traffic shift requests",
    ["result"],  # accepted, rejected, invalid
)

# Health metrics
HEALTH_PROBES_TOTAL = Counter(
    "bluegreen_health_probes_total",
    "Instance liveness probes",
    ["result"],  # healthy, unhealthy, timeout, error
)

PROBE_CYCLE_DURATION = Histogram(
    "bluegreen_probe_cycle_duration_seconds",
    "Time taken to probe every instance of a task set",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

# Background sweep
ORPHAN_SWEEPS_TOTAL = Counter(
    "bluegreen_orphan_sweeps_total",
    "Termination attempts on orphaned task sets",
    ["result"],  # terminated, failed
)
