"""Prometheus metrics definitions.

Exposed via /metrics on the admin API server.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, generate_latest

# --- Call authorization ---

active_agi_sessions = Gauge(
    "tenantpbx_active_agi_sessions",
    "Number of FastAGI sessions currently being handled",
)

authorization_decisions_total = Counter(
    "tenantpbx_authorization_decisions_total",
    "Call authorization decisions",
    ["classification"],  # INTERNAL, EXTERNAL, MISMATCH, INVALID, UNKNOWN, ERROR, NONE
)

authorization_latency_ms = Histogram(
    "tenantpbx_authorization_latency_ms",
    "Time spent deciding a call in milliseconds",
    buckets=[1, 2, 5, 10, 20, 50, 100, 250, 500],
)

# --- Provisioning ---

tenants_provisioned_total = Counter(
    "tenantpbx_tenants_provisioned_total",
    "Tenant provisioning attempts",
    ["outcome"],  # created, duplicate, invalid, error
)

extensions_provisioned_total = Counter(
    "tenantpbx_extensions_provisioned_total",
    "Extension provisioning attempts",
    ["outcome"],  # created, duplicate, invalid, not_found, error
)

dialplan_reload_failures_total = Counter(
    "tenantpbx_dialplan_reload_failures_total",
    "Failed dialplan reload attempts",
    ["method"],
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()
