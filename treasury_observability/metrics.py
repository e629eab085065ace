# treasury_observability/metrics.py
"""
Prometheus metrics for the treasury.

This module does NOT start a standalone HTTP server. The API app mounts the
ASGI exporter:

    from prometheus_client import make_asgi_app
    app.mount("/metrics", make_asgi_app())
"""
from __future__ import annotations

from typing import Any, Dict, Tuple, Type

from prometheus_client import Counter, Gauge, Histogram

# ----------------------------
# Registration helper (avoid duplicate collectors)
# ----------------------------
_METRICS: Dict[Tuple[Type[Any], str], Any] = {}


def get_metric(cls: Type[Any], name: str, *args, **kwargs):
    key = (cls, name)
    if key in _METRICS:
        return _METRICS[key]
    metric = cls(name, *args, **kwargs)
    _METRICS[key] = metric
    return metric


# ----------------------------
# Issuance / redemption
# ----------------------------

backed_minted_total = get_metric(
    Counter,
    "treasury_backed_minted_total",
    "Backed-token smallest units minted",
    ["path"],
)

backed_burned_total = get_metric(
    Counter,
    "treasury_backed_burned_total",
    "Backed-token smallest units burned on redemption",
)

primary_payout_total = get_metric(
    Counter,
    "treasury_primary_payout_total",
    "Primary reserve units paid out on redemption",
)

backed_supply = get_metric(
    Gauge,
    "treasury_backed_supply",
    "Current backed-token total supply (smallest units)",
)

# ----------------------------
# Multisig
# ----------------------------

operations_total = get_metric(
    Counter,
    "treasury_operations_total",
    "Privileged operation lifecycle events",
    ["kind", "event"],
)

# ----------------------------
# Reserves / rebalancing
# ----------------------------

reserve_units = get_metric(
    Gauge,
    "treasury_reserve_units",
    "Primary reserve held, by location",
    ["location"],
)

liquidity_ratio = get_metric(
    Gauge,
    "treasury_liquidity_ratio",
    "Target liquid share of the primary reserve (percent)",
)

rebalance_latency_seconds = get_metric(
    Histogram,
    "treasury_rebalance_latency_seconds",
    "Latency of rebalance execution in seconds",
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)

external_call_latency_seconds = get_metric(
    Histogram,
    "treasury_external_call_latency_seconds",
    "Latency of swap venue / lending market calls",
    ["collaborator", "action"],
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)

external_call_failures_total = get_metric(
    Counter,
    "treasury_external_call_failures_total",
    "Failed or implausible collaborator calls",
    ["collaborator", "action"],
)
