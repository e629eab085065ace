"""Prometheus metrics for the treasury."""

from .metrics import (backed_minted_total, backed_supply, operations_total,
                      rebalance_latency_seconds, reserve_units)

__all__ = [
    "backed_minted_total",
    "backed_supply",
    "operations_total",
    "rebalance_latency_seconds",
    "reserve_units",
]
