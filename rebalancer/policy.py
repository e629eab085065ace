"""Rebalance policy.

All helpers are pure and deterministic so they can be unit-tested without
side-effects.
"""
from __future__ import annotations

from treasury_domain.errors import InvalidParameterError, InvalidRatio
from treasury_domain.models import DeploymentMode, RebalancePlan

__all__ = [
    "validate_ratio",
    "compute_liquid_target",
    "plan_rebalance",
]


def validate_ratio(percent: int) -> int:
    """Return *percent* if it is an integer in ``[0, 100]``."""
    if not isinstance(percent, int) or isinstance(percent, bool) or not 0 <= percent <= 100:
        raise InvalidRatio(f"liquidity ratio must be within 0..100, got {percent!r}")
    return percent


def compute_liquid_target(total_reserve: int, percent: int) -> int:
    """Units to keep liquid, rounded toward zero."""
    return total_reserve * validate_ratio(percent) // 100


def plan_rebalance(
    *,
    liquid: int,
    deployed: int,
    mode: DeploymentMode,
    liquidity_ratio: int,
) -> RebalancePlan:
    """Plan a full withdraw-then-redeploy cycle.

    Parameters
    ----------
    liquid : int
        Primary reserve currently on the treasury balance.
    deployed : int
        Primary reserve currently held by the lending market.
    mode : DeploymentMode
        In ``liquidity_venue`` mode nothing is redeployed.
    liquidity_ratio : int
        Percent of the total to keep liquid in ``lending_market`` mode.
    """
    if liquid < 0 or deployed < 0:
        raise InvalidParameterError("reserve amounts must be non-negative")
    total = liquid + deployed
    if mode is DeploymentMode.LENDING_MARKET:
        liquid_target = compute_liquid_target(total, liquidity_ratio)
    else:
        validate_ratio(liquidity_ratio)
        liquid_target = total
    return RebalancePlan(
        mode=mode,
        liquidity_ratio=liquidity_ratio,
        total_reserve=total,
        liquid_target=liquid_target,
        withdraw=deployed,
        deposit=total - liquid_target,
    )
