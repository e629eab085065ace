"""Reserve rebalancing between the liquidity venue and the lending market."""
from .policy import compute_liquid_target, plan_rebalance, validate_ratio
from .service import Rebalancer

__all__ = [
    "Rebalancer",
    "compute_liquid_target",
    "plan_rebalance",
    "validate_ratio",
]
