import pytest

from rebalancer.policy import compute_liquid_target, plan_rebalance, validate_ratio
from treasury_domain.errors import InvalidParameterError, InvalidRatio
from treasury_domain.models import DeploymentMode

LENDING = DeploymentMode.LENDING_MARKET
VENUE = DeploymentMode.LIQUIDITY_VENUE


@pytest.mark.parametrize(
    "total, percent, expected",
    [
        (100, 30, 30),
        (0, 50, 0),
        (999, 50, 499),  # rounds toward zero
        (10**24, 100, 10**24),
        (10**24, 0, 0),
    ],
)
def test_compute_liquid_target(total, percent, expected):
    assert compute_liquid_target(total, percent) == expected


@pytest.mark.parametrize("percent", [-1, 101, 50.0, "50", True, None])
def test_validate_ratio_rejects(percent):
    with pytest.raises(InvalidRatio):
        validate_ratio(percent)


def test_invalid_ratio_is_a_parameter_error():
    assert issubclass(InvalidRatio, InvalidParameterError)


@pytest.mark.parametrize(
    "liquid, deployed, mode, ratio, target, deposit",
    [
        # lending: deposit (100 - ratio)% of everything after a full withdraw
        (100, 0, LENDING, 30, 30, 70),
        (30, 70, LENDING, 30, 30, 70),
        (10, 90, LENDING, 50, 50, 50),
        (1, 0, LENDING, 50, 0, 1),
        # venue: everything comes back, nothing goes out
        (30, 70, VENUE, 30, 100, 0),
        (0, 0, VENUE, 0, 0, 0),
    ],
)
def test_plan_rebalance(liquid, deployed, mode, ratio, target, deposit):
    plan = plan_rebalance(liquid=liquid, deployed=deployed, mode=mode, liquidity_ratio=ratio)
    assert plan.total_reserve == liquid + deployed
    assert plan.withdraw == deployed
    assert plan.liquid_target == target
    assert plan.deposit == deposit
    assert plan.liquid_target + plan.deposit == plan.total_reserve


def test_plan_rejects_negative_amounts():
    with pytest.raises(InvalidParameterError):
        plan_rebalance(liquid=-1, deployed=0, mode=LENDING, liquidity_ratio=30)


def test_plan_validates_ratio_in_either_mode():
    with pytest.raises(InvalidRatio):
        plan_rebalance(liquid=1, deployed=0, mode=VENUE, liquidity_ratio=120)
