import sys

from rebalancer.policy import plan_rebalance
from treasury_domain.errors import TreasuryError
from treasury_domain.models import DeploymentMode

_USAGE = (
    "Usage: python -m treasury_orchestrator.cli "
    "<liquid_units> <deployed_units> <liquidity_venue|lending_market> <ratio_percent>"
)


def main(argv=None):
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 4:
        print(_USAGE)
        sys.exit(1)

    try:
        plan = plan_rebalance(
            liquid=int(args[0]),
            deployed=int(args[1]),
            mode=DeploymentMode(args[2]),
            liquidity_ratio=int(args[3]),
        )
    except (ValueError, TreasuryError) as exc:
        print(f"error: {exc}")
        sys.exit(2)
    print(plan.model_dump_json(indent=2))


if __name__ == "__main__":
    main()
