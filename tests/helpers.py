"""Shared constants and call helpers for the treasury tests."""
from typing import Iterable, Optional

OWNERS = ["alice", "bob", "carol", "dave"]
USDT = 10**6  # one whole primary unit
FACTOR = 10**12
ETHER = 10**18

# venue rates taken from a fork run: 10 UNI -> 38.957103 USDT, 1 ETH -> 2681.830981 USDT
UNI_FOR_10 = 38_957_103
USDT_PER_ETH = 2_681_830_981


def approve(t, holder: str, asset: str, amount: int) -> None:
    t.exchange.ledgers[asset].approve(holder, t.config.treasury_address, amount)


def approve_and_buy(t, amount: int, buyer: str = "buyer"):
    approve(t, buyer, "USDT", amount)
    return t.buy_for_primary_reserve(buyer, amount)


def run_operation(t, payload, signers: Optional[Iterable[str]] = None):
    """Propose with the first signer, collect the rest, execute."""
    signers = list(signers or OWNERS)
    index = t.propose(signers[0], payload)
    for owner in signers[1:]:
        t.sign(owner, index)
    return t.execute(signers[0], index)
