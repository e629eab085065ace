"""Treasury composition root.

Wires one :class:`TreasuryState` into the authorization engine, the exchange
and the rebalancer, and exposes the caller-facing surface.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional, Union

from sqlmodel import Session

from multisig.engine import AuthorizationEngine
from rebalancer.service import Rebalancer
from treasury_domain.config import TreasuryConfig
from treasury_domain.models import (BuyReceipt, DeploymentMode, ExecutionResult,
                                    OperationRecord, Payload, Rebalance,
                                    SellReceipt, SetLiquidityRatio, SetMode,
                                    TreasurySnapshot)
from treasury_domain.state import TreasuryState
from treasury_exchange.providers.base import LendingMarket, SwapVenue, TokenLedger
from treasury_exchange.providers.memory import (InMemoryLedger,
                                                MockLendingMarket,
                                                MockSwapVenue)
from treasury_exchange.service import TreasuryExchange

__all__ = ["Treasury", "in_memory_treasury"]


class Treasury:
    """One treasury instance: multisig, exchange and rebalancer over shared state."""

    def __init__(
        self,
        config: TreasuryConfig,
        *,
        ledgers: Mapping[str, TokenLedger],
        venue: SwapVenue,
        lending: LendingMarket,
        session: Session | None = None,
    ):
        self.state = TreasuryState(config, session=session)
        self.engine = AuthorizationEngine(self.state)
        self.exchange = TreasuryExchange(self.state, ledgers=ledgers, venue=venue, lending=lending)
        self.rebalancer = Rebalancer(self.state, self.exchange)
        self.rebalancer.bind(self.engine)

        for participant in (*ledgers.values(), venue, lending):
            if hasattr(participant, "checkpoint") and hasattr(participant, "rollback"):
                self.state.enlist(participant)

    @property
    def config(self) -> TreasuryConfig:
        return self.state.config

    # ------------------------------------------------------------------
    # Issuance / redemption
    # ------------------------------------------------------------------
    def buy_for_primary_reserve(self, buyer: str, amount: int, min_out: int = 0) -> BuyReceipt:
        return self.exchange.buy_for_primary_reserve(buyer, amount, min_out)

    def buy_for_token(self, buyer: str, amount: int, token: str, min_out: int = 0) -> BuyReceipt:
        return self.exchange.buy_for_token(buyer, amount, token, min_out)

    def buy_for_native(self, buyer: str, value: int, min_out: int = 0) -> BuyReceipt:
        return self.exchange.buy_for_native(buyer, value, min_out)

    def sell(self, seller: str, amount: int) -> SellReceipt:
        return self.exchange.sell(seller, amount)

    # ------------------------------------------------------------------
    # Privileged operations
    # ------------------------------------------------------------------
    def propose(self, proposer: str, payload: Union[Payload, Dict[str, Any]]) -> int:
        return self.engine.propose(proposer, payload)

    def sign(self, signer: str, index: int) -> OperationRecord:
        return self.engine.sign(signer, index)

    def execute(self, caller: str, index: int) -> ExecutionResult:
        return self.engine.execute(caller, index)

    def propose_mode(self, proposer: str, to_lending_market: bool) -> int:
        mode = DeploymentMode.LENDING_MARKET if to_lending_market else DeploymentMode.LIQUIDITY_VENUE
        return self.engine.propose(proposer, SetMode(mode=mode))

    def propose_liquidity_ratio(self, proposer: str, percent: int) -> int:
        return self.engine.propose(proposer, SetLiquidityRatio(percent=percent))

    def propose_rebalance(self, proposer: str) -> int:
        return self.engine.propose(proposer, Rebalance())

    # ------------------------------------------------------------------
    def snapshot(self) -> TreasurySnapshot:
        with self.state.reading():
            return TreasurySnapshot(
                owners=list(self.state.owners),
                threshold=self.state.threshold,
                next_index=self.state.next_index,
                pending=[r.index for r in self.engine.operations(pending_only=True)],
                mode=self.state.mode,
                liquidity_ratio=self.state.liquidity_ratio,
                total_supply=self.state.total_supply,
                reserves=self.exchange.reserves(),
            )


def in_memory_treasury(
    config: TreasuryConfig,
    *,
    session: Optional[Session] = None,
    secondary: Iterable[str] = (),
    venue_fee_bps: int = 0,
    primary_fee_bps: int = 0,
) -> Treasury:
    """Treasury over in-memory ledgers, venue and lending market (dev/tests)."""
    ledgers: Dict[str, InMemoryLedger] = {
        config.primary_asset: InMemoryLedger(
            config.primary_asset, config.primary_decimals, transfer_fee_bps=primary_fee_bps
        ),
        config.native_asset: InMemoryLedger(config.native_asset, 18),
    }
    for symbol in secondary:
        ledgers[symbol] = InMemoryLedger(symbol, 18)
    venue = MockSwapVenue(ledgers, fee_bps=venue_fee_bps)
    lending = MockLendingMarket(ledgers)
    return Treasury(config, ledgers=ledgers, venue=venue, lending=lending, session=session)
