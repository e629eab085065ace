"""Moves the primary reserve between the treasury balance and the lending market.

Every entry point here is privileged: it only runs inside an executed
multisig operation (see :meth:`Rebalancer.bind`). The lending position is
always read back from the lending market, never cached.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Dict

from multisig.engine import AuthorizationEngine
from treasury_domain.audit import AuditAction
from treasury_domain.errors import ExternalCallError, InvalidParameterError
from treasury_domain.models import (DeploymentMode, RebalanceReceipt, Rebalance,
                                    SetLiquidityRatio, SetMode)
from treasury_domain.state import TreasuryState
from treasury_exchange.providers.base import call_external
from treasury_exchange.service import TreasuryExchange
from treasury_observability.metrics import (liquidity_ratio,
                                            rebalance_latency_seconds)

from .policy import plan_rebalance, validate_ratio

__all__ = ["Rebalancer"]

_LOG = logging.getLogger(__name__)


class Rebalancer:
    def __init__(self, state: TreasuryState, exchange: TreasuryExchange):
        if exchange.lending is None:
            raise InvalidParameterError("rebalancer needs a lending market")
        self.state = state
        self.exchange = exchange
        self.lending = exchange.lending
        liquidity_ratio.set(state.liquidity_ratio)

    def bind(self, engine: AuthorizationEngine) -> None:
        """Register this component's routes in the engine's dispatch table."""
        engine.register("set_mode", self._apply_set_mode)
        engine.register(
            "set_liquidity_ratio",
            self._apply_set_ratio,
            lambda p: validate_ratio(p.percent),
        )
        engine.register("rebalance", self._apply_rebalance)

    def _apply_set_mode(self, payload: SetMode) -> Dict[str, Any]:
        return self.change_mode(payload.mode is DeploymentMode.LENDING_MARKET)

    def _apply_set_ratio(self, payload: SetLiquidityRatio) -> Dict[str, Any]:
        return self.change_liquidity_ratio(payload.percent)

    def _apply_rebalance(self, payload: Rebalance) -> RebalanceReceipt:
        return self.rebalance()

    # ------------------------------------------------------------------
    # Parameter changes (no funds move)
    # ------------------------------------------------------------------
    def change_mode(self, to_lending_market: bool) -> Dict[str, Any]:
        self.state.require_dispatch("change_mode")
        mode = DeploymentMode.LENDING_MARKET if to_lending_market else DeploymentMode.LIQUIDITY_VENUE
        previous = self.state.mode
        self.state.mode = mode
        self.state.audit(
            AuditAction.MODE_CHANGED,
            entity_type="deployment_mode",
            entity_id=mode.value,
            payload={"previous": previous.value, "mode": mode.value},
        )
        _LOG.info("deployment_mode_changed", extra={"kind": mode.value})
        return {"mode": mode.value}

    def change_liquidity_ratio(self, percent: int) -> Dict[str, Any]:
        validate_ratio(percent)
        self.state.require_dispatch("change_liquidity_ratio")
        previous = self.state.liquidity_ratio
        self.state.liquidity_ratio = percent
        self.state.audit(
            AuditAction.RATIO_CHANGED,
            entity_type="liquidity_ratio",
            entity_id=str(percent),
            payload={"previous": previous, "percent": percent},
        )
        liquidity_ratio.set(percent)
        return {"liquidity_ratio": percent}

    # ------------------------------------------------------------------
    # Rebalance
    # ------------------------------------------------------------------
    def rebalance(self) -> RebalanceReceipt:
        """Withdraw the whole lending position, then redeploy per mode and ratio."""
        self.state.require_dispatch("rebalance")
        primary = self.exchange.primary
        address = self.exchange.address
        t0 = time.perf_counter()
        try:
            deployed = self.exchange.lending_position()
            withdrawn = 0
            if deployed:
                withdrawn = call_external(
                    "lending_market", "withdraw", self.lending.withdraw, primary, deployed, address
                )
                _check_confirmed("withdraw", withdrawn, deployed)

            plan = plan_rebalance(
                liquid=self.exchange.liquid_reserve(),
                deployed=0,
                mode=self.state.mode,
                liquidity_ratio=self.state.liquidity_ratio,
            )
            deposited = 0
            if plan.deposit:
                ledger = self.exchange.ledger(primary)
                call_external("ledger", "approve", ledger.approve, address, self.lending.address, plan.deposit)
                deposited = call_external(
                    "lending_market", "deposit", self.lending.deposit, primary, plan.deposit, address
                )
                _check_confirmed("deposit", deposited, plan.deposit)

            receipt = RebalanceReceipt(
                mode=self.state.mode,
                total_reserve=plan.total_reserve,
                withdrawn=withdrawn,
                deposited=deposited,
                liquid=self.exchange.liquid_reserve(),
                deployed=self.exchange.lending_position(),
            )
            self.state.audit(
                AuditAction.REBALANCED,
                entity_type="reserve",
                entity_id=primary,
                payload=receipt.model_dump(mode="json"),
            )
        finally:
            rebalance_latency_seconds.observe(time.perf_counter() - t0)

        self.exchange.publish_gauges()
        _LOG.info(
            "reserve_rebalanced",
            extra={"kind": receipt.mode.value, "asset": primary, "amount": receipt.total_reserve},
        )
        return receipt


def _check_confirmed(action: str, confirmed: int, requested: int) -> None:
    if not isinstance(confirmed, int) or isinstance(confirmed, bool) or not 0 < confirmed <= requested:
        raise ExternalCallError(
            f"lending market {action} confirmed {confirmed!r} for requested {requested}"
        )
