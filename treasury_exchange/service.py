"""Issuance and redemption of the backed token.

All math is in smallest units of the primary reserve asset and the backed
token; ``factor = 10 ** (backed_decimals - primary_decimals)``.

* Direct reserve purchase mints ``received * factor``; half of the inflow is
  reported as retained venue liquidity and the whole inflow stays on the
  treasury balance.
* Token / native purchases swap to the primary asset first and mint the full
  ``swap_output * factor``.
* Redemption pays ``(amount // factor) // 2``; the other half stays in the
  treasury.
"""
from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional

from treasury_domain.audit import AuditAction
from treasury_domain.errors import (ExternalCallError, InsufficientFundsError,
                                    InsufficientReserve, InvalidParameterError,
                                    SlippageExceeded, UnsupportedAsset)
from treasury_domain.models import BuyReceipt, ReserveView, SellReceipt
from treasury_domain.state import TreasuryState
from treasury_observability.metrics import (backed_burned_total,
                                            backed_minted_total, backed_supply,
                                            primary_payout_total, reserve_units)

from .providers.base import LendingMarket, SwapVenue, TokenLedger, call_external

__all__ = ["TreasuryExchange"]

_LOG = logging.getLogger(__name__)


class TreasuryExchange:
    def __init__(
        self,
        state: TreasuryState,
        *,
        ledgers: Mapping[str, TokenLedger],
        venue: SwapVenue,
        lending: Optional[LendingMarket] = None,
    ):
        cfg = state.config
        if cfg.primary_asset not in ledgers:
            raise UnsupportedAsset(f"no ledger for primary asset {cfg.primary_asset!r}")
        self.state = state
        self.ledgers: Dict[str, TokenLedger] = dict(ledgers)
        self.venue = venue
        self.lending = lending
        self.address = cfg.treasury_address
        self.primary = cfg.primary_asset
        self.native = cfg.native_asset
        self.factor = cfg.conversion_factor

    # ------------------------------------------------------------------
    # Reserve accounting
    # ------------------------------------------------------------------
    def ledger(self, asset: str) -> TokenLedger:
        try:
            return self.ledgers[asset]
        except KeyError:
            raise UnsupportedAsset(f"asset {asset!r} has no registered ledger") from None

    def liquid_reserve(self) -> int:
        return self.ledger(self.primary).balance_of(self.address)

    def lending_position(self) -> int:
        if self.lending is None:
            return 0
        return call_external(
            "lending_market", "position", self.lending.position, self.primary, self.address
        )

    def reserves(self) -> ReserveView:
        with self.state.reading():
            secondary = {
                sym: led.balance_of(self.address)
                for sym, led in self.ledgers.items()
                if sym != self.primary
            }
            return ReserveView(
                primary_asset=self.primary,
                liquid=self.liquid_reserve(),
                lending=self.lending_position(),
                secondary=secondary,
            )

    @property
    def total_supply(self) -> int:
        return self.state.total_supply

    def balance_of(self, holder: str) -> int:
        return self.state.balance_of(holder)

    def publish_gauges(self) -> None:
        reserve_units.labels(location="liquid").set(self.liquid_reserve())
        reserve_units.labels(location="lending").set(self.lending_position())
        backed_supply.set(self.state.total_supply)

    # ------------------------------------------------------------------
    # Buy paths
    # ------------------------------------------------------------------
    def buy_for_primary_reserve(self, buyer: str, amount: int, min_out: int = 0) -> BuyReceipt:
        """Mint against a direct deposit of the primary reserve asset."""
        _require_positive(amount, "amount")
        with self.state.guarded("buy_for_primary_reserve", buyer):
            if amount * self.factor < min_out:
                raise SlippageExceeded(f"minted {amount * self.factor} < min_out {min_out}")
            received = self._pull(self.primary, buyer, amount)
            minted = received * self.factor
            if minted < min_out:
                raise SlippageExceeded(f"minted {minted} < min_out {min_out}")
            receipt = BuyReceipt(
                buyer=buyer,
                path="reserve",
                asset_in=self.primary,
                amount_in=amount,
                primary_in=received,
                minted=minted,
                retained=received // 2,
            )
            self._mint(receipt)
        return self._after_buy(receipt)

    def buy_for_token(self, buyer: str, amount: int, token: str, min_out: int = 0) -> BuyReceipt:
        """Swap a secondary token to the primary asset, then mint the full output."""
        _require_positive(amount, "amount")
        if token == self.primary:
            raise InvalidParameterError("use buy_for_primary_reserve for the primary asset")
        if token == self.native:
            raise InvalidParameterError("use buy_for_native for native currency")
        with self.state.guarded("buy_for_token", buyer):
            received = self._pull(token, buyer, amount)
            receipt = self._swap_and_mint(buyer, "token", token, amount, received, min_out)
        return self._after_buy(receipt)

    def buy_for_native(self, buyer: str, value: int, min_out: int = 0) -> BuyReceipt:
        """Swap native currency sent with the call, then mint the full output."""
        _require_positive(value, "value")
        with self.state.guarded("buy_for_native", buyer):
            native = self.ledger(self.native)
            if native.balance_of(buyer) < value:
                raise InsufficientFundsError(f"{buyer!r} cannot send {value} {self.native}")
            before = native.balance_of(self.address)
            call_external("ledger", "transfer", native.transfer, buyer, self.address, value)
            received = native.balance_of(self.address) - before
            receipt = self._swap_and_mint(buyer, "native", self.native, value, received, min_out)
        return self._after_buy(receipt)

    # ------------------------------------------------------------------
    # Sell
    # ------------------------------------------------------------------
    def sell(self, seller: str, amount: int) -> SellReceipt:
        """Burn *amount* backed tokens and pay out half their reserve value."""
        _require_positive(amount, "amount")
        with self.state.guarded("sell", seller):
            held = self.state.balance_of(seller)
            if held < amount:
                raise InsufficientFundsError(f"{seller!r} holds {held}, cannot sell {amount}")
            value = amount // self.factor
            payout = value // 2
            if payout == 0:
                raise InvalidParameterError(f"{amount} is below the smallest redeemable amount")
            liquid = self.liquid_reserve()
            if payout > liquid:
                raise InsufficientReserve(f"payout {payout} exceeds liquid reserve {liquid}")
            # effects before interaction
            self.state.burn(seller, amount)
            primary = self.ledger(self.primary)
            call_external("ledger", "transfer", primary.transfer, self.address, seller, payout)
            receipt = SellReceipt(
                seller=seller, burned=amount, payout=payout, retained=value - payout
            )
            self.state.audit(
                AuditAction.SELL,
                entity_type="backed_token",
                entity_id=seller,
                actor=seller,
                payload=receipt.model_dump(),
            )

        backed_burned_total.inc(amount)
        primary_payout_total.inc(payout)
        backed_supply.set(self.state.total_supply)
        _LOG.info("backed_sold", extra={"actor": seller, "amount": amount, "payout": payout})
        return receipt

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _pull(self, asset: str, owner: str, amount: int) -> int:
        """transfer_from *owner* and return what actually arrived."""
        ledger = self.ledger(asset)
        if ledger.balance_of(owner) < amount:
            raise InsufficientFundsError(f"{owner!r} holds less than {amount} {asset}")
        before = ledger.balance_of(self.address)
        call_external(
            "ledger", "transfer_from", ledger.transfer_from, self.address, owner, self.address, amount
        )
        received = ledger.balance_of(self.address) - before
        if received <= 0:
            raise ExternalCallError(f"{asset} transfer credited {received}")
        return received

    def _swap_and_mint(
        self, buyer: str, path: str, asset: str, amount: int, received: int, min_out: int
    ) -> BuyReceipt:
        ledger_in = self.ledger(asset)
        call_external("ledger", "approve", ledger_in.approve, self.address, self.venue.address, received)
        before = self.liquid_reserve()
        out = call_external(
            "swap_venue",
            "swap",
            self.venue.swap_exact_input,
            asset,
            self.primary,
            received,
            min_out // self.factor,
            self.address,
            self.address,
        )
        if not isinstance(out, int) or isinstance(out, bool) or out <= 0:
            raise ExternalCallError(f"swap venue returned implausible output {out!r}")
        # settle on the reported output; a fee-charging ledger may deliver less
        arrived = self.liquid_reserve() - before
        if arrived <= 0:
            raise ExternalCallError(f"swap venue reported {out} but nothing arrived")
        minted = out * self.factor
        if minted < min_out:
            raise SlippageExceeded(f"minted {minted} < min_out {min_out}")
        receipt = BuyReceipt(
            buyer=buyer,
            path=path,
            asset_in=asset,
            amount_in=amount,
            primary_in=out,
            minted=minted,
        )
        self._mint(receipt)
        return receipt

    def _mint(self, receipt: BuyReceipt) -> None:
        self.state.mint(receipt.buyer, receipt.minted)
        self.state.audit(
            AuditAction.BUY,
            entity_type="backed_token",
            entity_id=receipt.buyer,
            actor=receipt.buyer,
            payload=receipt.model_dump(),
        )

    def _after_buy(self, receipt: BuyReceipt) -> BuyReceipt:
        backed_minted_total.labels(path=receipt.path).inc(receipt.minted)
        backed_supply.set(self.state.total_supply)
        _LOG.info(
            "backed_bought",
            extra={
                "actor": receipt.buyer,
                "asset": receipt.asset_in,
                "amount": receipt.amount_in,
                "minted": receipt.minted,
            },
        )
        return receipt


def _require_positive(value: int, name: str) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise InvalidParameterError(f"{name} must be a positive integer, got {value!r}")
